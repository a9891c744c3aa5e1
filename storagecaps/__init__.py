"""Cluster-wide storage capability detection for heterogeneous SQL nodes."""

from __future__ import annotations

from .aggregator import CapabilityAggregator, ClusterCapabilities, fold_capabilities
from .manager import LifecycleState, StorageCapabilityManager
from .models import EngineKind, NodeCapabilitySnapshot, NodeDescriptor, NodeType
from .probes import ProbeError, ProbeOptions
from .udf import UdfCapabilitySnapshot

__version__ = "0.1.0"

__all__ = [
    "CapabilityAggregator",
    "ClusterCapabilities",
    "EngineKind",
    "LifecycleState",
    "NodeCapabilitySnapshot",
    "NodeDescriptor",
    "NodeType",
    "ProbeError",
    "ProbeOptions",
    "StorageCapabilityManager",
    "UdfCapabilitySnapshot",
    "__version__",
    "fold_capabilities",
]
