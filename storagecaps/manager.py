"""Lazily computed, thread-safe view of cluster storage capabilities."""

from __future__ import annotations

from enum import Enum
import logging
import threading
from typing import Mapping

from .aggregator import AggregationResult, CapabilityAggregator, ClusterCapabilities
from .config import AppConfig
from .connections import NodeQueryExecutor
from .models import NodeCapabilitySnapshot
from .probes import ProbeOptions, probe_global_timestamp_heartbeat
from .topology import ConfiguredEnvironment, StaticTopology

LOG = logging.getLogger(__name__)


class LifecycleState(str, Enum):
    UNINITIALIZED = "uninitialized"
    INITIALIZING = "initializing"
    READY = "ready"


class StorageCapabilityManager:
    """Runs the capability pass once, on first read, and serves cached flags.

    Readers on the ``READY`` path never take the lock; the pass itself and
    :meth:`reset` are serialized by one lock. ``read_only`` and
    ``lower_case_table_names`` are served from whatever was last published
    and do not trigger a pass.
    """

    def __init__(self, aggregator: CapabilityAggregator) -> None:
        self._aggregator = aggregator
        self._lock = threading.Lock()
        self._state = LifecycleState.UNINITIALIZED
        self._capabilities = ClusterCapabilities()
        self._snapshots: Mapping[str, NodeCapabilitySnapshot] = {}
        self._completed_passes = 0
        self._last_error: BaseException | None = None

    @classmethod
    def from_config(
        cls,
        config: AppConfig,
        *,
        executor: NodeQueryExecutor | None = None,
        demo_executor: NodeQueryExecutor | None = None,
    ) -> StorageCapabilityManager:
        environment = ConfiguredEnvironment(config)
        aggregator = CapabilityAggregator(
            StaticTopology.from_config(config, executor=executor, demo_executor=demo_executor),
            deployment=environment,
            metadb=environment,
            options=ProbeOptions(x_protocol=config.x_protocol, fast_mock=config.fast_mock),
        )
        return cls(aggregator)

    @property
    def state(self) -> LifecycleState:
        return self._state

    @property
    def cached_capabilities(self) -> ClusterCapabilities:
        """Last published flags, without triggering a pass."""

        return self._capabilities

    def capabilities(self) -> ClusterCapabilities:
        self._ensure_ready()
        return self._capabilities

    def supports_distributed_tx(self) -> bool:
        return self.capabilities().supports_distributed_tx

    def supports_global_timestamp(self) -> bool:
        return self.capabilities().supports_global_timestamp

    def supports_global_timestamp_heartbeat(self) -> bool:
        return self.capabilities().supports_global_timestamp_heartbeat

    def supports_commit_timestamp_tx(self) -> bool:
        return self.capabilities().supports_commit_timestamp_tx

    def supports_deadlock_detection(self) -> bool:
        return self.capabilities().supports_deadlock_detection

    def supports_mdl_deadlock_detection(self) -> bool:
        return self.capabilities().supports_mdl_deadlock_detection

    def supports_bloom_filter(self) -> bool:
        return self.capabilities().supports_bloom_filter

    def supports_hyper_log_log(self) -> bool:
        return self.capabilities().supports_hyper_log_log

    def supports_fast_checksum(self) -> bool:
        return self.capabilities().supports_fast_checksum

    def supports_open_ssl(self) -> bool:
        return self.capabilities().supports_open_ssl

    def supports_shared_read_view(self) -> bool:
        return self.capabilities().supports_shared_read_view

    def supports_returning(self) -> bool:
        return self.capabilities().supports_returning

    def is_legacy_version(self) -> bool:
        return self.capabilities().legacy_version

    @property
    def read_only(self) -> bool:
        return self._capabilities.read_only

    @property
    def lower_case_table_names(self) -> bool:
        return self._capabilities.lower_case_table_names

    def node_snapshot(self, name: str) -> NodeCapabilitySnapshot | None:
        """Raw probe values for one node, ``None`` if it was not probed."""

        self._ensure_ready()
        return self._snapshots.get(name)

    def node_snapshots(self) -> Mapping[str, NodeCapabilitySnapshot]:
        self._ensure_ready()
        return dict(self._snapshots)

    def recheck_heartbeat(self, name: str) -> bool:
        """Re-run the heartbeat probe for one cached node and refine its snapshot.

        The cluster-wide heartbeat flag is re-folded from the cached snapshots
        and published before this returns.
        """

        if self.node_snapshot(name) is None:
            raise KeyError(f"Node '{name}' has no capability snapshot.")
        topology = self._aggregator.topology
        node = next((node for node in topology.nodes() if node.name == name), None)
        if node is None:
            raise KeyError(f"Node '{name}' is no longer in the topology.")
        supported = probe_global_timestamp_heartbeat(topology.handle_for(node))
        with self._lock:
            snapshot = self._snapshots.get(name)
            if snapshot is None or self._state is not LifecycleState.READY:
                raise KeyError(f"Node '{name}' has no capability snapshot.")
            snapshot.refine_heartbeat(supported)
            self._capabilities = self._aggregator.fold(self._snapshots)
        LOG.debug("Heartbeat rechecked", extra={"node": name, "supported": supported})
        return supported

    def refresh(self) -> ClusterCapabilities:
        """Run a new pass now; on failure the published flags stay as they were."""

        with self._lock:
            previous = self._state
            self._state = LifecycleState.INITIALIZING
            try:
                self._run_pass()
            except Exception:
                self._state = previous
                raise
            return self._capabilities

    def reset(self) -> None:
        """Drop snapshots and flags; the next read triggers a fresh pass."""

        with self._lock:
            self._snapshots = {}
            self._capabilities = ClusterCapabilities()
            self._last_error = None
            self._state = LifecycleState.UNINITIALIZED
        LOG.debug("Capability state reset")

    def _ensure_ready(self) -> None:
        observed = self._completed_passes
        if self._state is LifecycleState.READY:
            return
        with self._lock:
            if self._state is LifecycleState.READY:
                return
            if self._completed_passes != observed and self._last_error is not None:
                # Another caller's pass failed while this one waited.
                raise self._last_error
            self._state = LifecycleState.INITIALIZING
            try:
                self._run_pass()
            except Exception:
                self._state = LifecycleState.UNINITIALIZED
                raise

    def _run_pass(self) -> None:
        try:
            result = self._aggregator.run()
        except Exception as exc:
            LOG.error("Capability pass failed", extra={"error": str(exc)})
            self._last_error = exc
            raise
        finally:
            self._completed_passes += 1
        self._publish(result)

    def _publish(self, result: AggregationResult) -> None:
        self._snapshots = dict(result.snapshots)
        self._capabilities = result.capabilities
        self._last_error = None
        self._state = LifecycleState.READY


__all__ = ["LifecycleState", "StorageCapabilityManager"]
