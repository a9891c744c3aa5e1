"""Topology and deployment collaborators consumed by the aggregator."""

from __future__ import annotations

from typing import Iterable, Protocol, Sequence, runtime_checkable

from .config import AppConfig, NodeConfig
from .connections import DemoNodeExecutor, NodeHandle, NodeQueryExecutor, PyMySQLNodeExecutor
from .models import NodeDescriptor


@runtime_checkable
class TopologyProvider(Protocol):
    """Enumerates nodes and hands out query handles for them."""

    def nodes(self) -> Sequence[NodeDescriptor]:
        """Every node currently in the topology, of any type."""

    def handle_for(self, node: NodeDescriptor) -> NodeHandle:
        """Return a handle usable to query ``node``."""


@runtime_checkable
class DeploymentModeProvider(Protocol):
    def is_read_only(self) -> bool: ...


@runtime_checkable
class MetadataProtocolDetector(Protocol):
    def uses_extended_protocol(self) -> bool: ...


class StaticTopology:
    """Fixed list of nodes, each routed to the primary or demo executor."""

    def __init__(
        self,
        nodes: Iterable[NodeDescriptor],
        executor: NodeQueryExecutor,
        *,
        demo_executor: NodeQueryExecutor | None = None,
    ) -> None:
        self._nodes = tuple(nodes)
        self._executor = executor
        self._demo_executor = demo_executor or DemoNodeExecutor()

    @classmethod
    def from_config(
        cls,
        config: AppConfig,
        *,
        executor: NodeQueryExecutor | None = None,
        demo_executor: NodeQueryExecutor | None = None,
    ) -> StaticTopology:
        return cls(
            (_from_config(entry) for entry in config.nodes),
            executor or PyMySQLNodeExecutor(connect_timeout=config.connect_timeout),
            demo_executor=demo_executor,
        )

    def nodes(self) -> Sequence[NodeDescriptor]:
        return self._nodes

    def handle_for(self, node: NodeDescriptor) -> NodeHandle:
        executor = self._demo_executor if node.demo_preset else self._executor
        return NodeHandle(node=node, executor=executor)


class ConfiguredEnvironment:
    """Deployment mode and metadata-service protocol taken from config."""

    def __init__(self, config: AppConfig) -> None:
        self._read_only = config.read_only
        self._metadb_x_protocol = config.metadb_x_protocol

    def is_read_only(self) -> bool:
        return self._read_only

    def uses_extended_protocol(self) -> bool:
        return self._metadb_x_protocol


def _from_config(entry: NodeConfig) -> NodeDescriptor:
    return NodeDescriptor(
        name=entry.name,
        node_type=entry.node_type,
        host=entry.host,
        port=entry.port,
        user=entry.user,
        password=entry.password,
        database=entry.database,
        demo_preset=entry.demo_preset,
    )


__all__ = [
    "ConfiguredEnvironment",
    "DeploymentModeProvider",
    "MetadataProtocolDetector",
    "StaticTopology",
    "TopologyProvider",
]
