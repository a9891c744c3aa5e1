"""Fold per-node snapshots into cluster-wide capability flags."""

from __future__ import annotations

from dataclasses import dataclass, fields
from enum import Enum
import logging
from typing import Callable, Iterable, Mapping, Sequence

from .connections import NodeQueryError
from .models import NodeCapabilitySnapshot, NodeType
from .probes import ProbeOptions, build_snapshot, is_legacy_version
from .topology import DeploymentModeProvider, MetadataProtocolDetector, TopologyProvider
from .udf import supports_bloom_filter, supports_fast_checksum, supports_hyper_log_log

LOG = logging.getLogger(__name__)

TARGET_VERSION_LINE = "8.0"


class FoldOp(str, Enum):
    """How one per-node value combines across the cluster."""

    ALL = "all"
    ANY = "any"


@dataclass(frozen=True, slots=True)
class ClusterEnvironment:
    """Cluster-level conditions that do not come from node probes."""

    read_only: bool = False
    metadb_uses_x_protocol: bool = False


NodePredicate = Callable[[NodeCapabilitySnapshot], bool]
GlobalOverride = Callable[[Mapping[str, bool], ClusterEnvironment], bool]


@dataclass(frozen=True, slots=True)
class CapabilityRule:
    """One cluster capability: per-node predicate, fold and optional override.

    The override is ANDed onto the folded value and sees every folded value,
    including those of internal rules.
    """

    name: str
    predicate: NodePredicate
    fold: FoldOp = FoldOp.ALL
    override: GlobalOverride | None = None
    internal: bool = False

    @property
    def identity(self) -> bool:
        return self.fold is FoldOp.ALL


@dataclass(frozen=True, slots=True)
class ClusterCapabilities:
    """Cluster-wide flags; the defaults are the conservative values."""

    supports_distributed_tx: bool = False
    supports_global_timestamp: bool = False
    supports_global_timestamp_heartbeat: bool = False
    supports_commit_timestamp_tx: bool = False
    supports_deadlock_detection: bool = False
    supports_mdl_deadlock_detection: bool = False
    supports_bloom_filter: bool = False
    supports_hyper_log_log: bool = False
    supports_fast_checksum: bool = False
    supports_open_ssl: bool = False
    supports_shared_read_view: bool = False
    supports_returning: bool = False
    legacy_version: bool = False
    lower_case_table_names: bool = False
    read_only: bool = False

    def as_dict(self) -> dict[str, bool]:
        return {item.name: getattr(self, item.name) for item in fields(self)}


def _mdl_deadlock_detection(snapshot: NodeCapabilitySnapshot) -> bool:
    return (
        snapshot.supports_performance_schema
        and snapshot.has_metadata_lock_select_privilege
        and snapshot.metadata_lock_instrumentation_enabled
    )


CAPABILITY_RULES: tuple[CapabilityRule, ...] = (
    CapabilityRule(
        "supports_distributed_tx",
        lambda s: s.supports_distributed_tx,
        override=lambda _, env: not env.read_only,
    ),
    CapabilityRule("legacy_version", lambda s: is_legacy_version(s.version), fold=FoldOp.ANY),
    CapabilityRule("on_target_version_line", lambda s: s.version.startswith(TARGET_VERSION_LINE), internal=True),
    CapabilityRule(
        "supports_global_timestamp",
        lambda s: s.supports_global_timestamp,
        override=lambda folded, env: env.metadb_uses_x_protocol or folded["on_target_version_line"],
    ),
    CapabilityRule(
        "supports_global_timestamp_heartbeat",
        lambda s: s.heartbeat_supported(),
        override=lambda _, env: env.metadb_uses_x_protocol,
    ),
    CapabilityRule("supports_commit_timestamp_tx", lambda s: s.supports_commit_timestamp_tx),
    CapabilityRule("supports_deadlock_detection", lambda s: s.version.startswith("5.")),
    CapabilityRule("supports_mdl_deadlock_detection", _mdl_deadlock_detection),
    CapabilityRule("supports_bloom_filter", lambda s: supports_bloom_filter(s.udf)),
    CapabilityRule("supports_hyper_log_log", lambda s: supports_hyper_log_log(s.udf)),
    CapabilityRule("supports_fast_checksum", lambda s: supports_fast_checksum(s.udf)),
    CapabilityRule("supports_open_ssl", lambda s: s.supports_open_ssl),
    CapabilityRule("supports_shared_read_view", lambda s: s.supports_shared_read_view),
    CapabilityRule("supports_returning", lambda s: s.supports_returning),
    CapabilityRule("lower_case_table_names", lambda s: s.lower_case_table_name_mode != 0),
)


def fold_capabilities(
    snapshots: Iterable[NodeCapabilitySnapshot | None],
    environment: ClusterEnvironment,
    rules: Sequence[CapabilityRule] = CAPABILITY_RULES,
) -> ClusterCapabilities:
    """Combine node snapshots with ``rules``.

    ``None`` entries stand for skipped nodes and leave every fold untouched.
    """

    folded = {rule.name: rule.identity for rule in rules}
    for snapshot in snapshots:
        if snapshot is None:
            continue
        for rule in rules:
            value = rule.predicate(snapshot)
            if rule.fold is FoldOp.ALL:
                folded[rule.name] = folded[rule.name] and value
            else:
                folded[rule.name] = folded[rule.name] or value

    resolved: dict[str, bool] = {}
    for rule in rules:
        if rule.internal:
            continue
        value = folded[rule.name]
        if rule.override is not None:
            value = value and rule.override(folded, environment)
        resolved[rule.name] = value
    return ClusterCapabilities(read_only=environment.read_only, **resolved)


@dataclass(frozen=True, slots=True)
class AggregationResult:
    """Output of one complete pass, published as a unit."""

    capabilities: ClusterCapabilities
    snapshots: Mapping[str, NodeCapabilitySnapshot]


class CapabilityAggregator:
    """Probes every SQL node in the topology and folds the results."""

    def __init__(
        self,
        topology: TopologyProvider,
        *,
        deployment: DeploymentModeProvider,
        metadb: MetadataProtocolDetector,
        options: ProbeOptions | None = None,
        rules: Sequence[CapabilityRule] = CAPABILITY_RULES,
    ) -> None:
        self._topology = topology
        self._deployment = deployment
        self._metadb = metadb
        self._options = options or ProbeOptions()
        self._rules = tuple(rules)

    @property
    def topology(self) -> TopologyProvider:
        return self._topology

    def run(self) -> AggregationResult:
        """Execute one pass; any probe error aborts it before anything is returned."""

        snapshots: dict[str, NodeCapabilitySnapshot] = {}
        for node in self._topology.nodes():
            if node.node_type is not NodeType.SQL:
                LOG.debug("Skipping non-SQL node", extra={"node": node.name, "node_type": node.node_type.value})
                continue
            snapshots[node.name] = build_snapshot(self._topology.handle_for(node), self._options)

        capabilities = self.fold(snapshots)
        LOG.info("Capability pass complete", extra={"nodes": len(snapshots)})
        return AggregationResult(capabilities=capabilities, snapshots=snapshots)

    def fold(self, snapshots: Mapping[str, NodeCapabilitySnapshot]) -> ClusterCapabilities:
        """Fold already built snapshots against the current deployment environment."""

        environment = ClusterEnvironment(
            read_only=self._deployment.is_read_only(),
            metadb_uses_x_protocol=self._metadb_uses_x_protocol(),
        )
        return fold_capabilities(snapshots.values(), environment, self._rules)

    def _metadb_uses_x_protocol(self) -> bool:
        try:
            return self._metadb.uses_extended_protocol()
        except NodeQueryError as exc:
            LOG.warning("Failed to detect metadata service protocol", extra={"error": str(exc)})
            return False


__all__ = [
    "AggregationResult",
    "CAPABILITY_RULES",
    "CapabilityAggregator",
    "CapabilityRule",
    "ClusterCapabilities",
    "ClusterEnvironment",
    "FoldOp",
    "TARGET_VERSION_LINE",
    "fold_capabilities",
]
