"""Shared dataclasses describing nodes and their probed capabilities."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
import threading

from .udf import UdfCapabilitySnapshot


class NodeType(str, Enum):
    """Storage kinds a topology may contain."""

    SQL = "sql"
    FILE_STORE = "file_store"
    COLUMNAR = "columnar"


class EngineKind(str, Enum):
    """Storage engine reported by a SQL node."""

    GENERIC = "generic"
    XENGINE = "xengine"


@dataclass(frozen=True, slots=True)
class NodeDescriptor:
    """Runtime representation of one backend node in the topology."""

    name: str
    node_type: NodeType = NodeType.SQL
    host: str | None = None
    port: int | None = None
    user: str | None = None
    password: str | None = None
    database: str | None = None
    demo_preset: str | None = None


@dataclass(frozen=True, slots=True, eq=False)
class NodeCapabilitySnapshot:
    """Result of running every probe against one node.

    All fields are fixed at construction except the heartbeat flag, which
    may be refined later through :meth:`refine_heartbeat`.
    """

    version: str
    engine_kind: EngineKind
    supports_distributed_tx: bool
    supports_global_timestamp: bool
    supports_global_timestamp_heartbeat: bool
    supports_commit_timestamp_tx: bool
    supports_shared_read_view: bool
    supports_open_ssl: bool
    supports_performance_schema: bool
    supports_returning: bool
    has_metadata_lock_select_privilege: bool
    metadata_lock_instrumentation_enabled: bool
    lower_case_table_name_mode: int
    udf: UdfCapabilitySnapshot | None = None
    _lock: threading.Lock = field(default_factory=threading.Lock, init=False, repr=False)

    def refine_heartbeat(self, supported: bool) -> None:
        """Update the heartbeat flag after construction."""

        with self._lock:
            object.__setattr__(self, "supports_global_timestamp_heartbeat", supported)

    def heartbeat_supported(self) -> bool:
        with self._lock:
            return self.supports_global_timestamp_heartbeat

    def as_dict(self) -> dict[str, object]:
        """Raw probe values, keyed by field name."""

        udf = self.udf
        return {
            "version": self.version,
            "engine_kind": self.engine_kind.value,
            "supports_distributed_tx": self.supports_distributed_tx,
            "supports_global_timestamp": self.supports_global_timestamp,
            "supports_global_timestamp_heartbeat": self.heartbeat_supported(),
            "supports_commit_timestamp_tx": self.supports_commit_timestamp_tx,
            "supports_shared_read_view": self.supports_shared_read_view,
            "supports_open_ssl": self.supports_open_ssl,
            "supports_performance_schema": self.supports_performance_schema,
            "supports_returning": self.supports_returning,
            "has_metadata_lock_select_privilege": self.has_metadata_lock_select_privilege,
            "metadata_lock_instrumentation_enabled": self.metadata_lock_instrumentation_enabled,
            "lower_case_table_name_mode": self.lower_case_table_name_mode,
            "udf_version": f"{udf.major_version}.{udf.minor_version}" if udf else None,
            "udf_status": udf.status if udf else None,
            "udf_functions": tuple(sorted(udf.registered_functions)) if udf else (),
        }


__all__ = [
    "EngineKind",
    "NodeCapabilitySnapshot",
    "NodeDescriptor",
    "NodeType",
]
