"""Per-node capability probes and the snapshot builder that runs them all."""

from __future__ import annotations

from dataclasses import dataclass
import logging

import sqlglot
from sqlglot import exp

from .connections import NodeHandle, NodeQueryError
from .models import EngineKind, NodeCapabilitySnapshot
from .udf import resolve_udf_capabilities

LOG = logging.getLogger(__name__)

LEGACY_VERSION_PREFIXES = ("5.6", "5.5")

_METADATA_LOCKS_QUERY = """
    SELECT pt.PROCESSLIST_ID AS waiting, gt.PROCESSLIST_ID AS blocking
    FROM performance_schema.metadata_locks g
    JOIN performance_schema.metadata_locks p
      ON g.OBJECT_TYPE = p.OBJECT_TYPE
     AND g.OBJECT_SCHEMA = p.OBJECT_SCHEMA
     AND g.OBJECT_NAME = p.OBJECT_NAME
     AND g.LOCK_STATUS = 'GRANTED'
     AND p.LOCK_STATUS = 'PENDING'
    JOIN performance_schema.threads gt ON g.OWNER_THREAD_ID = gt.THREAD_ID
    JOIN performance_schema.threads pt ON p.OWNER_THREAD_ID = pt.THREAD_ID
    LEFT JOIN performance_schema.events_statements_current gs ON g.OWNER_THREAD_ID = gs.THREAD_ID
    LEFT JOIN performance_schema.events_statements_current ps ON p.OWNER_THREAD_ID = ps.THREAD_ID
    WHERE g.OBJECT_TYPE = 'TABLE'
      AND pt.PROCESSLIST_ID != gt.PROCESSLIST_ID
      AND FALSE
"""

_NATIVE_PROCEDURE_CALL = "call dbms_admin.show_native_procedure()"


class ProbeError(RuntimeError):
    """Raised when a probe fails in a way that must abort the pass."""


@dataclass(frozen=True, slots=True)
class ProbeOptions:
    """Process-wide switches that change how probes behave."""

    x_protocol: bool = False
    fast_mock: bool = False


def _literal(value: str) -> str:
    return exp.Literal.string(value).sql(dialect="mysql")


def _show_variable(handle: NodeHandle, name: str, what: str) -> list[tuple[object, ...]]:
    try:
        return list(handle.query(f"SHOW VARIABLES LIKE {_literal(name)}"))
    except NodeQueryError as exc:
        raise ProbeError(f"Failed to check {what} on '{handle.name}': {exc}") from exc


def probe_version(handle: NodeHandle) -> str:
    try:
        rows = handle.query("SELECT @@version")
    except NodeQueryError as exc:
        raise ProbeError(f"Failed to get server version of '{handle.name}': {exc}") from exc
    if not rows:
        raise ProbeError(f"Server version query returned no rows on '{handle.name}'")
    return str(rows[0][0])


def probe_global_timestamp(handle: NodeHandle) -> bool:
    return bool(_show_variable(handle, "innodb_commit_seq", "global timestamp support"))


def probe_global_timestamp_heartbeat(handle: NodeHandle) -> bool:
    return bool(_show_variable(handle, "innodb_heartbeat_seq", "timestamp heartbeat support"))


def probe_commit_timestamp_tx(handle: NodeHandle) -> bool:
    return bool(_show_variable(handle, "innodb_cts_transaction", "commit timestamp support"))


def probe_shared_read_view(handle: NodeHandle) -> bool:
    # The variable only has to exist; it defaults to OFF.
    return bool(_show_variable(handle, "innodb_transaction_group", "shared read view support"))


def probe_engine_kind(handle: NodeHandle) -> EngineKind:
    rows = _show_variable(handle, "xengine_datadir", "storage engine")
    return EngineKind.XENGINE if rows else EngineKind.GENERIC


def probe_performance_schema(handle: NodeHandle) -> bool:
    rows = _show_variable(handle, "performance_schema", "performance_schema support")
    return bool(rows) and str(rows[0][1]).upper() == "ON"


def probe_open_ssl(handle: NodeHandle) -> bool:
    try:
        rows = handle.query(f"SHOW STATUS LIKE {_literal('Rsa_public_key')}")
    except NodeQueryError as exc:
        raise ProbeError(f"Failed to check openssl support on '{handle.name}': {exc}") from exc
    return bool(rows)


def probe_lower_case_table_names(handle: NodeHandle) -> int:
    try:
        rows = handle.query("SELECT @@global.lower_case_table_names")
    except NodeQueryError as exc:
        raise ProbeError(f"Failed to get lower_case_table_names of '{handle.name}': {exc}") from exc
    if not rows:
        raise ProbeError(f"lower_case_table_names query returned no rows on '{handle.name}'")
    try:
        return int(rows[0][0])
    except (TypeError, ValueError) as exc:
        raise ProbeError(f"Unexpected lower_case_table_names value on '{handle.name}': {rows[0][0]!r}") from exc


def probe_metadata_lock_privilege(handle: NodeHandle) -> bool:
    try:
        handle.query(_METADATA_LOCKS_QUERY)
    except NodeQueryError as exc:
        LOG.warning(
            "Failed to check performance_schema select privilege",
            extra={"node": handle.name, "error": str(exc)},
        )
        return False
    return True


def probe_metadata_lock_instrumentation(handle: NodeHandle) -> bool:
    sql = (
        sqlglot.select("enabled", "timed")
        .from_("performance_schema.setup_instruments")
        .where(exp.column("NAME").eq(exp.Literal.string("wait/lock/metadata/sql/mdl")))
        .sql(dialect="mysql")
    )
    try:
        rows = handle.query(sql)
    except NodeQueryError as exc:
        LOG.warning(
            "Failed to check metadata lock instrumentation",
            extra={"node": handle.name, "error": str(exc)},
        )
        return False
    return bool(rows) and str(rows[0][0]).upper() == "YES"


def _procedure_missing(exc: NodeQueryError) -> bool:
    return (
        exc.error_code == 1305
        and (exc.sql_state is None or exc.sql_state.upper() == "42000")
        and "does not exist" in exc.message
    )


def _pluggable_protocol_unsupported(exc: NodeQueryError) -> bool:
    return (
        exc.error_code == 3130
        and (exc.sql_state is None or exc.sql_state.upper() == "HY000")
        and "Command not supported by pluggable protocols" in exc.message
    )


def probe_returning(handle: NodeHandle, *, x_protocol: bool = False) -> bool:
    """Check for the native ``dbms_trans.returning`` procedure."""

    if x_protocol:
        return False
    try:
        rows = handle.query(_NATIVE_PROCEDURE_CALL)
    except NodeQueryError as exc:
        if _procedure_missing(exc):
            LOG.warning("PROCEDURE dbms_admin.show_native_procedure does not exist", extra={"node": handle.name})
            return False
        if _pluggable_protocol_unsupported(exc):
            LOG.warning("dbms_admin procedures are not callable over the X protocol", extra={"node": handle.name})
            return False
        raise ProbeError(f"Failed to check returning support on '{handle.name}': {exc}") from exc
    return any(
        str(row[0]).lower() == "dbms_trans" and str(row[1]).lower() == "returning"
        for row in rows
    )


def is_legacy_version(version: str) -> bool:
    return version.startswith(LEGACY_VERSION_PREFIXES)


def mock_snapshot() -> NodeCapabilitySnapshot:
    """Fixed snapshot used when probing is disabled."""

    return NodeCapabilitySnapshot(
        version="5.7",
        engine_kind=EngineKind.GENERIC,
        supports_distributed_tx=True,
        supports_global_timestamp=False,
        supports_global_timestamp_heartbeat=False,
        supports_commit_timestamp_tx=False,
        supports_shared_read_view=False,
        supports_open_ssl=False,
        supports_performance_schema=False,
        supports_returning=False,
        has_metadata_lock_select_privilege=False,
        metadata_lock_instrumentation_enabled=False,
        lower_case_table_name_mode=1,
        udf=None,
    )


def build_snapshot(handle: NodeHandle, options: ProbeOptions | None = None) -> NodeCapabilitySnapshot:
    """Run the full probe set against one node."""

    options = options or ProbeOptions()
    if options.fast_mock:
        return mock_snapshot()

    version = probe_version(handle)
    global_timestamp = probe_global_timestamp(handle)
    heartbeat = probe_global_timestamp_heartbeat(handle)
    performance_schema = probe_performance_schema(handle)
    engine_kind = probe_engine_kind(handle)
    udf = resolve_udf_capabilities(handle)
    returning = probe_returning(handle, x_protocol=options.x_protocol)
    commit_timestamp = probe_commit_timestamp_tx(handle)
    lower_case_mode = probe_lower_case_table_names(handle)
    shared_read_view = probe_shared_read_view(handle)
    mdl_privilege = probe_metadata_lock_privilege(handle)
    mdl_instrumentation = probe_metadata_lock_instrumentation(handle)
    open_ssl = probe_open_ssl(handle)

    LOG.debug("Probed node", extra={"node": handle.name, "version": version})
    return NodeCapabilitySnapshot(
        version=version,
        engine_kind=engine_kind,
        supports_distributed_tx=not is_legacy_version(version) and engine_kind is not EngineKind.XENGINE,
        supports_global_timestamp=global_timestamp,
        supports_global_timestamp_heartbeat=heartbeat,
        supports_commit_timestamp_tx=commit_timestamp,
        supports_shared_read_view=shared_read_view,
        supports_open_ssl=open_ssl,
        supports_performance_schema=performance_schema,
        supports_returning=returning,
        has_metadata_lock_select_privilege=mdl_privilege,
        metadata_lock_instrumentation_enabled=mdl_instrumentation,
        lower_case_table_name_mode=lower_case_mode,
        udf=udf,
    )


__all__ = [
    "LEGACY_VERSION_PREFIXES",
    "ProbeError",
    "ProbeOptions",
    "build_snapshot",
    "is_legacy_version",
    "mock_snapshot",
    "probe_commit_timestamp_tx",
    "probe_engine_kind",
    "probe_global_timestamp",
    "probe_global_timestamp_heartbeat",
    "probe_lower_case_table_names",
    "probe_metadata_lock_instrumentation",
    "probe_metadata_lock_privilege",
    "probe_open_ssl",
    "probe_performance_schema",
    "probe_returning",
    "probe_shared_read_view",
    "probe_version",
]
