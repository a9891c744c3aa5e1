"""Tests for the per-node capability probes."""

from __future__ import annotations

import pytest

from storagecaps.connections import DEMO_NODE_PRESETS, DemoNodeExecutor, DemoNodeProfile, NodeHandle, NodeQueryError
from storagecaps.models import EngineKind, NodeDescriptor
from storagecaps.probes import (
    ProbeError,
    ProbeOptions,
    build_snapshot,
    probe_engine_kind,
    probe_global_timestamp,
    probe_lower_case_table_names,
    probe_metadata_lock_instrumentation,
    probe_metadata_lock_privilege,
    probe_open_ssl,
    probe_performance_schema,
    probe_returning,
    probe_version,
)


def _handle(profile: DemoNodeProfile) -> tuple[NodeHandle, DemoNodeExecutor]:
    executor = DemoNodeExecutor({"dn-0": profile})
    return NodeHandle(node=NodeDescriptor(name="dn-0"), executor=executor), executor


def test_version_probe_returns_raw_string() -> None:
    handle, _ = _handle(DemoNodeProfile(version="5.7.44-log"))

    assert probe_version(handle) == "5.7.44-log"


def test_version_probe_without_rows_is_fatal() -> None:
    class _EmptyExecutor:
        def execute(self, node, sql):  # type: ignore[no-untyped-def]
            return []

    handle = NodeHandle(node=NodeDescriptor(name="dn-0"), executor=_EmptyExecutor())

    with pytest.raises(ProbeError, match="no rows"):
        probe_version(handle)


def test_version_probe_driver_error_is_fatal() -> None:
    handle, _ = _handle(DemoNodeProfile(failures={"@@version": NodeQueryError("gone away", error_code=2006)}))

    with pytest.raises(ProbeError) as excinfo:
        probe_version(handle)
    assert isinstance(excinfo.value.__cause__, NodeQueryError)


def test_variable_presence_probes() -> None:
    handle, _ = _handle(DemoNodeProfile(variables={"innodb_commit_seq": "OFF", "xengine_datadir": "/data"}))

    assert probe_global_timestamp(handle) is True
    assert probe_engine_kind(handle) is EngineKind.XENGINE

    bare, _ = _handle(DemoNodeProfile())
    assert probe_global_timestamp(bare) is False
    assert probe_engine_kind(bare) is EngineKind.GENERIC


def test_variable_probe_errors_propagate() -> None:
    failure = NodeQueryError("Access denied", error_code=1227, sql_state="42000")
    handle, _ = _handle(DemoNodeProfile(failures={"innodb_commit_seq": failure}))

    with pytest.raises(ProbeError):
        probe_global_timestamp(handle)


def test_performance_schema_must_be_on() -> None:
    on, _ = _handle(DemoNodeProfile(variables={"performance_schema": "on"}))
    off, _ = _handle(DemoNodeProfile(variables={"performance_schema": "OFF"}))

    assert probe_performance_schema(on) is True
    assert probe_performance_schema(off) is False


def test_open_ssl_requires_status_counter() -> None:
    present, _ = _handle(DemoNodeProfile(status={"Rsa_public_key": "key"}))
    absent, _ = _handle(DemoNodeProfile())

    assert probe_open_ssl(present) is True
    assert probe_open_ssl(absent) is False


def test_metadata_lock_probes_treat_errors_as_negative() -> None:
    handle, _ = _handle(
        DemoNodeProfile(
            grants_metadata_locks=False,
            failures={"setup_instruments": NodeQueryError("Table doesn't exist", error_code=1146)},
        )
    )

    assert probe_metadata_lock_privilege(handle) is False
    assert probe_metadata_lock_instrumentation(handle) is False


def test_metadata_lock_instrumentation_requires_yes() -> None:
    enabled, _ = _handle(DemoNodeProfile(mdl_instrument_enabled="YES"))
    disabled, _ = _handle(DemoNodeProfile(mdl_instrument_enabled="NO"))

    assert probe_metadata_lock_privilege(enabled) is True
    assert probe_metadata_lock_instrumentation(enabled) is True
    assert probe_metadata_lock_instrumentation(disabled) is False


def test_returning_detects_native_procedure() -> None:
    supported, _ = _handle(DemoNodeProfile(native_procedures=(("DBMS_TRANS", "RETURNING"),)))
    other, _ = _handle(DemoNodeProfile(native_procedures=(("dbms_admin", "show_native_procedure"),)))

    assert probe_returning(supported) is True
    assert probe_returning(other) is False


def test_returning_missing_procedure_is_negative() -> None:
    handle, _ = _handle(DemoNodeProfile(native_procedures=None))

    assert probe_returning(handle) is False


def test_returning_pluggable_protocol_error_is_negative() -> None:
    failure = NodeQueryError(
        "Command not supported by pluggable protocols",
        error_code=3130,
        sql_state="HY000",
    )
    handle, _ = _handle(DemoNodeProfile(failures={"show_native_procedure": failure}))

    assert probe_returning(handle) is False


def test_returning_accepts_errors_without_sql_state() -> None:
    failure = NodeQueryError("PROCEDURE dbms_admin.show_native_procedure does not exist", error_code=1305)
    handle, _ = _handle(DemoNodeProfile(failures={"show_native_procedure": failure}))

    assert probe_returning(handle) is False


def test_returning_unrecognized_error_is_fatal() -> None:
    failure = NodeQueryError("Lost connection to MySQL server during query", error_code=2013, sql_state="HY000")
    handle, _ = _handle(DemoNodeProfile(failures={"show_native_procedure": failure}))

    with pytest.raises(ProbeError):
        probe_returning(handle)


def test_returning_short_circuits_under_x_protocol() -> None:
    handle, executor = _handle(DemoNodeProfile(native_procedures=(("dbms_trans", "returning"),)))

    assert probe_returning(handle, x_protocol=True) is False
    assert executor.queries == []


def test_build_snapshot_collects_every_probe() -> None:
    handle, _ = _handle(DEMO_NODE_PRESETS["polarx-8.0"])

    snapshot = build_snapshot(handle)

    assert snapshot.version.startswith("8.0")
    assert snapshot.engine_kind is EngineKind.GENERIC
    assert snapshot.supports_distributed_tx is True
    assert snapshot.supports_global_timestamp is True
    assert snapshot.heartbeat_supported() is True
    assert snapshot.supports_returning is True
    assert snapshot.lower_case_table_name_mode == 1
    assert snapshot.udf is not None and snapshot.udf.status == "ACTIVE"
    assert snapshot.as_dict()["udf_functions"] == ("bloomfilter", "hashcheck", "hyperloglog")


def test_legacy_or_xengine_nodes_are_not_distributed_tx_eligible() -> None:
    legacy, _ = _handle(DemoNodeProfile(version="5.6.10"))
    xengine, _ = _handle(DemoNodeProfile(version="8.0.18", variables={"xengine_datadir": "/data"}))

    assert build_snapshot(legacy).supports_distributed_tx is False
    assert build_snapshot(xengine).supports_distributed_tx is False


def test_fast_mock_skips_every_query() -> None:
    handle, executor = _handle(DemoNodeProfile())

    snapshot = build_snapshot(handle, ProbeOptions(fast_mock=True))

    assert snapshot.version == "5.7"
    assert snapshot.lower_case_table_name_mode == 1
    assert snapshot.supports_global_timestamp is False
    assert executor.queries == []


def test_heartbeat_can_be_refined_after_construction() -> None:
    handle, _ = _handle(DemoNodeProfile())
    snapshot = build_snapshot(handle)

    assert snapshot.heartbeat_supported() is False
    snapshot.refine_heartbeat(True)
    assert snapshot.heartbeat_supported() is True


def test_lower_case_table_names_garbage_value_is_fatal() -> None:
    class _GarbageExecutor:
        def execute(self, node, sql):  # type: ignore[no-untyped-def]
            return [(None,)]

    handle = NodeHandle(node=NodeDescriptor(name="dn-0"), executor=_GarbageExecutor())

    with pytest.raises(ProbeError, match="lower_case_table_names") as excinfo:
        probe_lower_case_table_names(handle)
    assert isinstance(excinfo.value.__cause__, TypeError)
