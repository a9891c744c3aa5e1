"""Node query executors used by the capability probes."""

from __future__ import annotations

from dataclasses import dataclass, field
import re
from typing import Mapping, Protocol, Sequence, runtime_checkable

import pymysql

from .models import NodeDescriptor

Row = tuple[object, ...]


class NodeQueryError(RuntimeError):
    """Raised when a node rejects a query or cannot be reached."""

    def __init__(self, message: str, *, error_code: int | None = None, sql_state: str | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.error_code = error_code
        self.sql_state = sql_state


class NodeConnectionError(NodeQueryError):
    """Raised when a connection to a node cannot be acquired."""


@runtime_checkable
class NodeQueryExecutor(Protocol):
    """Protocol implemented by node query executors."""

    def execute(self, node: NodeDescriptor, sql: str) -> Sequence[Row]:
        """Run ``sql`` on ``node`` and return every row."""


@dataclass(frozen=True, slots=True)
class NodeHandle:
    """A node bound to the executor that can reach it."""

    node: NodeDescriptor
    executor: NodeQueryExecutor

    @property
    def name(self) -> str:
        return self.node.name

    def query(self, sql: str) -> Sequence[Row]:
        return self.executor.execute(self.node, sql)


class PyMySQLNodeExecutor:
    """Runs probe statements against MySQL-protocol nodes via PyMySQL."""

    def __init__(self, *, connect_timeout: float = 3.0) -> None:
        self._connect_timeout = connect_timeout

    def execute(self, node: NodeDescriptor, sql: str) -> list[Row]:
        conn = self._connect(node)
        try:
            with conn.cursor() as cursor:
                cursor.execute(sql)
                return [tuple(row) for row in cursor.fetchall()]
        except pymysql.MySQLError as exc:
            raise _query_error(exc) from exc
        finally:
            try:
                conn.close()
            except pymysql.MySQLError:  # pragma: no cover - best effort cleanup
                pass

    def _connect(self, node: NodeDescriptor):
        kwargs: dict[str, object] = {"host": node.host or "localhost"}
        if node.port is not None:
            kwargs["port"] = node.port
        if node.user:
            kwargs["user"] = node.user
        if node.password:
            kwargs["password"] = node.password
        if node.database:
            kwargs["database"] = node.database
        kwargs["connect_timeout"] = self._connect_timeout
        try:
            return pymysql.connect(**kwargs)
        except pymysql.MySQLError as exc:
            raise NodeConnectionError(f"Failed to connect to node '{node.name}': {exc}") from exc


def _query_error(exc: pymysql.MySQLError) -> NodeQueryError:
    error_code: int | None = None
    message = str(exc)
    if len(exc.args) >= 2 and isinstance(exc.args[0], int):
        error_code = exc.args[0]
        message = str(exc.args[1])
    return NodeQueryError(message, error_code=error_code)


@dataclass(frozen=True, slots=True)
class DemoNodeProfile:
    """Canned answers a demo node returns for the probe queries.

    ``native_procedures`` set to ``None`` behaves like a server without the
    diagnostic procedure; ``failures`` maps a lower-case query fragment to
    the error raised for any statement containing it.
    """

    version: str = "8.0.32"
    variables: Mapping[str, str] = field(default_factory=dict)
    status: Mapping[str, str] = field(default_factory=dict)
    plugins: Mapping[str, tuple[str, str]] = field(default_factory=dict)
    native_procedures: tuple[tuple[str, str], ...] | None = None
    grants_metadata_locks: bool = True
    mdl_instrument_enabled: str | None = "YES"
    failures: Mapping[str, NodeQueryError] = field(default_factory=dict)


DEMO_NODE_PRESETS: Mapping[str, DemoNodeProfile] = {
    "polarx-8.0": DemoNodeProfile(
        version="8.0.32-X-Cluster-8.4.19",
        variables={
            "innodb_commit_seq": "ON",
            "innodb_heartbeat_seq": "ON",
            "innodb_cts_transaction": "ON",
            "innodb_transaction_group": "OFF",
            "performance_schema": "ON",
            "lower_case_table_names": "1",
            "polarx_udf_function_list": "bloomfilter,hyperloglog,hashcheck",
        },
        status={"Rsa_public_key": "-----BEGIN PUBLIC KEY-----"},
        plugins={"polarx_udf": ("1.1", "ACTIVE")},
        native_procedures=(("dbms_trans", "returning"), ("dbms_admin", "show_native_procedure")),
    ),
    "mysql-5.7": DemoNodeProfile(
        version="5.7.44-log",
        variables={
            "performance_schema": "ON",
            "lower_case_table_names": "1",
        },
        status={"Rsa_public_key": "-----BEGIN PUBLIC KEY-----"},
    ),
    "mysql-5.6": DemoNodeProfile(
        version="5.6.51",
        variables={"performance_schema": "OFF", "lower_case_table_names": "0"},
        mdl_instrument_enabled=None,
    ),
}

_SHOW_LIKE = re.compile(r"^\s*show\s+(variables|status)\s+like\s+'([^']*)'", re.IGNORECASE)
_PLUGIN_NAME = re.compile(r"plugin_name\s*=\s*'([^']*)'", re.IGNORECASE)


class DemoNodeExecutor:
    """Stub executor that answers probe queries from preset node profiles."""

    def __init__(self, profiles: Mapping[str, DemoNodeProfile] | None = None) -> None:
        self._profiles = dict(profiles or DEMO_NODE_PRESETS)
        self.queries: list[tuple[str, str]] = []

    def set_profile(self, key: str, profile: DemoNodeProfile) -> None:
        """Swap the profile served for a preset or node name."""

        self._profiles[key] = profile

    def execute(self, node: NodeDescriptor, sql: str) -> list[Row]:
        self.queries.append((node.name, sql))
        profile = self._profile_for(node)
        lowered = sql.lower()
        for fragment, error in profile.failures.items():
            if fragment in lowered:
                raise error
        match = _SHOW_LIKE.match(sql)
        if match:
            source = profile.variables if match.group(1).lower() == "variables" else profile.status
            name = match.group(2)
            return [(name, source[name])] if name in source else []
        if "@@global.lower_case_table_names" in lowered:
            return [(int(profile.variables.get("lower_case_table_names", "0")),)]
        if "@@version" in lowered:
            return [(profile.version,)]
        if "information_schema.plugins" in lowered:
            plugin = _PLUGIN_NAME.search(sql)
            entry = profile.plugins.get(plugin.group(1)) if plugin else None
            return [entry] if entry else []
        if "show_native_procedure" in lowered:
            if profile.native_procedures is None:
                raise NodeQueryError(
                    "PROCEDURE dbms_admin.show_native_procedure does not exist",
                    error_code=1305,
                    sql_state="42000",
                )
            return list(profile.native_procedures)
        if "performance_schema.metadata_locks" in lowered:
            if not profile.grants_metadata_locks:
                raise NodeQueryError(
                    "SELECT command denied to user for table 'metadata_locks'",
                    error_code=1142,
                    sql_state="42000",
                )
            return []
        if "setup_instruments" in lowered:
            if profile.mdl_instrument_enabled is None:
                return []
            return [(profile.mdl_instrument_enabled, "YES")]
        raise NodeQueryError(f"Demo node cannot answer: {sql}", error_code=1064, sql_state="42000")

    def _profile_for(self, node: NodeDescriptor) -> DemoNodeProfile:
        key = node.demo_preset or node.name
        profile = self._profiles.get(key)
        if profile is None:
            raise NodeConnectionError(f"No demo profile for node '{node.name}'")
        return profile


__all__ = [
    "DEMO_NODE_PRESETS",
    "DemoNodeExecutor",
    "DemoNodeProfile",
    "NodeConnectionError",
    "NodeHandle",
    "NodeQueryError",
    "NodeQueryExecutor",
    "PyMySQLNodeExecutor",
    "Row",
]
