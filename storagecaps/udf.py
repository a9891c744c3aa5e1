"""Resolve the optional UDF extension and the capabilities it provides."""

from __future__ import annotations

from dataclasses import dataclass
import logging
from typing import TYPE_CHECKING

import sqlglot
from sqlglot import exp

if TYPE_CHECKING:
    from .connections import NodeHandle

LOG = logging.getLogger(__name__)

PLUGIN_NAME = "polarx_udf"
VAR_FUNCTION_LIST = "polarx_udf_function_list"
STATUS_ACTIVE = "ACTIVE"

UDF_BLOOM_FILTER = "bloomfilter"
UDF_HYPERLOGLOG = "hyperloglog"
UDF_HASHCHECK = "hashcheck"


@dataclass(frozen=True, slots=True)
class UdfCapabilitySnapshot:
    """Installed extension version, status and registered functions."""

    major_version: int
    minor_version: int
    status: str
    registered_functions: frozenset[str]


def parse_udf_version(value: str | None) -> tuple[int, int] | None:
    """Return ``(major, minor)`` or ``None`` when the string is malformed."""

    if not value:
        return None
    parts = value.split(".")
    if len(parts) < 2:
        return None
    try:
        return int(parts[0]), int(parts[1])
    except ValueError:
        LOG.warning("Failed to parse UDF plugin version", extra={"version": value})
        return None


def plugin_query(name: str = PLUGIN_NAME) -> str:
    return (
        sqlglot.select("PLUGIN_VERSION", "PLUGIN_STATUS")
        .from_("information_schema.plugins")
        .where(exp.column("PLUGIN_NAME").eq(exp.Literal.string(name)))
        .sql(dialect="mysql")
    )


def function_list_query(variable: str = VAR_FUNCTION_LIST) -> str:
    return f"SHOW VARIABLES LIKE {exp.Literal.string(variable).sql(dialect='mysql')}"


def resolve_udf_capabilities(handle: "NodeHandle") -> UdfCapabilitySnapshot | None:
    """Inspect the UDF plugin on a node; ``None`` means the extension is absent.

    Any failure while querying is logged and reported as absence, so a
    missing or broken extension never blocks the rest of the probe pass.
    """

    try:
        plugin_rows = handle.query(plugin_query())
        if not plugin_rows:
            return None
        version_raw, status = plugin_rows[0][0], plugin_rows[0][1]
        version = parse_udf_version(None if version_raw is None else str(version_raw))
        if version is None:
            return None

        function_rows = handle.query(function_list_query())
        if not function_rows:
            return None
        listed = function_rows[0][1]
        functions = frozenset(
            name.strip() for name in str(listed or "").split(",") if name.strip()
        )
    except Exception:
        LOG.warning("Failed to check UDF plugin info", extra={"node": handle.name}, exc_info=True)
        return None

    return UdfCapabilitySnapshot(
        major_version=version[0],
        minor_version=version[1],
        status=str(status),
        registered_functions=functions,
    )


def _provides(info: UdfCapabilitySnapshot | None, function: str) -> bool:
    if info is None:
        return False
    return (
        info.major_version >= 1
        and info.minor_version >= 1
        and info.status == STATUS_ACTIVE
        and function in info.registered_functions
    )


def supports_bloom_filter(info: UdfCapabilitySnapshot | None) -> bool:
    return _provides(info, UDF_BLOOM_FILTER)


def supports_hyper_log_log(info: UdfCapabilitySnapshot | None) -> bool:
    return _provides(info, UDF_HYPERLOGLOG)


def supports_fast_checksum(info: UdfCapabilitySnapshot | None) -> bool:
    return _provides(info, UDF_HASHCHECK)


__all__ = [
    "PLUGIN_NAME",
    "UdfCapabilitySnapshot",
    "parse_udf_version",
    "resolve_udf_capabilities",
    "supports_bloom_filter",
    "supports_fast_checksum",
    "supports_hyper_log_log",
]
