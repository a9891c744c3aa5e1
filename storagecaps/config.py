"""App configuration loading helpers."""

from __future__ import annotations

import json
import logging
from pathlib import Path

import tomllib

from pydantic import BaseModel, Field, ValidationError

from .models import NodeType

LOG = logging.getLogger(__name__)

CONFIG_FILE = Path.home() / ".config" / "storagecaps" / "config.toml"


class NodeConfig(BaseModel):
    """Backend node entry stored in config.toml."""

    name: str
    node_type: NodeType = NodeType.SQL
    host: str | None = None
    port: int | None = None
    user: str | None = None
    password: str | None = None
    database: str | None = None
    demo_preset: str | None = None


class AppConfig(BaseModel):
    """Shape of the application configuration file."""

    read_only: bool = False
    metadb_x_protocol: bool = False
    x_protocol: bool = False
    fast_mock: bool = False
    connect_timeout: float = 3.0
    nodes: list[NodeConfig] = Field(default_factory=lambda: list(_default_nodes()))

    def sql_nodes(self) -> list[NodeConfig]:
        return [node for node in self.nodes if node.node_type is NodeType.SQL]


def load_config(path: Path | None = None) -> AppConfig:
    """Load configuration from disk; fall back to defaults if missing."""

    target = path or CONFIG_FILE
    try:
        with target.open("rb") as handle:
            raw = tomllib.load(handle)
    except FileNotFoundError:
        return AppConfig()
    except (tomllib.TOMLDecodeError, OSError):
        LOG.warning("Ignoring unreadable config file", extra={"path": str(target)})
        return AppConfig()

    try:
        return AppConfig.model_validate(raw)
    except ValidationError as exc:
        LOG.warning("Ignoring invalid config file", extra={"path": str(target)})
        LOG.debug(str(exc))
        return AppConfig()


def save_config(config: AppConfig, path: Path | None = None) -> None:
    """Persist configuration to disk."""

    target = path or CONFIG_FILE
    target.parent.mkdir(parents=True, exist_ok=True)
    lines: list[str] = [
        f"read_only = {str(config.read_only).lower()}",
        f"metadb_x_protocol = {str(config.metadb_x_protocol).lower()}",
        f"x_protocol = {str(config.x_protocol).lower()}",
        f"fast_mock = {str(config.fast_mock).lower()}",
        f"connect_timeout = {config.connect_timeout}",
    ]
    if config.nodes:
        lines.append("")
        for node in config.nodes:
            lines.append("[[nodes]]")
            lines.append(f"name = {_toml_string(node.name)}")
            lines.append(f"node_type = {_toml_string(node.node_type.value)}")
            if node.host:
                lines.append(f"host = {_toml_string(node.host)}")
            if node.port is not None:
                lines.append(f"port = {node.port}")
            if node.user:
                lines.append(f"user = {_toml_string(node.user)}")
            if node.password:
                lines.append(f"password = {_toml_string(node.password)}")
            if node.database:
                lines.append(f"database = {_toml_string(node.database)}")
            if node.demo_preset:
                lines.append(f"demo_preset = {_toml_string(node.demo_preset)}")
            lines.append("")
    target.write_text("\n".join(lines) + "\n", encoding="utf-8")


def _toml_string(value: str) -> str:
    # JSON string escapes are a subset of TOML basic-string escapes.
    return json.dumps(value, ensure_ascii=False).replace("\x7f", "\\u007f")


def _default_nodes() -> tuple[NodeConfig, ...]:
    """Demo nodes shown on first run before config is customized."""

    return (
        NodeConfig(name="dn-0", demo_preset="polarx-8.0"),
        NodeConfig(name="dn-1", demo_preset="polarx-8.0"),
        NodeConfig(name="oss-0", node_type=NodeType.FILE_STORE),
    )
