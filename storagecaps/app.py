"""Textual viewer for cluster and per-node storage capabilities."""

from __future__ import annotations

import logging

from textual.app import App, ComposeResult
from textual.widgets import DataTable, Footer, Header, Static

from .config import AppConfig, load_config
from .connections import NodeQueryError
from .manager import StorageCapabilityManager
from .probes import ProbeError

LOG = logging.getLogger(__name__)

_NODE_COLUMNS = (
    "version",
    "engine_kind",
    "supports_distributed_tx",
    "supports_global_timestamp",
    "supports_global_timestamp_heartbeat",
    "supports_returning",
    "lower_case_table_name_mode",
    "udf_version",
    "udf_status",
)


def _load_app_config() -> AppConfig:
    """Load configuration with a small wrapper for future overrides."""

    return load_config()


def _cell(value: object) -> str:
    if isinstance(value, bool):
        return "yes" if value else "no"
    if value is None:
        return "-"
    return str(value)


class CapabilityApp(App[None]):
    """Shows what the storage tier can do, cluster-wide and per node."""

    CSS = """
    Screen {
        layout: vertical;
    }
    #summary {
        height: 1;
        padding: 0 1;
        background: $surface-darken-3;
    }
    #cluster-table {
        height: 1fr;
    }
    #node-table {
        height: 1fr;
        border-top: solid $surface-darken-1;
    }
    """

    BINDINGS = [
        ("ctrl+c", "quit", "Quit"),
        ("ctrl+r", "refresh", "Re-probe Nodes"),
    ]

    def __init__(self, manager: StorageCapabilityManager | None = None) -> None:
        super().__init__()
        self._config = _load_app_config()
        self._manager = manager or StorageCapabilityManager.from_config(self._config)
        self._summary = ""

    @property
    def manager(self) -> StorageCapabilityManager:
        return self._manager

    @property
    def summary(self) -> str:
        """Text currently shown in the summary strip."""

        return self._summary

    def compose(self) -> ComposeResult:
        yield Header(show_clock=True)
        yield Static("", id="summary")
        yield DataTable(id="cluster-table")
        yield DataTable(id="node-table")
        yield Footer()

    def on_mount(self) -> None:
        cluster = self.query_one("#cluster-table", DataTable)
        cluster.add_columns("capability", "available")
        nodes = self.query_one("#node-table", DataTable)
        nodes.add_columns("node", *_NODE_COLUMNS)
        self._populate()

    def action_refresh(self) -> None:
        self._manager.reset()
        self._populate()

    def _populate(self) -> None:
        summary = self.query_one("#summary", Static)
        cluster = self.query_one("#cluster-table", DataTable)
        nodes = self.query_one("#node-table", DataTable)
        cluster.clear()
        nodes.clear()
        try:
            capabilities = self._manager.capabilities()
            snapshots = self._manager.node_snapshots()
        except (ProbeError, NodeQueryError) as exc:
            LOG.exception("Capability pass failed")
            self._set_summary(summary, f"Probe failed: {(str(exc).splitlines() or [''])[0][:80]}")
            self.notify(str(exc), title="Capability probe failed", severity="error")
            return
        for name, value in capabilities.as_dict().items():
            cluster.add_row(name, _cell(value), key=name)
        for name, snapshot in sorted(snapshots.items()):
            raw = snapshot.as_dict()
            nodes.add_row(name, *(_cell(raw[column]) for column in _NODE_COLUMNS), key=name)
        parts = [
            f"Nodes probed: {len(snapshots)} of {len(self._config.sql_nodes())} configured SQL",
            f"State: {self._manager.state.value}",
            f"Read-only: {_cell(self._manager.read_only)}",
        ]
        self._set_summary(summary, " | ".join(parts))

    def _set_summary(self, widget: Static, text: str) -> None:
        self._summary = text
        widget.update(text)


def main() -> None:
    """Entry point for ``python -m storagecaps``."""

    CapabilityApp().run()


__all__ = ["CapabilityApp", "main"]
