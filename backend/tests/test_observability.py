"""
test_observability.py — Logging formatter, store-call timing and import checks.

Verifies that:
  1. Every estima module imports cleanly (no circular imports, no I/O at import).
  2. JSONFormatter emits one JSON object carrying the store extras.
  3. timed_async records per-operation timings on the shared tracker.

No database, network, or external services are required.
"""

import asyncio
import importlib
import json
import logging

import pytest

from estima.services.logging_config import JSONFormatter, StoreTextFormatter, setup_logging
from estima.services.perf_monitor import StoreCallTracker, timed_async, tracker
from estima.services.project_store import StoreMode

ESTIMA_MODULES = [
    "estima.config",
    "estima.db",
    "estima.main",
    "estima.models.orm_models",
    "estima.models.schemas",
    "estima.services.catalog_query",
    "estima.services.catalog_seed",
    "estima.services.debounce",
    "estima.services.errors",
    "estima.services.local_store",
    "estima.services.logging_config",
    "estima.services.perf_monitor",
    "estima.services.pricing_engine",
    "estima.services.project_reducer",
    "estima.services.project_state",
    "estima.services.project_store",
    "estima.services.remote_store",
]


class TestImports:

    @pytest.mark.parametrize("module_name", ESTIMA_MODULES)
    def test_module_imports(self, module_name):
        assert importlib.import_module(module_name) is not None


class TestJSONFormatter:

    def _record(self, **extra):
        record = logging.LogRecord(
            name="estima.remote", level=logging.WARNING, pathname=__file__, lineno=42,
            msg="Remote %s failed", args=("save",), exc_info=None,
        )
        for key, value in extra.items():
            setattr(record, key, value)
        return record

    def test_basic_fields(self):
        entry = json.loads(JSONFormatter().format(self._record()))
        assert entry["level"] == "WARNING"
        assert entry["logger"] == "estima.remote"
        assert entry["message"] == "Remote save failed"
        assert entry["line"] == 42
        assert "project_id" not in entry

    def test_store_extras_are_included(self):
        entry = json.loads(JSONFormatter().format(
            self._record(project_id="p-1", store="remote", operation="save_project", duration_ms=12.5)
        ))
        assert entry["project_id"] == "p-1"
        assert entry["store"] == "remote"
        assert entry["operation"] == "save_project"
        assert entry["duration_ms"] == 12.5

    def test_text_formatter_appends_store_context(self):
        line = StoreTextFormatter().format(self._record(store="local", project_id="p-9"))
        assert "Remote save failed" in line
        assert line.endswith("| project_id=p-9 store=local")

    def test_setup_logging_installs_single_handler(self):
        root = logging.getLogger()
        saved_handlers, saved_level = root.handlers[:], root.level
        try:
            setup_logging(level="debug", json_output=True)
            assert root.level == logging.DEBUG
            assert len(root.handlers) == 1
            assert isinstance(root.handlers[0].formatter, JSONFormatter)
            assert logging.getLogger("httpx").level == logging.WARNING
        finally:
            root.handlers = saved_handlers
            root.setLevel(saved_level)


class TestStoreCallTracking:

    def test_tracker_metrics(self):
        local_tracker = StoreCallTracker()
        local_tracker.record_call("local.save_project", 4.0)
        local_tracker.record_call("local.save_project", 6.0)
        local_tracker.record_call("remote.list_projects", 30.0)
        metrics = local_tracker.get_metrics()
        assert metrics["calls_by_operation"] == {"local.save_project": 2, "remote.list_projects": 1}
        assert metrics["avg_duration_ms"]["local.save_project"] == 5.0
        assert metrics["slowest_operation"] == "remote.list_projects"

        local_tracker.reset()
        assert local_tracker.get_metrics()["calls_by_operation"] == {}

    def test_timed_async_records_on_shared_tracker(self):
        class _Store:
            mode = StoreMode.REMOTE

            @timed_async
            async def get_project(self, project_id, owner=None):
                return project_id

        tracker.reset()
        assert asyncio.run(_Store().get_project("abc")) == "abc"
        assert tracker.get_metrics()["calls_by_operation"] == {"remote.get_project": 1}
