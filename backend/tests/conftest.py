"""
conftest.py — Shared pytest fixtures for the Estima test suite.

Store fixtures:
    ``db_url`` points at a throwaway SQLite file under ``tmp_path``.
    ``fake_store_factory`` builds in-memory ProjectStore doubles whose
    failures, delays and id generation are controllable per test.

Async scenarios are written as ``async def`` helpers and driven with
``asyncio.run`` from ordinary test functions.

Import-path bootstrapping:
    The ``backend/`` directory is inserted into sys.path so that all
    ``estima.*`` imports resolve correctly regardless of where pytest is invoked.
"""

import asyncio
import sys
import os
from datetime import datetime, timedelta, timezone

import pytest

# ---------------------------------------------------------------------------
# Ensure ``backend/`` is on the import path before any estima imports occur.
# ---------------------------------------------------------------------------
_BACKEND_DIR = os.path.dirname(os.path.dirname(os.path.abspath(__file__)))
if _BACKEND_DIR not in sys.path:
    sys.path.insert(0, _BACKEND_DIR)

from estima.models.schemas import CatalogSeed, Category, Material, Prices  # noqa: E402
from estima.services.project_store import StoreMode  # noqa: E402


def make_material(material_id="cement-40kg", low=245.0, typical=260.0, high=285.0, **overrides):
    fields = {
        "id": material_id,
        "name": overrides.pop("name", f"Material {material_id}"),
        "category": overrides.pop("category", "cement"),
        "unit": overrides.pop("unit", "bag"),
        "prices": Prices(low=low, typical=typical, high=high),
        "sources": overrides.pop("sources", ["Hardware stores"]),
    }
    fields.update(overrides)
    return Material(**fields)


# ---------------------------------------------------------------------------
# Catalog fixtures
# ---------------------------------------------------------------------------

@pytest.fixture
def cement():
    return make_material("cement-40kg", 245, 260, 285, name="Portland Cement (40kg)", unit="bag")


@pytest.fixture
def rebar():
    return make_material(
        "rebar-10mm", 185, 205, 230,
        name="Deformed Bar 10mm", category="steel", unit="pc",
        sources=["Hardware stores", "Steel dealers"],
    )


@pytest.fixture
def plywood():
    return make_material(
        "plywood-3-4", 1350, 1500, 1750,
        name="Marine Plywood 3/4", category="lumber", unit="sheet",
        sources=["Lumber yards"],
    )


@pytest.fixture
def catalog(cement, rebar, plywood):
    return [cement, rebar, plywood]


@pytest.fixture
def seed(catalog):
    """Seed with three materials and three categories."""
    return CatalogSeed(
        materials=catalog,
        categories=[
            Category(id="cement", name="Cement", icon="package"),
            Category(id="steel", name="Steel", icon="construction"),
            Category(id="lumber", name="Lumber", icon="trees"),
        ],
    )


@pytest.fixture
def db_url(tmp_path):
    return f"sqlite+aiosqlite:///{tmp_path / 'estima.sqlite3'}"


# ---------------------------------------------------------------------------
# ProjectStore doubles
# ---------------------------------------------------------------------------

class FakeProjectStore:
    """
    In-memory ProjectStore.

    ``fail_saves``   : save_project returns None (transient failure)
    ``save_delay``   : seconds each save_project call sleeps before answering
    ``load_delay``   : seconds get_most_recent_project sleeps before answering
    Ids are generated as ``<mode>-<n>`` so tests can tell which store issued them.
    """

    def __init__(self, mode: StoreMode):
        self.mode = mode
        self.records = {}
        self.save_calls = []
        self.delete_calls = []
        self.owners_seen = []
        self.fail_saves = False
        self.save_delay = 0.0
        self.load_delay = 0.0
        self.get_calls = []
        self._seq = 0
        self._tick = datetime(2025, 1, 1, tzinfo=timezone.utc)

    def _now(self):
        self._tick += timedelta(seconds=1)
        return self._tick

    async def save_project(self, project, owner=None):
        self.save_calls.append(project)
        self.owners_seen.append(owner)
        if self.save_delay:
            await asyncio.sleep(self.save_delay)
        if self.fail_saves:
            return None
        project_id = project.id
        if project_id is None:
            self._seq += 1
            project_id = f"{self.mode.value}-{self._seq}"
        existing = self.records.get(project_id)
        now = self._now()
        saved = project.model_copy(update={
            "id": project_id,
            "created_at": existing.created_at if existing else now,
            "updated_at": now,
        })
        self.records[project_id] = saved
        return saved

    async def get_project(self, project_id, owner=None):
        self.get_calls.append((project_id, owner))
        return self.records.get(project_id)

    async def delete_project(self, project_id, owner=None):
        self.delete_calls.append(project_id)
        self.records.pop(project_id, None)
        return True

    async def list_projects(self, owner=None):
        return sorted(self.records.values(), key=lambda p: p.updated_at, reverse=True)

    async def get_most_recent_project(self, owner=None):
        if self.load_delay:
            await asyncio.sleep(self.load_delay)
        projects = await self.list_projects(owner)
        return projects[0] if projects else None


@pytest.fixture
def fake_store_factory():
    """Callable: ``fake_store_factory(StoreMode.LOCAL)`` -> FakeProjectStore."""
    return FakeProjectStore
