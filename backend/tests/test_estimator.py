"""
test_estimator.py — End-to-end wiring through create_estimator().

Real LocalStore on a temporary SQLite file, no remote credentials: the
estimator must come up local-only, save through the state machine and
restore the same project on the next start.
"""

import asyncio

from estima.config import Settings
from estima.main import create_estimator
from estima.services.catalog_seed import load_seed
from estima.services.project_state import Lifecycle
from estima.services.project_store import AuthState, StoreMode


def _settings(db_url):
    return Settings(db_url=db_url, save_debounce_ms=10, log_json=False)


class TestEstimator:

    def test_project_survives_restart(self, db_url, seed):
        async def first_session():
            estimator = await create_estimator(_settings(db_url), seed=seed, auth=AuthState.signed_out())
            steel = await estimator.materials(category="steel")
            estimator.state.set_project_name("Perimeter wall")
            estimator.state.add_item(steel[0], 12)
            await estimator.aclose()
            return estimator

        async def second_session():
            estimator = await create_estimator(_settings(db_url), seed=seed, auth=AuthState.signed_out())
            try:
                return estimator.state
            finally:
                await estimator.aclose()

        first = _run(first_session())
        assert first.remote_store is None
        assert first.state.mode == StoreMode.LOCAL

        state = _run(second_session())
        assert state.lifecycle == Lifecycle.LOADED
        assert state.project_name == "Perimeter wall"
        assert state.line_items[0].material.id == "rebar-10mm"
        assert state.line_items[0].quantity == 12
        assert state.current_total == 12 * 205

    def test_catalog_queries_use_stored_prices(self, db_url, seed):
        async def scenario():
            estimator = await create_estimator(_settings(db_url), seed=seed)
            try:
                await estimator.local_store.update_material_price(
                    "plywood-3-4", {"low": 1400, "typical": 1550, "high": 1800}
                )
                return (
                    await estimator.materials(text="plywood"),
                    await estimator.materials(source="Hardware stores"),
                    await estimator.categories(),
                    estimator.state.lifecycle,
                )
            finally:
                await estimator.aclose()

        plywood, hardware, categories, lifecycle = _run(scenario())
        assert plywood[0].prices.typical == 1550
        assert [m.id for m in hardware] == ["cement-40kg", "rebar-10mm"]
        assert len(categories) == 3
        assert lifecycle == Lifecycle.UNINITIALIZED

    def test_bundled_catalog_loads(self):
        seed = load_seed()
        category_ids = {c.id for c in seed.categories}
        assert len(seed.materials) >= 10
        assert all(m.category in category_ids for m in seed.materials)
        assert all(m.prices.low <= m.prices.typical <= m.prices.high for m in seed.materials)


def _run(coro):
    return asyncio.run(coro)
