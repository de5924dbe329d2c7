"""
Estima wiring — builds the stores and the project state machine from
configuration.

    estimator = await create_estimator(auth=AuthState.signed_out())
    estimator.state.add_item(material, 4)
    ...
    await estimator.aclose()

Missing remote credentials never fail startup: the estimator runs with the
local store only and signed-in users are saved locally.
"""
import logging
from dataclasses import dataclass
from typing import List, Optional

import httpx

from estima.config import Settings
from estima.models.schemas import CatalogSeed, Category, Material
from estima.services.catalog_query import filter_materials
from estima.services.catalog_seed import load_seed
from estima.services.local_store import LocalStore
from estima.services.logging_config import setup_logging
from estima.services.project_state import ProjectStateMachine
from estima.services.project_store import AuthState
from estima.services.remote_store import RemoteStore, build_remote_store

logger = logging.getLogger("estima")


@dataclass
class Estimator:
    settings: Settings
    local_store: LocalStore
    remote_store: Optional[RemoteStore]
    state: ProjectStateMachine

    async def materials(
        self,
        category: Optional[str] = None,
        source: Optional[str] = None,
        text: Optional[str] = None,
    ) -> List[Material]:
        """Current catalog (user-edited prices included), filtered."""
        return filter_materials(await self.local_store.list_materials(), category, source, text)

    async def categories(self) -> List[Category]:
        return await self.local_store.list_categories()

    async def aclose(self) -> None:
        await self.state.close()
        if self.remote_store is not None:
            await self.remote_store.aclose()
        await self.local_store.close()


async def create_estimator(
    settings: Optional[Settings] = None,
    seed: Optional[CatalogSeed] = None,
    auth: Optional[AuthState] = None,
    http_client: Optional[httpx.AsyncClient] = None,
    configure_logging: bool = False,
) -> Estimator:
    """
    Open the local store (reconciling ``seed``, or the bundled catalog),
    build the remote store when configured, and create the state machine.
    When ``auth`` is given the startup project load runs before returning.
    """
    settings = settings or Settings.from_env()
    if configure_logging:
        setup_logging(level=settings.log_level, json_output=settings.log_json)

    local_store = LocalStore(settings.db_url, schema_version=settings.schema_version)
    if not await local_store.open(seed if seed is not None else load_seed()):
        logger.warning("Local store unavailable — catalog empty and local saves disabled")

    remote_store = build_remote_store(settings, client=http_client)
    state = ProjectStateMachine(
        local_store,
        remote_store,
        debounce_s=settings.save_debounce_s,
        save_timeout_s=settings.save_timeout_s,
    )
    if auth is not None:
        await state.start(auth)
    return Estimator(settings=settings, local_store=local_store, remote_store=remote_store, state=state)
