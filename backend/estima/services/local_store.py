"""
LocalStore — offline persistence over an embedded SQLite database.

Holds two kinds of records:
  - reference data (materials, categories), reconciled against the bundled
    seed each time the store is opened
  - projects (user data), never touched by schema upgrades or reseeding

``open()`` runs once per store: create tables, apply the schema-version
upgrade, reconcile the seed.  Every read awaits that same open task, so no
caller can observe a half-seeded catalog.  When opening fails the store stays
"not ready": reads return empty results and writes are skipped.
"""
import asyncio
import logging
import time
from datetime import date, datetime, timezone
from typing import Any, Awaitable, Callable, Dict, List, Optional, Union

from sqlalchemy import delete, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker

from estima.config import SCHEMA_VERSION
from estima.db import Base, create_session_factory, create_store_engine, normalize_db_url
from estima.models.orm_models import (
    CategoryRecord,
    MaterialRecord,
    ProjectRecord,
    StoreMeta,
    gen_uuid,
)
from estima.models.schemas import (
    CatalogSeed,
    Category,
    LineItem,
    Material,
    PriceMode,
    Prices,
    Project,
)
from estima.services.errors import StoreUnavailable
from estima.services.perf_monitor import timed_async
from estima.services.project_store import AuthUser, StoreMode

logger = logging.getLogger("estima.local")

SCHEMA_VERSION_KEY = "schema_version"


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _as_utc(value: Optional[datetime]) -> Optional[datetime]:
    # SQLite hands back naive datetimes; everything written here is UTC.
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def _material_from_record(record: MaterialRecord) -> Material:
    return Material(
        id=record.id,
        name=record.name,
        category=record.category,
        unit=record.unit,
        prices=Prices(low=record.price_low, typical=record.price_typical, high=record.price_high),
        sources=list(record.sources or []),
        last_updated=record.last_updated,
        notes=record.notes,
    )


def _material_to_record(material: Material) -> MaterialRecord:
    return MaterialRecord(
        id=material.id,
        name=material.name,
        category=material.category,
        unit=material.unit,
        price_low=material.prices.low,
        price_typical=material.prices.typical,
        price_high=material.prices.high,
        sources=list(material.sources),
        last_updated=material.last_updated,
        notes=material.notes,
    )


def _project_from_record(record: ProjectRecord) -> Project:
    return Project(
        id=record.id,
        name=record.name,
        line_items=[LineItem.model_validate(item) for item in (record.line_items or [])],
        price_mode=record.price_mode or PriceMode.TYPICAL,
        created_at=_as_utc(record.created_at),
        updated_at=_as_utc(record.updated_at),
    )


class LocalStore:
    """SQLite-backed store for the material catalog and signed-out projects."""

    mode = StoreMode.LOCAL

    def __init__(
        self,
        db_url: str,
        schema_version: int = SCHEMA_VERSION,
        clock: Callable[[], datetime] = _utcnow,
    ):
        self.db_url = normalize_db_url(db_url)
        self.schema_version = schema_version
        self._clock = clock
        self._engine: Optional[AsyncEngine] = None
        self._sessions: Optional[async_sessionmaker] = None
        self._open_task: Optional[asyncio.Task] = None
        self._seed: Optional[CatalogSeed] = None
        self.is_ready = False
        self.open_error: Optional[StoreUnavailable] = None

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def open(self, seed: Optional[CatalogSeed] = None) -> bool:
        """
        Open the store and reconcile ``seed`` into it.  Idempotent: repeated
        or concurrent calls share the first attempt (and its seed).
        Returns whether the store is ready.
        """
        if self._open_task is None:
            self._seed = seed
            self._open_task = asyncio.ensure_future(self._open())
        return await asyncio.shield(self._open_task)

    async def _open(self) -> bool:
        try:
            self._engine = create_store_engine(self.db_url)
            self._sessions = create_session_factory(self._engine)
            async with self._engine.begin() as conn:
                await conn.run_sync(Base.metadata.create_all)
            async with self._sessions() as session:
                async with session.begin():
                    await self._migrate(session)
                    if self._seed is not None:
                        counts = await self._reconcile(session, self._seed)
                        logger.info(
                            f"Catalog reconciled: {counts['categories']} categories, "
                            f"{counts['materials_added']} new materials"
                        )
        except Exception as exc:
            self.open_error = StoreUnavailable(f"Local store failed to open: {exc}")
            logger.error(f"Local store unavailable ({self.db_url}): {exc}")
            return False
        self.is_ready = True
        logger.info("Local store ready.")
        return True

    async def close(self) -> None:
        if self._open_task is not None and not self._open_task.done():
            await asyncio.shield(self._open_task)
        if self._engine is not None:
            await self._engine.dispose()
        self.is_ready = False

    async def _ready(self) -> bool:
        if self._open_task is None:
            return False
        return await asyncio.shield(self._open_task)

    async def _run(self, operation: str, work: Callable[[AsyncSession], Awaitable[Any]], default: Any = None) -> Any:
        """Run ``work`` in one transaction; store failures become ``default``."""
        if not await self._ready():
            logger.debug(f"Local store not ready — {operation} skipped")
            return default
        try:
            async with self._sessions() as session:
                async with session.begin():
                    return await work(session)
        except (SQLAlchemyError, ValueError) as exc:
            logger.error(f"Local store {operation} failed: {exc}")
            return default

    # ------------------------------------------------------------------
    # Schema + seed
    # ------------------------------------------------------------------

    async def _migrate(self, session: AsyncSession) -> None:
        meta = await session.get(StoreMeta, SCHEMA_VERSION_KEY)
        stored_version = int(meta.value) if meta is not None else 0
        if stored_version >= self.schema_version:
            if stored_version > self.schema_version:
                logger.warning(
                    f"Local store schema v{stored_version} is newer than v{self.schema_version} — leaving it as is"
                )
            return

        # Reference data only; projects survive every upgrade.
        await session.execute(delete(MaterialRecord))
        await session.execute(delete(CategoryRecord))
        if meta is None:
            session.add(StoreMeta(key=SCHEMA_VERSION_KEY, value=str(self.schema_version)))
        else:
            meta.value = str(self.schema_version)
        logger.info(f"Local store upgraded v{stored_version} -> v{self.schema_version}; catalog will be reseeded")

    async def _reconcile(self, session: AsyncSession, seed: CatalogSeed) -> Dict[str, int]:
        for category in seed.categories:
            await session.merge(CategoryRecord(id=category.id, name=category.name, icon=category.icon))

        existing = set((await session.execute(select(MaterialRecord.id))).scalars().all())
        added = 0
        for material in seed.materials:
            # A stored material may carry user-edited prices: never overwrite it.
            if material.id in existing:
                continue
            session.add(_material_to_record(material))
            existing.add(material.id)
            added += 1
        return {"categories": len(seed.categories), "materials_added": added}

    async def reconcile_catalog(self, seed: CatalogSeed) -> Optional[Dict[str, int]]:
        """
        Upsert every seed category; insert only materials whose id is new.
        Returns ``{"categories": n, "materials_added": n}`` or ``None`` when
        the store is unavailable.
        """
        return await self._run("reconcile_catalog", lambda session: self._reconcile(session, seed))

    # ------------------------------------------------------------------
    # Materials & categories
    # ------------------------------------------------------------------

    async def list_materials(self) -> List[Material]:
        async def work(session):
            result = await session.execute(select(MaterialRecord).order_by(MaterialRecord.id))
            return [_material_from_record(r) for r in result.scalars().all()]
        return await self._run("list_materials", work, default=[])

    async def list_categories(self) -> List[Category]:
        async def work(session):
            result = await session.execute(select(CategoryRecord).order_by(CategoryRecord.id))
            return [Category(id=r.id, name=r.name, icon=r.icon) for r in result.scalars().all()]
        return await self._run("list_categories", work, default=[])

    async def find_materials(self, predicate: Callable[[Material], bool]) -> List[Material]:
        return [m for m in await self.list_materials() if predicate(m)]

    async def get_material(self, material_id: str) -> Optional[Material]:
        async def work(session):
            record = await session.get(MaterialRecord, material_id)
            return _material_from_record(record) if record is not None else None
        return await self._run("get_material", work)

    async def get_materials_by_category(self, category_id: str) -> List[Material]:
        async def work(session):
            result = await session.execute(
                select(MaterialRecord)
                .where(MaterialRecord.category == category_id)
                .order_by(MaterialRecord.id)
            )
            return [_material_from_record(r) for r in result.scalars().all()]
        return await self._run("get_materials_by_category", work, default=[])

    async def search_materials(self, query: str) -> List[Material]:
        """Case-insensitive match on name, category or unit; a blank query finds nothing."""
        needle = (query or "").strip().lower()
        if not needle:
            return []
        return await self.find_materials(
            lambda m: needle in m.name.lower() or needle in m.category.lower() or needle in m.unit.lower()
        )

    async def update_material_price(
        self,
        material_id: str,
        prices: Union[Prices, Dict[str, float]],
        notes: Optional[str] = None,
    ) -> Optional[Material]:
        """Replace a material's prices and stamp ``last_updated``.  ``None`` if the id is unknown."""
        new_prices = Prices.model_validate(prices)
        today = self._today()

        async def work(session):
            record = await session.get(MaterialRecord, material_id)
            if record is None:
                return None
            record.price_low = new_prices.low
            record.price_typical = new_prices.typical
            record.price_high = new_prices.high
            record.last_updated = today
            if notes:
                record.notes = notes
            return _material_from_record(record)
        return await self._run("update_material_price", work)

    async def add_material(self, material: Material) -> Optional[Material]:
        """Store a user-defined material; a blank id becomes ``custom-<epoch ms>``."""
        new_material = material.model_copy(update={
            "id": material.id or f"custom-{int(time.time() * 1000)}",
            "last_updated": self._today(),
        })

        async def work(session):
            await session.merge(_material_to_record(new_material))
            return new_material
        return await self._run("add_material", work)

    async def delete_material(self, material_id: str) -> bool:
        async def work(session):
            await session.execute(delete(MaterialRecord).where(MaterialRecord.id == material_id))
            return True
        return await self._run("delete_material", work, default=False)

    # ------------------------------------------------------------------
    # Projects
    # ------------------------------------------------------------------

    @timed_async
    async def save_project(self, project: Project, owner: Optional[AuthUser] = None) -> Optional[Project]:
        """
        Write the full project record.  A project without an id gets a new
        uuid and ``created_at``; ``updated_at`` is always stamped now.
        """
        now = self._clock()

        async def work(session):
            existing = await session.get(ProjectRecord, project.id) if project.id else None
            record = existing if existing is not None else ProjectRecord(id=project.id or gen_uuid())
            record.name = project.name
            record.line_items = [item.to_json_dict() for item in project.line_items]
            record.price_mode = PriceMode(project.price_mode).value
            if existing is None:
                record.created_at = project.created_at or now
                session.add(record)
            record.updated_at = now
            await session.flush()
            return _project_from_record(record)
        saved = await self._run("save_project", work)
        if saved is not None:
            logger.debug("Project saved locally", extra={"project_id": saved.id, "store": self.mode.value})
        return saved

    @timed_async
    async def get_project(self, project_id: str, owner: Optional[AuthUser] = None) -> Optional[Project]:
        async def work(session):
            record = await session.get(ProjectRecord, project_id)
            return _project_from_record(record) if record is not None else None
        return await self._run("get_project", work)

    @timed_async
    async def delete_project(self, project_id: str, owner: Optional[AuthUser] = None) -> bool:
        """Remove the record; ``True`` once the delete has been committed (missing ids included)."""
        async def work(session):
            await session.execute(delete(ProjectRecord).where(ProjectRecord.id == project_id))
            return True
        return await self._run("delete_project", work, default=False)

    @timed_async
    async def list_projects(self, owner: Optional[AuthUser] = None) -> List[Project]:
        async def work(session):
            result = await session.execute(select(ProjectRecord).order_by(ProjectRecord.updated_at.desc()))
            return [_project_from_record(r) for r in result.scalars().all()]
        return await self._run("list_projects", work, default=[])

    @timed_async
    async def get_most_recent_project(self, owner: Optional[AuthUser] = None) -> Optional[Project]:
        async def work(session):
            result = await session.execute(
                select(ProjectRecord).order_by(ProjectRecord.updated_at.desc()).limit(1)
            )
            record = result.scalars().first()
            return _project_from_record(record) if record is not None else None
        return await self._run("get_most_recent_project", work)

    def _today(self) -> date:
        return self._clock().date()
