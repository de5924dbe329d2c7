"""
ProjectStateMachine — owns the single active project and decides where and
when it is persisted.

Lifecycle:  UNINITIALIZED -> LOADING -> EMPTY | LOADED
Save status (while a project is active):  IDLE | SAVING | SAVE_FAILED

Edits are applied synchronously and are visible immediately.  Each edit
re-arms one debounce timer; only the trailing edit of a burst produces a
save.  Saves are serialised by a lock, so a project that has never been
persisted cannot be inserted twice: the second save waits for the first,
then sees the adopted id and updates instead.

Identity is ``Unsaved`` or ``Saved(id, mode)``.  The id comes only from a
store's ``save_project`` return value; ``mode`` remembers which store owns
the record so ``clear_project`` deletes from the right place even after the
user signs in or out.

Store selection is explicit: every operation resolves the store from the
held ``AuthState`` (remote when a user is signed in and a remote store is
configured, local otherwise).
"""
import asyncio
import logging
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Dict, List, Optional, Union

from estima.config import DEFAULT_SAVE_DEBOUNCE_MS, DEFAULT_SAVE_TIMEOUT_S
from estima.models.schemas import (
    DEFAULT_PROJECT_NAME,
    LineItem,
    Material,
    PriceMode,
    Project,
    Totals,
)
from estima.services import project_reducer
from estima.services.debounce import Debouncer
from estima.services.errors import SaveFailed
from estima.services.pricing_engine import compute_totals, current_total, format_relative_date
from estima.services.project_store import AuthState, ProjectStore, StoreMode, mode_for

logger = logging.getLogger("estima.state")


class Lifecycle(str, Enum):
    UNINITIALIZED = "uninitialized"
    LOADING = "loading"
    EMPTY = "empty"
    LOADED = "loaded"


class SaveStatus(str, Enum):
    IDLE = "idle"
    SAVING = "saving"
    SAVE_FAILED = "save_failed"


@dataclass(frozen=True)
class Unsaved:
    """Never persisted by any store."""


@dataclass(frozen=True)
class Saved:
    id: str
    mode: StoreMode


UNSAVED = Unsaved()
ProjectIdentity = Union[Unsaved, Saved]


class ProjectStateMachine:
    def __init__(
        self,
        local_store: ProjectStore,
        remote_store: Optional[ProjectStore] = None,
        debounce_s: float = DEFAULT_SAVE_DEBOUNCE_MS / 1000.0,
        save_timeout_s: float = DEFAULT_SAVE_TIMEOUT_S,
    ):
        self._stores: Dict[StoreMode, ProjectStore] = {StoreMode.LOCAL: local_store}
        if remote_store is not None:
            self._stores[StoreMode.REMOTE] = remote_store
        self.save_timeout_s = save_timeout_s
        self._auth = AuthState.pending()
        self._debouncer = Debouncer(debounce_s, self._persist)
        self._save_lock = asyncio.Lock()
        self._load_started = False
        self._generation = 0
        self.lifecycle = Lifecycle.UNINITIALIZED
        self.save_status = SaveStatus.IDLE
        self.last_save_error: Optional[str] = None
        self._reset_fields(DEFAULT_PROJECT_NAME)

    def _reset_fields(self, name: str) -> None:
        self._identity: ProjectIdentity = UNSAVED
        self._name = name
        self._line_items: List[LineItem] = []
        self._price_mode = PriceMode.TYPICAL
        self._created_at: Optional[datetime] = None
        self.last_saved_at: Optional[datetime] = None
        self._revision = 0
        self._saved_revision = 0

    # ------------------------------------------------------------------
    # Read views
    # ------------------------------------------------------------------

    @property
    def auth(self) -> AuthState:
        return self._auth

    @property
    def mode(self) -> StoreMode:
        return mode_for(self._auth, StoreMode.REMOTE in self._stores)

    @property
    def identity(self) -> ProjectIdentity:
        return self._identity

    @property
    def project_id(self) -> Optional[str]:
        return self._identity.id if isinstance(self._identity, Saved) else None

    @property
    def project_name(self) -> str:
        return self._name

    @property
    def line_items(self) -> List[LineItem]:
        return list(self._line_items)

    @property
    def price_mode(self) -> PriceMode:
        return self._price_mode

    @property
    def project(self) -> Project:
        """Snapshot of the active project as it would be saved."""
        return Project(
            id=self.project_id,
            name=self._name,
            line_items=list(self._line_items),
            price_mode=self._price_mode,
            created_at=self._created_at,
            updated_at=self.last_saved_at,
        )

    @property
    def totals(self) -> Totals:
        return compute_totals(self._line_items)

    @property
    def current_total(self) -> float:
        return current_total(self.totals, self._price_mode)

    @property
    def has_unsaved_changes(self) -> bool:
        return self._revision != self._saved_revision

    def describe_save_status(self, now: Optional[datetime] = None) -> str:
        """Text for the persistent save indicator."""
        if self.save_status == SaveStatus.SAVING:
            return "Saving..."
        if self.save_status == SaveStatus.SAVE_FAILED:
            return "Could not save - changes are kept"
        if self.has_unsaved_changes:
            return "Unsaved changes"
        if self.last_saved_at is not None:
            when = format_relative_date(self.last_saved_at, now)
            return f"Saved {when.lower() if when in ('Today', 'Yesterday') else when}"
        return "Not saved yet"

    def _store(self, mode: Optional[StoreMode] = None) -> ProjectStore:
        return self._stores[mode or self.mode]

    # ------------------------------------------------------------------
    # Startup + auth
    # ------------------------------------------------------------------

    async def start(self, auth: Optional[AuthState] = None) -> None:
        """
        Load the most recently updated project from the store matching
        ``auth``.  Runs at most once; while auth is still loading the call
        only records the state and the load happens on the first
        ``set_auth`` that reports a loaded session.
        """
        if self._load_started:
            logger.debug("Startup load already done — ignoring start()")
            return
        if auth is not None:
            self._auth = auth
        if not self._auth.is_loaded:
            logger.debug("Auth not loaded yet — startup load deferred")
            return

        self._load_started = True
        self.lifecycle = Lifecycle.LOADING
        mode = self.mode
        generation = self._generation
        project = await self._store(mode).get_most_recent_project(owner=self._auth.user)

        if generation != self._generation:
            logger.info("Active project replaced during startup load — stored project not applied")
            return
        if project is not None:
            if self._revision:
                logger.warning("Edits made before the startup load finished were replaced by the stored project")
            self._apply_loaded(project, mode)
            logger.info("Loaded most recent project", extra={"project_id": project.id, "store": mode.value})
            return

        self.lifecycle = Lifecycle.LOADED if self._revision else Lifecycle.EMPTY
        if self._revision:
            self._schedule_save()

    async def set_auth(self, auth: AuthState) -> None:
        """
        Apply an auth change from the auth provider.

        Before the startup load this just records the state (and triggers the
        deferred load once auth is loaded).  Afterwards, a different user
        identity flushes pending edits to the store they were made against
        and starts a fresh project: edits never follow the user across a
        sign-in or sign-out.  Token refreshes for the same user only update
        the held credentials.
        """
        if not self._load_started:
            self._auth = auth
            if auth.is_loaded:
                await self.start()
            return

        if auth.user_id == self._auth.user_id:
            self._auth = auth
            return

        if self.lifecycle == Lifecycle.LOADING:
            # The in-flight startup load targets the previous identity's store;
            # discard it and load again for the new one.
            self._auth = auth
            self._load_started = False
            self._reset(DEFAULT_PROJECT_NAME)
            logger.info(f"Auth changed during startup load — reloading from the {self.mode.value} store")
            await self.start()
            return

        await self.flush()
        async with self._save_lock:
            previous_mode = self.mode
            self._auth = auth
            self._reset(DEFAULT_PROJECT_NAME)
        logger.info(f"Auth changed ({previous_mode.value} -> {self.mode.value}) — started a new project")

    # ------------------------------------------------------------------
    # Edits (synchronous; each schedules a debounced save)
    # ------------------------------------------------------------------

    def add_item(self, material: Material, quantity: int = 1) -> None:
        if int(quantity) <= 0:
            logger.debug(f"Ignoring add of {material.id} with quantity {quantity}")
            return
        self._line_items = project_reducer.add_item(self._line_items, material, quantity)
        self._changed()

    def remove_item(self, line_item_id: str) -> None:
        items = project_reducer.remove_item(self._line_items, line_item_id)
        if len(items) == len(self._line_items):
            return
        self._line_items = items
        self._changed()

    def update_quantity(self, line_item_id: str, quantity: int) -> None:
        if not any(item.id == line_item_id for item in self._line_items):
            return
        self._line_items = project_reducer.update_quantity(self._line_items, line_item_id, quantity)
        self._changed()

    def set_price_mode(self, mode: Union[PriceMode, str]) -> None:
        mode = PriceMode(mode)
        if mode == self._price_mode:
            return
        self._price_mode = mode
        self._changed()

    def set_project_name(self, name: Optional[str]) -> None:
        name = project_reducer.normalize_name(name)
        if name == self._name:
            return
        self._name = name
        self._changed()

    def _changed(self) -> None:
        self._revision += 1
        if self.lifecycle == Lifecycle.EMPTY:
            self.lifecycle = Lifecycle.LOADED
        self._schedule_save()

    def _schedule_save(self) -> None:
        if self.lifecycle in (Lifecycle.UNINITIALIZED, Lifecycle.LOADING):
            return
        if not self._line_items and isinstance(self._identity, Unsaved):
            # Nothing worth a record yet.
            self._debouncer.cancel()
            self._saved_revision = self._revision
            if self.save_status == SaveStatus.SAVE_FAILED:
                self.save_status = SaveStatus.IDLE
                self.last_save_error = None
            return
        self._debouncer.schedule()

    # ------------------------------------------------------------------
    # Persistence
    # ------------------------------------------------------------------

    async def flush(self) -> None:
        """Save now if a debounced save is pending; wait for any save in flight."""
        await self._debouncer.flush()

    async def save_now(self) -> None:
        """Explicit retry, e.g. after SAVE_FAILED."""
        self._debouncer.cancel()
        await self._debouncer.wait_idle()
        await self._persist()

    async def _persist(self) -> None:
        async with self._save_lock:
            if not self._line_items and isinstance(self._identity, Unsaved):
                return
            if isinstance(self._identity, Saved) and not self.has_unsaved_changes:
                return

            mode = self.mode
            generation, revision = self._generation, self._revision
            snapshot = self.project
            self.save_status = SaveStatus.SAVING
            try:
                saved = await self._save(mode, snapshot)
            except SaveFailed as exc:
                logger.warning(f"Save failed: {exc}", extra={"project_id": snapshot.id, "store": mode.value})
                if generation == self._generation:
                    self.save_status = SaveStatus.SAVE_FAILED
                    self.last_save_error = str(exc)
                return

            if generation != self._generation:
                logger.info("Project replaced while saving — result discarded", extra={"project_id": saved.id})
                return
            if isinstance(self._identity, Unsaved):
                self._identity = Saved(saved.id, mode)
                logger.info("Project persisted", extra={"project_id": saved.id, "store": mode.value})
            if self._created_at is None:
                self._created_at = saved.created_at
            self.last_saved_at = saved.updated_at
            self._saved_revision = revision
            self.save_status = SaveStatus.IDLE
            self.last_save_error = None

        # Edits that landed mid-save with no timer armed (e.g. the last item
        # was removed from a project that was still being inserted).
        if self.has_unsaved_changes and not self._debouncer.pending:
            self._schedule_save()

    async def _save(self, mode: StoreMode, project: Project) -> Project:
        store = self._stores[mode]
        try:
            saved = await asyncio.wait_for(
                store.save_project(project, owner=self._auth.user),
                timeout=self.save_timeout_s,
            )
        except asyncio.TimeoutError as exc:
            raise SaveFailed(f"{mode.value} save timed out after {self.save_timeout_s}s") from exc
        except Exception as exc:
            logger.exception("Store raised during save")
            raise SaveFailed(f"{mode.value} save raised {type(exc).__name__}: {exc}") from exc
        if saved is None or not saved.id:
            raise SaveFailed(f"{mode.value} store did not persist the project")
        return saved

    # ------------------------------------------------------------------
    # Whole-project operations
    # ------------------------------------------------------------------

    async def clear_project(self) -> bool:
        """
        Delete the persisted record (from the store that saved it) and start
        an empty project.  Returns whether a stored record was deleted.
        """
        self._debouncer.cancel()
        await self._debouncer.wait_idle()
        async with self._save_lock:
            identity = self._identity
            deleted = False
            if isinstance(identity, Saved):
                deleted = await self._stores[identity.mode].delete_project(identity.id, owner=self._auth.user)
                if deleted:
                    logger.info("Project deleted", extra={"project_id": identity.id, "store": identity.mode.value})
                else:
                    logger.warning(
                        "Project delete failed — clearing locally anyway",
                        extra={"project_id": identity.id, "store": identity.mode.value},
                    )
            self._reset(DEFAULT_PROJECT_NAME)
        return deleted

    async def load_project(self, project_id: str) -> bool:
        """Replace the active project with ``project_id`` from the current-auth store."""
        await self.flush()
        mode = self.mode
        project = await self._store(mode).get_project(project_id, owner=self._auth.user)
        if project is None:
            logger.info(f"Project {project_id} not found in {mode.value} store")
            return False
        async with self._save_lock:
            self._apply_loaded(project, mode)
        return True

    async def create_new_project(self, name: str = DEFAULT_PROJECT_NAME) -> None:
        """Start a fresh project; the previous one stays stored (pending edits are saved first)."""
        await self.flush()
        async with self._save_lock:
            self._reset(DEFAULT_PROJECT_NAME)
        self.set_project_name(name)

    async def list_projects(self) -> List[Project]:
        return await self._store().list_projects(owner=self._auth.user)

    async def delete_project(self, project_id: str) -> bool:
        """Delete a stored project; deleting the active one clears it."""
        if self.project_id == project_id:
            return await self.clear_project()
        return await self._store().delete_project(project_id, owner=self._auth.user)

    async def close(self) -> None:
        await self.flush()

    def _apply_loaded(self, project: Project, mode: StoreMode) -> None:
        self._debouncer.cancel()
        self._generation += 1
        self._load_started = True
        self._identity = Saved(project.id, mode)
        self._name = project_reducer.normalize_name(project.name)
        self._line_items = list(project.line_items)
        self._price_mode = PriceMode(project.price_mode)
        self._created_at = project.created_at
        self.last_saved_at = project.updated_at
        self._revision = 0
        self._saved_revision = 0
        self.save_status = SaveStatus.IDLE
        self.last_save_error = None
        self.lifecycle = Lifecycle.LOADED

    def _reset(self, name: str) -> None:
        self._debouncer.cancel()
        self._generation += 1
        self._reset_fields(name)
        self.save_status = SaveStatus.IDLE
        self.last_save_error = None
        self.lifecycle = Lifecycle.EMPTY if self._load_started else Lifecycle.UNINITIALIZED
