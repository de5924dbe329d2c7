"""
RemoteStore — cloud persistence for signed-in users over the Supabase
PostgREST interface.

Remote rows nest the estimate content under one ``data`` column:

    {id, user_id, name, data: {lineItems, priceMode}, created_at, updated_at}

while ``Project`` is flat; ``project_to_row`` / ``project_from_row`` are the
only places that know both shapes.  Inserts never carry an id: the database
generates it and it is read back from the ``return=representation`` body.

Every failure (transport error, non-2xx status, malformed body) is logged and
converted to ``None`` / ``[]`` / ``False``.
"""
import logging
from datetime import datetime, timezone
from typing import Any, Callable, Dict, List, Optional

import httpx

from estima.config import Settings
from estima.models.schemas import DEFAULT_PROJECT_NAME, PriceMode, Project
from estima.services.perf_monitor import timed_async
from estima.services.project_store import AuthUser, StoreMode

logger = logging.getLogger("estima.remote")

PREFER_UPSERT = "resolution=merge-duplicates,return=representation"
PREFER_INSERT = "return=representation"


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def project_to_row(project: Project, owner_id: str, updated_at: datetime) -> Dict[str, Any]:
    row: Dict[str, Any] = {
        "user_id": owner_id,
        "name": project.name,
        "data": {
            "lineItems": [item.to_json_dict() for item in project.line_items],
            "priceMode": PriceMode(project.price_mode).value,
        },
        "updated_at": updated_at.isoformat(),
    }
    if project.id:
        row["id"] = project.id
    return row


def project_from_row(row: Dict[str, Any]) -> Project:
    """Raises ``KeyError`` / ``ValueError`` for rows that are not project records."""
    data = row.get("data") or {}
    return Project(
        id=str(row["id"]),
        name=row.get("name") or DEFAULT_PROJECT_NAME,
        line_items=data.get("lineItems") or [],
        price_mode=data.get("priceMode") or PriceMode.TYPICAL,
        created_at=row.get("created_at") or row.get("updated_at"),
        updated_at=row.get("updated_at"),
    )


class RemoteStore:
    """Project CRUD against the hosted ``projects`` table, scoped to one user per call."""

    mode = StoreMode.REMOTE

    def __init__(
        self,
        base_url: str,
        anon_key: str,
        table: str = "projects",
        timeout: float = 10.0,
        client: Optional[httpx.AsyncClient] = None,
        clock: Callable[[], datetime] = _utcnow,
    ):
        self._rest_url = f"{base_url.rstrip('/')}/rest/v1/{table}"
        self._anon_key = anon_key
        self._clock = clock
        self._owns_client = client is None
        self._client = client or httpx.AsyncClient(timeout=timeout)

    async def aclose(self) -> None:
        if self._owns_client:
            await self._client.aclose()

    def _headers(self, owner: AuthUser, prefer: Optional[str] = None) -> Dict[str, str]:
        headers = {
            "apikey": self._anon_key,
            "Authorization": f"Bearer {owner.access_token or self._anon_key}",
            "Content-Type": "application/json",
            "Accept": "application/json",
        }
        if prefer:
            headers["Prefer"] = prefer
        return headers

    async def _request(
        self,
        operation: str,
        method: str,
        owner: AuthUser,
        params: Optional[Dict[str, str]] = None,
        json: Any = None,
        prefer: Optional[str] = None,
    ) -> Optional[httpx.Response]:
        try:
            response = await self._client.request(
                method,
                self._rest_url,
                params=params,
                json=json,
                headers=self._headers(owner, prefer),
            )
            response.raise_for_status()
            return response
        except httpx.HTTPStatusError as exc:
            logger.warning(
                f"Remote {operation} rejected ({exc.response.status_code}): {exc.response.text[:200]}"
            )
        except httpx.HTTPError as exc:
            logger.warning(f"Remote {operation} failed ({type(exc).__name__}: {exc})")
        return None

    def _rows(self, operation: str, response: Optional[httpx.Response]) -> List[Project]:
        if response is None:
            return []
        try:
            payload = response.json()
            if isinstance(payload, dict):
                payload = [payload]
            return [project_from_row(row) for row in payload]
        except (KeyError, ValueError, TypeError, AttributeError) as exc:
            logger.error(f"Remote {operation} returned a malformed body: {exc}")
            return []

    @staticmethod
    def _owner_filter(owner: AuthUser) -> Dict[str, str]:
        return {"user_id": f"eq.{owner.id}"}

    @timed_async
    async def save_project(self, project: Project, owner: Optional[AuthUser] = None) -> Optional[Project]:
        """Upsert when the project has an id, insert otherwise; returns the stored row."""
        if owner is None:
            logger.warning("Remote save skipped — no signed-in user")
            return None
        row = project_to_row(project, owner.id, self._clock())
        if project.id:
            response = await self._request(
                "save", "POST", owner, params={"on_conflict": "id"}, json=row, prefer=PREFER_UPSERT
            )
        else:
            response = await self._request("save", "POST", owner, json=row, prefer=PREFER_INSERT)
        if response is None:
            return None
        saved = self._rows("save", response)
        if not saved:
            logger.error("Remote save returned no project row")
            return None
        logger.debug("Project saved remotely", extra={"project_id": saved[0].id, "store": self.mode.value})
        return saved[0]

    @timed_async
    async def get_project(self, project_id: str, owner: Optional[AuthUser] = None) -> Optional[Project]:
        if owner is None:
            return None
        params = {"select": "*", "id": f"eq.{project_id}", **self._owner_filter(owner)}
        rows = self._rows("get", await self._request("get", "GET", owner, params=params))
        return rows[0] if rows else None

    @timed_async
    async def delete_project(self, project_id: str, owner: Optional[AuthUser] = None) -> bool:
        if owner is None:
            return False
        params = {"id": f"eq.{project_id}", **self._owner_filter(owner)}
        return await self._request("delete", "DELETE", owner, params=params) is not None

    @timed_async
    async def list_projects(self, owner: Optional[AuthUser] = None) -> List[Project]:
        if owner is None:
            return []
        params = {"select": "*", "order": "updated_at.desc", **self._owner_filter(owner)}
        return self._rows("list", await self._request("list", "GET", owner, params=params))

    @timed_async
    async def get_most_recent_project(self, owner: Optional[AuthUser] = None) -> Optional[Project]:
        if owner is None:
            return None
        params = {"select": "*", "order": "updated_at.desc", "limit": "1", **self._owner_filter(owner)}
        rows = self._rows("latest", await self._request("latest", "GET", owner, params=params))
        return rows[0] if rows else None


def build_remote_store(settings: Settings, client: Optional[httpx.AsyncClient] = None) -> Optional[RemoteStore]:
    """``None`` when credentials are missing: the app then runs local-only."""
    if not settings.remote_enabled:
        logger.warning("Remote store not configured — signed-in users will be saved locally")
        return None
    return RemoteStore(
        settings.supabase_url,
        settings.supabase_anon_key,
        table=settings.projects_table,
        timeout=settings.remote_timeout_s,
        client=client,
    )
