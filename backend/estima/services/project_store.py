"""
ProjectStore capability — the contract both persistence adapters implement,
plus the auth values that select between them.

The state machine never inspects a global session: it holds an explicit
``AuthState`` and resolves the store for every operation through
``mode_for``.
"""
from dataclasses import dataclass
from enum import Enum
from typing import List, Optional, Protocol, runtime_checkable

from estima.models.schemas import Project


class StoreMode(str, Enum):
    LOCAL = "local"
    REMOTE = "remote"


@dataclass(frozen=True)
class AuthUser:
    """Identity handed over by the external auth provider."""
    id: str
    access_token: Optional[str] = None


@dataclass(frozen=True)
class AuthState:
    user: Optional[AuthUser] = None
    is_loaded: bool = True

    @classmethod
    def signed_out(cls) -> "AuthState":
        return cls(user=None, is_loaded=True)

    @classmethod
    def signed_in(cls, user_id: str, access_token: Optional[str] = None) -> "AuthState":
        return cls(user=AuthUser(id=user_id, access_token=access_token), is_loaded=True)

    @classmethod
    def pending(cls) -> "AuthState":
        """Auth provider has not reported a session yet."""
        return cls(user=None, is_loaded=False)

    @property
    def user_id(self) -> Optional[str]:
        return self.user.id if self.user else None


@runtime_checkable
class ProjectStore(Protocol):
    """
    Async project CRUD.  Implementations never raise for store failures:
    lookups return ``None``/``[]``, writes return ``None``/``False``.

    ``save_project`` returns the persisted project carrying the authoritative
    id; callers must adopt that id rather than generate their own.
    """
    mode: StoreMode

    async def save_project(self, project: Project, owner: Optional[AuthUser] = None) -> Optional[Project]: ...

    async def get_project(self, project_id: str, owner: Optional[AuthUser] = None) -> Optional[Project]: ...

    async def delete_project(self, project_id: str, owner: Optional[AuthUser] = None) -> bool: ...

    async def list_projects(self, owner: Optional[AuthUser] = None) -> List[Project]: ...

    async def get_most_recent_project(self, owner: Optional[AuthUser] = None) -> Optional[Project]: ...


def mode_for(auth: AuthState, remote_available: bool) -> StoreMode:
    """Remote only when a user is signed in and a remote store is configured."""
    if auth.user is not None and remote_available:
        return StoreMode.REMOTE
    return StoreMode.LOCAL
