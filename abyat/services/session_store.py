"""Per-user session aggregate and the keyed store that owns it.

A user either has no record in the store (no session) or exactly one
``UserSession``. The edit session, facet context and inspiration cache only
exist inside that record.
"""

import asyncio
import time
import uuid
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from typing import Any, Optional

from abyat.schemas.design import DesignResponse
from abyat.services.design_state import DesignSearchState
from abyat.services.facet_catalog import FacetOption
from abyat.services.state_machine import FacetStep


def generate_session_id() -> str:
    return f"sess_{uuid.uuid4()}"


@dataclass
class FacetContext:
    """What the last option list meant, so a bare reply id can be resolved."""

    facet_key: Optional[str]
    options: list[FacetOption]
    timestamp: float = field(default_factory=time.time)
    preview: bool = False
    recovered: bool = False


@dataclass
class InspirationAction:
    action: str
    index: Optional[int] = None
    primary_image_url: Optional[str] = None
    primary_caption: Optional[str] = None
    primary_media_id: Optional[str] = None
    primary_whatsapp_id: Optional[str] = None


@dataclass
class InspirationContext:
    preview: Optional[DesignResponse] = None
    timestamp: float = field(default_factory=time.time)
    error: bool = False
    actions: dict[str, InspirationAction] = field(default_factory=dict)

    @property
    def count(self) -> int:
        return len(self.preview.inspirations) if self.preview else 0


@dataclass
class EditImage:
    source_url: Optional[str] = None
    uploaded_url: Optional[str] = None
    media_id: Optional[str] = None
    whatsapp_media_id: Optional[str] = None
    is_primary: bool = False
    caption: Optional[str] = None
    content: Optional[bytes] = None
    mime_type: Optional[str] = None
    filename: Optional[str] = None

    @property
    def url(self) -> Optional[str]:
        return self.uploaded_url or self.source_url


@dataclass
class EditSession:
    started_at: float = field(default_factory=time.time)
    last_interaction_at: float = field(default_factory=time.time)
    images: list[EditImage] = field(default_factory=list)
    pending_query: Optional[str] = None
    actions: dict[str, str] = field(default_factory=dict)

    @property
    def primary_image(self) -> Optional[EditImage]:
        return next((image for image in self.images if image.is_primary), None)

    @property
    def user_image_count(self) -> int:
        return sum(1 for image in self.images if not image.is_primary)

    def touch(self) -> None:
        self.last_interaction_at = time.time()


@dataclass
class UserSession:
    user_id: str
    session_id: str = field(default_factory=generate_session_id)
    step: Optional[str] = None
    facet_step: FacetStep = FacetStep.SESSION_RESET
    design_state: DesignSearchState = field(default_factory=DesignSearchState)
    facet_counts: dict[str, Any] = field(default_factory=dict)
    facet_context: Optional[FacetContext] = None
    inspiration: Optional[InspirationContext] = None
    edit_session: Optional[EditSession] = None
    created_at: float = field(default_factory=time.time)
    last_seen_at: float = field(default_factory=time.time)


class SessionStore:
    """In-process map of UserId -> UserSession with one lock per user."""

    def __init__(self):
        self._sessions: dict[str, UserSession] = {}
        # user_id -> (lock, number of holders and waiters)
        self._locks: dict[str, tuple[asyncio.Lock, int]] = {}

    @asynccontextmanager
    async def locked(self, user_id: str):
        """Serialize everything that touches one user's session."""
        lock, holders = self._locks.get(user_id, (None, 0))
        if lock is None:
            lock = asyncio.Lock()
        self._locks[user_id] = (lock, holders + 1)
        try:
            async with lock:
                yield
        finally:
            lock, holders = self._locks[user_id]
            if holders <= 1:
                del self._locks[user_id]
            else:
                self._locks[user_id] = (lock, holders - 1)

    def is_locked(self, user_id: str) -> bool:
        return user_id in self._locks

    def get(self, user_id: str) -> Optional[UserSession]:
        return self._sessions.get(user_id)

    def create(self, user_id: str) -> UserSession:
        """Replace any existing record with a fresh session."""
        session = UserSession(user_id=user_id)
        self._sessions[user_id] = session
        return session

    def delete(self, user_id: str) -> Optional[UserSession]:
        return self._sessions.pop(user_id, None)

    def __contains__(self, user_id: str) -> bool:
        return user_id in self._sessions

    def __len__(self) -> int:
        return len(self._sessions)

    def user_ids(self) -> list[str]:
        return list(self._sessions)
