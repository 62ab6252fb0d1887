"""Inactivity timers for the main session and the edit sub-session.

Each user has at most one pending timer of each kind. Scheduling a timer
cancels the previous one, and every firing runs under the user's lock so it
is serialized against live requests.
"""

import asyncio
import time
from typing import Awaitable, Callable, Optional

import httpx

from abyat.logging_config import get_logger
from abyat.services.session_store import SessionStore, UserSession

logger = get_logger("session_service")

EditExpiredCallback = Callable[[UserSession], Awaitable[None]]


def describe_window(seconds: float) -> str:
    if seconds >= 60 and seconds % 60 == 0:
        minutes = int(seconds // 60)
        return f"{minutes} minute{'s' if minutes != 1 else ''}"
    return f"{int(seconds)} seconds"


class SessionService:
    def __init__(
        self,
        store: SessionStore,
        session_timeout: float = 300,
        edit_session_timeout: float = 120,
        gateway_url: Optional[str] = None,
        http_timeout: float = 30.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.store = store
        self.session_timeout = session_timeout
        self.edit_session_timeout = edit_session_timeout
        self.gateway_url = gateway_url
        self.http_timeout = http_timeout
        self._transport = transport
        self._main_timers: dict[str, asyncio.Task] = {}
        self._edit_timers: dict[str, asyncio.Task] = {}
        self.on_edit_expired: Optional[EditExpiredCallback] = None

    def touch(self, user_id: str) -> None:
        """Record activity and restart the main inactivity window."""
        session = self.store.get(user_id)
        if session is not None:
            session.last_seen_at = time.time()
        self._reschedule(self._main_timers, user_id, self._expire_after(user_id))

    def schedule_edit_timeout(self, user_id: str) -> None:
        self._reschedule(self._edit_timers, user_id, self._expire_edit_after(user_id))

    def cancel_edit_timeout(self, user_id: str) -> None:
        self._cancel(self._edit_timers, user_id)

    def has_timer(self, user_id: str) -> bool:
        return user_id in self._main_timers

    def has_edit_timer(self, user_id: str) -> bool:
        return user_id in self._edit_timers

    def _reschedule(self, timers: dict[str, asyncio.Task], user_id: str, coro) -> None:
        self._cancel(timers, user_id)
        timers[user_id] = asyncio.create_task(coro)

    @staticmethod
    def _cancel(timers: dict[str, asyncio.Task], user_id: str) -> None:
        task = timers.pop(user_id, None)
        if task is not None and task is not asyncio.current_task():
            task.cancel()

    @staticmethod
    def _release(timers: dict[str, asyncio.Task], user_id: str) -> None:
        if timers.get(user_id) is asyncio.current_task():
            del timers[user_id]

    async def _expire_after(self, user_id: str) -> None:
        await asyncio.sleep(self.session_timeout)
        await self.expire(user_id)

    async def expire(self, user_id: str) -> None:
        """Drop everything held for the user and tell the gateway."""
        async with self.store.locked(user_id):
            self._release(self._main_timers, user_id)
            self.cancel_edit_timeout(user_id)
            session = self.store.delete(user_id)
            logger.info(
                "Session expired",
                extra={
                    "context": {
                        "user_id": user_id,
                        "session_id": session.session_id if session else None,
                    }
                },
            )
        await self.notify_gateway(user_id)

    async def _expire_edit_after(self, user_id: str) -> None:
        await asyncio.sleep(self.edit_session_timeout)
        await self.expire_edit(user_id)

    async def expire_edit(self, user_id: str) -> None:
        async with self.store.locked(user_id):
            self._release(self._edit_timers, user_id)
            session = self.store.get(user_id)
            if session is None or session.edit_session is None:
                return

            session.edit_session = None
            logger.info("Edit session expired", extra={"context": {"user_id": user_id}})
            if self.on_edit_expired is not None:
                try:
                    await self.on_edit_expired(session)
                except Exception as e:
                    logger.error(
                        "Edit timeout notification failed",
                        extra={"context": {"user_id": user_id, "error": str(e)}},
                    )

    async def notify_gateway(self, user_id: str) -> bool:
        """POST the expiry to the gateway. Failures are logged, not raised."""
        if not self.gateway_url:
            logger.debug(f"No gateway configured, skipping expiry notice for {user_id}")
            return False

        url = f"{self.gateway_url.rstrip('/')}/session-expired"
        try:
            async with httpx.AsyncClient(timeout=self.http_timeout, transport=self._transport) as client:
                response = await client.post(url, json={"user": user_id})
                response.raise_for_status()
            return True
        except httpx.HTTPError as e:
            logger.warning(
                "Failed to notify gateway about session expiration",
                extra={"context": {"user_id": user_id, "error": str(e)}},
            )
            return False

    async def shutdown(self) -> None:
        tasks = list(self._main_timers.values()) + list(self._edit_timers.values())
        self._main_timers.clear()
        self._edit_timers.clear()
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)
