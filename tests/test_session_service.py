import asyncio
import json
from unittest.mock import AsyncMock

import httpx
import pytest

from abyat.services.session_service import SessionService, describe_window
from abyat.services.session_store import EditSession, SessionStore


def gateway_transport(requests, status_code=200):
    def handler(request: httpx.Request) -> httpx.Response:
        requests.append(request)
        return httpx.Response(status_code, json={"ok": status_code < 400})

    return httpx.MockTransport(handler)


class TestDescribeWindow:
    def test_minutes(self):
        assert describe_window(120) == "2 minutes"
        assert describe_window(60) == "1 minute"

    def test_seconds(self):
        assert describe_window(45) == "45 seconds"
        assert describe_window(90) == "90 seconds"


class TestMainTimeout:
    @pytest.mark.asyncio
    async def test_session_expires_after_inactivity(self):
        requests = []
        store = SessionStore()
        service = SessionService(
            store, session_timeout=0.01, gateway_url="http://gateway.test/", transport=gateway_transport(requests)
        )
        store.create("966500000001")

        service.touch("966500000001")
        await asyncio.sleep(0.1)

        assert "966500000001" not in store
        assert not service.has_timer("966500000001")
        assert len(requests) == 1
        assert str(requests[0].url) == "http://gateway.test/session-expired"
        assert json.loads(requests[0].content) == {"user": "966500000001"}

    @pytest.mark.asyncio
    async def test_touch_restarts_window(self):
        store = SessionStore()
        service = SessionService(store, session_timeout=0.2)
        store.create("user-1")

        service.touch("user-1")
        await asyncio.sleep(0.12)
        service.touch("user-1")
        await asyncio.sleep(0.12)
        assert "user-1" in store

        await asyncio.sleep(0.2)
        assert "user-1" not in store

    @pytest.mark.asyncio
    async def test_one_timer_per_user(self):
        service = SessionService(SessionStore(), session_timeout=60)

        service.touch("user-1")
        first = service._main_timers["user-1"]
        service.touch("user-1")
        await asyncio.sleep(0)

        assert first.cancelled()
        assert len(service._main_timers) == 1
        await service.shutdown()

    @pytest.mark.asyncio
    async def test_touch_updates_last_seen(self):
        store = SessionStore()
        service = SessionService(store, session_timeout=60)
        session = store.create("user-1")
        session.last_seen_at = 0

        service.touch("user-1")

        assert session.last_seen_at > 0
        await service.shutdown()

    @pytest.mark.asyncio
    async def test_expire_cancels_edit_timer(self):
        store = SessionStore()
        service = SessionService(store, session_timeout=60, edit_session_timeout=60)
        store.create("user-1").edit_session = EditSession()
        service.schedule_edit_timeout("user-1")

        await service.expire("user-1")

        assert not service.has_edit_timer("user-1")
        assert store.get("user-1") is None

    @pytest.mark.asyncio
    async def test_expire_without_session_still_notifies(self):
        requests = []
        service = SessionService(SessionStore(), gateway_url="http://gateway.test", transport=gateway_transport(requests))

        await service.expire("ghost")

        assert len(requests) == 1


class TestEditTimeout:
    @pytest.mark.asyncio
    async def test_expiry_closes_active_edit_session(self):
        store = SessionStore()
        service = SessionService(store, edit_session_timeout=0.01)
        service.on_edit_expired = AsyncMock()
        session = store.create("user-1")
        session.edit_session = EditSession()

        service.schedule_edit_timeout("user-1")
        await asyncio.sleep(0.1)

        assert session.edit_session is None
        assert store.get("user-1") is session
        service.on_edit_expired.assert_awaited_once_with(session)
        assert not service.has_edit_timer("user-1")

    @pytest.mark.asyncio
    async def test_no_notice_without_edit_session(self):
        store = SessionStore()
        service = SessionService(store)
        service.on_edit_expired = AsyncMock()
        store.create("user-1")

        await service.expire_edit("user-1")

        service.on_edit_expired.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_no_notice_without_session(self):
        service = SessionService(SessionStore())
        service.on_edit_expired = AsyncMock()

        await service.expire_edit("user-1")

        service.on_edit_expired.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_notice_failure_is_logged(self):
        store = SessionStore()
        service = SessionService(store)
        service.on_edit_expired = AsyncMock(side_effect=RuntimeError("send failed"))
        session = store.create("user-1")
        session.edit_session = EditSession()

        await service.expire_edit("user-1")

        assert session.edit_session is None

    @pytest.mark.asyncio
    async def test_cancel(self):
        service = SessionService(SessionStore(), edit_session_timeout=60)
        service.schedule_edit_timeout("user-1")
        assert service.has_edit_timer("user-1")

        service.cancel_edit_timeout("user-1")

        assert not service.has_edit_timer("user-1")


class TestNotifyGateway:
    @pytest.mark.asyncio
    async def test_no_gateway_configured(self):
        assert await SessionService(SessionStore()).notify_gateway("user-1") is False

    @pytest.mark.asyncio
    async def test_error_status_is_not_raised(self):
        requests = []
        service = SessionService(
            SessionStore(), gateway_url="http://gateway.test", transport=gateway_transport(requests, 500)
        )

        assert await service.notify_gateway("user-1") is False
        assert len(requests) == 1

    @pytest.mark.asyncio
    async def test_connection_error_is_not_raised(self):
        def handler(request):
            raise httpx.ConnectError("refused", request=request)

        service = SessionService(SessionStore(), gateway_url="http://gateway.test", transport=httpx.MockTransport(handler))

        assert await service.notify_gateway("user-1") is False


class TestShutdown:
    @pytest.mark.asyncio
    async def test_cancels_all_timers(self):
        service = SessionService(SessionStore(), session_timeout=60, edit_session_timeout=60)
        service.touch("user-1")
        service.touch("user-2")
        service.schedule_edit_timeout("user-1")

        await service.shutdown()

        assert not service.has_timer("user-1")
        assert not service.has_timer("user-2")
        assert not service.has_edit_timer("user-1")
