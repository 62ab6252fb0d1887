from dataclasses import dataclass, field
from types import SimpleNamespace
from typing import Any, Callable, Optional

import pytest

from abyat.services.agent_service import AgentError, AgentNotConfiguredError
from abyat.services.conversation_service import ConversationService
from abyat.services.edit_session_service import EditSessionService
from abyat.services.inspiration_service import InspirationService
from abyat.services.session_service import SessionService
from abyat.services.session_store import SessionStore
from abyat.services.whatsapp_service import DownloadedMedia, TransportError, append_footer


@dataclass
class SentMessage:
    kind: str
    to: str
    text: str
    buttons: list = field(default_factory=list)
    options: list = field(default_factory=list)
    media_id: Optional[str] = None
    header_text: Optional[str] = None


class FakeTransport:
    """Records outbound WhatsApp calls instead of sending them."""

    def __init__(self):
        self.sent: list[SentMessage] = []
        self.typing: list[tuple[str, Optional[str], bool]] = []
        self.uploaded_urls: list[str] = []
        self.fail_uploads = False
        self.fail_sends = False

    async def send_text(self, to, message, include_footer=True):
        if self.fail_sends:
            raise TransportError("send failed")
        self.sent.append(SentMessage("text", to, append_footer(message) if include_footer else message))

    async def send_buttons(
        self,
        to,
        text,
        buttons,
        header_image_id=None,
        header_image_url=None,
        header_text=None,
        include_footer=True,
    ):
        if self.fail_sends:
            raise TransportError("send failed")
        self.sent.append(
            SentMessage(
                "buttons",
                to,
                append_footer(text) if include_footer else text,
                buttons=list(buttons),
                media_id=header_image_id,
                header_text=header_text,
            )
        )

    async def send_interactive_buttons(self, to, text, buttons, media_id=None, header_text=None):
        await self.send_buttons(to, text, buttons, header_image_id=media_id, header_text=header_text, include_footer=False)

    async def send_list(self, to, text, options):
        if self.fail_sends:
            raise TransportError("send failed")
        self.sent.append(SentMessage("list", to, append_footer(text), options=list(options)))

    async def send_typing(self, to, message_id, is_typing=True):
        self.typing.append((to, message_id, is_typing))

    async def upload_image_from_url(self, image_url):
        if self.fail_uploads:
            raise TransportError("upload failed")
        self.uploaded_urls.append(image_url)
        return f"wa-media-{len(self.uploaded_urls)}"

    async def get_media_url(self, media_id):
        return f"https://lookaside.example.com/{media_id}"

    async def download_media(self, media_url):
        return DownloadedMedia(content=b"jpeg-bytes", mime_type="image/jpeg", extension="jpg")

    def of_kind(self, kind: str) -> list[SentMessage]:
        return [message for message in self.sent if message.kind == kind]

    def texts(self) -> list[str]:
        return [message.text for message in self.sent]

    @property
    def last(self) -> SentMessage:
        return self.sent[-1]


class FakeAgent:
    """Workflow agent double; ``search_handler`` builds the raw response for a payload."""

    def __init__(self, search_handler: Optional[Callable[[dict], Any]] = None, configured: bool = True):
        self.search_handler = search_handler
        self.configured = configured
        self.search_payloads: list[dict] = []
        self.search_error: Optional[Exception] = None
        self.uploads: list[tuple[bytes, str, str]] = []
        self.upload_urls = ["https://files.example.com/upload-1.jpg"]
        self.edit_calls: list[tuple[str, list]] = []
        self.edit_response: Any = None

    @property
    def is_configured(self) -> bool:
        return self.configured

    async def search(self, payload):
        if not self.configured:
            raise AgentNotConfiguredError("Missing AUTHORIZE_TOKEN, unable to query agent API")
        self.search_payloads.append(payload)
        if self.search_error is not None:
            raise self.search_error
        if self.search_handler is None:
            return workflow_response(None)
        return self.search_handler(payload)

    async def upload_file(self, content, filename, mime_type):
        self.uploads.append((content, filename, mime_type))
        return list(self.upload_urls)

    async def generate_edit(self, query, images):
        self.edit_calls.append((query, list(images)))
        if self.edit_response is None:
            raise AgentError("edit agent unavailable")
        return self.edit_response


def workflow_response(design: Optional[dict], summary: Optional[str] = None) -> dict:
    tasks = []
    if design is not None:
        tasks.append({"tool": "abyat-design-search", "result": {"data": design}})
    if summary is not None:
        tasks.append({"tool": "owncondition", "result": {"data": summary}})
    return {"workflowlog": {"tasks": tasks}}


def make_inspirations(count: int) -> list[dict]:
    return [
        {
            "id": f"insp-{index}",
            "room": "LIVING_ROOM",
            "description": f"Inspiration number {index}",
            "image": {"url": f"/inspirations/{index}.jpg"},
            "products": {f"10{index}01": {"qty": 1}},
        }
        for index in range(1, count + 1)
    ]


FACET_COUNTS = {
    "rooms": [
        {"value": "LIVING_ROOM", "id": "LIVING_ROOM", "count": 12},
        {"value": "BEDROOM", "id": "BEDROOM", "count": 7},
    ],
    "colors": {"WARM_NEUTRALS": 8, "COOL_BLUES": 5},
    "styles": [{"value": "MODERN", "count": 9}, {"value": "CLASSIC", "count": 3}],
    "lightingAndAtmospheres": {"BRIGHT_AIRY": 6},
    "livingRoomLayout": {"OPEN": 4, "L_SHAPED": 2},
    "livingRoomSpace": {"COMPACT": 3},
    "prices": [{"min": 2000, "max": 5000, "count": 4}, {"min": 5000, "max": 10000, "count": 2}],
}


def design_result(inspiration_count: int = 5, facet_counts: Optional[dict] = None) -> dict:
    return {
        "inspirations": make_inspirations(inspiration_count),
        "total": inspiration_count,
        "facetCounts": FACET_COUNTS if facet_counts is None else facet_counts,
    }


@pytest.fixture
def agent_payload():
    """Factory for a raw agent search response."""

    def _payload(inspiration_count=5, facet_counts=None, summary=None):
        return workflow_response(design_result(inspiration_count, facet_counts), summary)

    return _payload


@pytest.fixture
def make_agent():
    def _make(search_handler=None, configured=True):
        return FakeAgent(search_handler=search_handler, configured=configured)

    return _make


@pytest.fixture
def transport():
    return FakeTransport()


@pytest.fixture
def agent():
    return FakeAgent(search_handler=lambda payload: workflow_response(design_result()))


@pytest.fixture
def build_services():
    def _build(transport, agent, session_timeout=300, edit_session_timeout=120, min_preview_count=4):
        store = SessionStore()
        sessions = SessionService(store, session_timeout=session_timeout, edit_session_timeout=edit_session_timeout)
        edit_sessions = EditSessionService(transport, agent, sessions)
        inspirations = InspirationService(agent, transport, min_preview_count=min_preview_count, send_delay=0)
        inspirations.edit_sessions = edit_sessions
        conversation = ConversationService(store, sessions, transport, agent, inspirations, edit_sessions)
        return SimpleNamespace(
            store=store,
            sessions=sessions,
            edit_sessions=edit_sessions,
            inspirations=inspirations,
            conversation=conversation,
        )

    return _build


@pytest.fixture
def services(build_services, transport, agent):
    return build_services(transport, agent)
