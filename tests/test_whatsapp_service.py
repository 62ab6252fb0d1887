import json

import httpx
import pytest

from abyat.services.facet_catalog import FacetOption
from abyat.services.whatsapp_service import (
    RESPONSE_FOOTER_TEXT,
    Button,
    TransportError,
    WhatsAppService,
    append_footer,
    extension_for,
    guess_mime_type,
)

GRAPH = "https://graph.facebook.com/v21.0"


class GraphStub:
    """Routes Graph API calls to canned responses and records them."""

    def __init__(self, status_code=200, media_id="media-1"):
        self.requests: list[httpx.Request] = []
        self.status_code = status_code
        self.media_id = media_id

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        path = request.url.path
        if request.url.host == "cdn.example.com":
            return httpx.Response(200, content=b"\x89PNG-bytes", headers={"content-type": "image/png"})
        if path.endswith("/media"):
            return httpx.Response(self.status_code, json={"id": self.media_id} if self.media_id else {})
        if path.endswith("/messages"):
            return httpx.Response(self.status_code, json={"messages": [{"id": "wamid.out"}]})
        if request.url.host == "lookaside.example.com":
            return httpx.Response(200, content=b"jpeg-bytes", headers={"content-type": "image/jpeg"})
        return httpx.Response(200, json={"url": "https://lookaside.example.com/file-1"})

    def body(self, index=-1) -> dict:
        return json.loads(self.requests[index].content)


@pytest.fixture
def graph():
    return GraphStub()


@pytest.fixture
def service(graph):
    return WhatsAppService("token-123", "PHONE", transport=httpx.MockTransport(graph))


class TestAppendFooter:
    def test_adds_restart_hint(self):
        assert append_footer("Hello") == f"Hello\n\n{RESPONSE_FOOTER_TEXT}"

    def test_does_not_duplicate_hint(self):
        assert append_footer("Type 3 to start over") == "Type 3 to start over"
        once = append_footer("Hello")
        assert append_footer(once) == once

    def test_empty_message_is_just_the_hint(self):
        assert append_footer("  ") == RESPONSE_FOOTER_TEXT
        assert append_footer(None) == RESPONSE_FOOTER_TEXT


class TestMimeHelpers:
    def test_header_wins(self):
        assert guess_mime_type("https://x/a.jpg", "image/png; charset=binary", "image/jpeg") == "image/png"

    def test_generic_header_falls_back_to_url(self):
        assert guess_mime_type("https://x/a.png", "binary/octet-stream", "image/jpeg") == "image/png"

    def test_default(self):
        assert guess_mime_type("https://x/a", None, "image/jpeg") == "image/jpeg"

    def test_extension(self):
        assert extension_for("image/jpeg", "bin") == "jpg"
        assert extension_for("image/png", "bin") == "png"
        assert extension_for("", "bin") == "bin"


class TestSendMessages:
    @pytest.mark.asyncio
    async def test_send_text(self, service, graph):
        result = await service.send_text("966500000001", "Hello")

        request = graph.requests[0]
        assert str(request.url) == f"{GRAPH}/PHONE/messages"
        assert request.headers["authorization"] == "Bearer token-123"
        assert graph.body() == {
            "messaging_product": "whatsapp",
            "to": "966500000001",
            "type": "text",
            "text": {"body": f"Hello\n\n{RESPONSE_FOOTER_TEXT}"},
        }
        assert result["messages"][0]["id"] == "wamid.out"

    @pytest.mark.asyncio
    async def test_send_text_without_footer(self, service, graph):
        await service.send_text("966500000001", "Hello", include_footer=False)
        assert graph.body()["text"]["body"] == "Hello"

    @pytest.mark.asyncio
    async def test_http_error_becomes_transport_error(self):
        service = WhatsAppService("token", "PHONE", transport=httpx.MockTransport(GraphStub(status_code=500)))
        with pytest.raises(TransportError):
            await service.send_text("966500000001", "Hello")

    @pytest.mark.asyncio
    async def test_send_list(self, service, graph):
        options = [FacetOption(id="colors_1", title="Warm Neutrals", value="WARM_NEUTRALS")]

        await service.send_list("966500000001", "Pick a palette", options)

        interactive = graph.body()["interactive"]
        assert interactive["type"] == "list"
        assert interactive["header"]["text"] == "🏡 ABYAT Imagine – Design Inspiration"
        assert interactive["action"]["button"] == "Select Option"
        assert interactive["action"]["sections"][0]["rows"] == [
            {"id": "colors_1", "title": "Warm Neutrals", "description": ""}
        ]
        assert interactive["body"]["text"].endswith(RESPONSE_FOOTER_TEXT)

    @pytest.mark.asyncio
    async def test_send_buttons_with_image_header(self, service, graph):
        await service.send_buttons("966500000001", "Pick", [Button("a", "A")], header_image_id="media-9")

        interactive = graph.body()["interactive"]
        assert interactive["header"] == {"type": "image", "image": {"id": "media-9"}}
        assert interactive["action"]["buttons"] == [{"type": "reply", "reply": {"id": "a", "title": "A"}}]

    @pytest.mark.asyncio
    async def test_interactive_buttons_text_header_no_footer(self, service, graph):
        await service.send_interactive_buttons("966500000001", "Ready?", [Button("go", "Go")], header_text="x" * 80)

        interactive = graph.body()["interactive"]
        assert interactive["body"]["text"] == "Ready?"
        assert interactive["header"]["type"] == "text"
        assert len(interactive["header"]["text"]) == 60


class TestTyping:
    @pytest.mark.asyncio
    async def test_typing_on(self, service, graph):
        await service.send_typing("966500000001", "wamid.in", True)

        assert graph.body() == {
            "messaging_product": "whatsapp",
            "status": "read",
            "message_id": "wamid.in",
            "typing_indicator": {"type": "text"},
        }

    @pytest.mark.asyncio
    async def test_typing_off_only_marks_read(self, service, graph):
        await service.send_typing("966500000001", "wamid.in", False)
        assert "typing_indicator" not in graph.body()

    @pytest.mark.asyncio
    async def test_no_message_id_sends_nothing(self, service, graph):
        await service.send_typing("966500000001", None)
        assert graph.requests == []

    @pytest.mark.asyncio
    async def test_failures_are_swallowed(self):
        service = WhatsAppService("token", "PHONE", transport=httpx.MockTransport(GraphStub(status_code=500)))
        await service.send_typing("966500000001", "wamid.in")


class TestMedia:
    @pytest.mark.asyncio
    async def test_upload_image_from_url(self, service, graph):
        media_id = await service.upload_image_from_url("https://cdn.example.com/inspirations/1")

        assert media_id == "media-1"
        download, upload = graph.requests
        assert str(download.url) == "https://cdn.example.com/inspirations/1"
        assert str(upload.url) == f"{GRAPH}/PHONE/media"
        assert b'filename="image.png"' in upload.content
        assert b"messaging_product" in upload.content

    @pytest.mark.asyncio
    async def test_upload_without_id_fails(self):
        service = WhatsAppService("token", "PHONE", transport=httpx.MockTransport(GraphStub(media_id=None)))
        with pytest.raises(TransportError):
            await service.upload_image_from_url("https://cdn.example.com/inspirations/1")

    @pytest.mark.asyncio
    async def test_fetch_inbound_media(self, service, graph):
        url = await service.get_media_url("media-42")
        media = await service.download_media(url)

        assert str(graph.requests[0].url) == f"{GRAPH}/media-42"
        assert url == "https://lookaside.example.com/file-1"
        assert graph.requests[1].headers["authorization"] == "Bearer token-123"
        assert media.content == b"jpeg-bytes"
        assert media.mime_type == "image/jpeg"
        assert media.extension == "jpg"
