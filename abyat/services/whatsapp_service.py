import mimetypes
from dataclasses import dataclass
from typing import Any, Optional

import httpx

from abyat.logging_config import get_logger
from abyat.services.facet_catalog import FacetOption, truncate

logger = get_logger("whatsapp_service")

RESPONSE_FOOTER_TEXT = "Type *3* anytime to restart your design preferences."
LIST_HEADER_TEXT = "🏡 ABYAT Imagine – Design Inspiration"
LIST_FOOTER_TEXT = "Home Designer Assistant"
LIST_BUTTON_TEXT = "Select Option"
LIST_SECTION_TITLE = "Available Options"
HEADER_TEXT_MAX = 60
GENERIC_BINARY_TYPES = {"binary/octet-stream", "application/octet-stream"}


class TransportError(Exception):
    """Raised when the Graph API rejects a request or cannot be reached."""


@dataclass
class Button:
    id: str
    title: str


@dataclass
class DownloadedMedia:
    content: bytes
    mime_type: str
    extension: str


def append_footer(message: Optional[str]) -> str:
    """Add the restart hint unless the message already mentions it."""
    text = message.strip() if isinstance(message, str) else ""
    if not text:
        return RESPONSE_FOOTER_TEXT

    normalized = text.lower()
    if "type *3*" in normalized or "type 3" in normalized or RESPONSE_FOOTER_TEXT.lower() in normalized:
        return text
    return f"{text}\n\n{RESPONSE_FOOTER_TEXT}"


def guess_mime_type(url: str, header_value: Optional[str], default: str) -> str:
    mime_type = (header_value or "").split(";")[0].strip()
    if not mime_type or mime_type in GENERIC_BINARY_TYPES:
        mime_type = mimetypes.guess_type(url)[0] or default
    return mime_type


def extension_for(mime_type: str, default: str) -> str:
    extension = mimetypes.guess_extension(mime_type or "")
    if not extension:
        return default
    extension = extension.lstrip(".")
    return "jpg" if extension in ("jpe", "jpeg") else extension


class WhatsAppService:
    """Outbound messaging over the WhatsApp Cloud (Graph) API."""

    def __init__(
        self,
        access_token: Optional[str],
        phone_number_id: Optional[str],
        api_version: str = "v21.0",
        base_url: str = "https://graph.facebook.com",
        timeout: float = 30.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.access_token = access_token
        self.phone_number_id = phone_number_id
        self.base_url = f"{base_url.rstrip('/')}/{api_version}"
        self.timeout = timeout
        self._transport = transport

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(timeout=self.timeout, transport=self._transport)

    @property
    def _auth_headers(self) -> dict[str, str]:
        return {"Authorization": f"Bearer {self.access_token}"}

    async def _post_message(self, payload: dict[str, Any]) -> dict:
        url = f"{self.base_url}/{self.phone_number_id}/messages"
        try:
            async with self._client() as client:
                response = await client.post(url, json=payload, headers=self._auth_headers)
                response.raise_for_status()
                return response.json()
        except httpx.HTTPError as e:
            logger.error(
                "WhatsApp send failed",
                extra={"context": {"to": payload.get("to"), "type": payload.get("type"), "error": str(e)}},
            )
            raise TransportError(str(e)) from e

    async def send_text(self, to: str, message: str, include_footer: bool = True) -> dict:
        body = append_footer(message) if include_footer else message
        return await self._post_message(
            {
                "messaging_product": "whatsapp",
                "to": to,
                "type": "text",
                "text": {"body": body},
            }
        )

    async def send_buttons(
        self,
        to: str,
        text: str,
        buttons: list[Button],
        header_image_id: Optional[str] = None,
        header_image_url: Optional[str] = None,
        header_text: Optional[str] = None,
        include_footer: bool = True,
    ) -> dict:
        interactive: dict[str, Any] = {
            "type": "button",
            "body": {"text": append_footer(text) if include_footer else text},
            "action": {
                "buttons": [{"type": "reply", "reply": {"id": button.id, "title": button.title}} for button in buttons],
            },
        }

        if header_image_id:
            interactive["header"] = {"type": "image", "image": {"id": header_image_id}}
        elif header_image_url:
            interactive["header"] = {"type": "image", "image": {"link": header_image_url}}
        elif header_text:
            interactive["header"] = {"type": "text", "text": truncate(str(header_text), HEADER_TEXT_MAX)}

        return await self._post_message(
            {
                "messaging_product": "whatsapp",
                "to": to,
                "type": "interactive",
                "interactive": interactive,
            }
        )

    async def send_interactive_buttons(
        self,
        to: str,
        text: str,
        buttons: list[Button],
        media_id: Optional[str] = None,
        header_text: Optional[str] = None,
    ) -> dict:
        """Buttons without the restart footer, headed by an image or short text."""
        return await self.send_buttons(
            to,
            text,
            buttons,
            header_image_id=media_id,
            header_text=header_text,
            include_footer=False,
        )

    async def send_list(self, to: str, text: str, options: list[FacetOption]) -> dict:
        return await self._post_message(
            {
                "messaging_product": "whatsapp",
                "to": to,
                "type": "interactive",
                "interactive": {
                    "type": "list",
                    "header": {"type": "text", "text": LIST_HEADER_TEXT},
                    "body": {"text": append_footer(text)},
                    "footer": {"text": LIST_FOOTER_TEXT},
                    "action": {
                        "button": LIST_BUTTON_TEXT,
                        "sections": [
                            {
                                "title": LIST_SECTION_TITLE,
                                "rows": [
                                    {"id": option.id, "title": option.title, "description": ""} for option in options
                                ],
                            }
                        ],
                    },
                },
            }
        )

    async def send_typing(self, to: str, message_id: Optional[str], is_typing: bool = True) -> None:
        """Mark the inbound message read; shows the typing bubble while ``is_typing``.

        Failures are logged and never raised.
        """
        if not message_id:
            return

        payload: dict[str, Any] = {
            "messaging_product": "whatsapp",
            "status": "read",
            "message_id": message_id,
        }
        if is_typing:
            payload["typing_indicator"] = {"type": "text"}

        try:
            await self._post_message(payload)
        except TransportError as e:
            logger.warning(f"Typing indicator error for {to}: {e}")

    async def upload_image_from_url(self, image_url: str) -> str:
        """Download an image and re-host it on WhatsApp. Returns the media id."""
        try:
            async with self._client() as client:
                image_response = await client.get(image_url)
                image_response.raise_for_status()

                mime_type = guess_mime_type(image_url, image_response.headers.get("content-type"), "image/jpeg")
                extension = extension_for(mime_type, "jpg")

                upload_response = await client.post(
                    f"{self.base_url}/{self.phone_number_id}/media",
                    data={"type": mime_type, "messaging_product": "whatsapp"},
                    files={"file": (f"image.{extension}", image_response.content, mime_type)},
                    headers=self._auth_headers,
                )
                upload_response.raise_for_status()
                media_id = upload_response.json().get("id")
        except httpx.HTTPError as e:
            logger.error(
                "WhatsApp media upload failed",
                extra={"context": {"image_url": image_url, "error": str(e)}},
            )
            raise TransportError(str(e)) from e

        if not media_id:
            raise TransportError("WhatsApp media upload returned no id")

        logger.info("Image re-hosted on WhatsApp", extra={"context": {"media_id": media_id}})
        return media_id

    async def get_media_url(self, media_id: str) -> str:
        try:
            async with self._client() as client:
                response = await client.get(f"{self.base_url}/{media_id}", headers=self._auth_headers)
                response.raise_for_status()
                url = response.json().get("url")
        except httpx.HTTPError as e:
            raise TransportError(f"Media lookup failed for {media_id}: {e}") from e

        if not url:
            raise TransportError(f"No download URL for media {media_id}")
        return url

    async def download_media(self, media_url: str) -> DownloadedMedia:
        try:
            async with self._client() as client:
                response = await client.get(media_url, headers=self._auth_headers)
                response.raise_for_status()
        except httpx.HTTPError as e:
            raise TransportError(f"Media download failed: {e}") from e

        mime_type = guess_mime_type(media_url, response.headers.get("content-type"), "application/octet-stream")
        return DownloadedMedia(
            content=response.content,
            mime_type=mime_type,
            extension=extension_for(mime_type, "bin"),
        )
