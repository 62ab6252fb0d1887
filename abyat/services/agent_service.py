"""Client for the third-party workflow agent (search, file upload, image edit)."""

import json
import time
from typing import Any, Optional

import httpx

from abyat.logging_config import get_logger
from abyat.services.session_store import EditImage

logger = get_logger("agent_service")


class AgentError(Exception):
    """Agent call failed or returned nothing usable."""


class AgentNotConfiguredError(AgentError):
    """No authorization token configured for the agent."""


class AgentClient:
    def __init__(
        self,
        authorize_token: Optional[str],
        start_endpoint: str,
        edit_start_endpoint: str,
        file_upload_endpoint: str,
        subdomain: str = "construex",
        user_type: str = "customer",
        timeout: float = 30.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.authorize_token = authorize_token
        self.start_endpoint = start_endpoint
        self.edit_start_endpoint = edit_start_endpoint
        self.file_upload_endpoint = file_upload_endpoint
        self.subdomain = subdomain
        self.user_type = user_type
        self.timeout = timeout
        self._transport = transport

    @property
    def is_configured(self) -> bool:
        return bool(self.authorize_token)

    def _headers(self) -> dict[str, str]:
        return {
            "Authorization": f"Bearer {self.authorize_token}",
            "subdomain": self.subdomain,
            "x-user-type": self.user_type,
        }

    async def _post(self, url: str, files: list[tuple[str, tuple]], headers: Optional[dict] = None) -> Any:
        try:
            async with httpx.AsyncClient(timeout=self.timeout, transport=self._transport) as client:
                response = await client.post(url, files=files, headers=headers or {})
                response.raise_for_status()
                return response.json()
        except httpx.HTTPError as e:
            logger.error("Agent request failed", extra={"context": {"url": url, "error": str(e)}})
            raise AgentError(str(e)) from e
        except ValueError as e:
            raise AgentError(f"Agent returned invalid JSON: {e}") from e

    async def search(self, payload: dict[str, Any]) -> Any:
        """Run the design search workflow. Returns the raw workflow response."""
        if not self.is_configured:
            raise AgentNotConfiguredError("Missing AUTHORIZE_TOKEN, unable to query agent API")

        return await self._post(
            self.start_endpoint,
            files=[("query", (None, json.dumps(payload)))],
            headers=self._headers(),
        )

    async def upload_file(self, content: bytes, filename: str, mime_type: str) -> list[str]:
        """Upload one file and return the hosted URLs."""
        data = await self._post(
            self.file_upload_endpoint,
            files=[("files", (filename, content, mime_type))],
        )
        files = data.get("files") if isinstance(data, dict) else None
        urls = [entry.get("Location") for entry in files or [] if isinstance(entry, dict) and entry.get("Location")]
        logger.info("Uploaded file to agent storage", extra={"context": {"filename": filename, "urls": urls}})
        return urls

    async def generate_edit(self, query: str, images: list[EditImage]) -> Any:
        """Send the edit request with every collected image.

        Images with a known URL are sent by URL (once per URL); the rest are
        attached as raw bytes.
        """
        if not self.is_configured:
            raise AgentNotConfiguredError("Missing AUTHORIZE_TOKEN, unable to call edit agent")

        files: list[tuple[str, tuple]] = [("query", (None, query or ""))]
        seen: set[str] = set()
        for index, image in enumerate(images):
            if image.url:
                if image.url not in seen:
                    files.append(("files[]", (None, image.url)))
                    seen.add(image.url)
            elif image.content:
                extension = (image.mime_type or "image/jpeg").split("/")[-1]
                filename = image.filename or f"edit-{int(time.time() * 1000)}-{index + 1}.{extension}"
                files.append(("files[]", (filename, image.content, image.mime_type or "application/octet-stream")))
            else:
                logger.warning("Edit image has no attachment data", extra={"context": {"index": index}})

        logger.info(
            "Calling edit agent",
            extra={"context": {"query_length": len(query or ""), "attachments": len(files) - 1}},
        )
        return await self._post(self.edit_start_endpoint, files=files, headers=self._headers())
