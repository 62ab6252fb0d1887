"""Inspiration preview cache and the inspiration action handlers."""

import asyncio
import re
import time
from typing import TYPE_CHECKING, Any, Awaitable, Callable, Optional

from abyat.logging_config import get_logger
from abyat.schemas.design import DesignResponse, PriceRange
from abyat.services.agent_service import AgentClient, AgentError, AgentNotConfiguredError
from abyat.services.design_response import UnrecognizedShapeError, extract_design_response
from abyat.services.design_state import DesignSearchState
from abyat.services.facet_catalog import PRICES, FacetOption, build_search_payload, format_currency, title_case, truncate
from abyat.services.session_store import FacetContext, InspirationAction, InspirationContext, UserSession
from abyat.services.whatsapp_service import Button, TransportError, WhatsAppService

if TYPE_CHECKING:
    from abyat.services.edit_session_service import EditSessionService

logger = get_logger("inspiration_service")

CDN_BASE = "https://cdn.abyat.com/"
MAX_PRODUCT_IDS = 5
DESCRIPTION_MAX = 260

GENERATE_INSPIRATIONS = "generate_inspirations"
VIEW_INSPIRATIONS = "view_inspirations"
VIEW_PRODUCTS = "view_products"
EDIT_PREFERENCES = "edit_preferences"
REGENERATE_INSPIRATIONS = "regenerate_inspirations"
INSPIRATION_ACTIONS = (
    GENERATE_INSPIRATIONS,
    VIEW_INSPIRATIONS,
    VIEW_PRODUCTS,
    EDIT_PREFERENCES,
    REGENERATE_INSPIRATIONS,
)

DEFAULT_DESCRIPTION = "Curated inspiration just for you. Let me know if you’d like to adjust anything."
PREVIEW_UNAVAILABLE_TEXT = (
    "I couldn't load your inspirations right now. Please try again in a moment or adjust your preferences."
)
REGENERATE_FAILED_TEXT = "I wasn’t able to regenerate new inspirations right now. Please try again shortly."
FALLBACK_PROMPT_TEXT = "Would you like to view the inspirations or adjust your preferences?"
FALLBACK_OPTIONS = [
    FacetOption(id=VIEW_INSPIRATIONS, title="View Inspirations", value=VIEW_INSPIRATIONS),
    FacetOption(id=EDIT_PREFERENCES, title="Edit Preferences", value=EDIT_PREFERENCES),
]

_PRODUCT_ID = re.compile(r"^\d{3,}$")


def build_cdn_url(path: Any) -> str:
    if not path or not isinstance(path, str):
        return ""
    if re.match(r"^https?://", path, flags=re.IGNORECASE):
        return path
    return f"{CDN_BASE}{path.lstrip('/')}"


def get_inspiration_image_url(item: Any) -> str:
    if not isinstance(item, dict):
        return ""

    image = item.get("image")
    if isinstance(image, dict) and image.get("url"):
        return build_cdn_url(image["url"])
    if isinstance(image, str):
        return build_cdn_url(image)
    if item.get("imageUrl"):
        return build_cdn_url(item["imageUrl"])

    media = item.get("media")
    if isinstance(media, list) and media and isinstance(media[0], dict) and media[0].get("url"):
        return build_cdn_url(media[0]["url"])

    images = item.get("images")
    if isinstance(images, dict):
        product_images = images.get("productImages")
        if isinstance(product_images, list) and product_images:
            return build_cdn_url(product_images[0])
    return ""


def extract_product_ids(design: Any) -> list[str]:
    """Product ids referenced anywhere inside an inspiration, in discovery order."""
    ids: dict[str, None] = {}
    visited: set[int] = set()

    def add_string(key: str, value: str) -> None:
        lower_key = key.lower()
        if "productid" in lower_key or lower_key == "product":
            ids[value] = None
        elif lower_key.endswith("id") and _PRODUCT_ID.match(value):
            ids[value] = None

    def walk(node: Any) -> None:
        if isinstance(node, list):
            for item in node:
                walk(item)
            return
        if not isinstance(node, dict) or id(node) in visited:
            return
        visited.add(id(node))

        products = node.get("products")
        if isinstance(products, dict):
            for product_id in products:
                if isinstance(product_id, str) and _PRODUCT_ID.match(product_id):
                    ids[product_id] = None

        for key, value in node.items():
            if isinstance(value, str):
                if value:
                    add_string(str(key), value)
            elif isinstance(value, (list, dict)):
                walk(value)

    walk(design)
    return list(ids)


def derive_preferred_budget(design_response: Optional[DesignResponse], state: DesignSearchState) -> Optional[float]:
    if design_response is not None:
        ranges = design_response.facet_counts.get(PRICES) or []
        maxima = [entry.max for entry in ranges if isinstance(entry, PriceRange) and entry.max is not None]
        if maxima:
            return max(maxima)
    return state.prices.max


def inspiration_title(inspiration: dict, index: int) -> str:
    room = inspiration.get("room")
    if isinstance(room, str) and room:
        return title_case(room)
    return f"Inspiration {index + 1}"


class InspirationService:
    """Caches the preview for each session and renders it as WhatsApp messages."""

    def __init__(
        self,
        agent: AgentClient,
        transport: WhatsAppService,
        min_preview_count: int = 4,
        retry_seconds: float = 30,
        send_delay: float = 0.6,
        clock: Callable[[], float] = time.time,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self.agent = agent
        self.transport = transport
        self.min_preview_count = min_preview_count
        self.retry_seconds = retry_seconds
        self.send_delay = send_delay
        self._clock = clock
        self._sleep = sleep
        self.edit_sessions: Optional["EditSessionService"] = None

    async def fetch_preview(self, state: DesignSearchState) -> Optional[DesignResponse]:
        preview_state = state.clone()
        preview_state.size = self.min_preview_count
        preview_state.page = 1
        try:
            agent_data = await self.agent.search(build_search_payload(preview_state))
            return extract_design_response(agent_data)
        except AgentNotConfiguredError as e:
            logger.warning(f"Inspiration preview unavailable: {e}")
        except (AgentError, UnrecognizedShapeError) as e:
            logger.warning("Inspiration preview fetch failed", extra={"context": {"error": str(e)}})
        return None

    async def ensure_preview(
        self,
        session: UserSession,
        design_response: Optional[DesignResponse] = None,
        force_refresh: bool = False,
    ) -> Optional[DesignResponse]:
        """Return a usable preview, fetching only when the cache cannot answer.

        Order: cached preview with enough items, error backoff, the caller's
        response when it already has enough items, then a fresh fetch (falling
        back to the caller's items when the fetch comes back empty).
        """
        existing = session.inspiration
        has_enough = existing is not None and existing.count >= self.min_preview_count

        if not force_refresh and has_enough:
            logger.debug(f"Using cached inspiration preview for {session.user_id}")
            return existing.preview

        if not force_refresh and existing is not None and existing.error:
            if self._clock() - existing.timestamp < self.retry_seconds:
                logger.info(f"Skipping preview fetch for {session.user_id}, last attempt failed recently")
                return None

        supplied = design_response if design_response is not None and design_response.has_inspirations else None
        if not force_refresh and supplied is not None and len(supplied.inspirations) >= self.min_preview_count:
            session.inspiration = InspirationContext(preview=supplied, timestamp=self._clock())
            return supplied

        preview = await self.fetch_preview(session.design_state)
        if (preview is None or not preview.has_inspirations) and supplied is not None:
            logger.info(f"Preview fetch empty for {session.user_id}, using design response data")
            preview = supplied

        if preview is not None and preview.has_inspirations:
            session.inspiration = InspirationContext(preview=preview, timestamp=self._clock())
            return preview

        session.inspiration = InspirationContext(preview=None, timestamp=self._clock(), error=True)
        return None

    async def present_preview(
        self,
        session: UserSession,
        response_text: Optional[str],
        design_response: Optional[DesignResponse] = None,
        preview: Optional[DesignResponse] = None,
    ) -> bool:
        """Send up to ``min_preview_count`` inspirations, one message each.

        A ``preview`` the caller already resolved is sent as is.
        """
        if preview is None:
            preview = await self.ensure_preview(session, design_response)
        if preview is None or not preview.has_inspirations:
            return False

        user_id = session.user_id
        context = session.inspiration
        if context is None or context.preview is not preview:
            context = InspirationContext(preview=preview, timestamp=self._clock())
            session.inspiration = context
        context.actions = {}

        if response_text:
            await self.transport.send_text(user_id, response_text)

        inspirations = preview.inspirations[: self.min_preview_count]
        for index, inspiration in enumerate(inspirations):
            title = inspiration_title(inspiration, index)
            description = truncate(str(inspiration.get("description") or ""), DESCRIPTION_MAX) or DEFAULT_DESCRIPTION
            button = Button(id=f"edit_preferences_{index + 1}", title="Edit Preferences")
            context.actions[button.id] = InspirationAction(action=EDIT_PREFERENCES, index=index)
            session.facet_context = FacetContext(
                facet_key=None,
                options=[FacetOption(id=button.id, title=button.title, value=button.id)],
                preview=True,
            )

            image_url = get_inspiration_image_url(inspiration)
            if image_url:
                try:
                    media_id = await self.transport.upload_image_from_url(image_url)
                    await self.transport.send_interactive_buttons(
                        user_id, f"🖼️ *{title}*\n{description}", [button], media_id
                    )
                except TransportError as e:
                    logger.warning(f"Unable to send inspiration image to {user_id}: {e}")
                    await self.transport.send_text(user_id, f"{title}: {description}")
            else:
                await self.transport.send_text(user_id, f"{title}: {description}")

            if index < len(inspirations) - 1:
                await self._sleep(self.send_delay)

        return True

    async def send_fallback(self, session: UserSession) -> None:
        session.facet_context = FacetContext(facet_key=None, options=list(FALLBACK_OPTIONS), preview=True)
        await self.transport.send_buttons(
            session.user_id,
            FALLBACK_PROMPT_TEXT,
            [Button(id=option.id, title=option.title) for option in FALLBACK_OPTIONS],
            include_footer=False,
        )

    async def send_preferred_budget_and_preview(
        self,
        session: UserSession,
        response_text: Optional[str],
        design_response: Optional[DesignResponse],
    ) -> None:
        """Used when there are no price options to offer: recommend a budget, then preview."""
        state = session.design_state
        budget = derive_preferred_budget(design_response, state)
        formatted_budget = format_currency(budget, state.currency) if budget else None

        summary = "\n".join(
            line
            for line in (response_text or "").split("\n")
            if not (re.search("choose", line, re.IGNORECASE) and re.search("price", line, re.IGNORECASE))
        )

        budget_lines = ["💡 Preferred Budget"]
        if formatted_budget:
            budget_lines.append(f"Based on your selections, we recommend a budget of {formatted_budget}.")
        else:
            budget_lines.append("Based on your selections, we recommend continuing with these inspirations.")
        budget_lines.append(
            "Budget adjustments aren’t available right now, but you can proceed with this tailored recommendation."
        )

        message = "\n\n".join(segment for segment in (summary, "\n".join(budget_lines)) if segment.strip())
        await self.transport.send_text(session.user_id, message)

        sent = await self.present_preview(
            session, "Here are inspirations tailored to your preferences.", design_response
        )
        if not sent:
            await self.send_fallback(session)

    async def handle_action(
        self,
        session: UserSession,
        action: str,
        index: Optional[int] = None,
        design_response: Optional[DesignResponse] = None,
    ) -> None:
        normalized = str(action or "").lower()
        user_id = session.user_id
        refetch = normalized in (GENERATE_INSPIRATIONS, REGENERATE_INSPIRATIONS)
        preview = await self.ensure_preview(session, design_response, force_refresh=refetch)
        if preview is None or not preview.has_inspirations:
            failure_text = REGENERATE_FAILED_TEXT if normalized == REGENERATE_INSPIRATIONS else PREVIEW_UNAVAILABLE_TEXT
            await self.transport.send_text(user_id, failure_text)
            return

        inspirations = preview.inspirations[: self.min_preview_count]
        target_index = max(0, min(len(inspirations) - 1, index if isinstance(index, int) else 0))

        if normalized in (VIEW_INSPIRATIONS, GENERATE_INSPIRATIONS):
            text = (
                "Here are inspirations tailored to your preferences."
                if normalized == GENERATE_INSPIRATIONS
                else "Here are your inspirations again."
            )
            await self.present_preview(session, text, preview=preview)
            return

        if normalized == REGENERATE_INSPIRATIONS:
            refreshed = await self.present_preview(
                session, "Here’s another set of inspirations for you.", preview=preview
            )
            if not refreshed:
                await self.transport.send_text(user_id, REGENERATE_FAILED_TEXT)
            return

        if normalized == VIEW_PRODUCTS:
            await self._send_products(session, inspirations[target_index], target_index)
            return

        if normalized == EDIT_PREFERENCES:
            target = inspirations[target_index]
            room = target.get("room")
            session.inspiration = None
            await self.edit_sessions.start(
                session,
                primary_image_url=get_inspiration_image_url(target) or None,
                primary_caption=title_case(room) if room else None,
            )
            return

        logger.warning(f"Unknown inspiration action {action!r} for {user_id}")

    async def _send_products(self, session: UserSession, inspiration: dict, index: int) -> None:
        user_id = session.user_id
        product_ids = extract_product_ids(inspiration)[:MAX_PRODUCT_IDS]
        if product_ids:
            lines = "\n".join(f"{number}. Product ID: {product_id}" for number, product_id in enumerate(product_ids, 1))
            await self.transport.send_text(
                user_id,
                f"Here are some key products from Inspiration {index + 1}:\n{lines}\n\n"
                "Let me know if you'd like details on any of these.",
            )
        else:
            await self.transport.send_text(
                user_id,
                "I couldn’t find specific product matches in this inspiration, "
                "but I can fetch more ideas if you tweak your preferences.",
            )

        follow_up = [
            FacetOption(id=REGENERATE_INSPIRATIONS, title="Regenerate", value=REGENERATE_INSPIRATIONS),
            FacetOption(id="edit_preferences_summary", title="Edit Preferences", value="edit_preferences_summary"),
        ]
        if session.inspiration is not None:
            session.inspiration.actions[REGENERATE_INSPIRATIONS] = InspirationAction(action=REGENERATE_INSPIRATIONS)
            session.inspiration.actions["edit_preferences_summary"] = InspirationAction(
                action=EDIT_PREFERENCES, index=index
            )
        session.facet_context = FacetContext(facet_key=None, options=follow_up, preview=True)

        await self.transport.send_buttons(
            user_id,
            "What would you like to do next?",
            [Button(id=option.id, title=option.title) for option in follow_up],
            include_footer=False,
        )
