"""Facet selection flow.

Every inbound event for a user runs here under that user's lock: edit mode
gets the first look, then resets, bypass actions, price input and finally
the facet walk that decides what to ask next.
"""

from dataclasses import dataclass
from typing import Any, Optional

from abyat.logging_config import get_logger, user_logger
from abyat.schemas.design import DesignResponse
from abyat.schemas.whatsapp import InboundMessage
from abyat.services.agent_service import AgentClient, AgentError, AgentNotConfiguredError
from abyat.services.design_response import (
    UnrecognizedShapeError,
    extract_agent_summary_text,
    extract_design_response,
)
from abyat.services.design_state import SKIP_KEYWORD, PriceFilter, apply_selection
from abyat.services.edit_session_service import (
    APOLOGY_TEXT,
    FINAL_DESIGN_ACCEPT,
    RESTART_EDIT_SESSION,
    START_EDIT_PREFERENCES,
    EditSessionService,
)
from abyat.services.facet_catalog import (
    PRICES,
    FacetOption,
    build_search_payload,
    extract_options,
    facet_label,
    next_unanswered_facet,
    sanitize_options,
)
from abyat.services.inspiration_service import INSPIRATION_ACTIONS, InspirationService
from abyat.services.price_parser import (
    PRICE_PROMPT_TEXT,
    PRICE_SINGLE_VALUE_TEXT,
    SINGLE_VALUE,
    format_price_range,
    parse_price_input,
)
from abyat.services.session_service import SessionService
from abyat.services.session_store import FacetContext, InspirationAction, SessionStore, UserSession
from abyat.services.state_machine import FacetStep, step_for_facet, transition
from abyat.services.whatsapp_service import TransportError, WhatsAppService

logger = get_logger("conversation_service")

RESET_KEYWORD = "1"
RESTART_KEYWORD = "3"

DESIGN_ACTIONS = (FINAL_DESIGN_ACCEPT, RESTART_EDIT_SESSION, START_EDIT_PREFERENCES)

ACCEPTED_TEXT = (
    "✅ Glad you like the design! Thanks for using AI Home Designer.\n\n"
    "Type 1 anytime if you want to start a new project."
)
PRICE_SKIPPED_TEXT = "👍 Got it, I'll show inspirations from all price ranges."
IMAGE_OUTSIDE_EDIT_TEXT = "Tap *Edit Preferences* before sending photos so I can use them in your update."
SELECT_OPTIONS_TEXT = "Select from the options below to refine your design preferences."
CUSTOM_RANGE_TEXT = "You can also reply with your own range (e.g., 2000-5000)."


@dataclass
class Selection:
    """One inbound event after interactive replies have been resolved."""

    text: str = ""
    message_type: str = "text"
    facet_key: Optional[str] = None
    value: Any = None
    action: Optional[InspirationAction] = None
    count: Optional[float] = None


def build_summary_message(
    design_response: Optional[DesignResponse],
    is_reset: bool = False,
    next_facet_key: Optional[str] = None,
) -> str:
    lines = []
    if is_reset:
        lines.append("👋 Welcome to your AI Home Designer!")

    total = design_response.total if design_response is not None else 0
    if total > 0:
        lines.append("✨ ABYAT Imagine is curating stunning design inspirations just for you...")
    else:
        lines.append("💡 Let’s discover beautiful room inspirations crafted around your unique style and preferences.")

    if next_facet_key == PRICES:
        lines.append("\n\nTell me your budget range so I can narrow the inspirations to fit your needs.")
    elif next_facet_key:
        lines.append(f"\n\nPlease select your preferred {facet_label(next_facet_key)} to proceed.")
    else:
        lines.append("\n\nThese preferences look great! Please wait while we are preparing your design options.")
    return "\n".join(lines)


def match_option(options: list[FacetOption], selection_id: Optional[str], title: Optional[str]) -> Optional[FacetOption]:
    upper_title = title.upper() if title else None
    for option in options:
        if selection_id and option.id == selection_id:
            return option
        if title and (option.title == title or option.value == title):
            return option
        if upper_title and (option.title or "").upper() == upper_title:
            return option
    return None


class ConversationService:
    def __init__(
        self,
        store: SessionStore,
        sessions: SessionService,
        transport: WhatsAppService,
        agent: AgentClient,
        inspirations: InspirationService,
        edit_sessions: EditSessionService,
    ):
        self.store = store
        self.sessions = sessions
        self.transport = transport
        self.agent = agent
        self.inspirations = inspirations
        self.edit_sessions = edit_sessions

    async def process_inbound(self, message: InboundMessage) -> None:
        """Handle one webhook message. Never raises."""
        user_id = message.from_
        log = user_logger(logger, user_id)
        async with self.store.locked(user_id):
            await self.transport.send_typing(user_id, message.id, True)
            try:
                await self.dispatch(message)
            except Exception:
                log.exception("Inbound processing failed", context={"message_id": message.id, "type": message.type})
                await self._apologize(user_id)
            finally:
                await self.transport.send_typing(user_id, message.id, False)

    async def dispatch(self, message: InboundMessage) -> None:
        user_id = message.from_
        self.sessions.touch(user_id)

        if message.type == "text":
            await self.handle_text(user_id, message.text_body)
        elif message.type == "interactive":
            reply = message.interactive.selection if message.interactive else None
            await self.handle_interactive(user_id, reply.id if reply else None, reply.title if reply else None)
        elif message.type == "image":
            image = message.image
            await self.handle_image(user_id, image.id if image else None, image.caption if image else None)
        else:
            session = self.store.get(user_id)
            if self.edit_sessions.is_active(session):
                await self.edit_sessions.handle_text(session, "")
                return
            await self.respond(user_id, Selection(text=message.placeholder, message_type=message.type))

    async def handle_text(self, user_id: str, text: str) -> None:
        await self.respond(user_id, Selection(text=text, message_type="text"))

    async def handle_interactive(self, user_id: str, selection_id: Optional[str], title: Optional[str]) -> None:
        title = (title or "").strip()
        session = self.store.get(user_id)
        if self.edit_sessions.is_active(session):
            await self.edit_sessions.handle_interactive(session, selection_id, title)
            return

        selection = self.resolve_selection(session, selection_id, title)
        if session is not None:
            session.facet_context = None
        await self.respond(user_id, selection)

    async def handle_image(self, user_id: str, media_id: Optional[str], caption: Optional[str]) -> None:
        session = self.store.get(user_id)
        if not self.edit_sessions.is_active(session):
            await self.transport.send_text(user_id, IMAGE_OUTSIDE_EDIT_TEXT)
            return
        await self.edit_sessions.handle_image(session, media_id, caption)

    def recover_facet_context(self, session: Optional[UserSession]) -> Optional[FacetContext]:
        """Current FacetContext, rebuilt from the pending step and cached counts when it was lost."""
        if session is None:
            return None
        if session.facet_context is not None:
            return session.facet_context
        if not session.step:
            return None

        options = sanitize_options(extract_options(session.facet_counts, session.step), session.step)
        session.facet_context = FacetContext(facet_key=session.step, options=options, recovered=True)
        user_logger(logger, session.user_id).warning("Rebuilt facet context", context={"facet": session.step})
        return session.facet_context

    def resolve_selection(
        self,
        session: Optional[UserSession],
        selection_id: Optional[str],
        title: str,
    ) -> Selection:
        """Turn a reply id/title into a facet answer or an inspiration action.

        A reply that matches an option of a pending facet is a facet answer
        even if an inspiration action shares the id.
        """
        context = self.recover_facet_context(session)
        actions = session.inspiration.actions if session is not None and session.inspiration else {}

        matched = match_option(context.options, selection_id, title) if context else None
        resolved = (matched.value or matched.id) if matched else (selection_id or title)
        facet_key = context.facet_key if context else None
        text = title or resolved or ""

        if matched is not None and facet_key:
            return Selection(text=text, message_type="interactive", facet_key=facet_key, value=resolved, count=matched.count)

        action = actions.get(selection_id) or actions.get(resolved)
        if action is not None:
            return Selection(text=text, message_type="interactive", value=action.action, action=action)

        if facet_key:
            return Selection(text=text, message_type="interactive", facet_key=facet_key, value=title or selection_id)
        return Selection(text=text, message_type="interactive", value=resolved)

    def reset(self, user_id: str, reason: str) -> UserSession:
        previous = self.store.get(user_id)
        if previous is not None:
            self.edit_sessions.end(previous)
        session = self.store.create(user_id)
        user_logger(logger, user_id, session.session_id).info("Session reset", context={"reason": reason})
        return session

    def _set_step(self, session: UserSession, facet_key: Optional[str]) -> None:
        session.facet_step = transition(session.facet_step, step_for_facet(facet_key))
        session.step = facet_key

    async def respond(self, user_id: str, selection: Selection) -> None:
        log = user_logger(logger, user_id)
        session = self.store.get(user_id)
        query = (selection.text or "").strip()
        lowercase_query = query.lower()

        if selection.message_type == "text" and self.edit_sessions.is_active(session):
            if await self.edit_sessions.handle_text(session, query):
                return

        is_reset = lowercase_query == RESET_KEYWORD
        is_restart = lowercase_query == RESTART_KEYWORD
        should_reset = session is None or is_reset or is_restart
        if should_reset:
            reason = "fresh" if session is None else ("restart" if is_restart else "reset")
            session = self.reset(user_id, reason)

        awaiting_price = session.facet_step is FacetStep.AWAITING_PRICE
        facet_key, value = selection.facet_key, selection.value
        action = selection.action if not facet_key else None

        if action is not None and action.action in DESIGN_ACTIONS:
            await self._handle_design_action(session, action)
            return

        if not facet_key and isinstance(value, str) and value.lower() in INSPIRATION_ACTIONS:
            await self.inspirations.handle_action(session, value, index=action.index if action else None)
            return

        if not facet_key and awaiting_price and query:
            if lowercase_query == SKIP_KEYWORD:
                facet_key, value = PRICES, PriceFilter(skipped=True)
                await self.transport.send_text(user_id, PRICE_SKIPPED_TEXT)
            else:
                parsed = parse_price_input(query)
                if parsed.selection is not None:
                    facet_key, value = PRICES, parsed.selection
                    friendly_range = format_price_range(parsed.selection, session.design_state.currency)
                    if friendly_range:
                        await self.transport.send_text(
                            user_id, f"💰 Budget set to {friendly_range}. Let me update your results."
                        )
                elif parsed.error == SINGLE_VALUE:
                    log.info("Single price value rejected", context={"value": parsed.value})
                    await self.transport.send_text(user_id, f"{PRICE_SINGLE_VALUE_TEXT}\n\n{PRICE_PROMPT_TEXT}")
                    return

        applied_key = None
        design_state = session.design_state
        if facet_key and value is not None:
            design_state = apply_selection(design_state, facet_key, value)
            applied_key = facet_key
            log.info("Facet selection applied", context={"facet": facet_key, "value": value})

        next_facet_key = next_unanswered_facet(design_state, applied_key)
        session.design_state = design_state
        self._set_step(session, next_facet_key)

        design_response, agent_text = await self._search(session)
        if design_response is not None and design_response.facet_counts:
            session.facet_counts = design_response.facet_counts
        if design_response is None:
            design_response = DesignResponse(facet_counts=session.facet_counts)

        response_text = agent_text or build_summary_message(
            design_response, is_reset=should_reset, next_facet_key=next_facet_key
        )
        await self._walk_facets(session, next_facet_key, response_text, design_response)

    async def _walk_facets(
        self,
        session: UserSession,
        next_facet_key: Optional[str],
        response_text: str,
        design_response: DesignResponse,
    ) -> None:
        user_id = session.user_id
        log = user_logger(logger, user_id, session.session_id)
        visited: set[str] = set()

        while next_facet_key:
            if next_facet_key in visited:
                log.warning("Detected facet loop, aborting", context={"facet": next_facet_key})
                next_facet_key = None
                break
            visited.add(next_facet_key)

            options = extract_options(session.facet_counts, next_facet_key)
            if options:
                sanitized = sanitize_options(options, next_facet_key)
                session.facet_context = FacetContext(facet_key=next_facet_key, options=sanitized)
                self._set_step(session, next_facet_key)
                extra_prompt = f"\n\n{CUSTOM_RANGE_TEXT}" if next_facet_key == PRICES else ""
                await self.transport.send_list(
                    user_id, f"{response_text}\n\n{SELECT_OPTIONS_TEXT}{extra_prompt}", sanitized
                )
                return

            if next_facet_key == PRICES:
                self._set_step(session, None)
                await self.inspirations.send_preferred_budget_and_preview(session, response_text, design_response)
                return

            log.info("Skipping facet with no options", context={"facet": next_facet_key})
            next_facet_key = next_unanswered_facet(session.design_state, next_facet_key)

        self._set_step(session, None)
        if await self.inspirations.present_preview(session, response_text, design_response):
            return

        session.facet_context = None
        await self.transport.send_text(user_id, response_text)
        await self.inspirations.send_fallback(session)

    async def _search(self, session: UserSession) -> tuple[Optional[DesignResponse], Optional[str]]:
        log = user_logger(logger, session.user_id, session.session_id)
        try:
            agent_data = await self.agent.search(build_search_payload(session.design_state))
        except AgentNotConfiguredError as e:
            log.warning(f"{e}, continuing with cached facet counts")
            return None, None
        except AgentError as e:
            log.warning("Agent workflow failed, continuing with summary", context={"error": str(e)})
            return None, None

        try:
            return extract_design_response(agent_data), extract_agent_summary_text(agent_data)
        except UnrecognizedShapeError as e:
            log.warning("Agent response not understood, continuing with summary", context={"error": str(e)})
            return None, None

    async def _handle_design_action(self, session: UserSession, action: InspirationAction) -> None:
        session.inspiration = None
        if action.action == FINAL_DESIGN_ACCEPT:
            self.edit_sessions.end(session)
            await self.transport.send_text(session.user_id, ACCEPTED_TEXT)
            return

        await self.edit_sessions.start(
            session,
            primary_image_url=action.primary_image_url,
            primary_caption=action.primary_caption,
            primary_media_id=action.primary_media_id,
            primary_whatsapp_id=action.primary_whatsapp_id,
        )

    async def _apologize(self, user_id: str) -> None:
        try:
            await self.transport.send_text(user_id, APOLOGY_TEXT)
        except TransportError as e:
            logger.error(f"Could not deliver apology to {user_id}: {e}")
