"""Edit mode: collect reference photos and a request, then generate an updated design."""

from typing import Optional

from abyat.logging_config import get_logger, user_logger
from abyat.services.agent_service import AgentClient, AgentError
from abyat.services.design_response import UnrecognizedShapeError, extract_generated_design
from abyat.services.image_service import ImageConversionError, normalize_upload
from abyat.services.session_service import SessionService, describe_window
from abyat.services.session_store import EditImage, EditSession, InspirationAction, InspirationContext, UserSession
from abyat.services.whatsapp_service import Button, TransportError, WhatsAppService

logger = get_logger("edit_session_service")

EXIT_KEYWORD = "7"
GENERATE_KEYWORDS = ("generate", "submit")

GENERATE_ACTION = "generate"
CANCEL_ACTION = "cancel"
EDIT_ACTIONS = {"edit_generate": GENERATE_ACTION, "edit_cancel": CANCEL_ACTION}

FINAL_DESIGN_ACCEPT = "final_design_accept"
RESTART_EDIT_SESSION = "restart_edit_session"
START_EDIT_PREFERENCES = "start_edit_preferences"

APOLOGY_TEXT = "⚠️ Something went wrong while generating your design. Please try again later."
EMPTY_TEXT_PROMPT = "Share the changes you'd like or type *7* to exit edit mode."
EXITED_TEXT = "✅ Edit mode closed. Your selections stay as-is."
CANCELLED_TEXT = "Edit mode cancelled."
MISSING_QUERY_TEXT = "Please type what you would like to adjust before generating."
GENERATING_TEXT = "🛠️ Generating your updated design. This should only take a moment..."
PHOTO_FAILED_TEXT = "I couldn't save that photo. Please try sending it again."


class EditSessionService:
    def __init__(self, transport: WhatsAppService, agent: AgentClient, sessions: SessionService):
        self.transport = transport
        self.agent = agent
        self.sessions = sessions
        sessions.on_edit_expired = self.notify_expired

    def is_active(self, session: Optional[UserSession]) -> bool:
        return session is not None and session.edit_session is not None

    def touch(self, session: UserSession) -> None:
        if session.edit_session is None:
            return
        session.edit_session.touch()
        self.sessions.schedule_edit_timeout(session.user_id)

    def end(self, session: UserSession) -> None:
        self.sessions.cancel_edit_timeout(session.user_id)
        session.edit_session = None

    async def start(
        self,
        session: UserSession,
        primary_image_url: Optional[str] = None,
        primary_caption: Optional[str] = None,
        primary_media_id: Optional[str] = None,
        primary_whatsapp_id: Optional[str] = None,
    ) -> EditSession:
        """Open edit mode, replacing any running edit session."""
        self.sessions.cancel_edit_timeout(session.user_id)

        edit_session = EditSession()
        if primary_image_url:
            edit_session.images.append(
                EditImage(
                    source_url=primary_image_url,
                    uploaded_url=primary_image_url,
                    is_primary=True,
                    caption=primary_caption,
                    media_id=primary_media_id,
                    whatsapp_media_id=primary_whatsapp_id or primary_media_id,
                )
            )
        session.edit_session = edit_session
        self.sessions.schedule_edit_timeout(session.user_id)
        user_logger(logger, session.user_id, session.session_id).info(
            "Edit session started", context={"pinned": bool(primary_image_url)}
        )

        intro_lines = [
            "✏️ Edit mode enabled.",
            "Upload reference photos or type your updated request.",
            "Type *7* anytime to exit.",
        ]
        if primary_image_url:
            intro_lines.insert(0, "📌 Current inspiration pinned as the main image above.")
        await self.transport.send_text(session.user_id, "\n\n".join(intro_lines))

        if edit_session.images:
            await self.send_summary(session)
        return edit_session

    async def handle_text(self, session: UserSession, raw_text: Optional[str]) -> bool:
        edit_session = session.edit_session
        if edit_session is None:
            return False

        text = raw_text.strip() if isinstance(raw_text, str) else ""
        self.touch(session)

        if not text:
            await self.transport.send_text(session.user_id, EMPTY_TEXT_PROMPT)
            return True

        if text == EXIT_KEYWORD:
            self.end(session)
            await self.transport.send_text(session.user_id, EXITED_TEXT)
            return True

        if text.lower() in GENERATE_KEYWORDS:
            await self.generate(session)
            return True

        edit_session.pending_query = text
        await self.send_summary(session)
        return True

    async def handle_action(self, session: UserSession, action_id: Optional[str]) -> bool:
        """Handle a Generate/Cancel tap. Returns False when the id is not an edit action."""
        edit_session = session.edit_session
        if edit_session is None:
            return False

        normalized = str(action_id or "").lower()
        action = edit_session.actions.get(normalized) or EDIT_ACTIONS.get(normalized) or normalized
        if action not in (GENERATE_ACTION, CANCEL_ACTION):
            return False

        self.touch(session)
        if action == GENERATE_ACTION:
            await self.generate(session)
        else:
            self.end(session)
            await self.transport.send_text(session.user_id, CANCELLED_TEXT)
        return True

    async def handle_interactive(self, session: UserSession, selection_id: Optional[str], title: Optional[str]) -> bool:
        """While edit mode is active every button or list reply ends up here."""
        if session.edit_session is None:
            return False
        if await self.handle_action(session, selection_id) or await self.handle_action(session, title):
            return True

        self.touch(session)
        user_logger(logger, session.user_id, session.session_id).info(
            "Reply ignored during edit mode", context={"selection_id": selection_id}
        )
        await self.transport.send_text(session.user_id, EMPTY_TEXT_PROMPT)
        return True

    async def handle_image(self, session: UserSession, media_id: Optional[str], caption: Optional[str] = None) -> bool:
        """Fetch an inbound photo, store it for the edit agent and re-host it for headers."""
        edit_session = session.edit_session
        if edit_session is None:
            return False

        log = user_logger(logger, session.user_id)
        try:
            media_url = await self.transport.get_media_url(media_id)
            media = await self.transport.download_media(media_url)
            upload = normalize_upload(media.content, f"{media_id}.{media.extension}", media.mime_type)
        except (TransportError, ImageConversionError) as e:
            log.error("Failed to fetch edit photo", context={"media_id": media_id, "error": str(e)})
            await self.transport.send_text(session.user_id, PHOTO_FAILED_TEXT)
            return True

        uploaded_urls: list[str] = []
        try:
            uploaded_urls = await self.agent.upload_file(upload.content, upload.filename, upload.mime_type)
        except AgentError as e:
            log.warning("Agent upload failed, keeping raw image bytes", context={"error": str(e)})

        uploaded_url = uploaded_urls[0] if uploaded_urls else None
        whatsapp_media_id = None
        try:
            whatsapp_media_id = await self.transport.upload_image_from_url(uploaded_url or media_url)
        except TransportError as e:
            log.warning("Could not re-host edit photo, using inbound media id", context={"error": str(e)})

        edit_session.images.append(
            EditImage(
                source_url=media_url,
                uploaded_url=uploaded_url,
                media_id=media_id,
                whatsapp_media_id=whatsapp_media_id or media_id,
                caption=caption or "(no caption)",
                content=upload.content,
                mime_type=upload.mime_type,
                filename=upload.filename,
            )
        )
        self.touch(session)

        count = edit_session.user_image_count
        lines = ["✅ Photo added to your edit board."]
        if count > 1:
            lines.append(f"You now have {count} inspiration photos ready.")
        else:
            lines.append("This image is now ready for your update.")
        lines.append("Send more photos, describe what to change, or type *7* to wrap up edit mode.")
        await self.transport.send_text(session.user_id, "\n\n".join(lines))

        if edit_session.pending_query:
            await self.send_summary(session)
        return True

    async def send_summary(self, session: UserSession) -> None:
        edit_session = session.edit_session
        if edit_session is None:
            return

        self.touch(session)
        user_images = edit_session.user_image_count
        pinned = edit_session.primary_image

        lines = []
        if user_images > 0:
            suffix = " (excluding the pinned inspiration)" if pinned else ""
            lines.append(f"Images saved: {user_images}{suffix}")
        else:
            lines.append("No reference images yet.")

        if edit_session.pending_query:
            lines.append(f"Request:\n{edit_session.pending_query}")
        elif user_images >= 1:
            lines.append("Type your updated request to continue.")
        else:
            lines.append("Share what you'd like to change or add inspiration photos to guide the update.")

        edit_session.actions = dict(EDIT_ACTIONS)

        if not edit_session.pending_query:
            await self.transport.send_text(session.user_id, "\n\n".join(lines))
            return

        header_image = pinned or (edit_session.images[0] if edit_session.images else None)
        media_id = await self._header_media_id(session, header_image)
        await self.transport.send_interactive_buttons(
            session.user_id,
            "\n\n".join(lines) + "\n\nReady to generate the update?",
            [Button(id="edit_generate", title="Generate"), Button(id="edit_cancel", title="Cancel")],
            media_id=media_id,
            header_text=None if media_id else edit_session.pending_query,
        )

    async def _header_media_id(self, session: UserSession, image: Optional[EditImage]) -> Optional[str]:
        if image is None:
            return None
        if image.whatsapp_media_id:
            return image.whatsapp_media_id
        if image.uploaded_url:
            try:
                image.whatsapp_media_id = await self.transport.upload_image_from_url(image.uploaded_url)
                return image.whatsapp_media_id
            except TransportError as e:
                user_logger(logger, session.user_id).warning(
                    "Failed to mirror header image", context={"error": str(e)}
                )
        return image.media_id

    async def generate(self, session: UserSession) -> None:
        """Run the edit agent, then close edit mode whatever the outcome."""
        edit_session = session.edit_session
        if edit_session is None:
            return

        if not edit_session.pending_query:
            await self.transport.send_text(session.user_id, MISSING_QUERY_TEXT)
            return

        await self.transport.send_text(session.user_id, GENERATING_TEXT)
        try:
            await self._dispatch(session, edit_session.pending_query, list(edit_session.images))
        finally:
            self.end(session)

    async def _dispatch(self, session: UserSession, query: str, images: list[EditImage]) -> None:
        user_id = session.user_id
        log = user_logger(logger, user_id)
        try:
            agent_data = await self.agent.generate_edit(query, images)
            generated = extract_generated_design(agent_data)
            if generated is None:
                raise AgentError("Agent workflow did not return an image URL.")

            media_id = await self.transport.upload_image_from_url(generated.image_url)
            message = "\n\n".join(
                [
                    f"🖼️ *{generated.name}*",
                    generated.description,
                    "Choose *Looks Good* to keep this design, or *Edit Again* to tweak, add, or remove reference images.",
                ]
            )
            await self.transport.send_interactive_buttons(
                user_id,
                message,
                [
                    Button(id="edit_result_ok", title="Looks Good"),
                    Button(id="edit_result_refine", title="Edit Again"),
                    Button(id="edit_result_preferences", title="Edit Preferences"),
                ],
                media_id=media_id,
            )
        except (AgentError, TransportError, UnrecognizedShapeError) as e:
            log.error("Edit generation failed", context={"error": str(e)})
            await self.transport.send_text(user_id, APOLOGY_TEXT)
            return

        generated_meta = dict(
            primary_image_url=generated.image_url,
            primary_caption=generated.name,
            primary_media_id=media_id,
            primary_whatsapp_id=media_id,
        )
        pinned = next((image for image in images if image.is_primary and (image.url or image.media_id)), None)
        if pinned is not None:
            refine_meta = dict(
                primary_image_url=pinned.url,
                primary_caption=pinned.caption,
                primary_media_id=pinned.media_id,
                primary_whatsapp_id=pinned.whatsapp_media_id or pinned.media_id,
            )
        else:
            refine_meta = generated_meta

        session.inspiration = InspirationContext(
            preview=None,
            actions={
                "edit_result_ok": InspirationAction(action=FINAL_DESIGN_ACCEPT),
                "edit_result_refine": InspirationAction(action=RESTART_EDIT_SESSION, **refine_meta),
                "edit_result_preferences": InspirationAction(action=START_EDIT_PREFERENCES, **generated_meta),
            },
        )
        log.info("Edit result delivered", context={"media_id": media_id})

    async def notify_expired(self, session: UserSession) -> None:
        window = describe_window(self.sessions.edit_session_timeout)
        await self.transport.send_text(session.user_id, f"⏰ Edit mode closed after {window} with no reply.")
