from dataclasses import dataclass

from fastapi import Request

from abyat.config import Settings, settings
from abyat.services.agent_service import AgentClient
from abyat.services.conversation_service import ConversationService
from abyat.services.dedup_service import MessageDeduplicator
from abyat.services.edit_session_service import EditSessionService
from abyat.services.inspiration_service import InspirationService
from abyat.services.session_service import SessionService
from abyat.services.session_store import SessionStore
from abyat.services.whatsapp_service import WhatsAppService


@dataclass
class Services:
    store: SessionStore
    sessions: SessionService
    dedup: MessageDeduplicator
    transport: WhatsAppService
    agent: AgentClient
    conversation: ConversationService


def build_services(config: Settings) -> Services:
    store = SessionStore()
    sessions = SessionService(
        store,
        session_timeout=config.session_timeout_seconds,
        edit_session_timeout=config.edit_session_timeout_seconds,
        gateway_url=config.gateway_url,
        http_timeout=config.http_timeout_seconds,
    )
    transport = WhatsAppService(
        access_token=config.access_token,
        phone_number_id=config.phone_number_id,
        api_version=config.graph_api_version,
        base_url=config.graph_api_base_url,
        timeout=config.http_timeout_seconds,
    )
    agent = AgentClient(
        authorize_token=config.authorize_token,
        start_endpoint=config.agent_start_endpoint,
        edit_start_endpoint=config.edit_agent_start_endpoint,
        file_upload_endpoint=config.file_upload_endpoint,
        subdomain=config.agent_subdomain,
        user_type=config.agent_user_type,
        timeout=config.http_timeout_seconds,
    )
    edit_sessions = EditSessionService(transport, agent, sessions)
    inspirations = InspirationService(
        agent,
        transport,
        min_preview_count=config.min_preview_count,
        retry_seconds=config.preview_retry_seconds,
        send_delay=config.preview_send_delay_seconds,
    )
    inspirations.edit_sessions = edit_sessions
    conversation = ConversationService(store, sessions, transport, agent, inspirations, edit_sessions)
    return Services(
        store=store,
        sessions=sessions,
        dedup=MessageDeduplicator(ttl_seconds=config.dedup_ttl_seconds, max_entries=config.dedup_max_entries),
        transport=transport,
        agent=agent,
        conversation=conversation,
    )


def get_settings() -> Settings:
    return settings


def get_services(request: Request) -> Services:
    return request.app.state.services
