from abyat.services.conversation_service import ConversationService
from abyat.services.dedup_service import MessageDeduplicator
from abyat.services.session_service import SessionService
from abyat.services.session_store import SessionStore, UserSession
from abyat.services.state_machine import (
    FacetStep,
    InvalidTransitionError,
    can_transition,
    transition,
)
