from enum import Enum
from typing import Optional


class FacetStep(str, Enum):
    AWAITING_FACET = "awaiting_facet"
    AWAITING_PRICE = "awaiting_price"
    AWAITING_FREE_TEXT = "awaiting_free_text"
    SESSION_RESET = "session_reset"


AWAITING_STEPS = [FacetStep.AWAITING_FACET, FacetStep.AWAITING_PRICE, FacetStep.AWAITING_FREE_TEXT]

# SESSION_RESET is only the entry step of a fresh session. A reset replaces
# the session instead of moving an existing one back.
VALID_TRANSITIONS = {
    FacetStep.SESSION_RESET: AWAITING_STEPS,
    FacetStep.AWAITING_FACET: AWAITING_STEPS,
    FacetStep.AWAITING_PRICE: AWAITING_STEPS,
    FacetStep.AWAITING_FREE_TEXT: AWAITING_STEPS,
}


class InvalidTransitionError(Exception):
    def __init__(self, from_state: FacetStep, to_state: FacetStep):
        self.from_state = from_state
        self.to_state = to_state
        super().__init__(f"Invalid transition: {from_state.value} -> {to_state.value}")


def step_for_facet(facet_key: Optional[str]) -> FacetStep:
    """Map the pending facet key (UserStep) to its conversational state."""
    if facet_key is None:
        return FacetStep.AWAITING_FREE_TEXT
    if facet_key == "prices":
        return FacetStep.AWAITING_PRICE
    return FacetStep.AWAITING_FACET


def can_transition(from_state: FacetStep, to_state: FacetStep) -> bool:
    """Check if transition is valid."""
    return to_state in VALID_TRANSITIONS.get(from_state, [])


def transition(from_state: FacetStep, to_state: FacetStep) -> FacetStep:
    """Perform state transition. Raises InvalidTransitionError if not allowed."""
    if not can_transition(from_state, to_state):
        raise InvalidTransitionError(from_state, to_state)
    return to_state
