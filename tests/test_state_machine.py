import pytest

from abyat.services.state_machine import (
    AWAITING_STEPS,
    VALID_TRANSITIONS,
    FacetStep,
    InvalidTransitionError,
    can_transition,
    step_for_facet,
    transition,
)


class TestFacetStep:
    def test_all_states_exist(self):
        assert FacetStep.AWAITING_FACET == "awaiting_facet"
        assert FacetStep.AWAITING_PRICE == "awaiting_price"
        assert FacetStep.AWAITING_FREE_TEXT == "awaiting_free_text"
        assert FacetStep.SESSION_RESET == "session_reset"

    def test_every_state_has_transitions(self):
        for state in FacetStep:
            assert state in VALID_TRANSITIONS


class TestStepForFacet:
    def test_no_pending_facet_awaits_free_text(self):
        assert step_for_facet(None) == FacetStep.AWAITING_FREE_TEXT

    def test_prices_awaits_price(self):
        assert step_for_facet("prices") == FacetStep.AWAITING_PRICE

    @pytest.mark.parametrize("facet_key", ["rooms", "colors", "livingRoomLayout", "outdoorFeature"])
    def test_other_facets_await_facet(self, facet_key):
        assert step_for_facet(facet_key) == FacetStep.AWAITING_FACET


class TestTransitions:
    def test_reset_leads_to_any_awaiting_state(self):
        for state in AWAITING_STEPS:
            assert can_transition(FacetStep.SESSION_RESET, state)

    def test_awaiting_states_move_freely(self):
        assert can_transition(FacetStep.AWAITING_PRICE, FacetStep.AWAITING_FACET)
        assert can_transition(FacetStep.AWAITING_FREE_TEXT, FacetStep.AWAITING_FREE_TEXT)

    @pytest.mark.parametrize("from_state", list(FacetStep))
    def test_reset_is_never_reentered(self, from_state):
        assert not can_transition(from_state, FacetStep.SESSION_RESET)

    def test_transition_returns_target(self):
        assert transition(FacetStep.AWAITING_FACET, FacetStep.AWAITING_PRICE) == FacetStep.AWAITING_PRICE

    def test_invalid_transition_raises(self):
        with pytest.raises(InvalidTransitionError) as exc_info:
            transition(FacetStep.AWAITING_PRICE, FacetStep.SESSION_RESET)
        assert exc_info.value.from_state == FacetStep.AWAITING_PRICE
        assert "awaiting_price -> session_reset" in str(exc_info.value)
