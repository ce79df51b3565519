"""Tests for marketplace state machines: transitions and actors."""

import pytest

from gigmarket.services.state_machine import (
    Action,
    Actor,
    DealStatus,
    Entity,
    InvalidTransitionError,
    JobStatus,
    ProposalStatus,
    get_available_actions,
    validate_transition,
)


class TestJobLifecycle:
    def test_open_to_completed(self):
        status = validate_transition(Entity.JOB, JobStatus.OPEN, Action.START, Actor.SYSTEM)
        assert status == JobStatus.IN_PROGRESS

        status = validate_transition(Entity.JOB, status, Action.FINISH, Actor.SYSTEM)
        assert status == JobStatus.COMPLETED

    def test_client_cancels_open_job(self):
        status = validate_transition(Entity.JOB, "open", "cancel", "client")
        assert status == JobStatus.CANCELLED

    def test_cannot_cancel_in_progress_job(self):
        with pytest.raises(InvalidTransitionError):
            validate_transition(Entity.JOB, "in_progress", "cancel", "client")

    def test_client_cannot_start_job_directly(self):
        with pytest.raises(InvalidTransitionError) as exc_info:
            validate_transition(Entity.JOB, "open", "start", "client")
        assert "by client" in str(exc_info.value)


class TestProposalLifecycle:
    @pytest.mark.parametrize("action,expected", [
        ("accept", ProposalStatus.ACCEPTED),
        ("reject", ProposalStatus.REJECTED),
        ("counter", ProposalStatus.COUNTERED),
    ])
    def test_pending_answers(self, action, expected):
        assert validate_transition(Entity.PROPOSAL, "pending", action, "client") == expected

    @pytest.mark.parametrize("current", ["accepted", "rejected", "countered"])
    def test_terminal_rows_cannot_be_answered(self, current):
        with pytest.raises(InvalidTransitionError):
            validate_transition(Entity.PROPOSAL, current, "accept", "client")

    def test_system_cannot_accept(self):
        with pytest.raises(InvalidTransitionError):
            validate_transition(Entity.PROPOSAL, "pending", "accept", "system")


class TestDealLifecycle:
    def test_client_completes(self):
        assert validate_transition(Entity.DEAL, "active", "complete", "client") == DealStatus.COMPLETED

    def test_provider_cannot_complete(self):
        with pytest.raises(InvalidTransitionError):
            validate_transition(Entity.DEAL, "active", "complete", "provider")

    def test_second_completion_is_invalid(self):
        with pytest.raises(InvalidTransitionError):
            validate_transition(Entity.DEAL, "completed", "complete", "client")


class TestOfferLifecycle:
    def test_any_participant_may_answer(self):
        assert validate_transition(Entity.OFFER, "pending", "counter", "provider") == "countered"
        assert validate_transition(Entity.OFFER, "pending", "accept", "client") == "accepted"

    def test_answered_offer_is_closed(self):
        with pytest.raises(InvalidTransitionError):
            validate_transition(Entity.OFFER, "rejected", "accept", "client")


class TestAvailableActions:
    def test_pending_proposal_actions(self):
        assert get_available_actions(Entity.PROPOSAL, "pending", "client") == [
            "accept",
            "reject",
            "counter",
        ]

    def test_terminal_has_no_actions(self):
        assert get_available_actions(Entity.DEAL, "completed", "client") == []
        assert get_available_actions(Entity.PROPOSAL, "countered", "provider") == []

    def test_provider_has_no_deal_actions(self):
        assert get_available_actions(Entity.DEAL, "active", "provider") == []

    def test_unknown_values(self):
        assert get_available_actions("nope", "open", "client") == []
        assert get_available_actions(Entity.JOB, "bogus", "client") == []

    def test_invalid_inputs_raise(self):
        with pytest.raises(InvalidTransitionError):
            validate_transition(Entity.JOB, "bogus", "start", "system")


class TestTerminal:
    @pytest.mark.parametrize("entity,status,actor", [
        (Entity.JOB, "completed", "client"),
        (Entity.JOB, "cancelled", "client"),
        (Entity.PROPOSAL, "accepted", "client"),
        (Entity.PROPOSAL, "countered", "provider"),
        (Entity.DEAL, "completed", "client"),
    ])
    def test_terminal_status_has_no_actions(self, entity, status, actor):
        assert get_available_actions(entity, status, actor) == []
