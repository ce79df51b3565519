"""Request model validation for money amounts."""

from decimal import Decimal

import pytest
from pydantic import ValidationError

from gigmarket.api.schemas import (
    CounterOfferRequest,
    CounterRequest,
    JobCreate,
    OfferCreate,
    ProposalCreate,
)

JOB = {
    "title": "Paint the hall",
    "description": "Two coats",
    "category": "painting",
    "location": "Dhaka",
    "budget_min": "100",
    "budget_max": "200",
}


class TestMoneyPrecision:
    @pytest.mark.parametrize("build", [
        lambda amount: ProposalCreate(amount=amount),
        lambda amount: CounterRequest(amount=amount),
        lambda amount: CounterOfferRequest(amount=amount),
        lambda amount: OfferCreate(service_description="Paint", proposed_cost=amount),
        lambda amount: JobCreate(**{**JOB, "budget_max": amount}),
    ])
    def test_more_than_two_decimals_is_rejected(self, build):
        with pytest.raises(ValidationError):
            build("150.005")

    def test_cents_are_accepted(self):
        assert ProposalCreate(amount="150.05").amount == Decimal("150.05")
        assert ProposalCreate(amount=150).amount == Decimal("150")

    def test_amount_must_be_positive(self):
        with pytest.raises(ValidationError):
            ProposalCreate(amount="0")
