from datetime import datetime
from decimal import Decimal
from typing import Annotated, Literal, Union

from pydantic import BaseModel, Field, PlainSerializer, TypeAdapter

# Money keeps Decimal precision in Python and serializes as a JSON number.
Money = Annotated[
    Decimal,
    PlainSerializer(lambda v: float(v), return_type=float, when_used="json"),
]

_MAX_AMOUNT = Decimal("9999999999.99")

NegotiationStatus = Literal["pending", "accepted", "rejected", "countered"]


# ---------------------------------------------------------------------------
# Profile
# ---------------------------------------------------------------------------


class ProfileUpsert(BaseModel):
    full_name: str | None = Field(default=None, max_length=255)
    user_type: Literal["client", "provider"] | None = None
    phone: str | None = Field(default=None, max_length=32)
    location: str | None = Field(default=None, max_length=255)
    avatar_url: str | None = Field(default=None, max_length=512)


class ProfilePublic(BaseModel):
    id: int
    full_name: str | None
    user_type: str
    location: str | None = None
    avatar_url: str | None = None

    model_config = {"from_attributes": True}


class ProfileResponse(ProfilePublic):
    auth_user_id: str
    phone: str | None = None
    created_at: datetime


# ---------------------------------------------------------------------------
# Job
# ---------------------------------------------------------------------------


class JobCreate(BaseModel):
    title: str = Field(..., min_length=1, max_length=255)
    description: str = Field(..., min_length=1)
    category: str = Field(..., min_length=1, max_length=100)
    location: str = Field(..., min_length=1, max_length=255)
    budget_min: Decimal = Field(..., gt=0, le=_MAX_AMOUNT, decimal_places=2)
    budget_max: Decimal = Field(..., gt=0, le=_MAX_AMOUNT, decimal_places=2)
    urgent: bool = False


class JobFilter(BaseModel):
    category: str | None = None
    location: str | None = None
    urgent: bool | None = None


class JobResponse(BaseModel):
    id: int
    client_id: int
    title: str
    description: str
    category: str
    location: str
    status: str
    budget_min: Money
    budget_max: Money
    urgent: bool
    client: ProfilePublic | None = None
    created_at: datetime
    updated_at: datetime

    model_config = {"from_attributes": True}


class PaginatedJobResponse(BaseModel):
    items: list[JobResponse]
    total: int
    offset: int
    limit: int
    has_more: bool


# ---------------------------------------------------------------------------
# Proposal
# ---------------------------------------------------------------------------


class ProposalCreate(BaseModel):
    amount: Decimal = Field(..., gt=0, le=_MAX_AMOUNT, decimal_places=2)
    message: str | None = Field(default=None, max_length=2000)


class InterestRequest(BaseModel):
    message: str | None = Field(default=None, max_length=2000)


class CounterRequest(BaseModel):
    amount: Decimal = Field(..., gt=0, le=_MAX_AMOUNT, decimal_places=2)
    message: str | None = Field(default=None, max_length=2000)


class ProposalResponse(BaseModel):
    id: int
    job_id: int
    provider_id: int
    author_id: int | None = None
    previous_proposal_id: int | None = None
    amount: Money
    message: str | None
    status: str
    created_at: datetime

    model_config = {"from_attributes": True}


class ProposalChainResponse(BaseModel):
    job_id: int
    provider_id: int
    provider: ProfilePublic | None = None
    proposals: list[ProposalResponse]
    latest: ProposalResponse
    actionable_proposal_id: int | None = None
    available_actions: list[str] = []


# ---------------------------------------------------------------------------
# Deal
# ---------------------------------------------------------------------------


class DealResponse(BaseModel):
    id: int
    job_id: int
    client_id: int
    provider_id: int
    proposal_id: int | None
    agreed_amount: Money
    status: str
    created_at: datetime
    completed_at: datetime | None = None

    model_config = {"from_attributes": True}


class DealDetailResponse(DealResponse):
    available_actions: list[str] = []


class AcceptResult(BaseModel):
    proposal: ProposalResponse
    deal: DealResponse


class InterestResult(BaseModel):
    proposal: ProposalResponse
    conversation_id: int


# ---------------------------------------------------------------------------
# Conversation / Message
# ---------------------------------------------------------------------------


class ConversationCreate(BaseModel):
    job_id: int
    provider_id: int | None = None
    proposal_id: int | None = None


class ConversationResponse(BaseModel):
    id: int
    job_id: int
    client_id: int
    provider_id: int
    proposal_id: int | None = None
    deal_id: int | None = None
    status: str
    created_at: datetime
    updated_at: datetime

    model_config = {"from_attributes": True}


class MessageCreate(BaseModel):
    content: str = Field(..., min_length=1, max_length=5000)
    message_type: Literal["text", "image"] = "text"
    attachment_url: str | None = Field(default=None, max_length=1024)


class MessageResponse(BaseModel):
    id: int
    conversation_id: int
    sender_id: int
    content: str
    message_type: str
    attachment_url: str | None = None
    negotiation_data: dict | None = None
    read_at: datetime | None = None
    created_at: datetime

    model_config = {"from_attributes": True}


class ConversationSummary(ConversationResponse):
    job_title: str | None = None
    last_message: MessageResponse | None = None
    unread_count: int = 0


class AttachmentResponse(BaseModel):
    url: str
    content_type: str
    size: int


# ---------------------------------------------------------------------------
# Negotiation payloads (stored in Message.negotiation_data)
# ---------------------------------------------------------------------------


class _PayloadBase(BaseModel):
    status: NegotiationStatus = "pending"
    proposal_id: int | None = Field(default=None, alias="proposalId")

    model_config = {"populate_by_name": True}


class ProposalPayload(_PayloadBase):
    type: Literal["proposal"] = "proposal"
    amount: Money

    @property
    def value(self) -> Decimal:
        return self.amount


class CounterOfferPayload(_PayloadBase):
    type: Literal["counter_offer"] = "counter_offer"
    amount: Money
    original_amount: Money | None = Field(default=None, alias="originalAmount")
    message: str | None = None

    @property
    def value(self) -> Decimal:
        return self.amount


class OfferPayload(_PayloadBase):
    type: Literal["offer"] = "offer"
    service_description: str = Field(..., min_length=1, alias="serviceDescription")
    proposed_cost: Money = Field(..., alias="proposedCost")
    service_date: str | None = Field(default=None, alias="serviceDate")
    service_time: str | None = Field(default=None, alias="serviceTime")
    additional_notes: str | None = Field(default=None, alias="additionalNotes")
    attachment_url: str | None = Field(default=None, alias="attachmentUrl")

    @property
    def value(self) -> Decimal:
        return self.proposed_cost


NegotiationPayload = Annotated[
    Union[ProposalPayload, CounterOfferPayload, OfferPayload],
    Field(discriminator="type"),
]

negotiation_payload_adapter: TypeAdapter[NegotiationPayload] = TypeAdapter(NegotiationPayload)


def parse_negotiation_payload(data: dict) -> NegotiationPayload:
    return negotiation_payload_adapter.validate_python(data)


def dump_negotiation_payload(payload: NegotiationPayload) -> dict:
    return payload.model_dump(mode="json", by_alias=True, exclude_none=True)


class OfferCreate(BaseModel):
    service_description: str = Field(..., min_length=1, max_length=2000)
    proposed_cost: Decimal = Field(..., gt=0, le=_MAX_AMOUNT, decimal_places=2)
    service_date: str | None = Field(default=None, max_length=32)
    service_time: str | None = Field(default=None, max_length=32)
    additional_notes: str | None = Field(default=None, max_length=2000)
    attachment_url: str | None = Field(default=None, max_length=1024)


class CounterOfferRequest(BaseModel):
    amount: Decimal = Field(..., gt=0, le=_MAX_AMOUNT, decimal_places=2)
    message: str | None = Field(default=None, max_length=2000)


class OfferActionResult(BaseModel):
    message: MessageResponse
    proposal: ProposalResponse | None = None
    deal: DealResponse | None = None


# ---------------------------------------------------------------------------
# Notification
# ---------------------------------------------------------------------------


class NotificationResponse(BaseModel):
    id: int
    user_id: int
    type: str
    title: str
    message: str
    related_job_id: int | None = None
    related_proposal_id: int | None = None
    related_deal_id: int | None = None
    related_conversation_id: int | None = None
    read: bool
    created_at: datetime
    count: int | None = None
    notification_ids: list[int] = []

    model_config = {"from_attributes": True}


class UnreadCountResponse(BaseModel):
    count: int


class MarkReadResponse(BaseModel):
    updated: int


# ---------------------------------------------------------------------------
# Internal
# ---------------------------------------------------------------------------


class ReconcileResponse(BaseModel):
    checked: int
    deals_created: int
    demoted: int
