"""Marketplace state machines: pure logic, no DB dependency.

Defines the job, proposal, deal and chat-offer lifecycles, the actors
allowed to drive each transition, and helpers for validation and
action discovery.
"""

from enum import StrEnum


class JobStatus(StrEnum):
    OPEN = "open"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    CANCELLED = "cancelled"


class ProposalStatus(StrEnum):
    PENDING = "pending"
    ACCEPTED = "accepted"
    REJECTED = "rejected"
    COUNTERED = "countered"


class DealStatus(StrEnum):
    ACTIVE = "active"
    COMPLETED = "completed"


# Chat offers share the proposal vocabulary so a linked payload can mirror
# its proposal row verbatim.
OfferStatus = ProposalStatus


class Action(StrEnum):
    START = "start"
    FINISH = "finish"
    CANCEL = "cancel"
    ACCEPT = "accept"
    REJECT = "reject"
    COUNTER = "counter"
    COMPLETE = "complete"


class Actor(StrEnum):
    CLIENT = "client"
    PROVIDER = "provider"
    SYSTEM = "system"
    ANY = "any"


class Entity(StrEnum):
    JOB = "job"
    PROPOSAL = "proposal"
    DEAL = "deal"
    OFFER = "offer"


class InvalidTransitionError(Exception):
    """Raised when a transition is not allowed."""

    def __init__(
        self, entity: str, current: str, action: str, actor: str | None = None
    ):
        self.entity = entity
        self.current = current
        self.action = action
        self.actor = actor
        msg = f"Invalid {entity} transition: {current} + {action}"
        if actor:
            msg += f" by {actor}"
        super().__init__(msg)


_Table = dict[tuple[StrEnum, Action], tuple[StrEnum, frozenset[Actor]]]

JOB_TRANSITIONS: _Table = {
    (JobStatus.OPEN, Action.START): (
        JobStatus.IN_PROGRESS,
        frozenset({Actor.SYSTEM}),
    ),
    (JobStatus.IN_PROGRESS, Action.FINISH): (
        JobStatus.COMPLETED,
        frozenset({Actor.SYSTEM}),
    ),
    (JobStatus.OPEN, Action.CANCEL): (
        JobStatus.CANCELLED,
        frozenset({Actor.CLIENT}),
    ),
}

# A provider only ever answers a row written by the client (a counter offer);
# the proposal service resolves which side the caller is on.
PROPOSAL_TRANSITIONS: _Table = {
    (ProposalStatus.PENDING, Action.ACCEPT): (
        ProposalStatus.ACCEPTED,
        frozenset({Actor.CLIENT, Actor.PROVIDER}),
    ),
    (ProposalStatus.PENDING, Action.REJECT): (
        ProposalStatus.REJECTED,
        frozenset({Actor.CLIENT, Actor.PROVIDER}),
    ),
    (ProposalStatus.PENDING, Action.COUNTER): (
        ProposalStatus.COUNTERED,
        frozenset({Actor.CLIENT, Actor.PROVIDER}),
    ),
}

DEAL_TRANSITIONS: _Table = {
    (DealStatus.ACTIVE, Action.COMPLETE): (
        DealStatus.COMPLETED,
        frozenset({Actor.CLIENT}),
    ),
}

# Either participant may answer an offer; "not your own offer" is checked
# by the negotiation service.
OFFER_TRANSITIONS: _Table = {
    (OfferStatus.PENDING, Action.ACCEPT): (
        OfferStatus.ACCEPTED,
        frozenset({Actor.ANY}),
    ),
    (OfferStatus.PENDING, Action.REJECT): (
        OfferStatus.REJECTED,
        frozenset({Actor.ANY}),
    ),
    (OfferStatus.PENDING, Action.COUNTER): (
        OfferStatus.COUNTERED,
        frozenset({Actor.ANY}),
    ),
}

_TABLES: dict[Entity, tuple[type[StrEnum], _Table]] = {
    Entity.JOB: (JobStatus, JOB_TRANSITIONS),
    Entity.PROPOSAL: (ProposalStatus, PROPOSAL_TRANSITIONS),
    Entity.DEAL: (DealStatus, DEAL_TRANSITIONS),
    Entity.OFFER: (OfferStatus, OFFER_TRANSITIONS),
}

TERMINAL_STATUSES: dict[Entity, frozenset[StrEnum]] = {
    Entity.JOB: frozenset({JobStatus.COMPLETED, JobStatus.CANCELLED}),
    Entity.PROPOSAL: frozenset({
        ProposalStatus.ACCEPTED,
        ProposalStatus.REJECTED,
        ProposalStatus.COUNTERED,
    }),
    Entity.DEAL: frozenset({DealStatus.COMPLETED}),
    Entity.OFFER: frozenset({
        OfferStatus.ACCEPTED,
        OfferStatus.REJECTED,
        OfferStatus.COUNTERED,
    }),
}


def validate_transition(
    entity: str, current: str, action: str, actor: str,
) -> StrEnum:
    """Validate and return the new status for a transition.

    Raises InvalidTransitionError if the transition is not allowed.
    """
    try:
        status_enum, table = _TABLES[Entity(entity)]
        current_status = status_enum(current)
        act = Action(action)
        actor_enum = Actor(actor)
    except (KeyError, ValueError):
        raise InvalidTransitionError(entity, current, action, actor)

    key = (current_status, act)
    if key not in table:
        raise InvalidTransitionError(entity, current, action, actor)

    new_status, allowed_actors = table[key]

    if Actor.ANY not in allowed_actors and actor_enum not in allowed_actors:
        raise InvalidTransitionError(entity, current, action, actor)

    return new_status


def get_available_actions(entity: str, current: str, actor: str) -> list[str]:
    """Return list of action names available for the given status and actor."""
    try:
        ent = Entity(entity)
        status_enum, table = _TABLES[ent]
        current_status = status_enum(current)
        actor_enum = Actor(actor)
    except (KeyError, ValueError):
        return []

    if current_status in TERMINAL_STATUSES[ent]:
        return []

    actions: list[str] = []
    for (status, action), (_, allowed_actors) in table.items():
        if status != current_status:
            continue
        if Actor.ANY in allowed_actors or actor_enum in allowed_actors:
            actions.append(action.value)

    return actions
