"""
Document status machine (``amptrack_kernel.domain.status``).

Responsibility
--------------
Encodes the legal status values and transitions for each document type and
the side effects a transition mandates (date stamping).  Services call
``plan_transition`` to validate a request and ``apply_status_change`` to
apply it to a row.

Architecture position
---------------------
**Kernel domain layer** -- pure value objects.  ZERO I/O.  Operates on any
object with ``document_type``/``status`` attributes; does not import models.

Invariants enforced
-------------------
* Transitions reference only states in ``Workflow.states``.
* A request for the current status is a no-op; side effects are not
  re-applied.
* Stamped dates (``paid_date``, ``approved_date``) are only set when unset.
* Overdue is derived on read: an invoice stored as draft/sent with
  ``due_date < today`` reports ``overdue`` without a stored transition.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import date, datetime
from typing import Any

from amptrack_kernel.exceptions import IllegalTransitionError, InvalidStatusError

ANY_STATE = "*"


@dataclass(frozen=True)
class Transition:
    """A valid state transition.

    ``from_state`` may be ANY_STATE.  ``stamps`` names a date attribute set
    to today when the transition fires and the attribute is still empty.
    """
    from_state: str
    to_state: str
    action: str
    stamps: str | None = None

    def matches(self, from_state: str, to_state: str) -> bool:
        return self.to_state == to_state and self.from_state in (ANY_STATE, from_state)


@dataclass(frozen=True)
class Workflow:
    """A status machine for one document type.

    Contract: frozen; ``transitions`` reference only states in ``states``.
    """
    name: str
    initial_state: str
    states: tuple[str, ...]
    transitions: tuple[Transition, ...]

    def __post_init__(self) -> None:
        if self.initial_state not in self.states:
            raise ValueError(f"{self.name}: initial state {self.initial_state!r} not in states")
        for t in self.transitions:
            if t.to_state not in self.states or t.from_state not in (*self.states, ANY_STATE):
                raise ValueError(f"{self.name}: transition {t} references unknown state")

    def find(self, from_state: str, to_state: str) -> Transition | None:
        for transition in self.transitions:
            if transition.matches(from_state, to_state):
                return transition
        return None


ESTIMATE_WORKFLOW = Workflow(
    name="estimate",
    initial_state="draft",
    states=("draft", "sent", "approved", "rejected"),
    transitions=(
        Transition("draft", "sent", action="send"),
        Transition(ANY_STATE, "approved", action="approve"),
        Transition(ANY_STATE, "rejected", action="reject"),
    ),
)

INVOICE_WORKFLOW = Workflow(
    name="invoice",
    initial_state="draft",
    states=("draft", "sent", "paid", "overdue", "cancelled"),
    transitions=(
        Transition("draft", "sent", action="send"),
        Transition(ANY_STATE, "paid", action="pay", stamps="paid_date"),
        Transition("draft", "overdue", action="mark_overdue"),
        Transition("sent", "overdue", action="mark_overdue"),
        Transition(ANY_STATE, "cancelled", action="cancel"),
    ),
)

CHANGE_ORDER_WORKFLOW = Workflow(
    name="change_order",
    initial_state="draft",
    states=("draft", "sent", "approved", "rejected", "cancelled"),
    transitions=(
        Transition("draft", "sent", action="send"),
        Transition(ANY_STATE, "approved", action="approve", stamps="approved_date"),
        Transition(ANY_STATE, "rejected", action="reject"),
        Transition(ANY_STATE, "cancelled", action="cancel"),
    ),
)

WORKFLOWS: dict[str, Workflow] = {
    wf.name: wf for wf in (ESTIMATE_WORKFLOW, INVOICE_WORKFLOW, CHANGE_ORDER_WORKFLOW)
}

OVERDUE_ELIGIBLE = frozenset({"draft", "sent"})


def _type_key(document_type: Any) -> str:
    return getattr(document_type, "value", document_type)


def workflow_for(document_type: Any) -> Workflow:
    key = _type_key(document_type)
    try:
        return WORKFLOWS[key]
    except KeyError:
        raise ValueError(f"Unknown document type: {key!r}") from None


def validate_status(document_type: Any, status: Any) -> str:
    """Return ``status`` if it belongs to the type's status set.

    Raises:
        InvalidStatusError: For any value outside the set (no coercion).
    """
    workflow = workflow_for(document_type)
    if not isinstance(status, str) or status not in workflow.states:
        raise InvalidStatusError(workflow.name, str(status), workflow.states)
    return status


@dataclass(frozen=True)
class StatusChange:
    """Outcome of planning a transition; ``transition`` is None for no-ops."""
    document_type: str
    from_status: str
    to_status: str
    transition: Transition | None

    @property
    def is_noop(self) -> bool:
        return self.transition is None


def plan_transition(document_type: Any, current: str, target: Any) -> StatusChange:
    """
    Validate a status request against the workflow.

    Raises:
        InvalidStatusError: Target outside the type's status set.
        IllegalTransitionError: No transition from ``current`` to ``target``.
    """
    workflow = workflow_for(document_type)
    target = validate_status(document_type, target)
    if target == current:
        return StatusChange(workflow.name, current, target, None)
    transition = workflow.find(current, target)
    if transition is None:
        raise IllegalTransitionError(workflow.name, current, target)
    return StatusChange(workflow.name, current, target, transition)


def apply_status_change(document: Any, change: StatusChange, *, now: datetime) -> bool:
    """
    Apply a planned change to a document row.

    Returns True when the row changed.  Stamps ``status_changed_at`` and the
    transition's date attribute (only if unset).
    """
    if change.is_noop:
        return False
    document.status = change.to_status
    document.status_changed_at = now
    stamp = change.transition.stamps
    if stamp is not None and getattr(document, stamp) is None:
        setattr(document, stamp, now.date())
    return True


def transition_document(document: Any, target: Any, *, now: datetime) -> StatusChange:
    """Plan and apply in one step; returns the plan."""
    change = plan_transition(document.document_type, document.status, target)
    apply_status_change(document, change, now=now)
    return change


def is_overdue(document_type: Any, status: str, due_date: date | None, today: date) -> bool:
    return (
        _type_key(document_type) == "invoice"
        and status in OVERDUE_ELIGIBLE
        and due_date is not None
        and due_date < today
    )


def effective_status(document_type: Any, status: str, due_date: date | None, today: date) -> str:
    """Status as reported to callers, with overdue evaluated lazily."""
    if is_overdue(document_type, status, due_date, today):
        return "overdue"
    return status
