"""
Workflow value objects and the invoice state machine
(``billing_kernel.domain.workflow``).

Responsibility
--------------
Pure value objects for document state machines, plus ``INVOICE_WORKFLOW``,
the single table the lifecycle manager consults before every status
change.

Architecture position
---------------------
**Kernel domain layer** -- pure value objects.  ZERO I/O.

Invariants enforced
-------------------
* Transitions reference only states in ``Workflow.states``.
* ``initial_state`` is a member of ``states``.
* Terminal states have no outgoing transitions.
"""

from __future__ import annotations

from dataclasses import dataclass


@dataclass(frozen=True)
class Guard:
    """A condition that must hold before a transition fires.

    Declared here by name; ``billing_services.invoice_lifecycle.GUARD_EVALUATORS``
    holds the evaluator for each one.
    """
    name: str
    description: str


@dataclass(frozen=True)
class Transition:
    """A valid state transition in a workflow."""
    from_state: str
    to_state: str
    action: str
    guard: Guard | None = None


@dataclass(frozen=True)
class Workflow:
    """A state machine definition for a document lifecycle."""
    name: str
    description: str
    initial_state: str
    states: tuple[str, ...]
    transitions: tuple[Transition, ...]
    terminal_states: tuple[str, ...] = ()

    def __post_init__(self) -> None:
        if self.initial_state not in self.states:
            raise ValueError(
                f"initial_state {self.initial_state!r} not in states of {self.name}"
            )
        for t in self.transitions:
            if t.from_state not in self.states or t.to_state not in self.states:
                raise ValueError(
                    f"Transition {t.action} {t.from_state}->{t.to_state} "
                    f"references unknown state in {self.name}"
                )
            if t.from_state in self.terminal_states:
                raise ValueError(
                    f"Terminal state {t.from_state} has outgoing transition {t.action}"
                )

    def transitions_for(self, from_state: str, action: str) -> tuple[Transition, ...]:
        return tuple(
            t for t in self.transitions
            if t.from_state == from_state and t.action == action
        )

    def find(self, from_state: str, action: str, to_state: str) -> Transition | None:
        for t in self.transitions_for(from_state, action):
            if t.to_state == to_state:
                return t
        return None

    def allowed_actions(self, from_state: str) -> frozenset[str]:
        return frozenset(t.action for t in self.transitions if t.from_state == from_state)


# -----------------------------------------------------------------------------
# Guards
# -----------------------------------------------------------------------------

HAS_LINES = Guard(
    name="has_lines",
    description="Invoice has at least one line item",
)

BALANCE_SETTLED = Guard(
    name="balance_settled",
    description="amount_paid >= total",
)

BALANCE_OUTSTANDING = Guard(
    name="balance_outstanding",
    description="amount_paid < total",
)

PAST_DUE = Guard(
    name="past_due",
    description="now > due_date and amount_paid < total",
)


# -----------------------------------------------------------------------------
# Invoice Workflow
# -----------------------------------------------------------------------------

INVOICE_WORKFLOW = Workflow(
    name="guest_invoice",
    description="Guest folio invoice lifecycle",
    initial_state="draft",
    states=(
        "draft",
        "issued",
        "partially_paid",
        "paid",
        "overdue",
        "cancelled",
    ),
    transitions=(
        Transition("draft", "issued", action="issue", guard=HAS_LINES),
        Transition("draft", "cancelled", action="cancel"),
        Transition("issued", "cancelled", action="cancel"),
        Transition("partially_paid", "cancelled", action="cancel"),
        Transition("overdue", "cancelled", action="cancel"),
        Transition("issued", "partially_paid", action="record_payment", guard=BALANCE_OUTSTANDING),
        Transition("partially_paid", "partially_paid", action="record_payment", guard=BALANCE_OUTSTANDING),
        Transition("issued", "paid", action="record_payment", guard=BALANCE_SETTLED),
        Transition("partially_paid", "paid", action="record_payment", guard=BALANCE_SETTLED),
        Transition("overdue", "paid", action="record_payment", guard=BALANCE_SETTLED),
        Transition("overdue", "overdue", action="record_payment", guard=BALANCE_OUTSTANDING),
        Transition("issued", "overdue", action="mark_overdue", guard=PAST_DUE),
        Transition("partially_paid", "overdue", action="mark_overdue", guard=PAST_DUE),
    ),
    terminal_states=("paid", "cancelled"),
)
