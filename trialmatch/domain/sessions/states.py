"""
Trial session lifecycle

    Pending → Outreach in Progress → Confirmed → Trial 1 Complete
            → Trial 2 Complete → Student Continuing - Awaiting Schedule

Side branches: Failed - No Tutors (reopened by retry), Cancelled (terminal).
Reopen edges back to Pending / Outreach in Progress exist only for retry,
tutor cancellation re-pooling and reschedule reopening.

Two tables gate every write: TRANSITIONS says which status may follow which,
OPERATION_SOURCES says which statuses each operation may start from.
"""

from typing import Optional

from ...enums import SessionStatus
from ...exceptions import InvalidTransition

S = SessionStatus

TRANSITIONS: dict[SessionStatus, frozenset] = {
    S.PENDING: frozenset({S.OUTREACH_IN_PROGRESS, S.CONFIRMED, S.FAILED_NO_TUTORS, S.CANCELLED}),
    S.OUTREACH_IN_PROGRESS: frozenset({S.CONFIRMED, S.FAILED_NO_TUTORS, S.PENDING, S.CANCELLED}),
    S.CONFIRMED: frozenset({S.TRIAL_1_COMPLETE, S.OUTREACH_IN_PROGRESS, S.PENDING, S.CANCELLED}),
    S.TRIAL_1_COMPLETE: frozenset({S.TRIAL_2_COMPLETE}),
    S.TRIAL_2_COMPLETE: frozenset({S.AWAITING_SCHEDULE}),
    S.AWAITING_SCHEDULE: frozenset(),
    S.FAILED_NO_TUTORS: frozenset({S.PENDING, S.CANCELLED}),
    S.CANCELLED: frozenset(),
}

OPERATION_SOURCES: dict[str, frozenset] = {
    "request_match": frozenset({S.PENDING}),
    "start_outreach": frozenset({S.PENDING}),
    "assign_tutor": frozenset({S.PENDING, S.OUTREACH_IN_PROGRESS}),
    "confirm_from_outreach": frozenset({S.OUTREACH_IN_PROGRESS}),
    "retry_outreach": frozenset({S.FAILED_NO_TUTORS}),
    "mark_failed": frozenset({S.PENDING, S.OUTREACH_IN_PROGRESS}),
    "submit_diagnostic": frozenset({S.CONFIRMED}),
    "submit_reflection": frozenset({S.TRIAL_1_COMPLETE}),
    "confirm_continuation": frozenset({S.TRIAL_2_COMPLETE}),
    "cancel": frozenset({S.CONFIRMED}),
    "withdraw": frozenset({S.PENDING, S.OUTREACH_IN_PROGRESS, S.CONFIRMED, S.FAILED_NO_TUTORS}),
    "reschedule": frozenset({S.PENDING, S.OUTREACH_IN_PROGRESS, S.CONFIRMED}),
}

NEXT_ACTIONS: dict[SessionStatus, Optional[str]] = {
    S.PENDING: "request_match",
    S.OUTREACH_IN_PROGRESS: "await_tutor_responses",
    S.CONFIRMED: "submit_diagnostic",
    S.TRIAL_1_COMPLETE: "submit_reflection",
    S.TRIAL_2_COMPLETE: "confirm_continuation",
    S.AWAITING_SCHEDULE: "schedule_permanent_lessons",
    S.FAILED_NO_TUTORS: "retry_outreach",
    S.CANCELLED: None,
}

FEEDBACK_TYPES: dict[SessionStatus, Optional[str]] = {
    S.CONFIRMED: "diagnostic",
    S.TRIAL_1_COMPLETE: "reflection",
}


def ensure_can(status: SessionStatus, operation: str, session_id: Optional[int] = None) -> None:
    if status not in OPERATION_SOURCES[operation]:
        allowed = ", ".join(sorted(s.value for s in OPERATION_SOURCES[operation]))
        raise InvalidTransition(
            f"Cannot {operation.replace('_', ' ')} while session is '{status.value}' (allowed from: {allowed})",
            context={"session_id": session_id, "status": status.value, "operation": operation},
        )


def ensure_edge(current: SessionStatus, target: SessionStatus, session_id: Optional[int] = None) -> None:
    if target not in TRANSITIONS[current]:
        raise InvalidTransition(
            f"No transition from '{current.value}' to '{target.value}'",
            context={"session_id": session_id, "status": current.value, "target": target.value},
        )


def next_action(status: SessionStatus) -> Optional[str]:
    return NEXT_ACTIONS[status]


def feedback_type(status: SessionStatus) -> Optional[str]:
    return FEEDBACK_TYPES.get(status)
