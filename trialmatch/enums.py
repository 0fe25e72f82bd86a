"""Closed status sets persisted as strings"""

from enum import Enum


class SessionStatus(str, Enum):
    PENDING = "Pending"
    OUTREACH_IN_PROGRESS = "Outreach in Progress"
    CONFIRMED = "Confirmed"
    TRIAL_1_COMPLETE = "Trial 1 Complete - Diagnostic Submitted"
    TRIAL_2_COMPLETE = "Trial 2 Complete - Reflection Submitted"
    AWAITING_SCHEDULE = "Student Continuing - Awaiting Schedule"
    FAILED_NO_TUTORS = "Failed - No Tutors"
    CANCELLED = "Cancelled"


class AttemptStatus(str, Enum):
    PENDING = "pending"
    ACCEPTED = "accepted"
    DECLINED = "declined"
    REQUIRE_DIFFERENT_TIME = "require_different_time"
    SUPERSEDED = "superseded"
    # accepted attempt voided by the tutor cancelling the confirmed session
    WITHDRAWN = "withdrawn"


class OutreachResponse(str, Enum):
    ACCEPTED = "accepted"
    DECLINED = "declined"
    REQUIRE_DIFFERENT_TIME = "require_different_time"


class RescheduleStatus(str, Enum):
    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"
    EXPIRED = "expired"


class RescheduleResponse(str, Enum):
    ACCEPTED = "accepted"
    DECLINED = "declined"


class RequesterType(str, Enum):
    TUTOR = "tutor"
    PARENT = "parent"
    ADMIN = "admin"


class ApprovalStatus(str, Enum):
    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"
    SUSPENDED = "suspended"


class LocationType(str, Enum):
    ONLINE = "online"
    LIBRARY = "library"
    IN_HOME = "in_home"


def coerce_status(enum_cls, value) -> str:
    """Return the stored string for value, or raise ValueError if it is not a member"""
    if isinstance(value, enum_cls):
        return value.value
    return enum_cls(value).value
