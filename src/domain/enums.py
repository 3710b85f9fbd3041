"""Domain enumerations and state-transition rules."""

import enum


class DispatchPriority(str, enum.Enum):
    NORMAL = "normal"
    HIGH = "high"
    URGENT = "urgent"


# Bonus points fed into the scorer (weighted 0.1)
PRIORITY_BONUS: dict[DispatchPriority, float] = {
    DispatchPriority.NORMAL: 0.0,
    DispatchPriority.HIGH: 10.0,
    DispatchPriority.URGENT: 20.0,
}


class ServiceType(str, enum.Enum):
    TAXI = "taxi"
    DELIVERY = "delivery"
    MARKETPLACE = "marketplace"


class DispatchStatus(str, enum.Enum):
    PENDING = "PENDING"
    OFFERED = "OFFERED"
    ACCEPTED = "ACCEPTED"
    COMPLETED = "COMPLETED"
    CANCELLED = "CANCELLED"
    UNASSIGNED = "UNASSIGNED"


# State machine: maps current status -> set of valid next statuses
DISPATCH_TRANSITIONS: dict[DispatchStatus, set[DispatchStatus]] = {
    DispatchStatus.PENDING: {
        DispatchStatus.OFFERED,
        DispatchStatus.CANCELLED,
        DispatchStatus.UNASSIGNED,
    },
    DispatchStatus.OFFERED: {
        DispatchStatus.ACCEPTED,
        DispatchStatus.PENDING,  # rejected or offer expired
        DispatchStatus.CANCELLED,
    },
    DispatchStatus.ACCEPTED: {DispatchStatus.COMPLETED, DispatchStatus.CANCELLED},
    DispatchStatus.COMPLETED: set(),
    DispatchStatus.CANCELLED: set(),
    # A manual retry puts an exhausted job back in the queue
    DispatchStatus.UNASSIGNED: {DispatchStatus.PENDING, DispatchStatus.CANCELLED},
}
