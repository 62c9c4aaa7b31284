from typing import Any, Iterable, Optional


class SchedulingError(Exception):
    """Base class for every error the scheduling core reports to callers."""

    kind = "scheduling_error"

    def __init__(self, message: str, details: Optional[dict[str, Any]] = None):
        self.message = message
        self.details = details or {}
        super().__init__(message)

    def to_dict(self) -> dict[str, Any]:
        return {"kind": self.kind, "message": self.message, "details": self.details}


class ValidationError(SchedulingError, ValueError):
    """Malformed or out-of-range input."""

    kind = "validation_error"


class NotFound(SchedulingError, LookupError):
    """Missing resource, appointment, service or availability record."""

    kind = "not_found"

    def __init__(self, entity: str, identifier: Any, message: Optional[str] = None):
        self.entity = entity
        self.identifier = identifier
        super().__init__(
            message or f"{entity} {identifier} not found",
            {"entity": entity, "id": str(identifier)},
        )


class SchedulingConflict(SchedulingError):
    """The requested time range collides with bookings or unavailable time."""

    kind = "scheduling_conflict"

    def __init__(
        self,
        message: str,
        conflicts_by_resource: Optional[dict[str, Iterable[str]]] = None,
        reason: Optional[str] = None,
    ):
        self.conflicts_by_resource = {
            str(resource_id): sorted(str(i) for i in ids)
            for resource_id, ids in (conflicts_by_resource or {}).items()
        }
        self.conflicting_appointment_ids = sorted(
            {i for ids in self.conflicts_by_resource.values() for i in ids}
        )
        details: dict[str, Any] = {
            "conflicting_appointment_ids": self.conflicting_appointment_ids,
            "conflicts_by_resource": self.conflicts_by_resource,
        }
        if reason:
            details["reason"] = reason
        self.reason = reason
        super().__init__(message, details)


class PolicyViolation(SchedulingError):
    """Advance-window or cutoff rule breached."""

    kind = "policy_violation"

    def __init__(self, rule: str, message: str, details: Optional[dict[str, Any]] = None):
        self.rule = rule
        super().__init__(message, {"rule": rule, **(details or {})})


class InvalidTransition(SchedulingError):
    """Status change not allowed from the current status."""

    kind = "invalid_transition"

    def __init__(self, current: str, target: str, message: Optional[str] = None):
        self.current = current
        self.target = target
        super().__init__(
            message or f"Cannot transition from {current} to {target}",
            {"from": current, "to": target},
        )


class ConcurrencyConflict(SchedulingError):
    """A write lost a race against a concurrent writer."""

    kind = "concurrency_conflict"
