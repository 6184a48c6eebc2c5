"""Typed errors raised by the session lifecycle and alert services.

Every error carries a stable ``kind`` (returned to API clients) and the HTTP
status code the REST layer maps it to.
"""


class DialysisError(Exception):
    """Base class for clinical workflow errors."""

    kind = "DialysisError"
    status_code = 400

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message

    def to_dict(self) -> dict:
        return {"success": False, "error": self.kind, "message": self.message}


class InvalidStateTransition(DialysisError):
    """A guard check failed on the session state machine."""

    kind = "InvalidStateTransition"
    status_code = 409

    def __init__(
        self,
        entity: str,
        entity_id: str,
        current: str,
        target: str,
        action: str | None = None,
    ):
        if action:
            message = f"Cannot {action}: {entity.lower()} {entity_id} is '{current}'"
        else:
            message = f"{entity} {entity_id} cannot go from '{current}' to '{target}'"
        super().__init__(message)
        self.entity_id = entity_id
        self.current = current
        self.target = target


class InvalidAlertTransition(InvalidStateTransition):
    """A guard check failed on the alert state machine."""

    kind = "InvalidAlertTransition"

    def __init__(self, alert_id: str, current: str, target: str):
        super().__init__("Alert", alert_id, current, target)


class MachineUnavailable(DialysisError):
    """The machine was not available when the bind was committed."""

    kind = "MachineUnavailable"
    status_code = 409


class MachineRequired(DialysisError):
    """The patient requires isolation and no isolation machine was supplied."""

    kind = "MachineRequired"
    status_code = 422


class ReasonRequired(DialysisError):
    """A cancellation was requested without a reason."""

    kind = "ReasonRequired"
    status_code = 422


class NotFound(DialysisError):
    """Unknown session, alert, machine or patient id."""

    kind = "NotFound"
    status_code = 404

    def __init__(self, entity: str, entity_id: str):
        super().__init__(f"{entity} {entity_id} not found")
        self.entity = entity
        self.entity_id = entity_id


class ValidationError(DialysisError):
    """Malformed vitals, incident or alert payload."""

    kind = "ValidationError"
    status_code = 422

    def __init__(self, message: str, field: str | None = None):
        super().__init__(message)
        self.field = field


ERRORS_BY_KIND: dict[str, type[DialysisError]] = {
    cls.kind: cls
    for cls in (
        InvalidStateTransition,
        InvalidAlertTransition,
        MachineUnavailable,
        MachineRequired,
        ReasonRequired,
        NotFound,
        ValidationError,
    )
}


def error_from_payload(payload: dict) -> DialysisError:
    """Rebuild a typed error from an API error envelope.

    Subclass constructors take structured arguments, so the instance is
    created without them and only the message is restored.
    """
    cls = ERRORS_BY_KIND.get(payload.get("error", ""), DialysisError)
    error = cls.__new__(cls)
    DialysisError.__init__(error, payload.get("message") or cls.kind)
    return error
