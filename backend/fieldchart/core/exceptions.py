"""Error taxonomy shared by the field client and the encounter service.

- EncounterValidationError: user-correctable, blocks a transition, never loses data.
- RemoteError (NetworkError / ServerError): transient; the sync reconciler
  downgrades these to a "saved locally" outcome and never re-raises them.
- LifecycleViolation: a broken lock/amend invariant; always raised loudly.
- IntegrityFailure: audit checksum mismatch; reported, never auto-corrected.
- AuditLogImmutableError: an attempt to rewrite or delete an audit event.
"""

from typing import Optional


class FieldChartError(Exception):
    """Base class for all FieldChart errors."""


class EncounterValidationError(FieldChartError):
    """Encounter data is incomplete for the requested transition."""

    def __init__(self, message: str, errors: Optional[dict[str, str]] = None) -> None:
        super().__init__(message)
        self.message = message
        self.errors = errors or {}


class LifecycleViolation(FieldChartError):
    """Mutation rejected by the encounter lock/amend state machine."""

    def __init__(self, message: str, encounter_id: Optional[str] = None) -> None:
        super().__init__(message)
        self.message = message
        self.encounter_id = encounter_id


class EncounterNotFoundError(FieldChartError):
    """No encounter exists with the requested identifier."""

    def __init__(self, encounter_id: str) -> None:
        super().__init__(f"Encounter {encounter_id} not found")
        self.encounter_id = encounter_id


class IntegrityFailure(FieldChartError):
    """Stored audit event no longer matches its checksum."""

    def __init__(self, event_id: str, expected: str, actual: Optional[str]) -> None:
        super().__init__(f"Audit event {event_id} failed checksum verification")
        self.event_id = event_id
        self.expected = expected
        self.actual = actual


class AuditLogImmutableError(FieldChartError):
    """Attempt to update or delete a written audit event."""


class RemoteError(FieldChartError):
    """A call to the remote encounter API did not complete successfully."""


class NetworkError(RemoteError):
    """Transport failure or timeout; the server may never have seen the request."""


class ServerError(RemoteError):
    """The server answered with a non-success status or a body the client cannot read."""

    def __init__(self, message: str, status_code: int) -> None:
        super().__init__(message)
        self.status_code = status_code


class SubmissionInProgressError(FieldChartError):
    """A submit for this encounter is already in flight."""

    def __init__(self, encounter_key: str) -> None:
        super().__init__(f"Submission already in progress for encounter {encounter_key}")
        self.encounter_key = encounter_key
