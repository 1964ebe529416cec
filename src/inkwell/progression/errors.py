from __future__ import annotations


class ProgressionError(Exception):
    """Base class for progression service failures."""


class MalformedEvent(ProgressionError):
    """Event envelope or payload could not be parsed; dropped and acknowledged."""


class StoreUnavailable(ProgressionError):
    """Progress store could not be reached; the caller should retry."""


class ConcurrentUpdateConflict(ProgressionError):
    """Conditional write lost against a newer version of the same record."""

    def __init__(self, tenant_id: str, user_id: str, expected_version: int) -> None:
        super().__init__(
            f"Progress for tenant={tenant_id} user={user_id} "
            f"changed since version {expected_version}."
        )
        self.tenant_id = tenant_id
        self.user_id = user_id
        self.expected_version = expected_version


class DuplicateEvent(ProgressionError):
    """Event id was already applied for this user."""

    def __init__(self, event_id: str) -> None:
        super().__init__(f"Event {event_id} was already processed.")
        self.event_id = event_id


class LedgerWriteFailure(ProgressionError):
    """Ledger append failed after the progress state was committed."""


class UnknownEventType(ProgressionError):
    """Envelope names an event type this service does not consume."""

    def __init__(self, event_type: str) -> None:
        super().__init__(f"Unknown event type: {event_type}")
        self.event_type = event_type


class IdentityMismatch(ProgressionError):
    """Event names a different tenant or user than the authenticated caller."""

    def __init__(self, tenant_id: str, user_id: str) -> None:
        super().__init__(
            f"Event for tenant={tenant_id} user={user_id} does not match the caller identity."
        )
        self.tenant_id = tenant_id
        self.user_id = user_id
