from __future__ import annotations


class LedgerError(Exception):
    pass


class ValidationError(LedgerError, ValueError):
    """Input does not add up: split sums, percentages, amounts or unknown participants."""


class PersistenceError(LedgerError):
    """The storage collaborator failed. The surrounding unit of work is rolled back."""


class NotFoundError(LedgerError, LookupError):
    def __init__(self, kind: str, key: str) -> None:
        super().__init__(f"{kind} {key!r} not found")
        self.kind = kind
        self.key = key


class EventFrozenError(LedgerError):
    def __init__(self, event_id: str, status: str) -> None:
        super().__init__(f"Event {event_id!r} is {status}; its ledger can no longer change.")
        self.event_id = event_id
        self.status = status
