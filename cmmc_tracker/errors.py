"""Exception types raised by the CMMC tracker core."""

from __future__ import annotations


class CMMCTrackerError(Exception):
    """Base class for all errors raised by this package."""


class StorageError(CMMCTrackerError):
    """The backing key-value storage could not be used."""


class StorageWriteError(StorageError):
    """Writing to the backing storage failed."""


class StorageQuotaExceededError(StorageWriteError):
    """A write would exceed the storage capacity."""

    def __init__(self, message: str, required: int = 0, available: int = 0):
        super().__init__(message)
        self.required = required
        self.available = available


class RestoreError(CMMCTrackerError):
    """A backup payload was malformed or lacked the backup markers."""


class NotFoundError(CMMCTrackerError):
    """An update or delete referenced an id that does not exist."""

    def __init__(self, collection: str, item_id: str):
        super().__init__(f"{collection} item '{item_id}' not found")
        self.collection = collection
        self.item_id = item_id


class InvalidTransitionError(CMMCTrackerError):
    """A status change is not allowed from the current state."""

    def __init__(self, current: str, target: str):
        super().__init__(f"cannot move from '{current}' to '{target}'")
        self.current = current
        self.target = target


class ReportGenerationError(CMMCTrackerError):
    """Report aggregation failed; the report has been marked failed."""

    def __init__(self, report_id: str, message: str):
        super().__init__(message)
        self.report_id = report_id
