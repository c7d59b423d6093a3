from __future__ import annotations


class StoreError(RuntimeError):
    """
    Base class for every failure the listing store reports.
    `kind` is the stable contract; messages are for humans only.
    """

    kind = "StoreError"
    retriable = False


class NotFound(StoreError):
    kind = "NotFound"

    def __init__(self, mic_id: str):
        super().__init__(f"Mic {mic_id!r} not found.")
        self.mic_id = mic_id


class VersionConflict(StoreError):
    kind = "VersionConflict"
    retriable = True

    def __init__(self, mic_id: str, expected: int, actual: int):
        super().__init__(f"Mic {mic_id!r} is at version {actual}, not {expected}. Re-fetch and retry.")
        self.mic_id = mic_id
        self.expected = expected
        self.actual = actual


class Unauthorized(StoreError):
    kind = "Unauthorized"


class ValidationError(StoreError):
    kind = "ValidationError"


class InternalError(StoreError):
    kind = "InternalError"
    retriable = True
