from __future__ import annotations

from enum import Enum


class ChannelError(Exception):
    """The message channel could not be opened or failed mid-session."""


class ChannelClosed(ChannelError):
    pass


class SynthesisError(Exception):
    pass


class RecognitionErrorKind(str, Enum):
    PERMISSION_DENIED = "permission_denied"
    TRANSIENT = "transient"


class RecognitionError(Exception):
    """
    Hard recognizer failure reported by an engine.

    PERMISSION_DENIED ends the turn at once; TRANSIENT counts as a failed attempt and
    goes through the normal retry budget.
    """

    # Engine error codes (Web Speech API naming) that mean the user blocked capture.
    PERMISSION_CODES = frozenset({"not-allowed", "service-not-allowed", "permission-denied"})

    def __init__(self, kind: RecognitionErrorKind, code: str = "", message: str = "") -> None:
        super().__init__(message or code or kind.value)
        self.kind = kind
        self.code = code

    @classmethod
    def from_code(cls, code: str) -> "RecognitionError":
        kind = (
            RecognitionErrorKind.PERMISSION_DENIED
            if code in cls.PERMISSION_CODES
            else RecognitionErrorKind.TRANSIENT
        )
        return cls(kind, code=code)

    @property
    def permission_denied(self) -> bool:
        return self.kind == RecognitionErrorKind.PERMISSION_DENIED


class AnswerAlreadyRecorded(ValueError):
    pass
