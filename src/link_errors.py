"""
Error taxonomy for backend discovery, the status stream and command sync
"""

from typing import Any, Optional


class ChamberLinkError(Exception):
    """Base class for every error raised by the chamber link"""


class TransportError(ChamberLinkError):
    """A network call failed before an HTTP response was available"""

    def __init__(self, url: str, reason: str):
        super().__init__(f"{url}: {reason}")
        self.url = url
        self.reason = reason


class VerificationFailed(ChamberLinkError):
    """Candidate endpoint did not match the expected service fingerprint"""

    def __init__(self, endpoint, reason: str):
        super().__init__(f"{endpoint} rejected: {reason}")
        self.endpoint = endpoint
        self.reason = reason


class NoBackendFound(ChamberLinkError):
    """Discovery exhausted every candidate"""

    def __init__(self, candidates_tried: int):
        super().__init__(f"No backend found after testing {candidates_tried} candidates")
        self.candidates_tried = candidates_tried


class StreamClosed(ChamberLinkError):
    """The live status stream ended"""


class MaxReconnectsExceeded(ChamberLinkError):
    def __init__(self, attempts: int):
        super().__init__(f"Gave up reconnecting after {attempts} attempts")
        self.attempts = attempts


class CommandRejected(ChamberLinkError):
    """Backend refused or failed a command; optimistic state was rolled back"""

    def __init__(self, control_key: str, message: str, response: Optional[dict] = None):
        super().__init__(f"{control_key}: {message}")
        self.control_key = control_key
        self.message = message
        self.response = response


class ConfirmationTimeout(ChamberLinkError):
    """Backend accepted the command but no snapshot confirmed it in time"""

    def __init__(self, control_key: str, expected: Any, timeout_seconds: float):
        super().__init__(
            f"PLC confirmation timeout for {control_key} "
            f"(expected {expected!r} within {timeout_seconds}s)"
        )
        self.control_key = control_key
        self.expected = expected
        self.timeout_seconds = timeout_seconds
