"""
mockexpect Errors

Exception hierarchy for the expectation engine.
"""

from typing import Any, List, Optional


class MockError(Exception):
    """Base class for all errors raised by mockexpect."""


class MatchFailure(MockError, AssertionError):
    """
    An incoming request did not satisfy the expectation it was routed to.

    For mapping mismatches ``diff`` holds the structured line diff and
    ``expected``/``actual`` are cleared, the rendered diff replacing them in
    the message. For any other values ``diff`` is empty and ``expected`` and
    ``actual`` carry the compared values.
    """

    def __init__(
        self,
        message: str,
        subject: str = "",
        expected: Any = None,
        actual: Any = None,
        diff: Optional[List[Any]] = None
    ):
        super().__init__(message)
        self.subject = subject
        self.expected = expected
        self.actual = actual
        self.diff = diff or []

    @property
    def has_diff(self) -> bool:
        return bool(self.diff)

    def render(self, renderer) -> str:
        """Render the failure with a diff renderer (see mockexpect.mock.diff)."""
        if not self.diff:
            return str(self)
        return f"{self.subject} did not match:\n{renderer(self.diff)}"


class NotYetDone(MockError, AssertionError):
    """done() was called before the expectation was matched."""


class WaitTimeout(MockError, TimeoutError):
    """wait() elapsed before the expectation was matched."""


class BodyParseError(MockError, ValueError):
    """A request body could not be decoded for its declared content type."""
