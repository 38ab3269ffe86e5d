"""
mockexpect Request Matcher

Checks an incoming request against the criteria of an expectation.

Features:
- Query coercion (string query values to numbers and booleans)
- Strict structural equality (booleans never equal numbers)
- Structured diffs for mapping mismatches
- Query, body and header checks in a fixed order
"""

import math
import re
from dataclasses import dataclass, field
from typing import Any, Dict, Mapping, Optional, TYPE_CHECKING

from .diff import diff_json, render_plain
from .errors import MatchFailure

if TYPE_CHECKING:
    from .expectation import Expectation


# Decimal literals accepted by JavaScript's Number()
_DECIMAL = re.compile(r'^[+-]?(\d+\.?\d*|\.\d+)([eE][+-]?\d+)?$', re.ASCII)
_INTEGER = re.compile(r'^[+-]?\d+$', re.ASCII)
_PREFIXED = re.compile(r'^0([xX][0-9a-fA-F]+|[oO][0-7]+|[bB][01]+)$')
_PREFIX_BASES = {'x': 16, 'o': 8, 'b': 2}


@dataclass(frozen=True)
class MockRequest:
    """Snapshot of an incoming request as seen by matchers and reply functions."""

    method: str
    path: str
    query: Dict[str, Any] = field(default_factory=dict)
    headers: Dict[str, str] = field(default_factory=dict)
    body: Any = field(default_factory=dict)
    text: Optional[str] = None
    raw_body: bytes = b''

    def header(self, name: str, default: Optional[str] = None) -> Optional[str]:
        return self.headers.get(name.lower(), default)


def to_number(value: str) -> Optional[float]:
    """
    Parse a string the way JavaScript's Number() does.

    Surrounding whitespace is ignored, an empty string is 0 and 0x/0o/0b
    prefixes are honoured. Returns None when the string is not numeric or
    the result is not finite.
    """
    text = value.strip()
    if text == '':
        return 0

    prefixed = _PREFIXED.match(text)
    if prefixed:
        digits = prefixed.group(1)
        return int(digits[1:], _PREFIX_BASES[digits[0].lower()])

    if not _DECIMAL.match(text):
        return None
    if _INTEGER.match(text):
        return int(text)

    number = float(text)
    if not math.isfinite(number):
        return None
    if number.is_integer():
        return int(number)
    return number


def coerce_query(query: Any) -> Any:
    """
    Coerce string leaves of a parsed query mapping into native types.

    "true" and "false" both become True. Other strings become numbers when
    they parse as finite numbers and are kept otherwise. Nested mappings are
    coerced recursively; all other values pass through unchanged.

    Args:
        query: Parsed query mapping

    Returns:
        New mapping with coerced values (non-mappings are returned as-is)
    """
    if not isinstance(query, Mapping):
        return query

    coerced = {}
    for key, value in query.items():
        if isinstance(value, Mapping):
            coerced[key] = coerce_query(value)
        elif isinstance(value, str):
            coerced[key] = _coerce_leaf(value)
        else:
            coerced[key] = value
    return coerced


def _coerce_leaf(value: str) -> Any:
    if value == 'true':
        return True
    if value == 'false':
        # Known anomaly kept for compatibility: "false" also reads as True
        return True
    number = to_number(value)
    if number is not None:
        return number
    return value


def deep_equal(left: Any, right: Any) -> bool:
    """Structural equality where booleans only ever equal booleans."""
    if isinstance(left, bool) or isinstance(right, bool):
        return isinstance(left, bool) and isinstance(right, bool) and left == right

    if isinstance(left, Mapping) or isinstance(right, Mapping):
        if not (isinstance(left, Mapping) and isinstance(right, Mapping)):
            return False
        if set(left.keys()) != set(right.keys()):
            return False
        return all(deep_equal(left[key], right[key]) for key in left)

    if isinstance(left, (list, tuple)) or isinstance(right, (list, tuple)):
        if not (isinstance(left, (list, tuple)) and isinstance(right, (list, tuple))):
            return False
        if len(left) != len(right):
            return False
        return all(deep_equal(a, b) for a, b in zip(left, right))

    return left == right


def assert_deep_equal(actual: Any, expected: Any, subject: str = "value"):
    """
    Raise MatchFailure unless actual deeply equals expected.

    Args:
        actual: Value taken from the request
        expected: Value the expectation asked for
        subject: Human readable name of what is compared (e.g. 'query')

    Raises:
        MatchFailure: With a structured diff when both values are mappings,
            otherwise with an 'expected X, got Y' message
    """
    if deep_equal(actual, expected):
        return

    if isinstance(expected, Mapping) and isinstance(actual, Mapping):
        entries = diff_json(expected, actual)
        failure = MatchFailure(
            f"{subject} did not match:\n{render_plain(entries)}",
            subject=subject,
            diff=entries
        )
        raise failure

    raise MatchFailure(
        f"{subject}: expected {expected!r}, got {actual!r}",
        subject=subject,
        expected=expected,
        actual=actual
    )


def check_expectation(expectation: 'Expectation', request: MockRequest):
    """
    Run the query, body and header checks of an expectation.

    The first failing check raises; later checks are not evaluated.

    Raises:
        MatchFailure: On the first mismatch
    """
    if expectation.query_params is not None:
        assert_deep_equal(coerce_query(request.query), expectation.query_params, 'query')

    if expectation.request_body is not None:
        if request.text is not None:
            assert_deep_equal(request.text, expectation.request_body, 'body')
        else:
            assert_deep_equal(request.body, expectation.request_body, 'body')

    for name, value in expectation.headers.items():
        assert_deep_equal(request.header(name), value, f"header '{name}'")
