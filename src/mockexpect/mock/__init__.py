"""
mockexpect Mock Module

Expectation engine and HTTP server for stubbing endpoints in tests.

This module provides:
- FastAPI-based mock server with per-verb registration
- Expectation builder and completion signals
- Request matching with query coercion and structural diffs
- Delayed and computed replies
"""

from .errors import MockError, MatchFailure, NotYetDone, WaitTimeout, BodyParseError
from .diff import DiffEntry, diff_json, render_plain, render_ansi, get_renderer
from .matcher import MockRequest, coerce_query, deep_equal, assert_deep_equal, check_expectation
from .signal import CompletionSignal
from .expectation import Expectation
from .registry import RouteRegistry, SUPPORTED_METHODS
from .reply import ReplyScheduler, create_response
from .server import MockServer, MockConfig, create_mock_server

__all__ = [
    # Server
    'MockServer',
    'MockConfig',
    'create_mock_server',

    # Expectations
    'Expectation',
    'CompletionSignal',
    'RouteRegistry',
    'SUPPORTED_METHODS',
    'ReplyScheduler',
    'create_response',

    # Matcher
    'MockRequest',
    'coerce_query',
    'deep_equal',
    'assert_deep_equal',
    'check_expectation',

    # Diff
    'DiffEntry',
    'diff_json',
    'render_plain',
    'render_ansi',
    'get_renderer',

    # Errors
    'MockError',
    'MatchFailure',
    'NotYetDone',
    'WaitTimeout',
    'BodyParseError',
]
