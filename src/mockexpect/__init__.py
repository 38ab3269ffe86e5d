"""
mockexpect

Declarative HTTP expectations for test suites: stub endpoints, assert the
shape of incoming requests and wait for them to arrive.
"""

from .mock import (
    CompletionSignal,
    Expectation,
    MatchFailure,
    MockConfig,
    MockServer,
    NotYetDone,
    WaitTimeout,
    create_mock_server,
)

__all__ = [
    'CompletionSignal',
    'Expectation',
    'MatchFailure',
    'MockConfig',
    'MockServer',
    'NotYetDone',
    'WaitTimeout',
    'create_mock_server',
]

__version__ = '1.0.0'
