"""
mockexpect Reply Scheduler

Turns a confirmed match into a response: retires one-shot expectations,
computes the body, applies the delay and releases the completion signal.
"""

import asyncio
import inspect
import json
import logging
from typing import Any, Dict, Optional, TYPE_CHECKING

from fastapi import Response

if TYPE_CHECKING:
    from .expectation import Expectation
    from .matcher import MockRequest
    from .registry import RouteRegistry


def create_response(status: int, body: Any, headers: Optional[Dict[str, str]] = None) -> Response:
    """
    Build a response the way a typical web framework would send the value.

    Mappings, lists, numbers and booleans are sent as JSON, strings as HTML,
    bytes as an octet stream and None as an empty body. Explicit headers win
    over the inferred content type.
    """
    if body is None:
        return Response(content=b'', status_code=status, headers=headers)

    if isinstance(body, (bytes, bytearray)):
        media_type = 'application/octet-stream'
        content = bytes(body)
    elif isinstance(body, str):
        media_type = 'text/html; charset=utf-8'
        content = body
    else:
        media_type = 'application/json'
        content = json.dumps(body, separators=(',', ':'), ensure_ascii=False)

    return Response(content=content, status_code=status, headers=headers, media_type=media_type)


class ReplyScheduler:
    """
    Emits the response of matched expectations.

    Example:
        scheduler = ReplyScheduler(registry)
        response = await scheduler.reply(expectation, request)
    """

    def __init__(self, registry: 'RouteRegistry', logger: Optional[logging.Logger] = None):
        self.registry = registry
        self.logger = logger or logging.getLogger("mockexpect.mock.reply")

    async def reply(self, expectation: 'Expectation', request: 'MockRequest') -> Response:
        """
        Answer a request that satisfied expectation.

        Everything up to the first await runs in the same step as the match,
        so a one-shot expectation is gone before any other request is
        dispatched. A response function that raises leaves the expectation
        registered and its signal unresolved.
        """
        try:
            body = expectation.render_body(request)
        except Exception:
            self.logger.exception(
                f"Response function for {expectation.method} {expectation.path} raised"
            )
            raise

        if not expectation.persistent:
            self.registry.remove(expectation)

        if expectation.delay_ms:
            self.logger.debug(
                f"Delaying {expectation.method} {expectation.path} by {expectation.delay_ms}ms"
            )
            await asyncio.sleep(expectation.delay_ms / 1000)

        if inspect.isawaitable(body):
            body = await body

        expectation.signal.resolve()
        self.logger.info(
            f"Matched {expectation.method} {expectation.path} -> {expectation.status}"
            f"{' (persistent)' if expectation.persistent else ''}"
        )
        return create_response(expectation.status, body, expectation.response_headers)
