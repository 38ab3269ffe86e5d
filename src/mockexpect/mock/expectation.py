"""
mockexpect Expectation

One mock rule: what a request must look like, what to answer, and how long
the rule stays registered.
"""

from collections.abc import Mapping
from typing import Any, Callable, Dict, Optional, Union, TYPE_CHECKING

from ..common import parse_query_string
from .signal import CompletionSignal, DEFAULT_WAIT_TIMEOUT_MS

if TYPE_CHECKING:
    from .matcher import MockRequest
    from .registry import RouteRegistry

ResponseBody = Union[Any, Callable[['MockRequest'], Any]]


class Expectation:
    """
    Builder for a single expected request.

    Builder calls return the expectation itself and may come in any order;
    reply() finalizes the rule, registers it and returns its
    CompletionSignal.

    Example:
        signal = (
            server.post('/items')
            .send({'name': 'a'})
            .set('X-Token', 'secret')
            .reply(201, {'id': 1})
        )
    """

    def __init__(
        self,
        registry: 'RouteRegistry',
        method: str,
        path: str,
        wait_timeout_ms: int = DEFAULT_WAIT_TIMEOUT_MS
    ):
        self.registry = registry
        self.method = method.upper()
        self.path = path
        self.index = registry.next_index()
        self.wait_timeout_ms = wait_timeout_ms

        # Request criteria
        self.query_params: Optional[Dict[str, Any]] = None
        self.data: Any = None
        self.request_body: Any = None
        self.headers: Dict[str, Any] = {}

        # Response directive
        self.status: Optional[int] = None
        self.response_body: ResponseBody = None
        self.response_headers: Optional[Dict[str, str]] = None
        self.delay_ms: Optional[float] = None
        self.persistent = False

        self.signal: Optional[CompletionSignal] = None

    def __repr__(self):
        return f"<Expectation #{self.index} {self.method} {self.path}>"

    def send(self, data: Any) -> 'Expectation':
        """Expect this request body (string or structured value)."""
        self.data = data
        return self

    def query(self, qs: Union[str, Mapping]) -> 'Expectation':
        """Expect these query parameters; repeated calls merge."""
        if isinstance(qs, str):
            params = parse_query_string(qs)
        else:
            params = dict(qs)

        if self.query_params is None:
            self.query_params = {}
        self.query_params.update(params)
        return self

    def set(self, name: str, value: Any) -> 'Expectation':
        """Expect a request header (name is case-insensitive)."""
        self.headers[name.lower()] = value
        return self

    def delay(self, ms: float) -> 'Expectation':
        """Delay the response by this many milliseconds."""
        self.delay_ms = ms
        return self

    def persist(self) -> 'Expectation':
        """Keep the expectation registered after it has been matched."""
        self.persistent = True
        return self

    def _interpret_request_body(self):
        # Without an explicit content type a string body is a form body
        if 'content-type' not in self.headers and isinstance(self.data, str):
            self.request_body = parse_query_string(self.data)
        else:
            self.request_body = self.data

    def reply(
        self,
        status: int,
        body: ResponseBody = None,
        headers: Optional[Dict[str, str]] = None
    ) -> CompletionSignal:
        """
        Finalize the rule and register it.

        Args:
            status: Response status code
            body: Response body, or a function of the MockRequest returning it
            headers: Extra response headers

        Returns:
            CompletionSignal bound to this expectation
        """
        self._interpret_request_body()
        self.status = status
        self.response_body = body
        self.response_headers = dict(headers) if headers else None

        self.signal = CompletionSignal(self, wait_timeout_ms=self.wait_timeout_ms)
        self.registry.add(self)
        return self.signal

    def render_body(self, request: 'MockRequest') -> Any:
        """Response body for a matched request."""
        if callable(self.response_body):
            return self.response_body(request)
        return self.response_body
