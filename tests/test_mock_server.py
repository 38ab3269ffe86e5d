"""
Tests for mockexpect Mock Server

Tests the FastAPI-based mock server including:
- Server configuration
- Dispatch to registered expectations
- Match failures and unmatched requests
- One-shot, persistent and delayed replies
- Middlewares
- Completion signals over real requests
"""

import asyncio
import logging

import httpx
import pytest
from unittest.mock import patch, AsyncMock

from fastapi.testclient import TestClient

from mockexpect.mock.errors import MatchFailure, NotYetDone
from mockexpect.mock.server import (
    MockConfig,
    MockServer,
    create_mock_server
)


@pytest.fixture
def server():
    """Mock server that is not listening."""
    return MockServer()


@pytest.fixture
def client(server):
    """In-process client for the mock server."""
    return TestClient(server.app)


def asgi_client(server):
    return httpx.AsyncClient(transport=httpx.ASGITransport(app=server.app), base_url="http://test")


class TestMockConfig:
    """Test MockConfig dataclass."""

    def test_default_config(self):
        """Test default configuration values."""
        config = MockConfig()

        assert config.host == '127.0.0.1'
        assert config.port == 0
        assert config.wait_timeout_ms == 2000
        assert config.match_failure_status == 500
        assert config.unmatched_status == 404
        assert config.diff_renderer == 'plain'

    def test_from_dict_ignores_unknown_keys(self):
        """Test unknown keys are dropped."""
        config = MockConfig.from_dict({'port': 9090, 'color': True})

        assert config.port == 9090

    def test_from_yaml(self, tmp_path):
        """Test loading configuration from YAML."""
        path = tmp_path / 'mock.yaml'
        path.write_text('host: 0.0.0.0\nwait_timeout_ms: 500\ndiff_renderer: ansi\n')

        config = MockConfig.from_yaml(str(path))

        assert config.host == '0.0.0.0'
        assert config.wait_timeout_ms == 500
        assert config.diff_renderer == 'ansi'

    def test_from_empty_yaml(self, tmp_path):
        """Test an empty YAML file gives defaults."""
        path = tmp_path / 'empty.yaml'
        path.write_text('')

        assert MockConfig.from_yaml(str(path)) == MockConfig()

    def test_unknown_renderer_rejected(self):
        """Test the server validates the diff renderer."""
        with pytest.raises(ValueError):
            MockServer(MockConfig(diff_renderer='html'))


class TestRegistration:
    """Test per-verb registration."""

    @pytest.mark.parametrize('verb', ['get', 'post', 'put', 'patch', 'delete', 'head', 'options', 'trace'])
    def test_verb_methods(self, server, verb):
        """Test each verb creates an expectation for its method."""
        expectation = getattr(server, verb)('/thing')

        assert expectation.method == verb.upper()
        assert expectation.path == '/thing'

    def test_unsupported_method(self, server):
        """Test unsupported methods are rejected."""
        with pytest.raises(ValueError):
            server.expect('CONNECT', '/')

    def test_wait_timeout_from_config(self):
        """Test signals inherit the configured wait timeout."""
        server = MockServer(MockConfig(wait_timeout_ms=123))

        signal = server.get('/').reply(200)

        assert signal.wait_timeout_ms == 123

    def test_pending(self, server):
        """Test pending lists registered expectations."""
        a = server.get('/a')
        a.reply(200)
        server.post('/b')  # never replied

        assert server.pending() == [a]


class TestDispatch:
    """Test request dispatch."""

    def test_query_scenario(self, server, client):
        """Test a coerced query matches and the signal is done."""
        signal = server.get('/users').query({'active': True}).reply(200, {'ok': True})

        response = client.get('/users?active=true')

        assert response.status_code == 200
        assert response.json() == {'ok': True}
        signal.done()

    def test_body_mismatch_scenario(self, server, client):
        """Test a body mismatch aborts the request with a diff."""
        signal = server.post('/items').send({'name': 'a'}).reply(201, {'id': 1})

        response = client.post('/items', json={'name': 'b'})

        assert response.status_code == 500
        assert '-    "name": "a"' in response.text
        assert '+    "name": "b"' in response.text
        with pytest.raises(NotYetDone):
            signal.done()

        assert len(server.failures) == 1
        with pytest.raises(MatchFailure):
            server.check_failures()

    def test_failed_expectation_stays_registered(self, server, client):
        """Test a failing request does not consume the expectation."""
        server.post('/items').send({'name': 'a'}).reply(201)

        client.post('/items', json={'name': 'b'})
        response = client.post('/items', json={'name': 'a'})

        assert response.status_code == 201

    def test_match_failure_status_configurable(self):
        """Test the failure status comes from config."""
        server = MockServer(MockConfig(match_failure_status=418))
        server.get('/users').set('x-token', 'abc').reply(200)

        response = TestClient(server.app).get('/users')

        assert response.status_code == 418
        assert "expected 'abc', got None" in response.text

    def test_unmatched(self, client):
        """Test requests without expectations get 404."""
        response = client.get('/nope')

        assert response.status_code == 404
        assert response.text == 'Cannot GET /nope'

    def test_path_is_literal(self, server, client):
        """Test paths are matched literally."""
        server.get('/users/1').reply(200)

        assert client.get('/users/2').status_code == 404
        assert client.post('/users/1').status_code == 404
        assert client.get('/users/1').status_code == 200

    def test_root_path(self, server, client):
        """Test the root path can be mocked."""
        server.get('/').reply(204)

        assert client.get('/').status_code == 204

    def test_headers_and_response_headers(self, server, client):
        """Test expected headers and configured response headers."""
        server.get('/secure').set('Authorization', 'Bearer t').reply(
            200, {'ok': True}, {'X-Mock': 'yes'}
        )

        response = client.get('/secure', headers={'authorization': 'Bearer t'})

        assert response.status_code == 200
        assert response.headers['x-mock'] == 'yes'

    def test_response_content_type_override(self, server, client):
        """Test response headers override the inferred content type."""
        server.get('/feed').reply(200, '<feed/>', {'Content-Type': 'application/xml'})

        response = client.get('/feed')

        assert response.headers['content-type'] == 'application/xml'
        assert response.text == '<feed/>'

    def test_response_body_kinds(self, server, client):
        """Test strings, bytes and None bodies."""
        server.get('/html').reply(200, 'hello')
        server.get('/bin').reply(200, b'\x00\x01')
        server.get('/empty').reply(204)

        html = client.get('/html')
        assert html.text == 'hello'
        assert html.headers['content-type'].startswith('text/html')

        binary = client.get('/bin')
        assert binary.content == b'\x00\x01'
        assert binary.headers['content-type'] == 'application/octet-stream'

        assert client.get('/empty').content == b''

    def test_response_function(self, server, client):
        """Test response functions receive the request."""
        server.post('/echo').reply(201, lambda request: {'got': request.body, 'q': request.query})

        response = client.post('/echo?x=1', json={'a': 1})

        assert response.status_code == 201
        assert response.json() == {'got': {'a': 1}, 'q': {'x': '1'}}

    def test_async_response_function(self, server, client):
        """Test coroutine response functions are awaited."""
        async def build(request):
            return {'path': request.path}

        server.get('/async').reply(200, build)

        assert client.get('/async').json() == {'path': '/async'}

    def test_raising_response_function_keeps_expectation(self, server, caplog):
        """Test a response function error answers 500 and keeps the expectation."""
        def build(request):
            raise ValueError("cannot build")

        signal = server.get('/broken').reply(200, build)
        client = TestClient(server.app, raise_server_exceptions=False)

        with caplog.at_level(logging.ERROR, logger="mockexpect.mock"):
            response = client.get('/broken')

        assert response.status_code == 500
        assert len(server.pending()) == 1
        assert signal.is_done is False
        assert "Response function for GET /broken raised" in caplog.text

    def test_text_body(self, server, client):
        """Test text bodies are compared raw."""
        signal = (
            server.post('/notes')
            .set('content-type', 'text/plain')
            .send('remember the milk')
            .reply(201)
        )

        response = client.post(
            '/notes',
            content='remember the milk',
            headers={'Content-Type': 'text/plain'}
        )

        assert response.status_code == 201
        signal.done()

    def test_form_body(self, server, client):
        """Test form strings match urlencoded bodies."""
        signal = server.post('/login').send('user=bob&pass=secret').reply(200)

        response = client.post('/login', data={'user': 'bob', 'pass': 'secret'})

        assert response.status_code == 200
        signal.done()

    def test_invalid_json(self, server, client):
        """Test invalid JSON bodies are rejected."""
        server.post('/items').send({'a': 1}).reply(201)

        response = client.post(
            '/items',
            content='{broken',
            headers={'Content-Type': 'application/json'}
        )

        assert response.status_code == 400
        assert len(server.pending()) == 1

    def test_nested_query(self, server, client):
        """Test nested queries are coerced recursively."""
        server.get('/search').query({'filter': {'min': 1, 'tag': 'x'}}).reply(200)

        response = client.get('/search?filter[min]=1&filter[tag]=x')

        assert response.status_code == 200


class TestLifecycle:
    """Test one-shot, persistent and cleaned expectations."""

    def test_one_shot(self, server, client):
        """Test a non-persistent expectation matches at most once."""
        signal = server.get('/once').reply(200, 'first')

        assert client.get('/once').status_code == 200
        assert client.get('/once').status_code == 404
        assert signal.match_count == 1

    def test_falls_through_to_next(self, server, client):
        """Test a second request reaches the next expectation."""
        server.get('/users').reply(200, 'first')
        server.get('/users').reply(200, 'second')

        assert client.get('/users').text == 'first'
        assert client.get('/users').text == 'second'
        assert client.get('/users').status_code == 404

    def test_persistent(self, server, client):
        """Test persistent expectations match every request."""
        signal = server.get('/health').persist().reply(200, 'ok')

        for _ in range(3):
            assert client.get('/health').status_code == 200

        assert signal.match_count == 3
        assert server.pending()[0].path == '/health'

    def test_persistent_shadows_later_expectations(self, server, client):
        """Test the oldest expectation keeps priority while registered."""
        server.get('/users').persist().reply(200, 'persistent')
        server.get('/users').reply(200, 'later')

        assert client.get('/users').text == 'persistent'
        assert client.get('/users').text == 'persistent'

    def test_clean(self, server, client):
        """Test clean() leaves previously registered routes unmatched."""
        server.get('/users').reply(200)
        server.post('/users').persist().reply(201)

        server.clean()

        assert client.get('/users').status_code == 404
        assert client.post('/users').status_code == 404
        assert server.pending() == []

    def test_clean_resets_failures(self, server, client):
        """Test clean() forgets recorded failures."""
        server.get('/users').query({'a': 1}).reply(200)
        client.get('/users?a=2')

        server.clean()

        server.check_failures()

    @patch('mockexpect.mock.reply.asyncio.sleep', new_callable=AsyncMock)
    def test_delay_applied(self, mock_sleep, server, client):
        """Test that delay is applied to responses."""
        server.get('/slow').delay(100).reply(200)

        response = client.get('/slow')

        assert response.status_code == 200
        mock_sleep.assert_called_once()
        call_args = mock_sleep.call_args[0]
        assert call_args[0] == 0.1  # 100ms = 0.1s

    @patch('mockexpect.mock.reply.asyncio.sleep', new_callable=AsyncMock)
    def test_no_delay_by_default(self, mock_sleep, server, client):
        """Test no sleep without delay()."""
        server.get('/fast').reply(200)

        client.get('/fast')

        mock_sleep.assert_not_called()


class TestMiddlewares:
    """Test user middlewares."""

    def test_middlewares_run_in_order(self):
        """Test the first middleware sees the request first."""
        calls = []

        async def first(request, call_next):
            calls.append('first')
            response = await call_next(request)
            response.headers['x-first'] = '1'
            return response

        async def second(request, call_next):
            calls.append('second')
            return await call_next(request)

        server = MockServer(middlewares=[first, second])
        server.get('/users').reply(200)

        response = TestClient(server.app).get('/users')

        assert calls == ['first', 'second']
        assert response.headers['x-first'] == '1'

    def test_middleware_can_short_circuit(self):
        """Test middlewares can answer without dispatching."""
        from fastapi.responses import PlainTextResponse

        async def deny(request, call_next):
            return PlainTextResponse('denied', status_code=403)

        server = MockServer(middlewares=[deny])
        signal = server.get('/users').reply(200)

        response = TestClient(server.app).get('/users')

        assert response.status_code == 403
        assert signal.is_done is False


class TestFailureLogging:
    """Test failures are logged with the configured renderer."""

    def test_ansi_renderer(self, caplog):
        """Test ANSI rendering in logs, plain text in the response."""
        server = MockServer(MockConfig(diff_renderer='ansi'))
        server.post('/items').send({'name': 'a'}).reply(201)

        with caplog.at_level(logging.ERROR, logger='mockexpect.mock'):
            response = TestClient(server.app).post('/items', json={'name': 'b'})

        assert '\033[' not in response.text
        assert any('\033[31m' in record.getMessage() for record in caplog.records)

    def test_custom_renderer(self, caplog):
        """Test callables can render diffs."""
        renderer = lambda entries: f"{len(entries)} lines"
        server = MockServer(MockConfig(diff_renderer=renderer))
        server.post('/items').send({'name': 'a'}).reply(201)

        with caplog.at_level(logging.ERROR, logger='mockexpect.mock'):
            TestClient(server.app).post('/items', json={'name': 'b'})

        assert any('4 lines' in record.getMessage() for record in caplog.records)


class TestSignalsOverRequests:
    """Test completion signals with requests on the same event loop."""

    @pytest.mark.asyncio
    async def test_wait_resolved_by_request(self, server):
        """Test a match at ~10ms resolves the waiter without a later timeout."""
        signal = server.get('/users').reply(200)
        calls = []

        signal.wait(200, calls.append)
        await asyncio.sleep(0.01)
        async with asgi_client(server) as client:
            response = await client.get('/users')
        await asyncio.sleep(0.25)

        assert response.status_code == 200
        assert calls == [None]

    @pytest.mark.asyncio
    async def test_raising_waiter_keeps_reply(self, server):
        """Test a failing wait callback neither breaks the reply nor later waiters."""
        signal = server.get('/users').reply(200, {'ok': True})
        calls = []

        def failing(error):
            raise AssertionError("callback failed")

        signal.wait(100, failing)
        signal.wait(100, calls.append)
        async with asgi_client(server) as client:
            response = await client.get('/users')
        await asyncio.sleep(0.2)

        assert response.status_code == 200
        assert response.json() == {'ok': True}
        assert calls == [None]
        assert server.pending() == []

    @pytest.mark.asyncio
    async def test_wait_after_consumed_times_out(self, server):
        """Test waiting after the one-shot match reports a timeout."""
        signal = server.get('/users').reply(200)

        async with asgi_client(server) as client:
            await client.get('/users')
        calls = []
        signal.wait(50, calls.append)
        await asyncio.sleep(0.1)

        signal.done()
        assert len(calls) == 1
        assert "GET /users was not called within 50ms." in str(calls[0])

    @pytest.mark.asyncio
    async def test_wait_times_out(self, server):
        """Test wait(50) without a request reports a timeout."""
        signal = server.get('/users').reply(200)
        calls = []

        signal.wait(50, calls.append)
        await asyncio.sleep(0.1)

        assert len(calls) == 1
        assert "GET /users was not called within 50ms." in str(calls[0])

    @pytest.mark.asyncio
    async def test_wait_for_background_request(self, server):
        """Test awaiting a request made by concurrent code."""
        signal = server.post('/events').send({'type': 'created'}).reply(202)

        async with asgi_client(server) as client:
            task = asyncio.create_task(client.post('/events', json={'type': 'created'}))
            await signal.wait_for(1000)
            response = await task

        assert response.status_code == 202

    @pytest.mark.asyncio
    async def test_persistent_notifies_every_match(self, server):
        """Test fresh waiters are notified on each persistent match."""
        signal = server.get('/poll').persist().reply(200)
        calls = []

        async with asgi_client(server) as client:
            for _ in range(3):
                signal.wait(500, calls.append)
                await client.get('/poll')

        assert calls == [None, None, None]

    @pytest.mark.asyncio
    async def test_concurrent_requests_match_once(self, server):
        """Test concurrent identical requests cannot share a one-shot expectation."""
        signal = server.get('/once').delay(50).reply(200)

        async with asgi_client(server) as client:
            responses = await asyncio.gather(client.get('/once'), client.get('/once'))

        assert sorted(r.status_code for r in responses) == [200, 404]
        assert signal.match_count == 1

    @pytest.mark.asyncio
    async def test_signal_fires_after_delay(self, server):
        """Test the signal is released when the delayed reply is sent."""
        signal = server.get('/slow').delay(50).reply(200)

        async with asgi_client(server) as client:
            task = asyncio.create_task(client.get('/slow'))
            await asyncio.sleep(0.01)
            assert signal.is_done is False
            await task

        signal.done()


class TestListeningServer:
    """Test the server over a real socket."""

    @pytest.mark.asyncio
    async def test_create_and_close(self):
        """Test create_mock_server listens on a free port."""
        server = await create_mock_server()
        try:
            assert server.is_listening
            assert server.port
            signal = server.get('/users').query({'active': True}).reply(200, {'ok': True})

            async with httpx.AsyncClient() as client:
                response = await client.get(server.url_for('/users'), params={'active': 'true'})

            assert response.status_code == 200
            assert response.json() == {'ok': True}
            signal.done()
        finally:
            await server.close()

        assert server.port is None
        assert not server.is_listening

    @pytest.mark.asyncio
    async def test_context_manager(self):
        """Test async with starts and stops the server."""
        async with MockServer() as server:
            server.get('/health').reply(200, 'ok')

            async with httpx.AsyncClient() as client:
                response = await client.get(server.url_for('health'))

            assert response.text == 'ok'

    @pytest.mark.asyncio
    async def test_listen_twice_rejected(self):
        """Test a server cannot listen twice."""
        server = await create_mock_server()
        try:
            with pytest.raises(RuntimeError):
                await server.listen()
        finally:
            await server.close()

    @pytest.mark.asyncio
    async def test_failed_startup_can_retry(self):
        """Test a startup error resets the server so listen() can be retried."""
        server = MockServer()

        with patch('mockexpect.mock.server.uvicorn.Server.serve', AsyncMock(side_effect=OSError("boom"))):
            with pytest.raises(OSError, match="boom"):
                await server.listen()

        assert server._serve_task is None
        assert not server.is_listening

        await server.listen()
        try:
            assert server.is_listening
        finally:
            await server.close()

    def test_url_for_requires_listening(self, server):
        """Test url_for before listen()."""
        with pytest.raises(RuntimeError):
            server.url_for('/users')
