"""Tests for the HTTP surface and application lifecycle."""

import sys
from unittest.mock import AsyncMock, MagicMock, patch

import pytest
from fastapi.testclient import TestClient

from toolgateway.app.core.config import MissingCredentialError, Settings
from toolgateway.app.main import (
    create_app,
    handle_uncaught_exception,
    make_loop_exception_handler,
    run,
)


@pytest.fixture
def provider():
    mock = MagicMock()
    mock.health_check = AsyncMock(return_value=True)
    mock.chat_completion = AsyncMock(
        return_value={
            "content": "Hello!",
            "model": "llama-3.1-8b-instant",
            "finish_reason": "stop",
            "usage": {"prompt_tokens": 5, "completion_tokens": 2, "total_tokens": 7},
        }
    )
    mock.upload_file = AsyncMock(return_value="file_1")
    mock.create_batch = AsyncMock(return_value={"id": "batch_1", "status": "validating", "created_at": 1})
    return mock


@pytest.fixture
def app(app_settings, provider):
    return create_app(app_settings, provider=provider)


@pytest.fixture
def client(app):
    with TestClient(app) as test_client:
        yield test_client


BATCH_ARGS = {
    "requests": [
        {
            "custom_id": "r1",
            "body": {
                "model": "llama-3.1-8b-instant",
                "messages": [{"role": "user", "content": "hi"}],
            },
        }
    ]
}


class TestToolEndpoints:
    def test_list_tools(self, client):
        response = client.get("/tools")

        assert response.status_code == 200
        tools = response.json()["tools"]
        assert [t["name"] for t in tools] == [
            "groq_text_completion",
            "groq_audio_transcription",
            "groq_vision_analysis",
            "groq_batch_processing",
        ]
        assert all("inputSchema" in t for t in tools)

    def test_call_unknown_tool_is_error_envelope(self, client):
        response = client.post("/tools/call", json={"name": "nope", "arguments": {}})

        assert response.status_code == 200
        assert response.json() == {
            "content": [{"type": "text", "text": "Error executing nope: Unknown tool: nope"}],
            "isError": True,
        }

    def test_call_batch_tool(self, client, provider):
        response = client.post("/tools/call", json={"name": "groq_batch_processing", "arguments": BATCH_ARGS})

        body = response.json()
        assert response.status_code == 200
        assert "isError" not in body
        assert '"batch_id": "batch_1"' in body["content"][0]["text"]
        provider.upload_file.assert_awaited_once()

    def test_call_text_tool_is_cached(self, client, provider):
        payload = {"name": "groq_text_completion", "arguments": {"prompt": "Say hello"}}

        with patch("toolgateway.app.tools.text_completion.estimate_request_tokens", return_value=100):
            first = client.post("/tools/call", json=payload)
            second = client.post("/tools/call", json=payload)

        assert first.json() == second.json()
        assert provider.chat_completion.await_count == 1

        stats = client.get("/stats").json()
        assert stats["metrics"]["cache_stats"]["hits"] == 1
        assert stats["cache_entries"] == 1

    def test_invalid_arguments_are_error_envelope(self, client):
        response = client.post("/tools/call", json={"name": "groq_vision_analysis", "arguments": {"image_url": "nope"}})

        assert response.status_code == 200
        body = response.json()
        assert body["isError"] is True
        assert "Valid image URL is required" in body["content"][0]["text"]

    def test_malformed_body_is_422(self, client):
        assert client.post("/tools/call", json={"arguments": {}}).status_code == 422
        assert client.post("/tools/call", json={"name": ""}).status_code == 422

    def test_limits_for_model(self, client):
        body = client.get("/limits/llama-3.1-8b-instant").json()

        assert body["limited"] is True
        assert body["requests_per_minute"] == 30
        assert body["remaining"] == {"requests": 30, "tokens": 30000}

    def test_limits_for_key_with_slash(self, client):
        body = client.get("/limits/meta-llama/llama-guard-4-12b").json()

        assert body["resource_key"] == "meta-llama/llama-guard-4-12b"
        assert body["limited"] is True

    def test_limits_for_request_only_key(self, client):
        client.post("/tools/call", json={"name": "groq_batch_processing", "arguments": BATCH_ARGS})

        body = client.get("/limits/batch_processing").json()

        assert body["remaining"] == {"requests": 99, "tokens": None}

    def test_limits_for_unknown_key(self, client):
        assert client.get("/limits/unknown").json() == {"resource_key": "unknown", "limited": False}


class TestMetricsEndpoints:
    def test_health(self, client):
        body = client.get("/health").json()

        assert body["status"] == "healthy"
        assert body["shutting_down"] is False
        assert "upstream" not in body
        assert body["details"]["total_requests"] == 0

    def test_health_with_upstream_check(self, client, provider):
        body = client.get("/health", params={"upstream": "true"}).json()

        assert body["upstream"] == {"reachable": True}
        provider.health_check.assert_awaited_once()

    def test_health_reflects_errors(self, client):
        for _ in range(3):
            client.post("/tools/call", json={"name": "groq_vision_analysis", "arguments": {}})

        body = client.get("/health").json()
        assert body["status"] == "critical"
        assert body["details"]["error_rate"] == "100.00%"

    def test_stats(self, client):
        client.post("/tools/call", json={"name": "groq_batch_processing", "arguments": BATCH_ARGS})

        body = client.get("/stats").json()

        assert body["metrics"]["total_requests"] == 1
        assert body["metrics"]["tool_usage"] == {"groq_batch_processing": 1}
        assert body["in_flight"] == 0
        assert len(body["tools"]) == 4

    def test_prometheus(self, client):
        response = client.get("/metrics")

        assert response.status_code == 200
        assert response.headers["content-type"].startswith("text/plain")
        assert "toolgateway_requests_total 0" in response.text


class TestRequestId:
    def test_request_id_echoed(self, client):
        response = client.get("/health", headers={"X-Request-ID": "abc-123"})
        assert response.headers["X-Request-ID"] == "abc-123"

    def test_request_id_generated(self, client):
        response = client.get("/health")
        assert len(response.headers["X-Request-ID"]) == 36

    def test_request_id_reaches_tool_logs(self, client, caplog):
        with caplog.at_level("INFO", logger="toolgateway"):
            client.post(
                "/tools/call",
                json={"name": "nope", "arguments": {}},
                headers={"X-Request-ID": "trace-me"},
            )

        records = [r for r in caplog.records if r.getMessage() == "Executing tool: nope"]
        assert records and records[0].request_id == "trace-me"


class TestLifecycle:
    def test_shutdown_drains_dispatcher(self, app):
        with TestClient(app) as client:
            client.get("/health")
            dispatcher = app.state.dispatcher
            assert dispatcher.metrics.is_running

        assert dispatcher.is_shutting_down
        assert dispatcher.metrics.is_destroyed

    def test_missing_credential_fails_startup(self, app_settings, provider):
        cfg = app_settings.model_copy(update={"groq_api_key": ""})
        app = create_app(cfg, provider=provider)

        with pytest.raises(MissingCredentialError):
            with TestClient(app):
                pass

    def test_unhandled_exception_returns_500(self, app):
        @app.get("/boom")
        async def boom():
            raise RuntimeError("kaboom")

        with TestClient(app, raise_server_exceptions=False) as client:
            response = client.get("/boom", headers={"X-Request-ID": "req-500"})

        assert response.status_code == 500
        assert response.json() == {
            "error": "internal_error",
            "message": "Internal server error",
            "request_id": "req-500",
        }
        assert "kaboom" not in response.text


class TestProcessFaults:
    def test_loop_handler_exits_on_exception(self):
        exit_func = MagicMock()
        handler = make_loop_exception_handler(exit_func=exit_func)

        handler(MagicMock(), {"message": "Task exception was never retrieved", "exception": RuntimeError("x")})

        exit_func.assert_called_once_with(1)

    def test_loop_handler_logs_without_exception(self, caplog):
        exit_func = MagicMock()
        handler = make_loop_exception_handler(exit_func=exit_func)

        with caplog.at_level("ERROR", logger="toolgateway"):
            handler(MagicMock(), {"message": "something odd"})

        exit_func.assert_not_called()
        assert "Event loop error: something odd" in caplog.text

    def test_excepthook_logs_critical(self, caplog):
        try:
            raise ValueError("unexpected")
        except ValueError:
            exc_info = sys.exc_info()

        with caplog.at_level("CRITICAL", logger="toolgateway"):
            handle_uncaught_exception(*exc_info)

        assert caplog.records[-1].levelname == "CRITICAL"
        assert caplog.records[-1].getMessage() == "Uncaught exception"

    def test_excepthook_defers_keyboard_interrupt(self):
        with patch("toolgateway.app.main.sys.__excepthook__") as default_hook:
            handle_uncaught_exception(KeyboardInterrupt, KeyboardInterrupt(), None)

        default_hook.assert_called_once()


class TestRun:
    @pytest.fixture(autouse=True)
    def restore_excepthook(self, monkeypatch):
        monkeypatch.setattr(sys, "excepthook", sys.excepthook)

    def test_exits_when_credential_missing(self):
        cfg = Settings(_env_file=None, groq_api_key="")

        with patch("toolgateway.app.main.settings", cfg), \
                patch("toolgateway.app.main.setup_logging"), \
                patch("toolgateway.app.main.uvicorn.run") as uvicorn_run:
            with pytest.raises(SystemExit) as exc_info:
                run()

        assert exc_info.value.code == 1
        uvicorn_run.assert_not_called()

    def test_serves_when_configured(self):
        cfg = Settings(_env_file=None, groq_api_key="k", host="0.0.0.0", port=9000)

        with patch("toolgateway.app.main.settings", cfg), \
                patch("toolgateway.app.main.setup_logging"), \
                patch("toolgateway.app.main.create_app") as make_app, \
                patch("toolgateway.app.main.uvicorn.run") as uvicorn_run:
            run()

        make_app.assert_called_once_with(cfg)
        uvicorn_run.assert_called_once_with(make_app.return_value, host="0.0.0.0", port=9000, log_config=None)
        assert sys.excepthook is handle_uncaught_exception
