"""
Tests for providers.py.
HTTP is served by httpx.MockTransport, so nothing leaves the process.
"""
import asyncio
import json
import pytest
import sys
import os

import httpx

sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

import providers
from models import AISettings, ProviderName
from providers import (
    AIProviderFactory,
    AnthropicProvider,
    BuiltinProvider,
    CustomProvider,
    LMStudioProvider,
    OpenAIProvider,
    ProviderError,
    check_ai_connection,
    generate_ai_response,
)

MESSAGES = [
    {"role": "system", "content": "Ты - AI-ассистент."},
    {"role": "user", "content": "Привет"},
]


class RecordingTransport(httpx.MockTransport):
    """MockTransport that keeps every request it served."""

    def __init__(self, handler):
        self.requests = []

        def record(request):
            self.requests.append(request)
            return handler(request)

        super().__init__(record)


def openai_reply(content="Здравствуйте!", model="test-model"):
    return httpx.Response(200, json={
        "model": model,
        "choices": [{"message": {"role": "assistant", "content": content}}],
        "usage": {"prompt_tokens": 10, "completion_tokens": 3, "total_tokens": 13},
    })


def anthropic_reply(text="Здравствуйте!"):
    return httpx.Response(200, json={
        "id": "msg_01",
        "type": "message",
        "role": "assistant",
        "model": "claude-test",
        "content": [{"type": "text", "text": text}],
        "stop_reason": "end_turn",
        "stop_sequence": None,
        "usage": {"input_tokens": 12, "output_tokens": 4},
    })


def run(coro):
    return asyncio.run(coro)


class TestMissingConfiguration:
    """Providers refuse to run without credentials and never touch the network."""

    @pytest.mark.parametrize("provider_cls,settings", [
        (LMStudioProvider, AISettings(provider=ProviderName.LM_STUDIO)),
        (OpenAIProvider, AISettings(provider=ProviderName.OPENAI)),
        (AnthropicProvider, AISettings(provider=ProviderName.ANTHROPIC)),
        (CustomProvider, AISettings(provider=ProviderName.CUSTOM)),
    ])
    def test_rejected_before_request(self, provider_cls, settings):
        transport = RecordingTransport(lambda request: openai_reply())

        with pytest.raises(ProviderError):
            run(provider_cls(transport=transport).generate_completion(settings, MESSAGES))

        assert transport.requests == []

    @pytest.mark.parametrize("key", [None, "your-api-key-here"])
    def test_builtin_without_server_key(self, monkeypatch, key):
        monkeypatch.setattr(providers, "BUILTIN_AI_API_KEY", key)
        transport = RecordingTransport(lambda request: anthropic_reply())

        with pytest.raises(ProviderError, match="BUILTIN_AI_API_KEY"):
            run(BuiltinProvider(transport=transport).generate_completion(AISettings(), MESSAGES))

        assert transport.requests == []


class TestLMStudio:

    @pytest.fixture
    def settings(self):
        return AISettings(provider=ProviderName.LM_STUDIO, base_url="localhost:1234/", model="auto")

    def test_normalize_url(self):
        assert LMStudioProvider.normalize_url(" localhost:1234/ ") == "http://localhost:1234"
        assert LMStudioProvider.normalize_url("https://lm.example.com") == "https://lm.example.com"

    def test_first_path_succeeds(self, settings):
        transport = RecordingTransport(lambda request: openai_reply(model="qwen"))

        response = run(LMStudioProvider(transport=transport).generate_completion(settings, MESSAGES))

        assert response.content == "Здравствуйте!"
        assert response.model == "qwen"
        assert response.usage.total_tokens == 13
        assert [str(r.url) for r in transport.requests] == ["http://localhost:1234/v1/chat/completions"]

    def test_auto_model_omitted(self, settings):
        transport = RecordingTransport(lambda request: openai_reply())

        run(LMStudioProvider(transport=transport).generate_completion(settings, MESSAGES))

        body = json.loads(transport.requests[0].content)
        assert "model" not in body
        assert body["stream"] is False
        assert body["messages"] == MESSAGES

    def test_falls_back_to_bare_path(self, settings):
        def handler(request):
            if request.url.path.startswith("/v1/"):
                return httpx.Response(404, text="Not Found")
            return openai_reply("Готово")

        transport = RecordingTransport(handler)
        response = run(LMStudioProvider(transport=transport).generate_completion(settings, MESSAGES))

        assert response.content == "Готово"
        assert [r.url.path for r in transport.requests] == ["/v1/chat/completions", "/chat/completions"]

    def test_empty_content_is_failure(self, settings):
        transport = RecordingTransport(lambda request: openai_reply(content=""))

        with pytest.raises(ProviderError, match="Empty response"):
            run(LMStudioProvider(transport=transport).generate_completion(settings, MESSAGES))

        assert len(transport.requests) == 2

    def test_connection_refused(self, settings):
        def handler(request):
            raise httpx.ConnectError("Connection refused", request=request)

        with pytest.raises(ProviderError, match="LM Studio error"):
            run(LMStudioProvider(transport=RecordingTransport(handler)).generate_completion(settings, MESSAGES))


class TestOpenAICompatible:

    def test_openai_request(self):
        transport = RecordingTransport(lambda request: openai_reply())
        settings = AISettings(provider=ProviderName.OPENAI, api_key="sk-test", max_tokens=200)

        response = run(OpenAIProvider(transport=transport).generate_completion(settings, MESSAGES))

        request = transport.requests[0]
        assert str(request.url) == "https://api.openai.com/v1/chat/completions"
        assert request.headers["Authorization"] == "Bearer sk-test"
        body = json.loads(request.content)
        assert body["model"] == "gpt-3.5-turbo"
        assert body["max_tokens"] == 200
        assert response.content == "Здравствуйте!"

    def test_openai_http_error(self):
        transport = RecordingTransport(lambda request: httpx.Response(401, text="invalid api key"))
        settings = AISettings(provider=ProviderName.OPENAI, api_key="sk-bad")

        with pytest.raises(ProviderError) as exc_info:
            run(OpenAIProvider(transport=transport).generate_completion(settings, MESSAGES))

        assert str(exc_info.value) == "OpenAI error: HTTP 401: invalid api key"

    def test_custom_endpoint(self):
        transport = RecordingTransport(lambda request: openai_reply(model=""))
        settings = AISettings(provider=ProviderName.CUSTOM, base_url="http://llm.local:8080/")

        response = run(CustomProvider(transport=transport).generate_completion(settings, MESSAGES))

        assert str(transport.requests[0].url) == "http://llm.local:8080/v1/chat/completions"
        assert json.loads(transport.requests[0].content)["model"] == "default"
        assert response.model == "unknown"


class TestAnthropicMessages:

    def test_system_messages_lifted(self):
        transport = RecordingTransport(lambda request: anthropic_reply())
        settings = AISettings(provider=ProviderName.ANTHROPIC, api_key="sk-ant-test")

        response = run(AnthropicProvider(transport=transport).generate_completion(settings, MESSAGES))

        request = transport.requests[0]
        assert request.url.path == "/v1/messages"
        assert request.headers["x-api-key"] == "sk-ant-test"
        body = json.loads(request.content)
        assert body["model"] == "claude-3-sonnet-20240229"
        assert body["system"] == "Ты - AI-ассистент."
        assert body["messages"] == [{"role": "user", "content": "Привет"}]

        assert response.content == "Здравствуйте!"
        assert response.model == "claude-test"
        assert response.usage.total_tokens == 16

    def test_builtin_uses_server_key(self, monkeypatch):
        monkeypatch.setattr(providers, "BUILTIN_AI_API_KEY", "sk-server")
        monkeypatch.setattr(providers, "BUILTIN_AI_MODEL", "claude-builtin")
        transport = RecordingTransport(lambda request: anthropic_reply())

        run(BuiltinProvider(transport=transport).generate_completion(AISettings(api_key="ignored"), MESSAGES))

        request = transport.requests[0]
        assert request.headers["x-api-key"] == "sk-server"
        assert json.loads(request.content)["model"] == "claude-builtin"

    def test_api_error_wrapped(self):
        transport = RecordingTransport(lambda request: httpx.Response(
            400, json={"type": "error", "error": {"type": "invalid_request_error", "message": "bad model"}}
        ))
        settings = AISettings(provider=ProviderName.ANTHROPIC, api_key="sk-ant-test", model="nope")

        with pytest.raises(ProviderError, match="^Anthropic error:"):
            run(AnthropicProvider(transport=transport).generate_completion(settings, MESSAGES))


class TestDispatch:

    def test_factory_knows_all_providers(self):
        assert AIProviderFactory.available_providers() == ["BUILTIN", "LM_STUDIO", "OPENAI", "ANTHROPIC", "CUSTOM"]
        assert isinstance(AIProviderFactory.get_provider("OPENAI"), OpenAIProvider)
        assert isinstance(AIProviderFactory.get_provider(ProviderName.CUSTOM), CustomProvider)

    def test_factory_unknown_provider(self):
        with pytest.raises(ProviderError, match="Unknown provider"):
            AIProviderFactory.get_provider("GEMINI")

    def test_disabled_settings(self):
        with pytest.raises(ProviderError, match="disabled"):
            run(generate_ai_response(AISettings(enabled=False), MESSAGES))

    def test_generate_dispatches_to_selected_provider(self, monkeypatch):
        transport = RecordingTransport(lambda request: openai_reply("Ответ"))
        monkeypatch.setitem(AIProviderFactory._providers, ProviderName.CUSTOM, CustomProvider(transport=transport))
        settings = AISettings(provider=ProviderName.CUSTOM, base_url="http://llm.local")

        response = run(generate_ai_response(settings, MESSAGES))

        assert response.content == "Ответ"
        assert len(transport.requests) == 1


class TestConnectionCheck:

    def test_success(self):
        transport = RecordingTransport(lambda request: openai_reply("Hi!", model="gpt-4o-mini"))
        settings = AISettings(provider=ProviderName.OPENAI, api_key="sk-test")

        result = run(OpenAIProvider(transport=transport).test_connection(settings, "Hello"))

        assert result.success is True
        assert result.response == "Hi!"
        assert result.model_info["model"] == "gpt-4o-mini"
        assert result.model_info["usage"]["total_tokens"] == 13

    def test_failure_is_reported_not_raised(self):
        result = run(check_ai_connection(AISettings(provider=ProviderName.LM_STUDIO), "Hello"))

        assert result.success is False
        assert result.message.startswith("Connection to LM Studio failed")
        assert result.response is None
