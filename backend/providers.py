"""
Chat-completion providers behind one interface.

Each adapter takes the user's AISettings and a list of {"role", "content"}
messages and returns an AIResponse. Missing credentials or URLs are rejected
before any request is made; every other failure is raised as ProviderError
with the provider label in front of the message. Nothing is retried.
"""
import logging
import os
from typing import Optional

import anthropic
import httpx

from models import AIResponse, AISettings, ConnectionTestResult, ProviderName, Usage

logger = logging.getLogger(__name__)

# The deployment's own assistant, used by the BUILTIN provider
BUILTIN_AI_API_KEY = os.getenv("BUILTIN_AI_API_KEY")
BUILTIN_AI_MODEL = os.getenv("BUILTIN_AI_MODEL", "claude-sonnet-4-5")

REQUEST_TIMEOUT = float(os.getenv("AI_REQUEST_TIMEOUT", "60"))

OPENAI_CHAT_URL = "https://api.openai.com/v1/chat/completions"
OPENAI_DEFAULT_MODEL = "gpt-3.5-turbo"
ANTHROPIC_DEFAULT_MODEL = "claude-3-sonnet-20240229"
CUSTOM_DEFAULT_MODEL = "default"

# Local servers differ on whether the OpenAI routes live under /v1
LM_STUDIO_CHAT_PATHS = ("/v1/chat/completions", "/chat/completions")


class ProviderError(Exception):
    """A provider call failed or could not be attempted."""


class AIProvider:
    name: ProviderName
    label: str

    def __init__(self, transport: Optional[httpx.AsyncBaseTransport] = None):
        # transport is only overridden in tests
        self._transport = transport

    def check_settings(self, settings: AISettings) -> None:
        """Raise ProviderError if settings lack what this provider needs."""

    async def _complete(self, settings: AISettings, messages: list[dict]) -> AIResponse:
        raise NotImplementedError

    async def generate_completion(self, settings: AISettings, messages: list[dict]) -> AIResponse:
        self.check_settings(settings)
        try:
            return await self._complete(settings, messages)
        except (ProviderError, httpx.HTTPError, anthropic.APIError, ValueError) as e:
            raise ProviderError(f"{self.label} error: {e}") from e

    async def test_connection(self, settings: AISettings, test_message: str) -> ConnectionTestResult:
        try:
            response = await self.generate_completion(settings, [{"role": "user", "content": test_message}])
        except ProviderError as e:
            logger.warning("Connection test for %s failed: %s", self.name.value, e)
            return ConnectionTestResult(success=False, message=f"Connection to {self.label} failed: {e}")

        return ConnectionTestResult(
            success=True,
            message=f"Connection to {self.label} established",
            response=response.content,
            model_info={
                "model": response.model,
                "usage": response.usage.model_dump() if response.usage else None,
            },
        )

    def _http_client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(timeout=REQUEST_TIMEOUT, transport=self._transport)

    async def _post_chat(self, url: str, body: dict, headers: Optional[dict] = None) -> dict:
        """POST an OpenAI-style chat request and return the decoded JSON body."""
        async with self._http_client() as client:
            response = await client.post(url, json=body, headers=headers)
        if response.is_error:
            raise ProviderError(f"HTTP {response.status_code}: {response.text}")
        return response.json()

    async def _anthropic_messages(
        self,
        api_key: str,
        model: str,
        settings: AISettings,
        messages: list[dict]
    ) -> AIResponse:
        """Call the Anthropic messages API.
        System messages go to the `system` parameter; every other role is sent
        as user unless it is an assistant turn.
        """
        system = "\n\n".join(m["content"] for m in messages if m["role"] == "system")
        api_messages = [
            {"role": "assistant" if m["role"] == "assistant" else "user", "content": m["content"]}
            for m in messages if m["role"] != "system"
        ]
        kwargs = {
            "model": model,
            "max_tokens": settings.max_tokens,
            "temperature": settings.temperature,
            "messages": api_messages,
        }
        if system:
            kwargs["system"] = system

        async with anthropic.AsyncAnthropic(
            api_key=api_key,
            max_retries=0,
            http_client=self._http_client(),
        ) as client:
            response = await client.messages.create(**kwargs)

        content = "".join(block.text for block in response.content if block.type == "text")
        return AIResponse(
            content=content,
            model=response.model,
            usage=Usage(
                prompt_tokens=response.usage.input_tokens,
                completion_tokens=response.usage.output_tokens,
                total_tokens=response.usage.input_tokens + response.usage.output_tokens,
            ),
        )


def _usage_from(data: dict) -> Optional[Usage]:
    usage = data.get("usage")
    return Usage.model_validate(usage) if isinstance(usage, dict) else None


def _choice_content(data: dict) -> str:
    choices = data.get("choices") or [{}]
    return ((choices[0] or {}).get("message") or {}).get("content") or ""


class BuiltinProvider(AIProvider):
    """Server-configured assistant; needs no per-user credentials."""
    name = ProviderName.BUILTIN
    label = "Built-in assistant"

    def check_settings(self, settings: AISettings) -> None:
        if not BUILTIN_AI_API_KEY or BUILTIN_AI_API_KEY == "your-api-key-here":
            raise ProviderError("Built-in assistant is not configured: BUILTIN_AI_API_KEY is not set")

    async def _complete(self, settings: AISettings, messages: list[dict]) -> AIResponse:
        return await self._anthropic_messages(BUILTIN_AI_API_KEY, BUILTIN_AI_MODEL, settings, messages)


class LMStudioProvider(AIProvider):
    name = ProviderName.LM_STUDIO
    label = "LM Studio"

    def check_settings(self, settings: AISettings) -> None:
        if not settings.base_url:
            raise ProviderError("Base URL is required for LM Studio")

    @staticmethod
    def normalize_url(base_url: str) -> str:
        url = base_url.strip()
        if not url.startswith(("http://", "https://")):
            url = "http://" + url
        return url.rstrip("/")

    async def _complete(self, settings: AISettings, messages: list[dict]) -> AIResponse:
        base_url = self.normalize_url(settings.base_url)
        # "auto" or empty lets the server pick whatever model is loaded
        model = settings.model if settings.model and settings.model != "auto" else None

        body = {
            "messages": messages,
            "max_tokens": settings.max_tokens,
            "temperature": settings.temperature,
            "stream": False,
        }
        if model:
            body["model"] = model

        last_error: Optional[Exception] = None
        for path in LM_STUDIO_CHAT_PATHS:
            chat_url = base_url + path
            logger.info("Sending chat request to %s", chat_url)
            try:
                data = await self._post_chat(chat_url, body)
                content = _choice_content(data)
                if not content:
                    raise ProviderError("Empty response from LM Studio")
            except (ProviderError, httpx.HTTPError, ValueError) as e:
                logger.warning("Request to %s failed: %s", chat_url, e)
                last_error = e
                continue

            return AIResponse(content=content, model=data.get("model") or model or "unknown", usage=_usage_from(data))

        raise ProviderError(str(last_error) if last_error else "Could not connect to LM Studio")


class OpenAIProvider(AIProvider):
    name = ProviderName.OPENAI
    label = "OpenAI"

    def check_settings(self, settings: AISettings) -> None:
        if not settings.api_key:
            raise ProviderError("API key is required for OpenAI")

    async def _complete(self, settings: AISettings, messages: list[dict]) -> AIResponse:
        data = await self._post_chat(
            OPENAI_CHAT_URL,
            {
                "model": settings.model or OPENAI_DEFAULT_MODEL,
                "messages": messages,
                "max_tokens": settings.max_tokens,
                "temperature": settings.temperature,
            },
            headers={"Authorization": f"Bearer {settings.api_key}"},
        )
        return AIResponse(content=_choice_content(data), model=data.get("model"), usage=_usage_from(data))


class AnthropicProvider(AIProvider):
    name = ProviderName.ANTHROPIC
    label = "Anthropic"

    def check_settings(self, settings: AISettings) -> None:
        if not settings.api_key:
            raise ProviderError("API key is required for Anthropic")

    async def _complete(self, settings: AISettings, messages: list[dict]) -> AIResponse:
        return await self._anthropic_messages(
            settings.api_key, settings.model or ANTHROPIC_DEFAULT_MODEL, settings, messages
        )


class CustomProvider(AIProvider):
    """Any OpenAI-compatible endpoint."""
    name = ProviderName.CUSTOM
    label = "Custom provider"

    def check_settings(self, settings: AISettings) -> None:
        if not settings.base_url:
            raise ProviderError("Base URL is required for a custom provider")

    async def _complete(self, settings: AISettings, messages: list[dict]) -> AIResponse:
        data = await self._post_chat(
            f"{settings.base_url.rstrip('/')}/v1/chat/completions",
            {
                "model": settings.model or CUSTOM_DEFAULT_MODEL,
                "messages": messages,
                "max_tokens": settings.max_tokens,
                "temperature": settings.temperature,
                "stream": False,
            },
        )
        return AIResponse(
            content=_choice_content(data),
            model=data.get("model") or settings.model or "unknown",
            usage=_usage_from(data),
        )


class AIProviderFactory:
    _providers: dict[ProviderName, AIProvider] = {
        provider.name: provider
        for provider in (
            BuiltinProvider(),
            LMStudioProvider(),
            OpenAIProvider(),
            AnthropicProvider(),
            CustomProvider(),
        )
    }

    @classmethod
    def get_provider(cls, name: str) -> AIProvider:
        try:
            return cls._providers[ProviderName(name)]
        except (ValueError, KeyError):
            raise ProviderError(f"Unknown provider: {name}") from None

    @classmethod
    def available_providers(cls) -> list[str]:
        return [name.value for name in cls._providers]


async def generate_ai_response(settings: AISettings, messages: list[dict]) -> AIResponse:
    """Dispatch a completion to the provider selected in settings."""
    if not settings.enabled:
        raise ProviderError("AI assistant is disabled in settings")

    provider = AIProviderFactory.get_provider(settings.provider)
    return await provider.generate_completion(settings, messages)


async def check_ai_connection(settings: AISettings, test_message: str) -> ConnectionTestResult:
    provider = AIProviderFactory.get_provider(settings.provider)
    return await provider.test_connection(settings, test_message)
