"""
Provider adapters for Immortal Bard.

Provides a unified chat interface with adapters for each provider:
- OpenAI (Chat Completions)
- Anthropic (Messages)
- Google GenAI (Gemini)

`temperature=None` means the field is left out of the request so the
provider's own default applies.
"""

import logging
import time
from abc import ABC, abstractmethod
from typing import Optional

import httpx

from .config import DEFAULT_TEMPERATURE, MAX_OUTPUT_TOKENS
from .providers import Provider, ProviderConfig, is_reasoning_model


logger = logging.getLogger(__name__)

# Status codes worth another attempt
RETRYABLE_STATUS_CODES = {429, 503}


class Message:
    """Simple message container for LLM conversations."""

    def __init__(self, role: str, content: str):
        self.role = role
        self.content = content

    def to_dict(self) -> dict[str, str]:
        return {"role": self.role, "content": self.content}

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, Message):
            return NotImplemented
        return self.role == other.role and self.content == other.content

    def __repr__(self) -> str:
        return f"Message(role={self.role!r}, content={self.content[:40]!r})"


class LLMAdapter(ABC):
    """Abstract base class for LLM provider adapters."""

    def __init__(self, config: ProviderConfig):
        self.config = config
        self.model = config.effective_model
        self.api_key = config.api_key
        self.client = httpx.Client(timeout=60.0)

    @abstractmethod
    def chat_completion(
        self,
        messages: list[Message],
        temperature: Optional[float] = DEFAULT_TEMPERATURE,
        max_tokens: int = MAX_OUTPUT_TOKENS,
        max_retries: int = 2,
    ) -> str:
        """Send a chat completion request.

        Args:
            messages: List of conversation messages
            temperature: Sampling temperature, None for the provider default
            max_tokens: Output length cap
            max_retries: Maximum retries on rate limit or connection errors

        Returns:
            The assistant's response content
        """

    def _post(self, url: str, payload: dict, headers: dict, max_retries: int) -> dict:
        """POST with exponential backoff on rate limits and transport errors."""
        last_error: Optional[Exception] = None
        for attempt in range(max_retries + 1):
            if attempt > 0:
                # Exponential backoff: 2s, 4s, 8s
                time.sleep(2 ** attempt)
            try:
                response = self.client.post(url, json=payload, headers=headers)
                response.raise_for_status()
                return response.json()
            except httpx.HTTPStatusError as e:
                last_error = e
                if e.response.status_code in RETRYABLE_STATUS_CODES and attempt < max_retries:
                    logger.debug(f"{self.config.display_name} returned {e.response.status_code}, retrying")
                    continue
                raise
            except httpx.TransportError as e:
                last_error = e
                if attempt < max_retries:
                    logger.debug(f"{self.config.display_name} transport error, retrying: {e}")
                    continue
                raise
        raise last_error

    def close(self) -> None:
        self.client.close()


class OpenAIAdapter(LLMAdapter):
    """Adapter for OpenAI Chat Completions API.

    Reasoning models take `max_completion_tokens` instead of `max_tokens`.
    """

    def __init__(self, config: ProviderConfig):
        super().__init__(config)
        self.endpoint = config.endpoint.rstrip("/")

        self.headers = {"Content-Type": "application/json"}
        if config.api_key:
            self.headers["Authorization"] = f"Bearer {config.api_key}"

    def chat_completion(
        self,
        messages: list[Message],
        temperature: Optional[float] = DEFAULT_TEMPERATURE,
        max_tokens: int = MAX_OUTPUT_TOKENS,
        max_retries: int = 2,
    ) -> str:
        payload = {
            "model": self.model,
            "messages": [m.to_dict() for m in messages],
        }
        if is_reasoning_model(self.model):
            payload["max_completion_tokens"] = max_tokens
        else:
            payload["max_tokens"] = max_tokens
        if temperature is not None:
            payload["temperature"] = temperature

        data = self._post(
            f"{self.endpoint}/chat/completions", payload, self.headers, max_retries
        )
        return data["choices"][0]["message"]["content"] or ""


class AnthropicAdapter(LLMAdapter):
    """Adapter for Anthropic Messages API (Claude).

    Uses the native Anthropic API format instead of OpenAI compatibility.
    """

    ANTHROPIC_VERSION = "2023-06-01"

    def __init__(self, config: ProviderConfig):
        super().__init__(config)
        self.endpoint = f"{config.endpoint.rstrip('/')}/messages"

        self.headers = {
            "Content-Type": "application/json",
            "x-api-key": self.api_key or "",
            "anthropic-version": self.ANTHROPIC_VERSION,
        }

    def chat_completion(
        self,
        messages: list[Message],
        temperature: Optional[float] = DEFAULT_TEMPERATURE,
        max_tokens: int = MAX_OUTPUT_TOKENS,
        max_retries: int = 2,
    ) -> str:
        # Anthropic uses "system" parameter separately
        system_message = ""
        chat_messages = []

        for msg in messages:
            if msg.role == "system":
                system_message = msg.content
            else:
                role = "user" if msg.role == "user" else "assistant"
                chat_messages.append({"role": role, "content": msg.content})

        payload = {
            "model": self.model,
            "max_tokens": max_tokens,
            "messages": chat_messages,
        }
        if system_message:
            payload["system"] = system_message
        if temperature is not None:
            payload["temperature"] = temperature

        data = self._post(self.endpoint, payload, self.headers, max_retries)

        # Anthropic returns content as a list of blocks
        return "".join(
            block.get("text", "")
            for block in data.get("content", [])
            if block.get("type") == "text"
        )


class GoogleAdapter(LLMAdapter):
    """Adapter for Google GenAI API (Gemini).

    Uses the native Google Generative AI API format.
    """

    def __init__(self, config: ProviderConfig):
        super().__init__(config)
        self.base_url = f"{config.endpoint.rstrip('/')}/models"

    def chat_completion(
        self,
        messages: list[Message],
        temperature: Optional[float] = DEFAULT_TEMPERATURE,
        max_tokens: int = MAX_OUTPUT_TOKENS,
        max_retries: int = 2,
    ) -> str:
        # Convert to Gemini "contents" format
        contents = []
        system_instruction = None

        for msg in messages:
            if msg.role == "system":
                system_instruction = msg.content
            else:
                role = "user" if msg.role == "user" else "model"
                contents.append({
                    "role": role,
                    "parts": [{"text": msg.content}],
                })

        generation_config = {"maxOutputTokens": max_tokens}
        if temperature is not None:
            generation_config["temperature"] = temperature

        payload = {
            "contents": contents,
            "generationConfig": generation_config,
        }
        if system_instruction:
            payload["systemInstruction"] = {
                "parts": [{"text": system_instruction}]
            }

        headers = {
            "Content-Type": "application/json",
            "x-goog-api-key": self.api_key or "",
        }
        data = self._post(
            f"{self.base_url}/{self.model}:generateContent", payload, headers, max_retries
        )

        # Google returns candidates with content.parts
        candidates = data.get("candidates", [])
        if candidates:
            parts = candidates[0].get("content", {}).get("parts", [])
            return "".join(part.get("text", "") for part in parts)
        return ""


def create_adapter(config: ProviderConfig) -> LLMAdapter:
    """Create an LLM adapter for the configured provider.

    Args:
        config: Provider configuration

    Returns:
        Configured LLM adapter
    """
    adapters = {
        Provider.OPENAI: OpenAIAdapter,
        Provider.ANTHROPIC: AnthropicAdapter,
        Provider.GOOGLE: GoogleAdapter,
    }
    return adapters[config.provider](config)
