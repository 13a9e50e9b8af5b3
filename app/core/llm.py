"""OpenRouter LLM client and JSON parsing helpers.

All chat completions go through OpenRouter using the OpenAI SDK pointed at the
OpenRouter base URL, so model ids look like ``anthropic/claude-opus-4.1``.
"""

import asyncio
import json
import math
import re
import time
from functools import lru_cache
from typing import TypeVar

from langchain_openai import ChatOpenAI
from openai import OpenAI, OpenAIError
from pydantic import BaseModel

from app.core.config import get_settings
from app.core.logging import get_logger

logger = get_logger(__name__)

T = TypeVar("T", bound=BaseModel)

OPENROUTER_BASE_URL = "https://openrouter.ai/api/v1"
OPENROUTER_HEADERS = {
    "HTTP-Referer": "https://lightpoint.app",
    "X-Title": "Lightpoint HMRC Complaint System",
}


class LLMError(RuntimeError):
    """Raised when the LLM provider cannot be reached or returns no content."""


@lru_cache(maxsize=1)
def get_openrouter_client() -> OpenAI:
    """
    Get OpenRouter client (cached singleton).

    Raises:
        LLMError: If OPENROUTER_API_KEY is not configured
    """
    settings = get_settings()
    if not settings.OPENROUTER_API_KEY:
        raise LLMError("OPENROUTER_API_KEY is not configured")

    return OpenAI(
        api_key=settings.OPENROUTER_API_KEY,
        base_url=OPENROUTER_BASE_URL,
        default_headers=OPENROUTER_HEADERS,
    )


def get_llm(
    model: str | None = None,
    temperature: float = 0.1,
    max_tokens: int | None = None,
) -> ChatOpenAI:
    """
    Get configured LangChain chat model routed through OpenRouter.

    Args:
        model: Model id override (defaults to CHAT_MODEL)
        temperature: Temperature for generation (default 0.1)
        max_tokens: Optional completion token cap

    Returns:
        ChatOpenAI instance pointed at OpenRouter
    """
    settings = get_settings()
    if not settings.OPENROUTER_API_KEY:
        raise LLMError("OPENROUTER_API_KEY is not configured")

    return ChatOpenAI(
        api_key=settings.OPENROUTER_API_KEY,
        base_url=OPENROUTER_BASE_URL,
        default_headers=OPENROUTER_HEADERS,
        model=model or settings.CHAT_MODEL,
        temperature=temperature,
        max_tokens=max_tokens,
    )


def call_openrouter(
    messages: list[dict[str, str]],
    model: str,
    temperature: float = 0.7,
    max_tokens: int = 2000,
) -> str:
    """
    Run a chat completion through OpenRouter and return the message content.

    Args:
        messages: Chat messages (role/content dicts)
        model: OpenRouter model id
        temperature: Sampling temperature
        max_tokens: Max completion tokens

    Returns:
        Assistant message content

    Raises:
        LLMError: If the call fails or returns empty content
    """
    client = get_openrouter_client()
    request_chars = sum(len(m.get("content") or "") for m in messages)

    logger.info(
        f"Calling OpenRouter model {model}",
        extra={"model": model, "request_chars": request_chars, "max_tokens": max_tokens},
    )

    start = time.monotonic()
    try:
        response = client.chat.completions.create(
            model=model,
            messages=messages,
            temperature=temperature,
            max_tokens=max_tokens,
        )
    except OpenAIError as e:
        logger.error(f"OpenRouter call failed for {model}: {e}")
        raise LLMError(f"OpenRouter API error: {e}") from e

    duration = time.monotonic() - start

    if not response.choices:
        raise LLMError(f"OpenRouter returned no choices for {model}")

    content = response.choices[0].message.content or ""
    if not content.strip():
        raise LLMError(f"OpenRouter returned empty content for {model}")

    logger.info(
        f"OpenRouter call complete ({duration:.2f}s)",
        extra={"model": model, "duration_s": round(duration, 2), "response_chars": len(content)},
    )
    return content


async def call_openrouter_async(
    messages: list[dict[str, str]],
    model: str,
    temperature: float = 0.7,
    max_tokens: int = 2000,
) -> str:
    """Async wrapper around call_openrouter using thread pool."""
    return await asyncio.to_thread(call_openrouter, messages, model, temperature, max_tokens)


def estimate_tokens(text: str) -> int:
    """Rough token estimate (1 token ~ 4 characters)."""
    return math.ceil(len(text or "") / 4)


def strip_llm_fences(raw_output: str) -> str:
    """Strip markdown code fences from LLM output.

    Handles: ```json ... ```, ``` ... ```, leading/trailing whitespace.
    """
    cleaned = raw_output.strip()

    fence_match = re.search(r"```(?:json)?\s*\n?(.*?)```", cleaned, re.DOTALL)
    if fence_match:
        return fence_match.group(1).strip()

    if cleaned.startswith("```json"):
        cleaned = cleaned[7:]
    elif cleaned.startswith("```"):
        cleaned = cleaned[3:]
    if cleaned.endswith("```"):
        cleaned = cleaned[:-3]
    return cleaned.strip()


def parse_llm_json(raw_output: str, model: type[T]) -> T:
    """
    Parse LLM output as JSON and validate against a Pydantic model.

    Args:
        raw_output: Raw string from LLM response
        model: Pydantic model class to validate against

    Returns:
        Validated Pydantic model instance

    Raises:
        json.JSONDecodeError: If JSON parsing fails after cleanup
        pydantic.ValidationError: If parsed JSON doesn't match schema
    """
    cleaned = strip_llm_fences(raw_output)
    parsed = json.loads(cleaned)
    return model.model_validate(parsed)


def parse_llm_json_dict(raw_output: str) -> dict:
    """
    Parse LLM output as JSON, returning a raw dict.

    Raises:
        json.JSONDecodeError: If JSON parsing fails after cleanup
    """
    cleaned = strip_llm_fences(raw_output)
    parsed = json.loads(cleaned)
    if not isinstance(parsed, dict):
        raise json.JSONDecodeError("Expected a JSON object", cleaned, 0)
    return parsed
