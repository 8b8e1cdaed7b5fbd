"""Chat completion client for litellm-routed models and local Ollama."""

import json
import logging
import re
from dataclasses import dataclass, field
from typing import Optional

import httpx

from .config import DEFAULT_MODEL, FALLBACK_MODEL, LLM_TIMEOUT, OLLAMA_HOST

logger = logging.getLogger(__name__)


class LLMError(Exception):
    """Raised when a chat completion cannot be obtained."""


class ModelNotFoundError(LLMError):
    """Raised when the provider does not know the requested model."""


@dataclass
class ChatResponse:
    content: str
    model: str
    usage: dict = field(default_factory=dict)


# Reusable HTTP client for connection pooling
_client: Optional[httpx.Client] = None


def _get_client() -> httpx.Client:
    """Get or create a reusable HTTP client."""
    global _client
    if _client is None:
        _client = httpx.Client(timeout=LLM_TIMEOUT)
    return _client


def _is_litellm_model(model: str) -> bool:
    """Provider-prefixed models ("xai/...", "gemini/...") are routed through litellm."""
    return "/" in model


def _call_litellm(
    messages: list[dict],
    model: str,
    temperature: float,
    json_response: bool,
    timeout: float,
) -> ChatResponse:
    import litellm

    litellm.suppress_debug_info = True

    kwargs = {
        "model": model,
        "messages": messages,
        "temperature": temperature,
        "timeout": timeout,
    }
    if json_response:
        kwargs["response_format"] = {"type": "json_object"}

    try:
        response = litellm.completion(**kwargs)
    except litellm.NotFoundError as e:
        raise ModelNotFoundError(f"Model {model} not available: {e}") from e
    except Exception as e:
        raise LLMError(f"LLM call failed ({model}): {e}") from e

    try:
        content = response.choices[0].message.content
    except (AttributeError, IndexError, TypeError) as e:
        raise LLMError(f"Malformed reply from {model}: {e}") from e
    if not isinstance(content, str):
        raise LLMError(f"{model} returned empty content")

    usage = getattr(response, "usage", None)
    return ChatResponse(
        content=content.strip(),
        model=getattr(response, "model", None) or model,
        usage=dict(usage) if usage else {},
    )


def _call_ollama(
    messages: list[dict],
    model: str,
    temperature: float,
    json_response: bool,
    timeout: float,
    host: str,
) -> ChatResponse:
    payload = {
        "model": model,
        "messages": messages,
        "stream": False,
        "options": {"temperature": temperature},
    }
    if json_response:
        payload["format"] = "json"

    try:
        client = _get_client()
        response = client.post(f"{host.rstrip('/')}/api/chat", json=payload, timeout=timeout)
        if response.status_code == 404:
            raise ModelNotFoundError(f"Model {model} not available in Ollama")
        response.raise_for_status()
        data = response.json()
    except httpx.TimeoutException as e:
        raise LLMError(f"Ollama timed out after {timeout}s ({model})") from e
    except httpx.HTTPError as e:
        raise LLMError(f"Ollama request failed ({model}): {e}") from e
    except ValueError as e:
        raise LLMError(f"Ollama returned a non-JSON body ({model}): {e}") from e

    message = data.get("message") if isinstance(data, dict) else None
    content = message.get("content") if isinstance(message, dict) else None
    if not content or not isinstance(content, str):
        raise LLMError(f"{model} returned empty content")

    return ChatResponse(
        content=content.strip(),
        model=data.get("model", model),
        usage={
            "prompt_tokens": data.get("prompt_eval_count", 0),
            "completion_tokens": data.get("eval_count", 0),
            "total_tokens": data.get("prompt_eval_count", 0) + data.get("eval_count", 0),
        },
    )


def chat_completion(
    messages: list[dict],
    *,
    model: str = DEFAULT_MODEL,
    temperature: float = 0.7,
    json_response: bool = False,
    timeout: float = LLM_TIMEOUT,
    fallback_model: Optional[str] = FALLBACK_MODEL,
    ollama_host: str = OLLAMA_HOST,
) -> ChatResponse:
    """
    Send a chat completion request and return the reply.

    If the provider reports the model as unknown, the request is retried once
    with fallback_model.

    Raises:
        LLMError: On transport failure, timeout or empty content.
    """
    try:
        if _is_litellm_model(model):
            return _call_litellm(messages, model, temperature, json_response, timeout)
        return _call_ollama(messages, model, temperature, json_response, timeout, ollama_host)
    except ModelNotFoundError:
        if not fallback_model or fallback_model == model:
            raise
        logger.warning("Model %s not available, trying fallback %s", model, fallback_model)
        return chat_completion(
            messages,
            model=fallback_model,
            temperature=temperature,
            json_response=json_response,
            timeout=timeout,
            fallback_model=None,
            ollama_host=ollama_host,
        )


_OPEN_FENCE_RE = re.compile(r"^```(?:json)?", re.IGNORECASE)


def parse_json_response(content: str):
    """
    Parse a JSON reply, tolerating a ```json fenced block around it.

    Raises:
        json.JSONDecodeError: If the (unfenced) text is not valid JSON.
    """
    text = _OPEN_FENCE_RE.sub("", content.strip(), count=1)
    if text.endswith("```"):
        text = text[:-3]
    return json.loads(text.strip())
