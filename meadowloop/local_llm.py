"""Ollama chat transport for towns run against a local model.

Decisions and memory digests go through ``call_ollama_chat`` when
``LLM_PROVIDER=ollama``. Requests use Ollama's structured-output mode: the
pydantic response schema is sent as ``format`` so the server constrains
generation to it, and plain ``"json"`` mode is used when no schema is given.

The HTTP round trip is blocking stdlib code run in a worker thread, so a slow
local model never stalls the event loop that runs the other characters.
"""

from __future__ import annotations

import asyncio
import json
import os
from typing import Any, Mapping
from urllib import error, request

DEFAULT_OLLAMA_BASE_URL = "http://127.0.0.1:11434"
_CHAT_ENDPOINT = "/api/chat"
DEFAULT_TEMPERATURE = 0.8


class LocalLLMError(RuntimeError):
    """A local model call failed.

    ``status_code`` is the HTTP status when the server answered at all, so an
    overloaded server (429/503) can be told apart from a broken one.
    """

    def __init__(self, message: str, *, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code


def resolve_base_url(base_url: str | None = None) -> str:
    return (
        base_url
        or os.getenv("LOCAL_LLM_BASE_URL")
        or os.getenv("OLLAMA_BASE_URL")
        or DEFAULT_OLLAMA_BASE_URL
    ).rstrip("/")


def build_chat_payload(
    *,
    system_prompt: str,
    user_prompt: str,
    llm_model: str,
    response_schema: Mapping[str, Any] | None = None,
    temperature: float = DEFAULT_TEMPERATURE,
) -> dict[str, Any]:
    """Non-streaming chat request constrained to JSON output."""

    system_prompt = system_prompt.strip()
    user_prompt = user_prompt.strip()
    if not user_prompt:
        raise LocalLLMError("Cannot call Ollama with an empty user prompt.")

    messages = [{"role": "system", "content": system_prompt}] if system_prompt else []
    messages.append({"role": "user", "content": user_prompt})
    return {
        "model": llm_model,
        "messages": messages,
        "stream": False,
        "format": dict(response_schema) if response_schema else "json",
        "options": {"temperature": temperature},
    }


def _error_detail(body: str) -> str:
    # Ollama reports failures as {"error": "..."}.
    try:
        parsed = json.loads(body)
    except json.JSONDecodeError:
        return body
    if isinstance(parsed, dict) and parsed.get("error"):
        return str(parsed["error"])
    return body


def _perform_ollama_request(
    payload: dict[str, Any],
    base_url: str,
    timeout: float,
) -> str:
    """POST one chat request and return the assistant message content."""

    url = f"{base_url}{_CHAT_ENDPOINT}"
    req = request.Request(
        url,
        data=json.dumps(payload).encode("utf-8"),
        headers={"Content-Type": "application/json"},
        method="POST",
    )

    try:
        with request.urlopen(req, timeout=timeout) as resp:
            raw = resp.read().decode("utf-8")
    except error.HTTPError as exc:
        body = exc.read().decode("utf-8", errors="ignore") if exc.fp else ""
        raise LocalLLMError(
            f"Ollama returned HTTP {exc.code} for model {payload.get('model')}: "
            f"{_error_detail(body) or exc.reason}",
            status_code=exc.code,
        ) from exc
    except error.URLError as exc:
        raise LocalLLMError(f"Could not reach Ollama at {url}: {exc.reason}") from exc

    try:
        parsed = json.loads(raw)
    except json.JSONDecodeError as exc:
        raise LocalLLMError("Ollama returned a non-JSON envelope.") from exc

    content = (parsed.get("message") or {}).get("content")
    if not content:
        raise LocalLLMError("Ollama response did not include assistant content.")
    return content


async def call_ollama_chat(
    *,
    system_prompt: str,
    user_prompt: str,
    llm_model: str,
    base_url: str | None = None,
    timeout: float = 120.0,
    response_schema: Mapping[str, Any] | None = None,
) -> str:
    """Run one chat turn against the local model and return the raw assistant text."""

    payload = build_chat_payload(
        system_prompt=system_prompt,
        user_prompt=user_prompt,
        llm_model=llm_model,
        response_schema=response_schema,
    )
    return await asyncio.to_thread(
        _perform_ollama_request,
        payload,
        resolve_base_url(base_url),
        timeout,
    )


__all__ = [
    "DEFAULT_OLLAMA_BASE_URL",
    "LocalLLMError",
    "build_chat_payload",
    "call_ollama_chat",
    "resolve_base_url",
]
