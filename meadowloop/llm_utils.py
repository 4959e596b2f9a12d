"""Helpers for structured LLM calls: validation-aware retries, timeouts, error classification."""

from __future__ import annotations

import asyncio
import json
import re
from dataclasses import dataclass
from typing import Any, Callable, Sequence, TypeVar

from mirascope import llm
from mirascope.core import BaseMessageParam, Messages
from pydantic import BaseModel, ValidationError
from tenacity import AsyncRetrying, retry_if_exception_type, stop_after_attempt

from meadowloop.local_llm import LocalLLMError, call_ollama_chat
from meadowloop.logging_utils import log_error, log_llm


ModelT = TypeVar("ModelT", bound=BaseModel)
LLM_TIMEOUT_SECONDS = 120.0

OVERLOAD_STATUS_CODES = frozenset({429, 503, 529})
_OVERLOAD_NAME_MARKERS = ("ratelimit", "overloaded", "toomanyrequests")
_FENCED_JSON = re.compile(r"```(?:json)?\s*(\{.*?\})\s*```", re.DOTALL)


@dataclass(slots=True)
class ValidationFeedback:
    """Structured feedback for retrying failed LLM schema outputs."""

    llm_text: str
    issues: Sequence[str]


def _truncate_preview(value: Any, *, limit: int = 80) -> str:
    if value is None:
        return "null"
    text = repr(value)
    if len(text) > limit:
        return text[: limit - 3] + "..."
    return text


def inject_validation_feedback(error: ValidationError) -> ValidationFeedback:
    """Turn a pydantic ValidationError into retry guidance for the model.

    Each issue lists the field path, the error message and type, and a short
    preview of the offending value. The text is appended to the original
    prompt on the next attempt.
    """

    issues: list[str] = []
    for err in error.errors(include_url=False):
        loc = ".".join(str(part) for part in err.get("loc", [])) or "root"
        details = f"{loc}: {err.get('msg', 'validation error')}"
        if err.get("type"):
            details += f" [type={err['type']}]"
        if "input" in err:
            preview = _truncate_preview(err.get("input"))
            if preview:
                details += f" | received={preview}"
        issues.append(details)

    if not issues:
        issues.append("root: response did not match the expected schema")

    instructions = [
        "Your previous JSON response failed to validate against the required schema.",
        "Produce a corrected response that strictly matches the schema.",
        "Do not include explanations or code fences. Return only valid JSON.",
        "Issues detected:",
    ]
    instructions.extend(f"- {issue}" for issue in issues)

    return ValidationFeedback(llm_text="\n".join(instructions), issues=issues)


def extract_json_object(text: str) -> str:
    """Pull a JSON object out of free-form model output.

    Tries the whole text, then a fenced ```json block, then the span from the
    first ``{`` to the last ``}``. Returns the input unchanged when nothing
    parses so pydantic reports the real problem.
    """

    stripped = text.strip()
    candidates = [stripped]
    fenced = _FENCED_JSON.search(stripped)
    if fenced:
        candidates.append(fenced.group(1))
    start, end = stripped.find("{"), stripped.rfind("}")
    if 0 <= start < end:
        candidates.append(stripped[start : end + 1])

    for candidate in candidates:
        try:
            json.loads(candidate)
        except json.JSONDecodeError:
            continue
        return candidate
    return stripped


def error_status_code(exc: BaseException) -> int | None:
    """HTTP status carried by a provider or local-transport exception, if any."""

    for attr in ("status_code", "status"):
        value = getattr(exc, attr, None)
        if isinstance(value, int):
            return value
    response = getattr(exc, "response", None)
    value = getattr(response, "status_code", None)
    return value if isinstance(value, int) else None


def is_overload_error(exc: BaseException) -> bool:
    """True for rate-limit/overload failures (HTTP 429/503/529 or provider rate-limit classes)."""

    current: BaseException | None = exc
    while current is not None:
        if error_status_code(current) in OVERLOAD_STATUS_CODES:
            return True
        name = type(current).__name__.lower().replace("_", "")
        if any(marker in name for marker in _OVERLOAD_NAME_MARKERS):
            return True
        current = current.__cause__
    return False


def _log_validation_failure(
    *,
    model_name: str,
    attempt: int,
    max_attempts: int,
    feedback: ValidationFeedback,
) -> None:
    log_error(
        f"LLM schema validation failed for {model_name} "
        f"(attempt {attempt}/{max_attempts})."
    )
    for issue in feedback.issues:
        print(f"    - {issue}")


async def call_llm_with_retries(
    *,
    system_prompt: str,
    user_prompt: str,
    llm_provider: str,
    llm_model: str,
    response_model: type[ModelT],
    max_attempts: int = 3,
    timeout: float = LLM_TIMEOUT_SECONDS,
    feedback_builder: Callable[[ValidationError], ValidationFeedback] = inject_validation_feedback,
) -> ModelT:
    """Invoke a structured LLM call with validation-aware retries.

    Only schema validation failures are retried; the feedback is appended to
    the original prompt so the model keeps full context. Timeouts, transport
    errors and provider errors (including rate limits) propagate on the first
    occurrence. Every attempt is bounded by ``timeout`` seconds.
    """

    system_prompt = system_prompt.strip()
    base_user_prompt = user_prompt.strip()

    def _build_user_prompt(feedback_payload: ValidationFeedback | None) -> str:
        sections = [base_user_prompt]
        if feedback_payload is not None:
            sections.append(feedback_payload.llm_text)
        return "\n\n".join(section for section in sections if section)

    feedback_payload: ValidationFeedback | None = None
    use_local_llm = llm_provider.lower() == "ollama"

    remote_invoke: Callable[[str, str], Any] | None = None
    if not use_local_llm:
        # System and user prompts go out as separate messages.
        @llm.call(provider=llm_provider, model=llm_model, response_model=response_model)
        async def _invoke(system: str, user: str) -> list[BaseMessageParam]:
            messages = [Messages.User(user)]
            if system:
                messages.insert(0, Messages.System(system))
            return messages

        remote_invoke = _invoke

    attempt_number = 0
    async for attempt in AsyncRetrying(
        retry=retry_if_exception_type(ValidationError),
        stop=stop_after_attempt(max_attempts),
        reraise=True,
    ):
        with attempt:
            attempt_number += 1
            if attempt_number > 1:
                log_llm(
                    f"LLM retry {attempt_number}/{max_attempts} for {response_model.__name__};"
                    " attempting schema correction."
                )
            user_section = _build_user_prompt(feedback_payload)
            try:
                if use_local_llm:
                    raw_response = await asyncio.wait_for(
                        call_ollama_chat(
                            system_prompt=system_prompt,
                            user_prompt=user_section,
                            llm_model=llm_model,
                            timeout=timeout,
                            response_schema=response_model.model_json_schema(),
                        ),
                        timeout=timeout,
                    )
                    return response_model.model_validate_json(extract_json_object(raw_response))

                if remote_invoke is None:
                    raise RuntimeError("Remote LLM invoke is not initialized.")

                return await asyncio.wait_for(
                    remote_invoke(system_prompt, user_section),
                    timeout=timeout,
                )
            except ValidationError as exc:
                feedback_payload = feedback_builder(exc)
                _log_validation_failure(
                    model_name=response_model.__name__,
                    attempt=attempt_number,
                    max_attempts=max_attempts,
                    feedback=feedback_payload,
                )
                raise
            except asyncio.TimeoutError:
                log_error(
                    f"LLM call timed out after {timeout:g}s for {response_model.__name__}."
                )
                raise
            except LocalLLMError as exc:
                log_error(f"Local LLM provider error ({llm_provider}): {exc}")
                raise

    raise RuntimeError("LLM retry mechanism exited unexpectedly")


__all__ = [
    "LLM_TIMEOUT_SECONDS",
    "OVERLOAD_STATUS_CODES",
    "ValidationFeedback",
    "call_llm_with_retries",
    "error_status_code",
    "extract_json_object",
    "inject_validation_feedback",
    "is_overload_error",
]
