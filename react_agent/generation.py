"""litellm-backed text generator.

Implements the ``TextGenerator`` protocol with ``litellm.acompletion``:
blocking calls return the full message text, streaming calls forward every
content delta (and any ``reasoning_content`` delta) to a ``StreamSink`` and
return the concatenated text. Transient provider errors are retried with
jittered exponential backoff; everything else is raised as a
``GenerationError`` subtype.

Usage::

    generator = LiteLLMGenerator(timeout_s=60)
    text = await generator.agenerate("gpt-4o-mini", messages)
"""

from __future__ import annotations

import asyncio
import logging
import random
from typing import Any, Awaitable, Callable, TypeVar

import litellm

from react_agent.collaborators import StreamSink
from react_agent.errors import (
    GenerationError,
    LLMEmptyResponseError,
    is_retryable_error,
    wrap_error,
)

logger = logging.getLogger(__name__)

litellm.suppress_debug_info = True

T = TypeVar("T")

DEFAULT_MAX_RETRIES = 2


class StreamInterruptedError(GenerationError):
    """Stream failed after tokens were already forwarded to the sink."""


def exponential_backoff(attempt: int, base_delay: float = 1.0, max_delay: float = 30.0) -> float:
    """Exponential backoff with jitter, capped at *max_delay*."""
    delay = base_delay * (2 ** attempt)
    jitter = random.uniform(0.5, 1.5)
    return min(delay * jitter, max_delay)


async def run_async_with_retry(
    *,
    caller: str,
    model: str,
    max_retries: int,
    invoke: Callable[[int], Awaitable[T]],
    should_retry: Callable[[Exception], bool] = is_retryable_error,
    backoff: Callable[[int], float] = exponential_backoff,
) -> T:
    """Execute async attempts, sleeping between retryable failures."""
    for attempt in range(max_retries + 1):
        try:
            return await invoke(attempt)
        except Exception as exc:
            if not should_retry(exc) or attempt >= max_retries:
                if isinstance(exc, GenerationError):
                    raise
                raise wrap_error(exc) from exc
            delay = backoff(attempt)
            logger.warning(
                "%s attempt %d/%d on %s failed (retrying in %.1fs): %s",
                caller,
                attempt + 1,
                max_retries + 1,
                model,
                delay,
                exc,
            )
            await asyncio.sleep(delay)
    raise AssertionError("unreachable")  # pragma: no cover


def _json_schema_format(schema: dict[str, Any]) -> dict[str, Any]:
    return {
        "type": "json_schema",
        "json_schema": {"name": "agent_decision", "schema": schema, "strict": False},
    }


def _message_text(response: Any) -> str:
    try:
        content = response.choices[0].message.content
    except (AttributeError, IndexError):
        content = None
    return content or ""


class LiteLLMGenerator:
    """``TextGenerator`` over any litellm-supported model string."""

    def __init__(
        self,
        *,
        timeout_s: float = 120.0,
        max_retries: int = DEFAULT_MAX_RETRIES,
        default_temperature: float | None = None,
        **litellm_kwargs: Any,
    ) -> None:
        self.timeout_s = timeout_s
        self.max_retries = max_retries
        self.default_temperature = default_temperature
        self.litellm_kwargs = litellm_kwargs

    def _call_kwargs(
        self,
        model: str,
        messages: list[dict[str, str]],
        temperature: float | None,
        schema: dict[str, Any] | None,
    ) -> dict[str, Any]:
        kwargs: dict[str, Any] = {
            "model": model,
            "messages": messages,
            "timeout": self.timeout_s,
            **self.litellm_kwargs,
        }
        temp = temperature if temperature is not None else self.default_temperature
        if temp is not None:
            kwargs["temperature"] = temp
        if schema is not None:
            kwargs["response_format"] = _json_schema_format(schema)
        return kwargs

    async def agenerate(
        self,
        model: str,
        messages: list[dict[str, str]],
        *,
        temperature: float | None = None,
    ) -> str:
        kwargs = self._call_kwargs(model, messages, temperature, None)

        async def _attempt(attempt: int) -> str:
            response = await litellm.acompletion(**kwargs)
            text = _message_text(response)
            if not text.strip():
                raise LLMEmptyResponseError(f"{model} returned an empty response")
            return text

        return await run_async_with_retry(
            caller="agenerate", model=model, max_retries=self.max_retries, invoke=_attempt
        )

    async def agenerate_streaming(
        self,
        model: str,
        messages: list[dict[str, str]],
        *,
        schema: dict[str, Any] | None = None,
        sink: StreamSink | None = None,
        temperature: float | None = None,
    ) -> str:
        kwargs = self._call_kwargs(model, messages, temperature, schema)
        kwargs["stream"] = True

        async def _attempt(attempt: int) -> str:
            # Retries only cover opening the stream; once tokens reached the
            # sink a failure is reported instead of replayed.
            response = await litellm.acompletion(**kwargs)
            chunks: list[str] = []
            if sink is not None:
                sink.on_start()
            try:
                async for chunk in response:
                    if not chunk.choices:
                        continue
                    delta = chunk.choices[0].delta
                    if delta is None:
                        continue
                    reasoning = getattr(delta, "reasoning_content", None)
                    if reasoning and sink is not None:
                        sink.on_reasoning(reasoning)
                    text = delta.content or ""
                    if text:
                        chunks.append(text)
                        if sink is not None:
                            sink.on_token(text)
            except Exception as exc:
                if sink is not None:
                    sink.on_error(exc)
                raise StreamInterruptedError(
                    f"stream from {model} broke after {len(chunks)} chunks: {exc}",
                    original=exc,
                ) from exc
            full = "".join(chunks)
            if sink is not None:
                sink.on_complete(full)
            return full

        return await run_async_with_retry(
            caller="agenerate_streaming",
            model=model,
            max_retries=self.max_retries,
            invoke=_attempt,
            should_retry=lambda exc: (
                not isinstance(exc, StreamInterruptedError) and is_retryable_error(exc)
            ),
        )

