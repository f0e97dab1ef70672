"""Local model adapter — Anthropic Messages API served from this machine."""

from __future__ import annotations

import asyncio
import ipaddress
import logging
from collections.abc import AsyncIterator
from typing import Any
from urllib.parse import urlparse

import anthropic
import psutil
from anthropic import Anthropic, AsyncAnthropic
from anthropic.types import ToolUseBlock

from summary_engine.config import ConfigError, EngineConfig
from summary_engine.inference.capability import (
    AvailabilityState,
    ContextWindowExceeded,
    GuardrailViolation,
    InferenceError,
    UnavailableReason,
)
from summary_engine.processing.prompts import SUMMARY_TOOL_NAME
from summary_engine.processing.types import Category, PartialSummary, Summary, Urgency

logger = logging.getLogger(__name__)

_MAX_TOKENS = 1024
_PROBE_TIMEOUT_SECONDS = 2.0

# Substrings local servers use when a prompt does not fit the context window.
_OVERFLOW_MARKERS = ("prompt is too long", "context length", "context window", "too many tokens")


def ensure_loopback(base_url: str) -> None:
    """Raise ConfigError unless ``base_url`` points at this machine.

    Email content must never leave the device, so only loopback hosts are
    accepted.
    """
    host = urlparse(base_url).hostname or ""
    if host == "localhost":
        return
    try:
        if ipaddress.ip_address(host).is_loopback:
            return
    except ValueError:
        pass
    raise ConfigError(f"model endpoint must be a loopback address, got {base_url!r}")


# ── Parsing ────────────────────────────────────────────────────────────────────


def _enum_or_none(enum_cls: type[Category] | type[Urgency], value: object) -> Any:
    try:
        return enum_cls(str(value).strip().lower())
    except ValueError:
        return None


def _clean_items(raw: object) -> tuple[str, ...]:
    if not isinstance(raw, list):
        return ()
    return tuple(str(item).strip() for item in raw if str(item).strip())


def parse_partial(data: object) -> PartialSummary:
    """Convert a (possibly partial) tool-input snapshot into a PartialSummary.

    Enum fields are only set once their value is a complete, valid member.
    """
    if not isinstance(data, dict):
        return PartialSummary()
    headline = data.get("headline")
    body = data.get("body")
    return PartialSummary(
        headline=str(headline) if headline is not None else None,
        body=str(body) if body is not None else None,
        category=_enum_or_none(Category, data["category"]) if "category" in data else None,
        urgency=_enum_or_none(Urgency, data["urgency"]) if "urgency" in data else None,
        action_items=_clean_items(data.get("action_items")),
    )


def parse_summary(data: dict[str, object]) -> Summary:
    """Convert the final tool-call input dict into a typed Summary.

    Raises:
        InferenceError: if a required field is missing or out of range.
    """
    partial = parse_partial(data)
    if not partial.is_complete:
        raise InferenceError("model output is missing required summary fields")
    return Summary(
        headline=partial.headline.strip(),  # type: ignore[union-attr]
        body=partial.body.strip(),  # type: ignore[union-attr]
        category=partial.category,  # type: ignore[arg-type]
        urgency=partial.urgency,  # type: ignore[arg-type]
        action_items=partial.action_items,
    )


def _translate_api_error(exc: anthropic.APIError) -> InferenceError:
    message = str(exc).lower()
    if isinstance(exc, anthropic.BadRequestError) and any(m in message for m in _OVERFLOW_MARKERS):
        return ContextWindowExceeded(str(exc))
    return InferenceError(f"{type(exc).__name__}: {exc}")


def _check_stop_reason(stop_reason: str | None) -> None:
    if stop_reason == "refusal":
        raise GuardrailViolation("model refused to summarize this content")
    if stop_reason == "max_tokens":
        raise InferenceError("model output was cut off at the token limit")


# ── Capability ─────────────────────────────────────────────────────────────────


class LocalModelCapability:
    """InferenceCapability backed by a local server speaking the Messages API.

    Uses a forced tool_choice so every response is a machine-readable
    ``record_email_summary`` call.  Streaming reads the ``input_json``
    snapshots of that tool call.

    Usage::

        capability = LocalModelCapability(EngineConfig.from_env())
        summary = await capability.respond(prompt, SUMMARY_TOOL)
    """

    def __init__(self, config: EngineConfig) -> None:
        ensure_loopback(config.model_base_url)
        self._config = config
        self._model = config.model_name
        self._client = AsyncAnthropic(
            api_key=config.model_api_key,
            base_url=config.model_base_url,
            timeout=config.call_timeout,
            max_retries=0,
        )
        self._probe = Anthropic(
            api_key=config.model_api_key,
            base_url=config.model_base_url,
            timeout=_PROBE_TIMEOUT_SECONDS,
            max_retries=0,
        )
        self._background: set[asyncio.Task[Any]] = set()
        self._warmed = False

    @property
    def model_version(self) -> str:
        return self._model

    def check_availability(self) -> AvailabilityState:
        if not self._config.enabled:
            return AvailabilityState.unavailable(UnavailableReason.APPLE_INTELLIGENCE_NOT_ENABLED)

        total_gb = psutil.virtual_memory().total / (1024 ** 3)
        if total_gb < self._config.min_device_memory_gb:
            return AvailabilityState.unavailable(UnavailableReason.DEVICE_NOT_SUPPORTED)

        try:
            self._probe.models.retrieve(self._model)
        except (anthropic.APIConnectionError, anthropic.NotFoundError):
            return AvailabilityState.unavailable(UnavailableReason.MODEL_NOT_READY)
        except anthropic.APIError as exc:
            logger.debug("Availability probe failed: %s", exc)
            return AvailabilityState.unavailable(UnavailableReason.OTHER)
        return AvailabilityState.available()

    async def respond(self, prompt: str, schema: dict[str, Any]) -> Summary:
        try:
            response = await self._client.messages.create(
                **self._request_kwargs(prompt, schema),
            )
        except anthropic.APIError as exc:
            raise _translate_api_error(exc) from exc

        _check_stop_reason(response.stop_reason)
        for block in response.content:
            if isinstance(block, ToolUseBlock) and block.name == schema["name"]:
                return parse_summary(block.input)  # type: ignore[arg-type]

        raise InferenceError(
            f"model did not return a {schema['name']} tool call "
            f"(stop_reason={response.stop_reason!r})"
        )

    async def stream_response(
        self, prompt: str, schema: dict[str, Any]
    ) -> AsyncIterator[PartialSummary]:
        try:
            async with self._client.messages.stream(
                **self._request_kwargs(prompt, schema),
            ) as stream:
                async for event in stream:
                    if event.type == "input_json":
                        yield parse_partial(event.snapshot)
                final = await stream.get_final_message()
        except anthropic.APIError as exc:
            raise _translate_api_error(exc) from exc

        _check_stop_reason(final.stop_reason)
        for block in final.content:
            if isinstance(block, ToolUseBlock) and block.name == schema["name"]:
                yield PartialSummary.of(parse_summary(block.input))  # type: ignore[arg-type]
                return
        raise InferenceError(f"stream ended without a {schema['name']} tool call")

    def prewarm(self) -> None:
        """Ask the server to load the model; the result is ignored."""
        if self._warmed:
            return
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            return
        self._warmed = True
        task = loop.create_task(self._warm())
        self._background.add(task)
        task.add_done_callback(self._background.discard)

    async def _warm(self) -> None:
        try:
            await self._client.messages.create(
                model=self._model,
                max_tokens=1,
                messages=[{"role": "user", "content": "ready"}],
            )
        except anthropic.APIError as exc:
            logger.debug("Prewarm request failed: %s", exc)

    def _request_kwargs(self, prompt: str, schema: dict[str, Any]) -> dict[str, Any]:
        return {
            "model": self._model,
            "max_tokens": _MAX_TOKENS,
            "tools": [schema],
            "tool_choice": {"type": "tool", "name": schema.get("name", SUMMARY_TOOL_NAME)},
            "messages": [{"role": "user", "content": prompt}],
        }
