# signalcore/llm.py
from __future__ import annotations

import logging
from typing import Any, Callable, Dict, Iterator, Optional

from openai import OpenAI

from signalcore.config import settings
from signalcore.errors import LLMUnavailableError
from signalcore.partial_json import parse_json_object, stream_sections
from signalcore.prompt import build_signal_system_prompt, build_signal_user_prompt

log = logging.getLogger("llm")


def _client() -> Optional[OpenAI]:
    if not settings.openai_api_key:
        log.info("OPENAI_API_KEY missing; skipping LLM call")
        return None
    return OpenAI(api_key=settings.openai_api_key, timeout=settings.openai_timeout_seconds)


def _messages(prompt: str, system: Optional[str]) -> list:
    messages = []
    if system:
        messages.append({"role": "system", "content": system})
    messages.append({"role": "user", "content": prompt})
    return messages


def call_json(prompt: str, *, system: Optional[str] = None, client: Any = None) -> Optional[Dict[str, Any]]:
    """Single-shot JSON completion. Returns None when unavailable or unparseable."""
    client = client or _client()
    if not client:
        return None
    try:
        resp = client.chat.completions.create(
            model=settings.openai_chat_model,
            messages=_messages(prompt, system),
            response_format={"type": "json_object"},
        )
        content = resp.choices[0].message.content or "{}"
    except Exception as e:
        log.warning("openai_call_failed: %s", e)
        return None
    log.debug("openai_raw_json: %s", content)
    try:
        return parse_json_object(content)
    except Exception as e:
        log.warning("openai_json_unparseable: %s", e)
        return None


def stream_chat(prompt: str, *, system: Optional[str] = None, client: Any = None) -> Iterator[str]:
    """Yield delta text chunks of one streamed completion."""
    client = client or _client()
    if not client:
        raise LLMUnavailableError("no OpenAI client configured")
    stream = client.chat.completions.create(
        model=settings.openai_chat_model,
        messages=_messages(prompt, system),
        max_tokens=settings.openai_max_tokens,
        stream=True,
    )
    for event in stream:
        choices = getattr(event, "choices", None) or []
        if not choices:
            continue
        delta = getattr(choices[0], "delta", None)
        content = getattr(delta, "content", None)
        if content:
            yield content


def stream_signal_extraction(
    title: str,
    transcript: str,
    on_sections: Optional[Callable[[Dict[str, Any]], None]] = None,
    *,
    client: Any = None,
) -> Dict[str, Any]:
    """
    Stream the signal extraction for one transcript, reporting partial sections
    as they arrive. Returns the final parsed object; any failure aborts this
    one stream and propagates.
    """
    chunks = stream_chat(
        build_signal_user_prompt(title, transcript),
        system=build_signal_system_prompt(),
        client=client,
    )
    return stream_sections(
        chunks,
        on_sections,
        min_interval=settings.stream_render_interval_ms / 1000.0,
    )
