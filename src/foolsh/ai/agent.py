"""Chat completion client for AI queries."""

from __future__ import annotations

import json
from collections.abc import Callable, Iterable, Iterator
from typing import Protocol
from urllib import error as urllib_error
from urllib import request as urllib_request

from loguru import logger

from foolsh.config import AiSettings
from foolsh.errors import AiNotConfiguredError, AiRequestError

USER_AGENT = "fool-shell/0.1"
SSE_DATA_PREFIX = "data:"
SSE_DONE = "[DONE]"


class HistoryContext(Protocol):
    def format_for_ai(self, count: int) -> list[dict[str, str]]: ...


def iter_stream_deltas(lines: Iterable[bytes | str]) -> Iterator[str]:
    """Yield content deltas from server-sent chat completion events."""

    for raw_line in lines:
        line = raw_line.decode("utf-8", errors="replace") if isinstance(raw_line, bytes) else raw_line
        line = line.strip()
        if not line.startswith(SSE_DATA_PREFIX):
            continue
        data = line[len(SSE_DATA_PREFIX) :].strip()
        if data == SSE_DONE:
            return
        try:
            chunk = json.loads(data)
        except json.JSONDecodeError:
            logger.debug("ignoring malformed stream chunk: {}", data)
            continue
        for choice in chunk.get("choices") or []:
            content = (choice.get("delta") or {}).get("content")
            if content:
                yield content


class AiAgent:
    """OpenAI-compatible chat client fed with shell history as context."""

    def __init__(self, settings: AiSettings) -> None:
        self._settings = settings

    @property
    def settings(self) -> AiSettings:
        return self._settings

    def is_configured(self) -> bool:
        return self._settings.resolved_api_key() is not None

    def build_messages(self, query: str, history: HistoryContext) -> list[dict[str, str]]:
        messages = [{"role": "system", "content": self._settings.system_prompt}]
        messages.extend(history.format_for_ai(self._settings.context_lines))
        messages.append({"role": "user", "content": query})
        return messages

    def query_stream(
        self,
        query: str,
        history: HistoryContext,
        on_delta: Callable[[str], None] | None = None,
    ) -> str:
        """Stream an answer, passing each piece to ``on_delta``; return the full text."""

        request = self._build_request(query, history, stream=True)
        parts: list[str] = []
        try:
            with urllib_request.urlopen(request, timeout=self._settings.timeout_seconds) as response:  # noqa: S310
                for delta in iter_stream_deltas(response):
                    parts.append(delta)
                    if on_delta is not None:
                        on_delta(delta)
        except urllib_error.HTTPError as exc:
            raise AiRequestError(_describe_http_error(exc)) from exc
        except (urllib_error.URLError, OSError) as exc:
            raise AiRequestError(f"Failed to send request to AI API: {exc!s}") from exc
        return "".join(parts)

    def query(self, query: str, history: HistoryContext) -> str:
        request = self._build_request(query, history, stream=False)
        try:
            with urllib_request.urlopen(request, timeout=self._settings.timeout_seconds) as response:  # noqa: S310
                body = response.read().decode("utf-8", errors="replace")
        except urllib_error.HTTPError as exc:
            raise AiRequestError(_describe_http_error(exc)) from exc
        except (urllib_error.URLError, OSError) as exc:
            raise AiRequestError(f"Failed to send request to AI API: {exc!s}") from exc

        try:
            data = json.loads(body)
            return str(data["choices"][0]["message"]["content"] or "")
        except (json.JSONDecodeError, KeyError, IndexError, TypeError) as exc:
            raise AiRequestError(f"Unexpected response from AI API: {exc!s}") from exc

    def _build_request(self, query: str, history: HistoryContext, *, stream: bool) -> urllib_request.Request:
        api_key = self._settings.resolved_api_key()
        if api_key is None:
            raise AiNotConfiguredError(
                "AI not configured. Set FOOL_AI_KEY or OPENAI_API_KEY, or configure api_key in config.toml."
            )
        payload = {
            "model": self._settings.model,
            "messages": self.build_messages(query, history),
            "temperature": self._settings.temperature,
            "stream": stream,
        }
        endpoint = f"{self._settings.api_base.rstrip('/')}/chat/completions"
        return urllib_request.Request(  # noqa: S310 - endpoint comes from user configuration.
            endpoint,
            data=json.dumps(payload).encode("utf-8"),
            headers={
                "Content-Type": "application/json",
                "Authorization": f"Bearer {api_key}",
                "User-Agent": USER_AGENT,
            },
            method="POST",
        )


def _describe_http_error(exc: urllib_error.HTTPError) -> str:
    detail = exc.read().decode("utf-8", errors="replace").strip()
    if detail:
        return f"API request failed with status {exc.code}: {detail}"
    return f"API request failed with status {exc.code}"
