"""Async streaming client for OpenRouter's OpenAI-compatible endpoint."""

from __future__ import annotations

import asyncio
import inspect
import json
import logging
import uuid
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Mapping, Sequence, cast

from openai import APIError, APIStatusError, AsyncOpenAI
from openai.types.chat import ChatCompletionMessageParam, ChatCompletionToolParam

from .errors import ProviderError
from .orchestration.runner import TokenCallback, ToolCallCallback
from .orchestration.types import Message, ToolCallRequest

LOGGER = logging.getLogger(__name__)

OPENROUTER_BASE_URL = "https://openrouter.ai/api/v1"
DEFAULT_APP_TITLE = "toolrounds"


@dataclass(slots=True)
class ClientSettings:
    """Subset of settings required to configure the OpenRouter client."""

    api_key: str = ""
    base_url: str = OPENROUTER_BASE_URL
    request_timeout: float | None = 60.0
    app_title: str | None = DEFAULT_APP_TITLE
    referer: str | None = None
    default_headers: Mapping[str, str] = field(default_factory=dict)
    debug_logging: bool = False

    def headers(self) -> Dict[str, str]:
        """Return request headers including OpenRouter attribution."""
        headers = dict(self.default_headers)
        if self.referer:
            headers.setdefault("HTTP-Referer", self.referer)
        if self.app_title:
            headers.setdefault("X-Title", self.app_title)
        return headers


@dataclass(slots=True)
class _ToolCallDraft:
    """Tool call being assembled from indexed stream deltas."""

    index: int
    id: str = ""
    type: str = "function"
    name: str = ""
    arguments_parts: List[str] = field(default_factory=list)
    announced: bool = False

    def snapshot(self) -> ToolCallRequest:
        call_id = self.id or f"toolcall-{uuid.uuid4().hex[:8]}-{self.index}"
        self.id = call_id
        return ToolCallRequest(
            id=call_id,
            name=self.name,
            arguments="".join(self.arguments_parts),
            type=self.type or "function",
        )


class OpenRouterClient:
    """Streaming chat client that resolves with the terminal assistant message."""

    def __init__(
        self,
        settings: ClientSettings,
        *,
        client: AsyncOpenAI | None = None,
    ) -> None:
        self._settings = settings
        self._client = client or self._build_client(settings)
        self._models_cache: List[str] | None = None
        self._models_lock = asyncio.Lock()

    @property
    def settings(self) -> ClientSettings:
        return self._settings

    async def stream_chat(
        self,
        messages: Iterable[Mapping[str, Any] | ChatCompletionMessageParam],
        *,
        model: str,
        tools: Sequence[ChatCompletionToolParam | Mapping[str, Any]] | None = None,
        api_key: str | None = None,
        on_token: TokenCallback | None = None,
        on_tool_call: ToolCallCallback | None = None,
        tool_choice: str | Mapping[str, Any] = "auto",
    ) -> Message:
        """Stream one chat completion and return the assembled assistant message.

        ``on_token`` receives each content fragment as it arrives and
        ``on_tool_call`` receives each tool call once its name is known.

        Raises:
            ProviderError: On missing credentials or any provider failure.
        """

        key = api_key if api_key is not None else self._settings.api_key
        if not key:
            raise ProviderError("Missing OpenRouter API key.")
        model_id = (model or "").strip()
        if not model_id:
            raise ProviderError("Missing model identifier.")

        payload = self._build_chat_payload(
            messages=self._coerce_messages(messages),
            model=model_id,
            tools=tools,
            tool_choice=tool_choice,
        )
        LOGGER.debug(
            "Starting streamed chat completion via %s with %s message(s)",
            model_id,
            len(payload["messages"]),
        )
        if self._settings.debug_logging:
            self._log_prompt_payload(payload)

        content_parts: List[str] = []
        drafts: Dict[int, _ToolCallDraft] = {}
        try:
            stream = await self._client_for(key).chat.completions.create(**payload)
            async for chunk in stream:
                self._apply_chunk(chunk, content_parts, drafts, on_token, on_tool_call)
        except APIError as exc:
            raise self._wrap_error(exc) from exc

        tool_calls = [drafts[index].snapshot() for index in sorted(drafts)]
        return Message.assistant("".join(content_parts), tool_calls or None)

    async def list_models(self, *, force_refresh: bool = False) -> List[str]:
        """Model ids offered by OpenRouter, fetched once and then cached."""

        async with self._models_lock:
            if self._models_cache is None or force_refresh:
                try:
                    page = await self._client.models.list()
                except APIError as exc:
                    raise self._wrap_error(exc) from exc
                self._models_cache = [model.id for model in page.data if getattr(model, "id", None)]
                LOGGER.debug("Fetched %d model id(s) from OpenRouter", len(self._models_cache))
            return list(self._models_cache)

    def _build_client(self, settings: ClientSettings) -> AsyncOpenAI:
        return AsyncOpenAI(
            api_key=settings.api_key,
            base_url=settings.base_url,
            timeout=settings.request_timeout,
            default_headers=settings.headers() or None,
            max_retries=0,
        )

    def _client_for(self, api_key: str) -> AsyncOpenAI:
        if api_key == self._settings.api_key:
            return self._client
        return self._client.with_options(api_key=api_key)

    @staticmethod
    def _coerce_messages(
        messages: Iterable[Mapping[str, Any] | ChatCompletionMessageParam],
    ) -> List[ChatCompletionMessageParam]:
        coerced = [cast(ChatCompletionMessageParam, dict(message)) for message in messages]
        if not coerced:
            raise ValueError("Cannot stream a chat completion without messages")
        return coerced

    def _build_chat_payload(
        self,
        *,
        messages: Sequence[ChatCompletionMessageParam],
        model: str,
        tools: Sequence[ChatCompletionToolParam | Mapping[str, Any]] | None,
        tool_choice: str | Mapping[str, Any],
    ) -> Dict[str, Any]:
        payload: Dict[str, Any] = {
            "model": model,
            "messages": list(messages),
            "stream": True,
        }
        if tools:
            payload["tools"] = [dict(tool) for tool in tools]
            payload["tool_choice"] = tool_choice
        return payload

    def _apply_chunk(
        self,
        chunk: Any,
        content_parts: List[str],
        drafts: Dict[int, _ToolCallDraft],
        on_token: TokenCallback | None,
        on_tool_call: ToolCallCallback | None,
    ) -> None:
        choices = getattr(chunk, "choices", None) or ()
        if not choices:
            return
        delta = getattr(choices[0], "delta", None)
        if delta is None:
            return

        text = getattr(delta, "content", None)
        if text:
            content_parts.append(text)
            if on_token is not None:
                on_token(text)

        for tool_delta in getattr(delta, "tool_calls", None) or ():
            index = getattr(tool_delta, "index", None)
            index = index if index is not None else 0
            draft = drafts.get(index)
            if draft is None:
                draft = drafts[index] = _ToolCallDraft(index=index)
            if getattr(tool_delta, "id", None):
                draft.id = tool_delta.id
            if getattr(tool_delta, "type", None):
                draft.type = tool_delta.type
            function = getattr(tool_delta, "function", None)
            if function is not None:
                if getattr(function, "name", None):
                    draft.name = function.name
                if getattr(function, "arguments", None):
                    draft.arguments_parts.append(function.arguments)
            if draft.name and not draft.announced and on_tool_call is not None:
                draft.announced = True
                on_tool_call(draft.snapshot())

    def _wrap_error(self, exc: APIError) -> ProviderError:
        message = exc.message
        status_code = None
        if isinstance(exc, APIStatusError):
            status_code = exc.status_code
            body = exc.body
            if isinstance(body, Mapping):
                nested = body.get("error")
                if isinstance(nested, Mapping):
                    body = nested
                message = str(body.get("message") or message)
        LOGGER.debug("OpenRouter request failed (status=%s): %s", status_code, message)
        return ProviderError(f"OpenRouter error: {message}", status_code=status_code)

    def _log_prompt_payload(self, payload: Mapping[str, Any]) -> None:
        # The key travels in headers, never in the payload.
        LOGGER.debug("Chat request payload:\n%s", json.dumps(payload, ensure_ascii=False, indent=2, default=str))

    async def aclose(self) -> None:
        """Release the HTTP connection pool."""

        close = getattr(self._client, "close", None)
        if close is not None and inspect.isawaitable(outcome := close()):
            await outcome
