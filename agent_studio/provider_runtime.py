"""Runtime abstractions and concrete runtimes for model providers."""

from __future__ import annotations

import itertools
import json
import logging
from dataclasses import dataclass
from typing import Any, Callable, Dict, Iterable, Iterator, List, Optional, Tuple, Type, Union

import httpx

try:  # pragma: no cover - import guard exercised in runtime
    from openai import OpenAI
except ImportError:  # pragma: no cover - covered via error path tests
    OpenAI = None  # type: ignore[assignment]

try:  # pragma: no cover - import guard exercised in runtime
    from anthropic import Anthropic
except ImportError:  # pragma: no cover - covered via error path tests
    Anthropic = None  # type: ignore[assignment]

from .provider_ir import (
    CompletionRequest,
    CompletionResponse,
    FinishReason,
    StreamEvent,
    ToolInvocation,
    Turn,
    Usage,
)
from .provider_routing import ProviderDescriptor, provider_router


logger = logging.getLogger(__name__)


class ProviderRuntimeError(RuntimeError):
    """Raised when a provider runtime encounters a fatal (transport) error."""

    def __init__(
        self,
        message: str,
        *,
        status_code: Optional[int] = None,
        body: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
    ) -> None:
        super().__init__(message)
        self.status_code = status_code
        self.body = body
        self.details: Dict[str, Any] = details or {}
        if body:
            self.details.setdefault("body_snippet", body[:400].strip())
        if status_code is not None:
            self.details.setdefault("status_code", status_code)


# ---------------------------------------------------------------------------
# Shared decoding helpers
# ---------------------------------------------------------------------------


def _get_attr(obj: Any, name: str, default: Any = None) -> Any:
    if isinstance(obj, dict):
        return obj.get(name, default)
    return getattr(obj, name, default)


def _response_text(response: Any) -> Optional[str]:
    if response is None:
        return None
    try:
        return response.text
    except httpx.StreamError:
        return None


def _runtime_error(label: str, exc: Exception) -> ProviderRuntimeError:
    """Wrap an SDK/transport exception, keeping vendor status and body when present."""
    if isinstance(exc, ProviderRuntimeError):
        return exc
    status = getattr(exc, "status_code", None)
    body = _response_text(getattr(exc, "response", None))
    if body is None:
        raw_body = getattr(exc, "body", None)
        if raw_body is not None:
            body = raw_body if isinstance(raw_body, str) else json.dumps(raw_body, default=str)
    if status is not None:
        message = f"{label} API error: {status} - {body or exc}"
    else:
        message = f"{label} API error: {exc}"
    return ProviderRuntimeError(message, status_code=status, body=body)


def decode_tool_arguments(raw: Any) -> Dict[str, Any]:
    """Parse a tool-argument payload; malformed or non-object JSON yields ``{}``."""
    if isinstance(raw, dict):
        return dict(raw)
    if raw is None:
        return {}
    text = str(raw).strip()
    if not text:
        return {}
    try:
        value = json.loads(text)
    except json.JSONDecodeError:
        logger.warning("Discarding malformed tool arguments: %.200s", text)
        return {}
    if not isinstance(value, dict):
        logger.warning("Tool arguments are not an object: %.200s", text)
        return {}
    return value


def iter_sse_data(lines: Iterable[str]) -> Iterator[str]:
    """Yield the payload of each ``data:`` line; ``[DONE]`` terminates the stream."""
    for line in lines:
        line = line.rstrip("\r")
        if not line.startswith("data:"):
            continue
        data = line[len("data:"):].strip()
        if data == "[DONE]":
            return
        if data:
            yield data


class ToolCallAssembler:
    """Buffers streamed tool-call fragments per key until the block terminates.

    Keys are whatever the vendor uses to correlate fragments (a content-block
    index, a tool-call index, ...). Finished calls are removed from the buffer.
    """

    def __init__(self, id_prefix: str = "call") -> None:
        self._pending: Dict[Any, Dict[str, Any]] = {}
        self._id_prefix = id_prefix

    def start(self, key: Any, *, call_id: Optional[str] = None, name: Optional[str] = None) -> None:
        entry = self._pending.get(key)
        if entry is None:
            entry = {"id": None, "name": None, "parts": []}
            self._pending[key] = entry
        if call_id:
            entry["id"] = call_id
        if name:
            entry["name"] = name

    def append(
        self,
        key: Any,
        fragment: Optional[str],
        *,
        call_id: Optional[str] = None,
        name: Optional[str] = None,
    ) -> None:
        self.start(key, call_id=call_id, name=name)
        if fragment:
            self._pending[key]["parts"].append(fragment)

    def is_pending(self, key: Any) -> bool:
        return key in self._pending

    def finish(self, key: Any) -> Optional[ToolInvocation]:
        entry = self._pending.pop(key, None)
        if entry is None:
            return None
        if not entry["name"]:
            logger.warning("Dropping streamed tool call %r without a name", key)
            return None
        return ToolInvocation(
            id=entry["id"] or f"{self._id_prefix}_{key}",
            name=entry["name"],
            arguments=decode_tool_arguments("".join(entry["parts"])),
        )

    def finish_all(self) -> List[ToolInvocation]:
        finished: List[ToolInvocation] = []
        for key in list(self._pending):
            invocation = self.finish(key)
            if invocation is not None:
                finished.append(invocation)
        return finished


def _finish_reason(
    raw: Optional[str],
    tool_calls: List[ToolInvocation],
    *,
    tool_values: Tuple[str, ...],
    length_values: Tuple[str, ...],
) -> FinishReason:
    if raw in length_values:
        return "length"
    if raw in tool_values or tool_calls:
        return "tool_calls"
    return "stop"


def _usage(prompt: Any, completion: Any, total: Any = None) -> Usage:
    prompt_tokens = int(prompt or 0)
    completion_tokens = int(completion or 0)
    total_tokens = int(total) if total is not None else prompt_tokens + completion_tokens
    return Usage(prompt_tokens=prompt_tokens, completion_tokens=completion_tokens, total_tokens=total_tokens)


# ---------------------------------------------------------------------------
# Base runtime + registry
# ---------------------------------------------------------------------------


class ProviderRuntime:
    """Interface for provider runtimes.

    ``complete`` raises :class:`ProviderRuntimeError` on transport failures;
    ``stream_complete`` reports the same failure as one terminal ``error`` event.
    """

    label = "Provider"

    def __init__(self, descriptor: ProviderDescriptor) -> None:
        self.descriptor = descriptor

    def create_client(
        self,
        api_key: str,
        *,
        base_url: Optional[str] = None,
        default_headers: Optional[Dict[str, str]] = None,
    ) -> Any:
        raise NotImplementedError

    def complete(self, *, client: Any, model: str, request: CompletionRequest) -> CompletionResponse:
        raise NotImplementedError

    def _stream(self, *, client: Any, model: str, request: CompletionRequest) -> Iterator[StreamEvent]:
        raise NotImplementedError

    def stream_complete(self, *, client: Any, model: str, request: CompletionRequest) -> Iterator[StreamEvent]:
        try:
            yield from self._stream(client=client, model=model, request=request)
        except ProviderRuntimeError as exc:
            logger.error("%s stream failed: %s", self.label, exc)
            yield StreamEvent.failure(str(exc), status_code=exc.status_code, body=exc.body)

    def _translate_tools(self, request: CompletionRequest, model: str) -> List[Dict[str, Any]]:
        if not request.tools or not self.descriptor.quirks_for(model).supports_tools:
            return []
        return provider_router.get_tool_translator(self.descriptor).translate_tools(request.tools)


class ProviderRuntimeRegistry:
    """Registry that maps runtime identifiers to implementation classes."""

    def __init__(self) -> None:
        self._runtime_classes: Dict[str, Type[ProviderRuntime]] = {}

    def register_runtime(self, runtime_id: str, runtime_cls: Type[ProviderRuntime]) -> None:
        if not issubclass(runtime_cls, ProviderRuntime):
            raise TypeError(f"Runtime {runtime_cls!r} must inherit ProviderRuntime")
        self._runtime_classes[runtime_id] = runtime_cls

    def get_runtime_class(self, runtime_id: str) -> Optional[Type[ProviderRuntime]]:
        return self._runtime_classes.get(runtime_id)

    def create_runtime(self, descriptor: ProviderDescriptor) -> ProviderRuntime:
        runtime_cls = self.get_runtime_class(descriptor.runtime_id)
        if runtime_cls is None:
            raise ProviderRuntimeError(
                f"Unknown provider runtime '{descriptor.runtime_id}' for provider '{descriptor.provider_id}'"
            )
        return runtime_cls(descriptor)


provider_registry = ProviderRuntimeRegistry()


# ---------------------------------------------------------------------------
# OpenAI chat runtime (Chat Completions)
# ---------------------------------------------------------------------------


class OpenAIChatRuntime(ProviderRuntime):
    """Runtime for OpenAI Chat Completions API."""

    label = "OpenAI"

    def create_client(
        self,
        api_key: str,
        *,
        base_url: Optional[str] = None,
        default_headers: Optional[Dict[str, str]] = None,
    ) -> Any:
        if OpenAI is None:
            raise ProviderRuntimeError("openai package not installed")
        kwargs: Dict[str, Any] = {"api_key": api_key}
        if base_url:
            kwargs["base_url"] = base_url
        if default_headers:
            kwargs["default_headers"] = default_headers
        return OpenAI(**kwargs)

    def _convert_turns(self, turns: List[Turn]) -> List[Dict[str, Any]]:
        converted: List[Dict[str, Any]] = []
        for turn in turns:
            if turn.role == "tool":
                # one message per outcome
                for outcome in turn.tool_results:
                    converted.append({
                        "role": "tool",
                        "tool_call_id": outcome.tool_call_id,
                        "content": outcome.result,
                    })
            elif turn.role == "assistant" and turn.tool_calls:
                converted.append({
                    "role": "assistant",
                    "content": turn.content or None,
                    "tool_calls": [
                        {
                            "id": call.id,
                            "type": "function",
                            "function": {"name": call.name, "arguments": json.dumps(call.arguments)},
                        }
                        for call in turn.tool_calls
                    ],
                })
            else:
                converted.append({"role": turn.role, "content": turn.content})
        return converted

    def build_request(self, model: str, request: CompletionRequest, *, stream: bool) -> Dict[str, Any]:
        quirk = self.descriptor.quirks_for(model)
        body: Dict[str, Any] = {
            "model": model,
            "messages": self._convert_turns(request.turns),
            quirk.max_tokens_field: request.max_tokens,
        }
        if quirk.supports_temperature:
            body["temperature"] = request.temperature
        tools = self._translate_tools(request, model)
        if tools:
            body["tools"] = tools
            body["tool_choice"] = "auto"
        if stream:
            body["stream"] = True
            body["stream_options"] = {"include_usage": True}
        return body

    def _extract_usage(self, usage_obj: Any) -> Optional[Usage]:
        if not usage_obj:
            return None
        return _usage(
            _get_attr(usage_obj, "prompt_tokens"),
            _get_attr(usage_obj, "completion_tokens"),
            _get_attr(usage_obj, "total_tokens"),
        )

    def _finish(self, raw: Optional[str], tool_calls: List[ToolInvocation]) -> FinishReason:
        return _finish_reason(raw, tool_calls, tool_values=("tool_calls", "function_call"), length_values=("length",))

    def complete(self, *, client: Any, model: str, request: CompletionRequest) -> CompletionResponse:
        body = self.build_request(model, request, stream=False)
        logger.debug("OpenAI request model=%s messages=%d", model, len(body["messages"]))
        try:
            response = client.chat.completions.create(**body)
        except Exception as exc:
            raise _runtime_error(self.label, exc) from exc

        choices = _get_attr(response, "choices") or []
        if not choices:
            raise ProviderRuntimeError("OpenAI API returned no choices")
        choice = choices[0]
        message = _get_attr(choice, "message") or {}

        tool_calls: List[ToolInvocation] = []
        for idx, raw in enumerate(_get_attr(message, "tool_calls") or []):
            fn = _get_attr(raw, "function") or {}
            tool_calls.append(
                ToolInvocation(
                    id=_get_attr(raw, "id") or f"call_{idx}",
                    name=_get_attr(fn, "name") or "",
                    arguments=decode_tool_arguments(_get_attr(fn, "arguments")),
                )
            )

        return CompletionResponse(
            content=_get_attr(message, "content") or "",
            tool_calls=tool_calls,
            finish_reason=self._finish(_get_attr(choice, "finish_reason"), tool_calls),
            usage=self._extract_usage(_get_attr(response, "usage")),
            model=_get_attr(response, "model"),
        )

    def _stream(self, *, client: Any, model: str, request: CompletionRequest) -> Iterator[StreamEvent]:
        body = self.build_request(model, request, stream=True)
        logger.debug("OpenAI stream model=%s messages=%d", model, len(body["messages"]))
        assembler = ToolCallAssembler()
        emitted: List[ToolInvocation] = []
        finish_raw: Optional[str] = None
        usage: Optional[Usage] = None

        try:
            stream = client.chat.completions.create(**body)
            for chunk in stream:
                usage = self._extract_usage(_get_attr(chunk, "usage")) or usage
                for choice in _get_attr(chunk, "choices") or []:
                    delta = _get_attr(choice, "delta") or {}
                    text = _get_attr(delta, "content")
                    if text:
                        yield StreamEvent.text(text)
                    for fragment in _get_attr(delta, "tool_calls") or []:
                        fn = _get_attr(fragment, "function") or {}
                        assembler.append(
                            _get_attr(fragment, "index", 0),
                            _get_attr(fn, "arguments"),
                            call_id=_get_attr(fragment, "id"),
                            name=_get_attr(fn, "name"),
                        )
                    reason = _get_attr(choice, "finish_reason")
                    if reason:
                        finish_raw = reason
                        for invocation in assembler.finish_all():
                            emitted.append(invocation)
                            yield StreamEvent.call(invocation)
        except Exception as exc:
            raise _runtime_error(self.label, exc) from exc

        for invocation in assembler.finish_all():
            emitted.append(invocation)
            yield StreamEvent.call(invocation)
        yield StreamEvent.done(self._finish(finish_raw, emitted), usage)


provider_registry.register_runtime("openai_chat", OpenAIChatRuntime)


# ---------------------------------------------------------------------------
# Anthropic Messages runtime
# ---------------------------------------------------------------------------


class AnthropicMessagesRuntime(ProviderRuntime):
    """Runtime for Anthropic Messages API."""

    label = "Anthropic"

    def create_client(
        self,
        api_key: str,
        *,
        base_url: Optional[str] = None,
        default_headers: Optional[Dict[str, str]] = None,
    ) -> Any:
        if Anthropic is None:
            raise ProviderRuntimeError("anthropic package not installed")

        kwargs: Dict[str, Any] = {"api_key": api_key}
        if base_url:
            kwargs["base_url"] = base_url
        if default_headers:
            kwargs["default_headers"] = default_headers
        return Anthropic(**kwargs)

    def _convert_messages(self, turns: List[Turn]) -> Tuple[Optional[str], List[Dict[str, Any]]]:
        system_parts: List[str] = []
        converted: List[Dict[str, Any]] = []

        for turn in turns:
            if turn.role == "system":
                system_parts.append(turn.content)
                continue

            if turn.role == "tool":
                converted.append({
                    "role": "user",
                    "content": [
                        {
                            "type": "tool_result",
                            "tool_use_id": outcome.tool_call_id,
                            "content": outcome.result,
                            "is_error": outcome.is_error,
                        }
                        for outcome in turn.tool_results
                    ],
                })
                continue

            if turn.role == "assistant":
                blocks: List[Dict[str, Any]] = []
                if turn.content:
                    blocks.append({"type": "text", "text": turn.content})
                for call in turn.tool_calls:
                    blocks.append({"type": "tool_use", "id": call.id, "name": call.name, "input": dict(call.arguments)})
                if blocks:
                    converted.append({"role": "assistant", "content": blocks})
                continue

            converted.append({"role": "user", "content": [{"type": "text", "text": turn.content}]})

        system_prompt = "\n".join(system_parts).strip()
        return (system_prompt or None), converted

    def build_request(self, model: str, request: CompletionRequest) -> Dict[str, Any]:
        system_prompt, messages = self._convert_messages(request.turns)
        body: Dict[str, Any] = {
            "model": model,
            "messages": messages,
            "max_tokens": request.max_tokens,
        }
        if system_prompt:
            body["system"] = system_prompt
        if self.descriptor.quirks_for(model).supports_temperature:
            body["temperature"] = request.temperature
        tools = self._translate_tools(request, model)
        if tools:
            body["tools"] = tools
        return body

    def _finish(self, raw: Optional[str], tool_calls: List[ToolInvocation]) -> FinishReason:
        return _finish_reason(raw, tool_calls, tool_values=("tool_use",), length_values=("max_tokens",))

    def complete(self, *, client: Any, model: str, request: CompletionRequest) -> CompletionResponse:
        body = self.build_request(model, request)
        logger.debug("Anthropic request model=%s messages=%d", model, len(body["messages"]))
        try:
            response = client.messages.create(**body)
        except Exception as exc:
            raise _runtime_error(self.label, exc) from exc

        text_parts: List[str] = []
        tool_calls: List[ToolInvocation] = []
        for block in _get_attr(response, "content") or []:
            block_type = _get_attr(block, "type")
            if block_type == "text":
                text_parts.append(str(_get_attr(block, "text", "") or ""))
            elif block_type == "tool_use":
                tool_calls.append(
                    ToolInvocation(
                        id=_get_attr(block, "id") or f"toolu_{len(tool_calls)}",
                        name=_get_attr(block, "name") or "",
                        arguments=decode_tool_arguments(_get_attr(block, "input")),
                    )
                )

        usage_obj = _get_attr(response, "usage")
        usage = None
        if usage_obj:
            usage = _usage(_get_attr(usage_obj, "input_tokens"), _get_attr(usage_obj, "output_tokens"))

        return CompletionResponse(
            content="".join(text_parts),
            tool_calls=tool_calls,
            finish_reason=self._finish(_get_attr(response, "stop_reason"), tool_calls),
            usage=usage,
            model=_get_attr(response, "model"),
        )

    def _stream(self, *, client: Any, model: str, request: CompletionRequest) -> Iterator[StreamEvent]:
        body = self.build_request(model, request)
        logger.debug("Anthropic stream model=%s messages=%d", model, len(body["messages"]))
        assembler = ToolCallAssembler(id_prefix="toolu")
        emitted: List[ToolInvocation] = []
        stop_reason: Optional[str] = None
        input_tokens: Any = 0
        output_tokens: Any = 0

        try:
            stream = client.messages.create(stream=True, **body)
            for event in stream:
                event_type = _get_attr(event, "type")
                if event_type == "message_start":
                    usage_obj = _get_attr(_get_attr(event, "message"), "usage")
                    input_tokens = _get_attr(usage_obj, "input_tokens", 0) if usage_obj else 0
                elif event_type == "content_block_start":
                    block = _get_attr(event, "content_block") or {}
                    if _get_attr(block, "type") == "tool_use":
                        assembler.start(
                            _get_attr(event, "index", 0),
                            call_id=_get_attr(block, "id"),
                            name=_get_attr(block, "name"),
                        )
                elif event_type == "content_block_delta":
                    delta = _get_attr(event, "delta") or {}
                    delta_type = _get_attr(delta, "type")
                    if delta_type == "text_delta":
                        text = _get_attr(delta, "text")
                        if text:
                            yield StreamEvent.text(text)
                    elif delta_type == "input_json_delta":
                        assembler.append(_get_attr(event, "index", 0), _get_attr(delta, "partial_json"))
                elif event_type == "content_block_stop":
                    invocation = assembler.finish(_get_attr(event, "index", 0))
                    if invocation is not None:
                        emitted.append(invocation)
                        yield StreamEvent.call(invocation)
                elif event_type == "message_delta":
                    delta = _get_attr(event, "delta") or {}
                    stop_reason = _get_attr(delta, "stop_reason") or stop_reason
                    usage_obj = _get_attr(event, "usage")
                    if usage_obj:
                        output_tokens = _get_attr(usage_obj, "output_tokens", output_tokens)
                elif event_type == "error":
                    error = _get_attr(event, "error") or {}
                    raise ProviderRuntimeError(
                        f"Anthropic API error: {_get_attr(error, 'message') or error}",
                        body=json.dumps(error, default=str) if isinstance(error, dict) else str(error),
                    )
                elif event_type == "message_stop":
                    break
        except Exception as exc:
            raise _runtime_error(self.label, exc) from exc

        for invocation in assembler.finish_all():
            emitted.append(invocation)
            yield StreamEvent.call(invocation)
        yield StreamEvent.done(self._finish(stop_reason, emitted), _usage(input_tokens, output_tokens))


provider_registry.register_runtime("anthropic_messages", AnthropicMessagesRuntime)


# ---------------------------------------------------------------------------
# Google Gemini runtime (generateContent over plain HTTPS)
# ---------------------------------------------------------------------------


class GoogleGenerativeRuntime(ProviderRuntime):
    """Runtime for the Gemini ``generateContent`` REST API."""

    label = "Google"

    def create_client(
        self,
        api_key: str,
        *,
        base_url: Optional[str] = None,
        default_headers: Optional[Dict[str, str]] = None,
        transport: Optional[httpx.BaseTransport] = None,
    ) -> Any:
        headers = {"x-goog-api-key": api_key, "Content-Type": "application/json"}
        headers.update(default_headers or {})
        kwargs: Dict[str, Any] = {
            "base_url": base_url or self.descriptor.base_url or "",
            "headers": headers,
            "timeout": httpx.Timeout(120.0, connect=10.0),
        }
        if transport is not None:
            kwargs["transport"] = transport
        return httpx.Client(**kwargs)

    def _convert_contents(self, turns: List[Turn]) -> Tuple[Optional[Dict[str, Any]], List[Dict[str, Any]]]:
        system_parts: List[str] = []
        contents: List[Dict[str, Any]] = []
        names_by_id: Dict[str, str] = {}

        for turn in turns:
            if turn.role == "system":
                system_parts.append(turn.content)
                continue

            if turn.role == "tool":
                parts = []
                for outcome in turn.tool_results:
                    name = outcome.name or names_by_id.get(outcome.tool_call_id) or outcome.tool_call_id
                    key = "error" if outcome.is_error else "result"
                    parts.append({"functionResponse": {"name": name, "response": {key: outcome.result}}})
                contents.append({"role": "function", "parts": parts})
                continue

            if turn.role == "assistant":
                parts = []
                if turn.content:
                    parts.append({"text": turn.content})
                for call in turn.tool_calls:
                    names_by_id[call.id] = call.name
                    parts.append({"functionCall": {"name": call.name, "args": dict(call.arguments)}})
                if parts:
                    contents.append({"role": "model", "parts": parts})
                continue

            contents.append({"role": "user", "parts": [{"text": turn.content}]})

        system_text = "\n".join(system_parts).strip()
        system_instruction = {"parts": [{"text": system_text}]} if system_text else None
        return system_instruction, contents

    def build_request(self, model: str, request: CompletionRequest) -> Dict[str, Any]:
        system_instruction, contents = self._convert_contents(request.turns)
        generation: Dict[str, Any] = {"maxOutputTokens": request.max_tokens}
        if self.descriptor.quirks_for(model).supports_temperature:
            generation["temperature"] = request.temperature
        body: Dict[str, Any] = {"contents": contents, "generationConfig": generation}
        if system_instruction:
            body["systemInstruction"] = system_instruction
        tools = self._translate_tools(request, model)
        if tools:
            body["tools"] = tools
        return body

    def _raise_for_status(self, response: httpx.Response) -> None:
        if 200 <= response.status_code < 300:
            return
        body = response.text
        raise ProviderRuntimeError(
            f"Google API error: {response.status_code} - {body}",
            status_code=response.status_code,
            body=body,
        )

    def _parse_parts(self, candidate: Dict[str, Any], call_ids: Iterator[int]) -> Tuple[List[str], List[ToolInvocation]]:
        texts: List[str] = []
        calls: List[ToolInvocation] = []
        for part in (candidate.get("content") or {}).get("parts") or []:
            if part.get("text"):
                texts.append(part["text"])
            elif part.get("functionCall"):
                fn = part["functionCall"]
                name = fn.get("name") or ""
                # Gemini issues no call ids
                calls.append(
                    ToolInvocation(
                        id=f"{name}-{next(call_ids)}",
                        name=name,
                        arguments=decode_tool_arguments(fn.get("args")),
                    )
                )
        return texts, calls

    def _extract_usage(self, data: Dict[str, Any]) -> Optional[Usage]:
        meta = data.get("usageMetadata")
        if not meta:
            return None
        return _usage(meta.get("promptTokenCount"), meta.get("candidatesTokenCount"), meta.get("totalTokenCount"))

    def _finish(self, raw: Optional[str], tool_calls: List[ToolInvocation]) -> FinishReason:
        return _finish_reason(raw, tool_calls, tool_values=(), length_values=("MAX_TOKENS",))

    def complete(self, *, client: Any, model: str, request: CompletionRequest) -> CompletionResponse:
        body = self.build_request(model, request)
        logger.debug("Google request model=%s contents=%d", model, len(body["contents"]))
        try:
            response = client.post(f"/models/{model}:generateContent", json=body)
        except httpx.HTTPError as exc:
            raise ProviderRuntimeError(f"Google API error: {exc}") from exc
        self._raise_for_status(response)

        data = response.json()
        candidates = data.get("candidates") or []
        if not candidates:
            raise ProviderRuntimeError("No response from Google API", body=response.text)
        candidate = candidates[0]
        texts, calls = self._parse_parts(candidate, itertools.count())
        return CompletionResponse(
            content="".join(texts),
            tool_calls=calls,
            finish_reason=self._finish(candidate.get("finishReason"), calls),
            usage=self._extract_usage(data),
            model=data.get("modelVersion") or model,
        )

    def _stream(self, *, client: Any, model: str, request: CompletionRequest) -> Iterator[StreamEvent]:
        body = self.build_request(model, request)
        logger.debug("Google stream model=%s contents=%d", model, len(body["contents"]))
        call_ids = itertools.count()
        emitted: List[ToolInvocation] = []
        finish_raw: Optional[str] = None
        usage: Optional[Usage] = None

        try:
            with client.stream(
                "POST",
                f"/models/{model}:streamGenerateContent",
                params={"alt": "sse"},
                json=body,
            ) as response:
                if not 200 <= response.status_code < 300:
                    response.read()
                    self._raise_for_status(response)
                for payload in iter_sse_data(response.iter_lines()):
                    try:
                        data = json.loads(payload)
                    except json.JSONDecodeError:
                        logger.warning("Skipping undecodable Gemini chunk: %.200s", payload)
                        continue
                    usage = self._extract_usage(data) or usage
                    for candidate in (data.get("candidates") or [])[:1]:
                        texts, calls = self._parse_parts(candidate, call_ids)
                        for text in texts:
                            yield StreamEvent.text(text)
                        for invocation in calls:
                            emitted.append(invocation)
                            yield StreamEvent.call(invocation)
                        finish_raw = candidate.get("finishReason") or finish_raw
        except httpx.HTTPError as exc:
            raise ProviderRuntimeError(f"Google API error: {exc}") from exc

        yield StreamEvent.done(self._finish(finish_raw, emitted), usage)


provider_registry.register_runtime("google_generative", GoogleGenerativeRuntime)


# ---------------------------------------------------------------------------
# Mock runtime (offline validation)
# ---------------------------------------------------------------------------


ScriptItem = Union[CompletionResponse, List[StreamEvent], Exception]


class MockClient:
    """Scripted stand-in for a vendor client.

    Each completion consumes the next script item: a :class:`CompletionResponse`,
    a list of :class:`StreamEvent` (replayed verbatim when streaming) or an
    exception to raise. Once the script is empty, ``responder`` is asked, and
    without one the default heuristic applies.
    """

    def __init__(
        self,
        script: Optional[List[ScriptItem]] = None,
        responder: Optional[Callable[[CompletionRequest], ScriptItem]] = None,
    ) -> None:
        self.script: List[ScriptItem] = list(script or [])
        self.responder = responder
        self.requests: List[CompletionRequest] = []

    def next_item(self, request: CompletionRequest) -> Optional[ScriptItem]:
        self.requests.append(request)
        if self.script:
            return self.script.pop(0)
        if self.responder is not None:
            return self.responder(request)
        return None


class MockRuntime(ProviderRuntime):
    """A simple mock provider runtime for offline runs.

    Heuristics when unscripted:
      - If the history holds no tool calls yet, request list_directory(path=".")
      - Else, return a short assistant message
    """

    label = "Mock"

    def create_client(
        self,
        api_key: str,
        *,
        base_url: Optional[str] = None,
        default_headers: Optional[Dict[str, str]] = None,
    ) -> Any:
        return MockClient()

    def _default_response(self, request: CompletionRequest) -> CompletionResponse:
        prior_calls = sum(len(turn.tool_calls) for turn in request.turns if turn.role == "assistant")
        if prior_calls == 0:
            call = ToolInvocation(id="mock-0", name="list_directory", arguments={"path": "."})
            return CompletionResponse(content="", tool_calls=[call], finish_reason="tool_calls", model="mock")
        return CompletionResponse(content="Workspace inspected.", finish_reason="stop", model="mock")

    def _next(self, client: MockClient, request: CompletionRequest) -> ScriptItem:
        item = client.next_item(request)
        if item is None:
            return self._default_response(request)
        if isinstance(item, Exception):
            raise item
        return item

    def complete(self, *, client: Any, model: str, request: CompletionRequest) -> CompletionResponse:
        item = self._next(client, request)
        if isinstance(item, CompletionResponse):
            return item
        content: List[str] = []
        calls: List[ToolInvocation] = []
        finish: FinishReason = "stop"
        for event in item:
            if event.type == "content" and event.content:
                content.append(event.content)
            elif event.type == "tool_call" and event.tool_call is not None:
                calls.append(event.tool_call)
            elif event.type == "error":
                raise ProviderRuntimeError(event.error or "mock error", status_code=event.status_code, body=event.body)
            elif event.type == "done" and event.finish_reason:
                finish = event.finish_reason
        return CompletionResponse(content="".join(content), tool_calls=calls, finish_reason=finish, model="mock")

    def _stream(self, *, client: Any, model: str, request: CompletionRequest) -> Iterator[StreamEvent]:
        item = self._next(client, request)
        if isinstance(item, CompletionResponse):
            if item.content:
                yield StreamEvent.text(item.content)
            for call in item.tool_calls:
                yield StreamEvent.call(call)
            yield StreamEvent.done(item.finish_reason, item.usage)
            return
        for event in item:
            yield event


provider_registry.register_runtime("mock_chat", MockRuntime)


# ---------------------------------------------------------------------------
# Session-bound adapter + factory
# ---------------------------------------------------------------------------


@dataclass
class ProviderAdapter:
    """A runtime bound to one client and model for the lifetime of a session."""

    runtime: ProviderRuntime
    client: Any
    model: str

    @property
    def provider_id(self) -> str:
        return self.runtime.descriptor.provider_id

    def complete(self, request: CompletionRequest) -> CompletionResponse:
        return self.runtime.complete(client=self.client, model=self.model, request=request)

    def stream_complete(self, request: CompletionRequest) -> Iterator[StreamEvent]:
        return self.runtime.stream_complete(client=self.client, model=self.model, request=request)


def create_provider(
    provider: str,
    api_key: str,
    model: str,
    *,
    base_url: Optional[str] = None,
    client: Any = None,
) -> ProviderAdapter:
    """Select the runtime variant for ``provider`` and bind it to a client."""
    descriptor, resolved_model = provider_router.get_runtime_descriptor(provider, model, base_url=base_url)
    runtime = provider_registry.create_runtime(descriptor)
    if client is None:
        client = runtime.create_client(
            api_key,
            base_url=descriptor.base_url,
            default_headers=descriptor.default_headers or None,
        )
    logger.info("Provider %s bound to model %s", descriptor.provider_id, resolved_model)
    return ProviderAdapter(runtime=runtime, client=client, model=resolved_model)


__all__ = [
    "AnthropicMessagesRuntime",
    "GoogleGenerativeRuntime",
    "MockClient",
    "MockRuntime",
    "OpenAIChatRuntime",
    "ProviderAdapter",
    "ProviderRuntime",
    "ProviderRuntimeError",
    "ProviderRuntimeRegistry",
    "ToolCallAssembler",
    "create_provider",
    "decode_tool_arguments",
    "iter_sse_data",
    "provider_registry",
]
