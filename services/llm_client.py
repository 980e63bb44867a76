# services/llm_client.py
from __future__ import annotations

import asyncio
import json
import logging
from contextlib import nullcontext
from typing import Any, Callable, ContextManager, Dict, List, Optional, Sequence, Tuple, Union

import httpx
from tenacity import AsyncRetrying, retry_if_exception, stop_after_attempt, wait_incrementing

from config import LLMConfig, ProviderMode
from errors import GenerationError
from models import GenerationResult, GenerationUsage, PromptMessage, StructuredTripPlan, TripRequestContext
from request_context import NO_REQUEST_ID, get_request_id, request_scope
from services.normalizer import TripPlanNormalizer
from services.prompt_builder import build_prompt_messages
from services.schema_validator import json_schema_for, validate

log = logging.getLogger("llm")

DEFAULT_ENDPOINT = "https://dashscope.aliyuncs.com/api/v1/services/aigc/text-generation/generation"
DEFAULT_COMPATIBLE_BASE = "https://dashscope.aliyuncs.com/compatible-mode/v1"
DEFAULT_SCHEMA_NAME = "structured_trip_plan"
DEFAULT_BACKOFF_STEP_S = 0.4
DEBUG_SAMPLE_MAX_CHARS = 600

Message = Union[PromptMessage, Dict[str, Any]]
Transform = Callable[[Any], Any]

# ---------- endpoint resolution ----------

def _is_compatible_endpoint(endpoint: str) -> bool:
    lower = endpoint.lower()
    return "compatible-mode" in lower or lower.endswith("/chat/completions")

def ensure_chat_completions_path(base: str) -> str:
    trimmed = base.rstrip("/")
    if trimmed.lower().endswith("/chat/completions"):
        return trimmed
    return f"{trimmed}/chat/completions"

def resolve_endpoint(endpoint: Optional[str], mode: Optional[ProviderMode] = None) -> Tuple[str, ProviderMode]:
    """Pick the URL and wire format; an explicit mode wins over endpoint sniffing."""
    url = (endpoint or "").strip()
    if mode == "compatible":
        return ensure_chat_completions_path(url or DEFAULT_COMPATIBLE_BASE), "compatible"
    if mode == "dashscope":
        return url or DEFAULT_ENDPOINT, "dashscope"
    if url and _is_compatible_endpoint(url):
        return ensure_chat_completions_path(url), "compatible"
    return url or DEFAULT_ENDPOINT, "dashscope"

# ---------- envelope helpers ----------

def _strip_code_fences(s: Optional[str]) -> str:
    if not s:
        return ""
    t = s.strip()
    if t.startswith("```"):
        parts = t.split("```")
        if len(parts) >= 3:
            inner = parts[1]
            # drop a language tag such as ```json
            first_line, _, rest = inner.partition("\n")
            if rest and first_line.strip().isalpha():
                inner = rest
            return inner.strip()
    return t

def _content_blocks_text(content: Any) -> Optional[str]:
    if isinstance(content, str):
        return content.strip() or None
    if isinstance(content, list):
        pieces = []
        for block in content:
            if isinstance(block, str):
                pieces.append(block)
            elif isinstance(block, dict):
                if isinstance(block.get("text"), str):
                    pieces.append(block["text"])
                elif isinstance(block.get("content"), str):
                    pieces.append(block["content"])
        combined = "\n".join(p for p in pieces if p).strip()
        return combined or None
    return None

def extract_json_text(envelope: Any) -> Optional[str]:
    """
    Locate the model's JSON text inside a provider envelope.

    Order: output.text, then the first choice's output_text, then the first
    choice's message.content. The first choice comes from output.choices,
    else top-level choices. Returns None when nothing is present.
    """
    if not isinstance(envelope, dict):
        return None
    output = envelope.get("output") if isinstance(envelope.get("output"), dict) else {}
    if isinstance(output.get("text"), str) and output["text"].strip():
        return output["text"].strip()

    choices = output.get("choices") if isinstance(output.get("choices"), list) and output["choices"] else envelope.get("choices")
    first = choices[0] if isinstance(choices, list) and choices and isinstance(choices[0], dict) else None
    if first is None:
        return None
    if isinstance(first.get("output_text"), str) and first["output_text"].strip():
        return first["output_text"].strip()
    message = first.get("message")
    if isinstance(message, dict):
        return _content_blocks_text(message.get("content"))
    return None

def _parse_usage(envelope: Any) -> GenerationUsage:
    if not isinstance(envelope, dict):
        return GenerationUsage()
    usage = envelope.get("usage") if isinstance(envelope.get("usage"), dict) else {}

    def pick(*keys: str) -> Any:
        for k in keys:
            if usage.get(k) is not None:
                return usage[k]
        return None

    request_id = envelope.get("request_id") or envelope.get("id")
    return GenerationUsage(
        request_id=str(request_id) if request_id is not None else None,
        prompt_tokens=pick("input_tokens", "prompt_tokens"),
        completion_tokens=pick("output_tokens", "completion_tokens"),
        total_tokens=usage.get("total_tokens"),
    )

def _sample_payload(payload: Any) -> Any:
    """Copy of payload with long strings truncated, for debug logs."""
    def trim(x: Any) -> Any:
        if isinstance(x, str) and len(x) > DEBUG_SAMPLE_MAX_CHARS:
            return x[:DEBUG_SAMPLE_MAX_CHARS] + "…"
        if isinstance(x, dict):
            return {k: trim(v) for k, v in x.items()}
        if isinstance(x, list):
            return [trim(v) for v in x]
        return x

    if hasattr(payload, "model_dump"):
        payload = payload.model_dump(by_alias=True, exclude_none=True)
    return trim(payload)

def _summarize_plan(plan: Any) -> Dict[str, Any]:
    if not isinstance(plan, StructuredTripPlan):
        return {"overview_present": False}
    return {
        "overview_present": True,
        "days": len(plan.days),
        "activities_total": sum(len(d.activities) for d in plan.days),
        "has_budget_breakdown": bool(plan.budget.breakdown),
    }

def _is_retryable(exc: BaseException) -> bool:
    # cancellation and misconfiguration end the call; everything else gets another attempt
    return isinstance(exc, GenerationError) and exc.kind not in ("cancelled", "config")

def _bound_request_id() -> ContextManager[str]:
    # calls made outside an HTTP request get their own id
    rid = get_request_id()
    return request_scope() if rid == NO_REQUEST_ID else nullcontext(rid)

def _message_dict(m: Message) -> Dict[str, Any]:
    if isinstance(m, PromptMessage):
        return m.model_dump()
    return {"role": m["role"], "content": m["content"]}


class GenerationClient:
    """
    Sends prompt messages plus a JSON Schema to the provider and returns a
    schema-validated object, retrying network, parse and validation failures.

    One instance can serve many concurrent calls; each call opens its own
    httpx.AsyncClient. `transport` is passed through to httpx (tests use
    httpx.MockTransport). `backoff_step` is the linear backoff unit in seconds.
    """

    def __init__(
        self,
        config: LLMConfig,
        *,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        backoff_step: float = DEFAULT_BACKOFF_STEP_S,
    ) -> None:
        api_key = (config.api_key or "").strip()
        if not api_key:
            raise GenerationError("config", "LLM API key is not configured.", should_rollback=False)
        if config.max_retries < 1:
            raise GenerationError("config", f"max_retries must be >= 1 (got {config.max_retries}).", should_rollback=False)
        self.config = config
        self.endpoint, self.mode = resolve_endpoint(config.endpoint, config.mode)
        self._api_key = api_key
        self._transport = transport
        self.backoff_step = backoff_step
        self.normalizer = TripPlanNormalizer(fallbacks_enabled=config.normalization_fallbacks)

    # ---------- public ----------

    async def generate_trip_plan(
        self,
        context: TripRequestContext,
        *,
        temperature: Optional[float] = None,
        max_retries: Optional[int] = None,
        cancel_event: Optional[asyncio.Event] = None,
        schema_name: Optional[str] = None,
    ) -> GenerationResult[StructuredTripPlan]:
        messages = build_prompt_messages(context)
        with _bound_request_id() as rid:
            log.info("Trip plan generation requested", extra={
                "request_id": rid,
                "destination": context.destination,
                "start_date": context.start_date,
                "end_date": context.end_date,
            })
            return await self.generate_structured_json(
                messages,
                StructuredTripPlan,
                temperature=temperature,
                max_retries=max_retries,
                cancel_event=cancel_event,
                schema_name=schema_name or DEFAULT_SCHEMA_NAME,
                transform=lambda payload: self.normalizer.normalize(payload, context),
            )

    async def generate_structured_json(
        self,
        messages: Sequence[Message],
        schema: Any,
        *,
        temperature: Optional[float] = None,
        max_retries: Optional[int] = None,
        cancel_event: Optional[asyncio.Event] = None,
        schema_name: Optional[str] = None,
        transform: Optional[Transform] = None,
    ) -> GenerationResult[Any]:
        retries = self.config.max_retries if max_retries is None else max_retries
        if retries < 1:
            raise GenerationError("config", f"max_retries must be >= 1 (got {retries}).", should_rollback=False)

        with _bound_request_id() as rid:
            body = self._build_request_body(messages, schema, temperature, schema_name)
            headers = {
                "Content-Type": "application/json",
                "Authorization": f"Bearer {self._api_key}",
            }
            current_attempt = 1

            async def backoff_sleep(seconds: float) -> None:
                await self._cancellable_sleep(seconds, cancel_event, current_attempt)

            retrying = AsyncRetrying(
                stop=stop_after_attempt(retries),
                wait=wait_incrementing(start=self.backoff_step, increment=self.backoff_step),
                retry=retry_if_exception(_is_retryable),
                sleep=backoff_sleep,
                reraise=True,
            )

            async with httpx.AsyncClient(
                timeout=self.config.request_timeout_s,
                transport=self._transport,
            ) as http:
                try:
                    async for attempt in retrying:
                        with attempt:
                            current_attempt = attempt.retry_state.attempt_number
                            if cancel_event is not None and cancel_event.is_set():
                                raise self._cancelled(current_attempt)
                            result = await self._logged_attempt(
                                http, body, headers, schema, transform, cancel_event, current_attempt, retries,
                            )
                            log.info("LLM structured output validated", extra={
                                "request_id": rid,
                                "model": self.config.model,
                                "mode": self.mode,
                                "attempts": current_attempt,
                            })
                            return result
                except GenerationError as e:
                    if e.kind != "cancelled":
                        log.error("LLM generation failed after retries", extra={
                            "request_id": rid,
                            "attempts": current_attempt,
                            "kind": e.kind,
                        })
                    raise
        raise GenerationError("unexpected", "LLM provider failed without a classified error.")

    async def _logged_attempt(
        self,
        http: httpx.AsyncClient,
        body: Dict[str, Any],
        headers: Dict[str, str],
        schema: Any,
        transform: Optional[Transform],
        cancel_event: Optional[asyncio.Event],
        attempt: int,
        retries: int,
    ) -> GenerationResult[Any]:
        try:
            return await self._attempt(http, body, headers, schema, transform, cancel_event, attempt)
        except GenerationError as e:
            if e.kind == "cancelled":
                raise
            error = e
        except Exception as e:
            error = GenerationError(
                "unexpected",
                "Unexpected error while calling the LLM provider.",
                attempt=attempt,
                cause=e,
            )
        log.warning("LLM attempt failed", extra={
            "request_id": get_request_id(),
            "attempt": attempt,
            "max_retries": retries,
            "kind": error.kind,
            "error": error.message,
        })
        raise error

    # ---------- one attempt ----------

    async def _attempt(
        self,
        http: httpx.AsyncClient,
        body: Dict[str, Any],
        headers: Dict[str, str],
        schema: Any,
        transform: Optional[Transform],
        cancel_event: Optional[asyncio.Event],
        attempt: int,
    ) -> GenerationResult[Any]:
        try:
            response = await self._post(http, body, headers, cancel_event, attempt)
        except httpx.RequestError as e:
            raise GenerationError(
                "network",
                "Could not reach the LLM provider; check connectivity and credentials.",
                attempt=attempt,
                cause=e,
            ) from e

        if not response.is_success:
            raise GenerationError(
                "network",
                f"LLM provider returned HTTP {response.status_code}.",
                attempt=attempt,
                details=response.text,
            )

        try:
            envelope = response.json()
        except ValueError as e:
            raise GenerationError(
                "unexpected",
                "LLM provider returned an unparsable response envelope.",
                attempt=attempt,
                cause=e,
            ) from e

        text = extract_json_text(envelope)
        try:
            parsed = json.loads(_strip_code_fences(text)) if text else None
        except ValueError as e:
            raise GenerationError(
                "validation",
                "LLM output is not valid JSON.",
                attempt=attempt,
                cause=e,
            ) from e

        usage = _parse_usage(envelope)
        self._debug("raw_llm_payload", attempt=attempt, parsed=_sample_payload(parsed), usage=usage.model_dump())

        payload = transform(parsed) if transform else parsed
        self._debug("normalized_llm_payload", attempt=attempt, payload=_sample_payload(payload))

        result = validate(schema, payload, prune_unknown=True)
        if not result.success:
            self._debug("validation_failed_payload", attempt=attempt, errors=result.errors, payload=_sample_payload(payload))
            raise GenerationError(
                "validation",
                f"Attempt {attempt} output failed JSON Schema validation.",
                attempt=attempt,
                details="; ".join(result.errors),
            )

        self._debug("validated_trip_plan", attempt=attempt, stats=_summarize_plan(result.data))
        return GenerationResult(output=result.data, raw=envelope, attempts=attempt, usage=usage)

    async def _post(
        self,
        http: httpx.AsyncClient,
        body: Dict[str, Any],
        headers: Dict[str, str],
        cancel_event: Optional[asyncio.Event],
        attempt: int,
    ) -> httpx.Response:
        if cancel_event is None:
            return await http.post(self.endpoint, json=body, headers=headers)

        request = asyncio.ensure_future(http.post(self.endpoint, json=body, headers=headers))
        waiter = asyncio.ensure_future(cancel_event.wait())
        try:
            done, _ = await asyncio.wait({request, waiter}, return_when=asyncio.FIRST_COMPLETED)
        finally:
            for task in (request, waiter):
                if not task.done():
                    task.cancel()
        if request in done:
            return request.result()
        # let the aborted request unwind before surfacing the cancellation
        await asyncio.wait({request})
        raise self._cancelled(attempt)

    async def _cancellable_sleep(self, delay: float, cancel_event: Optional[asyncio.Event], attempt: int) -> None:
        """Backoff sleep for tenacity; a fired cancel event ends the wait with a cancelled error."""
        if cancel_event is None:
            if delay > 0:
                await asyncio.sleep(delay)
            return
        if cancel_event.is_set():
            raise self._cancelled(attempt)
        try:
            await asyncio.wait_for(cancel_event.wait(), timeout=delay)
        except asyncio.TimeoutError:
            return
        raise self._cancelled(attempt)

    # ---------- helpers ----------

    def _build_request_body(
        self,
        messages: Sequence[Message],
        schema: Any,
        temperature: Optional[float],
        schema_name: Optional[str],
    ) -> Dict[str, Any]:
        temp = self.config.temperature if temperature is None else temperature
        response_format = {
            "type": "json_schema",
            "json_schema": {
                "name": schema_name or DEFAULT_SCHEMA_NAME,
                "schema": json_schema_for(schema),
            },
        }
        wire_messages: List[Dict[str, Any]] = [_message_dict(m) for m in messages]
        if self.mode == "compatible":
            return {
                "model": self.config.model,
                "messages": wire_messages,
                "temperature": temp,
                "response_format": response_format,
            }
        return {
            "model": self.config.model,
            "input": {"messages": wire_messages},
            "parameters": {"temperature": temp, "result_format": "json"},
            "response_format": response_format,
        }

    def _cancelled(self, attempt: int) -> GenerationError:
        log.info("LLM generation cancelled", extra={"request_id": get_request_id(), "attempt": attempt})
        return GenerationError("cancelled", "LLM generation was cancelled by the caller.", attempt=attempt)

    def _debug(self, event: str, **fields: Any) -> None:
        if not self.config.debug_structured_output:
            return
        log.debug("LLM debug %s: %s", event, json.dumps(fields, ensure_ascii=False, default=str))
