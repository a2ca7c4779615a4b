from __future__ import annotations  # Language oracle gateway: transport, retries, schema validation

import asyncio
import json
import logging
import os
import random
from typing import Any, Awaitable, Callable, Dict, Optional, Protocol, Sequence, Type, TypeVar

import httpx
from langchain_core.messages import BaseMessage
from pydantic import BaseModel, ValidationError

from config import LlmRoute


logger = logging.getLogger(__name__)  # Module logger setup


class LanguageOracle(Protocol):  # Text-in, text-out generator used for paraphrase and extraction
    async def generate(
        self,
        messages: Sequence[Dict[str, str]],
        *,
        temperature: float,
        max_tokens: int,
        json_schema: Optional[Dict[str, Any]] = None,
    ) -> str: ...


class LlmGatewayError(RuntimeError):  # Base gateway error
    pass


class OracleUnavailable(LlmGatewayError):  # Timeout, transport failure, 5xx, quota
    pass


class OraclePayloadInvalid(OracleUnavailable):  # Reply was not JSON or violated the schema
    pass


T = TypeVar("T", bound=BaseModel)
R = TypeVar("R")


class HttpOracle:  # OpenAI-compatible chat completion endpoint
    def __init__(self, route: LlmRoute, client: Optional[httpx.AsyncClient] = None) -> None:
        self._route = route
        self._client = client

    @property
    def route(self) -> LlmRoute:
        return self._route

    async def generate(
        self,
        messages: Sequence[Dict[str, str]],
        *,
        temperature: float,
        max_tokens: int,
        json_schema: Optional[Dict[str, Any]] = None,
    ) -> str:
        cfg = self._route
        payload: Dict[str, Any] = {
            "model": cfg.model,
            "messages": _normalize_messages(messages),
            "temperature": temperature,
            "max_tokens": max_tokens,
        }
        if json_schema is not None and cfg.response_format:
            payload["response_format"] = {"type": cfg.response_format}
        headers = {"Content-Type": "application/json"}
        if cfg.api_key_env:
            api_key = os.getenv(cfg.api_key_env)
            if api_key:
                headers["Authorization"] = f"Bearer {api_key}"
        headers.update(cfg.extra_headers)
        try:
            response = await self._post(f"{cfg.base_url}{cfg.endpoint}", payload, headers)
        except httpx.HTTPError as exc:
            logger.error("LLM transport failure route=%s: %s", cfg.name, exc)
            raise OracleUnavailable("LLM transport failed") from exc
        if response.status_code >= 400:
            logger.error("LLM error status route=%s status=%s", cfg.name, response.status_code)
            raise OracleUnavailable(f"LLM returned status {response.status_code}")
        try:
            data = response.json()
        except ValueError as exc:
            logger.error("Invalid JSON payload from LLM: %s", exc)
            raise OraclePayloadInvalid("LLM payload was not JSON") from exc
        return _extract_content(data)

    async def _post(self, url: str, payload: Dict[str, Any], headers: Dict[str, str]) -> httpx.Response:
        if self._client is not None:
            return await self._client.post(url, json=payload, headers=headers, timeout=self._route.timeout_s)
        async with httpx.AsyncClient(timeout=self._route.timeout_s) as client:
            return await client.post(url, json=payload, headers=headers)


class OracleGateway:  # Bounded, retrying, validating front door for a LanguageOracle
    def __init__(
        self,
        oracle: Optional[LanguageOracle],
        *,
        timeout_s: float = 45.0,
        max_retries: int = 1,
        retry_base_delay_s: float = 0.5,
        rng: Optional[random.Random] = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self._oracle = oracle
        self._timeout_s = timeout_s
        self._max_retries = max_retries
        self._base_delay = retry_base_delay_s
        self._rng = rng or random.Random()
        self._sleep = sleep

    @classmethod
    def from_route(
        cls,
        route: Optional[LlmRoute],
        *,
        client: Optional[httpx.AsyncClient] = None,
    ) -> "OracleGateway":  # Build a gateway over the HTTP oracle, or an offline one when unset
        if route is None:
            return cls(None)
        return cls(
            HttpOracle(route, client=client),
            timeout_s=route.timeout_s,
            max_retries=route.max_retries,
            retry_base_delay_s=route.retry_base_delay_s,
        )

    @property
    def available(self) -> bool:
        return self._oracle is not None

    def backoff_delay(self, attempt: int) -> float:  # Exponential backoff with full jitter on top
        if self._base_delay <= 0:
            return 0.0
        return self._base_delay * (2 ** (attempt - 1)) + self._rng.uniform(0.0, self._base_delay)

    async def structured(
        self,
        messages: Sequence[Dict[str, str]],
        schema: Type[T],
        *,
        temperature: float,
        max_tokens: int,
        purpose: str = "structured",
    ) -> T:  # Generate and validate a JSON reply against ``schema``
        json_schema = schema.model_json_schema()
        base_messages: list[Dict[str, str]] = [
            {
                "role": "system",
                "content": "Reply with a single JSON object matching this schema:\n" + json.dumps(json_schema, indent=2),
            }
        ]
        base_messages.extend(_normalize_messages(messages))
        last_error_text: list[Optional[str]] = [None]

        async def _once(attempt: int) -> T:
            attempt_messages = list(base_messages)
            if attempt > 0 and last_error_text[0]:
                attempt_messages.append({"role": "system", "content": _retry_hint(last_error_text[0])})
            content = await self._generate(attempt_messages, temperature, max_tokens, json_schema)
            try:
                return _validate(schema, content)
            except (json.JSONDecodeError, ValidationError) as exc:
                logger.warning("LLM output validation failed purpose=%s: %s", purpose, exc)
                last_error_text[0] = str(exc)
                raise OraclePayloadInvalid("LLM output validation failed") from exc

        return await self._with_retries(_once, purpose)

    async def text(
        self,
        messages: Sequence[Dict[str, str]],
        *,
        temperature: float,
        max_tokens: int,
        purpose: str = "text",
    ) -> str:  # Generate free text; blank replies count as invalid payloads
        normalized = _normalize_messages(messages)

        async def _once(_attempt: int) -> str:
            content = (await self._generate(normalized, temperature, max_tokens, None)).strip()
            if not content:
                raise OraclePayloadInvalid("LLM returned empty text")
            return content

        return await self._with_retries(_once, purpose)

    async def _generate(
        self,
        messages: Sequence[Dict[str, str]],
        temperature: float,
        max_tokens: int,
        json_schema: Optional[Dict[str, Any]],
    ) -> str:
        assert self._oracle is not None
        try:
            return await asyncio.wait_for(
                self._oracle.generate(
                    messages,
                    temperature=temperature,
                    max_tokens=max_tokens,
                    json_schema=json_schema,
                ),
                timeout=self._timeout_s,
            )
        except asyncio.TimeoutError as exc:
            raise OracleUnavailable(f"LLM call exceeded {self._timeout_s}s") from exc
        except LlmGatewayError:
            raise
        except Exception as exc:  # noqa: BLE001
            raise OracleUnavailable(f"LLM call failed: {exc}") from exc

    async def _with_retries(self, once: Callable[[int], Awaitable[R]], purpose: str) -> R:
        if self._oracle is None:
            raise OracleUnavailable("No language oracle configured")
        attempts = self._max_retries + 1
        last_error: Optional[OracleUnavailable] = None
        for attempt in range(attempts):
            if attempt > 0:
                delay = self.backoff_delay(attempt)
                logger.info("LLM retry purpose=%s attempt=%d/%d delay=%.2fs", purpose, attempt + 1, attempts, delay)
                await self._sleep(delay)
            try:
                return await once(attempt)
            except OracleUnavailable as exc:
                logger.warning("LLM attempt failed purpose=%s attempt=%d/%d: %s", purpose, attempt + 1, attempts, exc)
                last_error = exc
        assert last_error is not None
        raise last_error


def to_chat_messages(payload: Any) -> list[Dict[str, str]]:  # Convert LangChain prompt output into role/content dicts
    if hasattr(payload, "to_messages"):
        payload = payload.to_messages()
    if isinstance(payload, dict):
        return [payload]
    if isinstance(payload, BaseMessage):
        return [_message_dict(payload)]
    if isinstance(payload, (list, tuple)):
        if all(isinstance(item, dict) for item in payload):
            return list(payload)
        if all(isinstance(item, BaseMessage) for item in payload):
            return [_message_dict(item) for item in payload]
    raise TypeError("Unsupported message payload for language oracle")


def _message_dict(message: BaseMessage) -> Dict[str, str]:  # Map LangChain BaseMessage to role/content dict
    role = message.type
    if role == "human":
        role = "user"
    elif role == "ai":
        role = "assistant"
    content = message.content
    if not isinstance(content, str):
        content = json.dumps(content)
    return {"role": role, "content": content}


def _normalize_messages(messages: Sequence[Dict[str, str]]) -> list[Dict[str, str]]:  # Ensure message payload shape
    normalized: list[Dict[str, str]] = []
    for item in messages:
        if not isinstance(item, dict):
            raise TypeError("Each chat message must be a dict with role/content")
        role = str(item.get("role", "")).strip()
        content = str(item.get("content", ""))
        if not role:
            raise ValueError("Chat message missing role")
        normalized.append({"role": role, "content": content})
    return normalized


def _extract_content(data: Any) -> str:  # Extract message content from LLM response
    if isinstance(data, dict):
        choices = data.get("choices")
        if isinstance(choices, list) and choices:
            message = choices[0].get("message") if isinstance(choices[0], dict) else None
            content = message.get("content") if isinstance(message, dict) else None
            if isinstance(content, str):
                return content
        if isinstance(data.get("content"), str):
            return data["content"]
    raise OraclePayloadInvalid("LLM response missing content")


def _validate(schema: Type[T], content: str) -> T:  # Parse JSON content with schema
    return schema.model_validate_json(_strip_code_fences(content))


def _strip_code_fences(content: str) -> str:  # Remove common markdown fences from LLM output
    text = content.strip()
    if text.startswith("```"):
        lines = text.splitlines()
        if lines:
            lines = lines[1:]
            while lines and lines[0].strip() == "":
                lines = lines[1:]
            while lines and lines[-1].strip() == "":
                lines = lines[:-1]
            if lines and lines[-1].strip() == "```":
                lines = lines[:-1]
            text = "\n".join(lines).strip()
    return text


def _retry_hint(error_text: str) -> str:  # Compose retry instructions including last error
    truncated = error_text.splitlines()[0].strip() if error_text else ""
    if len(truncated) > 200:
        truncated = truncated[:197] + "..."
    base = "The previous reply failed validation."
    if truncated:
        base += f" Reason: {truncated}."
    return base + " Return a single JSON object that matches the schema."
