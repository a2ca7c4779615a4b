import asyncio
import json
import random

import httpx
import pytest
from langchain_core.messages import AIMessage, HumanMessage, SystemMessage
from pydantic import BaseModel

from config import LlmRoute
from llm_gateway import (
    HttpOracle,
    OracleGateway,
    OraclePayloadInvalid,
    OracleUnavailable,
    to_chat_messages,
)
from llm_gateway.llm_gateway import _strip_code_fences


class Reply(BaseModel):
    answer: str


class ScriptedOracle:
    def __init__(self, *replies):
        self.replies = list(replies)
        self.calls = []

    async def generate(self, messages, *, temperature, max_tokens, json_schema=None):
        self.calls.append(list(messages))
        reply = self.replies.pop(0)
        if isinstance(reply, Exception):
            raise reply
        return reply


class SlowOracle:
    async def generate(self, messages, *, temperature, max_tokens, json_schema=None):
        await asyncio.sleep(1)
        return "{}"


def _gateway(oracle, retries=1):
    delays = []

    async def fake_sleep(delay):
        delays.append(delay)

    gateway = OracleGateway(
        oracle,
        timeout_s=0.5,
        max_retries=retries,
        retry_base_delay_s=0.5,
        rng=random.Random(1),
        sleep=fake_sleep,
    )
    return gateway, delays


MESSAGES = [{"role": "user", "content": "hi"}]


def test_structured_validates_reply():
    oracle = ScriptedOracle('{"answer": "ok"}')
    gateway, delays = _gateway(oracle)
    result = asyncio.run(gateway.structured(MESSAGES, Reply, temperature=0.0, max_tokens=50))
    assert result == Reply(answer="ok")
    assert delays == []
    assert oracle.calls[0][0]["role"] == "system"
    assert "matching this schema" in oracle.calls[0][0]["content"]


def test_invalid_payload_is_retried_with_hint():
    oracle = ScriptedOracle("not json", '```json\n{"answer": "second"}\n```')
    gateway, delays = _gateway(oracle)
    result = asyncio.run(gateway.structured(MESSAGES, Reply, temperature=0.0, max_tokens=50))
    assert result.answer == "second"
    assert len(delays) == 1
    assert 0.5 <= delays[0] <= 1.0
    assert "previous reply failed validation" in oracle.calls[1][-1]["content"]


def test_retries_exhausted_raise_payload_invalid():
    oracle = ScriptedOracle('{"wrong": 1}', '{"wrong": 2}')
    gateway, _ = _gateway(oracle)
    with pytest.raises(OraclePayloadInvalid):
        asyncio.run(gateway.structured(MESSAGES, Reply, temperature=0.0, max_tokens=50))
    assert len(oracle.calls) == 2


def test_transport_errors_become_unavailable():
    oracle = ScriptedOracle(ConnectionError("reset"), ConnectionError("reset"))
    gateway, delays = _gateway(oracle)
    with pytest.raises(OracleUnavailable):
        asyncio.run(gateway.text(MESSAGES, temperature=0.0, max_tokens=50))
    assert len(delays) == 1


def test_timeout_is_unavailable():
    gateway, _ = _gateway(SlowOracle(), retries=0)
    with pytest.raises(OracleUnavailable) as exc:
        asyncio.run(gateway.text(MESSAGES, temperature=0.0, max_tokens=50))
    assert not isinstance(exc.value, OraclePayloadInvalid)


def test_blank_text_is_invalid():
    gateway, _ = _gateway(ScriptedOracle("   "), retries=0)
    with pytest.raises(OraclePayloadInvalid):
        asyncio.run(gateway.text(MESSAGES, temperature=0.0, max_tokens=50))


def test_offline_gateway():
    gateway = OracleGateway.from_route(None)
    assert gateway.available is False
    with pytest.raises(OracleUnavailable):
        asyncio.run(gateway.text(MESSAGES, temperature=0.0, max_tokens=50))


def test_backoff_grows_exponentially():
    gateway = OracleGateway(None, retry_base_delay_s=1.0, rng=random.Random(3))
    first, second, third = (gateway.backoff_delay(n) for n in (1, 2, 3))
    assert 1.0 <= first <= 2.0
    assert 2.0 <= second <= 3.0
    assert 4.0 <= third <= 5.0
    assert OracleGateway(None, retry_base_delay_s=0.0).backoff_delay(3) == 0.0


def _route(**overrides):
    values = {
        "name": "oracle",
        "base_url": "http://oracle.test",
        "endpoint": "/v1/chat/completions",
        "model": "test-model",
        "timeout_s": 30.0,
        "api_key_env": "TEST_ORACLE_KEY",
        "response_format": "json_object",
    }
    values.update(overrides)
    return LlmRoute(**values)


def test_http_oracle_posts_chat_payload(monkeypatch):
    monkeypatch.setenv("TEST_ORACLE_KEY", "secret")
    seen = {}

    def handler(request: httpx.Request) -> httpx.Response:
        seen["url"] = str(request.url)
        seen["auth"] = request.headers.get("Authorization")
        seen["body"] = json.loads(request.content)
        return httpx.Response(200, json={"choices": [{"message": {"content": '{"answer": "ok"}'}}]})

    async def run():
        async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as client:
            oracle = HttpOracle(_route(), client=client)
            return await oracle.generate(MESSAGES, temperature=0.2, max_tokens=30, json_schema={"type": "object"})

    assert asyncio.run(run()) == '{"answer": "ok"}'
    assert seen["url"] == "http://oracle.test/v1/chat/completions"
    assert seen["auth"] == "Bearer secret"
    assert seen["body"]["model"] == "test-model"
    assert seen["body"]["response_format"] == {"type": "json_object"}
    assert seen["body"]["messages"] == MESSAGES


def test_http_oracle_omits_response_format_for_text():
    seen = {}

    def handler(request):
        seen["body"] = json.loads(request.content)
        return httpx.Response(200, json={"choices": [{"message": {"content": "hello"}}]})

    async def run():
        async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as client:
            return await HttpOracle(_route(), client=client).generate(MESSAGES, temperature=0.2, max_tokens=30)

    assert asyncio.run(run()) == "hello"
    assert "response_format" not in seen["body"]


def test_http_oracle_server_error_is_unavailable():
    def handler(request):
        return httpx.Response(503, json={"error": "busy"})

    async def run():
        async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as client:
            return await HttpOracle(_route(), client=client).generate(MESSAGES, temperature=0.2, max_tokens=30)

    with pytest.raises(OracleUnavailable):
        asyncio.run(run())


def test_http_oracle_missing_content_is_invalid():
    def handler(request):
        return httpx.Response(200, json={"choices": []})

    async def run():
        async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as client:
            return await HttpOracle(_route(), client=client).generate(MESSAGES, temperature=0.2, max_tokens=30)

    with pytest.raises(OraclePayloadInvalid):
        asyncio.run(run())


def test_to_chat_messages_maps_roles():
    messages = to_chat_messages([SystemMessage(content="s"), HumanMessage(content="h"), AIMessage(content="a")])
    assert messages == [
        {"role": "system", "content": "s"},
        {"role": "user", "content": "h"},
        {"role": "assistant", "content": "a"},
    ]
    assert to_chat_messages({"role": "user", "content": "x"}) == [{"role": "user", "content": "x"}]
    with pytest.raises(TypeError):
        to_chat_messages(42)


def test_strip_code_fences():
    assert _strip_code_fences('```json\n{"a": 1}\n```') == '{"a": 1}'
    assert _strip_code_fences('  {"a": 1} ') == '{"a": 1}'
