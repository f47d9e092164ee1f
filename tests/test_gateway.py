from __future__ import annotations

from typing import Any, Dict

import pytest

from fakes import FakeGateway, FakeResponse, FakeSession, text_reply, tool_reply
from peptide_directory.ai.gateway import (
    AIGatewayClient,
    GatewayCreditsError,
    GatewayError,
    GatewayNotConfiguredError,
    GatewayRateLimitError,
    ToolArgumentsError,
    function_tool,
    scavenge_json,
)
from peptide_directory.config import GatewaySettings

ECHO_TOOL = function_tool("echo", "Echo a value", {"type": "object", "properties": {"value": {"type": "string"}}})


def _client(status: int, payload: Any = None, text: str = "") -> AIGatewayClient:
    session = FakeSession(lambda url, body: FakeResponse(status, payload, text))
    return AIGatewayClient(GatewaySettings(api_key="k", url="https://gateway.test/v1/chat/completions"), session=session)


def test_http_status_mapping() -> None:
    with pytest.raises(GatewayRateLimitError) as rate:
        _client(429, text="slow down").text([{"role": "user", "content": "hi"}])
    assert rate.value.status_code == 429

    with pytest.raises(GatewayCreditsError) as credits:
        _client(402, text="pay up").text([{"role": "user", "content": "hi"}])
    assert credits.value.status_code == 402

    with pytest.raises(GatewayError, match="AI gateway error: 503"):
        _client(503, text="down").text([{"role": "user", "content": "hi"}])


def test_payload_and_reply_through_requests_transport() -> None:
    body: Dict[str, Any] = {"choices": [{"message": {"role": "assistant", "content": "  hello  "}}]}
    client = _client(200, body)
    reply = client.text(
        [{"role": "user", "content": "hi"}],
        temperature=0.2,
        response_format={"type": "json_object"},
    )
    assert reply == "hello"
    url, sent = client.session.calls[0]
    assert url == "https://gateway.test/v1/chat/completions"
    assert sent["temperature"] == 0.2
    assert sent["response_format"] == {"type": "json_object"}
    assert "tools" not in sent


def test_no_choices_is_an_error() -> None:
    with pytest.raises(GatewayError, match="no choices"):
        _client(200, {"choices": []}).chat([{"role": "user", "content": "hi"}])


def test_missing_key_is_not_configured() -> None:
    gateway = FakeGateway(text_reply("unused"), api_key=None)
    assert not gateway.configured
    with pytest.raises(GatewayNotConfiguredError, match="AI service not configured"):
        gateway.chat([{"role": "user", "content": "hi"}])
    assert gateway.payloads == []


def test_scavenge_json_variants() -> None:
    assert scavenge_json('{"a": 1}') == {"a": 1}
    assert scavenge_json('Here you go:\n```json\n{"a": 2}\n```') == {"a": 2}
    assert scavenge_json('Sure! {"a": 3} hope that helps') == {"a": 3}
    assert scavenge_json("no json here") is None
    assert scavenge_json("") is None


def test_tool_call_forces_the_tool() -> None:
    gateway = FakeGateway(tool_reply("echo", {"value": "x"}))
    assert gateway.tool_call([{"role": "user", "content": "go"}], ECHO_TOOL) == {"value": "x"}
    payload = gateway.payloads[0]
    assert payload["tool_choice"] == {"type": "function", "function": {"name": "echo"}}
    assert payload["tools"] == [ECHO_TOOL]


def test_tool_call_other_tool_or_plain_text_returns_none() -> None:
    gateway = FakeGateway(tool_reply("other", {"value": "x"}), text_reply("I refuse"))
    assert gateway.tool_call([{"role": "user", "content": "go"}], ECHO_TOOL) is None
    assert gateway.tool_call([{"role": "user", "content": "go"}], ECHO_TOOL) is None


def test_tool_call_bad_arguments_raise() -> None:
    gateway = FakeGateway(tool_reply("echo", "{not json"))
    with pytest.raises(ToolArgumentsError):
        gateway.tool_call([{"role": "user", "content": "go"}], ECHO_TOOL)


def test_json_request_parses_fenced_reply() -> None:
    gateway = FakeGateway(text_reply('```json\n{"keyword": "bpc-157 stability"}\n```'))
    assert gateway.json_request([{"role": "user", "content": "topic"}]) == {"keyword": "bpc-157 stability"}
