from __future__ import annotations

import json
import re
from typing import Any, Dict, List, Optional

import httpx
import requests
from openai import APIConnectionError, APIStatusError, APITimeoutError, OpenAI

from ..config import GatewaySettings, load_gateway
from ..logging import get_logger
from ..paths import find_project_root

LOG = get_logger("ai-gateway")

RATE_LIMIT_MESSAGE = "Rate limit exceeded. Please try again in a moment."
CREDITS_MESSAGE = "AI credits exhausted. Please add credits to continue."


class GatewayError(Exception):
    """Completion request failed; status_code is what the API should answer with."""

    status_code = 500

    def __init__(self, message: str, *, status_code: Optional[int] = None) -> None:
        super().__init__(message)
        if status_code is not None:
            self.status_code = status_code


class GatewayNotConfiguredError(GatewayError):
    def __init__(self, message: str = "AI service not configured") -> None:
        super().__init__(message)


class GatewayRateLimitError(GatewayError):
    status_code = 429

    def __init__(self, message: str = RATE_LIMIT_MESSAGE) -> None:
        super().__init__(message)


class GatewayCreditsError(GatewayError):
    status_code = 402

    def __init__(self, message: str = CREDITS_MESSAGE) -> None:
        super().__init__(message)


class ToolArgumentsError(GatewayError):
    """The model called the tool but its arguments were not valid JSON."""


def _raise_for_status(status: int, body_preview: str) -> None:
    if status < 400:
        return
    LOG.error("AI gateway HTTP %s: %s", status, body_preview[:500])
    if status == 429:
        raise GatewayRateLimitError()
    if status == 402:
        raise GatewayCreditsError()
    raise GatewayError(f"AI gateway error: {status}")


def function_tool(name: str, description: str, parameters: Dict[str, Any]) -> Dict[str, Any]:
    """Wrap a JSON schema as an OpenAI-style function tool."""
    return {
        "type": "function",
        "function": {"name": name, "description": description, "parameters": parameters},
    }


def scavenge_json(text: str) -> Optional[Any]:
    """Parse JSON from a model reply: whole text, fenced block, then outermost braces."""
    if not text:
        return None
    try:
        return json.loads(text)
    except ValueError:
        pass

    candidates: List[str] = []
    fenced = re.search(r"```(?:json)?\s*(.*?)```", text, re.DOTALL)
    if fenced and fenced.group(1):
        candidates.append(fenced.group(1).strip())
    start, end = text.find("{"), text.rfind("}")
    if start != -1 and end > start:
        candidates.append(text[start : end + 1])

    for candidate in candidates:
        try:
            return json.loads(candidate)
        except ValueError:
            continue
    return None


class AIGatewayClient:
    """OpenAI-compatible chat-completions client with tool-call helpers.

    The default transport posts JSON with requests; AI_BACKEND=openai sends
    the same payload through the OpenAI SDK instead.
    """

    def __init__(self, settings: GatewaySettings, *, session: Optional[requests.Session] = None) -> None:
        self.settings = settings
        self.session = session or requests.Session()
        self._sdk: Optional[OpenAI] = None

    @classmethod
    def from_env(cls, root_dir: Optional[str] = None) -> "AIGatewayClient":
        return cls(load_gateway(find_project_root(root_dir)))

    @property
    def configured(self) -> bool:
        return bool(self.settings.api_key)

    # ---- transports ----------------------------------------------------------
    def _complete(self, payload: Dict[str, Any], timeout: int) -> Dict[str, Any]:
        if self.settings.backend == "openai":
            return self._complete_sdk(payload, timeout)
        headers = {
            "Authorization": f"Bearer {self.settings.api_key}",
            "Content-Type": "application/json",
        }
        try:
            resp = self.session.post(self.settings.url, headers=headers, json=payload, timeout=timeout)
        except requests.RequestException as exc:
            LOG.error("AI gateway request failed: %s", exc)
            raise GatewayError(f"AI gateway request failed: {exc}") from exc
        _raise_for_status(resp.status_code, resp.text or "")
        try:
            return resp.json()
        except ValueError as exc:
            raise GatewayError("AI gateway returned a non-JSON body") from exc

    def _sdk_client(self) -> OpenAI:
        if self._sdk is None:
            base_url = self.settings.url
            if base_url.endswith("/chat/completions"):
                base_url = base_url[: -len("/chat/completions")]
            http_client = httpx.Client(
                timeout=httpx.Timeout(connect=10.0, read=float(self.settings.timeout_seconds), write=30.0, pool=10.0),
                limits=httpx.Limits(max_keepalive_connections=10, max_connections=20),
            )
            self._sdk = OpenAI(
                api_key=self.settings.api_key,
                base_url=base_url,
                http_client=http_client,
                max_retries=0,
            )
        return self._sdk

    def _complete_sdk(self, payload: Dict[str, Any], timeout: int) -> Dict[str, Any]:
        try:
            resp = self._sdk_client().chat.completions.create(**payload, timeout=timeout)
        except (APIConnectionError, APITimeoutError) as exc:
            LOG.error("Network/timeout while calling the AI endpoint: %s", exc)
            raise GatewayError(f"AI gateway request failed: {exc}") from exc
        except APIStatusError as exc:
            body = getattr(getattr(exc, "response", None), "text", None) or ""
            _raise_for_status(exc.status_code, body)
            raise
        return resp.model_dump()

    # ---- requests ------------------------------------------------------------
    def chat(
        self,
        messages: List[Dict[str, Any]],
        *,
        model: Optional[str] = None,
        temperature: Optional[float] = None,
        max_tokens: Optional[int] = None,
        tools: Optional[List[Dict[str, Any]]] = None,
        tool_choice: Optional[Dict[str, Any]] = None,
        response_format: Optional[Dict[str, Any]] = None,
        timeout: Optional[int] = None,
    ) -> Dict[str, Any]:
        """Send a completion and return the first choice's message dict."""
        if not self.configured:
            raise GatewayNotConfiguredError()
        payload: Dict[str, Any] = {"model": model or self.settings.model, "messages": messages}
        if temperature is not None:
            payload["temperature"] = temperature
        if max_tokens is not None:
            payload["max_tokens"] = max_tokens
        if tools:
            payload["tools"] = tools
        if tool_choice:
            payload["tool_choice"] = tool_choice
        if response_format:
            payload["response_format"] = response_format

        body = self._complete(payload, timeout or self.settings.timeout_seconds)
        choices = body.get("choices") or []
        if not choices:
            LOG.error("AI gateway returned no choices: %s", str(body)[:500])
            raise GatewayError("AI gateway returned no choices")
        return choices[0].get("message") or {}

    def text(self, messages: List[Dict[str, Any]], **kwargs: Any) -> str:
        message = self.chat(messages, **kwargs)
        return (message.get("content") or "").strip()

    def json_request(self, messages: List[Dict[str, Any]], **kwargs: Any) -> Optional[Any]:
        text = self.text(messages, **kwargs)
        data = scavenge_json(text)
        if data is None:
            LOG.debug("JSON parse failed for model reply (first 500 chars: %r)", text[:500])
        return data

    def tool_call(
        self,
        messages: List[Dict[str, Any]],
        tool: Dict[str, Any],
        **kwargs: Any,
    ) -> Optional[Dict[str, Any]]:
        """Force the given tool; return its parsed arguments or None if it was not called."""
        name = tool["function"]["name"]
        message = self.chat(
            messages,
            tools=[tool],
            tool_choice={"type": "function", "function": {"name": name}},
            **kwargs,
        )
        for call in message.get("tool_calls") or []:
            function = call.get("function") or {}
            if function.get("name") != name:
                continue
            arguments = function.get("arguments")
            if isinstance(arguments, dict):
                return arguments
            try:
                return json.loads(arguments or "{}")
            except ValueError as exc:
                LOG.error("Tool %s returned unparseable arguments: %r", name, str(arguments)[:300])
                raise ToolArgumentsError("Parse error") from exc
        LOG.info("Model did not call tool %s", name)
        return None
