from __future__ import annotations

import json
import threading
from typing import Any, Callable, Dict, List, Optional, Tuple

from peptide_directory.ai.gateway import AIGatewayClient, GatewayError
from peptide_directory.config import GatewaySettings


def text_reply(content: str) -> Dict[str, Any]:
    return {"role": "assistant", "content": content}


def tool_reply(name: str, arguments: Any) -> Dict[str, Any]:
    raw = arguments if isinstance(arguments, str) else json.dumps(arguments)
    return {"role": "assistant", "tool_calls": [{"type": "function", "function": {"name": name, "arguments": raw}}]}


class FakeGateway(AIGatewayClient):
    """Gateway client answering from a queue of scripted messages (or exceptions)."""

    def __init__(self, *replies: Any, api_key: Optional[str] = "test-key") -> None:
        super().__init__(GatewaySettings(api_key=api_key))
        self.replies: List[Any] = list(replies)
        self.payloads: List[Dict[str, Any]] = []

    def _complete(self, payload: Dict[str, Any], timeout: int) -> Dict[str, Any]:
        self.payloads.append(payload)
        if not self.replies:
            raise GatewayError("no scripted reply left")
        reply = self.replies.pop(0)
        if isinstance(reply, Exception):
            raise reply
        return {"choices": [{"message": reply}]}


class FakeResponse:
    def __init__(self, status_code: int = 200, payload: Any = None, text: str = "") -> None:
        self.status_code = status_code
        self._payload = payload
        self.text = text or (json.dumps(payload) if payload is not None else "")

    def json(self) -> Any:
        if self._payload is None:
            raise ValueError("body is not JSON")
        return self._payload


class FakeSession:
    """Stands in for requests.Session; handler(url, json) builds each response."""

    def __init__(self, handler: Callable[[str, Dict[str, Any]], FakeResponse]) -> None:
        self.handler = handler
        self.calls: List[Tuple[str, Dict[str, Any]]] = []
        self._lock = threading.Lock()

    def post(self, url: str, headers: Optional[Dict[str, str]] = None, json: Any = None, timeout: Any = None) -> FakeResponse:
        with self._lock:
            self.calls.append((url, json))
        return self.handler(url, json)


class FakeScraper:
    """Scraper double for price sync: every site yields the same markdown."""

    def __init__(self, content: str = "", *, configured: bool = True, fail: bool = False) -> None:
        self.content = content
        self.configured = configured
        self.fail = fail
        self.visited: List[str] = []

    def discover_product_urls(self, website: str) -> List[str]:
        if self.fail:
            raise RuntimeError("site unreachable")
        self.visited.append(website)
        return [website, website.rstrip("/") + "/products/bpc-157"]

    def scrape_pages(self, urls: List[str]) -> str:
        return self.content
