from __future__ import annotations

import json
import urllib.error
import urllib.request
from dataclasses import dataclass
from typing import Any, Callable, Iterable

from ..errors import ProviderError
from .models import AssistantTurn, ChatToolCall


def _parse_args(arg_str: Any) -> Any:
    """Decode tool arguments; leave undecodable strings for the validator to reject."""
    if not isinstance(arg_str, str):
        return arg_str if arg_str is not None else {}
    if not arg_str.strip():
        return {}
    try:
        return json.loads(arg_str)
    except json.JSONDecodeError:
        return arg_str


def parse_completion(obj: dict[str, Any]) -> AssistantTurn:
    msg = obj["choices"][0]["message"]
    turn = AssistantTurn(text=msg.get("content") or "", reasoning_content=msg.get("reasoning_content"))
    for tc in msg.get("tool_calls") or []:
        fn = tc.get("function") or {}
        turn.tool_calls.append(
            ChatToolCall(id=str(tc.get("id") or ""), name=str(fn.get("name") or ""), arguments=_parse_args(fn.get("arguments")))
        )
    return turn


def parse_sse_stream(lines: Iterable[bytes], on_token: Callable[[str], None] | None = None) -> AssistantTurn:
    """Accumulate an OpenAI-style SSE stream (`data: {...}` ... `data: [DONE]`)."""
    text_parts: list[str] = []
    reasoning_parts: list[str] = []
    # tool_calls arrive as deltas keyed by index; arguments are string fragments.
    partial: dict[int, dict[str, str]] = {}

    for raw in lines:
        line = raw.decode("utf-8", errors="replace").strip()
        if not line.startswith("data:"):
            continue
        data = line[len("data:"):].strip()
        if data == "[DONE]":
            break
        try:
            ev = json.loads(data)
        except json.JSONDecodeError:
            continue
        choices = ev.get("choices") or []
        if not choices:
            continue
        delta = choices[0].get("delta") or {}
        if delta.get("content"):
            chunk = str(delta["content"])
            text_parts.append(chunk)
            if on_token:
                on_token(chunk)
        if delta.get("reasoning_content"):
            reasoning_parts.append(str(delta["reasoning_content"]))
        for tc in delta.get("tool_calls") or []:
            cur = partial.setdefault(int(tc.get("index", 0)), {"id": "", "name": "", "arguments": ""})
            fn = tc.get("function") or {}
            cur["id"] = tc.get("id") or cur["id"]
            cur["name"] = fn.get("name") or cur["name"]
            cur["arguments"] += str(fn.get("arguments") or "")

    turn = AssistantTurn(
        text="".join(text_parts),
        reasoning_content="".join(reasoning_parts) if reasoning_parts else None,
    )
    for idx in sorted(partial):
        tc = partial[idx]
        turn.tool_calls.append(ChatToolCall(id=tc["id"], name=tc["name"], arguments=_parse_args(tc["arguments"])))
    return turn


@dataclass
class OpenAICompatClient:
    """
    Minimal OpenAI-compatible Chat Completions client.
    Works with OpenAI and many compatible gateways (OpenRouter, vLLM, Ollama, LM Studio, etc.)
    """
    model: str
    base_url: str
    api_key: str
    provider_name: str = "openai"
    timeout: float = 120.0
    temperature: float = 0.2

    def chat(
        self,
        messages: list[dict[str, Any]],
        tools: list[dict[str, Any]] | None = None,
        *,
        stream: bool = False,
        on_token: Callable[[str], None] | None = None,
    ) -> AssistantTurn:
        if not self.api_key:
            raise ProviderError(
                "Missing API key. Set PROMPTLINE_API_KEY in the provider registry, "
                "optionally as a ${VAR} placeholder resolved from the environment."
            )

        payload: dict[str, Any] = {
            "model": self.model,
            "messages": messages,
            "temperature": self.temperature,
        }
        if stream:
            payload["stream"] = True
        if tools:
            payload["tools"] = tools
            payload["tool_choice"] = "auto"

        req = urllib.request.Request(
            self.base_url.rstrip("/") + "/chat/completions",
            data=json.dumps(payload).encode("utf-8"),
            headers={"Content-Type": "application/json", "Authorization": f"Bearer {self.api_key}"},
            method="POST",
        )
        try:
            with urllib.request.urlopen(req, timeout=self.timeout) as resp:
                if stream:
                    return parse_sse_stream(resp, on_token)
                raw = resp.read().decode("utf-8", errors="replace")
            return parse_completion(json.loads(raw))
        except urllib.error.HTTPError as e:
            body = e.read().decode("utf-8", errors="replace") if hasattr(e, "read") else ""
            raise ProviderError(f"Provider HTTPError {e.code}: {e.reason}\n{body}") from e
        except urllib.error.URLError as e:
            raise ProviderError(f"Provider URLError: {e}") from e
        except OSError as e:
            raise ProviderError(f"Provider connection failed: {e}") from e
        except (KeyError, IndexError, TypeError, ValueError) as e:
            raise ProviderError(f"Malformed provider response: {e}") from e
