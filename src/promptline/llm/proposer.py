from __future__ import annotations

import json
import re
from dataclasses import dataclass
from typing import Any, Callable, Protocol, Sequence

from ..compaction.summarizer import SUMMARY_PREFIX
from ..errors import ProviderError, PromptLineError
from ..session.models import Action, ActionProposal, AgentStep, Finish, Observation, Proposal, Thought
from ..tools.registry import ToolRegistry
from .models import AssistantTurn

SYSTEM_PROMPT = """You are promptline, a local coding agent working in the user's current directory.
Rules:
- Use the provided tools to inspect files and run commands when needed.
- Call exactly one tool per turn and wait for its result.
- Prefer: list/glob/search/read before editing files.
- Do not fabricate file contents or command outputs: use tools.
- Some calls need the user's permission. A result starting with [permission_denied]
  means the user refused; choose another approach or stop.
- If your API does not support native tool calls, reply with a single JSON object
  {"tool": "<name>", "args": {...}}.
- When the task is complete, reply with a short summary and no tool call, ending with FINISH.
"""

FINISH_MARKER = "FINISH"

_FINISH_TAIL = re.compile(r"\s*\bFINISH\W*\s*$")


class ChatClient(Protocol):
    def chat(
        self,
        messages: list[dict[str, Any]],
        tools: list[dict[str, Any]] | None = None,
        *,
        stream: bool = False,
        on_token: Callable[[str], None] | None = None,
    ) -> AssistantTurn: ...


def _tool_specs_to_openai(registry: ToolRegistry) -> list[dict]:
    out = []
    for spec in registry.list_specs():
        out.append({
            "type": "function",
            "function": {
                "name": spec.name,
                "description": spec.description,
                "parameters": spec.parameters,
            },
        })
    return out


def _tool_catalog(registry: ToolRegistry) -> str:
    lines = ["Available tools:"]
    for spec in registry.list_specs():
        lines.append(f"- {spec.name}: {spec.description}")
    return "\n".join(lines)


def render_messages(steps: Sequence[AgentStep], system_prompt: str) -> list[dict]:
    """Memory -> OpenAI chat messages.

    A Thought directly before an Action becomes the content of that Action's
    assistant message. Observations tied to a call become `tool` messages;
    the rest (user input, provider or protocol errors) are user messages.
    """
    messages: list[dict] = [{"role": "system", "content": system_prompt}]
    pending_text: str | None = None

    def flush_text() -> None:
        nonlocal pending_text
        if pending_text is not None:
            messages.append({"role": "assistant", "content": pending_text})
            pending_text = None

    for step in steps:
        if isinstance(step, Thought):
            flush_text()
            if step.text.startswith(SUMMARY_PREFIX):
                messages.append({"role": "user", "content": step.text})
            else:
                pending_text = step.text
        elif isinstance(step, Action):
            call = step.call
            messages.append({
                "role": "assistant",
                "content": pending_text or "",
                "tool_calls": [{
                    "id": call.call_id,
                    "type": "function",
                    "function": {"name": call.tool_name, "arguments": json.dumps(dict(call.arguments), ensure_ascii=False)},
                }],
            })
            pending_text = None
        elif isinstance(step, Observation):
            flush_text()
            if step.call_id is not None:
                messages.append({"role": "tool", "tool_call_id": step.call_id, "content": step.text})
            elif step.ok:
                messages.append({"role": "user", "content": step.payload})
            else:
                messages.append({"role": "user", "content": f"Error: {step.text}"})
    flush_text()
    return _clean_invalid_tool_dict_messages(messages)


def _clean_invalid_tool_dict_messages(messages: list[dict]) -> list[dict]:
    """Drop tool messages without a matching assistant tool_calls message before
    them, and tool_calls that never got an answer."""
    cleaned: list[dict] = []
    for m in messages:
        if m.get("role") == "tool":
            if not cleaned:
                continue
            prev = cleaned[-1]
            ids = [tc.get("id") for tc in prev.get("tool_calls") or []]
            if prev.get("role") != "assistant" or m.get("tool_call_id") not in ids:
                continue
        cleaned.append(m)

    out: list[dict] = []
    for i, m in enumerate(cleaned):
        if m.get("tool_calls"):
            nxt = cleaned[i + 1] if i + 1 < len(cleaned) else None
            if nxt is None or nxt.get("role") != "tool":
                if m.get("content"):
                    out.append({"role": "assistant", "content": m["content"]})
                continue
        out.append(m)
    return out


def find_json_call(text: str) -> tuple[dict, str] | None:
    """First `{"tool": ..., "args": ...}` object embedded in text, with the text before it."""
    decoder = json.JSONDecoder()
    for m in re.finditer(r"\{", text):
        try:
            obj, _ = decoder.raw_decode(text, m.start())
        except json.JSONDecodeError:
            continue
        if isinstance(obj, dict) and isinstance(obj.get("tool"), str):
            before = text[: m.start()].rstrip().removesuffix("```json").removesuffix("```").strip()
            return obj, before
    return None


def strip_finish(text: str) -> str:
    return _FINISH_TAIL.sub("", text or "").strip()


@dataclass
class ChatModelProvider:
    """Adapts a chat-completions client to propose(memory) -> Proposal."""

    client: ChatClient
    registry: ToolRegistry
    extra_instructions: str | None = None
    stream: bool = False
    on_token: Callable[[str], None] | None = None

    def system_prompt(self) -> str:
        parts = [SYSTEM_PROMPT, _tool_catalog(self.registry)]
        if self.extra_instructions:
            parts.append(self.extra_instructions.strip())
        return "\n\n".join(parts)

    def propose(self, memory: Sequence[AgentStep]) -> Proposal:
        messages = render_messages(memory, self.system_prompt())
        try:
            turn = self.client.chat(
                messages,
                tools=_tool_specs_to_openai(self.registry),
                stream=self.stream,
                on_token=self.on_token,
            )
        except PromptLineError:
            raise
        except Exception as e:
            raise ProviderError(f"Chat request failed: {e}") from e
        return self.parse_turn(turn)

    def parse_turn(self, turn: AssistantTurn) -> Proposal:
        text = (turn.text or "").strip()
        if turn.tool_calls:
            tc = turn.tool_calls[0]
            call = self.registry.make_call(tc.name, tc.arguments, call_id=tc.id or None)
            return ActionProposal(call=call, thought=text or None)

        found = find_json_call(text)
        if found is not None:
            obj, before = found
            call = self.registry.make_call(obj["tool"], obj.get("args", obj.get("arguments", {})))
            return ActionProposal(call=call, thought=before or None)

        if not text and not turn.reasoning_content:
            raise ProviderError("Model returned an empty response.")
        return Finish(summary=strip_finish(text))
