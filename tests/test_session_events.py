from __future__ import annotations

import json
from pathlib import Path

from promptline.errors import ErrorKind
from promptline.events.store import EventStore, summarize_events
from promptline.session.models import Action, Observation, Thought, ToolCall
from promptline.session.store import INTERRUPTED_MESSAGE, SessionStore


def test_session_round_trip(tmp_path: Path) -> None:
    s = SessionStore.open(directory=tmp_path)
    call = ToolCall("read_file", {"path": "a.py"})
    s.extend([Thought("look at a.py"), Action(call), Observation.success(call.call_id, "print(1)")])

    again = SessionStore.open(s.session_id, directory=tmp_path)
    assert again.steps == s.steps
    assert again.steps[1].call.arguments["path"] == "a.py"


def test_dangling_action_is_closed_not_rerun(tmp_path: Path) -> None:
    s = SessionStore.open("crashed", directory=tmp_path)
    call = ToolCall("shell_execute", {"command": "make deploy"})
    s.append(Action(call))

    reopened = SessionStore.open("crashed", directory=tmp_path)
    last = reopened.steps[-1]
    assert isinstance(last, Observation)
    assert last.call_id == call.call_id
    assert last.error_kind is ErrorKind.TOOL_EXECUTION_ERROR
    assert last.message == INTERRUPTED_MESSAGE
    # The closing observation is persisted, so a second reopen adds nothing.
    assert len(SessionStore.open("crashed", directory=tmp_path).steps) == 2


def test_corrupt_lines_are_skipped(tmp_path: Path) -> None:
    path = tmp_path / "broken.jsonl"
    path.write_text(
        "\n".join([
            json.dumps(Thought("first").to_dict()),
            "{ not json",
            json.dumps({"type": "mystery"}),
            json.dumps(Thought("second").to_dict()),
            '{"type": "thought", "te',
        ]) + "\n",
        encoding="utf-8",
    )
    s = SessionStore.open("broken", directory=tmp_path)
    assert s.steps == [Thought("first"), Thought("second")]


def test_event_store_and_summary(tmp_path: Path) -> None:
    ev = EventStore.open("sess", directory=tmp_path)
    assert list(ev.iter_events()) == []

    ev.append("llm.request", {"turn": 1})
    ev.append("llm.response", {"elapsed_ms": 100})
    ev.append("llm.request", {"turn": 2})
    ev.append("llm.response", {"elapsed_ms": 300})
    ev.append("permission.ask", {"tool": "shell_execute"})
    ev.append("tool.call", {"tool": "shell_execute"})
    ev.append("tool.result", {"tool": "shell_execute", "ok": False, "elapsed_ms": 50})
    ev.append("tool.call", {"tool": "read_file"})
    ev.append("tool.result", {"tool": "read_file", "ok": True, "elapsed_ms": 10})
    ev.append("tool.call", {"tool": "read_file"})
    ev.append("tool.denied", {"tool": "delete_file"})
    ev.append("loop.terminated", {"reason": "finished"})
    with ev.path.open("a", encoding="utf-8") as f:
        f.write("garbage\n")

    events = list(ev.iter_events())
    assert len(events) == 12
    assert events[0].type == "llm.request" and events[0].data == {"turn": 1}

    stats = summarize_events(events)
    assert stats.llm_requests == 2
    assert stats.llm_avg_ms == 200
    assert stats.tool_calls == 3
    assert stats.tool_failures == 1
    assert stats.tool_denied == 1
    assert stats.prompts == 1
    assert stats.tool_avg_ms == 30
    assert stats.top_tools[0] == ("read_file", 2)
    assert stats.terminations == ["finished"]
