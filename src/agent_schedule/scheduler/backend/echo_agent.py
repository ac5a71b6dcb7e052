"""Local stand-in for the agent CLI used by backend and scheduler tests.

Speaks the ``stream-json`` protocol. Behaviour is driven by the prompt:

- ``ASK:<question>`` asks a question through ``AskUserQuestion``.
- ``FAIL:<message>`` reports an error result and exits 1.
- ``STDERR:<message>`` writes to stderr and exits 2 without any stdout.
- ``RAW:<text>`` prints ``text`` as a plain (non-JSON) line.
- ``SILENT`` prints nothing.
- ``SLEEP:<seconds>`` sleeps before answering.

Anything else is echoed back as the assistant reply. Sessions are tracked as
files in ``AGENT_SCHEDULE_ECHO_STATE_DIR`` so ``--resume`` of an unknown
session fails the way the real CLI does.
"""

from __future__ import annotations

import argparse
import json
import os
import sys
import time
from pathlib import Path


def main(argv: list[str] | None = None) -> int:
    """Run one fake agent invocation."""

    parser = argparse.ArgumentParser()
    parser.add_argument("-p", dest="prompt", default="")
    parser.add_argument("--resume", default=None)
    parser.add_argument("--session-id", default=None)
    parser.add_argument("--mcp-config", default=None)
    parser.add_argument("--allowedTools", default="")
    args, _ = parser.parse_known_args(argv)

    _log_invocation(sys.argv[1:] if argv is None else argv, mcp_config=args.mcp_config)

    state_dir = _state_dir()
    if args.resume:
        if state_dir is not None and not (state_dir / args.resume).exists():
            sys.stderr.write(f"No conversation found with session ID: {args.resume}\n")
            return 1
        session_id = args.resume
    else:
        session_id = args.session_id or "echo-session"
    if state_dir is not None:
        state_dir.mkdir(parents=True, exist_ok=True)
        (state_dir / session_id).write_text(args.prompt, "utf-8")

    prompt = args.prompt
    if prompt.startswith("SLEEP:"):
        head, _, rest = prompt.partition(" ")
        time.sleep(float(head.removeprefix("SLEEP:")))
        prompt = rest
    if prompt == "SILENT":
        return 0
    if prompt.startswith("STDERR:"):
        sys.stderr.write(prompt.removeprefix("STDERR:") + "\n")
        return 2
    if prompt.startswith("RAW:"):
        print(prompt.removeprefix("RAW:"), flush=True)
        return 0

    _emit({"type": "system", "subtype": "init", "session_id": session_id})
    if prompt.startswith("FAIL:"):
        _emit({"type": "result", "result": prompt.removeprefix("FAIL:"), "is_error": True})
        return 1
    if prompt.startswith("ASK:"):
        question = prompt.removeprefix("ASK:")
        _emit(_assistant({"type": "text", "text": "I need more details."}))
        _emit(
            _assistant(
                {
                    "type": "tool_use",
                    "name": "AskUserQuestion",
                    "input": {
                        "questions": [
                            {
                                "header": "Choice",
                                "question": question,
                                "options": [
                                    {"label": "Yes", "description": "Go ahead"},
                                    {"label": "No"},
                                ],
                            },
                        ],
                    },
                },
            ),
        )
        _emit({"type": "result", "result": "Waiting for your answer.", "is_error": False})
        return 0

    reply = f"Echo: {prompt}"
    _emit(_assistant({"type": "text", "text": reply}))
    _emit({"type": "result", "result": reply, "is_error": False})
    return 0


def _assistant(block: dict) -> dict:
    return {"type": "assistant", "message": {"content": [block]}}


def _emit(payload: dict) -> None:
    print(json.dumps(payload), flush=True)


def _state_dir() -> Path | None:
    raw = os.getenv("AGENT_SCHEDULE_ECHO_STATE_DIR", "").strip()
    return Path(raw) if raw else None


def _log_invocation(argv: list[str], *, mcp_config: str | None) -> None:
    raw = os.getenv("AGENT_SCHEDULE_ECHO_ARGV_LOG", "").strip()
    if not raw:
        return
    record = {"argv": argv, "mcp_config": None}
    if mcp_config:
        record["mcp_config"] = json.loads(Path(mcp_config).read_text("utf-8"))
    with Path(raw).open("a", encoding="utf-8") as handle:
        handle.write(json.dumps(record) + "\n")


if __name__ == "__main__":  # pragma: no cover
    sys.exit(main())
