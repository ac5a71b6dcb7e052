"""Render agent stream events into an HTML transcript for the job output."""

from __future__ import annotations

import html
import json
from collections.abc import Iterable
from typing import Any

from agent_schedule.scheduler.backend.stream_events import (
    QUESTION_TOOL_NAME,
    AssistantEvent,
    QuestionItem,
    ResultEvent,
    TextBlock,
    ToolResultBlock,
    ToolUseBlock,
    iter_events,
    parse_question_items,
)

_NOTE_OPEN = (
    '<div style="margin:8px 0;padding:8px 12px;border-left:3px solid #22d3ee;'
    'background:#0f172a;border-radius:4px;color:#e2e8f0;font-size:13px;line-height:1.5">'
)
_DETAILS_OPEN = (
    '<details style="margin:8px 0;border:1px solid #374151;border-radius:6px;overflow:hidden">'
)
_SUMMARY_STYLE = (
    "cursor:pointer;padding:6px 10px;background:#1e293b;font-size:13px;font-weight:600"
)
_PRE_OPEN = (
    '<pre style="margin:0;padding:8px 10px;background:#0f172a;color:#94a3b8;'
    'font-size:12px;overflow-x:auto;white-space:pre-wrap">'
)
_QUESTION_OPEN = (
    '<div style="margin:8px 0;padding:12px 16px;border:1px solid #f59e0b;border-radius:6px;'
    'background:#1c1917;color:#e2e8f0;font-size:13px;line-height:1.5">'
)
_QUESTION_HEADER_OPEN = (
    '<div style="color:#f59e0b;font-weight:700;font-size:11px;text-transform:uppercase;'
    'letter-spacing:0.05em;margin-bottom:6px">'
)
_OPTION_OPEN = (
    '<div style="margin:4px 0;padding:6px 10px;border:1px solid #374151;'
    'border-radius:4px;background:#0f172a">'
)
_FINAL_SUMMARY_OPEN = (
    '<hr style="border-color:#374151;margin:16px 0">'
    '<div style="margin:8px 0;padding:10px 12px;border-left:3px solid #34d399;'
    'background:#0f172a;border-radius:4px;color:#e2e8f0;font-size:13px;line-height:1.5">'
    '<strong style="color:#34d399">Summary</strong><br>'
)


class TranscriptBuilder:
    """Accumulates rendered blocks in stream order."""

    def __init__(self) -> None:
        self._parts: list[str] = []

    def build(self) -> str:
        return "".join(self._parts).strip()

    def add_event(self, event: AssistantEvent) -> None:
        for block in event.blocks:
            if isinstance(block, TextBlock):
                self.add_text(block.text)
            elif isinstance(block, ToolUseBlock):
                self.add_tool_use(block.name, block.tool_input)
            elif isinstance(block, ToolResultBlock):
                self.add_tool_result(block.text)

    def add_text(self, text: str) -> None:
        text = text.strip()
        if not text:
            return
        self._parts.append(f"{_NOTE_OPEN}{_escape(text)}</div>\n\n")

    def add_tool_use(self, name: str, tool_input: Any) -> None:
        if name == QUESTION_TOOL_NAME:
            questions = parse_question_items(tool_input)
            if questions:
                self.add_questions(questions)
                return

        parts = [
            _DETAILS_OPEN,
            f'<summary style="{_SUMMARY_STYLE};color:#60a5fa">Tool: {_escape(name)}</summary>',
        ]
        if tool_input is not None:
            parts.append(f"{_PRE_OPEN}{_escape(_pretty_json(tool_input))}</pre>")
        parts.append("</details>\n\n")
        self._parts.append("".join(parts))

    def add_questions(self, questions: Iterable[QuestionItem]) -> None:
        for item in questions:
            parts = [
                _QUESTION_OPEN,
                f"{_QUESTION_HEADER_OPEN}{_escape(item.header or 'Question')}</div>",
                f'<div style="margin-bottom:10px;font-size:14px">{_escape(item.question)}</div>',
            ]
            for option in item.options:
                parts.append(_OPTION_OPEN)
                parts.append(
                    f'<span style="color:#fbbf24;font-weight:600">{_escape(option.label)}</span>',
                )
                if option.description:
                    parts.append(
                        ' <span style="color:#94a3b8;font-size:12px">'
                        f"- {_escape(option.description)}</span>",
                    )
                parts.append("</div>")
            parts.append("</div>\n\n")
            self._parts.append("".join(parts))

    def add_tool_result(self, text: str) -> None:
        if not text:
            return
        self._parts.append(
            f'{_DETAILS_OPEN}<summary style="{_SUMMARY_STYLE};color:#a78bfa">Result</summary>'
            f"{_PRE_OPEN}{_escape(text)}</pre></details>\n\n",
        )

    def add_summary(self, text: str) -> None:
        text = text.strip()
        if not text:
            return
        self._parts.append(f"{_FINAL_SUMMARY_OPEN}{_escape(text)}</div>\n")


def build_transcript(lines: Iterable[str] | None) -> str:
    """Build the rendered transcript for one invocation's stdout lines.

    The last ``result`` text is appended as a trailing summary only when the
    transcript does not already contain it, since the agent usually closes by
    echoing its final assistant message.
    """

    builder = TranscriptBuilder()
    last_result = ""
    for event in iter_events(lines):
        if isinstance(event, AssistantEvent):
            builder.add_event(event)
        elif isinstance(event, ResultEvent):
            last_result = event.result

    summary = last_result.strip()
    if summary and _escape(summary) not in builder.build():
        builder.add_summary(summary)
    return builder.build()


def detect_question(lines: Iterable[str] | None) -> str:
    """Return the JSON input of the last valid question-tool call, or ``""``."""

    last_question = ""
    for event in iter_events(lines):
        if not isinstance(event, AssistantEvent):
            continue
        for block in event.blocks:
            if not isinstance(block, ToolUseBlock) or block.name != QUESTION_TOOL_NAME:
                continue
            if parse_question_items(block.tool_input):
                last_question = json.dumps(
                    block.tool_input,
                    ensure_ascii=False,
                    separators=(",", ":"),
                )
    return last_question


def extract_error(lines: Iterable[str] | None) -> str:
    """Find a human-readable failure message in the stream.

    A flagged ``result`` event wins; otherwise the first assistant text.
    """

    fallback = ""
    for event in iter_events(lines):
        if isinstance(event, ResultEvent):
            if event.is_error and event.result:
                return event.result
            continue
        if fallback or not isinstance(event, AssistantEvent):
            continue
        for block in event.blocks:
            if isinstance(block, TextBlock) and block.text:
                fallback = block.text
                break
    return fallback


def _pretty_json(value: Any) -> str:
    return json.dumps(value, ensure_ascii=False, indent=2, sort_keys=True)


def _escape(text: str) -> str:
    return html.escape(text, quote=False)
