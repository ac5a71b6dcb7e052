"""Typed view over the agent's ``stream-json`` output lines.

Each stdout line is one JSON envelope. Only two envelope types carry
information the scheduler needs: ``assistant`` (ordered content blocks) and
``result`` (final summary plus an error flag). Everything else, including
well-formed envelopes of unknown type, becomes an :class:`IgnoredEvent`.
Lines that are not JSON objects parse to ``None`` and are skipped by callers.
"""

from __future__ import annotations

import json
from collections.abc import Iterable, Iterator
from dataclasses import dataclass, field
from typing import Any

QUESTION_TOOL_NAME = "AskUserQuestion"


@dataclass(slots=True, frozen=True)
class TextBlock:
    text: str


@dataclass(slots=True, frozen=True)
class ToolUseBlock:
    name: str
    tool_input: Any = None


@dataclass(slots=True, frozen=True)
class ToolResultBlock:
    text: str


ContentBlock = TextBlock | ToolUseBlock | ToolResultBlock


@dataclass(slots=True, frozen=True)
class AssistantEvent:
    blocks: tuple[ContentBlock, ...] = ()


@dataclass(slots=True, frozen=True)
class ResultEvent:
    result: str
    is_error: bool = False


@dataclass(slots=True, frozen=True)
class IgnoredEvent:
    event_type: str


StreamEvent = AssistantEvent | ResultEvent | IgnoredEvent


@dataclass(slots=True, frozen=True)
class QuestionOption:
    label: str
    description: str = ""


@dataclass(slots=True, frozen=True)
class QuestionItem:
    question: str
    header: str = ""
    options: tuple[QuestionOption, ...] = field(default_factory=tuple)


def parse_event(line: str) -> StreamEvent | None:
    """Parse one stdout line; ``None`` for blank or malformed input."""

    stripped = line.strip()
    if not stripped:
        return None
    try:
        raw = json.loads(stripped)
    except json.JSONDecodeError:
        return None
    if not isinstance(raw, dict):
        return None

    event_type = raw.get("type")
    if not isinstance(event_type, str):
        return None

    if event_type == "assistant":
        return _parse_assistant(raw)
    if event_type == "result":
        result = raw.get("result")
        if result is not None and not isinstance(result, str):
            return None
        return ResultEvent(result=result or "", is_error=raw.get("is_error") is True)
    return IgnoredEvent(event_type=event_type)


def iter_events(lines: Iterable[str] | None) -> Iterator[StreamEvent]:
    """Yield parsed events, silently dropping malformed lines."""

    for line in lines or ():
        event = parse_event(line)
        if event is not None:
            yield event


def parse_question_items(tool_input: Any) -> tuple[QuestionItem, ...] | None:
    """Validate ``AskUserQuestion`` input; ``None`` unless it holds at least one question."""

    if not isinstance(tool_input, dict):
        return None
    raw_questions = tool_input.get("questions")
    if not isinstance(raw_questions, list) or not raw_questions:
        return None

    items: list[QuestionItem] = []
    for raw_item in raw_questions:
        if not isinstance(raw_item, dict):
            return None
        question = raw_item.get("question", "")
        header = raw_item.get("header", "")
        raw_options = raw_item.get("options") or []
        if not isinstance(question, str) or not isinstance(header, str):
            return None
        if not isinstance(raw_options, list):
            return None
        options: list[QuestionOption] = []
        for raw_option in raw_options:
            if not isinstance(raw_option, dict):
                return None
            label = raw_option.get("label", "")
            description = raw_option.get("description", "")
            if not isinstance(label, str) or not isinstance(description, str):
                return None
            options.append(QuestionOption(label=label, description=description))
        items.append(QuestionItem(question=question, header=header, options=tuple(options)))
    return tuple(items)


def _parse_assistant(raw: dict[str, Any]) -> StreamEvent | None:
    message = raw.get("message")
    if message is None:
        return AssistantEvent()
    if not isinstance(message, dict):
        return None
    content = message.get("content") or []
    if not isinstance(content, list):
        return None

    blocks: list[ContentBlock] = []
    for item in content:
        block = _parse_block(item)
        if block is not None:
            blocks.append(block)
    return AssistantEvent(blocks=tuple(blocks))


def _parse_block(item: Any) -> ContentBlock | None:
    if not isinstance(item, dict):
        return None
    block_type = item.get("type")
    if block_type == "text":
        text = item.get("text")
        return TextBlock(text=text) if isinstance(text, str) else None
    if block_type == "tool_use":
        name = item.get("name")
        if not isinstance(name, str):
            return None
        return ToolUseBlock(name=name, tool_input=item.get("input"))
    if block_type == "tool_result":
        text = item.get("text")
        if not isinstance(text, str):
            content = item.get("content")
            text = content if isinstance(content, str) else ""
        return ToolResultBlock(text=text)
    return None
