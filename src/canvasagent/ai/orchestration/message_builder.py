"""Transcript construction for reasoning calls."""

from __future__ import annotations

import json
import logging
from typing import Any, Mapping, Sequence

from ...utils.tokens import estimate_tokens
from .types import ExecutionResult, Message, OperationCall

LOGGER = logging.getLogger(__name__)

DEFAULT_HISTORY_LIMIT = 10
_HISTORY_ROLES = frozenset({"user", "assistant", "system"})


class MessageBuilder:
    """Builds the message list sent to the reasoning service.

    Two shapes are produced. A first call replays the caller's conversation
    history before the user text. Later iterations of the same command drop
    that history and append the accumulated tool exchange instead.
    """

    def __init__(self, *, history_limit: int = DEFAULT_HISTORY_LIMIT) -> None:
        self._history_limit = history_limit

    @property
    def history_limit(self) -> int:
        return self._history_limit

    def build_transcript(
        self,
        system_context: str,
        user_text: str,
        history: Sequence[Mapping[str, Any]] | None = None,
        iteration_context: Sequence[Message] | None = None,
    ) -> list[dict[str, Any]]:
        """Return chat messages in OpenAI format.

        Args:
            system_context: System prompt including the canvas digest.
            user_text: The command text as typed by the user.
            history: Prior conversation turns from the caller.
            iteration_context: Tool exchange from earlier iterations of this command.
        """
        messages: list[Message] = [Message.system(system_context)]
        if iteration_context:
            messages.append(Message.user(user_text))
            messages.extend(iteration_context)
        else:
            messages.extend(self.sanitize_history(history or ()))
            messages.append(Message.user(user_text))
        transcript = [message.to_chat_param() for message in messages]
        LOGGER.debug(
            "Built transcript with %s message(s) (~%s tokens)",
            len(transcript),
            sum(estimate_tokens(str(item.get("content") or "")) for item in transcript),
        )
        return transcript

    def sanitize_history(self, history: Sequence[Mapping[str, Any]]) -> list[Message]:
        """Keep the last ``history_limit`` user/assistant/system turns with text."""
        window = list(history)[-self._history_limit:] if self._history_limit else list(history)
        sanitized: list[Message] = []
        for entry in window:
            role = str(entry.get("role", "user")).lower()
            if role not in _HISTORY_ROLES:
                continue
            text = str(entry.get("content") or "").strip()
            if not text:
                continue
            sanitized.append(Message(role=role, content=text))  # type: ignore[arg-type]
        return sanitized

    def iteration_messages(
        self,
        assistant_text: str,
        calls: Sequence[OperationCall],
        results: Sequence[ExecutionResult],
    ) -> list[Message]:
        """Fold one executed batch into assistant + tool messages."""
        by_call = {result.call_id: result for result in results if result.call_id}
        messages: list[Message] = [Message.assistant(assistant_text or "", [call.to_tool_call() for call in calls])]
        for call in calls:
            result = by_call.get(call.call_id)
            content = format_tool_result(result) if result is not None else f"Tool: {call.name}\nStatus: Skipped"
            messages.append(Message.tool(content, call.call_id))
        return messages


def format_tool_result(result: ExecutionResult) -> str:
    """Render one execution result as a plain-text block for the model."""

    lines = [
        f"Tool: {result.operation}",
        f"Status: {'Success' if result.success else 'Failed'}",
        f"Message: {result.message}",
    ]
    if result.data is not None:
        lines.append(f"Data: {json.dumps(result.data, indent=2, default=str)}")
    if result.created_ids:
        lines.append(f"Created IDs: {', '.join(result.created_ids)}")
    if result.modified_ids:
        lines.append(f"Modified IDs: {', '.join(result.modified_ids)}")
    if result.error:
        lines.append(f"Error: {result.error}")
    return "\n".join(lines)


def format_results_summary(results: Sequence[ExecutionResult]) -> str:
    return "\n\n---\n\n".join(format_tool_result(result) for result in results)


__all__ = ["DEFAULT_HISTORY_LIMIT", "MessageBuilder", "format_tool_result", "format_results_summary"]
