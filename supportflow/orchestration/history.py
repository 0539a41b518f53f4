"""Conversions from stored messages to model-facing history and transcripts."""

import json

from supportflow.domain import Message, MessageType
from supportflow.providers.llm import LLMMessage

ROLE_BY_TYPE = {
    MessageType.CUSTOMER: "user",
    MessageType.SYSTEM: "system",
    MessageType.BOT_AGENT: "assistant",
    MessageType.HUMAN_AGENT: "assistant",
    MessageType.TOOL: "assistant",
}


def format_tool_message(message: Message) -> str:
    meta = message.metadata
    result = meta.get("tool_output")
    if result is None:
        result = meta.get("tool_error")
    return (
        f"Tool: {meta.get('tool_name', 'unknown')}\n"
        f"Status: {meta.get('tool_status', 'unknown')}\n"
        f"Result:\n{json.dumps(result, indent=2, default=str)}"
    )


def to_llm_history(messages: list[Message]) -> list[LLMMessage]:
    """Map stored messages onto model roles.

    Tool messages become assistant turns carrying the tool name, status
    and JSON result.
    """
    history = []
    for message in messages:
        content = (
            format_tool_message(message)
            if message.type == MessageType.TOOL
            else message.content
        )
        history.append(LLMMessage(role=ROLE_BY_TYPE[message.type], content=content))
    return history


def format_transcript(messages: list[Message], limit: int | None = None) -> str:
    """Render public messages as 'Customer:' / 'Assistant:' lines."""
    public = [m for m in messages if m.is_public]
    if limit is not None:
        public = public[-limit:]
    lines = []
    for message in public:
        speaker = "Customer" if message.type == MessageType.CUSTOMER else "Assistant"
        lines.append(f"{speaker}: {message.content}")
    return "\n".join(lines)
