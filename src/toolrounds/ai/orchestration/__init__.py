"""Round loop orchestration for the tool-calling assistant."""

from .types import (
    Message,
    MessageRole,
    RoundOutcome,
    RoundStatus,
    ToolCallRequest,
)
from .conversation_log import ConversationLog
from .normalizer import (
    MISSING_TOOL_OUTPUT_PLACEHOLDER,
    find_missing_tool_outputs,
    normalize_messages_for_tools,
)
from .tool_results import (
    ToolCallExecutor,
    ToolExecutionResult,
    execute_tool_call,
    execute_tool_calls,
    format_tool_result_content,
)
from .runner import (
    DEFAULT_MAX_TOOL_ROUNDS,
    RoundRunner,
    RunnerConfig,
    StreamingClient,
    TokenCallback,
    ToolCallCallback,
    build_request_messages,
)

__all__ = [
    "Message",
    "MessageRole",
    "RoundOutcome",
    "RoundStatus",
    "ToolCallRequest",
    "ConversationLog",
    "MISSING_TOOL_OUTPUT_PLACEHOLDER",
    "find_missing_tool_outputs",
    "normalize_messages_for_tools",
    "ToolCallExecutor",
    "ToolExecutionResult",
    "execute_tool_call",
    "execute_tool_calls",
    "format_tool_result_content",
    "DEFAULT_MAX_TOOL_ROUNDS",
    "RoundRunner",
    "RunnerConfig",
    "StreamingClient",
    "TokenCallback",
    "ToolCallCallback",
    "build_request_messages",
]
