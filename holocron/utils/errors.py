from __future__ import annotations


class HolocronError(Exception):
    """Base error; ``code`` is the tag reported on a failed run."""

    code = "error"

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message

    def __str__(self) -> str:
        return f"{self.code}: {self.message}"


class ConfigurationError(HolocronError):
    code = "configuration_error"


class UnknownTool(HolocronError):
    code = "unknown_tool"


class DuplicateToolName(HolocronError):
    code = "duplicate_tool_name"


class UnknownAgent(HolocronError):
    code = "unknown_agent"


class IllegalTransition(HolocronError):
    code = "illegal_transition"


class ToolInvocationError(HolocronError):
    """Provider or network failure while running a tool."""

    code = "tool_invocation_error"


class ContentPolicyViolation(HolocronError):
    code = "content_policy_violation"


class PolicyViolation(HolocronError):
    """Completion kept breaking the agent's tool-choice policy."""

    code = "policy_violation"


class CompletionError(HolocronError):
    code = "completion_error"


class MalformedTerminalPayload(HolocronError):
    code = "malformed_terminal_payload"


class DepthExceeded(HolocronError):
    code = "depth_exceeded"

    def __init__(self, message: str, depth: int) -> None:
        super().__init__(message)
        self.depth = depth


class RunTimeout(HolocronError):
    code = "timeout"
