from __future__ import annotations

from enum import Enum


class ErrorKind(str, Enum):
    PROVIDER_ERROR = "provider_error"
    TOOL_EXECUTION_ERROR = "tool_execution_error"
    POLICY_STORE_ERROR = "policy_store_error"
    PROTOCOL_VIOLATION = "protocol_violation"
    PERMISSION_DENIED = "permission_denied"
    STEP_LIMIT_EXCEEDED = "step_limit_exceeded"
    USER_ABORT = "user_abort"


# Only these kinds end the loop; everything else is fed back to the model.
FATAL_KINDS = frozenset({ErrorKind.STEP_LIMIT_EXCEEDED, ErrorKind.USER_ABORT})


class PromptLineError(RuntimeError):
    kind: ErrorKind = ErrorKind.TOOL_EXECUTION_ERROR

    @property
    def fatal(self) -> bool:
        return self.kind in FATAL_KINDS


class ProviderError(PromptLineError):
    kind = ErrorKind.PROVIDER_ERROR


class ToolExecutionError(PromptLineError):
    kind = ErrorKind.TOOL_EXECUTION_ERROR

    def __init__(self, message: str, *, timed_out: bool = False):
        super().__init__(message)
        self.timed_out = timed_out


class PolicyStoreError(PromptLineError):
    kind = ErrorKind.POLICY_STORE_ERROR


class ProtocolViolation(PromptLineError):
    kind = ErrorKind.PROTOCOL_VIOLATION


class StepLimitExceeded(PromptLineError):
    kind = ErrorKind.STEP_LIMIT_EXCEEDED


class UserAbort(PromptLineError):
    kind = ErrorKind.USER_ABORT
