"""Exception hierarchy for tickflow.

Errors are split by what the scheduler should do with them: configuration
errors terminate a job, step failures go through the retry engine, and
persistence errors are reported back in the tick results.
"""

from __future__ import annotations


class TickflowError(Exception):
    """Base class for all tickflow errors."""


class ConfigError(TickflowError):
    """Invalid or incomplete settings detected at startup."""


class ConfigurationError(TickflowError):
    """A workflow, step or transformer definition cannot be resolved.

    Definitions are static, so retrying never helps.
    """

    retryable = False


class WorkflowNotFound(ConfigurationError):
    def __init__(self, workflow_id: str, reason: str = "not found") -> None:
        self.workflow_id = workflow_id
        super().__init__(f"Workflow '{workflow_id}' {reason}")


class StepNotFound(ConfigurationError):
    def __init__(self, workflow_id: str, step_id: str | None) -> None:
        self.workflow_id = workflow_id
        self.step_id = step_id
        super().__init__(f"Step '{step_id}' not found in workflow '{workflow_id}'")


class TransformerNotFound(ConfigurationError):
    def __init__(self, transformer_id: str, reason: str = "not found") -> None:
        self.transformer_id = transformer_id
        super().__init__(f"Transformer '{transformer_id}' {reason}")


class InvalidPathMapping(ConfigurationError):
    def __init__(self, step_id: str, error: Exception) -> None:
        self.step_id = step_id
        super().__init__(f"Step '{step_id}' has an invalid path mapping: {error}")


class StepFailed(TickflowError):
    """Raised when executing a step fails."""

    def __init__(self, message: str, retryable: bool = True) -> None:
        super().__init__(message)
        self.retryable = retryable


class ExecutorError(StepFailed):
    """The external executor could not produce a result."""


class ExecutorTimeout(ExecutorError):
    def __init__(self, name: str, timeout: float) -> None:
        self.name = name
        self.timeout = timeout
        super().__init__(f"Executor '{name}' timed out after {timeout:g}s")


class ExecutorInvocationError(ExecutorError):
    """The executor was reached but returned an error, or was unreachable."""


class PathSyntaxError(TickflowError, ValueError):
    def __init__(self, expression: str, reason: str) -> None:
        self.expression = expression
        super().__init__(f"Invalid path expression {expression!r}: {reason}")


class PersistenceError(TickflowError):
    """The job store failed or timed out."""


class ClaimError(PersistenceError):
    """A batch claim query failed; the whole tick is aborted."""
