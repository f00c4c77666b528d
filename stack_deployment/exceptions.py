from typing import Optional


class DeploymentError(Exception):
    """
    Base class for every error raised while deploying a stack.

    Carries enough context to diagnose the failure without querying
    CloudFormation again.
    """

    def __init__(
        self,
        message: str,
        stack_name: Optional[str] = None,
        last_status: Optional[str] = None,
        attempts: int = 0,
    ):
        self.message = message
        self.stack_name = stack_name
        self.last_status = last_status
        self.attempts = attempts
        super().__init__(self._format())

    def _format(self) -> str:
        context = []
        if self.stack_name:
            context.append(f"stack={self.stack_name}")
        if self.last_status:
            context.append(f"last_status={self.last_status}")
        if self.attempts:
            context.append(f"attempts={self.attempts}")
        if not context:
            return self.message
        return f"{self.message} ({', '.join(context)})"


class ConfigurationError(DeploymentError):
    pass


class PlanError(DeploymentError):
    """The change set could not be created: invalid template or parameters."""


class ExecutionError(DeploymentError):
    """CloudFormation rejected the execute request."""


class StackStatusError(DeploymentError):
    """The stack status could not be queried."""


class StackStateError(DeploymentError):
    """A stack status transition left a terminal state."""


class TerminalFailure(DeploymentError):
    """The stack reached a failed or rolled back state."""


class PollingTimeout(DeploymentError):
    """
    The monitoring window was exhausted before the stack reached a terminal
    state. The stack may still converge later.
    """
