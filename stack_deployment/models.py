from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Dict, Optional, Tuple

from stack_deployment.exceptions import PollingTimeout, StackStateError, TerminalFailure

EXIT_SUCCESS = 0
EXIT_ERROR = 1
EXIT_FAILED = 2
EXIT_TIMED_OUT = 3


class ChangeSetStatus(str, Enum):
    CREATE_PENDING = "CREATE_PENDING"
    CREATE_COMPLETE = "CREATE_COMPLETE"
    FAILED = "FAILED"
    NO_CHANGES = "NO_CHANGES"


class ChangeAction(str, Enum):
    ADD = "Add"
    MODIFY = "Modify"
    REMOVE = "Remove"
    IMPORT = "Import"
    DYNAMIC = "Dynamic"
    SYNC_WITH_ACTUAL = "SyncWithActual"


class StatusClass(Enum):
    SUCCESS = "success"
    FAILURE = "failure"
    IN_PROGRESS = "in_progress"
    UNKNOWN = "unknown"

    @property
    def is_terminal(self) -> bool:
        return self in (StatusClass.SUCCESS, StatusClass.FAILURE)


TERMINAL_SUCCESS_STATUSES = frozenset(
    [
        "CREATE_COMPLETE",
        "UPDATE_COMPLETE",
        "IMPORT_COMPLETE",
    ]
)

TERMINAL_FAILURE_STATUSES = frozenset(
    [
        "CREATE_FAILED",
        "ROLLBACK_FAILED",
        "DELETE_FAILED",
        "UPDATE_FAILED",
        "UPDATE_ROLLBACK_FAILED",
        "IMPORT_ROLLBACK_FAILED",
        "ROLLBACK_COMPLETE",
        "UPDATE_ROLLBACK_COMPLETE",
        "IMPORT_ROLLBACK_COMPLETE",
        "DELETE_COMPLETE",
    ]
)

IN_PROGRESS_STATUSES = frozenset(
    [
        "CREATE_IN_PROGRESS",
        "UPDATE_IN_PROGRESS",
        "ROLLBACK_IN_PROGRESS",
        "UPDATE_ROLLBACK_IN_PROGRESS",
        "UPDATE_COMPLETE_CLEANUP_IN_PROGRESS",
        "UPDATE_ROLLBACK_COMPLETE_CLEANUP_IN_PROGRESS",
        "REVIEW_IN_PROGRESS",
        "DELETE_IN_PROGRESS",
        "IMPORT_IN_PROGRESS",
        "IMPORT_ROLLBACK_IN_PROGRESS",
    ]
)


def classify_stack_status(status: str) -> StatusClass:
    if status in TERMINAL_SUCCESS_STATUSES:
        return StatusClass.SUCCESS
    if status in TERMINAL_FAILURE_STATUSES:
        return StatusClass.FAILURE
    if status in IN_PROGRESS_STATUSES:
        return StatusClass.IN_PROGRESS
    # anything else, including the rollback-complete family we do not know yet
    if status.endswith("_ROLLBACK_COMPLETE"):
        return StatusClass.FAILURE
    return StatusClass.UNKNOWN


@dataclass(frozen=True)
class ResourceChange:
    logical_id: str
    action: ChangeAction
    resource_type: Optional[str] = None
    physical_id: Optional[str] = None
    replacement: Optional[str] = None

    def describe(self) -> str:
        line = f"{self.action.value:<8} {self.logical_id}"
        if self.resource_type:
            line += f" ({self.resource_type})"
        if self.replacement == "True":
            line += " [replacement]"
        return line


@dataclass(frozen=True)
class ChangeSet:
    id: str
    name: str
    stack_name: str
    status: ChangeSetStatus
    changes: Tuple[ResourceChange, ...] = ()
    change_set_type: Optional[str] = None
    status_reason: Optional[str] = None
    stack_id: Optional[str] = None

    @property
    def has_changes(self) -> bool:
        return self.status == ChangeSetStatus.CREATE_COMPLETE and len(self.changes) > 0

    def summary(self) -> Dict[str, int]:
        counts = {action.value: 0 for action in ChangeAction}
        for change in self.changes:
            counts[change.action.value] += 1
        return {k: o for k, o in counts.items() if o > 0}

    def to_dict(self) -> Dict:
        return {
            "change_set_id": self.id,
            "change_set_name": self.name,
            "stack_name": self.stack_name,
            "status": self.status.value,
            "change_set_type": self.change_set_type,
            "changes": [
                {
                    "logical_id": k.logical_id,
                    "action": k.action.value,
                    "resource_type": k.resource_type,
                    "replacement": k.replacement,
                }
                for k in self.changes
            ],
        }


@dataclass(frozen=True)
class ExecutionHandle:
    stack_name: str
    change_set_id: str
    stack_id: Optional[str] = None


@dataclass
class StackState:
    """
    Mutable view of a stack during a single polling run.

    Only the poller owns an instance, and it never outlives the invocation.
    """

    stack_name: str
    status: Optional[str] = None
    last_polled_at: Optional[datetime] = None
    attempts: int = 0
    unknown_statuses: int = 0

    @property
    def status_class(self) -> Optional[StatusClass]:
        if self.status is None:
            return None
        return classify_stack_status(self.status)

    @property
    def is_terminal(self) -> bool:
        return self.status_class is not None and self.status_class.is_terminal

    def observe(self, status: str, polled_at: datetime) -> StatusClass:
        if self.is_terminal:
            raise StackStateError(
                f"Stack already reached terminal status, refusing transition to {status}",
                stack_name=self.stack_name,
                last_status=self.status,
                attempts=self.attempts,
            )
        self.status = status
        self.last_polled_at = polled_at
        self.attempts += 1
        status_class = classify_stack_status(status)
        if status_class is StatusClass.UNKNOWN:
            self.unknown_statuses += 1
        return status_class


class Outcome(str, Enum):
    SUCCEEDED = "Succeeded"
    SKIPPED_NO_CHANGES = "SkippedNoChanges"
    FAILED = "Failed"
    TIMED_OUT = "TimedOut"

    @property
    def exit_code(self) -> int:
        return {
            Outcome.SUCCEEDED: EXIT_SUCCESS,
            Outcome.SKIPPED_NO_CHANGES: EXIT_SUCCESS,
            Outcome.FAILED: EXIT_FAILED,
            Outcome.TIMED_OUT: EXIT_TIMED_OUT,
        }[self]


@dataclass(frozen=True)
class FailedResourceEvent:
    logical_id: str
    status: str
    reason: Optional[str] = None
    resource_type: Optional[str] = None


@dataclass(frozen=True)
class DeploymentResult:
    outcome: Outcome
    stack_name: str
    stack_status: Optional[str] = None
    attempts: int = 0
    elapsed_seconds: float = 0.0
    change_set_id: Optional[str] = None
    status_reason: Optional[str] = None
    unknown_statuses: int = 0
    failed_events: Tuple[FailedResourceEvent, ...] = field(default_factory=tuple)

    @property
    def succeeded(self) -> bool:
        return self.outcome in (Outcome.SUCCEEDED, Outcome.SKIPPED_NO_CHANGES)

    @property
    def exit_code(self) -> int:
        return self.outcome.exit_code

    def raise_for_outcome(self) -> None:
        """
        Raise the error matching a Failed or TimedOut result.

        Succeeded and SkippedNoChanges results return silently.
        """
        if self.outcome == Outcome.FAILED:
            reasons = "; ".join(
                f"{k.logical_id}: {k.reason}" for k in self.failed_events if k.reason
            )
            message = "Stack deployment failed"
            if reasons:
                message += f": {reasons}"
            raise TerminalFailure(
                message,
                stack_name=self.stack_name,
                last_status=self.stack_status,
                attempts=self.attempts,
            )
        if self.outcome == Outcome.TIMED_OUT:
            raise PollingTimeout(
                f"Stack did not reach a terminal status after {self.elapsed_seconds:.0f}s",
                stack_name=self.stack_name,
                last_status=self.stack_status,
                attempts=self.attempts,
            )

    def to_dict(self) -> Dict:
        return {
            "outcome": self.outcome.value,
            "stack_name": self.stack_name,
            "stack_status": self.stack_status,
            "attempts": self.attempts,
            "elapsed_seconds": self.elapsed_seconds,
            "change_set_id": self.change_set_id,
            "status_reason": self.status_reason,
            "failed_events": [
                {
                    "logical_id": k.logical_id,
                    "status": k.status,
                    "reason": k.reason,
                    "resource_type": k.resource_type,
                }
                for k in self.failed_events
            ],
        }
