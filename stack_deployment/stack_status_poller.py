import logging
import time
from datetime import datetime, timezone
from typing import Callable, Dict, Optional, Tuple

import boto3

from stack_deployment import cloudformation_utils
from stack_deployment.config import (
    DEFAULT_POLL_INTERVAL_SECONDS,
    DEFAULT_POLL_MAX_ATTEMPTS,
)
from stack_deployment.exceptions import StackStatusError
from stack_deployment.models import (
    DeploymentResult,
    FailedResourceEvent,
    Outcome,
    StackState,
    StatusClass,
)

logger = logging.getLogger(__name__)

MAX_FAILED_EVENTS = 10
STACK_RESOURCE_TYPE = "AWS::CloudFormation::Stack"
# reason of the stack event that opens every operation
USER_INITIATED = "User Initiated"


class StackStatusPoller:
    """
    Polls a stack until it reaches a terminal status or the monitoring
    window is exhausted.

    CloudFormation offers no push notification for stack operations, so the
    poller sleeps a fixed interval between DescribeStacks calls. `sleep` and
    `clock` are injectable so tests can simulate time.
    """

    def __init__(
        self,
        cfn_client=None,
        sleep: Callable[[float], None] = time.sleep,
        clock: Callable[[], float] = time.monotonic,
        collect_failure_events: bool = True,
    ):
        self.cfn_client = cfn_client or boto3.client("cloudformation")
        self.sleep = sleep
        self.clock = clock
        self.collect_failure_events = collect_failure_events

    def poll(
        self,
        stack_name: str,
        interval_seconds: int = DEFAULT_POLL_INTERVAL_SECONDS,
        max_attempts: int = DEFAULT_POLL_MAX_ATTEMPTS,
        change_set_id: Optional[str] = None,
    ) -> DeploymentResult:
        if max_attempts < 1:
            raise ValueError(f"max_attempts must be at least 1, got {max_attempts}")
        if interval_seconds < 0:
            raise ValueError(f"interval_seconds must not be negative, got {interval_seconds}")

        state = StackState(stack_name=stack_name)
        started = self.clock()
        logger.info(
            f"Polling {stack_name} every {interval_seconds}s, at most {max_attempts} times"
        )

        while True:
            status, reason = self._describe_status(state)
            status_class = state.observe(status, datetime.now(timezone.utc))

            if status_class is StatusClass.SUCCESS:
                logger.info(
                    f"{stack_name} reached {status} after {state.attempts} queries"
                )
                return self._result(Outcome.SUCCEEDED, state, started, change_set_id, reason)

            if status_class is StatusClass.FAILURE:
                logger.error(
                    f"{stack_name} reached {status} after {state.attempts} queries: {reason}"
                )
                failed_events = self._failed_events(stack_name)
                return self._result(
                    Outcome.FAILED, state, started, change_set_id, reason, failed_events
                )

            if status_class is StatusClass.UNKNOWN:
                logger.warning(
                    f"Unknown stack status {status} for {stack_name}, treating it as in progress"
                )
            else:
                logger.info(
                    f"{stack_name} is {status} ({state.attempts}/{max_attempts})"
                )

            if state.attempts >= max_attempts:
                logger.warning(
                    f"Gave up waiting for {stack_name} after {state.attempts} queries, "
                    f"last status {status}"
                )
                return self._result(Outcome.TIMED_OUT, state, started, change_set_id, reason)

            self.sleep(interval_seconds)

    def _describe_status(self, state: StackState) -> Tuple[str, Optional[str]]:
        try:
            stacks = self.cfn_client.describe_stacks(StackName=state.stack_name)["Stacks"]
        except cloudformation_utils.AWS_ERRORS as e:
            raise StackStatusError(
                f"Failed to describe stack: {cloudformation_utils.error_message(e)}",
                stack_name=state.stack_name,
                last_status=state.status,
                attempts=state.attempts,
            ) from e
        if not stacks:
            raise StackStatusError(
                "Stack not found",
                stack_name=state.stack_name,
                last_status=state.status,
                attempts=state.attempts,
            )
        return stacks[0]["StackStatus"], stacks[0].get("StackStatusReason")

    def _failed_events(self, stack_name: str) -> Tuple[FailedResourceEvent, ...]:
        """
        Collect the failed resource events of the latest stack operation.

        Events come newest first. Scanning stops at the stack's own
        "User Initiated" event, which opens the operation, so failures of
        earlier deployments are left out. The stack already failed, so an
        error here is logged and not raised.
        """
        if not self.collect_failure_events:
            return ()
        try:
            events = self.cfn_client.describe_stack_events(StackName=stack_name)[
                "StackEvents"
            ]
        except cloudformation_utils.AWS_ERRORS:
            logger.exception(f"Failed to retrieve stack events of {stack_name}")
            return ()

        retval = []
        for k in events:
            status = k.get("ResourceStatus", "")
            if _starts_operation(k, stack_name):
                break
            if status.endswith("_FAILED") and len(retval) < MAX_FAILED_EVENTS:
                retval.append(
                    FailedResourceEvent(
                        logical_id=k["LogicalResourceId"],
                        status=status,
                        reason=k.get("ResourceStatusReason"),
                        resource_type=k.get("ResourceType"),
                    )
                )
        return tuple(retval)

    def _result(
        self,
        outcome: Outcome,
        state: StackState,
        started: float,
        change_set_id: Optional[str],
        reason: Optional[str],
        failed_events: Tuple[FailedResourceEvent, ...] = (),
    ) -> DeploymentResult:
        return DeploymentResult(
            outcome=outcome,
            stack_name=state.stack_name,
            stack_status=state.status,
            attempts=state.attempts,
            elapsed_seconds=self.clock() - started,
            change_set_id=change_set_id,
            status_reason=reason,
            unknown_statuses=state.unknown_statuses,
            failed_events=failed_events,
        )


def _starts_operation(event: Dict, stack_name: str) -> bool:
    return (
        event.get("ResourceType") == STACK_RESOURCE_TYPE
        and event.get("LogicalResourceId") == stack_name
        and event.get("ResourceStatus", "").endswith("_IN_PROGRESS")
        and event.get("ResourceStatusReason") == USER_INITIATED
    )
