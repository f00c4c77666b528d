import logging
from typing import Optional

import boto3

from stack_deployment import cloudformation_utils
from stack_deployment.config import (
    DEFAULT_POLL_INTERVAL_SECONDS,
    DEFAULT_POLL_MAX_ATTEMPTS,
)
from stack_deployment.exceptions import ExecutionError
from stack_deployment.models import (
    ChangeSet,
    ChangeSetStatus,
    DeploymentResult,
    ExecutionHandle,
)
from stack_deployment.stack_status_poller import StackStatusPoller

logger = logging.getLogger(__name__)


class DeploymentExecutor:
    def __init__(
        self,
        cfn_client=None,
        poller: Optional[StackStatusPoller] = None,
        interval_seconds: int = DEFAULT_POLL_INTERVAL_SECONDS,
        max_attempts: int = DEFAULT_POLL_MAX_ATTEMPTS,
    ):
        self.cfn_client = cfn_client or boto3.client("cloudformation")
        self.poller = poller or StackStatusPoller(self.cfn_client)
        self.interval_seconds = interval_seconds
        self.max_attempts = max_attempts

    def execute(self, change_set: ChangeSet) -> ExecutionHandle:
        """
        Start the execution of a change set and return without waiting.

        Args:
            change_set: a change set with proposed changes. Passing a
                NO_CHANGES change set is a programming error.

        Returns:
            A handle referencing the stack being updated

        Raises:
            ExecutionError: the change set is not executable or CloudFormation
                rejected the request
        """
        if change_set.status == ChangeSetStatus.NO_CHANGES:
            raise AssertionError(
                f"Change set {change_set.name} has no changes and must not be executed"
            )
        if change_set.status != ChangeSetStatus.CREATE_COMPLETE:
            raise ExecutionError(
                f"Change set {change_set.name} is not executable",
                stack_name=change_set.stack_name,
                last_status=change_set.status.value,
            )

        logger.info(
            f"Executing change set {change_set.name} on {change_set.stack_name}"
        )
        try:
            self.cfn_client.execute_change_set(
                ChangeSetName=change_set.id,
                StackName=change_set.stack_name,
            )
        except cloudformation_utils.AWS_ERRORS as e:
            raise ExecutionError(
                f"Execution of change set {change_set.name} rejected: "
                f"{cloudformation_utils.error_message(e)}",
                stack_name=change_set.stack_name,
            ) from e

        return ExecutionHandle(
            stack_name=change_set.stack_name,
            change_set_id=change_set.id,
            stack_id=change_set.stack_id,
        )

    def execute_and_wait(self, change_set: ChangeSet) -> DeploymentResult:
        handle = self.execute(change_set)
        return self.poller.poll(
            handle.stack_name,
            interval_seconds=self.interval_seconds,
            max_attempts=self.max_attempts,
            change_set_id=handle.change_set_id,
        )
