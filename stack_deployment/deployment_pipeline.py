import logging
import time
from typing import Callable, Optional

import boto3

from stack_deployment import cloudformation_utils
from stack_deployment.change_set_planner import ChangeSetPlanner
from stack_deployment.config import DeploymentConfig
from stack_deployment.deployment_executor import DeploymentExecutor
from stack_deployment.models import (
    ChangeSet,
    ChangeSetStatus,
    DeploymentResult,
    Outcome,
)
from stack_deployment.stack_status_poller import StackStatusPoller

logger = logging.getLogger(__name__)


def create_cfn_client(config: DeploymentConfig):
    session = boto3.session.Session(region_name=config.region)
    return session.client("cloudformation")


class DeploymentPipeline:
    """
    Plan, execute and monitor the deployment of one stack.

    One pipeline deploys one stack to one environment. Nothing is shared
    between runs: each component only sees the configuration it is given.
    """

    def __init__(
        self,
        config: DeploymentConfig,
        cfn_client=None,
        sleep: Callable[[float], None] = time.sleep,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.config = config
        self.cfn_client = cfn_client or create_cfn_client(config)
        self.planner = ChangeSetPlanner(
            self.cfn_client,
            sleep=sleep,
            change_set_prefix=config.change_set_prefix,
        )
        self.poller = StackStatusPoller(self.cfn_client, sleep=sleep, clock=clock)
        self.executor = DeploymentExecutor(
            self.cfn_client,
            poller=self.poller,
            interval_seconds=config.poll_interval_seconds,
            max_attempts=config.poll_max_attempts,
        )

    @property
    def stack_name(self) -> str:
        return self.config.stack_name

    def plan(self, change_set_name: Optional[str] = None) -> ChangeSet:
        parameters = cloudformation_utils.load_parameters(self.config.parameters_file)
        tags = cloudformation_utils.load_tags(self.config.tags_file)
        tags.setdefault("Environment", self.config.environment.value)

        capabilities = set(self.config.capabilities)
        if self.config.validate_template:
            capabilities.update(self.planner.validate(self.config.template_location))

        change_set = self.planner.plan(
            self.config.template_location,
            parameters,
            tags,
            self.stack_name,
            capabilities=capabilities,
            change_set_name=change_set_name,
        )
        for k in change_set.changes:
            logger.info(f"  {k.describe()}")
        return change_set

    def deploy(self, change_set_name: Optional[str] = None) -> DeploymentResult:
        change_set = self.plan(change_set_name)
        return self.apply(change_set)

    def execute(self, change_set_id: str) -> DeploymentResult:
        """Execute a change set created by an earlier `plan`, e.g. after a review"""
        change_set = self.planner.describe(change_set_id, self.stack_name)
        return self.apply(change_set)

    def apply(self, change_set: ChangeSet) -> DeploymentResult:
        if change_set.status == ChangeSetStatus.NO_CHANGES:
            logger.info(f"Skipping deployment of {self.stack_name}, nothing to change")
            return DeploymentResult(
                outcome=Outcome.SKIPPED_NO_CHANGES,
                stack_name=self.stack_name,
                change_set_id=change_set.id,
                status_reason=change_set.status_reason,
            )
        return self.executor.execute_and_wait(change_set)

    def poll(self) -> DeploymentResult:
        """Watch the stack for a fresh monitoring window without changing it"""
        return self.poller.poll(
            self.stack_name,
            interval_seconds=self.config.poll_interval_seconds,
            max_attempts=self.config.poll_max_attempts,
        )
