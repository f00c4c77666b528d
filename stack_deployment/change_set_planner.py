import logging
import time
from dataclasses import replace
from typing import Callable, Dict, Iterable, List, Optional

import boto3
from botocore.exceptions import ClientError

from stack_deployment import cloudformation_utils
from stack_deployment.config import DEFAULT_CHANGE_SET_PREFIX
from stack_deployment.exceptions import PlanError
from stack_deployment.models import (
    ChangeAction,
    ChangeSet,
    ChangeSetStatus,
    ResourceChange,
)

logger = logging.getLogger(__name__)

PENDING_CHANGE_SET_STATUSES = ("CREATE_PENDING", "CREATE_IN_PROGRESS")

# CloudFormation reports an empty diff as a FAILED change set whose only
# distinguishing field is the status reason
NO_CHANGES_REASONS = (
    "didn't contain changes",
    "No updates are to be performed",
)


def _is_missing_stack(error: Exception) -> bool:
    return (
        isinstance(error, ClientError)
        and error.response["Error"]["Code"] == "ValidationError"
        and "does not exist" in error.response["Error"].get("Message", "")
    )


def _parse_changes(changes: Iterable[Dict]) -> List[ResourceChange]:
    retval = []
    for k in changes:
        if k.get("Type", "Resource") != "Resource":
            continue
        resource_change = k["ResourceChange"]
        try:
            action = ChangeAction(resource_change["Action"])
        except ValueError:
            logger.warning(
                f"Unknown change action {resource_change['Action']} for "
                f"{resource_change['LogicalResourceId']}, recording it as Modify"
            )
            action = ChangeAction.MODIFY
        retval.append(
            ResourceChange(
                logical_id=resource_change["LogicalResourceId"],
                action=action,
                resource_type=resource_change.get("ResourceType"),
                physical_id=resource_change.get("PhysicalResourceId"),
                replacement=resource_change.get("Replacement"),
            )
        )
    return retval


class ChangeSetPlanner:
    """
    Creates CloudFormation change sets without executing them and classifies
    the result as having changes, having no changes, or invalid.
    """

    def __init__(
        self,
        cfn_client=None,
        sleep: Callable[[float], None] = time.sleep,
        interval_seconds: int = 5,
        max_attempts: int = 60,
        change_set_prefix: str = DEFAULT_CHANGE_SET_PREFIX,
    ):
        self.cfn_client = cfn_client or boto3.client("cloudformation")
        self.sleep = sleep
        self.interval_seconds = interval_seconds
        self.max_attempts = max_attempts
        self.change_set_prefix = change_set_prefix

    def validate(self, template_location: str) -> List[str]:
        """
        Validate a template with CloudFormation

        Returns:
            the capabilities the template requires, e.g. CAPABILITY_IAM
        """
        template_args = cloudformation_utils.template_arguments(template_location)
        try:
            response = self.cfn_client.validate_template(**template_args)
        except cloudformation_utils.AWS_ERRORS as e:
            raise PlanError(
                f"Template {template_location} is invalid: "
                f"{cloudformation_utils.error_message(e)}"
            ) from e
        capabilities = response.get("Capabilities", [])
        logger.info(
            f"Template {template_location} is valid, required capabilities: {capabilities}"
        )
        return capabilities

    def plan(
        self,
        template_location: str,
        parameters: Dict[str, str],
        tags: Dict[str, str],
        stack_name: str,
        capabilities: Iterable[str] = (),
        change_set_name: Optional[str] = None,
    ) -> ChangeSet:
        """
        Create a change set for `stack_name` and wait until CloudFormation
        has computed it.

        Returns:
            A ChangeSet with status CREATE_COMPLETE or NO_CHANGES. The change
            set is left in place when it is never executed.

        Raises:
            PlanError: the template or parameters are invalid, or
                CloudFormation rejected the change set
        """
        template_args = cloudformation_utils.template_arguments(template_location)
        change_set_type = self._change_set_type(stack_name)
        change_set_name = change_set_name or cloudformation_utils.change_set_name(
            self.change_set_prefix
        )

        logger.info(
            f"Creating {change_set_type} change set {change_set_name} for {stack_name}"
        )
        try:
            response = self.cfn_client.create_change_set(
                StackName=stack_name,
                ChangeSetName=change_set_name,
                ChangeSetType=change_set_type,
                Parameters=cloudformation_utils.to_cfn_parameters(parameters),
                Tags=cloudformation_utils.to_cfn_tags(tags),
                Capabilities=sorted(set(capabilities)),
                **template_args,
            )
        except cloudformation_utils.AWS_ERRORS as e:
            raise PlanError(
                f"Change set creation rejected: {cloudformation_utils.error_message(e)}",
                stack_name=stack_name,
            ) from e

        change_set = replace(
            self._wait_for_change_set(response["Id"], stack_name),
            change_set_type=change_set_type,
        )
        if change_set.status == ChangeSetStatus.FAILED:
            raise PlanError(
                f"Change set {change_set.name} failed: {change_set.status_reason}",
                stack_name=stack_name,
            )

        if change_set.status == ChangeSetStatus.NO_CHANGES:
            logger.info(f"No changes to deploy for {stack_name}")
        else:
            logger.info(
                f"Change set {change_set.name} proposes {len(change_set.changes)} changes: "
                f"{change_set.summary()}"
            )
        return change_set

    def describe(self, change_set_id: str, stack_name: Optional[str] = None) -> ChangeSet:
        """
        Describe an existing change set, following the pagination of its
        changes
        """
        kwargs = {"ChangeSetName": change_set_id}
        if stack_name:
            kwargs["StackName"] = stack_name

        pages = []
        next_token = None
        while True:
            if next_token:
                kwargs["NextToken"] = next_token
            try:
                page = self.cfn_client.describe_change_set(**kwargs)
            except cloudformation_utils.AWS_ERRORS as e:
                raise PlanError(
                    f"Failed to describe change set {change_set_id}: "
                    f"{cloudformation_utils.error_message(e)}",
                    stack_name=stack_name,
                ) from e
            pages.append(page)
            next_token = page.get("NextToken")
            if not next_token:
                break
        return self._from_pages(pages)

    def _change_set_type(self, stack_name: str) -> str:
        try:
            stacks = self.cfn_client.describe_stacks(StackName=stack_name)["Stacks"]
        except cloudformation_utils.AWS_ERRORS as e:
            if _is_missing_stack(e):
                return "CREATE"
            raise PlanError(
                f"Failed to describe stack: {cloudformation_utils.error_message(e)}",
                stack_name=stack_name,
            ) from e
        # a stack left behind by a never executed CREATE change set
        if not stacks or stacks[0]["StackStatus"] == "REVIEW_IN_PROGRESS":
            return "CREATE"
        return "UPDATE"

    def _wait_for_change_set(self, change_set_id: str, stack_name: str) -> ChangeSet:
        attempts = 0
        while True:
            change_set = self.describe(change_set_id, stack_name)
            attempts += 1
            if change_set.status != ChangeSetStatus.CREATE_PENDING:
                return change_set
            if attempts >= self.max_attempts:
                raise PlanError(
                    f"Change set {change_set.name} still pending",
                    stack_name=stack_name,
                    last_status=change_set.status.value,
                    attempts=attempts,
                )
            self.sleep(self.interval_seconds)

    def _from_pages(self, pages: List[Dict]) -> ChangeSet:
        first = pages[0]
        changes = tuple(k for page in pages for k in _parse_changes(page.get("Changes", [])))
        raw_status = first["Status"]
        reason = first.get("StatusReason")

        if raw_status in PENDING_CHANGE_SET_STATUSES:
            status = ChangeSetStatus.CREATE_PENDING
        elif raw_status == "CREATE_COMPLETE":
            status = ChangeSetStatus.CREATE_COMPLETE if changes else ChangeSetStatus.NO_CHANGES
        elif (
            raw_status == "FAILED"
            and not changes
            and first.get("ExecutionStatus", "UNAVAILABLE") == "UNAVAILABLE"
            and any(k in (reason or "") for k in NO_CHANGES_REASONS)
        ):
            status = ChangeSetStatus.NO_CHANGES
        else:
            status = ChangeSetStatus.FAILED

        return ChangeSet(
            id=first["ChangeSetId"],
            name=first["ChangeSetName"],
            stack_name=first["StackName"],
            status=status,
            changes=changes,
            status_reason=reason,
            stack_id=first.get("StackId"),
        )
