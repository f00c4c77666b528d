from datetime import datetime, timezone

import pytest

from stack_deployment.exceptions import StackStateError
from stack_deployment.models import (
    ChangeAction,
    ChangeSet,
    ChangeSetStatus,
    DeploymentResult,
    Outcome,
    ResourceChange,
    StackState,
    StatusClass,
    classify_stack_status,
)

NOW = datetime(2026, 10, 19, tzinfo=timezone.utc)


@pytest.mark.parametrize(
    "status, expected",
    [
        ("CREATE_COMPLETE", StatusClass.SUCCESS),
        ("UPDATE_COMPLETE", StatusClass.SUCCESS),
        ("IMPORT_COMPLETE", StatusClass.SUCCESS),
        ("CREATE_FAILED", StatusClass.FAILURE),
        ("UPDATE_ROLLBACK_FAILED", StatusClass.FAILURE),
        ("DELETE_COMPLETE", StatusClass.FAILURE),
        ("UPDATE_ROLLBACK_COMPLETE", StatusClass.FAILURE),
        ("IMPORT_ROLLBACK_COMPLETE", StatusClass.FAILURE),
        ("SOMETHING_ROLLBACK_COMPLETE", StatusClass.FAILURE),
        ("ROLLBACK_IN_PROGRESS", StatusClass.IN_PROGRESS),
        ("REVIEW_IN_PROGRESS", StatusClass.IN_PROGRESS),
        ("UPDATE_ROLLBACK_COMPLETE_CLEANUP_IN_PROGRESS", StatusClass.IN_PROGRESS),
        ("UPDATE_COMPLETE_CLEANUP_IN_PROGRESS", StatusClass.IN_PROGRESS),
        ("BRAND_NEW_STATUS", StatusClass.UNKNOWN),
    ],
)
def test_classify_stack_status(status, expected):
    assert classify_stack_status(status) == expected


def test_stack_state_never_leaves_a_terminal_status():
    state = StackState("dev-blog-s3")
    state.observe("UPDATE_IN_PROGRESS", NOW)
    state.observe("UPDATE_COMPLETE", NOW)

    with pytest.raises(StackStateError):
        state.observe("UPDATE_IN_PROGRESS", NOW)

    assert state.status == "UPDATE_COMPLETE"
    assert state.attempts == 2
    assert state.last_polled_at == NOW


def test_change_set_summary():
    change_set = ChangeSet(
        id="arn",
        name="deploy-1",
        stack_name="dev-blog-s3",
        status=ChangeSetStatus.CREATE_COMPLETE,
        changes=(
            ResourceChange("A", ChangeAction.ADD),
            ResourceChange("B", ChangeAction.ADD),
            ResourceChange("C", ChangeAction.REMOVE, "AWS::S3::Bucket"),
        ),
    )

    assert change_set.summary() == {"Add": 2, "Remove": 1}
    assert change_set.changes[2].describe() == "Remove   C (AWS::S3::Bucket)"


@pytest.mark.parametrize(
    "outcome, exit_code",
    [
        (Outcome.SUCCEEDED, 0),
        (Outcome.SKIPPED_NO_CHANGES, 0),
        (Outcome.FAILED, 2),
        (Outcome.TIMED_OUT, 3),
    ],
)
def test_outcome_exit_codes(outcome, exit_code):
    assert DeploymentResult(outcome, "dev-blog-s3").exit_code == exit_code


def test_successful_result_does_not_raise():
    DeploymentResult(Outcome.SKIPPED_NO_CHANGES, "dev-blog-s3").raise_for_outcome()
