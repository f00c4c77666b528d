from datetime import datetime, timezone

import boto3
import pytest
from botocore.exceptions import ClientError
from botocore.stub import Stubber


class FakeClock:
    def __init__(self):
        self.now = 0.0
        self.sleeps = []

    def sleep(self, seconds):
        self.sleeps.append(seconds)
        self.now += seconds

    def __call__(self):
        return self.now


def client_error(code: str, message: str, operation: str) -> ClientError:
    return ClientError({"Error": {"Code": code, "Message": message}}, operation)


class FakeCloudFormation:
    """
    In-memory stand-in for the CloudFormation client.

    `statuses` is consumed by describe_stacks calls made after the first
    execute_change_set, or by every call when `executed` is True. An
    exception in `statuses` is raised by the call that consumes it.
    """

    def __init__(
        self,
        statuses=(),
        changes=(),
        stack_exists=True,
        executed=False,
        events=(),
    ):
        self.statuses = list(statuses)
        self.changes = list(changes)
        self.stack_exists = stack_exists
        self.executed = executed
        self.events = list(events)
        self.calls = []
        self.status_queries = 0

    def _record(self, name, kwargs):
        self.calls.append((name, kwargs))

    def called(self, name):
        return [k for k in self.calls if k[0] == name]

    def validate_template(self, **kwargs):
        self._record("validate_template", kwargs)
        return {"Parameters": [], "Capabilities": []}

    def describe_stacks(self, **kwargs):
        self._record("describe_stacks", kwargs)
        if not self.executed:
            if not self.stack_exists:
                raise client_error(
                    "ValidationError",
                    f"Stack with id {kwargs['StackName']} does not exist",
                    "DescribeStacks",
                )
            return {
                "Stacks": [
                    {"StackName": kwargs["StackName"], "StackStatus": "UPDATE_COMPLETE"}
                ]
            }
        self.status_queries += 1
        if not self.statuses:
            raise AssertionError("describe_stacks called after the last scripted status")
        status = self.statuses.pop(0)
        if isinstance(status, Exception):
            raise status
        return {"Stacks": [{"StackName": kwargs["StackName"], "StackStatus": status}]}

    def create_change_set(self, **kwargs):
        self._record("create_change_set", kwargs)
        return {
            "Id": f"arn:aws:cloudformation:eu-west-1:111111111111:changeSet/{kwargs['ChangeSetName']}/1",
            "StackId": "arn:aws:cloudformation:eu-west-1:111111111111:stack/s/1",
        }

    def describe_change_set(self, **kwargs):
        self._record("describe_change_set", kwargs)
        response = {
            "ChangeSetId": kwargs["ChangeSetName"],
            "ChangeSetName": "deploy-1",
            "StackName": kwargs.get("StackName", "dev-blog-s3"),
            "StackId": "arn:aws:cloudformation:eu-west-1:111111111111:stack/s/1",
            "Changes": [
                {
                    "Type": "Resource",
                    "ResourceChange": {
                        "Action": action,
                        "LogicalResourceId": logical_id,
                        "ResourceType": "AWS::S3::Bucket",
                    },
                }
                for logical_id, action in self.changes
            ],
        }
        if self.changes:
            response.update(Status="CREATE_COMPLETE", ExecutionStatus="AVAILABLE")
        else:
            response.update(
                Status="FAILED",
                ExecutionStatus="UNAVAILABLE",
                StatusReason="The submitted information didn't contain changes. "
                "Submit different information to create a change set.",
            )
        return response

    def execute_change_set(self, **kwargs):
        self._record("execute_change_set", kwargs)
        self.executed = True
        return {}

    def describe_stack_events(self, **kwargs):
        self._record("describe_stack_events", kwargs)
        return {"StackEvents": self.events}


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def aws_credentials(monkeypatch):
    monkeypatch.setenv("AWS_ACCESS_KEY_ID", "testing")
    monkeypatch.setenv("AWS_SECRET_ACCESS_KEY", "testing")
    monkeypatch.setenv("AWS_DEFAULT_REGION", "eu-west-1")


@pytest.fixture
def cfn_client(aws_credentials):
    return boto3.client("cloudformation", region_name="eu-west-1")


@pytest.fixture
def stubber(cfn_client):
    with Stubber(cfn_client) as stub:
        yield stub
        stub.assert_no_pending_responses()


@pytest.fixture
def creation_time():
    return datetime(2026, 1, 1, tzinfo=timezone.utc)


@pytest.fixture
def fake_cfn():
    return FakeCloudFormation
