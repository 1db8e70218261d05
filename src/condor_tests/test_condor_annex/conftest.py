# Copyright 2026 HTCondor Team, Computer Sciences Department,
# University of Wisconsin-Madison, WI.
#
# Licensed under the Apache License, Version 2.0 (the "License");
# you may not use this file except in compliance with the License.
# You may obtain a copy of the License at
#
#    http://www.apache.org/licenses/LICENSE-2.0
#
# Unless required by applicable law or agreed to in writing, software
# distributed under the License is distributed on an "AS IS" BASIS,
# WITHOUT WARRANTIES OR CONDITIONS OF ANY KIND, either express or implied.
# See the License for the specific language governing permissions and
# limitations under the License.

import os
from pathlib import Path

# The bindings want a configuration to read at import time; these tests
# never consult it (see the htcondor_param fixture).
os.environ.setdefault("CONDOR_CONFIG", str(Path(__file__).parent / "condor_config.annex-test"))

import pytest

from datetime import datetime, timezone
from types import SimpleNamespace

from botocore.exceptions import ClientError

import condor_annex.config
import condor_annex.teardown
from condor_annex.config import get_default_config
from condor_annex.controller import AnnexController
from condor_annex.poller import ConvergencePoller


def client_error(operation, message, code="ValidationError"):
    return ClientError({"Error": {"Code": code, "Message": message}}, operation)


class CallLog(list):
    """Every fake client appends (service, method, kwargs) here, in call order."""

    def methods(self, service=None):
        return [f"{s}.{m}" for (s, m, k) in self if service is None or s == service]

    def calls(self, service, method):
        return [k for (s, m, k) in self if s == service and m == method]


class FakeClient:
    service = None

    def __init__(self, log):
        self.log = log
        # method name -> outcome of each upcoming call (None to let it through)
        self.failures = {}

    def _record(self, method, **kwargs):
        self.log.append((self.service, method, kwargs))
        pending = self.failures.get(method)
        if pending:
            error = pending.pop(0)
            if error is not None:
                raise error

    def fail(self, method, error, after=0):
        """Make the call to `method` after the next `after` ones raise `error`."""
        self.failures.setdefault(method, []).extend([None] * after + [error])


class FakeS3(FakeClient):
    service = "s3"

    def __init__(self, log):
        super().__init__(log)
        self.buckets = set()
        self.objects = {}

    def head_bucket(self, Bucket):
        self._record("head_bucket", Bucket=Bucket)
        if Bucket not in self.buckets:
            raise client_error("HeadBucket", "Not Found", code="404")
        return {}

    def create_bucket(self, Bucket, **kwargs):
        self._record("create_bucket", Bucket=Bucket, **kwargs)
        self.buckets.add(Bucket)
        return {}

    def put_public_access_block(self, Bucket, **kwargs):
        self._record("put_public_access_block", Bucket=Bucket, **kwargs)
        return {}

    def put_object(self, Bucket, Key, Body, **kwargs):
        self._record("put_object", Bucket=Bucket, Key=Key, **kwargs)
        self.objects[(Bucket, Key)] = Body
        return {}

    def delete_object(self, Bucket, Key):
        self._record("delete_object", Bucket=Bucket, Key=Key)
        self.objects.pop((Bucket, Key), None)
        return {}

    def delete_bucket(self, Bucket):
        self._record("delete_bucket", Bucket=Bucket)
        self.buckets.discard(Bucket)
        return {}


class FakeCloudFormation(FakeClient):
    """
    Stacks become visible one describe after creation, and spend one more
    describe in CREATE_IN_PROGRESS, like the real (eventually-consistent)
    service.
    """

    service = "cloudformation"

    def __init__(self, log, pool_count=3):
        super().__init__(log)
        self.pool_count = pool_count
        self.stacks = {}
        self.pending = {}
        # What an update settles into.
        self.update_status = "UPDATE_COMPLETE"

    def add_stack(self, name, status="CREATE_COMPLETE", parameters=None):
        self.stacks[name] = {
            "StackName": name,
            "StackStatus": status,
            "CreationTime": datetime(2026, 10, 17, 12, 0, tzinfo=timezone.utc),
            "Parameters": [
                {"ParameterKey": k, "ParameterValue": v} for k, v in (parameters or {}).items()
            ],
        }

    def create_stack(self, StackName, Parameters, **kwargs):
        self._record("create_stack", StackName=StackName, Parameters=Parameters, **kwargs)
        values = {p["ParameterKey"]: p["ParameterValue"] for p in Parameters}
        self.pending[StackName] = ["invisible", "CREATE_IN_PROGRESS"]
        self.add_stack(StackName, "CREATE_COMPLETE", values)
        return {"StackId": f"arn:aws:cloudformation:us-east-1:000000000000:stack/{StackName}/1"}

    def describe_stacks(self, StackName=None):
        self._record("describe_stacks", StackName=StackName)
        if StackName not in self.stacks:
            raise client_error("DescribeStacks", f"Stack with id {StackName} does not exist")
        pending = self.pending.get(StackName)
        if pending:
            status = pending.pop(0)
            if status == "invisible":
                raise client_error("DescribeStacks", f"Stack with id {StackName} does not exist")
            return {"Stacks": [dict(self.stacks[StackName], StackStatus=status)]}
        return {"Stacks": [self.stacks[StackName]]}

    def describe_stack_resources(self, StackName):
        self._record("describe_stack_resources", StackName=StackName)
        resources = [{
            "LogicalResourceId": "LaunchTemplate1",
            "ResourceType": "AWS::EC2::LaunchTemplate",
            "PhysicalResourceId": "lt-1",
            "ResourceStatus": "CREATE_COMPLETE",
        }]
        # Listed out of order on purpose.
        for ordinal in reversed(range(1, self.pool_count + 1)):
            resources.append({
                "LogicalResourceId": f"Pool{ordinal}",
                "ResourceType": "AWS::AutoScaling::AutoScalingGroup",
                "PhysicalResourceId": f"{StackName}-Pool{ordinal}",
                "ResourceStatus": "CREATE_COMPLETE",
            })
        return {"StackResources": resources}

    def update_stack(self, StackName, Parameters, **kwargs):
        self._record("update_stack", StackName=StackName, Parameters=Parameters, **kwargs)
        stack = self.stacks[StackName]
        for p in Parameters:
            if not p.get("UsePreviousValue"):
                for existing in stack["Parameters"]:
                    if existing["ParameterKey"] == p["ParameterKey"]:
                        existing["ParameterValue"] = p["ParameterValue"]
        stack["StackStatus"] = self.update_status
        return {"StackId": StackName}

    def delete_stack(self, StackName):
        self._record("delete_stack", StackName=StackName)
        return {}

    def get_paginator(self, operation):
        assert operation == "describe_stacks"
        fake = self

        class Paginator:
            def paginate(self):
                fake._record("describe_stacks")
                stacks = list(fake.stacks.values())
                yield {"Stacks": stacks[:2]}
                yield {"Stacks": stacks[2:]}

        return Paginator()


class FakeAutoScaling(FakeClient):
    """Instances come into service one describe after a resize."""

    service = "autoscaling"

    def __init__(self, log):
        super().__init__(log)
        self.groups = {}

    def _group(self, name):
        return self.groups.setdefault(name, {
            "AutoScalingGroupName": name,
            "MaxSize": 0,
            "DesiredCapacity": 0,
            "Instances": [],
            "_lagging": False,
        })

    def update_auto_scaling_group(self, AutoScalingGroupName, **kwargs):
        self._record("update_auto_scaling_group", AutoScalingGroupName=AutoScalingGroupName, **kwargs)
        group = self._group(AutoScalingGroupName)
        group["MaxSize"] = kwargs["MaxSize"]
        group["DesiredCapacity"] = kwargs["DesiredCapacity"]
        group["_lagging"] = True
        return {}

    def describe_auto_scaling_groups(self, AutoScalingGroupNames):
        self._record("describe_auto_scaling_groups", AutoScalingGroupNames=AutoScalingGroupNames)
        groups = []
        for name in AutoScalingGroupNames:
            group = self._group(name)
            if group["_lagging"]:
                group["_lagging"] = False
            else:
                group["Instances"] = [
                    {"InstanceId": f"i-{name}-{n}", "LifecycleState": "InService"}
                    for n in range(group["DesiredCapacity"])
                ]
            groups.append({k: v for k, v in group.items() if not k.startswith("_")})
        return {"AutoScalingGroups": groups}

    def sizes(self, names):
        return [self.groups[name]["DesiredCapacity"] for name in names]


class FakeCloudWatch(FakeClient):
    """Datapoints show up in the statistics after `lag` queries."""

    service = "cloudwatch"

    def __init__(self, log, lag=2):
        super().__init__(log)
        self.lag = lag
        self.datapoints = []

    def put_metric_data(self, Namespace, MetricData):
        self._record("put_metric_data", Namespace=Namespace, MetricData=MetricData)
        self.datapoints.extend(MetricData)
        return {}

    def get_metric_statistics(self, **kwargs):
        self._record("get_metric_statistics", **kwargs)
        if self.lag > 0:
            self.lag -= 1
            return {"Datapoints": []}
        visible = [
            d for d in self.datapoints
            if kwargs["StartTime"] <= d["Timestamp"] < kwargs["EndTime"]
        ]
        if not visible:
            return {"Datapoints": []}
        return {"Datapoints": [{"Timestamp": kwargs["StartTime"], "SampleCount": float(len(visible))}]}


class FakeEC2(FakeClient):
    service = "ec2"

    def __init__(self, log):
        super().__init__(log)
        self.vpcs = [{"VpcId": "vpc-default", "IsDefault": True}]
        self.subnets = [{"SubnetId": "subnet-b"}, {"SubnetId": "subnet-a"}]
        self.images = [{"ImageId": "ami-annex", "Name": "htcondor-annex-1"}]

    def describe_vpcs(self, **kwargs):
        self._record("describe_vpcs", **kwargs)
        return {"Vpcs": self.vpcs}

    def describe_subnets(self, **kwargs):
        self._record("describe_subnets", **kwargs)
        return {"Subnets": self.subnets}

    def describe_images(self, **kwargs):
        self._record("describe_images", **kwargs)
        return {"Images": self.images}


@pytest.fixture(autouse=True)
def htcondor_param(monkeypatch):
    """Stand-in for htcondor2.param, so the host's configuration can't leak in."""
    param = {}
    monkeypatch.setattr(condor_annex.config, "htcondor", SimpleNamespace(param=param))
    return param


@pytest.fixture(autouse=True)
def atexit_hooks(monkeypatch):
    """Collects the hooks teardown would register, instead of the interpreter."""
    hooks = []
    monkeypatch.setattr(condor_annex.teardown.atexit, "register", hooks.append)
    return hooks


@pytest.fixture(scope="function")
def call_log():
    return CallLog()


@pytest.fixture(scope="function")
def clients(call_log):
    return SimpleNamespace(
        s3=FakeS3(call_log),
        cloudformation=FakeCloudFormation(call_log),
        autoscaling=FakeAutoScaling(call_log),
        cloudwatch=FakeCloudWatch(call_log),
        ec2=FakeEC2(call_log),
    )


@pytest.fixture(scope="function")
def sleeps():
    return []


@pytest.fixture(scope="function")
def poller(sleeps):
    return ConvergencePoller(5, sleep=sleeps.append)


@pytest.fixture(scope="function")
def heartbeat_poller(sleeps):
    return ConvergencePoller(1, sleep=sleeps.append)


@pytest.fixture(scope="function")
def password_file(tmp_path):
    path = tmp_path / "pool_password"
    path.write_bytes(b"sekrit")
    return path


@pytest.fixture(scope="function")
def config(password_file):
    conf = get_default_config()
    conf.update({
        "central_manager": "cm.example.org",
        "password_file": str(password_file),
        "vpc_id": "vpc-1234",
        "subnet_ids": ["subnet-1", "subnet-2"],
        "image_id": "ami-1234",
    })
    return conf


@pytest.fixture(scope="function")
def controller(clients, config, poller, heartbeat_poller):
    return AnnexController(
        clients, config, "my-project",
        poller=poller, heartbeat_poller=heartbeat_poller,
    )


@pytest.fixture(scope="function")
def aws_error():
    """Builds the botocore ClientError a failing call would raise."""
    return client_error
