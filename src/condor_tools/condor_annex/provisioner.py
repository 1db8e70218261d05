import re
import logging

from typing import (
    List,
    Optional,
)

from botocore.exceptions import ClientError

from condor_annex.errors import ProvisioningError
from condor_annex.model import (
    AnnexState,
    PoolSpecs,
    ResourcePool,
    StackParameters,
)

logger = logging.getLogger(__name__)


POOL_RESOURCE_TYPE = "AWS::AutoScaling::AutoScalingGroup"

# The template names its Auto Scaling groups Pool1 .. Pool8.
POOL_LOGICAL_ID = re.compile(r"^Pool(\d+)$")


def _is_missing_stack(error):
    message = error.response.get("Error", {}).get("Message", "")
    return "does not exist" in message


def _is_no_op_update(error):
    message = error.response.get("Error", {}).get("Message", "")
    return "No updates are to be performed" in message


class StackProvisioner:
    """
    Creates and inspects the CloudFormation stack backing one annex, and
    sets the capacity of its resource pools.

    Describe calls may lag behind a create or update, so anything that has
    to see the result of one goes through the poller.
    """

    def __init__(self, cloudformation, autoscaling, stack_name, template_url, poller):
        self.cloudformation = cloudformation
        self.autoscaling = autoscaling
        self.stack_name = stack_name
        self.template_url = template_url
        self.poller = poller

    #
    # Stack-level operations.
    #

    def describe(self) -> Optional[dict]:
        """Returns the stack's description, or None if there is no such stack."""
        try:
            response = self.cloudformation.describe_stacks(StackName=self.stack_name)
        except ClientError as e:
            if _is_missing_stack(e):
                return None
            raise ProvisioningError(f"Failed to describe stack {self.stack_name}: {e}") from e

        stacks = response.get("Stacks", [])
        if len(stacks) == 0:
            return None
        return stacks[0]

    def state(self) -> AnnexState:
        stack = self.describe()
        return AnnexState.from_stack_status(None if stack is None else stack["StackStatus"])

    def build_parameters(
        self,
        *,
        central_manager: str,
        keypair: str,
        lease_duration: int,
        size: int,
        project: str,
        vpc_id: str,
        subnet_ids: List[str],
        pools: PoolSpecs,
        password_url: Optional[str] = None,
        config_url: Optional[str] = None,
    ) -> StackParameters:
        parameters = StackParameters()
        parameters["CentralManager"] = central_manager
        parameters["KeyName"] = keypair
        parameters["LeaseDuration"] = lease_duration
        parameters["Size"] = size
        # Only present if this invocation staged them.
        if password_url is not None:
            parameters["PasswordURL"] = password_url
        if config_url is not None:
            parameters["ConfigURL"] = config_url
        parameters["ProjectID"] = project
        parameters["VpcID"] = vpc_id
        parameters["SubnetIDs"] = ",".join(subnet_ids)

        for ordinal, pool in enumerate(pools, start=1):
            parameters[f"ImageID{ordinal}"] = pool.image_id
            parameters[f"InstanceType{ordinal}"] = pool.instance_type
            if pool.spot_price is not None:
                parameters[f"SpotPrice{ordinal}"] = pool.spot_price

        return parameters

    def create(self, parameters: StackParameters) -> str:
        logger.debug(f"Creating stack {self.stack_name} from {self.template_url}...")
        try:
            response = self.cloudformation.create_stack(
                StackName=self.stack_name,
                TemplateURL=self.template_url,
                Parameters=parameters.to_cloudformation(),
                Capabilities=["CAPABILITY_IAM"],
            )
        except ClientError as e:
            raise ProvisioningError(f"Failed to create stack {self.stack_name}: {e}") from e

        stack_id = response.get("StackId")
        logger.debug(f"... created {stack_id}.")
        return stack_id

    def update_lease(self, lease_duration: int):
        """
        Change LeaseDuration and nothing else.  CloudFormation needs every
        parameter restated, so the rest are marked to keep their values.
        Returns False if the stack already had that duration.
        """
        stack = self.describe()
        if stack is None:
            raise ProvisioningError(f"Stack {self.stack_name} disappeared before its lease could be updated.")

        existing_keys = [p["ParameterKey"] for p in stack.get("Parameters", [])]
        parameters = StackParameters.for_update(existing_keys, LeaseDuration=lease_duration)

        logger.debug(f"Updating stack {self.stack_name} with {parameters.changed()}...")
        try:
            self.cloudformation.update_stack(
                StackName=self.stack_name,
                UsePreviousTemplate=True,
                Parameters=parameters.to_cloudformation(),
                Capabilities=["CAPABILITY_IAM"],
            )
        except ClientError as e:
            if _is_no_op_update(e):
                logger.debug("... lease already had that duration.")
                return False
            raise ProvisioningError(f"Failed to update lease for stack {self.stack_name}: {e}") from e
        return True

    def delete(self):
        logger.debug(f"Deleting stack {self.stack_name}...")
        try:
            self.cloudformation.delete_stack(StackName=self.stack_name)
        except ClientError as e:
            raise ProvisioningError(f"Failed to delete stack {self.stack_name}: {e}") from e

    #
    # Resource pools.
    #

    def list_pools(self) -> List[ResourcePool]:
        try:
            response = self.cloudformation.describe_stack_resources(StackName=self.stack_name)
        except ClientError as e:
            if _is_missing_stack(e):
                return []
            raise ProvisioningError(f"Failed to list resources of stack {self.stack_name}: {e}") from e

        pools = []
        for resource in response.get("StackResources", []):
            if resource.get("ResourceType") != POOL_RESOURCE_TYPE:
                continue
            if resource.get("ResourceStatus") != "CREATE_COMPLETE" and \
                    not resource.get("ResourceStatus", "").startswith("UPDATE_"):
                continue
            match = POOL_LOGICAL_ID.match(resource.get("LogicalResourceId", ""))
            if match is None or not resource.get("PhysicalResourceId"):
                continue
            pools.append(ResourcePool(int(match.group(1)), resource["PhysicalResourceId"]))

        pools.sort(key=lambda pool: pool.ordinal)
        return pools

    def wait_for_pools(self) -> List[ResourcePool]:
        """
        Wait for the stack to settle and for its pools to show up, then
        return the pools in ordinal order.
        """
        def fetch():
            stack = self.describe()
            # Raises if the stack has failed or is going away.
            state = AnnexState.from_stack_status(None if stack is None else stack["StackStatus"])
            pools = self.list_pools() if state is AnnexState.ACTIVE else []
            return (stack, state, pools)

        def settled(observed):
            stack, state, pools = observed
            return state is AnnexState.ACTIVE and len(pools) > 0

        def progress(observed):
            stack, state, pools = observed
            status = "not yet visible" if stack is None else stack["StackStatus"]
            return f"stack {status}, {len(pools)} pool(s)"

        stack, state, pools = self.poller.wait(
            fetch, settled, progress=progress, description=f"stack {self.stack_name}",
        )
        return pools

    def wait_for_update(self) -> List[ResourcePool]:
        """
        Like :meth:`wait_for_pools`, after an update; raises if the update
        was rolled back, since the stack is then usable but unchanged.
        """
        pools = self.wait_for_pools()
        stack = self.describe()
        if stack is not None and stack["StackStatus"].startswith("UPDATE_ROLLBACK"):
            raise ProvisioningError(
                f"The update to stack {self.stack_name} was rolled back ({stack['StackStatus']}); "
                f"see its events for the reason.  The annex is otherwise unchanged."
            )
        return pools

    def observe_pools(self, pools: List[ResourcePool]) -> List[ResourcePool]:
        """Refresh each pool's desired capacity and in-service instance count."""
        names = [pool.name for pool in pools]
        try:
            response = self.autoscaling.describe_auto_scaling_groups(AutoScalingGroupNames=names)
        except ClientError as e:
            raise ProvisioningError(f"Failed to describe pools {', '.join(names)}: {e}") from e

        groups = {group["AutoScalingGroupName"]: group for group in response.get("AutoScalingGroups", [])}
        for pool in pools:
            group = groups.get(pool.name)
            if group is None:
                pool.instance_count = 0
                continue
            pool.desired_capacity = group.get("DesiredCapacity", 0)
            pool.instance_count = len([
                instance for instance in group.get("Instances", [])
                if instance.get("LifecycleState") == "InService"
            ])
        return pools

    def apply_capacity(self, pools: List[ResourcePool], sizes: List[int]):
        """
        Set each pool's maximum and desired capacity to its size.  This
        goes straight to Auto Scaling; the stack's Size parameter is not
        touched.
        """
        assert len(pools) == len(sizes)
        for pool, size in zip(pools, sizes):
            logger.debug(f"Setting capacity of pool {pool.ordinal} ({pool.name}) to {size}...")
            try:
                self.autoscaling.update_auto_scaling_group(
                    AutoScalingGroupName=pool.name,
                    MaxSize=size,
                    DesiredCapacity=size,
                )
            except ClientError as e:
                raise ProvisioningError(f"Failed to resize pool {pool.name}: {e}") from e
            pool.desired_capacity = size

    def wait_for_capacity(self, pools: List[ResourcePool], sizes: List[int]) -> List[ResourcePool]:
        wanted = {pool.name: size for pool, size in zip(pools, sizes)}

        def converged(observed):
            return all(pool.instance_count == wanted[pool.name] for pool in observed)

        def progress(observed):
            return f"{sum(pool.instance_count for pool in observed)} of {sum(sizes)} instances in service"

        return self.poller.wait(
            lambda: self.observe_pools(pools), converged, progress=progress,
            description=f"annex {self.stack_name} capacity",
        )
