import logging

from typing import List

from botocore.exceptions import ClientError

from condor_annex.errors import InventoryLookupError

logger = logging.getLogger(__name__)


# Images built for the annex are expected to follow this naming convention.
ANNEX_IMAGE_PATTERN = "htcondor-annex-*"


class Inventory:
    """
    Looks up the defaults an annex needs when the user and the
    configuration don't supply them.  When more than one candidate turns
    up, we take the first and say so.
    """

    def __init__(self, ec2, logger=logger):
        self.ec2 = ec2
        self.logger = logger

    def _call(self, what, method, **kwargs):
        try:
            return method(**kwargs)
        except ClientError as e:
            raise InventoryLookupError(f"Failed to look up {what}: {e}") from e

    def default_vpc(self) -> str:
        response = self._call(
            "the default VPC", self.ec2.describe_vpcs,
            Filters=[{"Name": "isDefault", "Values": ["true"]}],
        )
        vpcs = [vpc["VpcId"] for vpc in response.get("Vpcs", [])]
        if len(vpcs) == 0:
            raise InventoryLookupError("This region has no default VPC; use --vpc.")
        if len(vpcs) > 1:
            self.logger.warning(f"Found {len(vpcs)} default VPCs, using {vpcs[0]}.")
        return vpcs[0]

    def subnets(self, vpc_id: str) -> List[str]:
        response = self._call(
            f"subnets in {vpc_id}", self.ec2.describe_subnets,
            Filters=[{"Name": "vpc-id", "Values": [vpc_id]}],
        )
        subnets = sorted(subnet["SubnetId"] for subnet in response.get("Subnets", []))
        if len(subnets) == 0:
            raise InventoryLookupError(f"VPC {vpc_id} has no subnets; use --subnet.")
        return subnets

    def default_image(self) -> str:
        response = self._call(
            "an annex image", self.ec2.describe_images,
            Owners=["self"],
            Filters=[{"Name": "name", "Values": [ANNEX_IMAGE_PATTERN]}],
        )
        images = sorted(response.get("Images", []), key=lambda image: (image.get("Name", ""), image["ImageId"]))
        if len(images) == 0:
            raise InventoryLookupError(
                f"Found no image named like '{ANNEX_IMAGE_PATTERN}'; use --pool or set ANNEX_DEFAULT_IMAGE_ID."
            )
        if len(images) > 1:
            self.logger.warning(
                f"Found {len(images)} annex images, using {images[0]['ImageId']} ({images[0].get('Name')})."
            )
        return images[0]["ImageId"]
