import os
import logging

from typing import (
    List,
    Optional,
)

from condor_annex.allocator import allocate
from condor_annex.errors import ArgumentError
from condor_annex.inventory import Inventory
from condor_annex.lease import LeaseRenewer
from condor_annex.model import (
    AnnexState,
    PoolSpec,
    PoolSpecs,
    ResourcePool,
    annex_bucket_name,
    annex_stack_name,
)
from condor_annex.poller import ConvergencePoller
from condor_annex.provisioner import StackProvisioner
from condor_annex.staging import CONFIG, PASSWORD, SecretStager
from condor_annex.teardown import TeardownManager

logger = logging.getLogger(__name__)


class AnnexController:
    """
    Creates, resizes, and re-leases the annex for one (central manager,
    project) pair.

    Nothing is remembered between invocations; everything we need to know
    about an existing annex comes from its stack.  Running two of these
    against the same annex at once is not supported.
    """

    def __init__(self, clients, config, project, logger=logger, poller=None, heartbeat_poller=None):
        self.config = config
        self.project = project
        self.logger = logger

        self.central_manager = config.get("central_manager")
        if not self.central_manager:
            raise ArgumentError(
                "Could not determine the central manager; set COLLECTOR_HOST or use --central-manager."
            )
        if not project:
            raise ArgumentError("A project is required.")

        self.stack_name = annex_stack_name(self.central_manager, project)
        self.bucket_name = annex_bucket_name(self.central_manager, project)

        if poller is None:
            poller = ConvergencePoller(config["poll_interval"], deadline=config.get("convergence_timeout"))
        if heartbeat_poller is None:
            heartbeat_poller = ConvergencePoller(
                config["heartbeat_poll_interval"], deadline=config.get("convergence_timeout"),
            )

        self.provisioner = StackProvisioner(
            clients.cloudformation, clients.autoscaling,
            self.stack_name, config["template_url"], poller,
        )
        self.stager = SecretStager(clients.s3, self.bucket_name, self.stack_name, config["region"])
        self.teardown = TeardownManager(self.stager, logger=logger)
        self.lease = LeaseRenewer(
            clients.cloudwatch, self.provisioner, config["heartbeat_namespace"], heartbeat_poller,
        )
        self.inventory = Inventory(clients.ec2, logger=logger)

    def run(self, size: Optional[int] = None, lease_duration: Optional[int] = None, pools: Optional[PoolSpecs] = None) -> List[ResourcePool]:
        """
        Bring the annex to ``size`` instances, with a lease of
        ``lease_duration`` minutes from now, creating it if necessary.
        Either may be None to leave it alone (when the annex exists).
        """
        if size is not None and size < 0:
            raise ArgumentError(f"The annex size must not be negative (got {size}).")

        state = self.provisioner.state()
        self.logger.debug(f"Annex {self.stack_name} is {state.name}.")

        renew = False
        if state is AnnexState.ABSENT:
            if size is None:
                raise ArgumentError("To create an annex, you must specify how many instances it should have.")
            self.create(size, lease_duration, pools)
        else:
            if pools is not None and len(pools) > 0:
                self.logger.warning("The annex already exists; its pools can't be changed, ignoring --pool.")
            renew = lease_duration is not None

        resource_pools = self.provisioner.wait_for_pools()
        self.logger.debug(f"Found pools {resource_pools}.")

        sizes = None
        if size is not None:
            sizes = allocate(size, len(resource_pools))
            self.logger.info(f"Setting annex size to {size} ({', '.join(str(s) for s in sizes)}).")
            self.provisioner.apply_capacity(resource_pools, sizes)

        if renew:
            self.logger.info(f"Changing the lease to {lease_duration} minute(s) from now...")
            if self.lease.renew(lease_duration):
                self.provisioner.wait_for_update()
            else:
                self.provisioner.wait_for_pools()
            self.logger.info("... done.")

        if sizes is not None:
            self.provisioner.wait_for_capacity(resource_pools, sizes)

        return resource_pools

    def resolve_pools(self, pools: Optional[PoolSpecs]) -> PoolSpecs:
        if pools is not None and len(pools) > 0:
            return pools
        image_id = self.config.get("image_id") or self.inventory.default_image()
        return PoolSpecs([PoolSpec(image_id, self.config["instance_type"])])

    def resolve_network(self):
        vpc_id = self.config.get("vpc_id") or self.inventory.default_vpc()
        subnet_ids = self.config.get("subnet_ids") or self.inventory.subnets(vpc_id)
        return vpc_id, subnet_ids

    def create(self, size: int, lease_duration: Optional[int], pools: Optional[PoolSpecs]):
        password_file = self.config.get("password_file")
        if not password_file:
            raise ArgumentError("A pool password file is required; set ANNEX_PASSWORD_FILE or use --password-file.")
        password_file = os.path.expanduser(password_file)
        if not os.path.isfile(password_file):
            raise ArgumentError(f"Password file '{password_file}' does not exist.")

        config_file = self.config.get("config_file")
        if config_file:
            config_file = os.path.expanduser(config_file)
            if not os.path.isfile(config_file):
                raise ArgumentError(f"Configuration file '{config_file}' does not exist.")

        if lease_duration is None:
            lease_duration = self.config["lease_duration"]

        pools = self.resolve_pools(pools)
        vpc_id, subnet_ids = self.resolve_network()

        self.logger.info(
            f"Creating annex {self.stack_name} with {size} instance(s) in {len(pools)} pool(s), "
            f"leased for {lease_duration} minute(s)..."
        )

        with self.teardown:
            password_url = self.stager.stage(PASSWORD, password_file)
            config_url = None
            if config_file:
                config_url = self.stager.stage(CONFIG, config_file)

            parameters = self.provisioner.build_parameters(
                central_manager=self.central_manager,
                keypair=self.config.get("keypair", ""),
                lease_duration=lease_duration,
                size=size,
                project=self.project,
                vpc_id=vpc_id,
                subnet_ids=subnet_ids,
                pools=pools,
                password_url=password_url,
                config_url=config_url,
            )
            self.provisioner.create(parameters)
            self.teardown.transfer_ownership()

        self.logger.info("... stack requested.")

    def delete(self):
        """Delete the annex's stack.  Nothing is staged or torn down."""
        self.logger.info(f"Deleting annex {self.stack_name}...")
        self.provisioner.delete()
        self.logger.info("... deletion requested.")
