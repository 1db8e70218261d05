import argparse

from datetime import datetime, timedelta

from condor_annex.noun import Noun
from condor_annex.verb import (
    Verb,
    PROJECT_OPTION,
    REGION_OPTION,
    CENTRAL_MANAGER_OPTION,
)
from condor_annex.aws import AnnexClients, make_session
from condor_annex.config import get_config
from condor_annex.controller import AnnexController
from condor_annex.errors import ArgumentError, ProvisioningError
from condor_annex.lease import lease_minutes_until
from condor_annex.maintenance import delete_failed_stacks
from condor_annex.model import AnnexState, PoolSpec, PoolSpecs


def timestamp(text):
    # fromisoformat() only learned to read "Z" in Python 3.11.
    if text.endswith(("Z", "z")):
        text = text[:-1] + "+00:00"
    try:
        return datetime.fromisoformat(text)
    except ValueError:
        raise argparse.ArgumentTypeError(f"'{text}' is not an ISO 8601 date and time")


class Create(Verb):
    """
    Create an annex, or resize or re-lease the one that already exists.
    """

    options = {
        "project": PROJECT_OPTION,
        "count": {
            "args": ("--count",),
            "dest": "count",
            "help": "Total number of instances in the annex (required to create one)",
            "type": int,
            "default": None,
        },
        "expiry": {
            "args": ("--expiry",),
            "dest": "expiry",
            "metavar": "TIMESTAMP",
            "help": "When the annex's lease should end, as an ISO 8601 date and time",
            "type": timestamp,
            "default": None,
        },
        "duration": {
            "args": ("--duration",),
            "dest": "duration",
            "metavar": "MINUTES",
            "help": "Lease duration, in minutes from now.  New annexes default to ANNEX_DEFAULT_LEASE_DURATION, or 50",
            "type": int,
            "default": None,
        },
        "keypair": {
            "args": ("--keypair",),
            "dest": "keypair",
            "help": "EC2 key pair to install on the instances",
            "default": None,
        },
        "region": REGION_OPTION,
        "vpc_id": {
            "args": ("--vpc",),
            "dest": "vpc_id",
            "help": "VPC to start the instances in.  Defaults to the region's default VPC",
            "default": None,
        },
        "subnet_ids": {
            "args": ("--subnet",),
            "dest": "subnet_ids",
            "action": "append",
            "help": "Subnet to start instances in (may be repeated).  Defaults to every subnet in the VPC",
            "default": None,
        },
        "pools": {
            "args": ("--pool",),
            "dest": "pools",
            "action": "append",
            "metavar": "IMAGE:TYPE[:PRICE]",
            "help": "A resource pool (may be repeated, up to 8 times); give a price for spot instances",
            "default": None,
        },
        "password_file": {
            "args": ("--password-file",),
            "dest": "password_file",
            "help": "The pool password file.  Defaults to ANNEX_PASSWORD_FILE or SEC_PASSWORD_FILE",
            "default": None,
        },
        "config_file": {
            "args": ("--config-file",),
            "dest": "config_file",
            "help": "Extra HTCondor configuration for the annex's instances",
            "default": None,
        },
        "central_manager": CENTRAL_MANAGER_OPTION,
    }

    def __init__(self, logger, project, count=None, expiry=None, duration=None, pools=None, **options):
        if expiry is not None and duration is not None:
            raise ArgumentError("Use either --expiry or --duration, not both.")
        if count is not None and count < 0:
            raise ArgumentError("--count must not be negative.")
        if duration is not None and duration <= 0:
            raise ArgumentError("--duration must be positive.")

        pool_specs = None
        if pools:
            pool_specs = PoolSpecs(PoolSpec.parse(text) for text in pools)

        lease_duration = duration
        if expiry is not None:
            lease_duration = lease_minutes_until(expiry)

        config = get_config(**options)
        controller = AnnexController(AnnexClients.from_config(config), config, project, logger=logger)
        resource_pools = controller.run(size=count, lease_duration=lease_duration, pools=pool_specs)

        if count is not None:
            logger.info(f"Annex {controller.stack_name} has {count} instance(s) in {len(resource_pools)} pool(s).")
        else:
            logger.info(f"Annex {controller.stack_name} is up to date.")


class Status(Verb):
    """
    Show an annex's state, lease, and pools.
    """

    options = {
        "project": PROJECT_OPTION,
        "region": REGION_OPTION,
        "central_manager": CENTRAL_MANAGER_OPTION,
    }

    def __init__(self, logger, project, **options):
        config = get_config(**options)
        controller = AnnexController(AnnexClients.from_config(config), config, project, logger=logger)
        provisioner = controller.provisioner

        stack = provisioner.describe()
        try:
            state = AnnexState.from_stack_status(None if stack is None else stack["StackStatus"])
        except ProvisioningError:
            logger.info(f"Annex {controller.stack_name} is {stack['StackStatus']}; "
                        f"it can only be deleted (condor_annex annex delete).")
            return
        if state is AnnexState.ABSENT:
            logger.info(f"There is no annex for project '{project}' (looked for {controller.stack_name}).")
            return

        parameters = {p["ParameterKey"]: p.get("ParameterValue") for p in stack.get("Parameters", [])}
        logger.info(f"Annex {controller.stack_name} is {state.name} ({stack['StackStatus']}).")

        lease_duration = parameters.get("LeaseDuration")
        leased_at = stack.get("LastUpdatedTime", stack.get("CreationTime"))
        if lease_duration is not None and leased_at is not None:
            expires = leased_at + timedelta(minutes=int(lease_duration))
            logger.info(f"Its lease of {lease_duration} minute(s) was set at {leased_at:%Y-%m-%d %H:%M:%S %Z} "
                        f"and ends at about {expires:%Y-%m-%d %H:%M:%S %Z}.")

        pools = provisioner.list_pools()
        if len(pools) == 0:
            logger.info("It has no pools yet.")
            return
        provisioner.observe_pools(pools)

        width = max(len(pool.name) for pool in pools)
        logger.info("")
        logger.info(f"{'Pool':>4}  {'Group':<{width}}  {'Desired':>7}  {'Running':>7}")
        for pool in pools:
            logger.info(f"{pool.ordinal:>4}  {pool.name:<{width}}  {pool.desired_capacity:>7}  {pool.instance_count:>7}")
        logger.info(
            f"{'':>4}  {'Total':<{width}}  {sum(p.desired_capacity for p in pools):>7}  "
            f"{sum(p.instance_count for p in pools):>7}"
        )


class Delete(Verb):
    """
    Delete an annex's stack, which terminates its instances.
    """

    options = {
        "project": PROJECT_OPTION,
        "region": REGION_OPTION,
        "central_manager": CENTRAL_MANAGER_OPTION,
    }

    def __init__(self, logger, project, **options):
        config = get_config(**options)
        controller = AnnexController(AnnexClients.from_config(config), config, project, logger=logger)
        controller.delete()


class Cleanup(Verb):
    """
    Retry deleting every stack stuck in DELETE_FAILED.  Suitable for cron.
    """

    options = {
        "region": REGION_OPTION,
    }

    def __init__(self, logger, **options):
        config = get_config(**options)
        session = make_session(config["region"], config.get("access_key_file"), config.get("secret_key_file"))
        delete_failed_stacks(session.client("cloudformation"), logger=logger)


class Annex(Noun):
    """
    Operations on cloud annexes.
    """

    class create(Create):
        pass

    class status(Status):
        pass

    class delete(Delete):
        pass

    @classmethod
    def verbs(cls):
        return [cls.create, cls.status, cls.delete]


class Stacks(Noun):
    """
    Maintenance of the CloudFormation stacks annexes leave behind.
    """

    class cleanup(Cleanup):
        pass

    @classmethod
    def verbs(cls):
        return [cls.cleanup]
