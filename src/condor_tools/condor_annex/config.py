import logging

import htcondor2 as htcondor

from condor_annex.errors import ArgumentError

logger = logging.getLogger(__name__)


# The key files, region, and password-file knobs share their names with
# the ones the previous condor_annex used, so existing configurations
# keep working.
HTCONDOR_KNOBS = {
    "region": "ANNEX_DEFAULT_AWS_REGION",
    "access_key_file": "ANNEX_DEFAULT_ACCESS_KEY_FILE",
    "secret_key_file": "ANNEX_DEFAULT_SECRET_KEY_FILE",
    "keypair": "ANNEX_DEFAULT_KEYPAIR",
    "vpc_id": "ANNEX_DEFAULT_VPC_ID",
    "subnet_ids": "ANNEX_DEFAULT_SUBNET_IDS",
    "image_id": "ANNEX_DEFAULT_IMAGE_ID",
    "instance_type": "ANNEX_DEFAULT_INSTANCE_TYPE",
    "lease_duration": "ANNEX_DEFAULT_LEASE_DURATION",
    "template_url": "ANNEX_TEMPLATE_URL",
    "poll_interval": "ANNEX_POLL_INTERVAL",
    "heartbeat_poll_interval": "ANNEX_HEARTBEAT_POLL_INTERVAL",
    "convergence_timeout": "ANNEX_CONVERGENCE_TIMEOUT",
    "heartbeat_namespace": "ANNEX_HEARTBEAT_NAMESPACE",
}

INT_KEYS = ["lease_duration", "poll_interval", "heartbeat_poll_interval", "convergence_timeout"]


def get_default_config():

    defaults = {
        "region": "us-east-1",
        "access_key_file": None,
        "secret_key_file": None,
        "central_manager": None,
        "keypair": "",
        "vpc_id": None,
        "subnet_ids": [],
        "image_id": None,
        "instance_type": "m5.large",
        # In minutes.  The old tool documented fifty minutes as the default
        # lease (to stay under an hour of billing); we keep that.
        "lease_duration": 50,
        "password_file": None,
        "config_file": None,
        "template_url": "https://s3.amazonaws.com/condor-annex/template-1.json",
        "poll_interval": 5,
        "heartbeat_poll_interval": 1,
        # None means wait forever.
        "convergence_timeout": None,
        "heartbeat_namespace": "HTCondor/Annex",
    }
    return defaults


def first_collector(collector_host):
    """
    COLLECTOR_HOST may list several collectors, separated by commas or
    whitespace; the annex reports to the first one.
    """
    if collector_host is None:
        return None
    for host in collector_host.replace(" ", ",").replace("\t", ",").split(","):
        if host != "":
            return host
    return None


def get_htcondor_config():

    p = htcondor.param
    conf = {key: p.get(knob) for key, knob in HTCONDOR_KNOBS.items()}
    conf["central_manager"] = first_collector(p.get("COLLECTOR_HOST"))
    conf["password_file"] = p.get("ANNEX_PASSWORD_FILE", p.get("SEC_PASSWORD_FILE"))

    # remove unset values
    conf = {k: v for k, v in conf.items() if v is not None and str(v) != ""}

    return normalize_config_types(conf)


def normalize_config_types(conf):
    for key in INT_KEYS:
        if conf.get(key) is None:
            continue
        try:
            conf[key] = int(conf[key])
        except (TypeError, ValueError):
            raise ArgumentError(f"The value of {key} ('{conf[key]}') must be an integer.")
        if conf[key] < 0:
            raise ArgumentError(f"The value of {key} must not be negative.")

    subnet_ids = conf.get("subnet_ids")
    if isinstance(subnet_ids, str):
        conf["subnet_ids"] = [s.strip() for s in subnet_ids.replace(" ", ",").split(",") if s.strip()]

    return conf


def get_config(**overrides):
    """
    Returns the effective configuration: built-in defaults, overridden by
    the HTCondor configuration, overridden by any non-None keyword
    argument (normally, command-line options).
    """
    conf = get_default_config()
    conf.update(get_htcondor_config())
    conf.update(normalize_config_types({k: v for k, v in overrides.items() if v is not None}))
    logger.debug(f"Using configuration {conf}")
    return conf
