import boto3

from condor_annex.errors import ArgumentError


def read_key_file(path):
    try:
        with open(path, "r") as f:
            return f.read().strip()
    except OSError as e:
        raise ArgumentError(f"Failed to read credential file '{e.filename}': {e.strerror}") from e


def make_session(region, access_key_file=None, secret_key_file=None):
    """
    If both key files are configured, use the keys in them; otherwise, let
    boto3 find credentials the usual way.
    """
    if access_key_file and secret_key_file:
        return boto3.session.Session(
            region_name=region,
            aws_access_key_id=read_key_file(access_key_file),
            aws_secret_access_key=read_key_file(secret_key_file),
        )
    return boto3.session.Session(region_name=region)


class AnnexClients:
    """The AWS service clients one annex invocation talks to."""

    def __init__(self, session):
        self.cloudformation = session.client("cloudformation")
        self.s3 = session.client("s3")
        self.autoscaling = session.client("autoscaling")
        self.cloudwatch = session.client("cloudwatch")
        self.ec2 = session.client("ec2")

    @classmethod
    def from_config(cls, config):
        return cls(make_session(
            config["region"],
            config.get("access_key_file"),
            config.get("secret_key_file"),
        ))
