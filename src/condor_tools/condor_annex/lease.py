import enum
import math
import logging

from datetime import datetime, timedelta, timezone

from botocore.exceptions import ClientError

from condor_annex.errors import ArgumentError, ProvisioningError

logger = logging.getLogger(__name__)


HEARTBEAT_METRIC = "Heartbeat"


def utcnow():
    return datetime.now(timezone.utc)


def lease_minutes_until(expiry: datetime, now: datetime = None) -> int:
    """
    The lease duration, in whole minutes, that ends the lease at (or just
    before) ``expiry``.  Partial minutes are dropped.
    """
    if now is None:
        now = utcnow()
    if expiry.tzinfo is None:
        # Naive timestamps are the user's local time.
        expiry = expiry.astimezone()
    minutes = math.floor((expiry - now).total_seconds() / 60)
    if minutes <= 0:
        raise ArgumentError(f"The expiry time {expiry.isoformat()} is not at least a minute in the future.")
    return minutes


class LeaseState(enum.Enum):
    IDLE = enum.auto()
    HEARTBEAT_SENT = enum.auto()
    HEARTBEAT_CONFIRMED = enum.auto()
    DURATION_UPDATED = enum.auto()


class LeaseRenewer:
    """
    Changes an annex's lease duration.

    The annex's lease is enforced by an alarm on its heartbeat metric.  If
    we shortened the lease while the most recent heartbeat was stale, the
    alarm could fire as soon as it re-evaluated.  So we first write a fresh
    heartbeat, wait until CloudWatch's statistics include it, and only then
    update the stack.
    """

    def __init__(self, cloudwatch, provisioner, namespace, poller, clock=utcnow):
        self.cloudwatch = cloudwatch
        self.provisioner = provisioner
        self.namespace = namespace
        self.poller = poller
        self.clock = clock
        self.state = LeaseState.IDLE

    @property
    def dimensions(self):
        return [{"Name": "AnnexName", "Value": self.provisioner.stack_name}]

    def renew(self, lease_duration: int):
        self.state = LeaseState.IDLE

        now = self.clock()
        self.send_heartbeat(now)
        self.state = LeaseState.HEARTBEAT_SENT

        self.confirm_heartbeat(now)
        self.state = LeaseState.HEARTBEAT_CONFIRMED

        updated = self.provisioner.update_lease(lease_duration)
        self.state = LeaseState.DURATION_UPDATED
        return updated

    def send_heartbeat(self, now: datetime):
        logger.debug(f"Sending heartbeat for {self.provisioner.stack_name} at {now.isoformat()}...")
        try:
            self.cloudwatch.put_metric_data(
                Namespace=self.namespace,
                MetricData=[
                    {
                        "MetricName": HEARTBEAT_METRIC,
                        "Dimensions": self.dimensions,
                        "Timestamp": now,
                        "Value": 1.0,
                        "Unit": "Count",
                    },
                ],
            )
        except ClientError as e:
            raise ProvisioningError(f"Failed to send heartbeat, lease not changed: {e}") from e

    def confirm_heartbeat(self, now: datetime):
        start = now.replace(second=0, microsecond=0)
        end = start + timedelta(minutes=1)

        def fetch():
            try:
                response = self.cloudwatch.get_metric_statistics(
                    Namespace=self.namespace,
                    MetricName=HEARTBEAT_METRIC,
                    Dimensions=self.dimensions,
                    StartTime=start,
                    EndTime=end,
                    Period=60,
                    Statistics=["SampleCount"],
                )
            except ClientError as e:
                raise ProvisioningError(f"Failed to read heartbeat statistics, lease not changed: {e}") from e
            return response.get("Datapoints", [])

        def visible(datapoints):
            return any(point.get("SampleCount", 0) > 0 for point in datapoints)

        self.poller.wait(
            fetch, visible, progress=len, description="heartbeat to become visible",
        )
