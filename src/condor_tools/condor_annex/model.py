import re
import enum
import hashlib

from typing import (
    Dict,
    List,
    Optional,
)

from condor_annex.errors import ArgumentError, ProvisioningError


# The template declares ImageID1 .. ImageID8 (and so on); there's no way to
# ask it for a ninth pool.
MAX_POOLS = 8


class AnnexState(enum.Enum):
    """
    Where an annex is in its life, as far as we can tell from its stack.

    .. attribute:: ABSENT

    .. attribute:: CREATING

    .. attribute:: ACTIVE

    .. attribute:: UPDATING
    """

    ABSENT = enum.auto()
    CREATING = enum.auto()
    ACTIVE = enum.auto()
    UPDATING = enum.auto()

    @classmethod
    def from_stack_status(cls, stack_status: Optional[str]) -> "AnnexState":
        if stack_status is None:
            return cls.ABSENT
        if stack_status == "CREATE_IN_PROGRESS":
            return cls.CREATING
        # A rolled-back update leaves the stack as it was before: still running.
        if stack_status in ("CREATE_COMPLETE", "UPDATE_COMPLETE", "UPDATE_ROLLBACK_COMPLETE"):
            return cls.ACTIVE
        if stack_status in (
            "UPDATE_IN_PROGRESS",
            "UPDATE_COMPLETE_CLEANUP_IN_PROGRESS",
            "UPDATE_ROLLBACK_IN_PROGRESS",
            "UPDATE_ROLLBACK_COMPLETE_CLEANUP_IN_PROGRESS",
        ):
            return cls.UPDATING
        if stack_status == "DELETE_COMPLETE":
            return cls.ABSENT
        raise ProvisioningError(
            f"The annex's stack is in state {stack_status}, which this tool can't "
            f"do anything with.  Delete the annex and try again."
        )


class PoolSpec:
    """
    One homogeneous resource pool: an image, an instance type, and (for
    spot instances) a price ceiling.
    """

    def __init__(self, image_id: str, instance_type: str, spot_price: Optional[str] = None):
        assert isinstance(image_id, str)
        self.image_id = image_id

        assert isinstance(instance_type, str)
        self.instance_type = instance_type

        assert spot_price is None or isinstance(spot_price, str)
        self.spot_price = spot_price

    @classmethod
    def parse(cls, text: str) -> "PoolSpec":
        """Parses ``IMAGE:TYPE[:PRICE]``, as given to ``--pool``."""
        fields = text.split(":")
        if len(fields) not in (2, 3) or not all(fields):
            raise ArgumentError(
                f"Pool '{text}' must have the form image-id:instance-type[:spot-price]."
            )
        spot_price = None
        if len(fields) == 3:
            spot_price = fields[2]
            try:
                if float(spot_price) <= 0:
                    raise ValueError(spot_price)
            except ValueError:
                raise ArgumentError(f"Spot price '{spot_price}' must be a positive number.")
        return cls(fields[0], fields[1], spot_price)

    def __eq__(self, other):
        if not isinstance(other, PoolSpec):
            return NotImplemented
        return (self.image_id, self.instance_type, self.spot_price) == \
            (other.image_id, other.instance_type, other.spot_price)

    def __repr__(self):
        price = "" if self.spot_price is None else f", spot_price='{self.spot_price}'"
        return f"{self.__class__.__name__}(image_id='{self.image_id}', instance_type='{self.instance_type}'{price})"


class PoolSpecs:
    """
    An ordered, bounded list of :class:`PoolSpec`.  The order is the
    ordinal order of the template's indexed parameters.
    """

    def __init__(self, specs=(), capacity: int = MAX_POOLS):
        self.capacity = capacity
        self._specs: List[PoolSpec] = []
        for spec in specs:
            self.append(spec)

    def append(self, spec: PoolSpec):
        if len(self._specs) >= self.capacity:
            raise ArgumentError(f"An annex may have at most {self.capacity} pools.")
        self._specs.append(spec)

    def __len__(self):
        return len(self._specs)

    def __iter__(self):
        return iter(self._specs)

    def __getitem__(self, index):
        return self._specs[index]


class ResourcePool:
    """
    A pool as observed remotely.  ``ordinal`` is its 1-based position in
    the template; ``name`` is the Auto Scaling group's name.
    """

    def __init__(self, ordinal: int, name: str, desired_capacity: int = 0, instance_count: int = 0):
        self.ordinal = ordinal
        self.name = name
        self.desired_capacity = desired_capacity
        self.instance_count = instance_count

    def __repr__(self):
        return (
            f"{self.__class__.__name__}(ordinal={self.ordinal}, name='{self.name}', "
            f"desired_capacity={self.desired_capacity}, instance_count={self.instance_count})"
        )


class _KeepPrevious:
    def __repr__(self):
        return "KEEP_PREVIOUS"


# CloudFormation wants every parameter resolved on an update, so a
# parameter we aren't changing has to say so explicitly.
KEEP_PREVIOUS = _KeepPrevious()


class StackParameters:
    """
    The complete parameter record for an annex stack.  Each value is
    either a string or :data:`KEEP_PREVIOUS`.
    """

    def __init__(self, values: Optional[Dict[str, object]] = None):
        self._values: Dict[str, object] = {}
        for key, value in (values or {}).items():
            self[key] = value

    def __setitem__(self, key, value):
        if value is not KEEP_PREVIOUS:
            value = str(value)
        self._values[key] = value

    def __getitem__(self, key):
        return self._values[key]

    def __contains__(self, key):
        return key in self._values

    def keys(self):
        return self._values.keys()

    def kept(self):
        return [key for key, value in self._values.items() if value is KEEP_PREVIOUS]

    def changed(self):
        return {key: value for key, value in self._values.items() if value is not KEEP_PREVIOUS}

    def to_cloudformation(self):
        parameters = []
        for key, value in self._values.items():
            if value is KEEP_PREVIOUS:
                parameters.append({"ParameterKey": key, "UsePreviousValue": True})
            else:
                parameters.append({"ParameterKey": key, "ParameterValue": value})
        return parameters

    @classmethod
    def for_update(cls, existing_keys, **changes):
        """
        Every parameter the stack already has is kept, except those named
        in ``changes``.  Changing a parameter the stack doesn't have is an
        error, since the template would reject it anyway.
        """
        existing_keys = list(existing_keys)
        unknown = [key for key in changes if key not in existing_keys]
        if unknown:
            raise ProvisioningError(f"The annex's stack has no parameter(s) {', '.join(unknown)}.")
        parameters = cls()
        for key in existing_keys:
            parameters[key] = changes.get(key, KEEP_PREVIOUS)
        return parameters


def _annex_digest(central_manager, project):
    return hashlib.sha256(f"{central_manager}\0{project}".encode("utf-8")).hexdigest()


def annex_stack_name(central_manager: str, project: str) -> str:
    """
    CloudFormation stack names must start with a letter, may contain only
    letters, digits, and hyphens, and are at most 128 characters.  The
    digest distinguishes annexes for the same project on different pools.
    """
    readable = re.sub(r"[^A-Za-z0-9-]+", "-", project).strip("-")
    digest = _annex_digest(central_manager, project)[:12]
    return f"HTCondorAnnex-{readable}"[:(128 - 13)].rstrip("-") + f"-{digest}"


def annex_bucket_name(central_manager: str, project: str) -> str:
    """
    S3 bucket names are global, lower-case, and at most 63 characters, so
    this is just a prefix and a digest.
    """
    return f"htcondor-annex-{_annex_digest(central_manager, project)[:40]}"
