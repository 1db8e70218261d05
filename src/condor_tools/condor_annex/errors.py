"""
Exceptions raised by condor_annex.

Every failure is terminal to the invocation.  Each class carries the exit
code that ``condor_annex`` returns for it, so that operators (and cron
jobs) can tell which stage failed without parsing the output.
"""


class AnnexError(RuntimeError):
    """Base class for condor_annex failures."""

    exit_code = 1


class ArgumentError(AnnexError):
    """
    Bad or missing options.  Raised before anything is created remotely.
    """

    exit_code = 2


class StagingError(AnnexError):
    """
    Failed to stage the pool password or configuration into S3.  Whatever
    this invocation staged has been (or will be) removed.
    """

    exit_code = 3


class ProvisioningError(AnnexError):
    """
    A CloudFormation, Auto Scaling, or CloudWatch call failed, or the stack
    reached a state from which it will not become usable.
    """

    exit_code = 4


class CleanupError(AnnexError):
    """
    A compensating delete failed.  We don't retry; the message lists what
    has to be removed by hand.
    """

    exit_code = 5

    def __init__(self, message, leftovers=()):
        self.leftovers = list(leftovers)
        if self.leftovers:
            message = (
                f"{message}\n"
                f"The following must be deleted manually:\n    "
                + "\n    ".join(self.leftovers)
            )
        super().__init__(message)


class InventoryLookupError(AnnexError):
    """
    Could not determine a VPC, subnet, or image, and there was no safe
    default.
    """

    exit_code = 6


class ConvergenceTimeout(AnnexError):
    """
    A convergence wait hit its deadline.  Only possible when
    ANNEX_CONVERGENCE_TIMEOUT is set; waits are unbounded otherwise.
    """

    exit_code = 7


def interrupt_exit_code(signum):
    # Matches the shell's convention for death-by-signal.
    return 128 + int(signum)
