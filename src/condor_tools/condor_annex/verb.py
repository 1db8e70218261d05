from abc import ABC, abstractmethod


# Options several verbs share.  Values are add_argument() kwargs, with the
# flag names in "args".
PROJECT_OPTION = {
    "args": ("--project",),
    "required": True,
    "help": "The project the annex belongs to; with the central manager, this identifies the annex",
}

REGION_OPTION = {
    "args": ("--region",),
    "default": None,
    "help": "AWS region.  Defaults to ANNEX_DEFAULT_AWS_REGION, or us-east-1",
}

CENTRAL_MANAGER_OPTION = {
    "args": ("--central-manager",),
    "dest": "central_manager",
    "default": None,
    "help": "The central manager the annex joins.  Defaults to the first entry in COLLECTOR_HOST",
}


class Verb(ABC):
    """
    Something done to a noun.  This docstring is the help message for
    `condor_annex noun verb --help`.
    """

    # add_argument() kwargs per option, keyed by destination; see
    # GLOBAL_OPTIONS in __init__.py.
    options = {}

    # Construction *is* execution: the options arrive as keyword
    # arguments, after the logger, and any failure is raised.
    @abstractmethod
    def __init__(self, logger, **options):
        raise NotImplementedError
