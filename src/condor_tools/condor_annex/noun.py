from abc import ABC, abstractmethod


class Noun(ABC):
    """
    A kind of thing condor_annex manages.  This docstring is the help
    message for `condor_annex noun --help`.
    """

    def __init__(self):
        raise RuntimeError("Nouns are namespaces for their verbs, not objects")

    # Verbs are nested subclasses, named as they're typed:
    #
    #   class create(Create):
    #       pass

    @classmethod
    @abstractmethod
    def verbs(cls):
        """
        The noun's verb classes, in the order `condor_annex noun --help`
        should list them.
        """
        raise NotImplementedError
