import sys
import logging
import argparse

from condor_annex import NOUNS, GLOBAL_OPTIONS
from condor_annex.errors import AnnexError, ArgumentError


# Override ArgumentParser to not exit on error, so that bad arguments
# are reported (and exit) the same way as every other failure.
class ArgumentParserNoExit(argparse.ArgumentParser):
    def error(self, message):
        raise ArgumentError(f"{self.format_usage()}{self.prog}: error: {message}")


def build_parser():
    base_parser = ArgumentParserNoExit(
        prog="condor_annex",
        description="A tool for leasing cloud resources to an HTCondor pool.",
    )

    # Add global options
    for option_name in GLOBAL_OPTIONS:
        kwargs = GLOBAL_OPTIONS[option_name].copy()
        args = kwargs.pop("args")
        base_parser.add_argument(*args, **kwargs)

    base_subparser = base_parser.add_subparsers(description="",
        help="Types of objects that can be managed",
        dest="noun",
        parser_class=ArgumentParserNoExit,
    )

    # Add nouns to parser
    noun_parsers = {}
    for noun, noun_cls in NOUNS.items():
        noun_parser = base_subparser.add_parser(noun, description=noun_cls.__doc__)
        noun_parsers[noun] = noun_parser
        noun_subparser = noun_parser.add_subparsers(description="",
            help=f"Actions you can take on {noun}",
            dest="verb",
            parser_class=ArgumentParserNoExit,
        )

        # Add verbs to parser
        for verb_cls in noun_cls.verbs():
            verb = verb_cls.__name__
            verb_parser = noun_subparser.add_parser(verb, description=verb_cls.__doc__)
            for option_name in verb_cls.options:
                kwargs = verb_cls.options[option_name].copy()
                args = kwargs.pop("args")
                verb_parser.add_argument(*args, **kwargs)

    return base_parser, noun_parsers


def parse_args(argv=None):
    base_parser, noun_parsers = build_parser()

    parsed_vars = vars(base_parser.parse_args(argv))

    # Convert the -v and -q counts to a log level
    parsed_vars["log_level"] = min(logging.CRITICAL, max(logging.DEBUG,
        logging.INFO + 10*(parsed_vars.pop("quiet") - parsed_vars.pop("verbose"))
    ))

    # Check for noun and verb
    if parsed_vars["noun"] is None:
        raise ArgumentError(base_parser.format_help().rstrip())
    elif parsed_vars["verb"] is None:
        noun_parser = noun_parsers[parsed_vars["noun"]]
        raise ArgumentError(noun_parser.format_help().rstrip())

    return parsed_vars


def get_logger(name=__name__, level=logging.INFO, fmt="%(message)s"):
    logger = logging.getLogger(name)
    if not logger.hasHandlers():
        printHandler = logging.StreamHandler()
        printHandler.setLevel(level)
        printHandler.setFormatter(logging.Formatter(fmt))
        logger.addHandler(printHandler)
    logger.setLevel(level)
    return logger


def main(argv=None):
    """
    The main entry point of condor_annex.
    Return value will be used as the exit code.
    """

    # Parse arguments
    try:
        options = parse_args(argv)
    except ArgumentError as e:
        logger = get_logger()
        logger.error(str(e))
        return e.exit_code

    # Pop out the noun, verb, and log level from the options
    noun = options.pop("noun")
    verb = options.pop("verb")
    log_level = options.pop("log_level")

    # Set up main logger; the library modules log under the package logger.
    main_logger = get_logger(__name__, level=log_level)
    get_logger("condor_annex", level=log_level)

    # Get the requested noun-verb subclass and run it with options
    try:
        main_logger.debug(f"Attempting to run {noun} {verb} with options {options}")
        noun_cls = NOUNS[noun]
        verb_cls = getattr(noun_cls, verb)
        verb_logger = get_logger(f"{__name__}.{noun}.{verb}", level=log_level)
        verb_cls(logger=verb_logger, **options)
    except AnnexError as e:
        main_logger.debug("Caught exception while running in verbose mode:", exc_info=True)
        main_logger.error(f"Error while trying to run {noun} {verb}:\n{str(e)}")
        return e.exit_code
    except Exception as e:
        main_logger.debug("Caught exception while running in verbose mode:", exc_info=True)
        main_logger.error(f"Error while trying to run {noun} {verb}:\n{str(e)}")
        return 1
    return 0


if __name__ == "__main__":
    sys.exit(main())
