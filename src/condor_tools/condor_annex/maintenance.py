"""
Retry the deletion of stacks stuck in DELETE_FAILED.

Annex shutdown occasionally hits a race in CloudFormation's deletion
dependency graph and leaves the stack in DELETE_FAILED.  Those stacks count
against the account's stack limit (200 by default), so if they pile up, no
new annex can be created.  This is meant to be run periodically, from cron
or as a local universe job; the annex controller never calls it.
"""

import logging

from botocore.exceptions import ClientError

from condor_annex.errors import CleanupError

logger = logging.getLogger(__name__)


def list_delete_failed_stacks(cloudformation):
    names = []
    paginator = cloudformation.get_paginator("describe_stacks")
    for page in paginator.paginate():
        for stack in page.get("Stacks", []):
            if stack.get("StackStatus") == "DELETE_FAILED":
                names.append(stack["StackName"])
    return names


def delete_failed_stacks(cloudformation, logger=logger):
    """
    Ask CloudFormation to delete each DELETE_FAILED stack once more.
    Returns the names of the stacks we asked about; raises CleanupError,
    after trying all of them, if any request was refused.
    """
    names = list_delete_failed_stacks(cloudformation)
    if len(names) == 0:
        logger.info("No stacks are in DELETE_FAILED.")
        return names

    refused = []
    for name in names:
        logger.info(f"Retrying deletion of stack {name}...")
        try:
            cloudformation.delete_stack(StackName=name)
        except ClientError as e:
            logger.error(f"... failed: {e}")
            refused.append(name)

    if refused:
        raise CleanupError(f"Failed to request deletion of {len(refused)} stack(s).", refused)
    return names
