import logging

from botocore.exceptions import ClientError

from condor_annex.errors import StagingError, CleanupError

logger = logging.getLogger(__name__)


PASSWORD = "password"
CONFIG = "config"

# Reverse of this order is the order things are torn down in.
STAGING_ORDER = ["bucket", PASSWORD, CONFIG]


class StagingLedger:
    """
    Records which staged objects this invocation created and therefore
    must delete if the annex never takes them over.
    """

    def __init__(self):
        self.bucket_created = False
        self.password_uploaded = False
        self.config_uploaded = False

    def owns(self, what):
        return {
            "bucket": self.bucket_created,
            PASSWORD: self.password_uploaded,
            CONFIG: self.config_uploaded,
        }[what]

    def set(self, what, value):
        if what == "bucket":
            self.bucket_created = value
        elif what == PASSWORD:
            self.password_uploaded = value
        elif what == CONFIG:
            self.config_uploaded = value
        else:
            raise KeyError(what)

    def any(self):
        return self.bucket_created or self.password_uploaded or self.config_uploaded

    def clear(self):
        for what in STAGING_ORDER:
            self.set(what, False)

    def __repr__(self):
        owned = [what for what in STAGING_ORDER if self.owns(what)]
        return f"{self.__class__.__name__}({', '.join(owned) or 'nothing'})"


class SecretStager:
    """
    Puts the pool password (and, optionally, extra configuration) where
    the annex's instances can fetch it: a private S3 bucket named for the
    annex's (central manager, project) pair.
    """

    def __init__(self, s3, bucket, prefix, region, ledger=None):
        self.s3 = s3
        self.bucket = bucket
        self.prefix = prefix
        self.region = region
        self.ledger = ledger if ledger is not None else StagingLedger()

    def key(self, what):
        return f"{self.prefix}/{what}"

    def location(self, what):
        return f"s3://{self.bucket}/{self.key(what)}"

    def describe(self, what):
        if what == "bucket":
            return f"s3://{self.bucket}"
        return self.location(what)

    def stage(self, what, path):
        """
        Upload the file at ``path`` as ``what`` (PASSWORD or CONFIG),
        creating the bucket first if necessary.  Returns the object's
        location.

        If any step fails, the steps this call completed are undone, most
        recent first, before StagingError is raised.  Objects staged by
        earlier calls are left for :meth:`unstage`.
        """
        if what not in (PASSWORD, CONFIG):
            raise ValueError(f"Don't know how to stage '{what}'.")

        completed = []
        try:
            if not self._bucket_exists():
                self._create_bucket()
                completed.append("bucket")
                self._block_public_access()

            with open(path, "rb") as f:
                body = f.read()

            logger.debug(f"Uploading {path} to {self.location(what)}...")
            self.s3.put_object(
                Bucket=self.bucket,
                Key=self.key(what),
                Body=body,
                ServerSideEncryption="AES256",
            )
            self.ledger.set(what, True)
        except (ClientError, OSError) as e:
            self._unwind(completed)
            raise StagingError(f"Failed to stage {what} file '{path}': {e}") from e

        return self.location(what)

    def unstage(self):
        """
        Delete everything the ledger says we own, in the reverse of the
        order it was staged.  Safe to call repeatedly; with an empty
        ledger it does nothing.

        We stop at the first failure and don't retry.
        """
        for what in reversed(STAGING_ORDER):
            if not self.ledger.owns(what):
                continue
            try:
                self._delete(what)
            except ClientError as e:
                leftovers = [self.describe(w) for w in reversed(STAGING_ORDER) if self.ledger.owns(w)]
                raise CleanupError(f"Failed to delete {self.describe(what)}: {e}", leftovers) from e
            self.ledger.set(what, False)

    def _unwind(self, completed):
        for what in reversed(completed):
            logger.debug(f"Undoing creation of {self.describe(what)}...")
            try:
                self._delete(what)
            except ClientError as e:
                raise CleanupError(
                    f"Failed to delete {self.describe(what)} after a staging failure: {e}",
                    [self.describe(what)],
                ) from e
            self.ledger.set(what, False)

    def _delete(self, what):
        logger.debug(f"Deleting {self.describe(what)}...")
        if what == "bucket":
            self.s3.delete_bucket(Bucket=self.bucket)
        else:
            self.s3.delete_object(Bucket=self.bucket, Key=self.key(what))

    def _bucket_exists(self):
        try:
            self.s3.head_bucket(Bucket=self.bucket)
            return True
        except ClientError as e:
            code = e.response.get("Error", {}).get("Code")
            if code in ("404", "NoSuchBucket", "NotFound"):
                return False
            raise

    def _create_bucket(self):
        logger.debug(f"Creating bucket {self.bucket}...")
        kwargs = {"Bucket": self.bucket}
        # us-east-1 is the one region which rejects its own name here.
        if self.region != "us-east-1":
            kwargs["CreateBucketConfiguration"] = {"LocationConstraint": self.region}
        self.s3.create_bucket(**kwargs)
        self.ledger.set("bucket", True)

    def _block_public_access(self):
        self.s3.put_public_access_block(
            Bucket=self.bucket,
            PublicAccessBlockConfiguration={
                "BlockPublicAcls": True,
                "IgnorePublicAcls": True,
                "BlockPublicPolicy": True,
                "RestrictPublicBuckets": True,
            },
        )
