"""
GCS staging bucket: create-if-absent before the export, purge staged shards after download.
"""
import threading

from google.api_core import exceptions as gexc
from google.cloud import storage

from bqdump.errors import REMOTE_ERRORS, CleanupError, ProvisioningError
from bqdump.logger import get_logger
from bqdump.naming import shard_matcher

logger = get_logger(__name__)


class StagingStore:
    def __init__(self, client: storage.Client):
        self.client = client

    def ensure(self, name: str, location: str | None = None) -> storage.Bucket:
        """
        Returns the staging bucket, creating it in `location` when absent.
        Safe to call on every run.
        """
        try:
            bucket = self.client.lookup_bucket(name)
            if bucket is not None:
                logger.debug("staging_bucket_exists", bucket=name)
                return bucket
            try:
                bucket = self.client.create_bucket(name, location=location)
            except gexc.Conflict:
                # created by someone else between lookup and create
                bucket = self.client.bucket(name)
                logger.info("staging_bucket_exists", bucket=name)
                return bucket
        except REMOTE_ERRORS as exc:
            raise ProvisioningError(
                f"Could not create staging bucket gs://{name}: {exc}",
                context={"bucket": name, "location": location},
            ) from exc
        logger.info("staging_bucket_created", bucket=name, location=location)
        return bucket

    def purge(self, bucket_name: str, prefix: str, extension: str) -> int:
        """
        Deletes the shards of one export from the staging bucket.
        Returns the number of deleted objects.
        """
        matcher = shard_matcher(prefix, extension)
        deleted = 0
        try:
            for blob in self.client.list_blobs(bucket_name, prefix=prefix):
                if not matcher.match(blob.name):
                    continue
                blob.delete()
                deleted += 1
        except REMOTE_ERRORS as exc:
            raise CleanupError(
                f"Failed to purge staged shards: {exc}",
                context={"bucket": bucket_name, "prefix": prefix, "deleted": deleted},
            ) from exc
        logger.info("staging_purged", bucket=bucket_name, prefix=prefix, deleted=deleted)
        return deleted


def start_cleanup(store: StagingStore, bucket_name: str, prefix: str, extension: str) -> threading.Thread:
    """
    Purges staged shards on a background thread and returns without waiting.
    The outcome is only visible in the logs.
    """

    def _run():
        try:
            store.purge(bucket_name, prefix, extension)
        except Exception as exc:
            logger.warning(
                "staging_cleanup_failed",
                bucket=bucket_name,
                prefix=prefix,
                error=str(exc),
            )

    # daemon: process exit never waits on remote deletion; leftover shards are purged next run
    t = threading.Thread(target=_run, name=f"bqdump-cleanup-{prefix}", daemon=True)
    t.start()
    return t
