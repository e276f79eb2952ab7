"""
Parallel download of staged shards.

Two independent knobs: `object_workers` shards are fetched at once, and
each shard at or above `slice_threshold` bytes is itself split into
`slices` byte ranges fetched concurrently by the storage transfer manager.
"""
import math
import os
from concurrent.futures import ThreadPoolExecutor, as_completed
from pathlib import Path
from typing import List

from google.cloud import storage
from google.cloud.storage import transfer_manager

from bqdump.config import MIB
from bqdump.errors import TransferError
from bqdump.logger import get_logger
from bqdump.naming import ShardSet, shard_matcher

logger = get_logger(__name__)

PART_SUFFIX = ".part"


def _remove_quietly(path: Path) -> None:
    try:
        path.unlink()
    except FileNotFoundError:
        pass


class ShardTransfer:
    def __init__(
        self,
        client: storage.Client,
        object_workers: int = 8,
        slices: int = 8,
        slice_threshold: int = 150 * MIB,
    ):
        self.client = client
        self.object_workers = object_workers
        self.slices = slices
        self.slice_threshold = slice_threshold

    def list_shards(self, bucket_name: str, prefix: str, extension: str) -> List[storage.Blob]:
        matcher = shard_matcher(prefix, extension)
        return [b for b in self.client.list_blobs(bucket_name, prefix=prefix) if matcher.match(b.name)]

    def chunk_size(self, size: int) -> int:
        return max(MIB, math.ceil(size / self.slices))

    def _fetch(self, blob: storage.Blob, dest_dir: Path) -> Path:
        final = dest_dir / os.path.basename(blob.name)
        part = final.with_name(final.name + PART_SUFFIX)
        size = blob.size or 0
        try:
            if self.slices > 1 and size >= self.slice_threshold:
                transfer_manager.download_chunks_concurrently(
                    blob,
                    str(part),
                    chunk_size=self.chunk_size(size),
                    worker_type=transfer_manager.THREAD,
                    max_workers=self.slices,
                )
            else:
                blob.download_to_filename(str(part))
            os.replace(part, final)
        except BaseException:
            _remove_quietly(part)
            raise
        logger.debug("shard_downloaded", shard=blob.name, bytes=size)
        return final

    def download(self, bucket_name: str, prefix: str, extension: str, dest_dir) -> ShardSet:
        """
        Downloads every shard of one export into dest_dir.

        Returns only once every download has finished. If any shard fails,
        all files written by this call are removed and TransferError is raised.
        """
        dest_dir = Path(dest_dir)
        dest_dir.mkdir(parents=True, exist_ok=True)

        try:
            blobs = self.list_shards(bucket_name, prefix, extension)
        except Exception as exc:
            raise TransferError(
                f"Could not list shards in gs://{bucket_name}: {exc}",
                context={"bucket": bucket_name, "prefix": prefix},
            ) from exc

        logger.info(
            "transfer_started",
            bucket=bucket_name,
            prefix=prefix,
            shards=len(blobs),
            total_bytes=sum(b.size or 0 for b in blobs),
            object_workers=self.object_workers,
            slices=self.slices,
        )

        done: List[Path] = []
        failures = []
        with ThreadPoolExecutor(max_workers=self.object_workers, thread_name_prefix="bqdump-transfer") as pool:
            futures = {pool.submit(self._fetch, blob, dest_dir): blob.name for blob in blobs}
            for future in as_completed(futures):
                try:
                    done.append(future.result())
                except Exception as exc:
                    failures.append((futures[future], exc))

        if failures:
            for path in done:
                _remove_quietly(path)
            name, exc = sorted(failures, key=lambda f: f[0])[0]
            raise TransferError(
                f"Failed to download {len(failures)} of {len(blobs)} shards, first: {name}: {exc}",
                context={"bucket": bucket_name, "prefix": prefix, "shard": name},
            ) from exc

        logger.info("transfer_done", prefix=prefix, shards=len(done))
        return ShardSet.of(prefix, done)
