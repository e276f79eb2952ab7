"""
Table export run: BigQuery -> GCS staging shards -> local disk -> one file.

    INIT -> STAGING_READY -> EXPORTED -> TRANSFERRED -> CLEANUP_STARTED
         -> DECOMPRESSED -> ASSEMBLED -> DONE

Nothing local exists before TRANSFERRED, so earlier failures just propagate.
From TRANSFERRED on, a failure first removes the local shard files and then
re-raises the original error.
"""
import threading
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Union

from google.cloud import bigquery
from google.cloud import storage

from bqdump.assemble import assemble
from bqdump.config import DumpConfig
from bqdump.decompress import decompress_all
from bqdump.export import ExportDriver
from bqdump.formats import ExportFormat, FormatSpec, resolve
from bqdump.logger import get_logger
from bqdump.naming import (
    ShardSet,
    TableRef,
    destination_uri,
    output_name,
    shard_prefix,
    staging_bucket_name,
)
from bqdump.staging import StagingStore, start_cleanup
from bqdump.transfer import PART_SUFFIX, ShardTransfer

logger = get_logger(__name__)


class Stage(str, Enum):
    INIT = "INIT"
    STAGING_READY = "STAGING_READY"
    EXPORTED = "EXPORTED"
    TRANSFERRED = "TRANSFERRED"
    CLEANUP_STARTED = "CLEANUP_STARTED"
    DECOMPRESSED = "DECOMPRESSED"
    ASSEMBLED = "ASSEMBLED"
    DONE = "DONE"


@dataclass
class ExportResult:
    output_path: Path
    shard_count: int
    spec: FormatSpec
    staging_uri: str
    # purge of the staged shards; still running when run() returns
    cleanup: threading.Thread


class ExportPipeline:
    def __init__(self, config: DumpConfig, bq_client: bigquery.Client, storage_client: storage.Client):
        self.config = config.validate()
        self.driver = ExportDriver(bq_client, project_id=config.project_id)
        self.staging = StagingStore(storage_client)
        self.transfer = ShardTransfer(
            storage_client,
            object_workers=config.object_workers,
            slices=config.slices,
            slice_threshold=config.slice_threshold,
        )
        self.stage = Stage.INIT

    def _advance(self, stage: Stage, **kw) -> None:
        self.stage = stage
        logger.info("stage_transition", stage=stage.value, **kw)

    def run(self, ref: TableRef, fmt: Union[str, ExportFormat] = ExportFormat.CSV) -> ExportResult:
        self.stage = Stage.INIT
        spec = resolve(fmt)

        dataset_location = self.driver.check_table(ref)
        location = self.config.location or dataset_location

        bucket_name = staging_bucket_name(self.driver.project_id, ref.dataset)
        prefix = shard_prefix(ref)
        self.staging.ensure(bucket_name, location)
        self._advance(Stage.STAGING_READY, bucket=bucket_name)

        uri = destination_uri(bucket_name, ref, spec.extension)
        self.driver.export_table(ref, spec, location, uri, field_delimiter=self.config.field_delimiter)
        self._advance(Stage.EXPORTED, destination=uri)

        work_dir = Path(self.config.work_dir)
        shards = self.transfer.download(bucket_name, prefix, spec.extension, work_dir)
        self._advance(Stage.TRANSFERRED, shards=len(shards))

        try:
            cleanup = start_cleanup(self.staging, bucket_name, prefix, spec.extension)
            self._advance(Stage.CLEANUP_STARTED)

            if spec.decompress:
                shards_out = decompress_all(shards, spec.codec, self.config.decompress_workers)
            else:
                shards_out = shards
            self._advance(Stage.DECOMPRESSED)

            output_path = assemble(shards_out, work_dir / output_name(ref))
            self._advance(Stage.ASSEMBLED, output=str(output_path))
        except Exception:
            discard_local_shards(shards)
            raise

        self._advance(Stage.DONE)
        return ExportResult(
            output_path=output_path,
            shard_count=len(shards),
            spec=spec,
            staging_uri=uri,
            cleanup=cleanup,
        )


def discard_local_shards(shards: ShardSet) -> None:
    """
    Best-effort removal of every local form of the given shards
    (compressed, decompressed and in-progress temp files).
    """
    for path in shards:
        candidates = {path, path.with_name(path.name + PART_SUFFIX)}
        if path.suffix == ".gz":
            plain = path.with_suffix("")
            candidates.update({plain, plain.with_name(plain.name + ".tmp")})
        for p in candidates:
            try:
                p.unlink(missing_ok=True)
            except OSError as exc:
                logger.warning("local_shard_cleanup_failed", path=str(p), error=str(exc))
