import argparse
import sys

from google.auth import exceptions as auth_exceptions
from google.cloud import bigquery
from google.cloud import storage

from bqdump.config import MIB, DumpConfig
from bqdump.errors import DumpError, ValidationError
from bqdump.formats import ExportFormat, resolve
from bqdump.logger import configure_logging, get_logger
from bqdump.naming import TableRef, is_gcs
from bqdump.pipeline import ExportPipeline

logger = get_logger(__name__)


class UsageError(Exception):
    pass


class _Parser(argparse.ArgumentParser):
    # argparse exits 2 on bad usage; every failure here is exit 1
    def error(self, message):
        raise UsageError(message)


def build_parser() -> argparse.ArgumentParser:
    formats = ", ".join(f.value for f in ExportFormat)
    ap = _Parser(
        prog="bqdump",
        description="Export a BigQuery table to a local file through a GCS staging bucket.",
    )
    ap.add_argument("dataset", metavar="DATASET")
    ap.add_argument("table", metavar="TABLE")
    ap.add_argument("format", metavar="FORMAT", nargs="?", default=ExportFormat.CSV.value, help=f"One of {formats} (default CSV)")
    ap.add_argument("--project_id", default=None, help="Defaults to BQDUMP_PROJECT_ID or the client default project")
    ap.add_argument("--location", default=None, help="Bucket / extract job location. Defaults to the dataset location")
    ap.add_argument("--work_dir", default=None, help="Local directory for shards and the output file")
    ap.add_argument("--object_workers", type=int, default=None, help="Shards downloaded concurrently")
    ap.add_argument("--slices", type=int, default=None, help="Concurrent byte ranges per large shard")
    ap.add_argument("--slice_threshold_mb", type=int, default=None, help="Shards at least this large are sliced")
    ap.add_argument("--decompress_workers", type=int, default=None)
    ap.add_argument("--field_delimiter", default=None, help="CSV only")
    ap.add_argument("--log_level", default="INFO")
    ap.add_argument("--log_format", default="console", choices=["console", "json"])
    return ap


def make_clients(project_id: str | None):
    return bigquery.Client(project=project_id), storage.Client(project=project_id)


def _fail(ap: argparse.ArgumentParser, message: str) -> int:
    print(f"error: {message}", file=sys.stderr)
    ap.print_usage(sys.stderr)
    return 1


def main(argv=None) -> int:
    ap = build_parser()
    try:
        args = ap.parse_args(argv)
    except UsageError as exc:
        return _fail(ap, str(exc))

    try:
        configure_logging(args.log_level, args.log_format)
    except ValueError as exc:
        return _fail(ap, str(exc))

    try:
        cfg = DumpConfig.from_env().override(
            project_id=args.project_id,
            location=args.location,
            work_dir=args.work_dir,
            object_workers=args.object_workers,
            slices=args.slices,
            slice_threshold=(args.slice_threshold_mb * MIB if args.slice_threshold_mb is not None else None),
            decompress_workers=args.decompress_workers,
            field_delimiter=args.field_delimiter,
        ).validate()
        # Only local directories; the shards are staged in GCS already
        if is_gcs(cfg.work_dir):
            raise ValidationError("work_dir must be a local directory", context={"work_dir": cfg.work_dir})

        resolve(args.format)
        ref = TableRef(args.dataset, args.table)
        bq_client, storage_client = make_clients(cfg.project_id)
        result = ExportPipeline(cfg, bq_client, storage_client).run(ref, args.format)
    except DumpError as exc:
        logger.error("export_failed", error=str(exc), code=exc.code)
        return _fail(ap, str(exc))
    except auth_exceptions.GoogleAuthError as exc:
        return _fail(ap, f"Google Cloud credentials unavailable or expired: {exc}")

    print(f"Exported {ref} ({result.spec.format.value}, {result.shard_count} shards) to: {result.output_path}")
    print(f"Staged shards scheduled for deletion: {result.staging_uri}")
    return 0


if __name__ == "__main__":
    sys.exit(main())
