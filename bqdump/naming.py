import re
from dataclasses import dataclass
from pathlib import Path
from typing import Iterable, Iterator, Pattern, Tuple

from bqdump.errors import ValidationError

# BigQuery replaces the single wildcard with a zero-padded 12 digit shard number
SHARD_NUMBER_DIGITS = 12


@dataclass(frozen=True)
class TableRef:
    dataset: str
    table: str

    def __post_init__(self):
        if not self.dataset or not self.table:
            raise ValidationError("DATASET and TABLE are required", context={"dataset": self.dataset, "table": self.table})

    def __str__(self) -> str:
        return f"{self.dataset}.{self.table}"


def output_name(ref: TableRef) -> str:
    """Local artifact name, also the remote shard prefix."""
    return f"{ref.dataset}-{ref.table}"


def shard_prefix(ref: TableRef) -> str:
    return output_name(ref)


def staging_bucket_name(project_id: str, dataset: str) -> str:
    # bucket names only allow lower case
    return f"{project_id}-{dataset}".lower()


def destination_uri(bucket_name: str, ref: TableRef, extension: str) -> str:
    return f"gs://{bucket_name}/{shard_prefix(ref)}*.{extension}"


def shard_matcher(prefix: str, extension: str) -> Pattern[str]:
    """
    Matches the object (or file) names of one export's shards.

    A plain prefix is not enough: table "orders" must not pick up the
    shards of table "orders2" staged in the same bucket.
    """
    return re.compile(
        rf"^{re.escape(prefix)}\d{{{SHARD_NUMBER_DIGITS}}}\.{re.escape(extension)}$"
    )


def is_gcs(path: str) -> bool:
    return path.startswith("gs://")


@dataclass(frozen=True)
class ShardSet:
    """
    Local shard files of one export, sorted by file name.

    Built once by the transfer stage and handed to the later stages so
    the working directory is never rescanned.
    """

    prefix: str
    paths: Tuple[Path, ...]

    @classmethod
    def of(cls, prefix: str, paths: Iterable[Path]) -> "ShardSet":
        return cls(prefix, tuple(sorted((Path(p) for p in paths), key=lambda p: p.name)))

    def __len__(self) -> int:
        return len(self.paths)

    def __iter__(self) -> Iterator[Path]:
        return iter(self.paths)
