from dataclasses import dataclass
from enum import Enum
from typing import Union

from bqdump.errors import UnsupportedFormatError


class ExportFormat(str, Enum):
    # values are BigQuery DestinationFormat strings
    CSV = "CSV"
    NEWLINE_DELIMITED_JSON = "NEWLINE_DELIMITED_JSON"
    AVRO = "AVRO"


class Codec(str, Enum):
    GZIP = "GZIP"
    SNAPPY = "SNAPPY"


@dataclass(frozen=True)
class FormatSpec:
    format: ExportFormat
    codec: Codec
    extension: str
    # False when consumers read the shard as-is (Avro blocks carry their own snappy compression)
    decompress: bool


_SPECS = {
    ExportFormat.CSV: FormatSpec(ExportFormat.CSV, Codec.GZIP, "gz", True),
    ExportFormat.NEWLINE_DELIMITED_JSON: FormatSpec(ExportFormat.NEWLINE_DELIMITED_JSON, Codec.GZIP, "gz", True),
    ExportFormat.AVRO: FormatSpec(ExportFormat.AVRO, Codec.SNAPPY, "avro", False),
}

_ALIASES = {
    "JSON": ExportFormat.NEWLINE_DELIMITED_JSON,
    "NDJSON": ExportFormat.NEWLINE_DELIMITED_JSON,
}


def parse_format(value: Union[str, ExportFormat]) -> ExportFormat:
    if isinstance(value, ExportFormat):
        return value
    if not isinstance(value, str):
        raise UnsupportedFormatError(f"Unsupported export format: {value!r}")
    key = value.strip().upper()
    if key in _ALIASES:
        return _ALIASES[key]
    try:
        return ExportFormat(key)
    except ValueError:
        supported = ", ".join(f.value for f in ExportFormat)
        raise UnsupportedFormatError(
            f"Unsupported export format: {value!r}. Supported: {supported}",
            context={"format": value},
        ) from None


def resolve(value: Union[str, ExportFormat]) -> FormatSpec:
    """
    Maps an export format to its codec, shard file extension and whether
    a local decompression step is needed.
    """
    return _SPECS[parse_format(value)]
