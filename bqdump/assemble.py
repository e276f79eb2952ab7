import os
import shutil
from pathlib import Path

from bqdump.errors import AssemblyError
from bqdump.logger import get_logger
from bqdump.naming import ShardSet

logger = get_logger(__name__)

COPY_BUFFER = 1024 * 1024


def assemble(shards: ShardSet, output_path) -> Path:
    """
    Concatenates shards in file name order into output_path, then deletes them.

    Row order is not preserved by the export, so the order here only makes
    the output reproducible for a given shard set. The artifact is written
    to a temp file first, so a failed run never leaves a truncated one.
    """
    output_path = Path(output_path)
    if len(shards) == 0:
        raise AssemblyError(
            "No shards to assemble; the export or transfer produced nothing",
            context={"prefix": shards.prefix, "output": str(output_path)},
        )

    tmp = output_path.with_name(output_path.name + ".tmp")
    ordered = sorted(shards.paths, key=lambda p: p.name)
    try:
        with open(tmp, "wb") as dst:
            for path in ordered:
                with open(path, "rb") as src:
                    shutil.copyfileobj(src, dst, COPY_BUFFER)
            dst.flush()
            os.fsync(dst.fileno())
        os.replace(tmp, output_path)
    except OSError as exc:
        if tmp.exists():
            tmp.unlink()
        raise AssemblyError(f"Failed to write {output_path}: {exc}", context={"output": str(output_path)}) from exc

    for path in ordered:
        path.unlink(missing_ok=True)

    logger.info("assembled", output=str(output_path), shards=len(ordered), bytes=output_path.stat().st_size)
    return output_path
