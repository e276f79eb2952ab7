import gzip
import os
import shutil
import zlib
from concurrent.futures import ThreadPoolExecutor, as_completed
from pathlib import Path

from bqdump.errors import CorruptShardError
from bqdump.formats import Codec
from bqdump.logger import get_logger
from bqdump.naming import ShardSet

logger = get_logger(__name__)

COPY_BUFFER = 1024 * 1024


def gunzip_in_place(path: Path) -> Path:
    """
    Decompresses x.gz to x and removes x.gz.
    The output appears under its final name only when complete.
    """
    path = Path(path)
    target = path.with_suffix("") if path.suffix == ".gz" else path.with_name(path.name + ".out")
    tmp = target.with_name(target.name + ".tmp")
    try:
        with gzip.open(path, "rb") as src, open(tmp, "wb") as dst:
            shutil.copyfileobj(src, dst, COPY_BUFFER)
        os.replace(tmp, target)
    except BaseException:
        if tmp.exists():
            tmp.unlink()
        raise
    path.unlink()
    return target


def decompress_all(shards: ShardSet, codec: Codec, max_workers: int = 8) -> ShardSet:
    """
    Decompresses every shard with at most `max_workers` running at once.
    SNAPPY shards (Avro) are returned untouched.
    """
    if codec != Codec.GZIP:
        return shards

    done = []
    failures = []
    with ThreadPoolExecutor(max_workers=max_workers, thread_name_prefix="bqdump-gunzip") as pool:
        futures = {pool.submit(gunzip_in_place, p): p for p in shards}
        for future in as_completed(futures):
            try:
                done.append(future.result())
            except (gzip.BadGzipFile, EOFError, zlib.error, OSError) as exc:
                failures.append((futures[future], exc))

    if failures:
        path, exc = sorted(failures, key=lambda f: f[0].name)[0]
        raise CorruptShardError(
            f"Could not decompress {len(failures)} of {len(shards)} shards, first: {path.name}: {exc}",
            context={"shard": str(path)},
        ) from exc

    logger.info("decompress_done", shards=len(done), workers=max_workers)
    return ShardSet.of(shards.prefix, done)
