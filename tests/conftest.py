import gzip
import threading
import time
from types import SimpleNamespace

import pytest
from google.api_core import exceptions as gexc

from bqdump.config import DumpConfig


class FakeBlob:
    def __init__(self, store, bucket_name, name, data):
        self.store = store
        self.bucket_name = bucket_name
        self.name = name
        self.data = data
        self.size = len(data)

    def download_to_filename(self, filename):
        half = self.size // 2
        with open(filename, "wb") as f:
            f.write(self.data[:half])
            self.store.on_download(self)
            f.write(self.data[half:])

    def delete(self):
        if self.store.fail_delete:
            raise gexc.ServiceUnavailable("delete failed")
        del self.store.buckets[self.bucket_name][self.name]


class FakeStorageClient:
    """In-memory stand-in for google.cloud.storage.Client."""

    def __init__(self, download_delay=0.0):
        self.buckets = {}
        self.created = []
        self.lookups = 0
        self.fail_create = None
        self.fail_download = set()
        self.fail_delete = False
        self.download_delay = download_delay
        self.download_ends = []
        self.active = 0
        self.max_active = 0
        self._lock = threading.Lock()

    def lookup_bucket(self, name):
        self.lookups += 1
        return SimpleNamespace(name=name) if name in self.buckets else None

    def create_bucket(self, name, location=None):
        if self.fail_create is not None:
            raise self.fail_create
        if name in self.buckets:
            raise gexc.Conflict("bucket exists")
        self.buckets[name] = {}
        self.created.append((name, location))
        return SimpleNamespace(name=name, location=location)

    def bucket(self, name):
        return SimpleNamespace(name=name)

    def list_blobs(self, bucket_name, prefix=None):
        objects = self.buckets.get(bucket_name)
        if objects is None:
            raise gexc.NotFound(f"bucket {bucket_name}")
        return [
            FakeBlob(self, bucket_name, name, data)
            for name, data in sorted(objects.items())
            if prefix is None or name.startswith(prefix)
        ]

    def put(self, bucket_name, name, data):
        self.buckets.setdefault(bucket_name, {})[name] = data

    def on_download(self, blob):
        with self._lock:
            self.active += 1
            self.max_active = max(self.max_active, self.active)
        try:
            if self.download_delay:
                time.sleep(self.download_delay)
            if blob.name in self.fail_download:
                raise gexc.ServiceUnavailable(f"download failed: {blob.name}")
        finally:
            with self._lock:
                self.active -= 1
                self.download_ends.append(time.monotonic())


class FakeJob:
    def __init__(self, error=None):
        self.job_id = "job_1"
        self.error = error

    def result(self):
        if self.error is not None:
            raise self.error
        return self


class FakeBigQueryClient:
    """
    In-memory stand-in for google.cloud.bigquery.Client.

    `tables` maps "dataset.table" to the plaintext payload of each shard an
    extract job writes into the fake storage client.
    """

    def __init__(self, storage_client, tables=None, project="proj", location="US"):
        self.project = project
        self.storage = storage_client
        self.tables = dict(tables or {})
        self.location = location
        self.extract_calls = []
        self.extract_error = None

    def list_datasets(self, project=None):
        names = sorted({key.split(".")[0] for key in self.tables})
        return [SimpleNamespace(dataset_id=n) for n in names]

    def list_tables(self, dataset):
        ds = dataset.split(".")[-1]
        return [SimpleNamespace(table_id=k.split(".")[1]) for k in sorted(self.tables) if k.split(".")[0] == ds]

    def get_dataset(self, dataset):
        return SimpleNamespace(location=self.location)

    def extract_table(self, source, destination_uris, job_config=None, location=None):
        self.extract_calls.append(
            SimpleNamespace(source=source, destination=destination_uris, job_config=job_config, location=location)
        )
        if self.extract_error is not None:
            return FakeJob(self.extract_error)

        bucket_name, pattern = destination_uris[len("gs://"):].split("/", 1)
        stem, ext = pattern.split("*")
        _, dataset, table = source.split(".")
        for i, payload in enumerate(self.tables[f"{dataset}.{table}"]):
            data = gzip.compress(payload) if job_config.compression == "GZIP" else payload
            self.storage.put(bucket_name, f"{stem}{i:012d}{ext}", data)
        return FakeJob()


@pytest.fixture
def storage_client():
    return FakeStorageClient()


@pytest.fixture
def sales_payloads():
    return [b"1,alice,10\n", b"2,bob,20\n3,carol,30\n", b"4,dave,40\n"]


@pytest.fixture
def bq_client(storage_client, sales_payloads):
    return FakeBigQueryClient(storage_client, tables={"sales.orders": sales_payloads})


@pytest.fixture
def config(tmp_path):
    return DumpConfig(work_dir=str(tmp_path), object_workers=4, decompress_workers=4)


@pytest.fixture(autouse=True)
def clean_env(monkeypatch):
    for var in (
        "BQDUMP_PROJECT_ID",
        "GOOGLE_CLOUD_PROJECT",
        "BQDUMP_LOCATION",
        "BQDUMP_WORK_DIR",
        "BQDUMP_OBJECT_WORKERS",
        "BQDUMP_SLICES",
        "BQDUMP_SLICE_THRESHOLD_MB",
        "BQDUMP_DECOMPRESS_WORKERS",
        "BQDUMP_FIELD_DELIMITER",
    ):
        monkeypatch.delenv(var, raising=False)


@pytest.fixture
def make_storage():
    return FakeStorageClient
