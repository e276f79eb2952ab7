from pathlib import Path

import pytest

from bqdump.errors import ValidationError
from bqdump.naming import (
    ShardSet,
    TableRef,
    destination_uri,
    output_name,
    shard_matcher,
    staging_bucket_name,
)


def test_output_name_and_destination():
    ref = TableRef("sales", "orders")
    assert output_name(ref) == "sales-orders"
    assert destination_uri("proj-sales", ref, "gz") == "gs://proj-sales/sales-orders*.gz"


def test_staging_bucket_name_is_lower_case():
    assert staging_bucket_name("My-Project", "Sales_EU") == "my-project-sales_eu"


def test_shard_matcher_only_matches_its_own_table():
    m = shard_matcher("sales-orders", "gz")
    assert m.match("sales-orders000000000000.gz")
    assert m.match("sales-orders000000000017.gz")
    assert not m.match("sales-orders2000000000000.gz")
    assert not m.match("sales-orders000000000000.avro")
    assert not m.match("sales-orders000000000000.gz.part")


def test_table_ref_requires_both_parts():
    with pytest.raises(ValidationError):
        TableRef("sales", "")


def test_shard_set_sorts_by_file_name():
    shards = ShardSet.of("p", [Path("/x/p2.gz"), Path("/x/p0.gz"), Path("/x/p1.gz")])
    assert [p.name for p in shards] == ["p0.gz", "p1.gz", "p2.gz"]
    assert len(shards) == 3
