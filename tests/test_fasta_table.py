import gzip

import pytest

from bioscan.fasta_table import FastaTableProvider, determine_schema
from bioscan.table_utils import DataType

SAMPLE = (
    b">chr1 first contig\nACGT\nACGT\n"
    b">chr2\nTTTT\n"
    b">chr3 third\nGG\n"
)


@pytest.fixture
def fasta_path(tmp_path):
    path = tmp_path / "test.fasta"
    path.write_bytes(SAMPLE)
    return str(path)


def _rows(exec_plan, batch_size=8192):
    return [row for batch in exec_plan.execute(batch_size) for row in batch.to_pylist()]


def test_schema_fields():
    schema = determine_schema()
    assert schema.names == ["name", "description", "sequence"]
    assert [f.nullable for f in schema] == [False, True, False]
    assert all(f.data_type is DataType.UTF8 for f in schema)


def test_select_all_without_options(fasta_path):
    table = FastaTableProvider(fasta_path, None, None)
    rows = _rows(table.scan())
    assert rows == [
        {"name": "chr1", "description": "first contig", "sequence": "ACGTACGT"},
        {"name": "chr2", "description": None, "sequence": "TTTT"},
        {"name": "chr3", "description": "third", "sequence": "GG"},
    ]


def test_gzip_file_matches_plain(tmp_path, fasta_path):
    gz_path = tmp_path / "test.fa.gz"
    gz_path.write_bytes(gzip.compress(SAMPLE))
    plain = _rows(FastaTableProvider(fasta_path).scan())
    assert _rows(FastaTableProvider(str(gz_path), 2).scan()) == plain


def test_batches_are_split_by_size(fasta_path):
    batches = list(FastaTableProvider(fasta_path).scan().execute(2))
    assert [b.num_rows for b in batches] == [2, 1]


def test_projection_selects_columns(fasta_path):
    exec_plan = FastaTableProvider(fasta_path).scan(projection=[2, 0])
    batch = next(iter(exec_plan.execute()))
    assert batch.schema.names == ["sequence", "name"]
    assert batch.column("name") == ["chr1", "chr2", "chr3"]


def test_empty_projection_gives_dummy_column(fasta_path):
    batch = next(iter(FastaTableProvider(fasta_path).scan(projection=[]).execute()))
    assert batch.schema.names == ["dummy"]
    assert batch.column("dummy") == [None, None, None]


def test_limit_caps_rows(fasta_path):
    rows = _rows(FastaTableProvider(fasta_path).scan(limit=2))
    assert [r["name"] for r in rows] == ["chr1", "chr2"]


def test_batch_size_must_be_positive(fasta_path):
    with pytest.raises(ValueError):
        FastaTableProvider(fasta_path).scan().execute(0)


def test_remote_without_options_is_an_error():
    exec_plan = FastaTableProvider("s3://bucket/data/test.fasta").scan()
    with pytest.raises(ValueError):
        list(exec_plan.execute())


def test_projection_out_of_range(fasta_path):
    with pytest.raises(IndexError):
        FastaTableProvider(fasta_path).scan(projection=[5])