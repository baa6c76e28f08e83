import gzip
import struct

import pytest

from bioscan.bam_reader import CigarKind, CigarOp
from bioscan.bam_table import (
    BamExec,
    BamTableProvider,
    cigar_op_to_string,
    determine_schema,
    get_chrom_by_seq_id,
)
from bioscan.object_storage import ObjectStorageOptions, UnsupportedStorageError
from bioscan.table_utils import DataType

_CODES = "=ACMGRSVTWYHKDBN"
_OPS = "MIDNSHP=X"
_ALL_COLUMNS = [
    "name",
    "chrom",
    "start",
    "end",
    "flags",
    "cigar",
    "mapping_quality",
    "mate_chrom",
    "mate_start",
    "sequence",
    "quality_scores",
]


def _header(refs):
    text = b"@HD\tVN:1.6\n"
    out = b"BAM\x01" + struct.pack("<i", len(text)) + text + struct.pack("<i", len(refs))
    for ref_name, length in refs:
        raw = ref_name.encode() + b"\x00"
        out += struct.pack("<i", len(raw)) + raw + struct.pack("<i", length)
    return out


def _record(name, ref_id, pos, mapq, flags, cigar, seq, qual=None, mate_ref=-1, mate_pos=-1):
    raw_name = (name or "*").encode() + b"\x00"
    cigar_bytes = b"".join(
        struct.pack("<I", (length << 4) | _OPS.index(op)) for length, op in cigar
    )
    codes = [_CODES.index(base) for base in seq]
    if len(codes) % 2:
        codes.append(0)
    packed = bytes((high << 4) | low for high, low in zip(codes[::2], codes[1::2]))
    quality = bytes(qual) if qual is not None else b"\xff" * len(seq)
    fixed = struct.pack(
        "<iiBBHHHiiii",
        ref_id,
        pos,
        len(raw_name),
        mapq,
        4680,
        len(cigar),
        flags,
        len(seq),
        mate_ref,
        mate_pos,
        0,
    )
    block = fixed + raw_name + cigar_bytes + packed + quality
    return struct.pack("<i", len(block)) + block


_REFS = [("1", 1000), ("chrX", 500)]


def _write_bam(path, records, refs=_REFS):
    with gzip.open(path, "wb") as handle:
        handle.write(_header(refs))
        for record in records:
            handle.write(record)
    return str(path)


def _sample_records():
    return [
        _record("r1", 0, 99, 30, 99, [(4, "M")], "ACGT", [30, 30, 20, 10], 1, 199),
        _record(None, -1, -1, 255, 4, [], "AC"),
        _record(
            "r3", 1, 9, 60, 16, [(2, "S"), (3, "M"), (1, "D"), (2, "M")], "GGACGTA", [40] * 7
        ),
    ]


@pytest.fixture
def bam_path(tmp_path):
    return _write_bam(tmp_path / "sample.bam", _sample_records())


def test_determine_schema_columns_and_nullability():
    schema = determine_schema()
    assert schema.names == _ALL_COLUMNS
    assert [f.nullable for f in schema] == [
        True, True, True, True, False, False, True, True, True, False, False,
    ]
    assert schema.field(2).data_type is DataType.UINT32
    assert schema.field(0).data_type is DataType.UTF8


@pytest.mark.parametrize(
    "kind, length, expected",
    [
        (CigarKind.MATCH, 10, "10M"),
        (CigarKind.INSERTION, 1, "1I"),
        (CigarKind.DELETION, 2, "2D"),
        (CigarKind.SKIP, 300, "300N"),
        (CigarKind.SOFT_CLIP, 5, "5S"),
        (CigarKind.HARD_CLIP, 7, "7H"),
        (CigarKind.PAD, 3, "3P"),
        (CigarKind.SEQUENCE_MATCH, 4, "4="),
        (CigarKind.SEQUENCE_MISMATCH, 1, "1X"),
    ],
)
def test_cigar_op_to_string(kind, length, expected):
    assert cigar_op_to_string(CigarOp(kind, length)) == expected


@pytest.mark.parametrize(
    "rid, expected",
    [(None, None), (0, "chr1"), (1, "chrx"), (2, "chr2")],
)
def test_get_chrom_by_seq_id(rid, expected):
    assert get_chrom_by_seq_id(rid, ["1", "chrX", "Chr2"]) == expected


def test_get_chrom_by_seq_id_out_of_bounds():
    with pytest.raises(IndexError):
        get_chrom_by_seq_id(3, ["1"])


def test_get_chrom_by_seq_id_negative():
    with pytest.raises(ValueError):
        get_chrom_by_seq_id(-2, ["1"])


def test_full_scan_rows(bam_path):
    batches = list(BamTableProvider(bam_path).scan().execute())
    assert len(batches) == 1
    rows = batches[0].to_pylist()
    assert rows[0] == {
        "name": "r1",
        "chrom": "chr1",
        "start": 100,
        "end": 103,
        "flags": 99,
        "cigar": "4M",
        "mapping_quality": 30,
        "mate_chrom": "chrx",
        "mate_start": 200,
        "sequence": "ACGT",
        "quality_scores": "??5+",
    }
    assert rows[1] == {
        "name": None,
        "chrom": None,
        "start": None,
        "end": None,
        "flags": 4,
        "cigar": "",
        "mapping_quality": None,
        "mate_chrom": None,
        "mate_start": None,
        "sequence": "AC",
        "quality_scores": "",
    }
    assert rows[2]["chrom"] == "chrx"
    assert rows[2]["start"] == 10
    assert rows[2]["end"] == 15
    assert rows[2]["cigar"] == "2S3M1D2M"
    assert rows[2]["quality_scores"] == "I" * 7


def test_batches_split_by_batch_size(bam_path):
    batches = list(BamTableProvider(bam_path).scan().execute(batch_size=2))
    assert [batch.num_rows for batch in batches] == [2, 1]
    assert batches[1].column("name") == ["r3"]


def test_projection_selects_columns(bam_path):
    exec_plan = BamTableProvider(bam_path).scan(projection=[1, 4])
    assert exec_plan.schema.names == ["chrom", "flags"]
    (batch,) = list(exec_plan.execute())
    assert batch.column("chrom") == ["chr1", None, "chrx"]
    assert batch.column("flags") == [99, 4, 16]


def test_empty_projection_gives_dummy_column(bam_path):
    exec_plan = BamTableProvider(bam_path).scan(projection=[])
    (batch,) = list(exec_plan.execute())
    assert batch.schema.names == ["dummy"]
    assert batch.column("dummy") == [None, None, None]


def test_projection_out_of_schema_raises(bam_path):
    with pytest.raises(IndexError):
        BamTableProvider(bam_path).scan(projection=[11])


def test_limit_caps_rows(tmp_path):
    # Mirrors the example: select all columns with a limit of 10 rows.
    records = [
        _record(f"read{i}", 0, i, 20, 0, [(2, "M")], "AC", [30, 30]) for i in range(12)
    ]
    path = _write_bam(tmp_path / "many.bam", records)
    options = ObjectStorageOptions(
        allow_anonymous=True,
        enable_request_payer=False,
        max_retries=4,
        timeout=300,
        chunk_size=8,
        concurrent_fetches=1,
        compression_type=None,
    )
    table = BamTableProvider(path, 1, options)
    exec_plan = table.scan(limit=10)
    batches = list(exec_plan.execute(batch_size=4))
    assert [b.num_rows for b in batches] == [4, 4, 2]
    assert batches[0].schema.names == _ALL_COLUMNS
    assert batches[-1].column("name") == ["read8", "read9"]


def test_empty_file_yields_no_batches(tmp_path):
    path = _write_bam(tmp_path / "empty.bam", [])
    assert list(BamTableProvider(path).scan().execute()) == []


def test_invalid_batch_size(bam_path):
    with pytest.raises(ValueError):
        BamTableProvider(bam_path).scan().execute(batch_size=0)


def test_invalid_thread_num(bam_path):
    with pytest.raises(ValueError):
        list(BamTableProvider(bam_path, thread_num=0).scan().execute())


def test_reference_id_out_of_bounds(tmp_path):
    path = _write_bam(tmp_path / "bad.bam", [_record("r", 5, 0, 10, 0, [(1, "M")], "A", [30])])
    with pytest.raises(IndexError):
        list(BamTableProvider(path).scan().execute())


def test_remote_without_options_raises():
    exec_plan = BamTableProvider("s3://bucket/reads.bam").scan()
    with pytest.raises(ValueError, match="ObjectStorageOptions"):
        list(exec_plan.execute())


def test_http_storage_unsupported(monkeypatch):
    monkeypatch.delenv("AZURE_ENDPOINT_URL", raising=False)
    exec_plan = BamExec(file_path="http://example.com/reads.bam", schema=determine_schema())
    with pytest.raises(UnsupportedStorageError):
        list(exec_plan.execute())


def test_exec_name_and_provider_fields(bam_path):
    exec_plan = BamTableProvider(bam_path, thread_num=2).scan(projection=[0], limit=1)
    assert exec_plan.name == "BamExec"
    assert exec_plan.projection == [0]
    assert exec_plan.limit == 1
    assert exec_plan.thread_num == 2
    (batch,) = list(exec_plan.execute())
    assert batch.to_pylist() == [{"name": "r1"}]