"""Tabular scans over BAM files: schema, execution plan and table provider."""

from __future__ import annotations

import logging
from collections.abc import Iterator, Sequence
from dataclasses import dataclass, field
from itertools import islice

from bioscan.bam_reader import (
    BamReader,
    BamRecord,
    CigarOp,
    open_local_bam_stream,
    open_remote_bam_stream,
)
from bioscan.object_storage import (
    ObjectStorageOptions,
    StorageType,
    UnsupportedStorageError,
    get_storage_type,
)
from bioscan.table_utils import (
    DataType,
    Field,
    RecordBatch,
    Schema,
    build_record_batch,
    project_schema,
)

logger = logging.getLogger(__name__)

DEFAULT_BATCH_SIZE = 8192
_REMOTE_STORAGE = (StorageType.GCS, StorageType.S3, StorageType.AZBLOB)
_PHRED_OFFSET = 33
_COLUMN_COUNT = 11


def determine_schema() -> Schema:
    """Return the full schema of a BAM table."""
    schema = Schema(
        (
            Field("name", DataType.UTF8, True),
            Field("chrom", DataType.UTF8, True),
            Field("start", DataType.UINT32, True),
            Field("end", DataType.UINT32, True),
            Field("flags", DataType.UINT32, False),
            Field("cigar", DataType.UTF8, False),
            Field("mapping_quality", DataType.UINT32, True),
            Field("mate_chrom", DataType.UTF8, True),
            Field("mate_start", DataType.UINT32, True),
            Field("sequence", DataType.UTF8, False),
            Field("quality_scores", DataType.UTF8, False),
        )
    )
    logger.debug("Schema: %s", schema)
    return schema


def cigar_op_to_string(op: CigarOp) -> str:
    """Render one CIGAR operation in SAM text form, e.g. ``10M``."""
    return f"{op.length}{op.kind.value}"


def get_chrom_by_seq_id(rid: int | None, names: Sequence[str]) -> str | None:
    """Map a reference sequence index to a lower-case, ``chr``-prefixed name."""
    if rid is None:
        return None
    if rid < 0:
        raise ValueError("reference_sequence_id() should be >= 0")
    try:
        chrom = names[rid].lower()
    except IndexError:
        raise IndexError("reference_sequence_id() should be in bounds") from None
    return chrom if chrom.startswith("chr") else f"chr{chrom}"


def _quality_string(scores: bytes) -> str:
    return "".join(chr(score + _PHRED_OFFSET) for score in scores)


def _row(record: BamRecord, names: Sequence[str]) -> tuple:
    return (
        record.name,
        get_chrom_by_seq_id(record.reference_sequence_id, names),
        record.alignment_start,
        record.alignment_end,
        record.flags,
        "".join(cigar_op_to_string(op) for op in record.cigar),
        record.mapping_quality,
        get_chrom_by_seq_id(record.mate_reference_sequence_id, names),
        record.mate_alignment_start,
        record.sequence,
        _quality_string(record.quality_scores),
    )


def _columns(rows: Sequence[tuple]) -> list[list]:
    if not rows:
        return [[] for _ in range(_COLUMN_COUNT)]
    return [list(column) for column in zip(*rows)]


@dataclass
class BamExec:
    """Execution plan that reads a BAM file into record batches.

    ``schema`` is the output (projected) schema; ``limit``, when set, caps the
    number of rows produced.
    """

    file_path: str
    schema: Schema
    projection: list[int] | None = None
    limit: int | None = None
    thread_num: int | None = None
    object_storage_options: ObjectStorageOptions | None = field(default=None, repr=False)

    name = "BamExec"

    def _open_reader(self) -> BamReader:
        storage_type = get_storage_type(self.file_path)
        if storage_type is StorageType.LOCAL:
            thread_num = self.thread_num if self.thread_num is not None else 1
            return open_local_bam_stream(self.file_path, thread_num)
        if storage_type in _REMOTE_STORAGE:
            if self.object_storage_options is None:
                raise ValueError("ObjectStorageOptions must be provided for remote storage")
            return open_remote_bam_stream(self.file_path, self.object_storage_options)
        raise UnsupportedStorageError(f"Unsupported storage type: {storage_type.name}")

    def _batches(self, batch_size: int) -> Iterator[RecordBatch]:
        with self._open_reader() as reader:
            names = list(reader.read_sequences())
            records: Iterator[BamRecord] = reader.read_records()
            if self.limit is not None:
                records = islice(records, self.limit)
            pending: list[tuple] = []
            record_num = 0
            batch_num = 0
            for record in records:
                pending.append(_row(record, names))
                record_num += 1
                if len(pending) == batch_size:
                    logger.debug("Record number: %d", record_num)
                    yield build_record_batch(self.schema, _columns(pending), self.projection)
                    batch_num += 1
                    logger.debug("Batch number: %d", batch_num)
                    pending = []
            if pending:
                yield build_record_batch(self.schema, _columns(pending), self.projection)

    def execute(self, batch_size: int = DEFAULT_BATCH_SIZE) -> Iterator[RecordBatch]:
        """Return an iterator of record batches of at most ``batch_size`` rows."""
        logger.debug("BamExec::execute")
        logger.debug("Projection: %s", self.projection)
        if batch_size < 1:
            raise ValueError("batch_size must be at least 1")
        return self._batches(batch_size)


class BamTableProvider:
    """A BAM file exposed as a table."""

    def __init__(
        self,
        file_path: str,
        thread_num: int | None = None,
        object_storage_options: ObjectStorageOptions | None = None,
    ) -> None:
        self.file_path = file_path
        self.thread_num = thread_num
        self.object_storage_options = object_storage_options
        self.schema = determine_schema()

    def __repr__(self) -> str:
        return f"BamTableProvider(file_path={self.file_path!r}, thread_num={self.thread_num})"

    def scan(
        self, projection: Sequence[int] | None = None, limit: int | None = None
    ) -> BamExec:
        """Plan a scan of the table, restricted to the projected columns."""
        logger.debug("BamTableProvider::scan")
        projection_list = list(projection) if projection is not None else None
        return BamExec(
            file_path=self.file_path,
            schema=project_schema(self.schema, projection_list),
            projection=projection_list,
            limit=limit,
            thread_num=self.thread_num,
            object_storage_options=self.object_storage_options,
        )