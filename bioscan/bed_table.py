"""Tabular scans over BED files: schema, execution plan and table provider."""

from __future__ import annotations

import logging
from collections.abc import Iterator, Sequence
from dataclasses import dataclass, field
from enum import Enum
from itertools import islice

from bioscan.bed_reader import (
    BedReader,
    BedRecord,
    open_local_bed_reader,
    open_remote_bed_reader,
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
_SUPPORTED_BED_FIELDS = ("BED4",)


class UnsupportedBedFieldsError(ValueError):
    """Raised when a BED layout cannot be scanned."""


class BEDFields(Enum):
    """The number of leading BED columns a file carries."""

    BED3 = 3
    BED4 = 4
    BED5 = 5
    BED6 = 6

    @property
    def field_count(self) -> int:
        return self.value


def determine_schema() -> Schema:
    """Return the full schema of a BED table."""
    schema = Schema(
        (
            Field("chrom", DataType.UTF8, False),
            Field("start", DataType.UINT32, False),
            Field("end", DataType.UINT32, False),
            Field("name", DataType.UTF8, True),
        )
    )
    logger.debug("Schema: %s", schema)
    return schema


def _columns(records: Sequence[BedRecord]) -> list[list]:
    return [
        [record.reference_sequence_name for record in records],
        [record.feature_start for record in records],
        [record.feature_end for record in records],
        [record.name for record in records],
    ]


@dataclass
class BedExec:
    """Execution plan that reads a BED file into record batches.

    ``schema`` is the output (projected) schema; ``limit``, when set, caps the
    number of rows produced.
    """

    file_path: str
    bed_fields: BEDFields
    schema: Schema
    projection: list[int] | None = None
    limit: int | None = None
    thread_num: int | None = None
    object_storage_options: ObjectStorageOptions | None = field(default=None, repr=False)

    name = "BedExec"

    def _open_reader(self) -> BedReader:
        if self.bed_fields.name not in _SUPPORTED_BED_FIELDS:
            raise UnsupportedBedFieldsError(f"Unsupported BED fields: {self.bed_fields.name}")
        storage_type = get_storage_type(self.file_path)
        field_count = self.bed_fields.field_count
        if storage_type is StorageType.LOCAL:
            thread_num = self.thread_num if self.thread_num is not None else 1
            return open_local_bed_reader(self.file_path, field_count, thread_num)
        if storage_type in _REMOTE_STORAGE:
            if self.object_storage_options is None:
                raise ValueError("ObjectStorageOptions must be provided for remote storage")
            return open_remote_bed_reader(
                self.file_path, field_count, self.object_storage_options
            )
        raise UnsupportedStorageError(f"Unsupported storage type: {storage_type.name}")

    def _batches(self, batch_size: int) -> Iterator[RecordBatch]:
        with self._open_reader() as reader:
            records: Iterator[BedRecord] = reader.records()
            if self.limit is not None:
                records = islice(records, self.limit)
            pending: list[BedRecord] = []
            record_num = 0
            batch_num = 0
            for record in records:
                pending.append(record)
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
        logger.debug("BedExec::execute")
        logger.debug("Projection: %s", self.projection)
        if batch_size < 1:
            raise ValueError("batch_size must be at least 1")
        return self._batches(batch_size)


class BedTableProvider:
    """A BED file exposed as a table."""

    def __init__(
        self,
        file_path: str,
        bed_fields: BEDFields,
        thread_num: int | None = None,
        object_storage_options: ObjectStorageOptions | None = None,
    ) -> None:
        self.file_path = file_path
        self.bed_fields = bed_fields
        self.thread_num = thread_num
        self.object_storage_options = object_storage_options
        self.schema = determine_schema()

    def __repr__(self) -> str:
        return (
            f"BedTableProvider(file_path={self.file_path!r}, "
            f"bed_fields={self.bed_fields.name}, thread_num={self.thread_num})"
        )

    def scan(
        self, projection: Sequence[int] | None = None, limit: int | None = None
    ) -> BedExec:
        """Plan a scan of the table, restricted to the projected columns."""
        logger.debug("BedTableProvider::scan")
        projection_list = list(projection) if projection is not None else None
        return BedExec(
            file_path=self.file_path,
            bed_fields=self.bed_fields,
            schema=project_schema(self.schema, projection_list),
            projection=projection_list,
            limit=limit,
            thread_num=self.thread_num,
            object_storage_options=self.object_storage_options,
        )