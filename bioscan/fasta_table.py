"""Tabular scans over FASTA files: schema, execution plan and table provider."""

from __future__ import annotations

import logging
from collections.abc import Iterator, Sequence
from dataclasses import dataclass, field
from itertools import islice

from bioscan.fasta_reader import (
    FastaReader,
    FastaRecord,
    open_local_fasta_reader,
    open_remote_fasta_reader,
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


def determine_schema() -> Schema:
    """Return the full schema of a FASTA table."""
    schema = Schema(
        (
            Field("name", DataType.UTF8, False),
            Field("description", DataType.UTF8, True),
            Field("sequence", DataType.UTF8, False),
        )
    )
    logger.debug("Schema: %s", schema)
    return schema


def _columns(records: Sequence[FastaRecord]) -> list[list]:
    return [
        [record.name for record in records],
        [record.description for record in records],
        [record.sequence for record in records],
    ]


@dataclass
class FastaExec:
    """Execution plan that reads a FASTA file into record batches.

    ``schema`` is the output (projected) schema; ``limit``, when set, caps the
    number of rows produced.
    """

    file_path: str
    schema: Schema
    projection: list[int] | None = None
    limit: int | None = None
    thread_num: int | None = None
    object_storage_options: ObjectStorageOptions | None = field(default=None, repr=False)

    name = "FastaExec"

    def _open_reader(self) -> FastaReader:
        storage_type = get_storage_type(self.file_path)
        if storage_type is StorageType.LOCAL:
            thread_num = self.thread_num if self.thread_num is not None else 1
            return open_local_fasta_reader(
                self.file_path, thread_num, self.object_storage_options
            )
        if storage_type in _REMOTE_STORAGE:
            if self.object_storage_options is None:
                raise ValueError("ObjectStorageOptions must be provided for remote storage")
            return open_remote_fasta_reader(self.file_path, self.object_storage_options)
        raise UnsupportedStorageError(f"Unsupported storage type: {storage_type.name}")

    def _batches(self, batch_size: int) -> Iterator[RecordBatch]:
        with self._open_reader() as reader:
            records: Iterator[FastaRecord] = reader.records()
            if self.limit is not None:
                records = islice(records, self.limit)
            pending: list[FastaRecord] = []
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
        logger.debug("FastaExec::execute")
        logger.debug("Projection: %s", self.projection)
        if batch_size < 1:
            raise ValueError("batch_size must be at least 1")
        return self._batches(batch_size)


class FastaTableProvider:
    """A FASTA file exposed as a table."""

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
        return f"FastaTableProvider(file_path={self.file_path!r}, thread_num={self.thread_num})"

    def scan(
        self, projection: Sequence[int] | None = None, limit: int | None = None
    ) -> FastaExec:
        """Plan a scan of the table, restricted to the projected columns."""
        logger.debug("FastaTableProvider::scan")
        projection_list = list(projection) if projection is not None else None
        return FastaExec(
            file_path=self.file_path,
            schema=project_schema(self.schema, projection_list),
            projection=projection_list,
            limit=limit,
            thread_num=self.thread_num,
            object_storage_options=self.object_storage_options,
        )