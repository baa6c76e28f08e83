"""Reading BED records from local or remote, plain or BGZF-compressed files."""

from __future__ import annotations

import gzip
import logging
from collections.abc import Iterator
from dataclasses import dataclass
from typing import BinaryIO

from bioscan.object_storage import (
    CompressionType,
    ObjectStorageOptions,
    get_compression_type,
    get_remote_stream,
    get_remote_stream_bgzf,
)

logger = logging.getLogger(__name__)

SUPPORTED_FIELD_COUNTS = (3, 4, 5, 6)
_MISSING = "."


class UnsupportedCompressionError(ValueError):
    """Raised when a BED file uses a compression the reader cannot handle."""


@dataclass(frozen=True)
class BedRecord:
    """One BED feature; ``feature_start`` is 1-based, ``feature_end`` inclusive."""

    reference_sequence_name: str
    feature_start: int
    feature_end: int
    name: str | None = None
    score: int | None = None
    strand: str | None = None
    other_fields: tuple[str, ...] = ()


def read_line(stream: BinaryIO) -> bytes | None:
    """Read one line without its ``\\n`` or ``\\r\\n`` ending; None at end of file."""
    line = stream.readline()
    if not line:
        return None
    if line.endswith(b"\n"):
        line = line[:-1]
        if line.endswith(b"\r"):
            line = line[:-1]
    return line


def _check_field_count(field_count: int) -> None:
    if field_count not in SUPPORTED_FIELD_COUNTS:
        raise ValueError(f"Unsupported BED field count: {field_count}")


def _parse_int(text: str, what: str) -> int:
    try:
        return int(text)
    except ValueError:
        raise ValueError(f"invalid {what}: {text!r}") from None


def parse_bed_record(line: str | bytes, field_count: int) -> BedRecord:
    """Parse one tab-separated BED line holding at least ``field_count`` fields."""
    _check_field_count(field_count)
    if isinstance(line, bytes):
        line = line.decode("utf-8")
    if not line:
        raise ValueError("EOF in bed parser")
    fields = line.split("\t")
    if len(fields) < field_count:
        raise ValueError(f"expected {field_count} fields, found {len(fields)}")

    chrom = fields[0]
    if not chrom:
        raise ValueError("missing reference sequence name")
    start = _parse_int(fields[1], "feature start")
    end = _parse_int(fields[2], "feature end")
    if start < 0 or end < 0:
        raise ValueError("feature positions must not be negative")

    name = score = strand = None
    if field_count >= 4 and fields[3] != _MISSING:
        name = fields[3]
    if field_count >= 5 and fields[4] != _MISSING:
        score = _parse_int(fields[4], "score")
        if not 0 <= score <= 1000:
            raise ValueError(f"invalid score: {score}")
    if field_count >= 6 and fields[5] != _MISSING:
        if fields[5] not in ("+", "-"):
            raise ValueError(f"invalid strand: {fields[5]!r}")
        strand = fields[5]

    return BedRecord(
        reference_sequence_name=chrom,
        feature_start=start + 1,
        feature_end=end,
        name=name,
        score=score,
        strand=strand,
        other_fields=tuple(fields[field_count:]),
    )


class BedReader:
    """Reads lines and BED records from a binary stream.

    With ``skip_invalid`` set, records that fail to parse are logged and skipped
    instead of raising.
    """

    def __init__(self, stream: BinaryIO, field_count: int, *, skip_invalid: bool = False) -> None:
        _check_field_count(field_count)
        self.stream = stream
        self.field_count = field_count
        self.skip_invalid = skip_invalid

    def __enter__(self) -> BedReader:
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()

    def _raw_lines(self) -> Iterator[bytes]:
        while (line := read_line(self.stream)) is not None:
            yield line

    def lines(self) -> Iterator[str]:
        """Yield each line as text, without its line ending."""
        for line in self._raw_lines():
            yield line.decode("utf-8")

    def records(self) -> Iterator[BedRecord]:
        """Yield each line parsed as a BED record."""
        for line in self._raw_lines():
            try:
                yield parse_bed_record(line, self.field_count)
            except ValueError:
                if not self.skip_invalid:
                    raise
                logger.error("Error reading record from BED file")

    def close(self) -> None:
        self.stream.close()


def open_local_bed_reader(file_path: str, field_count: int, thread_num: int = 1) -> BedReader:
    """Open a local plain or BGZF-compressed BED file."""
    _check_field_count(field_count)
    if thread_num < 1:
        raise ValueError("thread_num must be at least 1")
    logger.info("Creating local BED reader: %s", file_path)
    compression = get_compression_type(file_path, None)
    if compression is CompressionType.BGZF:
        logger.debug("Reading BED file from local storage with %d threads", thread_num)
        stream: BinaryIO = gzip.open(file_path, "rb")
    elif compression is CompressionType.NONE:
        logger.debug("Reading BED file from local storage with sync reader")
        stream = open(file_path, "rb")
    else:
        raise UnsupportedCompressionError("Compression type not supported.")
    return BedReader(stream, field_count, skip_invalid=True)


def open_remote_bed_reader(
    file_path: str, field_count: int, options: ObjectStorageOptions
) -> BedReader:
    """Open a plain or BGZF-compressed BED object in remote storage."""
    _check_field_count(field_count)
    logger.info("Creating remote BED reader: %s", options)
    compression = get_compression_type(file_path, options.compression_type)
    if compression is CompressionType.BGZF:
        stream = get_remote_stream_bgzf(file_path, options)
    elif compression is CompressionType.NONE:
        stream = get_remote_stream(file_path, options)
    else:
        raise UnsupportedCompressionError("Compression type not supported.")
    return BedReader(stream, field_count)