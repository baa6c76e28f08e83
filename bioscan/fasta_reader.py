"""Reading FASTA records from local or remote, plain or compressed files."""

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
    get_remote_stream_gz,
)

logger = logging.getLogger(__name__)

_DEFINITION_PREFIX = b">"


class UnsupportedCompressionError(ValueError):
    """Raised when a FASTA file uses a compression the reader cannot handle."""


@dataclass(frozen=True)
class FastaRecord:
    """One FASTA entry: its name, optional description and full sequence."""

    name: str
    description: str | None
    sequence: str


def _strip_line_ending(line: bytes) -> bytes:
    if line.endswith(b"\n"):
        line = line[:-1]
        if line.endswith(b"\r"):
            line = line[:-1]
    return line


def _parse_definition(line: bytes) -> tuple[str, str | None]:
    text = line[len(_DEFINITION_PREFIX):].decode("utf-8")
    name, separator, description = text.partition(" ")
    if not name:
        raise ValueError("invalid FASTA definition: missing name")
    return name, description if separator else None


class FastaReader:
    """Reads FASTA records from a binary stream."""

    def __init__(self, stream: BinaryIO) -> None:
        self.stream = stream

    def __enter__(self) -> FastaReader:
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()

    def records(self) -> Iterator[FastaRecord]:
        """Yield each record; sequence lines are joined without line breaks."""
        header: tuple[str, str | None] | None = None
        chunks: list[str] = []
        for raw in self.stream:
            line = _strip_line_ending(raw)
            if line.startswith(_DEFINITION_PREFIX):
                if header is not None:
                    yield FastaRecord(header[0], header[1], "".join(chunks))
                header = _parse_definition(line)
                chunks = []
            elif header is None:
                if line.strip():
                    raise ValueError("invalid FASTA definition: expected '>'")
            else:
                chunks.append(line.decode("utf-8"))
        if header is not None:
            yield FastaRecord(header[0], header[1], "".join(chunks))

    def close(self) -> None:
        self.stream.close()


def open_local_fasta_reader(
    file_path: str,
    thread_num: int = 1,
    options: ObjectStorageOptions | None = None,
) -> FastaReader:
    """Open a local plain, gzip or BGZF-compressed FASTA file.

    The compression comes from ``options.compression_type`` when given,
    otherwise from the file extension.
    """
    if thread_num < 1:
        raise ValueError("thread_num must be at least 1")
    requested = options.compression_type if options is not None else None
    compression = get_compression_type(file_path, requested)
    if compression in (CompressionType.BGZF, CompressionType.GZIP):
        logger.debug("Reading compressed FASTA file %s with %d threads", file_path, thread_num)
        stream: BinaryIO = gzip.open(file_path, "rb")
    elif compression is CompressionType.NONE:
        stream = open(file_path, "rb")
    else:
        raise UnsupportedCompressionError(
            f"Unsupported compression type for FASTA reader: {compression.name}"
        )
    return FastaReader(stream)


def open_remote_fasta_reader(file_path: str, options: ObjectStorageOptions) -> FastaReader:
    """Open a plain, gzip or BGZF-compressed FASTA object in remote storage."""
    compression = get_compression_type(file_path, None)
    if compression is CompressionType.BGZF:
        stream = get_remote_stream_bgzf(file_path, options)
    elif compression is CompressionType.GZIP:
        stream = get_remote_stream_gz(file_path, options)
    elif compression is CompressionType.NONE:
        stream = get_remote_stream(file_path, options)
    else:
        raise UnsupportedCompressionError(
            f"Unsupported compression type for FASTA reader: {compression.name}"
        )
    return FastaReader(stream)