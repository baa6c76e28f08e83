"""Reading BAM alignment records from local or remote BGZF-compressed files."""

from __future__ import annotations

import gzip
import logging
import struct
from collections.abc import Iterator
from dataclasses import dataclass
from enum import Enum
from typing import BinaryIO

from bioscan.object_storage import (
    ObjectStorageOptions,
    StorageType,
    UnsupportedStorageError,
    get_remote_stream_bgzf,
    get_storage_type,
)

logger = logging.getLogger(__name__)

_MAGIC = b"BAM\x01"
_INT32 = struct.Struct("<i")
_UINT32 = struct.Struct("<I")
# refID, pos, l_read_name, mapq, bin, n_cigar_op, flag, l_seq, next_refID, next_pos, tlen
_FIXED_FIELDS = struct.Struct("<iiBBHHHiiii")
_MISSING_MAPPING_QUALITY = 255
_MISSING_QUALITY_SCORE = 0xFF
_MISSING_NAME = "*"
_SEQUENCE_CODES = "=ACMGRSVTWYHKDBN"
_SEQUENCE_PAIRS = tuple(
    _SEQUENCE_CODES[byte >> 4] + _SEQUENCE_CODES[byte & 0x0F] for byte in range(256)
)
_REMOTE_STORAGE = (StorageType.GCS, StorageType.S3, StorageType.AZBLOB)


class BamFormatError(ValueError):
    """Raised when BAM data is malformed or truncated."""


class CigarKind(Enum):
    """The kind of a CIGAR operation, valued by its SAM character."""

    MATCH = "M"
    INSERTION = "I"
    DELETION = "D"
    SKIP = "N"
    SOFT_CLIP = "S"
    HARD_CLIP = "H"
    PAD = "P"
    SEQUENCE_MATCH = "="
    SEQUENCE_MISMATCH = "X"

    @property
    def consumes_reference(self) -> bool:
        return self in _REFERENCE_CONSUMING


_REFERENCE_CONSUMING = frozenset(
    {
        CigarKind.MATCH,
        CigarKind.DELETION,
        CigarKind.SKIP,
        CigarKind.SEQUENCE_MATCH,
        CigarKind.SEQUENCE_MISMATCH,
    }
)
# Binary op codes 0..8 in the order the format assigns them.
_CIGAR_KINDS = tuple(CigarKind)


@dataclass(frozen=True)
class CigarOp:
    kind: CigarKind
    length: int


@dataclass(frozen=True)
class BamRecord:
    """One alignment. Positions are 1-based; missing values are None.

    ``quality_scores`` holds raw Phred scores (no offset); it is empty when the
    record carries none.
    """

    name: str | None
    reference_sequence_id: int | None
    alignment_start: int | None
    mapping_quality: int | None
    flags: int
    cigar: tuple[CigarOp, ...]
    sequence: str
    quality_scores: bytes
    mate_reference_sequence_id: int | None
    mate_alignment_start: int | None
    template_length: int = 0
    data: bytes = b""

    @property
    def alignment_span(self) -> int:
        """Number of reference bases the alignment covers."""
        return sum(op.length for op in self.cigar if op.kind.consumes_reference)

    @property
    def alignment_end(self) -> int | None:
        """Last aligned reference position (inclusive), or None when unplaced."""
        if self.alignment_start is None:
            return None
        end = self.alignment_start + self.alignment_span - 1
        return end if end >= 1 else None


def _optional_id(value: int, what: str) -> int | None:
    if value == -1:
        return None
    if value < -1:
        raise BamFormatError(f"invalid {what}: {value}")
    return value


def _optional_position(value: int, what: str) -> int | None:
    if value == -1:
        return None
    if value < -1:
        raise BamFormatError(f"invalid {what}: {value}")
    return value + 1


def _decode_cigar(raw: bytes) -> tuple[CigarOp, ...]:
    ops = []
    for (value,) in _UINT32.iter_unpack(raw):
        code = value & 0x0F
        if code >= len(_CIGAR_KINDS):
            raise BamFormatError(f"invalid CIGAR op kind: {code}")
        ops.append(CigarOp(_CIGAR_KINDS[code], value >> 4))
    return tuple(ops)


def _decode_sequence(raw: bytes, length: int) -> str:
    return "".join(_SEQUENCE_PAIRS[byte] for byte in raw)[:length]


def _decode_quality_scores(raw: bytes) -> bytes:
    if raw and all(score == _MISSING_QUALITY_SCORE for score in raw):
        return b""
    return bytes(raw)


def _decode_record(block: bytes) -> BamRecord:
    if len(block) < _FIXED_FIELDS.size:
        raise BamFormatError("BAM record is shorter than its fixed fields")
    (
        ref_id,
        pos,
        name_length,
        mapq,
        _bin,
        cigar_count,
        flags,
        seq_length,
        mate_ref_id,
        mate_pos,
        template_length,
    ) = _FIXED_FIELDS.unpack_from(block)
    if seq_length < 0:
        raise BamFormatError(f"invalid sequence length: {seq_length}")

    offset = _FIXED_FIELDS.size
    sizes = (name_length, cigar_count * 4, (seq_length + 1) // 2, seq_length)
    if len(block) < offset + sum(sizes):
        raise BamFormatError("BAM record is truncated")

    parts = []
    for size in sizes:
        parts.append(block[offset : offset + size])
        offset += size
    raw_name, raw_cigar, raw_sequence, raw_quality = parts

    if not raw_name.endswith(b"\x00"):
        raise BamFormatError("read name is not NUL-terminated")
    name = raw_name[:-1].decode("ascii", errors="replace")

    return BamRecord(
        name=None if name == _MISSING_NAME else name,
        reference_sequence_id=_optional_id(ref_id, "reference sequence ID"),
        alignment_start=_optional_position(pos, "alignment start"),
        mapping_quality=None if mapq == _MISSING_MAPPING_QUALITY else mapq,
        flags=flags,
        cigar=_decode_cigar(raw_cigar),
        sequence=_decode_sequence(raw_sequence, seq_length),
        quality_scores=_decode_quality_scores(raw_quality),
        mate_reference_sequence_id=_optional_id(mate_ref_id, "mate reference sequence ID"),
        mate_alignment_start=_optional_position(mate_pos, "mate alignment start"),
        template_length=template_length,
        data=bytes(block[offset:]),
    )


class BamReader:
    """Reads the header and alignment records from a decompressed BAM stream."""

    def __init__(self, stream: BinaryIO) -> None:
        self.stream = stream
        self.header_text: str | None = None
        self._reference_sequences: dict[str, int] | None = None

    def __enter__(self) -> BamReader:
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()

    def _read_exact(self, size: int) -> bytes:
        data = self.stream.read(size)
        if len(data) != size:
            raise BamFormatError("unexpected end of BAM data")
        return data

    def _read_length(self, what: str) -> int:
        (value,) = _INT32.unpack(self._read_exact(_INT32.size))
        if value < 0:
            raise BamFormatError(f"invalid {what}: {value}")
        return value

    def _read_header(self) -> dict[str, int]:
        if self._read_exact(len(_MAGIC)) != _MAGIC:
            raise BamFormatError("invalid BAM header magic")
        text_length = self._read_length("header text length")
        self.header_text = self._read_exact(text_length).rstrip(b"\x00").decode("utf-8")
        reference_count = self._read_length("reference sequence count")
        sequences: dict[str, int] = {}
        for _ in range(reference_count):
            name_length = self._read_length("reference sequence name length")
            raw_name = self._read_exact(name_length)
            name = raw_name.rstrip(b"\x00").decode("utf-8")
            sequences[name] = self._read_length("reference sequence length")
        return sequences

    def read_sequences(self) -> dict[str, int]:
        """Return the reference sequences (name to length) in header order."""
        if self._reference_sequences is None:
            self._reference_sequences = self._read_header()
        return dict(self._reference_sequences)

    def read_records(self) -> Iterator[BamRecord]:
        """Yield every alignment record; the header is read first if needed."""
        if self._reference_sequences is None:
            self._reference_sequences = self._read_header()
        while True:
            prefix = self.stream.read(_INT32.size)
            if not prefix:
                return
            if len(prefix) != _INT32.size:
                raise BamFormatError("unexpected end of BAM data")
            (block_size,) = _INT32.unpack(prefix)
            if block_size < 0:
                raise BamFormatError(f"invalid record block size: {block_size}")
            yield _decode_record(self._read_exact(block_size))

    def close(self) -> None:
        self.stream.close()


def open_local_bam_stream(file_path: str, thread_num: int = 1) -> BamReader:
    """Open a local BGZF-compressed BAM file."""
    if thread_num < 1:
        raise ValueError("thread_num must be at least 1")
    logger.debug("Reading BAM file %s from local storage with %d threads", file_path, thread_num)
    return BamReader(gzip.open(file_path, "rb"))


def open_remote_bam_stream(file_path: str, options: ObjectStorageOptions) -> BamReader:
    """Open a BAM object in S3, GCS or Azure Blob Storage."""
    storage_type = get_storage_type(file_path)
    if storage_type not in _REMOTE_STORAGE:
        raise UnsupportedStorageError(
            f"Unsupported storage type for BAM file: {storage_type.name}"
        )
    return BamReader(get_remote_stream_bgzf(file_path, options))