"""Batched, projected table scans over BED, FASTA and BAM files."""

__version__ = "0.1.0"

__all__ = [
    "bam_reader",
    "bam_table",
    "bed_reader",
    "bed_table",
    "fasta_reader",
    "fasta_table",
    "object_storage",
    "table_utils",
]