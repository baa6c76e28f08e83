# bioscan

`bioscan` reads common genomics file formats as tables. Each format has a
table provider that knows its schema. Calling `scan(projection, limit)` on a
provider gives an execution plan. Calling `execute(batch_size)` on the plan
returns an iterator of `RecordBatch` objects with at most `batch_size` rows
each. The default batch size is 8192. Only the projected columns are
produced. When `limit` is set, it caps the total number of rows.

| Format | Module                | Provider             | Columns                                                                                                                  |
|--------|-----------------------|----------------------|--------------------------------------------------------------------------------------------------------------------------|
| BED    | `bioscan.bed_table`   | `BedTableProvider`   | `chrom`, `start`, `end`, `name`                                                                                          |
| FASTA  | `bioscan.fasta_table` | `FastaTableProvider` | `name`, `description`, `sequence`                                                                                        |
| BAM    | `bioscan.bam_table`   | `BamTableProvider`   | `name`, `chrom`, `start`, `end`, `flags`, `cigar`, `mapping_quality`, `mate_chrom`, `mate_start`, `sequence`, `quality_scores` |

Lower-level readers are also available. They yield one record at a time:

- `bioscan.bed_reader`: `BedReader` and `BedRecord`.
- `bioscan.fasta_reader`: `FastaReader` and `FastaRecord`.
- `bioscan.bam_reader`: `BamReader`, `BamRecord` and `CigarOp`.

## Compression

The compression type comes from `get_compression_type`. Names ending in
`.bed`, `.fa`, `.fasta`, `.fastq`, `.vcf`, `.gff` or `.gff3` are read as plain
text. Otherwise the last extension decides: `.bgz` is BGZF and `.gz` is gzip.
Any other extension raises `ValueError`.

Support differs by format:

- **BED**: plain text and BGZF only. Gzip raises
  `bed_reader.UnsupportedCompressionError`.
- **FASTA**: plain text, gzip and BGZF.
- **BAM**: always read as BGZF.

## Reading a FASTA file

Sequence lines are joined with no line breaks. The description is the text
after the first space of the `>` line. It is `None` when the line has no
space.

```python
from bioscan.fasta_table import FastaTableProvider

provider = FastaTableProvider("sequences.fasta")
plan = provider.scan()

for batch in plan.execute(1024):
    for row in batch.to_pylist():
        print(row["name"], len(row["sequence"]))
```

For a local FASTA file, an `ObjectStorageOptions` passed to the provider can
force a compression type through its `compression_type` field.

## Reading selected BED columns

A projection is a list of column indices in the provider's schema. Only
those columns appear in each batch, in the order given. An index past the
end of the schema raises `IndexError` at planning time. An empty projection
gives a single all-null `dummy` column, which is useful for counting rows.

Only the `BEDFields.BED4` layout can be scanned. Other layouts raise
`bed_table.UnsupportedBedFieldsError` when the plan is executed.

`start` is reported 1-based, and `end` is reported as written in the file.
For local files, lines that cannot be parsed are logged and skipped. For
remote files, they raise `ValueError`.

```python
from bioscan.bed_table import BEDFields, BedTableProvider

provider = BedTableProvider("regions.bed.bgz", BEDFields.BED4)
plan = provider.scan([0, 1, 2])

for batch in plan.execute(8192):
    starts = batch.column("start")
```

## Reading alignments from a BAM file

The BAM table formats each column as follows:

- **Chromosome names** (`chrom`, `mate_chrom`) are lower-cased. They are given
  a `chr` prefix when they lack one.
- **Positions** are 1-based. `end` is the last reference position the
  alignment covers. Unplaced reads have null positions and a null `chrom`.
- **`mapping_quality`** is null when it is missing (255).
- **CIGAR strings** use the usual `10M2I5S` form.
- **Quality scores** are Phred+33 text. The string is empty when the record
  has no scores.

```python
from bioscan.bam_table import BamTableProvider

provider = BamTableProvider("sample.bam", thread_num=2)
plan = provider.scan(limit=100)

for batch in plan.execute(4096):
    for row in batch.to_pylist():
        print(row["chrom"], row["start"], row["cigar"])
```

## Object storage

`get_storage_type` decides where a path is read from:

- `gs://` means Google Cloud Storage.
- `s3://` means S3.
- `abfs://` means Azure Blob Storage.
- `http(s)` URLs on `*.blob.core.windows.net`, or under `AZURE_ENDPOINT_URL`,
  also mean Azure Blob Storage.
- Paths without a scheme, and `file://` or `local://` paths, are local.

Other `http(s)` URLs are classified as `StorageType.HTTP`. They cannot be
read and raise `object_storage.UnsupportedStorageError`.

Remote access is tuned with `ObjectStorageOptions` from
`bioscan.object_storage`. Its fields are:

- `chunk_size`
- `concurrent_fetches`
- `allow_anonymous`
- `enable_request_payer`
- `max_retries`
- `timeout` (seconds)
- `compression_type`

Server errors and network failures are retried up to `max_retries` times.
After that, `object_storage.RemoteStorageError` is raised.

Each service is addressed as follows:

- **S3**: objects are fetched from `AWS_ENDPOINT_URL` when that is set.
  Otherwise they come from the bucket's regional endpoint. The region is
  taken from `AWS_REGION` or `AWS_DEFAULT_REGION`, or detected from the
  bucket, or falls back to `us-east-1`.
- **Google Cloud Storage**: objects come from `storage.googleapis.com`.

```python
from bioscan.object_storage import (
    CompressionType,
    ObjectStorageOptions,
    get_compression_type,
    get_storage_type,
)

options = ObjectStorageOptions(max_retries=3, timeout=60)
print(get_storage_type("gs://bucket/data/regions.bed.bgz"))  # StorageType.GCS
print(get_compression_type("regions.bed.bgz", CompressionType.AUTO))  # CompressionType.BGZF
```

## Building your own columns

`bioscan.table_utils` holds the small table model the providers use:

- `DataType`, `ListType`, `Field` and `Schema` describe columns.
- `RecordBatch` holds equally long columns. It checks nullability when it
  is built. It offers `column(name)` and `to_pylist()`.
- `OptionalField` is a typed column builder with `append_*`, `append_null`
  and `finish`.
- `project_schema` and `build_record_batch` apply projections.

## What bioscan does not do

- **No query language.** There is no SQL or query layer. You scan a provider
  and iterate over its batches yourself.
- **No index use.** There are no region queries, no random access and no
  use of index files. Every scan reads the whole file from the start.
- **Reading only.** No format can be written.
- **No request signing.** Remote requests are plain HTTPS GETs with no
  credentials. Only objects that are publicly readable can be fetched, or
  ones behind an endpoint that accepts unsigned requests. The only extra
  header is the requester-pays one for S3.
- **No parallel decompression.** `thread_num` must be at least 1, but
  decompression runs in a single thread.