"""Object storage helpers: locate, classify and open local or remote genomic files."""

from __future__ import annotations

import gzip
import logging
import os
import time
from dataclasses import dataclass
from enum import Enum
from typing import BinaryIO
from urllib.error import HTTPError, URLError
from urllib.parse import quote, urlsplit, urlunsplit
from urllib.request import Request, urlopen

logger = logging.getLogger(__name__)

_AZURE_BLOB_SUFFIX = ".blob.core.windows.net"
_DEFAULT_PORTS = {"http": 80, "https": 443}
_UNCOMPRESSED_SUFFIXES = (".vcf", ".fastq", ".fasta", ".fa", ".gff3", ".gff", ".bed")


class RemoteStorageError(OSError):
    """Raised when a remote object cannot be fetched."""


class UnsupportedStorageError(ValueError):
    """Raised for a storage type that cannot be read from."""


class CompressionType(Enum):
    GZIP = "gz"
    BGZF = "bgz"
    NONE = "none"
    AUTO = "auto"

    @classmethod
    def from_string(cls, value: str) -> CompressionType:
        """Map a file extension or name ("gz", "bgz", "none", "auto") to a type."""
        try:
            return cls(value.lower())
        except ValueError:
            raise ValueError(f"Invalid compression type: {value}") from None


class StorageType(Enum):
    GCS = "gcs"
    S3 = "s3"
    AZBLOB = "azblob"
    HTTP = "http"
    LOCAL = "local"

    @classmethod
    def from_prefix(cls, prefix: str) -> StorageType:
        """Map a URL scheme to the storage it addresses."""
        mapping = {
            "gs": cls.GCS,
            "s3": cls.S3,
            "abfs": cls.AZBLOB,
            "local": cls.LOCAL,
            "file": cls.LOCAL,
            "http": cls.HTTP,
            "https": cls.HTTP,
        }
        try:
            return mapping[prefix.lower()]
        except KeyError:
            raise ValueError("Invalid object storage type") from None


def _debug_option(value: object) -> str:
    if value is None:
        return "None"
    if isinstance(value, Enum):
        return f"Some({value.name})"
    return f"Some({value})"


@dataclass
class ObjectStorageOptions:
    """Settings for reading objects from remote storage."""

    chunk_size: int | None = 8
    concurrent_fetches: int | None = 1
    allow_anonymous: bool = True
    enable_request_payer: bool = False
    max_retries: int | None = 5
    timeout: int | None = 300
    compression_type: CompressionType | None = CompressionType.AUTO

    def __str__(self) -> str:
        return (
            "ObjectStorageOptions { "
            f"chunk_size: {_debug_option(self.chunk_size)}, "
            f"concurrent_fetches: {_debug_option(self.concurrent_fetches)}, "
            f"allow_anonymous: {str(self.allow_anonymous).lower()}, "
            f"enable_request_payer: {str(self.enable_request_payer).lower()}, "
            f"max_retries: {_debug_option(self.max_retries)}, "
            f"timeout: {_debug_option(self.timeout)}, "
            f"compression_type: {_debug_option(self.compression_type)} }}"
        )


@dataclass(frozen=True)
class BlobInfo:
    account: str
    container: str
    endpoint: str
    relative_path: str


def get_file_path(file_path: str) -> str:
    """Return the object key: everything after the bucket in the path."""
    return "/".join(file_path.split("://")[-1].split("/")[1:])


def get_bucket_name(file_path: str) -> str:
    """Return the bucket (first path component after the scheme)."""
    return file_path.split("://")[-1].split("/")[0]


def get_compression_type(
    file_path: str, compression_type: CompressionType | None
) -> CompressionType:
    """Resolve the compression of a file, from the explicit type or its extension."""
    logger.debug(
        "get_compression_type called with file_path: %s, compression_type: %s",
        file_path,
        compression_type,
    )
    if compression_type is not None and compression_type is not CompressionType.AUTO:
        return compression_type
    if file_path.lower().endswith(_UNCOMPRESSED_SUFFIXES):
        return CompressionType.NONE
    return CompressionType.from_string(file_path.split(".")[-1])


def get_storage_type(file_path: str) -> StorageType:
    """Classify a path by its scheme; paths without one are local."""
    prefix = file_path.split("://")[0]
    if prefix == file_path:
        return StorageType.LOCAL
    if prefix.lower().startswith("http") and is_azure_blob_url(file_path):
        return StorageType.AZBLOB
    return StorageType.from_prefix(prefix)


def _path_segments(path: str) -> list[str]:
    path = path or "/"
    return path[1:].split("/") if path.startswith("/") else [path]


def _effective_port(parts) -> int | None:
    port = parts.port
    if port is not None and _DEFAULT_PORTS.get(parts.scheme.lower()) == port:
        return None
    return port


def extract_account_and_container(url: str) -> BlobInfo:
    """Split an Azure Blob URL (real or emulator style) into its parts."""
    parts = urlsplit(url)
    host = parts.hostname
    if not parts.scheme or not host:
        raise ValueError("URL is missing a host")
    scheme = parts.scheme.lower()
    port = _effective_port(parts)
    port_text = "" if port is None else str(port)
    segments = iter(_path_segments(parts.path))

    def next_segment(what: str) -> str:
        try:
            return next(segments)
        except StopIteration:
            raise ValueError(f"URL is missing {what} segment") from None

    if host.endswith(_AZURE_BLOB_SUFFIX):
        account = host[: -len(_AZURE_BLOB_SUFFIX)]
        container = next_segment("container")
        endpoint = f"{scheme}://{host}:{port_text}"
    else:
        account = next_segment("account")
        container = next_segment("container")
        endpoint = f"{scheme}://{host}:{port_text}/{account}"
    return BlobInfo(
        account=account,
        container=container,
        endpoint=endpoint,
        relative_path="/".join(segments),
    )


def is_azure_blob_url(url: str) -> bool:
    """Tell whether a URL points at Azure Blob Storage or the configured emulator."""
    try:
        parts = urlsplit(url)
        host = parts.hostname
    except ValueError:
        return False
    if not parts.scheme or not host:
        return False
    if host.endswith(_AZURE_BLOB_SUFFIX):
        return len(_path_segments(parts.path)) >= 2
    endpoint = os.environ.get("AZURE_ENDPOINT_URL", "")
    if endpoint:
        normalized = urlunsplit(
            (parts.scheme.lower(), parts.netloc, parts.path or "/", parts.query, parts.fragment)
        )
        return normalized.startswith(endpoint)
    return False


def _detect_s3_region(bucket: str) -> str | None:
    request = Request(f"https://s3.amazonaws.com/{quote(bucket)}", method="HEAD")
    try:
        with urlopen(request, timeout=10) as response:
            return response.headers.get("x-amz-bucket-region")
    except HTTPError as error:
        return error.headers.get("x-amz-bucket-region") if error.headers else None
    except (URLError, OSError):
        return None


def _open_url(url: str, headers: dict[str, str], timeout: int, max_retries: int) -> BinaryIO:
    request = Request(url, headers=headers)
    last_error: Exception | None = None
    for attempt in range(max_retries + 1):
        try:
            return urlopen(request, timeout=timeout)
        except HTTPError as error:
            if error.code < 500:
                raise RemoteStorageError(f"HTTP {error.code} while reading {url}") from error
            last_error = error
        except (URLError, OSError) as error:
            last_error = error
        logger.warning("Attempt %d to read %s failed: %s", attempt + 1, url, last_error)
        if attempt < max_retries:
            time.sleep(min(0.05 * 2**attempt, 2.0))
    raise RemoteStorageError(f"Failed to read {url}: {last_error}") from last_error


def get_remote_stream(file_path: str, options: ObjectStorageOptions) -> BinaryIO:
    """Open a binary stream over an object in S3, GCS or Azure Blob Storage."""
    storage_type = get_storage_type(file_path)
    bucket = get_bucket_name(file_path)
    key = quote(get_file_path(file_path), safe="/%")
    chunk_size = options.chunk_size if options.chunk_size is not None else 64
    concurrent_fetches = (
        options.concurrent_fetches if options.concurrent_fetches is not None else 8
    )
    max_retries = options.max_retries if options.max_retries is not None else 5
    timeout = options.timeout if options.timeout is not None else 300
    headers: dict[str, str] = {}

    if storage_type is StorageType.S3:
        logger.info(
            "Using S3 storage type with parameters: bucket_name: %s, allow_anonymous: %s, "
            "enable_request_payer: %s, max_retries: %s, timeout: %s",
            bucket, options.allow_anonymous, options.enable_request_payer, max_retries, timeout,
        )
        endpoint = os.environ.get("AWS_ENDPOINT_URL", "")
        if endpoint:
            url = f"{endpoint.rstrip('/')}/{quote(bucket)}/{key}"
        else:
            region = (
                os.environ.get("AWS_REGION")
                or os.environ.get("AWS_DEFAULT_REGION")
                or _detect_s3_region(bucket)
                or "us-east-1"
            )
            url = f"https://{bucket}.s3.{region}.amazonaws.com/{key}"
        if options.enable_request_payer:
            headers["x-amz-request-payer"] = "requester"
    elif storage_type is StorageType.AZBLOB:
        blob = extract_account_and_container(file_path)
        logger.info(
            "Using Azure Blob Storage type with parameters: account_name: %s, "
            "container_name: %s, endpoint: %s, chunk_size: %s, concurrent_fetches: %s, "
            "allow_anonymous: %s, max_retries: %s, timeout: %s",
            blob.account, blob.container, blob.endpoint, chunk_size, concurrent_fetches,
            options.allow_anonymous, max_retries, timeout,
        )
        url = f"{blob.endpoint}/{blob.container}/{blob.relative_path}"
    elif storage_type is StorageType.GCS:
        logger.info(
            "Using GCS storage type with parameters: bucket_name: %s, chunk_size: %s, "
            "concurrent_fetches: %s, allow_anonymous: %s, max_retries: %s, timeout: %s",
            bucket, chunk_size, concurrent_fetches, options.allow_anonymous, max_retries, timeout,
        )
        if not options.allow_anonymous and "GOOGLE_APPLICATION_CREDENTIALS" not in os.environ:
            logger.warning(
                "GOOGLE_APPLICATION_CREDENTIALS environment variable is not set. "
                "Using default credentials."
            )
        url = f"https://storage.googleapis.com/{quote(bucket)}/{key}"
    elif storage_type is StorageType.HTTP:
        raise UnsupportedStorageError("HTTP storage type is not supported")
    else:
        raise UnsupportedStorageError("Invalid object storage type")

    return _open_url(url, headers, timeout, max_retries)


def get_remote_stream_bgzf(file_path: str, options: ObjectStorageOptions) -> BinaryIO:
    """Open a remote BGZF object as a decompressed binary stream."""
    return gzip.GzipFile(fileobj=get_remote_stream(file_path, options), mode="rb")


def get_remote_stream_gz(file_path: str, options: ObjectStorageOptions) -> BinaryIO:
    """Open a remote gzip object as a decompressed binary stream."""
    return gzip.GzipFile(fileobj=get_remote_stream(file_path, options), mode="rb")