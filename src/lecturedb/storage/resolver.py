"""
Object reference resolution and signed access URLs.

Media records store either a bare object key (``videos/123.mp4``) or a full
URL in one of the S3 shapes:

- virtual-hosted: ``https://<bucket>.s3[.<region>].amazonaws.com/<key>``
- path-style:     ``https://s3[.<region>].amazonaws.com/<bucket>/<key>``
- anything else:  the URL path is taken as the key

`resolve_key` turns any of these into the canonical key. `ObjectResolver`
signs keys with the bucket's credentials; every call produces a fresh URL.
"""
import logging
import mimetypes
import os
import random
import threading
import time
from collections.abc import Iterable, Mapping
from concurrent.futures import ThreadPoolExecutor
from datetime import timedelta
from typing import IO, Any, NamedTuple
from urllib.parse import unquote, urlsplit

from lecturedb.exceptions import ObjectStorageError, ReferenceResolutionError
from lecturedb.exceptions import SigningError, UploadRejectedError
from lecturedb.options import StorageConfig
from minio import Minio
from minio.credentials import AWSConfigProvider, ChainedProvider, EnvAWSProvider
from minio.credentials import IamAwsProvider
from minio.error import MinioException
from urllib3.exceptions import HTTPError as TransportError

__all__ = [
    'ALLOWED_VIDEO_TYPES',
    'MAX_UPLOAD_BYTES',
    'ObjectResolver',
    'SignedURLResult',
    'is_url_reference',
    'make_object_key',
    'resolve_key',
]

logger = logging.getLogger(__name__)

ALLOWED_VIDEO_TYPES = frozenset({'video/mp4', 'video/webm', 'video/ogg', 'video/quicktime'})
MAX_UPLOAD_BYTES = 500 * 1024 * 1024
SIGN_ERROR_MESSAGE = 'Failed to generate video URL'


def is_url_reference(reference: str) -> bool:
    """A reference is a URL if it has an http(s) scheme or names an AWS host."""
    return reference.startswith(('http://', 'https://')) or 'amazonaws.com' in reference


def resolve_key(reference: str | None, bucket: str | None) -> str:
    """Resolve a stored object reference to its canonical key.

    >>> resolve_key('videos/123.mp4', 'bucket')
    'videos/123.mp4'
    >>> resolve_key('https://bucket.s3.amazonaws.com/videos/123.mp4', 'bucket')
    'videos/123.mp4'
    >>> resolve_key('https://s3.amazonaws.com/bucket/videos/123.mp4', 'bucket')
    'videos/123.mp4'

    Raises
        ReferenceResolutionError: reference is empty, is not a parseable URL
        or resolves to an empty key
    """
    if not reference or not reference.strip():
        raise ReferenceResolutionError('Missing S3 key or URL')
    if not is_url_reference(reference):
        return reference

    parsed = urlsplit(reference)
    if not parsed.scheme or not parsed.hostname:
        raise ReferenceResolutionError(f'Invalid object URL: {reference}')
    path = unquote(parsed.path)

    if bucket and parsed.hostname.startswith(f'{bucket}.'):
        key = path.lstrip('/')
    elif bucket and f'/{bucket}/' in path:
        key = path.partition(f'/{bucket}/')[2]
    else:
        key = path.lstrip('/')

    if not key:
        raise ReferenceResolutionError(f'No object key in URL: {reference}')
    return key


def make_object_key(filename: str, prefix: str = 'videos') -> str:
    """Unique object key ``<prefix>/<epoch ms>-<9 random digits><ext>``."""
    ext = os.path.splitext(filename)[1]
    return f'{prefix}/{int(time.time() * 1000)}-{random.randint(0, 999_999_999)}{ext}'


class SignedURLResult(NamedTuple):
    """Outcome of signing one reference in a batch."""
    reference: str | None
    url: str | None = None
    error: str | None = None

    @property
    def ok(self) -> bool:
        return self.url is not None


class ObjectResolver:
    """Resolve references and sign access URLs for one private bucket.

    The object store client is created on first use, so constructing a
    resolver never touches the network.
    """

    def __init__(self, config: StorageConfig, client: Minio | None = None) -> None:
        self.config = config
        self._client = client
        self._client_lock = threading.Lock()

    @property
    def bucket(self) -> str:
        if not self.config.bucket:
            raise ObjectStorageError('S3 bucket name is not configured')
        return self.config.bucket

    @property
    def client(self) -> Minio:
        with self._client_lock:
            if self._client is None:
                self._client = self._create_client()
            return self._client

    def _create_client(self) -> Minio:
        """Build the client from static keys, else from the AWS credential chain."""
        config = self.config
        if config.access_key and config.secret_key:
            client = Minio(
                config.endpoint,
                access_key=config.access_key,
                secret_key=config.secret_key,
                region=config.region,
                secure=config.secure,
                )
        else:
            logger.debug('No static S3 keys configured, using the AWS credential chain')
            client = Minio(
                config.endpoint,
                region=config.region,
                secure=config.secure,
                credentials=ChainedProvider([
                    EnvAWSProvider(),
                    AWSConfigProvider(),
                    IamAwsProvider(),
                    ]),
                )
        logger.debug(f'Object store client created for {config.endpoint}')
        return client

    def resolve_key(self, reference: str | None) -> str:
        return resolve_key(reference, self.config.bucket)

    def sign(self, key: str, ttl_seconds: int | None = None) -> str:
        """Presigned GET URL for `key`, valid for `ttl_seconds` (default: config.url_expires).

        Raises SigningError if the URL cannot be generated, including when no
        credentials resolve or the URL comes back unsigned.
        """
        if not key:
            raise SigningError('Cannot sign an empty object key')
        ttl = self.config.url_expires if ttl_seconds is None else ttl_seconds
        if ttl <= 0:
            raise SigningError(f'Signed URL lifetime must be positive, got {ttl}')
        try:
            url = self.client.presigned_get_object(
                bucket_name=self.bucket,
                object_name=key,
                expires=timedelta(seconds=ttl),
                )
        except (MinioException, TransportError, ValueError) as err:
            logger.error(f'Failed to generate signed URL for key {key!r}: {err}')
            raise SigningError(f'Failed to sign {key!r}: {err}') from err
        if 'X-Amz-Signature=' not in url:
            logger.error(f'Signed URL for key {key!r} carries no signature')
            raise SigningError(f'Failed to sign {key!r}: no credentials available')
        return url

    def signed_url(self, reference: str | None, ttl_seconds: int | None = None) -> str:
        """Resolve then sign a stored reference."""
        return self.sign(self.resolve_key(reference), ttl_seconds)

    def _sign_one(self, reference: str | None, ttl_seconds: int | None) -> SignedURLResult:
        try:
            return SignedURLResult(reference, self.signed_url(reference, ttl_seconds))
        except ObjectStorageError as err:
            logger.warning(f'Could not sign reference {reference!r}: {err}')
            return SignedURLResult(reference, error=SIGN_ERROR_MESSAGE)

    def sign_many(self, references: Iterable[str | None],
                  ttl_seconds: int | None = None) -> list[SignedURLResult]:
        """Sign references concurrently, in input order.

        Each item succeeds or fails on its own; failures carry an error marker
        and never raise.
        """
        references = list(references)
        if not references:
            return []
        workers = min(self.config.max_workers, len(references))
        with ThreadPoolExecutor(max_workers=workers) as executor:
            results = list(executor.map(lambda ref: self._sign_one(ref, ttl_seconds), references))
        failed = sum(1 for r in results if not r.ok)
        logger.debug(f'Signed {len(results) - failed}/{len(results)} references')
        return results

    def attach_urls(self, records: Iterable[Mapping[str, Any]],
                    ttl_seconds: int | None = None) -> list[dict[str, Any]]:
        """Copy media records adding ``video_url`` (and ``error`` on failure).

        The reference is taken from ``s3_key``, falling back to ``s3_url``.
        """
        records = [dict(r) for r in records]
        refs = [r.get('s3_key') or r.get('s3_url') for r in records]
        for record, result in zip(records, self.sign_many(refs, ttl_seconds)):
            record['video_url'] = result.url
            if result.error:
                record['error'] = result.error
        return records

    def upload(self, fileobj: IO[bytes], filename: str, size: int,
               content_type: str | None = None,
               metadata: Mapping[str, str] | None = None) -> str:
        """Store a video privately and return its new object key.

        The content type defaults to the one guessed from `filename`.

        Raises
            UploadRejectedError: content type not allowed or size over limit
            ObjectStorageError: the object store refused the upload
        """
        content_type = content_type or mimetypes.guess_type(filename)[0]
        if content_type not in ALLOWED_VIDEO_TYPES:
            raise UploadRejectedError('Invalid file type. Only video files are allowed.')
        if size < 0 or size > MAX_UPLOAD_BYTES:
            raise UploadRejectedError(f'File size {size} exceeds the {MAX_UPLOAD_BYTES} byte limit')

        key = make_object_key(filename)
        meta = {'originalName': filename}
        meta.update(metadata or {})
        try:
            self.client.put_object(
                bucket_name=self.bucket,
                object_name=key,
                data=fileobj,
                length=size,
                content_type=content_type,
                metadata=meta,
                )
        except MinioException as err:
            logger.error(f'Upload of {filename!r} failed: {err}')
            raise ObjectStorageError(f'Upload of {filename!r} failed: {err}') from err
        logger.info(f'Uploaded {filename!r} as {key}')
        return key

    def delete(self, reference: str | None) -> str:
        """Remove the object a stored reference points to. Returns the key."""
        key = self.resolve_key(reference)
        try:
            self.client.remove_object(bucket_name=self.bucket, object_name=key)
        except MinioException as err:
            logger.error(f'Delete of {key!r} failed: {err}')
            raise ObjectStorageError(f'Delete of {key!r} failed: {err}') from err
        logger.info(f'Deleted object {key}')
        return key
