# storage.py
# Object references (scheme://bucket/key) and the object store gateway.
#
# Two backends are available:
#   file://bucket/key -> <STORAGE_DIR>/bucket/key on a shared volume
#   s3://bucket/key   -> S3 (or an S3 compatible endpoint such as MinIO)
import logging
import os
import tempfile
from collections import namedtuple

import boto3
from botocore.client import Config
from botocore.exceptions import BotoCoreError, ClientError

from errors import BadRequestError, StoreFetchError, StoreWriteError

logger = logging.getLogger(__name__)

SCHEME_SEPARATOR = '://'
SUPPORTED_SCHEMES = ('file', 's3')


class ObjectRef(namedtuple('ObjectRef', ['scheme', 'bucket', 'key'])):
    __slots__ = ()

    def __str__(self):
        return format_ref(self.scheme, self.bucket, self.key)

    def with_key(self, key):
        return ObjectRef(self.scheme, self.bucket, key)


def format_ref(scheme, bucket, key):
    return f"{scheme}{SCHEME_SEPARATOR}{bucket}/{key}"


def parse_ref(uri):
    """
    Parse 'scheme://bucket/key' into an ObjectRef.
    The key is everything after the first '/' following the bucket and may
    itself contain '/'. Raises BadRequestError for anything else.
    """
    if not isinstance(uri, str) or not uri:
        raise BadRequestError(f"object reference must be a non-empty string, got {uri!r}")

    scheme, sep, rest = uri.partition(SCHEME_SEPARATOR)
    if not sep or scheme not in SUPPORTED_SCHEMES:
        raise BadRequestError(
            f"invalid object reference {uri!r}: expected one of "
            f"{', '.join(s + SCHEME_SEPARATOR for s in SUPPORTED_SCHEMES)} prefix")

    bucket, sep, key = rest.partition('/')
    if not sep or not bucket or not key:
        raise BadRequestError(f"invalid object reference {uri!r}: expected {scheme}://bucket/key")
    if SCHEME_SEPARATOR in key:
        raise BadRequestError(f"invalid object reference {uri!r}: key contains a scheme prefix")

    return ObjectRef(scheme, bucket, key)


class ObjectStore:
    """get(bucket, key) -> bytes / put(bucket, key, data)"""

    def get(self, bucket, key):
        raise NotImplementedError

    def put(self, bucket, key, data):
        raise NotImplementedError

    def fetch(self, ref):
        return self.get(ref.bucket, ref.key)

    def store(self, ref, data):
        self.put(ref.bucket, ref.key, data)
        return ref


class FileSystemStore(ObjectStore):
    """Buckets are sub directories of `root`; keys are relative paths inside them."""

    def __init__(self, root):
        self.root = root

    def _path(self, bucket, key):
        parts = [bucket] + key.split('/')
        if any(part in ('', '.', '..') for part in parts):
            raise BadRequestError(f"invalid object path: bucket={bucket!r} key={key!r}")
        return os.path.join(self.root, *parts)

    def get(self, bucket, key):
        path = self._path(bucket, key)
        try:
            with open(path, 'rb') as f:
                return f.read()
        except OSError as e:
            raise StoreFetchError(f"failed to get object file://{bucket}/{key}: {e}")

    def put(self, bucket, key, data):
        path = self._path(bucket, key)
        try:
            os.makedirs(os.path.dirname(path), exist_ok=True)
            # write then rename so a reader never sees a partial object
            fd, tmp_path = tempfile.mkstemp(dir=os.path.dirname(path), prefix='.tmp-')
            try:
                with os.fdopen(fd, 'wb') as f:
                    f.write(data)
                os.replace(tmp_path, path)
            except BaseException:
                if os.path.exists(tmp_path):
                    os.remove(tmp_path)
                raise
        except OSError as e:
            raise StoreWriteError(f"failed to put object file://{bucket}/{key}: {e}")


class S3Store(ObjectStore):

    def __init__(self, client=None, endpoint_url=None, region_name=None):
        if client is None:
            client = boto3.client(
                's3',
                endpoint_url=endpoint_url,
                region_name=region_name,
                config=Config(signature_version='s3v4')
            )
        self.client = client

    def get(self, bucket, key):
        try:
            response = self.client.get_object(Bucket=bucket, Key=key)
            return response['Body'].read()
        except (ClientError, BotoCoreError) as e:
            raise StoreFetchError(f"failed to get object s3://{bucket}/{key}: {e}")

    def put(self, bucket, key, data):
        try:
            self.client.put_object(Bucket=bucket, Key=key, Body=data)
        except (ClientError, BotoCoreError) as e:
            raise StoreWriteError(f"failed to put object s3://{bucket}/{key}: {e}")


def open_store(scheme, config):
    if scheme == 'file':
        return FileSystemStore(config.storage_dir)
    if scheme == 's3':
        return S3Store(endpoint_url=config.s3_endpoint_url, region_name=config.s3_region)
    raise BadRequestError(f"unsupported store scheme: {scheme!r}")
