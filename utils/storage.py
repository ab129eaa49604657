"""
Object storage backends for print files.

Both backends speak the same small interface so the Artifact Store never
knows where bytes end up:

    put(key, data, content_type, cache_control, metadata) -> public URL
    public_url(key) / get_file(key) / exists(key) / delete(key)

LocalStorage is for development and tests; S3Storage is required in
production because the partner must be able to download the file.
"""
import os
import logging
from io import BytesIO

import boto3
from botocore.exceptions import ClientError

logger = logging.getLogger(__name__)

# head_object reports a missing key with any of these codes
S3_MISSING_CODES = frozenset({"404", "NoSuchKey", "NotFound"})


class StorageBackend:
    def put(self, key, data, content_type=None, cache_control=None, metadata=None):
        raise NotImplementedError

    def public_url(self, key):
        raise NotImplementedError

    def get_file(self, key):
        """Readable BytesIO of the stored object."""
        raise NotImplementedError

    def exists(self, key):
        raise NotImplementedError

    def delete(self, key):
        raise NotImplementedError


class LocalStorage(StorageBackend):
    """Files under base_dir. Content type, cache headers and metadata are dropped."""

    def __init__(self, base_dir, base_url):
        os.makedirs(base_dir, exist_ok=True)
        self.base_dir = os.path.realpath(base_dir)
        self.base_url = base_url.rstrip("/")

    def _get_abs_path(self, key):
        """Resolve key under base_dir; ValueError if it escapes (.., absolute paths, symlinks)."""
        candidate = os.path.realpath(os.path.join(self.base_dir, key))
        if os.path.commonpath([self.base_dir, candidate]) != self.base_dir:
            raise ValueError(f"Path traversal detected in storage key: {key!r}")
        return candidate

    def put(self, key, data, content_type=None, cache_control=None, metadata=None):
        target = self._get_abs_path(key)
        os.makedirs(os.path.dirname(target), exist_ok=True)

        # Readers see either the old file or the complete new one
        partial = f"{target}.tmp-{os.getpid()}"
        with open(partial, "wb") as fh:
            fh.write(data)
        os.replace(partial, target)
        return self.public_url(key)

    def public_url(self, key):
        return "/".join((self.base_url, key.replace(os.sep, "/")))

    def get_file(self, key):
        with open(self._get_abs_path(key), "rb") as fh:
            return BytesIO(fh.read())

    def exists(self, key):
        return os.path.isfile(self._get_abs_path(key))

    def delete(self, key):
        try:
            os.remove(self._get_abs_path(key))
        except FileNotFoundError:
            pass


class S3Storage(StorageBackend):
    """
    Bucket-backed storage.

    Objects are addressed as `<prefix>/<key>`. Public URLs use
    `public_base_url` (a CDN or custom domain) when given, otherwise the
    bucket's virtual-hosted S3 URL.
    """

    def __init__(self, bucket_name, region, access_key=None, secret_key=None, prefix="",
                 public_base_url=None, client=None):
        if client is None:
            client = boto3.client(
                "s3",
                region_name=region,
                aws_access_key_id=access_key,
                aws_secret_access_key=secret_key,
            )
        self.s3 = client
        self.bucket = bucket_name
        self.region = region
        self.prefix = (prefix or "").strip("/")
        self.public_base_url = (public_base_url or "").rstrip("/")

    def _object_key(self, key):
        key = key.lstrip("/")
        return f"{self.prefix}/{key}" if self.prefix else key

    def put(self, key, data, content_type=None, cache_control=None, metadata=None):
        request = {
            "Bucket": self.bucket,
            "Key": self._object_key(key),
            "Body": data,
            "ContentType": content_type or "application/octet-stream",
        }
        if cache_control:
            request["CacheControl"] = cache_control
        if metadata:
            # User metadata must be str -> str
            request["Metadata"] = {name: str(value) for name, value in metadata.items()}

        self.s3.put_object(**request)
        return self.public_url(key)

    def public_url(self, key):
        base = self.public_base_url or f"https://{self.bucket}.s3.{self.region}.amazonaws.com"
        return f"{base}/{self._object_key(key)}"

    def get_file(self, key):
        response = self.s3.get_object(Bucket=self.bucket, Key=self._object_key(key))
        return BytesIO(response["Body"].read())

    def exists(self, key):
        try:
            self.s3.head_object(Bucket=self.bucket, Key=self._object_key(key))
        except ClientError as e:
            if str(e.response.get("Error", {}).get("Code", "")) in S3_MISSING_CODES:
                return False
            raise
        return True

    def delete(self, key):
        self.s3.delete_object(Bucket=self.bucket, Key=self._object_key(key))


def get_storage():
    """Build the backend selected by STORAGE_BACKEND."""
    from config import (
        STORAGE_BACKEND, S3_BUCKET, S3_PREFIX, AWS_REGION, ARTIFACTS_DIR, BASE_URL, ASSET_BASE_URL,
    )

    if STORAGE_BACKEND != "s3":
        # Served by routes/storage_files.py outside production
        return LocalStorage(ARTIFACTS_DIR, ASSET_BASE_URL or f"{BASE_URL}/storage")

    access_key = os.environ.get("AWS_ACCESS_KEY_ID")
    secret_key = os.environ.get("AWS_SECRET_ACCESS_KEY")
    if not (access_key and secret_key):
        # boto3 falls back to its default chain (instance role, shared config)
        logger.warning("[Storage] AWS_ACCESS_KEY_ID / AWS_SECRET_ACCESS_KEY not set; using the default credential chain")

    return S3Storage(
        S3_BUCKET, AWS_REGION, access_key, secret_key,
        prefix=S3_PREFIX, public_base_url=ASSET_BASE_URL,
    )
