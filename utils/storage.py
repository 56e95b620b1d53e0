import os
import shutil
import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from io import BytesIO
from typing import List, Optional

import boto3
from botocore.config import Config
from botocore.exceptions import BotoCoreError, ClientError
from itsdangerous import BadSignature, URLSafeTimedSerializer

from utils.timestamps import utc_now

logger = logging.getLogger(__name__)

READ_SALT = "storage-read"
WRITE_SALT = "storage-write"


class StorageBackendError(Exception):
    """Any failure reported by the storage provider (network, auth, missing key...)."""


class TokenExpired(StorageBackendError):
    pass


class TokenInvalid(StorageBackendError):
    pass


@dataclass(frozen=True)
class StoredObject:
    key: str
    size: int
    last_modified: datetime


@dataclass(frozen=True)
class UploadCredential:
    """A write grant scoped to exactly one key."""
    path: str
    signed_url: str
    expires_in: int
    method: str = "PUT"
    headers: dict = field(default_factory=dict)
    token: Optional[str] = None

    def to_dict(self) -> dict:
        return {
            "path": self.path,
            "signedUrl": self.signed_url,
            "token": self.token,
            "method": self.method,
            "headers": dict(self.headers),
            "expiresIn": self.expires_in,
        }


class StorageBackend:
    def put_file(self, file_storage, key, content_type=None):
        raise NotImplementedError

    def get_file(self, key):
        """Returns file content as bytes-like object (BytesIO)."""
        raise NotImplementedError

    def exists(self, key):
        raise NotImplementedError

    def delete(self, key):
        raise NotImplementedError

    def copy(self, src_key, dest_key):
        raise NotImplementedError

    def move(self, src_key, dest_key):
        self.copy(src_key, dest_key)
        self.delete(src_key)

    def list(self, prefix) -> List[StoredObject]:
        raise NotImplementedError

    def get_url(self, key, expires_seconds=3600):
        """Signed, time-limited read URL."""
        raise NotImplementedError

    def create_signed_upload(self, key, expires_seconds=900, content_type=None) -> UploadCredential:
        raise NotImplementedError

    def create_signed_urls(self, keys, expires_seconds=3600) -> List[dict]:
        return [{"path": key, "signedUrl": self.get_url(key, expires_seconds)} for key in keys]

    def ping(self):
        """Cheap reachability probe for /healthz."""
        self.exists("healthz-probe")


def _read_body(file_storage):
    if hasattr(file_storage, 'read'):
        if hasattr(file_storage, 'seek'):
            file_storage.seek(0)
        data = file_storage.read()
        if hasattr(file_storage, 'seek'):
            file_storage.seek(0)
        return data
    if isinstance(file_storage, str):
        return file_storage.encode("utf-8")
    return file_storage


class LocalStorage(StorageBackend):
    """
    Filesystem backend for development and tests. Signed URLs are
    itsdangerous timed tokens redeemed by routes/storage_files.py.
    """

    def __init__(self, base_dir, base_url, secret_key):
        self.base_dir = os.path.realpath(base_dir)
        self.base_url = base_url.rstrip("/")
        self._readers = URLSafeTimedSerializer(secret_key, salt=READ_SALT)
        self._writers = URLSafeTimedSerializer(secret_key, salt=WRITE_SALT)
        os.makedirs(self.base_dir, exist_ok=True)

    def _get_abs_path(self, key):
        normalized = (key or "").replace("\\", "/")
        if os.path.isabs(key) or normalized.startswith("/") or (len(normalized) > 1 and normalized[1] == ":"):
            raise ValueError(f"Path traversal detected: {key}")
        if ".." in normalized.split("/"):
            raise ValueError(f"Path traversal detected: {key}")
        abs_path = os.path.realpath(os.path.join(self.base_dir, normalized))
        if abs_path != self.base_dir and not abs_path.startswith(self.base_dir + os.sep):
            raise ValueError(f"Path traversal detected: {key}")
        return abs_path

    def put_file(self, file_storage, key, content_type=None):
        abs_path = self._get_abs_path(key)
        try:
            os.makedirs(os.path.dirname(abs_path), exist_ok=True)
            with open(abs_path, 'wb') as f:
                f.write(_read_body(file_storage))
        except OSError as e:
            raise StorageBackendError(f"Local write failed for {key}: {e}") from e
        return key

    def get_file(self, key):
        abs_path = self._get_abs_path(key)
        try:
            with open(abs_path, 'rb') as f:
                return BytesIO(f.read())
        except OSError as e:
            raise StorageBackendError(f"Local read failed for {key}: {e}") from e

    def exists(self, key):
        return os.path.isfile(self._get_abs_path(key))

    def delete(self, key):
        abs_path = self._get_abs_path(key)
        try:
            if os.path.exists(abs_path):
                os.remove(abs_path)
        except OSError as e:
            raise StorageBackendError(f"Local delete failed for {key}: {e}") from e

    def copy(self, src_key, dest_key):
        src_path = self._get_abs_path(src_key)
        dest_path = self._get_abs_path(dest_key)
        if not os.path.isfile(src_path):
            raise StorageBackendError(f"Source file {src_key} not found")
        try:
            os.makedirs(os.path.dirname(dest_path), exist_ok=True)
            shutil.copy2(src_path, dest_path)
        except OSError as e:
            raise StorageBackendError(f"Local copy failed for {src_key}: {e}") from e

    def move(self, src_key, dest_key):
        src_path = self._get_abs_path(src_key)
        dest_path = self._get_abs_path(dest_key)
        if not os.path.isfile(src_path):
            raise StorageBackendError(f"Source file {src_key} not found")
        try:
            os.makedirs(os.path.dirname(dest_path), exist_ok=True)
            os.replace(src_path, dest_path)
        except OSError as e:
            raise StorageBackendError(f"Local move failed for {src_key}: {e}") from e

    def list(self, prefix):
        root = self._get_abs_path(prefix.rstrip("/")) if prefix else self.base_dir
        objects = []
        for dirpath, _dirnames, filenames in os.walk(root):
            for name in sorted(filenames):
                abs_path = os.path.join(dirpath, name)
                stat = os.stat(abs_path)
                objects.append(StoredObject(
                    key=os.path.relpath(abs_path, self.base_dir).replace(os.sep, "/"),
                    size=stat.st_size,
                    last_modified=datetime.fromtimestamp(stat.st_mtime, tz=timezone.utc),
                ))
        return sorted(objects, key=lambda o: o.key)

    def get_url(self, key, expires_seconds=3600):
        self._get_abs_path(key)
        token = self._readers.dumps({"k": key, "ttl": int(expires_seconds)})
        return f"{self.base_url}/storage/{token}"

    def create_signed_upload(self, key, expires_seconds=900, content_type=None):
        self._get_abs_path(key)
        token = self._writers.dumps({"k": key, "ttl": int(expires_seconds)})
        headers = {"Content-Type": content_type} if content_type else {}
        return UploadCredential(
            path=key,
            signed_url=f"{self.base_url}/storage/upload/{token}",
            expires_in=int(expires_seconds),
            headers=headers,
            token=token,
        )

    def _redeem(self, serializer, token):
        try:
            payload, issued_at = serializer.loads(token, return_timestamp=True)
        except BadSignature as e:
            raise TokenInvalid("Invalid storage token") from e
        age = (utc_now() - issued_at).total_seconds()
        if age > payload.get("ttl", 0):
            raise TokenExpired("Storage token expired")
        return payload["k"]

    def resolve_read_token(self, token):
        return self._redeem(self._readers, token)

    def resolve_write_token(self, token):
        return self._redeem(self._writers, token)

    def ping(self):
        if not os.path.isdir(self.base_dir):
            raise StorageBackendError("Local storage directory missing")


class S3Storage(StorageBackend):
    """S3 (or S3-compatible, via endpoint_url) backend with presigned URLs."""

    def __init__(self, bucket_name, region, access_key, secret_key, prefix="", endpoint_url=None, timeout=10):
        self.s3 = boto3.client(
            's3',
            region_name=region,
            aws_access_key_id=access_key or None,
            aws_secret_access_key=secret_key or None,
            endpoint_url=endpoint_url or None,
            config=Config(
                signature_version='s3v4',
                connect_timeout=timeout,
                read_timeout=timeout,
                retries={'max_attempts': 2},
            ),
        )
        self.bucket = bucket_name
        self.prefix = prefix

    def _get_s3_key(self, key):
        if self.prefix:
            return f"{self.prefix.rstrip('/')}/{key.lstrip('/')}"
        return key

    def _strip_prefix(self, full_key):
        if self.prefix:
            head = f"{self.prefix.rstrip('/')}/"
            if full_key.startswith(head):
                return full_key[len(head):]
        return full_key

    def put_file(self, file_storage, key, content_type=None):
        full_key = self._get_s3_key(key)
        if not content_type:
            content_type = getattr(file_storage, 'content_type', None) or "application/octet-stream"
        try:
            self.s3.put_object(
                Bucket=self.bucket,
                Key=full_key,
                Body=_read_body(file_storage),
                ContentType=content_type,
                # Private by default (no ACL)
            )
        except (BotoCoreError, ClientError) as e:
            raise StorageBackendError(f"S3 put_object failed for {key}: {e}") from e
        return key

    def get_file(self, key):
        try:
            obj = self.s3.get_object(Bucket=self.bucket, Key=self._get_s3_key(key))
            return BytesIO(obj['Body'].read())
        except (BotoCoreError, ClientError) as e:
            raise StorageBackendError(f"S3 get_object failed for {key}: {e}") from e

    def exists(self, key):
        try:
            self.s3.head_object(Bucket=self.bucket, Key=self._get_s3_key(key))
            return True
        except ClientError as e:
            if e.response.get('Error', {}).get('Code') in ('404', 'NoSuchKey', 'NotFound'):
                return False
            raise StorageBackendError(f"S3 head_object failed for {key}: {e}") from e
        except BotoCoreError as e:
            raise StorageBackendError(f"S3 head_object failed for {key}: {e}") from e

    def delete(self, key):
        try:
            self.s3.delete_object(Bucket=self.bucket, Key=self._get_s3_key(key))
        except (BotoCoreError, ClientError) as e:
            raise StorageBackendError(f"S3 delete_object failed for {key}: {e}") from e

    def copy(self, src_key, dest_key):
        copy_source = {
            'Bucket': self.bucket,
            'Key': self._get_s3_key(src_key)
        }
        try:
            self.s3.copy_object(CopySource=copy_source, Bucket=self.bucket, Key=self._get_s3_key(dest_key))
        except (BotoCoreError, ClientError) as e:
            raise StorageBackendError(f"S3 copy_object failed for {src_key}: {e}") from e

    def list(self, prefix):
        objects = []
        try:
            paginator = self.s3.get_paginator('list_objects_v2')
            for page in paginator.paginate(Bucket=self.bucket, Prefix=self._get_s3_key(prefix)):
                for entry in page.get('Contents', []):
                    objects.append(StoredObject(
                        key=self._strip_prefix(entry['Key']),
                        size=entry.get('Size', 0),
                        last_modified=entry['LastModified'],
                    ))
        except (BotoCoreError, ClientError) as e:
            raise StorageBackendError(f"S3 list_objects_v2 failed for {prefix}: {e}") from e
        return objects

    def get_url(self, key, expires_seconds=3600):
        try:
            return self.s3.generate_presigned_url(
                'get_object',
                Params={'Bucket': self.bucket, 'Key': self._get_s3_key(key)},
                ExpiresIn=expires_seconds
            )
        except (BotoCoreError, ClientError) as e:
            raise StorageBackendError(f"Presigning read URL failed for {key}: {e}") from e

    def create_signed_upload(self, key, expires_seconds=900, content_type=None):
        params = {'Bucket': self.bucket, 'Key': self._get_s3_key(key)}
        headers = {}
        if content_type:
            # The signature covers Content-Type, so the client must send the same header
            params['ContentType'] = content_type
            headers['Content-Type'] = content_type
        try:
            url = self.s3.generate_presigned_url('put_object', Params=params, ExpiresIn=expires_seconds)
        except (BotoCoreError, ClientError) as e:
            raise StorageBackendError(f"Presigning upload URL failed for {key}: {e}") from e
        return UploadCredential(path=key, signed_url=url, expires_in=int(expires_seconds), headers=headers)

    def ping(self):
        try:
            self.s3.head_bucket(Bucket=self.bucket)
        except (BotoCoreError, ClientError) as e:
            raise StorageBackendError(f"S3 bucket unreachable: {e}") from e


def get_storage(settings):
    """Factory to return the configured storage backend."""
    if settings.storage_backend == 's3':
        if not settings.aws_access_key_id or not settings.aws_secret_access_key:
            # IAM roles can supply credentials; only warn
            logger.warning("[Storage] S3 backend selected but AWS credentials missing from environment.")

        return S3Storage(
            settings.s3_bucket,
            settings.aws_region,
            settings.aws_access_key_id,
            settings.aws_secret_access_key,
            prefix=settings.s3_prefix,
            endpoint_url=settings.s3_endpoint_url,
            timeout=settings.storage_timeout_seconds,
        )
    return LocalStorage(os.path.join(settings.instance_dir, "storage"), settings.base_url, settings.secret_key)
