"""
Upload Coordinator.

Two-phase file transfer: the server mints a write credential scoped to one
storage path, the client PUTs the bytes straight to storage, and the path is
then recorded against a line item as a FileRef. At submission the pending
refs are finalized into the order namespace.

Two policies share one interface so the submission workflow never knows
which is active:

- TempNamespaceUploads (default): uploads land under tmp/<draftId>/ and are
  moved to orders/<orderNo>/files/ at submission. Abandoned drafts only ever
  leave garbage under tmp/, which cleanup-drafts removes.
- DirectOrderUploads: uploads land under orders/<orderNo>/ using an order
  number the client already holds; finalize only checks the files exist.
"""
import logging
import mimetypes
import posixpath
from abc import ABC, abstractmethod
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, replace
from typing import List, Optional

from errors import SigningError, StorageFinalizeError, UploadFailed, ValidationError
from models import FileRef
from utils.filenames import (
    draft_prefix, draft_upload_path, finalized_path, is_safe_segment,
    order_direct_upload_path, order_prefix,
)
from utils.redaction import redact_signed_url
from utils.storage import StorageBackendError, UploadCredential

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class UploadSlot:
    storage_path: str
    credential: UploadCredential

    def to_dict(self) -> dict:
        return {
            "storagePath": self.storage_path,
            "uploadCredential": self.credential.to_dict(),
        }


def guess_mime_type(filename: str) -> str:
    return mimetypes.guess_type(filename or "")[0] or "application/octet-stream"


class UploadCoordinator(ABC):
    """Base coordinator. Subclasses decide the namespace and the finalize step."""

    policy = None

    def __init__(self, storage, upload_url_ttl: int = 900, max_upload_mb: Optional[int] = None, concurrency: int = 4):
        self.storage = storage
        self.upload_url_ttl = upload_url_ttl
        self.max_upload_bytes = max_upload_mb * 1024 * 1024 if max_upload_mb else None
        self.concurrency = max(1, concurrency)

    # --- Namespace ---

    @abstractmethod
    def owner_path(self, owner_id: str, filename: str, item_id: Optional[str] = None) -> str:
        """Storage path for a new upload owned by owner_id."""

    @abstractmethod
    def owns(self, owner_id: str, path: str) -> bool:
        """True if path lies inside owner_id's upload namespace."""

    @abstractmethod
    def finalize(self, order_no: str, refs: List[FileRef], draft_id: Optional[str] = None) -> List[FileRef]:
        """Resolve pending refs to durable per-order paths, in input order."""

    def _check_owner(self, owner_id: str, item_id: Optional[str]) -> None:
        if not is_safe_segment(owner_id):
            raise ValidationError("A draftId or orderNo is required.", code="missing_owner")
        if item_id is not None and not is_safe_segment(item_id):
            raise ValidationError(f"Invalid itemId: {item_id!r}", code="invalid_item_id")

    def _check_size(self, size_bytes: Optional[int], filename: str) -> None:
        if self.max_upload_bytes and size_bytes is not None and size_bytes > self.max_upload_bytes:
            limit_mb = self.max_upload_bytes // (1024 * 1024)
            raise ValidationError(f"{filename} exceeds the {limit_mb} MB upload limit.", code="file_too_large")

    # --- Phase 1: slot ---

    def request_upload_slot(
        self,
        owner_id: str,
        filename: str,
        item_id: Optional[str] = None,
        size_bytes: Optional[int] = None,
        content_type: Optional[str] = None,
    ) -> UploadSlot:
        if not filename:
            raise ValidationError("filename is required.", code="missing_filename")
        self._check_owner(owner_id, item_id)
        self._check_size(size_bytes, filename)

        path = self.owner_path(owner_id, filename, item_id)
        try:
            credential = self.storage.create_signed_upload(path, self.upload_url_ttl, content_type=content_type)
        except StorageBackendError as e:
            logger.error(f"[Uploads] Could not sign upload for {path}: {e}")
            raise SigningError("Could not issue an upload credential. Please retry.") from e

        logger.info(f"[Uploads] Slot issued path={path} url={redact_signed_url(credential.signed_url)}")
        return UploadSlot(storage_path=path, credential=credential)

    # --- Phase 3: record ---

    def record_upload(
        self,
        owner_id: str,
        storage_path: str,
        original_name: Optional[str] = None,
        item_id: Optional[str] = None,
        size_bytes: Optional[int] = None,
        mime_type: Optional[str] = None,
    ) -> FileRef:
        """
        Turn a client-reported path into a FileRef. The path must sit inside
        the owner's namespace; a client cannot claim another order's files.
        """
        self._check_owner(owner_id, item_id)
        if not storage_path or not self.owns(owner_id, storage_path) or ".." in storage_path.split("/"):
            raise ValidationError(f"File path {storage_path!r} does not belong to this order.", code="foreign_path")
        name = original_name or posixpath.basename(storage_path)
        return FileRef(
            item_id=item_id,
            original_name=name,
            storage_path=storage_path,
            size_bytes=size_bytes,
            mime_type=mime_type or guess_mime_type(name),
        )

    def upload_bytes(
        self,
        owner_id: str,
        filename: str,
        data,
        item_id: Optional[str] = None,
        content_type: Optional[str] = None,
    ) -> FileRef:
        """Server-side upload (legacy multipart clients post the bytes to us)."""
        self._check_owner(owner_id, item_id)
        body = data.read() if hasattr(data, "read") else data
        self._check_size(len(body), filename)
        path = self.owner_path(owner_id, filename, item_id)
        mime_type = content_type or guess_mime_type(filename)
        try:
            self.storage.put_file(body, path, content_type=mime_type)
        except StorageBackendError as e:
            logger.error(f"[Uploads] Server-side upload failed for {path}: {e}")
            raise UploadFailed(f"Upload of {filename} failed. Please retry.") from e
        return FileRef(
            item_id=item_id,
            original_name=filename,
            storage_path=path,
            size_bytes=len(body),
            mime_type=mime_type,
        )

    def _fan_out(self, fn, refs: List[FileRef]) -> List[FileRef]:
        if not refs:
            return []
        if self.concurrency == 1 or len(refs) == 1:
            return [fn(ref) for ref in refs]
        with ThreadPoolExecutor(max_workers=min(self.concurrency, len(refs))) as pool:
            # map() re-raises the first failure when its result is reached
            return list(pool.map(fn, refs))


class TempNamespaceUploads(UploadCoordinator):
    policy = "temp"

    def owner_path(self, owner_id, filename, item_id=None):
        return draft_upload_path(owner_id, filename, item_id=item_id)

    def owns(self, owner_id, path):
        return path.startswith(draft_prefix(owner_id))

    def finalize(self, order_no, refs, draft_id=None):
        """
        Move every tmp/ file into orders/<orderNo>/files/. Safe to repeat: a
        source that is gone but whose destination exists counts as moved.
        """
        done = order_prefix(order_no)
        for ref in refs:
            if ref.storage_path.startswith(done):
                continue
            if draft_id and not self.owns(draft_id, ref.storage_path):
                raise ValidationError(
                    f"File path {ref.storage_path!r} does not belong to this order.", code="foreign_path"
                )

        def move_one(ref: FileRef) -> FileRef:
            if ref.storage_path.startswith(done):
                return ref
            dest = finalized_path(order_no, ref.storage_path)
            try:
                if self.storage.exists(ref.storage_path):
                    self.storage.move(ref.storage_path, dest)
                elif not self.storage.exists(dest):
                    raise UploadFailed(f"File {ref.original_name} never reached storage. Please upload it again.")
            except StorageBackendError as e:
                logger.error(f"[Uploads] Finalize move failed {ref.storage_path} -> {dest}: {e}")
                raise StorageFinalizeError("Could not move uploaded files into the order.") from e
            return replace(ref, storage_path=dest)

        # A path referenced twice is moved once
        unique = list({ref.storage_path: ref for ref in refs}.values())
        dest_by_src = {
            src.storage_path: moved.storage_path for src, moved in zip(unique, self._fan_out(move_one, unique))
        }
        finalized = [replace(ref, storage_path=dest_by_src[ref.storage_path]) for ref in refs]
        logger.info(f"[Uploads] Finalized {len(finalized)} file(s) for order {order_no}")
        return finalized


class DirectOrderUploads(UploadCoordinator):
    policy = "direct"

    def owner_path(self, owner_id, filename, item_id=None):
        return order_direct_upload_path(owner_id, filename, item_id=item_id)

    def owns(self, owner_id, path):
        return path.startswith(order_prefix(owner_id))

    def finalize(self, order_no, refs, draft_id=None):
        """Files already live in the order namespace; only confirm they arrived."""
        for ref in refs:
            if not self.owns(order_no, ref.storage_path):
                raise ValidationError(
                    f"File path {ref.storage_path!r} does not belong to order {order_no}.", code="foreign_path"
                )

        def check_one(ref: FileRef) -> FileRef:
            try:
                present = self.storage.exists(ref.storage_path)
            except StorageBackendError as e:
                raise StorageFinalizeError("Could not verify uploaded files.") from e
            if not present:
                raise UploadFailed(f"File {ref.original_name} never reached storage. Please upload it again.")
            return ref

        return self._fan_out(check_one, refs)


def build_upload_coordinator(settings, storage) -> UploadCoordinator:
    cls = DirectOrderUploads if settings.upload_policy == "direct" else TempNamespaceUploads
    return cls(
        storage,
        upload_url_ttl=settings.upload_url_ttl,
        max_upload_mb=settings.max_upload_mb,
        concurrency=settings.finalize_concurrency,
    )
