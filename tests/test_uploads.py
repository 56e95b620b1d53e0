"""
Upload coordinator tests: slot issuance, recording client uploads and
finalizing files into the order namespace under both upload policies.
"""
from io import BytesIO

import pytest

from errors import SigningError, StorageFinalizeError, UploadFailed, ValidationError
from services.uploads import (
    DirectOrderUploads, TempNamespaceUploads, build_upload_coordinator, guess_mime_type,
)
from tests.factories import MemoryStorage, make_file_ref, make_settings

ORDER_NO = "LIV-20260115-AB12"


@pytest.fixture
def temp_uploads(storage):
    return TempNamespaceUploads(storage, upload_url_ttl=600, max_upload_mb=5, concurrency=2)


@pytest.fixture
def direct_uploads(storage):
    return DirectOrderUploads(storage, upload_url_ttl=600, max_upload_mb=5)


class TestUploadSlot:

    def test_slot_lives_in_draft_namespace(self, temp_uploads, storage):
        slot = temp_uploads.request_upload_slot("d1", "My Art.PDF", item_id="item-1", content_type="application/pdf")

        assert slot.storage_path.startswith("tmp/d1/item-1/")
        assert slot.storage_path.endswith("-my-art.pdf")
        assert slot.credential.path == slot.storage_path
        assert slot.credential.expires_in == 600
        assert storage.calls == [("create_signed_upload", slot.storage_path)]

    def test_slot_to_dict(self, temp_uploads):
        data = temp_uploads.request_upload_slot("d1", "front.pdf").to_dict()
        assert data["storagePath"].startswith("tmp/d1/")
        assert data["uploadCredential"]["signedUrl"].startswith("https://storage.test/upload/")
        assert data["uploadCredential"]["method"] == "PUT"
        assert data["uploadCredential"]["expiresIn"] == 600

    def test_same_name_for_two_items_does_not_collide(self, temp_uploads):
        a = temp_uploads.request_upload_slot("d1", "front.pdf", item_id="a")
        b = temp_uploads.request_upload_slot("d1", "front.pdf", item_id="b")
        assert a.storage_path != b.storage_path

    def test_filename_required(self, temp_uploads):
        with pytest.raises(ValidationError) as exc:
            temp_uploads.request_upload_slot("d1", "")
        assert exc.value.code == "missing_filename"

    @pytest.mark.parametrize("owner", ["", None, "../etc", "a/b"])
    def test_owner_must_be_safe_segment(self, temp_uploads, owner):
        with pytest.raises(ValidationError) as exc:
            temp_uploads.request_upload_slot(owner, "x.pdf")
        assert exc.value.code == "missing_owner"

    def test_item_id_must_be_safe_segment(self, temp_uploads):
        with pytest.raises(ValidationError) as exc:
            temp_uploads.request_upload_slot("d1", "x.pdf", item_id="../x")
        assert exc.value.code == "invalid_item_id"

    def test_declared_size_over_limit(self, temp_uploads, storage):
        with pytest.raises(ValidationError) as exc:
            temp_uploads.request_upload_slot("d1", "huge.tif", size_bytes=6 * 1024 * 1024)
        assert exc.value.code == "file_too_large"
        assert storage.calls == []

    def test_backend_failure_becomes_signing_error(self):
        uploads = TempNamespaceUploads(MemoryStorage(fail_on={"create_signed_upload"}))
        with pytest.raises(SigningError):
            uploads.request_upload_slot("d1", "x.pdf")


class TestRecordUpload:

    def test_record_builds_file_ref(self, temp_uploads):
        ref = temp_uploads.record_upload("d1", "tmp/d1/item-1/1700000000000-art.pdf", "Art.pdf", item_id="item-1",
                                         size_bytes=2048)
        assert ref.item_id == "item-1"
        assert ref.original_name == "Art.pdf"
        assert ref.size_bytes == 2048
        assert ref.mime_type == "application/pdf"

    def test_name_defaults_to_basename(self, temp_uploads):
        ref = temp_uploads.record_upload("d1", "tmp/d1/1700000000000-logo.png")
        assert ref.original_name == "1700000000000-logo.png"
        assert ref.mime_type == "image/png"

    @pytest.mark.parametrize("path", [
        "tmp/other/1-art.pdf",
        "orders/LIV-20260115-AB12/files/1-art.pdf",
        "tmp/d1/../other/1-art.pdf",
        "",
    ])
    def test_foreign_paths_rejected(self, temp_uploads, path):
        with pytest.raises(ValidationError) as exc:
            temp_uploads.record_upload("d1", path)
        assert exc.value.code == "foreign_path"


class TestServerSideUpload:

    def test_upload_bytes_writes_to_draft(self, temp_uploads, storage):
        ref = temp_uploads.upload_bytes("d1", "art.pdf", BytesIO(b"%PDF-1.4"), item_id="item-1")
        assert ref.storage_path.startswith("tmp/d1/item-1/")
        assert ref.size_bytes == 8
        assert storage.read_text(ref.storage_path) == "%PDF-1.4"

    def test_upload_bytes_size_limit(self, temp_uploads, storage):
        with pytest.raises(ValidationError):
            temp_uploads.upload_bytes("d1", "big.pdf", b"x" * (5 * 1024 * 1024 + 1))
        assert storage.writes() == []

    def test_upload_bytes_failure(self):
        uploads = TempNamespaceUploads(MemoryStorage(fail_on={"put_file"}))
        with pytest.raises(UploadFailed):
            uploads.upload_bytes("d1", "art.pdf", b"data")


class TestTempFinalize:

    def test_moves_into_order_files(self, temp_uploads, storage):
        ref = make_file_ref("d1", "art.pdf", item_id="item-1")
        storage.seed(ref.storage_path, b"art")

        [moved] = temp_uploads.finalize(ORDER_NO, [ref], draft_id="d1")

        assert moved.storage_path == f"orders/{ORDER_NO}/files/item-1/1700000000000-art.pdf"
        assert moved.original_name == ref.original_name
        assert ref.storage_path not in storage.objects
        assert storage.read_text(moved.storage_path) == "art"

    def test_keeps_input_order(self, temp_uploads, storage):
        refs = [make_file_ref("d1", f"f{i}.pdf", stamp=1700000000000 + i) for i in range(5)]
        for ref in refs:
            storage.seed(ref.storage_path)

        moved = temp_uploads.finalize(ORDER_NO, refs, draft_id="d1")

        assert [m.original_name for m in moved] == [r.original_name for r in refs]

    def test_repeat_after_partial_move_resumes(self, temp_uploads, storage):
        first = make_file_ref("d1", "a.pdf")
        second = make_file_ref("d1", "b.pdf")
        storage.seed(second.storage_path)
        # `first` was already moved by an earlier attempt
        storage.seed(f"orders/{ORDER_NO}/files/1700000000000-a.pdf")

        moved = temp_uploads.finalize(ORDER_NO, [first, second], draft_id="d1")

        assert [m.storage_path for m in moved] == [
            f"orders/{ORDER_NO}/files/1700000000000-a.pdf",
            f"orders/{ORDER_NO}/files/1700000000000-b.pdf",
        ]

    def test_already_finalized_refs_pass_through(self, temp_uploads, storage):
        ref = make_file_ref("d1", "a.pdf")
        storage.seed(ref.storage_path)
        moved = temp_uploads.finalize(ORDER_NO, [ref], draft_id="d1")
        storage.calls.clear()

        assert temp_uploads.finalize(ORDER_NO, moved, draft_id="d1") == moved
        assert storage.calls == []

    def test_missing_file(self, temp_uploads):
        with pytest.raises(UploadFailed):
            temp_uploads.finalize(ORDER_NO, [make_file_ref("d1", "ghost.pdf")], draft_id="d1")

    def test_other_draft_rejected_before_any_move(self, temp_uploads, storage):
        mine = make_file_ref("d1", "a.pdf")
        theirs = make_file_ref("d2", "b.pdf")
        storage.seed(mine.storage_path)
        storage.seed(theirs.storage_path)

        with pytest.raises(ValidationError):
            temp_uploads.finalize(ORDER_NO, [mine, theirs], draft_id="d1")
        assert storage.writes() == []

    def test_backend_failure(self):
        storage = MemoryStorage(fail_on={"move"})
        ref = make_file_ref("d1", "a.pdf")
        storage.seed(ref.storage_path)
        uploads = TempNamespaceUploads(storage)

        with pytest.raises(StorageFinalizeError):
            uploads.finalize(ORDER_NO, [ref], draft_id="d1")

    def test_no_files(self, temp_uploads, storage):
        assert temp_uploads.finalize(ORDER_NO, [], draft_id="d1") == []
        assert storage.calls == []

    def test_same_path_twice_is_moved_once(self, temp_uploads, storage):
        ref = make_file_ref("d1", "a.pdf", item_id="item-1")
        storage.seed(ref.storage_path)

        moved = temp_uploads.finalize(ORDER_NO, [ref, ref, make_file_ref("d1", "a.pdf", item_id="item-1")],
                                      draft_id="d1")

        expected = f"orders/{ORDER_NO}/files/item-1/1700000000000-a.pdf"
        assert [m.storage_path for m in moved] == [expected] * 3
        assert [c for c in storage.calls if c[0] == "move"] == [("move", ref.storage_path)]
        assert expected in storage.objects


class TestDirectPolicy:

    def test_slot_in_order_namespace(self, direct_uploads):
        slot = direct_uploads.request_upload_slot(ORDER_NO, "Front.pdf", item_id="item-1")
        assert slot.storage_path == f"orders/{ORDER_NO}/item-1/front.pdf"

    def test_loose_files_folder(self, direct_uploads):
        slot = direct_uploads.request_upload_slot(ORDER_NO, "Front.pdf")
        assert slot.storage_path == f"orders/{ORDER_NO}/files/front.pdf"

    def test_finalize_only_checks_presence(self, direct_uploads, storage):
        ref = direct_uploads.record_upload(ORDER_NO, f"orders/{ORDER_NO}/item-1/front.pdf", item_id="item-1")
        storage.seed(ref.storage_path)

        assert direct_uploads.finalize(ORDER_NO, [ref]) == [ref]
        assert storage.writes() == []

    def test_finalize_missing_file(self, direct_uploads):
        ref = direct_uploads.record_upload(ORDER_NO, f"orders/{ORDER_NO}/files/front.pdf")
        with pytest.raises(UploadFailed):
            direct_uploads.finalize(ORDER_NO, [ref])

    def test_finalize_other_order_rejected(self, direct_uploads, storage):
        ref = direct_uploads.record_upload("LIV-20260115-ZZ99", "orders/LIV-20260115-ZZ99/files/front.pdf")
        storage.seed(ref.storage_path)
        with pytest.raises(ValidationError):
            direct_uploads.finalize(ORDER_NO, [ref])


class TestFactory:

    def test_policy_follows_settings(self, storage):
        assert build_upload_coordinator(make_settings(), storage).policy == "temp"
        assert build_upload_coordinator(make_settings(upload_policy="direct"), storage).policy == "direct"

    def test_mime_type_fallback(self):
        assert guess_mime_type("artwork.unknownext") == "application/octet-stream"
        assert guess_mime_type("") == "application/octet-stream"
