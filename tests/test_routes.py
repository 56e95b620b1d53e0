"""
HTTP API Tests

Routes exercised through the Flask test client. Most tests run against the
in-memory storage from conftest; TestLocalStorageFlow builds the app on a
real LocalStorage directory to cover the signed /storage/ endpoints.
"""
import io
import json
from datetime import datetime, timedelta, timezone
from unittest.mock import patch
from urllib.parse import urlparse

import pytest

from app import create_app
from services.container import build_services
from tests.factories import RecordingEmailSender, make_file_ref, make_settings

ORDER_NO = "LIV-20260115-AB12"
CUSTOMER = {"name": "Ana Buyer", "email": "ana@example.com"}
BANNER = {
    "id": "item-1", "productCode": "banner", "unit": "ft", "width": 6, "height": 3, "quantity": 12,
    "addOns": {"hems": True, "grommets": True},
}


class TestCatalogRoutes:

    def test_products(self, client):
        response = client.get('/api/products')
        assert response.status_code == 200
        data = response.get_json()
        assert data["currency"] == "USD"
        assert [p["code"] for p in data["products"]][:2] == ["banner", "adhesive"]

    def test_quote(self, client):
        response = client.post('/api/quote', json={"items": [BANNER]})
        assert response.status_code == 200
        data = response.get_json()
        assert data["totals"] == {"subtotal": 1338.0, "discount": 66.9, "total": 1271.1}
        assert data["items"][0]["priceBreakdown"]["grommetCount"] == 10

    @pytest.mark.parametrize("body,code", [
        ({"items": [dict(BANNER, productCode="pvc6")]}, "addon_not_allowed"),
        ({"items": [dict(BANNER, productCode="neon")]}, "unknown_product"),
        ({"items": [dict(BANNER, quantity=0)]}, "invalid_quantity"),
        ({"items": [dict(BANNER, width=-2)]}, "invalid_dimension"),
        ({"items": [dict(BANNER, addOns={"polePockets": True})]}, "invalid_add_ons"),
        ({"things": []}, "invalid_body"),
    ])
    def test_quote_errors(self, client, body, code):
        response = client.post('/api/quote', json=body)
        assert response.status_code == 400
        assert response.get_json()["error"] == code


class TestSignUpload:

    def test_slot(self, client):
        response = client.post('/api/sign-upload', json={"draftId": "d1", "filename": "Front.pdf", "itemId": "item-1"})

        assert response.status_code == 200
        data = response.get_json()
        assert data["storagePath"].startswith("tmp/d1/item-1/")
        assert data["path"] == data["storagePath"]
        assert data["signedUrl"] == data["uploadCredential"]["signedUrl"]

    def test_legacy_owner_key(self, client):
        response = client.post('/api/sign-upload', json={"orderNoOrDraftId": "d1", "filename": "a.pdf"})
        assert response.status_code == 200

    def test_missing_fields(self, client):
        response = client.post('/api/sign-upload', json={"filename": "a.pdf"})
        assert response.status_code == 400
        assert response.get_json()["error"] == "missing_fields"

    def test_too_large(self, client):
        response = client.post('/api/sign-upload', json={"draftId": "d1", "filename": "a.tif", "size": 10 ** 10})
        assert response.status_code == 400
        assert response.get_json()["error"] == "file_too_large"

    def test_signing_failure(self, client, storage):
        storage.fail_on.add("create_signed_upload")
        response = client.post('/api/sign-upload', json={"draftId": "d1", "filename": "a.pdf"})
        assert response.status_code == 500
        assert response.get_json()["error"] == "signing_error"

    def test_direct_policy_needs_order_no(self, storage):
        services = build_services(make_settings(upload_policy="direct"), storage=storage,
                                  email_sender=RecordingEmailSender())
        client = create_app(test_config={'TESTING': True, 'RATELIMIT_ENABLED': False}, services=services).test_client()

        assert client.post('/api/sign-upload', json={"draftId": "d1", "filename": "a.pdf"}).status_code == 400

        response = client.post('/api/sign-upload', json={"orderNo": ORDER_NO, "filename": "a.pdf"})
        assert response.status_code == 200
        assert response.get_json()["storagePath"] == f"orders/{ORDER_NO}/files/a.pdf"


class TestCreateOrder:

    def test_json_order(self, client, storage, email_sender):
        ref = make_file_ref("d1", "art.pdf", item_id="item-1")
        storage.seed(ref.storage_path)
        body = {
            "draftId": "d1",
            "contact": CUSTOMER,
            "items": [BANNER],
            "uploadedFileReferences": [{"itemId": "item-1", "path": ref.storage_path, "name": "art.pdf"}],
        }

        response = client.post('/api/orders', json=body)

        assert response.status_code == 200
        data = response.get_json()
        assert data["ok"] is True
        assert data["uploaded"] == 1
        assert data["files"][0]["path"].startswith(f"orders/{data['orderNo']}/files/item-1/")
        assert data["notification"] == "sent"
        assert len(email_sender.messages) == 1

    def test_missing_email(self, client, storage):
        body = {"contact": {"name": "Ana"}, "items": [BANNER]}
        response = client.post('/api/orders', json=body)

        assert response.status_code == 400
        assert response.get_json() == {"error": "missing_contact_email", "detail": "Contact email is required."}
        assert storage.writes() == []

    def test_legacy_meta_keeps_order_no(self, client):
        body = {"meta": {"orderNo": ORDER_NO, "customer": CUSTOMER, "items": [BANNER]}, "uploadedPaths": []}
        response = client.post('/api/orders', json=body)
        assert response.status_code == 200
        assert response.get_json()["orderNo"] == ORDER_NO

    def test_retry_with_order_no_resends_nothing(self, client, email_sender):
        body = {"meta": {"orderNo": ORDER_NO, "customer": CUSTOMER, "items": [BANNER]}}
        client.post('/api/orders', json=body)
        response = client.post('/api/orders', json=body)

        assert response.status_code == 200
        assert len(email_sender.messages) == 1

    def test_order_no_of_another_buyer_is_refused(self, client, storage, email_sender):
        ref = make_file_ref("d1", "secret.pdf", item_id="item-1")
        storage.seed(ref.storage_path)
        placed = client.post('/api/orders', json={
            "draftId": "d1",
            "contact": CUSTOMER,
            "items": [BANNER],
            "uploadedFileReferences": [{"itemId": "item-1", "path": ref.storage_path}],
        }).get_json()

        response = client.post('/api/orders', json={
            "orderNo": placed["orderNo"],
            "contact": {"name": "Mallory", "email": "mallory@example.net"},
            "items": [dict(BANNER, quantity=1)],
        })

        assert response.status_code == 400
        body = response.get_json()
        assert body["error"] == "order_no_taken"
        assert "files" not in body
        assert len(email_sender.messages) == 1

    def test_multipart(self, client, storage):
        meta = {"orderNo": ORDER_NO, "draftId": "d1", "customer": CUSTOMER, "items": [BANNER]}
        data = {
            "meta": json.dumps(meta),
            "files:item-1": (io.BytesIO(b"%PDF-1.4"), "Front.pdf", "application/pdf"),
        }

        response = client.post('/api/orders', data=data, content_type='multipart/form-data')

        assert response.status_code == 200
        body = response.get_json()
        assert body["orderNo"] == ORDER_NO
        assert body["uploaded"] == 1
        assert storage.read_text(body["files"][0]["path"]) == "%PDF-1.4"

    def test_not_json(self, client):
        response = client.post('/api/orders', data="hello", content_type="text/plain")
        assert response.status_code == 400
        assert response.get_json()["error"] == "invalid_body"

    def test_unexpected_error_is_generic(self, client, services):
        with patch.object(services.workflow, "submit", side_effect=RuntimeError("db password=hunter2")):
            response = client.post('/api/orders', json={"contact": CUSTOMER, "items": [BANNER]})

        assert response.status_code == 500
        assert response.get_json() == {"error": "internal_error"}


class TestGetOrder:

    @pytest.fixture
    def order_no(self, client):
        response = client.post('/api/orders', json={"contact": CUSTOMER, "items": [BANNER]})
        return response.get_json()["orderNo"]

    def test_owner_can_read(self, client, order_no):
        response = client.get(f'/api/orders/{order_no}?email=ANA@example.com')

        assert response.status_code == 200
        data = response.get_json()
        assert data["order"]["orderNo"] == order_no
        assert data["order"]["totals"]["total"] == 1271.1
        assert data["notification"]["status"] == "sent"

    @pytest.mark.parametrize("query", ["", "?email=someone@else.com"])
    def test_wrong_or_missing_email(self, client, order_no, query):
        response = client.get(f'/api/orders/{order_no}{query}')
        assert response.status_code == 404
        assert response.get_json()["error"] == "not_found"

    def test_malformed_order_no(self, client):
        assert client.get('/api/orders/not-an-order?email=ana@example.com').status_code == 404


class TestAppRoutes:

    def test_healthz(self, client):
        assert client.get('/healthz').get_json() == {"status": "ok", "storage": "local"}

    def test_healthz_storage_down(self, client, storage):
        storage.fail_on.add("ping")
        response = client.get('/healthz')
        assert response.status_code == 503

    def test_ping(self, client):
        assert client.get('/ping').status_code == 200

    def test_unknown_api_route_is_json(self, client):
        response = client.get('/api/nope')
        assert response.status_code == 404
        assert response.get_json()["error"] == "not_found"

    def test_wrong_method_is_json(self, client):
        response = client.get('/api/orders')
        assert response.status_code == 405
        assert response.get_json()["error"] == "method_not_allowed"

    def test_request_id_echoed(self, client):
        response = client.get('/ping', headers={"X-Request-Id": "req-123"})
        assert response.headers["X-Request-Id"] == "req-123"

    def test_storage_routes_off_for_remote_backends(self, client):
        assert client.get('/storage/sometoken').status_code == 404


class TestLocalStorageFlow:

    @pytest.fixture
    def local_app(self, tmp_path):
        settings = make_settings(instance_dir=str(tmp_path), storage_backend="local")
        sender = RecordingEmailSender()
        services = build_services(settings, email_sender=sender)
        flask_app = create_app(test_config={'TESTING': True, 'RATELIMIT_ENABLED': False}, services=services)
        return flask_app, sender

    def test_sign_put_submit_download(self, local_app):
        flask_app, sender = local_app
        client = flask_app.test_client()

        slot = client.post('/api/sign-upload', json={"draftId": "d1", "filename": "art.pdf", "itemId": "item-1"})
        upload_url = urlparse(slot.get_json()["signedUrl"]).path
        put = client.put(upload_url, data=b"%PDF-1.4 local", content_type="application/pdf")
        assert put.status_code == 200

        order = client.post('/api/orders', json={
            "draftId": "d1",
            "contact": CUSTOMER,
            "items": [BANNER],
            "uploadedFileReferences": [{"itemId": "item-1", "path": slot.get_json()["storagePath"]}],
        })
        assert order.status_code == 200
        [link] = order.get_json()["files"]

        download = client.get(urlparse(link["url"]).path)
        assert download.status_code == 200
        assert download.data == b"%PDF-1.4 local"
        assert len(sender.messages) == 1

    def test_invalid_token(self, local_app):
        client = local_app[0].test_client()
        assert client.get('/storage/not-a-token').status_code == 403
        assert client.put('/storage/upload/not-a-token', data=b"x").status_code == 403

    def test_read_token_cannot_upload(self, local_app):
        flask_app, _ = local_app
        storage = flask_app.extensions["print_orders"].storage
        token = urlparse(storage.get_url("tmp/d1/1-a.pdf")).path.rsplit("/", 1)[-1]
        response = flask_app.test_client().put(f'/storage/upload/{token}', data=b"x")
        assert response.status_code == 403

    def test_expired_token(self, local_app):
        flask_app, _ = local_app
        storage = flask_app.extensions["print_orders"].storage
        cred = storage.create_signed_upload("tmp/d1/1-a.pdf", expires_seconds=60)
        later = datetime.now(timezone.utc) + timedelta(minutes=5)

        with patch("utils.storage.utc_now", return_value=later):
            response = flask_app.test_client().put(f'/storage/upload/{cred.token}', data=b"x")

        assert response.status_code == 410
