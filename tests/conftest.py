"""
Pytest fixtures for the print order service tests.

The app is built with in-memory storage and a recording email sender, so no
test touches S3, SMTP or the network.
"""
import os
import tempfile

import pytest

# Set test environment before importing app
os.environ['FLASK_ENV'] = 'testing'
os.environ['APP_STAGE'] = 'test'
os.environ['SECRET_KEY'] = 'test-secret-key'
os.environ['STORAGE_BACKEND'] = 'local'
os.environ['EMAIL_PROVIDER'] = 'none'
os.environ['BASE_URL'] = 'http://localhost:5000'
os.environ['INSTANCE_DIR'] = tempfile.mkdtemp(prefix="print-orders-test-")

from tests.factories import MemoryStorage, RecordingEmailSender, make_settings  # noqa: E402


@pytest.fixture
def settings():
    return make_settings()


@pytest.fixture
def storage():
    return MemoryStorage()


@pytest.fixture
def email_sender():
    return RecordingEmailSender()


@pytest.fixture
def services(settings, storage, email_sender):
    from services.container import build_services
    return build_services(settings, storage=storage, email_sender=email_sender)


@pytest.fixture
def app(services):
    """Create application for testing."""
    from app import create_app
    flask_app = create_app(
        test_config={'TESTING': True, 'RATELIMIT_ENABLED': False},
        services=services,
    )
    return flask_app


@pytest.fixture
def client(app):
    """Create a test client for the app."""
    return app.test_client()


@pytest.fixture
def workflow(services):
    return services.workflow
