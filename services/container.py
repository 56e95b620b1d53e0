"""
Service wiring.

Builds the collaborators once per app from Settings. Routes reach them
through get_services(); tests pass their own OrderServices to create_app().
"""
from dataclasses import dataclass

from flask import current_app

from services.catalog import Catalog, DEFAULT_CATALOG
from services.email_senders import EmailSender, build_email_sender
from services.notifications import NotificationDispatcher, build_dispatcher
from services.submission import SubmissionWorkflow, build_submission_workflow
from services.uploads import UploadCoordinator, build_upload_coordinator
from utils.storage import StorageBackend, get_storage

EXTENSION_KEY = "print_orders"


@dataclass
class OrderServices:
    settings: object
    storage: StorageBackend
    uploads: UploadCoordinator
    email_sender: EmailSender
    dispatcher: NotificationDispatcher
    workflow: SubmissionWorkflow
    catalog: Catalog = DEFAULT_CATALOG


def build_services(settings, storage=None, email_sender=None, catalog=None) -> OrderServices:
    catalog = catalog or DEFAULT_CATALOG
    storage = storage or get_storage(settings)
    email_sender = email_sender or build_email_sender(settings)
    uploads = build_upload_coordinator(settings, storage)
    dispatcher = build_dispatcher(settings, email_sender)
    workflow = build_submission_workflow(settings, storage, uploads, dispatcher, catalog=catalog)
    return OrderServices(
        settings=settings,
        storage=storage,
        uploads=uploads,
        email_sender=email_sender,
        dispatcher=dispatcher,
        workflow=workflow,
        catalog=catalog,
    )


def get_services() -> OrderServices:
    return current_app.extensions[EXTENSION_KEY]
