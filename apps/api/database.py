import logging
import os
from typing import Any, Callable

import firebase_admin
from firebase_admin import credentials, firestore, storage

from .settings import settings

logger = logging.getLogger(__name__)


def _init_firebase() -> None:
    # Initialize Firebase only once
    if firebase_admin._apps:
        return

    service_account_path = settings.FIREBASE_CREDENTIALS_PATH
    if service_account_path and os.path.exists(service_account_path):
        cred = credentials.Certificate(service_account_path)
    else:
        logger.info("Service account not found at %s, using application default credentials", service_account_path)
        cred = credentials.ApplicationDefault()

    options = {}
    if settings.FIREBASE_STORAGE_BUCKET:
        options["storageBucket"] = settings.FIREBASE_STORAGE_BUCKET
    firebase_admin.initialize_app(cred, options)


def _firestore_client():
    _init_firebase()
    return firestore.client()


def _storage_bucket():
    _init_firebase()
    return storage.bucket()


class _LazyClient:
    """Defers SDK initialization until the first attribute access.

    Lets modules bind `db` / `bucket` at import time (and tests replace them)
    without credentials being present.
    """

    def __init__(self, factory: Callable[[], Any]):
        self._factory = factory
        self._client = None

    def _get(self) -> Any:
        if self._client is None:
            self._client = self._factory()
        return self._client

    def __getattr__(self, name: str) -> Any:
        return getattr(self._get(), name)


db = _LazyClient(_firestore_client)
bucket = _LazyClient(_storage_bucket)
