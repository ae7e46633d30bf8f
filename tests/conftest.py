# tests/conftest.py
"""Shared fixtures: in-memory SQLite store, tmp_path storage, tiny images."""

import sys
import os
import tempfile
sys.path.insert(0, os.path.join(os.path.dirname(__file__), ".."))

# Settings are read at import time; point them at throwaway resources first
os.environ["DATABASE_URL"] = "sqlite://"
os.environ["STORAGE_DIR"] = tempfile.mkdtemp(prefix="kiosk-storage-")
os.environ["API_KEY"] = ""

import base64
from io import BytesIO

import pytest
from PIL import Image
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from kiosk.database import create_tables
from kiosk.services.storage_service import LocalStorageBackend, StorageService
from kiosk.services.visitor_store import VisitorStore

PUBLIC_URL = "http://kiosk.test/storage"


@pytest.fixture
def session_factory():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    create_tables(bind=engine)
    yield sessionmaker(autocommit=False, autoflush=False, bind=engine)
    engine.dispose()


@pytest.fixture
def db_session(session_factory):
    db = session_factory()
    try:
        yield db
    finally:
        db.close()


@pytest.fixture
def store(db_session):
    return VisitorStore(db_session)


@pytest.fixture
def storage(tmp_path):
    return StorageService(LocalStorageBackend(str(tmp_path), PUBLIC_URL))


@pytest.fixture
def visitor_fields():
    def make(ref="REF123456", **overrides):
        fields = {
            "ref": ref,
            "name": "Ada",
            "last_name": "Lovelace",
            "company": "Analytical Engines",
            "position": "Engineer",
            "email": "ada@example.com",
            "phone": "+441234567",
        }
        fields.update(overrides)
        return fields
    return make


@pytest.fixture
def png_data_url():
    def make(size=(40, 30), color="red"):
        buf = BytesIO()
        Image.new("RGB", size, color).save(buf, format="PNG")
        return "data:image/png;base64," + base64.b64encode(buf.getvalue()).decode("ascii")
    return make
