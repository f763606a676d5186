import os, tempfile
import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker

from main import app
from db import Base, enforce_foreign_keys, get_db
from security import verify_admin
from storage import ObjectStore, StorageError, get_store, get_optional_store
from schemas import QuestionCreate
import intake

HDR = {"X-API-Key": "test-key"}

class FakeStore(ObjectStore):
    """In-memory bucket; URLs look like https://storage.test/public/<key>."""
    base = "https://storage.test/public/"

    def __init__(self):
        self.objects = {}
        self.deleted = []
        self.fail_upload = False
        self.fail_delete = False

    def upload(self, data, content_type, key):
        if self.fail_upload:
            raise StorageError("bucket unavailable")
        self.objects[key] = (data, content_type)
        return self.base + key

    def delete(self, keys):
        if self.fail_delete:
            raise StorageError("bucket unavailable")
        self.deleted.extend(keys)

    def key_for(self, url):
        return url[len(self.base):] if url.startswith(self.base) else None

@pytest.fixture(scope="session")
def test_engine():
    """File-backed SQLite so separate sessions (and threads) get separate connections."""
    fd, path = tempfile.mkstemp(suffix=".db")
    os.close(fd)
    # writers queue on the file lock instead of failing with "database is locked"
    engine = enforce_foreign_keys(create_engine(
        f"sqlite:///{path}", connect_args={"check_same_thread": False, "timeout": 30},
    ))
    Base.metadata.create_all(bind=engine)
    yield engine
    engine.dispose()
    os.remove(path)

@pytest.fixture(scope="session")
def TestingSessionLocal(test_engine):
    return sessionmaker(autocommit=False, autoflush=False, bind=test_engine)

@pytest.fixture(scope="session", autouse=True)
def override_di(TestingSessionLocal):
    def _session():
        db = TestingSessionLocal()
        try:
            yield db
        finally:
            db.close()
    app.dependency_overrides[get_db] = _session
    app.dependency_overrides[verify_admin] = lambda: None
    yield
    app.dependency_overrides.clear()

@pytest.fixture
def store():
    s = FakeStore()
    app.dependency_overrides[get_store] = lambda: s
    app.dependency_overrides[get_optional_store] = lambda: s
    yield s
    app.dependency_overrides.pop(get_store, None)
    app.dependency_overrides.pop(get_optional_store, None)

@pytest.fixture
def client(store):
    return TestClient(app)

@pytest.fixture
def db(TestingSessionLocal):
    session = TestingSessionLocal()
    try:
        yield session
    finally:
        session.close()

@pytest.fixture
def make_questionnaire(db):
    """Create a questionnaire from (type, required) pairs; returns the ORM row."""
    def _make(*specs, title="Intake", client_name="Acme"):
        questions = [
            QuestionCreate(question_text=f"Question {i + 1}", question_type=t, is_required=req)
            for i, (t, req) in enumerate(specs)
        ]
        return intake.create_questionnaire(db, title, client_name, questions)
    return _make
