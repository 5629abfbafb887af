import mongomock
import pytest
from fastapi.testclient import TestClient
from langchain_core.language_models.fake_chat_models import FakeListChatModel

from config import Settings
from generator import ProductGenerator
from main import create_app
from storage import MemoryStorage, MongoStorage, SqlStorage


def make_settings(**overrides) -> Settings:
    values = {"storage_backend": "memory", "openai_api_key": None, "admin_key": None, "_env_file": None}
    values.update(overrides)
    return Settings(**values)


def fake_generator(*responses: str) -> ProductGenerator:
    return ProductGenerator(FakeListChatModel(responses=list(responses)))


def _build_storage(kind: str, tmp_path):
    if kind == "sql":
        return SqlStorage(f"sqlite:///{tmp_path / 'storefront.db'}")
    if kind == "mongo":
        return MongoStorage(mongomock.MongoClient()["storefront_test"])
    return MemoryStorage()


@pytest.fixture(params=["memory", "sql"])
def storage(request, tmp_path):
    backend = _build_storage(request.param, tmp_path)
    yield backend
    backend.close()


@pytest.fixture(params=["memory", "sql", "mongo"])
def any_storage(request, tmp_path):
    backend = _build_storage(request.param, tmp_path)
    yield backend
    backend.close()


@pytest.fixture
def make_client(storage):
    def _make(generator=None, **overrides):
        app = create_app(make_settings(**overrides), storage=storage, generator=generator or ProductGenerator())
        return TestClient(app)
    return _make


@pytest.fixture
def client(make_client):
    return make_client()


@pytest.fixture
def store(client):
    response = client.post("/api/stores", json={"name": "Sunny Threads", "category": "fashion"})
    assert response.status_code == 201
    return response.json()
