from fastapi.testclient import TestClient

from conftest import make_settings
from errors import PersistenceError
from generator import ProductGenerator
from main import create_app
from storage import MemoryStorage, SqlStorage


class UnreachableStorage(MemoryStorage):
    def ping(self):
        raise PersistenceError("connection refused")


def test_root(client):
    response = client.get("/")
    assert response.status_code == 200
    assert "message" in response.json()


def test_health_ok(client, storage):
    response = client.get("/health")
    assert response.status_code == 200
    body = response.json()
    assert body["status"] == "ok"
    assert body["database"] == {"backend": storage.backend, "connected": True, "error": None}
    assert body["ai"] == {"configured": False}


def test_health_reports_ai_credential(make_client):
    client = make_client(openai_api_key="sk-test")
    body = client.get("/health").json()
    assert body["ai"] == {"configured": True}
    assert body["database"]["connected"] is True


def test_database_outage_only_flips_database():
    app = create_app(make_settings(openai_api_key="sk-test"), storage=UnreachableStorage(), generator=ProductGenerator())
    response = TestClient(app).get("/health")
    assert response.status_code == 503
    body = response.json()
    assert body["status"] == "degraded"
    assert body["database"]["connected"] is False
    assert "connection refused" in body["database"]["error"]
    assert body["ai"] == {"configured": True}


def test_sql_outage_reported_by_health(tmp_path):
    db_dir = tmp_path / "not-yet-created"
    storage = SqlStorage(f"sqlite:///{db_dir / 'storefront.db'}")
    app = create_app(make_settings(openai_api_key="sk-test"), storage=storage, generator=ProductGenerator())
    client = TestClient(app)

    response = client.get("/health")
    assert response.status_code == 503
    body = response.json()
    assert body["database"]["backend"] == "sql"
    assert body["database"]["connected"] is False
    assert body["ai"] == {"configured": True}

    db_dir.mkdir()
    recovered = client.get("/health")
    assert recovered.status_code == 200
    assert recovered.json()["database"]["connected"] is True
    storage.close()


def test_app_is_built_from_explicit_settings(tmp_path):
    import main

    assert not hasattr(main, "app")
    settings = make_settings(storage_backend="sql", database_url=f"sqlite:///{tmp_path / 'app.db'}")
    app = create_app(settings)
    assert app.state.settings is settings
    assert app.state.storage.backend == "sql"
    app.state.storage.close()
