"""Shared fixtures: SQLite database, stubbed GrowthBook API, test client."""
import os

# Must be set before exptrack.config is imported
os.environ["DATABASE_URL"] = "sqlite:///./test_exptrack.db"
os.environ.pop("GROWTHBOOK_API_KEY", None)

from datetime import date

import httpx
import pytest

from exptrack.services.growthbook import GrowthBookClient

GROWTHBOOK_URL = "https://growthbook.test/api/v1"
GROWTHBOOK_KEY = "secret_test_key"


def make_feature(feature_id="checkout-v2", key=None, rules=None, enabled=True, **extra):
    """Build a GrowthBook feature payload as the REST API returns it."""
    feature = {
        "id": feature_id,
        "key": key or feature_id,
        "valueType": "boolean",
        "defaultValue": False,
        "description": f"Feature {feature_id}",
        "tags": ["checkout"],
        "environments": {
            "production": {"enabled": enabled, "rules": rules or []},
        },
        "revision": {"version": 3, "comment": "Widen rollout", "publishedAt": "2024-02-01T10:00:00Z"},
    }
    feature.update(extra)
    return feature


class GrowthBookStub:
    """In-memory stand-in for the GrowthBook REST API, served through httpx.MockTransport."""

    def __init__(self):
        self.features = {}
        self.requests = []
        self.fail_status = None

    def add(self, payload):
        self.features[payload["id"]] = payload
        return payload

    @property
    def feature_calls(self):
        return [r for r in self.requests if r.url.path.startswith("/api/v1/features/")]

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)

        if self.fail_status:
            return httpx.Response(self.fail_status, text="upstream exploded")

        path = request.url.path
        if path == "/api/v1/features":
            features = list(self.features.values())
            limit = int(request.url.params.get("limit", len(features) or 1))
            return httpx.Response(200, json={
                "features": features[:limit],
                "total": len(features),
                "hasMore": len(features) > limit,
            })

        feature_id = path.rsplit("/", 1)[-1]
        if feature_id in self.features:
            return httpx.Response(200, json={"feature": self.features[feature_id]})
        return httpx.Response(404, json={"message": "Could not find feature"})


@pytest.fixture
def growthbook_stub():
    return GrowthBookStub()


@pytest.fixture
def growthbook_client(growthbook_stub):
    """Configured client whose requests are answered by the stub."""
    return GrowthBookClient(
        base_url=GROWTHBOOK_URL,
        api_key=GROWTHBOOK_KEY,
        transport=httpx.MockTransport(growthbook_stub.handler),
    )


@pytest.fixture
def unconfigured_client(growthbook_stub):
    return GrowthBookClient(
        base_url=GROWTHBOOK_URL,
        api_key=None,
        transport=httpx.MockTransport(growthbook_stub.handler),
    )


@pytest.fixture
def db():
    """Create test database session."""
    from exptrack.database import SessionLocal, engine, Base
    import exptrack.models  # noqa: F401

    Base.metadata.create_all(bind=engine)
    session = SessionLocal()

    yield session

    session.close()
    Base.metadata.drop_all(bind=engine)


@pytest.fixture
def experiment_factory(db):
    """Create experiments with sensible defaults."""
    from exptrack.models import Experiment

    def create(**overrides):
        fields = {
            "name": "New Checkout Flow",
            "exp_parameter": "checkout_v2",
            "user_group": "premium_users",
            "numbers_list": ["123456"],
            "live_date": date(2024, 1, 15),
            "platforms": ["web", "mobile"],
            "is_active": True,
        }
        fields.update(overrides)
        experiment = Experiment(**fields)
        db.add(experiment)
        db.commit()
        db.refresh(experiment)
        return experiment

    return create


@pytest.fixture
def api(db, growthbook_client):
    """TestClient wired to the test session and the stubbed GrowthBook client."""
    from fastapi.testclient import TestClient
    from exptrack.database import get_db
    from exptrack.main import app
    from exptrack.services.growthbook import get_growthbook_client

    def override_get_db():
        yield db

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_growthbook_client] = lambda: growthbook_client

    with TestClient(app) as client:
        yield client

    app.dependency_overrides.clear()
