import pytest
from fastapi.testclient import TestClient
from sqlalchemy.pool import StaticPool
from sqlmodel import create_engine

import main
import webhook
from db import init_db
from job_store import JobStore
from kv import MemoryKV
from settings import settings


class FakeClock:
    def __init__(self, start: float = 1_700_000_000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture(autouse=True)
def configured(monkeypatch):
    monkeypatch.setattr(settings, "replicate_api_token", "r8_test")
    monkeypatch.setattr(settings, "public_base_url", "https://relay.test")
    monkeypatch.setattr(settings, "site_url", "https://kpopdemonz.com")
    monkeypatch.setattr(settings, "hcaptcha_secret_key", "")
    monkeypatch.setattr(settings, "admin_api_key", "")
    monkeypatch.setattr(settings, "resend_api_key", "re_test")
    monkeypatch.setattr(settings, "r2_endpoint_url", "")
    monkeypatch.setattr(settings, "notify_delay_seconds", 0)


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def store(clock):
    return JobStore(MemoryKV(clock=clock), job_ttl=86400, feed_ttl=86400 * 7, feed_max=50)


@pytest.fixture
def engine():
    eng = create_engine("sqlite://", connect_args={"check_same_thread": False}, poolclass=StaticPool)
    init_db(eng)
    return eng


@pytest.fixture
def predictions(monkeypatch):
    """Stub Replicate: every submission gets pred1, pred2, ..."""
    calls = []

    async def fake_create(image, content_type, client=None):
        calls.append({"image": image, "content_type": content_type})
        return {"id": f"pred{len(calls)}", "status": "starting"}

    monkeypatch.setattr(main, "create_prediction", fake_create)
    return calls


@pytest.fixture
def notifications(monkeypatch):
    sent = []

    async def fake_send(email, name, short_id, client=None):
        sent.append({"email": email, "name": name, "short_id": short_id})
        return True

    monkeypatch.setattr(webhook, "send_notification", fake_send)
    return sent


@pytest.fixture
def client(store, engine, predictions, notifications):
    main.app.dependency_overrides[main.get_store] = lambda: store
    main.app.dependency_overrides[main.get_engine] = lambda: engine
    yield TestClient(main.app)
    main.app.dependency_overrides.clear()


@pytest.fixture
def submit(client):
    def _submit(**form):
        files = {"image": ("me.jpg", b"\xff\xd8fake-jpeg", "image/jpeg")}
        resp = client.post("/transform", files=files, data=form)
        assert resp.status_code == 200, resp.text
        return resp.json()
    return _submit
