import pytest
from fastapi.testclient import TestClient

from reelgate.api import main
from reelgate.lib.config import Settings
from reelgate.lib.store import InMemoryStore, keys, set_json
from reelgate.models.enums import SafetyStatus
from reelgate.models.media import Asset, SafetyReport
from reelgate.models.schedule import ABTest, RawTrend
from reelgate.run_pipeline import Pipeline

from conftest import FakeClassifier, FakeTranscoder, RecordingPublisher, use_utc_quiet_hours, utc


@pytest.fixture
def pipeline():
    store = InMemoryStore()
    pipeline = Pipeline(
        settings=Settings(),
        store=store,
        transcoder=FakeTranscoder(),
        classifier=FakeClassifier(),
        publisher=RecordingPublisher(),
    )
    use_utc_quiet_hours(store)
    return pipeline


@pytest.fixture
def client(pipeline):
    main.app.dependency_overrides[main.get_pipeline] = lambda: pipeline
    yield TestClient(main.app)
    main.app.dependency_overrides.clear()


def test_health(client):
    response = client.get("/health")

    assert response.status_code == 200
    assert response.json() == {"status": "ok"}


def test_report_lookup(client, pipeline):
    report = SafetyReport(id="clip-1", status=SafetyStatus.FIXED, artifact_path="/tmp/fixed.mp4")
    set_json(pipeline.store, keys.report("clip-1"), report.model_dump(mode="json"))

    response = client.get("/reports/clip-1")

    assert response.status_code == 200
    assert response.json()["status"] == "fixed"
    assert response.json()["artifact_path"] == "/tmp/fixed.mp4"


def test_missing_report_is_404(client):
    assert client.get("/reports/nope").status_code == 404


def test_admission_view(client):
    response = client.get("/admission/MAIN", params={"at": "2024-01-15T19:00:00+00:00"})

    body = response.json()
    assert response.status_code == 200
    assert body["allowed"] is True
    assert body["slotScore"] == pytest.approx(1.3)
    assert body["violations"] == []


def test_next_slot(client):
    body = client.get("/slots/MAIN", params={"horizon": 60}).json()

    assert body["profile"] == "MAIN"
    assert body["slot"] is not None
    assert body["slotScore"] >= 1.0


def test_trends_view(client, pipeline):
    pipeline.trends.refresh([RawTrend(id="t1", hashtag="#x", updated_at=utc(2030, 1, 1))])

    body = client.get("/trends/MAIN").json()

    assert [o["trend"]["id"] for o in body] == ["t1"]


def test_drafts_view(client, pipeline):
    pipeline.drafts.enqueue("MAIN", Asset(id="clip-1", source_path="in.mp4"))

    body = client.get("/drafts/MAIN", params={"status": "pending"}).json()

    assert [d["asset"]["id"] for d in body] == ["clip-1"]


def test_ab_view(client, pipeline):
    pipeline.ab.register(ABTest(id="hook", variant_a="A!", variant_b="B!"))
    pipeline.ab.record_outcome("hook", "A", {"views": 3})

    body = client.get("/ab/hook").json()

    assert body["results"] == {"A": [{"views": 3}]}
    assert client.get("/ab/unknown").status_code == 404


def test_pipeline_tick_schedules_queued_asset(pipeline):
    pipeline.drafts.enqueue("MAIN", Asset(id="clip-9", source_path="in.mp4", caption="hello"))

    [result] = pipeline.tick()

    assert result.outcome.value == "scheduled"
    assert pipeline.publisher.requests[0].asset_id == "clip-9"


def test_ingest_message_is_queued(pipeline):
    pipeline.handle_ingest({"profile": "MARS", "asset_id": "x1", "path": "/media/x1.mp4", "priority": 2})

    assert pipeline.drafts.next_asset("MARS").id == "x1"


class ClosingClassifier(FakeClassifier):
    def __init__(self):
        super().__init__()
        self.closed = 0

    async def aclose(self):
        self.closed += 1


def test_tick_closes_classifier_client():
    classifier = ClosingClassifier()
    store = InMemoryStore()
    pipeline = Pipeline(
        settings=Settings(),
        store=store,
        transcoder=FakeTranscoder(),
        classifier=classifier,
        publisher=RecordingPublisher(),
    )
    use_utc_quiet_hours(store)
    pipeline.drafts.enqueue("MAIN", Asset(id="clip-3", source_path="in.mp4"))

    pipeline.tick()
    pipeline.tick()

    assert classifier.calls == 1
    assert classifier.closed == 2
