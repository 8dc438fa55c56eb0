import asyncio
import io
import threading
from datetime import datetime, timezone

import pikepdf
import pytest

from publisher.app.coordinator import coordinator as coordinator_module
from publisher.app.coordinator.coordinator import (
    MISSING_INPUT_MESSAGE,
    TRANSITIONS,
    PublishCoordinator,
)
from publisher.app.errors import InvalidTransitionError
from publisher.app.schemas.status import PublishState, PublishStatus
from publisher.app.schemas.submission import SubmissionData
from publisher.tests.fixtures.doubles import (
    FakeImageAsset,
    FakeRenderHost,
    ListStatusSink,
    RecordingRecords,
    RecordingStorage,
    make_settings,
)

pytestmark = pytest.mark.anyio

ORDER = "BR-12345678"
EXPECTED_URL = (
    "https://project.supabase.co/storage/v1/object/public/"
    "lieferschein/begleitschein_BR-12345678.pdf"
)
FIXED_NOW = datetime(2025, 6, 1, 12, 34, 56, tzinfo=timezone.utc)


def _submission(**overrides) -> SubmissionData:
    values = {
        "name": "A. Tester",
        "email": "a@test.de",
        "address": "Main St 1",
        "total_weight": 2.5,
    }
    values.update(overrides)
    return SubmissionData(**values)


def _coordinator(host=None, storage=None, records=None, sink=None, **kwargs):
    host = host or FakeRenderHost()
    storage = storage or RecordingStorage()
    records = records or RecordingRecords()
    sink = sink or ListStatusSink()
    coordinator = PublishCoordinator(
        settings=make_settings(),
        render_host=host,
        storage=storage,
        records=records,
        status_sink=sink,
        **kwargs,
    )
    return coordinator, host, storage, records, sink


async def _wait_for(predicate, attempts: int = 200) -> None:
    for _ in range(attempts):
        if predicate():
            return
        await asyncio.sleep(0.005)
    raise AssertionError("condition not reached")


async def test_publish_uploads_records_and_reports_success():
    coordinator, host, storage, records, sink = _coordinator()

    url = await coordinator.publish(_submission(), ORDER)

    assert url == EXPECTED_URL
    assert coordinator.status == PublishStatus(
        uploading=False,
        success=True,
        error=None,
        url=EXPECTED_URL,
    )
    assert coordinator.state is PublishState.SUCCESS

    assert len(storage.uploads) == 1
    upload = storage.uploads[0]
    assert upload["bucket"] == "lieferschein"
    assert upload["filename"] == "begleitschein_BR-12345678.pdf"
    assert upload["content_type"] == "application/pdf"
    assert upload["overwrite"] is True
    assert upload["data"].startswith(b"%PDF")
    assert len(upload["data"]) >= 2000

    with pikepdf.open(io.BytesIO(upload["data"])) as pdf:
        assert len(pdf.pages) == 2
        assert str(pdf.docinfo["/Title"]) == f"Begleitschein - {ORDER}"

    assert records.updates == [
        {
            "table": "ankauf_requests",
            "key_column": "ankaufs_nummer",
            "key": ORDER,
            "values": {"pdf_url": EXPECTED_URL},
        }
    ]
    assert sink.notices == []
    assert host.attached == {}


async def test_second_publish_after_success_returns_cached_url():
    coordinator, host, storage, records, _ = _coordinator()

    first = await coordinator.publish(_submission(), ORDER)
    second = await coordinator.publish(_submission(), ORDER)

    assert first == second == EXPECTED_URL
    assert len(storage.uploads) == 1
    assert len(records.updates) == 1
    assert host.attach_calls == 1


async def test_concurrent_publish_runs_pipeline_once():
    host = FakeRenderHost(assets=[FakeImageAsset(delay=0.01)])
    coordinator, _, storage, records, _ = _coordinator(host=host)

    first, second = await asyncio.gather(
        coordinator.publish(_submission(), ORDER),
        coordinator.publish(_submission(), ORDER),
    )

    assert first == EXPECTED_URL
    assert second is None
    assert host.attach_calls == 1
    assert len(storage.uploads) == 1
    assert len(records.updates) == 1
    assert coordinator.status.success is True


@pytest.mark.parametrize(
    "data, identifier",
    [
        (None, ORDER),
        (SubmissionData(name="A. Tester"), None),
        (SubmissionData(name="A. Tester"), "   "),
    ],
)
async def test_missing_input_fails_without_side_effects(data, identifier):
    coordinator, host, storage, records, sink = _coordinator()

    url = await coordinator.publish(data, identifier)

    assert url is None
    assert coordinator.status.error == MISSING_INPUT_MESSAGE
    assert coordinator.status.uploading is False
    assert coordinator.status.success is False
    assert coordinator.state is PublishState.IDLE
    assert host.attach_calls == 0
    assert storage.uploads == []
    assert records.updates == []
    assert sink.notices == []


async def test_missing_input_after_success_keeps_success_intact():
    coordinator, *_ = _coordinator()
    await coordinator.publish(_submission(), ORDER)

    assert await coordinator.publish(None, ORDER) is None

    assert coordinator.status.success is True
    assert coordinator.status.error is None
    assert coordinator.status.url == EXPECTED_URL


async def test_missing_submission_date_uses_clock_without_mutating_input():
    coordinator, host, *_ = _coordinator(clock=lambda: FIXED_NOW)
    data = _submission()

    await coordinator.publish(data, ORDER)

    assert data.submission_date is None
    markup, _ = host.staged[0]
    assert "01.06.2025, 14:34" in markup


async def test_staged_surface_receives_fragment_without_imports():
    coordinator, host, *_ = _coordinator()

    await coordinator.publish(_submission(), ORDER)

    markup, style_rules = host.staged[0]
    assert "<html" not in markup
    assert "<!DOCTYPE" not in markup
    assert ORDER in markup
    assert ".pdf-page" in style_rules
    assert "@import" not in style_rules


async def test_asset_data_url_is_staged():
    coordinator, host, *_ = _coordinator()
    asset = "data:image/png;base64,iVBORw0KGgo="

    await coordinator.publish(_submission(), ORDER, asset)

    markup, _ = host.staged[0]
    assert f'src="{asset}"' in markup


async def test_reset_allows_a_fresh_publish():
    coordinator, host, storage, *_ = _coordinator()
    await coordinator.publish(_submission(), ORDER)

    status = coordinator.reset()

    assert status == PublishStatus()
    assert coordinator.state is PublishState.IDLE

    url = await coordinator.publish(_submission(), ORDER)

    assert url == EXPECTED_URL
    assert host.attach_calls == 2
    assert len(storage.uploads) == 2


async def test_reset_is_rejected_while_uploading():
    host = FakeRenderHost(assets=[FakeImageAsset(delay=0.05)])
    coordinator, *_ = _coordinator(host=host)

    task = asyncio.create_task(coordinator.publish(_submission(), ORDER))
    await _wait_for(lambda: coordinator.state is PublishState.UPLOADING)

    assert coordinator.status == PublishStatus(uploading=True)
    with pytest.raises(InvalidTransitionError):
        coordinator.reset()

    assert await task == EXPECTED_URL


def test_transition_table_covers_every_state():
    assert set(TRANSITIONS) == set(PublishState)
    assert PublishState.SUCCESS not in TRANSITIONS[PublishState.IDLE]
    assert PublishState.UPLOADING not in TRANSITIONS[PublishState.SUCCESS]
    assert TRANSITIONS[PublishState.UPLOADING] == {
        PublishState.SUCCESS,
        PublishState.FAILED,
    }


def test_reset_on_idle_instance_is_a_no_op():
    coordinator, *_ = _coordinator()

    assert coordinator.reset() == PublishStatus()
    assert coordinator.state is PublishState.IDLE


async def test_pdf_finalization_runs_in_a_worker_thread(monkeypatch):
    threads = []
    real_finalize = coordinator_module.finalize_pdf

    def recording_finalize(*args, **kwargs):
        threads.append(threading.get_ident())
        return real_finalize(*args, **kwargs)

    monkeypatch.setattr(coordinator_module, "finalize_pdf", recording_finalize)
    coordinator, *_ = _coordinator()

    assert await coordinator.publish(_submission(), ORDER) == EXPECTED_URL

    assert len(threads) == 1
    assert threads[0] != threading.get_ident()
