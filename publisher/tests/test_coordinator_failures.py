import asyncio
from unittest.mock import AsyncMock

import pytest

from publisher.app.coordinator.coordinator import FAILURE_TITLE, PublishCoordinator
from publisher.app.errors import PersistenceError, UploadError
from publisher.app.events import Severity
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
DATA = SubmissionData(
    name="A. Tester",
    email="a@test.de",
    address="Main St 1",
    total_weight=2.5,
)


def _coordinator(host=None, storage=None, records=None, sink=None):
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
    )
    return coordinator, host, storage, records, sink


def _assert_failed_shape(status: PublishStatus) -> None:
    assert status.uploading is False
    assert status.success is False
    assert status.url is None
    assert status.error


async def test_rejected_upload_reports_storage_message():
    storage = RecordingStorage(upload_error=UploadError("Bucket not found"))
    coordinator, host, _, records, sink = _coordinator(storage=storage)

    url = await coordinator.publish(DATA, ORDER)

    assert url is None
    assert coordinator.status == PublishStatus(error="Bucket not found")
    assert coordinator.state is PublishState.FAILED
    assert records.updates == []

    assert len(sink.notices) == 1
    notice = sink.notices[0]
    assert notice.title == FAILURE_TITLE
    assert notice.description == "Bucket not found"
    assert notice.severity is Severity.DESTRUCTIVE
    assert notice.order_number == ORDER

    assert host.attached == {}
    assert host.detach_calls == 1


async def test_unresolvable_public_url_fails_before_persistence():
    storage = RecordingStorage(resolve_urls=False)
    coordinator, _, _, records, sink = _coordinator(storage=storage)

    url = await coordinator.publish(DATA, ORDER)

    assert url is None
    _assert_failed_shape(coordinator.status)
    assert "begleitschein_BR-12345678.pdf" in coordinator.status.error
    assert len(storage.uploads) == 1
    assert storage.url_lookups == 1
    assert records.updates == []
    assert len(sink.notices) == 1


async def test_persistence_failure_keeps_uploaded_binary():
    records = RecordingRecords(
        error=PersistenceError("No record in 'ankauf_requests' matches ankaufs_nummer=BR-12345678.")
    )
    coordinator, _, storage, _, sink = _coordinator(records=records)

    url = await coordinator.publish(DATA, ORDER)

    assert url is None
    _assert_failed_shape(coordinator.status)
    assert coordinator.status.error.startswith("No record in 'ankauf_requests'")
    assert len(storage.uploads) == 1
    assert len(records.updates) == 1
    assert len(sink.notices) == 1


async def test_capture_crash_is_reported_as_render_failure():
    host = FakeRenderHost(fail_on="capture")
    coordinator, _, storage, records, sink = _coordinator(host=host)

    url = await coordinator.publish(DATA, ORDER)

    assert url is None
    _assert_failed_shape(coordinator.status)
    assert coordinator.status.error.startswith("PDF rendering failed")
    assert "capture crashed" in coordinator.status.error
    assert storage.uploads == []
    assert records.updates == []
    assert host.attached == {}
    assert host.detach_calls == 1


async def test_attach_crash_is_reported_as_render_failure():
    host = FakeRenderHost(fail_on="attach")
    coordinator, _, storage, _, _ = _coordinator(host=host)

    assert await coordinator.publish(DATA, ORDER) is None

    assert "attach crashed" in coordinator.status.error
    assert storage.uploads == []


async def test_empty_surface_is_reported_as_render_failure():
    host = FakeRenderHost(content_height=0)
    coordinator, _, storage, _, _ = _coordinator(host=host)

    assert await coordinator.publish(DATA, ORDER) is None

    assert "no laid-out content" in coordinator.status.error
    assert host.capture_calls == 0
    assert storage.uploads == []


async def test_broken_images_do_not_block_publication():
    host = FakeRenderHost(assets=[FakeImageAsset(outcome=False)])
    coordinator, *_ = _coordinator(host=host)

    url = await coordinator.publish(DATA, ORDER)

    assert url is not None
    assert coordinator.status.success is True


async def test_failing_status_sink_does_not_change_outcome():
    sink = AsyncMock()
    sink.notify.side_effect = RuntimeError("toast unavailable")
    storage = RecordingStorage(upload_error=UploadError("Payload too large"))
    coordinator, *_ = _coordinator(storage=storage, sink=sink)

    url = await coordinator.publish(DATA, ORDER)

    assert url is None
    sink.notify.assert_awaited_once()
    assert coordinator.status == PublishStatus(error="Payload too large")


async def test_failed_instance_accepts_a_new_call():
    storage = RecordingStorage(upload_error=UploadError("Service unavailable"))
    coordinator, _, _, records, _ = _coordinator(storage=storage)

    assert await coordinator.publish(DATA, ORDER) is None
    assert coordinator.state is PublishState.FAILED

    storage.upload_error = None
    url = await coordinator.publish(DATA, ORDER)

    assert url is not None
    assert coordinator.status == PublishStatus(success=True, url=url)
    assert len(storage.uploads) == 2
    assert len(records.updates) == 1


async def test_failure_notice_is_not_emitted_on_success():
    coordinator, _, _, _, sink = _coordinator()

    await coordinator.publish(DATA, ORDER)

    assert sink.notices == []


async def test_cancellation_marks_attempt_failed_and_releases_surface():
    host = FakeRenderHost(assets=[FakeImageAsset(delay=10)])
    coordinator, _, storage, _, sink = _coordinator(host=host)

    task = asyncio.create_task(coordinator.publish(DATA, ORDER))
    for _ in range(200):
        if host.attached:
            break
        await asyncio.sleep(0.005)
    assert host.attached

    task.cancel()
    with pytest.raises(asyncio.CancelledError):
        await task

    assert coordinator.state is PublishState.FAILED
    _assert_failed_shape(coordinator.status)
    assert host.attached == {}
    assert host.detach_calls == 1
    assert storage.uploads == []
    assert sink.notices == []
