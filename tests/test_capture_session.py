import threading

import httpx
import pytest

from mobile.vibesflow.audio.compression import CompressedAudio
from mobile.vibesflow.config import PipelineConfig
from mobile.vibesflow.errors import ErrorKind, SessionInitError
from mobile.vibesflow.events import WarningEvent
from mobile.vibesflow.services.network import ApiClient
from mobile.vibesflow.session import CaptureSession
from mobile.vibesflow.store.settings_store import SettingsStore


def make_config(tmp_path, **overrides):
    values = dict(
        chunk_seconds=3600,
        monitor_interval=3600,
        upload_workers=1,
        retry_base_delay=0.0,
        poll_initial_seconds=3600,
        spool_dir=None,
        data_dir=str(tmp_path),
    )
    values.update(overrides)
    return PipelineConfig(**values)


def make_session(tmp_path, handler, *, creator_id="creator-1", **overrides):
    settings = SettingsStore(tmp_path / "settings.json")
    settings.update(server_url="https://store.example.com", api_key="k", creator_id=creator_id)
    api = ApiClient(settings, client=httpx.Client(transport=httpx.MockTransport(handler)))
    session = CaptureSession(settings, config=make_config(tmp_path, **overrides), stream_id="rta_live", api=api)
    session.workers.compressor = lambda raw, level: CompressedAudio(raw, "FLAC", len(raw))
    return session


def healthy(request):
    if request.url.path == "/healthz":
        return httpx.Response(200, json={"ok": True})
    if request.url.path == "/v1/chunks":
        return httpx.Response(200, json={"accepted": True, "upload_id": "u"})
    return httpx.Response(200, json={"chunks": []})


def test_start_requires_creator_id(tmp_path):
    session = make_session(tmp_path, healthy, creator_id="")
    with pytest.raises(SessionInitError):
        session.start()


def test_start_fails_when_backend_unhealthy(tmp_path):
    def handler(request):
        return httpx.Response(503)

    session = make_session(tmp_path, handler)
    with pytest.raises(SessionInitError):
        session.start()


def test_start_fails_when_backend_unreachable(tmp_path):
    def handler(request):
        raise httpx.ConnectError("down", request=request)

    session = make_session(tmp_path, handler)
    with pytest.raises(SessionInitError):
        session.start()


def test_capture_close_and_upload(tmp_path):
    session = make_session(tmp_path, healthy)
    session.start()
    session.add_sample(b"\x01\x00" * 400)
    first = session.producer.rotate()
    session.add_sample(b"\x02\x00" * 400)
    final = session.close()

    assert session.closed is True
    assert final.is_final is True
    assert final.sequence == first.sequence + 1
    assert session.wait_for_uploads(timeout=5)
    assert session.shutdown(timeout=1) is True

    records = {record.chunk_id: record for record in session.records()}
    assert set(records) == {first.chunk_id, final.chunk_id}
    assert all(record.attempts == 1 for record in records.values())


def test_abandon_uploads_nothing(tmp_path):
    posts = []

    def handler(request):
        if request.url.path == "/v1/chunks":
            posts.append(request)
        return healthy(request)

    session = make_session(tmp_path, handler)
    session.start()
    session.add_sample(b"\x01\x00" * 400)
    session.abandon()
    assert session.close() is None
    session.shutdown(timeout=1)
    assert posts == []


def test_tick_reports_capture_stall_once(tmp_path):
    session = make_session(tmp_path, healthy, quiet_bound=0.0, activity_base_window=0.001)
    session.add_sample(b"\x01\x00" * 4)
    session.monitor.record_arrival(0.0)
    session.tick()
    session.tick()
    stalls = [
        event
        for event in session.events.drain()
        if isinstance(event, WarningEvent) and event.kind is ErrorKind.CAPTURE_STALL
    ]
    assert len(stalls) == 1


def test_monitor_thread_survives_a_failing_tick(tmp_path):
    session = make_session(tmp_path, healthy, monitor_interval=0.01)
    ticks = []
    recovered = threading.Event()

    def flaky_tick():
        ticks.append(1)
        if len(ticks) == 1:
            raise RuntimeError("tick blew up")
        recovered.set()

    session.tick = flaky_tick
    session.start()
    assert recovered.wait(2)
    session.abandon()
    session.shutdown(timeout=1)
