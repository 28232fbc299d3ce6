"""Command line entry point: ``python -m mobile.vibesflow.cli``."""

from __future__ import annotations

import argparse
import logging
import sys
import time
from pathlib import Path
from typing import List, Optional

from .audio.recorder import FileSource, MicrophoneRecorder
from .config import CONFIG, PipelineConfig
from .errors import SessionInitError, VibesFlowError
from .events import Ended, ErrorEvent, EventChannel, Progress, WarningEvent
from .playback import ChunkLoader, PlaybackEngine, PlaybackStatus, build_index
from .playback.output import ClockDriver, DeviceOutput
from .services.logger import configure_logging
from .services.network import ApiClient
from .session import CaptureSession
from .store.settings_store import SettingsStore

LOGGER = logging.getLogger("vibesflow.cli")


def open_settings(config: PipelineConfig) -> SettingsStore:
    return SettingsStore.in_dir(config.data_dir, config.settings_file)


def log_events(events: EventChannel) -> None:
    for event in events.drain():
        if isinstance(event, ErrorEvent):
            LOGGER.error("[%s] %s", event.kind.value, event.message)
        elif isinstance(event, WarningEvent):
            LOGGER.warning("[%s] %s", event.kind.value, event.message)
        elif isinstance(event, Progress):
            LOGGER.info("%s: %d/%d done, %d failed", event.stage, event.done, event.total, event.failed)
        elif isinstance(event, Ended):
            LOGGER.info("Stream ended")


def cmd_configure(args: argparse.Namespace, config: PipelineConfig) -> int:
    store = open_settings(config)
    changes = {
        key: value
        for key, value in (
            ("server_url", args.server_url),
            ("api_key", args.api_key),
            ("creator_id", args.creator_id),
            ("participant_count", args.participants),
        )
        if value is not None
    }
    settings = store.update(**changes) if changes else store.get()
    masked = f"{settings.api_key[:4]}…" if settings.api_key else "(unset)"
    print(f"server_url={settings.server_url or '(unset)'}")
    print(f"api_key={masked}")
    print(f"creator_id={settings.creator_id or '(unset)'}")
    print(f"participant_count={settings.participant_count}")
    return 0


def cmd_capture(args: argparse.Namespace, config: PipelineConfig) -> int:
    store = open_settings(config)
    session = CaptureSession(store, config=config, stream_id=args.stream_id)
    try:
        session.start()
    except SessionInitError as exc:
        LOGGER.error("Cannot start capture: %s", exc)
        return 2
    if args.participants:
        session.update_participant_count(args.participants)

    if args.file:
        source = FileSource(
            args.file,
            session.add_sample,
            sample_rate=config.sample_rate,
            channels=config.channels,
            realtime=not args.fast,
        )
        source.start()
        try:
            while not source.finished.wait(1.0):
                log_events(session.events)
        except KeyboardInterrupt:
            source.stop()
    else:
        recorder = MicrophoneRecorder(session.add_sample, sample_rate=config.sample_rate, channels=config.channels)
        if not recorder.available:
            LOGGER.error("sounddevice is not installed; pass --file instead")
            session.abandon()
            session.shutdown(timeout=0)
            return 2
        recorder.start()
        deadline = time.monotonic() + args.duration if args.duration else None
        try:
            while deadline is None or time.monotonic() < deadline:
                time.sleep(1.0)
                log_events(session.events)
        except KeyboardInterrupt:
            pass
        recorder.stop()

    final = session.close()
    if final is not None:
        LOGGER.info("Final chunk %s queued; waiting for uploads", final.chunk_id)
    drained = session.shutdown(timeout=args.wait)
    log_events(session.events)
    for record in sorted(session.records(), key=lambda item: item.chunk_id):
        print(f"{record.chunk_id}\t{record.status.value}\t{record.content_address or '-'}\tattempts={record.attempts}")
    return 0 if drained else 1


def cmd_play(args: argparse.Namespace, config: PipelineConfig) -> int:
    store = open_settings(config)
    api = ApiClient(store, timeout=config.http_timeout)
    try:
        descriptors = api.fetch_descriptors(args.stream_id)
    except VibesFlowError as exc:
        LOGGER.error("Cannot list chunks for %s: %s", args.stream_id, exc)
        api.close()
        return 2

    index = build_index(descriptors, epsilon=config.boundary_epsilon)
    if not len(index):
        LOGGER.error("Stream %s has no chunks", args.stream_id)
        api.close()
        return 2
    loader = ChunkLoader(api.download_chunk, max_workers=config.preload_workers, fetch_timeout=config.fetch_timeout)
    engine = PlaybackEngine(
        loader,
        epsilon=config.boundary_epsilon,
        lookahead=config.lookahead_chunks,
        quality_window=config.quality_window,
        channels=config.channels,
        stream_id=args.stream_id,
    )
    engine.load(index, preload=args.preload)
    engine.wait_until_ready()
    if engine.status is PlaybackStatus.ENDED:
        log_events(engine.events)
        engine.close()
        api.close()
        return 1
    if args.start:
        engine.seek(args.start)

    device = DeviceOutput(engine)
    driver = None
    engine.play()
    if device.available and not args.headless:
        device.start()
    else:
        driver = ClockDriver(engine)
        driver.start()
    try:
        while engine.status is not PlaybackStatus.ENDED:
            time.sleep(1.0)
            state = engine.state()
            LOGGER.info(
                "chunk %d/%d  %.1f/%.1fs  buffer=%.0f%%  network=%s",
                state.current_chunk_index + 1,
                state.total_chunks,
                state.current_time,
                state.total_duration,
                state.buffer_health * 100,
                state.network_quality.value,
            )
            log_events(engine.events)
    except KeyboardInterrupt:
        engine.pause()
    finally:
        device.stop()
        if driver:
            driver.stop()
        log_events(engine.events)
        engine.close()
        api.close()
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="vibesflow", description="Chunked live audio capture and playback.")
    parser.add_argument("--log-level", default=CONFIG.log_level)
    parser.add_argument("--log-file", default=CONFIG.log_file)
    sub = parser.add_subparsers(dest="command", required=True)

    configure = sub.add_parser("configure", help="Store server URL, API key and creator id")
    configure.add_argument("--server-url")
    configure.add_argument("--api-key")
    configure.add_argument("--creator-id")
    configure.add_argument("--participants", type=int)
    configure.set_defaults(func=cmd_configure)

    capture = sub.add_parser("capture", help="Capture audio and upload it in chunks")
    capture.add_argument("--file", type=Path, help="Replay an audio file instead of the microphone")
    capture.add_argument("--fast", action="store_true", help="Feed the file as fast as possible")
    capture.add_argument("--duration", type=float, help="Stop microphone capture after N seconds")
    capture.add_argument("--stream-id")
    capture.add_argument("--participants", type=int)
    capture.add_argument("--wait", type=float, default=120.0, help="Seconds to wait for uploads after closing")
    capture.set_defaults(func=cmd_capture)

    play = sub.add_parser("play", help="Play a stored stream")
    play.add_argument("stream_id")
    play.add_argument("--preload", action="store_true", help="Load every chunk first (enables seeking)")
    play.add_argument("--start", type=float, help="Seek to this position once preloaded")
    play.add_argument("--headless", action="store_true", help="Advance playback without an audio device")
    play.set_defaults(func=cmd_play)
    return parser


def main(argv: Optional[List[str]] = None) -> int:
    args = build_parser().parse_args(argv)
    configure_logging(args.log_level, args.log_file)
    return args.func(args, CONFIG)


if __name__ == "__main__":
    sys.exit(main())
