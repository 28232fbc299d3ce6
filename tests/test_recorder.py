import numpy as np
import pytest
import soundfile as sf

from mobile.vibesflow.audio.recorder import FileSource, MicrophoneRecorder, to_pcm16


def test_to_pcm16_expands_mono():
    pcm = to_pcm16(np.array([0.5, -0.5]), channels=2)
    samples = np.frombuffer(pcm, dtype="<i2").reshape(-1, 2)
    assert samples.tolist() == [[16383, 16383], [-16383, -16383]]


def test_file_source_feeds_all_frames(tmp_path):
    path = tmp_path / "take.wav"
    sf.write(str(path), np.zeros((1600, 2), dtype=np.int16), 8000, subtype="PCM_16")
    received = []
    source = FileSource(path, received.append, sample_rate=8000, channels=2, realtime=False)
    assert source.run() == 1600
    assert sum(len(block) for block in received) == 1600 * 2 * 2


def test_file_source_rejects_other_sample_rates(tmp_path):
    path = tmp_path / "take.wav"
    sf.write(str(path), np.zeros((160, 1), dtype=np.int16), 16000, subtype="PCM_16")
    source = FileSource(path, lambda data: None, sample_rate=48000, channels=2)
    with pytest.raises(ValueError):
        source.start()


class FakeInputStream:
    def __init__(self, callback, **kwargs):
        self.callback = callback
        self.kwargs = kwargs
        self.started = False

    def start(self):
        self.started = True

    def stop(self):
        self.started = False

    def close(self):
        pass


class FakeSoundDevice:
    def __init__(self):
        self.streams = []

    def InputStream(self, **kwargs):
        stream = FakeInputStream(**kwargs)
        self.streams.append(stream)
        return stream


def test_microphone_recorder_forwards_blocks(monkeypatch):
    fake = FakeSoundDevice()
    monkeypatch.setattr(MicrophoneRecorder, "_try_import_sounddevice", lambda self: fake)
    received, levels = [], []
    recorder = MicrophoneRecorder(received.append, level_callback=levels.append, sample_rate=8000, channels=2)
    recorder.start()
    stream = fake.streams[0]
    assert stream.kwargs["samplerate"] == 8000

    block = np.full((4, 2), 16384, dtype=np.int16)
    stream.callback(block, 4, None, None)
    assert received == [block.astype("<i2").tobytes()]
    assert levels == [pytest.approx(0.5)]

    recorder.stop()
    assert stream.started is False


def test_microphone_recorder_without_sounddevice(monkeypatch):
    monkeypatch.setattr(MicrophoneRecorder, "_try_import_sounddevice", lambda self: None)
    recorder = MicrophoneRecorder(lambda data: None)
    assert recorder.available is False
    with pytest.raises(RuntimeError):
        recorder.start()
