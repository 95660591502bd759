"""
Pytest configuration for the decode pipeline tests.

Unit tests run against the PyAV fakes in ``pyav_fakes``; the integration
tests encode a real clip with PyAV into a temporary directory. Optional
settings overrides (``MEDIAFLOW_DECODER_*``) can be put in a local .env file.
"""

import types
from functools import partial
from pathlib import Path

import av
import pytest
from dotenv import load_dotenv

from pyav_fakes import FakeAV, FakeBitStreamFilter, FakeReformatter, FakeResampler

# Load .env file from project root
project_root = Path(__file__).parent.parent
load_dotenv(project_root / ".env")


@pytest.fixture
def fake_av(monkeypatch):
    """
    Replace the PyAV entry points used by the pipeline with ``FakeAV``.

    Usage:
        def test_something(fake_av):
            fake_av.add_movie("movie.mkv")
            media = Container.open("movie.mkv")
    """
    from mediaflow_decoder import audio, bitstream, container, stream, video

    registry = FakeAV()
    monkeypatch.setattr(
        container,
        "av",
        types.SimpleNamespace(open=registry.open, Codec=registry.codec, error=av.error),
    )
    monkeypatch.setattr(
        stream,
        "av",
        types.SimpleNamespace(CodecContext=types.SimpleNamespace(create=registry.create_context), error=av.error),
    )
    monkeypatch.setattr(video, "VideoReformatter", partial(FakeReformatter, registry))
    monkeypatch.setattr(audio, "AudioResampler", partial(FakeResampler, registry))
    monkeypatch.setattr(bitstream, "BitStreamFilterContext", partial(FakeBitStreamFilter, registry))
    return registry


@pytest.fixture
def movie(fake_av):
    """An opened container over the default fake movie (video index 0, audio index 1)."""
    from mediaflow_decoder.container import Container

    fake_av.add_movie("movie.mkv")
    media = Container.open("movie.mkv")
    yield media
    if not media._closed:
        media.close()


def read_all_frames(media, stream, limit=1000):
    """Run the caller read loop for a single stream and collect its frames."""
    frames = []
    for _ in range(limit):
        packet, more = media.read_packet()
        if not more:
            break
        if packet is None or packet.stream_index != stream.index:
            continue
        frame, _ = stream.read_frame()
        if frame is not None:
            frames.append(frame)
    while True:
        frame, more = stream.read_frame()
        if frame is None and not more:
            break
        if frame is not None:
            frames.append(frame)
    return frames


@pytest.fixture
def read_frames():
    return read_all_frames
