from datetime import timedelta

import pytest

from mediaflow_decoder.exceptions import (
    AllocationError,
    DecodeError,
    FilterInitError,
    NoFilterError,
    SeekError,
    StreamClosedError,
)
from mediaflow_decoder.stream import StreamType
from mediaflow_decoder.timebase import TimeBase
from pyav_fakes import ffmpeg_error


def test_stream_metadata(movie):
    video, audio = movie.streams

    assert video.type is StreamType.VIDEO
    assert video.codec_name == "h264"
    assert video.codec_long_name == "h264 (fake)"
    assert video.time_base == TimeBase(1, 25)
    assert video.duration == timedelta(milliseconds=400)
    assert video.frame_rate == (25, 1)
    assert video.frame_count == 10
    assert video.bit_rate == 1_000_000
    assert (video.width, video.height) == (8, 4)
    assert video.aspect_ratio == (1, 1)

    assert audio.type is StreamType.AUDIO
    assert audio.time_base == TimeBase(1, 48000)
    assert audio.channel_count == 6
    assert audio.sample_rate == 48000
    assert audio.frame_size == 1024
    assert audio.buffer_size == 0


def test_open_and_close_lifecycle(fake_av, movie):
    video = movie.streams[0]
    assert not video.opened

    video.open()
    ctx = fake_av.contexts[-1]
    assert video.opened
    assert ctx.is_open
    assert ctx.extradata == b"\x01avcC"
    assert (ctx.width, ctx.height) == (8, 4)

    video.close()
    assert not video.opened
    assert video.output_size == (0, 0)


def test_reopen_creates_a_fresh_decoder(fake_av, movie):
    video = movie.streams[0]
    video.open()
    video.close()
    video.open()
    assert len(fake_av.contexts) == 2
    assert video.opened


def test_open_twice_keeps_the_first_decoder(fake_av, movie, caplog):
    audio = movie.streams[1]
    audio.open()
    with caplog.at_level("WARNING"):
        audio._open()
    assert "already open" in caplog.text
    assert len(fake_av.contexts) == 1


def test_close_without_open_is_a_warning(movie, caplog):
    with caplog.at_level("WARNING"):
        movie.streams[0].close()
    assert "not open" in caplog.text


def test_failed_open_leaves_stream_closed(fake_av, movie):
    fake_av.open_error = ffmpeg_error(12, "Cannot allocate memory")
    video = movie.streams[0]

    with pytest.raises(AllocationError) as exc_info:
        video.open()
    assert exc_info.value.code == -12
    assert not video.opened
    assert video.output_size == (0, 0)

    fake_av.open_error = None
    video.open()
    assert video.opened


def test_opened_for_decode_context_manager(movie):
    audio = movie.streams[1]
    with audio.opened_for_decode() as opened:
        assert opened is audio
        assert audio.opened
    assert not audio.opened


def test_audio_decoder_gets_source_parameters(fake_av, movie):
    movie.streams[1].open()
    ctx = fake_av.contexts[-1]
    assert ctx.sample_rate == 48000
    assert ctx.layout == "5.1"


def test_apply_and_remove_filter_cycles(fake_av, movie):
    video = movie.streams[0]
    for _ in range(3):
        video.apply_filter("h264_mp4toannexb")
        assert video.filter == "h264_mp4toannexb"
        video.remove_filter()
        assert video.filter == ""
        assert video.bitstream_filter is None
    assert len(fake_av.filters) == 3


def test_remove_filter_without_filter(movie):
    with pytest.raises(NoFilterError):
        movie.streams[0].remove_filter()


def test_apply_filter_replaces_existing_filter(movie, caplog):
    video = movie.streams[0]
    video.apply_filter("h264_mp4toannexb")
    with caplog.at_level("WARNING"):
        video.apply_filter("dump_extra=freq=keyframe")
    assert "replacing" in caplog.text
    assert video.filter == "dump_extra=freq=keyframe"


def test_unknown_filter_raises_filter_init_error(movie):
    video = movie.streams[0]
    with pytest.raises(FilterInitError) as exc_info:
        video.apply_filter("bogus_filter")
    assert exc_info.value.code == -22
    assert video.filter == ""


def test_close_releases_the_filter(movie):
    video = movie.streams[0]
    video.open()
    video.apply_filter("h264_mp4toannexb")
    video.close()
    assert video.filter == ""


def test_filtered_packets_reach_the_decoder(fake_av, movie, read_frames):
    video = movie.streams[0]
    video.apply_filter("h264_mp4toannexb")
    video.open()
    movie.open_decode()

    frames = read_frames(movie, video)
    assert len(frames) == 10
    assert video.bitstream_filter.in_slot is None
    assert video.bitstream_filter.out_slot is None


def test_rewind_seeks_backward_to_keyframe(fake_av, movie):
    native = fake_av.sources["movie.mkv"]
    video = movie.streams[0]
    video.open()
    movie.open_decode()

    video.rewind(timedelta(milliseconds=200))
    assert native.seeks[-1] == (5, 0, True, False)
    assert fake_av.contexts[-1].flushed == 1

    video.rewind(0.35)
    # 0.35 s is 8.75 ticks at 1/25
    assert native.seeks[-1] == (8, 0, True, False)


def test_rewind_failure_raises_seek_error(fake_av, movie):
    fake_av.seek_error = ffmpeg_error(1, "Operation not permitted")
    with pytest.raises(SeekError) as exc_info:
        movie.streams[0].rewind(timedelta(seconds=1))
    assert exc_info.value.code == -1


def test_read_frame_on_closed_stream(movie):
    movie.open_decode()
    movie.read_packet()
    with pytest.raises(StreamClosedError):
        movie.streams[0].read_frame()


def test_corrupt_packet_raises_and_stream_stays_usable(fake_av, movie):
    fake_av.fail_pts.add(2)
    video = movie.streams[0]
    video.open()
    movie.open_decode()

    decoded, errors = [], []
    while True:
        packet, more = movie.read_packet()
        if not more:
            break
        if packet is None or packet.stream_index != video.index:
            continue
        try:
            frame, _ = video.read_frame()
        except DecodeError as e:
            errors.append(e)
            continue
        if frame is not None:
            decoded.append(frame.pts)

    assert len(errors) == 1
    assert errors[0].code == -1094995529
    assert decoded == [0, 1, 3, 4, 5, 6, 7, 8, 9]


def test_decoder_delay_maps_to_retry(fake_av, movie, read_frames):
    fake_av.delays["h264"] = 1
    video = movie.streams[0]
    video.open()
    movie.open_decode()

    packet, _ = movie.read_packet()
    assert packet.stream_index == 0
    assert video.read_frame() == (None, True)
    assert video.skip

    # Skip the audio packet, the next video packet releases the first frame
    movie.read_packet()
    movie.read_packet()
    frame, more = video.read_frame()
    assert more
    assert frame.pts == 0
    assert not video.skip

    rest = read_frames(movie, video)
    # The last buffered frame comes out of the drain at end of stream
    assert [f.pts for f in rest] == list(range(1, 10))
    assert video.read_frame() == (None, False)


def test_refused_packet_is_resent_on_next_read(fake_av, movie, read_frames):
    fake_av.eagain_pts.add(0)
    video = movie.streams[0]
    video.open()
    movie.open_decode()

    movie.read_packet()
    assert video.read_frame() == (None, True)
    assert video.skip

    frames = read_frames(movie, video)
    assert [f.pts for f in frames] == list(range(10))
    assert fake_av.contexts[-1].submitted == list(range(10))


def test_refused_packet_is_dropped_on_rewind(fake_av, movie, read_frames):
    fake_av.eagain_pts.add(0)
    video = movie.streams[0]
    video.open()
    movie.open_decode()

    movie.read_packet()
    video.read_frame()
    video.rewind(timedelta(milliseconds=200))

    frames = read_frames(movie, video)
    assert [f.pts for f in frames] == [5, 6, 7, 8, 9]


def test_frame_indices_count_up(movie, read_frames):
    video = movie.streams[0]
    video.open()
    movie.open_decode()

    frames = read_frames(movie, video)
    assert [f.index_display for f in frames] == list(range(10))
    assert [f.index_coded for f in frames] == list(range(10))


def test_unknown_stream_cannot_be_opened(fake_av):
    from mediaflow_decoder.container import Container

    fake_av.add_movie("movie.mkv", data_stream=True)
    with Container.open("movie.mkv") as media:
        data = media.streams[2]
        assert data.type is StreamType.UNKNOWN
        with pytest.raises(AllocationError):
            data.open()
        with pytest.raises(StreamClosedError):
            data.read_frame()
