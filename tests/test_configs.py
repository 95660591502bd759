from datetime import timedelta

from mediaflow_decoder.configs import Options, Settings


def test_timeout_is_set_for_tcp_and_rtsp_in_microseconds():
    options = Options(timeout=timedelta(seconds=5))
    rendered = options.to_demuxer_options()
    assert rendered == {"timeout": "5000000", "stimeout": "5000000"}


def test_no_timeout_no_keys():
    assert Options().to_demuxer_options() == {}
    assert Options().timeout_microseconds() is None


def test_extra_overrides_defaults_and_timeout_wins():
    options = Options(timeout=timedelta(milliseconds=1500), extra={"fflags": "+genpts", "timeout": "1"})
    rendered = options.to_demuxer_options({"fflags": "+discardcorrupt", "probesize": "32"})
    assert rendered == {
        "fflags": "+genpts",
        "probesize": "32",
        "timeout": "1500000",
        "stimeout": "1500000",
    }


def test_settings_read_prefixed_environment(monkeypatch):
    monkeypatch.setenv("MEDIAFLOW_DECODER_LOG_LEVEL", "DEBUG")
    monkeypatch.setenv("MEDIAFLOW_DECODER_DEFAULT_INTERPOLATION", "bilinear")
    monkeypatch.setenv("MEDIAFLOW_DECODER_OPEN_TIMEOUT", "2.5")
    settings = Settings()
    assert settings.log_level == "DEBUG"
    assert settings.default_interpolation == "bilinear"
    assert settings.open_timeout == 2.5
