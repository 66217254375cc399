from types import SimpleNamespace

from deploybot.core import observability


def _settings(dsn: str) -> SimpleNamespace:
    return SimpleNamespace(
        sentry_dsn=dsn,
        env="production",
        app_name="deploybot",
        app_version="0.1.0",
        sentry_traces_sample_rate=0.1,
    )


def test_init_sentry_skips_when_dsn_missing(monkeypatch) -> None:
    observability.reset_observability_for_tests()
    calls = []

    monkeypatch.setattr(observability.sentry_sdk, "init", lambda **kwargs: calls.append(kwargs))
    monkeypatch.setattr(observability, "get_settings", lambda: _settings(""))

    assert observability.init_sentry() is False
    assert calls == []
    observability.reset_observability_for_tests()


def test_init_sentry_initializes_once(monkeypatch) -> None:
    observability.reset_observability_for_tests()
    calls = []

    monkeypatch.setattr(observability.sentry_sdk, "init", lambda **kwargs: calls.append(kwargs))
    monkeypatch.setattr(observability, "FastApiIntegration", lambda: object())
    monkeypatch.setattr(observability, "get_settings", lambda: _settings("https://abc@example.ingest.sentry.io/1"))

    assert observability.init_sentry() is True
    assert observability.init_sentry() is True
    assert len(calls) == 1
    assert calls[0]["release"] == "deploybot@0.1.0"
    assert calls[0]["send_default_pii"] is False
    observability.reset_observability_for_tests()


def test_capture_exception_is_noop_until_initialized(monkeypatch) -> None:
    observability.reset_observability_for_tests()
    captured = []
    monkeypatch.setattr(observability.sentry_sdk, "capture_exception", captured.append)

    observability.capture_exception(RuntimeError("boom"))
    assert captured == []
