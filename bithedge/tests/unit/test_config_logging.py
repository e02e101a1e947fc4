"""
BitHedge — Unit Tests for Configuration and Logging
"""
import pytest
import structlog

from bithedge.config.settings import get_settings, reload_settings
from bithedge.utils.helpers import from_fixed_point, to_fixed_point
from bithedge.utils.logger import bind_cycle, clear_cycle, get_logger, setup_logging


class TestSettings:
    def test_defaults(self):
        settings = get_settings()
        assert settings.publisher.deviation_threshold == 0.01
        assert settings.publisher.max_staleness_seconds == 86400
        assert settings.pricing.allowed_durations == [30, 90, 180, 360]
        assert set(settings.pricing.risk_tiers) == {"conservative", "balanced", "aggressive"}

    def test_environment_override_on_reload(self, monkeypatch):
        monkeypatch.setenv("PUBLISH_DEVIATION_THRESHOLD", "0.02")
        monkeypatch.setenv("PRICING_ALLOWED_DURATIONS", "[7, 30]")
        reload_settings()
        settings = get_settings()
        assert settings.publisher.deviation_threshold == 0.02
        assert settings.pricing.allowed_durations == [7, 30]


class TestFixedPointHelpers:
    @pytest.mark.parametrize("value, expected", [
        (94260.12, 9426012000000),
        (0.1, 10000000),
        (1e-9, 0),
        (0.000000005, 1),
    ])
    def test_to_fixed_point(self, value, expected):
        assert to_fixed_point(value, 8) == expected

    def test_from_fixed_point(self):
        assert from_fixed_point(9426012000000, 8) == pytest.approx(94260.12)


class TestLogging:
    def test_cycle_context(self):
        setup_logging(json_logs=True)
        bind_cycle("BTC/USD", 7)
        try:
            assert structlog.contextvars.get_contextvars() == {"asset": "BTC/USD", "cycle": 7}
        finally:
            clear_cycle()
        assert structlog.contextvars.get_contextvars() == {}

    def test_named_logger_emits(self):
        with structlog.testing.capture_logs() as logs:
            get_logger("test").info("aggregation_completed", price=94260.0)
        assert logs[0]["event"] == "aggregation_completed"
        assert logs[0]["price"] == 94260.0


class TestEntryPoint:
    def test_runs_app_with_structlog_owned_logging(self, monkeypatch):
        import main
        from bithedge.api.app import app

        calls = {}
        monkeypatch.setattr(main.uvicorn, "run", lambda target, **kwargs: calls.update(target=target, **kwargs))
        main.main()

        assert calls["target"] is app
        assert calls["log_config"] is None
        assert calls["port"] == get_settings().port
