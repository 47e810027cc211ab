from datetime import timezone

from tradedash.adapters.api.in_memory import InMemoryDashboardApi
from tradedash.config import build_components, load_settings


def test_defaults_without_file(tmp_path, monkeypatch):
    monkeypatch.delenv("TRADEDASH_API_MODE", raising=False)
    settings = load_settings(tmp_path / "missing.toml")

    assert settings.api.mode == "memory"
    assert settings.api.timeouts.signals == 15.0
    assert settings.api.timeouts.dashboard_state == 180.0
    assert settings.scheduler.fast_floor == 15.0
    assert settings.scheduler.slow_stagger == 2.0
    assert settings.circuit_breaker.max_failures == 5
    assert settings.pnl.volume_tolerance == 0.2
    assert settings.pnl.exclusive_matching is False
    assert settings.watchlist.symbols == []


def test_file_values_are_overridden_by_environment(tmp_path, monkeypatch):
    path = tmp_path / "settings.toml"
    path.write_text(
        "\n".join(
            [
                "[scheduler]",
                "fast_floor = 20",
                "[pnl]",
                "exclusive_matching = true",
                "[watchlist]",
                'symbols = ["btc_usdt", "eth_usdt"]',
                'trade_enabled = ["BTC_USDT"]',
            ]
        )
    )
    monkeypatch.setenv("TRADEDASH_FAST_FLOOR", "30")

    settings = load_settings(path)

    assert settings.scheduler.fast_floor == 30.0
    assert settings.pnl.exclusive_matching is True
    assert settings.watchlist.symbols == ["BTC_USDT", "ETH_USDT"]
    assert settings.watchlist.trade_enabled == ["BTC_USDT"]


def test_build_components_wires_session(tmp_path):
    settings = load_settings(tmp_path / "missing.toml")
    api = InMemoryDashboardApi()

    components = build_components(settings, api=api)

    session = components["session"]
    assert components["api"] is api
    assert session.executors.api is api
    assert session.scheduler.backoff.policy.slow_floor == settings.scheduler.slow_floor
    assert session.tz is timezone.utc
