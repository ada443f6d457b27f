import json

import pytest

import run_pipeline
from market_movers.core.errors import InsufficientData, MalformedInput
from market_movers.models.datatypes import ScanResult, Session


@pytest.fixture
def config_file(tmp_path):
    path = tmp_path / "config.yaml"
    path.write_text("scanner:\n  min_change_pct: 6\n", encoding="utf-8")
    return str(path)


class _Scanner:
    def __init__(self):
        self.calls = []

    def scan(self, threshold, session=None):
        self.calls.append((threshold, session))
        return ScanResult(session=Session.PRE, quotes=(), source=None, scanned_at=1.0, threshold=threshold)


def test_scan_prints_json_and_uses_config_threshold(monkeypatch, capsys, config_file):
    scanner = _Scanner()
    monkeypatch.setattr(run_pipeline, "default_scanner", lambda settings: scanner)

    code = run_pipeline.main(["--config", config_file, "scan", "--session", "pre"])

    assert code == 0
    assert scanner.calls == [(6.0, "pre")]
    payload = json.loads(capsys.readouterr().out)
    assert payload["session"] == "pre"
    assert payload["source"] is None
    assert payload["stocks"] == []


def test_scan_min_pct_flag_wins(monkeypatch, config_file):
    scanner = _Scanner()
    monkeypatch.setattr(run_pipeline, "default_scanner", lambda settings: scanner)

    assert run_pipeline.main(["--config", config_file, "scan", "--min-pct", "3.5"]) == 0
    assert scanner.calls == [(3.5, None)]


def test_client_error_maps_to_exit_1(monkeypatch, capsys, config_file):
    class _Lookup:
        def get(self, symbol):
            raise MalformedInput(f"invalid symbol '{symbol}'")

    monkeypatch.setattr(run_pipeline, "default_quote_lookup", lambda settings: _Lookup())

    code = run_pipeline.main(["--config", config_file, "quote", "??"])

    captured = capsys.readouterr()
    assert code == 1
    assert captured.out == ""
    assert json.loads(captured.err) == {"error": "invalid symbol '??'", "status": 400, "kind": "client"}


def test_insufficient_data_maps_to_422(monkeypatch, capsys, config_file):
    class _Service:
        def fetch_for_backtest(self, symbol, timeframe):
            raise InsufficientData("Not enough candle data for backtest")

    monkeypatch.setattr(run_pipeline, "default_candle_service", lambda settings: _Service())

    code = run_pipeline.main(["--config", config_file, "candles", "AAPL", "--timeframe", "1D", "--backtest"])

    assert code == 1
    assert json.loads(capsys.readouterr().err)["status"] == 422


def test_unexpected_failure_maps_to_exit_2_without_trace(monkeypatch, capsys, config_file):
    def explode(settings):
        raise RuntimeError("secret internals")

    monkeypatch.setattr(run_pipeline, "default_news_aggregator", explode)

    code = run_pipeline.main(["--config", config_file, "news", "AAPL"])

    captured = capsys.readouterr()
    assert code == 2
    assert captured.out == ""
    assert "secret internals" not in captured.err


def test_missing_config_exits_1(tmp_path, capsys):
    code = run_pipeline.main(["--config", str(tmp_path / "missing.yaml"), "market-news"])
    assert code == 1
    assert "not found" in capsys.readouterr().err


def test_candles_help_lists_chart_and_backtest_timeframes(capsys):
    with pytest.raises(SystemExit):
        run_pipeline.build_parser().parse_args(["candles", "--help"])
    text = " ".join(capsys.readouterr().out.split())

    assert "Chart: 1m, 5m, 15m, 30m, 1h, 4h, 1D" in text
    assert "with --backtest: 1h, 4h, 1D, 1W, 1M" in text
