"""
Demo Runner Smoke Test
======================
End-to-end run on synthetic data with JSON export and a strategy store.
"""
import json
import sys

import run_demo


class TestDemo:

    def test_end_to_end(self, tmp_path, monkeypatch, capsys):
        output = tmp_path / "result.json"
        store = tmp_path / "strategies.json"
        monkeypatch.setattr(sys, "argv", [
            "run_demo.py", "--bars", "150", "--monte-carlo", "50",
            "--output", str(output), "--store", str(store),
        ])

        assert run_demo.main() == 0
        assert "BACKTEST PERFORMANCE REPORT" in capsys.readouterr().out

        payload = json.loads(output.read_text())
        assert payload["strategy"]["type"] == "sma-cross"
        assert len(payload["backtest"]["equityCurve"]) == 150
        assert len(json.loads(store.read_text())["strategies"]) == 1

    def test_missing_csv_fails(self, tmp_path, monkeypatch):
        monkeypatch.setattr(sys, "argv", ["run_demo.py", "--csv", str(tmp_path / "nope")])
        assert run_demo.main() == 1
