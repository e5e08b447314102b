"""Smoke tests for the command-line scripts."""

import json
import logging
import runpy
import sys
from pathlib import Path

import pytest

SCRIPTS = Path(__file__).resolve().parent.parent / "scripts"


def run_script(name, argv, monkeypatch):
    monkeypatch.setattr(sys, "argv", [name, *argv])
    with pytest.raises(SystemExit) as exc:
        runpy.run_path(str(SCRIPTS / name), run_name="__main__")
    return exc.value.code


class TestConfigWarnings:
    def test_sync_stats_warns_on_bad_config(self, monkeypatch, tmp_path, caplog, capsys):
        monkeypatch.setenv("ENTITY_GRAPH_BATCH_SIZE", "0")
        with caplog.at_level(logging.WARNING):
            code = run_script("sync_entities.py", ["--db", str(tmp_path / "g.sqlite"), "stats"],
                              monkeypatch)
        assert code == 0
        assert "Config validation warnings" in caplog.text
        assert "ENTITY_GRAPH_BATCH_SIZE" in caplog.text
        assert json.loads(capsys.readouterr().out)["entities"] == 0

    def test_sync_stats_quiet_on_good_config(self, monkeypatch, tmp_path, caplog):
        with caplog.at_level(logging.WARNING):
            code = run_script("sync_entities.py", ["--db", str(tmp_path / "g.sqlite"), "stats"],
                              monkeypatch)
        assert code == 0
        assert "Config validation warnings" not in caplog.text

    def test_entity_context_warns_on_bad_config(self, monkeypatch, tmp_path, caplog):
        with caplog.at_level(logging.WARNING):
            code = run_script("entity_context.py",
                              ["--db", str(tmp_path / "g.sqlite"), "--mentions", "-1", "Jennifer"],
                              monkeypatch)
        assert code == 1
        assert "ENTITY_GRAPH_CONTEXT_MENTIONS" in caplog.text
