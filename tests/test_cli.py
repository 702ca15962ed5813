import json, sys
import pytest
from ipychan.__main__ import main


def _run(monkeypatch, *argv)->int:
    monkeypatch.setattr(sys, "argv", ["ipychan", *argv])
    with pytest.raises(SystemExit) as exc: main()
    return exc.value.code


def test_monitor_live_kernel(kernel, tmp_path, monkeypatch, capsys):
    path = kernel.write_connection_file(tmp_path / "kernel.json")
    assert _run(monkeypatch, "monitor", "-f", path, "--time-to-dead", "0.2", "--count", "3") == 0
    lines = capsys.readouterr().out.split()
    assert lines == ["beating"] * 3


def test_monitor_dead_kernel(kernel, tmp_path, monkeypatch, capsys):
    kernel.hb_enabled.clear()
    path = kernel.write_connection_file(tmp_path / "kernel.json")
    assert _run(monkeypatch, "monitor", "-f", path, "--time-to-dead", "0.2", "--count", "4") == 1
    assert "dead" in capsys.readouterr().out.split()


def test_info_prints_kernel_info(kernel, tmp_path, monkeypatch, capsys):
    path = kernel.write_connection_file(tmp_path / "kernel.json")
    assert _run(monkeypatch, "info", "-f", path) == 0
    content = json.loads(capsys.readouterr().out)
    assert content["implementation"] == "stub"


def test_usage_without_command(monkeypatch, capsys):
    assert _run(monkeypatch, "bogus") == 2
    assert "usage" in capsys.readouterr().err
