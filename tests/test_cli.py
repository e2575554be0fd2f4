from unittest import mock

import pytest
import requests

from hlexporter.cli import build_parser, main


@pytest.fixture
def isolated(tmp_path, monkeypatch):
    monkeypatch.chdir(tmp_path)
    monkeypatch.setenv("HOME", str(tmp_path))
    monkeypatch.setenv("NODE_HOME", str(tmp_path / "hl"))
    return tmp_path


def test_parser_defaults():
    options = build_parser().parse_args([])
    assert options.log_level == "info"
    assert options.enable_prom is True
    assert options.disable_prom is False
    assert options.enable_otlp is False
    assert options.otlp_endpoint == "otel.hyperliquid.validao.xyz"
    assert options.chain == ""


def test_parser_boolean_forms():
    options = build_parser().parse_args(
        ["--enable-prom=false", "--enable-otlp", "--chain", "Mainnet", "--alias", "node-a"]
    )
    assert options.enable_prom is False
    assert options.enable_otlp is True
    assert options.chain == "Mainnet"
    assert options.alias == "node-a"


def test_parser_rejects_bad_boolean():
    with pytest.raises(SystemExit) as excinfo:
        build_parser().parse_args(["--enable-prom=maybe"])
    assert excinfo.value.code == 2


def test_main_without_command_prints_usage(capsys):
    assert main([]) == 1
    assert "Usage: hl_exporter <command> [options]" in capsys.readouterr().out


def test_main_unknown_command(capsys):
    assert main(["stop"]) == 1
    assert '"stop" is not a valid command.' in capsys.readouterr().out


def test_main_invalid_log_level(capsys):
    assert main(["start", "--log-level", "loud"]) == 1
    assert "Error setting log level: invalid log level: loud" in capsys.readouterr().out


def test_main_invalid_chain(isolated, capsys):
    assert main(["start", "--chain", "devnet"]) == 1
    assert "--chain flag must be either 'mainnet' or 'testnet'" in capsys.readouterr().err


def test_main_otlp_requires_alias(isolated, capsys):
    assert main(["start", "--enable-otlp", "--chain", "mainnet"]) == 1
    assert "--alias flag is required when OTLP is enabled" in capsys.readouterr().err


def test_main_otlp_requires_chain(isolated, capsys):
    assert main(["start", "--enable-otlp", "--alias", "node-a"]) == 1
    assert "--chain flag is required when OTLP is enabled" in capsys.readouterr().err


@mock.patch("requests.get", side_effect=requests.ConnectionError("offline"))
def test_main_fails_when_metrics_cannot_start(_get, isolated, capsys):
    assert main(["start", "--disable-prom"]) == 1
    assert "Failed to initialize metrics" in capsys.readouterr().err