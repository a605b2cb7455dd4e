"""
Tests for the CLI entry point.
"""
from __future__ import annotations

from pathlib import Path
from unittest.mock import MagicMock, patch

import pytest

import config
import main
from errors import AuthorizationError


@pytest.fixture(autouse=True)
def _env(monkeypatch, tmp_path):
    monkeypatch.chdir(tmp_path)
    monkeypatch.setenv("MANAGED_DOMAINS", "rover.example.com")
    monkeypatch.delenv("CA_PROVIDER", raising=False)
    monkeypatch.delenv("WORK_DIRECTORY", raising=False)
    monkeypatch.delenv("ACME_DIRECTORY_URL", raising=False)


@pytest.fixture()
def controller():
    controller = MagicMock()
    with patch("lifecycle.controller.CertificateLifecycleController.from_settings", return_value=controller), \
            patch("main.signal.signal"):
        yield controller


def test_no_action_prints_help(capsys):
    assert main.main([]) == 1
    assert "--check" in capsys.readouterr().out


def test_check_prints_paths(controller, capsys):
    controller.check_or_refresh.return_value = (Path("/w/rover.example.com.crt"), Path("/w/rover.example.com.key"))

    assert main.main(["--check"]) == 0

    assert capsys.readouterr().out.splitlines() == ["/w/rover.example.com.crt", "/w/rover.example.com.key"]
    _, domains = controller.check_or_refresh.call_args.args
    assert domains == ["rover.example.com"]


def test_check_failure_exits_1(controller):
    controller.check_or_refresh.side_effect = AuthorizationError("rover.example.com", "invalid")
    assert main.main(["--check"]) == 1


def test_domains_and_work_dir_overrides(controller, tmp_path):
    controller.check_or_refresh.return_value = (Path("c"), Path("k"))

    with patch("config.load_settings", wraps=config.load_settings) as load:
        main.main(["--check", "--domains", "a.example.com", "b.example.com", "--work-dir", str(tmp_path)])

    assert load.call_args.kwargs == {"WORK_DIRECTORY": str(tmp_path)}
    assert controller.check_or_refresh.call_args.args[1] == ["a.example.com", "b.example.com"]


def test_invalid_configuration_exits_1(monkeypatch):
    monkeypatch.setenv("CA_PROVIDER", "custom")
    assert main.main(["--check"]) == 1


def test_update_address(controller):
    assert main.main(["--update-address", "203.0.113.7"]) == 0
    assert controller.update_address_record.call_args.args[1] == "203.0.113.7"


def test_update_address_invalid_ip_exits_1(controller):
    controller.update_address_record.side_effect = ValueError("not an IP")
    assert main.main(["--update-address", "nope"]) == 1
