"""Tests for the acmerenew command line."""

from __future__ import annotations

import json
import subprocess
from datetime import UTC, datetime
from pathlib import Path
from unittest.mock import MagicMock, patch

import pytest
import yaml
from conftest import key_pem

from acmerenew.cli.main import main
from acmerenew.core.errors import ChallengeRejectedError, ServiceReloadError
from acmerenew.services.orchestrator import RunOutcome
from acmerenew.services.reload import ServiceReloader

NOT_AFTER = datetime(2026, 6, 1, tzinfo=UTC)


def _result(capsys) -> dict:
    out = capsys.readouterr().out.strip().splitlines()
    return json.loads(out[-1])


class TestParsing:
    def test_version(self, capsys):
        with pytest.raises(SystemExit) as exc_info:
            main(["-c", "x.yaml", "--version"])
        assert exc_info.value.code == 0
        assert "acmerenew" in capsys.readouterr().out

    def test_config_required(self):
        with pytest.raises(SystemExit) as exc_info:
            main([])
        assert exc_info.value.code == 2

    def test_missing_config_file(self, tmp_path, capsys):
        with pytest.raises(SystemExit) as exc_info:
            main(["-c", str(tmp_path / "absent.yaml")])
        assert exc_info.value.code == 1
        assert "configuration file not found" in capsys.readouterr().err


class TestValidateOnly:
    def test_valid(self, tmp_config_file, capsys):
        with pytest.raises(SystemExit) as exc_info:
            main(["-c", str(tmp_config_file), "--validate-only"])
        assert exc_info.value.code == 0
        result = _result(capsys)
        assert result["valid"] is True
        assert result["service_name"] == "www"
        assert result["sans"] == ["example.com", "www.example.com"]

    def test_invalid(self, tmp_path, config_data, capsys):
        config_data["install"]["key_mode"] = "0666"
        path = tmp_path / "bad.yaml"
        path.write_text(yaml.safe_dump(config_data))
        with pytest.raises(SystemExit) as exc_info:
            main(["-c", str(path), "--validate-only"])
        assert exc_info.value.code == 2
        captured = capsys.readouterr()
        assert "key_mode" in captured.err
        result = json.loads(captured.out.strip().splitlines()[-1])
        assert result["changed"] is False
        assert result["error"] == "ConfigValidationError"


class TestRun:
    def test_changed_triggers_reload(self, tmp_config_file, capsys):
        outcome = RunOutcome(
            changed=True, action="issued", reason="renewal forced", not_after=NOT_AFTER
        )
        with (
            patch("acmerenew.cli.commands.run.RenewalService") as service_cls,
            patch("acmerenew.cli.commands.run.ServiceReloader") as reloader_cls,
        ):
            service_cls.return_value.run.return_value = outcome
            reloader_cls.return_value.reload_if_needed.return_value = True
            main(["-c", str(tmp_config_file), "--force"])

        assert service_cls.call_args.kwargs["force"] is True
        reloader_cls.return_value.reload_if_needed.assert_called_once_with(changed=True)
        result = _result(capsys)
        assert result == {
            "action": "issued",
            "changed": True,
            "not_after": NOT_AFTER.isoformat(),
            "reason": "renewal forced",
            "reloaded": True,
        }

    def test_unchanged_skips_reload(self, tmp_config_file, capsys):
        outcome = RunOutcome(changed=False, action="skipped", not_after=NOT_AFTER)
        with (
            patch("acmerenew.cli.commands.run.RenewalService") as service_cls,
            patch("acmerenew.cli.commands.run.ServiceReloader") as reloader_cls,
        ):
            service_cls.return_value.run.return_value = outcome
            reloader_cls.return_value.reload_if_needed.return_value = False
            main(["-c", str(tmp_config_file), "run"])

        assert service_cls.call_args.kwargs["force"] is False
        reloader_cls.return_value.reload_if_needed.assert_called_once_with(changed=False)
        assert _result(capsys)["reloaded"] is False

    def test_no_reload_flag(self, tmp_config_file, capsys):
        outcome = RunOutcome(changed=True, action="issued", not_after=NOT_AFTER)
        with (
            patch("acmerenew.cli.commands.run.RenewalService") as service_cls,
            patch("acmerenew.cli.commands.run.ServiceReloader") as reloader_cls,
        ):
            service_cls.return_value.run.return_value = outcome
            main(["-c", str(tmp_config_file), "run", "--force", "--no-reload"])

        assert service_cls.call_args.kwargs["force"] is True
        reloader_cls.assert_not_called()
        assert _result(capsys)["changed"] is True

    def test_failure_exit_code(self, tmp_config_file, capsys):
        error = ChallengeRejectedError(
            "CA rejected authorization for www.example.com",
            stage="validate",
            identifier="www.example.com",
        )
        with patch("acmerenew.cli.commands.run.RenewalService") as service_cls:
            service_cls.return_value.run.side_effect = error
            with pytest.raises(SystemExit) as exc_info:
                main(["-c", str(tmp_config_file)])

        assert exc_info.value.code == 7
        captured = capsys.readouterr()
        assert "ChallengeRejectedError stage=validate identifier=www.example.com" in captured.err
        result = json.loads(captured.out.strip().splitlines()[-1])
        assert result["changed"] is False
        assert result["identifier"] == "www.example.com"

    def test_reload_failure_exit_code(self, tmp_config_file):
        outcome = RunOutcome(changed=True, action="issued", not_after=NOT_AFTER)
        with (
            patch("acmerenew.cli.commands.run.RenewalService") as service_cls,
            patch("acmerenew.cli.commands.run.ServiceReloader") as reloader_cls,
        ):
            service_cls.return_value.run.return_value = outcome
            reloader_cls.return_value.reload_if_needed.side_effect = ServiceReloadError(
                "reload failed", stage="reload"
            )
            with pytest.raises(SystemExit) as exc_info:
                main(["-c", str(tmp_config_file)])
        assert exc_info.value.code == 13


def _write_config(tmp_path, data) -> Path:
    path = tmp_path / "run.yaml"
    path.write_text(yaml.safe_dump(data))
    return path


class TestPendingReload:
    def test_failed_reload_is_retried_on_next_run(self, tmp_path, config_data, capsys):
        config_data["reload"] = {"service": "nginx"}
        config_path = _write_config(tmp_path, config_data)
        certs = Path(config_data["install"]["dir"])
        certs.mkdir(parents=True, exist_ok=True)
        runner = MagicMock(
            side_effect=[
                subprocess.CalledProcessError(1, ["systemctl"], stderr="nginx: bad config"),
                subprocess.CompletedProcess(["systemctl"], 0),
            ]
        )

        def reloader(settings, **kwargs):
            return ServiceReloader(settings, runner=runner, **kwargs)

        issued = RunOutcome(changed=True, action="issued", not_after=NOT_AFTER)
        skipped = RunOutcome(changed=False, action="skipped", not_after=NOT_AFTER)
        with (
            patch("acmerenew.cli.commands.run.RenewalService") as service_cls,
            patch("acmerenew.cli.commands.run.ServiceReloader", side_effect=reloader),
        ):
            service_cls.return_value.run.side_effect = [issued, skipped]

            with pytest.raises(SystemExit) as exc_info:
                main(["-c", str(config_path)])
            assert exc_info.value.code == 13
            first = _result(capsys)
            assert first["changed"] is False
            assert first["installed"] is True
            assert first["reload_pending"] is True
            assert (certs / ".www.reload-pending").exists()

            main(["-c", str(config_path)])
            second = _result(capsys)

        assert second["action"] == "skipped"
        assert second["changed"] is False
        assert second["reloaded"] is True
        assert runner.call_count == 2
        assert not (certs / ".www.reload-pending").exists()

    def test_no_marker_means_no_reload_when_skipped(self, tmp_path, config_data, capsys):
        config_data["reload"] = {"service": "nginx"}
        config_path = _write_config(tmp_path, config_data)
        runner = MagicMock()

        def reloader(settings, **kwargs):
            return ServiceReloader(settings, runner=runner, **kwargs)

        skipped = RunOutcome(changed=False, action="skipped", not_after=NOT_AFTER)
        with (
            patch("acmerenew.cli.commands.run.RenewalService") as service_cls,
            patch("acmerenew.cli.commands.run.ServiceReloader", side_effect=reloader),
        ):
            service_cls.return_value.run.return_value = skipped
            main(["-c", str(config_path)])

        assert _result(capsys)["reloaded"] is False
        runner.assert_not_called()


class TestTrustBootstrap:
    def test_skipped_run_does_not_fetch_root(
        self, tmp_path, config_data, cert_factory, capsys
    ):
        config_data["trust"] = {"root_url": "https://ca.test/roots/0"}
        config_path = _write_config(tmp_path, config_data)
        certs = Path(config_data["install"]["dir"])
        _path, key = cert_factory(
            ["example.com", "www.example.com"], days=60, path=certs / "www.crt"
        )
        (certs / "www.key").write_bytes(key_pem(key))

        with patch("acmerenew.cli.commands.run.TrustBootstrapper") as trust_cls:
            main(["-c", str(config_path)])
            main(["-c", str(config_path)])

        trust_cls.return_value.bootstrap.assert_not_called()
        assert _result(capsys)["action"] == "skipped"

    def test_bootstrap_is_handed_to_the_renewal(self, tmp_config_file):
        outcome = RunOutcome(changed=False, action="skipped", not_after=NOT_AFTER)
        with (
            patch("acmerenew.cli.commands.run.RenewalService") as service_cls,
            patch("acmerenew.cli.commands.run.TrustBootstrapper") as trust_cls,
        ):
            service_cls.return_value.run.return_value = outcome
            main(["-c", str(tmp_config_file)])

        assert service_cls.call_args.kwargs["before_issue"] == trust_cls.return_value.bootstrap
        trust_cls.return_value.bootstrap.assert_not_called()


class TestCheckAndInspect:
    def test_check_without_certificate(self, tmp_config_file, capsys):
        main(["-c", str(tmp_config_file), "check"])
        result = _result(capsys)
        assert result == {"renew": True, "reason": "no existing certificate", "not_after": None}

    def test_check_fresh_certificate(self, tmp_config_file, config_data, cert_factory, capsys):
        certs = Path(config_data["install"]["dir"])
        _path, key = cert_factory(
            ["example.com", "www.example.com"], days=60, path=certs / "www.crt"
        )
        (certs / "www.key").write_bytes(key_pem(key))

        main(["-c", str(tmp_config_file), "check"])
        result = _result(capsys)
        assert result["renew"] is False
        assert result["reason"] is None

    def test_inspect_not_installed(self, tmp_config_file, config_data, capsys):
        main(["-c", str(tmp_config_file), "inspect"])
        result = _result(capsys)
        assert result["installed"] is False
        assert result["path"].endswith("www.crt")

    def test_inspect_installed(self, tmp_config_file, config_data, cert_factory, capsys):
        certs = Path(config_data["install"]["dir"])
        cert_factory(["example.com", "www.example.com"], days=60, path=certs / "www.crt")

        main(["-c", str(tmp_config_file), "inspect"])
        result = _result(capsys)
        assert result["installed"] is True
        assert result["sans"] == ["example.com", "www.example.com"]
        assert result["key_matches"] is None
