"""Tests for the certbind command-line entry point and subcommands."""

from __future__ import annotations

from datetime import UTC, datetime, timedelta
from unittest.mock import MagicMock, patch

import pytest
import yaml

from certbind.api.auth import verify_trigger_token
from certbind.cli.main import main
from certbind.core.errors import RegistryError
from tests.services.conftest import certificate, domain, issued


def _exit_code(argv) -> int:
    with pytest.raises(SystemExit) as exc_info:
        main(argv)
    return exc_info.value.code


@pytest.fixture()
def patched_container(container):
    with (
        patch("certbind.app.context.build_container", return_value=container),
        patch.object(container.shutdown, "register_signals"),
    ):
        yield container


@pytest.fixture()
def db_config_file(tmp_path, minimal_config_data):
    """Config with the database challenge store; database setup is patched out."""
    data = dict(
        minimal_config_data,
        challenges={"store": {"backend": "database"}},
        database={"database": "certbind"},
    )
    path = tmp_path / "db-config.yaml"
    path.write_text(yaml.safe_dump(data), encoding="utf-8")
    with patch("certbind.cli.main._init_database", return_value=MagicMock()):
        yield path


class TestStartup:
    def test_missing_config(self, tmp_path, capsys):
        assert _exit_code(["-c", str(tmp_path / "absent.yaml"), "run"]) == 1
        assert "configuration file not found" in capsys.readouterr().err

    def test_invalid_config(self, tmp_path, capsys):
        path = tmp_path / "config.yaml"
        path.write_text("renewal:\n  renew_before_days: -1\n", encoding="utf-8")
        assert _exit_code(["-c", str(path), "--validate-only"]) == 1
        assert "renewal.renew_before_days" in capsys.readouterr().err

    def test_validate_only(self, tmp_config_file, capsys):
        assert _exit_code(["-c", str(tmp_config_file), "--validate-only"]) == 0
        out = capsys.readouterr().out
        assert out.startswith("certbind ")
        assert "registry:        appengine (demo-project)" in out

    def test_version(self, capsys):
        assert _exit_code(["--version"]) == 0
        assert capsys.readouterr().out.startswith("certbind ")


class TestRun:
    def test_success(
        self, db_config_file, patched_container, fake_registry, fake_issuer, capsys
    ):
        fake_registry.domains = [domain("b.example")]
        fake_issuer.obtain_certificate.return_value = issued("b.example")
        assert _exit_code(["-c", str(db_config_file), "run"]) == 0
        out = capsys.readouterr().out
        assert "created and bound certificate 101" in out
        assert fake_registry.bound == [("b.example", "101")]

    def test_failure_exit_code(
        self, db_config_file, patched_container, fake_registry, fake_issuer
    ):
        fake_registry.domains = [domain("b.example")]
        fake_issuer.obtain_certificate.side_effect = RegistryError("boom", operation="x")
        assert _exit_code(["-c", str(db_config_file), "run"]) == 1

    def test_refused_with_memory_store(
        self, tmp_config_file, patched_container, fake_registry, fake_issuer, capsys
    ):
        fake_registry.domains = [domain("b.example")]
        assert _exit_code(["-c", str(tmp_config_file), "run"]) == 1
        assert "challenges.store.backend 'database'" in capsys.readouterr().err
        fake_issuer.obtain_certificate.assert_not_called()
        assert fake_registry.created == []

    def test_listing_failure(self, db_config_file, patched_container, fake_registry, capsys):
        fake_registry.fail["list_certificates"] = RegistryError(
            "Google App Engine Admin API has not been used in project demo-project",
            operation="list_certificates",
        )
        assert _exit_code(["-c", str(db_config_file), "run"]) == 1
        err = capsys.readouterr().err
        assert "Tip: enable Google App Engine Admin API" in err
        assert "?project=demo-project" in err


class TestPlan:
    def test_plan_lists_actions(
        self, tmp_config_file, patched_container, fake_registry, fake_issuer, capsys
    ):
        soon = datetime.now(UTC) + timedelta(days=5)
        later = datetime.now(UTC) + timedelta(days=80)
        fake_registry.domains = [domain("a.example", "42"), domain("b.example")]
        fake_registry.certificates = [
            certificate("42", "a.example", soon),
            certificate("43", "c.example", later),
        ]
        assert _exit_code(["-c", str(tmp_config_file), "plan"]) == 0
        out = capsys.readouterr().out
        assert "Custom domains (2):" in out
        assert "  issue  b.example" in out
        assert "  renew  a.example  id=42" in out
        assert "  keep   c.example  id=43" in out
        assert "1 to issue, 1 to renew, 2 up to date" in out
        fake_issuer.obtain_certificate.assert_not_called()
        assert fake_registry.created == []


class TestToken:
    def test_token_printed(self, tmp_config_file, minimal_config_data, capsys):
        assert _exit_code(["-c", str(tmp_config_file), "token"]) == 0
        captured = capsys.readouterr()
        token = captured.out.strip()
        secret = minimal_config_data["trigger"]["token_secret"]
        assert verify_trigger_token(token, secret, max_age=60)
        assert "Authorization: Bearer <token>" in captured.err

    def test_no_secret(self, tmp_path, capsys):
        path = tmp_path / "config.yaml"
        path.write_text(
            "registry:\n  app_id: demo-project\n  access_token: t\n",
            encoding="utf-8",
        )
        assert _exit_code(["-c", str(path), "token"]) == 1
        assert "token_secret is not configured" in capsys.readouterr().err


class TestServe:
    def test_gunicorn(self, tmp_config_file):
        app = MagicMock()
        with (
            patch("certbind.app.create_app", return_value=app) as create_app,
            patch("certbind.server.gunicorn_app.run_gunicorn") as run_gunicorn,
        ):
            main(["-c", str(tmp_config_file)])
        create_app.assert_called_once()
        run_gunicorn.assert_called_once()
        assert run_gunicorn.call_args.args[0] is app

    def test_dev_server(self, tmp_config_file):
        app = MagicMock()
        with patch("certbind.app.create_app", return_value=app):
            main(["-c", str(tmp_config_file), "serve", "--dev"])
        kwargs = app.run.call_args.kwargs
        assert kwargs["debug"] is True
        assert kwargs["use_reloader"] is False
        assert kwargs["port"] == 8080

    def test_gunicorn_unavailable(self, tmp_config_file, capsys):
        with (
            patch("certbind.app.create_app", return_value=MagicMock()),
            patch(
                "certbind.server.gunicorn_app.run_gunicorn",
                side_effect=RuntimeError("gunicorn is not installed"),
            ),
        ):
            assert _exit_code(["-c", str(tmp_config_file)]) == 1
        assert "gunicorn is not installed" in capsys.readouterr().err
