"""
tests/test_cli.py -- Maintenance commands in main.py.

Each command runs against a temp-file SQLite DB passed with --database-url;
SECRET_KEY comes from the environment exactly as in production.
"""

from __future__ import annotations

import os
from datetime import datetime, timedelta, timezone

import pytest

from auth.models import RefreshToken, User
from auth.store import AuthStore
from main import main


@pytest.fixture
def db_url(tmp_path, monkeypatch: pytest.MonkeyPatch) -> str:
    monkeypatch.setenv("SECRET_KEY", "cli-secret-0123456789-abcdefghijklmno")
    monkeypatch.setenv("BCRYPT_COST", "4")
    return f"sqlite:///{tmp_path / 'cli.db'}"


def _seed(db_url: str, verified: bool = False) -> int:
    store = AuthStore(db_url)
    try:
        uid = store.create_user(User(email="a@x.com", password_hash="$2b$04$placeholder", verified=verified))
        now = datetime.now(timezone.utc)
        store.create(RefreshToken(user_id=uid, token="expired", expires_at=now - timedelta(days=1), family_id="f1"))
        store.create(RefreshToken(user_id=uid, token="live", expires_at=now + timedelta(days=1), family_id="f2"))
        return uid
    finally:
        store.close()


class TestCli:
    def test_no_command_prints_help(self, capsys: pytest.CaptureFixture[str]) -> None:
        assert main([]) == 2
        assert "serve" in capsys.readouterr().out

    def test_sweep(self, db_url: str, capsys: pytest.CaptureFixture[str]) -> None:
        _seed(db_url)
        assert main(["--database-url", db_url, "sweep"]) == 0
        assert "Removed 1 expired" in capsys.readouterr().out

        store = AuthStore(db_url)
        try:
            assert store.get_by_token("expired") is None
            assert store.get_by_token("live") is not None
        finally:
            store.close()

    def test_verify(self, db_url: str) -> None:
        uid = _seed(db_url)
        assert main(["--database-url", db_url, "verify", "a@x.com"]) == 0
        store = AuthStore(db_url)
        try:
            assert store.get_by_id(uid).verified is True
        finally:
            store.close()

    def test_verify_unknown_email(self, db_url: str) -> None:
        _seed(db_url)
        assert main(["--database-url", db_url, "verify", "nobody@x.com"]) == 1

    def test_revoke_sessions(self, db_url: str, capsys: pytest.CaptureFixture[str]) -> None:
        uid = _seed(db_url)
        assert main(["--database-url", db_url, "revoke-sessions", "a@x.com"]) == 0
        assert "Revoked 2 session(s)" in capsys.readouterr().out
        store = AuthStore(db_url)
        try:
            assert store.get_by_user_id(uid) == []
        finally:
            store.close()


class TestServe:
    @pytest.fixture
    def runs(self, db_url: str, monkeypatch: pytest.MonkeyPatch) -> list[tuple]:
        import uvicorn

        calls: list[tuple] = []
        monkeypatch.setattr(uvicorn, "run", lambda target, **kwargs: calls.append((target, kwargs)))
        # Restored on teardown, since serve --reload exports the override
        monkeypatch.setenv("DATABASE_URL", "sqlite:///unused.db")
        return calls

    def test_serve_builds_app(self, db_url: str, runs: list[tuple]) -> None:
        assert main(["--database-url", db_url, "serve", "--port", "9000"]) == 0
        (target, kwargs), = runs
        assert not isinstance(target, str)
        assert kwargs["port"] == 9000
        assert kwargs["reload"] is False

    def test_serve_reload_uses_import_string(self, db_url: str, runs: list[tuple]) -> None:
        assert main(["--database-url", db_url, "serve", "--reload"]) == 0
        (target, kwargs), = runs
        assert target == "asgi:app"
        assert kwargs["reload"] is True
        assert os.environ["DATABASE_URL"] == db_url
