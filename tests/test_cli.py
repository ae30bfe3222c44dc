"""
tests/test_cli.py -- Tests for the authsquared management CLI (main.py).

The CLI is pointed at a throwaway SQLite file by patching get_settings, and
the password comes from AUTHSQUARED_PASSWORD so nothing prompts.
"""

from __future__ import annotations

import argparse
from types import SimpleNamespace
from unittest.mock import patch

import pytest

import main
from auth.models import AccountStatus, Role
from auth.store import AccountStore
from auth.transactions import unit_of_work

ARGS = [
    "create-account",
    "--email", "Owner@Example.com",
    "--username", "owner",
    "--first-name", "Ada",
    "--last-name", "Lovelace",
    "--phone", "2065550100",
]


@pytest.fixture
def db_url(tmp_path) -> str:
    return f"sqlite:///{tmp_path / 'cli.db'}"


def _run(db_url: str, argv: list[str]) -> int:
    settings = SimpleNamespace(database_url=db_url, db_timeout_seconds=5.0)
    with patch("main.get_settings", return_value=settings):
        return main.main(argv)


class TestParseRole:
    @pytest.mark.parametrize(
        "value, expected",
        [("5", Role.OWNER), ("1", Role.USER), ("admin", Role.ADMIN), ("SuperAdmin", Role.SUPER_ADMIN), ("super_admin", Role.SUPER_ADMIN)],
    )
    def test_accepts_numbers_and_names(self, value: str, expected: Role) -> None:
        assert main._parse_role(value) is expected

    @pytest.mark.parametrize("value", ["0", "6", "root"])
    def test_rejects_unknown(self, value: str) -> None:
        with pytest.raises(argparse.ArgumentTypeError):
            main._parse_role(value)


class TestCreateAccount:
    def test_creates_active_owner(self, db_url: str, monkeypatch, capsys) -> None:
        monkeypatch.setenv("AUTHSQUARED_PASSWORD", "bootstrap-secret")
        assert _run(db_url, ARGS) == 0
        assert "Owner" in capsys.readouterr().out

        store = AccountStore(db_url)
        try:
            with unit_of_work(store.engine) as conn:
                account = store.get_account_by_email(conn, "owner@example.com")
        finally:
            store.close()
        assert account.role is Role.OWNER
        assert account.status is AccountStatus.ACTIVE

    def test_duplicate_fails(self, db_url: str, monkeypatch) -> None:
        monkeypatch.setenv("AUTHSQUARED_PASSWORD", "bootstrap-secret")
        assert _run(db_url, ARGS) == 0
        assert _run(db_url, ARGS) == 1

    def test_short_password_refused(self, db_url: str, monkeypatch) -> None:
        monkeypatch.setenv("AUTHSQUARED_PASSWORD", "short")
        assert _run(db_url, ARGS) == 1

    def test_roles_listing(self, capsys) -> None:
        assert main.main(["roles"]) == 0
        out = capsys.readouterr().out
        assert "1  User" in out
        assert "5  Owner" in out
