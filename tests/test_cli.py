"""
tests/test_cli.py -- Member directory management commands in main.py.
"""

from __future__ import annotations

import pytest

from auth.models import MemberStatus, Role
from auth.store import AuthStore
from main import main


@pytest.fixture
def db_url(tmp_path) -> str:
    return f"sqlite:///{tmp_path / 'cli.db'}"


def _store(db_url: str) -> AuthStore:
    return AuthStore(db_url)


class TestAddMember:
    def test_adds_normalized_member(self, db_url: str, capsys: pytest.CaptureFixture) -> None:
        main(["--db", db_url, "add-member", "Admin@Example.com", "--name", "Admin", "--role", "admin"])
        assert "Added admin@example.com (admin)" in capsys.readouterr().out

        store = _store(db_url)
        member = store.get_by_email("admin@example.com")
        store.close()
        assert member.role is Role.admin
        assert member.display_name == "Admin"

    def test_duplicate_reported(self, db_url: str, capsys: pytest.CaptureFixture) -> None:
        main(["--db", db_url, "add-member", "a@example.com", "--name", "A"])
        main(["--db", db_url, "add-member", "a@example.com", "--name", "A"])
        assert "already a member" in capsys.readouterr().out


class TestImportMembers:
    def test_imports_valid_rows(self, db_url: str, tmp_path, capsys: pytest.CaptureFixture) -> None:
        csv_file = tmp_path / "members.csv"
        csv_file.write_text(
            "# email,role,display_name\n"
            "a@example.com,alumnus,Alice\n"
            "\n"
            "b@example.com,wizard,Bob\n"
            "c@example.com,current\n"
            "d@example.com,current,Dan\n"
        )
        main(["--db", db_url, "import-members", "--file", str(csv_file)])
        out = capsys.readouterr().out
        assert "unknown role 'wizard'" in out
        assert "2 of 2 member(s) added" in out

        store = _store(db_url)
        emails = [m.email for m in store.list_members()]
        store.close()
        assert emails == ["a@example.com", "d@example.com"]

    def test_missing_file(self, db_url: str, tmp_path, capsys: pytest.CaptureFixture) -> None:
        main(["--db", db_url, "import-members", "--file", str(tmp_path / "nope.csv")])
        assert "is not a readable file" in capsys.readouterr().out


class TestListAndStatus:
    def test_list_empty(self, db_url: str, capsys: pytest.CaptureFixture) -> None:
        main(["--db", db_url, "list-members"])
        assert "No members yet" in capsys.readouterr().out

    def test_set_status(self, db_url: str, capsys: pytest.CaptureFixture) -> None:
        main(["--db", db_url, "add-member", "a@example.com", "--name", "A"])
        main(["--db", db_url, "set-status", "a@example.com", "suspended"])
        main(["--db", db_url, "list-members"])
        out = capsys.readouterr().out
        assert "a@example.com is now suspended" in out
        assert "suspended" in out.splitlines()[-1]

        store = _store(db_url)
        assert store.get_by_email("a@example.com").status is MemberStatus.suspended
        store.close()

    def test_set_status_unknown_member(self, db_url: str, capsys: pytest.CaptureFixture) -> None:
        main(["--db", db_url, "set-status", "ghost@example.com", "inactive"])
        assert "No member with email" in capsys.readouterr().out
