"""Shared fixtures for CLI tests.

Every test gets its own SQLite state database under ``tmp_path`` and a clean
set of ``TRIGGER_*`` environment variables, and runs from ``tmp_path`` so no
stray ``.env`` file is picked up.
"""

from __future__ import annotations

import json
import os

import pytest


@pytest.fixture(autouse=True)
def _isolated_env(tmp_path, monkeypatch):
    for key in list(os.environ):
        if key.startswith("TRIGGER_"):
            monkeypatch.delenv(key)
    monkeypatch.chdir(tmp_path)


@pytest.fixture
def database_url(tmp_path) -> str:
    return f"sqlite+aiosqlite:///{tmp_path / 'state.db'}"


@pytest.fixture
def definition_file(tmp_path):
    """A trigger definition JSON file as written by a definition front end."""
    path = tmp_path / "audit_users.json"
    path.write_text(
        json.dumps(
            {
                "name": "audit_users",
                "table_name": "users",
                "function_name": "audit_users_fn",
                "events": ["insert", "update"],
                "version": 1,
                "enabled": False,
                "timing": "after",
                "function_body": (
                    "CREATE OR REPLACE FUNCTION audit_users_fn() RETURNS trigger AS $$\n"
                    "BEGIN\n"
                    "  INSERT INTO users_audit(user_id) VALUES (NEW.id);\n"
                    "  RETURN NEW;\n"
                    "END;\n"
                    "$$ LANGUAGE plpgsql;"
                ),
            }
        )
    )
    return path
