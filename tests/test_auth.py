"""Tests for login, logout and stored-session resolution."""

from __future__ import annotations

import pytest

from beauty_shop import auth, core_logic, data_manager, security


def test_login_with_seeded_admin(seeded_context):
    session = auth.login(seeded_context, "admin@beautyshop.com", "admin123")

    assert session is not None
    assert session.user.user_id == "U1"
    assert session.is_admin
    stored = list(data_manager.iter_sessions(seeded_context.workbook))
    assert [row.user_id for row in stored] == ["U1"]


def test_login_email_is_case_insensitive(seeded_context):
    session = auth.login(seeded_context, "  Sarah@BeautyShop.com ", "emp123")

    assert session is not None
    assert session.user.name == "Sarah Johnson"


@pytest.mark.parametrize(
    "identifier, secret",
    [
        ("admin@beautyshop.com", "wrong"),
        ("nobody@beautyshop.com", "admin123"),
        ("admin@beautyshop.com", ""),
    ],
)
def test_login_failure_returns_none(seeded_context, identifier, secret):
    assert auth.login(seeded_context, identifier, secret) is None
    assert auth.current_session(seeded_context) is None


def test_failed_login_keeps_existing_session(seeded_context):
    auth.login(seeded_context, "sarah@beautyshop.com", "emp123")

    assert auth.login(seeded_context, "admin@beautyshop.com", "nope") is None

    assert auth.current_session(seeded_context).user.user_id == "U2"


def test_login_replaces_previous_session(seeded_context):
    auth.login(seeded_context, "sarah@beautyshop.com", "emp123")
    auth.login(seeded_context, "admin@beautyshop.com", "admin123")

    assert len(list(data_manager.iter_sessions(seeded_context.workbook))) == 1
    assert auth.current_session(seeded_context).user.user_id == "U1"


def test_logout_clears_session(seeded_context):
    auth.login(seeded_context, "admin@beautyshop.com", "admin123")

    auth.logout(seeded_context)

    assert auth.current_session(seeded_context) is None


def test_current_session_survives_save_and_reload(seeded_context):
    original = auth.login(seeded_context, "sarah@beautyshop.com", "emp123")
    core_logic.persist_context(seeded_context)

    reloaded = core_logic.refresh_context(seeded_context)
    session = auth.current_session(reloaded)

    assert session is not None
    assert session.user.email == "sarah@beautyshop.com"
    assert session.started_at == original.started_at


def test_current_session_for_deleted_user_is_none(seeded_context, admin_session):
    auth.login(seeded_context, "sarah@beautyshop.com", "emp123")
    core_logic.delete_user(seeded_context, admin_session, "U2")

    assert auth.current_session(seeded_context) is None


def test_current_session_with_bad_timestamp_falls_back(seeded_context):
    data_manager.replace_session(seeded_context.workbook, data_manager.SessionRow("U1", "yesterday"))

    session = auth.current_session(seeded_context)

    assert session is not None
    assert session.started_at.tzinfo is not None


def test_verify_password_handles_malformed_hash():
    assert security.verify_password("admin123", "not-a-bcrypt-hash") is False


def test_hash_password_is_salted():
    assert security.hash_password("same") != security.hash_password("same")


def test_hash_password_uses_configured_work_factor(monkeypatch):
    monkeypatch.setattr(security, "PASSWORD_HASH_ROUNDS", 5)

    hashed = security.hash_password("emp123")

    assert hashed.startswith("$2b$05$")
    assert security.verify_password("emp123", hashed)


def test_verify_password_blank_hash_never_authenticates():
    assert security.verify_password("", "") is False
