"""Login, logout and session resolution.

The logged-in user is stored on the workbook's ``Session`` sheet so the CLI
remembers who is signed in between invocations, but business operations never
read that sheet themselves: callers resolve a :class:`core_logic.Session` here
and pass it explicitly to every mutating operation.
"""

from __future__ import annotations

from datetime import UTC, datetime
from typing import Optional

from . import core_logic, data_manager, log, security


def login(context: core_logic.RuntimeContext, identifier: str, secret: str) -> Optional[core_logic.Session]:
    """Authenticate ``identifier`` (an email) with ``secret``.

    A successful login replaces whatever session was stored before. A failed
    login leaves the stored session untouched.

    Returns:
        Session | None: The new session, or ``None`` when the credentials do
            not match any account.
    """
    user = core_logic.find_user_by_email(context, identifier)
    if user is None or not security.verify_password(secret, user.password_hash):
        log.warning("Failed login attempt for '%s'", identifier)
        return None

    started_at = datetime.now(UTC)
    data_manager.replace_session(
        context.workbook,
        data_manager.SessionRow(user_id=user.user_id, started_at=started_at.isoformat()),
    )
    log.info("User '%s' logged in", user.user_id)
    return core_logic.Session(user=user, started_at=started_at)


def logout(context: core_logic.RuntimeContext) -> None:
    """Forget the stored session."""
    data_manager.replace_session(context.workbook, None)
    log.info("Session cleared")


def current_session(context: core_logic.RuntimeContext) -> Optional[core_logic.Session]:
    """Return the stored session, or ``None`` when nobody is logged in.

    A stored session whose user has since been deleted resolves to ``None``.
    """
    stored = next(iter(data_manager.iter_sessions(context.workbook)), None)
    if stored is None:
        return None
    try:
        user = core_logic.get_user(context, stored.user_id)
    except core_logic.MissingReferenceError:
        log.warning("Stored session references unknown user '%s'", stored.user_id)
        return None
    return core_logic.Session(user=user, started_at=_parse_timestamp(stored.started_at))


def _parse_timestamp(value: str) -> datetime:
    try:
        return datetime.fromisoformat(value)
    except ValueError:
        log.warning("Stored session has an unreadable start time: %r", value)
        return datetime.now(UTC)
