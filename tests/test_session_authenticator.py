"""
tests/test_session_authenticator.py -- Unit tests for SessionAuthenticator (web channel).

Covers:
  - Login creates exactly one session and a fresh CSRF token
  - A session id presented before login is destroyed (fixation)
  - Gated accounts get no session
  - current_user rejects unknown, expired, and no-longer-active sessions
  - logout destroys the session and returns a new anonymous CSRF token
  - verify_csrf double-submit rules
"""

from __future__ import annotations

from datetime import datetime, timedelta, timezone

import pytest

from auth.authenticators import SessionAuthenticator
from auth.errors import AccountGated, CsrfMismatch, Unauthenticated
from auth.gateway import AuthGateway
from auth.store import UserStore, _sessions
from auth.tokens import hash_secret

PASSWORD = "secret123"


@pytest.fixture()
def sessions(gateway: AuthGateway) -> SessionAuthenticator:
    return gateway.sessions


class TestLogin:
    def test_login_creates_one_session(self, sessions: SessionAuthenticator, make_user, store: UserStore) -> None:
        user = make_user("ana@x.com")
        _, web = sessions.login("ana@x.com", PASSWORD, ip_address="10.0.0.1", user_agent="pytest")
        assert web.session_id and web.csrf_token
        assert web.max_age > 0
        assert store.count_sessions_for_user(user.id) == 1
        record = store.get_session(hash_secret(web.session_id))
        assert record.csrf_token == web.csrf_token
        assert record.ip_address == "10.0.0.1"

    def test_register_signs_in(self, sessions: SessionAuthenticator, store: UserStore) -> None:
        user, web = sessions.register("Ana", "ana@x.com", PASSWORD, PASSWORD, role="admin")
        assert sessions.current_user(web.session_id)[0].id == user.id
        assert store.count_sessions_for_user(user.id) == 1

    def test_previous_session_destroyed(self, sessions: SessionAuthenticator, make_user, store: UserStore) -> None:
        user = make_user("ana@x.com")
        _, first = sessions.login("ana@x.com", PASSWORD)
        _, second = sessions.login("ana@x.com", PASSWORD, previous_session_id=first.session_id)
        assert second.session_id != first.session_id
        assert second.csrf_token != first.csrf_token
        with pytest.raises(Unauthenticated):
            sessions.current_user(first.session_id)
        assert store.count_sessions_for_user(user.id) == 1

    @pytest.mark.parametrize("status", ["suspended", "pending"])
    def test_gated_login_creates_no_session(
        self, sessions: SessionAuthenticator, make_user, store: UserStore, status: str
    ) -> None:
        user = make_user("ana@x.com", status=status)
        with pytest.raises(AccountGated):
            sessions.login("ana@x.com", PASSWORD)
        assert store.count_sessions_for_user(user.id) == 0


class TestCurrentUser:
    @pytest.mark.parametrize("session_id", [None, "", "not-a-session"])
    def test_unknown_session(self, sessions: SessionAuthenticator, session_id) -> None:
        with pytest.raises(Unauthenticated):
            sessions.current_user(session_id)

    def test_expired_session_removed(self, sessions: SessionAuthenticator, make_user, store: UserStore) -> None:
        make_user("ana@x.com")
        _, web = sessions.login("ana@x.com", PASSWORD)
        id_hash = hash_secret(web.session_id)
        past = (datetime.now(timezone.utc) - timedelta(minutes=1)).isoformat()
        with store.engine.begin() as conn:
            conn.execute(_sessions.update().where(_sessions.c.id_hash == id_hash).values(expires_at=past))
        with pytest.raises(Unauthenticated):
            sessions.current_user(web.session_id)
        assert store.get_session(id_hash) is None

    def test_activity_slides_expiry(self, sessions: SessionAuthenticator, make_user, store: UserStore) -> None:
        make_user("ana@x.com")
        _, web = sessions.login("ana@x.com", PASSWORD)
        before = store.get_session(hash_secret(web.session_id)).expires_at
        sessions.current_user(web.session_id)
        after = store.get_session(hash_secret(web.session_id)).expires_at
        assert after >= before

    def test_suspended_owner_is_unauthenticated(
        self, sessions: SessionAuthenticator, make_user, store: UserStore
    ) -> None:
        user = make_user("ana@x.com")
        _, web = sessions.login("ana@x.com", PASSWORD)
        store.update_user(user.id, status="suspended")
        with pytest.raises(Unauthenticated):
            sessions.current_user(web.session_id)


class TestLogout:
    def test_logout_destroys_session_and_rotates_csrf(
        self, sessions: SessionAuthenticator, make_user, store: UserStore
    ) -> None:
        user = make_user("ana@x.com")
        _, web = sessions.login("ana@x.com", PASSWORD)
        anonymous = sessions.logout(web.session_id)
        assert anonymous.session_id is None
        assert anonymous.csrf_token != web.csrf_token
        assert store.count_sessions_for_user(user.id) == 0

    def test_logout_without_session_is_safe(self, sessions: SessionAuthenticator) -> None:
        assert sessions.logout(None).csrf_token


class TestCsrf:
    def test_matching_header_and_cookie_pass(self, sessions: SessionAuthenticator, make_user, store: UserStore) -> None:
        make_user("ana@x.com")
        _, web = sessions.login("ana@x.com", PASSWORD)
        record = store.get_session(hash_secret(web.session_id))
        SessionAuthenticator.verify_csrf(web.csrf_token, web.csrf_token, record)

    @pytest.mark.parametrize(
        "header,cookie",
        [(None, None), ("abc", None), (None, "abc"), ("abc", "abd")],
    )
    def test_missing_or_mismatched_rejected(self, header, cookie) -> None:
        with pytest.raises(CsrfMismatch) as excinfo:
            SessionAuthenticator.verify_csrf(header, cookie)
        assert excinfo.value.status_code == 419

    def test_forged_pair_rejected_for_session(
        self, sessions: SessionAuthenticator, make_user, store: UserStore
    ) -> None:
        """An attacker who can plant a cookie still cannot guess the session's token."""
        make_user("ana@x.com")
        _, web = sessions.login("ana@x.com", PASSWORD)
        record = store.get_session(hash_secret(web.session_id))
        with pytest.raises(CsrfMismatch):
            SessionAuthenticator.verify_csrf("forged", "forged", record)
