"""
auth/tokens.py -- Password hashing, opaque token, and cookie utilities.

Security design decisions:
  Passwords: bcrypt, used directly. Bcrypt is the right choice for
       low-entropy secrets (passwords) because its cost factor makes brute-force
       expensive. The _DUMMY_HASH constant enables timing equalization in
       CredentialStore.verify() so response time does not reveal whether an
       email is registered.

  Device tokens: plaintext format "<id>|<secret>" where secret is 40
       URL-safe characters from secrets.token_urlsafe. The id prefix lets the
       store fetch a single row by primary key; the secret is then compared
       in fixed time against HMAC-SHA256(SECRET_KEY, secret). Bcrypt's
       slowness is unnecessary for 240-bit random secrets.

  Session ids and CSRF tokens: same generator, same keyed hash for the
       session id at rest. CSRF values are compared with hmac.compare_digest.

  SECRET_KEY: sourced from core.config.get_settings(). The Settings class
       validates the key at startup.

Layer rule: no imports from api/. Import from core/ is allowed -- core/ is the
kernel and has no reverse dependencies.
"""

from __future__ import annotations

import hashlib
import hmac
import logging
import secrets

import bcrypt

from core.config import get_settings

logger = logging.getLogger("batchmates.auth")

# ---------------------------------------------------------------------------
# Config -- read once at module load via the lru_cache singleton
# ---------------------------------------------------------------------------

_settings = get_settings()

SECRET_LENGTH = 40
CSRF_COOKIE_NAME = "XSRF-TOKEN"
CSRF_HEADER_NAME = "X-XSRF-TOKEN"

# ---------------------------------------------------------------------------
# Password hashing (bcrypt -- direct usage, no passlib wrapper)
# ---------------------------------------------------------------------------


def hash_password(plain: str) -> str:
    """Return a bcrypt hash of the given plaintext password.

    Passwords longer than 72 bytes are truncated by bcrypt. We enforce a
    max_length at the API layer (Pydantic field), which keeps inputs below the
    truncation threshold.
    """
    return bcrypt.hashpw(plain.encode("utf-8")[:72], bcrypt.gensalt(rounds=_settings.bcrypt_rounds)).decode("utf-8")


def verify_password(plain: str, hashed: str) -> bool:
    """Return True if the plaintext password matches the bcrypt hash."""
    try:
        return bcrypt.checkpw(plain.encode("utf-8")[:72], hashed.encode("utf-8"))
    except (ValueError, TypeError):
        return False


# Timing equalization dummy hash.
# Computed once at module load so the first login attempt is not measurably
# slower than subsequent ones.
_DUMMY_HASH: str = hash_password("batchmates_timing_dummy")


def verify_dummy(plain: str) -> None:
    """Burn one bcrypt comparison so unknown-email logins cost the same as real ones."""
    verify_password(plain, _DUMMY_HASH)


# ---------------------------------------------------------------------------
# Opaque secrets
# ---------------------------------------------------------------------------


def generate_secret(length: int = SECRET_LENGTH) -> str:
    """Return a random URL-safe string of exactly `length` characters."""
    return secrets.token_urlsafe(length)[:length]


def hash_secret(raw: str) -> str:
    """Return HMAC-SHA256(SECRET_KEY, raw) as a hex string.

    Using SECRET_KEY as the HMAC key means an attacker who obtains the DB
    cannot verify guessed secrets offline without also knowing SECRET_KEY.
    The hash is deterministic, enabling lookup by hash.
    """
    return hmac.new(
        _settings.secret_key.encode(),
        raw.encode(),
        hashlib.sha256,
    ).hexdigest()


def secrets_match(a: str | None, b: str | None) -> bool:
    """Fixed-time string comparison that treats missing values as a mismatch."""
    if not a or not b:
        return False
    return hmac.compare_digest(a.encode(), b.encode())


# SQLite INTEGER is a signed 64-bit value.
MAX_TOKEN_ID = 2**63 - 1


def is_valid_token_id(token_id: int) -> bool:
    return 1 <= token_id <= MAX_TOKEN_ID


def format_plain_token(token_id: int, secret: str) -> str:
    return f"{token_id}|{secret}"


def split_plain_token(plain: str) -> tuple[int, str] | None:
    """Parse "<id>|<secret>" into (id, secret). Returns None if malformed."""
    token_id, sep, secret = plain.partition("|")
    if not sep or not secret:
        return None
    # isdigit() alone accepts characters such as "²" that int() rejects.
    if not (token_id.isascii() and token_id.isdigit()) or len(token_id) > 19:
        return None
    parsed = int(token_id)
    if not is_valid_token_id(parsed):
        return None
    return parsed, secret


# ---------------------------------------------------------------------------
# Cookie helpers
# ---------------------------------------------------------------------------


def set_session_cookie(response, session_id: str, max_age: int) -> None:
    """Write the session id as an httpOnly cookie on the response.

    httponly=True: JS cannot read the cookie (XSS mitigation).
    samesite="lax": cookie is not sent on cross-site POST.
    secure: only sent over HTTPS when SECURE_COOKIES=true (set in production).
    """
    response.set_cookie(
        _settings.session_cookie_name,
        value=session_id,
        httponly=True,
        samesite="lax",
        secure=_settings.secure_cookies,
        max_age=max_age,
    )


def clear_session_cookie(response) -> None:
    response.delete_cookie(_settings.session_cookie_name, samesite="lax", secure=_settings.secure_cookies)


def set_csrf_cookie(response, csrf_token: str) -> None:
    """Write the anti-forgery token as a JS-readable cookie.

    The SPA echoes it back in the X-XSRF-TOKEN header (double-submit), so
    the cookie must not be httpOnly.
    """
    response.set_cookie(
        CSRF_COOKIE_NAME,
        value=csrf_token,
        httponly=False,
        samesite="lax",
        secure=_settings.secure_cookies,
        max_age=_settings.session_lifetime_minutes * 60,
    )
