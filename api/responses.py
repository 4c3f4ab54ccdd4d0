"""
api/responses.py -- Turn gateway Envelopes into HTTP responses.

Auth responses carry tokens and user records, so every one is sent with
Cache-Control: no-store.
"""

from __future__ import annotations

from fastapi.responses import JSONResponse

from auth.gateway import Envelope
from auth.tokens import clear_session_cookie, set_csrf_cookie, set_session_cookie


def envelope_response(envelope: Envelope) -> JSONResponse:
    resp = JSONResponse(status_code=envelope.status_code, content=envelope.to_dict())
    resp.headers["Cache-Control"] = "no-store"
    return resp


def session_envelope_response(envelope: Envelope) -> JSONResponse:
    """Like envelope_response, plus the session and CSRF cookies for web routes.

    A session with an id means the browser is now signed in; one without an
    id means it was just signed out and the old cookie must go.
    """
    resp = envelope_response(envelope)
    session = envelope.session
    if session is not None:
        if session.session_id:
            set_session_cookie(resp, session.session_id, session.max_age)
        else:
            clear_session_cookie(resp)
        set_csrf_cookie(resp, session.csrf_token)
    return resp
