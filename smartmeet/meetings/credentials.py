"""Join credentials and handshake access tokens.

Both are HS256 JWTs signed with ``JWT_SECRET``. A join credential is minted by
the meeting-join API after its password/lock checks and proves, for a few
minutes, that the bearer may enter one specific meeting:

    {"meetingCode": "ABC-123", "authorized": true, "exp": ...}

Tokens minted by older issuers carry the code under ``meetingId``; both are
accepted.
"""
from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, Optional

import jwt

_ALGORITHM = "HS256"


class JoinCredentialError(Exception):
    """Base class for join credential failures."""

    user_message = "Invalid join token. Please re-enter the meeting."


class InvalidJoinToken(JoinCredentialError):
    pass


class ExpiredJoinToken(JoinCredentialError):
    user_message = "Join token expired. Please join again."


@dataclass(frozen=True)
class JoinCredential:
    meeting_code: str
    authorized: bool


def issue_join_token(secret: str, meeting_code: str, ttl_seconds: int = 300) -> str:
    now = datetime.now(timezone.utc)
    claims = {
        "meetingCode": meeting_code,
        "authorized": True,
        "iat": now,
        "exp": now + timedelta(seconds=ttl_seconds),
    }
    return jwt.encode(claims, secret, algorithm=_ALGORITHM)


class JoinCredentialVerifier:
    def __init__(self, secret: str):
        self._secret = secret

    def verify(self, token: str) -> JoinCredential:
        """Decode ``token`` or raise a :class:`JoinCredentialError` subclass."""
        if not isinstance(token, str) or not token:
            raise InvalidJoinToken("empty join token")
        try:
            claims: Dict[str, Any] = jwt.decode(token, self._secret, algorithms=[_ALGORITHM])
        except jwt.ExpiredSignatureError as exc:
            raise ExpiredJoinToken(str(exc)) from exc
        except jwt.InvalidTokenError as exc:
            raise InvalidJoinToken(str(exc)) from exc
        code = claims.get("meetingCode") or claims.get("meetingId")
        if not isinstance(code, str):
            raise InvalidJoinToken("join token carries no meeting code")
        return JoinCredential(meeting_code=code.strip().upper(), authorized=claims.get("authorized") is True)


def decode_access_token(secret: str, token: Any) -> Optional[int]:
    """Return the account id of a handshake access token, or None.

    Connections authenticate opportunistically, so any failure simply means
    the connection continues as a guest.
    """
    if not isinstance(token, str) or not token or token == "guest":
        return None
    try:
        claims = jwt.decode(token, secret, algorithms=[_ALGORITHM])
    except jwt.InvalidTokenError:
        return None
    try:
        return int(claims.get("id"))
    except (TypeError, ValueError):
        return None
