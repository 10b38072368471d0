from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

from jose import JWTError, jwt


@dataclass(frozen=True)
class SessionSubject:
    subject_id: str
    claims: dict[str, Any] = field(default_factory=dict)


def get_bearer_token(authorization: str | None) -> str | None:
    if not authorization:
        return None
    scheme, _, token = authorization.strip().partition(" ")
    if scheme.lower() != "bearer":
        return None
    token = token.strip()
    return token or None


def decode_subject(token: str) -> SessionSubject:
    """Extract claims from the session token.

    The identity provider owns signature verification; here only the subject
    and the remaining claims are read.
    """
    try:
        claims = jwt.get_unverified_claims(token)
    except JWTError as exc:
        raise ValueError("Invalid token") from exc
    subject = claims.get("sub")
    if not subject:
        raise ValueError("Token carries no subject")
    return SessionSubject(subject_id=str(subject), claims=dict(claims))
