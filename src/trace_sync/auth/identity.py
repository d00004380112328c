# src/trace_sync/auth/identity.py

from __future__ import annotations

import logging
import sqlite3
import uuid
from collections.abc import Callable
from dataclasses import dataclass
from enum import StrEnum

from ..core.ports import TokenRepo
from ..errors import AuthenticationError

logger = logging.getLogger(__name__)

_SUBJECT_NAMESPACE = uuid.UUID("5f8a3c1e-6f4d-4c8e-9a57-2b1d0e7c9a10")


class IdentityKind(StrEnum):
    ANONYMOUS = "anonymous"
    TOKEN = "token"


@dataclass(frozen=True, slots=True)
class Identity:
    uid: str
    kind: IdentityKind
    subject: str | None = None

    @property
    def is_anonymous(self) -> bool:
        return self.kind == IdentityKind.ANONYMOUS


def uid_for_subject(subject: str) -> str:
    # Same subject -> same uid in every session.
    return uuid.uuid5(_SUBJECT_NAMESPACE, subject).hex


class IdentityResolver:
    """
    Resolve one Identity for a session.

    Policy:
    1. token given and valid -> identity bound to the token subject
    2. no token               -> fresh anonymous identity
    3. anything else          -> AuthenticationError (session stays unauthenticated)
    """

    def __init__(
        self,
        tokens: TokenRepo,
        *,
        anonymous_uid: Callable[[], str] = lambda: uuid.uuid4().hex,
    ) -> None:
        self._tokens = tokens
        self._anonymous_uid = anonymous_uid

    def resolve(self, token: str | None = None) -> Identity:
        if token is None or not token.strip():
            identity = Identity(uid=self._anonymous_uid(), kind=IdentityKind.ANONYMOUS)
            logger.info("Signed in anonymously uid=%s", identity.uid)
            return identity

        try:
            subject = self._tokens.lookup(token)
        except sqlite3.Error as e:
            raise AuthenticationError(f"token lookup failed: {e}") from e

        if subject is None:
            raise AuthenticationError("invalid or revoked auth token")

        identity = Identity(uid=uid_for_subject(subject), kind=IdentityKind.TOKEN, subject=subject)
        logger.info("Signed in with token subject=%s uid=%s", subject, identity.uid)
        return identity
