# src/trace_sync/auth/token_store.py

from __future__ import annotations

import contextlib
import hashlib
import hmac
import logging
import secrets
import sqlite3
import time
from pathlib import Path

logger = logging.getLogger(__name__)


def _hash_secret(secret: str) -> str:
    return hashlib.sha256(secret.encode("utf-8")).hexdigest()


def _split_token(token: str) -> tuple[str, str] | None:
    token_id, sep, secret = (token or "").strip().partition(".")
    if not sep or not token_id or not secret:
        return None
    return token_id, secret


class TokenStore:
    """
    Durable pre-issued tokens, kept in the same SQLite file as the tasks.

    A token is "<token_id>.<secret>". Only the SHA-256 of the secret is stored,
    so a leaked database does not leak usable tokens.
    """

    def __init__(self, db_path: str | Path) -> None:
        self._db_path = Path(db_path)
        self._db_path.parent.mkdir(parents=True, exist_ok=True)
        self._ensure_schema()

    def _get_conn(self) -> sqlite3.Connection:
        conn = sqlite3.connect(str(self._db_path), timeout=30.0)
        conn.row_factory = sqlite3.Row
        with contextlib.suppress(sqlite3.Error):
            conn.execute("PRAGMA journal_mode=WAL")
        return conn

    def _ensure_schema(self) -> None:
        conn = self._get_conn()
        try:
            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS auth_tokens (
                    token_id TEXT PRIMARY KEY,
                    secret_hash TEXT NOT NULL,
                    subject TEXT NOT NULL,
                    issued_at REAL NOT NULL,
                    revoked_at REAL
                )
                """
            )
            conn.commit()
        finally:
            conn.close()

    def issue(self, subject: str) -> str:
        subject = (subject or "").strip()
        if not subject:
            raise ValueError("subject is required")

        token_id = secrets.token_hex(8)
        secret = secrets.token_urlsafe(32)
        conn = self._get_conn()
        try:
            conn.execute(
                "INSERT INTO auth_tokens(token_id, secret_hash, subject, issued_at) VALUES (?, ?, ?, ?)",
                (token_id, _hash_secret(secret), subject, time.time()),
            )
            conn.commit()
        finally:
            conn.close()
        logger.info("Issued token id=%s subject=%s", token_id, subject)
        return f"{token_id}.{secret}"

    def lookup(self, token: str) -> str | None:
        """Subject bound to a valid, unrevoked token; None otherwise."""
        parts = _split_token(token)
        if parts is None:
            return None
        token_id, secret = parts

        conn = self._get_conn()
        try:
            cur = conn.cursor()
            cur.execute(
                "SELECT secret_hash, subject, revoked_at FROM auth_tokens WHERE token_id = ?",
                (token_id,),
            )
            row = cur.fetchone()
        finally:
            conn.close()

        if row is None or row["revoked_at"] is not None:
            return None
        if not hmac.compare_digest(str(row["secret_hash"]), _hash_secret(secret)):
            return None
        return str(row["subject"])

    def revoke(self, token: str) -> bool:
        parts = _split_token(token)
        if parts is None:
            return False
        if self.lookup(token) is None:
            return False

        conn = self._get_conn()
        try:
            cur = conn.cursor()
            cur.execute(
                "UPDATE auth_tokens SET revoked_at = ? WHERE token_id = ? AND revoked_at IS NULL",
                (time.time(), parts[0]),
            )
            conn.commit()
            revoked = cur.rowcount == 1
        finally:
            conn.close()
        if revoked:
            logger.info("Revoked token id=%s", parts[0])
        return revoked
