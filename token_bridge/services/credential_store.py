"""
Encrypted, file-backed storage of provider token pairs keyed by subject.

Every public operation holds the cross-process store lock for its whole
read-modify-write span, so two workers can never interleave writes or spend
the same provider refresh token twice.
"""

from __future__ import annotations

import logging
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Any, Awaitable, Callable, Dict, Optional

from pydantic import ValidationError

from token_bridge.core.errors import StorageError
from token_bridge.core.logging import safe_token_label
from token_bridge.models.oauth import (
    ProviderTokenGrant,
    StoredTokenRecord,
    TokenRecord,
    TokenStoreDocument,
    TokenSummary,
    utcnow,
)
from token_bridge.services.token_cipher import TokenCipherService
from token_bridge.utils.files import read_json, write_json_atomic
from token_bridge.utils.locking import FileLock

logger = logging.getLogger(__name__)

STORE_VERSION = 1
TOKEN_REFRESH_BUFFER = timedelta(minutes=5)
DEFAULT_PRUNE_DAYS = 30

Refresher = Callable[[str], Awaitable[ProviderTokenGrant]]


def _as_utc(value: Optional[datetime]) -> Optional[datetime]:
    if value is not None and value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def _keep(value: Any, existing: Optional[StoredTokenRecord], name: str) -> Any:
    if value is None and existing is not None:
        return getattr(existing, name)
    return value


def _is_legacy_entry(entry: Any) -> bool:
    if not isinstance(entry, dict):
        return False
    if "accessToken" in entry or "refreshToken" in entry:
        return True
    return isinstance(entry.get("access_token"), str) or isinstance(
        entry.get("refresh_token"), str
    )


class CredentialStore:
    """CRUD over per-subject encrypted token records in a single JSON file."""

    def __init__(
        self,
        *,
        file_path: Path,
        token_cipher: TokenCipherService,
        lock_path: Optional[Path] = None,
        lock_timeout: float = 10.0,
        prune_after_days: int = DEFAULT_PRUNE_DAYS,
        refresh_buffer: timedelta = TOKEN_REFRESH_BUFFER,
    ) -> None:
        self._path = Path(file_path)
        self._lock_path = Path(lock_path) if lock_path else self._path.with_name(self._path.name + ".lock")
        self._lock_timeout = lock_timeout
        self._cipher = token_cipher
        self._retention = timedelta(days=prune_after_days)
        self._buffer = refresh_buffer

    @property
    def file_path(self) -> Path:
        return self._path

    def _lock(self) -> FileLock:
        return FileLock(self._lock_path, timeout=self._lock_timeout)

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    async def save(self, subject: str, token_data: ProviderTokenGrant) -> None:
        """Encrypt and persist ``token_data`` for ``subject``."""
        if not subject:
            raise ValueError("subject is required")
        if not token_data.access_token or not token_data.refresh_token:
            raise ValueError("Both access and refresh tokens are required to save a record.")

        async with self._lock():
            document = self._load()
            self._put(document, subject, token_data)
            self._prune(document)
            self._write(document)
        logger.info("Saved credentials for subject %s", safe_token_label(subject))

    async def get(self, subject: str) -> Optional[TokenRecord]:
        """Return the decrypted record, or ``None`` when absent or undecryptable."""
        async with self._lock():
            document = self._load()
        return self._decrypt(subject, document.tokens.get(subject))

    async def revoke(self, subject: str) -> bool:
        async with self._lock():
            document = self._load()
            removed = document.tokens.pop(subject, None) is not None
            if removed:
                self._write(document)
        if removed:
            logger.info("Revoked credentials for subject %s", safe_token_label(subject))
        return removed

    async def refresh(self, subject: str, refresher: Refresher) -> Optional[TokenRecord]:
        """Refresh the access token for ``subject`` while holding the store lock.

        If another caller refreshed the record while this one waited for the
        lock, the fresh record is returned without calling ``refresher``.
        Returns ``None`` when there is no usable record.
        """
        async with self._lock():
            document = self._load()
            record = self._decrypt(subject, document.tokens.get(subject))
            if record is None:
                return None
            if self.is_access_token_valid(record):
                return record
            if not self.is_refresh_token_valid(record):
                return record

            grant = await refresher(record.refresh_token)
            self._put(document, subject, grant)
            self._write(document)
            refreshed = self._decrypt(subject, document.tokens[subject])
        logger.info("Refreshed credentials for subject %s", safe_token_label(subject))
        return refreshed

    async def prune(self) -> int:
        """Drop records whose refresh grant expired and that went untouched too long."""
        async with self._lock():
            document = self._load()
            removed = self._prune(document)
            if removed:
                self._write(document)
        return removed

    async def list_safe(self) -> list[TokenSummary]:
        """Non-secret metadata for every stored record."""
        async with self._lock():
            document = self._load()
        return [
            TokenSummary(
                subject_label=safe_token_label(subject),
                open_id=entry.open_id,
                scopes=entry.scopes,
                expires_at=entry.expires_at,
                refresh_expires_at=entry.refresh_expires_at,
                created_at=entry.created_at,
                updated_at=entry.updated_at,
            )
            for subject, entry in document.tokens.items()
        ]

    def is_access_token_valid(self, record: TokenRecord, now: Optional[datetime] = None) -> bool:
        return self._before_buffer(record.expires_at, now)

    def is_refresh_token_valid(self, record: TokenRecord, now: Optional[datetime] = None) -> bool:
        return self._before_buffer(record.refresh_expires_at, now)

    # ------------------------------------------------------------------
    # Internals; callers must hold the lock.
    # ------------------------------------------------------------------

    def _before_buffer(self, expires_at: Optional[datetime], now: Optional[datetime]) -> bool:
        if expires_at is None:
            return False
        current = _as_utc(now) or utcnow()
        return current < _as_utc(expires_at) - self._buffer

    def _load(self) -> TokenStoreDocument:
        try:
            raw = read_json(self._path)
        except ValueError as exc:
            raise StorageError(message="Token store file is not valid JSON.") from exc
        except OSError as exc:
            raise StorageError(message="Token store file could not be read.") from exc

        if not isinstance(raw, dict):
            return TokenStoreDocument(version=STORE_VERSION)

        tokens = raw.get("tokens") or {}
        if not isinstance(tokens, dict):
            raise StorageError(message="Token store file has an unexpected shape.")
        if any(_is_legacy_entry(entry) for entry in tokens.values()):
            document = self._migrate(tokens)
            self._write(document)
            logger.info("Migrated legacy plaintext token store to encrypted format")
            return document

        try:
            return TokenStoreDocument.model_validate(raw)
        except ValidationError as exc:
            raise StorageError(message="Token store file has an unexpected shape.") from exc

    def _migrate(self, tokens: Dict[str, Any]) -> TokenStoreDocument:
        document = TokenStoreDocument(version=STORE_VERSION)
        now = utcnow()
        for subject, entry in tokens.items():
            if not isinstance(entry, dict):
                continue
            if not _is_legacy_entry(entry):
                try:
                    document.tokens[subject] = StoredTokenRecord.model_validate(entry)
                except ValidationError:
                    logger.warning("Dropping unreadable record for %s during migration", safe_token_label(subject))
                continue

            access_token = entry.get("accessToken") or entry.get("access_token")
            refresh_token = entry.get("refreshToken") or entry.get("refresh_token")
            if not access_token or not refresh_token:
                logger.warning("Dropping incomplete legacy record for %s", safe_token_label(subject))
                continue

            document.tokens[subject] = StoredTokenRecord(
                access_token=self._cipher.encrypt(access_token),
                refresh_token=self._cipher.encrypt(refresh_token),
                expires_at=entry.get("expiresAt") or entry.get("expires_at") or now,
                refresh_expires_at=entry.get("refreshExpiresAt") or entry.get("refresh_expires_at") or now,
                scopes=entry.get("scope") or entry.get("scopes"),
                open_id=entry.get("openId") or entry.get("open_id"),
                created_at=entry.get("createdAt") or entry.get("created_at") or now,
                updated_at=entry.get("updatedAt") or entry.get("updated_at") or now,
            )
        return document

    def _put(self, document: TokenStoreDocument, subject: str, token_data: ProviderTokenGrant) -> None:
        now = utcnow()
        existing = document.tokens.get(subject)
        # Refresh responses may leave out fields that did not change.
        document.tokens[subject] = StoredTokenRecord(
            access_token=self._cipher.encrypt(token_data.access_token),
            refresh_token=self._cipher.encrypt(token_data.refresh_token),
            expires_at=token_data.expires_at,
            refresh_expires_at=_keep(token_data.refresh_expires_at, existing, "refresh_expires_at"),
            scopes=_keep(token_data.scopes, existing, "scopes"),
            open_id=_keep(token_data.open_id, existing, "open_id"),
            created_at=existing.created_at if existing else now,
            updated_at=now,
        )

    def _prune(self, document: TokenStoreDocument) -> int:
        now = utcnow()
        cutoff = now - self._retention
        stale = [
            subject
            for subject, entry in document.tokens.items()
            if (entry.refresh_expires_at is None or _as_utc(entry.refresh_expires_at) < now)
            and _as_utc(entry.updated_at) < cutoff
        ]
        for subject in stale:
            del document.tokens[subject]
        if stale:
            logger.info("Pruned %d stale token records", len(stale))
        return len(stale)

    def _decrypt(self, subject: str, entry: Optional[StoredTokenRecord]) -> Optional[TokenRecord]:
        if entry is None:
            return None
        access_token = self._cipher.decrypt(entry.access_token.model_dump())
        refresh_token = self._cipher.decrypt(entry.refresh_token.model_dump())
        if access_token is None or refresh_token is None:
            logger.warning("Stored credentials for %s could not be decrypted", safe_token_label(subject))
            return None
        return TokenRecord(
            subject=subject,
            access_token=access_token,
            refresh_token=refresh_token,
            expires_at=_as_utc(entry.expires_at),
            refresh_expires_at=_as_utc(entry.refresh_expires_at),
            scopes=entry.scopes,
            open_id=entry.open_id,
            created_at=_as_utc(entry.created_at),
            updated_at=_as_utc(entry.updated_at),
        )

    def _write(self, document: TokenStoreDocument) -> None:
        try:
            write_json_atomic(self._path, document.model_dump(mode="json"))
        except OSError as exc:
            raise StorageError(message="Token store file could not be written.") from exc


__all__ = ["CredentialStore", "TOKEN_REFRESH_BUFFER"]
