"""SQLite-backed persistence for tenant credentials and the estimate log."""

from __future__ import annotations

import json
import logging
import sqlite3
from abc import ABC, abstractmethod
from contextlib import contextmanager
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import TYPE_CHECKING, Any, Dict, Iterator, Optional, Protocol

from app.core.errors import StorageError
from app.models.credential import OAuthCredential, TenantId

if TYPE_CHECKING:  # pragma: no cover - type hints only
    from app.services.token_cipher import TokenCipherService

logger = logging.getLogger(__name__)


class CredentialStore(Protocol):
    """Persistent mapping from tenant identity to its QuickBooks credential."""

    def get(self, tenant_id: TenantId) -> Optional[OAuthCredential]:
        ...

    def upsert(
        self,
        tenant_id: TenantId,
        external_account_id: str,
        access_token: str,
        refresh_token: str,
        ttl_seconds: int,
    ) -> OAuthCredential:
        ...

    def delete(self, tenant_id: TenantId) -> None:
        ...


class _SQLiteDatabase(ABC):
    def __init__(self, db_path: str) -> None:
        self._db_path = Path(db_path)
        try:
            self._db_path.parent.mkdir(parents=True, exist_ok=True)
        except OSError as exc:
            raise StorageError(f"Cannot create database directory for {self._db_path}.") from exc
        with self._session("initialize schema") as conn:
            self._ensure_schema(conn)

    def _connect(self) -> sqlite3.Connection:
        conn = sqlite3.connect(self._db_path, check_same_thread=False)
        conn.row_factory = sqlite3.Row
        return conn

    @contextmanager
    def _session(self, action: str) -> Iterator[sqlite3.Connection]:
        """Yield a connection that commits on success; sqlite errors become StorageError."""
        conn: Optional[sqlite3.Connection] = None
        try:
            conn = self._connect()
            with conn:
                yield conn
        except sqlite3.Error as exc:
            logger.error("SQLite %s failed on %s: %s", action, self._db_path, exc)
            raise StorageError(f"Local storage failed to {action}.") from exc
        finally:
            if conn is not None:
                conn.close()

    @abstractmethod
    def _ensure_schema(self, conn: sqlite3.Connection) -> None:
        """Create the tables this store needs."""


class SQLiteCredentialStore(_SQLiteDatabase):
    """One encrypted credential row per tenant, overwritten on every persist."""

    def __init__(self, db_path: str, cipher: "TokenCipherService") -> None:
        self._cipher = cipher
        super().__init__(db_path)

    def _ensure_schema(self, conn: sqlite3.Connection) -> None:
        conn.execute(
            """
            CREATE TABLE IF NOT EXISTS quickbooks_credentials (
                tenant_id TEXT PRIMARY KEY,
                external_account_id TEXT NOT NULL,
                access_token_encrypted TEXT NOT NULL,
                refresh_token_encrypted TEXT NOT NULL,
                expires_at TEXT NOT NULL,
                created_at TEXT NOT NULL,
                updated_at TEXT NOT NULL
            )
            """
        )

    def get(self, tenant_id: TenantId) -> Optional[OAuthCredential]:
        with self._session("read credential") as conn:
            row = conn.execute(
                "SELECT * FROM quickbooks_credentials WHERE tenant_id = ?",
                (str(tenant_id),),
            ).fetchone()
        if not row:
            return None

        try:
            access_token = self._cipher.decrypt(row["access_token_encrypted"])
            refresh_token = self._cipher.decrypt(row["refresh_token_encrypted"])
        except ValueError:
            logger.error(
                "Stored QuickBooks tokens for tenant %s cannot be decrypted; "
                "treating tenant as disconnected.",
                tenant_id,
            )
            return None

        return OAuthCredential(
            tenant_id=row["tenant_id"],
            external_account_id=row["external_account_id"],
            access_token=access_token,
            refresh_token=refresh_token,
            expires_at=datetime.fromisoformat(row["expires_at"]),
            created_at=datetime.fromisoformat(row["created_at"]),
            updated_at=datetime.fromisoformat(row["updated_at"]),
        )

    def upsert(
        self,
        tenant_id: TenantId,
        external_account_id: str,
        access_token: str,
        refresh_token: str,
        ttl_seconds: int,
    ) -> OAuthCredential:
        now = datetime.now(timezone.utc)
        expires_at = now + timedelta(seconds=ttl_seconds)
        with self._session("write credential") as conn:
            conn.execute(
                """
                INSERT INTO quickbooks_credentials (
                    tenant_id, external_account_id, access_token_encrypted,
                    refresh_token_encrypted, expires_at, created_at, updated_at
                )
                VALUES (?, ?, ?, ?, ?, ?, ?)
                ON CONFLICT(tenant_id) DO UPDATE SET
                    external_account_id = excluded.external_account_id,
                    access_token_encrypted = excluded.access_token_encrypted,
                    refresh_token_encrypted = excluded.refresh_token_encrypted,
                    expires_at = excluded.expires_at,
                    updated_at = excluded.updated_at
                """,
                (
                    str(tenant_id),
                    external_account_id,
                    self._cipher.encrypt(access_token),
                    self._cipher.encrypt(refresh_token),
                    expires_at.isoformat(),
                    now.isoformat(),
                    now.isoformat(),
                ),
            )
        stored = self.get(tenant_id)
        if stored is None:  # pragma: no cover - row was just written
            raise StorageError(f"Credential for tenant {tenant_id} vanished after upsert.")
        return stored

    def delete(self, tenant_id: TenantId) -> None:
        with self._session("delete credential") as conn:
            conn.execute(
                "DELETE FROM quickbooks_credentials WHERE tenant_id = ?",
                (str(tenant_id),),
            )


class SQLiteEstimateLog(_SQLiteDatabase):
    """Local record of estimates pushed to QuickBooks on behalf of a tenant."""

    def _ensure_schema(self, conn: sqlite3.Connection) -> None:
        conn.execute(
            """
            CREATE TABLE IF NOT EXISTS estimates (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                tenant_id TEXT NOT NULL,
                customer_name TEXT,
                customer_email TEXT,
                estimate_data TEXT NOT NULL,
                quickbooks_estimate_id TEXT,
                created_at TEXT NOT NULL
            )
            """
        )

    def record(
        self,
        *,
        tenant_id: TenantId,
        estimate_data: Dict[str, Any],
        quickbooks_estimate_id: Optional[str],
        customer_name: Optional[str] = None,
        customer_email: Optional[str] = None,
    ) -> int:
        created_at = datetime.now(timezone.utc).isoformat()
        with self._session("record estimate") as conn:
            cursor = conn.execute(
                """
                INSERT INTO estimates (
                    tenant_id, customer_name, customer_email, estimate_data,
                    quickbooks_estimate_id, created_at
                )
                VALUES (?, ?, ?, ?, ?, ?)
                """,
                (
                    str(tenant_id),
                    customer_name or "Unknown",
                    customer_email or "",
                    json.dumps(estimate_data),
                    quickbooks_estimate_id,
                    created_at,
                ),
            )
            return int(cursor.lastrowid)

    def list_for_tenant(self, tenant_id: TenantId) -> list[Dict[str, Any]]:
        with self._session("list estimates") as conn:
            rows = conn.execute(
                "SELECT * FROM estimates WHERE tenant_id = ? ORDER BY id DESC",
                (str(tenant_id),),
            ).fetchall()
        records = []
        for row in rows:
            record = dict(row)
            record["estimate_data"] = json.loads(record["estimate_data"])
            records.append(record)
        return records


__all__ = ["CredentialStore", "SQLiteCredentialStore", "SQLiteEstimateLog"]
