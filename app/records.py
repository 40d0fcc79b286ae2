"""SQLite record store for uploaded ads, logos and generated variants.

Binary content lives in StorageService; this store keeps the keys, public
URLs and metadata that tie them together.
"""

import logging
import sqlite3
import threading
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import List, Optional, Sequence, Union

logger = logging.getLogger(__name__)

SCHEMA_SQL = """
CREATE TABLE IF NOT EXISTS original_ads (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    file_key TEXT NOT NULL,
    file_url TEXT NOT NULL,
    filename TEXT NOT NULL,
    mime_type TEXT,
    country TEXT,
    analysis_prompt TEXT,
    created_at TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS logos (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    name TEXT NOT NULL,
    description TEXT,
    file_key TEXT NOT NULL,
    file_url TEXT NOT NULL,
    enabled INTEGER NOT NULL DEFAULT 0,
    created_at TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS generated_ads (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    original_ad_id INTEGER NOT NULL,
    file_key TEXT NOT NULL,
    file_url TEXT NOT NULL,
    prompt TEXT,
    created_at TEXT NOT NULL,
    FOREIGN KEY (original_ad_id) REFERENCES original_ads(id) ON DELETE CASCADE
);

CREATE INDEX IF NOT EXISTS idx_generated_original ON generated_ads(original_ad_id);
CREATE INDEX IF NOT EXISTS idx_logos_enabled ON logos(enabled);
"""


@dataclass
class OriginalAd:
    id: int
    file_key: str
    file_url: str
    filename: str
    mime_type: Optional[str]
    country: Optional[str]
    analysis_prompt: Optional[str]
    created_at: str


@dataclass
class Logo:
    id: int
    name: str
    description: Optional[str]
    file_key: str
    file_url: str
    enabled: bool
    created_at: str


@dataclass
class GeneratedAd:
    id: int
    original_ad_id: int
    file_key: str
    file_url: str
    prompt: Optional[str]
    created_at: str


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


class RecordStore:
    """SQLite-backed records.

    Args:
        db_path: Path to the SQLite database file, or ":memory:".
    """

    def __init__(self, db_path: Union[Path, str] = "records.db"):
        self.db_path = str(db_path)
        if self.db_path != ":memory:":
            Path(self.db_path).parent.mkdir(parents=True, exist_ok=True)
        # FastAPI runs sync endpoints in a threadpool
        self._conn = sqlite3.connect(self.db_path, check_same_thread=False)
        self._conn.row_factory = sqlite3.Row
        self._lock = threading.Lock()
        with self._lock:
            self._conn.execute("PRAGMA foreign_keys = ON")
            self._conn.executescript(SCHEMA_SQL)
            self._conn.commit()
        logger.info(f"Record store ready at {self.db_path}")

    def close(self) -> None:
        self._conn.close()

    def _execute(self, sql: str, params: tuple = ()) -> sqlite3.Cursor:
        with self._lock:
            cursor = self._conn.execute(sql, params)
            self._conn.commit()
            return cursor

    def _fetchall(self, sql: str, params: tuple = ()) -> List[sqlite3.Row]:
        with self._lock:
            return self._conn.execute(sql, params).fetchall()

    def _fetchone(self, sql: str, params: tuple = ()) -> Optional[sqlite3.Row]:
        with self._lock:
            return self._conn.execute(sql, params).fetchone()

    # Original ads

    def create_original_ad(
        self,
        file_key: str,
        file_url: str,
        filename: str,
        mime_type: Optional[str] = None,
        country: Optional[str] = None,
    ) -> OriginalAd:
        cursor = self._execute(
            "INSERT INTO original_ads (file_key, file_url, filename, mime_type, country, created_at) "
            "VALUES (?, ?, ?, ?, ?, ?)",
            (file_key, file_url, filename, mime_type, country, _now()),
        )
        return self.get_original_ad(cursor.lastrowid)

    def get_original_ad(self, ad_id: int) -> Optional[OriginalAd]:
        row = self._fetchone("SELECT * FROM original_ads WHERE id = ?", (ad_id,))
        return OriginalAd(**dict(row)) if row else None

    def list_original_ads(self) -> List[OriginalAd]:
        rows = self._fetchall("SELECT * FROM original_ads ORDER BY created_at DESC, id DESC")
        return [OriginalAd(**dict(r)) for r in rows]

    def update_analysis(self, ad_id: int, analysis_prompt: str) -> None:
        self._execute("UPDATE original_ads SET analysis_prompt = ? WHERE id = ?", (analysis_prompt, ad_id))

    def delete_original_ad(self, ad_id: int) -> None:
        self._execute("DELETE FROM original_ads WHERE id = ?", (ad_id,))

    # Logos

    def create_logo(
        self,
        name: str,
        file_key: str,
        file_url: str,
        enabled: bool = False,
        description: Optional[str] = None,
    ) -> Logo:
        cursor = self._execute(
            "INSERT INTO logos (name, description, file_key, file_url, enabled, created_at) "
            "VALUES (?, ?, ?, ?, ?, ?)",
            (name, description, file_key, file_url, int(enabled), _now()),
        )
        return self.get_logo(cursor.lastrowid)

    @staticmethod
    def _logo(row: sqlite3.Row) -> Logo:
        data = dict(row)
        data["enabled"] = bool(data["enabled"])
        return Logo(**data)

    def get_logo(self, logo_id: int) -> Optional[Logo]:
        row = self._fetchone("SELECT * FROM logos WHERE id = ?", (logo_id,))
        return self._logo(row) if row else None

    def list_logos(self, enabled_only: bool = False) -> List[Logo]:
        if enabled_only:
            rows = self._fetchall("SELECT * FROM logos WHERE enabled = 1 ORDER BY id")
        else:
            rows = self._fetchall("SELECT * FROM logos ORDER BY id")
        return [self._logo(r) for r in rows]

    def set_logo_enabled(self, logo_id: int, enabled: bool) -> None:
        self._execute("UPDATE logos SET enabled = ? WHERE id = ?", (int(enabled), logo_id))

    def delete_logo(self, logo_id: int) -> None:
        self._execute("DELETE FROM logos WHERE id = ?", (logo_id,))

    # Generated ads

    def create_generated_ad(
        self,
        original_ad_id: int,
        file_key: str,
        file_url: str,
        prompt: Optional[str] = None,
    ) -> GeneratedAd:
        cursor = self._execute(
            "INSERT INTO generated_ads (original_ad_id, file_key, file_url, prompt, created_at) "
            "VALUES (?, ?, ?, ?, ?)",
            (original_ad_id, file_key, file_url, prompt, _now()),
        )
        return self.get_generated_ad(cursor.lastrowid)

    def get_generated_ad(self, generated_id: int) -> Optional[GeneratedAd]:
        row = self._fetchone("SELECT * FROM generated_ads WHERE id = ?", (generated_id,))
        return GeneratedAd(**dict(row)) if row else None

    def list_generated_ads(self, original_ad_id: Optional[int] = None) -> List[GeneratedAd]:
        if original_ad_id is not None:
            rows = self._fetchall(
                "SELECT * FROM generated_ads WHERE original_ad_id = ? ORDER BY id", (original_ad_id,)
            )
        else:
            rows = self._fetchall("SELECT * FROM generated_ads ORDER BY id")
        return [GeneratedAd(**dict(r)) for r in rows]

    def get_generated_ads(self, generated_ids: Sequence[int]) -> List[GeneratedAd]:
        """Fetch the generated ads among `generated_ids` that exist, ordered by id."""
        ids = list(generated_ids)
        if not ids:
            return []
        placeholders = ", ".join("?" for _ in ids)
        rows = self._fetchall(f"SELECT * FROM generated_ads WHERE id IN ({placeholders}) ORDER BY id", tuple(ids))
        return [GeneratedAd(**dict(r)) for r in rows]

    def delete_generated_ads(self, generated_ids: Sequence[int]) -> int:
        ids = list(generated_ids)
        if not ids:
            return 0
        placeholders = ", ".join("?" for _ in ids)
        cursor = self._execute(f"DELETE FROM generated_ads WHERE id IN ({placeholders})", tuple(ids))
        return cursor.rowcount
