"""SQLite persistence for the local chunk store.

Stores chunk rows (text, metadata and embedding) unique on (url, pos).
Row ids double as FAISS vector ids.
"""
import sqlite3
import json
from pathlib import Path
from typing import Optional, List, Dict, Any
from datetime import datetime, timezone
import structlog

from app import config

logger = structlog.get_logger()


def get_connection(db_path: Optional[Path] = None) -> sqlite3.Connection:
    """Get a connection to the SQLite database.

    Args:
        db_path: Database file (default: config.DB_PATH)

    Returns:
        sqlite3.Connection with row_factory set to sqlite3.Row
    """
    db_path = Path(db_path or config.DB_PATH)
    db_path.parent.mkdir(parents=True, exist_ok=True)
    conn = sqlite3.connect(db_path)
    conn.row_factory = sqlite3.Row
    return conn


def init_database(db_path: Optional[Path] = None) -> None:
    """Initialize the database schema.

    Creates the chunks table if it doesn't exist.
    """
    conn = get_connection(db_path)
    cursor = conn.cursor()

    try:
        cursor.execute("""
            CREATE TABLE IF NOT EXISTS chunks (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                url TEXT NOT NULL,
                pos INTEGER NOT NULL,
                city TEXT NOT NULL,
                category TEXT NOT NULL,
                content TEXT NOT NULL,
                section TEXT,
                tags_json TEXT NOT NULL DEFAULT '[]',
                embedding_json TEXT NOT NULL,
                updated_at TEXT NOT NULL,
                UNIQUE(url, pos)
            )
        """)

        cursor.execute("""
            CREATE INDEX IF NOT EXISTS idx_chunks_city
            ON chunks(city)
        """)

        cursor.execute("""
            CREATE TABLE IF NOT EXISTS store_revision (
                id INTEGER PRIMARY KEY CHECK (id = 1),
                revision INTEGER NOT NULL
            )
        """)
        cursor.execute(
            "INSERT OR IGNORE INTO store_revision (id, revision) VALUES (1, 0)"
        )

        conn.commit()
        logger.info("database_initialized", db_path=str(db_path or config.DB_PATH))

    except Exception as e:
        conn.rollback()
        logger.error("database_init_failed", error=str(e))
        raise
    finally:
        conn.close()


def upsert_chunks(
    rows: List[Dict[str, Any]], db_path: Optional[Path] = None
) -> List[int]:
    """Insert or overwrite chunk rows keyed by (url, pos) in one transaction.

    Args:
        rows: Dicts with url, pos, city, category, content, section, tags, embedding

    Returns:
        Row ids in input order (stable across overwrites)
    """
    if not rows:
        return []

    conn = get_connection(db_path)
    cursor = conn.cursor()
    now = datetime.now(timezone.utc).isoformat()

    try:
        row_ids = []
        for row in rows:
            cursor.execute("""
                INSERT INTO chunks (
                    url, pos, city, category, content, section,
                    tags_json, embedding_json, updated_at
                ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
                ON CONFLICT(url, pos) DO UPDATE SET
                    city = excluded.city,
                    category = excluded.category,
                    content = excluded.content,
                    section = excluded.section,
                    tags_json = excluded.tags_json,
                    embedding_json = excluded.embedding_json,
                    updated_at = excluded.updated_at
            """, (
                row["url"],
                row["pos"],
                row["city"],
                row["category"],
                row["content"],
                row.get("section"),
                json.dumps(row.get("tags") or []),
                json.dumps(row["embedding"]),
                now,
            ))

            cursor.execute(
                "SELECT id FROM chunks WHERE url = ? AND pos = ?",
                (row["url"], row["pos"]),
            )
            row_ids.append(cursor.fetchone()[0])

        cursor.execute("UPDATE store_revision SET revision = revision + 1 WHERE id = 1")
        conn.commit()
        return row_ids

    except Exception as e:
        conn.rollback()
        logger.error("chunk_upsert_failed", error=str(e), row_count=len(rows))
        raise
    finally:
        conn.close()


def _row_to_chunk(row: sqlite3.Row, with_embedding: bool = False) -> Dict[str, Any]:
    chunk = dict(row)
    chunk["tags"] = json.loads(chunk.pop("tags_json") or "[]")
    embedding_json = chunk.pop("embedding_json", None)
    if with_embedding and embedding_json:
        chunk["embedding"] = json.loads(embedding_json)
    return chunk


def get_chunks_by_ids(
    row_ids: List[int], db_path: Optional[Path] = None
) -> List[Dict[str, Any]]:
    """Retrieve chunks by row id (FAISS vector id), without embeddings.

    Returns:
        List of chunk dictionaries (unordered)
    """
    if not row_ids:
        return []

    conn = get_connection(db_path)
    cursor = conn.cursor()

    try:
        placeholders = ",".join("?" * len(row_ids))
        cursor.execute(f"""
            SELECT id, url, pos, city, category, content, section, tags_json
            FROM chunks
            WHERE id IN ({placeholders})
        """, list(row_ids))

        return [_row_to_chunk(row) for row in cursor.fetchall()]

    except Exception as e:
        logger.error("chunks_retrieval_failed", error=str(e))
        raise
    finally:
        conn.close()


def get_all_embeddings(db_path: Optional[Path] = None) -> List[Dict[str, Any]]:
    """Return every row id with its embedding, for rebuilding the vector index."""
    conn = get_connection(db_path)
    cursor = conn.cursor()

    try:
        cursor.execute("SELECT id, embedding_json FROM chunks ORDER BY id")
        return [
            {"id": row["id"], "embedding": json.loads(row["embedding_json"])}
            for row in cursor.fetchall()
        ]

    except Exception as e:
        logger.error("embeddings_retrieval_failed", error=str(e))
        raise
    finally:
        conn.close()


def get_chunk_count(db_path: Optional[Path] = None, url: Optional[str] = None) -> int:
    """Get the number of stored chunks, optionally for one URL."""
    conn = get_connection(db_path)
    cursor = conn.cursor()

    try:
        if url is None:
            cursor.execute("SELECT COUNT(*) FROM chunks")
        else:
            cursor.execute("SELECT COUNT(*) FROM chunks WHERE url = ?", (url,))
        return cursor.fetchone()[0]

    except Exception as e:
        logger.error("chunk_count_failed", error=str(e))
        raise
    finally:
        conn.close()


def get_fingerprint(db_path: Optional[Path] = None) -> Dict[str, int]:
    """Return the write revision and row count of the chunk table.

    The revision grows with every committed upsert, from any process, so a
    vector index built at one fingerprint is stale once it changes.
    """
    conn = get_connection(db_path)
    cursor = conn.cursor()

    try:
        cursor.execute("SELECT revision FROM store_revision WHERE id = 1")
        row = cursor.fetchone()
        cursor.execute("SELECT COUNT(*) FROM chunks")
        return {
            "revision": row[0] if row else 0,
            "row_count": cursor.fetchone()[0],
        }

    except Exception as e:
        logger.error("fingerprint_read_failed", error=str(e))
        raise
    finally:
        conn.close()
