"""
Ledger Store — owner-scoped expense transactions in SQLite.

Storage: SQLite at agent/data/ledger.db
  (override path with LEDGER_DB_PATH env var; tests use :memory:)

Records are insert-only: there is no update path. Rows leave the ledger
only through the delete helpers below. Every query takes an owner_id and
never reads another owner's rows.

Dates are stored as ISO "YYYY-MM-DD" strings so range filters compare
lexicographically; createdAt is an ISO UTC timestamp used to break ties
between transactions on the same day.
"""

import calendar
import sqlite3
import uuid
from datetime import date, datetime
from typing import Iterable, Optional

import config

CATEGORIES = ("Food", "Transport", "Shopping", "Entertainment", "Bills", "Health", "Other")

# Vietnamese / colloquial names the model or a receipt parser may hand us
CATEGORY_ALIASES = {
    "ăn uống": "Food",
    "an uong": "Food",
    "đồ ăn": "Food",
    "ăn": "Food",
    "cafe": "Food",
    "cà phê": "Food",
    "di chuyển": "Transport",
    "đi lại": "Transport",
    "xăng": "Transport",
    "taxi": "Transport",
    "grab": "Transport",
    "mua sắm": "Shopping",
    "quần áo": "Shopping",
    "giải trí": "Entertainment",
    "phim": "Entertainment",
    "hóa đơn": "Bills",
    "hoá đơn": "Bills",
    "điện nước": "Bills",
    "tiền nhà": "Bills",
    "sức khỏe": "Health",
    "sức khoẻ": "Health",
    "thuốc": "Health",
    "khác": "Other",
}

_CANONICAL = {c.lower(): c for c in CATEGORIES}


def match_category(value: Optional[str]) -> Optional[str]:
    """Returns the canonical category for value, or None if it is not recognised."""
    if not value:
        return None
    key = value.strip().lower()
    return _CANONICAL.get(key) or CATEGORY_ALIASES.get(key)


def normalize_category(value: Optional[str]) -> str:
    """Canonical category for value; unknown values become 'Other'."""
    return match_category(value) or "Other"


def month_bounds(year: int, month: int) -> tuple[date, date]:
    """First and last calendar day of the month (leap years included)."""
    last_day = calendar.monthrange(year, month)[1]
    return date(year, month, 1), date(year, month, last_day)


# ---------------------------------------------------------------------------
# SQLite connection helpers
# ---------------------------------------------------------------------------

_SCHEMA_SQL = """
    CREATE TABLE IF NOT EXISTS transactions (
        id TEXT PRIMARY KEY,
        owner_id TEXT NOT NULL,
        amount INTEGER NOT NULL CHECK (amount > 0),
        category TEXT NOT NULL,
        note TEXT DEFAULT '',
        date TEXT NOT NULL,
        merchant TEXT DEFAULT '',
        raw_text TEXT DEFAULT '',
        created_at TEXT NOT NULL
    );
    CREATE INDEX IF NOT EXISTS idx_transactions_owner_date
        ON transactions (owner_id, date);
    CREATE INDEX IF NOT EXISTS idx_transactions_owner_category
        ON transactions (owner_id, category);
"""

# SQLite :memory: is per connection, so one is shared for the process.
_MEMORY_CONN: Optional[sqlite3.Connection] = None

_RECENT_ORDER = "ORDER BY date DESC, created_at DESC, rowid DESC"


def _get_conn() -> sqlite3.Connection:
    global _MEMORY_CONN
    path = config.ledger_db_path()

    if path == ":memory:":
        if _MEMORY_CONN is None:
            _MEMORY_CONN = sqlite3.connect(":memory:", check_same_thread=False)
            _MEMORY_CONN.row_factory = sqlite3.Row
            _MEMORY_CONN.executescript(_SCHEMA_SQL)
            _MEMORY_CONN.commit()
        return _MEMORY_CONN

    conn = sqlite3.connect(path, check_same_thread=False)
    conn.row_factory = sqlite3.Row
    conn.execute("PRAGMA journal_mode=WAL")
    conn.executescript(_SCHEMA_SQL)
    conn.commit()
    return conn


def _close_conn(conn: sqlite3.Connection) -> None:
    """Closes file-based connections; leaves the :memory: connection open."""
    if conn is not _MEMORY_CONN:
        conn.close()


def _row_to_dict(row: sqlite3.Row) -> dict:
    return dict(row)


def _iso(value) -> str:
    if isinstance(value, datetime):
        return value.date().isoformat()
    if isinstance(value, date):
        return value.isoformat()
    return date.fromisoformat(str(value)[:10]).isoformat()


def ledger_clear() -> None:
    """Wipes every transaction for every owner. Test helper."""
    conn = _get_conn()
    try:
        conn.execute("DELETE FROM transactions")
        conn.commit()
    finally:
        _close_conn(conn)


# ---------------------------------------------------------------------------
# Writes
# ---------------------------------------------------------------------------

def add_transaction(
    owner_id: str,
    amount: int,
    category: str,
    tx_date,
    note: str = "",
    merchant: str = "",
    raw_text: str = "",
) -> dict:
    """
    Inserts one transaction and returns it as a dict.

    Raises ValueError when amount is not a positive whole number, and
    sqlite3.Error when the store itself fails.
    """
    if isinstance(amount, bool) or int(amount) != amount or amount <= 0:
        raise ValueError(f"amount must be a positive whole number, got {amount!r}")

    record = {
        "id": f"tx_{uuid.uuid4().hex[:12]}",
        "owner_id": owner_id,
        "amount": int(amount),
        "category": normalize_category(category),
        "note": (note or "").strip(),
        "date": _iso(tx_date),
        "merchant": (merchant or "").strip(),
        "raw_text": raw_text or "",
        "created_at": datetime.utcnow().isoformat(),
    }

    conn = _get_conn()
    try:
        conn.execute(
            """INSERT INTO transactions
               (id, owner_id, amount, category, note, date, merchant, raw_text, created_at)
               VALUES (:id, :owner_id, :amount, :category, :note, :date, :merchant,
                       :raw_text, :created_at)""",
            record,
        )
        conn.commit()
    finally:
        _close_conn(conn)
    return record


def delete_transactions(owner_id: str, ids: Iterable[str]) -> int:
    """Deletes the owner's transactions whose id is in ids. Returns the count."""
    id_list = list(ids)
    if not id_list:
        return 0
    placeholders = ",".join("?" for _ in id_list)
    conn = _get_conn()
    try:
        cur = conn.execute(
            f"DELETE FROM transactions WHERE owner_id = ? AND id IN ({placeholders})",
            [owner_id, *id_list],
        )
        conn.commit()
        return cur.rowcount
    finally:
        _close_conn(conn)


def remove_transactions(
    owner_id: str,
    category: Optional[str] = None,
    limit: Optional[int] = None,
) -> list[dict]:
    """
    Deletes the owner's most recent transactions and returns what was removed.

    category narrows the match; limit=None removes every match.
    """
    sql = "SELECT * FROM transactions WHERE owner_id = ?"
    params: list = [owner_id]
    if category is not None:
        sql += " AND category = ?"
        params.append(category)
    sql += f" {_RECENT_ORDER}"
    if limit is not None:
        sql += " LIMIT ?"
        params.append(int(limit))

    conn = _get_conn()
    try:
        rows = [_row_to_dict(r) for r in conn.execute(sql, params).fetchall()]
        if rows:
            placeholders = ",".join("?" for _ in rows)
            conn.execute(
                f"DELETE FROM transactions WHERE owner_id = ? AND id IN ({placeholders})",
                [owner_id, *(r["id"] for r in rows)],
            )
            conn.commit()
        return rows
    finally:
        _close_conn(conn)


# ---------------------------------------------------------------------------
# Reads
# ---------------------------------------------------------------------------

def transactions_between(owner_id: str, start, end) -> list[dict]:
    """Owner's transactions dated start..end inclusive, most recent first."""
    conn = _get_conn()
    try:
        rows = conn.execute(
            f"SELECT * FROM transactions WHERE owner_id = ? AND date BETWEEN ? AND ? {_RECENT_ORDER}",
            (owner_id, _iso(start), _iso(end)),
        ).fetchall()
        return [_row_to_dict(r) for r in rows]
    finally:
        _close_conn(conn)


def month_transactions(owner_id: str, year: int, month: int) -> list[dict]:
    start, end = month_bounds(year, month)
    return transactions_between(owner_id, start, end)


def recent_transactions(
    owner_id: str,
    limit: int = 10,
    category: Optional[str] = None,
) -> list[dict]:
    sql = "SELECT * FROM transactions WHERE owner_id = ?"
    params: list = [owner_id]
    if category is not None:
        sql += " AND category = ?"
        params.append(category)
    sql += f" {_RECENT_ORDER} LIMIT ?"
    params.append(int(limit))

    conn = _get_conn()
    try:
        return [_row_to_dict(r) for r in conn.execute(sql, params).fetchall()]
    finally:
        _close_conn(conn)


def count_transactions(owner_id: str) -> int:
    conn = _get_conn()
    try:
        row = conn.execute(
            "SELECT COUNT(*) AS n FROM transactions WHERE owner_id = ?", (owner_id,)
        ).fetchone()
        return row["n"]
    finally:
        _close_conn(conn)
