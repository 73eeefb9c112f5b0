import uuid
from typing import Any, Dict, List, Optional

from .db import connect


def create_user(
    name: str,
    email: str,
    coins: int = 0,
) -> Dict[str, Any]:
    user_id = str(uuid.uuid4())
    with connect() as conn:
        row = conn.execute(
            "SELECT * FROM users WHERE email=?",
            (email,),
        ).fetchone()
        if row:
            return dict(row)

        conn.execute(
            "INSERT INTO users (id, name, email, coins) VALUES (?, ?, ?, ?)",
            (user_id, name, email, int(coins)),
        )
        if coins:
            conn.execute(
                (
                    "INSERT INTO coin_transactions ("
                    "id, user_id, amount, reason"
                    ") VALUES (?, ?, ?, ?)"
                ),
                (str(uuid.uuid4()), user_id, int(coins), "signup"),
            )
        return dict(
            conn.execute(
                "SELECT * FROM users WHERE id=?",
                (user_id,),
            ).fetchone()
        )


def get_user(user_id: str) -> Optional[Dict[str, Any]]:
    with connect() as conn:
        row = conn.execute(
            "SELECT * FROM users WHERE id=?",
            (user_id,),
        ).fetchone()
        return dict(row) if row else None


def get_user_coins(user_id: str) -> Optional[int]:
    with connect() as conn:
        row = conn.execute(
            "SELECT coins FROM users WHERE id=?",
            (user_id,),
        ).fetchone()
        return int(row["coins"]) if row else None


def credit_coins(user_id: str, amount: int, reason: str = "") -> bool:
    with connect() as conn:
        cur = conn.execute(
            (
                "UPDATE users SET coins=coins+?, "
                "updated_at=strftime('%Y-%m-%d %H:%M:%f','now') "
                "WHERE id=?"
            ),
            (int(amount), user_id),
        )
        if not cur.rowcount:
            return False
        conn.execute(
            (
                "INSERT INTO coin_transactions ("
                "id, user_id, amount, reason"
                ") VALUES (?, ?, ?, ?)"
            ),
            (str(uuid.uuid4()), user_id, int(amount), reason),
        )
        return True


def debit_coins(user_id: str, amount: int) -> bool:
    # Single conditional UPDATE; sqlite serializes writers, so the balance
    # check and the decrement cannot interleave with another debit.
    with connect() as conn:
        cur = conn.execute(
            (
                "UPDATE users SET coins=coins-?, "
                "updated_at=strftime('%Y-%m-%d %H:%M:%f','now') "
                "WHERE id=? AND coins>=?"
            ),
            (int(amount), user_id, int(amount)),
        )
        return bool(cur.rowcount)


def insert_coin_spend(
    user_id: str,
    summary_id: str,
    amount: int,
    url: Optional[str] = None,
) -> str:
    spend_id = str(uuid.uuid4())
    with connect() as conn:
        conn.execute(
            (
                "INSERT INTO coins_spend ("
                "id, user_id, summary_id, amount, url"
                ") VALUES (?, ?, ?, ?, ?)"
            ),
            (spend_id, user_id, summary_id, int(amount), url),
        )
    return spend_id


def find_coin_spend(
    user_id: str,
    summary_id: str,
) -> Optional[Dict[str, Any]]:
    with connect() as conn:
        row = conn.execute(
            "SELECT * FROM coins_spend WHERE user_id=? AND summary_id=? "
            "ORDER BY created_at LIMIT 1",
            (user_id, summary_id),
        ).fetchone()
        return dict(row) if row else None


def list_coin_spends(user_id: str, limit: int = 100) -> List[Dict[str, Any]]:
    with connect() as conn:
        rows = conn.execute(
            "SELECT * FROM coins_spend WHERE user_id=? "
            "ORDER BY created_at DESC LIMIT ?",
            (user_id, int(limit)),
        ).fetchall()
        return [dict(r) for r in rows]


def create_summary(
    *,
    summary_id: str,
    user_id: str,
    url: str,
    title: Optional[str],
    status: str = "pending",
) -> Dict[str, Any]:
    with connect() as conn:
        conn.execute(
            (
                "INSERT INTO summaries ("
                "id, user_id, url, title, status"
                ") VALUES (?, ?, ?, ?, ?)"
            ),
            (summary_id, user_id, url, title, status),
        )
        return dict(
            conn.execute(
                "SELECT * FROM summaries WHERE id=?",
                (summary_id,),
            ).fetchone()
        )


def get_summary(summary_id: str) -> Optional[Dict[str, Any]]:
    with connect() as conn:
        row = conn.execute(
            "SELECT * FROM summaries WHERE id=?",
            (summary_id,),
        ).fetchone()
        return dict(row) if row else None


def find_summary_by_url(url: str) -> Optional[Dict[str, Any]]:
    with connect() as conn:
        row = conn.execute(
            "SELECT * FROM summaries "
            "WHERE url=? AND response IS NOT NULL AND response != '' "
            "ORDER BY updated_at DESC LIMIT 1",
            (url,),
        ).fetchone()
        return dict(row) if row else None


def upsert_summary_result(
    *,
    summary_id: str,
    user_id: str,
    url: str,
    title: Optional[str],
    response: str,
) -> bool:
    """Store a finished summary under its id.

    An existing row is only completed when it has the same owner and URL;
    returns False (and changes nothing) when the id is taken otherwise.
    """
    with connect() as conn:
        cur = conn.execute(
            (
                "INSERT INTO summaries ("
                "id, user_id, url, title, response, status"
                ") VALUES (?, ?, ?, ?, ?, 'completed') "
                "ON CONFLICT(id) DO UPDATE SET "
                "response=excluded.response, "
                "title=COALESCE(excluded.title, summaries.title), "
                "status='completed', "
                "error_code=NULL, "
                "updated_at=strftime('%Y-%m-%d %H:%M:%f','now') "
                "WHERE summaries.user_id=excluded.user_id "
                "AND summaries.url=excluded.url"
            ),
            (summary_id, user_id, url, title, response),
        )
        return bool(cur.rowcount)


def list_summaries(
    user_id: str,
    limit: int = 50,
    offset: int = 0,
) -> List[Dict[str, Any]]:
    with connect() as conn:
        rows = conn.execute(
            "SELECT * FROM summaries WHERE user_id=? "
            "ORDER BY created_at DESC LIMIT ? OFFSET ?",
            (user_id, int(limit), int(offset)),
        ).fetchall()
        return [dict(r) for r in rows]
