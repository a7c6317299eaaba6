"""Initial schema: payment attempts and config snapshots."""

import sqlite3

DDL = [
    # One row per charge attempt; written before the processor is called
    """
    CREATE TABLE IF NOT EXISTS payment_attempts (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        order_id TEXT NOT NULL,
        payment_method_id TEXT NOT NULL,
        customer_id TEXT NOT NULL,
        amount INTEGER NOT NULL,
        currency TEXT NOT NULL,
        idempotency_key TEXT NOT NULL UNIQUE,
        attempt_number INTEGER NOT NULL,
        status TEXT NOT NULL DEFAULT 'created',
        payment_intent_id TEXT UNIQUE,
        refund_id TEXT,
        refund_amount INTEGER,
        propagation_status TEXT NOT NULL DEFAULT 'not_required',
        error_message TEXT NOT NULL DEFAULT '',
        created_at TEXT NOT NULL,
        updated_at TEXT NOT NULL,
        UNIQUE(order_id, attempt_number)
    )
    """,
    (
        "CREATE INDEX IF NOT EXISTS idx_payment_attempts_order "
        "ON payment_attempts(order_id)"
    ),
    (
        "CREATE INDEX IF NOT EXISTS idx_payment_attempts_propagation "
        "ON payment_attempts(status, propagation_status)"
    ),

    # Config snapshots for audit
    """
    CREATE TABLE IF NOT EXISTS config_snapshots (
        config_hash TEXT PRIMARY KEY,
        config_json TEXT NOT NULL,
        created_at TEXT NOT NULL DEFAULT CURRENT_TIMESTAMP
    )
    """,
]


def up(conn: sqlite3.Connection) -> None:
    for stmt in DDL:
        conn.execute(stmt)
    conn.commit()
