"""Idempotency keys for charge attempts."""

import hashlib
import sqlite3

from courier.storage import payment_repo


def generate_idempotency_key(order_id: str, attempt_number: int) -> str:
    """Generate a deterministic idempotency key.

    Same order + attempt number = same key, so a replayed attempt is
    deduplicated by the processor instead of charging twice.
    """
    raw = f"{order_id}|{attempt_number}"
    return hashlib.sha256(raw.encode()).hexdigest()[:32]


def next_attempt_number(conn: sqlite3.Connection, order_id: str) -> int:
    return payment_repo.count_attempts_for_order(conn, order_id) + 1
