"""Repository for payment attempts, the durable record behind every charge."""

import sqlite3

from courier.models.common import utc_now_iso
from courier.models.payment import AttemptStatus, PaymentAttempt, PropagationStatus


def save_attempt(conn: sqlite3.Connection, attempt: PaymentAttempt) -> int:
    """Persist a new payment attempt. Returns the row id."""
    now = utc_now_iso()
    cursor = conn.execute(
        "INSERT INTO payment_attempts "
        "(order_id, payment_method_id, customer_id, amount, currency, "
        "idempotency_key, attempt_number, status, payment_intent_id, "
        "propagation_status, error_message, created_at, updated_at) "
        "VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)",
        (
            attempt.order_id,
            attempt.payment_method_id,
            attempt.customer_id,
            attempt.amount,
            attempt.currency,
            attempt.idempotency_key,
            attempt.attempt_number,
            attempt.status.value,
            attempt.payment_intent_id,
            attempt.propagation_status.value,
            attempt.error_message,
            attempt.created_at or now,
            now,
        ),
    )
    conn.commit()
    assert cursor.lastrowid is not None
    return cursor.lastrowid


def update_attempt_status(
    conn: sqlite3.Connection,
    idempotency_key: str,
    status: AttemptStatus,
    payment_intent_id: str | None = None,
    error_message: str | None = None,
) -> None:
    """Record the processor outcome for an attempt."""
    sets = ["status = ?", "updated_at = ?"]
    params: list = [status.value, utc_now_iso()]
    if payment_intent_id is not None:
        sets.append("payment_intent_id = ?")
        params.append(payment_intent_id)
    if error_message is not None:
        sets.append("error_message = ?")
        params.append(error_message)
    params.append(idempotency_key)
    conn.execute(
        f"UPDATE payment_attempts SET {', '.join(sets)} WHERE idempotency_key = ?",
        params,
    )
    conn.commit()


def set_propagation_status(
    conn: sqlite3.Connection, idempotency_key: str, status: PropagationStatus
) -> None:
    conn.execute(
        "UPDATE payment_attempts SET propagation_status = ?, updated_at = ? "
        "WHERE idempotency_key = ?",
        (status.value, utc_now_iso(), idempotency_key),
    )
    conn.commit()


def mark_refunded(
    conn: sqlite3.Connection,
    payment_intent_id: str,
    refund_id: str,
    refund_amount: int,
) -> None:
    """Record a refund. Amounts accumulate across partial refunds; refund_id is the latest."""
    conn.execute(
        "UPDATE payment_attempts SET status = ?, refund_id = ?, "
        "refund_amount = COALESCE(refund_amount, 0) + ?, "
        "updated_at = ? WHERE payment_intent_id = ?",
        (
            AttemptStatus.REFUNDED.value,
            refund_id,
            refund_amount,
            utc_now_iso(),
            payment_intent_id,
        ),
    )
    conn.commit()


def count_attempts_for_order(conn: sqlite3.Connection, order_id: str) -> int:
    row = conn.execute(
        "SELECT COUNT(*) FROM payment_attempts WHERE order_id = ?", (order_id,)
    ).fetchone()
    return row[0]


def get_attempt_by_key(
    conn: sqlite3.Connection, idempotency_key: str
) -> PaymentAttempt | None:
    row = conn.execute(
        "SELECT * FROM payment_attempts WHERE idempotency_key = ?",
        (idempotency_key,),
    ).fetchone()
    return _to_attempt(row) if row is not None else None


def get_attempt_by_intent(
    conn: sqlite3.Connection, payment_intent_id: str
) -> PaymentAttempt | None:
    row = conn.execute(
        "SELECT * FROM payment_attempts WHERE payment_intent_id = ?",
        (payment_intent_id,),
    ).fetchone()
    return _to_attempt(row) if row is not None else None


def get_attempts_for_order(
    conn: sqlite3.Connection, order_id: str
) -> list[PaymentAttempt]:
    rows = conn.execute(
        "SELECT * FROM payment_attempts WHERE order_id = ? ORDER BY attempt_number",
        (order_id,),
    ).fetchall()
    return [_to_attempt(r) for r in rows]


def list_unpropagated(conn: sqlite3.Connection) -> list[PaymentAttempt]:
    """Succeeded charges whose order record was never confirmed as updated.

    These are the rows an out-of-band reconciliation job has to close.
    """
    rows = conn.execute(
        "SELECT * FROM payment_attempts WHERE status = ? "
        "AND propagation_status IN (?, ?) ORDER BY created_at",
        (
            AttemptStatus.SUCCEEDED.value,
            PropagationStatus.PENDING.value,
            PropagationStatus.FAILED.value,
        ),
    ).fetchall()
    return [_to_attempt(r) for r in rows]


def _to_attempt(row: sqlite3.Row) -> PaymentAttempt:
    return PaymentAttempt(
        order_id=row["order_id"],
        payment_method_id=row["payment_method_id"],
        customer_id=row["customer_id"],
        amount=row["amount"],
        currency=row["currency"],
        idempotency_key=row["idempotency_key"],
        attempt_number=row["attempt_number"],
        status=AttemptStatus(row["status"]),
        payment_intent_id=row["payment_intent_id"],
        refund_id=row["refund_id"],
        refund_amount=row["refund_amount"],
        propagation_status=PropagationStatus(row["propagation_status"]),
        error_message=row["error_message"],
        created_at=row["created_at"],
        updated_at=row["updated_at"],
    )
