"""
bitsynq.services.transaction_log — On-chain Transaction Journal
================================================================

Every settlement attempt leaves a ``transaction_logs`` row (plus one
``transaction_inputs`` row per recipient for batches), whether it was
confirmed or failed.  Listing pages newest first with a compound
``created_at|id`` cursor, so rows sharing a timestamp are never skipped.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable
from dataclasses import dataclass
from datetime import UTC, datetime
from typing import TYPE_CHECKING, Any

from sqlalchemy import and_, func, or_, select, update
from sqlalchemy.orm import Session, aliased

from bitsynq.database.engine import get_session
from bitsynq.database.models import (
    TokenDistribution,
    TransactionInput,
    TransactionLog,
    TxStatus,
    TxType,
    User,
)
from bitsynq.services.errors import ConflictError, NotFoundError, ValidationError
from bitsynq.services.project_service import require_admin, require_member

if TYPE_CHECKING:
    from sqlalchemy import Engine

logger = logging.getLogger(__name__)

DEFAULT_LOG_LIMIT = 20
MAX_LOG_LIMIT = 100


@dataclass(frozen=True, slots=True)
class LogInput:
    """One recipient row of a batch transaction."""

    user_id: str
    wallet_address: str
    amount: str


def _iso(value: datetime | None) -> str | None:
    return value.isoformat() if value else None


def log_to_dict(log: TransactionLog) -> dict[str, Any]:
    return {
        "id": log.id,
        "project_id": log.project_id,
        "distribution_id": log.distribution_id,
        "tx_hash": log.tx_hash,
        "tx_type": log.tx_type,
        "from_address": log.from_address,
        "to_address": log.to_address,
        "amount": log.amount,
        "token_symbol": log.token_symbol,
        "status": log.status,
        "block_number": log.block_number,
        "gas_used": log.gas_used,
        "error_message": log.error_message,
        "retry_count": log.retry_count,
        "created_by": log.created_by,
        "created_at": _iso(log.created_at),
        "updated_at": _iso(log.updated_at),
        "confirmed_at": _iso(log.confirmed_at),
    }


# ---------------------------------------------------------------------------
# Writes (inside the caller's transaction)
# ---------------------------------------------------------------------------
def create_log(
    session: Session,
    *,
    project_id: str,
    tx_type: str,
    from_address: str,
    to_address: str,
    amount: str,
    created_by: str,
    distribution_id: str | None = None,
    tx_hash: str | None = None,
    token_symbol: str = "BTS",
    status: str = TxStatus.PENDING.value,
    error_message: str | None = None,
    inputs: Iterable[LogInput] = (),
) -> TransactionLog:
    """Insert a log row and its recipient inputs."""
    tx_type = TxType(tx_type).value
    status = TxStatus(status).value
    log = TransactionLog(
        project_id=project_id,
        distribution_id=distribution_id,
        tx_hash=tx_hash,
        tx_type=tx_type,
        from_address=from_address,
        to_address=to_address,
        amount=amount,
        token_symbol=token_symbol,
        status=status,
        error_message=error_message,
        created_by=created_by,
        confirmed_at=datetime.now(UTC) if status == TxStatus.CONFIRMED else None,
    )
    log.inputs = [
        TransactionInput(user_id=i.user_id, wallet_address=i.wallet_address, amount=i.amount)
        for i in inputs
    ]
    session.add(log)
    session.flush()
    logger.debug("Transaction log %s created (%s, %s)", log.id, tx_type, status)
    return log


def update_status(
    session: Session,
    tx_hash: str,
    status: str,
    *,
    block_number: int | None = None,
    gas_used: int | None = None,
    error_message: str | None = None,
) -> int:
    """Update every log carrying *tx_hash*; returns the number of rows touched.

    Moving to ``confirmed`` stamps ``confirmed_at``.
    """
    status = TxStatus(status).value
    now = datetime.now(UTC)
    values: dict[str, Any] = {"status": status, "updated_at": now}
    if block_number is not None:
        values["block_number"] = block_number
    if gas_used is not None:
        values["gas_used"] = gas_used
    if error_message is not None:
        values["error_message"] = error_message
    if status == TxStatus.CONFIRMED:
        values["confirmed_at"] = now

    result = session.execute(
        update(TransactionLog).where(TransactionLog.tx_hash == tx_hash).values(**values)
    )
    return result.rowcount


# ---------------------------------------------------------------------------
# Reads
# ---------------------------------------------------------------------------
CURSOR_SEPARATOR = "|"


def _encode_cursor(log: dict[str, Any]) -> str:
    return f"{log['created_at']}{CURSOR_SEPARATOR}{log['id']}"


def _parse_cursor(cursor: str | None) -> tuple[datetime, str | None] | None:
    """``(created_at, id)`` from a cursor; a bare timestamp carries no id."""
    if cursor is None:
        return None
    stamp, _, log_id = cursor.partition(CURSOR_SEPARATOR)
    try:
        return datetime.fromisoformat(stamp), log_id or None
    except ValueError as exc:
        raise ValidationError(f"Invalid cursor: {cursor!r}") from exc


def get_logs(
    engine: Engine,
    *,
    project_id: str,
    actor_id: str,
    status: str | None = None,
    tx_type: str | None = None,
    address: str | None = None,
    limit: int = DEFAULT_LOG_LIMIT,
    cursor: str | None = None,
) -> dict[str, Any]:
    """Newest-first logs; pass ``next_cursor`` back to fetch the next page."""
    limit = min(max(limit, 1), MAX_LOG_LIMIT)
    position = _parse_cursor(cursor)
    from_user = aliased(User)
    to_user = aliased(User)

    stmt = (
        select(
            TransactionLog,
            from_user.display_name.label("from_display_name"),
            to_user.display_name.label("to_display_name"),
            TokenDistribution.milestone_name,
        )
        .outerjoin(from_user, from_user.wallet_address == TransactionLog.from_address)
        .outerjoin(to_user, to_user.wallet_address == TransactionLog.to_address)
        .outerjoin(TokenDistribution, TokenDistribution.id == TransactionLog.distribution_id)
        .where(TransactionLog.project_id == project_id)
    )
    if status:
        stmt = stmt.where(TransactionLog.status == status)
    if tx_type:
        stmt = stmt.where(TransactionLog.tx_type == tx_type)
    if address:
        needle = address.lower()
        stmt = stmt.where(
            or_(
                func.lower(TransactionLog.from_address) == needle,
                func.lower(TransactionLog.to_address) == needle,
            )
        )
    if position is not None:
        before, last_id = position
        if last_id is None:
            stmt = stmt.where(TransactionLog.created_at < before)
        else:
            # Same order as the listing: created_at desc, then id asc
            stmt = stmt.where(
                or_(
                    TransactionLog.created_at < before,
                    and_(TransactionLog.created_at == before, TransactionLog.id > last_id),
                )
            )
    stmt = stmt.order_by(TransactionLog.created_at.desc(), TransactionLog.id).limit(limit)

    with get_session(engine) as session:
        require_member(session, project_id, actor_id)
        rows = session.execute(stmt).all()

    transactions = []
    for log, from_name, to_name, milestone in rows:
        data = log_to_dict(log)
        data.update(
            from_display_name=from_name,
            to_display_name=to_name,
            milestone_name=milestone,
        )
        transactions.append(data)

    return {
        "transactions": transactions,
        "pagination": {
            "limit": limit,
            "next_cursor": _encode_cursor(transactions[-1]) if transactions else None,
            "has_more": len(transactions) == limit,
        },
    }


def get_log_detail(engine: Engine, *, project_id: str, actor_id: str, log_id: str) -> dict[str, Any]:
    """One log with its recipient inputs (and their display names)."""
    with get_session(engine) as session:
        require_member(session, project_id, actor_id)
        log = session.get(TransactionLog, log_id)
        if log is None or log.project_id != project_id:
            raise NotFoundError(f"Transaction {log_id} not found")

        inputs = session.execute(
            select(TransactionInput, User.display_name)
            .join(User, User.id == TransactionInput.user_id)
            .where(TransactionInput.transaction_log_id == log_id)
            .order_by(TransactionInput.created_at, TransactionInput.id)
        ).all()

        detail = log_to_dict(log)
        detail["inputs"] = [
            {
                "id": row.id,
                "user_id": row.user_id,
                "user_display_name": display_name,
                "wallet_address": row.wallet_address,
                "amount": row.amount,
            }
            for row, display_name in inputs
        ]
        return detail


def retry_log(engine: Engine, *, project_id: str, actor_id: str, log_id: str) -> TransactionLog:
    """Admin-only: requeue a failed transaction as pending."""
    with get_session(engine) as session:
        require_admin(session, project_id, actor_id)
        log = session.get(TransactionLog, log_id)
        if log is None or log.project_id != project_id:
            raise NotFoundError(f"Transaction {log_id} not found")
        if log.status != TxStatus.FAILED:
            raise ConflictError("Transaction is not in failed state")
        log.status = TxStatus.PENDING.value
        log.error_message = None
        log.retry_count += 1
        session.flush()
        logger.info("Transaction %s queued for retry (attempt %d)", log_id, log.retry_count)
        return log
