"""
bitsynq.services.distribution_service — Token Distributions & Balances
=======================================================================

Turns a project's contribution ledger into token allocations.

    preview_distribution  → allocation only, nothing written
    distribute_tokens     → allocation → (optional on-chain settlement)
                            → TokenDistribution + balance increments

Both paths run the same :func:`~bitsynq.engine.allocation.allocate` over
the same contribution ordering, so a preview's amounts are exactly what a
distribution of the same snapshot persists.  Settlement happens between
two short transactions: if it fails, nothing but a ``failed`` transaction
log is written.
"""

from __future__ import annotations

import logging
from collections.abc import Mapping
from typing import TYPE_CHECKING, Any

from sqlalchemy import func, select
from sqlalchemy.orm import Session

from bitsynq.config import BitsynqConfig, default_config
from bitsynq.database.engine import get_session
from bitsynq.database.models import (
    Contribution,
    DistributionStatus,
    Project,
    TokenDistribution,
    TxStatus,
    TxType,
    User,
    UserBalance,
)
from bitsynq.engine.allocation import (
    ContributorBalance,
    allocate,
    deserialize_distribution,
    serialize_distribution,
)
from bitsynq.services.errors import SettlementError, ValidationError
from bitsynq.services.project_service import get_or_create_balance, require_admin, require_member
from bitsynq.services.schemas import DistributeTokensRequest, PreviewDistributionRequest, parse_request
from bitsynq.services.settlement import (
    SettlementBackend,
    TransferItem,
    is_valid_address,
    parse_token_amount,
)
from bitsynq.services.transaction_log import LogInput, create_log

if TYPE_CHECKING:
    from sqlalchemy import Engine

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------
def _compute_allocation(
    session: Session, project_id: str, total_tokens: int
) -> dict[str, ContributorBalance]:
    """Allocate over all project contributions in insertion order."""
    rows = session.execute(
        select(Contribution.user_id, Contribution.ratio)
        .where(Contribution.project_id == project_id)
        .order_by(Contribution.created_at, Contribution.id)
    ).all()
    if not rows:
        raise ValidationError("No contributions found for this project")
    return allocate(rows, total_tokens)


def _users_by_id(session: Session, user_ids: list[str]) -> dict[str, User]:
    if not user_ids:
        return {}
    users = session.scalars(select(User).where(User.id.in_(user_ids))).all()
    return {u.id: u for u in users}


def _allocation_rows(
    allocation: Mapping[str, ContributorBalance], users: Mapping[str, User]
) -> list[dict[str, Any]]:
    rows = []
    for entry in allocation.values():
        user = users.get(entry.user_id)
        rows.append({
            "user_id": entry.user_id,
            "display_name": user.display_name if user else "Unknown",
            "avatar_url": user.avatar_url if user else None,
            "total_ratio": entry.total_ratio,
            "percentage": entry.percentage,
            "token_amount": entry.token_amount,
        })
    rows.sort(key=lambda r: r["token_amount"], reverse=True)
    return rows


def _build_transfers(
    allocation: Mapping[str, ContributorBalance],
    users: Mapping[str, User],
    decimals: int,
) -> tuple[list[TransferItem], list[LogInput]]:
    """Recipient transfers in base units; zero-token entries are skipped.

    Raises :class:`SettlementError` listing every recipient without a valid
    wallet address.
    """
    transfers: list[TransferItem] = []
    inputs: list[LogInput] = []
    missing: list[dict[str, Any]] = []
    for entry in allocation.values():
        if entry.token_amount <= 0:
            continue
        user = users.get(entry.user_id)
        wallet = user.wallet_address if user else None
        if not is_valid_address(wallet):
            missing.append({
                "user_id": entry.user_id,
                "display_name": user.display_name if user else None,
            })
            continue
        amount = parse_token_amount(entry.token_amount, decimals)
        transfers.append(TransferItem(to=wallet, amount=amount))
        inputs.append(LogInput(user_id=entry.user_id, wallet_address=wallet, amount=str(amount)))

    if missing:
        raise SettlementError(
            "Some users do not have valid wallet addresses", missing_users=missing
        )
    return transfers, inputs


# ---------------------------------------------------------------------------
# Preview / distribute
# ---------------------------------------------------------------------------
def preview_distribution(
    engine: Engine,
    *,
    project_id: str,
    actor_id: str,
    request: PreviewDistributionRequest | DistributeTokensRequest | Mapping[str, Any],
) -> dict[str, Any]:
    """Admin-only: what a distribution would allocate right now."""
    if isinstance(request, DistributeTokensRequest):
        milestone = request.milestone_name
        req = PreviewDistributionRequest(total_tokens=request.total_tokens)
    else:
        milestone = request.get("milestone_name") if isinstance(request, Mapping) else None
        req = parse_request(PreviewDistributionRequest, request)

    with get_session(engine) as session:
        require_admin(session, project_id, actor_id)
        allocation = _compute_allocation(session, project_id, req.total_tokens)
        users = _users_by_id(session, list(allocation))
        return {
            "milestone_name": milestone,
            "total_tokens": req.total_tokens,
            "distribution": _allocation_rows(allocation, users),
        }


def distribute_tokens(
    engine: Engine,
    *,
    project_id: str,
    actor_id: str,
    request: DistributeTokensRequest | Mapping[str, Any],
    settlement: SettlementBackend | None = None,
    config: BitsynqConfig | None = None,
) -> dict[str, Any]:
    """Admin-only: allocate *total_tokens*, optionally settle, then persist.

    Raises
    ------
    ValidationError
        No contributions, or a bad request.
    SettlementError
        ``on_chain`` requested without a backend, recipients lacking a
        wallet (``missing_users``), or a failed transfer (``details``).
    """
    req = parse_request(DistributeTokensRequest, request)
    cfg = config or default_config()

    # 1. Snapshot + allocation (read-only)
    with get_session(engine) as session:
        require_admin(session, project_id, actor_id)
        project = session.get(Project, project_id)
        token_symbol = project.token_symbol or cfg.token_symbol
        allocation = _compute_allocation(session, project_id, req.total_tokens)
        users = _users_by_id(session, list(allocation))

    # 2. Optional on-chain settlement (no open transaction)
    tx_hash: str | None = None
    inputs: list[LogInput] = []
    if req.on_chain:
        if settlement is None:
            raise SettlementError("Ethereum settlement is not configured")
        transfers, inputs = _build_transfers(allocation, users, cfg.token_decimals)
        total_base_units = str(sum(t.amount for t in transfers))
        result = settlement.batch_transfer(transfers)
        if not result.success:
            logger.error(
                "On-chain distribution failed for project %s: %s", project_id, result.error
            )
            with get_session(engine) as session:
                create_log(
                    session,
                    project_id=project_id,
                    tx_type=TxType.BATCH_TRANSFER.value,
                    from_address=settlement.sender_address,
                    to_address=settlement.token_contract,
                    amount=total_base_units,
                    created_by=actor_id,
                    tx_hash=result.tx_hash,
                    token_symbol=token_symbol,
                    status=TxStatus.FAILED.value,
                    error_message=result.error,
                    inputs=inputs,
                )
            raise SettlementError("Blockchain batch transfer failed", details=result.errors)
        tx_hash = result.tx_hash
        logger.info("On-chain distribution settled for project %s: tx %s", project_id, tx_hash)

    # 3. Persist the snapshot and balances
    with get_session(engine) as session:
        distribution = TokenDistribution(
            project_id=project_id,
            milestone_name=req.milestone_name,
            total_tokens=req.total_tokens,
            distribution_data=serialize_distribution(allocation),
            tx_hash=tx_hash,
            status=DistributionStatus.CONFIRMED.value,
            created_by=actor_id,
        )
        session.add(distribution)
        session.flush()

        for entry in allocation.values():
            get_or_create_balance(session, entry.user_id, project_id).balance += entry.token_amount

        if req.on_chain:
            create_log(
                session,
                project_id=project_id,
                distribution_id=distribution.id,
                tx_type=TxType.BATCH_TRANSFER.value,
                from_address=settlement.sender_address,
                to_address=settlement.token_contract,
                amount=total_base_units,
                created_by=actor_id,
                tx_hash=tx_hash,
                token_symbol=token_symbol,
                status=TxStatus.CONFIRMED.value,
                inputs=inputs,
            )

        logger.info(
            "Distribution %s: project=%s total=%d recipients=%d tx=%s",
            distribution.id,
            project_id,
            req.total_tokens,
            len(allocation),
            tx_hash,
        )
        return {
            "id": distribution.id,
            "message": "Tokens distributed successfully",
            "milestone_name": req.milestone_name,
            "total_tokens": req.total_tokens,
            "tx_hash": tx_hash,
            "distribution": [
                {
                    "user_id": entry.user_id,
                    "token_amount": entry.token_amount,
                    "percentage": entry.percentage,
                }
                for entry in allocation.values()
            ],
        }


# ---------------------------------------------------------------------------
# History & balances
# ---------------------------------------------------------------------------
def list_distributions(engine: Engine, *, project_id: str, actor_id: str) -> list[dict[str, Any]]:
    """Distribution history, newest first, with decoded snapshots."""
    with get_session(engine) as session:
        require_member(session, project_id, actor_id)
        rows = session.execute(
            select(TokenDistribution, User.display_name)
            .join(User, User.id == TokenDistribution.created_by)
            .where(TokenDistribution.project_id == project_id)
            .order_by(TokenDistribution.created_at.desc(), TokenDistribution.id)
        ).all()

    history = []
    for dist, created_by_name in rows:
        snapshot = (
            [b.to_dict() for b in deserialize_distribution(dist.distribution_data).values()]
            if dist.distribution_data
            else None
        )
        history.append({
            "id": dist.id,
            "project_id": dist.project_id,
            "milestone_name": dist.milestone_name,
            "total_tokens": dist.total_tokens,
            "distribution_data": snapshot,
            "tx_hash": dist.tx_hash,
            "status": dist.status,
            "created_by": dist.created_by,
            "created_by_name": created_by_name,
            "created_at": dist.created_at.isoformat() if dist.created_at else None,
        })
    return history


def _balance_to_dict(balance: UserBalance) -> dict[str, Any]:
    return {
        "user_id": balance.user_id,
        "project_id": balance.project_id,
        "balance": balance.balance,
        "total_contributed": balance.total_contributed,
        "last_updated": balance.last_updated.isoformat() if balance.last_updated else None,
    }


def get_balances(engine: Engine, *, project_id: str, actor_id: str) -> dict[str, Any]:
    """All member balances (highest first) and the confirmed-distribution total."""
    with get_session(engine) as session:
        require_member(session, project_id, actor_id)
        rows = session.execute(
            select(UserBalance, User.display_name, User.avatar_url)
            .join(User, User.id == UserBalance.user_id)
            .where(UserBalance.project_id == project_id)
            .order_by(UserBalance.balance.desc(), User.display_name)
        ).all()
        total = session.scalar(
            select(func.coalesce(func.sum(TokenDistribution.total_tokens), 0)).where(
                TokenDistribution.project_id == project_id,
                TokenDistribution.status == DistributionStatus.CONFIRMED.value,
            )
        )

    balances = []
    for balance, display_name, avatar_url in rows:
        data = _balance_to_dict(balance)
        data.update(display_name=display_name, avatar_url=avatar_url)
        balances.append(data)
    return {"balances": balances, "total_tokens_distributed": int(total or 0)}


def get_my_balance(engine: Engine, *, project_id: str, actor_id: str) -> dict[str, Any]:
    """The actor's own balance; zeros when no balance row exists yet."""
    with get_session(engine) as session:
        require_member(session, project_id, actor_id)
        balance = session.get(UserBalance, (actor_id, project_id))
        if balance is None:
            return {
                "user_id": actor_id,
                "project_id": project_id,
                "balance": 0,
                "total_contributed": 0.0,
                "last_updated": None,
            }
        return _balance_to_dict(balance)
