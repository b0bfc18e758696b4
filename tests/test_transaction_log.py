"""
tests/test_transaction_log.py — Transaction Journal
====================================================
"""

from __future__ import annotations

from datetime import datetime, timedelta

import pytest
from sqlalchemy.orm import Session

from bitsynq.database.models import TransactionLog
from bitsynq.services.errors import (
    ConflictError,
    NotFoundError,
    PermissionDeniedError,
    ValidationError,
)
from bitsynq.services.transaction_log import (
    LogInput,
    create_log,
    get_log_detail,
    get_logs,
    retry_log,
    update_status,
)

SENDER = "0x" + "99" * 20
TOKEN = "0x" + "77" * 20
BASE_TIME = datetime(2026, 10, 1, 12, 0, 0)


def _add_log(engine, seeded, *, minutes=0, **overrides) -> str:
    fields = {
        "project_id": seeded.project_id,
        "tx_type": "batch_transfer",
        "from_address": SENDER,
        "to_address": TOKEN,
        "amount": "100",
        "created_by": seeded.admin_id,
    }
    fields.update(overrides)
    with Session(engine) as session:
        log = create_log(session, **fields)
        log.created_at = BASE_TIME + timedelta(minutes=minutes)
        session.commit()
        return log.id


# ---------------------------------------------------------------------------
# Writes
# ---------------------------------------------------------------------------
class TestCreateAndUpdate:
    def test_create_with_inputs(self, db_engine, seeded):
        log_id = _add_log(
            db_engine,
            seeded,
            tx_hash="0xabc",
            inputs=[
                LogInput(user_id=seeded.john_id, wallet_address=seeded.john_wallet, amount="60"),
                LogInput(user_id=seeded.herong_id, wallet_address=seeded.herong_wallet, amount="40"),
            ],
        )
        detail = get_log_detail(
            db_engine, project_id=seeded.project_id, actor_id=seeded.john_id, log_id=log_id
        )
        assert detail["status"] == "pending"
        assert detail["confirmed_at"] is None
        assert detail["retry_count"] == 0
        names = {i["user_display_name"]: i["amount"] for i in detail["inputs"]}
        assert names == {"John Doe": "60", "黃和融": "40"}

    def test_confirmed_on_create_is_stamped(self, db_engine, seeded):
        log_id = _add_log(db_engine, seeded, status="confirmed", tx_hash="0x1")
        with Session(db_engine) as session:
            assert session.get(TransactionLog, log_id).confirmed_at is not None

    def test_unknown_type_rejected(self, db_engine, seeded):
        with pytest.raises(ValueError):
            _add_log(db_engine, seeded, tx_type="airdrop")

    def test_update_status_by_hash(self, db_engine, seeded):
        log_id = _add_log(db_engine, seeded, tx_hash="0xfeed")
        with Session(db_engine) as session:
            touched = update_status(session, "0xfeed", "confirmed", block_number=12, gas_used=51000)
            session.commit()
        assert touched == 1

        with Session(db_engine) as session:
            log = session.get(TransactionLog, log_id)
            assert log.status == "confirmed"
            assert log.block_number == 12
            assert log.gas_used == 51000
            assert log.confirmed_at is not None

    def test_update_unknown_hash(self, db_engine, seeded):
        with Session(db_engine) as session:
            assert update_status(session, "0xnothing", "failed", error_message="gone") == 0


# ---------------------------------------------------------------------------
# Listing
# ---------------------------------------------------------------------------
class TestGetLogs:
    @pytest.fixture
    def journal(self, db_engine, seeded):
        _add_log(db_engine, seeded, minutes=0, status="confirmed", tx_hash="0x0")
        _add_log(db_engine, seeded, minutes=1, status="failed", error_message="reverted")
        _add_log(
            db_engine,
            seeded,
            minutes=2,
            tx_type="mint",
            to_address=seeded.john_wallet,
            status="confirmed",
            tx_hash="0x2",
        )
        return seeded

    def test_newest_first_with_names(self, db_engine, journal):
        result = get_logs(db_engine, project_id=journal.project_id, actor_id=journal.herong_id)
        logs = result["transactions"]
        assert [log["tx_type"] for log in logs] == ["mint", "batch_transfer", "batch_transfer"]
        assert logs[0]["to_display_name"] == "John Doe"
        assert logs[1]["to_display_name"] is None
        assert result["pagination"]["has_more"] is False

    def test_filters(self, db_engine, journal):
        failed = get_logs(
            db_engine, project_id=journal.project_id, actor_id=journal.admin_id, status="failed"
        )
        assert [log["error_message"] for log in failed["transactions"]] == ["reverted"]

        mints = get_logs(
            db_engine, project_id=journal.project_id, actor_id=journal.admin_id, tx_type="mint"
        )
        assert len(mints["transactions"]) == 1

        by_address = get_logs(
            db_engine,
            project_id=journal.project_id,
            actor_id=journal.admin_id,
            address=journal.john_wallet.upper().replace("0X", "0x"),
        )
        assert [log["tx_hash"] for log in by_address["transactions"]] == ["0x2"]

    def test_cursor_pagination(self, db_engine, journal):
        first = get_logs(
            db_engine, project_id=journal.project_id, actor_id=journal.admin_id, limit=2
        )
        assert len(first["transactions"]) == 2
        assert first["pagination"]["has_more"] is True

        second = get_logs(
            db_engine,
            project_id=journal.project_id,
            actor_id=journal.admin_id,
            limit=2,
            cursor=first["pagination"]["next_cursor"],
        )
        assert [log["tx_hash"] for log in second["transactions"]] == ["0x0"]

    def test_cursor_does_not_skip_shared_timestamps(self, db_engine, seeded):
        ids = {_add_log(db_engine, seeded, minutes=5, tx_hash=f"0x{i}") for i in range(3)}
        seen: list[str] = []
        cursor = None
        while True:
            page = get_logs(
                db_engine,
                project_id=seeded.project_id,
                actor_id=seeded.admin_id,
                limit=2,
                cursor=cursor,
            )
            seen.extend(log["id"] for log in page["transactions"])
            if not page["pagination"]["has_more"]:
                break
            cursor = page["pagination"]["next_cursor"]
        assert len(seen) == 3
        assert set(seen) == ids

    def test_bad_cursor(self, db_engine, journal):
        with pytest.raises(ValidationError):
            get_logs(
                db_engine, project_id=journal.project_id, actor_id=journal.admin_id, cursor="soon"
            )

    def test_non_member(self, db_engine, journal):
        with pytest.raises(PermissionDeniedError):
            get_logs(db_engine, project_id=journal.project_id, actor_id=journal.outsider_id)

    def test_detail_missing(self, db_engine, seeded):
        with pytest.raises(NotFoundError):
            get_log_detail(
                db_engine, project_id=seeded.project_id, actor_id=seeded.admin_id, log_id="nope"
            )


# ---------------------------------------------------------------------------
# Retry
# ---------------------------------------------------------------------------
class TestRetry:
    def test_failed_goes_back_to_pending(self, db_engine, seeded):
        log_id = _add_log(db_engine, seeded, status="failed", error_message="nonce too low")
        log = retry_log(db_engine, project_id=seeded.project_id, actor_id=seeded.admin_id, log_id=log_id)
        assert log.status == "pending"
        assert log.error_message is None
        assert log.retry_count == 1

    def test_only_failed_can_retry(self, db_engine, seeded):
        log_id = _add_log(db_engine, seeded, status="confirmed", tx_hash="0x9")
        with pytest.raises(ConflictError):
            retry_log(db_engine, project_id=seeded.project_id, actor_id=seeded.admin_id, log_id=log_id)

    def test_admin_only(self, db_engine, seeded):
        log_id = _add_log(db_engine, seeded, status="failed")
        with pytest.raises(PermissionDeniedError):
            retry_log(db_engine, project_id=seeded.project_id, actor_id=seeded.john_id, log_id=log_id)
