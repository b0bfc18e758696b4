"""
tests/conftest.py — Shared Test Fixtures
=========================================
"""

from __future__ import annotations

from dataclasses import dataclass

import pytest
from sqlalchemy import Engine, create_engine
from sqlalchemy.orm import Session
from sqlalchemy.pool import StaticPool

from bitsynq.database.engine import init_db
from bitsynq.database.models import User
from bitsynq.services.project_service import add_member, create_project

ALICE_WALLET = "0x" + "a1" * 20
JOHN_WALLET = "0x" + "b2" * 20
HERONG_WALLET = "0x" + "c3" * 20


@pytest.fixture
def db_engine() -> Engine:
    """In-memory SQLite engine with all Bitsynq tables.

    Uses StaticPool so every session (and ``asyncio.to_thread`` worker)
    shares the same in-memory database.
    """
    engine = create_engine(
        "sqlite://",
        echo=False,
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    init_db(engine)
    return engine


@pytest.fixture
def db_session(db_engine: Engine):
    """Provide a session that rolls back after each test."""
    with Session(db_engine) as session:
        yield session
        session.rollback()


@dataclass
class SeededProject:
    project_id: str
    admin_id: str      # Alice, project owner
    john_id: str       # member with alias "Johnny"
    herong_id: str     # member with a CJK display name
    outsider_id: str   # registered user, not a member
    john_wallet: str = JOHN_WALLET
    herong_wallet: str = HERONG_WALLET


@pytest.fixture
def seeded(db_engine: Engine) -> SeededProject:
    """A project owned by Alice with two members and one outsider."""
    with Session(db_engine, expire_on_commit=False) as session:
        alice = User(email="alice@example.com", display_name="Alice Chen", wallet_address=ALICE_WALLET)
        john = User(
            email="john@example.com",
            display_name="John Doe",
            aliases='["Johnny"]',
            wallet_address=JOHN_WALLET,
        )
        herong = User(email="herong@example.com", display_name="黃和融", wallet_address=HERONG_WALLET)
        eve = User(email="eve@example.com", display_name="Eve")
        session.add_all([alice, john, herong, eve])
        session.commit()

    project = create_project(db_engine, owner_id=alice.id, name="Token Sender", token_symbol="BTS")
    add_member(db_engine, project_id=project.id, actor_id=alice.id, user_id=john.id)
    add_member(db_engine, project_id=project.id, actor_id=alice.id, user_id=herong.id)
    return SeededProject(
        project_id=project.id,
        admin_id=alice.id,
        john_id=john.id,
        herong_id=herong.id,
        outsider_id=eve.id,
    )
