"""
tests/test_database.py — Engine, Sessions & Async Bridge
=========================================================
"""

from __future__ import annotations

import asyncio

import pytest
from sqlalchemy import select
from sqlalchemy.orm import Session

from bitsynq.database.engine import create_db_engine, get_session, run_db
from bitsynq.database.models import User
from bitsynq.services.contribution_service import list_contributions


class TestGetSession:
    def test_commits_on_success(self, db_engine):
        with get_session(db_engine) as session:
            session.add(User(email="kai@example.com", display_name="Kai"))

        with Session(db_engine) as session:
            assert session.scalar(select(User.display_name)) == "Kai"

    def test_rolls_back_and_reraises(self, db_engine):
        with pytest.raises(RuntimeError):
            with get_session(db_engine) as session:
                session.add(User(email="kai@example.com", display_name="Kai"))
                session.flush()
                raise RuntimeError("boom")

        with Session(db_engine) as session:
            assert session.scalars(select(User)).all() == []


class TestCreateDbEngine:
    def test_missing_url(self, monkeypatch, tmp_path):
        monkeypatch.chdir(tmp_path)
        monkeypatch.delenv("DATABASE_URL", raising=False)
        with pytest.raises(RuntimeError, match="DATABASE_URL"):
            create_db_engine()

    def test_sqlite_url(self, tmp_path):
        engine = create_db_engine(f"sqlite:///{tmp_path / 'dev.db'}")
        assert engine.dialect.name == "sqlite"


def test_run_db_calls_service_off_the_loop(db_engine, seeded):
    result = asyncio.run(
        run_db(
            list_contributions,
            db_engine,
            project_id=seeded.project_id,
            actor_id=seeded.admin_id,
        )
    )
    assert result["pagination"]["total"] == 0
