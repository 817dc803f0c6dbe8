"""Unit tests for DatabaseManager sessions and wait_for_db."""

import uuid
from unittest.mock import MagicMock

import pytest
from sqlalchemy.exc import IntegrityError, OperationalError

from reqloom.core.db import Analysis, User, wait_for_db


class TestSessions:

    def test_commit_on_success(self, db_manager):
        with db_manager.get_session() as session:
            session.add(User(username="carol", email="carol@example.com"))

        with db_manager.get_session() as session:
            assert session.query(User).filter(User.username == "carol").count() == 1

    def test_rollback_on_error(self, db_manager, owner_id):
        root = uuid.uuid4()
        rows = [
            Analysis(
                analysis_id=aid, root_id=root, user_id=uuid.UUID(owner_id), version=1,
                input_text="x", status="PENDING", analysis_metadata={},
            )
            for aid in (root, uuid.uuid4())
        ]
        with pytest.raises(IntegrityError):
            with db_manager.get_session() as session:
                session.add_all(rows)
                session.flush()

        with db_manager.get_session() as session:
            assert session.query(Analysis).count() == 0


class TestWaitForDb:

    def test_available(self, db_manager):
        assert wait_for_db(db_manager, max_retries=1, delay=0) is True

    def test_gives_up(self):
        db = MagicMock()
        db.engine.connect.side_effect = OperationalError("SELECT 1", {}, Exception("refused"))

        assert wait_for_db(db, max_retries=2, delay=0) is False
        assert db.engine.connect.call_count == 2
