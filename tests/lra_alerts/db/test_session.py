"""
Tests for Database session management
"""
import pytest

from src.lra_alerts.db.models import Subscription
from src.lra_alerts.db.session import Database


class TestDatabase:
    """Tests for the Database handle."""

    def test_health_check(self, database):
        assert database.dialect == "sqlite"
        assert database.health_check() is True

    def test_health_check_unreachable(self, tmp_path):
        db = Database(f"sqlite:///{tmp_path / 'missing' / 'nowhere.db'}")

        assert db.health_check() is False
        db.close()

    def test_session_commits(self, database):
        with database.session() as session:
            session.add(Subscription(id="u1_zip_63104", user_id="u1", type="zip", value="63104"))

        with database.session() as session:
            assert session.get(Subscription, "u1_zip_63104") is not None

    def test_session_rolls_back_and_reraises(self, database):
        with pytest.raises(RuntimeError):
            with database.session() as session:
                session.add(Subscription(id="u1_zip_63104", user_id="u1", type="zip", value="63104"))
                session.flush()
                raise RuntimeError("boom")

        with database.session() as session:
            assert session.get(Subscription, "u1_zip_63104") is None
