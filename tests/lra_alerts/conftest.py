"""
Shared fixtures for lra_alerts tests.
"""
import pytest

from src.lra_alerts.db.session import Database


@pytest.fixture(scope="function")
def database(tmp_path):
    """
    File-backed SQLite database with every table created.

    A file (not :memory:) so post-commit tasks running on worker threads
    each get their own connection.
    """
    db = Database(f"sqlite:///{tmp_path / 'lra_alerts.db'}")
    db.create_all_tables()

    yield db

    db.drop_all_tables()
    db.close()
