"""Tests for services.py -- object graph assembly and shutdown.

Covers:
- build_services() creates every table on a fresh database
- all repositories share the one engine Services.close() disposes
"""

from sqlalchemy import inspect

from services import build_services


class TestBuildServices:
    def test_creates_all_tables(self, tmp_path) -> None:
        svc = build_services(f"sqlite:///{tmp_path / 'fresh.db'}")
        try:
            assert set(inspect(svc.engine).get_table_names()) >= {
                "admins",
                "book_owners",
                "readers",
                "refresh_tokens",
                "book_posts",
                "book_requests",
            }
        finally:
            svc.close()

    def test_stores_share_one_engine(self, services) -> None:
        assert services.principals.engine is services.engine
        assert services.tokens.engine is services.engine
        assert services.market_store.engine is services.engine

    def test_close_releases_connections(self, tmp_path) -> None:
        svc = build_services(f"sqlite:///{tmp_path / 'closing.db'}")
        svc.sessions.logout("never-issued")
        svc.close()
        assert svc.engine.pool.checkedout() == 0
