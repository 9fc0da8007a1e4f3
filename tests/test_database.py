"""Tests for engine and session factory management."""

from sqlalchemy import func, select

from overtime_engine import database
from overtime_engine.models import Organization


class TestInitDb:
    def test_builds_once(self, monkeypatch, engine):
        built = []

        def fake_engine():
            built.append(engine)
            return engine

        monkeypatch.setattr(database, "get_engine", fake_engine)
        monkeypatch.setattr(database, "_engine", None)
        monkeypatch.setattr(database, "_session_factory", None)

        first = database.init_db()
        second = database.init_db()

        assert first[0] is engine
        assert second[1] is first[1]
        assert len(built) == 1

    def test_rebuilds_missing_session_factory(self, monkeypatch, engine):
        monkeypatch.setattr(database, "get_engine", lambda: engine)
        monkeypatch.setattr(database, "_engine", engine)
        monkeypatch.setattr(database, "_session_factory", None)

        _, factory = database.init_db()

        assert factory is not None
        assert database._session_factory is factory


class TestGetSession:
    async def test_commits_on_exit(self, monkeypatch, engine, session_factory):
        monkeypatch.setattr(database, "_engine", engine)
        monkeypatch.setattr(database, "_session_factory", session_factory)

        async with database.get_session() as session:
            session.add(Organization(name="Acme"))

        async with session_factory() as check:
            result = await check.execute(select(func.count()).select_from(Organization))
            assert result.scalar_one() == 1
