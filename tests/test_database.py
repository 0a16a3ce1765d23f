from app.infrastructure.db import database as db


def test_default_engine_is_built_once():
    assert db.get_engine() is db.get_engine()
    assert db.get_session_factory() is db.get_session_factory()
    assert db.get_session_factory().kw["bind"] is db.get_engine()


def test_session_dependency_lives_in_api_layer():
    assert not hasattr(db, "get_db")
    assert not hasattr(db, "SessionLocal")


async def test_container_with_explicit_engine_keeps_it(container, db_engine):
    assert container.db_engine is db_engine
    assert container.db_engine is not db.get_engine()
    assert container.session_factory.kw["bind"] is db_engine
    async with container.session_factory() as session:
        assert await db.db_ping(session)
