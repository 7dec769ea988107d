import pytest
from sqlalchemy import create_engine, event
from sqlalchemy.orm import sessionmaker

from route_intake import models  # noqa: F401
from route_intake.database import Base
from tests.helpers import fixed_clock, seed_user


@pytest.fixture()
def engine(tmp_path):
    db_path = tmp_path / "routes.db"
    engine = create_engine(
        f"sqlite:///{db_path}",
        connect_args={"check_same_thread": False},
    )

    # Let SQLAlchemy own BEGIN so savepoints nest inside the import transaction.
    @event.listens_for(engine, "connect")
    def disable_pysqlite_transactions(dbapi_conn, _):
        dbapi_conn.isolation_level = None

    @event.listens_for(engine, "begin")
    def emit_begin(conn):
        conn.exec_driver_sql("BEGIN")

    Base.metadata.create_all(bind=engine)
    try:
        yield engine
    finally:
        engine.dispose()


@pytest.fixture()
def session_factory(engine):
    return sessionmaker(bind=engine, autoflush=False, autocommit=False)


@pytest.fixture()
def db(session_factory):
    session = session_factory()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture()
def clock():
    return fixed_clock()


@pytest.fixture()
def admin_id(engine):
    return seed_user(engine, "dispatch", role="ADMIN")
