import pytest
from sqlalchemy.orm import sessionmaker

from seatplanner.database import init_db, make_engine


@pytest.fixture
def engine(tmp_path):
    engine = make_engine(f"sqlite:///{tmp_path / 'seats.db'}")
    init_db(bind = engine)
    yield engine
    engine.dispose()


@pytest.fixture
def session_factory(engine):
    return sessionmaker(autocommit = False, autoflush = False, bind = engine)


@pytest.fixture
def db(session_factory):
    session = session_factory()
    yield session
    session.close()
