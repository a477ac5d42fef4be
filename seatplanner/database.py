from contextlib import contextmanager

from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker, declarative_base

from seatplanner import config


def make_engine(url):
    connect_args = {}
    if url.startswith("sqlite"):
        connect_args = {"check_same_thread": False}
    return create_engine(url, connect_args = connect_args)


engine = make_engine(config.DATABASE_URL)

SessionLocal = sessionmaker(autocommit = False, autoflush = False, bind = engine)

Base = declarative_base()


def init_db(bind=None):
    # models must be imported so their tables are registered on Base
    from seatplanner import db_models  # noqa: F401
    Base.metadata.create_all(bind = bind or engine)


@contextmanager
def unit_of_work(db):
    """Commit everything done inside the block, or nothing at all."""
    try:
        yield db
        db.commit()
    except Exception:
        db.rollback()
        raise
