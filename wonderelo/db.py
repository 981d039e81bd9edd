from sqlmodel import SQLModel, Session, create_engine

from .config import get_settings


def make_engine(database_url: str, echo: bool = False):
    connect_args = {}
    if database_url.startswith("sqlite"):
        connect_args["check_same_thread"] = False
    return create_engine(database_url, echo=echo, connect_args=connect_args)


engine = make_engine(get_settings().database_url)


def create_db_and_tables(bind=None):
    from . import models  # noqa: F401  registers the tables on SQLModel.metadata
    SQLModel.metadata.create_all(bind or engine)


def get_session():
    with Session(engine) as session:
        yield session
