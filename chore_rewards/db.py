from sqlmodel import SQLModel, create_engine, Session

from .config import settings


DATABASE_URL = settings.database_url
connect_args = {"check_same_thread": False} if DATABASE_URL.startswith("sqlite") else {}
engine = create_engine(DATABASE_URL, connect_args=connect_args)


def get_session():
    with Session(engine) as session:
        yield session


def init_db():
    from . import models  # noqa: F401  registers the tables

    SQLModel.metadata.create_all(engine)
