import os

from dotenv import load_dotenv
from sqlalchemy import create_engine
from sqlalchemy.engine import Engine
from sqlalchemy.orm import declarative_base, sessionmaker

# Load .env file (DATABASE_URL lives there)
load_dotenv()

DATABASE_URL = os.getenv("DATABASE_URL")
if not DATABASE_URL:
    raise RuntimeError("DATABASE_URL environment variable is not set")

# Hosted Postgres provides postgresql:// but SQLAlchemy needs postgresql+psycopg2://
if DATABASE_URL.startswith("postgresql://"):
    DATABASE_URL = DATABASE_URL.replace("postgresql://", "postgresql+psycopg2://", 1)


def make_engine(url: str, echo: bool = False) -> Engine:
    """
    Build an engine for the given URL.

    SQLite connections are shared across threads by the CLI scheduler loop,
    so the same-thread check is disabled there.
    """
    connect_args = {"check_same_thread": False} if url.startswith("sqlite") else {}
    return create_engine(
        url,
        future=True,
        echo=echo,  # set True if you want to see SQL in terminal
        connect_args=connect_args,
    )


# SQLAlchemy engine & session factory
engine = make_engine(DATABASE_URL)

SessionLocal = sessionmaker(
    autocommit=False,
    autoflush=False,
    bind=engine,
    future=True,
)

Base = declarative_base()


def init_db() -> None:
    """
    Import models and create tables if they don't exist.
    Schema management lives outside this service; this keeps local dev sane.
    """
    from promptshelf import models  # noqa: F401

    Base.metadata.create_all(bind=engine)

