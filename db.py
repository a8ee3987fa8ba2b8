from sqlalchemy import create_engine
from sqlalchemy.orm import declarative_base, sessionmaker

from config import DATABASE_URL, PERSISTENCE_TIMEOUT_SECONDS, SQL_ECHO


def _engine_kwargs(url: str) -> dict:
    kwargs = {"echo": SQL_ECHO, "pool_pre_ping": True}
    if url.startswith("sqlite"):
        # sessions are handed to the threadpool, so SQLite must allow it
        kwargs["connect_args"] = {"check_same_thread": False}
    elif url.startswith("postgresql"):
        # the server aborts slow statements, so a worker thread always settles
        timeout_ms = int(PERSISTENCE_TIMEOUT_SECONDS * 1000)
        kwargs["connect_args"] = {"options": f"-c statement_timeout={timeout_ms}"}
        kwargs["pool_timeout"] = PERSISTENCE_TIMEOUT_SECONDS
    return kwargs


# Create SQLAlchemy engine
engine = create_engine(DATABASE_URL, **_engine_kwargs(DATABASE_URL))

# Create SessionLocal class
SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)

# Create Base class for models
Base = declarative_base()


# Import all models here to ensure they are registered with SQLAlchemy's Base
from models.auth import user_models  # noqa: E402,F401
from models.classroom import classroom_models  # noqa: E402,F401

# Function to create all tables
def create_tables():
    Base.metadata.create_all(bind=engine)
