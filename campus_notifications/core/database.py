"""Database configuration for the shared storage area."""
from sqlalchemy import create_engine
from sqlalchemy.engine import Engine
from sqlalchemy.orm import declarative_base, sessionmaker

# Base class for models
Base = declarative_base()


def create_storage_engine(url: str) -> Engine:
    """
    Create the engine behind a SqlStorageArea.

    Every process pointing at the same URL shares one storage area, the way
    browser tabs of one origin share localStorage.
    """
    connect_args = {}
    if url.startswith("sqlite"):
        connect_args["check_same_thread"] = False  # handles are used from the event loop thread and the poller
    return create_engine(
        url,
        pool_pre_ping=True,          # Verify connections before use
        connect_args=connect_args,
    )


def create_session_factory(engine: Engine) -> sessionmaker:
    return sessionmaker(autoflush=False, bind=engine)
