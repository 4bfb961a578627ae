from fastapi import Request
from sqlalchemy import create_engine
from sqlalchemy.engine import Engine
from sqlalchemy.ext.declarative import declarative_base
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

# Base class for all database models
# All models inherit from this to get SQLAlchemy ORM functionality
Base = declarative_base()


def create_db_engine(database_url: str) -> Engine:
    """
    Create the database engine - manages the connection pool.

    The engine is created once per process by the application lifespan and
    disposed on shutdown. Nothing in the codebase keeps a module-level engine.
    """
    if database_url.startswith("sqlite"):
        # SQLite connections are used from the threadpool FastAPI runs sync code in.
        # In-memory databases must share one connection or every session sees an empty db
        kwargs = {"connect_args": {"check_same_thread": False}}
        if database_url in ("sqlite://", "sqlite:///:memory:"):
            kwargs["poolclass"] = StaticPool
        return create_engine(database_url, **kwargs)
    return create_engine(database_url, pool_pre_ping=True)


def create_session_factory(engine: Engine) -> sessionmaker:
    # autocommit=False: Changes require explicit commit
    # autoflush=False: Don't auto-flush before queries
    # expire_on_commit=False: objects stay readable after commit for response building
    return sessionmaker(autocommit=False, autoflush=False, expire_on_commit=False, bind=engine)


def get_db(request: Request):
    """
    Dependency for getting database session.

    The session factory lives on the application state (set up in the
    lifespan), so every request gets a session from the pool owned by the
    running app. The session is closed after the request completes.
    """
    db = request.app.state.session_factory()
    try:
        yield db
    finally:
        # Always close session, even if request raises an exception
        db.close()
