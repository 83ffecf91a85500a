from sqlalchemy import create_engine, event
from sqlalchemy.orm import sessionmaker

from .config import get_settings
from .models import Base


def _make_engine(url: str):
    if url.startswith("sqlite"):
        # Handlers run on worker threads; writers wait on the file lock instead of failing fast.
        engine = create_engine(url, connect_args={"check_same_thread": False, "timeout": 30})

        @event.listens_for(engine, "connect")
        def _enable_foreign_keys(dbapi_connection, connection_record):
            cursor = dbapi_connection.cursor()
            cursor.execute("PRAGMA foreign_keys=ON")
            cursor.close()

        return engine
    return create_engine(url, pool_pre_ping=True)


engine = _make_engine(get_settings().database_url)    # Connecting to the database
SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)   #A temporary connection to work with the database.


def configure_engine(url: str):
    """Point ``SessionLocal`` at ``url``, replacing the engine if the URL changed."""
    global engine
    if engine.url.render_as_string(hide_password=False) != url:
        engine.dispose()
        engine = _make_engine(url)
        SessionLocal.configure(bind=engine)
    return engine


def init_db(bind=None) -> None:
    Base.metadata.create_all(bind=bind or engine)


def get_db():
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()
