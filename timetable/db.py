from sqlalchemy import create_engine, event
from sqlalchemy.orm import sessionmaker
from .config import DATABASE_URL, SQL_ECHO


def build_engine(url: str, **kwargs):
    # SQLite needs foreign keys switched on per connection, otherwise cascades are ignored
    if url.startswith("sqlite"):
        kwargs.setdefault("connect_args", {"check_same_thread": False})
    engine = create_engine(url, **kwargs)
    if engine.dialect.name == "sqlite":
        @event.listens_for(engine, "connect")
        def _enable_foreign_keys(dbapi_connection, connection_record):
            cursor = dbapi_connection.cursor()
            cursor.execute("PRAGMA foreign_keys = ON")
            cursor.close()
    return engine


# Engine from the DATABASE_URL in config.py
engine = build_engine(DATABASE_URL, echo=SQL_ECHO)

# Session factory
SessionLocal = sessionmaker(bind=engine)


# One session per request
def get_db():
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()
