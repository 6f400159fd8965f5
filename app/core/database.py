# app/core/database.py
from sqlalchemy import create_engine, event
from sqlalchemy.orm import declarative_base, sessionmaker
from sqlalchemy.pool import StaticPool
import logging

from app.core.config import settings

# Validate environment variable
SQLALCHEMY_DATABASE_URL = settings.database_url
if not SQLALCHEMY_DATABASE_URL:
    raise ValueError("DATABASE_URL environment variable is not set")

logger = logging.getLogger(__name__)


def _engine_options(url: str) -> dict:
    if url.startswith("sqlite"):
        # Local runs and the test suite share one in-process connection
        return {
            "connect_args": {"check_same_thread": False},
            "poolclass": StaticPool,
        }
    return {
        "pool_size": 10,           # Maintain 10 persistent connections
        "max_overflow": 20,        # Allow 20 additional connections when needed
        "pool_pre_ping": True,     # Verify connections before using
        "pool_recycle": 3600,      # Recycle connections after 1 hour
        "connect_args": {
            "connect_timeout": 10,
            "options": "-c statement_timeout=30000"  # 30 second query timeout
        },
    }


engine = create_engine(SQLALCHEMY_DATABASE_URL, echo=False, **_engine_options(SQLALCHEMY_DATABASE_URL))


@event.listens_for(engine, "connect")
def receive_connect(dbapi_conn, connection_record):
    if SQLALCHEMY_DATABASE_URL.startswith("sqlite"):
        # Let SQLAlchemy emit BEGIN itself so SAVEPOINTs nest correctly
        dbapi_conn.isolation_level = None
        cursor = dbapi_conn.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()
    logger.info("Database connection established")


if SQLALCHEMY_DATABASE_URL.startswith("sqlite"):
    @event.listens_for(engine, "begin")
    def receive_begin(conn):
        conn.exec_driver_sql("BEGIN")


@event.listens_for(engine, "close")
def receive_close(dbapi_conn, connection_record):
    logger.info("Database connection closed")


SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)
Base = declarative_base()


def get_db():
    db = SessionLocal()
    try:
        yield db
    except Exception as e:
        db.rollback()
        logger.error(f"Database session error: {e}")
        raise
    finally:
        db.close()
