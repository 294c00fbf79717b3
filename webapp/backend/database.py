"""
Database connection using direct TCP (no Cloud SQL Connector).
Falls back to a local SQLite file when no MySQL credentials are configured.
"""
import os
from sqlalchemy import create_engine
from sqlalchemy.orm import declarative_base, sessionmaker
from dotenv import load_dotenv

# Load environment variables
load_dotenv()

# Database configuration
DB_USER = os.getenv("DB_USER")
DB_PASSWORD = os.getenv("DB_PASSWORD")
DB_NAME = os.getenv("DB_NAME")
DB_HOST = os.getenv("DB_HOST", "localhost")
DB_PORT = int(os.getenv("DB_PORT", "3306"))


def _build_database_url() -> str:
    """DATABASE_URL wins; otherwise MySQL when DB_NAME is set, else local SQLite."""
    explicit = os.getenv("DATABASE_URL")
    if explicit:
        return explicit
    if DB_NAME:
        return f"mysql+pymysql://{DB_USER}:{DB_PASSWORD}@{DB_HOST}:{DB_PORT}/{DB_NAME}"
    return "sqlite:///./scheduling.db"


DATABASE_URL = _build_database_url()

if DATABASE_URL.startswith("sqlite"):
    engine = create_engine(
        DATABASE_URL,
        connect_args={"check_same_thread": False},
        echo=False,
    )
else:
    # Create database engine with connection pooling
    engine = create_engine(
        DATABASE_URL,
        pool_size=5,
        max_overflow=10,
        pool_timeout=30,
        pool_recycle=3600,
        pool_pre_ping=True,
        echo=False,  # Set to True for SQL debugging
        connect_args={
            "connect_timeout": 10,
            "read_timeout": 60,
            "write_timeout": 30,
        }
    )

# Create SessionLocal class for database sessions
SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)

# Base class for SQLAlchemy models
Base = declarative_base()


def get_db():
    """
    Dependency function to get database session.
    Use this in FastAPI endpoints with Depends(get_db).

    Example:
        @app.get("/sessions")
        def get_sessions(db: Session = Depends(get_db)):
            return db.query(ClassSession).all()
    """
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


def init_db():
    """Create any missing tables. Production schemas are managed by migrations."""
    import models  # noqa: F401  (registers the models on Base)
    Base.metadata.create_all(bind=engine)
