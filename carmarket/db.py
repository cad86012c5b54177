from sqlalchemy.orm import declarative_base, sessionmaker
from sqlalchemy import create_engine
from .config import settings


_is_sqlite = settings.database_url.startswith("sqlite")

engine = create_engine(
    settings.database_url,
    future=True,
    pool_pre_ping=True,
    **({} if _is_sqlite else {"pool_size": 5, "max_overflow": 10, "pool_recycle": 3600}),
    connect_args={"check_same_thread": False} if _is_sqlite else {}
)

# Fresh Session per request; never share across threads
SessionLocal = sessionmaker(bind=engine, autoflush=False, autocommit=False, future=True)

Base = declarative_base()


def get_db():
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


def commit_versioned(db, entity: str, entity_id) -> None:
    """Commit a change to a versioned row; a lost check-and-set becomes StaleWriteError."""
    from sqlalchemy.orm.exc import StaleDataError
    from .services.errors import StaleWriteError

    try:
        db.commit()
    except StaleDataError:
        db.rollback()
        raise StaleWriteError(entity, entity_id)
