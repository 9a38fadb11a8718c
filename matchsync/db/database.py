"""Generate database session"""

from typing import Generator

from sqlalchemy import Engine, create_engine
from sqlalchemy.orm import Session, sessionmaker

from matchsync.core.config import SyncConfig
from matchsync.db.schema import Base


def build_engine(config: SyncConfig) -> Engine:
    engine = create_engine(config.database_url)
    # Ensure all tables are created
    Base.metadata.create_all(bind=engine)
    return engine


def get_db(engine: Engine) -> Generator[Session, None, None]:
    session_factory = sessionmaker(bind=engine)
    db = session_factory()
    try:
        yield db
    finally:
        db.close()
