"""Unit tests for matchsync/db/credential_store.py"""

from sqlalchemy import func, select
from sqlalchemy.orm import Session

from matchsync.core.config import SyncConfig
from matchsync.db.credential_store import SQLCredentialStore
from matchsync.db.database import build_engine, get_db
from matchsync.db.schema import DBCredential


def test_logged_out_by_default(db_session: Session) -> None:
    """With an empty database, there is no credential to hand out."""
    store = SQLCredentialStore(db_session)
    assert store.current_token() is None
    assert store.current_user_id() is None


def test_save_credential(db_session: Session) -> None:
    store = SQLCredentialStore(db_session)
    store.save("jwt-token", 17)
    assert store.current_token() == "jwt-token"
    assert store.current_user_id() == 17


def test_login_replaces_the_previous_credential(db_session: Session) -> None:
    """Only one user is logged in at a time: a second save() overwrites the row."""
    store = SQLCredentialStore(db_session)
    store.save("first", 1)
    store.save("second", 2)

    assert store.current_token() == "second"
    assert store.current_user_id() == 2
    count = db_session.scalar(select(func.count()).select_from(DBCredential))
    assert count == 1


def test_invalidate(db_session: Session) -> None:
    store = SQLCredentialStore(db_session)
    store.save("jwt-token", 17)
    store.invalidate()
    assert store.current_token() is None
    assert store.current_user_id() is None

    # logging out twice is fine
    store.invalidate()
    assert store.current_token() is None


def test_credential_is_shared_between_sessions(
    db_session: Session, other_db_session: Session
) -> None:
    """Saved through one session, read through another (e.g. the REST repository and the connector)."""
    SQLCredentialStore(db_session).save("jwt-token", 3)
    reader = SQLCredentialStore(other_db_session)
    assert reader.current_token() == "jwt-token"
    assert reader.current_user_id() == 3


def test_build_engine_creates_the_tables() -> None:
    engine = build_engine(SyncConfig(database_url="sqlite:///:memory:"))
    sessions = get_db(engine)
    db = next(sessions)
    try:
        store = SQLCredentialStore(db)
        store.save("jwt-token", None)
        assert store.current_token() == "jwt-token"
        assert store.current_user_id() is None
    finally:
        sessions.close()
    engine.dispose()
