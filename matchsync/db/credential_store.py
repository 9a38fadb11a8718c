"""Implementation of CredentialProvider using SQLAlchemy"""

from sqlalchemy import delete, select
from sqlalchemy.orm import Session

from matchsync.core.models import PlayerId
from matchsync.db.schema import DBCredential

CREDENTIAL_ROW_ID = 1


class SQLCredentialStore:
    """
    Persisted login state.
    ----

    Created at login (save), read by the REST repository and the realtime connector (current_token),
    invalidated at logout or when the server rejects the token (invalidate).
    """

    def __init__(self, db_session: Session) -> None:
        self.db = db_session

    def save(self, token: str, user_id: PlayerId | None) -> None:
        """Store the credential handed out at login. Replaces a previous one."""
        credential_db = self._fetch_credential()
        if credential_db is None:
            credential_db = DBCredential(
                id=CREDENTIAL_ROW_ID, token=token, user_id=user_id
            )
            self.db.add(credential_db)
        else:
            credential_db.token = token
            credential_db.user_id = user_id
        self.db.commit()

    def current_token(self) -> str | None:
        credential_db = self._fetch_credential()
        return credential_db.token if credential_db else None

    def current_user_id(self) -> PlayerId | None:
        credential_db = self._fetch_credential()
        return credential_db.user_id if credential_db else None

    def invalidate(self) -> None:
        """Remove the stored credential. Safe to call when logged out already."""
        self.db.execute(delete(DBCredential))
        self.db.commit()

    def _fetch_credential(self) -> DBCredential | None:
        query = select(DBCredential).where(DBCredential.id == CREDENTIAL_ROW_ID)
        return self.db.scalar(query)
