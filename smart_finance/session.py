"""
Session and store context.

DESIGN DECISION: There are no module-level store or session handles.
A StoreContext is built once (see orchestrator.create_ledger) and
injected into the gateway, so tests can run isolated instances side
by side.
"""

from typing import Optional

import structlog
from pydantic import BaseModel, Field

from smart_finance.models.finance import StorageMode
from smart_finance.services.storage.interface import DocumentStoreInterface
from smart_finance.services.storage.local_snapshot import LocalSnapshotStore


logger = structlog.get_logger(__name__)


class UserSession(BaseModel):
    """The signed-in user, as reported by the authentication layer."""

    user_id: str = Field(..., min_length=1)
    email: str = ""
    display_name: str = ""
    is_demo: bool = False


class StoreContext:
    """
    Both backing stores plus the current session.

    The remote store is optional. Without it, or without an
    authenticated non-demo session, every call is served locally.
    """

    def __init__(
        self,
        local_store: LocalSnapshotStore,
        remote_store: Optional[DocumentStoreInterface] = None,
        session: Optional[UserSession] = None,
    ):
        self.local_store = local_store
        self.remote_store = remote_store
        self._session = session

    @property
    def session(self) -> Optional[UserSession]:
        return self._session

    @property
    def owner_id(self) -> Optional[str]:
        """Identity used to partition remote records, if any."""
        if self._session is None or self._session.is_demo:
            return None
        return self._session.user_id

    @property
    def remote_available(self) -> bool:
        return self.remote_store is not None and self.owner_id is not None

    def sign_in(self, session: UserSession) -> None:
        logger.info(
            "session_started",
            user_id=session.user_id,
            is_demo=session.is_demo,
        )
        self._session = session

    def sign_out(self) -> None:
        if self._session is not None:
            logger.info("session_ended", user_id=self._session.user_id)
        self._session = None


def mode_for(session: Optional[UserSession], offline_mode: bool = False) -> StorageMode:
    """
    The mode a caller should pass for this session.

    Demo users, signed-out callers and forced-offline configurations all
    use the local snapshot.
    """
    if offline_mode or session is None or session.is_demo:
        return StorageMode.LOCAL
    return StorageMode.REMOTE
