"""
Session context for a coordinator.

Holds all session-scoped state: the current session id, the grant cache
and the subscription registry. One instance per coordinator.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Optional

from ..core.errors import PreconditionError
from ..iam.grants import GrantCache
from ..websocket.registry import SubscriptionRegistry

logger = logging.getLogger(__name__)


@dataclass
class SessionContext:
    """
    State owned by one coordinator and scoped to its current session.

    Contains:
    - session_id: Current realtime session id (None before the first connect)
    - grants: Approved grants for this session
    - registry: Subscription records for this session
    """
    session_id: Optional[str] = None
    grants: GrantCache = field(default_factory=GrantCache)
    registry: SubscriptionRegistry = field(default_factory=SubscriptionRegistry)
    generation: int = 0

    def require_session(self) -> str:
        if not self.session_id:
            raise PreconditionError()
        return self.session_id

    def is_current(self, generation: int) -> bool:
        """Whether work started in ``generation`` still belongs to the live session."""
        return generation == self.generation and self.session_id is not None

    def start_session(self, session_id: str) -> None:
        """
        Switch to a new session, dropping every grant and subscription.

        Fresh containers are installed so that work still running against the
        previous session can only touch the discarded ones.
        """
        previous = self.session_id
        self.grants = GrantCache()
        self.registry = SubscriptionRegistry()
        self.session_id = session_id
        self.generation += 1
        if previous:
            logger.info(f"Session {previous} replaced by {session_id}; grants and subscriptions cleared")
