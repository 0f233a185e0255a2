"""Who is behind a connection.

An :class:`Identity` is resolved once, when the Socket.IO connection is
accepted, and stays attached to the connection until it disconnects.
"""
from __future__ import annotations

import uuid
from dataclasses import dataclass
from typing import Optional

AUTHENTICATED = "authenticated"
GUEST = "guest"


@dataclass(frozen=True)
class Identity:
    kind: str
    display_name: str
    account_id: Optional[int] = None
    guest_id: Optional[str] = None

    @classmethod
    def authenticated(cls, account_id: int, display_name: str = "User") -> "Identity":
        return cls(kind=AUTHENTICATED, display_name=display_name or "User", account_id=int(account_id))

    @classmethod
    def guest(cls, display_name: str = "Guest", guest_id: Optional[str] = None) -> "Identity":
        return cls(
            kind=GUEST,
            display_name=display_name or "Guest",
            guest_id=guest_id or f"guest_{uuid.uuid4().hex[:12]}",
        )

    @property
    def is_guest(self) -> bool:
        return self.kind == GUEST

    @property
    def key(self) -> str:
        """Stable per-participant key used for engagement rows and queues."""
        if self.kind == AUTHENTICATED:
            return str(self.account_id)
        return str(self.guest_id)

    def is_account(self, account_id: Optional[int]) -> bool:
        return self.kind == AUTHENTICATED and account_id is not None and self.account_id == account_id
