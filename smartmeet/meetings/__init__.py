"""Meeting persistence contracts consumed by the conference relay."""
from .codes import generate_meeting_code, is_valid_meeting_code, normalize_meeting_code
from .credentials import (
    ExpiredJoinToken,
    InvalidJoinToken,
    JoinCredential,
    JoinCredentialError,
    JoinCredentialVerifier,
    issue_join_token,
)
from .store import EngagementStore, MeetingSnapshot, MeetingStore, StoreError

__all__ = [
    "generate_meeting_code",
    "is_valid_meeting_code",
    "normalize_meeting_code",
    "ExpiredJoinToken",
    "InvalidJoinToken",
    "JoinCredential",
    "JoinCredentialError",
    "JoinCredentialVerifier",
    "issue_join_token",
    "EngagementStore",
    "MeetingSnapshot",
    "MeetingStore",
    "StoreError",
]
