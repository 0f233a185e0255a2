# smartmeet/models.py
from datetime import datetime, timedelta
from flask_login import UserMixin
from .extensions import db


# ---------------- User Model ----------------
class User(db.Model, UserMixin):
    __tablename__ = "users"
    user_id = db.Column(db.Integer, primary_key=True)

    # Basic Identity
    name = db.Column(db.String(100), nullable=True)  # Used for display name
    email = db.Column(db.String(255), unique=True, nullable=False)  # For login
    # Hashed by the account service; never read here
    password = db.Column(db.Text, nullable=False)

    # Timestamps
    created_timestamp = db.Column(db.DateTime, default=datetime.utcnow)
    updated_timestamp = db.Column(
        db.DateTime, default=datetime.utcnow, onupdate=datetime.utcnow
    )

    # Relationships
    hosted_meetings = db.relationship("Meeting", back_populates="host", lazy='dynamic')

    def get_id(self):
        # Flask-Login expects a string
        return str(self.user_id)

    @property
    def display_name(self) -> str:
        return self.name or (self.email.split('@')[0] if self.email else f'User{self.user_id}')

    def __repr__(self):
        return f"<User {self.email}>"


# ---------------- Meeting Model ----------------
class Meeting(db.Model):
    __tablename__ = "meetings"
    id = db.Column(db.Integer, primary_key=True)
    # Short readable code, e.g. "GBK-7M2"; always stored upper case
    meeting_code = db.Column(db.String(16), unique=True, nullable=False, index=True)
    title = db.Column(db.String(100), default="SmartMeet Session")
    host_id = db.Column(db.Integer, db.ForeignKey("users.user_id"), nullable=False, index=True)
    status = db.Column(db.String(20), default="waiting")  # STATUS: 'waiting', 'active', 'ended'

    # Locked = no new joins allowed except the host
    is_locked = db.Column(db.Boolean, default=False, nullable=False)
    waiting_room_enabled = db.Column(db.Boolean, default=False, nullable=False)

    # Timing
    start_time = db.Column(db.DateTime, default=datetime.utcnow)
    end_time = db.Column(db.DateTime, nullable=True)
    duration = db.Column(db.Integer, default=0)  # Duration in seconds
    expires_at = db.Column(db.DateTime, nullable=True)

    created_at = db.Column(db.DateTime, default=datetime.utcnow)
    updated_at = db.Column(db.DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    # Relationships
    host = db.relationship("User", back_populates="hosted_meetings")
    waiting_queue = db.relationship(
        "WaitingEntry", back_populates="meeting", cascade="all, delete-orphan",
        order_by="WaitingEntry.requested_at", lazy='dynamic',
    )
    chat_messages = db.relationship(
        "ChatMessage", back_populates="meeting", cascade="all, delete-orphan",
        order_by="ChatMessage.timestamp", lazy='dynamic',
    )

    __table_args__ = (db.Index('ix_meetings_host_status', 'host_id', 'status'),)

    def set_expiry(self, hours: int) -> None:
        self.expires_at = datetime.utcnow() + timedelta(hours=hours) if hours else None

    def is_expired(self) -> bool:
        return bool(self.expires_at and self.expires_at <= datetime.utcnow())

    def __repr__(self):
        return f"<Meeting {self.meeting_code} status={self.status}>"


# ---------------- Waiting Room Queue ----------------
class WaitingEntry(db.Model):
    """A connection waiting for host approval to enter a meeting."""
    __tablename__ = "meeting_waiting_entries"
    id = db.Column(db.Integer, primary_key=True)
    meeting_id = db.Column(db.Integer, db.ForeignKey("meetings.id"), nullable=False, index=True)
    connection_id = db.Column(db.String(64), nullable=False, index=True)
    participant_key = db.Column(db.String(64), nullable=False)
    account_id = db.Column(db.Integer, db.ForeignKey("users.user_id"), nullable=True)
    display_name = db.Column(db.String(100), nullable=False)
    requested_at = db.Column(db.DateTime, default=datetime.utcnow)

    meeting = db.relationship("Meeting", back_populates="waiting_queue")

    __table_args__ = (db.UniqueConstraint('meeting_id', 'connection_id', name='_waiting_meeting_conn_uc'),)


# ---------------- Chat ----------------
class ChatMessage(db.Model):
    __tablename__ = "meeting_chat_messages"

    id = db.Column(db.Integer, primary_key=True)
    meeting_id = db.Column(db.Integer, db.ForeignKey("meetings.id"), nullable=False, index=True)
    account_id = db.Column(db.Integer, db.ForeignKey("users.user_id"), nullable=True)  # NULL for guests
    display_name = db.Column(db.String(100), nullable=False)
    text = db.Column(db.Text, nullable=False)
    timestamp = db.Column(db.DateTime, default=datetime.utcnow)

    # Relationships
    meeting = db.relationship("Meeting", back_populates="chat_messages")


# ---------------- Engagement ----------------
class Engagement(db.Model):
    """Accumulated activity metrics for one participant in one meeting.

    Rows are keyed by the participant key (account id, or the ephemeral guest
    id) so guests are tracked for the lifetime of their connection.
    """
    __tablename__ = "meeting_engagement"
    id = db.Column(db.Integer, primary_key=True)
    meeting_code = db.Column(db.String(16), nullable=False, index=True)
    participant_key = db.Column(db.String(64), nullable=False)
    account_id = db.Column(db.Integer, db.ForeignKey("users.user_id"), nullable=True)
    display_name = db.Column(db.String(100), nullable=False)
    # Seconds
    speaking_time = db.Column(db.Float, default=0.0, nullable=False)
    camera_on_time = db.Column(db.Float, default=0.0, nullable=False)
    chat_messages = db.Column(db.Integer, default=0, nullable=False)
    hand_raised_count = db.Column(db.Integer, default=0, nullable=False)
    updated_at = db.Column(db.DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, index=True)

    __table_args__ = (db.UniqueConstraint('meeting_code', 'participant_key', name='_engagement_meeting_participant_uc'),)
