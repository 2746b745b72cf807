from datetime import date, datetime
from sqlalchemy import (
    Column, Integer, String, DateTime, Boolean, ForeignKey, JSON, Text, UniqueConstraint
)
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func
from .base import Base
from .types import EventTime


def _isoformat(value):
    if isinstance(value, (date, datetime)):
        return value.isoformat()
    return value


class UserSession(Base):
    __tablename__ = 'user_sessions'

    token = Column(String, primary_key=True)
    user_id = Column(String, nullable=False, index=True)
    expires_at = Column(DateTime(timezone=True), nullable=False)
    created_at = Column(DateTime(timezone=True), server_default=func.now())


class ConnectedAccount(Base):
    """OAuth credentials for one provider identity, owned by a user"""
    __tablename__ = 'connected_accounts'
    __table_args__ = (
        UniqueConstraint('provider', 'email', 'user_id', name='uq_account_provider_email_user'),
    )

    id = Column(String, primary_key=True)
    user_id = Column(String, nullable=False, index=True)
    provider = Column(String, nullable=False)  # GOOGLE
    email = Column(String, nullable=False)
    access_token = Column(Text, nullable=False)
    refresh_token = Column(Text, nullable=True)
    expires_at = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), onupdate=func.now())

    feeds = relationship("CalendarFeed", back_populates="account")


class CalendarFeed(Base):
    __tablename__ = 'calendar_feeds'

    id = Column(String, primary_key=True)
    name = Column(String, nullable=False)
    url = Column(String, nullable=True)  # remote calendar id for GOOGLE feeds
    type = Column(String, nullable=False)
    color = Column(String, nullable=True)
    enabled = Column(Boolean, default=True)
    recurrence_strategy = Column(String, nullable=False, default='propagate')
    last_sync = Column(DateTime(timezone=True), nullable=True)
    error = Column(Text, nullable=True)
    account_id = Column(String, ForeignKey('connected_accounts.id'), nullable=True)
    user_id = Column(String, nullable=False, index=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), onupdate=func.now())

    account = relationship("ConnectedAccount", back_populates="feeds")
    events = relationship("CalendarEvent", back_populates="feed", cascade="all, delete-orphan")

    def to_dict(self):
        return {
            'id': self.id,
            'name': self.name,
            'url': self.url,
            'type': self.type,
            'color': self.color,
            'enabled': self.enabled,
            'recurrence_strategy': self.recurrence_strategy,
            'last_sync': _isoformat(self.last_sync),
            'error': self.error,
            'account_id': self.account_id,
            'user_id': self.user_id,
        }


class CalendarEvent(Base):
    __tablename__ = 'calendar_events'
    __table_args__ = (
        UniqueConstraint('feed_id', 'external_event_id', 'is_master', name='uq_event_feed_external_master'),
    )

    id = Column(String, primary_key=True)
    feed_id = Column(String, ForeignKey('calendar_feeds.id', ondelete='CASCADE'), nullable=False, index=True)
    external_event_id = Column(String, nullable=True)
    title = Column(String, nullable=False)
    description = Column(Text, default='')
    start = Column(EventTime, nullable=False)
    end = Column(EventTime, nullable=False)
    location = Column(String, nullable=True)
    all_day = Column(Boolean, default=False)
    is_recurring = Column(Boolean, default=False)
    is_master = Column(Boolean, default=False)
    master_event_id = Column(String, ForeignKey('calendar_events.id', ondelete='SET NULL'), nullable=True)
    recurring_event_id = Column(String, nullable=True)
    recurrence_rule = Column(String, nullable=True)
    status = Column(String, nullable=True)
    sequence = Column(Integer, nullable=True)
    created = Column(DateTime(timezone=True), nullable=True)
    last_modified = Column(DateTime(timezone=True), nullable=True)
    organizer = Column(JSON, nullable=True)
    attendees = Column(JSON, nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), onupdate=func.now())

    feed = relationship("CalendarFeed", back_populates="events")
