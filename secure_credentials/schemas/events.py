"""
Event schemas for pub/sub messaging

Events are published to Redis pub/sub channels when accounts, devices or
challenges change state. Other services subscribe to stay in sync.
"""

from typing import Optional, Dict, Any, List
from pydantic import BaseModel, Field
from enum import Enum


class EventType(str, Enum):
    """Event type enumeration"""
    # Account lifecycle events
    ACCOUNT_REGISTERED = "account.registered"

    # Authentication events
    LOGIN_SUCCESS = "login.success"
    LOGIN_FAILED = "login.failed"
    LOGOUT = "logout"

    # Device events
    DEVICE_REGISTRATION_STARTED = "device.registration_started"
    DEVICE_REGISTERED = "device.registered"
    DEVICE_REMOVED = "device.removed"
    DEVICES_RESET = "device.reset"

    # Challenge events
    CHALLENGE_APPROVED = "challenge.approved"
    CHALLENGE_REJECTED = "challenge.rejected"

    # Password events
    PASSWORD_CHANGED = "password.changed"


class EventPriority(str, Enum):
    """Event priority for routing and processing"""
    LOW = "low"
    NORMAL = "normal"
    HIGH = "high"
    CRITICAL = "critical"


class EventChannel(str, Enum):
    """Redis pub/sub channels"""
    ALL_EVENTS = "secure_credentials.events"
    AUTH_EVENTS = "secure_credentials.events.auth"
    DEVICE_EVENTS = "secure_credentials.events.device"
    SECURITY_EVENTS = "secure_credentials.events.security"


class Event(BaseModel):
    """
    Base event model for all published events

    All events follow this structure for consistent processing.
    """
    event_id: str = Field(..., description="Unique event ID (UUID)")
    event_type: EventType
    timestamp: str = Field(..., description="ISO-8601 UTC timestamp")
    source: str = Field(default="secure_credentials")
    priority: EventPriority = EventPriority.NORMAL
    subject: Optional[str] = Field(None, description="Subject, e.g. 'account:<id>'")
    resource: Optional[str] = Field(None, description="Affected resource, e.g. 'device:<id>'")
    data: Dict[str, Any] = Field(default_factory=dict)
    metadata: Dict[str, Any] = Field(default_factory=dict)


EVENT_CHANNEL_MAP: Dict[EventType, List[EventChannel]] = {
    EventType.ACCOUNT_REGISTERED: [EventChannel.AUTH_EVENTS, EventChannel.ALL_EVENTS],

    EventType.LOGIN_SUCCESS: [EventChannel.AUTH_EVENTS, EventChannel.ALL_EVENTS],
    EventType.LOGIN_FAILED: [EventChannel.AUTH_EVENTS, EventChannel.SECURITY_EVENTS, EventChannel.ALL_EVENTS],
    EventType.LOGOUT: [EventChannel.AUTH_EVENTS, EventChannel.ALL_EVENTS],

    EventType.DEVICE_REGISTRATION_STARTED: [EventChannel.DEVICE_EVENTS, EventChannel.ALL_EVENTS],
    EventType.DEVICE_REGISTERED: [EventChannel.DEVICE_EVENTS, EventChannel.SECURITY_EVENTS, EventChannel.ALL_EVENTS],
    EventType.DEVICE_REMOVED: [EventChannel.DEVICE_EVENTS, EventChannel.SECURITY_EVENTS, EventChannel.ALL_EVENTS],
    EventType.DEVICES_RESET: [EventChannel.DEVICE_EVENTS, EventChannel.SECURITY_EVENTS, EventChannel.ALL_EVENTS],

    EventType.CHALLENGE_APPROVED: [EventChannel.AUTH_EVENTS, EventChannel.ALL_EVENTS],
    EventType.CHALLENGE_REJECTED: [EventChannel.AUTH_EVENTS, EventChannel.SECURITY_EVENTS, EventChannel.ALL_EVENTS],

    EventType.PASSWORD_CHANGED: [EventChannel.AUTH_EVENTS, EventChannel.SECURITY_EVENTS, EventChannel.ALL_EVENTS],
}
