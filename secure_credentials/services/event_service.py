"""
Event Publishing Service

Publishes events to Redis pub/sub channels for inter-service communication.

Architecture:
- Events published to Redis pub/sub
- Multiple channels for event filtering
- Fire-and-forget: a failed publish is logged and never fails the operation
"""

import uuid
import logging
from typing import Optional, Dict, Any

from redis.exceptions import RedisError

from secure_credentials.core.redis_client import RedisClient
from secure_credentials.schemas.events import (
    Event,
    EventType,
    EventPriority,
    EventChannel,
    EVENT_CHANNEL_MAP
)
from secure_credentials.utils.clock import utcnow

logger = logging.getLogger(__name__)


class EventService:
    """Service for publishing events to Redis pub/sub"""

    def __init__(self, redis: RedisClient):
        self.redis = redis

    def publish_event(
        self,
        event_type: EventType,
        subject: Optional[str] = None,
        resource: Optional[str] = None,
        data: Optional[Dict[str, Any]] = None,
        metadata: Optional[Dict[str, Any]] = None,
        priority: EventPriority = EventPriority.NORMAL
    ) -> Optional[str]:
        """
        Publish an event to its Redis pub/sub channels

        Args:
            event_type: Type of event (from EventType enum)
            subject: Subject of the event (e.g., "account:<id>")
            resource: Resource affected (e.g., "device:<id>")
            data: Event-specific data payload
            metadata: Additional metadata (IP, user agent, etc.)
            priority: Event priority

        Returns:
            Event ID if published to at least one channel, None otherwise
        """
        event = Event(
            event_id=str(uuid.uuid4()),
            event_type=event_type,
            timestamp=utcnow().isoformat(),
            priority=priority,
            subject=subject,
            resource=resource,
            data=data or {},
            metadata=metadata or {}
        )
        event_json = event.model_dump(mode="json")

        channels = EVENT_CHANNEL_MAP.get(event_type, [EventChannel.ALL_EVENTS])

        published_count = 0
        for channel in channels:
            try:
                self.redis.publish_json(channel.value, event_json)
                published_count += 1
            except RedisError as e:
                logger.error(
                    f"Failed to publish event {event.event_id} to channel {channel.value}: {str(e)}"
                )

        if published_count == 0:
            logger.warning(f"Event {event.event_id} ({event_type.value}) not published to any channels")
            return None

        logger.debug(f"Event {event.event_id} ({event_type.value}) published to {published_count} channels")
        return event.event_id

    def publish_account_registered(self, account_id: str, username: str) -> Optional[str]:
        """Publish account.registered event"""
        return self.publish_event(
            event_type=EventType.ACCOUNT_REGISTERED,
            subject=f"account:{account_id}",
            data={"account_id": account_id, "username": username}
        )

    def publish_login_success(
        self,
        account_id: str,
        session_id: str,
        mfa_verified: bool,
        ip: Optional[str] = None
    ) -> Optional[str]:
        """Publish login.success event"""
        return self.publish_event(
            event_type=EventType.LOGIN_SUCCESS,
            subject=f"account:{account_id}",
            data={
                "account_id": account_id,
                "session_id": session_id,
                "mfa_verified": mfa_verified
            },
            metadata={"ip": ip}
        )

    def publish_device_event(
        self,
        event_type: EventType,
        account_id: str,
        device_id: Optional[str] = None
    ) -> Optional[str]:
        """Publish a device.* event"""
        return self.publish_event(
            event_type=event_type,
            subject=f"account:{account_id}",
            resource=f"device:{device_id}" if device_id else None,
            data={"account_id": account_id, "device_id": device_id},
            priority=EventPriority.HIGH
        )

    def publish_challenge_resolved(
        self,
        challenge_id: str,
        account_id: str,
        approved: bool,
        purpose: str
    ) -> Optional[str]:
        """Publish challenge.approved / challenge.rejected event"""
        return self.publish_event(
            event_type=EventType.CHALLENGE_APPROVED if approved else EventType.CHALLENGE_REJECTED,
            subject=f"account:{account_id}",
            resource=f"challenge:{challenge_id}",
            data={"challenge_id": challenge_id, "purpose": purpose}
        )

    def publish_password_changed(self, account_id: str, changed_via: str) -> Optional[str]:
        """Publish password.changed event"""
        return self.publish_event(
            event_type=EventType.PASSWORD_CHANGED,
            subject=f"account:{account_id}",
            data={"account_id": account_id, "changed_via": changed_via},
            priority=EventPriority.HIGH
        )
