"""
Pytest configuration shared by unit and integration tests.

Everything runs in-process: SQLite in memory for the credential store, an
in-memory stand-in for the Redis server behind the real RedisClient wrapper,
and a clock the tests move by hand.
"""

import os

# Settings are read at import time
os.environ["DATABASE_URL"] = "sqlite://"
os.environ["ENVIRONMENT"] = "test"
os.environ.setdefault("PASSWORD_HASH_ROUNDS", "1000")
os.environ.setdefault("JWT_SECRET_KEY", "test-secret-key")
os.environ.setdefault("TWO_FACTOR_MECHANISM", "shared_code")

import base64
from datetime import datetime, timedelta
from typing import Dict, List, Optional, Tuple

import pytest
from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric import ed25519
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from secure_credentials.core.database import Base
from secure_credentials.core.redis_client import RedisClient
import secure_credentials.models  # noqa: F401


class InMemoryRedisServer:
    """Implements the redis-py commands RedisClient uses. TTLs are recorded, not enforced."""

    def __init__(self):
        self.store: Dict[str, object] = {}
        self.ttls: Dict[str, int] = {}
        self.published: List[Tuple[str, str]] = []

    def delete(self, *keys):
        removed = 0
        for key in keys:
            if key in self.store:
                del self.store[key]
                self.ttls.pop(key, None)
                removed += 1
        return removed

    def hgetall(self, name):
        return dict(self.store.get(name, {}))

    def hset(self, name, mapping=None, **kwargs):
        current = self.store.setdefault(name, {})
        current.update({k: str(v) for k, v in (mapping or {}).items()})
        return len(mapping or {})

    def expire(self, key, ttl):
        if key not in self.store:
            return False
        self.ttls[key] = ttl
        return True

    def incr(self, key):
        value = int(self.store.get(key, "0")) + 1
        self.store[key] = str(value)
        return value

    def publish(self, channel, message):
        self.published.append((channel, message))
        return 1

    def ping(self):
        return True

    def close(self):
        pass


class FakeClock:
    """Callable clock returning naive UTC datetimes"""

    def __init__(self, start: Optional[datetime] = None):
        self.now = start or datetime(2026, 3, 1, 9, 0, 0)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, seconds: float) -> datetime:
        self.now = self.now + timedelta(seconds=seconds)
        return self.now


@pytest.fixture
def db_engine():
    """Fresh in-memory database per test"""
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(engine)
    yield engine
    Base.metadata.drop_all(engine)
    engine.dispose()


@pytest.fixture
def db_session(db_engine):
    session = sessionmaker(bind=db_engine, autocommit=False, autoflush=False)()
    yield session
    session.close()


@pytest.fixture
def redis_server():
    return InMemoryRedisServer()


@pytest.fixture
def redis(redis_server):
    return RedisClient(client=redis_server)


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def ed25519_keypair():
    """(private_key, public_key_pem) for a signing device"""
    private_key = ed25519.Ed25519PrivateKey.generate()
    public_pem = private_key.public_key().public_bytes(
        encoding=serialization.Encoding.PEM,
        format=serialization.PublicFormat.SubjectPublicKeyInfo,
    ).decode()
    return private_key, public_pem


def sign(private_key, message: str) -> str:
    """Base64 signature as a device would send it"""
    return base64.b64encode(private_key.sign(message.encode())).decode()


@pytest.fixture
def signer():
    return sign


@pytest.fixture
def coordinator(db_session, redis, clock):
    from secure_credentials.services.auth_coordinator import AuthCoordinator
    return AuthCoordinator(db_session, redis, clock)


@pytest.fixture
def account(coordinator):
    """Registered account without two-factor"""
    result = coordinator.register("alice", "alice@x.com", "Str0ng!Pass", "Str0ng!Pass")
    assert result.success, result.message
    return result.account


@pytest.fixture
def enrollment(coordinator, account, ed25519_keypair):
    """Account with one verified device; exposes the backup codes issued with it"""
    _, public_pem = ed25519_keypair
    begin = coordinator.begin_device_registration(account.account_id, "Pixel 8", public_pem)
    assert begin.success, begin.message
    done = coordinator.complete_device_registration(begin.registration_code, "Pixel 8", public_pem)
    assert done.success, done.message
    return {
        "account_id": account.account_id,
        "device_id": done.device_id,
        "backup_codes": begin.backup_codes,
        "public_key": public_pem,
    }
