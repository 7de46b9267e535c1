"""Shared fixtures: in-memory database, fake Daraja transport, token cache."""

import os

os.environ.setdefault("DATABASE_URL", "sqlite://")
os.environ.setdefault("API_KEY", "test-api-key")
os.environ.setdefault("TRACING_ENABLED", "false")
os.environ.setdefault("MPESA_API_BASE", "https://daraja.test")
os.environ.setdefault("MPESA_CONSUMER_KEY", "consumer-key")
os.environ.setdefault("MPESA_CONSUMER_SECRET", "consumer-secret")
os.environ.setdefault("MPESA_SHORT_CODE", "174379")
os.environ.setdefault("MPESA_PASSKEY", "passkey")
os.environ.setdefault("MPESA_CALLBACK_URL", "https://rentpay.test/payments/callback")
os.environ.setdefault("MPESA_CALLBACK_SECRET", "test-callback-secret")

import httpx
import pytest
from sqlalchemy.orm import sessionmaker

from rentpay.common.config import settings
from rentpay.common.db import Base, build_engine
from rentpay.services.payments.daraja import DarajaClient
from rentpay.services.payments.service import PaymentInitiationService
from rentpay.services.payments.store import PaymentRecordStore
from rentpay.services.payments.token_cache import AccessTokenCache
from tests.helpers import FakeClock, FakeDaraja


@pytest.fixture
def session_factory():
    engine = build_engine("sqlite://")
    Base.metadata.create_all(engine)
    yield sessionmaker(bind=engine, autoflush=False, autocommit=False, expire_on_commit=False)
    engine.dispose()


@pytest.fixture
def store(session_factory):
    return PaymentRecordStore(session_factory)


@pytest.fixture
def daraja():
    return FakeDaraja()


@pytest.fixture
def gateway(daraja):
    return DarajaClient(
        settings.mpesa_api_base,
        settings.mpesa_consumer_key,
        settings.mpesa_consumer_secret,
        transport=httpx.MockTransport(daraja),
    )


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def tokens(gateway, clock):
    return AccessTokenCache(gateway.fetch_access_token, ttl_seconds=3500, expiry_margin_seconds=100, clock=clock)


@pytest.fixture
def initiation(store, gateway, tokens):
    return PaymentInitiationService(store, gateway, tokens, settings)
