"""Pytest fixtures for loyalty ledger tests."""

import pytest

from loyalty.config import LoyaltySettings
from loyalty.service import LedgerService
from loyalty.storage import InMemoryStorage
from offers import OfferGenerator


@pytest.fixture
def settings():
    return LoyaltySettings(apply_retry_attempts=3, apply_retry_delay=0)


@pytest.fixture
def service(settings, monkeypatch):
    monkeypatch.delenv("GROQ_API_KEY", raising=False)
    svc = LedgerService(
        storage=InMemoryStorage(),
        settings=settings,
        offer_generator=OfferGenerator(api_key=None),
    )
    yield svc
    svc.close()


@pytest.fixture
def business(service):
    return service.create_business("Corner Coffee", "owner@cornercoffee.example")


@pytest.fixture
def other_business(service):
    return service.create_business("Book Nook", "owner@booknook.example")
