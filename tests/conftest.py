import pytest

from webhook_delivery.repositories.memory import InMemoryDeliveryRepository
from webhook_delivery.services.coordinator import DeliveryCoordinator

from tests.utils import FakeClock


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def repository() -> InMemoryDeliveryRepository:
    return InMemoryDeliveryRepository()


@pytest.fixture
def coordinator(repository, clock) -> DeliveryCoordinator:
    return DeliveryCoordinator(repository, clock=clock)
