import pytest

from campus_notifications.core.storage import MemoryStorageArea
from campus_notifications.services.notification_service import NotificationService
from campus_notifications.services.notification_state import NotificationState
from campus_notifications.services.notification_store import NotificationStore
from campus_notifications.services.socket_service import SocketService
from tests.fakes import TOKEN, FakeNotificationServer, FakeSocketFactory, make_notification


@pytest.fixture
def anyio_backend():
    return "asyncio"


@pytest.fixture
def seed_notifications():
    return [
        make_notification("n1"),
        make_notification("n2", type="eth_received", category="payment", priority="high", title="Coins received"),
        make_notification("n3", read=True, readAt="2026-01-09T08:00:00Z", isImportant=True),
    ]


@pytest.fixture
def server(seed_notifications):
    return FakeNotificationServer(seed_notifications)


@pytest.fixture
async def http_client(server):
    async with server.client() as client:
        yield client


@pytest.fixture
def store(http_client):
    return NotificationStore(http_client, lambda: TOKEN)


@pytest.fixture
def service(store):
    return NotificationService(store)


@pytest.fixture
def socket_factory():
    return FakeSocketFactory()


@pytest.fixture
def socket(socket_factory):
    return SocketService(lambda: TOKEN, "http://testserver", reconnect_delay=0, client_factory=socket_factory)


@pytest.fixture
def storage_area():
    return MemoryStorageArea()


@pytest.fixture
async def make_state(server, storage_area):
    """Build a NotificationState as one more tab of the same user. Every state built is closed afterwards."""
    created = []

    def build(**kwargs):
        store = NotificationStore(server.client(), lambda: TOKEN)
        factory = kwargs.pop("socket_factory", None) or FakeSocketFactory()
        socket = SocketService(lambda: TOKEN, "http://testserver", reconnect_delay=0, client_factory=factory)
        state = NotificationState(NotificationService(store), socket, storage_area.open(), **kwargs)
        created.append(state)
        return state

    yield build

    for state in created:
        await state.close()
        await state.service.store.client.aclose()


@pytest.fixture
async def state(make_state):
    state = make_state()
    await state.start()
    return state
