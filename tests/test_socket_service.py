"""SocketService over a fake Socket.IO client."""
import pytest

from campus_notifications.services import socket_service
from campus_notifications.services.socket_service import SocketService
from tests.fakes import TOKEN, FakeSocketFactory

pytestmark = pytest.mark.anyio


async def test_connect_sends_token_and_disables_auto_reconnect(socket, socket_factory):
    connected = []
    socket.on(socket_service.CONNECTED, connected.append)

    await socket.connect()

    client = socket_factory.last
    assert client.options == {"reconnection": False}
    assert client.connect_calls == [("http://testserver", {"token": TOKEN})]
    assert socket.is_connected is True
    assert connected == [None]


async def test_connect_without_token_does_nothing(socket_factory):
    socket = SocketService(lambda: None, "http://testserver", client_factory=socket_factory)
    await socket.connect()
    assert socket_factory.clients == []
    assert socket.is_connected is False


async def test_second_connect_is_ignored(socket, socket_factory):
    await socket.connect()
    await socket.connect()
    assert len(socket_factory.clients) == 1


async def test_server_events_are_forwarded(socket, socket_factory):
    received = []
    socket.on(socket_service.NEW_NOTIFICATION, received.append)
    socket.on(socket_service.NOTIFICATION_DELETED, received.append)
    await socket.connect()

    await socket_factory.last.server_event("new_notification", {"_id": "n9"})
    await socket_factory.last.server_event("notification_deleted", {"notificationId": "n1"})

    assert received == [{"_id": "n9"}, {"notificationId": "n1"}]


async def test_off_removes_handler(socket, socket_factory):
    received = []
    socket.on(socket_service.NEW_NOTIFICATION, received.append)
    socket.off(socket_service.NEW_NOTIFICATION, received.append)
    await socket.connect()
    await socket_factory.last.server_event("new_notification", {"_id": "n9"})
    assert received == []


async def test_failing_handler_does_not_stop_others(socket, socket_factory):
    received = []

    def broken(_data):
        raise ValueError("bad handler")

    socket.on(socket_service.NOTIFICATION_UPDATED, broken)
    socket.on(socket_service.NOTIFICATION_UPDATED, received.append)
    await socket.connect()
    await socket_factory.last.server_event("notification_updated", {"_id": "n1"})
    assert received == [{"_id": "n1"}]


async def test_connection_failure_becomes_error_event():
    factory = FakeSocketFactory(refuse=True)
    socket = SocketService(lambda: TOKEN, "http://testserver", client_factory=factory)
    errors = []
    socket.on(socket_service.ERROR, errors.append)

    await socket.connect()

    assert socket.is_connected is False
    assert errors == [{"message": "refused"}]


async def test_outbound_intents_when_connected(socket, socket_factory):
    await socket.connect()

    assert await socket.mark_notification_as_read("n1") is True
    assert await socket.mark_notification_as_important("n2", True) is True
    assert await socket.delete_notification("n3") is True

    assert socket_factory.last.emitted == [
        ("mark_notification_read", {"notificationId": "n1"}),
        ("mark_notification_important", {"notificationId": "n2", "isImportant": True}),
        ("delete_notification", {"notificationId": "n3"}),
    ]


async def test_outbound_intents_dropped_when_disconnected(socket, socket_factory):
    assert await socket.mark_notification_as_read("n1") is False
    assert socket_factory.emitted == []


async def test_disconnect_reports_reason(socket, socket_factory):
    reasons = []
    socket.on(socket_service.DISCONNECTED, reasons.append)
    await socket.connect()

    await socket.disconnect()

    assert socket.is_connected is False
    assert reasons == ["io client disconnect"]


async def test_reconnect_builds_a_fresh_connection(socket, socket_factory):
    await socket.connect()
    await socket.reconnect()
    assert len(socket_factory.clients) == 2
    assert socket_factory.clients[0].connected is False
    assert socket.is_connected is True
