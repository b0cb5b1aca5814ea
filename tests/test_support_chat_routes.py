from datetime import timedelta
from unittest.mock import AsyncMock

import pytest
from fastapi.testclient import TestClient

from supportdesk.chat import ChatMessage, ChatSessionStatus, OpenSessionResult
from supportdesk.chat.service import CLAIM_TAKEN, QUEUE_STAFF_ONLY
from supportdesk.dependencies import auth as auth_deps
from supportdesk.dependencies import support as support_deps
from supportdesk.errors import EMPTY_MESSAGE, ConflictError, ForbiddenError, InvalidOperationError, UnauthenticatedError
from supportdesk.identity import CallerContext
from supportdesk.main import create_app

from tests.conftest import CUSTOMER, NOW, STAFF, make_session


@pytest.fixture
def chat_client():
    app = create_app()
    service = AsyncMock()

    async def override_service():
        return service

    app.dependency_overrides[support_deps.get_chat_service] = override_service
    app.dependency_overrides[auth_deps.get_current_caller] = lambda: CallerContext(CUSTOMER.user_id)

    client = TestClient(app)
    try:
        yield client, service
    finally:
        app.dependency_overrides.clear()


def _message(content="Xin chào", *, is_from_staff=False):
    return ChatMessage("m-1", "session-1", CUSTOMER.user_id, is_from_staff, content, NOW)


def test_open_or_get_returns_flags(chat_client):
    client, service = chat_client
    previous = make_session("old", status=ChatSessionStatus.CLOSED, closed_at=NOW - timedelta(days=1))
    service.open_or_get = AsyncMock(
        return_value=OpenSessionResult(make_session(), True, last_closed_session=previous, initial_message=_message())
    )

    response = client.post("/support-chats/open-or-get", json={"initial_message": "Xin chào"})

    assert response.status_code == 200
    body = response.json()
    assert body["is_new"] is True
    assert body["has_previous_closed_session"] is True
    assert body["last_closed_session_id"] == "old"
    assert body["session"]["status"] == "Waiting"
    assert body["initial_message"]["content"] == "Xin chào"
    service.open_or_get.assert_awaited_with(CallerContext(CUSTOMER.user_id), "Xin chào")


def test_post_message_returns_created(chat_client):
    client, service = chat_client
    service.post_message = AsyncMock(return_value=_message())

    response = client.post("/support-chats/session-1/messages", json={"content": "Xin chào"})

    assert response.status_code == 201
    assert response.json()["sender_id"] == CUSTOMER.user_id
    service.post_message.assert_awaited_with(CallerContext(CUSTOMER.user_id), "session-1", "Xin chào")


@pytest.mark.parametrize(
    ("error", "status_code"),
    [
        (InvalidOperationError(EMPTY_MESSAGE), 400),
        (UnauthenticatedError(), 401),
        (ForbiddenError("no"), 403),
    ],
)
def test_post_message_maps_errors(chat_client, error, status_code):
    client, service = chat_client
    service.post_message = AsyncMock(side_effect=error)

    response = client.post("/support-chats/session-1/messages", json={"content": ""})

    assert response.status_code == status_code
    assert response.json()["detail"] == str(error)


def test_admin_message_endpoint(chat_client):
    client, service = chat_client
    service.admin_post_message = AsyncMock(return_value=_message(is_from_staff=True))

    response = client.post("/support-chats/session-1/admin-messages", json={"content": "Admin"})

    assert response.status_code == 201
    assert response.json()["is_from_staff"] is True


def test_list_messages_and_session(chat_client):
    client, service = chat_client
    service.list_messages = AsyncMock(return_value=[_message("một"), _message("hai")])
    service.get_session = AsyncMock(return_value=make_session(last_message_at=NOW, last_message_preview="hai"))

    messages = client.get("/support-chats/session-1/messages")
    session = client.get("/support-chats/session-1")

    assert [item["content"] for item in messages.json()] == ["một", "hai"]
    assert session.json()["last_message_preview"] == "hai"


def test_queue_forwards_paging(chat_client):
    client, service = chat_client
    service.list_queue = AsyncMock(return_value=[make_session("a"), make_session("b")])

    response = client.get("/support-chats/queue", params={"page": 2, "page_size": 5})

    assert [item["id"] for item in response.json()] == ["a", "b"]
    service.list_queue.assert_awaited_with(CallerContext(CUSTOMER.user_id), page=2, page_size=5)


def test_queue_forbidden_for_customers(chat_client):
    client, service = chat_client
    service.list_queue = AsyncMock(side_effect=ForbiddenError(QUEUE_STAFF_ONLY))

    response = client.get("/support-chats/queue")

    assert response.status_code == 403
    assert response.json()["detail"] == QUEUE_STAFF_ONLY


def test_claim_conflict_maps_to_409(chat_client):
    client, service = chat_client
    service.claim = AsyncMock(side_effect=ConflictError(CLAIM_TAKEN))

    response = client.post("/support-chats/session-1/claim")

    assert response.status_code == 409
    assert response.json()["detail"] == CLAIM_TAKEN


@pytest.mark.parametrize(("path", "method"), [("unassign", "unassign"), ("close", "close_session")])
def test_session_actions(chat_client, path, method):
    client, service = chat_client
    setattr(service, method, AsyncMock(return_value=make_session(status=ChatSessionStatus.CLOSED, closed_at=NOW)))

    response = client.post(f"/support-chats/session-1/{path}")

    assert response.status_code == 200
    assert response.json()["closed_at"] == NOW.isoformat()


@pytest.mark.parametrize(("path", "method"), [("admin-assign", "admin_assign_staff"), ("admin-transfer", "admin_transfer_staff")])
def test_admin_staff_actions(chat_client, path, method):
    client, service = chat_client
    setattr(service, method, AsyncMock(return_value=make_session(assigned_staff_id=STAFF.user_id)))

    response = client.post(f"/support-chats/session-1/{path}", json={"staff_id": STAFF.user_id})

    assert response.status_code == 200
    assert response.json()["assigned_staff_id"] == STAFF.user_id
    getattr(service, method).assert_awaited_with(CallerContext(CUSTOMER.user_id), "session-1", STAFF.user_id)
