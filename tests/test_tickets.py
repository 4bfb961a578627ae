import pytest
from cadogy.models.ticket import Ticket


@pytest.fixture
def customer(make_user):
    return make_user(email="customer@example.com", name="Casey")


@pytest.fixture
def admin(make_user):
    return make_user(email="admin@example.com", name="Support", role="admin")


@pytest.fixture
def ticket(client, customer, auth_headers):
    response = client.post(
        "/api/dashboard/tickets",
        json={"subject": "Cannot log in", "message": "Help please", "category": "technical"},
        headers=auth_headers(customer),
    )
    assert response.status_code == 201
    return response.json()["ticket"]


def test_create_ticket_defaults(ticket):
    assert ticket["status"] == "open"
    assert ticket["priority"] == "medium"
    assert ticket["category"] == "technical"
    assert ticket["messageCount"] == 1
    assert ticket["lastReplyBy"] == "user"


def test_create_ticket_rejects_unknown_category(client, customer, auth_headers):
    response = client.post(
        "/api/dashboard/tickets",
        json={"subject": "x", "message": "y", "category": "sales"},
        headers=auth_headers(customer),
    )
    assert response.status_code == 400


def test_ticket_detail_is_owner_only(client, customer, make_user, auth_headers, ticket):
    response = client.get(f"/api/dashboard/tickets/{ticket['id']}", headers=auth_headers(customer))
    detail = response.json()["ticket"]
    assert detail["messages"][0]["content"] == "Help please"
    assert detail["messages"][0]["author"]["name"] == "Casey"

    other = make_user(email="other@example.com")
    response = client.get(f"/api/dashboard/tickets/{ticket['id']}", headers=auth_headers(other))
    assert response.status_code == 404
    assert client.get("/api/dashboard/tickets", headers=auth_headers(other)).json() == {"tickets": []}


def test_admin_reply_then_user_reply_reopens(client, db, customer, admin, auth_headers, ticket):
    url = f"/api/admin/tickets/{ticket['id']}"
    client.post(f"{url}/reply", json={"content": "Try resetting"}, headers=auth_headers(admin))
    response = client.patch(url, json={"status": "resolved"}, headers=auth_headers(admin))
    assert response.json()["ticket"]["status"] == "resolved"
    assert response.json()["ticket"]["lastReplyBy"] == "admin"

    response = client.post(
        f"/api/dashboard/tickets/{ticket['id']}/reply",
        json={"content": "Still broken"},
        headers=auth_headers(customer),
    )
    assert response.status_code == 201
    detail = response.json()["ticket"]
    assert detail["status"] == "open"
    assert detail["lastReplyBy"] == "user"
    assert [m["author"]["role"] for m in detail["messages"]] == ["user", "admin", "user"]


def test_admin_reply_does_not_reopen(client, admin, auth_headers, ticket):
    url = f"/api/admin/tickets/{ticket['id']}"
    client.patch(url, json={"status": "closed"}, headers=auth_headers(admin))
    response = client.post(f"{url}/reply", json={"content": "Closing note"}, headers=auth_headers(admin))
    assert response.json()["ticket"]["status"] == "closed"


def test_deleted_author_shows_as_unknown(client, db, customer, admin, auth_headers, ticket):
    other_admin = client.post(
        "/api/admin/users",
        json={"email": "temp@example.com", "role": "admin"},
        headers=auth_headers(admin),
    ).json()
    client.post(
        f"/api/admin/tickets/{ticket['id']}/reply",
        json={"content": "Looking into it"},
        headers=auth_headers(admin),
    )
    db.expire_all()
    ticket_row = db.get(Ticket, ticket["id"])
    ticket_row.messages[1].author_id = other_admin["id"]
    db.commit()

    client.delete(f"/api/admin/users/{other_admin['id']}", headers=auth_headers(admin))

    detail = client.get(f"/api/dashboard/tickets/{ticket['id']}", headers=auth_headers(customer)).json()["ticket"]
    assert detail["messages"][1]["author"]["name"] == "Unknown User"


def test_admin_list_filters_and_search(client, customer, admin, auth_headers, ticket):
    client.post(
        "/api/dashboard/tickets",
        json={"subject": "Invoice question", "message": "Hi", "category": "billing", "priority": "high"},
        headers=auth_headers(customer),
    )
    headers = auth_headers(admin)

    all_tickets = client.get("/api/admin/tickets", headers=headers).json()["tickets"]
    assert len(all_tickets) == 2
    assert all_tickets[0]["userEmail"] == "customer@example.com"

    billing = client.get("/api/admin/tickets", params={"category": "billing"}, headers=headers).json()["tickets"]
    assert [t["subject"] for t in billing] == ["Invoice question"]

    found = client.get("/api/admin/tickets", params={"search": "log in"}, headers=headers).json()["tickets"]
    assert [t["id"] for t in found] == [ticket["id"]]

    by_email = client.get("/api/admin/tickets", params={"search": "customer@"}, headers=headers).json()["tickets"]
    assert len(by_email) == 2


def test_admin_ticket_detail_includes_owner(client, customer, admin, auth_headers, ticket):
    detail = client.get(f"/api/admin/tickets/{ticket['id']}", headers=auth_headers(admin)).json()["ticket"]
    assert detail["user"] == {"id": customer.id, "name": "Casey", "email": "customer@example.com"}


def test_admin_deletes_ticket(client, db, admin, auth_headers, ticket):
    response = client.delete(f"/api/admin/tickets/{ticket['id']}", headers=auth_headers(admin))
    assert response.status_code == 200
    db.expire_all()
    assert db.get(Ticket, ticket["id"]) is None
    assert client.get(f"/api/admin/tickets/{ticket['id']}", headers=auth_headers(admin)).status_code == 404


def test_update_rejects_unknown_status(client, admin, auth_headers, ticket):
    response = client.patch(f"/api/admin/tickets/{ticket['id']}", json={"status": "pending"}, headers=auth_headers(admin))
    assert response.status_code == 400
