"""Tests for incident endpoints."""

import uuid

from fastapi import status

from incident_api.models import User

SECOND_USER = {
    "username": "bob",
    "email": "bob@example.com",
    "password": "Secur3!Pass",
    "confirm_password": "Secur3!Pass",
    "first_name": "Bob",
    "last_name": "Jones",
}


def first_category_id(client, headers):
    response = client.get("/api/incidents/categories", headers=headers)
    assert response.status_code == status.HTTP_200_OK
    return response.json()[0]["id"]


def create_incident(client, headers, **overrides):
    payload = {
        "title": "Database outage",
        "description": "Primary database stopped accepting connections",
        "category_id": first_category_id(client, headers),
        "priority": 4,
    }
    payload.update(overrides)
    response = client.post("/api/incidents", json=payload, headers=headers)
    assert response.status_code == status.HTTP_201_CREATED, response.text
    return response.json()


def other_user_headers(client):
    response = client.post("/api/auth/register", json=SECOND_USER)
    assert response.status_code == status.HTTP_201_CREATED, response.text
    body = response.json()
    return {"Authorization": f"Bearer {body['access_token']}"}, body["user"]


class TestReferenceData:
    """Categories, statuses and priorities."""

    def test_categories_seeded(self, client, auth_headers):
        response = client.get("/api/incidents/categories", headers=auth_headers)

        assert response.status_code == status.HTTP_200_OK
        names = [c["name"] for c in response.json()]
        assert "Security" in names
        assert names == sorted(names)

    def test_statuses_in_workflow_order(self, client, auth_headers):
        response = client.get("/api/incidents/statuses", headers=auth_headers)

        assert [s["name"] for s in response.json()] == ["OPEN", "IN_PROGRESS", "CLOSED"]

    def test_priorities(self, client, auth_headers):
        response = client.get("/api/incidents/priorities", headers=auth_headers)

        data = response.json()
        assert len(data) == 5
        assert data[-1] == {"value": 5, "name": "Critical"}

    def test_requires_authentication(self, client):
        response = client.get("/api/incidents/categories")
        assert response.status_code == status.HTTP_401_UNAUTHORIZED


class TestIncidentLifecycle:
    """Create, read, update and delete."""

    def test_create_incident(self, client, auth_headers, registered_user):
        data = create_incident(client, auth_headers)

        assert data["status_id"] == 1
        assert data["status"]["name"] == "OPEN"
        assert data["user_id"] == registered_user["user"]["id"]
        assert data["closed_at"] is None

    def test_create_strips_html(self, client, auth_headers):
        data = create_incident(client, auth_headers, title="<b>Disk</b> is full again")
        assert data["title"] == "Disk is full again"

    def test_create_with_unknown_category(self, client, auth_headers):
        response = client.post(
            "/api/incidents",
            json={
                "title": "Printer on fire",
                "description": "Smoke coming out of the printer",
                "category_id": str(uuid.uuid4()),
            },
            headers=auth_headers,
        )
        assert response.status_code == status.HTTP_404_NOT_FOUND

    def test_create_with_invalid_priority(self, client, auth_headers):
        response = client.post(
            "/api/incidents",
            json={
                "title": "Printer on fire",
                "description": "Smoke coming out of the printer",
                "category_id": first_category_id(client, auth_headers),
                "priority": 9,
            },
            headers=auth_headers,
        )
        assert response.status_code == status.HTTP_422_UNPROCESSABLE_ENTITY

    def test_get_unknown_incident(self, client, auth_headers):
        response = client.get(f"/api/incidents/{uuid.uuid4()}", headers=auth_headers)
        assert response.status_code == status.HTTP_404_NOT_FOUND

    def test_list_and_filter(self, client, auth_headers):
        create_incident(client, auth_headers)
        bob_headers, _ = other_user_headers(client)
        create_incident(client, bob_headers, title="VPN is unreachable")

        everything = client.get("/api/incidents", headers=auth_headers).json()
        mine = client.get("/api/incidents", params={"mine": True}, headers=auth_headers).json()

        assert everything["total"] == 2
        assert mine["total"] == 1
        assert mine["incidents"][0]["title"] == "Database outage"

    def test_close_incident_records_history(self, client, auth_headers):
        incident = create_incident(client, auth_headers)

        response = client.put(
            f"/api/incidents/{incident['id']}",
            json={"status_id": 3},
            headers=auth_headers,
        )

        assert response.status_code == status.HTTP_200_OK
        assert response.json()["closed_at"] is not None

        updates = client.get(f"/api/incidents/{incident['id']}/updates", headers=auth_headers).json()
        assert updates[-1]["update_type"] == "STATUS_CHANGE"
        assert updates[-1]["old_value"] == "Open"
        assert updates[-1]["new_value"] == "Closed"

    def test_reopen_clears_closed_at(self, client, auth_headers):
        incident = create_incident(client, auth_headers)
        client.put(f"/api/incidents/{incident['id']}", json={"status_id": 3}, headers=auth_headers)

        response = client.put(
            f"/api/incidents/{incident['id']}",
            json={"status_id": 2},
            headers=auth_headers,
        )

        assert response.json()["closed_at"] is None

    def test_unchanged_update_leaves_no_history(self, client, auth_headers):
        incident = create_incident(client, auth_headers)

        client.put(
            f"/api/incidents/{incident['id']}",
            json={"priority": incident["priority"]},
            headers=auth_headers,
        )

        updates = client.get(f"/api/incidents/{incident['id']}/updates", headers=auth_headers).json()
        assert updates == []

    def test_update_by_other_user_forbidden(self, client, auth_headers):
        incident = create_incident(client, auth_headers)
        bob_headers, _ = other_user_headers(client)

        response = client.put(
            f"/api/incidents/{incident['id']}",
            json={"priority": 1},
            headers=bob_headers,
        )
        assert response.status_code == status.HTTP_403_FORBIDDEN

    def test_admin_can_update(self, client, db_session, auth_headers):
        incident = create_incident(client, auth_headers)
        bob_headers, bob = other_user_headers(client)
        admin = db_session.query(User).filter(User.id == uuid.UUID(bob["id"])).first()
        admin.role = "Admin"
        db_session.commit()

        response = client.put(
            f"/api/incidents/{incident['id']}",
            json={"priority": 5},
            headers=bob_headers,
        )
        assert response.status_code == status.HTTP_200_OK
        assert response.json()["priority"] == 5

    def test_delete_incident(self, client, auth_headers):
        incident = create_incident(client, auth_headers)

        response = client.delete(f"/api/incidents/{incident['id']}", headers=auth_headers)

        assert response.status_code == status.HTTP_204_NO_CONTENT
        assert client.get(f"/api/incidents/{incident['id']}", headers=auth_headers).status_code == 404

    def test_delete_by_other_user_forbidden(self, client, auth_headers):
        incident = create_incident(client, auth_headers)
        bob_headers, _ = other_user_headers(client)

        response = client.delete(f"/api/incidents/{incident['id']}", headers=bob_headers)
        assert response.status_code == status.HTTP_403_FORBIDDEN


class TestCommentsAndAssignment:
    def test_add_comment(self, client, auth_headers):
        incident = create_incident(client, auth_headers)

        response = client.post(
            f"/api/incidents/{incident['id']}/comments",
            json={"comment": "Restarted the <i>primary</i> node"},
            headers=auth_headers,
        )

        assert response.status_code == status.HTTP_201_CREATED
        assert response.json()["comment"] == "Restarted the primary node"
        assert response.json()["update_type"] == "COMMENT"

    def test_comment_on_unknown_incident(self, client, auth_headers):
        response = client.post(
            f"/api/incidents/{uuid.uuid4()}/comments",
            json={"comment": "Anyone there?"},
            headers=auth_headers,
        )
        assert response.status_code == status.HTTP_404_NOT_FOUND

    def test_assign_incident(self, client, auth_headers):
        incident = create_incident(client, auth_headers)
        _, bob = other_user_headers(client)

        response = client.put(
            f"/api/incidents/{incident['id']}/assign",
            json={"user_id": bob["id"]},
            headers=auth_headers,
        )

        assert response.status_code == status.HTTP_200_OK
        assert response.json()["user_id"] == bob["id"]
        updates = client.get(f"/api/incidents/{incident['id']}/updates", headers=auth_headers).json()
        assert updates[-1]["update_type"] == "ASSIGNMENT"
        assert updates[-1]["comment"] == "Assigned to bob"

    def test_assign_to_unknown_user(self, client, auth_headers):
        incident = create_incident(client, auth_headers)

        response = client.put(
            f"/api/incidents/{incident['id']}/assign",
            json={"user_id": str(uuid.uuid4())},
            headers=auth_headers,
        )
        assert response.status_code == status.HTTP_404_NOT_FOUND
