"""
Tests for the ProjectHub REST API (projecthub.api.app).

Run with: pytest tests/test_api.py -v

Uses FastAPI TestClient against in-memory SQLite and an in-memory session
store, so no running services are needed.
"""

from unittest.mock import patch

import pytest

DUE = "2024-01-10T00:00:00Z"


@pytest.fixture
def admin_headers(login, admin):
    return login(admin)


@pytest.fixture
def employee_headers(login, employee):
    return login(employee)


@pytest.fixture
def task_id(client, admin_headers, employee, project):
    response = client.post("/api/tasks", headers=admin_headers, json={
        "title": "Draft homepage",
        "description": "First pass",
        "project": project.id,
        "assignedTo": employee.id,
        "dueDate": DUE,
        "priority": "high",
    })
    assert response.status_code == 201, response.text
    return response.json()["id"]


class TestHealth:
    def test_health(self, client):
        response = client.get("/health")
        assert response.status_code == 200
        data = response.json()
        assert data["status"] == "healthy"
        assert data["database"] is True
        assert data["sessions"] is True
        assert data["version"] == "1.0.0"


class TestAuth:
    def test_register_creates_employee_and_logs_in(self, client):
        response = client.post("/api/auth/register", json={
            "name": "Dana",
            "email": "dana@example.com",
            "password": "longenough",
            "department": "Sales",
            "role": "admin",
        })
        assert response.status_code == 201, response.text
        body = response.json()
        assert body["token"]
        assert body["user"]["role"] == "employee"
        assert body["user"]["dashboardRoute"] == "/tasks"

        me = client.get("/api/auth/me", headers={"Authorization": f"Bearer {body['token']}"})
        assert me.json()["email"] == "dana@example.com"

    def test_register_duplicate_is_conflict(self, client, employee):
        response = client.post("/api/auth/register", json={
            "name": "Again", "email": employee.email, "password": "longenough", "department": "Design",
        })
        assert response.status_code == 409
        assert response.json()["error_type"] == "ProjectHubConflictError"

    def test_register_missing_field_is_400(self, client):
        response = client.post("/api/auth/register", json={"name": "Dana", "email": "dana@example.com"})
        assert response.status_code == 400
        body = response.json()
        assert body["message"] == "Validation error"
        assert {e["field"] for e in body["errors"]} == {"password", "department"}

    def test_register_service_validation_lists_errors(self, client):
        response = client.post("/api/auth/register", json={
            "name": "Dana", "email": "dana@example.com", "password": "short", "department": "Sales",
        })
        assert response.status_code == 400
        assert response.json()["errors"][0]["field"] == "password"

    def test_login_wrong_password(self, client, employee):
        response = client.post("/api/auth/login", json={"email": employee.email, "password": "nope"})
        assert response.status_code == 401
        assert response.json()["message"] == "Invalid credentials"

    def test_missing_and_bad_tokens(self, client):
        assert client.get("/api/auth/me").status_code == 401
        assert client.get("/api/auth/me", headers={"Authorization": "Bearer bogus"}).status_code == 401
        assert client.get("/api/auth/me", headers={"Authorization": "Basic abc"}).status_code == 401

    def test_logout(self, client, employee_headers):
        assert client.post("/api/auth/logout", headers=employee_headers).status_code == 200
        assert client.get("/api/auth/me", headers=employee_headers).status_code == 401


class TestUsers:
    def test_list_users_admin_only(self, client, admin_headers, employee_headers):
        assert client.get("/api/users", headers=employee_headers).status_code == 403
        response = client.get("/api/users", headers=admin_headers)
        assert response.status_code == 200
        assert len(response.json()) == 2

    def test_admin_creates_user(self, client, admin_headers):
        response = client.post("/api/users", headers=admin_headers, json={
            "name": "Sam", "email": "sam@example.com", "password": "longenough",
            "department": "Sales", "role": "sales_representative", "permissions": ["view_reports"],
        })
        assert response.status_code == 201
        assert response.json()["dashboardRoute"] == "/sales/dashboard"

    def test_gift(self, client, admin_headers, employee):
        response = client.post(f"/api/users/{employee.id}/gifts", headers=admin_headers,
                               json={"value": 15, "description": "Lunch"})
        assert response.status_code == 201
        body = response.json()
        assert body["rewardPoints"] == 0
        assert body["rewards"][0]["type"] == "gift"


class TestTasks:
    def test_create_returns_task(self, client, admin_headers, task_id):
        response = client.get(f"/api/tasks/{task_id}", headers=admin_headers)
        assert response.status_code == 200
        data = response.json()
        assert data["status"] == "pending"
        assert data["priority"] == "high"
        assert data["dueDate"] == "2024-01-10T00:00:00+00:00"
        assert data["extensionRequest"]["requested"] is False

    def test_employee_cannot_create(self, client, employee_headers, employee, project):
        response = client.post("/api/tasks", headers=employee_headers, json={
            "title": "T", "description": "D", "project": project.id,
            "assignedTo": employee.id, "dueDate": DUE,
        })
        assert response.status_code == 403

    def test_create_for_missing_project(self, client, admin_headers, employee):
        response = client.post("/api/tasks", headers=admin_headers, json={
            "title": "T", "description": "D", "project": 999, "assignedTo": employee.id, "dueDate": DUE,
        })
        assert response.status_code == 404

    def test_get_missing_task(self, client, admin_headers):
        assert client.get("/api/tasks/999", headers=admin_headers).status_code == 404

    def test_update_rejects_reward_fields(self, client, admin_headers, task_id):
        response = client.put(f"/api/tasks/{task_id}", headers=admin_headers, json={"rewardPoints": 500})
        assert response.status_code == 400

    def test_update(self, client, admin_headers, task_id):
        response = client.put(f"/api/tasks/{task_id}", headers=admin_headers, json={"title": "Renamed"})
        assert response.status_code == 200
        assert response.json()["title"] == "Renamed"

    def test_list_views(self, client, employee_headers, task_id):
        assert [t["id"] for t in client.get("/api/tasks", headers=employee_headers).json()] == [task_id]
        mine = client.get("/api/tasks/assigned-to-me", headers=employee_headers).json()
        assert [t["id"] for t in mine] == [task_id]

    def test_delete(self, client, admin_headers, task_id):
        response = client.delete(f"/api/tasks/{task_id}", headers=admin_headers)
        assert response.json() == {"message": "Task deleted successfully"}
        assert client.get(f"/api/tasks/{task_id}", headers=admin_headers).status_code == 404


class TestStatusAndRewards:
    def test_complete_on_time(self, client, employee_headers, task_id):
        response = client.patch(f"/api/tasks/{task_id}/status", headers=employee_headers,
                                json={"status": "completed"})
        assert response.status_code == 200, response.text
        body = response.json()
        assert body["task"]["status"] == "completed"
        assert body["task"]["rewardPoints"] == 80
        assert body["rewardInfo"] == {
            "pointsEarned": 80,
            "totalPoints": 80,
            "currentStreak": 1,
            "isCompletedOnTime": True,
        }

        rewards = client.get("/api/tasks/rewards/me", headers=employee_headers).json()
        assert rewards["rewardPoints"] == 80
        assert rewards["rewards"][0]["description"] == "On-time task completion: Draft homepage"

    def test_complete_late(self, client, clock, employee_headers, task_id):
        clock.advance(days=1)
        body = client.patch(f"/api/tasks/{task_id}/status", headers=employee_headers,
                            json={"status": "completed"}).json()
        assert body["rewardInfo"]["pointsEarned"] == 0
        assert body["rewardInfo"]["isCompletedOnTime"] is False
        assert body["rewardInfo"]["currentStreak"] == 0

    def test_recomplete_is_409(self, client, employee_headers, task_id):
        client.patch(f"/api/tasks/{task_id}/status", headers=employee_headers, json={"status": "completed"})
        response = client.patch(f"/api/tasks/{task_id}/status", headers=employee_headers,
                                json={"status": "completed"})
        assert response.status_code == 409
        assert response.json()["execution_id"].startswith("exec_")

    def test_engine_sees_request_execution_id(self, client, employee_headers, task_id):
        entries = []
        with patch("projecthub.services.rewards.log", side_effect=entries.append):
            response = client.patch(f"/api/tasks/{task_id}/status", headers=employee_headers,
                                    json={"status": "completed"})
        assert response.status_code == 200
        assert entries
        ids = {entry.data.get("execution_id") for entry in entries}
        assert len(ids) == 1
        assert ids.pop().startswith("exec_")

    def test_status_errors(self, client, login, make_user, employee_headers, task_id):
        assert client.patch(f"/api/tasks/{task_id}/status", headers=employee_headers,
                            json={}).status_code == 400
        assert client.patch(f"/api/tasks/{task_id}/status", headers=employee_headers,
                            json={"status": "done"}).status_code == 400
        assert client.patch("/api/tasks/999/status", headers=employee_headers,
                            json={"status": "in_progress"}).status_code == 404
        other = login(make_user("Other"))
        assert client.patch(f"/api/tasks/{task_id}/status", headers=other,
                            json={"status": "in_progress"}).status_code == 403

    def test_leaderboard(self, client, employee_headers, task_id):
        client.patch(f"/api/tasks/{task_id}/status", headers=employee_headers, json={"status": "completed"})
        board = client.get("/api/tasks/rewards/leaderboard", headers=employee_headers).json()
        assert board[0]["rewardPoints"] == 80
        assert all(entry["name"] != "Admin" for entry in board)


class TestExtensionRequests:
    def test_request_and_approve(self, client, admin_headers, employee_headers, task_id):
        response = client.post(f"/api/tasks/{task_id}/extension-request", headers=employee_headers,
                               json={"reason": "Waiting on copy", "newDueDate": "2024-01-15T00:00:00Z"})
        assert response.status_code == 200, response.text
        assert response.json()["task"]["extensionRequest"]["status"] == "pending"

        second = client.post(f"/api/tasks/{task_id}/extension-request", headers=employee_headers,
                             json={"reason": "Again", "newDueDate": "2024-01-16T00:00:00Z"})
        assert second.status_code == 409

        resolved = client.patch(f"/api/tasks/{task_id}/extension-request", headers=admin_headers,
                                json={"status": "approved"})
        assert resolved.status_code == 200
        assert resolved.json()["message"] == "Extension request approved successfully"
        assert resolved.json()["task"]["dueDate"] == "2024-01-15T00:00:00+00:00"

        view = client.get(f"/api/tasks/{task_id}/extension-request", headers=employee_headers).json()
        assert view["extensionRequest"]["status"] == "approved"

    def test_resolve_without_request_is_400(self, client, admin_headers, task_id):
        response = client.patch(f"/api/tasks/{task_id}/extension-request", headers=admin_headers,
                                json={"status": "approved"})
        assert response.status_code == 400

    def test_admin_cannot_request(self, client, admin_headers, task_id):
        response = client.post(f"/api/tasks/{task_id}/extension-request", headers=admin_headers,
                               json={"reason": "x", "newDueDate": "2024-01-15T00:00:00Z"})
        assert response.status_code == 403


class TestNotifications:
    def test_comment_fan_out_and_read_state(self, client, admin_headers, employee_headers, task_id):
        # Assignment notification from task creation
        assert client.get("/api/notifications/unread/count", headers=employee_headers).json() == {"count": 1}

        response = client.post(f"/api/tasks/{task_id}/comments", headers=employee_headers,
                               json={"text": "On it"})
        assert response.status_code == 200
        assert response.json()["comments"][0]["postedBy"]["name"] == "Erin"

        admin_notes = client.get("/api/notifications", headers=admin_headers).json()
        assert [n["type"] for n in admin_notes] == ["comment"]
        assert admin_notes[0]["message"] == 'New comment on task "Draft homepage" by Erin'

        denied = client.patch(f"/api/notifications/{admin_notes[0]['id']}/read", headers=employee_headers)
        assert denied.status_code == 403

        marked = client.patch(f"/api/notifications/{admin_notes[0]['id']}/read", headers=admin_headers)
        assert marked.json()["isRead"] is True

        read_all = client.patch("/api/notifications/read-all", headers=employee_headers)
        assert read_all.json() == {"message": "All notifications marked as read", "modifiedCount": 1}
        assert client.patch("/api/notifications/read-all", headers=employee_headers).status_code == 404


class TestProjects:
    def test_create_get_delete(self, client, admin_headers, employee_headers, admin, employee):
        response = client.post("/api/projects", headers=admin_headers, json={
            "name": "Launch",
            "description": "Product launch",
            "client": {"name": "Initech", "email": "it@initech.test"},
            "startDate": "2024-01-01T00:00:00Z",
            "endDate": "2024-02-01T00:00:00Z",
            "budget": 5000,
            "projectManager": admin.id,
            "team": [employee.id],
        })
        assert response.status_code == 201, response.text
        project_id = response.json()["id"]
        assert response.json()["team"][0]["id"] == employee.id

        detail = client.get(f"/api/projects/{project_id}", headers=employee_headers).json()
        assert detail["statistics"] == {
            "totalTasks": 0, "completedTasks": 0, "overdueTasks": 0, "completionRate": 0,
        }

        deleted = client.delete(f"/api/projects/{project_id}", headers=admin_headers).json()
        assert deleted["deletedProjectId"] == project_id
        assert deleted["deletedTasks"] == 0

    def test_update_rejects_unknown_keys(self, client, admin_headers, project):
        response = client.put(f"/api/projects/{project.id}", headers=admin_headers, json={"owner": 3})
        assert response.status_code == 400

    def test_outsider_gets_403(self, client, employee_headers, project):
        assert client.get(f"/api/projects/{project.id}", headers=employee_headers).status_code == 403

    def test_milestone_and_document(self, client, admin_headers, project):
        created = client.post(f"/api/projects/{project.id}/milestones", headers=admin_headers, json={
            "title": "Beta", "description": "Feature complete", "dueDate": "2024-02-01T00:00:00Z",
        }).json()
        milestone_id = created["milestones"][0]["id"]
        updated = client.put(f"/api/projects/{project.id}/milestones/{milestone_id}",
                             headers=admin_headers, json={"completed": True}).json()
        assert updated["milestones"][0]["completed"] is True

        doc = client.post(f"/api/projects/{project.id}/documents", headers=admin_headers,
                          json={"name": "Brief", "url": "https://files/brief.pdf"}).json()
        assert doc["documents"][0]["name"] == "Brief"
