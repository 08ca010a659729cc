"""Unit tests for projecthub.services.projects — projects, team, milestones, documents, statistics."""

from datetime import datetime, timezone

import pytest

from projecthub.db.models import Project, Task
from projecthub.engine.errors import (
    ProjectHubNotFoundError,
    ProjectHubSecurityError,
    ProjectHubValidationError,
)
from projecthub.services.projects import ProjectService

UTC = timezone.utc
CLIENT = {"name": "Globex", "email": "pm@globex.test", "phone": "555-0100"}


@pytest.fixture
def service(db_session, clock):
    return ProjectService(db_session, clock=clock)


def _create(service, ctx, manager_id, **overrides):
    params = dict(
        name="Brand Refresh",
        description="Logo and guidelines",
        client=dict(CLIENT),
        start_date=datetime(2024, 2, 1, tzinfo=UTC),
        end_date=datetime(2024, 4, 1, tzinfo=UTC),
        budget=8000,
        project_manager_id=manager_id,
    )
    params.update(overrides)
    return service.create(ctx, **params)


class TestCreate:
    def test_admin_creates_with_team(self, service, ctx_for, admin, employee, make_user):
        manager = make_user("Manny", role="project_manager", department="Project Management")
        project = _create(service, ctx_for(admin), manager.id, team=[employee.id, employee.id])

        assert project.id is not None
        assert project.client == CLIENT
        assert project.status == "planning"
        assert project.budget == 8000.0
        assert [u.id for u in project.team] == [employee.id]
        assert project.is_member(manager.id)
        assert project.is_member(employee.id)

    def test_non_admin_denied(self, service, ctx_for, employee):
        with pytest.raises(ProjectHubSecurityError):
            _create(service, ctx_for(employee), employee.id)

    def test_validation(self, service, ctx_for, admin):
        with pytest.raises(ProjectHubValidationError) as exc:
            _create(
                service, ctx_for(admin), admin.id,
                name="",
                client={"name": "Globex", "email": "not-an-email"},
                end_date=datetime(2024, 1, 1, tzinfo=UTC),
                status="archived",
            )
        fields = {e["field"] for e in exc.value.validation_errors}
        assert fields == {"name", "client.email", "end_date", "status"}

    def test_missing_manager(self, service, ctx_for, admin):
        with pytest.raises(ProjectHubNotFoundError):
            _create(service, ctx_for(admin), 999)

    def test_missing_team_member(self, service, ctx_for, admin):
        with pytest.raises(ProjectHubNotFoundError):
            _create(service, ctx_for(admin), admin.id, team=[999])


class TestVisibility:
    def test_admin_sees_all(self, service, ctx_for, admin, project):
        assert [p.id for p in service.list_for(ctx_for(admin))] == [project.id]

    def test_members_see_their_projects(self, service, ctx_for, admin, employee, make_user, project):
        outsider = make_user("Outsider")
        service.add_team_member(ctx_for(admin), project.id, employee.id)
        assert [p.id for p in service.list_for(ctx_for(employee))] == [project.id]
        assert service.list_for(ctx_for(outsider)) == []

    def test_manager_sees_project(self, service, ctx_for, admin, make_user):
        manager = make_user("Manny", role="project_manager", department="Project Management")
        project = _create(service, ctx_for(admin), manager.id)
        assert [p.id for p in service.list_for(ctx_for(manager))] == [project.id]
        assert service.get(ctx_for(manager), project.id) is project

    def test_outsider_cannot_get(self, service, ctx_for, make_user, project):
        with pytest.raises(ProjectHubSecurityError):
            service.get(ctx_for(make_user("Outsider")), project.id)

    def test_get_missing(self, service, ctx_for, admin):
        with pytest.raises(ProjectHubNotFoundError):
            service.get(ctx_for(admin), 404)


class TestStatistics:
    def test_counts_and_rate(self, service, make_task, project):
        make_task(title="a", status="completed")
        make_task(title="b", status="completed")
        make_task(title="c", status="overdue")
        make_task(title="d")
        assert service.statistics(project) == {
            "totalTasks": 4,
            "completedTasks": 2,
            "overdueTasks": 1,
            "completionRate": 50.0,
        }

    def test_empty_project(self, service, project):
        assert service.statistics(project)["completionRate"] == 0


class TestUpdate:
    def test_member_updates_and_client_merges(self, service, ctx_for, admin, employee, project):
        service.add_team_member(ctx_for(admin), project.id, employee.id)
        updated = service.update(ctx_for(employee), project.id, {
            "status": "in-progress",
            "client": {"phone": "555-0199"},
        })
        assert updated.status == "in-progress"
        assert updated.client == {"name": "Acme", "email": "ops@acme.test", "phone": "555-0199"}

    def test_rejects_unknown_fields(self, service, ctx_for, admin, project):
        with pytest.raises(ProjectHubValidationError, match="Invalid updates"):
            service.update(ctx_for(admin), project.id, {"project_manager_id": admin.id})

    def test_rejects_bad_status(self, service, ctx_for, admin, project):
        with pytest.raises(ProjectHubValidationError):
            service.update(ctx_for(admin), project.id, {"status": "done"})

    def test_outsider_denied(self, service, ctx_for, make_user, project):
        with pytest.raises(ProjectHubSecurityError):
            service.update(ctx_for(make_user("Outsider")), project.id, {"name": "Mine"})


class TestDelete:
    def test_cascades_to_tasks(self, service, db_session, ctx_for, admin, make_task, project):
        task_ids = [make_task(title=t).id for t in ("a", "b")]
        removed = service.delete(ctx_for(admin), project.id)
        assert removed == 2
        assert db_session.get(Project, project.id) is None
        assert all(db_session.get(Task, tid) is None for tid in task_ids)

    def test_non_admin_denied(self, service, ctx_for, employee, project):
        with pytest.raises(ProjectHubSecurityError):
            service.delete(ctx_for(employee), project.id)


class TestTeam:
    def test_add_is_idempotent(self, service, ctx_for, admin, employee, project):
        service.add_team_member(ctx_for(admin), project.id, employee.id)
        service.add_team_member(ctx_for(admin), project.id, employee.id)
        assert [u.id for u in project.team] == [employee.id]

    def test_remove(self, service, ctx_for, admin, employee, project):
        service.add_team_member(ctx_for(admin), project.id, employee.id)
        service.remove_team_member(ctx_for(admin), project.id, employee.id)
        assert project.team == []

    def test_add_unknown_user(self, service, ctx_for, admin, project):
        with pytest.raises(ProjectHubNotFoundError):
            service.add_team_member(ctx_for(admin), project.id, 999)

    def test_non_admin_denied(self, service, ctx_for, employee, project):
        with pytest.raises(ProjectHubSecurityError):
            service.add_team_member(ctx_for(employee), project.id, employee.id)


class TestMilestonesAndDocuments:
    def test_add_and_complete_milestone(self, service, ctx_for, admin, project, clock):
        service.add_milestone(ctx_for(admin), project.id, "Concepts", "Three directions",
                              datetime(2024, 2, 15, tzinfo=UTC))
        milestone = project.milestones[0]
        assert milestone.completed is False

        service.set_milestone_completed(ctx_for(admin), project.id, milestone.id, True)
        assert milestone.completed is True
        assert milestone.completed_at == clock.now

    def test_milestone_validation(self, service, ctx_for, admin, project):
        with pytest.raises(ProjectHubValidationError):
            service.add_milestone(ctx_for(admin), project.id, "", "desc", None)

    def test_missing_milestone(self, service, ctx_for, admin, project):
        with pytest.raises(ProjectHubNotFoundError):
            service.set_milestone_completed(ctx_for(admin), project.id, 999, True)

    def test_member_adds_document(self, service, ctx_for, admin, employee, project):
        service.add_team_member(ctx_for(admin), project.id, employee.id)
        service.add_document(ctx_for(employee), project.id, "Brief", "https://files/brief.pdf", "pdf")
        [doc] = project.documents
        assert doc.to_dict()["uploadedBy"] == employee.id

    def test_outsider_cannot_add_document(self, service, ctx_for, make_user, project):
        with pytest.raises(ProjectHubSecurityError):
            service.add_document(ctx_for(make_user("Outsider")), project.id, "x", "https://x")
