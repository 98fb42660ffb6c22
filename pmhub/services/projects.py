from typing import Any, Dict

from ..models.models import Client, Project, Task
from .serializers import iso, user_summary


PROJECT_STATUSES = ("Pending", "In Progress", "Review", "Done")
TASK_STATUSES = ("To Do", "In Progress", "Review", "Done")


def serialize_client(c: Client) -> Dict[str, Any]:
    return {
        "id": c.id,
        "firstName": c.first_name,
        "lastName": c.last_name,
        "email": c.email,
        "phoneNumber": c.phone_number,
        "image": c.image,
        "createdAt": iso(c.created_at),
    }


def serialize_task(t: Task) -> Dict[str, Any]:
    return {
        "id": t.id,
        "title": t.title,
        "description": t.description,
        "status": t.status,
        "dueDate": iso(t.due_date),
        "projectId": t.project_id,
        "project": {"id": t.project.id, "name": t.project.name} if t.project else None,
        "assignedTo": t.assigned_to,
        "assignee": user_summary(t.assignee),
        "createdBy": t.created_by,
        "createdAt": iso(t.created_at),
        "updatedAt": iso(t.updated_at),
    }


def serialize_project(p: Project, detail: bool = False) -> Dict[str, Any]:
    out = {
        "id": p.id,
        "name": p.name,
        "description": p.description,
        "startDate": iso(p.start_date),
        "endDate": iso(p.end_date),
        "status": p.status,
        "createdBy": p.created_by,
        "createdAt": iso(p.created_at),
        "updatedAt": iso(p.updated_at),
        "teams": [{"id": tp.team.id, "name": tp.team.name, "note": tp.note} for tp in p.teams],
    }
    if detail:
        out["clients"] = [serialize_client(cp.client) for cp in p.clients]
        out["tasks"] = [serialize_task(t) for t in sorted(p.tasks, key=lambda t: t.id)]
    return out
