from typing import List, Set

from sqlalchemy.orm import Session

from ..auth.security import is_manager
from ..models.models import Project, TeamProject, User, UserTeam


def project_member_ids(db: Session, project_id: int) -> Set[int]:
    """Users belonging to any team assigned to the project."""
    rows = (
        db.query(UserTeam.user_id)
        .join(TeamProject, TeamProject.team_id == UserTeam.team_id)
        .filter(TeamProject.project_id == project_id)
        .all()
    )
    return {r[0] for r in rows}


def is_project_member(db: Session, project_id: int, user_id: int) -> bool:
    return (
        db.query(UserTeam.id)
        .join(TeamProject, TeamProject.team_id == UserTeam.team_id)
        .filter(TeamProject.project_id == project_id, UserTeam.user_id == user_id)
        .first()
        is not None
    )


def can_access_project(db: Session, project: Project, user: User) -> bool:
    if is_manager(user):
        return True
    if project.created_by == user.id:
        return True
    return is_project_member(db, project.id, user.id)


def visible_project_ids(db: Session, user: User) -> List[int]:
    rows = (
        db.query(TeamProject.project_id)
        .join(UserTeam, UserTeam.team_id == TeamProject.team_id)
        .filter(UserTeam.user_id == user.id)
        .distinct()
        .all()
    )
    return [r[0] for r in rows]
