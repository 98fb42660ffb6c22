from typing import Optional

import structlog
from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy import or_
from sqlalchemy.orm import Session

from ..auth.security import get_current_user, require_roles
from ..db import get_db
from ..models.models import Client, User
from ..schemas.projects import ClientCreate, ClientUpdate
from ..services import notifications
from ..services.pagination import PageParams, page_response
from ..services.projects import serialize_client


router = APIRouter(prefix="/api/clients", tags=["clients"])
log = structlog.get_logger()


def _get_client(db: Session, client_id: int) -> Client:
    client = db.query(Client).filter(Client.id == client_id).first()
    if not client:
        raise HTTPException(status_code=404, detail="Client not found")
    return client


def _email_taken(db: Session, email: str, exclude_id: Optional[int] = None) -> bool:
    q = db.query(Client.id).filter(Client.email == email)
    if exclude_id is not None:
        q = q.filter(Client.id != exclude_id)
    return q.first() is not None


@router.post("", status_code=201)
def create_client(payload: ClientCreate, db: Session = Depends(get_db), _: User = Depends(require_roles("manager"))):
    email = payload.email.lower()
    if _email_taken(db, email):
        raise HTTPException(status_code=409, detail="A client with this email already exists")
    client = Client(
        first_name=payload.first_name.strip(),
        last_name=payload.last_name,
        email=email,
        phone_number=payload.phone_number,
        image=payload.image,
    )
    db.add(client)
    db.commit()
    db.refresh(client)
    log.info("client_created", client_id=client.id)

    notifications.send_safely(
        client.email,
        "Welcome",
        notifications.paragraph(
            f"Hello {client.first_name},",
            "You have been registered as a client. We will keep you updated on your projects.",
        ),
    )
    return {"message": "Client created successfully", "client": serialize_client(client)}


@router.get("")
def list_clients(
    search: Optional[str] = None,
    page: PageParams = Depends(),
    db: Session = Depends(get_db),
    _: User = Depends(get_current_user),
):
    q = db.query(Client)
    if search:
        like = f"%{search}%"
        q = q.filter(or_(Client.first_name.ilike(like), Client.last_name.ilike(like), Client.email.ilike(like)))
    q = q.order_by(Client.first_name.asc(), Client.id.asc())
    return page_response("clients", q, page, serialize_client)


@router.get("/{client_id}")
def get_client(client_id: int, db: Session = Depends(get_db), _: User = Depends(get_current_user)):
    client = _get_client(db, client_id)
    out = serialize_client(client)
    out["projects"] = [{"id": cp.project.id, "name": cp.project.name, "status": cp.project.status} for cp in client.projects]
    return out


@router.put("/{client_id}")
def update_client(
    client_id: int,
    payload: ClientUpdate,
    db: Session = Depends(get_db),
    _: User = Depends(require_roles("manager")),
):
    client = _get_client(db, client_id)
    data = payload.model_dump(exclude_unset=True)
    if data.get("email"):
        email = data["email"].lower()
        if _email_taken(db, email, exclude_id=client.id):
            raise HTTPException(status_code=409, detail="A client with this email already exists")
        client.email = email
    if data.get("first_name"):
        client.first_name = data["first_name"].strip()
    for field in ("last_name", "phone_number", "image"):
        if field in data:
            setattr(client, field, data[field])
    db.commit()
    db.refresh(client)
    return {"message": "Client updated successfully", "client": serialize_client(client)}


@router.delete("/{client_id}")
def delete_client(client_id: int, db: Session = Depends(get_db), _: User = Depends(require_roles("manager"))):
    client = _get_client(db, client_id)
    db.delete(client)
    db.commit()
    return {"message": "Client deleted successfully"}
