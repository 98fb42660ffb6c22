from datetime import datetime
from typing import List, Optional

import structlog
from fastapi import APIRouter, Depends, File, Form, HTTPException, Response, UploadFile, WebSocket, WebSocketDisconnect
from sqlalchemy.orm import Session

from ..auth.security import get_current_user, user_from_token
from ..db import get_db
from ..models.models import Conversation, Message, Participant, User
from ..schemas.messages import GroupCreate, MemberAdd, MessageEdit
from ..services import messaging
from ..services.chat_hub import hub
from ..services.uploads import discard_uploads, first_upload, store_uploads
from ..storage.provider import StorageProvider
from .files import get_storage


router = APIRouter(prefix="/api/messages", tags=["messages"])
log = structlog.get_logger()


def _get_conversation(db: Session, conversation_id: int) -> Conversation:
    conv = db.query(Conversation).filter(Conversation.id == conversation_id).first()
    if not conv:
        raise HTTPException(status_code=404, detail="Conversation not found")
    return conv


def _require_participant(db: Session, conv: Conversation, user: User) -> None:
    if not messaging.is_participant(db, conv.id, user.id):
        raise HTTPException(status_code=403, detail="Not part of this conversation")


def _get_group(db: Session, conversation_id: int, me: User) -> Conversation:
    conv = _get_conversation(db, conversation_id)
    if conv.type != "group":
        raise HTTPException(status_code=400, detail="Not a group")
    _require_participant(db, conv, me)
    return conv


def _broadcast_conversation(db: Session, conv: Conversation, event: str, extra_user_ids=()) -> None:
    member_ids = set(messaging.participant_ids(db, conv.id)) | set(extra_user_ids)
    for uid in member_ids:
        hub.publish({uid}, event, {"conversation": messaging.serialize_conversation(db, conv, uid)})


@router.get("/conversations")
def list_conversations(db: Session = Depends(get_db), me: User = Depends(get_current_user)):
    convs = (
        db.query(Conversation)
        .join(Participant, Participant.conversation_id == Conversation.id)
        .filter(Participant.user_id == me.id)
        .order_by(Conversation.updated_at.desc(), Conversation.id.desc())
        .all()
    )
    return [messaging.serialize_conversation(db, c, me.id) for c in convs]


@router.get("/unread-count")
def get_unread_count(db: Session = Depends(get_db), me: User = Depends(get_current_user)):
    return {"total": messaging.unread_count(db, me.id)}


@router.post("/direct/{recipient_id}")
def create_or_get_conversation(
    recipient_id: int,
    response: Response,
    db: Session = Depends(get_db),
    me: User = Depends(get_current_user),
):
    if recipient_id == me.id:
        raise HTTPException(status_code=400, detail="Cannot chat with yourself")
    recipient = db.query(User).filter(User.id == recipient_id).first()
    if not recipient or not recipient.is_active:
        raise HTTPException(status_code=404, detail="Recipient not found")

    conv, created = messaging.get_or_create_direct(db, me.id, recipient_id)
    out = messaging.serialize_conversation(db, conv, me.id, include_messages=True)
    if created:
        response.status_code = 201
        hub.publish({recipient_id}, "conversationCreated", {"conversation": messaging.serialize_conversation(db, conv, recipient_id)})
    return out


@router.post("/group", status_code=201)
def create_group(payload: GroupCreate, db: Session = Depends(get_db), me: User = Depends(get_current_user)):
    name = (payload.name or "").strip()
    others = []
    for uid in payload.user_ids:
        if uid != me.id and uid not in others:
            others.append(uid)
    if not name or len(payload.user_ids) < 2:
        raise HTTPException(status_code=400, detail="Name and at least 2 participants required")
    if len(others) + 1 < 3:
        raise HTTPException(status_code=400, detail="Group must have at least 3 members (including you)")
    found = {u.id for u in db.query(User).filter(User.id.in_(others)).all()}
    missing = [uid for uid in others if uid not in found]
    if missing:
        raise HTTPException(status_code=404, detail=f"Users not found: {missing}")

    try:
        conv = messaging.create_group(db, name, others, me.id)
    except Exception as e:
        db.rollback()
        log.error("group_create_failed", error=str(e))
        raise HTTPException(status_code=500, detail={"message": "Failed to create group", "details": str(e)})

    _broadcast_conversation(db, conv, "conversationCreated")
    return messaging.serialize_conversation(db, conv, me.id, include_messages=True)


@router.post("/{conversation_id}/message", status_code=201)
def send_message(
    conversation_id: int,
    content: Optional[str] = Form(None),
    files: Optional[List[UploadFile]] = File(None),
    db: Session = Depends(get_db),
    storage: StorageProvider = Depends(get_storage),
    me: User = Depends(get_current_user),
):
    conv = _get_conversation(db, conversation_id)
    _require_participant(db, conv, me)
    text = (content or "").strip()
    upload = first_upload(files)
    has_file = upload is not None
    if not text and not has_file:
        raise HTTPException(status_code=400, detail="Message content or file is required")

    stored = store_uploads(storage, [upload]) if has_file else []
    if stored:
        body = stored[0].url
        kind = "image" if stored[0].mimetype.startswith("image/") else "file"
    else:
        body, kind = text, "text"

    try:
        msg = Message(
            conversation_id=conv.id,
            sender_id=me.id,
            receiver_id=messaging.resolve_receiver(db, conv, me.id),
            content=body,
            type=kind,
            is_read=False,
        )
        db.add(msg)
        conv.updated_at = datetime.utcnow()
        db.commit()
        db.refresh(msg)
    except Exception as e:
        db.rollback()
        discard_uploads(storage, stored)
        log.error("send_message_failed", conversation_id=conversation_id, error=str(e))
        raise HTTPException(status_code=500, detail={"message": "Failed to send message", "details": str(e)})

    data = messaging.serialize_message(msg)
    hub.publish(messaging.participant_ids(db, conv.id), "newMessage", data)
    return data


@router.get("/{conversation_id}/messages")
def get_messages(conversation_id: int, db: Session = Depends(get_db), me: User = Depends(get_current_user)):
    conv = _get_conversation(db, conversation_id)
    _require_participant(db, conv, me)
    try:
        read_ids = messaging.mark_read(db, conv.id, me.id)
        messages = messaging.conversation_messages(db, conv.id)
        db.commit()
    except Exception as e:
        db.rollback()
        log.error("get_messages_failed", conversation_id=conversation_id, error=str(e))
        raise HTTPException(status_code=500, detail={"message": "Failed to fetch messages", "details": str(e)})

    out = [messaging.serialize_message(m) for m in messages]
    if read_ids:
        hub.publish(messaging.participant_ids(db, conv.id), "messagesRead", {"userId": me.id, "messageIds": read_ids})
    return out


@router.post("/{conversation_id}/leave")
def leave_conversation(conversation_id: int, db: Session = Depends(get_db), me: User = Depends(get_current_user)):
    conv = _get_conversation(db, conversation_id)
    participant = (
        db.query(Participant)
        .filter(Participant.conversation_id == conv.id, Participant.user_id == me.id)
        .first()
    )
    if not participant:
        raise HTTPException(status_code=404, detail="Not in conversation")
    db.delete(participant)
    conv.updated_at = datetime.utcnow()
    db.commit()
    _broadcast_conversation(db, conv, "conversationUpdated")
    return {"message": "Left conversation"}


@router.patch("/message/{message_id}")
def edit_message(message_id: int, payload: MessageEdit, db: Session = Depends(get_db), me: User = Depends(get_current_user)):
    msg = db.query(Message).filter(Message.id == message_id).first()
    if not msg:
        raise HTTPException(status_code=404, detail="Message not found")
    if msg.sender_id != me.id:
        raise HTTPException(status_code=403, detail="Not your message")
    if msg.is_deleted:
        raise HTTPException(status_code=400, detail="Message was deleted")
    msg.content = payload.content
    msg.is_edited = True
    db.commit()
    db.refresh(msg)
    data = messaging.serialize_message(msg)
    hub.publish(messaging.participant_ids(db, msg.conversation_id), "messageUpdated", data)
    return {"message": "Message updated", "data": data}


@router.delete("/message/{message_id}")
def delete_message(message_id: int, db: Session = Depends(get_db), me: User = Depends(get_current_user)):
    msg = db.query(Message).filter(Message.id == message_id).first()
    if not msg:
        raise HTTPException(status_code=404, detail="Message not found")
    if msg.sender_id != me.id:
        raise HTTPException(status_code=403, detail="Not your message")
    msg.is_deleted = True
    db.commit()
    hub.publish(messaging.participant_ids(db, msg.conversation_id), "messageDeleted", {"messageId": msg.id})
    return {"message": "Message deleted"}


# =====================
# Group management
# =====================


@router.post("/group/{conversation_id}/member")
def add_member(conversation_id: int, payload: MemberAdd, db: Session = Depends(get_db), me: User = Depends(get_current_user)):
    conv = _get_group(db, conversation_id, me)
    user = db.query(User).filter(User.id == payload.user_id).first()
    if not user:
        raise HTTPException(status_code=404, detail="User not found")
    if messaging.is_participant(db, conv.id, user.id):
        raise HTTPException(status_code=409, detail="User already in group")
    db.add(Participant(conversation_id=conv.id, user_id=user.id))
    conv.updated_at = datetime.utcnow()
    db.commit()
    _broadcast_conversation(db, conv, "conversationUpdated")
    return {"message": "Member added", "conversation": messaging.serialize_conversation(db, conv, me.id)}


@router.delete("/group/{conversation_id}/member/{member_id}")
def remove_member(conversation_id: int, member_id: int, db: Session = Depends(get_db), me: User = Depends(get_current_user)):
    conv = _get_group(db, conversation_id, me)
    if member_id == me.id:
        raise HTTPException(status_code=400, detail="Use leave to remove yourself")
    participant = (
        db.query(Participant)
        .filter(Participant.conversation_id == conv.id, Participant.user_id == member_id)
        .first()
    )
    if not participant:
        raise HTTPException(status_code=404, detail="User is not a member of this group")
    db.delete(participant)
    conv.updated_at = datetime.utcnow()
    db.commit()
    _broadcast_conversation(db, conv, "conversationUpdated", extra_user_ids={member_id})
    return {"message": "Member removed", "conversation": messaging.serialize_conversation(db, conv, me.id)}


@router.delete("/group/{conversation_id}")
def delete_group(conversation_id: int, db: Session = Depends(get_db), me: User = Depends(get_current_user)):
    conv = _get_group(db, conversation_id, me)
    if conv.created_by != me.id:
        raise HTTPException(status_code=403, detail="Only the group creator can delete this group")
    member_ids = messaging.participant_ids(db, conv.id)
    db.delete(conv)
    db.commit()
    hub.publish(member_ids, "conversationDeleted", {"conversationId": conversation_id})
    return {"message": "Group deleted"}


@router.websocket("/ws")
async def ws_messages(websocket: WebSocket, token: Optional[str] = None, db: Session = Depends(get_db)):
    if not token:
        await websocket.close(code=4401)
        return
    try:
        user = user_from_token(token, db)
    except HTTPException:
        await websocket.close(code=4401)
        return

    user_id = user.id
    await websocket.accept()
    await hub.connect(user_id, websocket)
    try:
        await websocket.send_json({"event": "unreadCount", "data": {"total": messaging.unread_count(db, user_id)}})
        while True:
            data = await websocket.receive_text()
            if data and data.strip().lower() in {"ping", "keepalive"}:
                await websocket.send_text("pong")
    except WebSocketDisconnect:
        pass
    finally:
        await hub.disconnect(user_id, websocket)
