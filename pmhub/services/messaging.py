from datetime import datetime
from typing import Dict, List, Optional, Tuple

import structlog
from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from ..models.models import Conversation, Message, Participant, User
from .serializers import iso, user_summary


log = structlog.get_logger()


def direct_key(user_a: int, user_b: int) -> str:
    low, high = sorted((int(user_a), int(user_b)))
    return f"{low}:{high}"


def serialize_message(m: Message) -> Dict:
    return {
        "id": m.id,
        "conversationId": m.conversation_id,
        "senderId": m.sender_id,
        "receiverId": m.receiver_id,
        "content": None if m.is_deleted else m.content,
        "type": m.type,
        "isRead": bool(m.is_read),
        "isEdited": bool(m.is_edited),
        "isDeleted": bool(m.is_deleted),
        "createdAt": iso(m.created_at),
        "updatedAt": iso(m.updated_at),
        "sender": user_summary(m.sender),
        "receiver": user_summary(m.receiver),
    }


def participant_ids(db: Session, conversation_id: int) -> List[int]:
    rows = db.query(Participant.user_id).filter(Participant.conversation_id == conversation_id).all()
    return [r[0] for r in rows]


def is_participant(db: Session, conversation_id: int, user_id: int) -> bool:
    return (
        db.query(Participant.id)
        .filter(Participant.conversation_id == conversation_id, Participant.user_id == user_id)
        .first()
        is not None
    )


def conversation_messages(db: Session, conversation_id: int) -> List[Message]:
    return (
        db.query(Message)
        .filter(Message.conversation_id == conversation_id)
        .order_by(Message.created_at.asc(), Message.id.asc())
        .all()
    )


def unread_count(db: Session, user_id: int, conversation_id: Optional[int] = None) -> int:
    q = db.query(func.count(Message.id)).filter(Message.receiver_id == user_id, Message.is_read == False)  # noqa: E712
    if conversation_id is not None:
        q = q.filter(Message.conversation_id == conversation_id)
    return int(q.scalar() or 0)


def serialize_conversation(db: Session, conv: Conversation, me_id: int, include_messages: bool = False) -> Dict:
    users = (
        db.query(User)
        .join(Participant, Participant.user_id == User.id)
        .filter(Participant.conversation_id == conv.id)
        .order_by(Participant.joined_at.asc(), Participant.id.asc())
        .all()
    )
    out = {
        "id": conv.id,
        "type": conv.type,
        "name": conv.name,
        "createdBy": conv.created_by,
        "createdAt": iso(conv.created_at),
        "updatedAt": iso(conv.updated_at),
        "participants": [user_summary(u) for u in users],
        "unreadCount": unread_count(db, me_id, conv.id),
    }
    if include_messages:
        out["messages"] = [serialize_message(m) for m in conversation_messages(db, conv.id)]
    else:
        last = (
            db.query(Message)
            .filter(Message.conversation_id == conv.id)
            .order_by(Message.created_at.desc(), Message.id.desc())
            .first()
        )
        out["lastMessage"] = serialize_message(last) if last else None
    return out


def find_direct_conversation(db: Session, user_a: int, user_b: int) -> Optional[Conversation]:
    """Direct conversation whose participant set is exactly {user_a, user_b}."""
    pair_conv_ids = (
        select(Participant.conversation_id)
        .join(Conversation, Conversation.id == Participant.conversation_id)
        .where(Conversation.type == "direct", Participant.user_id.in_([user_a, user_b]))
        .group_by(Participant.conversation_id)
        .having(func.count(func.distinct(Participant.user_id)) == 2)
    )
    member_counts = (
        select(Participant.conversation_id)
        .where(Participant.conversation_id.in_(pair_conv_ids))
        .group_by(Participant.conversation_id)
        .having(func.count(Participant.id) == 2)
    )
    conv = (
        db.query(Conversation)
        .filter(Conversation.id.in_(member_counts))
        .order_by(Conversation.id.asc())
        .first()
    )
    if conv is not None:
        return conv
    # A participant may have left; the pair key still identifies the conversation
    return db.query(Conversation).filter(Conversation.direct_key == direct_key(user_a, user_b)).first()


def _ensure_participants(db: Session, conv: Conversation, user_ids: List[int]) -> None:
    present = set(participant_ids(db, conv.id))
    missing = [uid for uid in user_ids if uid not in present]
    if missing:
        db.add_all([Participant(conversation_id=conv.id, user_id=uid) for uid in missing])
        db.commit()


def get_or_create_direct(db: Session, me_id: int, other_id: int) -> Tuple[Conversation, bool]:
    """Returns (conversation, created). The unique pair key settles concurrent creators."""
    existing = find_direct_conversation(db, me_id, other_id)
    if existing is not None:
        _ensure_participants(db, existing, [me_id, other_id])
        return existing, False

    conv = Conversation(type="direct", created_by=me_id, direct_key=direct_key(me_id, other_id))
    try:
        db.add(conv)
        db.flush()
        db.add_all(
            [
                Participant(conversation_id=conv.id, user_id=me_id),
                Participant(conversation_id=conv.id, user_id=other_id),
            ]
        )
        conv.updated_at = datetime.utcnow()
        db.commit()
    except IntegrityError:
        db.rollback()
        log.info("direct_conversation_race", pair=direct_key(me_id, other_id))
        winner = db.query(Conversation).filter(Conversation.direct_key == direct_key(me_id, other_id)).first()
        if winner is None:
            raise
        _ensure_participants(db, winner, [me_id, other_id])
        return winner, False
    db.refresh(conv)
    return conv, True


def create_group(db: Session, name: str, member_ids: List[int], creator_id: int) -> Conversation:
    """Create a group conversation with creator + members in one transaction."""
    conv = Conversation(type="group", name=name, created_by=creator_id)
    db.add(conv)
    db.flush()
    ordered = [creator_id] + [uid for uid in member_ids if uid != creator_id]
    db.add_all([Participant(conversation_id=conv.id, user_id=uid) for uid in ordered])
    conv.updated_at = datetime.utcnow()
    db.commit()
    db.refresh(conv)
    return conv


def resolve_receiver(db: Session, conv: Conversation, sender_id: int) -> Optional[int]:
    """The other participant of a direct conversation; None for groups."""
    if conv.type != "direct":
        return None
    row = (
        db.query(Participant.user_id)
        .filter(Participant.conversation_id == conv.id, Participant.user_id != sender_id)
        .first()
    )
    return row[0] if row else None


def mark_read(db: Session, conversation_id: int, user_id: int) -> List[int]:
    """Flag unread messages addressed to user_id as read; caller commits. Returns the ids flagged."""
    ids = [
        r[0]
        for r in db.query(Message.id)
        .filter(
            Message.conversation_id == conversation_id,
            Message.receiver_id == user_id,
            Message.is_read == False,  # noqa: E712
        )
        .all()
    ]
    if ids:
        db.query(Message).filter(Message.id.in_(ids)).update({Message.is_read: True}, synchronize_session=False)
    return ids
