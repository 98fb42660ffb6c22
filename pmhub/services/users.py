from typing import Any, Dict

from ..models.models import User
from .serializers import iso, user_summary


def serialize_user(u: User) -> Dict[str, Any]:
    out = user_summary(u)
    out.update(
        {
            "phoneNumber": u.phone_number,
            "image": u.image,
            "isActive": bool(u.is_active),
            "roles": sorted(r.name for r in u.roles),
            "createdAt": iso(u.created_at),
            "lastLoginAt": iso(u.last_login_at),
            "emailVerified": bool(u.email_verified),
        }
    )
    return out
