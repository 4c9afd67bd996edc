from dataclasses import dataclass

import jwt
from fastapi import Depends, HTTPException
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from lesson_scheduler.auth import jwt_handler
from lesson_scheduler.core.errors import Unauthorized

security = HTTPBearer()

ROLES = {"student", "teacher", "admin", "service"}


@dataclass(frozen=True)
class CallerIdentity:
    """A verified caller as vouched for by the identity provider's token."""

    subject: str
    role: str

    @property
    def is_admin(self) -> bool:
        return self.role == "admin"

    def require_self(self, user_id: str, *privileged_roles: str) -> None:
        if self.is_admin or self.role in privileged_roles or self.subject == user_id:
            return
        raise Unauthorized("You can only act on your own schedule.")

    def require_role(self, *roles: str) -> None:
        if self.is_admin or self.role in roles:
            return
        raise Unauthorized(f"This action requires one of the roles: {', '.join(sorted(roles))}.")


def get_current_user(
    credentials: HTTPAuthorizationCredentials = Depends(security),
) -> CallerIdentity:
    token = credentials.credentials
    try:
        payload = jwt_handler.decode_access_token(token)
    except jwt.PyJWTError as exc:
        raise HTTPException(status_code=401, detail="Invalid token") from exc

    subject = payload.get("sub")
    if not subject:
        raise HTTPException(status_code=401, detail="Invalid token subject")

    role = payload.get("role")
    if role not in ROLES:
        raise HTTPException(status_code=401, detail="Invalid token role")
    return CallerIdentity(subject=str(subject), role=role)
