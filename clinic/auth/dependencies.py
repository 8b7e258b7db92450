import jwt
from fastapi import Depends, HTTPException
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from sqlalchemy.orm import Session

from clinic.auth import jwt_handler
from clinic.database import get_db
from clinic.models.user import User
from clinic.services.access import Actor, Role

security = HTTPBearer()


def get_current_user(
    credentials: HTTPAuthorizationCredentials = Depends(security),
    db: Session = Depends(get_db),
) -> User:
    token = credentials.credentials
    try:
        payload = jwt_handler.decode_access_token(token)
    except jwt.PyJWTError as exc:
        raise HTTPException(status_code=401, detail="Invalid token") from exc

    email = payload.get("sub")
    if not email:
        raise HTTPException(status_code=401, detail="Invalid token subject")

    user = db.query(User).filter(User.email == email).first()
    if user is None or user.is_active is False:
        raise HTTPException(status_code=401, detail="User not found")
    return user


def get_current_actor(user: User = Depends(get_current_user)) -> Actor:
    try:
        role = Role(user.role)
    except ValueError as exc:
        raise HTTPException(status_code=403, detail="Forbidden") from exc
    return Actor(actor_id=user.id, role=role)


def require_role(*roles: Role):
    def dependency(actor: Actor = Depends(get_current_actor)) -> Actor:
        if actor.role not in roles:
            raise HTTPException(status_code=403, detail="Forbidden")
        return actor

    return dependency
