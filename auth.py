from dataclasses import dataclass
from typing import Optional

from fastapi import Depends, HTTPException, Request
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from itsdangerous import BadSignature, SignatureExpired, URLSafeTimedSerializer

from config import Settings


bearer_scheme = HTTPBearer(auto_error=False)


@dataclass(frozen=True)
class AuthUser:
    id: int
    email: str


def _serializer(settings: Settings) -> URLSafeTimedSerializer:
    return URLSafeTimedSerializer(settings.token_secret, salt="auth-token")


def issue_token(settings: Settings, user_id: int, email: str) -> str:
    return _serializer(settings).dumps({"id": user_id, "email": email})


def verify_token(settings: Settings, token: str) -> Optional[AuthUser]:
    try:
        data = _serializer(settings).loads(
            token, max_age=settings.token_max_age_hours * 3600
        )
    except (SignatureExpired, BadSignature):
        return None
    if not isinstance(data, dict):
        return None
    user_id = data.get("id")
    email = data.get("email")
    if not isinstance(user_id, int) or not isinstance(email, str):
        return None
    return AuthUser(id=user_id, email=email)


def current_user(
    request: Request,
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(bearer_scheme),
) -> AuthUser:
    if credentials is None or credentials.scheme.lower() != "bearer":
        raise HTTPException(status_code=401, detail="Authentication required")
    user = verify_token(request.app.state.settings, credentials.credentials)
    if user is None:
        raise HTTPException(status_code=401, detail="Invalid or expired token")
    return user
