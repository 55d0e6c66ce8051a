import logging
from typing import Annotated, Callable, Optional

from config import SECRET_KEY, TOKEN_MAX_AGE
from db import SessionDep
from fastapi import APIRouter, Cookie, Depends, Header, HTTPException
from fastapi.responses import JSONResponse
from itsdangerous import BadSignature, SignatureExpired, URLSafeTimedSerializer
from models import NGO, Admin, Hospital, User
from passlib.context import CryptContext
from responses import api_response
from schemas import LoginData
from sqlmodel import select

logger = logging.getLogger(__name__)

router = APIRouter(tags=["auth"])

serializer = URLSafeTimedSerializer(SECRET_KEY, salt="access-token")

TOKEN_COOKIE = "accessToken"

pwd_context = CryptContext(
    schemes=["pbkdf2_sha256"],
    deprecated="auto",
)

# role claim -> (table, entity type tag used in references)
ROLES = {
    "user": (User, "User"),
    "hospital": (Hospital, "Hospital"),
    "ngo": (NGO, "NGO"),
    "admin": (Admin, "Admin"),
}


def hash_password(password: str) -> str:
    return pwd_context.hash(password)


def verify_password(plain_password: str, hashed_password: str) -> bool:
    return pwd_context.verify(plain_password, hashed_password)


def create_access_token(entity_id: int, role: str) -> str:
    """
    Store the entity id + role in the signed token.
    Example data:
        {"id": 3, "role": "hospital"}
    """
    return serializer.dumps({"id": entity_id, "role": role})


def verify_access_token(token: str, max_age_seconds: int = TOKEN_MAX_AGE) -> dict:
    """
    Returns {'id': ..., 'role': ...} for a valid token.
    Raises 401 if the token is expired or tampered with.
    """
    try:
        return serializer.loads(token, max_age=max_age_seconds)
    except SignatureExpired:
        raise HTTPException(status_code=401, detail="Token expired")
    except BadSignature:
        raise HTTPException(status_code=401, detail="Invalid token")


def extract_token(
    access_token: Optional[str] = Cookie(default=None, alias=TOKEN_COOKIE),
    authorization: Optional[str] = Header(default=None),
) -> str:
    # an explicit header wins over whatever cookie the browser holds
    if authorization and authorization.startswith("Bearer "):
        return authorization[len("Bearer "):]
    if access_token:
        return access_token
    raise HTTPException(status_code=401, detail="Unauthorized: Token not provided")


def get_current_entity(
    session: SessionDep,
    token: Annotated[str, Depends(extract_token)],
) -> dict:
    """
    Verifies the token, looks up the account it names, and returns
    {"entity": <row>, "role": "hospital", "entity_type": "Hospital"}.
    Raises 401 if not logged in / invalid.
    """
    data = verify_access_token(token)
    role = data.get("role")
    if role not in ROLES:
        raise HTTPException(status_code=401, detail=f"Invalid entity type: {role}")

    model, entity_type = ROLES[role]
    entity = session.get(model, data.get("id"))
    if entity is None:
        raise HTTPException(status_code=401, detail=f"{role} not found or token invalid")

    return {"entity": entity, "role": role, "entity_type": entity_type}


CurrentEntityDep = Annotated[dict, Depends(get_current_entity)]


def require_roles(*allowed: str) -> Callable[..., dict]:
    """Dependency that only lets the listed roles through."""

    def checker(current: CurrentEntityDep) -> dict:
        if current["role"] not in allowed:
            raise HTTPException(
                status_code=403,
                detail=f"Access denied. Allowed roles: {', '.join(allowed)}",
            )
        return current

    return checker


def login_response(session: SessionDep, role: str, payload: LoginData, read_schema) -> JSONResponse:
    """Check credentials for one account table and hand back a token cookie."""
    model, _ = ROLES[role]
    entity = session.exec(
        select(model).where(model.email == payload.email.lower())
    ).first()

    if entity is None or not verify_password(payload.password, entity.password_hash):
        logger.info("Failed %s login for %s", role, payload.email)
        raise HTTPException(status_code=401, detail="Invalid email or password")

    token = create_access_token(entity.id, role)
    resp = api_response(
        {
            role: read_schema.model_validate(entity),
            "accessToken": token,
            "role": role,
        },
        "Login successful",
    )
    resp.set_cookie(
        key=TOKEN_COOKIE,
        value=token,
        httponly=True,
        secure=False,
        samesite="lax",
        max_age=TOKEN_MAX_AGE,
    )
    return resp


def email_taken(session: SessionDep, model, email: str) -> bool:
    return session.exec(select(model).where(model.email == email)).first() is not None


@router.post("/logout")
def logout(current: CurrentEntityDep):
    """
    Clear the token cookie.
    """
    response = api_response(None, "Logged out")
    response.delete_cookie(TOKEN_COOKIE)
    return response


@router.get("/me")
def read_me(current: CurrentEntityDep):
    """
    Get the logged-in account and its role.
    """
    entity = current["entity"]
    return api_response(
        {
            "id": entity.id,
            "email": entity.email,
            "role": current["role"],
            "entityType": current["entity_type"],
        }
    )
