from fastapi import APIRouter, Depends, Response
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session
import structlog

from ..auth import (
    REFRESH,
    AccessGuard,
    SessionIssuer,
    TokenPair,
    get_access_guard,
    get_current_user,
    get_password_hash,
    get_session_issuer,
    verify_password,
)
from ..crud import create_user, get_user_by_email
from ..database import get_db
from ..errors import InternalError, InvalidCredentials, UserNotFound, ValidationError
from ..models import User
from ..schemas import Envelope, LoginOut, LoginRequest, RefreshRequest, TokenOut, UserCreate, UserOut

router = APIRouter(tags=["users"])

logger = structlog.get_logger(__name__)


def _set_token_headers(response: Response, tokens: TokenPair) -> None:
    response.headers["access_token"] = tokens.access_token
    response.headers["refresh_token"] = tokens.refresh_token


@router.post("/users", response_model=Envelope[UserOut])
def register(body: UserCreate, db: Session = Depends(get_db)):
    if get_user_by_email(db, email=body.email) is not None:
        raise ValidationError("This email is already registered")

    try:
        new_user = create_user(db, email=body.email, hashed_password=get_password_hash(body.password))
    except IntegrityError as e:
        db.rollback()
        raise ValidationError("This email is already registered") from e
    except SQLAlchemyError as e:
        db.rollback()
        raise InternalError("User not created", detail=str(e)) from e

    logger.info("User registered", user_id=new_user.id)
    return Envelope[UserOut](message="User created", status=200, data=UserOut.model_validate(new_user))


@router.post("/login", response_model=Envelope[LoginOut])
def login(
    body: LoginRequest,
    response: Response,
    db: Session = Depends(get_db),
    issuer: SessionIssuer = Depends(get_session_issuer),
):
    if not body.email.strip() or not body.password:
        raise ValidationError("Email and Password must not be empty")

    user = get_user_by_email(db, email=body.email)
    if user is None:
        raise UserNotFound()

    if not verify_password(body.password, user.hashed_password):
        logger.info("Login failed", user_id=user.id)
        raise InvalidCredentials()

    tokens = issuer.issue(user.email)
    _set_token_headers(response, tokens)

    logger.info("Login succeeded", user_id=user.id)
    return Envelope[LoginOut](
        message="Login successful",
        status=200,
        data=LoginOut(
            user=UserOut.model_validate(user),
            access_token=tokens.access_token,
            refresh_token=tokens.refresh_token,
        ),
    )


@router.post("/token/refresh", response_model=Envelope[TokenOut])
def refresh(
    body: RefreshRequest,
    response: Response,
    db: Session = Depends(get_db),
    issuer: SessionIssuer = Depends(get_session_issuer),
    guard: AccessGuard = Depends(get_access_guard),
):
    user = guard.authenticate(db, body.refresh_token, expected_type=REFRESH)
    tokens = issuer.issue(user.email)
    _set_token_headers(response, tokens)
    return Envelope[TokenOut](
        message="Token refreshed",
        status=200,
        data=TokenOut(access_token=tokens.access_token, refresh_token=tokens.refresh_token),
    )


@router.get("/users/me", response_model=Envelope[UserOut])
def read_users_me(current_user: User = Depends(get_current_user)):
    return Envelope[UserOut](message="Success", status=200, data=UserOut.model_validate(current_user))
