from fastapi import APIRouter, Depends, HTTPException, Request, status
from sqlalchemy.ext.asyncio import AsyncSession
from shopfront.auth.constants import ACCESS_TOKEN_TTL_SECONDS, logger
from shopfront.auth.dependencies import Requester, require_authenticated, signup_validation
from shopfront.auth.models import SignIn, SignupIn
from shopfront.auth.repository import role_names_for, user_by_id
from shopfront.auth.services import authenticate, create_user
from shopfront.common.utils import iso, success_response
from shopfront.db.dependencies import get_session

auth_router = APIRouter()


@auth_router.post("/signup", status_code=status.HTTP_201_CREATED)
async def signup_user(payload: SignupIn = Depends(signup_validation), session: AsyncSession = Depends(get_session)):

    logger.info("signup.attempt", extra={"email": payload.email})

    user = await create_user(session, payload)
    await session.commit()

    logger.info("signup.success", extra={"email": payload.email})
    return success_response({"message": "User created successfully.", "user_id": str(user.public_id)}, 201)


@auth_router.post("/login")
async def login_user(request: Request, payload: SignIn, session: AsyncSession = Depends(get_session)):

    logger.info("login.attempt")

    access = await authenticate(session, request, payload)

    logger.info("login.success")
    return success_response({"access_token": access, "token_type": "bearer", "expires_in": ACCESS_TOKEN_TTL_SECONDS})


@auth_router.get("/me")
async def current_user(requester: Requester = Depends(require_authenticated), session: AsyncSession = Depends(get_session)):

    user = await user_by_id(session, requester.user_id)
    if not user:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="User not found")

    roles = await role_names_for(session, user.id)
    return success_response({
        "user": {
            "id": str(user.public_id),
            "username": user.username,
            "email": user.email,
            "first_name": user.first_name,
            "last_name": user.last_name,
            "roles": roles,
            "created_at": iso(user.created_at),
        }
    })
