"""
Auth router for handling user authentication and session related endpoints.
"""

from fastapi import APIRouter, Depends, Request, status

from typing import Annotated, Optional

from schema.security import LogoutRequest, RefreshTokenRequest
from schema.users import (
    AuthData,
    AuthResponse,
    ChangePasswordRequest,
    LoginRequest,
    MessageResponse,
    RegisterRequest,
    TokensData,
    TokensResponse,
    UpdateProfileRequest,
    UserData,
    UserResponse,
)

from security.gate import AuthContext, get_current_user

from services.sessions import SessionManager, public_user

router = APIRouter(
    prefix="/api/auth",
    tags=["Auth"],
)


def get_session_manager(request: Request) -> SessionManager:
    return request.app.state.session_manager


@router.post("/register", status_code=status.HTTP_201_CREATED, response_model=AuthResponse)
async def register(
    payload: RegisterRequest,
    sessions: Annotated[SessionManager, Depends(get_session_manager)],
):
    """Creates a new account and signs it in.

    ## Possible Errors
    - 400 Bad Request: The payload failed validation.
    - 409 Conflict: The username or email is already registered.
    - 503 Service Unavailable: The database could not be reached.
    """
    user, tokens = await sessions.register(payload)

    return AuthResponse(
        message="User registered successfully",
        data=AuthData(user=public_user(user), tokens=tokens),
    )


@router.post("/login", response_model=AuthResponse)
async def login(
    payload: LoginRequest,
    sessions: Annotated[SessionManager, Depends(get_session_manager)],
):
    """Login endpoint that returns both access and refresh tokens.
    `identifier` may be the account's email or username.

    ## Possible Errors
    - 401 Unauthorized: Invalid credentials or deactivated account.
    - 423 Locked: Too many failed attempts, try again later.
    """
    user, tokens = await sessions.login(payload.identifier, payload.password)

    return AuthResponse(
        message="Login successful",
        data=AuthData(user=public_user(user), tokens=tokens),
    )


@router.post("/refresh", response_model=TokensResponse)
async def refresh_access_token(
    payload: RefreshTokenRequest,
    sessions: Annotated[SessionManager, Depends(get_session_manager)],
):
    """Exchanges a refresh token for a new token pair. The presented refresh token stops working."""
    tokens = await sessions.refresh(payload.refresh_token)

    return TokensResponse(message="Token refreshed successfully", data=TokensData(tokens=tokens))


@router.post("/logout", response_model=MessageResponse)
async def logout(
    current_user: Annotated[AuthContext, Depends(get_current_user)],
    sessions: Annotated[SessionManager, Depends(get_session_manager)],
    payload: Optional[LogoutRequest] = None,
):
    """Logout endpoint that revokes the given refresh token."""
    await sessions.logout(current_user.user, payload.refresh_token if payload else None)

    return MessageResponse(message="Logout successful")


@router.post("/logout-all", response_model=MessageResponse)
async def logout_all_devices(
    current_user: Annotated[AuthContext, Depends(get_current_user)],
    sessions: Annotated[SessionManager, Depends(get_session_manager)],
):
    """Logout from all devices by revoking all refresh tokens for the user."""
    await sessions.logout_all(current_user.user)

    return MessageResponse(message="Logged out from all devices successfully")


@router.get("/profile", response_model=UserResponse)
async def get_profile(current_user: Annotated[AuthContext, Depends(get_current_user)]):
    """Get details of an authenticated user."""
    return UserResponse(data=UserData(user=public_user(current_user.user)))


@router.put("/profile", response_model=UserResponse)
async def update_profile(
    payload: UpdateProfileRequest,
    current_user: Annotated[AuthContext, Depends(get_current_user)],
    sessions: Annotated[SessionManager, Depends(get_session_manager)],
):
    """Updates the caller's name and email. Changing the email marks it unverified.

    ## Possible Errors
    - 409 Conflict: The new email belongs to another account.
    """
    user = await sessions.update_profile(current_user.user, payload)

    return UserResponse(message="Profile updated successfully", data=UserData(user=public_user(user)))


@router.put("/password", response_model=MessageResponse)
async def change_password(
    payload: ChangePasswordRequest,
    current_user: Annotated[AuthContext, Depends(get_current_user)],
    sessions: Annotated[SessionManager, Depends(get_session_manager)],
):
    """Changes the caller's password and revokes every refresh token."""
    await sessions.change_password(current_user.user, payload)

    return MessageResponse(message="Password changed successfully")


@router.get("/verify-token", response_model=UserResponse)
async def verify_token(current_user: Annotated[AuthContext, Depends(get_current_user)]):
    """Checks that the presented access token is valid."""
    return UserResponse(message="Token is valid", data=UserData(user=public_user(current_user.user)))
