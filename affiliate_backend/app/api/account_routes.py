"""
Account endpoints shared by betting-site users and affiliates.

Both account kinds verify e-mail with an OTP, log in with device checks and
recover passwords the same way; only registration differs and stays in
user_auth.py / affiliate_auth.py.
"""
from typing import Callable

from fastapi import APIRouter, Depends, HTTPException, Request, Response

from affiliate_backend.app.api.deps import set_auth_cookie
from affiliate_backend.app.core.exceptions import ServiceError
from affiliate_backend.app.core.limiter import limiter
from affiliate_backend.app.schemas import (
    ChangePasswordRequest,
    EmailRequest,
    LoginOtpRequest,
    LoginRequest,
    LoginResponse,
    MessageResponse,
    OtpRequest,
    ResetPasswordRequest,
)
from affiliate_backend.app.services.accounts import AccountService, LoginResult


def handle_account_error(e: ServiceError):
    """Convert account service exceptions to HTTP exceptions."""
    raise HTTPException(status_code=e.status_code, detail=e.message)


def _login_response(response: Response, result: LoginResult) -> LoginResponse:
    if result.token:
        set_auth_cookie(response, result.token)
    return LoginResponse(
        message=result.message,
        require_otp=result.require_otp,
        token=result.token,
        account=result.account or None,
    )


def build_account_router(
    account_kind: str,
    get_service: Callable[..., AccountService],
    get_current_account_id: Callable[..., int],
) -> APIRouter:
    """
    Router with verify-otp, resend-otp, login, verify-login-otp, password
    recovery, change-password and profile for one account kind.

    `account_kind` ("user" / "affiliate") prefixes the endpoint names: slowapi
    counts requests per endpoint name, and it is the profile response key.
    """
    router = APIRouter()

    def route(path: str, method: str = "POST", limit: str = None, **kwargs):
        def decorator(endpoint):
            endpoint.__name__ = f"{account_kind}_{endpoint.__name__}"
            endpoint.__qualname__ = endpoint.__name__
            if limit:
                endpoint = limiter.limit(limit)(endpoint)
            router.add_api_route(path, endpoint, methods=[method], **kwargs)
            return endpoint
        return decorator

    @route("/verify-otp", limit="10/minute", response_model=MessageResponse)
    async def verify_otp(
        request: Request,
        data: OtpRequest,
        service: AccountService = Depends(get_service),
    ):
        try:
            await service.verify_otp(data.email, data.otp)
        except ServiceError as e:
            handle_account_error(e)
        return MessageResponse(message="Account verified successfully.")

    @route("/resend-otp", limit="3/minute", response_model=MessageResponse)
    async def resend_otp(
        request: Request,
        data: EmailRequest,
        service: AccountService = Depends(get_service),
    ):
        try:
            await service.resend_otp(data.email)
        except ServiceError as e:
            handle_account_error(e)
        return MessageResponse(message="A new OTP has been sent to your email.")

    @route("/login", limit="10/minute", response_model=LoginResponse)
    async def login(
        request: Request,
        response: Response,
        data: LoginRequest,
        service: AccountService = Depends(get_service),
    ):
        """Email or phone + password. Unknown devices get `require_otp: true` and an e-mailed code."""
        try:
            result = await service.login(
                password=data.password,
                device_id=data.device_id,
                email=data.email,
                phone=data.phone,
            )
        except ServiceError as e:
            handle_account_error(e)
        return _login_response(response, result)

    @route("/verify-login-otp", limit="10/minute", response_model=LoginResponse)
    async def verify_login_otp(
        request: Request,
        response: Response,
        data: LoginOtpRequest,
        service: AccountService = Depends(get_service),
    ):
        try:
            result = await service.verify_login_otp(data.email, data.otp, data.device_id)
        except ServiceError as e:
            handle_account_error(e)
        return _login_response(response, result)

    @route("/forgot-password", limit="3/minute", response_model=MessageResponse)
    async def forgot_password(
        request: Request,
        data: EmailRequest,
        service: AccountService = Depends(get_service),
    ):
        try:
            await service.forgot_password(data.email)
        except ServiceError as e:
            handle_account_error(e)
        return MessageResponse(message="Password reset OTP sent to email.")

    @route("/resend-reset-otp", limit="3/minute", response_model=MessageResponse)
    async def resend_reset_otp(
        request: Request,
        data: EmailRequest,
        service: AccountService = Depends(get_service),
    ):
        try:
            await service.resend_reset_otp(data.email)
        except ServiceError as e:
            handle_account_error(e)
        return MessageResponse(message="New OTP sent to your email.")

    @route("/verify-reset-otp", limit="10/minute", response_model=MessageResponse)
    async def verify_reset_otp(
        request: Request,
        data: OtpRequest,
        service: AccountService = Depends(get_service),
    ):
        try:
            await service.verify_reset_otp(data.email, data.otp)
        except ServiceError as e:
            handle_account_error(e)
        return MessageResponse(message="OTP verified successfully.")

    @route("/reset-password", limit="5/minute", response_model=MessageResponse)
    async def reset_password(
        request: Request,
        data: ResetPasswordRequest,
        service: AccountService = Depends(get_service),
    ):
        try:
            await service.reset_password(data.email, data.otp, data.new_password)
        except ServiceError as e:
            handle_account_error(e)
        return MessageResponse(message="Password reset successful.")

    @route("/change-password", response_model=MessageResponse)
    async def change_password(
        data: ChangePasswordRequest,
        account_id: int = Depends(get_current_account_id),
        service: AccountService = Depends(get_service),
    ):
        try:
            await service.change_password(account_id, data.old_password, data.new_password)
        except ServiceError as e:
            handle_account_error(e)
        return MessageResponse(message="Password changed successfully.")

    @route("/profile", method="GET")
    async def profile(
        account_id: int = Depends(get_current_account_id),
        service: AccountService = Depends(get_service),
    ):
        try:
            return {"success": True, account_kind: await service.profile(account_id)}
        except ServiceError as e:
            handle_account_error(e)

    return router
