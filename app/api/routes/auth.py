"""HTTP route handlers for authentication and OTP operations."""

from fastapi import APIRouter, Depends, Request, Response, status

from app.api import deps
from app.db.models.user import User
from app.schemas.auth import LoginData, Registered, UserCreate, UserLogin, UserResponse, VerifiedData, WelcomeRequest
from app.schemas.common import APIResponse
from app.schemas.otp import OTPIssued, OTPRequest, OTPVerify
from app.services.auth import AuthService, OTPDispatch
from app.services.rate_limit import RequestThrottle

router = APIRouter(prefix="/auth", tags=["authentication"])


def _issued(dispatch: OTPDispatch) -> OTPIssued:
    return OTPIssued(
        email=dispatch.issued.email,
        expires_in=dispatch.issued.expires_in,
        email_sent=dispatch.delivery.success,
        delivery_error=dispatch.delivery.error,
    )


def _sent_message(dispatch: OTPDispatch, ok: str) -> str:
    if dispatch.delivery.success:
        return ok
    return f"{ok} Warning: the email could not be delivered; use resend to try again."


@router.post("/register", response_model=APIResponse[Registered], status_code=status.HTTP_201_CREATED)
async def register_user(
    payload: UserCreate,
    auth_service: AuthService = Depends(deps.get_auth_service),
) -> APIResponse[Registered]:
    """Create a new user record and dispatch an OTP email for verification."""

    user, dispatch = await auth_service.register(payload)
    return APIResponse(
        message=_sent_message(dispatch, "User registered successfully. Please verify your email."),
        data=Registered(
            user_id=user.id, email=user.email, name=user.name, role=user.role, email_sent=dispatch.delivery.success
        ),
    )


@router.post("/send-otp", response_model=APIResponse[OTPIssued])
async def send_otp(
    payload: OTPRequest,
    request: Request,
    auth_service: AuthService = Depends(deps.get_auth_service),
    throttle: RequestThrottle = Depends(deps.get_throttle),
) -> APIResponse[OTPIssued]:
    """Issue a code unless a live one is still pending for this email."""

    await throttle.limit_otp_request(request)
    dispatch = await auth_service.send_otp(payload.email, payload.name)
    return APIResponse(message=_sent_message(dispatch, "OTP sent successfully."), data=_issued(dispatch))


@router.post("/verify-otp", response_model=APIResponse[VerifiedData])
async def verify_otp(
    payload: OTPVerify,
    request: Request,
    auth_service: AuthService = Depends(deps.get_auth_service),
    throttle: RequestThrottle = Depends(deps.get_throttle),
) -> APIResponse[VerifiedData]:
    """Confirm an email address using the submitted OTP code."""

    await throttle.limit_otp_verify(request)
    result = await auth_service.verify_otp(payload.email, payload.otp)
    return APIResponse(
        message="OTP verified successfully.",
        data=VerifiedData(
            email=result.email,
            token=result.token,
            user=UserResponse.model_validate(result.user) if result.user else None,
        ),
    )


@router.post("/resend-otp", response_model=APIResponse[OTPIssued])
async def resend_otp(
    payload: OTPRequest,
    request: Request,
    auth_service: AuthService = Depends(deps.get_auth_service),
    throttle: RequestThrottle = Depends(deps.get_throttle),
) -> APIResponse[OTPIssued]:
    """Issue a fresh OTP to the given email address, replacing the pending one."""

    await throttle.limit_otp_request(request)
    await throttle.limit_resend(payload.email)
    dispatch = await auth_service.resend_otp(payload.email, payload.name)
    return APIResponse(message=_sent_message(dispatch, "OTP resent successfully."), data=_issued(dispatch))


@router.post("/login", response_model=APIResponse[LoginData])
async def login(
    payload: UserLogin,
    auth_service: AuthService = Depends(deps.get_auth_service),
) -> APIResponse[LoginData]:
    """Authenticate a verified user and return a bearer access token."""

    result = await auth_service.login(payload.email, payload.password)
    return APIResponse(
        message="Login successful.",
        data=LoginData(token=result.token, user=UserResponse.model_validate(result.user)),
    )


@router.get("/me", response_model=APIResponse[UserResponse])
async def me(current_user: User = Depends(deps.get_current_user)) -> APIResponse[UserResponse]:
    return APIResponse(message="Current user.", data=UserResponse.model_validate(current_user))


@router.post("/logout", response_model=APIResponse[None])
async def logout(current_user: User = Depends(deps.get_current_user)) -> APIResponse[None]:
    """Tokens are stateless; the client drops its copy."""
    return APIResponse(message="Logged out successfully.")


@router.post("/send-welcome", response_model=APIResponse[None])
async def send_welcome(
    payload: WelcomeRequest,
    response: Response,
    auth_service: AuthService = Depends(deps.get_auth_service),
) -> APIResponse[None]:
    result = await auth_service.send_welcome(payload.email, payload.name)
    if not result.success:
        response.status_code = status.HTTP_502_BAD_GATEWAY
        return APIResponse(success=False, message="Failed to send welcome email.", error=result.error)
    return APIResponse(message="Welcome email sent successfully.")
