"""
Account flows for betting-site users and affiliates.

Registration with e-mailed OTP verification, device-aware login, password
recovery and password change. One-time codes live in the Redis-backed
CacheService with a TTL; nothing OTP-related is stored in the database.

Users are persisted unverified at registration. Affiliates are only written
to the database once their e-mail is verified; until then the registration
waits in the cache and expires with it.
"""
import secrets
from dataclasses import dataclass, field
from typing import Optional, Dict, Any, Type

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from affiliate_backend.app.core.auth import create_access_token
from affiliate_backend.app.core.constants import OTP_LENGTH, ROLE_AFFILIATE, ROLE_USER
from affiliate_backend.app.core.exceptions import ServiceError, ValidationError
from affiliate_backend.app.core.logging import get_logger
from affiliate_backend.app.core.password_utils import generate_numeric_code, hash_password, verify_password
from affiliate_backend.app.core.password_validation import (
    is_valid_email,
    is_valid_phone,
    normalize_phone,
    validate_password_strength,
)
from affiliate_backend.app.core.settings import get_settings
from affiliate_backend.app.models.affiliate import Affiliate
from affiliate_backend.app.models.user import User
from affiliate_backend.app.services.cache import CacheService
from affiliate_backend.app.services.email import send_otp_email

logger = get_logger(__name__)


# ---------------------------------------------------------------------------
# Exceptions
# ---------------------------------------------------------------------------

class AccountServiceError(ServiceError):
    """Base exception for account errors."""
    pass


class AccountExistsError(AccountServiceError):
    def __init__(self, field_name: str):
        super().__init__(f"{field_name} already exists", 400)


class AccountNotFoundError(AccountServiceError):
    def __init__(self, kind: str):
        super().__init__(f"{kind.capitalize()} not found", 404)


class AccountNotVerifiedError(AccountServiceError):
    def __init__(self):
        super().__init__("Please verify your account first", 401)


class InvalidCredentialsError(AccountServiceError):
    def __init__(self, message: str = "Invalid credentials"):
        super().__init__(message, 400)


class InvalidOtpError(AccountServiceError):
    def __init__(self):
        super().__init__("Invalid or expired OTP", 400)


class RegistrationPendingError(AccountServiceError):
    def __init__(self):
        super().__init__("OTP already sent. Please verify your email", 400)


class RegistrationNotFoundError(AccountServiceError):
    def __init__(self):
        super().__init__("No pending registration found for this email or OTP expired", 404)


# ---------------------------------------------------------------------------
# Results
# ---------------------------------------------------------------------------

@dataclass
class LoginResult:
    require_otp: bool
    message: str
    token: Optional[str] = None
    account: Dict[str, Any] = field(default_factory=dict)


def _normalize_email(email: Optional[str]) -> str:
    return (email or "").strip().lower()


def _require(value: Optional[str], message: str) -> str:
    value = (value or "").strip()
    if not value:
        raise ValidationError(message)
    return value


def _check_password(password: str) -> None:
    ok, errors = validate_password_strength(password or "")
    if not ok:
        raise ValidationError("; ".join(errors))


# ---------------------------------------------------------------------------
# Shared flows
# ---------------------------------------------------------------------------

class AccountService:
    """Login, device verification and password flows shared by both account kinds."""

    kind: str = "account"
    role: str = ""
    model: Type[Any]

    def __init__(self, session: AsyncSession, cache: CacheService):
        self.session = session
        self.cache = cache

    # -- Lookups ------------------------------------------------------------

    async def _find_by_email(self, email: str):
        result = await self.session.execute(
            select(self.model).where(self.model.email == _normalize_email(email))
        )
        return result.scalar_one_or_none()

    async def _find_by_phone(self, phone: str):
        result = await self.session.execute(
            select(self.model)
            .where(self.model.phone == normalize_phone(phone))
            .order_by(self.model.id)
            .limit(1)
        )
        return result.scalar_one_or_none()

    async def _get_by_email(self, email: str):
        account = await self._find_by_email(email)
        if not account:
            raise AccountNotFoundError(self.kind)
        return account

    async def _get(self, account_id: int):
        account = await self.session.get(self.model, account_id)
        if not account:
            raise AccountNotFoundError(self.kind)
        return account

    def serialize(self, account) -> Dict[str, Any]:
        raise NotImplementedError

    # -- OTP helpers --------------------------------------------------------

    async def _issue_otp(self, email: str, purpose: str, email_kind: str, ttl: int) -> None:
        code = generate_numeric_code(OTP_LENGTH)
        await self.cache.set_otp(self.kind, purpose, email, code, ttl)
        await send_otp_email(email, email_kind, code, ttl_minutes=ttl // 60 if purpose == CacheService.OTP_DEVICE else None)
        logger.info("OTP issued", kind=self.kind, purpose=purpose, email=email)

    # -- Login --------------------------------------------------------------

    async def login(
        self,
        password: str,
        device_id: str,
        email: Optional[str] = None,
        phone: Optional[str] = None,
    ) -> LoginResult:
        """
        Password login. An unknown device gets an e-mailed code instead of a
        token; `verify_login_otp` finishes that login.
        """
        if not (email or phone) or not password:
            raise ValidationError("Email or phone and password are required")

        account = await self._find_by_email(email) if email else await self._find_by_phone(phone)
        if not account:
            raise AccountNotFoundError(self.kind)
        if not account.is_verified:
            raise AccountNotVerifiedError()
        if not verify_password(password, account.password_hash):
            logger.info("Login failed: bad password", kind=self.kind, account_id=account.id)
            raise InvalidCredentialsError()
        device_id = _require(device_id, "Missing device identifier")

        if device_id not in (account.known_devices or []):
            await self._issue_otp(
                account.email,
                CacheService.OTP_DEVICE,
                "device",
                get_settings().DEVICE_OTP_TTL_SECONDS,
            )
            return LoginResult(require_otp=True, message="New device detected. OTP sent to your email.")

        logger.info("Login successful", kind=self.kind, account_id=account.id)
        return LoginResult(
            require_otp=False,
            message="Login successful.",
            token=create_access_token(account.id, self.role),
            account=self.serialize(account),
        )

    async def verify_login_otp(self, email: str, otp: str, device_id: str) -> LoginResult:
        device_id = _require(device_id, "Missing device identifier")
        account = await self._get_by_email(email)
        if not await self.cache.consume_otp(self.kind, CacheService.OTP_DEVICE, account.email, (otp or "").strip()):
            raise InvalidOtpError()

        devices = list(account.known_devices or [])
        if device_id not in devices:
            # Reassign so the JSON column is flagged dirty
            account.known_devices = devices + [device_id]
            await self.session.commit()

        logger.info("Device verified", kind=self.kind, account_id=account.id)
        return LoginResult(
            require_otp=False,
            message="Device verified. Login successful.",
            token=create_access_token(account.id, self.role),
            account=self.serialize(account),
        )

    # -- Password recovery --------------------------------------------------

    async def forgot_password(self, email: str) -> None:
        account = await self._get_by_email(email)
        await self._issue_otp(account.email, CacheService.OTP_RESET, "reset", get_settings().OTP_TTL_SECONDS)

    async def resend_reset_otp(self, email: str) -> None:
        await self.forgot_password(email)

    async def verify_reset_otp(self, email: str, otp: str) -> None:
        """Check the reset code without consuming it; reset_password consumes it."""
        account = await self._get_by_email(email)
        if not await self.cache.check_otp(self.kind, CacheService.OTP_RESET, account.email, (otp or "").strip()):
            raise InvalidOtpError()

    async def reset_password(self, email: str, otp: str, new_password: str) -> None:
        _check_password(new_password)
        account = await self._get_by_email(email)
        if not await self.cache.consume_otp(self.kind, CacheService.OTP_RESET, account.email, (otp or "").strip()):
            raise InvalidOtpError()
        account.password_hash = hash_password(new_password)
        await self.session.commit()
        logger.info("Password reset", kind=self.kind, account_id=account.id)

    async def change_password(self, account_id: int, old_password: str, new_password: str) -> None:
        if not old_password or not new_password:
            raise ValidationError("Both old and new passwords are required")
        account = await self._get(account_id)
        if not verify_password(old_password, account.password_hash):
            raise InvalidCredentialsError("Old password is incorrect")
        _check_password(new_password)
        account.password_hash = hash_password(new_password)
        await self.session.commit()
        logger.info("Password changed", kind=self.kind, account_id=account.id)

    async def profile(self, account_id: int) -> Dict[str, Any]:
        return self.serialize(await self._get(account_id))


# ---------------------------------------------------------------------------
# Users
# ---------------------------------------------------------------------------

class UserAccountService(AccountService):
    kind = "user"
    role = ROLE_USER
    model = User

    def serialize(self, user: User) -> Dict[str, Any]:
        return {
            "id": user.id,
            "fullname": user.fullname,
            "email": user.email,
            "phone": user.phone,
            "coupon_code": user.coupon_code,
            "available_balance": user.available_balance,
            "is_verified": user.is_verified,
            "created_at": user.created_at,
        }

    async def register(
        self,
        fullname: str,
        email: str,
        phone: str,
        password: str,
        device_id: str,
        coupon_code: Optional[str] = None,
    ) -> User:
        """
        Create an unverified user and e-mail the verification code.

        The registering device is trusted straight away. A blank coupon code
        is stored as None; the code is never changed afterwards.
        """
        fullname = _require(fullname, "All fields are required")
        email = _normalize_email(email)
        phone = normalize_phone(_require(phone, "All fields are required"))
        device_id = _require(device_id, "Missing device identifier")
        if not is_valid_email(email):
            raise ValidationError("Invalid email address")
        if not is_valid_phone(phone):
            raise ValidationError("Invalid phone number")
        _check_password(password)

        if await self._find_by_email(email):
            raise AccountExistsError("Email")

        user = User(
            fullname=fullname,
            email=email,
            phone=phone,
            password_hash=hash_password(password),
            is_verified=False,
            known_devices=[device_id],
            coupon_code=(coupon_code or "").strip() or None,
        )
        self.session.add(user)
        try:
            await self.session.commit()
        except IntegrityError:
            await self.session.rollback()
            raise AccountExistsError("Email")
        await self.session.refresh(user)

        logger.info("User registered", user_id=user.id, referred=user.coupon_code is not None)
        await self._issue_otp(email, CacheService.OTP_VERIFY, "verify", get_settings().OTP_TTL_SECONDS)
        return user

    async def verify_otp(self, email: str, otp: str) -> User:
        user = await self._get_by_email(email)
        if user.is_verified:
            return user
        if not await self.cache.consume_otp(self.kind, CacheService.OTP_VERIFY, user.email, (otp or "").strip()):
            raise InvalidOtpError()
        user.is_verified = True
        await self.session.commit()
        logger.info("User verified", user_id=user.id)
        return user

    async def resend_otp(self, email: str) -> None:
        user = await self._get_by_email(email)
        if user.is_verified:
            raise ValidationError("Account is already verified")
        await self._issue_otp(user.email, CacheService.OTP_VERIFY, "resend", get_settings().OTP_TTL_SECONDS)


# ---------------------------------------------------------------------------
# Affiliates
# ---------------------------------------------------------------------------

class AffiliateAccountService(AccountService):
    kind = "affiliate"
    role = ROLE_AFFILIATE
    model = Affiliate

    CODE_ATTEMPTS = 5

    def serialize(self, affiliate: Affiliate) -> Dict[str, Any]:
        return {
            "id": affiliate.id,
            "firstname": affiliate.firstname,
            "lastname": affiliate.lastname,
            "email": affiliate.email,
            "phone": affiliate.phone,
            "affiliate_code": affiliate.affiliate_code,
            "referral_link": affiliate.referral_link,
            "coupon_code": affiliate.coupon_code,
            "total_earned": affiliate.total_earned,
            "acc_balance": affiliate.acc_balance,
            "created_at": affiliate.created_at,
        }

    @staticmethod
    def build_codes(firstname: str) -> Dict[str, str]:
        """affiliate_code = first four letters of the first name (or AFF) + 4 digits."""
        letters = "".join(ch for ch in firstname if ch.isalpha())[:4].upper() or "AFF"
        digits = str(1000 + secrets.randbelow(9000))
        affiliate_code = f"{letters}{digits}"
        return {
            "affiliate_code": affiliate_code,
            "referral_link": f"{get_settings().REFERRAL_BASE_URL.rstrip('/')}/{affiliate_code}",
            "coupon_code": f"BB{digits}",
        }

    async def _unused_codes(self, firstname: str) -> Dict[str, str]:
        for _ in range(self.CODE_ATTEMPTS):
            codes = self.build_codes(firstname)
            result = await self.session.execute(
                select(Affiliate.id).where(Affiliate.affiliate_code == codes["affiliate_code"])
            )
            if result.scalar_one_or_none() is None:
                return codes
        raise AccountServiceError("Could not generate a unique affiliate code, please retry", 503)

    async def register(
        self,
        firstname: str,
        lastname: str,
        email: str,
        phone: str,
        password: str,
        device_id: str,
    ) -> None:
        """Hold the registration in the cache and e-mail the verification code."""
        firstname = _require(firstname, "All fields are required")
        lastname = _require(lastname, "All fields are required")
        email = _normalize_email(email)
        phone = normalize_phone(_require(phone, "All fields are required"))
        device_id = _require(device_id, "Missing device identifier")
        if not is_valid_email(email):
            raise ValidationError("Invalid email address")
        if not is_valid_phone(phone):
            raise ValidationError("Invalid phone number")
        _check_password(password)

        if await self._find_by_email(email):
            raise AccountExistsError("Email")
        if await self._find_by_phone(phone):
            raise AccountExistsError("Phone number")
        if await self.cache.get_pending_affiliate(email):
            raise RegistrationPendingError()

        pending = {
            "firstname": firstname,
            "lastname": lastname,
            "email": email,
            "phone": phone,
            "password_hash": hash_password(password),
            "known_devices": [device_id],
            **await self._unused_codes(firstname),
        }
        ttl = get_settings().OTP_TTL_SECONDS
        await self.cache.set_pending_affiliate(email, pending, ttl)
        await self._issue_otp(email, CacheService.OTP_VERIFY, "verify", ttl)
        logger.info("Affiliate registration pending", email=email, affiliate_code=pending["affiliate_code"])

    async def verify_otp(self, email: str, otp: str) -> Affiliate:
        email = _normalize_email(email)
        pending = await self.cache.get_pending_affiliate(email)
        if not pending:
            raise RegistrationNotFoundError()
        if not await self.cache.consume_otp(self.kind, CacheService.OTP_VERIFY, email, (otp or "").strip()):
            raise InvalidOtpError()

        affiliate = Affiliate(
            firstname=pending["firstname"],
            lastname=pending["lastname"],
            email=pending["email"],
            phone=pending["phone"],
            password_hash=pending["password_hash"],
            is_verified=True,
            known_devices=pending.get("known_devices") or [],
            affiliate_code=pending["affiliate_code"],
            referral_link=pending["referral_link"],
            coupon_code=pending["coupon_code"],
        )
        self.session.add(affiliate)
        try:
            await self.session.commit()
        except IntegrityError:
            await self.session.rollback()
            await self.cache.delete_pending_affiliate(email)
            logger.warning("Affiliate verification lost a uniqueness race", email=email)
            raise AccountExistsError("Email, phone or affiliate code")
        await self.session.refresh(affiliate)
        await self.cache.delete_pending_affiliate(email)

        logger.info("Affiliate verified", affiliate_id=affiliate.id, affiliate_code=affiliate.affiliate_code)
        return affiliate

    async def resend_otp(self, email: str) -> None:
        email = _normalize_email(email)
        pending = await self.cache.get_pending_affiliate(email)
        if not pending:
            raise RegistrationNotFoundError()
        await self._issue_otp(email, CacheService.OTP_VERIFY, "resend", get_settings().OTP_TTL_SECONDS)

    async def update_profile(
        self,
        affiliate_id: int,
        firstname: Optional[str] = None,
        lastname: Optional[str] = None,
        phone: Optional[str] = None,
    ) -> Dict[str, Any]:
        """Update the given fields; None leaves a field unchanged."""
        affiliate = await self._get(affiliate_id)
        if firstname is not None:
            affiliate.firstname = _require(firstname, "First name cannot be empty")
        if lastname is not None:
            affiliate.lastname = _require(lastname, "Last name cannot be empty")
        if phone is not None:
            phone = normalize_phone(phone)
            if not is_valid_phone(phone):
                raise ValidationError("Invalid phone number")
            other = await self._find_by_phone(phone)
            if other and other.id != affiliate.id:
                raise AccountExistsError("Phone number")
            affiliate.phone = phone
        try:
            await self.session.commit()
        except IntegrityError:
            await self.session.rollback()
            raise AccountExistsError("Phone number")
        await self.session.refresh(affiliate)
        logger.info("Affiliate profile updated", affiliate_id=affiliate.id)
        return self.serialize(affiliate)
