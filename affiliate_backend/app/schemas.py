from pydantic import BaseModel, Field, AliasChoices, ConfigDict
from typing import Optional, List
from datetime import datetime
from decimal import Decimal

# Request bodies accept both snake_case and the camelCase the web frontend sends.


# --- Accounts ---
class UserRegisterRequest(BaseModel):
    fullname: str
    email: str
    phone: str
    password: str
    device_id: str = Field(validation_alias=AliasChoices("device_id", "deviceId"))
    coupon_code: Optional[str] = Field(default=None, validation_alias=AliasChoices("coupon_code", "couponCode"))


class AffiliateRegisterRequest(BaseModel):
    firstname: str
    lastname: str
    email: str
    phone: str
    password: str
    device_id: str = Field(validation_alias=AliasChoices("device_id", "deviceId"))


class EmailRequest(BaseModel):
    email: str


class OtpRequest(BaseModel):
    email: str
    otp: str


class LoginRequest(BaseModel):
    email: Optional[str] = None
    phone: Optional[str] = None
    password: str
    device_id: Optional[str] = Field(default=None, validation_alias=AliasChoices("device_id", "deviceId"))


class LoginOtpRequest(BaseModel):
    email: str
    otp: str
    device_id: str = Field(validation_alias=AliasChoices("device_id", "deviceId"))


class ResetPasswordRequest(BaseModel):
    email: str
    otp: str
    new_password: str = Field(validation_alias=AliasChoices("new_password", "newPassword"))


class ChangePasswordRequest(BaseModel):
    old_password: str = Field(validation_alias=AliasChoices("old_password", "oldPassword"))
    new_password: str = Field(validation_alias=AliasChoices("new_password", "newPassword"))


class MessageResponse(BaseModel):
    success: bool = True
    message: str


class LoginResponse(BaseModel):
    success: bool = True
    message: str
    require_otp: bool = False
    token: Optional[str] = None
    account: Optional[dict] = None


# --- Affiliate profile ---
class AffiliateProfileUpdate(BaseModel):
    firstname: Optional[str] = None
    lastname: Optional[str] = None
    phone: Optional[str] = None


class ReferredUserResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    fullname: str
    email: str
    phone: Optional[str] = None
    created_at: datetime
    first_deposit: bool
    commission: Decimal


class ReferralLinkResponse(BaseModel):
    referral_link: str
    affiliate_code: str
    coupon_code: Optional[str] = None


class DashboardResponse(BaseModel):
    affiliate_code: str
    referral_link: str
    total_clicks: int
    total_referred_users: int
    depositing_users: int
    total_commissions: int
    commission_sum: Decimal
    total_earned: Decimal
    acc_balance: Decimal


# --- Deposits ---
class DepositInitializeRequest(BaseModel):
    amount: Decimal = Field(gt=0, decimal_places=2)


class DepositInitializeResponse(BaseModel):
    authorization_url: str
    access_code: Optional[str] = None
    reference: str


class DepositVerifyRequest(BaseModel):
    reference: str = Field(min_length=1, max_length=100)


class DepositVerifyResponse(BaseModel):
    status: str
    reference: str
    already_processed: bool = False
    amount: Optional[Decimal] = None
    gateway_status: Optional[str] = None
    commission_awarded: bool = False


class DepositResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    amount: Decimal
    reference: str
    status: str
    credited: bool
    created_at: datetime


# --- Withdrawals ---
class WithdrawalCreate(BaseModel):
    amount: Decimal = Field(gt=0, decimal_places=2)
    bank_account: str = Field(
        min_length=1,
        max_length=255,
        validation_alias=AliasChoices("bank_account", "bankAccount"),
    )


class WithdrawalResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    affiliate_id: int
    amount: Decimal
    bank_account: str
    status: str
    created_at: datetime
    updated_at: Optional[datetime] = None


class AdminWithdrawalResponse(WithdrawalResponse):
    email: str
    firstname: str
    lastname: str


class BalanceSummaryResponse(BaseModel):
    total_earned: Decimal
    total_withdrawn: Decimal
    available_balance: Decimal
    pending_withdrawals: Decimal


class WithdrawalListResponse(BaseModel):
    success: bool = True
    data: List[AdminWithdrawalResponse]
