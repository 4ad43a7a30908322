# affiliate_backend/app/services/__init__.py
"""
Services layer for business logic.
Keeps API endpoints thin and business logic testable and reusable.
"""

from affiliate_backend.app.services.ledger import (
    LedgerStore,
    LedgerError,
    DuplicateReferenceError,
    UserNotFoundError,
)
from affiliate_backend.app.services.commissions import (
    CommissionEngine,
    CommissionResult,
    calculate_commission,
)
from affiliate_backend.app.services.deposits import (
    DepositReconciler,
    DepositServiceError,
    DepositNotFoundError,
    ReconcileError,
    ReconcileResult,
)
from affiliate_backend.app.services.paystack import (
    PaystackClient,
    GatewayError,
    GatewayUnreachable,
    GatewayRejected,
)
from affiliate_backend.app.services.referrals import (
    ReferralService,
    ReferralServiceError,
    AffiliateNotFoundError,
    ReferredUser,
)
from affiliate_backend.app.services.withdrawals import (
    WithdrawalService,
    WithdrawalServiceError,
    WithdrawalNotFoundError,
    WithdrawalAlreadyProcessedError,
    InsufficientBalanceError,
)
from affiliate_backend.app.services.accounts import (
    AccountServiceError,
    UserAccountService,
    AffiliateAccountService,
    LoginResult,
)
from affiliate_backend.app.services.cache import CacheService
from affiliate_backend.app.services.email import EmailDeliveryError

__all__ = [
    # Ledger
    "LedgerStore",
    "LedgerError",
    "DuplicateReferenceError",
    "UserNotFoundError",
    # Commissions
    "CommissionEngine",
    "CommissionResult",
    "calculate_commission",
    # Deposits
    "DepositReconciler",
    "DepositServiceError",
    "DepositNotFoundError",
    "ReconcileError",
    "ReconcileResult",
    # Payment gateway
    "PaystackClient",
    "GatewayError",
    "GatewayUnreachable",
    "GatewayRejected",
    # Referrals
    "ReferralService",
    "ReferralServiceError",
    "AffiliateNotFoundError",
    "ReferredUser",
    # Withdrawals
    "WithdrawalService",
    "WithdrawalServiceError",
    "WithdrawalNotFoundError",
    "WithdrawalAlreadyProcessedError",
    "InsufficientBalanceError",
    # Accounts
    "AccountServiceError",
    "UserAccountService",
    "AffiliateAccountService",
    "LoginResult",
    # Expiring store / e-mail
    "CacheService",
    "EmailDeliveryError",
]
