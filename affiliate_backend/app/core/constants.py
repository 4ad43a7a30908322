"""
Shared constants for the backend application.
"""
from decimal import Decimal

# ---------------------------------------------------------------------------
# Deposit statuses
# ---------------------------------------------------------------------------
DEPOSIT_PENDING = "pending"
DEPOSIT_SUCCESS = "success"
DEPOSIT_FAILED = "failed"

# Gateway transaction statuses that will never turn into "success"
GATEWAY_FINAL_FAILURE_STATUSES = ("failed", "abandoned", "reversed")

# ---------------------------------------------------------------------------
# Withdrawal statuses
# ---------------------------------------------------------------------------
WITHDRAWAL_PENDING = "pending"
WITHDRAWAL_APPROVED = "approved"
WITHDRAWAL_REJECTED = "rejected"

# ---------------------------------------------------------------------------
# Commission policy
# ---------------------------------------------------------------------------
COMMISSION_RATE = Decimal("0.15")

# ---------------------------------------------------------------------------
# Decimal helpers
# ---------------------------------------------------------------------------
ZERO = Decimal("0")
ONE_CENT = Decimal("0.01")
MINOR_UNITS = Decimal("100")

# ---------------------------------------------------------------------------
# Account roles (JWT "role" claim)
# ---------------------------------------------------------------------------
ROLE_USER = "user"
ROLE_AFFILIATE = "affiliate"

OTP_LENGTH = 6
