from __future__ import annotations


class CouponError(Exception):
    """
    Expected, recoverable outcome of a coupon operation.

    Each subclass carries a stable `code` (wire contract), the HTTP status the
    edge should use, and optional details that are echoed in the error body.
    """

    code = "COUPON_ERROR"
    status_code = 400
    default_message = "Coupon operation failed"

    def __init__(self, message: str | None = None, **details):
        self.message = message or self.default_message
        self.details = details
        super().__init__(self.message)

    def to_dict(self) -> dict:
        return {"code": self.code, "message": self.message, **self.details}


class InvalidToken(CouponError):
    code = "INVALID_TOKEN"
    default_message = "Token is invalid"


class ExpiredToken(CouponError):
    code = "EXPIRED_TOKEN"
    default_message = "Token has expired"


class TokenUsedByOther(CouponError):
    code = "TOKEN_USED_BY_OTHER"
    default_message = "Token has already been used by another customer"


class InsufficientCoupons(CouponError):
    code = "INSUFFICIENT_COUPONS"
    default_message = "Insufficient coupons for redemption"

    def __init__(self, *, balance: int, needed: int, threshold: int):
        super().__init__(balance=balance, needed=needed, threshold=threshold)
        self.balance = balance
        self.needed = needed
        self.threshold = threshold


class RateLimitExceeded(CouponError):
    code = "RATE_LIMIT_EXCEEDED"
    status_code = 429
    default_message = "Too many requests. Please try again later."

    def __init__(self, *, retry_after: int):
        super().__init__(retryAfter=retry_after)
        self.retry_after = retry_after


class RedemptionNotFound(CouponError):
    code = "NOT_FOUND"
    status_code = 404
    default_message = "Redemption not found or no longer pending"


class WalletNotFound(CouponError):
    code = "WALLET_NOT_FOUND"
    status_code = 404
    default_message = "Wallet not found"


class InvalidPhone(CouponError):
    code = "INVALID_PHONE"
    default_message = "Phone number is invalid"


class NoteRequired(CouponError):
    code = "NOTE_REQUIRED"
    default_message = "Rejection note is required"


class TokenGenerationError(RuntimeError):
    """Could not find a free token code; treated as an internal failure."""


class RewardTierNotFound(CouponError):
    code = "TIER_NOT_FOUND"
    status_code = 404
    default_message = "Reward tier not found or inactive"


class LastRewardTier(CouponError):
    code = "LAST_REWARD_TIER"
    default_message = "At least one reward tier must remain"


class InvalidPolicySetting(CouponError):
    code = "INVALID_SETTING"
    default_message = "Policy setting is out of range"
