# spa_coupons/models/__init__.py
# Import all models here so SQLAlchemy registers them into Base.metadata.

from spa_coupons.models.coupon_token import CouponToken  # noqa: F401
from spa_coupons.models.coupon_wallet import CouponWallet  # noqa: F401
from spa_coupons.models.coupon_redemption import CouponRedemption  # noqa: F401
from spa_coupons.models.coupon_event import CouponEvent  # noqa: F401
from spa_coupons.models.rate_limit import CouponRateLimit  # noqa: F401
from spa_coupons.models.coupon_policy import CouponRewardTier, CouponSetting  # noqa: F401
