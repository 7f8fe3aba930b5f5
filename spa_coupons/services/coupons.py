# spa_coupons/services/coupons.py
from __future__ import annotations

from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Generic, TypeVar

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from spa_coupons.core.db import utcnow
from spa_coupons.core.logging import get_logger
from spa_coupons.models.coupon_policy import CouponRewardTier
from spa_coupons.models.coupon_redemption import CouponRedemption
from spa_coupons.models.coupon_token import CouponToken
from spa_coupons.models.coupon_wallet import CouponWallet
from spa_coupons.services import event_log, rate_limit, redemptions, tokens
from spa_coupons.services import policy as policy_service
from spa_coupons.services import wallet as wallet_service
from spa_coupons.services.errors import CouponError, InsufficientCoupons, RateLimitExceeded, WalletNotFound
from spa_coupons.services.event_log import CouponEventRecord, CouponEventType
from spa_coupons.services.phone import mask_phone, mask_token, normalize_phone
from spa_coupons.services.policy import NextReward
from spa_coupons.services.tokens import IssuedToken

logger = get_logger(__name__)

T = TypeVar("T")


@dataclass(frozen=True)
class Outcome(Generic[T]):
    """Either a value or the CouponError that explains why there is none."""

    value: T | None = None
    error: CouponError | None = None

    @property
    def ok(self) -> bool:
        return self.error is None

    def unwrap(self) -> T:
        if self.error is not None:
            raise self.error
        return self.value


@dataclass(frozen=True)
class CouponPolicy:
    bundle_size: int = 4
    credit_amount: int = 1
    token_ttl: timedelta = timedelta(minutes=30)
    token_issue_attempts: int = 3
    consume_limit: int = 10
    claim_limit: int = 5
    rate_limit_window: timedelta = timedelta(days=1)
    rate_limit_reset_timezone: str | None = None
    abuse_threshold: int = 50
    whatsapp_number: str = ""
    default_country_code: str = "90"
    token_expired_retention: timedelta = timedelta(days=7)
    token_used_retention: timedelta = timedelta(days=90)
    redemption_pending_max_age: timedelta = timedelta(days=30)

    @classmethod
    def from_settings(cls, s) -> "CouponPolicy":
        return cls(
            bundle_size=s.COUPON_BUNDLE_SIZE,
            credit_amount=s.COUPON_CREDIT_AMOUNT,
            token_ttl=timedelta(minutes=s.TOKEN_TTL_MINUTES),
            consume_limit=s.CONSUME_RATE_LIMIT,
            claim_limit=s.CLAIM_RATE_LIMIT,
            rate_limit_window=timedelta(seconds=s.RATE_LIMIT_WINDOW_SECONDS),
            rate_limit_reset_timezone=s.RATE_LIMIT_RESET_TIMEZONE,
            abuse_threshold=s.RATE_LIMIT_ABUSE_THRESHOLD,
            whatsapp_number=s.WHATSAPP_NUMBER,
            default_country_code=s.DEFAULT_COUNTRY_CODE,
            token_expired_retention=timedelta(days=s.TOKEN_EXPIRED_RETENTION_DAYS),
            token_used_retention=timedelta(days=s.TOKEN_USED_RETENTION_DAYS),
            redemption_pending_max_age=timedelta(days=s.REDEMPTION_PENDING_MAX_DAYS),
        )


@dataclass(frozen=True)
class ConsumeOutcome:
    balance: int
    remaining_to_free: int
    credited: bool
    next_reward: NextReward | None = None


@dataclass(frozen=True)
class ClaimOutcome:
    redemption_id: str
    created: bool
    balance: int
    coupons_used: int = 0
    reward_name: str | None = None


@dataclass(frozen=True)
class PolicySnapshot:
    """Policy in force right now plus the reward menu."""

    policy: CouponPolicy
    tiers: list[CouponRewardTier] = field(default_factory=list)
    overrides: dict[str, int] = field(default_factory=dict)


@dataclass(frozen=True)
class HousekeepingReport:
    deleted_expired_tokens: int = 0
    deleted_used_tokens: int = 0
    expired_redemptions: int = 0
    swept_rate_limits: int = 0


class CouponService:
    """
    Entry point used by the HTTP layer.

    Every operation runs in its own session: commit on success, rollback on
    any error, session closed on every exit path. Business failures come back
    as `Outcome.error`; storage failures propagate.
    """

    def __init__(self, session_factory: async_sessionmaker, policy: CouponPolicy | None = None):
        self._session_factory = session_factory
        self.policy = policy or CouponPolicy()
        self.abuse = rate_limit.AbuseTracker(threshold=self.policy.abuse_threshold)

    @property
    def session_factory(self) -> async_sessionmaker:
        return self._session_factory

    @asynccontextmanager
    async def _transaction(self) -> AsyncIterator[AsyncSession]:
        async with self._session_factory() as db:
            try:
                yield db
                await db.commit()
            except Exception:
                await db.rollback()
                raise

    @asynccontextmanager
    async def _read(self) -> AsyncIterator[AsyncSession]:
        async with self._session_factory() as db:
            yield db

    def _phone(self, phone: str) -> str:
        return normalize_phone(phone, default_country_code=self.policy.default_country_code)

    async def current_policy(self) -> CouponPolicy:
        """Env defaults with the admin-stored overrides applied."""
        async with self._read() as db:
            return await policy_service.effective_policy(db, self.policy)

    async def _enforce_rate_limit(self, phone: str, endpoint: str, limit: int, now: datetime | None) -> None:
        # committed on its own so the quota counts requests that later fail
        async with self._transaction() as db:
            decision = await rate_limit.check_and_increment(
                db,
                phone=phone,
                endpoint=endpoint,
                limit=limit,
                window=self.policy.rate_limit_window,
                reset_timezone=self.policy.rate_limit_reset_timezone,
                now=now,
            )
        if not decision.allowed:
            self.abuse.record(phone, endpoint, now=now)
            raise RateLimitExceeded(retry_after=decision.retry_after)

    # ------------------------------------------------------------------
    # Mutations
    # ------------------------------------------------------------------
    async def issue(
        self,
        kiosk_id: str | None = None,
        issued_for: str | None = None,
        *,
        now: datetime | None = None,
    ) -> Outcome[IssuedToken]:
        async with self._transaction() as db:
            policy = await policy_service.effective_policy(db, self.policy)
            issued = await tokens.issue_token(
                db,
                kiosk_id=kiosk_id,
                issued_for=issued_for,
                ttl=policy.token_ttl,
                whatsapp_number=policy.whatsapp_number,
                max_attempts=policy.token_issue_attempts,
                now=now,
            )
            await event_log.log_event(
                db,
                event=CouponEventType.ISSUED,
                token=issued.token,
                details={
                    "kioskId": kiosk_id,
                    "issuedFor": issued_for,
                    "expiresAt": issued.expires_at.isoformat(),
                },
                now=now,
            )

        logger.info("Token issued token=%s kiosk=%s", mask_token(issued.token), kiosk_id)
        return Outcome(value=issued)

    async def consume(self, phone: str, token: str, *, now: datetime | None = None) -> Outcome[ConsumeOutcome]:
        try:
            normalized = self._phone(phone)
            policy = await self.current_policy()
            await self._enforce_rate_limit(normalized, rate_limit.ENDPOINT_CONSUME, policy.consume_limit, now)

            async with self._transaction() as db:
                result = await tokens.validate_and_consume(
                    db,
                    token=token,
                    phone=normalized,
                    credit_amount=policy.credit_amount,
                    now=now,
                )
                if result.credited:
                    await event_log.log_event(
                        db,
                        event=CouponEventType.COUPON_AWARDED,
                        phone=normalized,
                        token=result.token,
                        details={"newBalance": result.balance, "amount": policy.credit_amount},
                        now=now,
                    )
                tiers = await policy_service.list_tiers(db, active_only=True)
        except CouponError as e:
            logger.info("Consume rejected phone=%s code=%s", mask_phone(phone), e.code)
            return Outcome(error=e)

        logger.info(
            "Token consumed phone=%s token=%s balance=%d replay=%s",
            mask_phone(normalized),
            mask_token(result.token),
            result.balance,
            not result.credited,
        )
        return Outcome(
            value=ConsumeOutcome(
                balance=result.balance,
                remaining_to_free=wallet_service.remaining_to_free(result.balance, policy.bundle_size),
                credited=result.credited,
                next_reward=policy_service.remaining_for_next_reward(result.balance, tiers),
            )
        )

    async def claim(
        self,
        phone: str,
        tier_id: int | None = None,
        *,
        now: datetime | None = None,
    ) -> Outcome[ClaimOutcome]:
        """
        Spend coupons on a pending redemption.

        Without `tier_id` the default bundle is charged; otherwise the active
        reward tier's price, read inside the same transaction as the debit.
        """
        blocked: InsufficientCoupons | None = None
        reward_name: str | None = None
        try:
            normalized = self._phone(phone)
            policy = await self.current_policy()
            await self._enforce_rate_limit(normalized, rate_limit.ENDPOINT_CLAIM, policy.claim_limit, now)

            async with self._transaction() as db:
                wallet = await wallet_service.get_or_create(db, normalized, lock=True)
                policy = await policy_service.effective_policy(db, self.policy)
                bundle, tier = await policy_service.resolve_requirement(
                    db, tier_id=tier_id, default_bundle=policy.bundle_size
                )
                reward_name = tier.name if tier is not None else None
                await event_log.log_event(
                    db,
                    event=CouponEventType.REDEMPTION_ATTEMPT,
                    phone=normalized,
                    details={
                        "currentBalance": int(wallet.coupon_count),
                        "couponsRequired": bundle,
                        "requestedTier": tier_id,
                    },
                    now=now,
                )
                try:
                    result = await redemptions.claim(db, phone=normalized, bundle_size=bundle, now=now)
                except InsufficientCoupons as e:
                    # keep the attempt/blocked audit trail; nothing else was written
                    blocked = e
                    await event_log.log_event(
                        db,
                        event=CouponEventType.REDEMPTION_BLOCKED,
                        phone=normalized,
                        details={
                            "reason": "insufficient_coupons",
                            "currentBalance": e.balance,
                            "needed": e.needed,
                            "threshold": e.threshold,
                            "requestedTier": tier_id,
                        },
                        now=now,
                    )
                else:
                    if result.created:
                        await event_log.log_event(
                            db,
                            event=CouponEventType.REDEMPTION_GRANTED,
                            phone=normalized,
                            details={
                                "redemptionId": result.redemption.id,
                                "couponsUsed": result.redemption.coupons_used,
                                "newBalance": result.balance,
                                "rewardName": reward_name,
                            },
                            now=now,
                        )
        except CouponError as e:
            logger.info("Claim rejected phone=%s code=%s", mask_phone(phone), e.code)
            return Outcome(error=e)

        if blocked is not None:
            logger.info("Claim blocked phone=%s balance=%d", mask_phone(normalized), blocked.balance)
            return Outcome(error=blocked)

        logger.info(
            "Redemption %s phone=%s id=%s",
            "granted" if result.created else "reused",
            mask_phone(normalized),
            result.redemption.id,
        )
        return Outcome(
            value=ClaimOutcome(
                redemption_id=result.redemption.id,
                created=result.created,
                balance=result.balance,
                coupons_used=int(result.redemption.coupons_used),
                reward_name=reward_name if result.created else None,
            )
        )

    async def complete(
        self,
        redemption_id: str,
        *,
        actor: str | None = None,
        now: datetime | None = None,
    ) -> Outcome[CouponRedemption]:
        try:
            async with self._transaction() as db:
                redemption = await redemptions.complete(db, redemption_id=redemption_id, now=now)
                await event_log.log_event(
                    db,
                    event=CouponEventType.REDEMPTION_COMPLETED,
                    phone=redemption.phone,
                    details={"redemptionId": redemption.id, "completedBy": actor},
                    now=now,
                )
        except CouponError as e:
            return Outcome(error=e)

        logger.info("Redemption completed id=%s by=%s", redemption.id, actor)
        return Outcome(value=redemption)

    async def reject(
        self,
        redemption_id: str,
        note: str,
        *,
        actor: str | None = None,
        now: datetime | None = None,
    ) -> Outcome[CouponRedemption]:
        try:
            async with self._transaction() as db:
                redemption = await redemptions.reject(db, redemption_id=redemption_id, note=note, now=now)
                await event_log.log_event(
                    db,
                    event=CouponEventType.REDEMPTION_REJECTED,
                    phone=redemption.phone,
                    details={
                        "redemptionId": redemption.id,
                        "reason": redemption.note,
                        "refundedCoupons": redemption.coupons_used,
                        "rejectedBy": actor,
                    },
                    now=now,
                )
        except CouponError as e:
            return Outcome(error=e)

        logger.info("Redemption rejected id=%s refunded=%d by=%s", redemption.id, redemption.coupons_used, actor)
        return Outcome(value=redemption)

    async def opt_out(self, phone: str, *, now: datetime | None = None) -> Outcome[CouponWallet]:
        try:
            normalized = self._phone(phone)
            async with self._transaction() as db:
                wallet = await wallet_service.opt_out(db, normalized, now=now)
                await event_log.log_event(db, event=CouponEventType.OPTED_OUT, phone=normalized, now=now)
        except CouponError as e:
            return Outcome(error=e)
        return Outcome(value=wallet)

    async def run_housekeeping(self, *, now: datetime | None = None) -> HousekeepingReport:
        """Best-effort cleanup; each step commits on its own."""
        now = now or utcnow()
        policy = self.policy

        async with self._transaction() as db:
            deleted_expired, deleted_used = await tokens.cleanup_tokens(
                db,
                expired_before=now - policy.token_expired_retention,
                used_before=now - policy.token_used_retention,
            )
            if deleted_expired or deleted_used:
                await event_log.log_event(
                    db,
                    event=CouponEventType.HOUSEKEEPING,
                    details={
                        "action": "cleanup_tokens",
                        "deletedExpired": deleted_expired,
                        "deletedUsed": deleted_used,
                    },
                    now=now,
                )

        async with self._transaction() as db:
            max_days = policy.redemption_pending_max_age.days
            expired = await redemptions.expire_stale_pending(
                db,
                created_before=now - policy.redemption_pending_max_age,
                max_age_days=max_days,
                now=now,
            )
            for r in expired:
                await event_log.log_event(
                    db,
                    event=CouponEventType.REDEMPTION_REJECTED,
                    phone=r.phone,
                    details={
                        "redemptionId": r.id,
                        "action": "auto_expired",
                        "reason": r.note,
                        "refundedCoupons": r.coupons_used,
                    },
                    now=now,
                )

        async with self._transaction() as db:
            swept = await rate_limit.sweep_expired(db, now=now)

        report = HousekeepingReport(
            deleted_expired_tokens=deleted_expired,
            deleted_used_tokens=deleted_used,
            expired_redemptions=len(expired),
            swept_rate_limits=swept,
        )
        logger.info("Coupon housekeeping finished %s", report)
        return report

    # ------------------------------------------------------------------
    # Policy administration
    # ------------------------------------------------------------------
    async def get_policy(self, *, include_inactive: bool = False) -> PolicySnapshot:
        async with self._read() as db:
            overrides = await policy_service.get_settings(db)
            policy = await policy_service.effective_policy(db, self.policy)
            tiers = await policy_service.list_tiers(db, active_only=not include_inactive)
        return PolicySnapshot(policy=policy, tiers=tiers, overrides=overrides)

    async def update_policy_settings(
        self,
        values: dict[str, int],
        *,
        actor: str | None = None,
        now: datetime | None = None,
    ) -> Outcome[PolicySnapshot]:
        try:
            async with self._transaction() as db:
                changed = await policy_service.update_settings(db, values, actor=actor, now=now)
                await event_log.log_event(
                    db,
                    event=CouponEventType.POLICY_UPDATED,
                    details={"action": "settings", "changes": changed, "updatedBy": actor},
                    now=now,
                )
        except CouponError as e:
            return Outcome(error=e)

        logger.info("Coupon settings updated %s by=%s", changed, actor)
        return Outcome(value=await self.get_policy(include_inactive=True))

    async def create_reward_tier(
        self,
        fields: dict,
        *,
        actor: str | None = None,
        now: datetime | None = None,
    ) -> Outcome[CouponRewardTier]:
        try:
            async with self._transaction() as db:
                tier = await policy_service.create_tier(db, now=now, **fields)
                await event_log.log_event(
                    db,
                    event=CouponEventType.POLICY_UPDATED,
                    details={
                        "action": "tier_created",
                        "tierId": tier.id,
                        "couponsRequired": tier.coupons_required,
                        "updatedBy": actor,
                    },
                    now=now,
                )
        except CouponError as e:
            return Outcome(error=e)

        logger.info("Reward tier created id=%s name=%s by=%s", tier.id, tier.name, actor)
        return Outcome(value=tier)

    async def update_reward_tier(
        self,
        tier_id: int,
        changes: dict,
        *,
        actor: str | None = None,
        now: datetime | None = None,
    ) -> Outcome[CouponRewardTier]:
        try:
            async with self._transaction() as db:
                tier = await policy_service.update_tier(db, tier_id, changes, now=now)
                await event_log.log_event(
                    db,
                    event=CouponEventType.POLICY_UPDATED,
                    details={"action": "tier_updated", "tierId": tier_id, "fields": sorted(changes), "updatedBy": actor},
                    now=now,
                )
        except CouponError as e:
            return Outcome(error=e)

        logger.info("Reward tier updated id=%s by=%s", tier_id, actor)
        return Outcome(value=tier)

    async def delete_reward_tier(
        self,
        tier_id: int,
        *,
        actor: str | None = None,
        now: datetime | None = None,
    ) -> Outcome[int]:
        try:
            async with self._transaction() as db:
                await policy_service.delete_tier(db, tier_id)
                await event_log.log_event(
                    db,
                    event=CouponEventType.POLICY_UPDATED,
                    details={"action": "tier_deleted", "tierId": tier_id, "updatedBy": actor},
                    now=now,
                )
        except CouponError as e:
            return Outcome(error=e)

        logger.info("Reward tier deleted id=%s by=%s", tier_id, actor)
        return Outcome(value=tier_id)

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------
    async def get_wallet(self, phone: str) -> Outcome[CouponWallet]:
        try:
            normalized = self._phone(phone)
            async with self._read() as db:
                wallet = await wallet_service.get_wallet(db, normalized)
            if wallet is None:
                raise WalletNotFound()
        except CouponError as e:
            return Outcome(error=e)
        return Outcome(value=wallet)

    async def events_for_phone(self, phone: str, *, limit: int = 100) -> Outcome[list[CouponEventRecord]]:
        try:
            normalized = self._phone(phone)
        except CouponError as e:
            return Outcome(error=e)
        async with self._read() as db:
            return Outcome(value=await event_log.events_for_phone(db, normalized, limit=limit))

    async def events_for_token(self, token: str) -> list[CouponEventRecord]:
        async with self._read() as db:
            return await event_log.events_for_token(db, tokens.normalize_token(token))

    async def recent_events(
        self,
        *,
        limit: int = 50,
        event: CouponEventType | None = None,
    ) -> list[CouponEventRecord]:
        async with self._read() as db:
            return await event_log.recent_events(db, limit=limit, event=event)

    async def event_counts(self, *, start: datetime | None = None, end: datetime | None = None) -> dict[str, int]:
        async with self._read() as db:
            return await event_log.event_counts(db, start=start, end=end)

    async def recent_tokens(self, *, limit: int = 10) -> list[CouponToken]:
        async with self._read() as db:
            return await tokens.recent_tokens(db, limit=limit)

    async def list_redemptions(
        self,
        *,
        status: str | None = None,
        limit: int = 50,
        offset: int = 0,
    ) -> list[CouponRedemption]:
        async with self._read() as db:
            return await redemptions.list_redemptions(db, status=status, limit=limit, offset=offset)
