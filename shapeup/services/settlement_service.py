"""
Settlement Service

Runs once per completed challenge: determines winners against the goal and
splits the pool under the platform fee.

Rules:
- Only records dated at or before the challenge end date count.
- Only paid participants fund the pool and only paid participants can win.
  Goal-reaching unpaid participants are reported as ineligible.
- Platform fee = floor(pool * PLATFORM_FEE_RATE); the rest is split evenly
  and the remainder goes one unit at a time to winners in rank order, so
  payouts + fee == pool exactly.
- An empty winner set produces a NoWinnersError value and no payouts; refund
  or rollover is decided elsewhere.
- The first stored result is authoritative: repeat calls return it.
"""

import asyncio
import uuid
from datetime import datetime, timezone
from decimal import Decimal, ROUND_FLOOR
from typing import Any, Dict, List, Optional, Sequence, Tuple

from shapeup.core.cache import get_redis_client
from shapeup.core.config import settings
from shapeup.core.exceptions import IllegalStateError, NotFoundError
from shapeup.core.repository import ChallengeRepository, get_repository
from shapeup.models.challenge import Challenge
from shapeup.models.realtime import RealtimeEvent
from shapeup.models.settlement import (
    IneligibleParticipant,
    NoWinnersError,
    PayoutInstruction,
    SettlementResult,
)
from shapeup.models.weight import LeaderboardEntry
from shapeup.services.leaderboard_service import LeaderboardService
from shapeup.services.logger import logger
from shapeup.services.payment_service import PaymentGateway, get_payment_gateway
from shapeup.services.realtime_service import EventBroadcaster, event_broadcaster

SETTLEMENT_LOCK_PREFIX = "settlement:lock:"


def split_pool(
    pool: int, winner_count: int, fee_rate: Decimal
) -> Tuple[int, List[int]]:
    """
    Split `pool` among `winner_count` winners after the platform fee.

    Returns (platform_fee, shares) with shares ordered best performer first.
    """
    if winner_count <= 0:
        raise ValueError("winner_count must be positive")

    platform_fee = int(
        (Decimal(pool) * fee_rate).to_integral_value(rounding=ROUND_FLOOR)
    )
    distributable = pool - platform_fee
    base, remainder = divmod(distributable, winner_count)
    shares = [base + 1 if index < remainder else base for index in range(winner_count)]

    assert sum(shares) + platform_fee == pool, "payout split does not conserve the pool"
    return platform_fee, shares


def select_winners(
    leaderboard: Sequence[LeaderboardEntry], percentage_goal: Decimal
) -> Tuple[List[LeaderboardEntry], List[LeaderboardEntry]]:
    """Split goal reachers into (paid winners, unpaid ineligible), both in rank order."""
    reached = [e for e in leaderboard if e.percentage_lost >= percentage_goal]
    winners = [e for e in reached if e.paid]
    ineligible = [e for e in reached if not e.paid]
    return winners, ineligible


def compute_settlement(
    challenge: Challenge,
    leaderboard: Sequence[LeaderboardEntry],
    destinations: Dict[str, Optional[str]],
    fee_rate: Decimal,
    settled_at: datetime,
) -> SettlementResult:
    paid_count = sum(1 for entry in leaderboard if entry.paid)
    pool = challenge.entry_fee * paid_count
    winners, unpaid = select_winners(leaderboard, challenge.percentage_goal)

    ineligible = [
        IneligibleParticipant(
            user_id=entry.user_id,
            rank=entry.rank,
            percentage_lost=entry.percentage_lost,
        )
        for entry in unpaid
    ]

    base = dict(
        challenge_id=challenge.id,
        entry_fee=challenge.entry_fee,
        percentage_goal=challenge.percentage_goal,
        paid_participants=paid_count,
        pool=pool,
        ineligible=ineligible,
        settled_at=settled_at,
    )

    if not winners:
        return SettlementResult(
            **base,
            platform_fee=0,
            distributable=0,
            payouts=[],
            no_winners=NoWinnersError(
                challenge_id=challenge.id, pool=pool, paid_participants=paid_count
            ),
        )

    platform_fee, shares = split_pool(pool, len(winners), fee_rate)
    payouts = []
    for entry, amount in zip(winners, shares):
        destination = destinations.get(entry.user_id)
        payouts.append(
            PayoutInstruction(
                user_id=entry.user_id,
                rank=entry.rank,
                percentage_lost=entry.percentage_lost,
                amount=amount,
                destination=destination,
                status="ready" if destination else "blocked",
            )
        )

    return SettlementResult(
        **base,
        platform_fee=platform_fee,
        distributable=pool - platform_fee,
        payouts=payouts,
    )


class SettlementService:
    """Service for settling completed challenges"""

    def __init__(
        self,
        repository: Optional[ChallengeRepository] = None,
        leaderboard_service: Optional[LeaderboardService] = None,
        payment_gateway: Optional[PaymentGateway] = None,
        broadcaster: Optional[EventBroadcaster] = None,
        redis_client: Any = None,
        fee_rate: Optional[Decimal] = None,
    ) -> None:
        self.repository = repository or get_repository()
        self.leaderboard_service = leaderboard_service or LeaderboardService(
            self.repository
        )
        self.payment_gateway = payment_gateway or get_payment_gateway()
        self.broadcaster = broadcaster or event_broadcaster
        self._redis = redis_client
        self.fee_rate = settings.PLATFORM_FEE_RATE if fee_rate is None else fee_rate
        self._locks: Dict[str, asyncio.Lock] = {}

    def _redis_client(self):
        if self._redis is not None:
            return self._redis
        return get_redis_client()

    def _acquire_lock(self, challenge_id: str, token: str) -> bool:
        """Cross-process settlement lock (SET NX EX)."""
        try:
            redis = self._redis_client()
            if not redis or not hasattr(redis, "set"):
                return True  # No redis: the stored-result check still prevents double payouts
            acquired = redis.set(
                f"{SETTLEMENT_LOCK_PREFIX}{challenge_id}",
                token,
                nx=True,
                ex=settings.SETTLEMENT_LOCK_TTL_SECONDS,
            )
            return bool(acquired)
        except Exception as e:
            logger.warning(f"Failed to acquire settlement lock: {e}")
            return True

    def _release_lock(self, challenge_id: str, token: str) -> None:
        """Release lock only if still owned by this token."""
        try:
            redis = self._redis_client()
            if not redis or not hasattr(redis, "eval"):
                return
            lua = """
            if redis.call("get", KEYS[1]) == ARGV[1] then
              return redis.call("del", KEYS[1])
            else
              return 0
            end
            """
            redis.eval(lua, 1, f"{SETTLEMENT_LOCK_PREFIX}{challenge_id}", token)
        except Exception as e:
            logger.warning(f"Failed to release settlement lock: {e}")

    async def get_settlement(self, challenge_id: str) -> Optional[SettlementResult]:
        return await self.repository.get_settlement(challenge_id)

    async def settle(self, challenge_id: str) -> SettlementResult:
        """
        Settle a completed challenge.

        Raises:
            NotFoundError: unknown challenge
            IllegalStateError: challenge not completed, or another process
                is settling it right now

        Returns:
            The authoritative settlement result (possibly from an earlier run)
        """
        challenge = await self.repository.get_challenge(challenge_id)
        if challenge is None:
            raise NotFoundError("Challenge not found")
        if challenge.status != "completed":
            raise IllegalStateError(
                f"Challenge must be completed to settle (status: {challenge.status})"
            )

        existing = await self.repository.get_settlement(challenge_id)
        if existing is not None:
            self._locks.pop(challenge_id, None)
            return existing

        lock = self._locks.setdefault(challenge_id, asyncio.Lock())
        async with lock:
            existing = await self.repository.get_settlement(challenge_id)
            if existing is not None:
                return existing

            token = uuid.uuid4().hex
            if not self._acquire_lock(challenge_id, token):
                raise IllegalStateError("Settlement already in progress")
            try:
                result = await self._compute(challenge)
                stored, created = await self.repository.insert_settlement_if_absent(
                    result
                )
            finally:
                self._release_lock(challenge_id, token)

        # A stored result short-circuits every later call, so the lock is done
        self._locks.pop(challenge_id, None)

        if created:
            self._log_result(stored)
            await self.broadcaster.publish(
                RealtimeEvent(
                    kind="challenge-settled",
                    challenge_id=challenge_id,
                    payload={
                        "pool": stored.pool,
                        "platform_fee": stored.platform_fee,
                        "no_winners": stored.no_winners is not None,
                        "winners": [
                            {"user_id": p.user_id, "rank": p.rank, "amount": p.amount}
                            for p in stored.payouts
                        ],
                    },
                )
            )
        return stored

    async def _compute(self, challenge: Challenge) -> SettlementResult:
        leaderboard = await self.leaderboard_service.get_leaderboard(
            challenge.id, recorded_before=challenge.end_date
        )
        winners, _ = select_winners(leaderboard, challenge.percentage_goal)

        destinations: Dict[str, Optional[str]] = {}
        for entry in winners:
            try:
                destinations[entry.user_id] = (
                    await self.payment_gateway.resolve_payout_destination(entry.user_id)
                )
            except Exception as e:
                logger.warning(
                    f"Could not resolve payout destination for user {entry.user_id}: {e}",
                    {"challenge_id": challenge.id, "user_id": entry.user_id},
                )
                destinations[entry.user_id] = None

        return compute_settlement(
            challenge,
            leaderboard,
            destinations,
            self.fee_rate,
            settled_at=datetime.now(timezone.utc),
        )

    def _log_result(self, result: SettlementResult) -> None:
        if result.no_winners is not None:
            logger.info(
                f"Challenge {result.challenge_id} settled with no winners",
                {"pool": result.pool, "paid_participants": result.paid_participants},
            )
            return
        blocked = [p.user_id for p in result.payouts if p.status == "blocked"]
        logger.info(
            f"Challenge {result.challenge_id} settled: {len(result.payouts)} winners",
            {
                "pool": result.pool,
                "platform_fee": result.platform_fee,
                "blocked_payouts": blocked,
            },
        )
