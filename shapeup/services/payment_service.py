"""
Payment collaborator seam.

Card checkout and the actual money movement live with the payment processor
(Stripe Connect). The core only needs to know where a winner's payout should
go; entry-fee confirmations arrive through ChallengeService.confirm_payment.
"""

from abc import ABC, abstractmethod
from typing import Dict, Optional

from shapeup.core.config import settings
from shapeup.services.logger import logger


class PaymentGateway(ABC):
    @abstractmethod
    async def resolve_payout_destination(self, user_id: str) -> Optional[str]:
        """Payout account reference for the user, or None if they cannot be paid."""


class SupabasePaymentGateway(PaymentGateway):
    """Reads the Stripe Connect account stored on the user row."""

    def __init__(self, client=None) -> None:
        self._client = client

    @property
    def supabase(self):
        if self._client is None:
            from shapeup.core.database import get_supabase_client

            self._client = get_supabase_client()
        return self._client

    async def resolve_payout_destination(self, user_id: str) -> Optional[str]:
        result = (
            self.supabase.table("users")
            .select("stripe_connect_account_id, stripe_connect_onboarding_complete")
            .eq("id", user_id)
            .maybe_single()
            .execute()
        )
        if not result or not result.data:
            return None

        account_id = result.data.get("stripe_connect_account_id")
        if not account_id:
            return None
        # Stripe rejects transfers to accounts that have not finished onboarding
        if not result.data.get("stripe_connect_onboarding_complete"):
            logger.info(
                f"Payout account for user {user_id} has not completed onboarding",
                {"user_id": user_id},
            )
            return None
        return account_id


class InMemoryPaymentGateway(PaymentGateway):
    """Destination registry for local runs and tests."""

    def __init__(self, destinations: Optional[Dict[str, str]] = None) -> None:
        self.destinations: Dict[str, str] = dict(destinations or {})

    def register_destination(self, user_id: str, destination: str) -> None:
        self.destinations[user_id] = destination

    async def resolve_payout_destination(self, user_id: str) -> Optional[str]:
        return self.destinations.get(user_id)


_payment_gateway: Optional[PaymentGateway] = None


def get_payment_gateway() -> PaymentGateway:
    global _payment_gateway
    if _payment_gateway is None:
        if settings.STORAGE_BACKEND == "supabase":
            _payment_gateway = SupabasePaymentGateway()
        else:
            _payment_gateway = InMemoryPaymentGateway()
    return _payment_gateway
