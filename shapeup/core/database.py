"""
Database Configuration

Supabase client for REST API access (already pooled via PostgREST).

The client is created on first use so that local runs and tests using the
in-memory repository never need Supabase credentials.

Tables used by the challenge core:
- challenges
- challenge_participants (unique user_id + challenge_id)
- weight_records (append-only, ordered by recorded_at then sequence)
- weight_record_reviews
- challenge_chat_messages
- feed_posts
- feed_comments
- challenge_settlements (unique challenge_id)
- users (stripe_connect_account_id, stripe_connect_onboarding_complete)
"""

from typing import Optional

from supabase import create_client, Client
from shapeup.core.config import settings


_supabase: Optional[Client] = None


def get_supabase_client() -> Client:
    """
    Get Supabase client instance.

    This uses the REST API which is already connection-pooled via PostgREST.
    """
    global _supabase
    if _supabase is None:
        _supabase = create_client(settings.SUPABASE_URL, settings.SUPABASE_SERVICE_KEY)
    return _supabase
