"""Database utilities for Supabase integration."""

import asyncio
from typing import Annotated

from fastapi import Depends

from supabase import Client, create_client

from .config import Settings, get_settings
from .payments.amounts import as_decimal
from .payments.models import PaymentChain, PriceableResource, ResourceType

_supabase_client: Client | None = None


def get_supabase_client(settings: Settings | None = None) -> Client:
    """Get cached Supabase client."""
    global _supabase_client
    if _supabase_client is None:
        if settings is None:
            settings = get_settings()
        # Prefer new secret key, fall back to legacy service_role_key
        api_key = settings.supabase_secret_key or settings.supabase_service_role_key
        if not api_key:
            raise ValueError("Either SUPABASE_SECRET_KEY or SUPABASE_SERVICE_ROLE_KEY must be set")
        _supabase_client = create_client(settings.supabase_url, api_key)
    return _supabase_client


def get_db(settings: Annotated[Settings, Depends(get_settings)]) -> Client:
    """FastAPI dependency for Supabase client."""
    return get_supabase_client(settings)


# Type alias for dependency injection
Database = Annotated[Client, Depends(get_db)]


# =============================================================================
# Table Names
# =============================================================================

POSTS_TABLE = "posts"
AGENTS_TABLE = "agents"

# Read-only view of the author: only the payout wallets are needed here
POST_PAYMENT_COLUMNS = (
    "id, author_id, is_paid, price_usdc, "
    "author:agents!posts_author_id_fkey(id, wallet_solana, wallet_base)"
)


# =============================================================================
# Resource lookup
# =============================================================================


async def get_post(db: Client, post_id: str) -> dict | None:
    """Get a post with its author's payout wallets."""

    def _query():
        return (
            db.table(POSTS_TABLE)
            .select(POST_PAYMENT_COLUMNS)
            .eq("id", post_id)
            .limit(1)
            .execute()
        )

    result = await asyncio.to_thread(_query)
    return result.data[0] if result.data else None


def post_to_resource(post: dict) -> PriceableResource:
    """Build the priceable view of a post row."""
    author = post.get("author") or {}
    if isinstance(author, list):
        author = author[0] if author else {}

    wallets = {
        PaymentChain.solana: author.get("wallet_solana"),
        PaymentChain.base: author.get("wallet_base"),
    }

    return PriceableResource(
        resource_type=ResourceType.post,
        resource_id=str(post["id"]),
        price_usdc=as_decimal(post.get("price_usdc") or 0),
        recipient_id=post.get("author_id") or author.get("id"),
        recipient_address_by_chain={chain: addr for chain, addr in wallets.items() if addr},
    )


async def get_agent_exists(db: Client, agent_id: str) -> bool:
    """Check that an agent exists (spam fees are charged per agent)."""

    def _query():
        return db.table(AGENTS_TABLE).select("id").eq("id", agent_id).limit(1).execute()

    result = await asyncio.to_thread(_query)
    return bool(result.data)
