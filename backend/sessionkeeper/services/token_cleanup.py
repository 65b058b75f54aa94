"""Garbage collection of expired refresh token records.

Records are deleted once past ``expires_at`` whether or not they were
revoked; revoked records before that point are kept for auditing.
"""

import asyncio

from core.logging import logger
from services.stores.base import TokenRecordStore


async def purge_expired_tokens(token_store: TokenRecordStore) -> int:
    """Delete expired records once and return how many were removed."""
    deleted = await token_store.delete_expired()
    if deleted:
        logger.info("Purged {} expired refresh token records", deleted)
    return deleted


async def run_token_cleanup(token_store: TokenRecordStore, interval_seconds: float):
    """Purge expired records every ``interval_seconds`` until cancelled.

    A failed sweep is logged and retried on the next tick.
    """
    logger.info("Token cleanup loop started interval={}s", interval_seconds)
    while True:
        try:
            await purge_expired_tokens(token_store)
        except Exception:
            logger.exception("Expired refresh token purge failed")
        await asyncio.sleep(interval_seconds)
