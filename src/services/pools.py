from __future__ import annotations

from typing import Any

from src.domain.integration_errors import PoolForbidden, PoolNotFound


class PoolAccess:
    """Read-only view over the pools/pool_members tables owned by the pool service."""

    def __init__(self, db: Any) -> None:
        self._db = db

    def ensure_pool_access(self, pool_id: str, user_id: str) -> None:
        pool = self._db.table("pools").select("pool_id, owner_id").eq("pool_id", pool_id).limit(1).execute()
        if not pool.data:
            raise PoolNotFound(pool_id)
        if str(pool.data[0].get("owner_id")) == str(user_id):
            return
        member = (
            self._db.table("pool_members")
            .select("pool_id, user_id")
            .eq("pool_id", pool_id)
            .eq("user_id", user_id)
            .limit(1)
            .execute()
        )
        if not member.data:
            raise PoolForbidden(pool_id)
