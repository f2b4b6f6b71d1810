"""
Leader election using Redis for the controller.
Ensures only ONE replica runs reconcile workers at a time.
"""
from typing import Optional

import redis.asyncio as redis

from vdb_controller.config.logging import get_logger
from vdb_controller.config.redis import RedisConnection
from vdb_controller.services import metrics

logger = get_logger(__name__)

# Only extend or delete the lease if we still hold it
_RENEW_SCRIPT = """
if redis.call('get', KEYS[1]) == ARGV[1] then
    return redis.call('expire', KEYS[1], ARGV[2])
end
return 0
"""

_RELEASE_SCRIPT = """
if redis.call('get', KEYS[1]) == ARGV[1] then
    return redis.call('del', KEYS[1])
end
return 0
"""


class LeaderElection:
    """
    Simple leader election using Redis SET with NX and EX.

    Ensures only ONE replica reconciles even with multiple replicas running.
    """

    def __init__(
        self,
        instance_id: str,
        election_id: str,
        lease_duration: int = 30,
        redis_client: Optional[redis.Redis] = None,
    ):
        """
        Initialize leader election.

        Args:
            instance_id: Unique instance identifier
            election_id: Lease name shared by all replicas
            lease_duration: Lease duration in seconds
            redis_client: Optional Redis client. If not provided, uses RedisConnection.
        """
        self.instance_id = instance_id
        self.lease_duration = lease_duration
        self.leader_key = f"vdb:leader:{election_id}"
        self.is_leader = False
        self._redis = redis_client

    async def _client(self) -> redis.Redis:
        if self._redis is None:
            self._redis = await RedisConnection.get_client()
        return self._redis

    def _set_leader(self, is_leader: bool) -> None:
        if is_leader and not self.is_leader:
            logger.info("leadership_acquired", instance_id=self.instance_id)
        elif not is_leader and self.is_leader:
            logger.info("leadership_lost", instance_id=self.instance_id)
        self.is_leader = is_leader
        metrics.leader.set(1 if is_leader else 0)

    async def acquire_leadership(self) -> bool:
        """Try to acquire leadership (or confirm we already hold it)."""
        client = await self._client()

        acquired = await client.set(
            self.leader_key,
            self.instance_id,
            nx=True,
            ex=self.lease_duration,
        )
        if acquired:
            self._set_leader(True)
            return True

        current_leader = await client.get(self.leader_key)
        self._set_leader(current_leader == self.instance_id)
        return self.is_leader

    async def renew_lease(self) -> bool:
        """Renew leadership lease."""
        if not self.is_leader:
            return False

        client = await self._client()
        renewed = await client.eval(_RENEW_SCRIPT, 1, self.leader_key, self.instance_id, self.lease_duration)
        self._set_leader(bool(renewed))
        if renewed:
            logger.debug("leadership_lease_renewed", instance_id=self.instance_id)
        return self.is_leader

    async def release_leadership(self) -> None:
        """Release leadership (on shutdown)."""
        if not self.is_leader:
            return

        client = await self._client()
        released = await client.eval(_RELEASE_SCRIPT, 1, self.leader_key, self.instance_id)
        if released:
            logger.info("leadership_released", instance_id=self.instance_id)
        self._set_leader(False)

    def step_down(self) -> None:
        """Drop leadership locally when the lease can no longer be confirmed."""
        self._set_leader(False)
