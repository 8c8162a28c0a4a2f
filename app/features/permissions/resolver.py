"""
Role resolution for a (user, organization) pair.

Results are cached per key for a TTL. Concurrent callers for the same key
share one in-flight lookup, and an invalidation that happens while a lookup is
in flight keeps that lookup's result out of the cache.
"""
import asyncio
import enum
import time
from dataclasses import dataclass
from typing import Callable, Dict, Optional, Tuple

from app.features.permissions.providers import AccessDataProvider, AccessLookupError, OrganizationPlan
from app.features.permissions.tables import Role
from app.utils import get_logger


log = get_logger(__name__)

CacheKey = Tuple[str, str]


class ResolutionState(str, enum.Enum):
    RESOLVED = "resolved"
    NOT_APPLICABLE = "not_applicable"
    UNAUTHENTICATED = "unauthenticated"
    ERROR = "error"


@dataclass(frozen=True)
class AccessResolution:
    """Outcome of resolving a user's standing in one organization."""
    state: ResolutionState
    organization_id: Optional[str] = None
    role: Role = Role.NONE
    is_system_admin: bool = False
    organization: Optional[OrganizationPlan] = None
    error: Optional[str] = None

    @classmethod
    def unauthenticated(cls, organization_id: Optional[str] = None) -> "AccessResolution":
        return cls(state=ResolutionState.UNAUTHENTICATED, organization_id=organization_id)

    @classmethod
    def not_applicable(cls) -> "AccessResolution":
        return cls(state=ResolutionState.NOT_APPLICABLE)

    @classmethod
    def failed(cls, organization_id: str, error: str) -> "AccessResolution":
        return cls(state=ResolutionState.ERROR, organization_id=organization_id, error=error)


@dataclass
class _CacheEntry:
    resolution: AccessResolution
    expires_at: float


class RoleResolver:
    """
    Resolves and caches roles.

    Usage:
        resolver = RoleResolver(DatabaseAccessProvider(AsyncSessionLocal))
        resolution = await resolver.resolve(user.id, organization_id)
        if resolution.state is ResolutionState.RESOLVED:
            ...
    """

    def __init__(
        self,
        provider: AccessDataProvider,
        ttl_seconds: float = 300.0,
        clock: Callable[[], float] = time.monotonic,
    ):
        self._provider = provider
        self._ttl = ttl_seconds
        self._clock = clock
        self._cache: Dict[CacheKey, _CacheEntry] = {}
        self._inflight: Dict[CacheKey, asyncio.Task] = {}

    async def resolve(self, user_id: Optional[str], organization_id: Optional[str]) -> AccessResolution:
        if not user_id:
            return AccessResolution.unauthenticated(organization_id)
        if not organization_id:
            return AccessResolution.not_applicable()

        key = (user_id, organization_id)
        entry = self._cache.get(key)
        if entry is not None:
            if entry.expires_at > self._clock():
                return entry.resolution
            del self._cache[key]

        task = self._inflight.get(key)
        if task is None:
            task = asyncio.ensure_future(self._fetch(key))
            self._inflight[key] = task
            task.add_done_callback(lambda t, key=key: self._forget(key, t))
        # shield: one cancelled caller must not cancel the lookup others await
        return await asyncio.shield(task)

    def _forget(self, key: CacheKey, task: asyncio.Task) -> None:
        if self._inflight.get(key) is task:
            del self._inflight[key]

    async def _fetch(self, key: CacheKey) -> AccessResolution:
        user_id, organization_id = key
        try:
            resolution = await self._lookup(user_id, organization_id)
        except AccessLookupError as e:
            log.exception("Role lookup failed for user %s in org %s", user_id, organization_id)
            return AccessResolution.failed(organization_id, str(e))

        # Invalidation removes the task from _inflight; such a result is never cached
        if self._inflight.get(key) is asyncio.current_task():
            now = self._clock()
            self._prune_expired(now)
            self._cache[key] = _CacheEntry(resolution, now + self._ttl)
        else:
            log.debug("Discarding role for %s/%s: invalidated while in flight", user_id, organization_id)
        return resolution

    def _prune_expired(self, now: float) -> None:
        expired = [k for k, entry in self._cache.items() if entry.expires_at <= now]
        for key in expired:
            del self._cache[key]

    async def _lookup(self, user_id: str, organization_id: str) -> AccessResolution:
        if await self._provider.is_system_admin(user_id):
            organization = await self._provider.get_organization(organization_id)
            log.debug("User %s is system admin, skipping membership lookup", user_id)
            return AccessResolution(
                state=ResolutionState.RESOLVED,
                organization_id=organization_id,
                role=Role.OWNER,
                is_system_admin=True,
                organization=organization,
            )

        membership = await self._provider.get_membership(user_id, organization_id)
        organization = await self._provider.get_organization(organization_id)
        role = membership.role if membership is not None and organization is not None else Role.NONE
        log.debug("Resolved role %s for user %s in org %s", role.value, user_id, organization_id)
        return AccessResolution(
            state=ResolutionState.RESOLVED,
            organization_id=organization_id,
            role=role,
            organization=organization,
        )

    def invalidate(self, user_id: str, organization_id: str) -> None:
        """Drop the cached role and fence off any lookup already in flight."""
        key = (user_id, organization_id)
        self._cache.pop(key, None)
        self._inflight.pop(key, None)

    def invalidate_user(self, user_id: str) -> None:
        keys = {k for k in list(self._cache) + list(self._inflight) if k[0] == user_id}
        for key in keys:
            self.invalidate(*key)

    def invalidate_organization(self, organization_id: str) -> None:
        keys = {k for k in list(self._cache) + list(self._inflight) if k[1] == organization_id}
        for key in keys:
            self.invalidate(*key)

    def clear(self) -> None:
        self._cache.clear()
        self._inflight.clear()
