"""RoleResolver caching, de-duplication and invalidation."""
import asyncio

import pytest

from app.features.permissions.resolver import ResolutionState, RoleResolver
from app.features.permissions.tables import PlanTier, Role
from tests.fakes import FakeAccessProvider


@pytest.fixture
def provider():
    provider = FakeAccessProvider()
    provider.add_organization("org-a", PlanTier.STARTER)
    provider.add_organization("org-b", PlanTier.ENTERPRISE)
    provider.add_member("alice", "org-a", Role.ADMIN)
    provider.add_member("alice", "org-b", Role.VIEWER)
    provider.admins.add("root")
    return provider


class FakeClock:
    def __init__(self):
        self.now = 1000.0

    def __call__(self):
        return self.now


@pytest.mark.asyncio
async def test_resolves_membership_role(provider):
    resolution = await RoleResolver(provider).resolve("alice", "org-a")

    assert resolution.state is ResolutionState.RESOLVED
    assert resolution.role is Role.ADMIN
    assert resolution.organization.plan is PlanTier.STARTER
    assert resolution.is_system_admin is False


@pytest.mark.asyncio
async def test_missing_user_is_unauthenticated(provider):
    resolution = await RoleResolver(provider).resolve(None, "org-a")

    assert resolution.state is ResolutionState.UNAUTHENTICATED
    assert provider.calls["membership"] == 0


@pytest.mark.asyncio
async def test_missing_organization_is_not_applicable(provider):
    resolution = await RoleResolver(provider).resolve("alice", None)

    assert resolution.state is ResolutionState.NOT_APPLICABLE
    assert resolution.role is Role.NONE


@pytest.mark.asyncio
async def test_non_member_resolves_to_none(provider):
    resolution = await RoleResolver(provider).resolve("mallory", "org-a")

    assert resolution.state is ResolutionState.RESOLVED
    assert resolution.role is Role.NONE


@pytest.mark.asyncio
async def test_unknown_organization_resolves_to_none(provider):
    provider.add_member("alice", "org-gone", Role.OWNER)

    resolution = await RoleResolver(provider).resolve("alice", "org-gone")

    assert resolution.role is Role.NONE
    assert resolution.organization is None


@pytest.mark.asyncio
async def test_system_admin_skips_membership_lookup(provider):
    resolution = await RoleResolver(provider).resolve("root", "org-b")

    assert resolution.role is Role.OWNER
    assert resolution.is_system_admin is True
    assert resolution.organization.plan is PlanTier.ENTERPRISE
    assert provider.calls["membership"] == 0


@pytest.mark.asyncio
async def test_result_is_cached_until_ttl_expires(provider):
    clock = FakeClock()
    resolver = RoleResolver(provider, ttl_seconds=300, clock=clock)

    await resolver.resolve("alice", "org-a")
    await resolver.resolve("alice", "org-a")
    assert provider.calls["membership"] == 1

    clock.now += 301
    await resolver.resolve("alice", "org-a")
    assert provider.calls["membership"] == 2


@pytest.mark.asyncio
async def test_cache_is_keyed_per_organization(provider):
    resolver = RoleResolver(provider)

    a = await resolver.resolve("alice", "org-a")
    b = await resolver.resolve("alice", "org-b")

    assert (a.role, b.role) == (Role.ADMIN, Role.VIEWER)
    assert provider.calls["membership"] == 2


@pytest.mark.asyncio
async def test_concurrent_callers_share_one_lookup(provider):
    resolver = RoleResolver(provider)
    gate = provider.hold("org-a")

    tasks = [asyncio.create_task(resolver.resolve("alice", "org-a")) for _ in range(3)]
    await asyncio.sleep(0)
    await asyncio.sleep(0)
    gate.set()
    results = await asyncio.gather(*tasks)

    assert provider.calls["membership"] == 1
    assert {r.role for r in results} == {Role.ADMIN}


@pytest.mark.asyncio
async def test_invalidation_during_lookup_keeps_stale_result_out_of_cache(provider):
    resolver = RoleResolver(provider)
    gate = provider.hold("org-a")

    pending = asyncio.create_task(resolver.resolve("alice", "org-a"))
    await asyncio.sleep(0)
    await asyncio.sleep(0)
    resolver.invalidate("alice", "org-a")
    provider.add_member("alice", "org-a", Role.VIEWER)
    gate.set()
    await pending

    fresh = await resolver.resolve("alice", "org-a")
    assert fresh.role is Role.VIEWER
    assert provider.calls["membership"] == 2


@pytest.mark.asyncio
async def test_invalidate_drops_cached_role(provider):
    resolver = RoleResolver(provider)
    await resolver.resolve("alice", "org-a")

    provider.add_member("alice", "org-a", Role.ANALYST)
    resolver.invalidate("alice", "org-a")

    assert (await resolver.resolve("alice", "org-a")).role is Role.ANALYST


@pytest.mark.asyncio
async def test_invalidate_organization_drops_every_member(provider):
    provider.add_member("bob", "org-a", Role.VIEWER)
    resolver = RoleResolver(provider)
    await resolver.resolve("alice", "org-a")
    await resolver.resolve("bob", "org-a")
    await resolver.resolve("alice", "org-b")

    resolver.invalidate_organization("org-a")
    await resolver.resolve("alice", "org-a")
    await resolver.resolve("bob", "org-a")
    await resolver.resolve("alice", "org-b")

    assert provider.calls["membership"] == 5


@pytest.mark.asyncio
async def test_invalidate_user_drops_all_their_organizations(provider):
    resolver = RoleResolver(provider)
    await resolver.resolve("alice", "org-a")
    await resolver.resolve("alice", "org-b")

    resolver.invalidate_user("alice")
    await resolver.resolve("alice", "org-a")
    await resolver.resolve("alice", "org-b")

    assert provider.calls["membership"] == 4


@pytest.mark.asyncio
async def test_lookup_failure_is_an_error_state_and_not_cached(provider):
    resolver = RoleResolver(provider)
    provider.fail = True

    failed = await resolver.resolve("alice", "org-a")
    assert failed.state is ResolutionState.ERROR
    assert failed.role is Role.NONE
    assert "backend unavailable" in failed.error

    provider.fail = False
    recovered = await resolver.resolve("alice", "org-a")
    assert recovered.state is ResolutionState.RESOLVED
    assert recovered.role is Role.ADMIN


@pytest.mark.asyncio
async def test_expired_entries_are_dropped_when_new_roles_are_cached(provider):
    clock = FakeClock()
    resolver = RoleResolver(provider, ttl_seconds=300, clock=clock)
    await resolver.resolve("alice", "org-a")

    clock.now += 301
    await resolver.resolve("alice", "org-b")

    assert set(resolver._cache) == {("alice", "org-b")}


@pytest.mark.asyncio
async def test_invalidation_leaves_no_bookkeeping_behind(provider):
    resolver = RoleResolver(provider)
    gate = provider.hold("org-a")
    pending = asyncio.create_task(resolver.resolve("alice", "org-a"))
    await asyncio.sleep(0)
    await asyncio.sleep(0)

    resolver.invalidate("alice", "org-a")
    gate.set()
    await pending

    assert resolver._cache == {}
    assert resolver._inflight == {}


@pytest.mark.asyncio
async def test_clear_fences_lookups_in_flight(provider):
    resolver = RoleResolver(provider)
    gate = provider.hold("org-a")
    pending = asyncio.create_task(resolver.resolve("alice", "org-a"))
    await asyncio.sleep(0)
    await asyncio.sleep(0)

    resolver.clear()
    gate.set()
    await pending
    await resolver.resolve("alice", "org-a")

    assert provider.calls["membership"] == 2
