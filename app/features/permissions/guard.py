"""
Access guard: turns a role resolution into exactly one render outcome.

AccessSession holds the viewer's explicit organization context. Results that
arrive for an organization that is no longer current are discarded instead of
being applied to the new context.
"""
import enum
import inspect
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Optional, Union

from app.features.permissions.resolver import AccessResolution, ResolutionState, RoleResolver
from app.features.permissions.tables import (
    Module,
    Permission,
    PlanTier,
    Role,
    has_module_access,
    minimum_plan_for,
    minimum_role_for,
)
from app.utils import get_logger


log = get_logger(__name__)

RequestAccessCallback = Callable[[], Union[None, Awaitable[None]]]


class GuardState(str, enum.Enum):
    LOADING = "loading"
    GRANTED = "granted"
    DENIED = "denied"
    ERROR = "error"
    UNAUTHENTICATED = "unauthenticated"


@dataclass(frozen=True)
class GuardDecision:
    state: GuardState
    organization_id: Optional[str] = None
    role: Role = Role.NONE
    reason: Optional[str] = None
    required_role: Optional[Role] = None
    required_plan: Optional[PlanTier] = None
    can_request_access: bool = False

    @property
    def granted(self) -> bool:
        return self.state is GuardState.GRANTED


LOADING = GuardDecision(state=GuardState.LOADING)


class AccessSession:
    """
    One viewer's access state for the organization currently in view.

    The organization id is always passed in explicitly; switching it fences
    off any resolution still in flight for the previous organization.
    """

    def __init__(self, resolver: RoleResolver, user_id: Optional[str], organization_id: Optional[str] = None):
        self._resolver = resolver
        self.user_id = user_id
        self._organization_id = organization_id
        self._version = 0
        self._current: Optional[AccessResolution] = None

    @property
    def organization_id(self) -> Optional[str]:
        return self._organization_id

    @property
    def current(self) -> Optional[AccessResolution]:
        """Latest resolution applied for the current organization, None while loading."""
        return self._current

    def switch_organization(self, organization_id: Optional[str]) -> None:
        if organization_id == self._organization_id:
            return
        self._organization_id = organization_id
        self._version += 1
        self._current = None

    def refresh(self) -> None:
        """Force re-resolution, e.g. after a role change made elsewhere."""
        if self.user_id and self._organization_id:
            self._resolver.invalidate(self.user_id, self._organization_id)
        self._version += 1
        self._current = None

    async def resolve(self) -> Optional[AccessResolution]:
        """
        Resolve the current organization.

        Returns None when the organization changed (or a refresh happened)
        while the lookup was in flight; the stale result is not applied.
        """
        version = self._version
        requested = self._organization_id
        resolution = await self._resolver.resolve(self.user_id, requested)
        if version != self._version:
            log.debug("Discarding resolution for org %s: context changed to %s", requested, self._organization_id)
            return None
        self._current = resolution
        return resolution


class AccessGuard:
    """
    Wraps protected content behind a permission and/or a module.

    Usage:
        guard = AccessGuard(permission=Permission.MANAGE_QUESTIONS)
        decision = await guard.evaluate(session)
        view = guard.render(decision, children=page, fallback=denied_card)
    """

    def __init__(
        self,
        permission: Optional[Union[Permission, str]] = None,
        module: Optional[Union[Module, str]] = None,
        on_request_access: Optional[RequestAccessCallback] = None,
        can_request_access: bool = False,
    ):
        self.permission = permission
        self.module = module
        self.on_request_access = on_request_access
        # Denials offer a way to ask for access
        self.can_request_access = can_request_access or on_request_access is not None

    def decide(self, resolution: Optional[AccessResolution]) -> GuardDecision:
        if resolution is None:
            return LOADING

        org_id = resolution.organization_id
        if resolution.state is ResolutionState.UNAUTHENTICATED:
            return GuardDecision(state=GuardState.UNAUTHENTICATED, organization_id=org_id, reason="Sign in required")
        if resolution.state is ResolutionState.ERROR:
            return GuardDecision(
                state=GuardState.ERROR,
                organization_id=org_id,
                reason=resolution.error or "Could not verify access",
            )
        if resolution.state is ResolutionState.NOT_APPLICABLE:
            return self._deny(resolution, "No organization selected")

        # Unknown keys deny everyone, system admins included
        required_role = None
        if self.permission is not None:
            required_role = minimum_role_for(self.permission)
            if required_role is None:
                return self._deny(resolution, f"Unknown permission '{_key(self.permission)}'")
        required_plan = None
        if self.module is not None:
            required_plan = minimum_plan_for(self.module)
            if required_plan is None:
                return self._deny(resolution, f"Unknown module '{_key(self.module)}'")

        if resolution.is_system_admin:
            return GuardDecision(state=GuardState.GRANTED, organization_id=org_id, role=resolution.role)

        if resolution.role is Role.NONE:
            return self._deny(resolution, "Not a member of this organization")

        if required_role is not None and resolution.role.level < required_role.level:
            return self._deny(
                resolution,
                f"Role '{resolution.role.value}' lacks permission '{_key(self.permission)}'",
                required_role=required_role,
            )

        if self.module is not None:
            organization = resolution.organization
            if organization is None or not has_module_access(
                organization.plan, organization.module_overrides, self.module
            ):
                return self._deny(
                    resolution,
                    f"Module '{_key(self.module)}' is not available on this plan",
                    required_plan=required_plan,
                )

        return GuardDecision(state=GuardState.GRANTED, organization_id=org_id, role=resolution.role)

    def _deny(self, resolution: AccessResolution, reason: str, **requirements) -> GuardDecision:
        log.debug("Access denied in org %s: %s", resolution.organization_id, reason)
        return GuardDecision(
            state=GuardState.DENIED,
            organization_id=resolution.organization_id,
            role=resolution.role,
            reason=reason,
            can_request_access=self.can_request_access,
            **requirements,
        )

    async def evaluate(self, session: AccessSession) -> GuardDecision:
        """Resolve the session's organization and decide; LOADING if the result went stale."""
        resolution = await session.resolve()
        return self.decide(resolution)

    @staticmethod
    def render(
        decision: GuardDecision,
        children: Any,
        fallback: Any = None,
        loading: Any = None,
        error_view: Any = None,
        sign_in: Any = None,
    ) -> Any:
        """Pick exactly one of the views for the decision."""
        if decision.state is GuardState.GRANTED:
            return children
        if decision.state is GuardState.DENIED:
            return fallback
        if decision.state is GuardState.ERROR:
            return error_view
        if decision.state is GuardState.UNAUTHENTICATED:
            return sign_in
        return loading

    async def request_access(self, decision: GuardDecision) -> bool:
        """
        Run the request-access callback for a denied decision.

        The callback only notifies; the decision is never changed by it.
        Returns whether the callback ran.
        """
        if decision.state is not GuardState.DENIED or self.on_request_access is None:
            return False
        result = self.on_request_access()
        if inspect.isawaitable(result):
            await result
        return True


def _key(value) -> str:
    return value.value if isinstance(value, enum.Enum) else str(value)
