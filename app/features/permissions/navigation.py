"""
Dashboard tab navigation with plan-locked items.

Locked items stay listed (with an upgrade badge) but activating one returns an
upgrade prompt and leaves the active tab where it was.
"""
from dataclasses import dataclass
from typing import Callable, Optional, Sequence

from app.features.permissions.tables import Module, PlanTier, minimum_plan_for


ModulePredicate = Callable[[Module], bool]


@dataclass(frozen=True)
class NavigationItem:
    id: str
    label: str
    module: Module


@dataclass(frozen=True)
class NavigationEntry:
    id: str
    label: str
    module: Module
    locked: bool
    active: bool
    required_plan: Optional[PlanTier] = None


@dataclass(frozen=True)
class UpgradePrompt:
    module: Module
    required_plan: Optional[PlanTier]
    message: str


@dataclass(frozen=True)
class NavigationResult:
    switched: bool
    active_id: Optional[str]
    upgrade_prompt: Optional[UpgradePrompt] = None
    error: Optional[str] = None


DASHBOARD_TABS: tuple[NavigationItem, ...] = (
    NavigationItem("overview", "Overview", Module.ANALYTICS),
    NavigationItem("questions", "Questions", Module.QUESTIONS),
    NavigationItem("feedback", "Feedback", Module.FEEDBACK),
    NavigationItem("customer-insights", "Customer Insights", Module.CUSTOMER_INSIGHTS),
    NavigationItem("sentiment", "Sentiment", Module.SENTIMENT),
    NavigationItem("performance", "Performance", Module.PERFORMANCE),
    NavigationItem("members", "Members", Module.MEMBERS),
    NavigationItem("settings", "Settings", Module.SETTINGS),
)


class TabNavigator:
    def __init__(
        self,
        items: Sequence[NavigationItem],
        is_accessible: ModulePredicate,
        active_id: Optional[str] = None,
    ):
        self.items = list(items)
        self._is_accessible = is_accessible
        self._by_id = {item.id: item for item in self.items}
        if active_id is not None and (active_id not in self._by_id or self.is_locked(active_id)):
            active_id = None
        # Default to the first unlocked tab
        if active_id is None:
            active_id = next((i.id for i in self.items if not self.is_locked(i.id)), None)
        self.active_id = active_id

    def is_locked(self, item_id: str) -> bool:
        return not self._is_accessible(self._by_id[item_id].module)

    def entries(self) -> list[NavigationEntry]:
        entries = []
        for item in self.items:
            locked = self.is_locked(item.id)
            entries.append(NavigationEntry(
                id=item.id,
                label=item.label,
                module=item.module,
                locked=locked,
                active=item.id == self.active_id,
                required_plan=minimum_plan_for(item.module) if locked else None,
            ))
        return entries

    def activate(self, item_id: str) -> NavigationResult:
        item = self._by_id.get(item_id)
        if item is None:
            return NavigationResult(switched=False, active_id=self.active_id, error=f"Unknown tab '{item_id}'")
        if self.is_locked(item_id):
            required = minimum_plan_for(item.module)
            plan_name = required.value if required else "a higher"
            prompt = UpgradePrompt(
                module=item.module,
                required_plan=required,
                message=f"{item.label} is available on the {plan_name} plan. Upgrade to unlock it.",
            )
            return NavigationResult(switched=False, active_id=self.active_id, upgrade_prompt=prompt)
        switched = item_id != self.active_id
        self.active_id = item_id
        return NavigationResult(switched=switched, active_id=self.active_id)
