"""Plan-shape assertions."""

from typing import Iterable, Sequence

from ..exceptions import ModuleAssertionError
from ..terraform.plan import PlanResult, strip_instance_keys


def require_planned_resource(plan: PlanResult, address: str) -> None:
    """Fail unless address is among the planned resource keys.

    ``azurerm_subnet.subnets`` matches any ``azurerm_subnet.subnets[...]``
    instance; a full instance address must match exactly.
    """
    if plan.has_resource(address):
        return
    raise ModuleAssertionError(
        f"Planned values do not contain resource '{address}'",
        expected=address,
        actual=sorted(plan.planned_values),
        address=address,
    )


def require_planned_resources(plan: PlanResult, addresses: Iterable[str]) -> None:
    """Fail naming every address missing from the plan."""
    keys = plan.planned_keys()
    missing = [a for a in addresses if a not in keys]
    if missing:
        raise ModuleAssertionError(
            f"Planned values are missing {len(missing)} resource(s): {', '.join(missing)}",
            expected=missing,
            actual=sorted(plan.planned_values),
        )


def require_resource_change_actions(
    plan: PlanResult, address: str, actions: Sequence[str]
) -> None:
    """Fail unless every change matching address plans exactly these actions."""
    changes = [
        c
        for c in plan.resource_changes
        if c.address == address or strip_instance_keys(c.address) == address
    ]
    if not changes:
        raise ModuleAssertionError(
            f"No resource change for '{address}'",
            expected=address,
            actual=[c.address for c in plan.resource_changes],
            address=address,
        )
    for change in changes:
        if list(change.change.actions) != list(actions):
            raise ModuleAssertionError(
                f"Resource '{change.address}' plans {change.change.actions}, expected {list(actions)}",
                expected=list(actions),
                actual=change.change.actions,
                address=change.address,
            )
