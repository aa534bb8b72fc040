"""Naming-convention assertions over planned resource changes.

Values in a plan are untyped JSON. Every read here goes through an explicit
type check: an attribute that is missing or not a string fails the assertion
instead of being skipped.
"""

from typing import Any, List, Optional

from ..exceptions import ModuleAssertionError
from ..terraform.plan import PlanResult, ResourceChange


def get_change_attribute_str(change: ResourceChange, attribute: str) -> str:
    """Return ``change.after[attribute]`` as a string or fail."""
    after: Any = change.change.after
    if not isinstance(after, dict):
        raise ModuleAssertionError(
            f"Resource '{change.address}' has no planned 'after' object",
            expected="object",
            actual=type(after).__name__,
            address=change.address,
        )
    if attribute not in after:
        raise ModuleAssertionError(
            f"Resource '{change.address}' has no planned attribute '{attribute}'",
            expected=attribute,
            actual=sorted(after),
            address=change.address,
        )
    value = after[attribute]
    if not isinstance(value, str):
        raise ModuleAssertionError(
            f"Attribute '{attribute}' of '{change.address}' is "
            f"{type(value).__name__}, expected str",
            expected="str",
            actual=type(value).__name__,
            address=change.address,
        )
    return value


def _planned_changes(plan: PlanResult, resource_type: str) -> List[ResourceChange]:
    changes = [
        c for c in plan.get_resource_changes(resource_type) if c.change.after is not None
    ]
    if not changes:
        raise ModuleAssertionError(
            f"Plan has no created or updated '{resource_type}' resources",
            expected=resource_type,
            actual=sorted({c.type for c in plan.resource_changes}),
        )
    return changes


def get_planned_attribute_str(
    plan: PlanResult, resource_type: str, attribute: str = "name"
) -> List[str]:
    """Typed attribute values of every planned (non-deleted) resource of a type."""
    return [
        get_change_attribute_str(c, attribute)
        for c in _planned_changes(plan, resource_type)
    ]


def assert_resource_name_contains(
    plan: PlanResult,
    resource_type: str,
    substring: str,
    attribute: str = "name",
) -> List[str]:
    """Fail unless every planned resource of the type has a name containing substring.

    Returns:
        The checked names
    """
    names = []
    for change in _planned_changes(plan, resource_type):
        name = get_change_attribute_str(change, attribute)
        names.append(name)
        if substring not in name:
            raise ModuleAssertionError(
                f"{resource_type} name '{name}' does not contain '{substring}'",
                expected=substring,
                actual=name,
                address=change.address,
            )
    return names


def assert_name_matches_convention(
    name: str,
    prefix: Optional[str] = None,
    environment: Optional[str] = None,
    unique_id: Optional[str] = None,
    max_length: Optional[int] = None,
) -> None:
    """Check a derived resource name against the module's naming convention."""
    if prefix and not name.startswith(prefix):
        raise ModuleAssertionError(
            f"Name '{name}' does not start with prefix '{prefix}'",
            expected=prefix,
            actual=name,
        )
    if environment and environment not in name:
        raise ModuleAssertionError(
            f"Name '{name}' does not contain environment '{environment}'",
            expected=environment,
            actual=name,
        )
    if unique_id and unique_id not in name:
        raise ModuleAssertionError(
            f"Name '{name}' does not contain unique id '{unique_id}'",
            expected=unique_id,
            actual=name,
        )
    if max_length is not None and len(name) > max_length:
        raise ModuleAssertionError(
            f"Name '{name}' is {len(name)} characters, limit is {max_length}",
            expected=max_length,
            actual=len(name),
        )
