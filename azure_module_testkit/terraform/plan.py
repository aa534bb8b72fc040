"""
Structured results of ``terraform show -json``.

Two documents are parsed here:
    - a saved plan: ``planned_values`` (address -> values) and the ordered
      ``resource_changes`` list with before/after values
    - the current state after apply: ``values`` with resources and outputs

Child modules are flattened, so ``module.vnet.azurerm_subnet.subnets["aks"]``
is as reachable as a root-module address.
"""

import json
import re
from dataclasses import dataclass, field
from typing import Any, Dict, Iterator, List, Optional, Set

from pydantic import BaseModel, ConfigDict, Field, ValidationError

from ..exceptions import TerraformError

_INSTANCE_KEY = re.compile(r'\[(?:"(?:[^"\\]|\\.)*"|\d+)\]')


def strip_instance_keys(address: str) -> str:
    """Drop count/for_each keys: ``a.b["x"]`` -> ``a.b``."""
    return _INSTANCE_KEY.sub("", address)


class Change(BaseModel):
    """The planned change of one resource instance."""

    actions: List[str] = Field(default_factory=list)
    before: Any = None
    after: Any = None
    after_unknown: Any = None

    model_config = ConfigDict(extra="ignore")


class ResourceChange(BaseModel):
    """One entry of the plan's ``resource_changes`` list."""

    address: str
    type: str
    name: str
    mode: str = "managed"
    index: Any = None
    module_address: Optional[str] = None
    provider_name: Optional[str] = None
    change: Change = Field(default_factory=Change)

    model_config = ConfigDict(extra="ignore")


@dataclass
class PlannedResource:
    """A resource instance from ``planned_values`` or from state ``values``."""

    address: str
    type: str
    name: str
    values: Dict[str, Any] = field(default_factory=dict)
    index: Any = None
    mode: str = "managed"

    @property
    def instance_key(self) -> Optional[str]:
        """for_each key or count index as a string, if any."""
        return None if self.index is None else str(self.index)


@dataclass
class PlanResult:
    """Parsed saved plan.

    Attributes:
        planned_values: Resource address -> planned resource
        resource_changes: Change records in plan order
        outputs: Planned output values known at plan time
        raw: The full JSON document
    """

    planned_values: Dict[str, PlannedResource] = field(default_factory=dict)
    resource_changes: List[ResourceChange] = field(default_factory=list)
    outputs: Dict[str, Any] = field(default_factory=dict)
    raw: Dict[str, Any] = field(default_factory=dict)

    def planned_keys(self) -> Set[str]:
        """Every planned address, plus each address without instance keys."""
        keys: Set[str] = set()
        for address in self.planned_values:
            keys.add(address)
            keys.add(strip_instance_keys(address))
        return keys

    def has_resource(self, address: str) -> bool:
        return address in self.planned_keys()

    def resources_of_type(self, resource_type: str) -> List[PlannedResource]:
        return [r for r in self.planned_values.values() if r.type == resource_type]

    def get_resource_changes(
        self, resource_type: Optional[str] = None
    ) -> List[ResourceChange]:
        """Resource changes in plan order, optionally filtered by type."""
        if resource_type is None:
            return list(self.resource_changes)
        return [c for c in self.resource_changes if c.type == resource_type]


@dataclass
class TerraformState:
    """Parsed current state (``terraform show -json`` without a plan file)."""

    resources: Dict[str, PlannedResource] = field(default_factory=dict)
    outputs: Dict[str, Any] = field(default_factory=dict)
    raw: Dict[str, Any] = field(default_factory=dict)

    @property
    def is_empty(self) -> bool:
        return not self.resources

    def resources_of_type(self, resource_type: str) -> List[PlannedResource]:
        return [r for r in self.resources.values() if r.type == resource_type]


def _iter_module_resources(module: Optional[Dict[str, Any]]) -> Iterator[Dict[str, Any]]:
    if not module:
        return
    yield from module.get("resources") or []
    for child in module.get("child_modules") or []:
        yield from _iter_module_resources(child)


def parse_module_values(root_module: Optional[Dict[str, Any]]) -> Dict[str, PlannedResource]:
    """Flatten a ``root_module`` block (plan or state) into address -> resource."""
    resources: Dict[str, PlannedResource] = {}
    for item in _iter_module_resources(root_module):
        address = item.get("address")
        if not address:
            continue
        resources[address] = PlannedResource(
            address=address,
            type=item.get("type", ""),
            name=item.get("name", ""),
            values=item.get("values") or {},
            index=item.get("index"),
            mode=item.get("mode", "managed"),
        )
    return resources


def _load_json(text: str, what: str) -> Dict[str, Any]:
    try:
        data = json.loads(text)
    except json.JSONDecodeError as e:
        raise TerraformError(f"Could not parse {what} JSON: {e}", cause=e) from e
    if not isinstance(data, dict):
        raise TerraformError(f"Unexpected {what} JSON: top level is not an object")
    return data


def parse_plan_json(text: str) -> PlanResult:
    """Parse the output of ``terraform show -json <planfile>``."""
    data = _load_json(text, "plan")
    planned = data.get("planned_values") or {}

    try:
        changes = [
            ResourceChange.model_validate(c) for c in data.get("resource_changes") or []
        ]
    except ValidationError as e:
        raise TerraformError(f"Malformed resource_changes in plan: {e}", cause=e) from e

    outputs = {
        name: out.get("value")
        for name, out in (planned.get("outputs") or {}).items()
        if isinstance(out, dict)
    }

    return PlanResult(
        planned_values=parse_module_values(planned.get("root_module")),
        resource_changes=changes,
        outputs=outputs,
        raw=data,
    )


def parse_state_json(text: str) -> TerraformState:
    """Parse the output of ``terraform show -json`` for the current state."""
    data = _load_json(text, "state")
    values = data.get("values") or {}
    outputs = {
        name: out.get("value")
        for name, out in (values.get("outputs") or {}).items()
        if isinstance(out, dict)
    }
    return TerraformState(
        resources=parse_module_values(values.get("root_module")),
        outputs=outputs,
        raw=data,
    )
