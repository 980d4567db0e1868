import json
import logging
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Sequence

from .changes import ChangeSet
from .config import PlatformDefaults
from .effective import effective_droplet
from .models import DEFAULT_HTTP_PORT, DEFAULT_PORTS, Process, RouteMapping


logger = logging.getLogger(__name__)

TRANSITION_NONE = "none"
TRANSITION_DEFAULTED = "defaulted"
TRANSITION_DIEGO_TO_DEA = "diego_to_dea"
TRANSITION_DEA_TO_DIEGO = "dea_to_diego"


@dataclass
class BackendPlan:
    transition: str = TRANSITION_NONE
    ports_reset: bool = False
    # mapping guid -> bound port to write once validation has passed
    mapping_ports: Dict[str, Optional[int]] = field(default_factory=dict)

    def planned_port(self, mapping: RouteMapping) -> Optional[int]:
        return self.mapping_ports.get(mapping.guid, mapping.bound_port)


def apply_backend_default(process: Process, defaults: PlatformDefaults) -> None:
    if process.diego is None:
        process.diego = defaults.default_to_diego_backend


def classify_transition(changes: ChangeSet) -> str:
    if changes.is_new or not changes.changed("diego"):
        return TRANSITION_NONE
    before = changes.initial("diego")
    after = changes.current("diego")
    if before is None:
        return TRANSITION_DEFAULTED
    if before and not after:
        return TRANSITION_DIEGO_TO_DEA
    if before is False and after:
        return TRANSITION_DEA_TO_DIEGO
    return TRANSITION_NONE


def changed_from_default_ports(changes: ChangeSet) -> bool:
    if not changes.changed_by_request("ports"):
        return False
    initial = changes.initial("ports")
    return initial is None or list(initial) == DEFAULT_PORTS


def reconcile_ports(process: Process, changes: ChangeSet) -> BackendPlan:
    """Rewrite stored ports for a backend transition. Runs before validation."""
    plan = BackendPlan(transition=classify_transition(changes))
    if plan.transition == TRANSITION_DIEGO_TO_DEA and not changes.changed_by_request("ports"):
        process.ports = None
        plan.ports_reset = True
    return plan


def plan_route_mapping_ports(
    process: Process, changes: ChangeSet, plan: BackendPlan, mappings: Sequence[RouteMapping]
) -> BackendPlan:
    if not mappings:
        return plan
    if plan.transition == TRANSITION_DIEGO_TO_DEA:
        for mapping in mappings:
            if mapping.bound_port is not None:
                plan.mapping_ports[mapping.guid] = None
    elif plan.transition == TRANSITION_DEA_TO_DIEGO:
        user_ports = process.user_provided_ports or []
        if len(user_ports) == 1:
            for mapping in mappings:
                plan.mapping_ports[mapping.guid] = user_ports[0]
    elif process.diego and not process.is_docker and changed_from_default_ports(changes):
        # Routes that implicitly used the default port stay on it while it remains exposed.
        if DEFAULT_HTTP_PORT in (process.user_provided_ports or []):
            for mapping in mappings:
                if mapping.bound_port is None:
                    plan.mapping_ports[mapping.guid] = DEFAULT_HTTP_PORT
    return plan


def apply_route_mapping_ports(plan: BackendPlan) -> int:
    updated = 0
    for guid, port in plan.mapping_ports.items():
        updated += RouteMapping.objects.filter(guid=guid).update(bound_port=port)
    if updated:
        logger.info("Rewrote %s route mapping port(s) for backend transition %s", updated, plan.transition)
    return updated


def docker_ports(process: Process) -> List[int]:
    exposed: List[int] = []
    if process.needs_staging():
        return exposed
    droplet = effective_droplet(process)
    if droplet is None or not droplet.execution_metadata:
        return exposed
    try:
        metadata = json.loads(droplet.execution_metadata)
    except json.JSONDecodeError:
        return exposed
    for port in (metadata.get("ports") or []) if isinstance(metadata, dict) else []:
        if isinstance(port, dict) and port.get("Protocol") == "tcp":
            exposed.append(port.get("Port"))
    return exposed


def ports_with_defaults(process: Process) -> List[int]:
    if process.ports is not None:
        return list(process.ports)
    if not process.diego:
        return []
    if process.is_docker:
        exposed = docker_ports(process)
        if exposed:
            return exposed
    return list(DEFAULT_PORTS)
