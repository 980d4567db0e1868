from __future__ import annotations

import re
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, Iterable, Iterator, List, Optional, Sequence, Tuple

from django.db.models import F, Sum

from .backends import TRANSITION_DIEGO_TO_DEA, BackendPlan
from .buildpacks import BuildpackRef, resolve_buildpack
from .changes import ChangeSet
from .config import PlatformDefaults
from .effective import effective_environment
from .models import (
    APP_STATES,
    HEALTH_CHECK_TYPES,
    PACKAGE_STATES,
    STAGING_FAILED_REASONS,
    STATE_STARTED,
    UNLIMITED,
    Organization,
    Process,
    QuotaDefinition,
    RouteMapping,
    Space,
)


MAX_PORTS = 10
MIN_PORT = 1024
MAX_PORT = 65535

DOCKER_IMAGE_REGEX = re.compile(
    r"^(?:[a-zA-Z0-9.-]+(?::[0-9]+)?/)?"
    r"[a-z0-9]+(?:[._-][a-z0-9]+)*(?:/[a-z0-9]+(?:[._-][a-z0-9]+)*)*"
    r"(?::[\w][\w.-]{0,127})?"
    r"(?:@sha256:[a-f0-9]{64})?$"
)

RESERVED_ENV_PREFIXES = ("VCAP_", "VMC_")
RESERVED_ENV_NAMES = ("PORT",)


@dataclass(frozen=True)
class Violation:
    attribute: str
    code: str
    message: str


class ViolationSet:
    def __init__(self, violations: Iterable[Violation] = ()):
        self._items: List[Violation] = list(violations)

    def add(self, attribute: str, code: str, message: str) -> None:
        self._items.append(Violation(attribute, code, message))

    def extend(self, violations: Iterable[Violation]) -> None:
        self._items.extend(violations)

    def __iter__(self) -> Iterator[Violation]:
        return iter(self._items)

    def __len__(self) -> int:
        return len(self._items)

    def __bool__(self) -> bool:
        return bool(self._items)

    def on(self, attribute: str) -> List[Violation]:
        return [item for item in self._items if item.attribute == attribute]

    def codes(self) -> List[str]:
        return [item.code for item in self._items]

    def has(self, code: str) -> bool:
        return any(item.code == code for item in self._items)

    def by_attribute(self) -> Dict[str, List[Violation]]:
        grouped: Dict[str, List[Violation]] = {}
        for item in self._items:
            grouped.setdefault(item.attribute, []).append(item)
        return grouped

    def as_dict(self) -> Dict[str, List[str]]:
        return {attribute: [item.code for item in items] for attribute, items in self.by_attribute().items()}

    def full_messages(self) -> List[str]:
        return [f"{item.attribute} {item.message}" for item in self._items]


@dataclass(frozen=True)
class MappingState:
    guid: str
    route_guid: Optional[str]
    bound_port: Optional[int]
    planned_port: Optional[int]


def _started_usage(queryset) -> Tuple[int, int]:
    totals = queryset.filter(state=STATE_STARTED).aggregate(
        memory=Sum(F("memory") * F("instances")),
        instances=Sum("instances"),
    )
    return totals["memory"] or 0, totals["instances"] or 0


@dataclass
class PolicyContext:
    defaults: PlatformDefaults
    changes: ChangeSet
    plan: BackendPlan = field(default_factory=BackendPlan)
    space: Optional[Space] = None
    organization: Optional[Organization] = None
    org_quota: Optional[QuotaDefinition] = None
    space_quota: Optional[QuotaDefinition] = None
    # Usage of the other STARTED processes sharing the space / organization.
    org_memory_used: int = 0
    space_memory_used: int = 0
    org_instances_used: int = 0
    space_instances_used: int = 0
    name_taken: bool = False
    sibling_process_types: List[str] = field(default_factory=list)
    route_mappings: List[MappingState] = field(default_factory=list)
    buildpack: BuildpackRef = field(default_factory=BuildpackRef.auto)
    environment: Any = None

    @classmethod
    def resolve(
        cls,
        process: Process,
        *,
        changes: ChangeSet,
        defaults: PlatformDefaults,
        plan: Optional[BackendPlan] = None,
        mappings: Optional[Sequence[RouteMapping]] = None,
    ) -> "PolicyContext":
        plan = plan or BackendPlan()
        context = cls(defaults=defaults, changes=changes, plan=plan)
        others = Process.objects.exclude(pk=process.pk) if process.pk else Process.objects.all()

        if process.space_id:
            space = process.space
            context.space = space
            context.organization = space.organization
            context.space_quota = space.space_quota_definition
            context.org_quota = space.organization.quota_definition
            context.space_memory_used, context.space_instances_used = _started_usage(others.filter(space_id=space.pk))
            context.org_memory_used, context.org_instances_used = _started_usage(
                others.filter(space__organization_id=space.organization_id)
            )
            if process.name:
                same_name = others.filter(space_id=space.pk, name=process.name)
                if process.app_id:
                    same_name = same_name.exclude(app_id=process.app_id)
                context.name_taken = same_name.exists()

        if process.app_id:
            context.sibling_process_types = list(others.filter(app_id=process.app_id).values_list("type", flat=True))

        if mappings is None:
            mappings = list(RouteMapping.objects.filter(process=process)) if process.pk else []
        context.route_mappings = [
            MappingState(
                guid=mapping.guid,
                route_guid=mapping.route.guid if mapping.route_id else None,
                bound_port=mapping.bound_port,
                planned_port=plan.planned_port(mapping),
            )
            for mapping in mappings
        ]
        context.buildpack = resolve_buildpack(process)
        context.environment = effective_environment(process)
        return context


Policy = Callable[[Process, PolicyContext], List[Violation]]


def _being_started(process: Process, changes: ChangeSet) -> bool:
    return changes.changed("state") and process.is_started


def _scaling_operation(process: Process, changes: ChangeSet) -> bool:
    return changes.is_new or not (changes.changed("state") and process.is_stopped)


def _limited(quota: Optional[QuotaDefinition], attribute: str) -> Optional[int]:
    if quota is None:
        return None
    limit = getattr(quota, attribute)
    return None if limit == UNLIMITED else limit


def name_policy(process: Process, context: PolicyContext) -> List[Violation]:
    violations = []
    if not process.name:
        violations.append(Violation("name", "name_presence", "can't be blank"))
    elif not process.name.isprintable():
        violations.append(Violation("name", "name_format", "is invalid"))
    if context.name_taken:
        violations.append(Violation("name", "name_taken", "is taken"))
    return violations


def space_policy(process: Process, context: PolicyContext) -> List[Violation]:
    if context.space is None:
        return [Violation("space", "space_presence", "can't be blank")]
    return []


def process_type_policy(process: Process, context: PolicyContext) -> List[Violation]:
    if not context.changes.is_new or not process.app_id:
        return []
    duplicates = [value for value in context.sibling_process_types if value.lower() == process.type.lower()]
    if not duplicates:
        return []
    received = ", ".join(sorted(duplicates + [process.type]))
    return [
        Violation(
            "type",
            "duplicate_process_type",
            f"application process types must be unique (case-insensitive), received: [{received}]",
        )
    ]


def enumeration_policy(process: Process, context: PolicyContext) -> List[Violation]:
    violations = []
    if process.state not in APP_STATES:
        violations.append(Violation("state", "invalid_state", "must be one of " + ", ".join(APP_STATES)))
    if process.package_state not in PACKAGE_STATES:
        violations.append(Violation("package_state", "invalid_package_state", "is not included in the list"))
    if process.staging_failed_reason is not None and process.staging_failed_reason not in STAGING_FAILED_REASONS:
        violations.append(Violation("staging_failed_reason", "invalid_staging_failed_reason", "is not included in the list"))
    if process.health_check_type not in HEALTH_CHECK_TYPES:
        violations.append(
            Violation("health_check_type", "invalid_health_check_type", "must be one of " + ", ".join(HEALTH_CHECK_TYPES))
        )
    return violations


def disk_quota_policy(process: Process, context: PolicyContext) -> List[Violation]:
    disk = process.disk_quota
    if disk is None:
        return []
    if disk < 1:
        return [Violation("disk_quota", "disk_quota_too_small", "too little disk requested (must be greater than zero)")]
    maximum = context.defaults.maximum_app_disk_in_mb
    if maximum and disk > maximum:
        return [Violation("disk_quota", "disk_quota_exceeded", f"too much disk requested (must be less than {maximum})")]
    return []


def min_memory_policy(process: Process, context: PolicyContext) -> List[Violation]:
    if process.memory is not None and process.memory <= 0:
        return [Violation("memory", "zero_or_less", "must be greater than zero")]
    return []


def app_memory_policy(process: Process, context: PolicyContext) -> List[Violation]:
    if not _scaling_operation(process, context.changes):
        return []
    requested = (process.memory or 0) * (process.instances or 0) if process.is_started else 0
    violations = []
    checks = (
        (context.space_quota, context.space_memory_used, "space_quota_exceeded", "space"),
        (context.org_quota, context.org_memory_used, "quota_exceeded", "organization"),
    )
    for quota, used, code, scope in checks:
        limit = _limited(quota, "memory_limit_mb")
        if limit is not None and used + requested > limit:
            violations.append(Violation("memory", code, f"exceeds the {scope} memory quota of {limit} MB"))
    return violations


def instance_memory_policy(process: Process, context: PolicyContext) -> List[Violation]:
    if process.memory is None:
        return []
    violations = []
    checks = (
        (context.org_quota, "instance_memory_limit_exceeded", "organization"),
        (context.space_quota, "space_instance_memory_limit_exceeded", "space"),
    )
    for quota, code, scope in checks:
        limit = _limited(quota, "instance_memory_limit_mb")
        if limit is not None and process.memory > limit:
            violations.append(Violation("memory", code, f"exceeds the {scope} instance memory limit of {limit} MB"))
    return violations


def instances_policy(process: Process, context: PolicyContext) -> List[Violation]:
    if process.instances is not None and process.instances < 0:
        return [Violation("instances", "less_than_zero", "must be greater than or equal to 0")]
    return []


def app_instance_limit_policy(process: Process, context: PolicyContext) -> List[Violation]:
    if not _scaling_operation(process, context.changes):
        return []
    desired = process.desired_instances or 0
    violations = []
    checks = (
        (context.org_quota, context.org_instances_used, "app_instance_limit_exceeded", "organization"),
        (context.space_quota, context.space_instances_used, "space_app_instance_limit_exceeded", "space"),
    )
    for quota, used, code, scope in checks:
        limit = _limited(quota, "app_instance_limit")
        if limit is not None and used + desired > limit:
            violations.append(Violation("app_instance_limit", code, f"exceeds the {scope} instance limit of {limit}"))
    return violations


def health_check_timeout_policy(process: Process, context: PolicyContext) -> List[Violation]:
    timeout = process.health_check_timeout
    if timeout is None:
        return []
    if timeout < 1:
        return [Violation("health_check_timeout", "less_than_one", "must be greater than or equal to 1")]
    maximum = context.defaults.maximum_health_check_timeout
    if maximum and timeout > maximum:
        return [Violation("health_check_timeout", "maximum_exceeded", f"Maximum exceeded: max {maximum}s")]
    return []


def health_check_ports_policy(process: Process, context: PolicyContext) -> List[Violation]:
    if process.health_check_type in (None, "port") and process.ports == []:
        return [
            Violation(
                "ports",
                "ports_empty_for_port_healthcheck",
                'array cannot be empty when health check type is "port"',
            )
        ]
    return []


def custom_buildpack_policy(process: Process, context: PolicyContext) -> List[Violation]:
    if context.buildpack.is_custom and not context.defaults.custom_buildpacks_enabled:
        return [Violation("buildpack", "custom_buildpacks_disabled", "custom buildpacks are disabled")]
    return []


def buildpack_validity_policy(process: Process, context: PolicyContext) -> List[Violation]:
    if context.buildpack.is_valid():
        return []
    return [
        Violation(
            "buildpack",
            "buildpack_invalid",
            f"{context.buildpack.display_name} is not valid public url or a known buildpack name",
        )
    ]


def docker_policy(process: Process, context: PolicyContext) -> List[Violation]:
    if not process.is_docker:
        return []
    violations = []
    if not DOCKER_IMAGE_REGEX.match(process.docker_image):
        violations.append(Violation("docker_image", "docker_image_invalid", "is not a valid image reference"))
    if context.buildpack.is_specified:
        violations.append(Violation("docker_image", "incompatible_with_buildpack", "incompatible with buildpack"))
    if _being_started(process, context.changes) and not context.defaults.docker_enabled:
        violations.append(Violation("docker", "docker_disabled", "Docker support has not been enabled"))
    return violations


def environment_policy(process: Process, context: PolicyContext) -> List[Violation]:
    environment = context.environment
    if environment is None:
        return []
    if not isinstance(environment, dict):
        return [Violation("environment_json", "invalid_environment", "must be a map of names to values")]
    violations = []
    for name in environment:
        key = str(name)
        if key.upper().startswith(RESERVED_ENV_PREFIXES):
            violations.append(Violation("environment_json", "reserved_variable_name", f"cannot start with {key.split('_')[0]}_"))
        elif key in RESERVED_ENV_NAMES:
            violations.append(Violation("environment_json", "reserved_variable_name", f"cannot set {key}"))
    return violations


def metadata_policy(process: Process, context: PolicyContext) -> List[Violation]:
    if process.metadata is None or isinstance(process.metadata, dict):
        return []
    return [Violation("metadata", "invalid_metadata", "must be a JSON object")]


def ssh_policy(process: Process, context: PolicyContext) -> List[Violation]:
    if not (context.changes.changed_by_request("enable_ssh") and process.enable_ssh):
        return []
    allowed = context.defaults.allow_app_ssh_access and context.space is not None and context.space.allow_ssh
    if allowed:
        return []
    return [Violation("enable_ssh", "ssh_disabled", "must be false due to global allow_ssh setting")]


def package_policy(process: Process, context: PolicyContext) -> List[Violation]:
    if process.needs_package_in_current_state() and not process.package_hash:
        return [Violation("package_hash", "bits_not_uploaded", "bits have not been uploaded")]
    return []


def ports_policy(process: Process, context: PolicyContext) -> List[Violation]:
    ports = process.ports
    if ports is None:
        return []
    if not isinstance(ports, list):
        return [Violation("ports", "ports_not_a_list", "must be an array")]
    if len(ports) > MAX_PORTS:
        return [Violation("ports", "too_many_ports", f"Maximum of {MAX_PORTS} app ports allowed.")]
    if not all(isinstance(port, int) and not isinstance(port, bool) for port in ports):
        return [Violation("ports", "ports_not_integers", "must be integers")]
    if not all(MIN_PORT <= port <= MAX_PORT for port in ports):
        return [Violation("ports", "port_out_of_range", f"Ports must be in the {MIN_PORT}-{MAX_PORT} range.")]
    if process.diego:
        for mapping in context.route_mappings:
            if mapping.planned_port is not None and mapping.planned_port not in ports:
                return [Violation("ports", "mapped_port_removed", "App ports may not be removed while routes are mapped to them.")]
    return []


def diego_to_dea_policy(process: Process, context: PolicyContext) -> List[Violation]:
    if context.plan.transition != TRANSITION_DIEGO_TO_DEA:
        return []
    bound = [mapping for mapping in context.route_mappings if mapping.bound_port is not None]
    if len(bound) > 1:
        return [
            Violation(
                "diego_to_dea",
                "multiple_ports_mapped_transitioning_to_legacy",
                "Multiple app ports are mapped. Unmap routes from all but one port before leaving Diego.",
            )
        ]
    return []


PROCESS_POLICIES: Tuple[Policy, ...] = (
    name_policy,
    space_policy,
    process_type_policy,
    enumeration_policy,
    environment_policy,
    metadata_policy,
    disk_quota_policy,
    min_memory_policy,
    app_memory_policy,
    instance_memory_policy,
    instances_policy,
    app_instance_limit_policy,
    health_check_timeout_policy,
    health_check_ports_policy,
    custom_buildpack_policy,
    buildpack_validity_policy,
    docker_policy,
    ssh_policy,
    package_policy,
    ports_policy,
    diego_to_dea_policy,
)


def evaluate(process: Process, context: PolicyContext, policies: Sequence[Policy] = PROCESS_POLICIES) -> ViolationSet:
    violations = ViolationSet()
    for policy in policies:
        violations.extend(policy(process, context))
    return violations
