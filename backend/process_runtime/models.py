import uuid
from copy import deepcopy
from typing import Any, Dict, List, Optional

from django.db import models


DEFAULT_HTTP_PORT = 8080
DEFAULT_PORTS = [DEFAULT_HTTP_PORT]

UNLIMITED = -1

STATE_STOPPED = "STOPPED"
STATE_STARTED = "STARTED"
APP_STATES = (STATE_STOPPED, STATE_STARTED)

PACKAGE_PENDING = "PENDING"
PACKAGE_STAGED = "STAGED"
PACKAGE_FAILED = "FAILED"
PACKAGE_STATES = (PACKAGE_PENDING, PACKAGE_STAGED, PACKAGE_FAILED)

STAGING_FAILED_REASONS = (
    "StagerError",
    "StagingError",
    "StagingTimeExpired",
    "NoAppDetectedError",
    "BuildpackCompileFailed",
    "BuildpackReleaseFailed",
    "InsufficientResources",
    "NoCompatibleCell",
)

HEALTH_CHECK_TYPES = ("port", "none", "process")

LIFECYCLE_BUILDPACK = "buildpack"
LIFECYCLE_DOCKER = "docker"


def _guid() -> str:
    return str(uuid.uuid4())


class QuotaDefinition(models.Model):
    name = models.CharField(max_length=120, unique=True)
    memory_limit_mb = models.IntegerField(default=UNLIMITED)
    instance_memory_limit_mb = models.IntegerField(default=UNLIMITED)
    app_instance_limit = models.IntegerField(default=UNLIMITED)

    def __str__(self) -> str:
        return self.name


class Organization(models.Model):
    STATUS_CHOICES = [
        ("active", "Active"),
        ("suspended", "Suspended"),
    ]

    guid = models.CharField(max_length=36, unique=True, default=_guid)
    name = models.CharField(max_length=255, unique=True)
    status = models.CharField(max_length=20, choices=STATUS_CHOICES, default="active")
    quota_definition = models.ForeignKey(
        QuotaDefinition, null=True, blank=True, on_delete=models.SET_NULL, related_name="organizations"
    )
    created_at = models.DateTimeField(auto_now_add=True)

    def __str__(self) -> str:
        return self.name

    @property
    def is_suspended(self) -> bool:
        return self.status == "suspended"


class Space(models.Model):
    guid = models.CharField(max_length=36, unique=True, default=_guid)
    name = models.CharField(max_length=255)
    organization = models.ForeignKey(Organization, on_delete=models.CASCADE, related_name="spaces")
    space_quota_definition = models.ForeignKey(
        QuotaDefinition, null=True, blank=True, on_delete=models.SET_NULL, related_name="spaces"
    )
    allow_ssh = models.BooleanField(default=True)
    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        unique_together = ("organization", "name")

    def __str__(self) -> str:
        return f"{self.organization.name}/{self.name}"

    def in_suspended_org(self) -> bool:
        return self.organization.is_suspended


class Domain(models.Model):
    guid = models.CharField(max_length=36, unique=True, default=_guid)
    name = models.CharField(max_length=253, unique=True)
    owning_organization = models.ForeignKey(
        Organization, null=True, blank=True, on_delete=models.CASCADE, related_name="owned_domains"
    )
    shared_organizations = models.ManyToManyField(Organization, blank=True, related_name="shared_private_domains")

    def __str__(self) -> str:
        return self.name

    @property
    def is_shared(self) -> bool:
        return self.owning_organization_id is None

    def usable_by_organization(self, organization: Optional[Organization]) -> bool:
        if organization is None:
            return False
        if self.is_shared:
            return True
        if self.owning_organization_id == organization.pk:
            return True
        return self.shared_organizations.filter(pk=organization.pk).exists()


class Route(models.Model):
    guid = models.CharField(max_length=36, unique=True, default=_guid)
    host = models.CharField(max_length=63, blank=True, default="")
    path = models.CharField(max_length=128, blank=True, default="")
    domain = models.ForeignKey(Domain, on_delete=models.CASCADE, related_name="routes")
    space = models.ForeignKey(Space, on_delete=models.CASCADE, related_name="routes")
    route_service_url = models.TextField(null=True, blank=True)

    def __str__(self) -> str:
        return self.uri

    @property
    def uri(self) -> str:
        fqdn = f"{self.host}.{self.domain.name}" if self.host else self.domain.name
        return f"{fqdn}{self.path}"


class Stack(models.Model):
    guid = models.CharField(max_length=36, unique=True, default=_guid)
    name = models.CharField(max_length=120, unique=True)
    description = models.TextField(blank=True)

    def __str__(self) -> str:
        return self.name


class Buildpack(models.Model):
    guid = models.CharField(max_length=36, unique=True, default=_guid)
    name = models.CharField(max_length=120, unique=True)
    key = models.CharField(max_length=255, blank=True, default="")
    position = models.PositiveIntegerField(default=1)
    enabled = models.BooleanField(default=True)
    locked = models.BooleanField(default=False)

    class Meta:
        ordering = ["position", "name"]

    def __str__(self) -> str:
        return self.name


class Application(models.Model):
    LIFECYCLE_CHOICES = [
        (LIFECYCLE_BUILDPACK, "Buildpack"),
        (LIFECYCLE_DOCKER, "Docker"),
    ]

    guid = models.CharField(max_length=36, unique=True, default=_guid)
    name = models.CharField(max_length=255)
    space = models.ForeignKey(Space, on_delete=models.CASCADE, related_name="applications")
    lifecycle_type = models.CharField(max_length=20, choices=LIFECYCLE_CHOICES, default=LIFECYCLE_BUILDPACK)
    lifecycle_buildpack = models.CharField(max_length=255, null=True, blank=True)
    lifecycle_stack = models.CharField(max_length=120, null=True, blank=True)
    environment_variables = models.JSONField(null=True, blank=True)
    droplet = models.ForeignKey("Droplet", null=True, blank=True, on_delete=models.SET_NULL, related_name="+")
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    def __str__(self) -> str:
        return self.name

    @property
    def uses_buildpack_lifecycle(self) -> bool:
        return self.lifecycle_type == LIFECYCLE_BUILDPACK


class Process(models.Model):
    STATE_CHOICES = [(value, value.title()) for value in APP_STATES]
    PACKAGE_STATE_CHOICES = [(value, value.title()) for value in PACKAGE_STATES]
    HEALTH_CHECK_CHOICES = [(value, value) for value in HEALTH_CHECK_TYPES]

    # Columns compared before and after a mutation to decide staging, version and usage-event effects.
    TRACKED_FIELDS = (
        "name",
        "type",
        "space_id",
        "app_id",
        "state",
        "package_state",
        "package_hash",
        "staging_failed_reason",
        "version",
        "diego",
        "ports",
        "memory",
        "disk_quota",
        "instances",
        "enable_ssh",
        "health_check_type",
        "health_check_timeout",
        "command",
        "docker_image",
        "droplet_hash",
        "buildpack",
        "admin_buildpack_id",
        "stack_id",
        "production",
        "environment_json",
    )

    guid = models.CharField(max_length=36, unique=True, default=_guid)
    name = models.CharField(max_length=255, blank=True, default="")
    type = models.CharField(max_length=120, default="web")
    space = models.ForeignKey(Space, null=True, blank=True, on_delete=models.CASCADE, related_name="processes")
    app = models.ForeignKey(Application, null=True, blank=True, on_delete=models.CASCADE, related_name="processes")
    state = models.CharField(max_length=20, choices=STATE_CHOICES, default=STATE_STOPPED)
    package_state = models.CharField(max_length=20, choices=PACKAGE_STATE_CHOICES, default=PACKAGE_PENDING)
    package_hash = models.CharField(max_length=255, null=True, blank=True)
    package_updated_at = models.DateTimeField(null=True, blank=True)
    package_pending_since = models.DateTimeField(null=True, blank=True)
    staging_task_id = models.CharField(max_length=255, blank=True, default="")
    staging_failed_reason = models.CharField(max_length=255, null=True, blank=True)
    staging_failed_description = models.TextField(null=True, blank=True)
    version = models.CharField(max_length=36, blank=True, default="")
    diego = models.BooleanField(null=True, blank=True)
    ports = models.JSONField(null=True, blank=True)
    memory = models.IntegerField(null=True, blank=True)
    disk_quota = models.IntegerField(null=True, blank=True)
    instances = models.IntegerField(default=1)
    file_descriptors = models.IntegerField(null=True, blank=True)
    enable_ssh = models.BooleanField(null=True, blank=True)
    health_check_type = models.CharField(max_length=20, choices=HEALTH_CHECK_CHOICES, default="port")
    health_check_timeout = models.IntegerField(null=True, blank=True)
    command = models.TextField(null=True, blank=True)
    docker_image = models.CharField(max_length=512, null=True, blank=True)
    droplet_hash = models.CharField(max_length=255, null=True, blank=True)
    buildpack = models.TextField(null=True, blank=True)
    admin_buildpack = models.ForeignKey(
        Buildpack, null=True, blank=True, on_delete=models.SET_NULL, related_name="processes"
    )
    detected_buildpack = models.TextField(null=True, blank=True)
    detected_buildpack_guid = models.CharField(max_length=36, null=True, blank=True)
    detected_buildpack_name = models.CharField(max_length=255, null=True, blank=True)
    stack = models.ForeignKey(Stack, null=True, blank=True, on_delete=models.SET_NULL, related_name="processes")
    production = models.BooleanField(default=False)
    metadata = models.JSONField(null=True, blank=True)
    environment_json = models.JSONField(null=True, blank=True)
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    # Transaction-scoped marker set by route attach/detach, reset once the post-commit signal has fired.
    routes_changed = False
    routes_changed_callback = None

    class Meta:
        ordering = ["id"]

    def __str__(self) -> str:
        return self.name or self.guid

    def snapshot(self) -> Dict[str, Any]:
        return {field: deepcopy(getattr(self, field)) for field in self.TRACKED_FIELDS}

    @property
    def organization(self) -> Optional[Organization]:
        return self.space.organization if self.space_id else None

    @property
    def user_provided_ports(self) -> Optional[List[int]]:
        return self.ports

    @property
    def is_started(self) -> bool:
        return self.state == STATE_STARTED

    @property
    def is_stopped(self) -> bool:
        return self.state == STATE_STOPPED

    @property
    def is_staged(self) -> bool:
        return self.package_state == PACKAGE_STAGED

    @property
    def is_pending(self) -> bool:
        return self.package_state == PACKAGE_PENDING

    @property
    def staging_failed(self) -> bool:
        return self.package_state == PACKAGE_FAILED

    @property
    def is_staging(self) -> bool:
        return self.is_pending and bool(self.staging_task_id)

    @property
    def is_docker(self) -> bool:
        return bool(self.docker_image)

    @property
    def desired_instances(self) -> int:
        return self.instances if self.is_started else 0

    def needs_staging(self) -> bool:
        return bool(self.package_hash) and not self.is_staged and self.is_started and (self.instances or 0) > 0

    def needs_package_in_current_state(self) -> bool:
        return self.is_started


class RouteMapping(models.Model):
    guid = models.CharField(max_length=36, unique=True, default=_guid)
    process = models.ForeignKey(Process, on_delete=models.CASCADE, related_name="route_mappings")
    route = models.ForeignKey(Route, null=True, blank=True, on_delete=models.SET_NULL, related_name="route_mappings")
    bound_port = models.IntegerField(null=True, blank=True)
    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        ordering = ["id"]

    def __str__(self) -> str:
        return f"{self.process_id} -> {self.route_id}:{self.bound_port}"


class Droplet(models.Model):
    guid = models.CharField(max_length=36, unique=True, default=_guid)
    process = models.ForeignKey(Process, on_delete=models.CASCADE, related_name="droplets")
    droplet_hash = models.CharField(max_length=255, db_index=True)
    execution_metadata = models.TextField(blank=True, default="")
    detected_start_command = models.TextField(blank=True, default="")
    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        ordering = ["id"]

    def __str__(self) -> str:
        return self.droplet_hash


class ServiceBinding(models.Model):
    guid = models.CharField(max_length=36, unique=True, default=_guid)
    process = models.ForeignKey(Process, on_delete=models.PROTECT, related_name="service_bindings")
    service_instance_name = models.CharField(max_length=255)
    credentials = models.JSONField(null=True, blank=True)
    created_at = models.DateTimeField(auto_now_add=True)

    def __str__(self) -> str:
        return f"{self.service_instance_name} -> {self.process_id}"


class ProcessUsageEvent(models.Model):
    guid = models.CharField(max_length=36, unique=True, default=_guid)
    state = models.CharField(max_length=40)
    process_guid = models.CharField(max_length=36, db_index=True)
    process_name = models.CharField(max_length=255, blank=True)
    process_type = models.CharField(max_length=120, blank=True)
    space_guid = models.CharField(max_length=36, blank=True)
    space_name = models.CharField(max_length=255, blank=True)
    org_guid = models.CharField(max_length=36, blank=True)
    instance_count = models.IntegerField(default=0)
    memory_in_mb_per_instance = models.IntegerField(default=0)
    package_state = models.CharField(max_length=20, blank=True)
    buildpack_guid = models.CharField(max_length=36, null=True, blank=True)
    buildpack_name = models.TextField(null=True, blank=True)
    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        ordering = ["id"]


class ProcessAuditEvent(models.Model):
    guid = models.CharField(max_length=36, unique=True, default=_guid)
    type = models.CharField(max_length=120)
    actor_guid = models.CharField(max_length=255, blank=True)
    actor_email = models.CharField(max_length=255, blank=True)
    actee_guid = models.CharField(max_length=36, db_index=True)
    actee_name = models.CharField(max_length=255, blank=True)
    space_guid = models.CharField(max_length=36, blank=True)
    organization_guid = models.CharField(max_length=36, blank=True)
    metadata_json = models.JSONField(null=True, blank=True)
    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        ordering = ["id"]
