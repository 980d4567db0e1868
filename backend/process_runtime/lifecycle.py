import logging
from datetime import datetime
from typing import Any, Callable, Dict, Iterable, Mapping, Optional

from django.db import transaction
from django.utils import timezone

from .backends import (
    apply_backend_default,
    apply_route_mapping_ports,
    plan_route_mapping_ports,
    ports_with_defaults,
    reconcile_ports,
)
from .buildpacks import assign_buildpack, resolve_buildpack
from .changes import ChangeSet
from .config import PlatformDefaults, load_platform_config
from .effective import effective_stack
from .errors import ApiError, ProcessValidationError
from .events import USAGE_STATE_BUILDPACK_SET, USAGE_STATE_DELETED, Actor, AuditEventRepository, UsageEventRepository
from .models import (
    STATE_STARTED,
    STATE_STOPPED,
    Application,
    Buildpack,
    Droplet,
    Process,
    Route,
    RouteMapping,
    Stack,
)
from .notifications import NotifierRegistry
from .policies import PolicyContext, evaluate
from .route_binding import initial_bound_port, validate_route, validate_space
from .service_bindings import ServiceBindingDelete
from .staging import (
    assign_docker_image,
    assign_package_hash,
    failure_description,
    mark_as_failed_to_stage,
    mark_as_staged,
    mark_for_restaging,
)
from .versioning import converge_version, new_version


logger = logging.getLogger(__name__)

PROCESS_ATTRIBUTES = frozenset(
    {
        "name",
        "type",
        "space",
        "app",
        "state",
        "memory",
        "disk_quota",
        "instances",
        "command",
        "health_check_type",
        "health_check_timeout",
        "docker_image",
        "ports",
        "diego",
        "enable_ssh",
        "buildpack",
        "stack",
        "production",
        "metadata",
        "environment_json",
        "package_hash",
    }
)

# A committed change to any of these means execution infrastructure has to reconverge.
NOTIFY_FIELDS = (
    "state",
    "instances",
    "version",
    "package_state",
    "droplet_hash",
    "diego",
    "ports",
    "memory",
    "disk_quota",
    "health_check_type",
    "health_check_timeout",
    "command",
    "docker_image",
    "enable_ssh",
)

FOOTPRINT_FIELDS = ("memory", "instances", "production")


def _needs_usage_event(process: Process, changes: ChangeSet) -> bool:
    if changes.is_new or changes.changed("state"):
        return True
    return process.is_started and any(changes.changed(field) for field in FOOTPRINT_FIELDS)


def _needs_notification(changes: ChangeSet) -> bool:
    return any(changes.changed(field) for field in NOTIFY_FIELDS)


class ProcessLifecycle:
    def __init__(
        self,
        defaults: PlatformDefaults,
        notifier: Optional[NotifierRegistry] = None,
        usage_events: Optional[UsageEventRepository] = None,
        audit_events: Optional[AuditEventRepository] = None,
        binding_terminator: Optional[ServiceBindingDelete] = None,
    ):
        self.defaults = defaults
        self.notifier = notifier or NotifierRegistry({})
        self.usage_events = usage_events or UsageEventRepository()
        self.audit_events = audit_events or AuditEventRepository()
        self.binding_terminator = binding_terminator or ServiceBindingDelete()

    @classmethod
    def from_settings(cls) -> "ProcessLifecycle":
        config = load_platform_config()
        return cls(
            PlatformDefaults.from_mapping(config["process_defaults"]),
            NotifierRegistry(config),
            UsageEventRepository(),
            AuditEventRepository(),
            ServiceBindingDelete(),
        )

    # -- public operations -------------------------------------------------

    def create(self, attrs: Mapping[str, Any], actor: Optional[Actor] = None) -> Process:
        self._check_attributes(attrs)
        with transaction.atomic():
            process = Process()
            app = attrs.get("app")
            if app is not None:
                process.app = Application.objects.select_for_update().get(pk=app.pk)
                process.space = process.app.space
            if "instances" not in attrs:
                process.instances = self.defaults.default_instances
            self._assign(process, attrs, timezone.now(), is_new=True)
            if process.app_id and not process.name and process.type == "web":
                process.name = process.app.name
            changes = self._commit(process, None, attrs.keys())
            audit_event = self.audit_events.record_process_create(process, actor, attrs, save=False)
            self._after_commit(process, "create audit event", audit_event.save)
            self._after_mutation(process, changes)
        logger.info("Created process %s (%s) version=%s", process.guid, process.name, process.version)
        return process

    def update(self, process: Process, attrs: Mapping[str, Any], actor: Optional[Actor] = None) -> Process:
        self._check_attributes(attrs)
        with transaction.atomic():
            self._lock(process)
            self._mutate(process, attrs)
            audit_event = self.audit_events.record_process_update(process, actor, attrs, save=False)
            self._after_commit(process, "update audit event", audit_event.save)
        return process

    def start(self, process: Process, actor: Optional[Actor] = None) -> Process:
        return self.update(process, {"state": STATE_STARTED}, actor)

    def stop(self, process: Process, actor: Optional[Actor] = None) -> Process:
        return self.update(process, {"state": STATE_STOPPED}, actor)

    def restage(self, process: Process, actor: Optional[Actor] = None) -> Process:
        with transaction.atomic():
            self._lock(process)
            if not process.package_hash:
                raise ApiError("NotStaged")
            self.update(process, {"state": STATE_STOPPED}, actor)
            self._lock(process)
            self._mutate(process, {"state": STATE_STARTED}, prepare=mark_for_restaging)
        logger.info("Restaging process %s version=%s", process.guid, process.version)
        return process

    def destroy(self, process: Process, actor: Optional[Actor] = None, recursive: bool = False) -> None:
        with transaction.atomic():
            self._lock(process)
            errors = self.binding_terminator.delete(process)
            if errors:
                raise errors[0]
            process.state = STATE_STOPPED
            audit_event = self.audit_events.record_process_delete_request(process, actor, recursive, save=False)
            usage_event = self.usage_events.build_from_process(process, USAGE_STATE_DELETED)
            self._after_commit(process, "delete audit event", audit_event.save)
            self._after_commit(process, "deletion usage event", usage_event.save)
            self._after_commit(process, "deleted notification", lambda: self.notifier.deleted(process))
            process.delete()
        logger.info("Destroyed process %s", process.guid)

    def attach_route(
        self,
        process: Process,
        route: Optional[Route],
        actor: Optional[Actor] = None,
        bound_port: Optional[int] = None,
    ) -> RouteMapping:
        with transaction.atomic():
            self._lock(process)
            validate_route(process, route)
            port = self._mapping_port(process, bound_port)
            if RouteMapping.objects.filter(process=process, route=route, bound_port=port).exists():
                raise ApiError("RouteMappingTaken", f"{route.uri} -> {process.guid}")
            mapping = RouteMapping.objects.create(process=process, route=route, bound_port=port)
            self._routes_changed(process)
            audit_event = self.audit_events.record_map_route(process, actor, route, port, save=False)
            self._after_commit(process, "map-route audit event", audit_event.save)
        return mapping

    def detach_route(self, process: Process, route: Route, actor: Optional[Actor] = None) -> int:
        with transaction.atomic():
            self._lock(process)
            removed, _ = RouteMapping.objects.filter(process=process, route=route).delete()
            if removed:
                self._routes_changed(process)
                audit_event = self.audit_events.record_unmap_route(process, actor, route, save=False)
                self._after_commit(process, "unmap-route audit event", audit_event.save)
        return removed

    def report_staging_failure(self, process: Process, reason: Optional[str], detail: Optional[str] = None) -> str:
        with transaction.atomic():
            self._lock(process)
            initial = process.snapshot()
            normalized = mark_as_failed_to_stage(process, reason)
            if detail:
                process.staging_failed_description = failure_description(normalized, detail)
            changes = self._commit(process, initial, (), validate=False)
            self._after_mutation(process, changes)
        logger.info("Staging failed for process %s: %s", process.guid, normalized)
        return normalized

    def add_droplet(
        self,
        process: Process,
        droplet_hash: str,
        execution_metadata: str = "",
        detected_start_command: str = "",
    ) -> Droplet:
        with transaction.atomic():
            self._lock(process)
            initial = process.snapshot()
            droplet = Droplet.objects.create(
                process=process,
                droplet_hash=droplet_hash,
                execution_metadata=execution_metadata or "",
                detected_start_command=detected_start_command or "",
            )
            process.droplet_hash = droplet_hash
            if process.app_id:
                process.app.droplet = droplet
            mark_as_staged(process)
            changes = self._commit(process, initial, (), validate=False)
            self._after_mutation(process, changes)
        return droplet

    def update_detected_buildpack(self, process: Process, detect_output: str, buildpack_key: Optional[str] = None) -> Process:
        with transaction.atomic():
            self._lock(process)
            detected = Buildpack.objects.filter(key=buildpack_key).first() if buildpack_key else None
            process.detected_buildpack = detect_output
            process.detected_buildpack_guid = detected.guid if detected else None
            process.detected_buildpack_name = detected.name if detected else resolve_buildpack(process).resolved_url
            process.save(
                update_fields=["detected_buildpack", "detected_buildpack_guid", "detected_buildpack_name", "updated_at"]
            )
            if process.is_staged and process.is_started:
                event = self.usage_events.build_from_process(process, USAGE_STATE_BUILDPACK_SET)
                self._after_commit(process, "buildpack usage event", event.save)
        return process

    # -- pipeline ----------------------------------------------------------

    def _check_attributes(self, attrs: Mapping[str, Any]) -> None:
        unknown = sorted(set(attrs) - PROCESS_ATTRIBUTES)
        if unknown:
            raise ApiError("InvalidRequest", f"unknown attribute(s): {', '.join(unknown)}")

    def _lock(self, process: Process) -> Process:
        Process.objects.select_for_update().only("pk").get(pk=process.pk)
        process.refresh_from_db()
        if process.app_id:
            process.app = Application.objects.select_for_update().get(pk=process.app_id)
        return process

    def _mutate(
        self,
        process: Process,
        attrs: Mapping[str, Any],
        prepare: Optional[Callable[[Process], None]] = None,
    ) -> ChangeSet:
        initial = process.snapshot()
        self._assign(process, attrs, timezone.now(), is_new=False)
        if prepare is not None:
            prepare(process)
        changes = self._commit(process, initial, attrs.keys())
        self._after_mutation(process, changes)
        if changes.changed("state"):
            logger.info("Process %s %s -> %s version=%s", process.guid, changes.initial("state"), process.state, process.version)
        return changes

    def _assign(self, process: Process, attrs: Mapping[str, Any], now: datetime, is_new: bool) -> None:
        buildpack_before = None if is_new else resolve_buildpack(process)
        stack_before = None if is_new else effective_stack(process)
        app = process.app if process.app_id else None

        for key, value in attrs.items():
            if key == "app":
                continue
            if key == "space":
                if not is_new and value is not None and value.pk != process.space_id:
                    validate_space(process, value)
                process.space = value
            elif key == "buildpack":
                assign_buildpack(process, value)
            elif key == "stack":
                stack = value if isinstance(value, Stack) or value is None else Stack.objects.filter(name=value).first()
                process.stack = stack
                if app is not None and app.uses_buildpack_lifecycle:
                    app.lifecycle_stack = stack.name if stack else None
            elif key == "docker_image":
                assign_docker_image(process, value, now)
            elif key == "package_hash":
                assign_package_hash(process, value, now)
            elif key == "environment_json":
                process.environment_json = value
                if app is not None:
                    app.environment_variables = value
            elif key == "name":
                process.name = value
                if app is not None and process.type == "web":
                    app.name = value
            else:
                setattr(process, key, value)

        if not is_new:
            if resolve_buildpack(process) != buildpack_before or effective_stack(process) != stack_before:
                mark_for_restaging(process, now)

    def _fill_defaults(self, process: Process) -> None:
        apply_backend_default(process, self.defaults)
        if process.memory is None:
            process.memory = self.defaults.default_app_memory_mb
        if process.disk_quota is None:
            process.disk_quota = self.defaults.default_app_disk_in_mb
        if process.file_descriptors is None:
            process.file_descriptors = self.defaults.instance_file_descriptor_limit
        if process.health_check_timeout is None:
            process.health_check_timeout = self.defaults.default_health_check_timeout
        if process.enable_ssh is None:
            space = process.space if process.space_id else None
            process.enable_ssh = bool(self.defaults.allow_app_ssh_access and space is not None and space.allow_ssh)
        if not process.stack_id and effective_stack(process) is None:
            process.stack = Stack.objects.filter(name=self.defaults.default_stack).first()

    def _commit(
        self,
        process: Process,
        initial: Optional[Dict[str, Any]],
        requested: Iterable[str],
        validate: bool = True,
    ) -> ChangeSet:
        if initial is None:
            self._fill_defaults(process)
        else:
            apply_backend_default(process, self.defaults)
        changes = ChangeSet(initial, process.snapshot(), requested)
        plan = reconcile_ports(process, changes)
        if plan.ports_reset:
            changes = changes.with_current(process.snapshot())
        mappings = list(RouteMapping.objects.filter(process=process)) if process.pk else []
        plan = plan_route_mapping_ports(process, changes, plan, mappings)

        if validate:
            context = PolicyContext.resolve(process, changes=changes, defaults=self.defaults, plan=plan, mappings=mappings)
            violations = evaluate(process, context)
            if violations:
                raise ProcessValidationError(violations)

        converge_version(process, changes)
        if process.app_id:
            process.app.save()
        process.save()
        apply_route_mapping_ports(plan)
        return changes.with_current(process.snapshot())

    def _after_mutation(self, process: Process, changes: ChangeSet) -> None:
        if _needs_usage_event(process, changes):
            usage_event = self.usage_events.build_from_process(process)
            self._after_commit(process, "usage event", usage_event.save)
        if _needs_notification(changes):
            self._after_commit(process, "updated notification", lambda: self.notifier.updated(process))

    def _after_commit(self, process: Process, description: str, callback: Callable[[], Any]) -> None:
        def run():
            try:
                callback()
            except Exception:
                logger.exception("Post-commit %s failed for process %s", description, process.guid)

        transaction.on_commit(run)

    # -- routes ------------------------------------------------------------

    def _mapping_port(self, process: Process, requested: Optional[int]) -> Optional[int]:
        if requested is None:
            return initial_bound_port(process)
        if not process.diego:
            raise ApiError("InvalidRequest", "ports can only be mapped for Diego apps")
        if requested not in ports_with_defaults(process):
            raise ApiError("InvalidRequest", "Routes can only be mapped to ports already enabled for the application.")
        return requested

    def _routes_changed(self, process: Process) -> None:
        if process.diego:
            now = timezone.now()
            Process.objects.filter(pk=process.pk).update(updated_at=now)
            process.updated_at = now
            if not self._routes_change_pending(process):
                def callback():
                    self._notify_routes_changed(process)

                process.routes_changed = True
                process.routes_changed_callback = callback
                transaction.on_commit(callback)
            return
        process.version = new_version()
        process.save(update_fields=["version", "updated_at"])
        self._after_commit(process, "updated notification", lambda: self.notifier.updated(process))

    def _routes_change_pending(self, process: Process) -> bool:
        # A rolled back savepoint discards its on_commit callbacks but not the flag.
        if not process.routes_changed:
            return False
        callback = process.routes_changed_callback
        return any(entry[1] is callback for entry in transaction.get_connection().run_on_commit)

    def _notify_routes_changed(self, process: Process) -> None:
        try:
            self.notifier.routes_changed(process)
        except Exception:
            logger.exception("Post-commit routes_changed notification failed for process %s", process.guid)
        finally:
            process.routes_changed = False
