from __future__ import annotations

import hashlib
import json
from dataclasses import dataclass
from typing import Any, Dict, Mapping, Optional

from django.db import models

from .buildpacks import resolve_buildpack
from .effective import effective_name
from .models import Process, ProcessAuditEvent, ProcessUsageEvent, Route


USAGE_STATE_DELETED = "DELETED"
USAGE_STATE_BUILDPACK_SET = "BUILDPACK_SET"

AUDIT_CREATE = "audit.app.create"
AUDIT_UPDATE = "audit.app.update"
AUDIT_DELETE_REQUEST = "audit.app.delete-request"
AUDIT_MAP_ROUTE = "audit.app.map-route"
AUDIT_UNMAP_ROUTE = "audit.app.unmap-route"

# Request attributes whose values are never copied into audit metadata.
REDACTED_ATTRIBUTES = ("environment_json", "environment_variables")


@dataclass(frozen=True)
class Actor:
    guid: str = ""
    email: str = ""

    @classmethod
    def system(cls) -> "Actor":
        return cls(guid="system", email="system@process-runtime.local")


def _canonical_json(value: Any) -> str:
    return json.dumps(value, sort_keys=True, separators=(",", ":"), ensure_ascii=False, default=str)


def _plain(value: Any) -> Any:
    if value is None or isinstance(value, (str, int, float, bool)):
        return value
    if isinstance(value, models.Model):
        return getattr(value, "guid", None) or value.pk
    if isinstance(value, Mapping):
        return {str(key): _plain(item) for key, item in value.items()}
    if isinstance(value, (list, tuple)):
        return [_plain(item) for item in value]
    return str(value)


def _request_metadata(request: Optional[Mapping[str, Any]]) -> Dict[str, Any]:
    metadata: Dict[str, Any] = {}
    for key, value in (request or {}).items():
        if key in REDACTED_ATTRIBUTES:
            metadata[key] = {"hash": hashlib.sha256(_canonical_json(_plain(value)).encode("utf-8")).hexdigest()}
        else:
            metadata[key] = _plain(value)
    return metadata


class UsageEventRepository:
    def build_from_process(self, process: Process, state: Optional[str] = None) -> ProcessUsageEvent:
        """Snapshot the process footprint now; the row is written by save()."""
        buildpack = resolve_buildpack(process)
        space = process.space if process.space_id else None
        return ProcessUsageEvent(
            state=state or process.state,
            process_guid=process.guid,
            process_name=effective_name(process) or "",
            process_type=process.type or "",
            space_guid=space.guid if space else "",
            space_name=space.name if space else "",
            org_guid=space.organization.guid if space else "",
            instance_count=process.instances or 0,
            memory_in_mb_per_instance=process.memory or 0,
            package_state=process.package_state or "",
            buildpack_guid=process.detected_buildpack_guid or buildpack.guid,
            buildpack_name=process.detected_buildpack_name or buildpack.display_name or None,
        )

    def create_from_process(self, process: Process, state: Optional[str] = None) -> ProcessUsageEvent:
        event = self.build_from_process(process, state)
        event.save()
        return event


class AuditEventRepository:
    def _record(
        self,
        event_type: str,
        process: Process,
        actor: Optional[Actor],
        metadata: Optional[Dict[str, Any]] = None,
        save: bool = True,
    ) -> ProcessAuditEvent:
        actor = actor or Actor.system()
        space = process.space if process.space_id else None
        event = ProcessAuditEvent(
            type=event_type,
            actor_guid=actor.guid,
            actor_email=actor.email,
            actee_guid=process.guid,
            actee_name=effective_name(process) or "",
            space_guid=space.guid if space else "",
            organization_guid=space.organization.guid if space else "",
            metadata_json=metadata or {},
        )
        if save:
            event.save()
        return event

    def record_process_create(self, process: Process, actor: Optional[Actor], request: Mapping[str, Any], save: bool = True):
        return self._record(AUDIT_CREATE, process, actor, {"request": _request_metadata(request)}, save=save)

    def record_process_update(self, process: Process, actor: Optional[Actor], request: Mapping[str, Any], save: bool = True):
        return self._record(AUDIT_UPDATE, process, actor, {"request": _request_metadata(request)}, save=save)

    def record_process_delete_request(self, process: Process, actor: Optional[Actor], recursive: bool = False, save: bool = True):
        return self._record(AUDIT_DELETE_REQUEST, process, actor, {"request": {"recursive": recursive}}, save=save)

    def record_map_route(self, process: Process, actor: Optional[Actor], route: Route, bound_port: Optional[int] = None, save: bool = True):
        return self._record(AUDIT_MAP_ROUTE, process, actor, {"route_guid": route.guid, "app_port": bound_port}, save=save)

    def record_unmap_route(self, process: Process, actor: Optional[Actor], route: Route, save: bool = True):
        return self._record(AUDIT_UNMAP_ROUTE, process, actor, {"route_guid": route.guid}, save=save)
