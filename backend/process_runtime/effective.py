from dataclasses import dataclass, field
from typing import Any, Dict, Optional

from .buildpacks import BuildpackRef, resolve_buildpack
from .models import Droplet, Process, Stack


@dataclass(frozen=True)
class EffectiveProcessConfig:
    """Read-only view of a process with values inherited from its companion application resolved."""

    name: str
    buildpack: BuildpackRef
    stack_name: Optional[str]
    command: Optional[str]
    environment: Dict[str, Any] = field(default_factory=dict)
    droplet: Optional[Droplet] = None


def _companion(process: Process):
    return process.app if process.app_id else None


def effective_name(process: Process) -> str:
    app = _companion(process)
    if app is not None and process.type == "web":
        return app.name
    return process.name


def effective_stack(process: Process) -> Optional[Stack]:
    app = _companion(process)
    if app is not None and app.uses_buildpack_lifecycle and app.lifecycle_stack:
        return Stack.objects.filter(name=app.lifecycle_stack).first()
    return process.stack if process.stack_id else None


def effective_environment(process: Process) -> Optional[Dict[str, Any]]:
    app = _companion(process)
    if app is not None:
        return app.environment_variables
    return process.environment_json


def effective_command(process: Process) -> Optional[str]:
    if process.command:
        return process.command
    metadata = process.metadata if isinstance(process.metadata, dict) else {}
    return metadata.get("command") or None


def current_droplet(process: Process) -> Optional[Droplet]:
    if not process.droplet_hash or process.pk is None:
        return None
    return Droplet.objects.filter(process=process, droplet_hash=process.droplet_hash).order_by("-id").first()


def effective_droplet(process: Process) -> Optional[Droplet]:
    app = _companion(process)
    if app is not None and app.droplet_id:
        return app.droplet
    return current_droplet(process)


def effective_config(process: Process) -> EffectiveProcessConfig:
    stack = effective_stack(process)
    environment = effective_environment(process)
    return EffectiveProcessConfig(
        name=effective_name(process),
        buildpack=resolve_buildpack(process),
        stack_name=stack.name if stack else None,
        command=effective_command(process),
        environment=dict(environment) if isinstance(environment, dict) else {},
        droplet=effective_droplet(process),
    )
