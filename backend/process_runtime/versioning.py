import uuid

from .changes import ChangeSet
from .models import Process


# Changes to any of these alter the running behaviour of a started process.
VERSION_SENSITIVE_FIELDS = ("state", "memory", "health_check_type", "enable_ssh")


def new_version() -> str:
    return str(uuid.uuid4())


def ports_changed_by_user(changes: ChangeSet) -> bool:
    return changes.changed_by_request("ports")


def version_needs_update(process: Process, changes: ChangeSet) -> bool:
    if not process.is_started:
        return False
    if any(changes.changed(field) for field in VERSION_SENSITIVE_FIELDS):
        return True
    return ports_changed_by_user(changes)


def converge_version(process: Process, changes: ChangeSet) -> bool:
    if changes.is_new or version_needs_update(process, changes):
        process.version = new_version()
        return True
    return False
