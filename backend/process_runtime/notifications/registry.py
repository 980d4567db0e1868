import logging
from typing import Any, Dict, List

from process_runtime.backends import ports_with_defaults
from process_runtime.config import load_platform_config
from process_runtime.effective import effective_name
from process_runtime.models import Process, RouteMapping

from .notifiers.aws_sns import AwsSnsNotifier
from .notifiers.webhook import WebhookNotifier


logger = logging.getLogger(__name__)

EVENT_UPDATED = "updated"
EVENT_DELETED = "deleted"
EVENT_ROUTES_CHANGED = "routes_changed"

# Channel type -> notifier class and the config keys it cannot run without.
NOTIFIER_TYPES = {
    "webhook": (WebhookNotifier, ("url",)),
    "aws_sns": (AwsSnsNotifier, ("topic_arn", "region")),
}


def process_message(process: Process, event: str) -> Dict[str, Any]:
    message: Dict[str, Any] = {
        "event": event,
        "guid": process.guid,
        "name": effective_name(process),
        "type": process.type,
        "version": process.version,
        "state": process.state,
        "package_state": process.package_state,
        "instances": process.instances,
        "memory": process.memory,
        "diego": bool(process.diego),
        "space_guid": process.space.guid if process.space_id else None,
    }
    if process.pk is None or event == EVENT_DELETED:
        message["ports"] = process.ports
        return message
    message["ports"] = ports_with_defaults(process)
    mappings = RouteMapping.objects.filter(process_id=process.pk, route__isnull=False).select_related("route__domain")
    message["routes"] = [{"uri": mapping.route.uri, "port": mapping.bound_port} for mapping in mappings]
    return message


class NotifierRegistry:
    def __init__(self, config: Dict[str, Any]):
        self.config = config or {}

    @classmethod
    def from_settings(cls) -> "NotifierRegistry":
        return cls(load_platform_config())

    def list_enabled_notifiers(self) -> List[Any]:
        notifications = self.config.get("notifications") or {}
        if not notifications.get("enabled", True):
            return []
        enabled = []
        for channel in notifications.get("channels") or []:
            if not channel.get("enabled", True):
                continue
            kind = str(channel.get("type") or "").strip().lower()
            if kind not in NOTIFIER_TYPES:
                continue
            notifier_class, required = NOTIFIER_TYPES[kind]
            channel_config = channel.get(kind) or {}
            if all(channel_config.get(key) for key in required):
                enabled.append(notifier_class(channel_config))
            else:
                logger.warning("Skipping %s notification channel without %s", kind, ", ".join(required))
        return enabled

    def _publish(self, process: Process, event: str) -> List[str]:
        errors: List[str] = []
        notifiers = self.list_enabled_notifiers()
        if not notifiers:
            return errors
        message = process_message(process, event)
        for notifier in notifiers:
            try:
                notifier.notify(message)
            except Exception as exc:
                ntype = getattr(notifier, "notifier_type", "unknown")
                logger.warning("Notifier %s failed for process %s (%s): %s", ntype, process.guid, event, exc)
                errors.append(f"{ntype}: {exc.__class__.__name__}")
        return errors

    def updated(self, process: Process) -> List[str]:
        return self._publish(process, EVENT_UPDATED)

    def deleted(self, process: Process) -> List[str]:
        return self._publish(process, EVENT_DELETED)

    def routes_changed(self, process: Process) -> List[str]:
        return self._publish(process, EVENT_ROUTES_CHANGED)
