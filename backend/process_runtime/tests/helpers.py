from unittest import mock

from process_runtime.config import PlatformDefaults
from process_runtime.events import AuditEventRepository, UsageEventRepository
from process_runtime.lifecycle import ProcessLifecycle
from process_runtime.models import Domain, Organization, Process, QuotaDefinition, Route, Space
from process_runtime.notifications import NotifierRegistry
from process_runtime.service_bindings import ServiceBindingDelete


class ProcessFixtures:
    """Builders shared by the process runtime test cases."""

    def make_org(self, name=None, quota=None):
        name = name or f"org-{Organization.objects.count() + 1}"
        return Organization.objects.create(name=name, quota_definition=quota)

    def make_quota(self, name="small", **limits):
        return QuotaDefinition.objects.create(name=name, **limits)

    def make_space(self, name="dev", org=None, space_quota=None, allow_ssh=True):
        org = org or self.make_org()
        return Space.objects.create(name=name, organization=org, space_quota_definition=space_quota, allow_ssh=allow_ssh)

    def make_domain(self, name="apps.example.com", owner=None):
        return Domain.objects.create(name=name, owning_organization=owner)

    def make_route(self, space, host="web", domain=None, route_service_url=None):
        domain = domain or Domain.objects.filter(name="apps.example.com").first() or self.make_domain()
        return Route.objects.create(host=host, domain=domain, space=space, route_service_url=route_service_url)

    def make_process(self, space, **overrides):
        values = {
            "name": "web-app",
            "space": space,
            "state": "STOPPED",
            "diego": False,
            "memory": 256,
            "disk_quota": 512,
            "instances": 1,
            "package_hash": "pkg-1",
            "version": "v1",
        }
        values.update(overrides)
        return Process.objects.create(**values)

    def make_lifecycle(self, defaults=None, **collaborators):
        self.notifier = collaborators.pop("notifier", None) or mock.Mock(spec=NotifierRegistry)
        return ProcessLifecycle(
            defaults or PlatformDefaults(),
            notifier=self.notifier,
            usage_events=collaborators.pop("usage_events", None) or UsageEventRepository(),
            audit_events=collaborators.pop("audit_events", None) or AuditEventRepository(),
            binding_terminator=collaborators.pop("binding_terminator", None) or ServiceBindingDelete(),
        )
