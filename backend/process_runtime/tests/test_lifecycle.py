from datetime import timedelta
from unittest import mock

from django.db import transaction
from django.test import TestCase
from django.utils import timezone

from process_runtime.config import PlatformDefaults
from process_runtime.errors import ApiError, ProcessValidationError, ServiceBindingDeleteError, translate_validation_error
from process_runtime.models import (
    Application,
    Buildpack,
    Process,
    ProcessAuditEvent,
    ProcessUsageEvent,
    RouteMapping,
    ServiceBinding,
    Stack,
)
from process_runtime.service_bindings import ServiceBindingDelete

from .helpers import ProcessFixtures


class ProcessCreateTests(ProcessFixtures, TestCase):
    def setUp(self):
        self.space = self.make_space()
        self.lifecycle = self.make_lifecycle()

    def test_create_fills_defaults_and_emits_events(self):
        with self.captureOnCommitCallbacks(execute=True):
            process = self.lifecycle.create({"name": "api", "space": self.space})
        process.refresh_from_db()
        self.assertTrue(process.version)
        self.assertEqual(process.package_state, "PENDING")
        self.assertIs(process.diego, False)
        self.assertEqual(process.memory, 1024)
        self.assertEqual(process.disk_quota, 1024)
        self.assertEqual(process.instances, 1)
        self.assertTrue(process.enable_ssh)
        self.assertEqual(ProcessUsageEvent.objects.filter(process_guid=process.guid, state="STOPPED").count(), 1)
        self.assertEqual(ProcessAuditEvent.objects.get(actee_guid=process.guid).type, "audit.app.create")
        self.notifier.updated.assert_called_once_with(process)

    def test_create_uses_backend_default(self):
        lifecycle = self.make_lifecycle(PlatformDefaults(default_to_diego_backend=True))
        process = lifecycle.create({"name": "api", "space": self.space})
        self.assertIs(process.diego, True)

    def test_create_with_empty_ports_and_port_health_check_fails(self):
        with self.captureOnCommitCallbacks(execute=True) as callbacks:
            with self.assertRaises(ProcessValidationError) as cm:
                self.lifecycle.create(
                    {"name": "api", "space": self.space, "diego": True, "ports": [], "health_check_type": "port"}
                )
        self.assertTrue(cm.exception.violations.has("ports_empty_for_port_healthcheck"))
        self.assertIn("ports", cm.exception.error_dict)
        self.assertFalse(Process.objects.filter(name="api").exists())
        self.assertEqual(callbacks, [])

    def test_unknown_attribute_is_rejected(self):
        with self.assertRaises(ApiError) as cm:
            self.lifecycle.create({"name": "api", "space": self.space, "colour": "blue"})
        self.assertEqual(cm.exception.name, "InvalidRequest")
        self.assertIn("colour", cm.exception.message)

    def test_create_for_application_inherits_name_and_space(self):
        app = Application.objects.create(name="shop", space=self.space)
        process = self.lifecycle.create({"app": app})
        self.assertEqual(process.name, "shop")
        self.assertEqual(process.space_id, self.space.pk)

    def test_docker_image_sets_package(self):
        lifecycle = self.make_lifecycle(PlatformDefaults(default_to_diego_backend=True))
        process = lifecycle.create({"name": "nginx", "space": self.space, "docker_image": "nginx"})
        self.assertEqual(process.docker_image, "nginx:latest")
        self.assertEqual(process.package_hash, "nginx:latest")


class ProcessUpdateTests(ProcessFixtures, TestCase):
    def setUp(self):
        self.space = self.make_space()
        self.lifecycle = self.make_lifecycle()

    def test_stopped_memory_update_keeps_version(self):
        process = self.make_process(self.space, state="STOPPED")
        with self.captureOnCommitCallbacks(execute=True):
            self.lifecycle.update(process, {"memory": 512})
        process.refresh_from_db()
        self.assertEqual(process.memory, 512)
        self.assertEqual(process.version, "v1")
        self.assertFalse(ProcessUsageEvent.objects.filter(process_guid=process.guid).exists())

    def test_start_generates_new_version(self):
        process = self.make_process(self.space, state="STOPPED")
        with self.captureOnCommitCallbacks(execute=True):
            self.lifecycle.start(process)
        process.refresh_from_db()
        self.assertEqual(process.state, "STARTED")
        self.assertNotEqual(process.version, "v1")
        self.assertEqual(ProcessUsageEvent.objects.get(process_guid=process.guid).state, "STARTED")
        self.notifier.updated.assert_called_once_with(process)

    def test_started_command_change_keeps_version(self):
        process = self.make_process(self.space, state="STARTED", command="run")
        self.lifecycle.update(process, {"command": "serve"})
        process.refresh_from_db()
        self.assertEqual(process.command, "serve")
        self.assertEqual(process.version, "v1")

    def test_started_memory_change_bumps_version_and_records_usage(self):
        process = self.make_process(self.space, state="STARTED")
        with self.captureOnCommitCallbacks(execute=True):
            self.lifecycle.update(process, {"memory": 512})
        process.refresh_from_db()
        self.assertNotEqual(process.version, "v1")
        event = ProcessUsageEvent.objects.get(process_guid=process.guid)
        self.assertEqual(event.memory_in_mb_per_instance, 512)

    def test_start_without_package_is_rejected(self):
        process = self.make_process(self.space, package_hash=None)
        with self.assertRaises(ProcessValidationError) as cm:
            self.lifecycle.start(process)
        self.assertEqual(translate_validation_error(cm.exception).name, "AppPackageInvalid")
        process.refresh_from_db()
        self.assertEqual(process.state, "STOPPED")

    def test_buildpack_change_triggers_restaging(self):
        process = self.make_process(self.space, package_state="STAGED", droplet_hash="d-1")
        self.lifecycle.update(process, {"buildpack": "https://github.com/cloudfoundry/ruby-buildpack"})
        process.refresh_from_db()
        self.assertEqual(process.package_state, "PENDING")
        self.assertEqual(process.buildpack, "https://github.com/cloudfoundry/ruby-buildpack")

    def test_stack_change_triggers_restaging(self):
        old_stack = Stack.objects.create(name="cflinuxfs2")
        Stack.objects.create(name="cflinuxfs3")
        process = self.make_process(self.space, package_state="STAGED", droplet_hash="d-1", stack=old_stack)
        self.lifecycle.update(process, {"stack": "cflinuxfs3"})
        process.refresh_from_db()
        self.assertEqual(process.package_state, "PENDING")
        self.assertEqual(process.stack.name, "cflinuxfs3")
        self.assertIsNotNone(process.package_pending_since)

    def test_buildpack_change_on_pending_process_refreshes_pending_since(self):
        pending_since = timezone.now() - timedelta(hours=1)
        process = self.make_process(self.space, package_state="PENDING", package_pending_since=pending_since)
        self.lifecycle.update(process, {"buildpack": "https://github.com/cloudfoundry/go-buildpack"})
        process.refresh_from_db()
        self.assertEqual(process.package_state, "PENDING")
        self.assertGreater(process.package_pending_since, pending_since)

    def test_unrelated_update_keeps_pending_since(self):
        pending_since = timezone.now() - timedelta(hours=1)
        process = self.make_process(self.space, package_state="PENDING", package_pending_since=pending_since)
        self.lifecycle.update(process, {"memory": 512})
        process.refresh_from_db()
        self.assertEqual(process.package_pending_since, pending_since)

    def test_events_keep_values_from_when_they_were_queued(self):
        process = self.make_process(self.space, name="before")
        with self.captureOnCommitCallbacks(execute=True):
            with transaction.atomic():
                self.lifecycle.update(process, {"name": "middle"})
                self.lifecycle.update(process, {"name": "after", "memory": 512})
        names = list(
            ProcessAuditEvent.objects.filter(actee_guid=process.guid, type="audit.app.update")
            .order_by("id")
            .values_list("actee_name", flat=True)
        )
        self.assertEqual(names, ["middle", "after"])

    def test_admin_buildpack_is_resolved_by_name(self):
        buildpack = Buildpack.objects.create(name="ruby_buildpack", key="ruby-key")
        process = self.make_process(self.space)
        self.lifecycle.update(process, {"buildpack": "ruby_buildpack"})
        process.refresh_from_db()
        self.assertEqual(process.admin_buildpack_id, buildpack.pk)
        self.assertIsNone(process.buildpack)

    def test_application_fields_are_written_to_companion(self):
        app = Application.objects.create(name="shop", space=self.space)
        process = self.make_process(self.space, name="shop", app=app)
        self.lifecycle.update(process, {"name": "store", "environment_json": {"MODE": "prod"}})
        app.refresh_from_db()
        self.assertEqual(app.name, "store")
        self.assertEqual(app.environment_variables, {"MODE": "prod"})

    def test_notification_failure_does_not_roll_back(self):
        process = self.make_process(self.space)
        self.notifier.updated.side_effect = RuntimeError("downstream unavailable")
        with self.assertLogs("process_runtime.lifecycle", level="ERROR") as logs:
            with self.captureOnCommitCallbacks(execute=True):
                self.lifecycle.start(process)
        process.refresh_from_db()
        self.assertEqual(process.state, "STARTED")
        self.assertIn("updated notification", logs.output[0])

    def test_restage_stops_marks_pending_and_starts(self):
        process = self.make_process(self.space, state="STARTED", package_state="STAGED", droplet_hash="d-1")
        with self.captureOnCommitCallbacks(execute=True):
            self.lifecycle.restage(process)
        process.refresh_from_db()
        self.assertEqual(process.state, "STARTED")
        self.assertEqual(process.package_state, "PENDING")
        self.assertNotEqual(process.version, "v1")
        states = list(ProcessUsageEvent.objects.filter(process_guid=process.guid).values_list("state", flat=True))
        self.assertEqual(states, ["STOPPED", "STARTED"])

    def test_restage_without_package(self):
        process = self.make_process(self.space, package_hash=None)
        with self.assertRaises(ApiError) as cm:
            self.lifecycle.restage(process)
        self.assertEqual(cm.exception.name, "NotStaged")


class BackendMigrationTests(ProcessFixtures, TestCase):
    def setUp(self):
        self.space = self.make_space()
        self.lifecycle = self.make_lifecycle()
        self.route_a = self.make_route(self.space, host="a")
        self.route_b = self.make_route(self.space, host="b")

    def test_multiple_bound_ports_block_move_to_legacy(self):
        process = self.make_process(self.space, diego=True, ports=[9000])
        RouteMapping.objects.create(process=process, route=self.route_a, bound_port=9000)
        RouteMapping.objects.create(process=process, route=self.route_b, bound_port=9000)
        with self.assertRaises(ProcessValidationError) as cm:
            self.lifecycle.update(process, {"diego": False})
        self.assertTrue(cm.exception.violations.has("multiple_ports_mapped_transitioning_to_legacy"))
        self.assertEqual(translate_validation_error(cm.exception).name, "MultipleAppPortsMappedDiegoToDea")
        process.refresh_from_db()
        self.assertIs(process.diego, True)
        self.assertEqual(process.ports, [9000])
        self.assertEqual(list(RouteMapping.objects.values_list("bound_port", flat=True)), [9000, 9000])

    def test_move_to_legacy_clears_ports_and_bound_ports(self):
        process = self.make_process(self.space, diego=True, ports=[9000])
        RouteMapping.objects.create(process=process, route=self.route_a, bound_port=9000)
        RouteMapping.objects.create(process=process, route=self.route_b)
        self.lifecycle.update(process, {"diego": False})
        process.refresh_from_db()
        self.assertIs(process.diego, False)
        self.assertIsNone(process.ports)
        self.assertEqual(list(RouteMapping.objects.values_list("bound_port", flat=True)), [None, None])

    def test_move_to_diego_binds_single_user_port(self):
        process = self.make_process(self.space, diego=False)
        RouteMapping.objects.create(process=process, route=self.route_a)
        RouteMapping.objects.create(process=process, route=self.route_b)
        self.lifecycle.update(process, {"diego": True, "ports": [9000]})
        self.assertEqual(list(RouteMapping.objects.values_list("bound_port", flat=True)), [9000, 9000])

    def test_default_port_propagates_when_ports_first_set(self):
        process = self.make_process(self.space, diego=True)
        RouteMapping.objects.create(process=process, route=self.route_a)
        self.lifecycle.update(process, {"ports": [8080, 9000]})
        self.assertEqual(RouteMapping.objects.get(route=self.route_a).bound_port, 8080)

    def test_removing_mapped_port_is_rejected(self):
        process = self.make_process(self.space, diego=True, ports=[9000, 9001])
        RouteMapping.objects.create(process=process, route=self.route_a, bound_port=9001)
        with self.assertRaises(ProcessValidationError) as cm:
            self.lifecycle.update(process, {"ports": [9000]})
        self.assertTrue(cm.exception.violations.has("mapped_port_removed"))


class RouteChangeTests(ProcessFixtures, TestCase):
    def setUp(self):
        self.space = self.make_space()
        self.lifecycle = self.make_lifecycle()
        self.route_a = self.make_route(self.space, host="a")
        self.route_b = self.make_route(self.space, host="b")

    def test_diego_route_edits_coalesce_into_one_notification(self):
        process = self.make_process(self.space, diego=True, state="STARTED")
        with self.captureOnCommitCallbacks(execute=True):
            with transaction.atomic():
                first = self.lifecycle.attach_route(process, self.route_a)
                self.lifecycle.attach_route(process, self.route_b)
                self.assertTrue(process.routes_changed)
        self.notifier.routes_changed.assert_called_once_with(process)
        self.notifier.updated.assert_not_called()
        self.assertFalse(process.routes_changed)
        self.assertEqual(first.bound_port, None)
        process.refresh_from_db()
        self.assertEqual(process.version, "v1")
        self.assertEqual(ProcessAuditEvent.objects.filter(type="audit.app.map-route").count(), 2)

        with self.captureOnCommitCallbacks(execute=True):
            self.lifecycle.detach_route(process, self.route_a)
        self.assertEqual(self.notifier.routes_changed.call_count, 2)
        self.assertFalse(RouteMapping.objects.filter(route=self.route_a).exists())

    def test_rolled_back_route_edit_does_not_suppress_next_notification(self):
        process = self.make_process(self.space, diego=True, state="STARTED")
        with self.captureOnCommitCallbacks(execute=True):
            with transaction.atomic():
                with self.assertRaises(RuntimeError):
                    with transaction.atomic():
                        self.lifecycle.attach_route(process, self.route_a)
                        raise RuntimeError("abort")
                self.lifecycle.attach_route(process, self.route_b)
        self.notifier.routes_changed.assert_called_once_with(process)
        self.assertFalse(process.routes_changed)
        self.assertEqual(
            list(RouteMapping.objects.filter(process=process).values_list("route_id", flat=True)), [self.route_b.pk]
        )

    def test_diego_attach_binds_first_user_port(self):
        process = self.make_process(self.space, diego=True, ports=[9000, 9001])
        mapping = self.lifecycle.attach_route(process, self.route_a)
        self.assertEqual(mapping.bound_port, 9000)

    def test_explicit_port_must_be_exposed(self):
        process = self.make_process(self.space, diego=True, ports=[9000])
        with self.assertRaises(ApiError):
            self.lifecycle.attach_route(process, self.route_a, bound_port=9999)
        mapping = self.lifecycle.attach_route(process, self.route_a, bound_port=9000)
        self.assertEqual(mapping.bound_port, 9000)

    def test_duplicate_mapping_is_rejected(self):
        process = self.make_process(self.space, diego=True)
        self.lifecycle.attach_route(process, self.route_a)
        with self.assertRaises(ApiError) as cm:
            self.lifecycle.attach_route(process, self.route_a)
        self.assertEqual(cm.exception.name, "RouteMappingTaken")

    def test_legacy_route_edit_bumps_version(self):
        process = self.make_process(self.space, diego=False, state="STARTED")
        with self.captureOnCommitCallbacks(execute=True):
            mapping = self.lifecycle.attach_route(process, self.route_a)
        self.assertIsNone(mapping.bound_port)
        process.refresh_from_db()
        self.assertNotEqual(process.version, "v1")
        self.notifier.updated.assert_called_once_with(process)
        self.notifier.routes_changed.assert_not_called()

    def test_detach_of_unmapped_route_is_a_no_op(self):
        process = self.make_process(self.space, diego=True)
        with self.captureOnCommitCallbacks(execute=True):
            removed = self.lifecycle.detach_route(process, self.route_a)
        self.assertEqual(removed, 0)
        self.notifier.routes_changed.assert_not_called()


class ProcessDestroyTests(ProcessFixtures, TestCase):
    def setUp(self):
        self.space = self.make_space()

    def test_destroy_severs_bindings_and_records_deletion(self):
        lifecycle = self.make_lifecycle()
        process = self.make_process(self.space, state="STARTED")
        ServiceBinding.objects.create(process=process, service_instance_name="db")
        guid = process.guid
        with self.captureOnCommitCallbacks(execute=True):
            lifecycle.destroy(process)
        self.assertFalse(Process.objects.filter(guid=guid).exists())
        self.assertFalse(ServiceBinding.objects.exists())
        event = ProcessUsageEvent.objects.get(process_guid=guid)
        self.assertEqual(event.state, "DELETED")
        self.assertEqual(ProcessAuditEvent.objects.get(actee_guid=guid).type, "audit.app.delete-request")
        self.notifier.deleted.assert_called_once_with(process)
        self.assertEqual(process.state, "STOPPED")

    def test_binding_failure_aborts_destroy(self):
        terminator = mock.Mock(spec=ServiceBindingDelete)
        terminator.delete.return_value = [ServiceBindingDeleteError("binding-1", RuntimeError("broker down"))]
        lifecycle = self.make_lifecycle(binding_terminator=terminator)
        process = self.make_process(self.space, state="STARTED")
        with self.captureOnCommitCallbacks(execute=True):
            with self.assertRaises(ServiceBindingDeleteError):
                lifecycle.destroy(process)
        process.refresh_from_db()
        self.assertEqual(process.state, "STARTED")
        self.notifier.deleted.assert_not_called()
        self.assertFalse(ProcessUsageEvent.objects.exists())


class StagingCallbackTests(ProcessFixtures, TestCase):
    def setUp(self):
        self.space = self.make_space()
        self.lifecycle = self.make_lifecycle()

    def test_unknown_staging_failure_reason(self):
        process = self.make_process(self.space, state="STARTED", diego=True)
        with self.assertLogs("process_runtime.staging", level="WARNING"):
            reason = self.lifecycle.report_staging_failure(process, "TotallyUnknownReason")
        self.assertEqual(reason, "StagingError")
        process.refresh_from_db()
        self.assertEqual(process.package_state, "FAILED")
        self.assertEqual(process.staging_failed_reason, "StagingError")
        self.assertEqual(process.state, "STOPPED")

    def test_failure_detail_is_rendered(self):
        process = self.make_process(self.space)
        self.lifecycle.report_staging_failure(process, "StagerError", "no space left")
        process.refresh_from_db()
        self.assertEqual(process.staging_failed_description, "Stager error: no space left")

    def test_add_droplet_marks_staged(self):
        app = Application.objects.create(name="shop", space=self.space)
        process = self.make_process(self.space, name="shop", app=app, state="STARTED")
        with self.captureOnCommitCallbacks(execute=True):
            droplet = self.lifecycle.add_droplet(process, "droplet-1", detected_start_command="bundle exec rackup")
        process.refresh_from_db()
        app.refresh_from_db()
        self.assertEqual(process.package_state, "STAGED")
        self.assertEqual(process.droplet_hash, "droplet-1")
        self.assertEqual(app.droplet_id, droplet.pk)
        self.assertEqual(process.version, "v1")
        self.notifier.updated.assert_called_once_with(process)

    def test_detected_buildpack_records_usage_when_running(self):
        buildpack = Buildpack.objects.create(name="ruby_buildpack", key="ruby-key")
        process = self.make_process(self.space, state="STARTED", package_state="STAGED", droplet_hash="d-1")
        with self.captureOnCommitCallbacks(execute=True):
            self.lifecycle.update_detected_buildpack(process, "ruby 2.3", "ruby-key")
        process.refresh_from_db()
        self.assertEqual(process.detected_buildpack_guid, buildpack.guid)
        self.assertEqual(process.detected_buildpack_name, "ruby_buildpack")
        event = ProcessUsageEvent.objects.get(process_guid=process.guid)
        self.assertEqual(event.state, "BUILDPACK_SET")
        self.assertEqual(event.buildpack_guid, buildpack.guid)
