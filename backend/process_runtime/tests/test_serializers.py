import json

from django.test import TestCase
from rest_framework.exceptions import ValidationError

from process_runtime.models import Process, RouteMapping
from process_runtime.serializers import dump_process, load_process_record, process_record, restore_process

from .helpers import ProcessFixtures


class ProcessRecordTests(ProcessFixtures, TestCase):
    def setUp(self):
        self.space = self.make_space()
        self.route_a = self.make_route(self.space, host="a")
        self.route_b = self.make_route(self.space, host="b")

    def test_record_lists_route_mappings_in_order(self):
        process = self.make_process(self.space, diego=True, ports=[9000])
        RouteMapping.objects.create(process=process, route=self.route_a, bound_port=9000)
        RouteMapping.objects.create(process=process, route=self.route_b)
        record = process_record(process)
        self.assertEqual(record["space"], self.space.guid)
        self.assertEqual(record["ports"], [9000])
        self.assertEqual(
            [dict(item) for item in record["route_mappings"]],
            [{"route_id": self.route_a.guid, "bound_port": 9000}, {"route_id": self.route_b.guid, "bound_port": None}],
        )

    def test_restore_from_dumped_record(self):
        process = self.make_process(self.space, diego=True, ports=[9000], state="STARTED")
        RouteMapping.objects.create(process=process, route=self.route_a, bound_port=9000)
        payload = json.loads(dump_process(process))
        payload["guid"] = "restored-process"
        restored = restore_process(payload)
        self.assertEqual(restored.guid, "restored-process")
        self.assertEqual(restored.space_id, self.space.pk)
        self.assertEqual(restored.version, "v1")
        self.assertEqual(
            list(RouteMapping.objects.filter(process=restored).values_list("route__guid", "bound_port")),
            [(self.route_a.guid, 9000)],
        )

    def test_staged_record_requires_droplet(self):
        with self.assertRaises(ValidationError) as cm:
            load_process_record({"guid": "p-1", "name": "web", "space": self.space.guid, "package_state": "STAGED"})
        self.assertIn("droplet_hash", cm.exception.detail)
        self.assertFalse(Process.objects.filter(guid="p-1").exists())

    def test_legacy_record_rejects_bound_ports(self):
        payload = {
            "guid": "p-2",
            "name": "web",
            "space": self.space.guid,
            "diego": False,
            "route_mappings": [{"route_id": self.route_a.guid, "bound_port": 9000}],
        }
        with self.assertRaises(ValidationError) as cm:
            load_process_record(payload)
        self.assertIn("route_mappings", cm.exception.detail)

    def test_unknown_route_is_rejected(self):
        payload = {"guid": "p-3", "name": "web", "route_mappings": [{"route_id": "missing-route"}]}
        with self.assertRaises(ValidationError) as cm:
            load_process_record(json.dumps(payload))
        self.assertIn("route_mappings", cm.exception.detail)
