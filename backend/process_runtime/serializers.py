import json
from typing import Any, Dict, Mapping, Union

from django.db import transaction
from rest_framework import serializers

from .models import PACKAGE_STAGED, Application, Buildpack, Process, Route, RouteMapping, Space, Stack


class RouteMappingRecordSerializer(serializers.Serializer):
    route_id = serializers.CharField(allow_null=True)
    bound_port = serializers.IntegerField(allow_null=True, required=False, default=None, min_value=1, max_value=65535)

    def to_representation(self, instance):
        if isinstance(instance, RouteMapping):
            return {
                "route_id": instance.route.guid if instance.route_id else None,
                "bound_port": instance.bound_port,
            }
        return super().to_representation(instance)


class ProcessRecordSerializer(serializers.ModelSerializer):
    space = serializers.SlugRelatedField(slug_field="guid", queryset=Space.objects.all(), allow_null=True, required=False)
    app = serializers.SlugRelatedField(slug_field="guid", queryset=Application.objects.all(), allow_null=True, required=False)
    admin_buildpack = serializers.SlugRelatedField(
        slug_field="guid", queryset=Buildpack.objects.all(), allow_null=True, required=False
    )
    stack = serializers.SlugRelatedField(slug_field="name", queryset=Stack.objects.all(), allow_null=True, required=False)
    ports = serializers.ListField(child=serializers.IntegerField(), allow_null=True, required=False)
    route_mappings = RouteMappingRecordSerializer(many=True, required=False)

    class Meta:
        model = Process
        fields = [
            "guid",
            "name",
            "type",
            "space",
            "app",
            "state",
            "package_state",
            "package_hash",
            "package_updated_at",
            "package_pending_since",
            "staging_task_id",
            "staging_failed_reason",
            "staging_failed_description",
            "version",
            "diego",
            "ports",
            "memory",
            "disk_quota",
            "instances",
            "file_descriptors",
            "enable_ssh",
            "health_check_type",
            "health_check_timeout",
            "command",
            "docker_image",
            "droplet_hash",
            "buildpack",
            "admin_buildpack",
            "detected_buildpack",
            "detected_buildpack_guid",
            "detected_buildpack_name",
            "stack",
            "production",
            "metadata",
            "environment_json",
            "created_at",
            "updated_at",
            "route_mappings",
        ]
        read_only_fields = ["created_at", "updated_at"]

    def validate_route_mappings(self, value):
        known = set(Route.objects.filter(guid__in=[item["route_id"] for item in value if item.get("route_id")]).values_list("guid", flat=True))
        missing = [item["route_id"] for item in value if item.get("route_id") and item["route_id"] not in known]
        if missing:
            raise serializers.ValidationError(f"unknown routes: {', '.join(missing)}")
        return value

    def validate(self, attrs):
        if attrs.get("package_state") == PACKAGE_STAGED and not attrs.get("droplet_hash"):
            raise serializers.ValidationError({"droplet_hash": "staged processes require a droplet reference"})
        if attrs.get("diego") is False:
            if any(item.get("bound_port") is not None for item in attrs.get("route_mappings") or []):
                raise serializers.ValidationError({"route_mappings": "bound ports are only supported on Diego"})
        return attrs

    def create(self, validated_data):
        mappings = validated_data.pop("route_mappings", [])
        with transaction.atomic():
            process = Process.objects.create(**validated_data)
            routes = {route.guid: route for route in Route.objects.filter(guid__in=[item["route_id"] for item in mappings])}
            for item in mappings:
                RouteMapping.objects.create(
                    process=process,
                    route=routes.get(item["route_id"]),
                    bound_port=item.get("bound_port"),
                )
        return process


def process_record(process: Process) -> Dict[str, Any]:
    return ProcessRecordSerializer(process).data


def dump_process(process: Process) -> str:
    return json.dumps(process_record(process), sort_keys=True)


def load_process_record(payload: Union[str, Mapping[str, Any]]) -> ProcessRecordSerializer:
    data = json.loads(payload) if isinstance(payload, str) else dict(payload)
    serializer = ProcessRecordSerializer(data=data)
    serializer.is_valid(raise_exception=True)
    return serializer


def restore_process(payload: Union[str, Mapping[str, Any]]) -> Process:
    return load_process_record(payload).save()
