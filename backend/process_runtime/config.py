from __future__ import annotations

import os
from dataclasses import dataclass, fields
from typing import Any, Dict, List, Mapping, Optional

import yaml
from django.conf import settings
from django.core.exceptions import ImproperlyConfigured
from jsonschema import Draft202012Validator


PLATFORM_CONFIG_SCHEMA: Dict[str, Any] = {
    "$schema": "https://json-schema.org/draft/2020-12/schema",
    "type": "object",
    "additionalProperties": False,
    "properties": {
        "process_defaults": {
            "type": "object",
            "additionalProperties": False,
            "properties": {
                "default_app_memory_mb": {"type": "integer", "minimum": 1},
                "default_app_disk_in_mb": {"type": "integer", "minimum": 1},
                "maximum_app_disk_in_mb": {"type": "integer", "minimum": 1},
                "default_instances": {"type": "integer", "minimum": 0},
                "default_to_diego_backend": {"type": "boolean"},
                "allow_app_ssh_access": {"type": "boolean"},
                "disable_custom_buildpacks": {"type": "boolean"},
                "docker_enabled": {"type": "boolean"},
                "default_health_check_timeout": {"type": ["integer", "null"], "minimum": 1},
                "maximum_health_check_timeout": {"type": "integer", "minimum": 1},
                "instance_file_descriptor_limit": {"type": ["integer", "null"], "minimum": 1},
                "default_stack": {"type": "string", "minLength": 1},
            },
        },
        "notifications": {
            "type": "object",
            "properties": {
                "enabled": {"type": "boolean"},
                "channels": {
                    "type": "array",
                    "items": {
                        "type": "object",
                        "required": ["type"],
                        "properties": {
                            "type": {"type": "string", "enum": ["webhook", "aws_sns"]},
                            "enabled": {"type": "boolean"},
                            "webhook": {"type": "object"},
                            "aws_sns": {"type": "object"},
                        },
                    },
                },
            },
        },
    },
}


@dataclass(frozen=True)
class PlatformDefaults:
    default_app_memory_mb: int = 1024
    default_app_disk_in_mb: int = 1024
    maximum_app_disk_in_mb: int = 2048
    default_instances: int = 1
    default_to_diego_backend: bool = False
    allow_app_ssh_access: bool = True
    disable_custom_buildpacks: bool = False
    docker_enabled: bool = True
    default_health_check_timeout: Optional[int] = None
    maximum_health_check_timeout: int = 180
    instance_file_descriptor_limit: Optional[int] = 16384
    default_stack: str = "cflinuxfs2"

    @classmethod
    def from_mapping(cls, values: Mapping[str, Any]) -> "PlatformDefaults":
        known = {item.name for item in fields(cls)}
        return cls(**{key: value for key, value in (values or {}).items() if key in known})

    @classmethod
    def from_settings(cls) -> "PlatformDefaults":
        return cls.from_mapping(load_platform_config()["process_defaults"])

    @property
    def custom_buildpacks_enabled(self) -> bool:
        return not self.disable_custom_buildpacks


def validate_platform_config(document: Dict[str, Any]) -> List[str]:
    validator = Draft202012Validator(PLATFORM_CONFIG_SCHEMA)
    errors = []
    for error in sorted(validator.iter_errors(document), key=lambda e: list(e.path)):
        path = ".".join(str(p) for p in error.path) if error.path else "root"
        errors.append(f"{path}: {error.message}")
    return errors


def _read_config_document(path: str) -> Dict[str, Any]:
    if not path:
        return {}
    if not os.path.exists(path):
        raise ImproperlyConfigured(f"platform config not found: {path}")
    with open(path, "r", encoding="utf-8") as handle:
        document = yaml.safe_load(handle) or {}
    if not isinstance(document, dict):
        raise ImproperlyConfigured(f"platform config must be a mapping: {path}")
    return document


def load_platform_config(path: Optional[str] = None) -> Dict[str, Any]:
    config_path = path if path is not None else getattr(settings, "PROCESS_RUNTIME_CONFIG_PATH", "")
    document = _read_config_document(config_path)
    errors = validate_platform_config(document)
    if errors:
        raise ImproperlyConfigured("invalid platform config: " + "; ".join(errors))
    process_defaults = dict(getattr(settings, "PROCESS_RUNTIME", {}) or {})
    process_defaults.update(document.get("process_defaults") or {})
    return {
        "process_defaults": process_defaults,
        "notifications": document.get("notifications") or {},
    }
