from typing import Any, Dict, Iterable, Mapping, Optional, Tuple

from django.core.exceptions import ValidationError


ERROR_DETAILS: Dict[str, Tuple[int, str]] = {
    "AppInvalid": (400, "The app is invalid: {0}"),
    "AppNameTaken": (400, "The app name is taken: {0}"),
    "AppMemoryInvalid": (400, "You have specified an invalid amount of memory for your application."),
    "AppMemoryQuotaExceeded": (400, "You have exceeded your organization's memory limit."),
    "AppPackageInvalid": (400, "The app package is invalid: {0}"),
    "QuotaInstanceMemoryLimitExceeded": (400, "You have exceeded the instance memory limit for your organization's quota."),
    "QuotaInstanceLimitExceeded": (400, "You have exceeded the instance limit for your organization's quota."),
    "SpaceQuotaMemoryLimitExceeded": (400, "You have exceeded your space's memory limit."),
    "SpaceQuotaInstanceMemoryLimitExceeded": (400, "You have exceeded the instance memory limit for your space's quota."),
    "SpaceQuotaInstanceLimitExceeded": (400, "You have exceeded the instance limit for your space's quota."),
    "DockerDisabled": (403, "Docker support has not been enabled."),
    "MultipleAppPortsMappedDiegoToDea": (
        400,
        "The app has routes mapped to multiple ports. Multiple ports are supported for Diego only. "
        "Please unmap routes from all but one app port. Multiple routes can be mapped to the same port if desired.",
    ),
    "InvalidRequest": (400, "The request is invalid: {0}"),
    "SpaceInvalid": (400, "The app space binding to service is invalid: {0}"),
    "RouteMappingTaken": (400, "The route mapping is taken: {0}"),
    "NotStaged": (400, "App has not finished staging"),
}


class ApiError(Exception):
    def __init__(self, name: str, *args: Any):
        status, template = ERROR_DETAILS.get(name, (500, "{0}"))
        self.name = name
        self.http_status = status
        self.args_detail = args
        self.message = template.format(*[str(arg) for arg in args]) if args else template.replace(": {0}", "")
        super().__init__(self.message)


class InvalidRouteRelation(Exception):
    def __init__(self, detail: str):
        self.detail = detail
        super().__init__(f"The URL was not available [route ID {detail}]")


class InvalidStagingTransition(Exception):
    pass


class ServiceBindingDeleteError(Exception):
    def __init__(self, binding_guid: str, cause: Optional[BaseException] = None):
        self.binding_guid = binding_guid
        self.cause = cause
        super().__init__(f"service binding {binding_guid} could not be deleted: {cause}")


class ProcessValidationError(ValidationError):
    """Aggregated policy violations for one mutation; ``error_dict`` is keyed by attribute."""

    def __init__(self, violations):
        self.violations = violations
        super().__init__(
            {
                attribute: [ValidationError(item.message, code=item.code) for item in items]
                for attribute, items in violations.by_attribute().items()
            }
        )


def _codes(violations, attribute: str) -> Iterable[str]:
    return [item.code for item in violations.on(attribute)]


def _translate_memory(codes: Iterable[str]) -> Optional[ApiError]:
    codes = set(codes)
    if "space_quota_exceeded" in codes:
        return ApiError("SpaceQuotaMemoryLimitExceeded")
    if "space_instance_memory_limit_exceeded" in codes:
        return ApiError("SpaceQuotaInstanceMemoryLimitExceeded")
    if "quota_exceeded" in codes:
        return ApiError("AppMemoryQuotaExceeded")
    if "zero_or_less" in codes:
        return ApiError("AppMemoryInvalid")
    if "instance_memory_limit_exceeded" in codes:
        return ApiError("QuotaInstanceMemoryLimitExceeded")
    return None


def translate_validation_error(error: ProcessValidationError, attrs: Optional[Mapping[str, Any]] = None) -> ApiError:
    """Collapse a violation set into the single caller-facing error, most specific first."""
    violations = error.violations
    attrs = attrs or {}
    if violations.on("name") and "name_taken" in _codes(violations, "name"):
        return ApiError("AppNameTaken", attrs.get("name", ""))
    if violations.on("memory"):
        translated = _translate_memory(_codes(violations, "memory"))
        if translated:
            return translated
    if violations.on("instances"):
        return ApiError("AppInvalid", "Number of instances less than 0")
    if violations.on("app_instance_limit"):
        if "space_app_instance_limit_exceeded" in _codes(violations, "app_instance_limit"):
            return ApiError("SpaceQuotaInstanceLimitExceeded")
        return ApiError("QuotaInstanceLimitExceeded")
    if violations.on("state"):
        return ApiError("AppInvalid", "Invalid app state provided")
    if "docker_disabled" in _codes(violations, "docker"):
        return ApiError("DockerDisabled")
    if violations.on("diego_to_dea"):
        return ApiError("MultipleAppPortsMappedDiegoToDea")
    if violations.on("package_hash"):
        return ApiError("AppPackageInvalid", "bits have not been uploaded")
    if violations.on("enable_ssh"):
        return ApiError("InvalidRequest", "enable_ssh must be false due to global allow_ssh setting")
    return ApiError("AppInvalid", ", ".join(violations.full_messages()))
