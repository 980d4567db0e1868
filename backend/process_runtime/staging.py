import logging
from datetime import datetime
from typing import Optional

from django.utils import timezone

from .errors import InvalidStagingTransition
from .models import (
    PACKAGE_FAILED,
    PACKAGE_PENDING,
    PACKAGE_STAGED,
    STAGING_FAILED_REASONS,
    STATE_STOPPED,
    Process,
)


logger = logging.getLogger(__name__)

DEFAULT_FAILURE_REASON = "StagingError"

STAGING_FAILURE_MESSAGES = {
    "StagerError": "Stager error: {detail}",
    "StagingError": "Staging error: {detail}",
    "StagingTimeExpired": "Staging time expired: {detail}",
    "NoAppDetectedError": "An app was not successfully detected by any available buildpack",
    "BuildpackCompileFailed": "App staging failed in the buildpack compile phase",
    "BuildpackReleaseFailed": "App staging failed in the buildpack release phase",
    "InsufficientResources": "Insufficient resources",
    "NoCompatibleCell": "Found no compatible cell",
}


def normalize_failure_reason(reason: Optional[str], process_guid: str = "") -> str:
    if reason in STAGING_FAILED_REASONS:
        return reason
    logger.warning("Invalid staging failure reason: %s, provided for process %s", reason, process_guid)
    return DEFAULT_FAILURE_REASON


def failure_description(reason: str, detail: str = "staging failed") -> str:
    template = STAGING_FAILURE_MESSAGES.get(reason, STAGING_FAILURE_MESSAGES[DEFAULT_FAILURE_REASON])
    return template.format(detail=detail)


def mark_for_restaging(process: Process, now: Optional[datetime] = None) -> None:
    process.package_state = PACKAGE_PENDING
    process.staging_failed_reason = None
    process.staging_failed_description = None
    process.package_pending_since = now or timezone.now()


def mark_as_staged(process: Process) -> None:
    if not process.droplet_hash:
        raise InvalidStagingTransition(f"process {process.guid} cannot be staged without a droplet")
    process.package_state = PACKAGE_STAGED
    process.staging_failed_reason = None
    process.staging_failed_description = None
    process.package_pending_since = None


def mark_as_failed_to_stage(process: Process, reason: Optional[str] = DEFAULT_FAILURE_REASON) -> str:
    normalized = normalize_failure_reason(reason, process.guid)
    process.package_state = PACKAGE_FAILED
    process.staging_failed_reason = normalized
    process.staging_failed_description = failure_description(normalized)
    process.package_pending_since = None
    if process.diego:
        process.state = STATE_STOPPED
    return normalized


def assign_package_hash(process: Process, package_hash: Optional[str], now: Optional[datetime] = None) -> bool:
    stamp = now or timezone.now()
    changed = package_hash != process.package_hash
    process.package_hash = package_hash
    if changed:
        mark_for_restaging(process, stamp)
    process.package_updated_at = stamp
    return changed


def normalize_docker_image(image: Optional[str]) -> Optional[str]:
    # Best effort completion to registry:port/[scope/]repo:tag
    if not image:
        return image
    segments = image.split("/")
    if ":" not in segments[-1] and "@" not in segments[-1]:
        segments[-1] = f"{segments[-1]}:latest"
    return "/".join(segments)


def assign_docker_image(process: Process, image: Optional[str], now: Optional[datetime] = None) -> bool:
    normalized = normalize_docker_image(image)
    process.docker_image = normalized
    return assign_package_hash(process, normalized, now)
