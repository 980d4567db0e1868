from dataclasses import dataclass
from typing import Optional

from django.core.exceptions import ValidationError
from django.core.validators import URLValidator

from .models import Buildpack, Process


KIND_ADMIN = "admin"
KIND_CUSTOM = "custom"
KIND_AUTO = "auto"

_custom_url_validator = URLValidator(schemes=["http", "https", "git", "ssh"])


@dataclass(frozen=True)
class BuildpackRef:
    kind: str
    name: Optional[str] = None
    url: Optional[str] = None
    guid: Optional[str] = None

    @classmethod
    def admin(cls, buildpack: Buildpack) -> "BuildpackRef":
        return cls(kind=KIND_ADMIN, name=buildpack.name, guid=buildpack.guid)

    @classmethod
    def custom(cls, url: str) -> "BuildpackRef":
        return cls(kind=KIND_CUSTOM, url=url)

    @classmethod
    def auto(cls) -> "BuildpackRef":
        return cls(kind=KIND_AUTO)

    @property
    def is_custom(self) -> bool:
        return self.kind == KIND_CUSTOM

    @property
    def is_specified(self) -> bool:
        return self.kind != KIND_AUTO

    @property
    def resolved_url(self) -> Optional[str]:
        return self.url if self.is_custom else None

    @property
    def display_name(self) -> str:
        return self.name or self.url or ""

    def is_valid(self) -> bool:
        if not self.is_custom:
            return True
        try:
            _custom_url_validator(self.url or "")
        except ValidationError:
            return False
        return True


def resolve_buildpack(process: Process) -> BuildpackRef:
    app = process.app if process.app_id else None
    if app is not None and app.uses_buildpack_lifecycle:
        if not app.lifecycle_buildpack:
            return BuildpackRef.auto()
        known = Buildpack.objects.filter(name=app.lifecycle_buildpack).first()
        if known:
            return BuildpackRef.admin(known)
        return BuildpackRef.custom(app.lifecycle_buildpack)
    if process.admin_buildpack_id:
        return BuildpackRef.admin(process.admin_buildpack)
    if process.buildpack:
        return BuildpackRef.custom(process.buildpack)
    return BuildpackRef.auto()


def assign_buildpack(process: Process, buildpack_name: Optional[str]) -> None:
    """Point the process at an admin buildpack by name, a custom url, or auto-detection when blank.

    The companion application's lifecycle data is updated in memory; the caller saves it.
    """
    value = str(buildpack_name or "").strip()
    app = process.app if process.app_id else None
    if app is not None and app.uses_buildpack_lifecycle:
        app.lifecycle_buildpack = value or None

    process.admin_buildpack = None
    process.buildpack = None
    if not value:
        return
    admin_buildpack = Buildpack.objects.filter(name=value).first()
    if admin_buildpack:
        process.admin_buildpack = admin_buildpack
    else:
        process.buildpack = value
