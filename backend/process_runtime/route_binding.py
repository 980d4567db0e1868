from typing import Optional

from .errors import InvalidRouteRelation
from .models import Process, Route, RouteMapping, Space


def validate_route(process: Process, route: Optional[Route]) -> None:
    if route is None:
        raise InvalidRouteRelation("")
    if not process.space_id or route.space_id != process.space_id:
        raise InvalidRouteRelation(route.guid)
    if route.route_service_url and not process.diego:
        raise InvalidRouteRelation(f"{route.guid} - Route services are only supported for apps on Diego")
    if not route.domain.usable_by_organization(process.space.organization):
        raise InvalidRouteRelation(route.guid)


def validate_space(process: Process, space: Space) -> None:
    if process.pk is None:
        return
    stray = (
        RouteMapping.objects.filter(process=process, route__isnull=False)
        .exclude(route__space=space)
        .exists()
    )
    if stray:
        raise InvalidRouteRelation(space.guid)


def initial_bound_port(process: Process) -> Optional[int]:
    if not process.diego:
        return None
    ports = process.user_provided_ports
    return ports[0] if ports else None
