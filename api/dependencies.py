"""Request-scoped dependencies: services and the calling actor."""

from typing import Optional

from fastapi import Depends, Header, Request

from core.security.identity import Actor
from services import FulfillmentServices, get_services as get_process_services


def get_services(request: Request) -> FulfillmentServices:
    services = getattr(request.app.state, "services", None)
    if services is None:
        services = get_process_services()
        request.app.state.services = services
    return services


def get_actor(
    x_user_id: Optional[str] = Header(None),
    x_invite_token: Optional[str] = Header(None),
    services: FulfillmentServices = Depends(get_services),
) -> Actor:
    """Resolve the caller from X-User-Id / X-Invite-Token headers."""
    return services.identity.resolve(x_user_id or "", invite_token=x_invite_token)
