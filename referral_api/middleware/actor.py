# SPDX-License-Identifier: Apache-2.0

"""
Acting-user extraction for referral endpoints.

Authentication happens upstream: the gateway asserts the acting user in
request headers and this middleware turns them into an ActorContext.
"""

from functools import wraps
from flask import request, g
from typing import Callable, Optional
from opentelemetry import trace
import logging

from ..domain.errors import AuthenticationRequired
from ..models.entities import ActorContext

tracer = trace.get_tracer(__name__)
logger = logging.getLogger(__name__)

USER_ID_HEADER = "X-User-Id"
USER_NAME_HEADER = "X-User-Name"
USER_ROLE_HEADER = "X-User-Role"


def _header(name: str) -> Optional[str]:
    value = request.headers.get(name, "").strip()
    return value or None


def extract_actor() -> ActorContext:
    """
    Build the acting user from request headers.

    Raises:
        AuthenticationRequired: user ID or role header is missing
    """
    user_id = _header(USER_ID_HEADER)
    role = _header(USER_ROLE_HEADER)

    if not user_id or not role:
        missing = [
            header for header, value in ((USER_ID_HEADER, user_id), (USER_ROLE_HEADER, role))
            if not value
        ]
        raise AuthenticationRequired(f"Missing acting user headers: {', '.join(missing)}")

    return ActorContext(
        user_id=user_id,
        name=_header(USER_NAME_HEADER) or user_id,
        role=role,
        ip_address=request.remote_addr,
        user_agent=request.headers.get("User-Agent", "")
    )


def require_actor(f: Callable) -> Callable:
    """Decorator storing the acting user in ``g.actor`` before the view runs."""
    @wraps(f)
    def decorated_function(*args, **kwargs):
        with tracer.start_as_current_span("actor.middleware.extract") as span:
            try:
                actor = extract_actor()
            except AuthenticationRequired:
                span.set_attribute("auth.result", "missing_actor")
                logger.warning(
                    "Request rejected: no acting user",
                    extra={"path": request.path, "method": request.method}
                )
                raise

            g.actor = actor
            span.set_attributes({
                "auth.result": "success",
                "user.id": actor.user_id,
                "user.role": actor.role
            })

        return f(*args, **kwargs)

    return decorated_function
