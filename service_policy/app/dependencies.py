"""
FastAPI dependencies for enforcing policies in-process.
"""

import json
from typing import Any, Dict, Optional, Union

from fastapi import Request

from shared.errors import AuthenticationError
from shared.logging import set_user_context
from .policy.models import Decision, Policy, PolicyRequest, RequestContext

USER_ID_HEADER = "X-User-ID"


def current_user_id(request: Request) -> str:
    """Authenticated principal id, as set by the gateway."""
    user_id = request.headers.get(USER_ID_HEADER)
    if not user_id:
        raise AuthenticationError()
    return user_id


async def _json_body(request: Request) -> Dict[str, Any]:
    if "application/json" not in request.headers.get("content-type", ""):
        return {}
    try:
        body = await request.json()
    except json.JSONDecodeError:
        return {}
    return body if isinstance(body, dict) else {}


async def build_request_context(request: Request) -> RequestContext:
    return RequestContext(
        route_params=dict(request.path_params),
        query_params=dict(request.query_params),
        body=await _json_body(request),
        client_ip=request.client.host if request.client else None,
        forwarded_for=request.headers.get("X-Forwarded-For"),
    )


def require_policy(policy: Union[str, Policy]):
    """Dependency that denies the request unless ``policy`` allows it.

    ``policy`` is either a registered policy name or a Policy value. Usage::

        @app.delete("/scans/{scan_id}", dependencies=[Depends(require_policy("scan.delete"))])
    """

    async def enforce_policy(request: Request) -> Decision:
        service = request.app.state.policy_service
        resolved: Optional[Policy] = policy if isinstance(policy, Policy) else service.registry.get(policy)

        user_id = current_user_id(request)
        context = await build_request_context(request)
        set_user_context(user_id, context.workspace_id)

        return await service.evaluator.enforce(PolicyRequest(user_id, resolved, context))

    return enforce_policy
