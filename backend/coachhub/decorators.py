# Overview: Request decorators establishing the trusted actor context for API routes.

from functools import wraps
from flask import request, jsonify, g

from .models.tenancy import VALID_ROLES
from .services.tenant_service import ActorContext

ACTOR_ID_HEADER = "X-Actor-Id"
ACTOR_ROLE_HEADER = "X-Actor-Role"
ORG_ID_HEADER = "X-Organization-Id"


def _parse_int_header(name: str):
    raw = request.headers.get(name, "").strip()
    if not raw.isdigit():
        return None
    return int(raw)


def require_actor(f):
    """
    Establish the actor context supplied by the upstream gateway.

    MULTI-TENANT: Sets the following Flask g attributes:
    - g.actor: ActorContext(user_id, role, org_id)
    - g.org_id: The organization ID (tenant context)

    Identity is NOT verified here: the gateway in front of this service
    authenticates the caller and forwards X-Actor-Id, X-Actor-Role and
    X-Organization-Id. Returns 401 when any of them is missing or malformed.
    """
    @wraps(f)
    def decorated_function(*args, **kwargs):
        user_id = _parse_int_header(ACTOR_ID_HEADER)
        org_id = _parse_int_header(ORG_ID_HEADER)
        role = request.headers.get(ACTOR_ROLE_HEADER, "").strip().lower()

        if user_id is None or org_id is None or not role:
            return jsonify({"error": {
                "code": "UNAUTHENTICATED",
                "message": "Actor context required",
                "details": None,
            }}), 401

        if role not in VALID_ROLES:
            return jsonify({"error": {
                "code": "UNAUTHENTICATED",
                "message": f"Unknown actor role '{role}'",
                "details": None,
            }}), 401

        g.actor = ActorContext(user_id=user_id, role=role, org_id=org_id)
        g.org_id = org_id

        return f(*args, **kwargs)

    return decorated_function


def require_role(*roles):
    """
    Require the actor to hold one of the given roles.

    Must be stacked under @require_actor.
    """
    def decorator(f):
        @wraps(f)
        def decorated_function(*args, **kwargs):
            actor = getattr(g, "actor", None)
            if actor is None:
                return jsonify({"error": {
                    "code": "UNAUTHENTICATED",
                    "message": "Actor context required",
                    "details": None,
                }}), 401

            if actor.role not in roles:
                return jsonify({"error": {
                    "code": "INSUFFICIENT_PERMISSIONS",
                    "message": f"Requires one of: {', '.join(roles)}",
                    "details": {"required_roles": list(roles)},
                }}), 403

            return f(*args, **kwargs)

        return decorated_function
    return decorator
