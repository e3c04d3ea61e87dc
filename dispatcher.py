"""
Action dispatch

Handlers register under an action name together with the access level they
need. ``run_action`` is the single entry point: it resolves the caller's
identity for that level, calls the handler and turns whatever happens into a
status code and a JSON-ready body.
"""

from dataclasses import dataclass
from typing import Any, Callable, Dict, Optional, Tuple

import structlog
from fastapi.encoders import jsonable_encoder
from pymongo.database import Database

from auth import Identity, identity_from_header, optional_identity, require_role
from errors import ApiError, InternalError, InvalidAction

logger = structlog.get_logger(__name__)

PUBLIC = "public"
OPTIONAL = "optional"
USER = "user"
ADMIN = "admin"

Handler = Callable[[Dict[str, Any], Optional[Identity], Database], Dict[str, Any]]


@dataclass(frozen=True)
class Action:
    name: str
    handler: Handler
    access: str = PUBLIC


ACTIONS: Dict[str, Action] = {}


def action(name: str, access: str = PUBLIC):
    def register(func: Handler) -> Handler:
        if name in ACTIONS:
            raise ValueError(f"Action {name!r} is already registered")
        ACTIONS[name] = Action(name=name, handler=func, access=access)
        return func
    return register


def resolve_identity(access: str, authorization: Optional[str]) -> Optional[Identity]:
    if access == PUBLIC:
        return None
    if access == OPTIONAL:
        return optional_identity(authorization)
    identity = identity_from_header(authorization)
    if access == ADMIN:
        require_role(identity, "admin")
    return identity


def dispatch(name: str, data: Optional[Dict[str, Any]], authorization: Optional[str], db: Database) -> Dict[str, Any]:
    registered = ACTIONS.get(name)
    if registered is None:
        raise InvalidAction()
    identity = resolve_identity(registered.access, authorization)
    result = registered.handler(data or {}, identity, db)
    return {"success": True, **result}


def run_action(name: str, data: Optional[Dict[str, Any]], authorization: Optional[str], db: Database) -> Tuple[int, Dict[str, Any]]:
    try:
        body = jsonable_encoder(dispatch(name, data, authorization, db))
    except ApiError as exc:
        if exc.status_code >= 500:
            logger.error("action_failed", action=name, error=exc.detail)
        else:
            logger.info("action_rejected", action=name, status=exc.status_code, error=exc.detail)
        return exc.status_code, {"error": exc.detail}
    except Exception:
        logger.exception("action_crashed", action=name)
        return InternalError.status_code, {"error": InternalError.message}
    return 200, body
