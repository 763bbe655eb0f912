import logging
from typing import Dict

from pymongo.errors import PyMongoError

from records import parse_object_id, safe_string, utcnow
from session_gate import ADMIN_ROLE, has_admin_claim

logger = logging.getLogger(__name__)

ERROR_STATUS_CODES = {
    "invalid-argument": 400,
    "permission-denied": 403,
    "not-found": 404,
    "internal": 500,
}


class RoleAssignmentError(Exception):
    def __init__(self, code: str, message: str):
        super().__init__(message)
        self.code = code
        self.message = message

    @property
    def status_code(self) -> int:
        return ERROR_STATUS_CODES.get(self.code, 500)

    def to_json(self) -> Dict[str, Dict[str, str]]:
        return {"error": {"status": self.code, "message": self.message}}


def grant_admin_role(users_collection, caller_claims, user_id) -> Dict[str, str]:
    """Give ``user_id`` the admin claim and stored role. Only admins may call this."""
    if not has_admin_claim(caller_claims):
        raise RoleAssignmentError("permission-denied", "Only admins can add other admins")

    target_id = safe_string(user_id)
    if not target_id:
        raise RoleAssignmentError("invalid-argument", "A userId is required.")

    object_id = parse_object_id(target_id)
    if object_id is None:
        raise RoleAssignmentError("invalid-argument", "Invalid user identifier.")

    try:
        result = users_collection.update_one(
            {"_id": object_id},
            {
                "$set": {
                    "claims.role": ADMIN_ROLE,
                    "role": ADMIN_ROLE,
                    "updatedAt": utcnow(),
                }
            },
        )
    except PyMongoError as exc:
        logger.error("Error setting admin role for %s: %s", target_id, exc)
        raise RoleAssignmentError("internal", "Error setting admin role") from exc

    if not result.matched_count:
        raise RoleAssignmentError("not-found", f"User {target_id} not found")

    return {"message": f"Successfully set admin role for user {target_id}"}
