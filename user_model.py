from flask_login import UserMixin

from db import users_collection

KNOWN_ROLES = ("admin", "worker")


class RequestUser(UserMixin):
    """
    Identity built from the `role` / `email` request headers.
    The role is taken as sent by the client; the directory only fills in names.
    """

    def __init__(self, role, email=None, user_data=None):
        user_data = user_data or {}
        self.role = (role or "").lower().strip()
        self.email = email or user_data.get("email")
        self.id = str(user_data["_id"]) if user_data.get("_id") else (self.email or self.role)
        self.name = user_data.get("name")
        self.phone = user_data.get("phone")
        self.status = user_data.get("status")

    def __repr__(self):
        return f"<RequestUser {self.email or '-'}, {self.role}>"


def get_user_by_email(email):
    if not email:
        return None
    return users_collection.find_one({"email": email})


def load_user_from_request(req):
    role = (req.headers.get("role") or "").lower().strip()
    if role not in KNOWN_ROLES:
        return None
    email = (req.headers.get("email") or "").strip() or None
    return RequestUser(role, email, get_user_by_email(email))
