import re
from typing import Optional, Tuple

from pymongo.database import Database

MIN_LENGTH = 3
MAX_LENGTH = 30
MAX_ATTEMPTS = 1000

_VALID_RE = re.compile(r"^[a-z0-9_]+$")


class UsernameError(ValueError):
    pass


def validate_username(username: Optional[str]) -> Tuple[bool, Optional[str]]:
    if not username:
        return False, "Username is required"
    if len(username) < MIN_LENGTH:
        return False, f"Username must be at least {MIN_LENGTH} characters"
    if len(username) > MAX_LENGTH:
        return False, f"Username cannot exceed {MAX_LENGTH} characters"
    if not _VALID_RE.match(username):
        return False, "Username can only contain lowercase letters, numbers, and underscores"
    if username.startswith("_") or username.endswith("_"):
        return False, "Username cannot start or end with underscore"
    if "__" in username:
        return False, "Username cannot contain consecutive underscores"
    return True, None


def username_base(name: str) -> str:
    # padding can yield names validate_username rejects ("al_", "a__"); generated names skip that check
    base = re.sub(r"\s+", "_", name.lower().strip())
    base = re.sub(r"[^a-z0-9_]", "", base)
    base = base[:MAX_LENGTH]
    return base.ljust(MIN_LENGTH, "_")


def generate_username(db: Database, name: str) -> str:
    """Derive a unique username from a display name.

    Tries the bare base first, then base_2, base_3 and so on, cutting the
    base so the candidate never exceeds MAX_LENGTH.
    """
    if not name or not name.strip():
        raise UsernameError("Name is required to generate username")

    base = username_base(name)
    candidate = base
    counter = 2
    while db["user"].find_one({"username": candidate}, {"_id": 1}):
        if counter > MAX_ATTEMPTS:
            raise UsernameError("Unable to generate unique username")
        suffix = f"_{counter}"
        candidate = base[: MAX_LENGTH - len(suffix)] + suffix
        counter += 1
    return candidate


def is_username_available(db: Database, username: str, exclude_user_id=None) -> bool:
    query = {"username": {"$regex": f"^{re.escape(username)}$", "$options": "i"}}
    if exclude_user_id is not None:
        query["_id"] = {"$ne": exclude_user_id}
    return db["user"].find_one(query, {"_id": 1}) is None
