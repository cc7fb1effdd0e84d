from dirauth.models.user import User

__all__ = [
    "User",
]
