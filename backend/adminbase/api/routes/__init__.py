"""
API routes package
"""
from adminbase.api.routes import auth, admin

__all__ = [
    "auth",
    "admin",
]
