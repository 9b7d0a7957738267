# SecurityX Models
from app.models.allowed_origin import AllowedOrigin
from app.models.base import BaseModel
from app.models.token_blacklist import RevokedToken
from app.models.user import User

__all__ = [
    "AllowedOrigin",
    "BaseModel",
    "RevokedToken",
    "User",
]
