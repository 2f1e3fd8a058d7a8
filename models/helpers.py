"""Contains all models commonly used across different modules."""
from enum import Enum


class UserRole(str, Enum):
    """Enumeration of user roles."""
    USER = "user"
    ADMIN = "admin"


class TokenType(str, Enum):
    """Enumeration of token types carried in the `type` claim."""
    ACCESS = "access"
    REFRESH = "refresh"
