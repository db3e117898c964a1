from app.utils.security import (
    create_access_token,
    create_refresh_token,
    create_tokens,
    decode_token,
    hash_password,
    verify_password,
)

__all__ = [
    "hash_password",
    "verify_password",
    "create_access_token",
    "create_refresh_token",
    "create_tokens",
    "decode_token",
]
