"""Helpers shared by the HTTP tests."""

from app.features.users.auth import create_access_token


def auth_headers(user_id: str) -> dict[str, str]:
    return {"Authorization": f"Bearer {create_access_token(user_id)}"}
