"""
Request identity.

Authentication happens upstream (API gateway / session service). It forwards
the authenticated user as headers, which this module turns into the
`current_user` dict the endpoints depend on.
"""

from typing import Any, Dict, Mapping

from fastapi import HTTPException, Request, status

USER_ID_HEADER = "x-user-id"
USER_ROLE_HEADER = "x-user-role"


def user_from_headers(headers: Mapping[str, str]) -> Dict[str, Any]:
    user_id = headers.get(USER_ID_HEADER)
    if not user_id:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Authentication required",
        )
    role = headers.get(USER_ROLE_HEADER, "user")
    return {"id": user_id, "role": role, "is_admin": role == "admin"}


async def get_current_user(request: Request) -> Dict[str, Any]:
    return user_from_headers(request.headers)
