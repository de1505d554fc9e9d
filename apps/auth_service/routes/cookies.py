"""Access-token cookie helpers shared by the session-issuing routes."""

from fastapi import Response

from apps.auth_service.dependencies import AuthComponents


def set_access_cookie(response: Response, components: AuthComponents, access_token: str) -> None:
    response.set_cookie(
        key=components.config.auth_cookie_name,
        value=access_token,
        **components.sessions.get_session_cookie_params(),
    )


def clear_access_cookie(response: Response, components: AuthComponents) -> None:
    params = components.sessions.get_session_cookie_params()
    params["max_age"] = 0  # Expire immediately
    response.set_cookie(key=components.config.auth_cookie_name, value="", **params)
