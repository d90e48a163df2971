"""Instagram Graph API client with rate limiting."""

from typing import Any, Optional

import httpx
from ratelimit import RateLimitException, limits

from dmpilot.config import Settings, get_settings


class InstagramClientError(Exception):
    """Base exception for Instagram client errors."""

    def __init__(
        self,
        message: str,
        status_code: Optional[int] = None,
        response: Any = None,
        error_code: Optional[int] = None,
    ):
        super().__init__(message)
        self.status_code = status_code
        self.response = response
        self.error_code = error_code


class RateLimitError(InstagramClientError):
    """Rate limit exceeded error."""

    pass


class AuthenticationError(InstagramClientError):
    """Access token rejected or expired."""

    pass


class ServerError(InstagramClientError):
    """Graph API returned a 5xx or the request timed out."""

    pass


# Graph API error codes that mean throttling even on a 400 response
THROTTLING_CODES = {4, 17, 32, 613}
# OAuthException: token invalid, expired or revoked
AUTH_CODES = {102, 190}


class InstagramClient:
    """Client for the Instagram Graph API with rate limiting."""

    # Graph API budget per account: 200 calls per hour
    CALLS_PER_HOUR = 200
    PERIOD = 3600

    def __init__(
        self,
        access_token: str,
        instagram_user_id: str,
        settings: Optional[Settings] = None,
        transport: Optional[httpx.BaseTransport] = None,
        calls_per_hour: int = CALLS_PER_HOUR,
    ):
        self.access_token = access_token
        self.instagram_user_id = instagram_user_id
        self.settings = settings or get_settings()
        self.graph_url = f"https://graph.facebook.com/{self.settings.graph_api_version}"
        self._client = httpx.Client(
            timeout=self.settings.request_timeout_seconds,
            transport=transport,
        )
        # Budget is per client instance, i.e. per account credential
        self._throttled_request = limits(calls=calls_per_hour, period=self.PERIOD)(self._client.request)

    def __enter__(self) -> "InstagramClient":
        return self

    def __exit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        self.close()

    def close(self) -> None:
        """Close the HTTP client."""
        self._client.close()

    def _make_request(
        self,
        method: str,
        url: str,
        params: Optional[dict[str, Any]] = None,
        json: Optional[dict[str, Any]] = None,
    ) -> dict[str, Any]:
        """Make a rate-limited API request.

        An exhausted call budget raises ``RateLimitError`` straight away
        instead of sleeping, so a worker is never parked for the rest of the
        window. Retrying is left to the caller, which knows whether the
        operation is safe to repeat.
        """
        params = dict(params or {})
        params["access_token"] = self.access_token

        try:
            response = self._throttled_request(method, url, params=params, json=json)
        except RateLimitException as e:
            raise RateLimitError(
                f"Call budget of {self.PERIOD}s window exhausted, "
                f"{e.period_remaining:.0f}s remaining"
            ) from e
        except httpx.TimeoutException as e:
            raise ServerError(f"Request timed out: {e}") from e
        except httpx.TransportError as e:
            raise ServerError(f"Transport error: {e}") from e

        if response.status_code < 400:
            return response.json() if response.content else {}

        error_data = _safe_json(response)
        error = error_data.get("error", {}) if isinstance(error_data, dict) else {}
        error_message = error.get("message", "Unknown error")
        error_code = error.get("code")

        if response.status_code == 429 or error_code in THROTTLING_CODES:
            raise RateLimitError(
                "Rate limit exceeded",
                status_code=response.status_code,
                response=error_data,
                error_code=error_code,
            )

        if response.status_code in (401, 403) or error_code in AUTH_CODES:
            raise AuthenticationError(
                "Invalid or expired access token",
                status_code=response.status_code,
                response=error_data,
                error_code=error_code,
            )

        if response.status_code >= 500:
            raise ServerError(
                f"Server error: {error_message}",
                status_code=response.status_code,
                response=error_data,
                error_code=error_code,
            )

        raise InstagramClientError(
            f"API error: {error_message}",
            status_code=response.status_code,
            response=error_data,
            error_code=error_code,
        )

    def get_account_info(self) -> dict[str, Any]:
        """Get Instagram account information."""
        url = f"{self.graph_url}/{self.instagram_user_id}"
        params = {"fields": "id,username,name"}
        return self._make_request("GET", url, params=params)


def _safe_json(response: httpx.Response) -> Any:
    if not response.content:
        return {}
    try:
        return response.json()
    except ValueError:
        return {"error": {"message": response.text}}
