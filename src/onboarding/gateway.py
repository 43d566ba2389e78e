"""
Onboarding API client.

Thin httpx wrapper over the REST routes. Every failure is raised as a
SyncError subclass so the sync engine can tell transient from permanent.
"""

import logging
from typing import Any, Protocol

import httpx

from .catalog import CatalogResult, Fallback, FromDatabase, fallback_catalog, parse_catalog_rows
from .errors import (
    InvalidSelectionError,
    NetworkError,
    RequestRejectedError,
    ServerError,
    SyncError,
    UnauthorizedError,
)
from .selection import Category, clean_ids
from .state import OnboardingStep, OnboardingUser

logger = logging.getLogger(__name__)


class SelectionPersistence(Protocol):
    """What the sync engine needs from the backend."""

    async def fetch_selections(self, category: Category) -> list[str]: ...

    async def replace_selections(self, category: Category, ids: list[str]) -> list[str]: ...


class ProfileStore(Protocol):
    """What the flow controller needs from the backend."""

    async def fetch_profile(self) -> OnboardingUser: ...

    async def update_profile(
        self, step: OnboardingStep | None = None, complete: bool | None = None
    ) -> OnboardingUser: ...


_CATALOG_ENDPOINTS = {
    Category.INTERESTS: ("/api/interests", "interests"),
    Category.SUBCATEGORIES: ("/api/subcategories", "subcategories"),
    Category.DEALBREAKERS: ("/api/deal-breakers", "dealBreakers"),
}


class SelectionGateway:
    """
    Async client for the onboarding endpoints.

    Use as an async context manager, or call `aclose()` when done.
    """

    def __init__(
        self,
        base_url: str,
        access_token: str | None = None,
        timeout: float = 10.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        headers = {"Accept": "application/json"}
        if access_token:
            headers["Authorization"] = f"Bearer {access_token}"
        self._client = httpx.AsyncClient(
            base_url=base_url,
            headers=headers,
            timeout=timeout,
            transport=transport,
        )

    @classmethod
    def from_settings(cls, access_token: str | None = None) -> "SelectionGateway":
        from klio.config import settings

        return cls(
            base_url=settings.api_base_url,
            access_token=access_token,
            timeout=settings.request_timeout_seconds,
        )

    async def __aenter__(self) -> "SelectionGateway":
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        await self._client.aclose()

    # -------------------------------------------------------------------------
    # Selections
    # -------------------------------------------------------------------------

    async def fetch_selections(self, category: Category) -> list[str]:
        """GET the user's saved IDs for a category."""
        data = await self._request("GET", category.api_path)
        return _id_list(data, category.response_key, default=[])

    async def replace_selections(self, category: Category, ids: list[str]) -> list[str]:
        """POST the whole desired set; returns the IDs the server stored."""
        payload = {"selections": clean_ids(ids)}
        data = await self._request("POST", category.api_path, json=payload)
        logger.debug(f"Saved {category.value}: {data.get('message', '')}")
        return _id_list(data, "selections", default=payload["selections"])

    # -------------------------------------------------------------------------
    # Profile
    # -------------------------------------------------------------------------

    async def fetch_profile(self) -> OnboardingUser:
        data = await self._request("GET", "/api/user/onboarding")
        return _parse_user(data)

    async def update_profile(
        self, step: OnboardingStep | None = None, complete: bool | None = None
    ) -> OnboardingUser:
        """PATCH step and/or completion; both fields land in one write."""
        body: dict[str, Any] = {}
        if step is not None:
            body["onboardingStep"] = step.value
        if complete is not None:
            body["onboardingComplete"] = complete
        data = await self._request("PATCH", "/api/user/onboarding", json=body)
        return _parse_user(data)

    # -------------------------------------------------------------------------
    # Catalog
    # -------------------------------------------------------------------------

    async def fetch_catalog(
        self, category: Category, parent_ids: list[str] | None = None
    ) -> CatalogResult:
        """
        Load the options for a step.

        Falls back to the static catalog when the request fails or returns
        no rows; callers switch on the result type instead of sniffing shapes.
        """
        path, key = _CATALOG_ENDPOINTS[category]
        params = {}
        if category == Category.SUBCATEGORIES and parent_ids:
            params["interests"] = ",".join(clean_ids(parent_ids))

        try:
            data = await self._request("GET", path, params=params or None)
        except SyncError as e:
            logger.warning(f"Catalog fetch for {category.value} failed, using fallback: {e}")
            return Fallback(fallback_catalog(category, parent_ids), reason=str(e))

        items = parse_catalog_rows(category, data.get(key) or [])
        if not items:
            return Fallback(fallback_catalog(category, parent_ids), reason="empty catalog")
        return FromDatabase(items)

    # -------------------------------------------------------------------------
    # Transport
    # -------------------------------------------------------------------------

    async def _request(self, method: str, path: str, **kwargs) -> dict:
        try:
            response = await self._client.request(method, path, **kwargs)
        except httpx.TimeoutException as e:
            raise NetworkError(f"{method} {path} timed out") from e
        except httpx.RequestError as e:
            # transport failures, broken encodings, redirect loops
            raise NetworkError(f"{method} {path} failed: {e}") from e

        if response.is_success:
            try:
                data = response.json()
            except ValueError as e:
                raise ServerError(f"{method} {path} returned invalid JSON", response.status_code) from e
            if not isinstance(data, dict):
                raise ServerError(f"{method} {path} returned an unexpected response shape", response.status_code)
            return data

        message = _error_message(response)
        status = response.status_code
        if status in (400, 422):
            raise InvalidSelectionError(message, status)
        if status == 401:
            raise UnauthorizedError(message, status)
        if status >= 500:
            raise ServerError(message, status)
        raise RequestRejectedError(message, status)


def _error_message(response: httpx.Response) -> str:
    """Pull the `error` (or FastAPI `detail`) field out of an error body."""
    try:
        body = response.json()
    except ValueError:
        return response.text or f"HTTP {response.status_code}"
    if isinstance(body, dict):
        message = body.get("error") or body.get("detail")
        if message:
            return str(message)
    return f"HTTP {response.status_code}"


def _id_list(data: dict, key: str, default: list[str]) -> list[str]:
    value = data.get(key)
    if value is None:
        return clean_ids(default)
    if not isinstance(value, list):
        raise ServerError(f"Expected a list under '{key}', got {type(value).__name__}")
    return clean_ids(value)


def _parse_user(data: dict) -> OnboardingUser:
    """Build the projection, treating a malformed body as a server fault."""
    try:
        return OnboardingUser.from_dict(data)
    except (KeyError, TypeError, ValueError) as e:
        raise ServerError(f"Malformed onboarding profile: {e!r}") from e
