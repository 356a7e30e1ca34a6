"""HTTP client for the Pipedrive REST API.

The client exposes the handful of operations the synchroniser needs:

``list_records``
    Fetch one page of the records matched by a saved filter.
``get_field_definitions``
    Download the field metadata of an entity type.
``update_record``
    Send a single record update, reporting failures as an
    :class:`UpdateResult` instead of raising.
``get_filters``
    List the saved filters a sheet can be bound to.

Entity types are routed through an :class:`EntityRoute` table because the
API versions differ per entity: most entities live on API v2 (cursor paging,
``PATCH`` updates, nested ``custom_fields``) while leads are still served by
API v1 (offset paging, custom fields at the top level).
"""
from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Mapping, Optional, Union

import requests

from pipesync.errors import RemoteAPIError

logger = logging.getLogger(__name__)

API_HOST_TEMPLATE = "https://{subdomain}.pipedrive.com"
PAGE_SIZE = 100
FIELD_PAGE_SIZE = 500
BACKOFF_SCHEDULE = (1, 2, 4, 8, 16)
MAX_RETRY_ATTEMPTS = len(BACKOFF_SCHEDULE)
RETRY_STATUS_CODES = {429, 500, 502, 503, 504}

RecordId = Union[str, int]

# Saved filters are typed with their own vocabulary.
FILTER_TYPES: Dict[str, str] = {
    "deals": "deals",
    "persons": "people",
    "organizations": "org",
    "activities": "activity",
    "leads": "leads",
    "products": "products",
}


@dataclass(frozen=True)
class EntityRoute:
    """Where and how an entity type is listed, described and updated."""

    list_path: str
    fields_path: str
    update_method: str = "PATCH"
    update_path: str = ""
    api_version: str = "v2"
    paging: str = "cursor"

    def record_path(self, record_id: RecordId) -> str:
        return self.update_path.format(id=record_id)

    @property
    def nests_custom_fields(self) -> bool:
        return self.api_version == "v2"


def _v2_route(entity_type: str, fields_endpoint: str) -> EntityRoute:
    return EntityRoute(
        list_path=f"/api/v2/{entity_type}",
        fields_path=f"/api/v1/{fields_endpoint}",
        update_method="PATCH",
        update_path=f"/api/v2/{entity_type}/{{id}}",
        api_version="v2",
        paging="cursor",
    )


DEFAULT_ROUTES: Dict[str, EntityRoute] = {
    "deals": _v2_route("deals", "dealFields"),
    "persons": _v2_route("persons", "personFields"),
    "organizations": _v2_route("organizations", "organizationFields"),
    "activities": _v2_route("activities", "activityFields"),
    "products": _v2_route("products", "productFields"),
    # Leads share their custom fields with deals.
    "leads": EntityRoute(
        list_path="/api/v1/leads",
        fields_path="/api/v1/dealFields",
        update_method="PATCH",
        update_path="/api/v1/leads/{id}",
        api_version="v1",
        paging="offset",
    ),
}

ENTITY_TYPES = tuple(DEFAULT_ROUTES)


@dataclass(slots=True)
class RecordPage:
    items: List[Dict[str, Any]] = field(default_factory=list)
    has_more: bool = False
    next_page: Optional[Union[str, int]] = None


@dataclass(slots=True)
class UpdateResult:
    success: bool
    error: Optional[str] = None
    status_code: Optional[int] = None
    data: Optional[Dict[str, Any]] = None


def fields_endpoint(entity_type: str, routes: Mapping[str, EntityRoute] = DEFAULT_ROUTES) -> str:
    """Return the name of the field metadata endpoint, e.g. ``dealFields``."""

    route = routes.get(entity_type)
    if route is None:
        raise ValueError(f"Unsupported entity type: {entity_type}")
    return route.fields_path.rstrip("/").rsplit("/", 1)[-1]


class PipedriveClient:
    """Thin wrapper around :mod:`requests` for the Pipedrive API."""

    def __init__(
        self,
        api_token: str,
        subdomain: str = "api",
        session: Optional[requests.Session] = None,
        routes: Mapping[str, EntityRoute] = DEFAULT_ROUTES,
        timeout: int = 30,
        *,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        if not api_token:
            raise ValueError("A Pipedrive API token is required")
        self.base_url = API_HOST_TEMPLATE.format(subdomain=subdomain or "api")
        self.session = session or requests.Session()
        self.routes = dict(routes)
        self.timeout = timeout
        self._api_token = api_token
        self._sleep = sleep

    # ------------------------------------------------------------------
    # Transport
    # ------------------------------------------------------------------
    def route(self, entity_type: str) -> EntityRoute:
        try:
            return self.routes[entity_type]
        except KeyError:
            raise ValueError(f"Unsupported entity type: {entity_type}") from None

    def _request(
        self,
        method: str,
        path: str,
        *,
        params: Optional[Dict[str, Any]] = None,
        json_body: Optional[Mapping[str, Any]] = None,
    ) -> Dict[str, Any]:
        url = f"{self.base_url}{path}"
        headers = {"x-api-token": self._api_token, "Accept": "application/json"}
        description = f"{method} {path}"
        attempt = 0
        while True:
            try:
                response = self.session.request(
                    method,
                    url,
                    params=params,
                    json=dict(json_body) if json_body is not None else None,
                    headers=headers,
                    timeout=self.timeout,
                )
            except (requests.ConnectionError, requests.Timeout) as exc:
                if attempt >= MAX_RETRY_ATTEMPTS:
                    raise RemoteAPIError(f"{description} failed: {exc}") from exc
                self._backoff(description, str(exc), attempt)
                attempt += 1
                continue
            except requests.RequestException as exc:
                raise RemoteAPIError(f"{description} failed: {exc}") from exc

            status = response.status_code
            if status in RETRY_STATUS_CODES and attempt < MAX_RETRY_ATTEMPTS:
                self._backoff(description, str(status), attempt)
                attempt += 1
                continue
            return self._decode(response, description)

    def _backoff(self, description: str, reason: str, attempt: int) -> None:
        delay = BACKOFF_SCHEDULE[min(attempt, len(BACKOFF_SCHEDULE) - 1)]
        logger.warning(
            "Pipedrive %s error (%s). Retrying in %ss (%d/%d)",
            description,
            reason,
            delay,
            attempt + 1,
            MAX_RETRY_ATTEMPTS,
        )
        self._sleep(delay)

    @staticmethod
    def _decode(response: requests.Response, description: str) -> Dict[str, Any]:
        status = response.status_code
        try:
            payload = response.json()
        except ValueError:
            raise RemoteAPIError(
                f"{description} returned an unreadable response (HTTP {status})",
                status_code=status,
            ) from None
        if not isinstance(payload, dict):
            raise RemoteAPIError(f"{description} returned an unexpected payload", status_code=status)
        if status >= 400 or payload.get("success") is False:
            message = payload.get("error") or payload.get("message") or f"HTTP {status}"
            detail = payload.get("error_info")
            if detail:
                message = f"{message} ({detail})"
            raise RemoteAPIError(str(message), status_code=status)
        return payload

    # ------------------------------------------------------------------
    # Records
    # ------------------------------------------------------------------
    def list_records(
        self,
        entity_type: str,
        filter_id: Optional[RecordId] = None,
        page: Optional[Union[str, int]] = None,
        limit: int = PAGE_SIZE,
    ) -> RecordPage:
        """Fetch one page of records; ``page`` is a cursor or an offset."""

        route = self.route(entity_type)
        params: Dict[str, Any] = {"limit": limit}
        if filter_id not in (None, ""):
            params["filter_id"] = filter_id
        if route.paging == "offset":
            params["start"] = int(page or 0)
        elif page:
            params["cursor"] = page

        payload = self._request("GET", route.list_path, params=params)
        items = [item for item in payload.get("data") or [] if isinstance(item, dict)]
        additional = payload.get("additional_data") or {}

        if route.paging == "offset":
            pagination = additional.get("pagination") or {}
            has_more = bool(pagination.get("more_items_in_collection"))
            next_start = pagination.get("next_start")
            if next_start is None and has_more:
                next_start = int(page or 0) + len(items)
            return RecordPage(items=items, has_more=has_more, next_page=next_start if has_more else None)

        cursor = additional.get("next_cursor")
        return RecordPage(items=items, has_more=bool(cursor), next_page=cursor or None)

    def update_record(
        self,
        entity_type: str,
        record_id: RecordId,
        fields: Mapping[str, Any],
    ) -> UpdateResult:
        """Send ``fields`` for one record. Failures are reported, never raised."""

        route = self.route(entity_type)
        path = route.record_path(record_id)
        try:
            payload = self._request(route.update_method, path, json_body=fields)
        except RemoteAPIError as exc:
            logger.warning("Updating %s %s failed: %s", entity_type, record_id, exc)
            return UpdateResult(success=False, error=str(exc), status_code=exc.status_code)
        data = payload.get("data")
        return UpdateResult(success=True, status_code=200, data=data if isinstance(data, dict) else None)

    # ------------------------------------------------------------------
    # Metadata
    # ------------------------------------------------------------------
    def get_field_definitions(self, entity_type: str) -> List[Dict[str, Any]]:
        route = self.route(entity_type)
        definitions: List[Dict[str, Any]] = []
        start = 0
        while True:
            payload = self._request(
                "GET", route.fields_path, params={"start": start, "limit": FIELD_PAGE_SIZE}
            )
            items = [item for item in payload.get("data") or [] if isinstance(item, dict)]
            definitions.extend(items)
            pagination = (payload.get("additional_data") or {}).get("pagination") or {}
            if not pagination.get("more_items_in_collection") or not items:
                return definitions
            start = int(pagination.get("next_start") or start + len(items))

    def get_filters(self, entity_type: Optional[str] = None) -> List[Dict[str, Any]]:
        params: Dict[str, Any] = {}
        if entity_type:
            if entity_type not in FILTER_TYPES:
                raise ValueError(f"Unsupported entity type: {entity_type}")
            params["type"] = FILTER_TYPES[entity_type]
        payload = self._request("GET", "/api/v1/filters", params=params)
        filters: List[Dict[str, Any]] = []
        for item in payload.get("data") or []:
            if not isinstance(item, dict) or item.get("id") is None:
                continue
            filters.append({"id": item["id"], "name": item.get("name", ""), "type": item.get("type", "")})
        return filters


__all__ = [
    "BACKOFF_SCHEDULE",
    "DEFAULT_ROUTES",
    "ENTITY_TYPES",
    "EntityRoute",
    "PipedriveClient",
    "RecordPage",
    "UpdateResult",
    "fields_endpoint",
]
