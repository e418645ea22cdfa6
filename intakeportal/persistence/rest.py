from __future__ import annotations

from datetime import datetime
from enum import Enum
import logging
from typing import Any, Generic, Mapping

import httpx
from pydantic_core import to_jsonable_python

from intakeportal.core.errors import ConflictError, NotFound, PersistenceError
from intakeportal.domain.models import IntakeStep
from intakeportal.persistence.base import ENTITY_TABLES, IntakeStore, T, stamp_changes


logger = logging.getLogger(__name__)

MERGE_STEP_FUNCTION = "merge_intake_step"


def encode_filter(value: Any) -> str:
    # PostgREST filter operators: eq.<value> for scalars, is.null for NULL.
    if value is None:
        return "is.null"
    if isinstance(value, bool):
        return f"eq.{'true' if value else 'false'}"
    if isinstance(value, Enum):
        return f"eq.{value.value}"
    if isinstance(value, datetime):
        return f"eq.{value.isoformat()}"
    return f"eq.{value}"


def _filter_params(filters: Mapping[str, Any]) -> list[tuple[str, str]]:
    return [(key, encode_filter(value)) for key, value in filters.items()]


def _total_from_content_range(header: str | None) -> int | None:
    # Content-Range looks like "0-9/42" or "*/0" when Prefer: count=exact is set.
    if not header or "/" not in header:
        return None
    total = header.rsplit("/", 1)[1]
    return int(total) if total.isdigit() else None


class RestClient:
    """Thin PostgREST transport shared by every repository of a RestStore."""

    def __init__(self, client: httpx.AsyncClient) -> None:
        self._client = client

    async def request(
        self,
        method: str,
        path: str,
        *,
        params: list[tuple[str, str]] | None = None,
        json: Any = None,
        prefer: str | None = None,
    ) -> httpx.Response:
        headers = {"Prefer": prefer} if prefer else None
        try:
            response = await self._client.request(method, path, params=params, json=json, headers=headers)
        except httpx.HTTPError as exc:
            logger.warning("rest_store_request_failed method=%s path=%s", method, path, exc_info=exc)
            raise PersistenceError(f"REST store request failed for {path}") from exc
        if response.status_code == 409:
            raise ConflictError(f"REST store rejected a duplicate row for {path}")
        if response.status_code >= 400:
            logger.warning(
                "rest_store_error_status method=%s path=%s status=%s",
                method,
                path,
                response.status_code,
            )
            raise PersistenceError(f"REST store returned {response.status_code} for {path}")
        return response

    async def aclose(self) -> None:
        await self._client.aclose()


class RestRepository(Generic[T]):
    def __init__(self, model: type[T], table: str, client: RestClient) -> None:
        self.model = model
        self._path = f"/rest/v1/{table}"
        self._client = client

    def _decode(self, payload: Any) -> list[T]:
        rows = payload if isinstance(payload, list) else [payload]
        return [self.model.model_validate(row) for row in rows]

    async def get(self, record_id: str) -> T | None:
        return await self.find_one(id=record_id)

    async def create(self, record: T) -> T:
        response = await self._client.request(
            "POST",
            self._path,
            json=record.model_dump(mode="json"),
            prefer="return=representation",
        )
        rows = self._decode(response.json())
        return rows[0] if rows else record.model_copy(deep=True)

    async def update(
        self,
        record_id: str,
        changes: Mapping[str, Any],
        expect: Mapping[str, Any] | None = None,
    ) -> T | None:
        current = await self.get(record_id)
        if current is None:
            return None
        resolved = stamp_changes(self.model, changes)
        merged = self.model.model_validate({**current.model_dump(), **resolved})
        body = merged.model_dump(mode="json", include=set(resolved))
        # The expect filters ride on the PATCH itself so the compare-and-set is one statement.
        params = _filter_params({"id": record_id, **dict(expect or {})})
        response = await self._client.request(
            "PATCH",
            self._path,
            params=params,
            json=body,
            prefer="return=representation",
        )
        rows = self._decode(response.json())
        return rows[0] if rows else None

    async def find(
        self,
        *,
        order_by: str | None = None,
        descending: bool = False,
        limit: int | None = None,
        **filters: Any,
    ) -> list[T]:
        params = [("select", "*"), *_filter_params(filters)]
        if order_by is not None:
            params.append(("order", f"{order_by}.{'desc' if descending else 'asc'}.nullslast"))
        if limit is not None:
            params.append(("limit", str(limit)))
        response = await self._client.request("GET", self._path, params=params)
        return self._decode(response.json())

    async def find_one(self, **filters: Any) -> T | None:
        rows = await self.find(limit=1, **filters)
        return rows[0] if rows else None

    async def count(self, **filters: Any) -> int:
        params = [("select", "id"), *_filter_params(filters)]
        response = await self._client.request("GET", self._path, params=params, prefer="count=exact")
        total = _total_from_content_range(response.headers.get("Content-Range"))
        if total is not None:
            return total
        return len(response.json())


class RestStore(IntakeStore):
    """PostgREST/Supabase-compatible store over httpx."""

    def __init__(self, client: httpx.AsyncClient) -> None:
        self._rest = RestClient(client)
        for attribute, (table, model, _unique) in ENTITY_TABLES.items():
            setattr(self, attribute, RestRepository(model, table, self._rest))

    @classmethod
    def from_settings(
        cls,
        *,
        base_url: str,
        api_key: str,
        timeout_ms: int,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> "RestStore":
        headers = {
            "apikey": api_key,
            "Authorization": f"Bearer {api_key}",
            "Content-Type": "application/json",
        }
        client = httpx.AsyncClient(
            base_url=base_url.rstrip("/"),
            headers=headers,
            timeout=timeout_ms / 1000.0,
            transport=transport,
        )
        return cls(client)

    async def close(self) -> None:
        await self._rest.aclose()

    async def merge_step_data(
        self,
        step_id: str,
        patch: Mapping[str, Any],
        mark_complete: bool,
    ) -> IntakeStep:
        # The database function applies data || patch under a row lock.
        payload = {
            "p_step_id": step_id,
            "p_patch": to_jsonable_python(dict(patch)),
            "p_mark_complete": mark_complete,
        }
        response = await self._rest.request(
            "POST",
            f"/rest/v1/rpc/{MERGE_STEP_FUNCTION}",
            json=payload,
        )
        body = response.json()
        rows = body if isinstance(body, list) else [body]
        if not rows or rows[0] is None:
            raise NotFound("intake_step", step_id)
        return IntakeStep.model_validate(rows[0])
