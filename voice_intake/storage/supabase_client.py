"""Supabase (PostgREST) record store client.

Reads and writes response, batch, and usage rows through the Supabase REST
API with the service-role key.
"""

from __future__ import annotations

import logging
import os
from datetime import datetime
from enum import Enum
from typing import Any

import httpx

from voice_intake.models import Batch, BillingSubject, InputMethod, Response, ResponseStatus
from voice_intake.storage.interface import RecordStore
from voice_intake.utils.errors import StorageError

logger = logging.getLogger(__name__)

RESPONSES_TABLE = "recordings"
BATCHES_TABLE = "transcription_batches"

# scope -> (table, subject column)
USAGE_TABLES: dict[str, tuple[str, str]] = {
    "personal": ("usage", "user_id"),
    "organization": ("org_usage", "org_id"),
}


def _jsonable(fields: dict[str, Any]) -> dict[str, Any]:
    """Convert datetimes and enums in a partial update to JSON values."""
    out: dict[str, Any] = {}
    for key, value in fields.items():
        if isinstance(value, datetime):
            value = value.isoformat()
        elif isinstance(value, Enum):
            value = value.value
        out[key] = value
    return out


def _in_filter(values: list[str]) -> str:
    quoted = ",".join('"' + v.replace('"', '\\"') + '"' for v in values)
    return f"in.({quoted})"


class SupabaseRecordStore(RecordStore):
    """RecordStore backed by the Supabase REST API.

    Reads configuration from environment variables:
        SUPABASE_URL, SUPABASE_SERVICE_KEY
    """

    def __init__(
        self,
        url: str | None = None,
        service_key: str | None = None,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        self.url = (url or os.environ.get("SUPABASE_URL", "")).rstrip("/")
        self.service_key = service_key or os.environ.get("SUPABASE_SERVICE_KEY", "")

        if not self.url:
            raise StorageError("SUPABASE_URL is required", operation="init")
        if not self.service_key:
            raise StorageError("SUPABASE_SERVICE_KEY is required", operation="init")

        self._client = client or httpx.AsyncClient(timeout=30.0)

    def _headers(self, prefer: str | None = None) -> dict[str, str]:
        """Build authentication headers for the REST API."""
        headers = {
            "apikey": self.service_key,
            "Authorization": f"Bearer {self.service_key}",
            "Content-Type": "application/json",
        }
        if prefer:
            headers["Prefer"] = prefer
        return headers

    async def close(self) -> None:
        """Close the shared HTTP client and release connection pool."""
        await self._client.aclose()

    async def _request(
        self,
        method: str,
        table: str,
        operation: str,
        params: dict[str, str] | None = None,
        json: Any = None,
        prefer: str | None = None,
    ) -> list[dict[str, Any]]:
        """Send a REST request and return the decoded row list.

        Raises:
            StorageError: On HTTP or transport failure.
        """
        url = f"{self.url}/rest/v1/{table}"
        try:
            response = await self._client.request(
                method,
                url,
                headers=self._headers(prefer),
                params=params,
                json=json,
            )
            response.raise_for_status()
        except httpx.HTTPStatusError as exc:
            raise StorageError(
                f"{operation} failed on '{table}': HTTP {exc.response.status_code}",
                operation=operation,
            ) from exc
        except httpx.RequestError as exc:
            raise StorageError(
                f"{operation} failed on '{table}': {exc}",
                operation=operation,
            ) from exc

        if not response.content:
            return []
        body = response.json()
        return body if isinstance(body, list) else [body]

    # Tenant lookups

    async def get_billing_subject(self, user_id: str) -> BillingSubject:
        rows = await self._request(
            "GET",
            "user_profiles",
            "get_billing_subject",
            params={"id": f"eq.{user_id}", "select": "plan,org_id"},
        )
        profile = rows[0] if rows else {}
        subject = BillingSubject(user_id=user_id, plan_key=profile.get("plan") or "free")

        org_id = profile.get("org_id")
        if org_id:
            orgs = await self._request(
                "GET",
                "organizations",
                "get_billing_subject",
                params={"id": f"eq.{org_id}", "select": "plan"},
            )
            if orgs:
                subject.org_id = org_id
                subject.org_plan_key = orgs[0].get("plan") or "free"
        return subject

    async def get_allowed_domains(self, project_id: str) -> list[str]:
        rows = await self._request(
            "GET",
            "projects",
            "get_allowed_domains",
            params={"id": f"eq.{project_id}", "select": "settings"},
        )
        if not rows:
            return []
        settings = rows[0].get("settings") or {}
        domains = settings.get("allowed_domains") or []
        return [d for d in domains if isinstance(d, str)]

    async def get_project_language(self, project_id: str) -> str | None:
        rows = await self._request(
            "GET",
            "projects",
            "get_project_language",
            params={"id": f"eq.{project_id}", "select": "language"},
        )
        if not rows:
            return None
        return rows[0].get("language") or None

    # Usage counters

    async def get_usage(self, scope: str, subject_id: str, period: str) -> int:
        table, column = USAGE_TABLES[scope]
        rows = await self._request(
            "GET",
            table,
            "get_usage",
            params={
                column: f"eq.{subject_id}",
                "month": f"eq.{period}",
                "select": "responses_count",
            },
        )
        return int(rows[0].get("responses_count") or 0) if rows else 0

    async def increment_usage(self, scope: str, subject_id: str, period: str) -> int:
        table, column = USAGE_TABLES[scope]
        # Read-then-write; concurrent increments may interleave.
        current = await self.get_usage(scope, subject_id, period)
        new_count = current + 1
        await self._request(
            "POST",
            table,
            "increment_usage",
            params={"on_conflict": f"{column},month"},
            json={column: subject_id, "month": period, "responses_count": new_count},
            prefer="resolution=merge-duplicates",
        )
        return new_count

    # Responses

    async def insert_response(self, response: Response) -> Response:
        await self._request(
            "POST",
            RESPONSES_TABLE,
            "insert_response",
            json=response.to_row(),
            prefer="return=minimal",
        )
        return response

    async def get_response(
        self, response_id: str, project_id: str | None = None
    ) -> Response | None:
        params = {"id": f"eq.{response_id}", "select": "*"}
        if project_id is not None:
            params["project_id"] = f"eq.{project_id}"
        rows = await self._request("GET", RESPONSES_TABLE, "get_response", params=params)
        return Response.from_row(rows[0]) if rows else None

    async def update_response(self, response_id: str, fields: dict[str, Any]) -> None:
        await self._request(
            "PATCH",
            RESPONSES_TABLE,
            "update_response",
            params={"id": f"eq.{response_id}"},
            json=_jsonable(fields),
            prefer="return=minimal",
        )

    async def delete_response(self, response_id: str) -> None:
        await self._request(
            "DELETE",
            RESPONSES_TABLE,
            "delete_response",
            params={"id": f"eq.{response_id}"},
        )

    async def find_text_response(
        self, project_id: str, session_id: str, question_id: str | None
    ) -> Response | None:
        params = {
            "project_id": f"eq.{project_id}",
            "session_id": f"eq.{session_id}",
            "input_method": f"eq.{InputMethod.TEXT.value}",
            "question_id": f"eq.{question_id}" if question_id else "is.null",
            "select": "*",
            "limit": "1",
        }
        rows = await self._request(
            "GET", RESPONSES_TABLE, "find_text_response", params=params
        )
        return Response.from_row(rows[0]) if rows else None

    async def list_responses_by_sessions(
        self, project_id: str, session_ids: list[str]
    ) -> list[Response]:
        if not session_ids:
            return []
        rows = await self._request(
            "GET",
            RESPONSES_TABLE,
            "list_responses_by_sessions",
            params={
                "project_id": f"eq.{project_id}",
                "session_id": _in_filter(session_ids),
                "select": "*",
            },
        )
        return [Response.from_row(row) for row in rows]

    async def list_batch_responses(
        self, batch_id: str, status: str | None = None
    ) -> list[Response]:
        params = {"batch_id": f"eq.{batch_id}", "select": "*", "order": "created_at.asc"}
        if status is not None:
            params["status"] = f"eq.{status}"
        rows = await self._request(
            "GET", RESPONSES_TABLE, "list_batch_responses", params=params
        )
        return [Response.from_row(row) for row in rows]

    async def assign_responses_to_batch(
        self, response_ids: list[str], batch_id: str
    ) -> None:
        if not response_ids:
            return
        await self._request(
            "PATCH",
            RESPONSES_TABLE,
            "assign_responses_to_batch",
            params={"id": _in_filter(response_ids)},
            json={"status": ResponseStatus.PROCESSING.value, "batch_id": batch_id},
            prefer="return=minimal",
        )

    # Batches

    async def insert_batch(self, batch: Batch) -> Batch:
        await self._request(
            "POST",
            BATCHES_TABLE,
            "insert_batch",
            json=batch.to_row(),
            prefer="return=minimal",
        )
        return batch

    async def get_batch(
        self, batch_id: str, project_id: str | None = None
    ) -> Batch | None:
        params = {"id": f"eq.{batch_id}", "select": "*"}
        if project_id is not None:
            params["project_id"] = f"eq.{project_id}"
        rows = await self._request("GET", BATCHES_TABLE, "get_batch", params=params)
        return Batch.from_row(rows[0]) if rows else None

    async def update_batch(self, batch_id: str, fields: dict[str, Any]) -> None:
        await self._request(
            "PATCH",
            BATCHES_TABLE,
            "update_batch",
            params={"id": f"eq.{batch_id}"},
            json=_jsonable(fields),
            prefer="return=minimal",
        )
