# app/snapshots/http_source.py
"""
Snapshot source backed by the backup service's REST API.

Endpoints:
    GET    {base_url}/v1/orgs/{org_id}/snapshots   -> {"snapshots": [...]} or [...]
    DELETE {base_url}/v1/snapshots/{snapshot_id}

Each snapshot row carries id, classification_level, created_at,
size_bytes and optionally repository_id, schedule_id and data_types.
"""

import logging
import uuid

import httpx

from app.constants import EnforcementDefaults
from app.services.lifecycle.errors import SnapshotDeletionError, SourceUnavailableError
from app.services.resilience import with_sync_retry
from app.snapshots.base import Snapshot, SnapshotSource, snapshot_from_dict

logger = logging.getLogger(__name__)


class HttpSnapshotSource(SnapshotSource):
    """
    REST snapshot source.

    Configuration:
    - SNAPSHOT_SOURCE_URL: Base URL of the backup service
    - SNAPSHOT_SOURCE_API_KEY: Sent as X-API-Key
    - SNAPSHOT_SOURCE_TIMEOUT_SECONDS: Per-request timeout
    - SNAPSHOT_SOURCE_MAX_ATTEMPTS: Attempts for list_candidates()
    """

    def __init__(
        self,
        base_url: str,
        api_key: str | None = None,
        timeout: float = 10.0,
        max_attempts: int = 3,
        transport: httpx.BaseTransport | None = None,
        retry_min_wait: float = EnforcementDefaults.SOURCE_RETRY_MIN_WAIT_SECONDS,
    ):
        headers = {"Accept": "application/json"}
        if api_key:
            headers["X-API-Key"] = api_key

        self.client = httpx.Client(
            base_url=base_url.rstrip("/"),
            timeout=timeout,
            headers=headers,
            transport=transport,
        )
        self._list_with_retry = with_sync_retry(
            max_attempts=max_attempts,
            min_wait=retry_min_wait,
            max_wait=EnforcementDefaults.SOURCE_RETRY_MAX_WAIT_SECONDS,
            retry_exceptions=(SourceUnavailableError,),
        )(self._list_once)

    @property
    def name(self) -> str:
        return "http"

    def close(self) -> None:
        self.client.close()

    def list_candidates(self, org_id: uuid.UUID) -> list[Snapshot]:
        return self._list_with_retry(org_id)

    def _list_once(self, org_id: uuid.UUID) -> list[Snapshot]:
        try:
            response = self.client.get(f"/v1/orgs/{org_id}/snapshots")
        except httpx.HTTPError as e:
            raise SourceUnavailableError(f"Snapshot source unreachable: {e}") from e

        if response.status_code >= 500:
            raise SourceUnavailableError(f"Snapshot source error: {response.status_code}")
        if response.status_code >= 400:
            raise SourceUnavailableError(
                f"Snapshot source rejected listing for org {org_id}: {response.status_code} - {response.text}"
            )

        try:
            payload = response.json()
            rows = payload["snapshots"] if isinstance(payload, dict) else payload
            snapshots = [snapshot_from_dict(row) for row in rows]
        except (ValueError, KeyError, TypeError) as e:
            raise SourceUnavailableError(f"Malformed snapshot listing: {e}") from e

        logger.debug(f"Listed {len(snapshots)} candidate snapshots for org {org_id}")
        return snapshots

    def delete(self, snapshot_id: str) -> bool:
        try:
            response = self.client.delete(f"/v1/snapshots/{snapshot_id}")
        except httpx.HTTPError as e:
            raise SourceUnavailableError(f"Snapshot source unreachable: {e}") from e

        if response.status_code == 404:
            return False
        if response.status_code >= 500:
            raise SourceUnavailableError(f"Snapshot source error: {response.status_code}")
        if response.status_code >= 400:
            raise SnapshotDeletionError(snapshot_id, f"{response.status_code} - {response.text}")
        return True
