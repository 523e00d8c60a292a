"""
End-to-end tests for lifecycle policy and legal hold endpoints.

Runs the FastAPI app against an in-memory SQLite database and an
in-memory snapshot source.
"""

import os
import uuid
from datetime import UTC, datetime, timedelta

import pytest
from fastapi.testclient import TestClient

# Set test environment before importing app
os.environ.setdefault("TESTING", "1")
os.environ.setdefault("DATABASE_URL", "sqlite:///:memory:")
os.environ.setdefault("ADMIN_API_KEY", "test-api-key")

RULES = [
    {
        "level": "internal",
        "retention": {"min_days": 30, "max_days": 365},
        "data_type_overrides": [],
    }
]


def _snapshot(snapshot_id, age_days, size_bytes=100, level="internal", schedule_id=None, data_types=()):
    from app.snapshots.base import Snapshot, parse_classification, parse_data_types

    return Snapshot(
        id=snapshot_id,
        classification_level=parse_classification(level),
        created_at=datetime.now(UTC) - timedelta(days=age_days),
        size_bytes=size_bytes,
        schedule_id=schedule_id,
        data_types=parse_data_types(data_types),
    )


class TestLifecycleEndpoints:
    """E2E tests for lifecycle endpoints."""

    @pytest.fixture
    def client(self, db_session, source):
        """Create a test client bound to the test database and source."""
        from app.database import get_db
        from app.main import app
        from app.snapshots import get_snapshot_source

        def override_db():
            yield db_session

        app.dependency_overrides[get_db] = override_db
        app.dependency_overrides[get_snapshot_source] = lambda: source
        try:
            yield TestClient(app)
        finally:
            app.dependency_overrides.clear()

    @pytest.fixture
    def headers(self, org_id):
        """Admin headers scoped to the test organization."""
        return {"X-API-Key": "test-api-key", "X-Org-ID": str(org_id), "X-Actor": "alice"}

    @pytest.fixture
    def populated(self, source, org_id):
        source.add(org_id, _snapshot("young", 10, size_bytes=1))
        source.add(org_id, _snapshot("middle", 40, size_bytes=20))
        source.add(org_id, _snapshot("old", 400, size_bytes=300))
        return source

    def _create(self, client, headers, **overrides):
        body = {"name": "Snapshots", "rules": RULES, "status": "active"}
        body.update(overrides)
        response = client.post("/v1/lifecycle-policies", json=body, headers=headers)
        assert response.status_code == 201, response.text
        return response.json()

    # -------------------------------------------------------------------------
    # Auth
    # -------------------------------------------------------------------------

    def test_health(self, client):
        response = client.get("/health")
        assert response.status_code == 200
        assert response.json()["status"] == "ok"

    def test_requires_api_key(self, client, org_id):
        response = client.get("/v1/lifecycle-policies", headers={"X-Org-ID": str(org_id)})
        assert response.status_code == 401

    def test_requires_org_header(self, client):
        response = client.get("/v1/lifecycle-policies", headers={"X-API-Key": "test-api-key"})
        assert response.status_code == 400

    def test_rejects_malformed_org_header(self, client):
        response = client.get("/v1/lifecycle-policies", headers={"X-API-Key": "test-api-key", "X-Org-ID": "acme"})
        assert response.status_code == 400

    # -------------------------------------------------------------------------
    # Policies
    # -------------------------------------------------------------------------

    def test_create_and_get_policy(self, client, headers, org_id):
        created = self._create(client, headers)

        response = client.get(f"/v1/lifecycle-policies/{created['id']}", headers=headers)

        assert response.status_code == 200
        data = response.json()
        assert data["org_id"] == str(org_id)
        assert data["rules"] == RULES
        assert data["status"] == "active"
        assert data["enforcement_mode"] == "must_delete_only"
        assert data["created_by"] == "alice"
        assert data["deletion_count"] == 0

    def test_create_without_rules_uses_defaults(self, client, headers):
        created = self._create(client, headers, rules=None)

        assert [r["level"] for r in created["rules"]] == ["public", "internal", "confidential", "restricted"]
        restricted = created["rules"][3]["data_type_overrides"]
        assert {o["data_type"]: o["retention"] for o in restricted} == {
            "phi": {"min_days": 2190, "max_days": 0},
            "pci": {"min_days": 365, "max_days": 2555},
        }

    def test_invalid_override_window_rejected(self, client, headers):
        rules = [
            {
                "level": "confidential",
                "retention": {"min_days": 365, "max_days": 2555},
                "data_type_overrides": [{"data_type": "pii", "retention": {"min_days": 400, "max_days": 100}}],
            }
        ]

        response = client.post("/v1/lifecycle-policies", json={"name": "Bad", "rules": rules}, headers=headers)

        assert response.status_code == 400
        assert "confidential/pii" in response.json()["detail"]

    def test_duplicate_levels_rejected(self, client, headers):
        response = client.post(
            "/v1/lifecycle-policies",
            json={"name": "Dup", "rules": RULES + RULES},
            headers=headers,
        )

        assert response.status_code == 400
        assert "more than once" in response.json()["detail"]

    def test_invalid_window_rejected(self, client, headers):
        rules = [{"level": "internal", "retention": {"min_days": 30, "max_days": 10}}]

        response = client.post("/v1/lifecycle-policies", json={"name": "Bad", "rules": rules}, headers=headers)

        assert response.status_code == 400

    def test_list_policies_scoped_to_org(self, client, headers):
        self._create(client, headers, name="Mine")
        other = dict(headers, **{"X-Org-ID": str(uuid.uuid4())})
        self._create(client, other, name="Theirs")

        response = client.get("/v1/lifecycle-policies", headers=headers)

        assert [p["name"] for p in response.json()] == ["Mine"]

    def test_other_org_gets_404(self, client, headers):
        created = self._create(client, headers)
        other = dict(headers, **{"X-Org-ID": str(uuid.uuid4())})

        response = client.get(f"/v1/lifecycle-policies/{created['id']}", headers=other)

        assert response.status_code == 404

    def test_status_only_update(self, client, headers):
        created = self._create(client, headers)

        response = client.put(
            f"/v1/lifecycle-policies/{created['id']}", json={"status": "disabled"}, headers=headers
        )

        assert response.status_code == 200
        assert response.json()["status"] == "disabled"
        assert response.json()["rules"] == RULES

    def test_update_clears_optional_fields(self, client, headers):
        created = self._create(
            client,
            headers,
            description="Nightly backups",
            repository_ids=["repo-a"],
            schedule_ids=["nightly"],
        )
        url = f"/v1/lifecycle-policies/{created['id']}"

        untouched = client.put(url, json={"name": "Renamed"}, headers=headers).json()
        assert untouched["description"] == "Nightly backups"
        assert untouched["repository_ids"] == ["repo-a"]
        assert untouched["schedule_ids"] == ["nightly"]

        response = client.put(url, json={"description": "", "repository_ids": [], "schedule_ids": []}, headers=headers)

        assert response.status_code == 200
        data = response.json()
        assert data["description"] is None
        assert data["repository_ids"] is None
        assert data["schedule_ids"] is None

    def test_update_missing_policy(self, client, headers):
        response = client.put(f"/v1/lifecycle-policies/{uuid.uuid4()}", json={"status": "active"}, headers=headers)
        assert response.status_code == 404

    def test_delete_policy(self, client, headers):
        created = self._create(client, headers)

        response = client.delete(f"/v1/lifecycle-policies/{created['id']}", headers=headers)

        assert response.status_code == 204
        assert client.get(f"/v1/lifecycle-policies/{created['id']}", headers=headers).status_code == 404

    # -------------------------------------------------------------------------
    # Dry run and enforcement
    # -------------------------------------------------------------------------

    def test_dry_run(self, client, headers, populated, org_id):
        created = self._create(client, headers, status="draft")

        response = client.post(f"/v1/lifecycle-policies/{created['id']}/dry-run", headers=headers)

        assert response.status_code == 200
        data = response.json()
        assert data["dry_run"] is True
        assert data["total_snapshots"] == 3
        assert (data["keep_count"], data["can_delete_count"], data["must_delete_count"]) == (1, 1, 1)
        assert data["total_size_to_delete"] == 320
        assert [e["action"] for e in data["evaluations"]] == ["keep", "can_delete", "must_delete"]
        assert len(populated.list_candidates(org_id)) == 3

    def test_repeated_dry_runs_return_identical_bodies(self, client, headers, populated):
        """The evaluation time travels in a header, so unchanged state gives byte-equal bodies."""
        created = self._create(client, headers)
        url = f"/v1/lifecycle-policies/{created['id']}/dry-run"

        first = client.post(url, headers=headers)
        second = client.post(url, headers=headers)

        assert first.status_code == second.status_code == 200
        assert first.json() == second.json()
        assert "evaluated_at" not in first.json()
        assert datetime.fromisoformat(first.headers["X-Evaluated-At"]).tzinfo is not None

    def test_dry_run_reports_schedule_and_data_types(self, client, headers, source, org_id):
        source.add(org_id, _snapshot("phi-1", 400, schedule_id="nightly", data_types=["phi"]))
        rules = [
            {
                "level": "internal",
                "retention": {"min_days": 30, "max_days": 365},
                "data_type_overrides": [{"data_type": "phi", "retention": {"min_days": 500, "max_days": 0}}],
            }
        ]
        created = self._create(client, headers, rules=rules)

        data = client.post(f"/v1/lifecycle-policies/{created['id']}/dry-run", headers=headers).json()

        evaluation = data["evaluations"][0]
        assert evaluation["schedule_id"] == "nightly"
        assert evaluation["data_types"] == ["phi"]
        assert evaluation["action"] == "keep"
        assert evaluation["min_retention_days"] == 500

    def test_preview_unsaved_rules(self, client, headers, populated):
        rules = [{"level": "internal", "retention": {"min_days": 5, "max_days": 20}}]

        response = client.post("/v1/lifecycle-policies/preview", json={"rules": rules}, headers=headers)

        assert response.status_code == 200
        assert response.json()["must_delete_count"] == 2
        assert response.json()["policy_id"] is None
        assert "X-Evaluated-At" in response.headers

    def test_preview_schedule_scope(self, client, headers, source, org_id):
        source.add(org_id, _snapshot("nightly-1", 400, schedule_id="nightly"))
        source.add(org_id, _snapshot("manual-1", 400))

        response = client.post(
            "/v1/lifecycle-policies/preview",
            json={"rules": RULES, "schedule_ids": ["nightly"]},
            headers=headers,
        )

        assert [e["snapshot_id"] for e in response.json()["evaluations"]] == ["nightly-1"]

    def test_enforce_requires_confirm(self, client, headers, populated, org_id):
        created = self._create(client, headers)

        response = client.post(f"/v1/lifecycle-policies/{created['id']}/enforce", json={}, headers=headers)

        assert response.status_code == 400
        assert len(populated.list_candidates(org_id)) == 3

    def test_enforce_and_list_deletions(self, client, headers, populated, org_id):
        created = self._create(client, headers)

        response = client.post(
            f"/v1/lifecycle-policies/{created['id']}/enforce", json={"confirm": True}, headers=headers
        )

        assert response.status_code == 200
        data = response.json()
        assert data["success"] is True
        assert data["deleted_snapshot_ids"] == ["old"]
        assert data["bytes_reclaimed"] == 300

        deletions = client.get("/v1/lifecycle-deletions", headers=headers).json()
        assert [d["snapshot_id"] for d in deletions] == ["old"]
        assert deletions[0]["deleted_by"] == "alice"

        policy_deletions = client.get(
            f"/v1/lifecycle-policies/{created['id']}/deletions?limit=5", headers=headers
        ).json()
        assert len(policy_deletions) == 1

        policy = client.get(f"/v1/lifecycle-policies/{created['id']}", headers=headers).json()
        assert policy["deletion_count"] == 1
        assert policy["bytes_reclaimed"] == 300

    def test_enforce_conflict(self, client, headers, populated):
        from app.services.lifecycle import enforcement_locks

        created = self._create(client, headers)
        lease = enforcement_locks.try_acquire(uuid.UUID(created["id"]))
        try:
            response = client.post(
                f"/v1/lifecycle-policies/{created['id']}/enforce", json={"confirm": True}, headers=headers
            )
        finally:
            enforcement_locks.release(lease)

        assert response.status_code == 409

    def test_enforce_draft_is_skipped(self, client, headers, populated):
        created = self._create(client, headers, status="draft")

        response = client.post(
            f"/v1/lifecycle-policies/{created['id']}/enforce", json={"confirm": True}, headers=headers
        )

        assert response.status_code == 200
        assert response.json()["skipped"] is True

    def test_cancel_when_idle(self, client, headers):
        created = self._create(client, headers)

        response = client.post(f"/v1/lifecycle-policies/{created['id']}/enforce/cancel", headers=headers)

        assert response.status_code == 200
        assert response.json()["cancellation_requested"] is False

    def test_cancel_reaches_run_in_another_process(self, client, headers, db_session):
        from app.models import LifecyclePolicy

        created = self._create(client, headers)
        policy_id = uuid.UUID(created["id"])
        db_session.query(LifecyclePolicy).filter(LifecyclePolicy.id == policy_id).update(
            {
                LifecyclePolicy.enforcement_run_id: "other-process-run",
                LifecyclePolicy.enforcement_started_at: datetime.now(UTC),
            },
            synchronize_session=False,
        )
        db_session.commit()

        response = client.post(f"/v1/lifecycle-policies/{created['id']}/enforce/cancel", headers=headers)

        assert response.json()["cancellation_requested"] is True
        db_session.expire_all()
        assert db_session.get(LifecyclePolicy, policy_id).enforcement_cancel_requested is True

    def test_enforce_conflicts_with_run_in_another_process(self, client, headers, db_session, populated, org_id):
        from app.models import LifecyclePolicy

        created = self._create(client, headers)
        db_session.query(LifecyclePolicy).filter(LifecyclePolicy.id == uuid.UUID(created["id"])).update(
            {
                LifecyclePolicy.enforcement_run_id: "other-process-run",
                LifecyclePolicy.enforcement_started_at: datetime.now(UTC),
            },
            synchronize_session=False,
        )
        db_session.commit()

        response = client.post(
            f"/v1/lifecycle-policies/{created['id']}/enforce", json={"confirm": True}, headers=headers
        )

        assert response.status_code == 409
        assert len(populated.list_candidates(org_id)) == 3

    def test_source_unavailable_maps_to_503(self, client, headers):
        from unittest.mock import MagicMock

        from app.main import app
        from app.services.lifecycle import SourceUnavailableError
        from app.snapshots import get_snapshot_source

        broken = MagicMock()
        broken.list_candidates.side_effect = SourceUnavailableError("backup service down")
        app.dependency_overrides[get_snapshot_source] = lambda: broken
        created = self._create(client, headers)

        response = client.post(f"/v1/lifecycle-policies/{created['id']}/dry-run", headers=headers)

        assert response.status_code == 503

    # -------------------------------------------------------------------------
    # Legal holds
    # -------------------------------------------------------------------------

    def test_hold_lifecycle(self, client, headers, populated):
        response = client.post("/v1/snapshots/old/hold", json={"reason": "litigation"}, headers=headers)
        assert response.status_code == 200
        assert response.json()["placed_by"] == "alice"

        again = client.post("/v1/snapshots/old/hold", json={"reason": "audit"}, headers=headers)
        assert again.json()["id"] == response.json()["id"]
        assert again.json()["reason"] == "audit"

        assert client.get("/v1/snapshots/old/hold", headers=headers).json()["reason"] == "audit"
        assert [h["snapshot_id"] for h in client.get("/v1/legal-holds", headers=headers).json()] == ["old"]

        assert client.delete("/v1/snapshots/old/hold", headers=headers).status_code == 204
        assert client.delete("/v1/snapshots/old/hold", headers=headers).status_code == 404
        assert client.get("/v1/snapshots/old/hold", headers=headers).status_code == 404

    def test_held_snapshot_survives_enforcement(self, client, headers, populated, org_id):
        created = self._create(client, headers)
        client.post("/v1/snapshots/old/hold", json={"reason": "litigation"}, headers=headers)

        dry = client.post(f"/v1/lifecycle-policies/{created['id']}/dry-run", headers=headers).json()
        assert dry["hold_count"] == 1

        result = client.post(
            f"/v1/lifecycle-policies/{created['id']}/enforce", json={"confirm": True}, headers=headers
        ).json()

        assert result["snapshots_deleted"] == 0
        assert "old" in {s.id for s in populated.list_candidates(org_id)}

    def test_hold_requires_reason(self, client, headers):
        response = client.post("/v1/snapshots/old/hold", json={"reason": ""}, headers=headers)
        assert response.status_code == 422
