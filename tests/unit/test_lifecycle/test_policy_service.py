# tests/unit/test_lifecycle/test_policy_service.py
"""Unit tests for lifecycle policy service."""

import uuid
from unittest.mock import MagicMock, patch

import pytest

from app.models import ClassificationLevel, DataType, EnforcementMode, PolicyStatus
from app.services.lifecycle.errors import NotFoundError, ValidationError
from app.services.lifecycle.evaluator import ClassificationRule, RetentionDuration


def _row(level, min_days, max_days=0, overrides=None):
    row = {"level": level, "retention": {"min_days": min_days, "max_days": max_days}}
    if overrides is not None:
        row["data_type_overrides"] = [
            {"data_type": data_type, "retention": {"min_days": lo, "max_days": hi}}
            for data_type, lo, hi in overrides
        ]
    return row


class TestValidateRules:
    """Tests for validate_rules()."""

    def test_returns_level_keyed_mapping(self):
        from app.services.lifecycle.policy_service import validate_rules

        rules = validate_rules([_row("internal", 30, 365), _row("Public", 7)])

        assert rules == {
            ClassificationLevel.INTERNAL: ClassificationRule(RetentionDuration(30, 365)),
            ClassificationLevel.PUBLIC: ClassificationRule(RetentionDuration(7, 0)),
        }

    def test_rejects_empty_rule_set(self):
        from app.services.lifecycle.policy_service import validate_rules

        with pytest.raises(ValidationError, match="at least one rule"):
            validate_rules([])

    def test_rejects_duplicate_level(self):
        """Conflicting rows for one level are never resolved silently."""
        from app.services.lifecycle.policy_service import validate_rules

        with pytest.raises(ValidationError, match="more than once"):
            validate_rules([_row("internal", 30, 365), _row("internal", 10, 20)])

    def test_rejects_unknown_level(self):
        from app.services.lifecycle.policy_service import validate_rules

        with pytest.raises(ValidationError, match="unknown classification level"):
            validate_rules([_row("secret", 1)])

    @pytest.mark.parametrize(
        "min_days,max_days",
        [(-1, 0), (10, -5), (30, 10), ("30", 0), (1.5, 0), (True, 0)],
    )
    def test_rejects_invalid_windows(self, min_days, max_days):
        from app.services.lifecycle.policy_service import validate_rules

        with pytest.raises(ValidationError):
            validate_rules([_row("internal", min_days, max_days)])

    def test_accepts_equal_min_and_max(self):
        from app.services.lifecycle.policy_service import validate_rules

        rules = validate_rules([_row("internal", 30, 30)])
        assert rules[ClassificationLevel.INTERNAL].retention == RetentionDuration(30, 30)

    def test_rejects_row_without_retention_object(self):
        from app.services.lifecycle.policy_service import validate_rules

        with pytest.raises(ValidationError, match="must be an object"):
            validate_rules([{"level": "internal", "retention": 30}])

    def test_parses_data_type_overrides(self):
        from app.services.lifecycle.policy_service import validate_rules

        rules = validate_rules([_row("restricted", 2555, 0, overrides=[("PHI", 2190, 0), ("pci", 365, 2555)])])

        assert rules[ClassificationLevel.RESTRICTED].data_type_overrides == {
            DataType.PHI: RetentionDuration(2190, 0),
            DataType.PCI: RetentionDuration(365, 2555),
        }

    def test_rejects_invalid_override_window(self):
        """Overrides obey the same min/max rule as the level window."""
        from app.services.lifecycle.policy_service import validate_rules

        with pytest.raises(ValidationError, match="confidential/pii"):
            validate_rules([_row("confidential", 365, 2555, overrides=[("pii", 400, 100)])])

    def test_rejects_unknown_data_type(self):
        from app.services.lifecycle.policy_service import validate_rules

        with pytest.raises(ValidationError, match="unknown data type"):
            validate_rules([_row("internal", 30, 365, overrides=[("genome", 1, 2)])])

    def test_rejects_duplicate_data_type(self):
        from app.services.lifecycle.policy_service import validate_rules

        with pytest.raises(ValidationError, match="more than once"):
            validate_rules([_row("internal", 30, 365, overrides=[("pii", 1, 2), ("pii", 3, 4)])])

    def test_rejects_non_list_overrides(self):
        from app.services.lifecycle.policy_service import validate_rules

        row = _row("internal", 30, 365)
        row["data_type_overrides"] = "pii"
        with pytest.raises(ValidationError, match="must be a list"):
            validate_rules([row])

    def test_validation_error_is_value_error(self):
        """Callers written against ValueError keep working."""
        from app.services.lifecycle.policy_service import validate_rules

        with pytest.raises(ValueError):
            validate_rules(None)


class TestRulesToRows:
    """Tests for rules_to_rows()."""

    def test_ordered_by_sensitivity(self):
        from app.services.lifecycle.policy_service import rules_to_rows

        rows = rules_to_rows(
            {
                ClassificationLevel.RESTRICTED: ClassificationRule(
                    RetentionDuration(2555, 0),
                    {DataType.PHI: RetentionDuration(2190, 0)},
                ),
                ClassificationLevel.PUBLIC: ClassificationRule(RetentionDuration(30, 90)),
            }
        )

        assert [r["level"] for r in rows] == ["public", "restricted"]
        assert rows[0]["retention"] == {"min_days": 30, "max_days": 90}
        assert rows[0]["data_type_overrides"] == []
        assert rows[1]["data_type_overrides"] == [
            {"data_type": "phi", "retention": {"min_days": 2190, "max_days": 0}},
        ]

    def test_rows_validate_back_to_the_same_rules(self):
        from app.services.lifecycle.evaluator import default_rules
        from app.services.lifecycle.policy_service import rules_to_rows, validate_rules

        assert validate_rules(rules_to_rows(default_rules())) == default_rules()


class TestCreatePolicy:
    """Tests for create_policy()."""

    def test_creates_draft_policy_with_defaults(self, db_session, org_id, internal_rules):
        from app.services.lifecycle.policy_service import create_policy

        policy = create_policy(db_session, org_id, "Backups", internal_rules, created_by="alice")

        assert policy.id is not None
        assert policy.status == PolicyStatus.DRAFT.value
        assert policy.enforcement_mode == EnforcementMode.MUST_DELETE_ONLY.value
        assert policy.deletion_count == 0
        assert policy.bytes_reclaimed == 0
        assert policy.repository_ids is None
        assert policy.created_by == "alice"
        assert policy.rules == internal_rules

    def test_invalid_rules_write_nothing(self, db_session, org_id):
        from app.models import LifecyclePolicy
        from app.services.lifecycle.policy_service import create_policy

        with pytest.raises(ValidationError):
            create_policy(db_session, org_id, "Broken", [_row("internal", 30, 10)])

        assert db_session.query(LifecyclePolicy).count() == 0

    def test_rejects_blank_name(self, db_session, org_id, internal_rules):
        from app.services.lifecycle.policy_service import create_policy

        with pytest.raises(ValidationError, match="name"):
            create_policy(db_session, org_id, "   ", internal_rules)

    def test_rejects_unknown_status(self, db_session, org_id, internal_rules):
        from app.services.lifecycle.policy_service import create_policy

        with pytest.raises(ValidationError, match="status"):
            create_policy(db_session, org_id, "P", internal_rules, status="paused")

    def test_default_enforcement_mode_comes_from_settings(self, db_session, org_id, internal_rules):
        from app.services.lifecycle.policy_service import create_policy

        settings = MagicMock(DEFAULT_ENFORCEMENT_MODE="include_can_delete")
        with patch("app.services.lifecycle.policy_service.get_settings", return_value=settings):
            policy = create_policy(db_session, org_id, "P", internal_rules)

        assert policy.enforcement_mode == EnforcementMode.INCLUDE_CAN_DELETE.value

    def test_repository_ids_are_deduplicated(self, db_session, org_id, internal_rules):
        from app.services.lifecycle.policy_service import create_policy

        policy = create_policy(db_session, org_id, "P", internal_rules, repository_ids=["repo-a", "repo-a", "repo-b"])

        assert policy.repository_ids == ["repo-a", "repo-b"]

    def test_schedule_ids_are_stored(self, db_session, org_id, internal_rules):
        from app.services.lifecycle.policy_service import create_policy

        policy = create_policy(db_session, org_id, "P", internal_rules, schedule_ids=["nightly", "nightly", "weekly"])

        assert policy.schedule_ids == ["nightly", "weekly"]

    def test_blank_description_is_stored_as_none(self, db_session, org_id, internal_rules):
        from app.services.lifecycle.policy_service import create_policy

        policy = create_policy(db_session, org_id, "P", internal_rules, description="   ")

        assert policy.description is None


class TestGetAndList:
    """Tests for get_policy() and listings."""

    def test_get_missing_policy_raises(self, db_session):
        from app.services.lifecycle.policy_service import get_policy

        with pytest.raises(NotFoundError):
            get_policy(db_session, uuid.uuid4())

    def test_other_org_policy_is_not_found(self, db_session, make_policy):
        from app.services.lifecycle.policy_service import get_policy

        policy = make_policy()

        with pytest.raises(NotFoundError):
            get_policy(db_session, policy.id, org_id=uuid.uuid4())

    def test_list_policies_scoped_to_org(self, db_session, org_id, make_policy):
        from app.services.lifecycle.policy_service import list_policies

        make_policy(name="Mine")
        make_policy(name="Theirs", org_id=uuid.uuid4())

        assert [p.name for p in list_policies(db_session, org_id)] == ["Mine"]

    def test_list_active_policies_skips_drafts_and_disabled(self, db_session, make_policy):
        from app.services.lifecycle.policy_service import list_active_policies

        active = make_policy(name="A", status="active")
        make_policy(name="D", status="draft")
        make_policy(name="X", status="disabled")

        assert [p.id for p in list_active_policies(db_session)] == [active.id]

    def test_policy_rules_is_read_only(self, make_policy):
        from app.services.lifecycle.policy_service import policy_rules

        rules = policy_rules(make_policy())

        assert rules[ClassificationLevel.INTERNAL].retention == RetentionDuration(30, 365)
        with pytest.raises(TypeError):
            rules[ClassificationLevel.PUBLIC] = ClassificationRule(RetentionDuration(1, 2))


class TestUpdatePolicy:
    """Tests for update_policy() and set_status()."""

    def test_status_only_update(self, db_session, make_policy, internal_rules):
        from app.services.lifecycle.policy_service import set_status

        policy = make_policy(status="draft")

        updated = set_status(db_session, policy.id, "active")

        assert updated.status == "active"
        assert updated.rules == internal_rules

    def test_any_status_transition_allowed(self, db_session, make_policy):
        from app.services.lifecycle.policy_service import set_status

        policy = make_policy(status="active")
        for status in ("disabled", "draft", "active", "draft"):
            assert set_status(db_session, policy.id, status).status == status

    def test_invalid_update_leaves_policy_unchanged(self, db_session, make_policy, internal_rules):
        from app.services.lifecycle.policy_service import get_policy, update_policy

        policy = make_policy(name="Original")

        with pytest.raises(ValidationError):
            update_policy(db_session, policy.id, name="Renamed", rules=[_row("internal", 5), _row("internal", 6)])

        reloaded = get_policy(db_session, policy.id)
        assert reloaded.name == "Original"
        assert reloaded.rules == internal_rules

    def test_replaces_rules(self, db_session, make_policy):
        from app.services.lifecycle.policy_service import policy_rules, update_policy

        policy = make_policy()

        updated = update_policy(db_session, policy.id, rules=[_row("restricted", 100)])

        assert dict(policy_rules(updated)) == {ClassificationLevel.RESTRICTED: ClassificationRule(RetentionDuration(100, 0))}

    def test_omitted_fields_are_left_unchanged(self, db_session, make_policy):
        from app.services.lifecycle.policy_service import update_policy

        policy = make_policy(description="Nightly backups", repository_ids=["repo-a"], schedule_ids=["nightly"])

        updated = update_policy(db_session, policy.id, name="Renamed")

        assert updated.description == "Nightly backups"
        assert updated.repository_ids == ["repo-a"]
        assert updated.schedule_ids == ["nightly"]

    def test_empty_values_clear_optional_fields(self, db_session, make_policy):
        """An explicit empty description or list clears the field; None leaves it alone."""
        from app.services.lifecycle.policy_service import update_policy

        policy = make_policy(description="Nightly backups", repository_ids=["repo-a"], schedule_ids=["nightly"])

        updated = update_policy(db_session, policy.id, description="", repository_ids=[], schedule_ids=[])

        assert updated.description is None
        assert updated.repository_ids is None
        assert updated.schedule_ids is None

    def test_cleared_repositories_widen_scope(self, db_session, org_id, source, make_snapshot, make_policy, now):
        from app.services.lifecycle.dry_run_service import dry_run
        from app.services.lifecycle.policy_service import update_policy

        source.add(org_id, make_snapshot("a", 400, repository_id="repo-a"))
        source.add(org_id, make_snapshot("b", 400, repository_id="repo-b"))
        policy = make_policy(repository_ids=["repo-a"])
        assert dry_run(db_session, source, policy.id, now=now).total_snapshots == 1

        update_policy(db_session, policy.id, repository_ids=[])

        assert dry_run(db_session, source, policy.id, now=now).total_snapshots == 2

    def test_update_missing_policy_raises(self, db_session):
        from app.services.lifecycle.policy_service import update_policy

        with pytest.raises(NotFoundError):
            update_policy(db_session, uuid.uuid4(), status="active")


class TestDeletePolicy:
    """Tests for delete_policy()."""

    def test_keeps_deletion_events(self, db_session, org_id, make_policy):
        from app.services.lifecycle.deletion_log import append_event, list_recent_deletions
        from app.services.lifecycle.policy_service import delete_policy

        policy = make_policy()
        append_event(db_session, org_id, policy.id, "snap-1", "expired", 10, "scheduler")

        delete_policy(db_session, policy.id)

        assert [e.snapshot_id for e in list_recent_deletions(db_session, org_id)] == ["snap-1"]

    def test_delete_missing_policy_raises(self, db_session):
        from app.services.lifecycle.policy_service import delete_policy

        with pytest.raises(NotFoundError):
            delete_policy(db_session, uuid.uuid4())


class TestReconcileCounters:
    """Tests for reconcile_counters()."""

    def test_rebuilds_counters_from_log(self, db_session, org_id, make_policy):
        from app.services.lifecycle.deletion_log import append_event
        from app.services.lifecycle.policy_service import reconcile_counters

        policy = make_policy()
        append_event(db_session, org_id, policy.id, "a", "expired", 100, "scheduler")
        append_event(db_session, org_id, policy.id, "b", "expired", 250, "scheduler")

        reconciled = reconcile_counters(db_session, policy.id)

        assert reconciled.deletion_count == 2
        assert reconciled.bytes_reclaimed == 350

    def test_no_events_means_zero(self, db_session, make_policy):
        from app.services.lifecycle.policy_service import reconcile_counters

        policy = make_policy()

        reconciled = reconcile_counters(db_session, policy.id)

        assert (reconciled.deletion_count, reconciled.bytes_reclaimed) == (0, 0)
