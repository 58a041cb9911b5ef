"""
Tests for the retention run and the base lifecycle script.

These tests verify:
- BaseLifecycleScript initialization and common methods
- RetentionCleaner evaluation, error isolation and dry-run safety
- Run summaries and the saved results file
"""

import json
from datetime import datetime, timedelta, timezone
from unittest.mock import MagicMock

import pytest
from botocore.exceptions import ClientError

NOW = datetime(2026, 1, 15, 12, 0, 0, tzinfo=timezone.utc)


def image(digest, tags=(), days_ago=0.0):
    from ecr_lifecycle.models import ImageRecord

    return ImageRecord(digest=digest, tags=frozenset(tags), pushed_at=NOW - timedelta(days=days_ago))


# ============================================================================
# Fixtures
# ============================================================================


@pytest.fixture
def mock_config_manager(mocker):
    """Fixture providing mocked config_manager."""
    mock = mocker.patch("ecr_lifecycle.deletion_base.config_manager")
    mock.get_region.return_value = "us-east-1"
    mock.get_registry_id.return_value = None
    mock.get_repository_prefix.return_value = ""
    mock.requires_confirmation.return_value = False
    mocker.patch("scripts.apply_retention.config_manager", mock)
    mock.get_max_workers.return_value = 2
    return mock


@pytest.fixture
def ecr_client():
    """ECR client holding two repositories"""
    from ecr_lifecycle.error_utils import create_data_error

    inventories = {
        "app": [
            image("sha256:v1", ["main-v1"], days_ago=1),
            image("sha256:v2", ["main-v2"], days_ago=2),
            image("sha256:v3", ["main-v3"], days_ago=40),
            image("sha256:untagged-old", days_ago=45),
        ],
        "web": [
            image("sha256:latest", ["latest"], days_ago=3),
            image("sha256:feature", ["feature-login"], days_ago=1),
        ],
    }

    def list_images(repository):
        if repository == "broken":
            raise create_data_error(repository, "sha256:bad", "missing imagePushedAt")
        return inventories[repository]

    client = MagicMock()
    client.list_repositories.return_value = ["app", "web"]
    client.list_images.side_effect = list_images
    client.batch_delete_images.side_effect = lambda repository, digests: (list(digests), {})
    return client


@pytest.fixture
def policy():
    from ecr_lifecycle.models import PolicyConfig

    return PolicyConfig(protected_prefixes=("latest", "main"), retain_count=2, retention_days=30)


@pytest.fixture
def cleaner(mock_config_manager, ecr_client, policy):
    from scripts.apply_retention import RetentionCleaner

    return RetentionCleaner(policy, ecr_client=ecr_client, max_workers=2, clock=lambda: NOW)


# ============================================================================
# Tests: BaseLifecycleScript
# ============================================================================


class TestBaseLifecycleScript:
    """Tests for the BaseLifecycleScript base class."""

    def test_initialization_with_defaults(self, mocker, mock_config_manager):
        from ecr_lifecycle.deletion_base import BaseLifecycleScript

        mock_client_class = mocker.patch("ecr_lifecycle.deletion_base.ECRClient")
        script = BaseLifecycleScript()

        assert script.region == "us-east-1"
        assert script.repository_prefix == ""
        mock_client_class.assert_called_once_with("us-east-1", registry_id=None)

    def test_explicit_arguments_win(self, mocker, mock_config_manager):
        from ecr_lifecycle.deletion_base import BaseLifecycleScript

        mocker.patch("ecr_lifecycle.deletion_base.ECRClient")
        script = BaseLifecycleScript(region="eu-west-1", registry_id="123456789012", repository_prefix="team-a/")

        assert script.region == "eu-west-1"
        assert script.registry_id == "123456789012"
        assert script.repository_prefix == "team-a/"

    def test_confirm_deletion_with_force(self, mock_config_manager):
        from ecr_lifecycle.deletion_base import BaseLifecycleScript

        mock_config_manager.requires_confirmation.return_value = True
        script = BaseLifecycleScript(ecr_client=MagicMock())
        assert script.confirm_deletion(5, "images", force=True) is True

    @pytest.mark.parametrize("answer,expected", [("yes", True), ("n", False)])
    def test_confirm_deletion_prompts(self, mocker, mock_config_manager, answer, expected):
        from ecr_lifecycle.deletion_base import BaseLifecycleScript

        mock_config_manager.requires_confirmation.return_value = True
        mocker.patch("builtins.input", side_effect=["maybe", answer])
        script = BaseLifecycleScript(ecr_client=MagicMock())
        assert script.confirm_deletion(5, "images") is expected

    def test_list_repositories_uses_prefix(self, mock_config_manager):
        from ecr_lifecycle.deletion_base import BaseLifecycleScript

        client = MagicMock()
        client.list_repositories.return_value = ["team-a/api"]
        script = BaseLifecycleScript(repository_prefix="team-a/", ecr_client=client)

        assert script.list_repositories() == ["team-a/api"]
        client.list_repositories.assert_called_once_with(prefix="team-a/")


# ============================================================================
# Tests: RetentionCleaner
# ============================================================================


class TestEvaluateRepository:
    """Tests for RetentionCleaner.evaluate_repository"""

    def test_decides_repository(self, cleaner):
        outcome = cleaner.evaluate_repository("app")

        assert outcome["status"] == "ok"
        decision = outcome["decision"]
        assert set(decision.retained_digests()) == {"sha256:v1", "sha256:v2"}
        assert set(decision.deleted_digests()) == {"sha256:v3", "sha256:untagged-old"}
        assert decision.evaluated_at == NOW
        assert outcome["audit"].is_equivalent

    def test_clock_is_read_once_per_repository(self, mock_config_manager, ecr_client, policy):
        from scripts.apply_retention import RetentionCleaner

        clock = MagicMock(return_value=NOW)
        RetentionCleaner(policy, ecr_client=ecr_client, clock=clock).evaluate_repository("app")
        assert clock.call_count == 1

    def test_data_error_skips_repository(self, cleaner):
        outcome = cleaner.evaluate_repository("broken")

        assert outcome["status"] == "data_error"
        assert "decision" not in outcome

    def test_fetch_error_skips_repository(self, cleaner, ecr_client):
        from ecr_lifecycle.error_utils import create_inventory_fetch_error

        error = ClientError({"Error": {"Code": "RepositoryNotFoundException", "Message": "gone"}}, "DescribeImages")
        ecr_client.list_images.side_effect = create_inventory_fetch_error("app", error)

        outcome = cleaner.evaluate_repository("app")
        assert outcome["status"] == "fetch_failed"

    def test_unprotected_divergence_is_flagged_by_audit(self, cleaner, caplog):
        with caplog.at_level("WARNING"):
            outcome = cleaner.evaluate_repository("web")

        assert set(outcome["decision"].deleted_digests()) == {"sha256:feature"}
        assert not outcome["audit"].is_equivalent
        assert "lifecycle policy would differ" in caplog.text


class TestRun:
    """Tests for RetentionCleaner.run"""

    def test_dry_run_never_deletes(self, cleaner, ecr_client):
        summary = cleaner.run(dry_run=True)

        ecr_client.batch_delete_images.assert_not_called()
        ecr_client.put_lifecycle_policy.assert_not_called()
        assert summary["repositories"] == 2
        assert summary["retained"] == 3
        assert summary["deleted"] == 3
        assert summary["skipped"] == 0

    def test_deletes_each_repository_once(self, cleaner, ecr_client):
        summary = cleaner.run(dry_run=False, force=True)

        calls = {c.args[0]: list(c.args[1]) for c in ecr_client.batch_delete_images.call_args_list}
        assert calls == {
            "app": ["sha256:untagged-old", "sha256:v3"],
            "web": ["sha256:feature"],
        }
        assert summary["deleted"] == 3
        assert summary["failed"] == 0

    def test_failing_repository_does_not_stop_the_run(self, cleaner, ecr_client):
        ecr_client.list_repositories.return_value = ["broken", "app"]

        summary = cleaner.run(dry_run=False, force=True)

        assert summary["skipped"] == 1
        assert summary["deleted"] == 2
        ecr_client.batch_delete_images.assert_called_once()

    def test_declined_confirmation_falls_back_to_dry_run(self, cleaner, ecr_client, mocker):
        mocker.patch.object(cleaner, "confirm_deletion", return_value=False)

        summary = cleaner.run(dry_run=False)

        ecr_client.batch_delete_images.assert_not_called()
        assert summary["deleted"] == 3

    def test_listing_failure_returns_error(self, cleaner, ecr_client):
        from ecr_lifecycle.error_utils import create_inventory_fetch_error

        error = ClientError({"Error": {"Code": "AccessDeniedException", "Message": "no"}}, "DescribeRepositories")
        ecr_client.list_repositories.side_effect = create_inventory_fetch_error(None, error)

        summary = cleaner.run(dry_run=True)
        assert summary["repositories"] == 0
        assert "error" in summary

    def test_saves_results_file(self, cleaner, tmp_path):
        output = tmp_path / "reports" / "retention-decisions.json"

        summary = cleaner.run(dry_run=True, output_file=str(output))

        saved = json.loads(open(summary["results_file"]).read())
        assert saved["summary"]["deleted"] == 3
        assert saved["metadata"]["dry_run"] is True
        assert saved["metadata"]["protected_prefixes"] == ["latest", "main"]
        repositories = {r["repository"]: r for r in saved["repositories"]}
        assert [i["digest"] for i in repositories["web"]["decision"]["deleted"]] == ["sha256:feature"]
        assert repositories["app"]["policy_audit"]["equivalent"] is True

    def test_submits_policy_when_enabled(self, mock_config_manager, ecr_client, policy):
        from scripts.apply_retention import RetentionCleaner

        cleaner = RetentionCleaner(policy, ecr_client=ecr_client, submit_policy=True, clock=lambda: NOW)
        cleaner.run(dry_run=False, force=True)

        submitted = sorted(c.args[0] for c in ecr_client.put_lifecycle_policy.call_args_list)
        assert submitted == ["app", "web"]

    def test_policy_not_submitted_when_it_would_expire_retained_images(self, mock_config_manager, caplog):
        from ecr_lifecycle.models import PolicyConfig
        from scripts.apply_retention import RetentionCleaner

        client = MagicMock()
        client.list_repositories.return_value = ["app"]
        # Third young main image: retained locally, expired by the count rule
        client.list_images.return_value = [
            image("sha256:v1", ["main-v1"], days_ago=1),
            image("sha256:v2", ["main-v2"], days_ago=2),
            image("sha256:v5", ["main-v5"], days_ago=5),
        ]
        client.batch_delete_images.return_value = ([], {})
        policy = PolicyConfig(protected_prefixes=("main",), retain_count=2, retention_days=30)
        cleaner = RetentionCleaner(policy, ecr_client=client, submit_policy=True, audit=False, clock=lambda: NOW)

        with caplog.at_level("WARNING"):
            cleaner.run(dry_run=False, force=True, output_file=None)

        client.put_lifecycle_policy.assert_not_called()
        outcome = cleaner.evaluate_repository("app")
        assert outcome["audit"].expired_only_by_policy == frozenset({"sha256:v5"})
        assert "Not submitting lifecycle policy to app" in caplog.text


class TestParseArguments:
    """Tests for the command line interface"""

    def test_defaults(self):
        from scripts.apply_retention import parse_arguments

        args = parse_arguments([])
        assert args.region is None
        assert args.retention_days is None
        assert args.tag_prefixes is None
        assert args.dry_run is False
        assert args.keep_unprotected_tags is False

    def test_flags(self):
        from scripts.apply_retention import parse_arguments

        args = parse_arguments(
            ["--region", "eu-west-1", "--retention-days", "14", "--tag-prefixes", "main,release", "--dry-run"]
        )
        assert args.region == "eu-west-1"
        assert args.retention_days == 14
        assert args.tag_prefixes == "main,release"
        assert args.dry_run is True
