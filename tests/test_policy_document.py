"""
Tests for lifecycle policy documents, their simulation, and the audit of the
local decision against them.
"""

import json
import sys
from datetime import datetime, timedelta, timezone
from pathlib import Path

import pytest

_python_dir = Path(__file__).parent.parent / "python"
if str(_python_dir.absolute()) not in sys.path:
    sys.path.insert(0, str(_python_dir.absolute()))

from ecr_lifecycle.models import ImageRecord, PolicyConfig
from ecr_lifecycle.policy_document import (
    audit_decision,
    build_lifecycle_policy,
    policy_to_json,
    simulate_lifecycle_policy,
)
from ecr_lifecycle.retention import decide

NOW = datetime(2026, 3, 1, 8, 0, 0, tzinfo=timezone.utc)


def image(digest, tags=(), days_ago=0.0):
    return ImageRecord(digest=digest, tags=frozenset(tags), pushed_at=NOW - timedelta(days=days_ago))


class TestBuildLifecyclePolicy:
    """Tests for build_lifecycle_policy"""

    def test_three_rule_variant(self):
        document = build_lifecycle_policy(PolicyConfig())
        rules = document["rules"]

        assert [r["rulePriority"] for r in rules] == [1, 2, 3, 4, 5, 6]
        for rule, prefix in zip(rules[:4], ["latest", "main", "release", "dev"]):
            assert rule["selection"] == {
                "tagStatus": "tagged",
                "tagPrefixList": [prefix],
                "countType": "imageCountMoreThan",
                "countNumber": 2,
            }
            assert rule["action"] == {"type": "expire"}
        assert rules[4]["selection"]["tagStatus"] == "untagged"
        assert rules[4]["selection"]["countType"] == "sinceImagePushed"
        assert rules[4]["selection"]["countNumber"] == 30
        assert rules[4]["description"] == "Delete untagged images older than 30 days"
        assert rules[5]["selection"]["tagStatus"] == "any"
        assert rules[5]["description"] == "Delete tagged images older than 30 days"

    def test_two_rule_variant_has_no_any_rule(self):
        document = build_lifecycle_policy(PolicyConfig(), include_tagged_age_rule=False)
        assert all(r["selection"]["tagStatus"] != "any" for r in document["rules"])
        assert len(document["rules"]) == 5

    def test_zero_retain_count_omits_prefix_rules(self):
        document = build_lifecycle_policy(PolicyConfig(retain_count=0))
        assert [r["selection"]["tagStatus"] for r in document["rules"]] == ["untagged", "any"]

    def test_zero_retention_days_uses_minimum_of_one(self):
        document = build_lifecycle_policy(PolicyConfig(retention_days=0))
        assert document["rules"][-1]["selection"]["countNumber"] == 1

    def test_json_round_trip(self):
        document = build_lifecycle_policy(PolicyConfig(protected_prefixes=("main",)))
        assert json.loads(policy_to_json(document)) == document


class TestSimulateLifecyclePolicy:
    """Tests for simulate_lifecycle_policy"""

    def test_count_rule_expires_beyond_most_recent(self):
        document = build_lifecycle_policy(PolicyConfig(protected_prefixes=("main",), retention_days=30))
        inventory = [
            image("sha256:v1", ["main-v1"], days_ago=1),
            image("sha256:v2", ["main-v2"], days_ago=2),
            image("sha256:v3", ["main-v3"], days_ago=3),
        ]
        assert simulate_lifecycle_policy(document, inventory, NOW) == {"sha256:v3"}

    def test_higher_priority_rule_claims_image(self):
        # The image kept by the prefix rule must not be expired by the age rule
        document = build_lifecycle_policy(PolicyConfig(protected_prefixes=("main",), retention_days=30))
        inventory = [image("sha256:old-main", ["main-1"], days_ago=400)]
        assert simulate_lifecycle_policy(document, inventory, NOW) == set()

    def test_tag_prefix_list_requires_every_prefix(self):
        document = {
            "rules": [
                {
                    "rulePriority": 1,
                    "selection": {
                        "tagStatus": "tagged",
                        "tagPrefixList": ["main", "release"],
                        "countType": "imageCountMoreThan",
                        "countNumber": 1,
                    },
                    "action": {"type": "expire"},
                }
            ]
        }
        inventory = [
            image("sha256:both-new", ["main-2", "release-2"], days_ago=1),
            image("sha256:both-old", ["main-1", "release-1"], days_ago=2),
            image("sha256:main-only", ["main-0"], days_ago=3),
        ]
        assert simulate_lifecycle_policy(document, inventory, NOW) == {"sha256:both-old"}

    def test_untagged_rule(self):
        document = build_lifecycle_policy(PolicyConfig(retention_days=10), include_tagged_age_rule=False)
        inventory = [image("sha256:new", days_ago=5), image("sha256:old", days_ago=11)]
        assert simulate_lifecycle_policy(document, inventory, NOW) == {"sha256:old"}

    def test_unknown_count_type_raises(self):
        document = {
            "rules": [
                {"rulePriority": 1, "selection": {"tagStatus": "any", "countType": "bogus"}, "action": {"type": "expire"}}
            ]
        }
        with pytest.raises(ValueError):
            simulate_lifecycle_policy(document, [image("sha256:a")], NOW)


class TestAuditDecision:
    """Tests for audit_decision"""

    def test_equivalent_on_canonical_fixture(self):
        policy = PolicyConfig(protected_prefixes=("main",), retain_count=2, retention_days=30)
        inventory = [
            image("sha256:v1", ["main-v1"], days_ago=1),
            image("sha256:v2", ["main-v2"], days_ago=2),
            image("sha256:v3", ["main-v3"], days_ago=40),
            image("sha256:untagged-old", days_ago=45),
            image("sha256:untagged-new", days_ago=3),
        ]
        decision = decide(inventory, policy, NOW, repository="app")
        audit = audit_decision(decision, build_lifecycle_policy(policy), inventory)

        assert audit.is_equivalent
        assert audit.to_dict() == {
            "repository": "app",
            "equivalent": True,
            "deleted_only_locally": [],
            "expired_only_by_policy": [],
        }

    def test_reports_divergences(self):
        policy = PolicyConfig(protected_prefixes=("main",), retain_count=2, retention_days=30)
        inventory = [
            image("sha256:v1", ["main-v1"], days_ago=1),
            image("sha256:v2", ["main-v2"], days_ago=2),
            # Young third protected image: kept locally, expired by the count rule
            image("sha256:v3", ["main-v3"], days_ago=5),
            # Young unprotected tag: deleted locally, kept by the age rule
            image("sha256:feature", ["feature-x"], days_ago=1),
        ]
        decision = decide(inventory, policy, NOW, repository="app")
        audit = audit_decision(decision, build_lifecycle_policy(policy), inventory)

        assert not audit.is_equivalent
        assert audit.deleted_only_locally == frozenset({"sha256:feature"})
        assert audit.expired_only_by_policy == frozenset({"sha256:v3"})
