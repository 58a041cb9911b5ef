"""
ECR lifecycle policy documents generated from the same PolicyConfig as the
local decision, plus a local simulation of how ECR evaluates such a document.

ECR semantics used by the simulation:
- rules are evaluated in ascending rulePriority
- an image matched by a rule's tag selection cannot be expired by a rule
  with a lower priority, whether or not the matching rule expired it
- a tagPrefixList selects images carrying a tag for *every* listed prefix,
  so each protected prefix is emitted as its own rule
- imageCountMoreThan N expires all but the N most recently pushed matches
- sinceImagePushed N (days) expires matches pushed more than N days ago
"""

import json
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, FrozenSet, List, Sequence, Set

from ecr_lifecycle.logging_utils import get_logger
from ecr_lifecycle.models import Decision, ImageRecord, PolicyConfig
from ecr_lifecycle.retention import age_in_days, most_recent_first

logger = get_logger(__name__)


def _expire_rule(priority: int, description: str, selection: Dict[str, Any]) -> Dict[str, Any]:
    return {
        "rulePriority": priority,
        "description": description,
        "selection": selection,
        "action": {"type": "expire"},
    }


def build_lifecycle_policy(policy: PolicyConfig, include_tagged_age_rule: bool = True) -> Dict[str, Any]:
    """Build the ECR lifecycle policy document equivalent to a PolicyConfig.

    Args:
        policy: Retention policy of the run
        include_tagged_age_rule: Add the rule expiring any remaining image older
            than retention_days (three-rule variant); without it only untagged
            images expire by age (two-rule variant)
    """
    days = policy.retention_days
    if days < 1:
        # ECR rejects countNumber < 1
        logger.warning(f"retention_days={days} cannot be expressed in a lifecycle policy, using 1 day")
        days = 1

    rules: List[Dict[str, Any]] = []
    if policy.retain_count >= 1:
        for prefix in policy.protected_prefixes:
            rules.append(
                _expire_rule(
                    len(rules) + 1,
                    f"Keep last {policy.retain_count} images for important tag prefix '{prefix}'",
                    {
                        "tagStatus": "tagged",
                        "tagPrefixList": [prefix],
                        "countType": "imageCountMoreThan",
                        "countNumber": policy.retain_count,
                    },
                )
            )

    rules.append(
        _expire_rule(
            len(rules) + 1,
            f"Delete untagged images older than {days} days",
            {"tagStatus": "untagged", "countType": "sinceImagePushed", "countUnit": "days", "countNumber": days},
        )
    )

    if include_tagged_age_rule:
        # tagStatus "any" must carry the lowest priority of the document
        rules.append(
            _expire_rule(
                len(rules) + 1,
                f"Delete tagged images older than {days} days",
                {"tagStatus": "any", "countType": "sinceImagePushed", "countUnit": "days", "countNumber": days},
            )
        )

    return {"rules": rules}


def policy_to_json(document: Dict[str, Any]) -> str:
    return json.dumps(document, indent=2)


def _selects(selection: Dict[str, Any], image: ImageRecord) -> bool:
    status = selection.get("tagStatus", "any")
    if status == "untagged":
        return not image.tags
    if status == "tagged":
        prefixes = selection.get("tagPrefixList") or []
        if not image.tags or not prefixes:
            return False
        return all(any(tag.startswith(prefix) for tag in image.tags) for prefix in prefixes)
    return True


def simulate_lifecycle_policy(document: Dict[str, Any], inventory: Sequence[ImageRecord],
                              now: datetime) -> Set[str]:
    """Return the digests ECR would expire when applying the document to the inventory"""
    claimed: Set[str] = set()
    expired: Set[str] = set()

    for rule in sorted(document.get("rules", []), key=lambda r: r["rulePriority"]):
        selection = rule["selection"]
        candidates = [img for img in inventory if img.digest not in claimed and _selects(selection, img)]
        count_type = selection.get("countType")
        count = int(selection.get("countNumber", 0))

        if count_type == "imageCountMoreThan":
            doomed = most_recent_first(candidates)[count:]
        elif count_type == "sinceImagePushed":
            doomed = [img for img in candidates if age_in_days(img, now) > count]
        else:
            raise ValueError(f"Unsupported countType in rule {rule['rulePriority']}: {count_type}")

        if rule.get("action", {}).get("type") == "expire":
            expired.update(img.digest for img in doomed)
        claimed.update(img.digest for img in candidates)

    return expired


@dataclass(frozen=True)
class PolicyAudit:
    """Differences between the local decision and the simulated lifecycle policy"""

    repository: str
    deleted_only_locally: FrozenSet[str] = field(default_factory=frozenset)
    expired_only_by_policy: FrozenSet[str] = field(default_factory=frozenset)

    @property
    def is_equivalent(self) -> bool:
        return not self.deleted_only_locally and not self.expired_only_by_policy

    def to_dict(self) -> Dict[str, Any]:
        return {
            "repository": self.repository,
            "equivalent": self.is_equivalent,
            "deleted_only_locally": sorted(self.deleted_only_locally),
            "expired_only_by_policy": sorted(self.expired_only_by_policy),
        }


def audit_decision(decision: Decision, document: Dict[str, Any],
                   inventory: Sequence[ImageRecord]) -> PolicyAudit:
    """Compare a local decision with the policy document evaluated at the same instant"""
    expired = simulate_lifecycle_policy(document, inventory, decision.evaluated_at)
    deleted = set(decision.deleted_digests())
    return PolicyAudit(
        repository=decision.repository,
        deleted_only_locally=frozenset(deleted - expired),
        expired_only_by_policy=frozenset(expired - deleted),
    )
