"""
Retention decision engine.

Partitions a repository's image inventory into retained and deleted images in
two phases:

1. Every protected tag prefix keeps its N most recently pushed images,
   whatever their age.
2. Every image not kept by phase 1 is expired by age; tagged images without a
   protected tag are expired regardless of age.

All functions are pure. The evaluation instant is passed in explicitly so a
decision can be reproduced from the same inventory and clock.
"""

from datetime import datetime, timezone
from typing import Iterable, List, Optional, Sequence, Set, Tuple

from ecr_lifecycle.error_utils import create_data_error
from ecr_lifecycle.models import Decision, ImageRecord, PolicyConfig

SECONDS_PER_DAY = 86400


def classify_images(inventory: Iterable[ImageRecord]) -> Tuple[List[ImageRecord], List[ImageRecord]]:
    """Split an inventory into (tagged, untagged), keeping the original order within each"""
    tagged: List[ImageRecord] = []
    untagged: List[ImageRecord] = []
    for image in inventory:
        (tagged if image.tags else untagged).append(image)
    return tagged, untagged


def matches_prefix(image: ImageRecord, prefix: str) -> bool:
    return any(tag.startswith(prefix) for tag in image.tags)


def most_recent_first(images: Iterable[ImageRecord]) -> List[ImageRecord]:
    """Order images newest push first; equal push times fall back to digest order"""
    by_digest = sorted(images, key=lambda image: image.digest)
    return sorted(by_digest, key=lambda image: image.pushed_at, reverse=True)


def select_retained(tagged: Sequence[ImageRecord], protected_prefixes: Sequence[str],
                    retain_count: int) -> Set[ImageRecord]:
    """Keep the retain_count most recent images of every protected prefix.

    An image matching several prefixes is kept once. The result never holds
    more than len(protected_prefixes) * retain_count images.
    """
    retained: Set[ImageRecord] = set()
    if retain_count <= 0:
        return retained
    for prefix in protected_prefixes:
        matches = [image for image in tagged if matches_prefix(image, prefix)]
        retained.update(most_recent_first(matches)[:retain_count])
    return retained


def age_in_days(image: ImageRecord, now: datetime) -> float:
    return (now - image.pushed_at).total_seconds() / SECONDS_PER_DAY


def evaluate_expiry(inventory: Sequence[ImageRecord], retained: Set[ImageRecord],
                    protected_prefixes: Sequence[str], retention_days: int, now: datetime,
                    expire_unprotected_tags: bool = True) -> Tuple[Set[ImageRecord], Set[ImageRecord]]:
    """Decide every image the selector did not keep and return (retained, deleted).

    Untagged images expire once older than retention_days. Tagged images
    expire once older than retention_days, or immediately when none of their
    tags carries a protected prefix (unless expire_unprotected_tags is off).
    The age comparison is strict: an image exactly retention_days old stays.
    """
    kept = set(retained)
    deleted: Set[ImageRecord] = set()
    for image in inventory:
        if image in retained:
            continue
        expired = age_in_days(image, now) > retention_days
        if image.tags and expire_unprotected_tags:
            has_protected_tag = any(matches_prefix(image, prefix) for prefix in protected_prefixes)
            expired = expired or not has_protected_tag
        (deleted if expired else kept).add(image)
    return kept, deleted


def validate_inventory(inventory: Sequence[ImageRecord], repository: Optional[str] = None) -> None:
    """Reject inventories that cannot be evaluated safely.

    Raises:
        DataError: On a missing/naive push timestamp or a duplicated digest
    """
    seen = set()
    for image in inventory:
        if not isinstance(image.pushed_at, datetime):
            raise create_data_error(repository, image.digest, f"missing or unparsable pushed_at: {image.pushed_at!r}")
        if image.pushed_at.tzinfo is None:
            raise create_data_error(repository, image.digest, "pushed_at must be timezone-aware")
        if image.digest in seen:
            raise create_data_error(repository, image.digest, "duplicate digest in inventory")
        seen.add(image.digest)


def decide(inventory: Sequence[ImageRecord], policy: PolicyConfig, now: datetime,
           repository: str = "") -> Decision:
    """Run classification, selection and expiry for one repository"""
    inventory = list(inventory)
    validate_inventory(inventory, repository)
    if now.tzinfo is None:
        now = now.replace(tzinfo=timezone.utc)

    tagged, _untagged = classify_images(inventory)
    protected = select_retained(tagged, policy.protected_prefixes, policy.retain_count)
    retained, deleted = evaluate_expiry(
        inventory,
        protected,
        policy.protected_prefixes,
        policy.retention_days,
        now,
        expire_unprotected_tags=policy.expire_unprotected_tags,
    )
    return Decision(
        repository=repository,
        retained=frozenset(retained),
        deleted=frozenset(deleted),
        evaluated_at=now,
    )
