"""
Data model for the retention run: image records, the retention policy and
the per-repository decision.
"""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, FrozenSet, Iterable, Optional, Sequence, Tuple

from ecr_lifecycle.error_utils import ConfigValidationError, create_data_error


def parse_pushed_at(value: Any, repository: Optional[str] = None, digest: Optional[str] = None) -> datetime:
    """Normalize a push timestamp to a timezone-aware UTC datetime.

    Accepts datetime objects (naive values are taken as UTC), ISO-8601 strings
    (a trailing "Z" is allowed) and epoch seconds.

    Raises:
        DataError: If the value is missing or cannot be parsed
    """
    if value is None or value == "":
        raise create_data_error(repository, digest, "missing imagePushedAt")

    if isinstance(value, datetime):
        parsed = value
    elif isinstance(value, bool):
        raise create_data_error(repository, digest, f"unparsable imagePushedAt: {value!r}")
    elif isinstance(value, (int, float)):
        try:
            parsed = datetime.fromtimestamp(value, tz=timezone.utc)
        except (OverflowError, OSError, ValueError):
            raise create_data_error(repository, digest, f"unparsable imagePushedAt: {value!r}")
    elif isinstance(value, str):
        text = value.strip()
        if text.endswith("Z"):
            text = text[:-1] + "+00:00"
        try:
            parsed = datetime.fromisoformat(text)
        except ValueError:
            raise create_data_error(repository, digest, f"unparsable imagePushedAt: {value!r}")
    else:
        raise create_data_error(repository, digest, f"unparsable imagePushedAt: {value!r}")

    if parsed.tzinfo is None:
        return parsed.replace(tzinfo=timezone.utc)
    return parsed.astimezone(timezone.utc)


@dataclass(frozen=True)
class ImageRecord:
    """One image of a repository's inventory"""

    digest: str
    tags: FrozenSet[str] = frozenset()
    pushed_at: Optional[datetime] = None

    def __post_init__(self):
        # Accept any iterable of tags but store an immutable set
        if not isinstance(self.tags, frozenset):
            object.__setattr__(self, "tags", frozenset(self.tags or ()))

    @property
    def is_tagged(self) -> bool:
        return bool(self.tags)

    def describe(self) -> str:
        """Human-readable "digest [tags]" form used in log lines"""
        tags = ", ".join(sorted(self.tags)) if self.tags else "<untagged>"
        return f"{self.digest} [{tags}]"

    def to_dict(self) -> Dict[str, Any]:
        return {
            "digest": self.digest,
            "tags": sorted(self.tags),
            "pushed_at": self.pushed_at.isoformat() if isinstance(self.pushed_at, datetime) else self.pushed_at,
        }

    @classmethod
    def from_ecr(cls, detail: Dict[str, Any], repository: Optional[str] = None) -> "ImageRecord":
        """Build a record from a boto3 describe_images "imageDetails" entry"""
        digest = detail.get("imageDigest")
        if not digest:
            raise create_data_error(repository, None, "missing imageDigest")
        pushed_at = parse_pushed_at(detail.get("imagePushedAt"), repository=repository, digest=digest)
        return cls(digest=digest, tags=frozenset(detail.get("imageTags") or ()), pushed_at=pushed_at)


@dataclass(frozen=True)
class PolicyConfig:
    """Retention rules applied to every repository of a run"""

    protected_prefixes: Tuple[str, ...] = ("latest", "main", "release", "dev")
    retain_count: int = 2
    retention_days: int = 30
    dry_run: bool = False
    expire_unprotected_tags: bool = True

    def __post_init__(self):
        if isinstance(self.protected_prefixes, str):
            prefixes = split_prefixes(self.protected_prefixes)
        else:
            prefixes = tuple(self.protected_prefixes)
        object.__setattr__(self, "protected_prefixes", prefixes)

        errors = []
        if not isinstance(self.retain_count, int) or self.retain_count < 0:
            errors.append(f"retain_count must be a non-negative integer, got: {self.retain_count}")
        if not isinstance(self.retention_days, int) or self.retention_days < 0:
            errors.append(f"retention_days must be a non-negative integer, got: {self.retention_days}")
        if any(not isinstance(p, str) or not p for p in prefixes):
            errors.append(f"protected prefixes must be non-empty strings, got: {list(prefixes)}")
        if errors:
            raise ConfigValidationError("Invalid retention policy:\n  " + "\n  ".join(errors))

    @classmethod
    def from_config(cls, manager, **overrides) -> "PolicyConfig":
        """Build the policy from a ConfigManager, letting non-None CLI overrides win"""
        values = {
            "protected_prefixes": tuple(manager.get_tag_prefixes()),
            "retain_count": manager.get_retain_count(),
            "retention_days": manager.get_retention_days(),
            "dry_run": manager.is_dry_run_by_default(),
            "expire_unprotected_tags": manager.get_expire_unprotected_tags(),
        }
        values.update({k: v for k, v in overrides.items() if v is not None})
        return cls(**values)


def split_prefixes(raw: str) -> Tuple[str, ...]:
    """Split a comma-separated prefix list, dropping blanks"""
    return tuple(p.strip() for p in raw.split(",") if p.strip())


@dataclass(frozen=True)
class Decision:
    """Final retain/delete partition for one repository"""

    repository: str
    retained: FrozenSet[ImageRecord] = field(default_factory=frozenset)
    deleted: FrozenSet[ImageRecord] = field(default_factory=frozenset)
    evaluated_at: Optional[datetime] = None

    @property
    def total(self) -> int:
        return len(self.retained) + len(self.deleted)

    def retained_digests(self) -> Sequence[str]:
        return sorted(image.digest for image in self.retained)

    def deleted_digests(self) -> Sequence[str]:
        return sorted(image.digest for image in self.deleted)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "repository": self.repository,
            "evaluated_at": self.evaluated_at.isoformat() if self.evaluated_at else None,
            "retained": [image.to_dict() for image in _sorted_images(self.retained)],
            "deleted": [image.to_dict() for image in _sorted_images(self.deleted)],
        }


def _sorted_images(images: Iterable[ImageRecord]):
    return sorted(images, key=lambda image: image.digest)
