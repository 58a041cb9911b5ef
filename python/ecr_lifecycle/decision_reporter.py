"""
Hands each repository's decision to the log and, outside dry runs, to ECR.

The reporter never alters a decision. In dry-run mode it makes no ECR call
at all; otherwise it deletes the decided images by digest and optionally
submits the lifecycle policy document. The document is withheld from a
repository whose audit shows it would expire images the decision retains.
Each repository is reported once.
"""

import logging
import threading
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from ecr_lifecycle.ecr_client import ECRClient
from ecr_lifecycle.error_utils import ApplyError, create_apply_error
from ecr_lifecycle.logging_utils import get_logger
from ecr_lifecycle.models import Decision
from ecr_lifecycle.policy_document import PolicyAudit
from ecr_lifecycle.report_utils import format_image_table


@dataclass
class ReportResult:
    """Outcome of reporting one repository's decision"""

    repository: str
    retained: int = 0
    deleted: int = 0
    dry_run: bool = True
    deleted_digests: List[str] = field(default_factory=list)
    failed: Dict[str, str] = field(default_factory=dict)
    policy_submitted: bool = False

    def to_dict(self) -> Dict[str, Any]:
        return {
            "repository": self.repository,
            "retained": self.retained,
            "deleted": self.deleted,
            "dry_run": self.dry_run,
            "deleted_digests": sorted(self.deleted_digests),
            "failed": dict(sorted(self.failed.items())),
            "policy_submitted": self.policy_submitted,
        }


class DecisionReporter:
    """Logs decisions and applies them to the registry unless dry_run is set"""

    def __init__(
        self,
        ecr_client: Optional[ECRClient],
        dry_run: bool,
        submit_policy: bool = False,
        policy_document: Optional[Dict[str, Any]] = None,
    ):
        if submit_policy and policy_document is None:
            raise ValueError("submit_policy requires a policy_document")
        self.ecr_client = ecr_client
        self.dry_run = dry_run
        self.submit_policy = submit_policy
        self.policy_document = policy_document
        self.logger = get_logger(self.__class__.__name__)
        self._reported = set()
        self._lock = threading.Lock()

    def report(self, decision: Decision, audit: Optional[PolicyAudit] = None) -> Optional[ReportResult]:
        """Log and (unless dry run) apply a decision.

        audit is the comparison of the decision with the policy document; when
        it lists images expired only by the policy, the document is not submitted.

        Returns None when the repository was already reported during this run.
        """
        with self._lock:
            if decision.repository in self._reported:
                self.logger.warning(f"Decision for {decision.repository} was already reported - ignoring duplicate")
                return None
            self._reported.add(decision.repository)

        result = ReportResult(
            repository=decision.repository,
            retained=len(decision.retained),
            deleted=len(decision.deleted),
            dry_run=self.dry_run,
        )
        self.log_decision(decision)

        if self.dry_run:
            if decision.deleted:
                self.logger.info(f"DRY RUN: would delete {len(decision.deleted)} images from {decision.repository}")
            if self.submit_policy and not self._policy_conflicts(decision.repository, audit):
                self.logger.info(f"DRY RUN: would submit lifecycle policy to {decision.repository}")
            return result

        self._apply_deletions(decision, result)
        if self.submit_policy and not self._policy_conflicts(decision.repository, audit):
            self._submit_policy(decision.repository, result)
        return result

    def log_decision(self, decision: Decision) -> None:
        mode = "DRY RUN: " if self.dry_run else ""
        self.logger.info(
            f"{mode}{decision.repository}: retaining {len(decision.retained)} images, "
            f"deleting {len(decision.deleted)} images"
        )
        for image in sorted(decision.retained, key=lambda i: i.digest):
            self.logger.info(f"  ✓ retain {image.describe()}")
        for image in sorted(decision.deleted, key=lambda i: i.digest):
            self.logger.info(f"  ✗ delete {image.describe()}")
        if decision.total and self.logger.isEnabledFor(logging.DEBUG):
            self.logger.debug(f"\n{format_image_table(decision)}")

    def _apply_deletions(self, decision: Decision, result: ReportResult) -> None:
        digests = decision.deleted_digests()
        if not digests:
            return
        self.logger.info(f"Deleting {len(digests)} images from {decision.repository}...")
        deleted, failures = self.ecr_client.batch_delete_images(decision.repository, digests)
        result.deleted_digests = list(deleted)
        result.failed = dict(failures)
        for digest, reason in failures.items():
            error = create_apply_error(decision.repository, digest, reason)
            self.logger.error(error.message)
            self.logger.debug(str(error))
        if failures:
            self.logger.warning(
                f"⚠️  {decision.repository}: deleted {len(deleted)} of {len(digests)} images, {len(failures)} failed"
            )
        else:
            self.logger.info(f"✓ {decision.repository}: deleted {len(deleted)} images")

    def _policy_conflicts(self, repository: str, audit: Optional[PolicyAudit]) -> bool:
        if audit is None or not audit.expired_only_by_policy:
            return False
        self.logger.warning(
            f"⚠️  Not submitting lifecycle policy to {repository}: it would expire "
            f"{len(audit.expired_only_by_policy)} images the decision retains "
            f"({', '.join(sorted(audit.expired_only_by_policy))})"
        )
        return True

    def _submit_policy(self, repository: str, result: ReportResult) -> None:
        try:
            self.ecr_client.put_lifecycle_policy(repository, self.policy_document)
        except ApplyError as e:
            self.logger.error(e.message)
            self.logger.debug(str(e))
            return
        result.policy_submitted = True
        self.logger.info(f"✓ Lifecycle policy applied to repository: {repository}")
