#!/usr/bin/env python3
"""
Decide which ECR images to retain or delete and optionally delete them.

For every repository in the region the full image inventory is loaded and
partitioned with the retention rules:
- each protected tag prefix keeps its N most recently pushed images
- any other image expires once older than the retention window
- tagged images without a protected prefix always expire
  (disable with --keep-unprotected-tags)

Repositories are evaluated in parallel. A repository that cannot be listed
or holds a malformed image record is skipped; the run continues.

Usage examples:
  # Report decisions only
  python apply_retention.py --dry-run

  # Delete expired images in every repository of a region
  python apply_retention.py --region eu-west-1 --retention-days 14

  # Custom protected prefixes, also submit the equivalent lifecycle policy
  python apply_retention.py --tag-prefixes main,release --submit-policy

  # Only repositories whose name starts with "team-a/"
  python apply_retention.py --repository-prefix team-a/ --dry-run
"""

import argparse
import concurrent.futures
import sys
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional

# Add parent directory to path for imports
_parent_dir = Path(__file__).parent.parent.absolute()
if str(_parent_dir) not in sys.path:
    sys.path.insert(0, str(_parent_dir))

from ecr_lifecycle.config_manager import ConfigValidationError, config_manager
from ecr_lifecycle.decision_reporter import DecisionReporter
from ecr_lifecycle.deletion_base import BaseLifecycleScript
from ecr_lifecycle.ecr_client import ECRClient
from ecr_lifecycle.error_utils import DataError, InventoryFetchError
from ecr_lifecycle.logging_utils import get_logger, log_exception, parse_log_level, setup_logging
from ecr_lifecycle.models import PolicyConfig, split_prefixes
from ecr_lifecycle.policy_document import audit_decision, build_lifecycle_policy
from ecr_lifecycle.report_utils import format_summary_table, save_json
from ecr_lifecycle.retention import decide

logger = get_logger(__name__)


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


class RetentionCleaner(BaseLifecycleScript):
    """Evaluates and applies the retention policy across repositories"""

    def __init__(
        self,
        policy: PolicyConfig,
        region: Optional[str] = None,
        registry_id: Optional[str] = None,
        repository_prefix: Optional[str] = None,
        max_workers: Optional[int] = None,
        submit_policy: bool = False,
        include_tagged_age_rule: bool = True,
        audit: bool = True,
        ecr_client: Optional[ECRClient] = None,
        clock: Callable[[], datetime] = utc_now,
    ):
        super().__init__(
            region=region,
            registry_id=registry_id,
            repository_prefix=repository_prefix,
            ecr_client=ecr_client,
        )
        self.policy = policy
        self.max_workers = max_workers or config_manager.get_max_workers()
        self.submit_policy = submit_policy
        self.audit = audit
        self.clock = clock
        self.policy_document = build_lifecycle_policy(policy, include_tagged_age_rule=include_tagged_age_rule)

    def evaluate_repository(self, repository: str) -> Dict[str, Any]:
        """Load one repository and decide it. Errors are recorded, never raised."""
        outcome: Dict[str, Any] = {"repository": repository, "status": "ok"}
        try:
            inventory = self.ecr_client.list_images(repository)
            # One instant per repository so every age comparison agrees
            now = self.clock()
            decision = decide(inventory, self.policy, now, repository=repository)
        except InventoryFetchError as e:
            self.logger.error(f"Skipping {repository}: {e.message}")
            self.logger.debug(str(e))
            outcome.update(status="fetch_failed", error=e.message)
            return outcome
        except DataError as e:
            self.logger.error(f"Skipping {repository}: {e.message} (digest: {e.details.get('digest', '-')})")
            self.logger.debug(str(e))
            outcome.update(status="data_error", error=e.message)
            return outcome
        except Exception as e:
            log_exception(self.logger, f"Unexpected error evaluating {repository}", e)
            outcome.update(status="error", error=str(e))
            return outcome

        outcome["decision"] = decision
        outcome["retained"] = len(decision.retained)
        outcome["deleted"] = len(decision.deleted)

        # Submission needs the audit even when audit logging is off
        if self.audit or self.submit_policy:
            audit = audit_decision(decision, self.policy_document, inventory)
            outcome["audit"] = audit
            if not audit.is_equivalent:
                self.logger.warning(
                    f"{repository}: lifecycle policy would differ from local decision "
                    f"(deleted only locally: {len(audit.deleted_only_locally)}, "
                    f"expired only by policy: {len(audit.expired_only_by_policy)})"
                )
        return outcome

    def evaluate_all(self, repositories: List[str]) -> List[Dict[str, Any]]:
        """Evaluate repositories in parallel, preserving the listing order in the result"""
        if not repositories:
            return []
        max_workers = max(1, min(self.max_workers, len(repositories)))
        self.logger.info(f"Evaluating {len(repositories)} repositories using {max_workers} workers...")
        with concurrent.futures.ThreadPoolExecutor(max_workers=max_workers) as executor:
            return list(executor.map(self.evaluate_repository, repositories))

    def report_all(self, outcomes: List[Dict[str, Any]], reporter: DecisionReporter) -> None:
        """Pass every successful decision to the reporter exactly once"""
        decided = [o for o in outcomes if o["status"] == "ok"]
        if not decided:
            return

        def report_one(outcome):
            return outcome, reporter.report(outcome["decision"], audit=outcome.get("audit"))

        max_workers = max(1, min(self.max_workers, len(decided)))
        with concurrent.futures.ThreadPoolExecutor(max_workers=max_workers) as executor:
            futures = [executor.submit(report_one, outcome) for outcome in decided]
            for future in concurrent.futures.as_completed(futures):
                try:
                    outcome, result = future.result()
                except Exception as e:
                    log_exception(self.logger, "Unexpected error while reporting a decision", e)
                    continue
                if result is not None:
                    outcome["report"] = result
                    outcome["failed"] = len(result.failed)

    def run(self, dry_run: bool, force: bool = False, output_file: Optional[str] = None) -> Dict[str, Any]:
        """Evaluate every repository, then report/apply the decisions

        Returns:
            Run summary dictionary
        """
        try:
            repositories = self.list_repositories()
        except InventoryFetchError as e:
            self.logger.error(e.message)
            self.logger.debug(str(e))
            return {"repositories": 0, "retained": 0, "deleted": 0, "failed": 0, "skipped": 0, "error": e.message}

        outcomes = self.evaluate_all(repositories)
        to_delete = sum(o.get("deleted", 0) for o in outcomes)

        if not dry_run and to_delete and not self.confirm_deletion(to_delete, "images", force=force):
            self.logger.info("Deletion cancelled by user - reporting decisions as a dry run")
            dry_run = True

        reporter = DecisionReporter(
            self.ecr_client,
            dry_run=dry_run,
            submit_policy=self.submit_policy,
            policy_document=self.policy_document,
        )
        self.report_all(outcomes, reporter)

        summary = self._summarize(outcomes, dry_run)
        if output_file:
            summary["results_file"] = save_json(output_file, self._build_report(outcomes, dry_run), timestamp=True)

        self.logger.info(f"\n{format_summary_table(self._summary_rows(outcomes))}")
        self.log_summary(summary, dry_run=dry_run)
        return summary

    def _summarize(self, outcomes: List[Dict[str, Any]], dry_run: bool) -> Dict[str, Any]:
        decided = [o for o in outcomes if o["status"] == "ok"]
        if dry_run:
            deleted = sum(o["deleted"] for o in decided)
        else:
            deleted = sum(len(o["report"].deleted_digests) for o in decided if "report" in o)
        return {
            "repositories": len(outcomes),
            "retained": sum(o["retained"] for o in decided),
            "deleted": deleted,
            "failed": sum(o.get("failed", 0) for o in decided),
            "skipped": len(outcomes) - len(decided),
        }

    def _summary_rows(self, outcomes: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
        return [
            {
                "repository": o["repository"],
                "status": o["status"],
                "retained": o.get("retained", 0),
                "deleted": o.get("deleted", 0),
                "failed": o.get("failed", 0),
            }
            for o in outcomes
        ]

    def _build_report(self, outcomes: List[Dict[str, Any]], dry_run: bool) -> Dict[str, Any]:
        return {
            "summary": self._summarize(outcomes, dry_run),
            "repositories": [
                {
                    "repository": o["repository"],
                    "status": o["status"],
                    "error": o.get("error"),
                    "decision": o.get("decision"),
                    "apply": o.get("report"),
                    "policy_audit": o.get("audit"),
                }
                for o in outcomes
            ],
            "metadata": {
                "region": self.region,
                "registry_id": self.registry_id,
                "repository_prefix": self.repository_prefix,
                "protected_prefixes": list(self.policy.protected_prefixes),
                "retain_count": self.policy.retain_count,
                "retention_days": self.policy.retention_days,
                "expire_unprotected_tags": self.policy.expire_unprotected_tags,
                "dry_run": dry_run,
                "lifecycle_policy": self.policy_document,
                "analysis_timestamp": datetime.now().isoformat(),
            },
        }


def parse_arguments(argv: Optional[List[str]] = None):
    """Parse command line arguments"""
    parser = argparse.ArgumentParser(
        description="Decide which ECR images to retain or delete and optionally delete them",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  # Report decisions only (no deletion)
  python apply_retention.py --dry-run

  # Delete expired images with a 14 day window
  python apply_retention.py --region eu-west-1 --retention-days 14

  # Delete without confirmation prompt
  python apply_retention.py --force
        """,
    )

    parser.add_argument("--region", help="AWS region (default: from config or us-east-1)")

    parser.add_argument("--registry-id", help="AWS account id of the registry (default: caller account)")

    parser.add_argument("--retention-days", type=int, help="Age in days after which images expire (default: 30)")

    parser.add_argument(
        "--tag-prefixes", help="Comma-separated protected tag prefixes (default: latest,main,release,dev)"
    )

    parser.add_argument(
        "--retain-count", type=int, help="Most recent images kept per protected prefix regardless of age (default: 2)"
    )

    parser.add_argument("--repository-prefix", help="Only process repositories whose name starts with this")

    parser.add_argument(
        "--keep-unprotected-tags",
        action="store_true",
        help="Expire tagged images without a protected prefix only by age",
    )

    parser.add_argument("--dry-run", action="store_true", help="Report decisions without deleting anything")

    parser.add_argument("--force", action="store_true", help="Skip confirmation prompt")

    parser.add_argument(
        "--submit-policy",
        action="store_true",
        help="Also submit the equivalent lifecycle policy document to every repository",
    )

    parser.add_argument("--max-workers", type=int, help="Repositories evaluated in parallel (default: from config)")

    parser.add_argument("--output", help="Output file path (default: reports/retention-decisions.json)")

    return parser.parse_args(argv)


def main(argv: Optional[List[str]] = None):
    """Main function"""
    args = parse_arguments(argv)
    setup_logging(level=parse_log_level(config_manager.get_log_level()), log_file=config_manager.get_log_file())

    try:
        policy = PolicyConfig.from_config(
            config_manager,
            protected_prefixes=split_prefixes(args.tag_prefixes) if args.tag_prefixes else None,
            retain_count=args.retain_count,
            retention_days=args.retention_days,
            dry_run=True if args.dry_run else None,
            expire_unprotected_tags=False if args.keep_unprotected_tags else None,
        )
    except ConfigValidationError as e:
        logger.error(f"❌ {e}")
        sys.exit(1)

    output_file = args.output or config_manager.get_retention_decisions_path()

    logger.info("=" * 60)
    if policy.dry_run:
        logger.info("   🔍 DRY RUN MODE: Deciding image retention")
        logger.info("   No images will be deleted.")
    else:
        logger.info("   🗑️  DELETION MODE: Deleting expired images")
        logger.warning("⚠️  Images WILL be deleted from ECR!")
    logger.info("=" * 60)
    logger.info(f"Protected prefixes: {', '.join(policy.protected_prefixes) or '(none)'}")
    logger.info(f"Retain count per prefix: {policy.retain_count}")
    logger.info(f"Retention days: {policy.retention_days}")

    try:
        cleaner = RetentionCleaner(
            policy,
            region=args.region,
            registry_id=args.registry_id,
            repository_prefix=args.repository_prefix,
            max_workers=args.max_workers,
            submit_policy=args.submit_policy or config_manager.should_submit_policy(),
            include_tagged_age_rule=config_manager.include_tagged_age_rule(),
            audit=config_manager.should_audit_policy(),
        )
        summary = cleaner.run(dry_run=policy.dry_run, force=args.force, output_file=output_file)
    except KeyboardInterrupt:
        logger.warning("Interrupted by user")
        sys.exit(130)
    except Exception as e:
        log_exception(logger, f"Error: {e}", e)
        sys.exit(1)

    if summary.get("error"):
        sys.exit(1)


if __name__ == "__main__":
    main()
