#!/usr/bin/env python3
"""
Submit the ECR lifecycle policy document to every repository of a region.

The document is generated from the same retention settings the local decision
uses (see apply_retention.py):
- one "keep last N images" rule per protected tag prefix
- one rule expiring untagged images older than the retention window
- one rule expiring any remaining image older than the window
  (omitted with --two-rule)

Usage examples:
  # Print the document and the repositories it would be applied to
  python apply_lifecycle_policy.py --dry-run

  # Apply with custom settings
  python apply_lifecycle_policy.py --region us-west-2 --retention-days 14 --tag-prefixes main,release
"""

import argparse
import sys
from pathlib import Path
from typing import Any, Dict, List, Optional

# Add parent directory to path for imports
_parent_dir = Path(__file__).parent.parent.absolute()
if str(_parent_dir) not in sys.path:
    sys.path.insert(0, str(_parent_dir))

from ecr_lifecycle.config_manager import ConfigValidationError, config_manager
from ecr_lifecycle.deletion_base import BaseLifecycleScript
from ecr_lifecycle.error_utils import ApplyError, InventoryFetchError
from ecr_lifecycle.logging_utils import get_logger, log_exception, parse_log_level, setup_logging
from ecr_lifecycle.models import PolicyConfig, split_prefixes
from ecr_lifecycle.policy_document import build_lifecycle_policy, policy_to_json
from ecr_lifecycle.report_utils import save_json

logger = get_logger(__name__)


class LifecyclePolicyApplier(BaseLifecycleScript):
    """Submits one lifecycle policy document to many repositories"""

    def apply(self, document: Dict[str, Any], dry_run: bool = False) -> Dict[str, Any]:
        """Apply the document to every repository; a failing repository does not stop the others

        Returns:
            Summary with the applied and failed repository names
        """
        summary: Dict[str, Any] = {"applied": [], "failed": {}}
        try:
            repositories = self.list_repositories()
        except InventoryFetchError as e:
            self.logger.error(e.message)
            self.logger.debug(str(e))
            summary["error"] = e.message
            return summary

        for repository in repositories:
            if dry_run:
                self.logger.info(f"DRY RUN: would apply lifecycle policy to {repository}")
                summary["applied"].append(repository)
                continue
            self.logger.info(f"Applying lifecycle policy to {repository}")
            try:
                self.ecr_client.put_lifecycle_policy(repository, document)
            except ApplyError as e:
                self.logger.error(f"Failed to apply policy to {repository}: {e.details.get('error_code', '-')}")
                self.logger.debug(str(e))
                summary["failed"][repository] = e.message
                continue
            self.logger.info(f"✓ Policy applied to repository: {repository}")
            summary["applied"].append(repository)

        self.log_summary(
            {"repositories": len(repositories), "policies_applied": len(summary["applied"]),
             "skipped": len(summary["failed"])},
            dry_run=dry_run,
        )
        return summary


def parse_arguments(argv: Optional[List[str]] = None):
    """Parse command line arguments"""
    parser = argparse.ArgumentParser(
        description="Submit the ECR lifecycle policy document to every repository",
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )

    parser.add_argument("--region", help="AWS region (default: from config or us-east-1)")

    parser.add_argument("--registry-id", help="AWS account id of the registry (default: caller account)")

    parser.add_argument("--retention-days", type=int, help="Age in days after which images expire (default: 30)")

    parser.add_argument(
        "--tag-prefixes", help="Comma-separated protected tag prefixes (default: latest,main,release,dev)"
    )

    parser.add_argument("--retain-count", type=int, help="Images kept per protected prefix (default: 2)")

    parser.add_argument("--repository-prefix", help="Only process repositories whose name starts with this")

    parser.add_argument(
        "--two-rule",
        action="store_true",
        help="Omit the rule expiring tagged images by age (only untagged images expire by age)",
    )

    parser.add_argument("--dry-run", action="store_true", help="Print the document without submitting it")

    parser.add_argument("--output", help="Where to save the document (default: reports/lifecycle-policy.json)")

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
        )
    except ConfigValidationError as e:
        logger.error(f"❌ {e}")
        sys.exit(1)

    include_tagged_age_rule = not args.two_rule and config_manager.include_tagged_age_rule()
    document = build_lifecycle_policy(policy, include_tagged_age_rule=include_tagged_age_rule)
    logger.info(f"Lifecycle policy document:\n{policy_to_json(document)}")
    save_json(args.output or config_manager.get_lifecycle_policy_path(), document)

    try:
        applier = LifecyclePolicyApplier(
            region=args.region, registry_id=args.registry_id, repository_prefix=args.repository_prefix
        )
        summary = applier.apply(document, dry_run=policy.dry_run)
    except Exception as e:
        log_exception(logger, f"Error: {e}", e)
        sys.exit(1)

    if summary.get("error") or summary["failed"]:
        sys.exit(1)


if __name__ == "__main__":
    main()
