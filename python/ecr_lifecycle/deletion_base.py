"""
Base class for lifecycle scripts to reduce code duplication and standardize behavior.

This module provides common functionality for the scripts including:
- ECR client setup from config
- Standardized confirmation prompts
- Repository discovery
- Logging consistency
"""

from typing import Any, Dict, List, Optional

from ecr_lifecycle.config_manager import config_manager
from ecr_lifecycle.ecr_client import ECRClient
from ecr_lifecycle.logging_utils import get_logger


class BaseLifecycleScript:
    """Base class for lifecycle scripts with common functionality"""

    def __init__(
        self,
        region: Optional[str] = None,
        registry_id: Optional[str] = None,
        repository_prefix: Optional[str] = None,
        ecr_client: Optional[ECRClient] = None,
    ):
        """Initialize base lifecycle script

        Args:
            region: AWS region (default: from config)
            registry_id: Registry account id (default: from config, i.e. caller account)
            repository_prefix: Only process repositories starting with this (default: from config)
            ecr_client: Pre-built client, mainly for tests
        """
        self.region = region or config_manager.get_region()
        self.registry_id = registry_id or config_manager.get_registry_id()
        self.repository_prefix = (
            repository_prefix if repository_prefix is not None else config_manager.get_repository_prefix()
        )
        self.logger = get_logger(self.__class__.__name__)
        self.ecr_client = ecr_client or ECRClient(self.region, registry_id=self.registry_id)

    def confirm_deletion(self, count: int, item_type: str, force: bool = False) -> bool:
        """Standardized confirmation prompt for deletions

        Args:
            count: Number of items to be deleted
            item_type: Type of items (e.g., "images", "policies")
            force: If True, skip confirmation and return True

        Returns:
            True if user confirmed, False otherwise
        """
        if force or not config_manager.requires_confirmation():
            if force:
                self.logger.warning("⚠️  Force mode enabled - skipping confirmation prompt")
            return True

        print("\n" + "=" * 60)
        print("⚠️  WARNING: You are about to DELETE container images from ECR!")
        print("=" * 60)
        print(f"This will delete {count} {item_type}.")
        print("This action cannot be undone.")
        print("Make sure you have reviewed the decisions logged above.")
        print("=" * 60)

        while True:
            response = input("Are you sure you want to proceed with deletion? (yes/no): ").lower().strip()
            if response in ["yes", "y"]:
                return True
            elif response in ["no", "n"]:
                return False
            else:
                print("Please enter 'yes' or 'no'.")

    def list_repositories(self) -> List[str]:
        """List the repositories this run covers

        Raises:
            InventoryFetchError: If ECR cannot be listed
        """
        scope = f" matching '{self.repository_prefix}'" if self.repository_prefix else ""
        self.logger.info(f"Fetching ECR repositories in region: {self.region}{scope}...")
        repositories = self.ecr_client.list_repositories(prefix=self.repository_prefix)
        if not repositories:
            self.logger.info("No repositories found.")
        return repositories

    def log_summary(self, summary: Dict[str, Any], dry_run: bool = False) -> None:
        """Log a standardized run summary

        Args:
            summary: Dictionary with summary information
            dry_run: Whether this was a dry run
        """
        mode = "DRY RUN: " if dry_run else ""
        self.logger.info(f"\n📊 {mode}Lifecycle Summary:")

        if "repositories" in summary:
            self.logger.info(f"   Repositories: {summary['repositories']}")
        if "retained" in summary:
            self.logger.info(f"   Images retained: {summary['retained']}")
        if "deleted" in summary:
            self.logger.info(f"   {'Would delete' if dry_run else 'Successfully deleted'}: {summary['deleted']}")
        if "failed" in summary:
            self.logger.info(f"   Failed deletions: {summary['failed']}")
        if "skipped" in summary:
            self.logger.info(f"   Skipped repositories (errors): {summary['skipped']}")
        if "policies_applied" in summary:
            self.logger.info(f"   {'Would apply' if dry_run else 'Applied'} policies: {summary['policies_applied']}")
        if "results_file" in summary:
            self.logger.info(f"   Results saved to: {summary['results_file']}")
