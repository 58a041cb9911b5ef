"""
Thin boto3 wrapper for the ECR calls the retention run needs.

Listing failures surface as InventoryFetchError, malformed image details as
DataError, and deletion/policy failures as ApplyError (or per-digest failure
reasons for batch deletions).
"""

import json
from typing import Any, Dict, List, Optional, Sequence, Tuple

import boto3
from botocore.exceptions import BotoCoreError, ClientError

from ecr_lifecycle.error_utils import aws_error_code, create_apply_error, create_inventory_fetch_error
from ecr_lifecycle.logging_utils import get_logger
from ecr_lifecycle.models import ImageRecord

logger = get_logger(__name__)

# BatchDeleteImage accepts at most 100 image ids per call
BATCH_DELETE_LIMIT = 100


def get_ecr_client(region_name: str):
    return boto3.client("ecr", region_name=region_name)


class ECRClient:
    """ECR client scoped to one region (and optionally one registry account)"""

    def __init__(self, region: str, registry_id: Optional[str] = None, client: Any = None):
        self.region = region
        self.registry_id = registry_id
        self.client = client if client is not None else get_ecr_client(region)

    def _registry_kwargs(self) -> Dict[str, str]:
        return {"registryId": self.registry_id} if self.registry_id else {}

    def list_repositories(self, prefix: str = "") -> List[str]:
        """List repository names in the region, optionally only those starting with prefix

        Raises:
            InventoryFetchError: If the listing fails
        """
        try:
            paginator = self.client.get_paginator("describe_repositories")
            names = []
            for page in paginator.paginate(**self._registry_kwargs()):
                for repo in page.get("repositories", []):
                    name = repo["repositoryName"]
                    if name.startswith(prefix):
                        names.append(name)
        except (ClientError, BotoCoreError) as e:
            raise create_inventory_fetch_error(None, e, region=self.region) from e
        logger.debug(f"Found {len(names)} repositories in {self.region}")
        return names

    def list_images(self, repository: str) -> List[ImageRecord]:
        """Load the full image inventory of a repository

        Raises:
            InventoryFetchError: If the listing fails
            DataError: If an image detail has no digest or push timestamp
        """
        try:
            paginator = self.client.get_paginator("describe_images")
            details = []
            for page in paginator.paginate(repositoryName=repository, **self._registry_kwargs()):
                details.extend(page.get("imageDetails", []))
        except (ClientError, BotoCoreError) as e:
            raise create_inventory_fetch_error(repository, e, region=self.region) from e
        return [ImageRecord.from_ecr(detail, repository=repository) for detail in details]

    def batch_delete_images(self, repository: str, digests: Sequence[str]) -> Tuple[List[str], Dict[str, str]]:
        """Delete images by digest.

        A chunk whose call fails marks every digest in it as failed; the
        remaining chunks are still attempted.

        Returns:
            Tuple of (deleted digests, {digest: failure reason})
        """
        deleted: List[str] = []
        failures: Dict[str, str] = {}
        digests = list(digests)
        for start in range(0, len(digests), BATCH_DELETE_LIMIT):
            chunk = digests[start:start + BATCH_DELETE_LIMIT]
            try:
                response = self.client.batch_delete_image(
                    repositoryName=repository,
                    imageIds=[{"imageDigest": digest} for digest in chunk],
                    **self._registry_kwargs(),
                )
            except (ClientError, BotoCoreError) as e:
                reason = aws_error_code(e) or type(e).__name__
                logger.error(f"BatchDeleteImage failed for {len(chunk)} images in {repository}: {e}")
                for digest in chunk:
                    failures[digest] = f"{reason}: {e}"
                continue

            for failure in response.get("failures", []):
                digest = failure.get("imageId", {}).get("imageDigest")
                if digest:
                    code = failure.get("failureCode", "Unknown")
                    failures[digest] = f"{code}: {failure.get('failureReason', '')}".rstrip(": ")
            # A digest is reported once per tag it carried; count it once
            for image_id in response.get("imageIds", []):
                digest = image_id.get("imageDigest")
                if digest and digest not in failures and digest not in deleted:
                    deleted.append(digest)
        return deleted, failures

    def put_lifecycle_policy(self, repository: str, policy_document: Dict[str, Any]) -> None:
        """Submit a lifecycle policy document to a repository

        Raises:
            ApplyError: If the submission fails
        """
        try:
            self.client.put_lifecycle_policy(
                repositoryName=repository,
                lifecyclePolicyText=json.dumps(policy_document),
                **self._registry_kwargs(),
            )
        except (ClientError, BotoCoreError) as e:
            raise create_apply_error(repository, None, "PutLifecyclePolicy failed", error=e) from e
