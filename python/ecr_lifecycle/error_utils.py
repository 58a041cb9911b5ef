"""
Error types and message utilities for the lifecycle retention run.

Every failure carries actionable guidance (suggested fixes plus the repository
and digest it concerns) so an operator can diagnose a run from its log alone.
"""

from enum import Enum
from typing import Any, Dict, List, Optional


class ErrorCategory(Enum):
    """Categories of errors for better error handling"""
    CONNECTION = "connection"
    AUTHENTICATION = "authentication"
    CONFIGURATION = "configuration"
    PERMISSION = "permission"
    RESOURCE = "resource"
    THROTTLING = "throttling"
    DATA = "data"
    UNKNOWN = "unknown"


class ActionableError(Exception):
    """Exception with actionable guidance for users"""

    def __init__(self, message: str, category: ErrorCategory = ErrorCategory.UNKNOWN,
                 suggestions: Optional[List[str]] = None, details: Optional[Dict[str, Any]] = None):
        """Initialize actionable error

        Args:
            message: Primary error message
            category: Error category for classification
            suggestions: List of suggested fixes
            details: Additional context information
        """
        self.message = message
        self.category = category
        self.suggestions = suggestions or []
        self.details = details or {}
        super().__init__(self.format_message())

    def format_message(self) -> str:
        """Format the complete error message with suggestions"""
        lines = [f"❌ {self.message}"]

        if self.suggestions:
            lines.append("\n💡 Suggested fixes:")
            for i, suggestion in enumerate(self.suggestions, 1):
                lines.append(f"   {i}. {suggestion}")

        if self.details:
            lines.append("\n📋 Additional details:")
            for key, value in self.details.items():
                lines.append(f"   {key}: {value}")

        return "\n".join(lines)


class ConfigValidationError(Exception):
    """Raised when configuration validation fails"""


class InventoryFetchError(ActionableError):
    """Listing repositories or images failed. Recoverable per repository."""


class DataError(ActionableError):
    """An image record is malformed. Aborts the evaluation of its repository."""


class ApplyError(ActionableError):
    """Deleting an image or submitting a policy failed. Recoverable per image."""


def aws_error_code(error: Exception) -> str:
    """Extract the AWS error code from a botocore ClientError (empty string otherwise)"""
    response = getattr(error, "response", None)
    if isinstance(response, dict):
        return response.get("Error", {}).get("Code", "") or ""
    return ""


def _category_for(error: Exception) -> ErrorCategory:
    code = aws_error_code(error)
    error_str = str(error).lower()
    if code in ("AccessDeniedException", "AccessDenied") or "not authorized" in error_str:
        return ErrorCategory.PERMISSION
    if code in ("UnrecognizedClientException", "ExpiredTokenException") or "credentials" in error_str:
        return ErrorCategory.AUTHENTICATION
    if code in ("ThrottlingException", "TooManyRequestsException") or "rate exceeded" in error_str:
        return ErrorCategory.THROTTLING
    if code in ("RepositoryNotFoundException", "ImageNotFoundException", "LifecyclePolicyNotFoundException"):
        return ErrorCategory.RESOURCE
    if "endpoint" in error_str or "connect" in error_str or "timed out" in error_str:
        return ErrorCategory.CONNECTION
    return ErrorCategory.UNKNOWN


def _suggestions_for(category: ErrorCategory, region: Optional[str]) -> List[str]:
    if category == ErrorCategory.PERMISSION:
        return [
            "Check the IAM policy grants ecr:DescribeRepositories, ecr:DescribeImages, "
            "ecr:BatchDeleteImage and ecr:PutLifecyclePolicy",
            "Verify the repository policy does not deny the calling principal",
        ]
    if category == ErrorCategory.AUTHENTICATION:
        return [
            "Configure AWS credentials: aws configure",
            "Or set AWS_ACCESS_KEY_ID and AWS_SECRET_ACCESS_KEY environment variables",
            "Refresh the session token if using temporary credentials",
        ]
    if category == ErrorCategory.THROTTLING:
        return [
            "Reduce the number of parallel workers (--max-workers)",
            "Re-run the affected repositories later",
        ]
    if category == ErrorCategory.RESOURCE:
        return [
            "Verify the repository still exists in the region",
            f"Check the configured region is correct: {region}" if region else "Check the configured region",
        ]
    if category == ErrorCategory.CONNECTION:
        return [
            "Check network connectivity to the ECR endpoint",
            f"Verify the region '{region}' is valid" if region else "Verify the region is valid",
        ]
    return ["Re-run with logging.level set to DEBUG for the full request trace"]


def create_inventory_fetch_error(repository: Optional[str], error: Exception,
                                 region: Optional[str] = None) -> InventoryFetchError:
    """Create actionable error for a failed repository or image listing"""
    category = _category_for(error)
    target = f"images of repository '{repository}'" if repository else "repositories"
    return InventoryFetchError(
        message=f"Failed to list {target}",
        category=category,
        suggestions=_suggestions_for(category, region),
        details={
            "repository": repository or "-",
            "region": region or "-",
            "error_type": type(error).__name__,
            "error_code": aws_error_code(error) or "-",
            "error_message": str(error),
        },
    )


def create_data_error(repository: Optional[str], digest: Optional[str], reason: str) -> DataError:
    """Create actionable error for a malformed image record"""
    return DataError(
        message=f"Invalid image record in repository '{repository or '-'}': {reason}",
        category=ErrorCategory.DATA,
        suggestions=[
            "Inspect the image with: aws ecr describe-images --image-ids imageDigest=<digest>",
            "The repository is skipped for this run; no partial decision is emitted",
        ],
        details={"repository": repository or "-", "digest": digest or "-", "reason": reason},
    )


def create_apply_error(repository: str, digest: Optional[str], reason: str,
                       error: Optional[Exception] = None) -> ApplyError:
    """Create actionable error for a failed deletion or policy submission"""
    category = _category_for(error) if error is not None else ErrorCategory.RESOURCE
    details = {"repository": repository, "digest": digest or "-", "reason": reason}
    if error is not None:
        details["error_type"] = type(error).__name__
        details["error_code"] = aws_error_code(error) or "-"
    action = f"delete image {digest}" if digest else "submit lifecycle policy"
    return ApplyError(
        message=f"Failed to {action} in repository '{repository}'",
        category=category,
        suggestions=_suggestions_for(category, None),
        details=details,
    )
