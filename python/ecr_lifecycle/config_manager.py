#!/usr/bin/env python3
"""
Configuration Manager for ECR Lifecycle Retention

This module handles loading and managing configuration from config.yaml
and environment variables.
"""

import logging
import os
import re
from typing import Any, Dict, List, Optional

import yaml

from ecr_lifecycle.error_utils import ConfigValidationError


DEFAULT_TAG_PREFIXES = ["latest", "main", "release", "dev"]


def _parse_bool(value: Any) -> bool:
    if isinstance(value, bool):
        return value
    return str(value).strip().lower() in ("true", "1", "yes", "on")


class ConfigManager:
    """Manages configuration for the ECR lifecycle retention project"""

    def __init__(self, config_file: str = None, validate: bool = True):
        """Initialize ConfigManager

        Args:
            config_file: Path to configuration YAML file (defaults to ../config.yaml or CONFIG_FILE env var)
            validate: If True, validate configuration on initialization
        """
        # Allow override via environment variable for containerized deployments
        if config_file is None:
            config_file = os.environ.get("CONFIG_FILE", "../config.yaml")
        self.config_file = config_file
        self.config = self._load_config()

        if validate:
            self.validate_config()

    def _load_config(self) -> Dict[str, Any]:
        """Load configuration from YAML file with defaults"""
        default_config = {
            "ecr": {"region": "us-east-1", "registry_id": None, "repository_prefix": ""},
            "retention": {
                "retention_days": 30,
                "tag_prefixes": list(DEFAULT_TAG_PREFIXES),
                "retain_count": 2,
                "expire_unprotected_tags": True,
            },
            "policy": {"submit": False, "include_tagged_age_rule": True, "audit": True},
            "analysis": {"max_workers": 4, "output_dir": "reports"},
            "logging": {"log_file": "logs/output.log", "level": "INFO"},
            "reports": {"retention_decisions": "retention-decisions.json", "lifecycle_policy": "lifecycle-policy.json"},
            "security": {"dry_run_by_default": False, "require_confirmation": False},
        }

        try:
            if os.path.exists(self.config_file):
                with open(self.config_file, "r") as f:
                    user_config = yaml.safe_load(f) or {}
                return self._merge_config(default_config, user_config)
            else:
                logging.debug(f"Config file {self.config_file} not found, using defaults")
                return default_config
        except Exception as e:
            logging.error(f"Error loading config file: {e}")
            return default_config

    def _merge_config(self, default: Dict[str, Any], user: Dict[str, Any]) -> Dict[str, Any]:
        """Recursively merge user config with defaults"""
        result = default.copy()
        for key, value in user.items():
            if key in result and isinstance(result[key], dict) and isinstance(value, dict):
                result[key] = self._merge_config(result[key], value)
            else:
                result[key] = value
        return result

    # ECR configuration
    def get_region(self) -> str:
        """Get AWS region.
        Priority: env ECR_REGION -> env AWS_DEFAULT_REGION -> config.ecr.region
        """
        return os.environ.get("ECR_REGION") or os.environ.get("AWS_DEFAULT_REGION") or self.config["ecr"]["region"]

    def get_registry_id(self) -> Optional[str]:
        """Get the AWS account id owning the registry (None means the caller's account)"""
        registry_id = os.environ.get("ECR_REGISTRY_ID") or self.config["ecr"].get("registry_id")
        return str(registry_id) if registry_id else None

    def get_repository_prefix(self) -> str:
        """Only repositories whose name starts with this prefix are processed"""
        return self.config["ecr"].get("repository_prefix") or ""

    # Retention configuration
    def get_retention_days(self) -> int:
        """Get retention days from environment or config, with type coercion"""
        days = os.environ.get("RETENTION_DAYS") or self.config["retention"]["retention_days"]
        try:
            return int(days)
        except (ValueError, TypeError):
            raise ConfigValidationError(
                f"retention.retention_days must be an integer, got: {days} (type: {type(days).__name__})"
            )

    def get_tag_prefixes(self) -> List[str]:
        """Get protected tag prefixes from environment (comma separated) or config"""
        raw = os.environ.get("TAG_PREFIXES")
        if raw is None:
            raw = self.config["retention"]["tag_prefixes"]
        if isinstance(raw, str):
            return [p.strip() for p in raw.split(",") if p.strip()]
        if isinstance(raw, (list, tuple)):
            return [str(p).strip() for p in raw if str(p).strip()]
        raise ConfigValidationError(
            f"retention.tag_prefixes must be a list or comma-separated string, got: {raw} (type: {type(raw).__name__})"
        )

    def get_retain_count(self) -> int:
        """Get how many recent images each protected prefix keeps, with type coercion"""
        count = self.config["retention"]["retain_count"]
        try:
            return int(count)
        except (ValueError, TypeError):
            raise ConfigValidationError(
                f"retention.retain_count must be an integer, got: {count} (type: {type(count).__name__})"
            )

    def get_expire_unprotected_tags(self) -> bool:
        """Get whether tagged images without a protected prefix expire regardless of age"""
        return _parse_bool(self.config["retention"].get("expire_unprotected_tags", True))

    # Policy document configuration
    def should_submit_policy(self) -> bool:
        return _parse_bool(self.config["policy"].get("submit", False))

    def include_tagged_age_rule(self) -> bool:
        return _parse_bool(self.config["policy"].get("include_tagged_age_rule", True))

    def should_audit_policy(self) -> bool:
        return _parse_bool(self.config["policy"].get("audit", True))

    # Analysis configuration
    def get_max_workers(self) -> int:
        """Get max workers from config, with type coercion"""
        workers = self.config["analysis"]["max_workers"]
        try:
            return int(workers)
        except (ValueError, TypeError):
            raise ConfigValidationError(
                f"max_workers must be an integer, got: {workers} (type: {type(workers).__name__})"
            )

    def get_output_dir(self) -> str:
        """Get output directory from config"""
        return self.config["analysis"]["output_dir"]

    # Logging configuration
    def get_log_file(self) -> Optional[str]:
        """Get the log file path; an empty value disables file logging"""
        return os.environ.get("LOG_FILE") or self.config["logging"].get("log_file") or None

    def get_log_level(self) -> str:
        return os.environ.get("LOG_LEVEL") or self.config["logging"].get("level", "INFO")

    # Report configuration
    def _resolve_report_path(self, path: str) -> str:
        """Resolve report file path under the configured output_dir unless absolute or already a path.
        If the value is just a filename, prefix it with output_dir.
        """
        # If absolute or contains a directory component, return as is
        if os.path.isabs(path) or os.path.basename(path) != path:
            return path
        return os.path.join(self.get_output_dir(), path)

    def get_retention_decisions_path(self) -> str:
        return self._resolve_report_path(self.config["reports"]["retention_decisions"])

    def get_lifecycle_policy_path(self) -> str:
        return self._resolve_report_path(self.config["reports"]["lifecycle_policy"])

    # Security configuration
    def is_dry_run_by_default(self) -> bool:
        """Get dry run default from environment or config"""
        env_value = os.environ.get("DRY_RUN")
        if env_value is not None:
            return _parse_bool(env_value)
        return _parse_bool(self.config["security"]["dry_run_by_default"])

    def requires_confirmation(self) -> bool:
        """Get confirmation requirement from config"""
        return _parse_bool(self.config["security"]["require_confirmation"])

    def validate_config(self) -> None:
        """Validate configuration values

        Raises:
            ConfigValidationError: If configuration is invalid
        """
        errors = []
        warnings = []

        # Validate ECR configuration
        region = self.get_region()
        if not region or not str(region).strip():
            errors.append("ECR region is required and cannot be empty")
        elif not self._is_valid_region(region):
            warnings.append(f"Region '{region}' may be invalid (expected format like us-east-1)")

        registry_id = self.get_registry_id()
        if registry_id and not re.match(r"^[0-9]{12}$", registry_id):
            errors.append(f"ecr.registry_id must be a 12-digit AWS account id, got: {registry_id}")

        # Validate retention configuration
        retention_days = self.get_retention_days()
        if retention_days < 0:
            errors.append(f"retention.retention_days must be a non-negative integer, got: {retention_days}")
        elif retention_days > 3650:
            warnings.append(f"retention_days is very high ({retention_days}), almost nothing will expire")

        retain_count = self.get_retain_count()
        if retain_count < 0:
            errors.append(f"retention.retain_count must be a non-negative integer, got: {retain_count}")

        prefixes = self.get_tag_prefixes()
        if not prefixes:
            warnings.append("No protected tag prefixes configured; every tagged image is unprotected")

        # Validate analysis configuration
        max_workers = self.get_max_workers()
        if max_workers < 1:
            errors.append(f"max_workers must be a positive integer, got: {max_workers}")
        elif max_workers > 100:
            warnings.append(f"max_workers is very high ({max_workers}), this may trigger ECR throttling")

        output_dir = self.get_output_dir()
        if not output_dir or not str(output_dir).strip():
            errors.append("output_dir is required and cannot be empty")

        # Log warnings
        for warning in warnings:
            logging.warning(f"Configuration warning: {warning}")

        # Raise error if there are validation errors
        if errors:
            error_msg = "Configuration validation failed:\n  " + "\n  ".join(errors)
            logging.error(error_msg)
            raise ConfigValidationError(error_msg)

    def _is_valid_region(self, region: str) -> bool:
        """Validate AWS region format"""
        return bool(re.match(r"^[a-z]{2}(-gov)?-[a-z]+-[0-9]$", region))

    def print_config(self):
        """Print current configuration"""
        print("Current Configuration:")
        print(f"  Region: {self.get_region()}")
        print(f"  Registry ID: {self.get_registry_id() or 'caller account'}")
        print(f"  Repository Prefix: {self.get_repository_prefix() or '(all repositories)'}")
        print(f"  Retention Days: {self.get_retention_days()}")
        print(f"  Protected Tag Prefixes: {', '.join(self.get_tag_prefixes())}")
        print(f"  Retain Count Per Prefix: {self.get_retain_count()}")
        print(f"  Expire Unprotected Tags: {self.get_expire_unprotected_tags()}")
        print(f"  Max Workers: {self.get_max_workers()}")
        print(f"  Output Directory: {self.get_output_dir()}")
        print(f"  Dry Run Default: {self.is_dry_run_by_default()}")
        print(f"  Require Confirmation: {self.requires_confirmation()}")


# Global config manager instance
# Validation can be disabled by setting SKIP_CONFIG_VALIDATION=true environment variable
# This is useful for testing or when you know the config is valid
config_manager = ConfigManager(
    validate=os.environ.get("SKIP_CONFIG_VALIDATION", "").lower() not in ("true", "1", "yes")
)
