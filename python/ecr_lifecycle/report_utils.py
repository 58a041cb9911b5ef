"""
Utility functions for report generation and saving.

This module provides functions to:
- Save reports as JSON
- Render the retain/delete partition as a table
- Generate timestamped report filenames
"""
import json
from datetime import date, datetime
from pathlib import Path
from typing import Any, Iterable, Optional

from tabulate import tabulate

from ecr_lifecycle.logging_utils import get_logger

logger = get_logger(__name__)


# ============================================================================
# Timestamp Utilities
# ============================================================================

def get_timestamp_suffix() -> str:
    """
    Generate a timestamp suffix for report filenames.

    Returns:
        String in format: YYYY-MM-DD-HH-MM-SS
    """
    return datetime.now().strftime("%Y-%m-%d-%H-%M-%S")


def add_timestamp_to_path(path: str, timestamp: Optional[str] = None) -> str:
    """
    Add a timestamp to a file path before the extension.

    Args:
        path: Original file path (e.g., 'reports/retention-decisions.json')
        timestamp: Optional timestamp string (defaults to current time)

    Returns:
        Path with timestamp inserted (e.g., 'reports/retention-decisions-2026-01-15-14-30-00.json')
    """
    if timestamp is None:
        timestamp = get_timestamp_suffix()

    p = Path(path)
    return str(p.parent / f"{p.stem}-{timestamp}{p.suffix}")


# ============================================================================
# Formatting Utilities
# ============================================================================

def format_image_table(decision) -> str:
    """Render a decision as a grid table, newest image first"""
    rows = []
    for status, images in (("retain", decision.retained), ("delete", decision.deleted)):
        for image in images:
            rows.append((image.pushed_at, status, image.digest, ", ".join(sorted(image.tags)) or "<untagged>"))
    rows.sort(key=lambda row: (row[0], row[2]), reverse=True)
    table_rows = [(status, digest, tags, pushed.isoformat()) for pushed, status, digest, tags in rows]
    return tabulate(table_rows, headers=["Action", "Digest", "Tags", "Pushed At"], tablefmt="grid")


def format_summary_table(results: Iterable[dict]) -> str:
    """Render per-repository counts of a run"""
    rows = [
        (r["repository"], r.get("status", "-"), r.get("retained", 0), r.get("deleted", 0), r.get("failed", 0))
        for r in results
    ]
    return tabulate(rows, headers=["Repository", "Status", "Retained", "Deleted", "Failed"], tablefmt="grid")


# ============================================================================
# Report Saving Functions
# ============================================================================

def _normalize(data: Any) -> Any:
    """Recursively convert values json cannot serialize.

    - datetime/date: ISO format strings
    - set/frozenset: sorted lists
    - objects with to_dict(): their dict form
    """
    if isinstance(data, (datetime, date)):
        return data.isoformat()
    elif isinstance(data, (set, frozenset)):
        try:
            return [_normalize(item) for item in sorted(data)]
        except TypeError:
            return [_normalize(item) for item in data]
    elif hasattr(data, "to_dict"):
        return _normalize(data.to_dict())
    elif isinstance(data, dict):
        return {k: _normalize(v) for k, v in data.items()}
    elif isinstance(data, (list, tuple)):
        return [_normalize(item) for item in data]
    return data


def save_json(path: str, data: Any, timestamp: bool = False) -> str:
    """
    Write JSON data to a file with indentation.

    Args:
        path: Path to save the JSON file
        data: Data to save
        timestamp: If True, add timestamp to filename (default: False)

    Returns:
        Path to the saved file
    """
    p = Path(path)

    if timestamp:
        p = Path(add_timestamp_to_path(str(p)))

    p.parent.mkdir(parents=True, exist_ok=True)

    with open(p, 'w') as f:
        json.dump(_normalize(data), f, indent=2)
    logger.info(f"Saved JSON to {p}")
    return str(p)
