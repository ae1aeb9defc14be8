"""
Utility functions for migration reports.

- Human-readable sizes
- Layer summary tables for the console
- JSON report files
"""

import json
from datetime import date, datetime
from enum import Enum
from pathlib import Path
from typing import Any

from tabulate import tabulate

from registry_migrator.logging_utils import get_logger

logger = get_logger(__name__)


def sizeof_fmt(num: float, suffix: str = "B") -> str:
    """Format bytes into human-readable size.

    Args:
        num: Number of bytes
        suffix: Suffix to append (default: "B")

    Returns:
        Formatted string like "1.5GiB", "500.0MiB", etc.
    """
    for unit in ("", "Ki", "Mi", "Gi", "Ti", "Pi", "Ei", "Zi"):
        if abs(num) < 1024.0:
            return f"{num:3.1f}{unit}{suffix}"
        num /= 1024.0
    return f"{num:.1f}Yi{suffix}"


def format_layer_table(result) -> str:
    """Render the per-layer outcome of a MigrationResult as a grid table."""
    headers = ["#", "Digest", "Action", "Size"]
    rows = []
    for index, layer in enumerate(result.layers, 1):
        size = sizeof_fmt(layer.size) if layer.size else "-"
        rows.append([index, layer.digest, layer.action.value, size])
    return tabulate(rows, headers=headers, tablefmt="grid")


def _normalize(data: Any) -> Any:
    """Recursively convert values json cannot serialize on its own."""
    if isinstance(data, (datetime, date)):
        return data.isoformat()
    if isinstance(data, Enum):
        return data.value
    if isinstance(data, (set, frozenset)):
        return sorted(_normalize(item) for item in data)
    if isinstance(data, dict):
        return {key: _normalize(value) for key, value in data.items()}
    if isinstance(data, (list, tuple)):
        return [_normalize(item) for item in data]
    return data


def save_json(path: str, data: Any) -> str:
    """Write JSON data to a file with indentation, creating parent directories.

    Returns:
        Path to the saved file
    """
    p = Path(path)
    p.parent.mkdir(parents=True, exist_ok=True)
    with open(p, "w") as f:
        json.dump(_normalize(data), f, indent=2)
    logger.info(f"Saved JSON to {p}")
    return str(p)
