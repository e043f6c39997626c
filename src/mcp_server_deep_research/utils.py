"""Utilities for report persistence and helpers."""

import json
import logging
import re
from datetime import datetime
from pathlib import Path
from typing import Any

from .config import get_settings

logger = logging.getLogger(__name__)


def safe_filename(text: str, max_length: int = 50) -> str:
    """Filesystem-safe slug of `text`."""
    return re.sub(r"[^\w\s-]", "", text[:max_length]).strip().replace(" ", "_") or "research"


def save_execution_result(
    content: str,
    prefix: str = "research",
    metadata: dict[str, Any] | None = None,
    results_dir: Path | None = None,
) -> Path:
    """Save a research report to a timestamped file in the results directory.

    Args:
        content: The markdown report.
        prefix: Filename prefix (usually derived from the question).
        metadata: Optional metadata saved alongside in a .json file.
        results_dir: Target directory; defaults to the configured results directory.

    Returns:
        Path to the saved file.
    """
    results_dir = results_dir or get_settings().get_results_dir()
    results_dir.mkdir(parents=True, exist_ok=True)
    timestamp = datetime.now().strftime("%Y%m%d_%H%M%S_%f")

    safe_prefix = re.sub(r"[^\w\-]", "_", prefix)[:30]
    base = f"{timestamp}_{safe_prefix}"
    file_path = results_dir / f"{base}.md"
    if file_path.exists():
        for i in range(1, 10_000):
            candidate = results_dir / f"{base}_{i}.md"
            if not candidate.exists():
                file_path = candidate
                break
        else:
            raise RuntimeError("Failed to allocate a unique result filename after 10,000 attempts")

    file_path.write_text(content, encoding="utf-8")

    if metadata:
        meta_full = {
            "timestamp": datetime.now().isoformat(),
            "file": file_path.name,
            **metadata,
        }
        file_path.with_suffix(".json").write_text(json.dumps(meta_full, indent=2), encoding="utf-8")

    logger.info(f"Saved result to {file_path}")
    return file_path
