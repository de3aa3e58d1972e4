"""Where a detection run keeps its summary, page copy and log."""

from __future__ import annotations

import json
import secrets
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, Optional

DATA_DIR = Path.cwd() / "data"

SUMMARY_FILE = "summary.json"
PAGE_FILE = "page.html"
LOG_FILE = "formsense.log"


@dataclass(slots=True)
class RunPaths:
    """``<data>/<run_id>/`` holds the log; ``<run_id>/<command>/`` the artifacts."""

    run_id: str
    command: str
    base_dir: Path
    command_dir: Path

    @property
    def log_path(self) -> Path:
        return self.base_dir / LOG_FILE

    @property
    def summary_path(self) -> Path:
        return self.command_dir / SUMMARY_FILE

    @property
    def page_path(self) -> Path:
        return self.command_dir / PAGE_FILE


def generate_run_id() -> str:
    timestamp = datetime.now(timezone.utc).strftime("%Y%m%d-%H%M%S")
    return f"{timestamp}-{secrets.token_hex(2)}"


def prepare_run_directories(
    run_id: str, command: str, data_dir: Optional[Path] = None
) -> RunPaths:
    base_dir = (data_dir or DATA_DIR) / run_id
    command_dir = base_dir / command
    command_dir.mkdir(parents=True, exist_ok=True)
    return RunPaths(run_id=run_id, command=command, base_dir=base_dir, command_dir=command_dir)


def write_summary(run_paths: RunPaths, summary: Dict[str, Any]) -> Path:
    path = run_paths.summary_path
    with path.open("w", encoding="utf-8") as handle:
        json.dump(summary, handle, indent=2, ensure_ascii=False)
    return path
