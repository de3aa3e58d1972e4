"""Logging helpers."""

from __future__ import annotations

import logging

from .io_utils import RunPaths

PACKAGE_LOGGER = "formsense"
LOG_FORMAT = "%(asctime)s | %(levelname)s | %(name)s | %(message)s"


def build_logger(run_paths: RunPaths, verbose: bool = False) -> logging.Logger:
    """Send every ``formsense.*`` logger to stderr and the run's log file.

    Handlers left over from an earlier run in the same process are closed and
    replaced, so each run directory only receives its own records.
    """
    package = logging.getLogger(PACKAGE_LOGGER)
    package.setLevel(logging.DEBUG if verbose else logging.INFO)
    package.propagate = False
    for handler in list(package.handlers):
        package.removeHandler(handler)
        handler.close()

    formatter = logging.Formatter(fmt=LOG_FORMAT, datefmt="%H:%M:%S")
    console_handler = logging.StreamHandler()
    console_handler.setLevel(logging.DEBUG if verbose else logging.INFO)
    console_handler.setFormatter(formatter)
    package.addHandler(console_handler)

    file_handler = logging.FileHandler(run_paths.log_path, encoding="utf-8")
    file_handler.setLevel(logging.DEBUG)
    file_handler.setFormatter(formatter)
    package.addHandler(file_handler)

    return package.getChild(f"run.{run_paths.run_id}")


def child_logger(parent: logging.Logger, area: str) -> logging.Logger:
    return parent.getChild(area)
