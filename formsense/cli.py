"""Command-line interface for form detection."""

from __future__ import annotations

import argparse
import asyncio
import json
import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, List, Optional

from .browser import BrowserConfig, DetectionBrowser
from .config import DetectionConfig, load_config
from .detection import ProgressiveDetector
from .dom import StaticDocumentSource
from .frames import FrameTraversal
from .io_utils import RunPaths, generate_run_id, prepare_run_directories, write_summary
from .logging_utils import build_logger, child_logger
from .monitor import DynamicContentMonitor
from .network_capture import NetworkCapture
from .playwright_host import PlaywrightDocumentSource, watch_frames
from .registry import ContainerInfo, UnifiedFieldRegistry
from .session import DetectionSession


@dataclass(slots=True)
class DetectInputs:
    run_paths: RunPaths
    logger: logging.Logger
    config: DetectionConfig
    url: Optional[str] = None
    html_path: Optional[Path] = None
    quick: bool = False
    test_mode: bool = False
    headed: bool = False
    watch_seconds: float = 0.0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="Detect form-like containers and their fields on a page"
    )

    subparsers = parser.add_subparsers(dest="command", required=True)

    common = argparse.ArgumentParser(add_help=False)
    common.add_argument("--run-id", dest="run_id", help="Optional run identifier")
    common.add_argument("--verbose", action="store_true", help="Enable verbose logging")

    detect_parser = subparsers.add_parser(
        "detect", help="Run progressive form detection", parents=[common]
    )
    source = detect_parser.add_mutually_exclusive_group(required=True)
    source.add_argument("--url", help="Page to open in a browser")
    source.add_argument("--html", type=Path, help="Local HTML file to analyse statically")
    detect_parser.add_argument(
        "--quick", action="store_true", help="Single immediate pass, no waiting"
    )
    detect_parser.add_argument(
        "--test-mode", action="store_true", help="Attach sample test values to fields"
    )
    detect_parser.add_argument("--config", type=Path, help="JSON file overriding detection settings")
    detect_parser.add_argument("--headed", action="store_true", help="Show the browser window")
    detect_parser.add_argument(
        "--watch",
        type=float,
        default=0.0,
        help="Keep the page open this many seconds and re-detect on changes",
    )
    return parser


def _container_summary(
    info: ContainerInfo, detector: ProgressiveDetector
) -> Dict[str, Any]:
    summary = info.to_dict()
    summary["candidate"] = detector.describe([info.container])[0]
    return summary


async def _summarize(
    inputs: DetectInputs,
    detector: ProgressiveDetector,
    registry: UnifiedFieldRegistry,
    infos: List[ContainerInfo],
    network: Optional[NetworkCapture] = None,
) -> Dict[str, Any]:
    buttons = registry.get_field_buttons_data()
    await registry.flush()
    return {
        "run_id": inputs.run_paths.run_id,
        "source": inputs.url or str(inputs.html_path),
        "mode": "quick" if inputs.quick else "progressive",
        "containers": [_container_summary(info, detector) for info in infos],
        "field_buttons": [button.to_dict() for button in buttons],
        "registry": registry.diagnostics(),
        "detection": detector.stats.to_dict(),
        "traversal": detector.traversal.report.to_dict(),
        "schemas": [signal.to_dict() for signal in network.signals] if network else [],
    }


async def detect_static(inputs: DetectInputs) -> Dict[str, Any]:
    logger = inputs.logger
    html = inputs.html_path.read_text(encoding="utf-8")
    source = StaticDocumentSource(html, url=inputs.html_path.resolve().as_uri())
    traversal = FrameTraversal(
        same_origin_only=inputs.config.same_origin_only,
        max_depth=inputs.config.max_frame_depth,
        logger=child_logger(logger, "frames"),
    )
    detector = ProgressiveDetector(
        source,
        config=inputs.config,
        traversal=traversal,
        logger=child_logger(logger, "detection"),
    )
    registry = UnifiedFieldRegistry(test_mode=inputs.test_mode, logger=child_logger(logger, "registry"))
    session = DetectionSession(detector, registry, quick=inputs.quick, logger=child_logger(logger, "session"))
    infos = await session.run("cli")
    return await _summarize(inputs, detector, registry, infos)


async def detect_live(inputs: DetectInputs) -> Dict[str, Any]:
    logger = inputs.logger
    config = inputs.config
    network = NetworkCapture(logger=child_logger(logger, "network"))
    async with DetectionBrowser(
        BrowserConfig(headless=not inputs.headed),
        network=network,
        logger=child_logger(logger, "browser"),
    ) as browser:
        page = await browser.open(inputs.url)
        await browser.save_html(inputs.run_paths.page_path)
        feed = browser.feed

        source = PlaywrightDocumentSource(
            page, max_depth=config.max_frame_depth, logger=child_logger(logger, "playwright")
        )
        traversal = FrameTraversal(
            same_origin_only=config.same_origin_only,
            max_depth=config.max_frame_depth,
            logger=child_logger(logger, "frames"),
        )
        monitor = DynamicContentMonitor(config.stability, logger=child_logger(logger, "monitor"))
        for document in traversal.collect(await source.load()):
            monitor.watch(document, feed)

        detector = ProgressiveDetector(
            source,
            config=config,
            traversal=traversal,
            monitor=monitor,
            network=network,
            logger=child_logger(logger, "detection"),
        )
        registry = UnifiedFieldRegistry(test_mode=inputs.test_mode, logger=child_logger(logger, "registry"))
        session = DetectionSession(
            detector, registry, quick=inputs.quick, logger=child_logger(logger, "session")
        )
        infos = await session.run_with_retries()
        result = await _summarize(inputs, detector, registry, infos, network)

        if inputs.watch_seconds > 0:
            rerun_count = 0

            def on_result(trigger: str, latest: List[ContainerInfo]) -> None:
                nonlocal rerun_count
                rerun_count += 1
                logger.info("Re-detected %s container(s) after %s", len(latest), trigger)

            stop_results = session.on_result(on_result)
            stop_frames = watch_frames(page, source, traversal, logger=child_logger(logger, "playwright"))
            session.attach(traversal=traversal, monitor=monitor, network=network)
            try:
                await asyncio.sleep(inputs.watch_seconds)
                if session.in_progress:
                    await session.run("watch-end")
            finally:
                session.detach()
                stop_frames()
                stop_results()
            if rerun_count:
                result = await _summarize(inputs, detector, registry, session.last_result, network)
            result["reruns"] = rerun_count

        monitor.close()
        return result


async def run_detection(inputs: DetectInputs) -> Dict[str, Any]:
    if inputs.url:
        return await detect_live(inputs)
    return await detect_static(inputs)


def main(argv: list[str] | None = None) -> None:
    parser = build_parser()
    args = parser.parse_args(argv)

    run_id = args.run_id or generate_run_id()
    run_paths = prepare_run_directories(run_id, args.command)
    logger = build_logger(run_paths, verbose=args.verbose)

    if args.command == "detect":
        try:
            config = load_config(args.config)
        except (OSError, KeyError, ValueError) as exc:
            parser.error(f"Invalid config: {exc}")
        inputs = DetectInputs(
            run_paths=run_paths,
            logger=logger,
            config=config,
            url=args.url,
            html_path=args.html,
            quick=args.quick,
            test_mode=args.test_mode,
            headed=args.headed,
            watch_seconds=args.watch,
        )
        result = asyncio.run(run_detection(inputs))
    else:
        parser.error(f"Unknown command: {args.command}")

    write_summary(run_paths, result)

    print(json.dumps(result, indent=2))


if __name__ == "__main__":  # pragma: no cover
    main()
