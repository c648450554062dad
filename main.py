#!/usr/bin/env python3
"""
facecloak - Main Application

Re-encodes a video with every face concealed: faces are detected every few
frames, tracked across the frames in between, blurred, pixelated or covered
with an emoji on every frame, and the original audio is carried over.
"""

import sys
import argparse
import logging
import json
import threading
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, Optional

from facecloak.config import load_config
from facecloak.errors import CancellationError, FaceCloakError, describe_error
from facecloak.pipeline import PipelineCoordinator, ProcessedVideo

logger = logging.getLogger("facecloak")


def setup_logging(log_file: Optional[str] = "facecloak.log", debug: bool = False):
    """Configure root logging to stdout and an optional log file."""
    handlers = [logging.StreamHandler(sys.stdout)]
    if log_file:
        handlers.append(logging.FileHandler(log_file))

    logging.basicConfig(
        level=logging.DEBUG if debug else logging.INFO,
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
        handlers=handlers,
        force=True,
    )


class FaceCloakApp:
    """Main application class for facecloak."""

    def __init__(self, config_path: str, overrides: Optional[Dict[str, Any]] = None):
        """Initialize the application with configuration."""
        self.config = load_config(config_path)
        for key, value in (overrides or {}).items():
            if value is not None:
                setattr(self.config, key, value)
        # Re-run conversion and validation after overrides
        self.config.__post_init__()

        self.cancel_event = threading.Event()
        self.coordinator = PipelineCoordinator(self.config)
        self.result: Optional[ProcessedVideo] = None
        self._last_logged_step = -1

        logger.info("facecloak initialized")
        logger.info(f"Configuration loaded from: {config_path}")

    def validate_inputs(self) -> bool:
        """Validate that the input video exists."""
        if not self.config.input_video:
            logger.error("No input video specified")
            logger.error("Pass --input or set input_video in the configuration file")
            return False

        if not self.config.input_video.exists():
            logger.error(f"Input video not found: {self.config.input_video}")
            return False

        logger.info(f"Input video: {self.config.input_video}")
        logger.info(f"Effect: {self.config.effect}")
        return True

    def on_progress(self, fraction: float):
        """Log progress in 10% steps."""
        step = int(fraction * 10)
        if step > self._last_logged_step:
            self._last_logged_step = step
            logger.info(f"Progress: {fraction * 100:.0f}%")

    def run_pipeline(self, output_path: Optional[Path] = None) -> ProcessedVideo:
        """Execute the concealment pipeline."""
        logger.info("Starting facecloak pipeline")
        self.config.output_dir.mkdir(parents=True, exist_ok=True)

        try:
            self.result = self.coordinator.process_file(
                self.config.input_video,
                output_path=output_path,
                progress_callback=self.on_progress,
                cancel_event=self.cancel_event,
            )
        except CancellationError:
            logger.info("Processing cancelled")
            raise
        except FaceCloakError as e:
            logger.error(describe_error(e))
            raise

        logger.info(f"Processed video: {self.result.processed_path}")
        logger.info(f"Faces concealed (max simultaneous): {self.result.max_faces_concealed}")
        return self.result

    def generate_debug_report(self) -> Path:
        """Generate debug report with processing statistics."""
        state = self.coordinator.last_state
        debug_report = {
            "config": self.config.to_dict(),
            "timestamp": datetime.now().isoformat(timespec="seconds"),
            "input_video": str(self.config.input_video),
            "output_video": str(self.result.processed_path) if self.result else None,
            "max_faces_concealed": self.result.max_faces_concealed if self.result else None,
            "processed_frames": state.processed_frames if state else 0,
            "pipeline_status": state.status.value if state else "not_started",
        }

        self.config.debug_dir.mkdir(parents=True, exist_ok=True)
        debug_file = self.config.debug_dir / "processing_report.json"
        with open(debug_file, 'w', encoding='utf-8') as f:
            json.dump(debug_report, f, indent=2)

        logger.info(f"Debug report saved: {debug_file}")
        return debug_file


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="facecloak - Conceal every face in a video"
    )
    parser.add_argument(
        "--config",
        type=str,
        default="config.yaml",
        help="Path to configuration file (default: config.yaml)"
    )
    parser.add_argument(
        "--input",
        type=str,
        help="Input video (overrides input_video from the configuration)"
    )
    parser.add_argument(
        "--output",
        type=str,
        help="Output video path (default: <output_dir>/<name>_cloaked.mp4)"
    )
    parser.add_argument(
        "--effect",
        choices=["blur", "pixelate", "emoji"],
        help="Concealment effect (overrides the configuration)"
    )
    parser.add_argument(
        "--detection-interval",
        type=int,
        help="Run the face detector every N frames"
    )
    parser.add_argument(
        "--validate-only",
        action="store_true",
        help="Only validate inputs without processing"
    )
    parser.add_argument(
        "--report",
        action="store_true",
        help="Write debug/processing_report.json after the run"
    )
    parser.add_argument(
        "--debug",
        action="store_true",
        help="Enable debug logging"
    )
    return parser


def main(argv=None) -> int:
    """Main entry point for facecloak."""
    args = build_parser().parse_args(argv)
    setup_logging(debug=args.debug)

    overrides = {
        "input_video": args.input,
        "effect": args.effect,
        "detection_interval": args.detection_interval,
    }

    app = None
    try:
        app = FaceCloakApp(args.config, overrides)

        if not app.validate_inputs():
            return 1

        if args.validate_only:
            logger.info("Input validation completed successfully")
            return 0

        app.run_pipeline(Path(args.output) if args.output else None)

        if args.report:
            app.generate_debug_report()
        return 0

    except KeyboardInterrupt:
        if app is not None:
            app.cancel_event.set()
        logger.info("Processing interrupted by user")
        return 130
    except CancellationError:
        return 130
    except (FaceCloakError, ValueError) as e:
        logger.error(f"Fatal error: {e}")
        if app is not None and args.report:
            app.generate_debug_report()
        return 1


if __name__ == "__main__":
    sys.exit(main())
