"""Command-line card scanner for video files, webcams and still images."""

import argparse
import json
import logging
import threading
from typing import List, Optional

import cv2

from config import Config, configure_logging
from models.text_recognizer import EasyOCRRecognizer
from processors.frame_source import VideoFrameSource
from processors.picture_processor import PictureProcessor
from processors.scan_pipeline import ScanPipeline
from processors.text_region_extractor import TextRegionExtractor
from utils.annotator import FrameAnnotator
from utils.data_classes import FULL_FRAME, RegionOfInterest, ScanOutcome, ScanState

logger = logging.getLogger(__name__)


def parse_region(value: str) -> RegionOfInterest:
    """'x,y,width,height' in normalized coordinates."""
    try:
        x, y, width, height = (float(part) for part in value.split(','))
    except ValueError:
        raise argparse.ArgumentTypeError(f"Region must be x,y,width,height: {value}")
    region = RegionOfInterest(x, y, width, height)
    if region.is_empty:
        raise argparse.ArgumentTypeError("Region must not be empty")
    return region


def parse_arguments(argv: Optional[List[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Scan a payment card from video or images")
    source = parser.add_mutually_exclusive_group(required=True)
    source.add_argument("--video", help="Video file to read frames from")
    source.add_argument("--webcam", type=int, help="Webcam index")
    source.add_argument("--images", nargs="+", help="Still images scanned as consecutive frames")
    parser.add_argument("--config", default="config.yaml", help="Path to the YAML configuration")
    parser.add_argument("--region", type=parse_region, default=FULL_FRAME,
                        help="Region of interest as normalized x,y,width,height")
    parser.add_argument("--timeout", type=float, help="Session timeout in seconds")
    parser.add_argument("--require-expiry", action="store_true", help="Only finish once an expiry date is read")
    parser.add_argument("--display", action="store_true", help="Show the annotated preview window")
    return parser.parse_args(argv)


def session_options(args: argparse.Namespace) -> dict:
    options = {}
    if args.timeout is not None:
        options['sessionTimeoutSeconds'] = args.timeout
    if args.require_expiry:
        options['requireExpiry'] = True
    return options


def run(args: argparse.Namespace, config: Config) -> ScanOutcome:
    extractor = TextRegionExtractor(
        EasyOCRRecognizer(config.ocr), config.extraction, config.scan.min_observation_confidence
    )
    finished = threading.Event()
    outcomes: List[ScanOutcome] = []

    def on_outcome(outcome: ScanOutcome):
        outcomes.append(outcome)
        finished.set()

    pipeline = ScanPipeline(extractor, config.scan, listener=on_outcome)
    try:
        if args.images:
            return PictureProcessor(pipeline).scan(args.images, args.region, session_options(args))

        session = pipeline.start_session(args.region, session_options(args))
        preview = None
        if args.display:
            annotator = FrameAnnotator(config.preview, config.fonts)

            def preview(image):
                cv2.imshow("Card Scan", annotator.annotate(image, args.region, pipeline.last_observations))
                return (cv2.waitKey(1) & 0xFF) not in (27, ord('q'))

        source = VideoFrameSource(
            args.webcam if args.webcam is not None else args.video,
            pipeline, args.region, on_frame=preview
        )
        if not source.run():
            pipeline.stop_session()
        pipeline.wait_idle()
        if not finished.is_set():
            # Stream ended before a card was read
            pipeline.stop_session()
        return outcomes[0] if outcomes else ScanOutcome(session.state, session.record, session.elapsed())
    finally:
        pipeline.close()
        if args.display:
            cv2.destroyAllWindows()


def main(argv: Optional[List[str]] = None) -> int:
    args = parse_arguments(argv)
    config = Config(args.config)
    configure_logging(config.logging)
    outcome = run(args, config)
    print(json.dumps(outcome.to_dict(), ensure_ascii=False, indent=2))
    return 0 if outcome.state is ScanState.COMPLETED else 1


if __name__ == "__main__":
    raise SystemExit(main())
