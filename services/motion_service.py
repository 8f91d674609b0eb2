# motion_service.py
# Mesh motion tracking pipeline
#
# frame -> corners -> mesh -> split -> draw -> reconcile -> (optional) publish
#
# Run:
#     python -m services.motion_service --source video.mp4 --debug
#     python -m services.motion_service --source 0 --publish

import argparse
import logging
import os
import sys
from dataclasses import dataclass
from typing import List, Optional

import cv2
import numpy as np
import redis

from core.mesh_fragment import MeshFragment, build_mesh
from core.motion_tracker import MotionTracker, ReconcileResult, TrackerConfig
from services.stream_utils import EventPublisher, FragmentEventBuilder, build_frame_events
from utils.feature_extraction import DetectorConfig, extract_frame_points
from utils.rendering import COLOR_EDGE, COLOR_VERTEX, draw_labels, draw_meshes, draw_trails

logger = logging.getLogger(__name__)


# ============================================
# Service Configuration
# ============================================
@dataclass
class ServiceConfig:
    """Centralized configuration for the tracking pipeline."""
    source_id: str = "cam_0"

    # Geometry, as fractions of the frame height
    edge_length_ratio: float = 1.0
    displacement_ratio: float = 0.833
    gate_displacement: bool = False

    # Display
    window_name: str = "tracked"
    show_ids: bool = False
    show_trails: bool = False

    # Metrics
    stats_log_interval: int = 100  # Log every N frames

    # Redis Streams
    redis_host: str = "localhost"
    redis_port: int = 6379
    redis_db: int = 0
    stream_name: str = "fragment_events"
    publish_mode: str = "stream"

    @classmethod
    def from_env(cls) -> "ServiceConfig":
        return cls(
            source_id=os.environ.get('MMT_SOURCE_ID', 'cam_0'),
            edge_length_ratio=float(os.environ.get('MMT_EDGE_LENGTH_RATIO', 1.0)),
            displacement_ratio=float(os.environ.get('MMT_DISPLACEMENT_RATIO', 0.833)),
            gate_displacement=os.environ.get('MMT_GATE_DISPLACEMENT', 'false').lower() == 'true',
            show_ids=os.environ.get('MMT_SHOW_IDS', 'false').lower() == 'true',
            show_trails=os.environ.get('MMT_SHOW_TRAILS', 'false').lower() == 'true',
            stats_log_interval=int(os.environ.get('MMT_STATS_INTERVAL', 100)),
            redis_host=os.environ.get('MMT_REDIS_HOST', 'localhost'),
            redis_port=int(os.environ.get('MMT_REDIS_PORT', 6379)),
            redis_db=int(os.environ.get('MMT_REDIS_DB', 0)),
            stream_name=os.environ.get('MMT_STREAM_NAME', 'fragment_events'),
            publish_mode=os.environ.get('MMT_PUBLISH_MODE', 'stream'),
        )


@dataclass
class FrameOutcome:
    canvas: Optional[np.ndarray]
    fragments: List[MeshFragment]
    result: ReconcileResult
    num_points: int = 0
    max_edge_length: float = 0.0
    error: Optional[str] = None


class MotionPipeline:
    """
    Runs one frame at a time through extraction, splitting and reconciliation.

    A frame that fails extraction is processed as "no fragments observed" so
    tracking carries on with the next frame.
    """

    def __init__(self, tracker: Optional[MotionTracker] = None,
                 detector_config: Optional[DetectorConfig] = None,
                 service_config: Optional[ServiceConfig] = None,
                 publisher: Optional[EventPublisher] = None):
        self.tracker = tracker or MotionTracker()
        self.detector_config = detector_config or DetectorConfig()
        self.config = service_config or ServiceConfig()
        self.publisher = publisher
        self.event_builder = FragmentEventBuilder(self.config.source_id)

        self.frame_index = 0
        self.stats = {
            'frames': 0,
            'errors': 0,
            'points': 0,
            'fragments': 0,
            'events': 0,
        }
        self._last_stats_log = 0

    def _split_frame(self, frame, max_edge_length):
        points = extract_frame_points(frame, self.detector_config)
        mesh = build_mesh(points, history_size=self.tracker.config.history_size)
        if mesh is None:
            return points, []
        fragments = mesh.split(max_edge_length)
        logger.debug(f"... {len(fragments)} meshes splitted")
        return points, fragments

    def process_frame(self, frame) -> FrameOutcome:
        self.frame_index += 1
        error = None
        num_points = 0
        max_edge_length = 0.0
        fragments: List[MeshFragment] = []

        try:
            if frame is None or getattr(frame, 'ndim', 0) < 2:
                raise ValueError("Empty frame")
            height = frame.shape[0]
            max_edge_length = height * self.config.edge_length_ratio
            if self.config.gate_displacement:
                self.tracker.config.max_displacement = height * self.config.displacement_ratio

            points, fragments = self._split_frame(frame, max_edge_length)
            num_points = len(points)
        except (cv2.error, ValueError) as e:
            # Degrade to "nothing observed" for this frame
            logger.warning(f"[Pipeline] Frame {self.frame_index} dropped: {e}")
            self.stats['errors'] += 1
            error = str(e)
            fragments = []

        canvas = None
        if frame is not None and getattr(frame, 'ndim', 0) >= 2:
            canvas = frame.copy()
            draw_meshes(canvas, fragments, COLOR_VERTEX, COLOR_EDGE, max_edge_length)

        previous = self.tracker.fragments
        result = self.tracker.align_meshes(fragments)

        # Ids and histories only exist once reconciliation has run
        if canvas is not None:
            if self.config.show_trails:
                draw_trails(canvas, self.tracker.fragments)
            if self.config.show_ids:
                draw_labels(canvas, self.tracker.fragments)

        if self.publisher is not None:
            events = build_frame_events(self.event_builder, self.tracker.fragments,
                                        previous, result, self.frame_index)
            self.stats['events'] += self.publisher.publish_many(events)

        self.stats['frames'] += 1
        self.stats['points'] += num_points
        self.stats['fragments'] += len(fragments)

        if self.frame_index - self._last_stats_log >= self.config.stats_log_interval:
            self.log_stats()
            self._last_stats_log = self.frame_index

        return FrameOutcome(canvas, fragments, result, num_points, max_edge_length, error)

    def get_stats(self):
        stats = dict(self.stats)
        stats['tracker'] = self.tracker.get_stats()
        if self.publisher is not None:
            stats['publisher'] = self.publisher.get_stats()
        return stats

    def log_stats(self):
        stats = self.get_stats()
        frames = max(stats['frames'], 1)
        tracker_stats = stats['tracker']
        logger.info(f"[Pipeline] Stats: frames={stats['frames']}, "
                    f"errors={stats['errors']}, "
                    f"avg_points={stats['points'] / frames:.1f}, "
                    f"avg_fragments={stats['fragments'] / frames:.1f}, "
                    f"tracked={tracker_stats['tracked']}, "
                    f"pruned={tracker_stats['pruned']}")


def create_publisher(config: ServiceConfig) -> Optional[EventPublisher]:
    """Connect to Redis; returns None when the server is unreachable."""
    client = redis.Redis(host=config.redis_host, port=config.redis_port,
                         db=config.redis_db, decode_responses=True)
    try:
        client.ping()
    except redis.RedisError as e:
        logger.error(f"Redis Connection Error: {e}. Publishing disabled.")
        return None
    return EventPublisher(client, mode=config.publish_mode, stream_name=config.stream_name)


def open_source(source):
    """Camera index ("0", "1", ...) or a path/URL."""
    if isinstance(source, str) and source.isdigit():
        source = int(source)
    cap = cv2.VideoCapture(source)
    if not cap.isOpened():
        raise IOError(f"Cannot open video source: {source}")
    return cap


def run(pipeline: MotionPipeline, source, display=True, max_frames=None):
    """Capture loop: ends at end of stream, on 'q'/ESC, or after max_frames."""
    cap = open_source(source)
    logger.info(f"[{pipeline.config.source_id}] Started on {source}")
    try:
        while True:
            ret, frame = cap.read()
            if not ret:
                logger.info(f"[{pipeline.config.source_id}] End of stream")
                break

            outcome = pipeline.process_frame(frame)

            if display and outcome.canvas is not None:
                cv2.imshow(pipeline.config.window_name, outcome.canvas)
                key = cv2.waitKey(1) & 0xFF
                if key in (ord('q'), 27):
                    break

            if max_frames is not None and pipeline.frame_index >= max_frames:
                break
    finally:
        cap.release()
        if display:
            cv2.destroyAllWindows()
        pipeline.log_stats()


def build_arg_parser():
    parser = argparse.ArgumentParser(description='Mesh Motion Tracker')
    parser.add_argument('--source', default='0',
                        help='Video file, stream URL or camera index')
    parser.add_argument('--debug', action='store_true',
                        help='Log per-frame vertex/fragment/match counts')
    parser.add_argument('--no-display', action='store_true',
                        help='Do not open the "tracked" window')
    parser.add_argument('--publish', action='store_true',
                        help='Publish fragment events to Redis')
    parser.add_argument('--max-absence', type=int, default=None,
                        help='Drop fragments absent for more than N frames')
    parser.add_argument('--keep-absent', action='store_true',
                        help='Never drop absent fragments')
    parser.add_argument('--gate-displacement', action='store_true',
                        help='Reject matches farther than displacement_ratio * frame height')
    parser.add_argument('--show-ids', action='store_true',
                        help='Label fragments with their ids')
    parser.add_argument('--show-trails', action='store_true',
                        help='Draw each fragment\'s centroid history')
    parser.add_argument('--max-frames', type=int, default=None,
                        help='Stop after N frames')
    return parser


def main(argv=None):
    args = build_arg_parser().parse_args(argv)

    logging.basicConfig(
        level=logging.DEBUG if args.debug else logging.INFO,
        format='%(asctime)s %(levelname)s %(name)s: %(message)s'
    )

    tracker_config = TrackerConfig.from_env()
    if args.keep_absent:
        tracker_config.max_absence = None
    elif args.max_absence is not None:
        tracker_config.max_absence = args.max_absence

    service_config = ServiceConfig.from_env()
    if args.gate_displacement:
        service_config.gate_displacement = True
    if args.show_ids:
        service_config.show_ids = True
    if args.show_trails:
        service_config.show_trails = True

    publisher = create_publisher(service_config) if args.publish else None

    pipeline = MotionPipeline(
        tracker=MotionTracker(tracker_config),
        detector_config=DetectorConfig.from_env(),
        service_config=service_config,
        publisher=publisher,
    )

    logger.info("=" * 60)
    logger.info("Mesh Motion Tracker")
    logger.info(f"Source: {args.source}")
    logger.info(f"Max absence: {tracker_config.max_absence}")
    logger.info(f"Displacement gating: {'ENABLED' if service_config.gate_displacement else 'DISABLED'}")
    logger.info(f"Publishing: {'ENABLED' if publisher is not None else 'DISABLED'}")
    logger.info("=" * 60)

    try:
        run(pipeline, args.source, display=not args.no_display, max_frames=args.max_frames)
    except IOError as e:
        logger.error(str(e))
        return 1
    except KeyboardInterrupt:
        logger.info("Shutdown signal received...")
    return 0


if __name__ == "__main__":
    sys.exit(main())
