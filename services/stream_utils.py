# stream_utils.py
# Redis publishing of fragment tracking events
#
# Downstream consumers (renderers, loggers, dashboards) subscribe to the
# stream and never feed anything back into the tracker.

import json
import logging
import time

import numpy as np

logger = logging.getLogger(__name__)


class EventPublisher:
    """Serialise fragment events to JSON and push them to a Redis Stream or Pub/Sub channel."""

    MODES = ('stream', 'pubsub')

    def __init__(self, redis_client, mode='stream', stream_name='fragment_events',
                 channel_name='fragment_event_stream', max_stream_len=100000):
        if mode not in self.MODES:
            raise ValueError(f"Unknown publish mode: {mode}")

        self.redis = redis_client
        self.mode = mode
        self.stream_name = stream_name
        self.channel_name = channel_name
        self.max_stream_len = max_stream_len

        self.published_count = 0
        self.error_count = 0
        self.last_error = None

    def _send(self, payload):
        if self.mode == 'pubsub':
            self.redis.publish(self.channel_name, payload)
        else:
            # approximate trimming keeps XADD O(1)
            self.redis.xadd(self.stream_name, {'data': payload},
                            maxlen=self.max_stream_len, approximate=True)

    def publish_event(self, event_data):
        """False on failure; the error is counted and logged, never raised."""
        try:
            self._send(json.dumps(event_data))
        except Exception as e:
            self.error_count += 1
            self.last_error = str(e)
            logger.warning(f"[Publisher] {self.mode} publish failed: {e}")
            return False

        self.published_count += 1
        return True

    def publish_many(self, events):
        """Publish a batch; returns how many went through."""
        return sum(1 for event in events if self.publish_event(event))

    def get_stats(self):
        return {
            'mode': self.mode,
            'published': self.published_count,
            'errors': self.error_count,
            'last_error': self.last_error,
        }


class FragmentEventBuilder:
    """
    Builds fragment lifecycle events in one consistent format.
    """

    def __init__(self, source_id):
        self.source_id = source_id

    def build_new(self, fragment, frame_index):
        return self._build_base("FRAGMENT_NEW", fragment, frame_index)

    def build_update(self, fragment, frame_index, displacement):
        event = self._build_base("FRAGMENT_UPDATE", fragment, frame_index)
        event['displacement'] = float(displacement)
        return event

    def build_absent(self, fragment, frame_index):
        return self._build_base("FRAGMENT_ABSENT", fragment, frame_index)

    def build_pruned(self, fragment_id, frame_index):
        return {
            "source_id": self.source_id,
            "timestamp": time.time(),
            "frame_index": int(frame_index),
            "event_type": "FRAGMENT_PRUNED",
            "fragment_id": int(fragment_id),
            "centroid": None,
            "num_points": 0,
            "absence_count": None,
        }

    def _build_base(self, event_type, fragment, frame_index):
        centroid = fragment.centroid()
        return {
            "source_id": self.source_id,
            "timestamp": time.time(),
            "frame_index": int(frame_index),
            "event_type": event_type,
            "fragment_id": int(fragment.fragment_id) if fragment.fragment_id is not None else None,
            "centroid": centroid.tolist() if isinstance(centroid, np.ndarray) else list(centroid),
            "num_points": len(fragment),
            "absence_count": int(fragment.absence_count),
        }


def build_frame_events(builder, tracked, previous, result, frame_index):
    """
    Translate one ReconcileResult into events.

    Args:
        builder: FragmentEventBuilder
        tracked: Persisted fragments after reconciliation
        previous: Persisted fragments before reconciliation (same order the
            result's old indices refer to)
        result: ReconcileResult from MotionTracker.align_meshes
        frame_index: Index of the frame just processed
    """
    events = []
    by_id = {f.fragment_id: f for f in tracked}

    for i0, i1 in result.updated:
        frag = previous[i0]
        if frag.fragment_id in by_id:
            displacement = float(result.cost_matrix[i0, i1])
            events.append(builder.build_update(frag, frame_index, displacement))
    for i0 in result.absent:
        frag = previous[i0]
        if frag.fragment_id in by_id:
            events.append(builder.build_absent(frag, frame_index))

    # Fresh fragments are the tail of the tracked list, in adoption order
    if result.fresh:
        for frag in tracked[-len(result.fresh):]:
            events.append(builder.build_new(frag, frame_index))

    for fid in result.pruned:
        events.append(builder.build_pruned(fid, frame_index))
    return events
