"""
Pipeline services for the mesh motion tracker.

This module contains the per-frame tracking pipeline with its capture loop,
and the Redis publishing utilities for fragment events.
"""

from services.stream_utils import EventPublisher, FragmentEventBuilder, build_frame_events
from services.motion_service import MotionPipeline, ServiceConfig, FrameOutcome

__all__ = [
    'EventPublisher',
    'FragmentEventBuilder',
    'build_frame_events',
    'MotionPipeline',
    'ServiceConfig',
    'FrameOutcome',
]
