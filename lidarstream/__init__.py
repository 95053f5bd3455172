"""lidarstream – LiDAR point-stream processing and multi-sensor publishing.

Components:
- Image-plane to Cartesian conversion and mounting transforms (core.transform)
- Per-delivery frame assembly (core.frame)
- Sensor information registry (sensors.registry)
- Output routing to per-sensor or combined channels (output.router, output.sinks)
- Capture recording and replay with seek/loop/speed control (replay)
- Pipeline driver and lifecycle (runtime)
"""

from .core.errors import (
    ErrorCode,
    LidarStreamError,
    SensorError,
    PipelineInitError,
)
from .core.transform import RigidTransform, convert_image_point, convert_image_points
from .core.frame import Frame, FrameBuilder, RawPoint, CartesianPoint, begin_frame, build_frame
from .sensors.info import SensorInfo, SensorEvent, SensorModel
from .sensors.registry import SensorRegistry
from .sensors.feed import ManualFeed
from .output.router import OutputRouter
from .replay import CaptureReader, CaptureWriter, CaptureReplay
from .runtime import Pipeline, PipelineDriver
from .config import PipelineConfig, load_config
