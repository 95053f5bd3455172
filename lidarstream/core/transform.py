from __future__ import annotations
from dataclasses import dataclass, field
from typing import Sequence, Tuple
import numpy as np


def convert_image_point(image_x: float, image_z: float, distance: float) -> Tuple[float, float, float]:
    """Convert one image-plane measurement (focal length 1) to a 3d point.

    The sensor looks along +y; image x/z grow opposite to world x/z.
    """
    x, y, z = convert_image_points(
        np.asarray([image_x], dtype=np.float32),
        np.asarray([image_z], dtype=np.float32),
        np.asarray([distance], dtype=np.float32),
    )[0]
    return float(x), float(y), float(z)


def convert_image_points(image_x: np.ndarray, image_z: np.ndarray, distance: np.ndarray) -> np.ndarray:
    """Vectorised :func:`convert_image_point`; returns an (N, 3) float32 array."""
    ix = np.asarray(image_x, dtype=np.float32)
    iz = np.asarray(image_z, dtype=np.float32)
    d = np.asarray(distance, dtype=np.float32)
    # hypotenuse >= 1, no zero division
    hyp = np.sqrt(ix * ix + iz * iz + np.float32(1.0))
    ratio = d / hyp
    xyz = np.empty((ix.shape[0], 3), dtype=np.float32)
    xyz[:, 0] = -ix * ratio
    xyz[:, 1] = ratio
    xyz[:, 2] = -iz * ratio
    return xyz


def quaternion_to_matrix(rotation: Sequence[float]) -> np.ndarray:
    """Closed-form rotation matrix for a unit quaternion ``(x, y, z, w)``.

    The quaternion is NOT normalised: callers must pass a unit quaternion.
    """
    x, y, z, w = (float(v) for v in rotation)
    xx, xy, xz, xw = x * x, x * y, x * z, x * w
    yy, yz, yw = y * y, y * z, y * w
    zz, zw = z * z, z * w
    return np.array(
        [
            [1.0 - 2.0 * (yy + zz), 2.0 * (xy - zw), 2.0 * (xz + yw)],
            [2.0 * (xy + zw), 1.0 - 2.0 * (xx + zz), 2.0 * (yz - xw)],
            [2.0 * (xz - yw), 2.0 * (yz + xw), 1.0 - 2.0 * (xx + yy)],
        ],
        dtype=np.float64,
    )


@dataclass(frozen=True)
class RigidTransform:
    """Translation + rotation compiled once for repeated application.

    Used for sensor mounting correction (sensor frame -> vehicle frame).
    """

    R: np.ndarray = field(default_factory=lambda: np.eye(3))  # (3,3)
    t: np.ndarray = field(default_factory=lambda: np.zeros(3))  # (3,)

    def __post_init__(self) -> None:
        R = np.asarray(self.R, dtype=np.float64).reshape(3, 3).copy()
        t = np.asarray(self.t, dtype=np.float64).reshape(3).copy()
        R.flags.writeable = False
        t.flags.writeable = False
        object.__setattr__(self, "R", R)
        object.__setattr__(self, "t", t)

    @staticmethod
    def compile(translation: Sequence[float], rotation: Sequence[float]) -> "RigidTransform":
        """Create from translation ``(x, y, z)`` and unit quaternion ``(x, y, z, w)``."""
        if len(translation) != 3:
            raise ValueError("translation must have 3 components.")
        if len(rotation) != 4:
            raise ValueError("rotation must be a quaternion (x, y, z, w).")
        return RigidTransform(R=quaternion_to_matrix(rotation), t=np.asarray(translation, dtype=np.float64))

    @staticmethod
    def identity() -> "RigidTransform":
        return RigidTransform()

    def apply(self, xyz: np.ndarray) -> np.ndarray:
        """Apply ``R @ p + t`` to a (3,) point or (N, 3) array, in place.

        Math is done in float64 and written back in the array's own dtype.
        Lists and tuples cannot be updated in place and raise TypeError.
        """
        if not isinstance(xyz, np.ndarray):
            raise TypeError(f"apply() needs a numpy array, got {type(xyz).__name__}")
        pts = xyz
        out = pts.reshape(-1, 3).astype(np.float64) @ self.R.T + self.t
        pts[...] = out.reshape(pts.shape)
        return pts

    def inverse(self) -> "RigidTransform":
        R_inv = self.R.T
        return RigidTransform(R=R_inv, t=-(R_inv @ self.t))
