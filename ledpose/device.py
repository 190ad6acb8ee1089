"""
Device Geometry Module

Read-only 3D models of the light targets. Coordinates are in millimetres with
X to the right, Y up and Z toward the camera. LED ids come first in the dense
index, strip edge ids after them.
"""

from dataclasses import dataclass
from typing import Dict, List, Tuple

import numpy as np


@dataclass(frozen=True)
class Landmark:
    id: str
    x: float
    y: float
    z: float

    @property
    def point(self) -> np.ndarray:
        return np.array([self.x, self.y, self.z], dtype=np.float64)


class DeviceGeometry:
    """
    Immutable landmark model of one device variant.

    LED ids follow the quadrant convention used by the matcher:
    LED1 right-top, LED2 right-bottom, LED3 left-bottom, LED4 left-top,
    LED5 the protruding light above the rectangle.
    """

    LED_IDS = ('LED1', 'LED2', 'LED3', 'LED4', 'LED5')

    def __init__(self, name: str, leds: List[Landmark], strip_edges: List[Landmark] = None):
        if not leds:
            raise ValueError(f"Device '{name}' has no LED landmarks")
        self.name = name
        self._leds = tuple(leds)
        self._strip_edges = tuple(strip_edges or ())

        ids = [lm.id for lm in self._leds + self._strip_edges]
        if len(set(ids)) != len(ids):
            raise ValueError(f"Device '{name}' has duplicate landmark ids")
        missing = [i for i in self.LED_IDS if i not in ids]
        if missing:
            raise ValueError(f"Device '{name}' is missing LED landmarks {missing}")

        self._index = {fid: i for i, fid in enumerate(ids)}
        self._points = np.array([[lm.x, lm.y, lm.z] for lm in self._leds + self._strip_edges],
                                dtype=np.float64)
        self._points.setflags(write=False)

    @property
    def leds(self) -> Tuple[Landmark, ...]:
        return self._leds

    @property
    def strip_edges(self) -> Tuple[Landmark, ...]:
        return self._strip_edges

    @property
    def has_strips(self) -> bool:
        return len(self._strip_edges) > 0

    @property
    def feature_ids(self) -> Tuple[str, ...]:
        return tuple(self._index)

    @property
    def points(self) -> np.ndarray:
        """(n, 3) array in dense-index order."""
        return self._points

    @property
    def strip_count(self) -> int:
        return len(self._strip_edges) // 2

    def index_of(self, feature_id: str) -> int:
        return self._index[feature_id]

    def point3d(self, feature_id: str) -> np.ndarray:
        return self._points[self._index[feature_id]].copy()

    def is_edge(self, feature_id: str) -> bool:
        return self._index[feature_id] >= len(self._leds)

    @property
    def expected_aspect_ratio(self) -> float:
        """Width / height of the LED1-LED4 rectangle."""
        led1 = self.point3d('LED1')
        led2 = self.point3d('LED2')
        led3 = self.point3d('LED3')
        return float(abs(led1[0] - led3[0]) / abs(led1[1] - led2[1]))

    @property
    def protrusion_offset(self) -> float:
        """Height of LED5 above the rectangle top, relative to rectangle height."""
        led1 = self.point3d('LED1')
        led2 = self.point3d('LED2')
        led5 = self.point3d('LED5')
        return float((led5[1] - led1[1]) / abs(led1[1] - led2[1]))

    def __repr__(self) -> str:
        return f"DeviceGeometry({self.name!r}, leds={len(self._leds)}, strip_edges={len(self._strip_edges)})"


def _leds(half_w: float, half_h: float, top: Tuple[float, float]) -> List[Landmark]:
    return [
        Landmark('LED1', half_w, half_h, 0.0),
        Landmark('LED2', half_w, -half_h, 0.0),
        Landmark('LED3', -half_w, -half_h, 0.0),
        Landmark('LED4', -half_w, half_h, 0.0),
        Landmark('LED5', 0.0, top[0], top[1]),
    ]


LED_BEACON = DeviceGeometry('led_beacon', _leds(33.65, 21.8, (63.09, 20.1)))

STRIP_BEACON = DeviceGeometry(
    'strip_beacon',
    _leds(62.0, 43.3, (151.6, 40.0)),
    [
        Landmark('ST_L', -48.0, 43.3, 0.0),
        Landmark('ST_R', 48.0, 43.3, 0.0),
        Landmark('SM_L', -48.0, 0.0, 0.0),
        Landmark('SM_R', 48.0, 0.0, 0.0),
        Landmark('SB_L', -48.0, -43.3, 0.0),
        Landmark('SB_R', 48.0, -43.3, 0.0),
    ],
)

DEVICES: Dict[str, DeviceGeometry] = {
    LED_BEACON.name: LED_BEACON,
    STRIP_BEACON.name: STRIP_BEACON,
}


def get_device(name: str) -> DeviceGeometry:
    if name not in DEVICES:
        raise ValueError(f"Unknown device '{name}' (expected one of {', '.join(DEVICES)})")
    return DEVICES[name]
