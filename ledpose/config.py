"""
Configuration settings for the LED pose pipeline.
Centralized configuration for all modules.
"""


class PipelineConfig:
    """Configuration for the entire LED pose pipeline."""

    # Score-map preprocessing (CPU rendition of the GPU blue filter)
    PREPROCESSING = {
        'DOWNSCALE': 4,
        'THRESHOLD': 0.12,
        'THRESHOLD_LIMITS': (0.02, 0.50),
        'BRIGHTNESS_FLOOR': 0.15,
        'HUE_CENTER': 0.63,
        'HUE_RANGE': 0.12,
        'SAT_MIN': 0.15,
        'SATURATED_BRIGHTNESS': 0.85,
        'SATURATED_BLUE_EXCESS': 0.02,
        'SIGNAL_BRIGHTNESS': 200,
        'ADAPTIVE': {
            'ENABLED': True,
            'PERCENTILE': 0.97,
            'FACTOR': 0.6,
            'MIN': 0.08,
            'MAX': 0.20,
            'BLEND': 0.1
        }
    }

    # Connected-component point blobs
    BLOB_DETECTION = {
        'MIN_AREA': 1,
        'MAX_AREA': 200,
        'MAX_ASPECT_RATIO': 3.0,
        'MIN_COLOR_DIFF': 10,
        'SATURATED_BRIGHTNESS': 200,
        'MIN_COMPACTNESS': 0.3
    }

    # Connected-component light strips
    STRIP_DETECTION = {
        'MIN_AREA': 40,
        'MAX_AREA': 50000,
        'MIN_ASPECT_RATIO': 1.5,
        'EDGE_COLUMNS': 3
    }

    # Peak (NMS) point detection
    PEAK_DETECTION = {
        'NMS_RADIUS': 3,
        'NMS_RADIUS_LIMITS': (2, 8),
        'MIN_PEAK_SCORE': 80,
        'MIN_POINTINESS': 1.5,
        'MIN_ISOTROPY': 0.3,
        'MAX_CANDIDATES': 15,
        'BRIGHTNESS_WEIGHT': 0.7,
        'COLOR_DIFF_WEIGHT': 0.3,
        'SATURATED_BRIGHTNESS': 200,
        'SATURATED_FLOOR': 0.8,
        'REFINE_RADIUS': 2,
        'RING_INNER': 3,
        'RING_OUTER': 5,
        'ISOTROPY_RADIUS': 4,
        'AREA_RADIUS': 5
    }

    # 2D-3D geometry matching
    GEOMETRY_MATCHING = {
        'SENSITIVITY': 'normal',
        'SENSITIVITY_PRESETS': {
            'strict': {
                'STRIP_SPACING_TOLERANCE': 0.25,
                'LED_STRIP_ALIGN_TOLERANCE': 0.10,
                'MIN_SPATIAL_SPREAD': 0.4,
                'RATIO_TOLERANCE': 0.15,
                'HORIZONTAL_OFFSET_TOLERANCE': 0.25,
                'SIDE_CV_TOLERANCE': 0.35
            },
            'normal': {
                'STRIP_SPACING_TOLERANCE': 0.40,
                'LED_STRIP_ALIGN_TOLERANCE': 0.15,
                'MIN_SPATIAL_SPREAD': 0.3,
                'RATIO_TOLERANCE': 0.25,
                'HORIZONTAL_OFFSET_TOLERANCE': 0.35,
                'SIDE_CV_TOLERANCE': 0.45
            },
            'relaxed': {
                'STRIP_SPACING_TOLERANCE': 0.50,
                'LED_STRIP_ALIGN_TOLERANCE': 0.20,
                'MIN_SPATIAL_SPREAD': 0.2,
                'RATIO_TOLERANCE': 0.50,
                'HORIZONTAL_OFFSET_TOLERANCE': 0.50,
                'SIDE_CV_TOLERANCE': 0.55
            }
        },
        'MIN_FEATURES': 4,
        'LED_LEFT_RIGHT_THRESHOLD': 0.05,
        'ABOVE_STRIPS_MARGIN': 0.1,
        'MAX_PATTERN_CANDIDATES': 15,
        'CLUSTER_NEIGHBORS': 8,
        'MAX_COMBINATIONS': 2000,
        'QUICK_CLUSTER_SIZE': 0.15
    }

    # Perspective-n-Point solver
    PNP = {
        'MIN_CORRESPONDENCES': 4,
        'DLT_MIN_POINTS': 6,
        'PLANARITY_THRESHOLD': 1e-6,
        'JACOBI_MAX_ITER': 2000,
        'JACOBI_TOLERANCE': 1e-12,
        'LM_MAX_ITER': 50,
        'LM_INITIAL_LAMBDA': 1e-3,
        'LM_EPSILON': 1e-6,
        'LM_MIN_IMPROVEMENT': 1e-14,
        'FOCAL_FACTOR': 0.9,
        'DEFAULT_INTRINSICS': (1000.0, 1000.0, 640.0, 360.0)
    }

    # Per-feature Kalman tracking
    TRACKER = {
        'PROCESS_NOISE': 0.005,
        'MEASUREMENT_NOISE': 0.5,
        'MAX_LOST_FRAMES': 3,
        'MIN_TRACKING_FEATURES': 4
    }

    # Frame orchestration / detection state machine
    LOCALIZER = {
        'POINT_SEARCH_RADIUS': 0.03,
        'EDGE_SEARCH_RADIUS': 0.05,
        'MERGE_DISTANCE': 0.02,
        'MAX_REPROJ_ERROR': 30.0,
        'CANDIDATE_PATIENCE': 15,
        'USE_PEAKS': True,
        'USE_STRIPS': True
    }

    # Visualization Colors (BGR)
    VIZ_COLORS = {
        'BG_DIM': 0.4,
        'CANDIDATE': (160, 160, 160),
        'PEAK': (255, 200, 0),
        'STRIP': (255, 0, 255),
        'STRIP_EDGE': (0, 200, 255),
        'MATCHED': (0, 255, 0),
        'PREDICTED': (0, 165, 255),
        'AXIS_X': (0, 0, 255),
        'AXIS_Y': (0, 255, 0),
        'AXIS_Z': (255, 0, 0),
        'TEXT': (255, 255, 255)
    }

    # Status banner colour per detection state
    STATE_COLORS = {
        'idle': (90, 90, 90),
        'scanning': (0, 140, 255),
        'candidate': (0, 220, 255),
        'locked': (100, 220, 50),
        'tracking': (100, 220, 50)
    }

    # Axis length drawn on the device origin (mm)
    AXIS_LENGTH_MM = 50.0


def sensitivity_preset(level: str, config: dict = None) -> dict:
    """Look up the tolerance tuple for a named sensitivity level."""
    config = config or PipelineConfig.GEOMETRY_MATCHING
    presets = config['SENSITIVITY_PRESETS']
    if level not in presets:
        raise ValueError(f"Unknown sensitivity level '{level}' "
                         f"(expected one of {', '.join(sorted(presets))})")
    return dict(presets[level])
