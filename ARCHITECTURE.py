"""
Architecture Diagram

Visual representation of the LED pose pipeline.
"""

print(r"""
╔═══════════════════════════════════════════════════════════════════════════════╗
║                       LED POSE PIPELINE ARCHITECTURE                          ║
╚═══════════════════════════════════════════════════════════════════════════════╝

┌─────────────────────────────────────────────────────────────────────────────┐
│                              USER INTERFACE                                  │
├─────────────────────────────────────────────────────────────────────────────┤
│                                                                              │
│  Command Line:                        Python API:                           │
│  ┌──────────────────────┐            ┌──────────────────────────┐          │
│  │ pipeline.py <input>  │            │ from ledpose import      │          │
│  │   --visualize        │            │   ScoreMapBuilder,       │          │
│  │   --device NAME      │            │   LEDPoseLocalizer       │          │
│  │ validate_pose.py     │            └──────────────────────────┘          │
│  └──────────────────────┘                                                   │
│                                                                              │
└─────────────────────────────────────────────────────────────────────────────┘
                                       │
                                       ▼
┌─────────────────────────────────────────────────────────────────────────────┐
│                     PER-FRAME FLOW (ledpose/localizer.py)                    │
├─────────────────────────────────────────────────────────────────────────────┤
│                                                                              │
│  class LEDPoseLocalizer:                                                    │
│    def process_frame(score_map) -> FrameResult:                             │
│      1. candidates = peaks (PeakDetector) + blobs (BlobDetector), merged    │
│      2. strips = blob_detector.detect_strips_with_edges(score_map)          │
│      3a. scanning/candidate: matcher.quick_check + matcher.match            │
│      3b. locked/tracking:    greedy re-acquisition vs tracker predictions   │
│      4. tracker.update(observations)                                        │
│      5. pose = solver.solve(model points, pixel points)                     │
│                                                                              │
│  Detection states:                                                          │
│    idle ──start──► scanning ──promising──► candidate ──match──► locked      │
│                        ▲                       │                  │         │
│                        └──── patience spent ───┘                  ▼         │
│                        └────────────── tracking lost ◄────── tracking       │
│                                                                              │
└─────────────────────────────────────────────────────────────────────────────┘
                                       │
                                       ▼
┌─────────────────────────────────────────────────────────────────────────────┐
│                          CORE MODULES (ledpose/)                             │
├─────────────────────────────────────────────────────────────────────────────┤
│                                                                              │
│  ┌──────────────────┐  ┌──────────────────┐  ┌──────────────────┐         │
│  │ ScoreMapBuilder  │  │ BlobDetector     │  │ PeakDetector     │         │
│  ├──────────────────┤  ├──────────────────┤  ├──────────────────┤         │
│  │ • Blue diff      │  │ • Union-Find     │  │ • Box blur       │         │
│  │ • HSV gates      │  │ • Shape filters  │  │ • NMS            │         │
│  │ • Adaptive thr.  │  │ • Strip edges    │  │ • Sub-pixel      │         │
│  └──────────────────┘  └──────────────────┘  └──────────────────┘         │
│                                                                              │
│  ┌──────────────────┐  ┌──────────────────┐  ┌──────────────────┐         │
│  │ GeometryMatcher  │  │ PnPSolver        │  │ FeatureTracker   │         │
│  ├──────────────────┤  ├──────────────────┤  ├──────────────────┤         │
│  │ • Quick check    │  │ • DLT / planar   │  │ • Scalar Kalman  │         │
│  │ • Strip anchored │  │ • Jacobi eigen   │  │ • Predictions    │         │
│  │ • Rigid pattern  │  │ • LM refinement  │  │ • Stability      │         │
│  └──────────────────┘  └──────────────────┘  └──────────────────┘         │
│                                                                              │
│  DeviceGeometry: led_beacon (5 LEDs), strip_beacon (5 LEDs + 3 strips)      │
│                                                                              │
└─────────────────────────────────────────────────────────────────────────────┘
                                       │
                                       ▼
┌─────────────────────────────────────────────────────────────────────────────┐
│                    CONFIGURATION (ledpose/config.py)                         │
├─────────────────────────────────────────────────────────────────────────────┤
│                                                                              │
│  PipelineConfig:                                                            │
│    • PREPROCESSING      - downscale, thresholds, adaptive threshold        │
│    • BLOB_DETECTION     - area, aspect, colour and compactness filters     │
│    • STRIP_DETECTION    - strip area/aspect, edge columns                  │
│    • PEAK_DETECTION     - NMS radius, pointiness, isotropy                 │
│    • GEOMETRY_MATCHING  - sensitivity presets, combination limits         │
│    • PNP                - Jacobi and LM limits, default intrinsics         │
│    • TRACKER            - Kalman noise, lost-frame limits                  │
│    • LOCALIZER          - search radii, publish limit, patience            │
│    • VIZ_COLORS         - visualization color scheme                       │
│                                                                              │
└─────────────────────────────────────────────────────────────────────────────┘


┌─────────────────────────────────────────────────────────────────────────────┐
│                    VISUALIZATION SCRIPTS (visualize/)                        │
├─────────────────────────────────────────────────────────────────────────────┤
│                                                                              │
│  ┌──────────────────────┐  ┌──────────────────────┐                        │
│  │ viz_trajectory.py    │  │ viz_tracking.py      │                        │
│  │                      │  │                      │                        │
│  │ results.json ->      │  │ results.json ->      │                        │
│  │ plotly 3D HTML       │  │ matplotlib PNG       │                        │
│  └──────────────────────┘  └──────────────────────┘                        │
│                                                                              │
└─────────────────────────────────────────────────────────────────────────────┘


┌─────────────────────────────────────────────────────────────────────────────┐
│                            DATA FLOW EXAMPLE                                 │
├─────────────────────────────────────────────────────────────────────────────┤
│                                                                              │
│  Input Frame (BGR)                                                          │
│       │                                                                      │
│       ├──► ScoreMapBuilder                                                  │
│       │     └──► ScoreMap {mask, color_diff, brightness, signal_pixels}    │
│       │                                                                      │
│       ├──► BlobDetector / PeakDetector                                      │
│       │     └──► [Candidate], [StripFeature]                               │
│       │                                                                      │
│       ├──► GeometryMatcher                                                  │
│       │     └──► MatchResult {CorrespondenceSet, score, strategy}          │
│       │                                                                      │
│       ├──► FeatureTracker                                                   │
│       │     └──► TrackerUpdate {tracked, stability, is_tracking}           │
│       │                                                                      │
│       └──► PnPSolver                                                        │
│             └──► PoseEstimate {R, t, roll/pitch/yaw, distance, error}      │
│                                                                              │
│  FrameResult                                                                │
│       │                                                                      │
│       ├──► results.json                                                     │
│       └──► Visualization (annotated frame + score map)                      │
│                                                                              │
└─────────────────────────────────────────────────────────────────────────────┘
""")
