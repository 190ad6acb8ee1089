"""
LED Pose Pipeline

Runs the LED target localizer over an image sequence or a video file:
1. Score map (blue-differential mask, colour difference, brightness)
2. Feature extraction (blobs, peaks, light strips with edge midpoints)
3. Geometry matching or re-acquisition against tracker predictions
4. Feature tracking
5. PnP pose (DLT / planar DLT + Levenberg-Marquardt)

Per-frame results are written to results.json; annotated frames are optional.
"""

import argparse
import json
import logging
import sys
from pathlib import Path
from typing import Dict, Iterator, Tuple

import cv2
import numpy as np

from ledpose import (CameraIntrinsics, FrameResult, LEDPoseLocalizer, PipelineConfig,
                     ScoreMapBuilder, get_device)
from ledpose.visualization import (add_label_to_image, create_grid_visualization,
                                   draw_frame_result, score_map_to_image)

IMAGE_EXTENSIONS = ['*.jpg', '*.jpeg', '*.png', '*.JPG', '*.JPEG', '*.PNG']


class LEDPosePipeline:
    """Score map builder plus localizer, driven one frame at a time."""

    def __init__(self, device: str = 'led_beacon', sensitivity: str = None,
                 downscale: int = None, intrinsics: CameraIntrinsics = None):
        """
        Initialize pipeline.

        Args:
            device: Name of the target model (see ledpose.device.DEVICES)
            sensitivity: Matching sensitivity level, config default if None
            downscale: Score map downscale factor, config default if None
            intrinsics: Camera intrinsics, estimated from the frame size if None
        """
        pre_config = dict(PipelineConfig.PREPROCESSING)
        if downscale:
            pre_config['DOWNSCALE'] = downscale
        self.builder = ScoreMapBuilder(pre_config)
        self.localizer = LEDPoseLocalizer(device=get_device(device), intrinsics=intrinsics)
        if sensitivity:
            self.localizer.set_sensitivity(sensitivity)
        self.localizer.start()
        self.last_score_map = None

    def process_frame(self, frame: np.ndarray) -> FrameResult:
        """
        Run the full pipeline on one BGR frame.

        Args:
            frame: BGR image

        Returns:
            FrameResult from the localizer
        """
        self.last_score_map = self.builder.build(frame)
        return self.localizer.process_frame(self.last_score_map)

    def process_image(self, image: np.ndarray) -> Dict:
        """Process one frame and return its JSON-friendly summary."""
        return self.process_frame(image).to_dict()

    def visualize_results(self, image: np.ndarray, result: FrameResult) -> np.ndarray:
        """
        Create visualization of one frame.

        Args:
            image: Original BGR image
            result: FrameResult from process_frame

        Returns:
            Side-by-side image: annotated frame and score map
        """
        score_map = self.last_score_map
        frame_size = (score_map.frame_width, score_map.frame_height)
        overlay = draw_frame_result(image, result, self.localizer.solver.intrinsics, frame_size)

        mask_view = cv2.resize(score_map_to_image(score_map), (image.shape[1], image.shape[0]),
                               interpolation=cv2.INTER_NEAREST)
        mask_view = add_label_to_image(mask_view, f"Score map (threshold {self.builder.threshold:.3f})")

        return create_grid_visualization([overlay, mask_view])


def iter_frames(input_path: Path) -> Iterator[Tuple[str, np.ndarray]]:
    """Yield (name, frame) from an image directory or a video file."""
    if input_path.is_dir():
        image_files = []
        for ext in IMAGE_EXTENSIONS:
            image_files.extend(input_path.glob(ext))
        for img_path in sorted(set(image_files)):
            image = cv2.imread(str(img_path))
            if image is None:
                print(f"  Warning: Could not read {img_path.name}")
                continue
            yield img_path.stem, image
        return

    cap = cv2.VideoCapture(str(input_path))
    if not cap.isOpened():
        raise ValueError(f"Could not open video: {input_path}")
    try:
        idx = 0
        while True:
            ok, frame = cap.read()
            if not ok:
                break
            yield f"{input_path.stem}_{idx:05d}", frame
            idx += 1
    finally:
        cap.release()


def count_frames(input_path: Path) -> int:
    if input_path.is_dir():
        files = set()
        for ext in IMAGE_EXTENSIONS:
            files.update(input_path.glob(ext))
        return len(files)
    cap = cv2.VideoCapture(str(input_path))
    total = int(cap.get(cv2.CAP_PROP_FRAME_COUNT))
    cap.release()
    return total


def format_summary(result: FrameResult) -> str:
    line = (f"  State: {result.state.value} | Candidates: {len(result.candidates)} "
            f"| Strips: {len(result.strips)} | Stability: {result.stability:.2f}")
    if result.pose is not None:
        p = result.pose
        line += (f" | Pose: d={p.distance:.3f}m r/p/y={p.roll:.1f}/{p.pitch:.1f}/{p.yaw:.1f}"
                 f" err={p.reproj_error:.2f}px")
    else:
        line += f" | {result.reason or 'no pose'}"
    return line


def main():
    parser = argparse.ArgumentParser(description='LED Target Pose Estimation Pipeline')
    parser.add_argument('input', type=str, help='Directory of images or a video file')
    parser.add_argument('--output', '-o', type=str, help='Output directory (default: <input>_results)')
    parser.add_argument('--visualize', '-v', action='store_true', help='Save annotated frames')
    parser.add_argument('--device', type=str, default='led_beacon', help='Target model name')
    parser.add_argument('--sensitivity', type=str, choices=['strict', 'normal', 'relaxed'],
                        help='Geometry matching sensitivity')
    parser.add_argument('--downscale', type=int, help='Score map downscale factor')
    parser.add_argument('--fx', type=float, help='Focal length x (pixels)')
    parser.add_argument('--fy', type=float, help='Focal length y (pixels)')
    parser.add_argument('--cx', type=float, help='Principal point x (pixels)')
    parser.add_argument('--cy', type=float, help='Principal point y (pixels)')
    parser.add_argument('--verbose', action='store_true', help='Debug logging')

    args = parser.parse_args()

    logging.basicConfig(level=logging.DEBUG if args.verbose else logging.WARNING,
                        format='%(levelname)s %(name)s: %(message)s')

    input_path = Path(args.input)
    if not input_path.exists():
        print(f"Error: Input does not exist: {input_path}")
        sys.exit(1)

    if args.output:
        output_dir = Path(args.output)
    elif input_path.is_dir():
        output_dir = input_path / "pipeline_results"
    else:
        output_dir = input_path.parent / f"{input_path.stem}_results"
    output_dir.mkdir(exist_ok=True, parents=True)

    intrinsics = None
    intrinsic_args = (args.fx, args.fy, args.cx, args.cy)
    if all(v is not None for v in intrinsic_args):
        intrinsics = CameraIntrinsics(*intrinsic_args)
    elif any(v is not None for v in intrinsic_args):
        print("Error: --fx, --fy, --cx and --cy must be given together")
        sys.exit(1)

    total = count_frames(input_path)
    print(f"Found {total} frame(s) to process\n")

    pipeline = LEDPosePipeline(args.device, args.sensitivity, args.downscale, intrinsics)

    records = []
    n_published = 0
    for idx, (name, frame) in enumerate(iter_frames(input_path), 1):
        print(f"[{idx}/{total}] Processing {name}...")

        result = pipeline.process_frame(frame)
        record = result.to_dict()
        record['name'] = name
        records.append(record)
        if result.pose is not None:
            n_published += 1

        print(format_summary(result))

        if args.visualize:
            vis = pipeline.visualize_results(frame, result)
            out_path = output_dir / f"{name}_pose.jpg"
            cv2.imwrite(str(out_path), vis)
            print(f"  Saved: {out_path.name}")

    if not records:
        print("No frames found!")
        sys.exit(1)

    results_path = output_dir / "results.json"
    with open(results_path, 'w') as f:
        json.dump({'device': args.device, 'frames': records}, f, indent=2)

    print(f"\nPublished poses: {n_published}/{len(records)}")
    print(f"Done! Results saved to: {output_dir}")


if __name__ == "__main__":
    main()
