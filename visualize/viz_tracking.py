"""
Visualize Tracking Quality

Time series of a pipeline run: tracker stability, reprojection error of the
solved pose and the detection state per frame.

Usage:
    python viz_tracking.py <results.json> [--output tracking.png]
"""

import argparse
import json
import sys
from pathlib import Path

import matplotlib
matplotlib.use('Agg')
import matplotlib.pyplot as plt
import numpy as np

STATES = ['idle', 'scanning', 'candidate', 'locked', 'tracking']
STATE_COLORS = {
    'idle': '#7f7f7f',
    'scanning': '#d62728',
    'candidate': '#ff7f0e',
    'locked': '#1f77b4',
    'tracking': '#2ca02c',
}


def extract_series(frames):
    """Per-frame arrays: frame index, stability, reprojection error (NaN without pose), state."""
    index = np.array([f['frame'] for f in frames])
    stability = np.array([f['stability'] for f in frames], dtype=float)
    reproj = np.array([f['pose']['reproj_error'] if f['pose'] else np.nan for f in frames], dtype=float)
    states = [f['state'] for f in frames]
    return index, stability, reproj, states


def plot_tracking(frames, output_file: Path, max_reproj: float = 30.0):
    index, stability, reproj, states = extract_series(frames)

    fig, axes = plt.subplots(3, 1, figsize=(14, 9), sharex=True)

    axes[0].plot(index, stability, color='#1f77b4')
    axes[0].set_ylim(-0.05, 1.05)
    axes[0].set_ylabel('Stability')
    axes[0].grid(True, alpha=0.3)

    axes[1].plot(index, reproj, 'o-', markersize=2, color='#9467bd')
    axes[1].axhline(max_reproj, color='red', linestyle='--', linewidth=1, label='Publish limit')
    axes[1].set_ylabel('Reprojection error (px)')
    axes[1].legend(loc='upper right')
    axes[1].grid(True, alpha=0.3)

    levels = [STATES.index(s) for s in states]
    axes[2].scatter(index, levels, c=[STATE_COLORS[s] for s in states], s=8)
    axes[2].set_yticks(range(len(STATES)))
    axes[2].set_yticklabels(STATES)
    axes[2].set_xlabel('Frame')
    axes[2].grid(True, alpha=0.3)

    published = int(np.isfinite(reproj).sum())
    fig.suptitle(f'Tracking summary: {published}/{len(frames)} frames with pose', fontsize=14)

    plt.tight_layout()
    plt.savefig(output_file, dpi=150, bbox_inches='tight')
    plt.close()


def main():
    parser = argparse.ArgumentParser(description='Plot stability, reprojection error and state per frame')
    parser.add_argument('results', type=str, help='results.json written by pipeline.py')
    parser.add_argument('--output', '-o', type=str, help='Output PNG (default: next to results)')
    args = parser.parse_args()

    results_path = Path(args.results)
    if not results_path.exists():
        print(f"Error: Path does not exist: {results_path}")
        sys.exit(1)

    with open(results_path) as f:
        results = json.load(f)

    frames = results['frames']
    if not frames:
        print("No frames in results")
        sys.exit(1)

    output_file = Path(args.output) if args.output else results_path.with_name("tracking_summary.png")
    plot_tracking(frames, output_file)
    print(f"Saved: {output_file}")


if __name__ == "__main__":
    main()
