"""
Visualize Pose Trajectory

Interactive 3D view of the published poses from a pipeline results.json:
device landmarks at the origin and the camera position and viewing direction
for every frame with a pose.

Usage:
    python viz_trajectory.py <results.json> [--output trajectory.html] [--show]
"""

import argparse
import json
import sys
from pathlib import Path

import numpy as np
import plotly.graph_objects as go

sys.path.append(str(Path(__file__).parent.parent))

from ledpose import get_device


def camera_poses(frames):
    """
    Camera position and axes in the device frame for every frame with a pose.

    Returns:
        List of dicts with frame, position, forward, up (device coordinates, mm)
    """
    poses = []
    for frame in frames:
        pose = frame.get('pose')
        if not pose:
            continue
        rot = np.array(pose['rotation_matrix'])
        tvec = np.array(pose['tvec'])
        poses.append({
            'frame': frame['frame'],
            'name': frame.get('name', str(frame['frame'])),
            'position': -rot.T @ tvec,
            'forward': rot.T @ np.array([0.0, 0.0, 1.0]),
            'up': rot.T @ np.array([0.0, -1.0, 0.0]),
            'reproj_error': pose['reproj_error'],
        })
    return poses


def add_device(fig, device):
    """Draw device landmarks and the LED1-LED4 rectangle."""
    leds = np.array([lm.point for lm in device.leds])
    rect = leds[[0, 1, 2, 3, 0]]
    fig.add_trace(go.Scatter3d(
        x=rect[:, 0], y=rect[:, 1], z=rect[:, 2],
        mode='lines',
        line=dict(color='blue', width=5),
        name=f'{device.name} outline'
    ))
    fig.add_trace(go.Scatter3d(
        x=leds[:, 0], y=leds[:, 1], z=leds[:, 2],
        mode='markers+text',
        marker=dict(size=6, color='deepskyblue'),
        text=[lm.id for lm in device.leds],
        textposition='top center',
        name='LEDs'
    ))

    edges = device.strip_edges
    for left, right in zip(edges[0::2], edges[1::2]):
        fig.add_trace(go.Scatter3d(
            x=[left.x, right.x], y=[left.y, right.y], z=[left.z, right.z],
            mode='lines+markers',
            line=dict(color='cyan', width=8),
            marker=dict(size=4, color='white'),
            showlegend=False,
            hovertext=[left.id, right.id],
            hoverinfo='text'
        ))


def create_trajectory_figure(poses, device):
    fig = go.Figure()
    add_device(fig, device)

    positions = np.array([p['position'] for p in poses])
    fig.add_trace(go.Scatter3d(
        x=positions[:, 0], y=positions[:, 1], z=positions[:, 2],
        mode='lines+markers',
        line=dict(color='#FF6B6B', width=3),
        marker=dict(size=3, color=[p['reproj_error'] for p in poses], colorscale='Viridis',
                    colorbar=dict(title='Reproj (px)')),
        text=[f"{p['name']}: {p['reproj_error']:.2f}px" for p in poses],
        hoverinfo='text',
        name='Camera trajectory'
    ))

    # Viewing direction for a subset of frames
    arrow_length = 0.1 * float(np.median(np.linalg.norm(positions, axis=1)))
    step = max(1, len(poses) // 25)
    for p in poses[::step]:
        end = p['position'] + arrow_length * p['forward']
        fig.add_trace(go.Cone(
            x=[end[0]], y=[end[1]], z=[end[2]],
            u=[p['forward'][0]], v=[p['forward'][1]], w=[p['forward'][2]],
            sizemode='absolute',
            sizeref=arrow_length * 0.3,
            colorscale=[[0, '#4ECDC4'], [1, '#4ECDC4']],
            showscale=False,
            showlegend=False,
            hoverinfo='skip'
        ))

    fig.update_layout(
        title=dict(text=f'LED Pose Trajectory ({len(poses)} poses)', font=dict(size=20)),
        scene=dict(
            xaxis=dict(title='X (mm)'),
            yaxis=dict(title='Y (mm)'),
            zaxis=dict(title='Z (mm)'),
            aspectmode='data',
            camera=dict(eye=dict(x=1.2, y=1.2, z=1.2))
        ),
        legend=dict(yanchor="top", y=0.99, xanchor="left", x=0.01,
                    bgcolor='rgba(255, 255, 255, 0.8)'),
        margin=dict(l=0, r=0, t=50, b=0)
    )
    return fig


def main():
    parser = argparse.ArgumentParser(description='3D trajectory of published poses')
    parser.add_argument('results', type=str, help='results.json written by pipeline.py')
    parser.add_argument('--output', '-o', type=str, help='Output HTML (default: next to results)')
    parser.add_argument('--show', action='store_true', help='Open the figure in a browser')
    args = parser.parse_args()

    results_path = Path(args.results)
    if not results_path.exists():
        print(f"Error: Path does not exist: {results_path}")
        sys.exit(1)

    with open(results_path) as f:
        results = json.load(f)

    poses = camera_poses(results['frames'])
    if not poses:
        print("No published poses to visualize")
        sys.exit(1)

    device = get_device(results.get('device', 'led_beacon'))
    fig = create_trajectory_figure(poses, device)

    output_html = Path(args.output) if args.output else results_path.with_name("trajectory_3d.html")
    fig.write_html(str(output_html))
    print(f"Interactive 3D visualization saved to: {output_html}")

    if args.show:
        fig.show()


if __name__ == "__main__":
    main()
