"""
PnP Solver Module

Recovers camera pose from 3D-2D correspondences with a pinhole model and no
lens distortion:

1. Linear initialization: rigid-body DLT (2n x 12) for six or more
   non-coplanar points, otherwise a planar DLT (homography) on the best-fit
   model plane. Null vectors come from a Jacobi eigendecomposition.
2. Levenberg-Marquardt refinement of a Rodrigues + translation 6-vector.
3. RMS reprojection error, Rodrigues vector and roll/pitch/yaw.
"""

import logging
import math
from dataclasses import dataclass, field
from typing import List, Optional, Tuple

import numpy as np

from .config import PipelineConfig

logger = logging.getLogger(__name__)


# ----------------------------------------------------------------------
# Small-matrix linear algebra
# ----------------------------------------------------------------------

def jacobi_eigen(matrix: np.ndarray, max_iter: int = 2000, tol: float = 1e-12) -> Tuple[np.ndarray, np.ndarray]:
    """
    Eigendecomposition of a symmetric matrix by cyclic 2x2 Jacobi rotations.

    Each step zeroes the largest off-diagonal element. Iteration stops when
    that element falls below tol relative to the largest diagonal magnitude.

    Args:
        matrix: Symmetric (n, n) matrix
        max_iter: Maximum number of rotations
        tol: Relative convergence tolerance

    Returns:
        (eigenvalues, eigenvectors) sorted ascending, eigenvectors as columns
    """
    a = np.array(matrix, dtype=np.float64)
    n = a.shape[0]
    v = np.eye(n)
    if n == 1:
        return a.diagonal().copy(), v

    off_mask = ~np.eye(n, dtype=bool)
    for _ in range(max_iter):
        off = np.where(off_mask, np.abs(a), 0.0)
        p, q = np.unravel_index(np.argmax(off), off.shape)
        scale = max(np.abs(a.diagonal()).max(), 1e-300)
        if off[p, q] <= tol * scale:
            break

        theta = 0.5 * math.atan2(2.0 * a[p, q], a[p, p] - a[q, q])
        c = math.cos(theta)
        s = math.sin(theta)

        col_p = a[:, p].copy()
        col_q = a[:, q].copy()
        a[:, p] = c * col_p + s * col_q
        a[:, q] = -s * col_p + c * col_q
        row_p = a[p, :].copy()
        row_q = a[q, :].copy()
        a[p, :] = c * row_p + s * row_q
        a[q, :] = -s * row_p + c * row_q
        a[p, q] = a[q, p] = 0.0

        vec_p = v[:, p].copy()
        vec_q = v[:, q].copy()
        v[:, p] = c * vec_p + s * vec_q
        v[:, q] = -s * vec_p + c * vec_q

    values = a.diagonal().copy()
    order = np.argsort(values, kind='stable')
    return values[order], v[:, order]


def null_vector(a: np.ndarray, max_iter: int = 2000, tol: float = 1e-12) -> np.ndarray:
    """Unit vector minimizing |A x|: eigenvector of A^T A with smallest eigenvalue."""
    _, vectors = jacobi_eigen(a.T @ a, max_iter, tol)
    return vectors[:, 0]


def closest_rotation(m: np.ndarray, max_iter: int = 2000, tol: float = 1e-12) -> np.ndarray:
    """
    Nearest proper rotation to a 3x3 matrix.

    Uses the eigendecomposition of M^T M = V S^2 V^T so that R = M V S^-1 V^T.
    The third axes are rebuilt as cross products, which keeps det(R) = +1 and
    flips the weakest singular direction when M is a reflection.
    """
    values, vectors = jacobi_eigen(m.T @ m, max_iter, tol)
    v1 = vectors[:, 2]
    v2 = vectors[:, 1]
    s1 = math.sqrt(max(values[2], 0.0))
    s2 = math.sqrt(max(values[1], 0.0))
    if s1 < 1e-12 or s2 < 1e-12:
        raise ValueError("Matrix is too close to rank one to orthogonalize")

    u1 = m @ v1 / s1
    u2 = m @ v2 / s2
    u2 = u2 - u1 * np.dot(u1, u2)
    u2 /= np.linalg.norm(u2)
    u3 = np.cross(u1, u2)
    v3 = np.cross(v1, v2)

    u = np.column_stack([u1, u2, u3])
    v = np.column_stack([v1, v2, v3])
    return u @ v.T


def solve_linear_system(a: np.ndarray, b: np.ndarray, tol: float = 1e-12) -> Optional[np.ndarray]:
    """
    Gaussian elimination with partial pivoting.

    Returns:
        Solution vector, or None when a pivot falls below tol relative to max|A|
    """
    n = a.shape[0]
    aug = np.column_stack([np.array(a, dtype=np.float64), np.array(b, dtype=np.float64)])
    limit = tol * max(np.abs(aug[:, :n]).max(), 1e-300)

    for col in range(n):
        pivot = col + int(np.argmax(np.abs(aug[col:, col])))
        if abs(aug[pivot, col]) < limit:
            return None
        if pivot != col:
            aug[[col, pivot]] = aug[[pivot, col]]
        factors = aug[col + 1:, col] / aug[col, col]
        aug[col + 1:, col:] -= factors[:, None] * aug[col, col:]

    x = np.zeros(n)
    for row in range(n - 1, -1, -1):
        x[row] = (aug[row, n] - aug[row, row + 1:n] @ x[row + 1:]) / aug[row, row]
    return x


# ----------------------------------------------------------------------
# Rotation conversions
# ----------------------------------------------------------------------

def _skew(k: np.ndarray) -> np.ndarray:
    return np.array([[0.0, -k[2], k[1]],
                     [k[2], 0.0, -k[0]],
                     [-k[1], k[0], 0.0]])


def rodrigues_to_matrix(rvec: np.ndarray) -> np.ndarray:
    """Axis-angle vector to rotation matrix."""
    rvec = np.asarray(rvec, dtype=np.float64).ravel()
    theta = float(np.linalg.norm(rvec))
    if theta < 1e-12:
        return np.eye(3) + _skew(rvec)
    k = _skew(rvec / theta)
    return np.eye(3) + math.sin(theta) * k + (1.0 - math.cos(theta)) * (k @ k)


def matrix_to_rodrigues(r: np.ndarray) -> np.ndarray:
    """Rotation matrix to axis-angle vector, including the half-turn case."""
    r = np.asarray(r, dtype=np.float64)
    cos_theta = np.clip((np.trace(r) - 1.0) / 2.0, -1.0, 1.0)
    theta = math.acos(cos_theta)
    vee = np.array([r[2, 1] - r[1, 2], r[0, 2] - r[2, 0], r[1, 0] - r[0, 1]])

    if theta < 1e-12:
        return vee / 2.0

    if math.pi - theta < 1e-6:
        # R = 2 k k^T - I at a half turn
        outer = (r + np.eye(3)) / 2.0
        i = int(np.argmax(outer.diagonal()))
        k = outer[:, i] / math.sqrt(max(outer[i, i], 1e-300))
        k /= np.linalg.norm(k)
        if np.dot(vee, k) < 0:
            k = -k
        return theta * k

    return vee * (theta / (2.0 * math.sin(theta)))


def rotation_to_euler(r: np.ndarray) -> Tuple[float, float, float]:
    """
    Rotation matrix to (roll, pitch, yaw) in degrees, R = Rz(yaw) Ry(pitch) Rx(roll).

    At gimbal lock yaw is fixed to zero and roll absorbs the remaining rotation.
    """
    sy = math.hypot(r[0, 0], r[1, 0])
    if sy > 1e-6:
        roll = math.atan2(r[2, 1], r[2, 2])
        pitch = math.atan2(-r[2, 0], sy)
        yaw = math.atan2(r[1, 0], r[0, 0])
    else:
        roll = math.atan2(-r[1, 2], r[1, 1])
        pitch = math.atan2(-r[2, 0], sy)
        yaw = 0.0
    return math.degrees(roll), math.degrees(pitch), math.degrees(yaw)


# ----------------------------------------------------------------------
# Results
# ----------------------------------------------------------------------

@dataclass(frozen=True)
class CameraIntrinsics:
    fx: float
    fy: float
    cx: float
    cy: float

    def __post_init__(self):
        if self.fx <= 0 or self.fy <= 0:
            raise ValueError(f"Focal lengths must be positive, got fx={self.fx}, fy={self.fy}")

    @classmethod
    def from_resolution(cls, width: int, height: int, focal_factor: float = None) -> 'CameraIntrinsics':
        """Rough pinhole guess: focal length proportional to the larger side, centred principal point."""
        if focal_factor is None:
            focal_factor = PipelineConfig.PNP['FOCAL_FACTOR']
        f = focal_factor * max(width, height)
        return cls(f, f, width / 2.0, height / 2.0)

    @property
    def matrix(self) -> np.ndarray:
        return np.array([[self.fx, 0.0, self.cx],
                         [0.0, self.fy, self.cy],
                         [0.0, 0.0, 1.0]])


@dataclass
class PoseEstimate:
    rotation_matrix: np.ndarray
    rvec: np.ndarray
    tvec: np.ndarray
    roll: float
    pitch: float
    yaw: float
    distance: float
    reproj_error: float
    iterations: int = 0
    cost_history: List[float] = field(default_factory=list)
    method: str = 'dlt'

    def to_dict(self) -> dict:
        return {
            'rvec': self.rvec.tolist(),
            'tvec': self.tvec.tolist(),
            'rotation_matrix': self.rotation_matrix.tolist(),
            'roll': self.roll,
            'pitch': self.pitch,
            'yaw': self.yaw,
            'distance': self.distance,
            'reproj_error': self.reproj_error,
            'iterations': self.iterations,
            'method': self.method,
        }


@dataclass
class PoseResult:
    success: bool
    pose: Optional[PoseEstimate] = None
    reason: str = ''


# ----------------------------------------------------------------------
# Solver
# ----------------------------------------------------------------------

def _hartley(points: np.ndarray) -> Tuple[np.ndarray, np.ndarray]:
    """Centre points and scale their mean distance to sqrt(dim). Returns (normalized, T)."""
    dim = points.shape[1]
    center = points.mean(axis=0)
    mean_dist = np.linalg.norm(points - center, axis=1).mean()
    scale = math.sqrt(dim) / mean_dist if mean_dist > 1e-12 else 1.0
    t = np.eye(dim + 1)
    t[:dim, :dim] *= scale
    t[:dim, dim] = -scale * center
    return (points - center) * scale, t


class PnPSolver:
    """DLT initialization + Levenberg-Marquardt refinement."""

    def __init__(self, config: dict = None, intrinsics: CameraIntrinsics = None):
        """
        Initialize PnP solver.

        Args:
            config: Optional config dict, uses PipelineConfig.PNP if None
            intrinsics: Camera intrinsics, DEFAULT_INTRINSICS if None
        """
        self.config = config or PipelineConfig.PNP
        self.min_correspondences = self.config['MIN_CORRESPONDENCES']
        self.dlt_min_points = self.config['DLT_MIN_POINTS']
        self.planarity_threshold = self.config['PLANARITY_THRESHOLD']
        self.jacobi_max_iter = self.config['JACOBI_MAX_ITER']
        self.jacobi_tol = self.config['JACOBI_TOLERANCE']
        self.lm_max_iter = self.config['LM_MAX_ITER']
        self.lm_initial_lambda = self.config['LM_INITIAL_LAMBDA']
        self.lm_epsilon = self.config['LM_EPSILON']
        self.lm_min_improvement = self.config['LM_MIN_IMPROVEMENT']
        self.focal_factor = self.config['FOCAL_FACTOR']
        self.intrinsics = intrinsics or CameraIntrinsics(*self.config['DEFAULT_INTRINSICS'])

    def set_intrinsics(self, intrinsics: CameraIntrinsics):
        self.intrinsics = intrinsics

    def estimate_intrinsics(self, width: int, height: int) -> CameraIntrinsics:
        self.intrinsics = CameraIntrinsics.from_resolution(width, height, self.focal_factor)
        return self.intrinsics

    # Linear initialization -------------------------------------------

    def _eigen(self, matrix: np.ndarray):
        return jacobi_eigen(matrix, self.jacobi_max_iter, self.jacobi_tol)

    def is_coplanar(self, object_points: np.ndarray) -> bool:
        centered = object_points - object_points.mean(axis=0)
        values, _ = self._eigen(centered.T @ centered)
        return values[0] <= self.planarity_threshold * max(values[2], 1e-300)

    def planar_subset(self, object_points: np.ndarray) -> np.ndarray:
        """Indices for the homography: all points, or a coplanar leave-one-out subset."""
        n = len(object_points)
        if n <= 4 or self.is_coplanar(object_points):
            return np.arange(n)
        for drop in range(n - 1, -1, -1):
            keep = np.delete(np.arange(n), drop)
            if self.is_coplanar(object_points[keep]):
                return keep
        return np.arange(n)

    def _dlt(self, obj: np.ndarray, img: np.ndarray) -> Tuple[np.ndarray, np.ndarray]:
        """Rigid-body DLT on normalized image points."""
        obj_n, t3 = _hartley(obj)
        img_n, t2 = _hartley(img)

        rows = []
        for (x, y, z), (u, v) in zip(obj_n, img_n):
            rows.append([x, y, z, 1, 0, 0, 0, 0, -u * x, -u * y, -u * z, -u])
            rows.append([0, 0, 0, 0, x, y, z, 1, -v * x, -v * y, -v * z, -v])
        p_n = null_vector(np.array(rows), self.jacobi_max_iter, self.jacobi_tol).reshape(3, 4)
        p = np.linalg.inv(t2) @ p_n @ t3

        # Points in front of the camera: positive depth at the centroid
        center = np.append(obj.mean(axis=0), 1.0)
        if p[2] @ center < 0:
            p = -p

        m = p[:, :3]
        r = closest_rotation(m, self.jacobi_max_iter, self.jacobi_tol)
        scale = np.linalg.norm(m) / np.linalg.norm(r)
        return r, p[:, 3] / scale

    def _planar_dlt(self, obj: np.ndarray, img: np.ndarray) -> Tuple[np.ndarray, np.ndarray]:
        """Homography from the best-fit model plane, decomposed into R, t."""
        center = obj.mean(axis=0)
        centered = obj - center
        _, vectors = self._eigen(centered.T @ centered)
        e1 = vectors[:, 2]
        e2 = vectors[:, 1]
        basis = np.column_stack([e1, e2, np.cross(e1, e2)])
        plane = (centered @ basis)[:, :2]

        plane_n, tp = _hartley(plane)
        img_n, ti = _hartley(img)
        rows = []
        for (a, b), (u, v) in zip(plane_n, img_n):
            rows.append([a, b, 1, 0, 0, 0, -u * a, -u * b, -u])
            rows.append([0, 0, 0, a, b, 1, -v * a, -v * b, -v])
        h_n = null_vector(np.array(rows), self.jacobi_max_iter, self.jacobi_tol).reshape(3, 3)
        h = np.linalg.inv(ti) @ h_n @ tp

        if h[2, 2] < 0:
            h = -h
        scale = (np.linalg.norm(h[:, 0]) + np.linalg.norm(h[:, 1])) / 2.0
        r1 = h[:, 0] / scale
        r2 = h[:, 1] / scale
        r_plane = closest_rotation(np.column_stack([r1, r2, np.cross(r1, r2)]),
                                   self.jacobi_max_iter, self.jacobi_tol)
        t_plane = h[:, 2] / scale

        r = r_plane @ basis.T
        return r, t_plane - r @ center

    # Refinement ---------------------------------------------------------

    @staticmethod
    def _residuals(params: np.ndarray, obj: np.ndarray, img: np.ndarray) -> np.ndarray:
        r = rodrigues_to_matrix(params[:3])
        cam = obj @ r.T + params[3:]
        z = cam[:, 2]
        valid = np.abs(z) >= 1e-10
        safe_z = np.where(valid, z, 1.0)
        res = cam[:, :2] / safe_z[:, None] - img
        res[~valid] = 0.0
        return res.ravel()

    def _jacobian(self, params: np.ndarray, obj: np.ndarray, img: np.ndarray) -> np.ndarray:
        eps = self.lm_epsilon
        jac = np.zeros((2 * len(obj), 6))
        for k in range(6):
            step = np.zeros(6)
            step[k] = eps
            jac[:, k] = (self._residuals(params + step, obj, img)
                         - self._residuals(params - step, obj, img)) / (2 * eps)
        return jac

    def refine(self, r: np.ndarray, t: np.ndarray, obj: np.ndarray, img: np.ndarray) -> Tuple[np.ndarray, List[float], int]:
        """
        Levenberg-Marquardt on the 6-vector (rvec, t).

        Returns:
            (params, cost_history, iterations); cost_history holds the accepted
            squared-residual sums and never increases
        """
        params = np.concatenate([matrix_to_rodrigues(r), t])
        residuals = self._residuals(params, obj, img)
        cost = float(residuals @ residuals)
        history = [cost]
        lam = self.lm_initial_lambda

        iteration = 0
        for iteration in range(1, self.lm_max_iter + 1):
            jac = self._jacobian(params, obj, img)
            jtj = jac.T @ jac
            jtr = jac.T @ residuals
            damped = jtj + lam * np.diag(np.diag(jtj))

            delta = solve_linear_system(damped, jtr)
            if delta is None:
                logger.warning("Singular LM system at iteration %d, keeping current estimate", iteration)
                break

            candidate = params - delta
            cand_res = self._residuals(candidate, obj, img)
            cand_cost = float(cand_res @ cand_res)

            if cand_cost < cost:
                improvement = cost - cand_cost
                params, residuals, cost = candidate, cand_res, cand_cost
                history.append(cost)
                lam *= 0.5
                if improvement < self.lm_min_improvement:
                    break
            else:
                lam *= 2.0
                if lam > 1e12:
                    break

        logger.debug("LM finished after %d iterations, cost %.3e -> %.3e", iteration, history[0], cost)
        return params, history, iteration

    # Public API ---------------------------------------------------------

    def reprojection_error(self, r: np.ndarray, t: np.ndarray, obj: np.ndarray, img_px: np.ndarray) -> float:
        """RMS pixel distance between projected and observed points."""
        cam = obj @ r.T + t
        z = np.where(np.abs(cam[:, 2]) < 1e-10, 1e-10, cam[:, 2])
        k = self.intrinsics
        u = k.fx * cam[:, 0] / z + k.cx
        v = k.fy * cam[:, 1] / z + k.cy
        return float(np.sqrt(np.mean((u - img_px[:, 0]) ** 2 + (v - img_px[:, 1]) ** 2)))

    def solve(self, object_points, image_points) -> PoseResult:
        """
        Solve for the camera pose.

        Args:
            object_points: (n, 3) model points in mm
            image_points: (n, 2) observed pixels in the full-resolution frame

        Returns:
            PoseResult with a PoseEstimate on success
        """
        obj = np.asarray(object_points, dtype=np.float64).reshape(-1, 3)
        img_px = np.asarray(image_points, dtype=np.float64).reshape(-1, 2)
        if len(obj) != len(img_px):
            raise ValueError(f"Got {len(obj)} object points but {len(img_px)} image points")
        if len(obj) < self.min_correspondences:
            return PoseResult(False, reason=f"need at least {self.min_correspondences} correspondences, got {len(obj)}")

        k = self.intrinsics
        img = np.column_stack([(img_px[:, 0] - k.cx) / k.fx, (img_px[:, 1] - k.cy) / k.fy])

        planar = len(obj) < self.dlt_min_points or self.is_coplanar(obj)
        try:
            if planar:
                subset = self.planar_subset(obj)
                r, t = self._planar_dlt(obj[subset], img[subset])
            else:
                r, t = self._dlt(obj, img)
        except ValueError as exc:
            return PoseResult(False, reason=f"degenerate configuration: {exc}")

        if not (np.all(np.isfinite(r)) and np.all(np.isfinite(t))):
            return PoseResult(False, reason="linear initialization produced non-finite values")

        params, history, iterations = self.refine(r, t, obj, img)
        if not np.all(np.isfinite(params)):
            return PoseResult(False, reason="refinement diverged")
        r = rodrigues_to_matrix(params[:3])
        t = params[3:]

        if t[2] <= 0:
            return PoseResult(False, reason="target behind camera")

        roll, pitch, yaw = rotation_to_euler(r)
        pose = PoseEstimate(
            rotation_matrix=r,
            rvec=matrix_to_rodrigues(r),
            tvec=t.copy(),
            roll=roll,
            pitch=pitch,
            yaw=yaw,
            distance=float(np.linalg.norm(t) / 1000.0),
            reproj_error=self.reprojection_error(r, t, obj, img_px),
            iterations=iterations,
            cost_history=history,
            method='planar' if planar else 'dlt',
        )
        return PoseResult(True, pose, 'solved')
