"""
Noise fields for the particle simulation

Vectorized numpy counterparts of the GLSL functions in shaders.py so the
CPU compute path moves particles the same way the GPU path does:
- snoise3: 3D simplex noise (Ashima / McEwan formulation), roughly [-1, 1]
- curl_noise3: divergence-free flow from finite differences of snoise3
- turbulence3: three decorrelated snoise3 channels
"""

import numpy as np

# Simplex skew/unskew factors
_F3 = 1.0 / 3.0
_G3 = 1.0 / 6.0

# Finite-difference step used by curl_noise3
CURL_EPSILON = 0.1


def _mod289(x: np.ndarray) -> np.ndarray:
    return x - np.floor(x * (1.0 / 289.0)) * 289.0


def _permute(x: np.ndarray) -> np.ndarray:
    return _mod289(((x * 34.0) + 1.0) * x)


def _taylor_inv_sqrt(r: np.ndarray) -> np.ndarray:
    return 1.79284291400159 - 0.85373472095314 * r


def snoise3(p: np.ndarray) -> np.ndarray:
    """
    3D simplex noise.

    Args:
        p: (..., 3) sample points

    Returns:
        (...) noise values
    """
    p = np.asarray(p, dtype=np.float64)
    shape = p.shape[:-1]
    v = p.reshape(-1, 3)

    # Skew to find the simplex cell origin
    i = np.floor(v + v.sum(axis=1, keepdims=True) * _F3)
    x0 = v - i + i.sum(axis=1, keepdims=True) * _G3

    # Rank the components to pick the traversal order through the cell
    g = (x0 >= np.roll(x0, -1, axis=1)).astype(np.float64)   # step(x0.yzx, x0.xyz)
    l = 1.0 - g
    l_zxy = np.roll(l, 1, axis=1)
    i1 = np.minimum(g, l_zxy)
    i2 = np.maximum(g, l_zxy)

    # Corner offsets (N, 4, 3): origin, i1, i2, (1, 1, 1)
    n = v.shape[0]
    offsets = np.stack([np.zeros((n, 3)), i1, i2, np.ones((n, 3))], axis=1)

    # Corner-relative positions
    x = x0[:, None, :] - offsets + (np.arange(4) * _G3)[None, :, None]

    # Hash the corner lattice coordinates
    i = _mod289(i)
    h = _permute(i[:, 2:3] + offsets[:, :, 2])
    h = _permute(h + i[:, 1:2] + offsets[:, :, 1])
    h = _permute(h + i[:, 0:1] + offsets[:, :, 0])

    # Gradients from 7x7 points over a square, mapped onto an octahedron
    ns_x, ns_y, ns_z = 2.0 / 7.0, 0.5 / 7.0 - 1.0, 1.0 / 7.0
    j = h - 49.0 * np.floor(h * ns_z * ns_z)
    gx_ = np.floor(j * ns_z)
    gy_ = np.floor(j - 7.0 * gx_)
    gx = gx_ * ns_x + ns_y
    gy = gy_ * ns_x + ns_y
    gz = 1.0 - np.abs(gx) - np.abs(gy)

    sh = -(gz <= 0.0).astype(np.float64)
    gx = gx + (np.floor(gx) * 2.0 + 1.0) * sh
    gy = gy + (np.floor(gy) * 2.0 + 1.0) * sh

    grad = np.stack([gx, gy, gz], axis=2)
    grad *= _taylor_inv_sqrt((grad * grad).sum(axis=2))[:, :, None]

    # Mix the corner contributions
    m = np.maximum(0.6 - (x * x).sum(axis=2), 0.0)
    m = m * m
    out = 42.0 * ((m * m) * (grad * x).sum(axis=2)).sum(axis=1)
    return out.reshape(shape)


def curl_noise3(p: np.ndarray, epsilon: float = CURL_EPSILON) -> np.ndarray:
    """
    Curl of the potential (n, n, n) where n = snoise3, by central differences.
    Swirls rather than converging to sinks or sources.
    """
    p = np.asarray(p, dtype=np.float64)
    ex = np.array([epsilon, 0.0, 0.0])
    ey = np.array([0.0, epsilon, 0.0])
    ez = np.array([0.0, 0.0, epsilon])

    dx = snoise3(p + ex) - snoise3(p - ex)
    dy = snoise3(p + ey) - snoise3(p - ey)
    dz = snoise3(p + ez) - snoise3(p - ez)

    curl = np.stack([dy - dz, dz - dx, dx - dy], axis=-1)
    return curl / (2.0 * epsilon)


def turbulence3(p: np.ndarray) -> np.ndarray:
    """Three offset simplex channels forming a jitter vector"""
    p = np.asarray(p, dtype=np.float64)
    return np.stack([snoise3(p), snoise3(p + 100.0), snoise3(p + 200.0)], axis=-1)
