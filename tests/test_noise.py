"""Tests for the numpy noise fields."""

import numpy as np

from keyvisual.simulation.noise import snoise3, curl_noise3, turbulence3


def test_snoise_shape_and_range():
    rng = np.random.default_rng(0)
    p = rng.uniform(-20, 20, size=(4000, 3))
    n = snoise3(p)
    assert n.shape == (4000,)
    assert np.abs(n).max() <= 1.1
    assert n.std() > 0.1


def test_snoise_deterministic_and_batched():
    p = np.array([[0.3, 1.7, -2.2], [5.1, 0.0, 0.4]])
    single = np.array([snoise3(p[0:1])[0], snoise3(p[1:2])[0]])
    np.testing.assert_allclose(snoise3(p), single)
    assert snoise3(np.zeros((2, 2, 3))).shape == (2, 2)


def test_snoise_is_continuous():
    p = np.array([[1.234, -0.5, 2.25]])
    d = np.abs(snoise3(p + 1e-4) - snoise3(p))
    assert d[0] < 1e-2


def test_curl_is_divergence_free():
    rng = np.random.default_rng(1)
    p = rng.uniform(-3, 3, size=(200, 3))
    # Same step as the curl stencil, so the discrete operators cancel exactly
    h = 0.1
    div = np.zeros(len(p))
    for axis in range(3):
        e = np.zeros(3)
        e[axis] = h
        div += (curl_noise3(p + e)[:, axis] - curl_noise3(p - e)[:, axis]) / (2 * h)
    assert np.linalg.norm(curl_noise3(p), axis=1).mean() > 0.1
    assert np.abs(div).max() < 1e-8


def test_turbulence_channels_differ():
    p = np.array([[0.1, 0.2, 0.3]])
    t = turbulence3(p)
    assert t.shape == (1, 3)
    assert len(set(np.round(t[0], 8))) == 3
