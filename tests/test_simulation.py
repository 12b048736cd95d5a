"""Tests for the ping-pong particle simulation."""

import logging
from unittest import mock

import numpy as np
import pytest

from keyvisual.core.errors import CapabilityError
from keyvisual.simulation.compute import (
    ComputeBackend, NumpyComputeBackend, GLComputeBackend, position_kernel, MAX_SPEED,
    create_headless_context,
)
from keyvisual.simulation.gpgpu import (
    ParticleSimulation, SimulationUniforms, texture_size_for, create_particle_uvs,
)


class FailingBackend(ComputeBackend):
    name = 'failing'

    def __init__(self):
        super().__init__()
        self.released = False

    def setup(self, size, position, velocity):
        raise CapabilityError("no float render targets")

    def release(self):
        self.released = True


def still_uniforms(**overrides) -> SimulationUniforms:
    """Only the return spring acts"""
    u = SimulationUniforms(flow_strength=0.0, pointer_strength=0.0, turbulence=0.0, return_strength=1.0)
    u.update(**overrides)
    return u


def test_texture_size():
    assert texture_size_for(0) == 1
    assert texture_size_for(1) == 1
    assert texture_size_for(2) == 2
    assert texture_size_for(4) == 2
    assert texture_size_for(5) == 4
    assert texture_size_for(50000) == 256
    assert texture_size_for(65536) == 256
    assert texture_size_for(65537) == 512


def test_particle_uvs_are_texel_centres():
    uvs = create_particle_uvs(4).reshape(-1, 2)
    assert len(uvs) == 16
    np.testing.assert_allclose(uvs[0], [0.125, 0.125])
    np.testing.assert_allclose(uvs[5], [0.375, 0.375])
    np.testing.assert_allclose(uvs[15], [0.875, 0.875])


def test_channel_layout():
    positions = np.array([[0.1, 0.2, 0.3], [-0.4, 0.5, -0.6], [0.7, -0.8, 0.9]], dtype=np.float32)
    sim = ParticleSimulation(positions, backend='numpy')
    assert sim.texture_size == 2
    assert sim.capacity == 4
    assert sim.particle_count == 3

    pos, vel = sim.read_state()
    flat_pos = pos.reshape(-1, 4)
    flat_vel = vel.reshape(-1, 4)
    np.testing.assert_allclose(flat_pos[:3, :3], positions)
    np.testing.assert_allclose(flat_pos[:3, 3], positions[:, 0])
    np.testing.assert_allclose(flat_vel[:3, 3], positions[:, 1])
    np.testing.assert_allclose(flat_vel[:, :3], 0)
    # Padding texel
    np.testing.assert_allclose(flat_pos[3], 0)


def test_origin_channels_survive_steps():
    positions = np.random.default_rng(0).uniform(-1, 1, size=(10, 3))
    sim = ParticleSimulation(positions, backend='numpy')
    for _ in range(5):
        sim.compute()
    pos, vel = sim.read_state()
    np.testing.assert_allclose(pos.reshape(-1, 4)[:10, 3], positions[:, 0].astype(np.float32))
    np.testing.assert_allclose(vel.reshape(-1, 4)[:10, 3], positions[:, 1].astype(np.float32))


def test_truncates_to_particle_count():
    positions = np.ones((10, 3), dtype=np.float32)
    sim = ParticleSimulation(positions, particle_count=3, backend='numpy')
    assert sim.texture_size == 2
    assert sim.read_positions().shape == (3, 3)


def test_bad_position_length():
    with pytest.raises(ValueError):
        ParticleSimulation(np.zeros(7), backend='numpy')


def test_zero_particles():
    sim = ParticleSimulation(np.zeros(0), backend='numpy')
    assert sim.texture_size == 1
    sim.compute()
    pos, vel = sim.read_state()
    assert not pos.any()
    assert not vel.any()
    assert sim.read_positions().shape == (0, 3)


def test_converges_to_origin():
    rng = np.random.default_rng(1)
    positions = rng.uniform(-1, 1, size=(64, 3)).astype(np.float32)
    positions[:, 2] = 0.0

    # Drift away from the rest positions first
    sim = ParticleSimulation(positions, backend='numpy', uniforms=SimulationUniforms(
        flow_strength=5.0, turbulence=5.0, return_strength=0.0, pointer_strength=0.0, delta_time=0.1,
    ))
    for step in range(30):
        sim.update_uniforms(time=step * 0.1)
        sim.compute()

    sim.update_uniforms(flow_strength=0.0, turbulence=0.0, return_strength=1.0)
    distances = [np.linalg.norm(sim.read_positions() - positions, axis=1).mean()]
    for _ in range(200):
        sim.compute()
        distances.append(np.linalg.norm(sim.read_positions() - positions, axis=1).mean())

    assert distances[0] > 0.05
    assert all(b <= a + 1e-7 for a, b in zip(distances, distances[1:]))
    assert distances[-1] < distances[0] * 0.5


def test_step_displacement_bounded_by_max_speed():
    positions = np.random.default_rng(2).uniform(-1, 1, size=(256, 3))
    uniforms = SimulationUniforms(
        flow_strength=50.0, return_strength=50.0, pointer_strength=50.0,
        turbulence=50.0, pointer=(0.0, 0.0, 0.0), delta_time=0.1,
    )
    sim = ParticleSimulation(positions, backend='numpy', uniforms=uniforms)
    before = sim.read_positions()
    for step in range(3):
        sim.update_uniforms(time=step * 0.1)
        sim.compute()
        after = sim.read_positions()
        moved = np.linalg.norm(after - before, axis=1)
        assert moved.max() <= MAX_SPEED * 0.1 + 1e-5
        before = after


def test_pointer_at_particle_is_ignored():
    position = np.zeros((1, 1, 4), dtype=np.float32)
    velocity = np.zeros((1, 1, 4), dtype=np.float32)
    out = np.zeros_like(position)
    uniforms = still_uniforms(pointer=(0.0, 0.0, 0.0), pointer_strength=10.0).shader_values()
    position_kernel(position, velocity, out, uniforms)
    assert np.isfinite(out).all()
    np.testing.assert_allclose(out, 0.0)


def test_pointer_repels_nearby_particle():
    positions = np.array([[0.2, 0.0, 0.0]])
    sim = ParticleSimulation(positions, backend='numpy', uniforms=still_uniforms(
        return_strength=0.0, pointer=(0.0, 0.0, 0.0), pointer_strength=1.0,
    ))
    sim.compute()
    assert sim.read_positions()[0, 0] > 0.2


def test_partial_uniform_updates():
    sim = ParticleSimulation(np.zeros((4, 3)), backend='numpy')
    sim.update_uniforms(time=2.5)
    sim.update_uniforms(pointer=(1, 2, 3))
    assert sim.uniforms.time == 2.5
    assert sim.uniforms.pointer == (1.0, 2.0, 3.0)
    assert sim.uniforms.flow_strength == pytest.approx(0.1)
    assert sim.uniforms.return_strength == pytest.approx(0.5)
    with pytest.raises(TypeError):
        sim.update_uniforms(gravity=1.0)


def test_position_texture_is_read_only():
    sim = ParticleSimulation(np.zeros((4, 3)), backend='numpy')
    tex = sim.position_texture
    assert tex.shape == (2, 2, 4)
    with pytest.raises(ValueError):
        tex[0, 0, 0] = 1.0


def test_backend_setup_failure_degrades(caplog):
    backend = FailingBackend()
    with caplog.at_level(logging.WARNING, logger='keyvisual.simulation.gpgpu'):
        sim = ParticleSimulation(np.zeros((4, 3)), backend=backend)
    assert not sim.available
    assert sim.backend is None
    assert backend.released
    assert any('unavailable' in r.message for r in caplog.records)


def test_auto_degrades_with_warning(monkeypatch, caplog):
    def no_gl(*args, **kwargs):
        raise CapabilityError("no context")

    monkeypatch.setattr('keyvisual.simulation.gpgpu.GLComputeBackend', no_gl)
    with caplog.at_level(logging.WARNING, logger='keyvisual.simulation.gpgpu'):
        sim = ParticleSimulation(np.zeros((4, 3)), backend='auto')

    assert not sim.available
    assert sim.position_texture is None
    assert any('unavailable' in r.message for r in caplog.records)
    sim.compute()
    sim.update_uniforms(time=1.0)
    assert sim.uniforms.time == 0.0
    with pytest.raises(CapabilityError):
        sim.read_positions()


def test_dispose_is_idempotent():
    sim = ParticleSimulation(np.zeros((4, 3)), backend='numpy')
    sim.dispose()
    sim.dispose()
    assert not sim.available
    sim.compute()
    assert sim.position_texture is None


def test_unknown_backend():
    with pytest.raises(ValueError):
        ParticleSimulation(np.zeros((1, 3)), backend='vulkan')


def _gl_backend_or_skip():
    try:
        return GLComputeBackend()
    except CapabilityError as e:
        pytest.skip(f"No OpenGL 3.3 context: {e}")


def test_gl_matches_numpy():
    gl = _gl_backend_or_skip()
    positions = np.random.default_rng(4).uniform(-1, 1, size=(100, 3)).astype(np.float32)
    uniforms = SimulationUniforms(pointer=(0.1, 0.1, 0.0), time=0.5)

    gpu = ParticleSimulation(positions, backend=gl, uniforms=uniforms)
    cpu = ParticleSimulation(positions, backend=NumpyComputeBackend(), uniforms=SimulationUniforms(**uniforms.to_dict()))
    try:
        for _ in range(3):
            gpu.compute()
            cpu.compute()
        np.testing.assert_allclose(gpu.read_positions(), cpu.read_positions(), atol=1e-3)
        _, vel = gpu.read_state()
        np.testing.assert_allclose(vel.reshape(-1, 4)[:100, 3], positions[:, 1], atol=1e-6)
    finally:
        gpu.dispose()
        cpu.dispose()


def test_shared_uniforms_are_copied():
    shared = SimulationUniforms(time=1.0)
    a = ParticleSimulation(np.zeros((4, 3)), backend='numpy', uniforms=shared)
    b = ParticleSimulation(np.zeros((4, 3)), backend='numpy', uniforms=shared)
    a.update_uniforms(time=5.0, pointer=(1, 1, 1))
    assert b.uniforms.time == 1.0
    assert shared.time == 1.0
    assert shared.pointer == (0.0, 0.0, -10.0)


def test_headless_context_falls_back_to_egl(monkeypatch):
    ctx = mock.Mock()
    calls = []

    def fake_context(require, backend=None):
        calls.append(backend)
        if backend != 'egl':
            raise RuntimeError("cannot open display")
        return ctx

    monkeypatch.setattr('keyvisual.simulation.compute.moderngl.create_standalone_context', fake_context)
    assert create_headless_context() is ctx
    assert calls == [None, 'egl']


def test_headless_context_failure_is_capability_error(monkeypatch):
    def no_context(require, backend=None):
        raise RuntimeError(f"no {backend or 'x11'}")

    monkeypatch.setattr('keyvisual.simulation.compute.moderngl.create_standalone_context', no_context)
    with pytest.raises(CapabilityError, match="egl"):
        create_headless_context()

    sim = ParticleSimulation(np.zeros((4, 3)), backend='gl')
    assert not sim.available
