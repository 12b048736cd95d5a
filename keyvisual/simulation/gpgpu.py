"""
GPGPU particle simulation

Positions and velocities live in square float textures, one texel per
particle. Each compute() advances every particle one frame:

    velocity pass  -> damp previous velocity
    position pass  -> flow + return + pointer + turbulence, integrate

The rest position rides along in the otherwise unused .w channels
(position.w = origin X, velocity.w = origin Y; origin Z is the plane z = 0).
"""

import logging
import math
import numpy as np
from typing import Any, Dict, Optional, Tuple, Union
from dataclasses import dataclass, asdict, fields, replace

from ..core.errors import CapabilityError
from .compute import (
    ComputeBackend, GLComputeBackend, create_backend,
    VELOCITY_DAMPING, MAX_SPEED,
)

logger = logging.getLogger(__name__)


@dataclass
class SimulationUniforms:
    """Per-frame parameters shared by the passes"""
    time: float = 0.0
    delta_time: float = 0.016
    morph_progress: float = 0.0     # reserved, not read by the passes
    flow_strength: float = 0.1
    return_strength: float = 0.5
    pointer: Tuple[float, float, float] = (0.0, 0.0, -10.0)
    pointer_strength: float = 0.3
    turbulence: float = 0.02

    def update(self, **kwargs) -> None:
        """Partial update; unknown names raise TypeError"""
        valid = {f.name for f in fields(self)}
        for key, value in kwargs.items():
            if key not in valid:
                raise TypeError(f"Unknown simulation uniform: {key}")
            if key == 'pointer':
                value = tuple(float(v) for v in value)
                if len(value) != 3:
                    raise ValueError("pointer must have 3 components")
            setattr(self, key, value)

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    def shader_values(self) -> Dict[str, Any]:
        """Uniform names as the passes declare them"""
        return {
            'uTime': float(self.time),
            'uDeltaTime': float(self.delta_time),
            'uMorphProgress': float(self.morph_progress),
            'uFlowStrength': float(self.flow_strength),
            'uReturnStrength': float(self.return_strength),
            'uPointer': tuple(float(v) for v in self.pointer),
            'uPointerStrength': float(self.pointer_strength),
            'uTurbulence': float(self.turbulence),
            'uMaxSpeed': MAX_SPEED,
            'uDamping': VELOCITY_DAMPING,
        }


def texture_size_for(particle_count: int) -> int:
    """Smallest power of two whose square holds particle_count texels"""
    side = math.ceil(math.sqrt(max(particle_count, 0)))
    if side <= 1:
        return 1
    return 1 << (side - 1).bit_length()


def create_particle_uvs(texture_size: int) -> np.ndarray:
    """
    Texel-centre lookup coordinates for every texel (u, v interleaved).

    Particle i maps to column i % size, row i // size.
    """
    size = texture_size
    i = np.arange(size * size)
    uvs = np.empty((size * size, 2), dtype=np.float32)
    uvs[:, 0] = ((i % size) + 0.5) / size
    uvs[:, 1] = ((i // size) + 0.5) / size
    return uvs.reshape(-1)


class ParticleSimulation:
    """
    Ping-pong simulation over a compute backend.

    A missing GPU capability leaves the simulation degraded: compute() does
    nothing and position_texture is None, so the host can fall back to
    animating particles itself.
    """

    def __init__(
        self,
        initial_positions: np.ndarray,
        particle_count: Optional[int] = None,
        backend: Union[str, ComputeBackend] = 'auto',
        uniforms: Optional[SimulationUniforms] = None,
    ):
        positions = np.asarray(initial_positions, dtype=np.float32).reshape(-1)
        if len(positions) % 3 != 0:
            raise ValueError(f"initial_positions length {len(positions)} is not a multiple of 3")

        available = len(positions) // 3
        self._particle_count = available if particle_count is None else int(particle_count)
        if self._particle_count < 0:
            raise ValueError("particle_count must be >= 0")

        self.texture_size = texture_size_for(self._particle_count)
        self.uniforms = replace(uniforms) if uniforms is not None else SimulationUniforms()
        self._disposed = False
        self.backend: Optional[ComputeBackend] = None

        try:
            self.backend = self._resolve_backend(backend)
            position, velocity = self._initial_textures(positions)
            self.backend.setup(self.texture_size, position, velocity)
        except CapabilityError as e:
            logger.warning("GPU particle simulation unavailable, running degraded: %s", e)
            if self.backend is not None:
                self.backend.release()
                self.backend = None

        logger.info(
            "Particle simulation: %d particles, %dx%d texture, backend=%s",
            self._particle_count, self.texture_size, self.texture_size,
            self.backend.name if self.backend else 'none',
        )

    def _resolve_backend(self, backend) -> ComputeBackend:
        if isinstance(backend, ComputeBackend):
            return backend
        if backend == 'auto':
            return GLComputeBackend()
        return create_backend(backend)

    def _initial_textures(self, positions: np.ndarray) -> Tuple[np.ndarray, np.ndarray]:
        """Position (xyz, origin X) and velocity (0, origin Y) textures"""
        size = self.texture_size
        count = min(self._particle_count, len(positions) // 3)
        pts = positions[:count * 3].reshape(-1, 3)

        position = np.zeros((size * size, 4), dtype=np.float32)
        velocity = np.zeros((size * size, 4), dtype=np.float32)
        position[:count, :3] = pts
        position[:count, 3] = pts[:, 0]
        velocity[:count, 3] = pts[:, 1]
        return position.reshape(size, size, 4), velocity.reshape(size, size, 4)

    # -------------------------------------------------------------------------

    @property
    def available(self) -> bool:
        return self.backend is not None and not self._disposed

    @property
    def particle_count(self) -> int:
        return self._particle_count

    @property
    def capacity(self) -> int:
        return self.texture_size * self.texture_size

    @property
    def position_texture(self):
        """Current position texture (read-only array or GL texture), None when degraded"""
        if not self.available:
            return None
        return self.backend.position_texture

    def update_uniforms(self, **kwargs) -> None:
        """Set any subset of SimulationUniforms fields; others keep their values"""
        if not self.available:
            return
        self.uniforms.update(**kwargs)

    def compute(self) -> None:
        """Advance one frame"""
        if not self.available or self._particle_count == 0:
            return
        self.backend.step(self.uniforms.shader_values())

    def read_positions(self) -> np.ndarray:
        """Snapshot of the live particles as (particle_count, 3)"""
        if not self.available:
            raise CapabilityError("Particle simulation is not available")
        data = self.backend.read_positions().reshape(-1, 4)
        return data[:self._particle_count, :3].copy()

    def read_state(self) -> Tuple[np.ndarray, np.ndarray]:
        """Full (size, size, 4) position and velocity textures"""
        if not self.available:
            raise CapabilityError("Particle simulation is not available")
        return self.backend.read_positions(), self.backend.read_velocities()

    def dispose(self) -> None:
        if self._disposed:
            return
        self._disposed = True
        if self.backend is not None:
            self.backend.release()
        logger.debug("Particle simulation disposed")
