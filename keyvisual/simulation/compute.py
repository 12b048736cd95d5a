"""
Compute backends - ping-pong texture passes for the particle simulation

Each simulated quantity is a square RGBA float texture with one texel per
particle. A pass reads the current texture(s) and writes the other half
of a pair, then the pair swaps. Two interchangeable backends:

- GLComputeBackend: GLSL fragment passes on a moderngl standalone context
- NumpyComputeBackend: the same kernels vectorized on the CPU
"""

import logging
import moderngl
import numpy as np
from typing import Dict, List, Optional, Any
from dataclasses import dataclass, field

from ..core.errors import CapabilityError
from .noise import curl_noise3, turbulence3
from .shaders import PASSTHROUGH_VERTEX_SHADER, VELOCITY_SHADER, POSITION_SHADER

logger = logging.getLogger(__name__)

# Fixed integration constants shared by both backends
VELOCITY_RETENTION = 0.95
VELOCITY_DAMPING = 0.98
MAX_SPEED = 0.5

# Pointer falloff
POINTER_REPEL_RADIUS = 0.5
POINTER_ATTRACT_SCALE = 0.3

# Below this distance the pointer direction is undefined and contributes nothing
POINTER_EPSILON = 1e-6


@dataclass
class ComputeVariable:
    """One simulated texture and the pass that advances it"""
    name: str
    fragment_shader: str
    dependencies: List[str] = field(default_factory=list)


# Velocity runs first so the position pass integrates with the fresh velocity
SIMULATION_VARIABLES = [
    ComputeVariable('textureVelocity', VELOCITY_SHADER, ['textureVelocity']),
    ComputeVariable('texturePosition', POSITION_SHADER, ['texturePosition', 'textureVelocity']),
]


# =============================================================================
# CPU kernels
# =============================================================================

def velocity_kernel(velocity: np.ndarray, out: np.ndarray, uniforms: Dict[str, Any]) -> None:
    """Damp xyz, carry w (origin Y) through"""
    damping = uniforms.get('uDamping', VELOCITY_DAMPING)
    out[..., :3] = velocity[..., :3] * damping
    out[..., 3] = velocity[..., 3]


def position_kernel(
    position: np.ndarray,
    velocity: np.ndarray,
    out: np.ndarray,
    uniforms: Dict[str, Any],
) -> None:
    """Force accumulation and integration, mirroring POSITION_SHADER"""
    pos = position.reshape(-1, 4)[:, :3].astype(np.float64)
    vel = velocity.reshape(-1, 4)[:, :3].astype(np.float64)
    origin = np.zeros_like(pos)
    origin[:, 0] = position.reshape(-1, 4)[:, 3]
    origin[:, 1] = velocity.reshape(-1, 4)[:, 3]

    t = float(uniforms['uTime'])
    dt = float(uniforms['uDeltaTime'])

    # Flow field
    flow_pos = pos * 2.0 + np.array([t * 0.1, 0.0, 0.0])
    flow = curl_noise3(flow_pos) * uniforms['uFlowStrength']

    # Spring back to the sampled rest position
    return_force = (origin - pos) * uniforms['uReturnStrength']

    # Pointer: repel inside the radius, gentle attraction outside
    to_pointer = np.asarray(uniforms['uPointer'], dtype=np.float64) - pos
    dist = np.linalg.norm(to_pointer, axis=1)
    influence = 1.0 / (1.0 + dist * dist * 4.0)
    safe = dist > POINTER_EPSILON
    direction = np.zeros_like(to_pointer)
    direction[safe] = to_pointer[safe] / dist[safe, None]
    scale = np.where(dist < POINTER_REPEL_RADIUS, -1.0, POINTER_ATTRACT_SCALE)
    pointer_force = direction * (influence * scale * uniforms['uPointerStrength'])[:, None]

    # Turbulence
    turb_pos = pos * 3.0 + np.array([t * 0.2, t * 0.15, t * 0.1])
    turbulence = turbulence3(turb_pos) * uniforms['uTurbulence']

    total = flow + return_force + pointer_force + turbulence
    vel = vel * VELOCITY_RETENTION + total * dt

    max_speed = uniforms.get('uMaxSpeed', MAX_SPEED)
    speed = np.linalg.norm(vel, axis=1)
    over = speed > max_speed
    vel[over] *= (max_speed / speed[over])[:, None]

    result = out.reshape(-1, 4)
    result[:, :3] = pos + vel * dt
    result[:, 3] = position.reshape(-1, 4)[:, 3]


# =============================================================================
# Backends
# =============================================================================

class ComputeBackend:
    """
    Owns the position/velocity texture pairs.

    Subclasses implement setup(), step(), the two readbacks and release().
    """

    name = 'base'

    def __init__(self):
        self.size = 0

    def setup(self, size: int, position: np.ndarray, velocity: np.ndarray) -> None:
        raise NotImplementedError

    def step(self, uniforms: Dict[str, Any]) -> None:
        raise NotImplementedError

    @property
    def position_texture(self) -> Any:
        raise NotImplementedError

    def read_positions(self) -> np.ndarray:
        """(size, size, 4) snapshot of the current position texture"""
        raise NotImplementedError

    def read_velocities(self) -> np.ndarray:
        raise NotImplementedError

    def release(self) -> None:
        pass


class NumpyComputeBackend(ComputeBackend):
    """CPU ping-pong buffers"""

    name = 'numpy'

    def __init__(self):
        super().__init__()
        self._textures: Dict[str, List[np.ndarray]] = {}
        self._current: Dict[str, int] = {}

    def setup(self, size, position, velocity):
        self.size = size
        self._textures = {
            'texturePosition': [position.astype(np.float32).copy(), np.zeros_like(position, dtype=np.float32)],
            'textureVelocity': [velocity.astype(np.float32).copy(), np.zeros_like(velocity, dtype=np.float32)],
        }
        self._current = {name: 0 for name in self._textures}

    def _read(self, name: str) -> np.ndarray:
        return self._textures[name][self._current[name]]

    def _write_target(self, name: str) -> np.ndarray:
        return self._textures[name][1 - self._current[name]]

    def _swap(self, name: str) -> None:
        self._current[name] = 1 - self._current[name]

    def step(self, uniforms):
        if not self._textures:
            return

        velocity_kernel(self._read('textureVelocity'), self._write_target('textureVelocity'), uniforms)
        self._swap('textureVelocity')

        position_kernel(
            self._read('texturePosition'),
            self._read('textureVelocity'),
            self._write_target('texturePosition'),
            uniforms,
        )
        self._swap('texturePosition')

    @property
    def position_texture(self):
        if not self._textures:
            return None
        view = self._read('texturePosition').view()
        view.flags.writeable = False
        return view

    def read_positions(self):
        return self._read('texturePosition').copy()

    def read_velocities(self):
        return self._read('textureVelocity').copy()

    def release(self):
        self._textures = {}
        self._current = {}


# Default platform backend first, then EGL for hosts without a display
CONTEXT_BACKENDS = (None, 'egl')


def create_headless_context():
    """Standalone GL 3.3 context, raising CapabilityError when no backend provides one"""
    errors = []
    for backend in CONTEXT_BACKENDS:
        kwargs = {'backend': backend} if backend else {}
        try:
            return moderngl.create_standalone_context(require=330, **kwargs)
        except Exception as e:
            logger.debug("GL context backend %s failed: %s", backend or 'default', e)
            errors.append(f"{backend or 'default'}: {e}")
    raise CapabilityError(f"OpenGL 3.3 context unavailable ({'; '.join(errors)})")


class GLComputeBackend(ComputeBackend):
    """
    Fragment-shader passes over a fullscreen quad.

    Raises CapabilityError when no GL 3.3 context can be created or the
    passes fail to compile.
    """

    name = 'gl'

    def __init__(self, ctx=None):
        super().__init__()
        self.ctx = ctx if ctx is not None else create_headless_context()

        self._owns_ctx = ctx is None
        self._programs: Dict[str, Any] = {}
        self._vaos: Dict[str, Any] = {}
        self._textures: Dict[str, List[Any]] = {}
        self._framebuffers: Dict[str, List[Any]] = {}
        self._current: Dict[str, int] = {}
        self._quad = None

        try:
            quad = np.array([-1, -1, 1, -1, -1, 1, 1, 1], dtype='f4')
            self._quad = self.ctx.buffer(quad.tobytes())
            for var in SIMULATION_VARIABLES:
                program = self.ctx.program(
                    vertex_shader=PASSTHROUGH_VERTEX_SHADER,
                    fragment_shader=var.fragment_shader,
                )
                self._programs[var.name] = program
                self._vaos[var.name] = self.ctx.simple_vertex_array(program, self._quad, 'in_vert')
        except Exception as e:
            self.release()
            raise CapabilityError(f"Simulation shaders failed to build: {e}") from e

    def _make_texture(self, size: int, data: Optional[np.ndarray] = None):
        payload = data.astype('f4').tobytes() if data is not None else None
        tex = self.ctx.texture((size, size), 4, data=payload, dtype='f4')
        tex.filter = (moderngl.NEAREST, moderngl.NEAREST)
        tex.repeat_x = False
        tex.repeat_y = False
        return tex

    def setup(self, size, position, velocity):
        self.size = size
        initial = {'texturePosition': position, 'textureVelocity': velocity}
        try:
            for name, data in initial.items():
                pair = [self._make_texture(size, data), self._make_texture(size)]
                self._textures[name] = pair
                self._framebuffers[name] = [self.ctx.framebuffer([tex]) for tex in pair]
                self._current[name] = 0
        except Exception as e:
            self.release()
            raise CapabilityError(f"Float render targets unavailable: {e}") from e

    def _set_uniforms(self, program, uniforms: Dict[str, Any]) -> None:
        # Inactive uniforms are stripped by the GLSL compiler
        for key, value in uniforms.items():
            member = program.get(key, None)
            if member is not None:
                member.value = tuple(value) if isinstance(value, (list, tuple, np.ndarray)) else float(value)

    def step(self, uniforms):
        if not self._textures:
            return

        for var in SIMULATION_VARIABLES:
            program = self._programs[var.name]
            for location, dep in enumerate(var.dependencies):
                self._textures[dep][self._current[dep]].use(location=location)
                sampler = program.get(dep, None)
                if sampler is not None:
                    sampler.value = location
            self._set_uniforms(program, uniforms)

            target = 1 - self._current[var.name]
            self._framebuffers[var.name][target].use()
            self._vaos[var.name].render(moderngl.TRIANGLE_STRIP)
            self._current[var.name] = target

    @property
    def position_texture(self):
        if not self._textures:
            return None
        return self._textures['texturePosition'][self._current['texturePosition']]

    def _read(self, name: str) -> np.ndarray:
        tex = self._textures[name][self._current[name]]
        return np.frombuffer(tex.read(), dtype='f4').reshape(self.size, self.size, 4).copy()

    def read_positions(self):
        return self._read('texturePosition')

    def read_velocities(self):
        return self._read('textureVelocity')

    def release(self):
        for fbos in self._framebuffers.values():
            for fbo in fbos:
                fbo.release()
        for textures in self._textures.values():
            for tex in textures:
                tex.release()
        for vao in self._vaos.values():
            vao.release()
        for program in self._programs.values():
            program.release()
        if self._quad is not None:
            self._quad.release()
            self._quad = None

        self._framebuffers = {}
        self._textures = {}
        self._vaos = {}
        self._programs = {}
        self._current = {}

        if self._owns_ctx and self.ctx is not None:
            self.ctx.release()
            self.ctx = None
        logger.debug("Released GL compute resources")


def create_backend(kind: str) -> ComputeBackend:
    """'gl' or 'numpy'"""
    if kind == 'gl':
        return GLComputeBackend()
    if kind == 'numpy':
        return NumpyComputeBackend()
    raise ValueError(f"Unknown compute backend: {kind}")
