"""
Key Visual - GPGPU particle simulation
"""

from .gpgpu import ParticleSimulation, SimulationUniforms, texture_size_for, create_particle_uvs
from .compute import ComputeBackend, NumpyComputeBackend, GLComputeBackend
from .noise import snoise3, curl_noise3, turbulence3

__all__ = [
    'ParticleSimulation', 'SimulationUniforms', 'texture_size_for', 'create_particle_uvs',
    'ComputeBackend', 'NumpyComputeBackend', 'GLComputeBackend',
    'snoise3', 'curl_noise3', 'turbulence3',
]
