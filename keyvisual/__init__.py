"""
Key Visual - Layered particle sampling and GPU simulation for key visuals
"""

from .core import (
    KeyVisualError, ImageDecodeError, PointCloudFormatError, CapabilityError,
    LayerKind, LayerConfig, ArtDirectionConfig, LayeredSamplerConfig,
    ImageLoader, ImageCache, get_sampler_preset,
    encode_tfpc, decode_tfpc, save_tfpc, load_tfpc,
)
from .sampling import (
    LayeredParticleData, LayeredSampler, KeyVisualLoader, MergedParticles,
    sample_layered_particles, merge_layers, calculate_draw_counts,
)
from .simulation import ParticleSimulation, SimulationUniforms

__version__ = "0.1.0"
__all__ = [
    'KeyVisualError',
    'ImageDecodeError',
    'PointCloudFormatError',
    'CapabilityError',
    'LayerKind',
    'LayerConfig',
    'ArtDirectionConfig',
    'LayeredSamplerConfig',
    'ImageLoader',
    'ImageCache',
    'LayeredParticleData',
    'LayeredSampler',
    'KeyVisualLoader',
    'MergedParticles',
    'ParticleSimulation',
    'SimulationUniforms',
    'sample_layered_particles',
    'merge_layers',
    'calculate_draw_counts',
    'encode_tfpc',
    'decode_tfpc',
    'save_tfpc',
    'load_tfpc',
    'sample',
    'bake',
]


def sample(
    image_src,
    depth_map_src=None,
    preset: str = None,
    seed: int = None,
    **overrides
) -> LayeredParticleData:
    """
    Sample an image into layered particles.

    Args:
        image_src: Image path, URL, bytes, PIL image or RGBA array
        depth_map_src: Optional depth map (red channel, white = near)
        preset: Built-in preset name (default settings if None)
        seed: Seed for the per-particle animation phase
        **overrides: Config fields, e.g. max_particles=20000 or
            layers={'highlight': {'enabled': False}}

    Returns:
        LayeredParticleData
    """
    config = get_sampler_preset(preset) if preset else LayeredSamplerConfig()
    if overrides:
        config = config.with_overrides(**overrides)
    return sample_layered_particles(image_src, depth_map_src, config=config, seed=seed)


def bake(
    image_src,
    output_path,
    depth_map_src=None,
    preset: str = 'bake',
    **overrides
):
    """
    Sample an image and write a baked .tfpc point cloud.

    Returns:
        Path of the written file
    """
    data = sample(image_src, depth_map_src, preset=preset, **overrides)
    return save_tfpc(data, output_path)
