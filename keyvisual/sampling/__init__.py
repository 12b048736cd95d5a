"""
Key Visual - Pixel features, layer selection and merging
"""

from .features import PixelFeatures, FeatureExtractor, extract_pixel_features, extract_pixel_features_async
from .selector import LayerData, LayerSelector, compute_layer_counts, compute_importance
from .merger import MergedParticles, LayerRange, merge_layers, calculate_draw_counts
from .simple import SimpleSamplerOptions, SampledParticles, sample_image_to_particles, sample_with_depth_map
from .layered import (
    LayeredParticleData, LayeredSampler, KeyVisualLoader, sample_layered_particles,
)

__all__ = [
    'PixelFeatures', 'FeatureExtractor', 'extract_pixel_features', 'extract_pixel_features_async',
    'LayerData', 'LayerSelector', 'compute_layer_counts', 'compute_importance',
    'MergedParticles', 'LayerRange', 'merge_layers', 'calculate_draw_counts',
    'LayeredParticleData', 'LayeredSampler', 'KeyVisualLoader', 'sample_layered_particles',
    'SimpleSamplerOptions', 'SampledParticles', 'sample_image_to_particles', 'sample_with_depth_map',
]
