"""
Key Visual - Core configuration, image loading and baked point clouds
"""

from .errors import KeyVisualError, ImageDecodeError, PointCloudFormatError, CapabilityError
from .config import (
    LayerKind, LAYER_ORDER, ColorMode,
    LayerConfig, ArtDirectionConfig, LayeredSamplerConfig,
    DEFAULT_LAYER_CONFIG, DEFAULT_ART_DIRECTION, BUILTIN_PRESETS,
    list_sampler_presets, get_sampler_preset, load_sampler_config,
)
from .loader import ImageLoader, ImageCache, LoadedImage, ImageSource
# Imports the sampling package, so it must come after the modules sampling depends on
from .pointcloud import (
    DecodedPointCloud, encode_tfpc, decode_tfpc, save_tfpc, load_tfpc,
    estimate_tfpc_size, format_file_size,
)

__all__ = [
    'KeyVisualError', 'ImageDecodeError', 'PointCloudFormatError', 'CapabilityError',
    'LayerKind', 'LAYER_ORDER', 'ColorMode',
    'LayerConfig', 'ArtDirectionConfig', 'LayeredSamplerConfig',
    'DEFAULT_LAYER_CONFIG', 'DEFAULT_ART_DIRECTION', 'BUILTIN_PRESETS',
    'list_sampler_presets', 'get_sampler_preset', 'load_sampler_config',
    'ImageLoader', 'ImageCache', 'LoadedImage', 'ImageSource',
    'DecodedPointCloud', 'encode_tfpc', 'decode_tfpc', 'save_tfpc', 'load_tfpc',
    'estimate_tfpc_size', 'format_file_size',
]
