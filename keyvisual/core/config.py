"""
Sampler Configuration - Layer, art-direction and sampling settings
Built-in presets plus YAML loading for host-supplied overrides
"""

import re
import copy
import yaml
from pathlib import Path
from typing import Dict, List, Optional, Any, Union
from dataclasses import dataclass, field, asdict, fields
from enum import Enum


# ============================================================================
# Enums
# ============================================================================

class LayerKind(str, Enum):
    """Named particle subsets, merged in this declared order"""
    CONTOUR = "contour"
    FILL = "fill"
    HIGHLIGHT = "highlight"


LAYER_ORDER = (LayerKind.CONTOUR, LayerKind.FILL, LayerKind.HIGHLIGHT)


class ColorMode(str, Enum):
    """How the renderer colors a layer"""
    IMAGE = "image"   # original pixel colors
    TINT = "tint"     # renderer primary/accent colors


# ============================================================================
# Helpers
# ============================================================================

_CAMEL_RE = re.compile(r'(?<!^)(?=[A-Z])')


def _snake(key: str) -> str:
    """Convert camelCase keys (as stored by the web host) to snake_case"""
    return _CAMEL_RE.sub('_', key).lower()


def _normalize_keys(data: Dict[str, Any]) -> Dict[str, Any]:
    return {_snake(k): v for k, v in data.items()}


def _filter_fields(cls, data: Dict[str, Any]) -> Dict[str, Any]:
    valid_fields = {f.name for f in fields(cls)}
    return {k: v for k, v in _normalize_keys(data).items() if k in valid_fields}


# ============================================================================
# Config Data Structures
# ============================================================================

@dataclass
class LayerConfig:
    """Selection thresholds and visual multipliers for one layer"""

    enabled: bool = True
    # Relative share of max_particles
    weight: float = 0.45
    # 0 = rank purely by luma, 1 = rank purely by edge strength
    importance_edge_bias: float = 0.5
    min_alpha: float = 0.1
    min_luma: float = 0.0
    min_edge: float = 0.0
    opacity_multiplier: float = 1.0
    size_multiplier: float = 1.0
    color_mode: ColorMode = ColorMode.IMAGE

    def __post_init__(self):
        self.color_mode = ColorMode(self.color_mode)
        if self.weight < 0:
            raise ValueError(f"Layer weight must be >= 0, got {self.weight}")

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data['color_mode'] = self.color_mode.value
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any], base: Optional['LayerConfig'] = None) -> 'LayerConfig':
        """Create from dictionary, filling missing keys from base"""
        merged = base.to_dict() if base is not None else {}
        merged.update(_filter_fields(cls, data))
        return cls(**merged)


@dataclass
class ArtDirectionConfig:
    """Global tone and depth adjustments shared by every layer"""

    # 1 = neutral, >1 = more contrast around the 0.5 midpoint
    contrast: float = 1.0
    # 1 = linear, <1 = brighter mids, >1 = darker mids
    gamma: float = 1.0
    depth_scale: float = 0.8
    depth_gamma: float = 1.0
    depth_invert: bool = False
    # Floors combined with each layer's minimums via max()
    luma_threshold: float = 0.03
    alpha_threshold: float = 0.1

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: Dict[str, Any],
                  base: Optional['ArtDirectionConfig'] = None) -> 'ArtDirectionConfig':
        merged = base.to_dict() if base is not None else {}
        merged.update(_filter_fields(cls, data))
        return cls(**merged)


DEFAULT_LAYER_CONFIG: Dict[LayerKind, LayerConfig] = {
    LayerKind.CONTOUR: LayerConfig(
        enabled=True,
        weight=0.45,
        importance_edge_bias=0.8,  # heavily favor edges
        min_alpha=0.1,
        min_luma=0.02,
        min_edge=0.15,
        opacity_multiplier=1.0,
        size_multiplier=0.8,
        color_mode=ColorMode.TINT,
    ),
    LayerKind.FILL: LayerConfig(
        enabled=True,
        weight=0.45,
        importance_edge_bias=0.2,  # favor luma
        min_alpha=0.1,
        min_luma=0.05,
        min_edge=0.0,
        opacity_multiplier=0.7,
        size_multiplier=1.2,
        color_mode=ColorMode.IMAGE,
    ),
    LayerKind.HIGHLIGHT: LayerConfig(
        enabled=True,
        weight=0.1,
        importance_edge_bias=0.3,
        min_alpha=0.1,
        min_luma=0.7,  # bright pixels only
        min_edge=0.0,
        opacity_multiplier=1.2,
        size_multiplier=1.5,
        color_mode=ColorMode.TINT,
    ),
}

DEFAULT_ART_DIRECTION = ArtDirectionConfig()


def _default_layers() -> Dict[LayerKind, LayerConfig]:
    return copy.deepcopy(DEFAULT_LAYER_CONFIG)


@dataclass
class LayeredSamplerConfig:
    """Full sampling configuration"""

    max_particles: int = 50000
    # Grid stride in sample pixels (higher = fewer rows, faster)
    sample_step: int = 2
    # Longer image side is scaled down to this before sampling
    max_sample_dim: int = 512
    # None = use the sampled image's own width / height
    aspect_ratio: Optional[float] = None
    # Drop fully transparent pixels during extraction
    skip_transparent: bool = False
    art_direction: ArtDirectionConfig = field(default_factory=ArtDirectionConfig)
    layers: Dict[LayerKind, LayerConfig] = field(default_factory=_default_layers)

    def __post_init__(self):
        if self.max_particles < 0:
            raise ValueError(f"max_particles must be >= 0, got {self.max_particles}")
        if self.sample_step < 1:
            raise ValueError(f"sample_step must be >= 1, got {self.sample_step}")
        if self.max_sample_dim < 1:
            raise ValueError(f"max_sample_dim must be >= 1, got {self.max_sample_dim}")
        layers = {LayerKind(k): v for k, v in self.layers.items()}
        for kind in LAYER_ORDER:
            layers.setdefault(kind, copy.deepcopy(DEFAULT_LAYER_CONFIG[kind]))
        self.layers = layers

    def layer(self, kind: Union[LayerKind, str]) -> LayerConfig:
        return self.layers[LayerKind(kind)]

    def to_dict(self) -> Dict[str, Any]:
        return {
            'max_particles': self.max_particles,
            'sample_step': self.sample_step,
            'max_sample_dim': self.max_sample_dim,
            'aspect_ratio': self.aspect_ratio,
            'skip_transparent': self.skip_transparent,
            'art_direction': self.art_direction.to_dict(),
            'layers': {kind.value: self.layers[kind].to_dict() for kind in LAYER_ORDER},
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any],
                  base: Optional['LayeredSamplerConfig'] = None) -> 'LayeredSamplerConfig':
        """
        Merge a partial dictionary over base (or the defaults).

        Nested art_direction and per-layer entries merge field by field,
        so {'layers': {'fill': {'weight': 0.6}}} keeps every other fill default.
        """
        base = base if base is not None else cls()
        data = _normalize_keys(data or {})

        art = ArtDirectionConfig.from_dict(data.get('art_direction') or {}, base=base.art_direction)

        layers = {}
        layer_data = data.get('layers') or {}
        for kind in LAYER_ORDER:
            overrides = layer_data.get(kind.value) or layer_data.get(kind) or {}
            layers[kind] = LayerConfig.from_dict(overrides, base=base.layers[kind])

        scalars = {
            k: v for k, v in _filter_fields(cls, data).items()
            if k not in ('art_direction', 'layers')
        }
        merged = {
            'max_particles': base.max_particles,
            'sample_step': base.sample_step,
            'max_sample_dim': base.max_sample_dim,
            'aspect_ratio': base.aspect_ratio,
            'skip_transparent': base.skip_transparent,
        }
        merged.update(scalars)
        return cls(art_direction=art, layers=layers, **merged)

    def with_overrides(self, **overrides) -> 'LayeredSamplerConfig':
        """Return a copy with top-level or nested overrides applied"""
        return LayeredSamplerConfig.from_dict(overrides, base=self)


# ============================================================================
# Built-in Presets
# ============================================================================

BUILTIN_PRESETS: Dict[str, Dict[str, Any]] = {
    "default": {},

    # Low-cost pass used while art-directing
    "preview": {
        "max_particles": 10000,
        "sample_step": 4,
    },

    # Full-density pass for baking point clouds
    "bake": {
        "sample_step": 1,
    },

    "thoughtform-gateway": {
        "max_particles": 50000,
        "art_direction": {"depth_scale": 1.2},
    },

    # Outline-heavy rendering for line-art marks
    "line-art": {
        "layers": {
            "contour": {"weight": 0.7, "min_edge": 0.1},
            "fill": {"weight": 0.25},
            "highlight": {"weight": 0.05},
        },
    },
}


def list_sampler_presets() -> List[str]:
    """List built-in preset names"""
    return sorted(BUILTIN_PRESETS)


def get_sampler_preset(name: str) -> LayeredSamplerConfig:
    """Build a sampler config from a built-in preset"""
    if name not in BUILTIN_PRESETS:
        raise ValueError(f"Unknown sampler preset: {name}")
    return LayeredSamplerConfig.from_dict(copy.deepcopy(BUILTIN_PRESETS[name]))


def load_sampler_config(path: Union[str, Path]) -> LayeredSamplerConfig:
    """
    Load a sampler config from a YAML file.

    The file holds the same keys as LayeredSamplerConfig.to_dict(); an
    optional top-level 'preset' names a built-in preset to start from.
    """
    path = Path(path)
    if not path.exists():
        raise FileNotFoundError(f"File not found: {path}")

    with open(path, 'r') as f:
        data = yaml.safe_load(f) or {}

    if not isinstance(data, dict):
        raise ValueError(f"Sampler config must be a mapping: {path}")

    preset = data.pop('preset', None)
    base = get_sampler_preset(preset) if preset else None
    return LayeredSamplerConfig.from_dict(data, base=base)
