"""
Layer Selector - Importance-ranked particle selection per layer

Each layer filters the shared feature table by its thresholds, ranks the
survivors by an edge/luma importance blend and keeps a fixed budget.
Art direction (contrast, gamma, depth remap) is applied here rather than
at extraction so one table can serve many profiles.
"""

import logging
import numpy as np
from typing import Dict, Optional, Union
from dataclasses import dataclass, field

from ..core.config import (
    LayerKind, LayerConfig, ArtDirectionConfig, LAYER_ORDER,
)
from .features import PixelFeatures

logger = logging.getLogger(__name__)


# =============================================================================
# Art-direction transforms
# =============================================================================

def apply_contrast(value: np.ndarray, contrast: float) -> np.ndarray:
    """Linear scale around the 0.5 midpoint, clamped to [0, 1]"""
    return np.clip((value - 0.5) * contrast + 0.5, 0.0, 1.0)


def apply_gamma(value: np.ndarray, gamma: float) -> np.ndarray:
    return np.power(np.maximum(value, 0.0), gamma)


def adjust_luma(luma: np.ndarray, art: ArtDirectionConfig) -> np.ndarray:
    """gamma(contrast(luma)), shared by every layer"""
    return apply_gamma(apply_contrast(luma, art.contrast), art.gamma).astype(np.float32)


def remap_depth(depth_raw: np.ndarray, art: ArtDirectionConfig) -> np.ndarray:
    """Raw [0, 1] depth to a Z coordinate centred on 0"""
    d = 1.0 - depth_raw if art.depth_invert else depth_raw
    d = apply_gamma(d, art.depth_gamma)
    return ((d - 0.5) * art.depth_scale).astype(np.float32)


def compute_importance(luma: np.ndarray, edge_weight: np.ndarray, edge_bias: float) -> np.ndarray:
    return edge_weight * edge_bias + luma * (1.0 - edge_bias)


def compute_layer_counts(layers: Dict[LayerKind, LayerConfig], max_particles: int) -> Dict[LayerKind, int]:
    """
    Split max_particles across enabled layers by weight.
    Disabled layers, zero total weight and zero budget all give 0.
    """
    counts = {kind: 0 for kind in LAYER_ORDER}
    enabled = [kind for kind in LAYER_ORDER if layers[kind].enabled]
    total_weight = sum(layers[kind].weight for kind in enabled)

    if total_weight <= 0 or max_particles <= 0:
        return counts

    for kind in enabled:
        # Half-up rounding to match the host renderer's Math.round
        share = max_particles * (layers[kind].weight / total_weight)
        counts[kind] = int(np.floor(share + 0.5))
    return counts


# =============================================================================
# Layer data
# =============================================================================

@dataclass
class LayerData:
    """Selected subset for one layer"""
    kind: LayerKind
    config: LayerConfig
    positions: np.ndarray = field(default_factory=lambda: np.zeros(0, dtype=np.float32))  # xyz interleaved
    colors: np.ndarray = field(default_factory=lambda: np.zeros(0, dtype=np.float32))     # rgb interleaved
    luma: np.ndarray = field(default_factory=lambda: np.zeros(0, dtype=np.float32))       # art-adjusted
    alpha: np.ndarray = field(default_factory=lambda: np.zeros(0, dtype=np.float32))
    edge_weight: np.ndarray = field(default_factory=lambda: np.zeros(0, dtype=np.float32))
    seed: np.ndarray = field(default_factory=lambda: np.zeros(0, dtype=np.float32))       # animation phase only

    @property
    def count(self) -> int:
        return len(self.luma)

    @classmethod
    def empty(cls, kind: LayerKind, config: LayerConfig) -> 'LayerData':
        return cls(kind=LayerKind(kind), config=config)


# =============================================================================
# Selector
# =============================================================================

class LayerSelector:
    """
    Chooses particles for each layer.

    The injected generator only feeds the per-particle animation seed;
    which pixels are chosen never depends on it.
    """

    def __init__(self, rng: Optional[np.random.Generator] = None, seed: Optional[int] = None):
        self.rng = rng if rng is not None else np.random.default_rng(seed)

    def candidates(
        self,
        features: PixelFeatures,
        config: LayerConfig,
        art: ArtDirectionConfig,
        adjusted_luma: Optional[np.ndarray] = None,
    ) -> np.ndarray:
        """Indices passing the layer thresholds, in scan order"""
        luma = adjusted_luma if adjusted_luma is not None else adjust_luma(features.luma, art)
        passes = (
            (features.alpha >= max(config.min_alpha, art.alpha_threshold))
            & (luma >= max(config.min_luma, art.luma_threshold))
            & (features.edge_weight >= config.min_edge)
        )
        return np.flatnonzero(passes)

    def rank(
        self,
        features: PixelFeatures,
        config: LayerConfig,
        art: ArtDirectionConfig,
        adjusted_luma: Optional[np.ndarray] = None,
    ) -> np.ndarray:
        """Candidate indices by importance, highest first; ties keep scan order"""
        luma = adjusted_luma if adjusted_luma is not None else adjust_luma(features.luma, art)
        idx = self.candidates(features, config, art, luma)
        importance = compute_importance(luma[idx], features.edge_weight[idx], config.importance_edge_bias)
        order = np.argsort(-importance, kind='stable')
        return idx[order]

    def select(
        self,
        features: PixelFeatures,
        kind: Union[LayerKind, str],
        config: LayerConfig,
        art: ArtDirectionConfig,
        target_count: int,
        adjusted_luma: Optional[np.ndarray] = None,
    ) -> LayerData:
        """Pick at most target_count particles for one layer (no padding)"""
        kind = LayerKind(kind)
        if not config.enabled or target_count <= 0 or features.count == 0:
            return LayerData.empty(kind, config)

        luma = adjusted_luma if adjusted_luma is not None else adjust_luma(features.luma, art)
        chosen = self.rank(features, config, art, luma)[:target_count]
        count = len(chosen)

        positions = np.empty((count, 3), dtype=np.float32)
        positions[:, 0] = features.x[chosen]
        positions[:, 1] = features.y[chosen]
        positions[:, 2] = remap_depth(features.depth_raw[chosen], art)

        colors = np.stack([features.r[chosen], features.g[chosen], features.b[chosen]], axis=1)

        return LayerData(
            kind=kind,
            config=config,
            positions=positions.reshape(-1),
            colors=colors.astype(np.float32).reshape(-1),
            luma=luma[chosen].astype(np.float32),
            alpha=features.alpha[chosen].astype(np.float32),
            edge_weight=features.edge_weight[chosen].astype(np.float32),
            seed=self.rng.random(count, dtype=np.float32),
        )

    def select_all(
        self,
        features: PixelFeatures,
        layers: Dict[LayerKind, LayerConfig],
        art: ArtDirectionConfig,
        max_particles: int,
    ) -> Dict[LayerKind, LayerData]:
        """Select every layer in declared order from one feature table"""
        targets = compute_layer_counts(layers, max_particles)
        luma = adjust_luma(features.luma, art)

        result = {}
        for kind in LAYER_ORDER:
            result[kind] = self.select(features, kind, layers[kind], art, targets[kind], luma)
            logger.info(
                "Layer %s: selected %d of %d target particles",
                kind.value, result[kind].count, targets[kind],
            )
        return result
