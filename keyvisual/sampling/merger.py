"""
Layer Merger - Concatenates layers into one draw batch
"""

import numpy as np
from typing import Dict, Mapping, NamedTuple
from dataclasses import dataclass

from ..core.config import LayerKind, LAYER_ORDER
from .selector import LayerData


class LayerRange(NamedTuple):
    """Sub-range of the merged buffers owned by one layer"""
    start: int
    count: int

    @property
    def stop(self) -> int:
        return self.start + self.count


@dataclass(frozen=True)
class MergedParticles:
    """Contiguous buffers for every layer, contour -> fill -> highlight"""
    positions: np.ndarray    # total_count * 3
    colors: np.ndarray       # total_count * 3
    luma: np.ndarray
    alpha: np.ndarray
    edge_weight: np.ndarray
    seed: np.ndarray
    layer_index: np.ndarray  # 0 = contour, 1 = fill, 2 = highlight
    offsets: Dict[LayerKind, LayerRange]

    @property
    def total_count(self) -> int:
        return len(self.luma)

    def layer_slice(self, kind: LayerKind) -> slice:
        r = self.offsets[LayerKind(kind)]
        return slice(r.start, r.stop)


def merge_layers(layers: Mapping[LayerKind, LayerData]) -> MergedParticles:
    """Copy each layer's arrays into shared buffers, recording offsets"""
    offsets = {}
    start = 0
    for kind in LAYER_ORDER:
        count = layers[kind].count
        offsets[kind] = LayerRange(start, count)
        start += count

    ordered = [layers[kind] for kind in LAYER_ORDER]

    def cat(name: str) -> np.ndarray:
        return np.concatenate([getattr(layer, name) for layer in ordered]).astype(np.float32)

    layer_index = np.concatenate([
        np.full(layer.count, i, dtype=np.float32) for i, layer in enumerate(ordered)
    ])

    return MergedParticles(
        positions=cat('positions'),
        colors=cat('colors'),
        luma=cat('luma'),
        alpha=cat('alpha'),
        edge_weight=cat('edge_weight'),
        seed=cat('seed'),
        layer_index=layer_index,
        offsets=offsets,
    )


def calculate_draw_counts(
    layers: Mapping[LayerKind, LayerData],
    density: Mapping[LayerKind, float],
) -> Dict[LayerKind, int]:
    """Per-layer draw counts for runtime density control without re-sampling"""
    counts = {}
    for kind in LAYER_ORDER:
        multiplier = min(1.0, max(0.0, density.get(kind, 1.0)))
        counts[kind] = int(np.floor(layers[kind].count * multiplier + 0.5))
    return counts
