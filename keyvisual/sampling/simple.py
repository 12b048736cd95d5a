"""
Simple Sampler - Single-layer image to particle conversion

The lightweight path used before layers existed and still used for quick
previews. Unlike the layered sampler it filters while extracting:
transparent (alpha < 0.1) and dark (luma < luma_threshold) pixels never
become candidates. Candidates are only ranked when they exceed the
particle budget.
"""

import logging
import numpy as np
from typing import Any, Dict, Optional
from dataclasses import dataclass, asdict

from ..core.config import _filter_fields
from ..core.loader import ImageLoader, ImageSource, LoadedImage
from .features import compute_luma, sobel_edges, _sample_size, _resized

logger = logging.getLogger(__name__)

# Pixels more transparent than this are skipped outright
MIN_ALPHA = 0.1

# Ranking blend used when trimming to max_particles
EDGE_IMPORTANCE = 0.6
LUMA_IMPORTANCE = 0.4


@dataclass
class SimpleSamplerOptions:
    """Options for single-layer sampling"""
    max_particles: int = 50000
    luma_threshold: float = 0.05
    luma_as_depth: bool = True      # brighter = closer when no depth map is given
    depth_scale: float = 0.5
    edge_strength: float = 0.5      # 0 = no edge weighting, 1 = full
    sample_step: int = 2
    max_sample_dim: int = 512
    aspect_ratio: Optional[float] = None

    def __post_init__(self):
        if self.sample_step < 1:
            raise ValueError(f"sample_step must be >= 1, got {self.sample_step}")
        if self.max_particles < 0:
            raise ValueError(f"max_particles must be >= 0, got {self.max_particles}")

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'SimpleSamplerOptions':
        """Partial dict (snake_case or camelCase) over the defaults"""
        return cls(**_filter_fields(cls, data or {}))


@dataclass
class SampledParticles:
    """Flat particle arrays ready for a Points geometry"""
    positions: np.ndarray       # xyz interleaved
    colors: np.ndarray          # rgb interleaved
    luma: np.ndarray
    alpha: np.ndarray
    edge_weight: np.ndarray
    seed: np.ndarray
    image_width: int
    image_height: int

    @property
    def count(self) -> int:
        return len(self.luma)


def _sample(
    image: LoadedImage,
    depth_map: Optional[LoadedImage],
    opts: SimpleSamplerOptions,
    rng: np.random.Generator,
) -> SampledParticles:
    size = _sample_size(image.width, image.height, opts.max_sample_dim)
    sample_w, sample_h = size
    rgba = np.asarray(_resized(image.image, size), dtype=np.uint8)
    luma_full = compute_luma(rgba)
    edge_full = sobel_edges(luma_full)

    py, px = np.meshgrid(
        np.arange(0, sample_h, opts.sample_step),
        np.arange(0, sample_w, opts.sample_step),
        indexing='ij',
    )
    py = py.ravel()
    px = px.ravel()

    alpha = rgba[py, px, 3].astype(np.float32) / 255.0
    luma = luma_full[py, px]
    keep = (alpha >= MIN_ALPHA) & (luma >= opts.luma_threshold)
    py, px, alpha, luma = py[keep], px[keep], alpha[keep], luma[keep]

    edge_weight = edge_full[py, px] * opts.edge_strength

    aspect = opts.aspect_ratio if opts.aspect_ratio is not None else sample_w / sample_h
    x = ((px / sample_w) * 2 - 1) * aspect
    y = -((py / sample_h) * 2 - 1)

    if depth_map is not None:
        # Red channel, white = near
        depth_rgba = np.asarray(_resized(depth_map.image, size), dtype=np.uint8)
        z = (depth_rgba[py, px, 0].astype(np.float32) / 255.0 - 0.5) * opts.depth_scale
    elif opts.luma_as_depth:
        z = (luma - 0.5) * opts.depth_scale
    else:
        z = np.zeros(len(luma), dtype=np.float32)

    seed = rng.random(len(luma), dtype=np.float32)

    order = np.arange(len(luma))
    if len(luma) > opts.max_particles:
        importance = edge_weight * EDGE_IMPORTANCE + luma * LUMA_IMPORTANCE
        order = np.argsort(-importance, kind='stable')[:opts.max_particles]

    positions = np.stack([x[order], y[order], z[order]], axis=1).astype(np.float32)
    colors = rgba[py[order], px[order], :3].astype(np.float32) / 255.0

    logger.debug(
        "Simple sampler: %d candidates, kept %d (%dx%d sample)",
        len(luma), len(order), sample_w, sample_h,
    )
    return SampledParticles(
        positions=positions.reshape(-1),
        colors=colors.reshape(-1),
        luma=luma[order].astype(np.float32),
        alpha=alpha[order],
        edge_weight=edge_weight[order].astype(np.float32),
        seed=seed[order],
        image_width=image.width,
        image_height=image.height,
    )


def _options(options) -> SimpleSamplerOptions:
    if isinstance(options, SimpleSamplerOptions):
        return options
    return SimpleSamplerOptions.from_dict(options or {})


def sample_image_to_particles(
    image_src: ImageSource,
    options: Optional[Any] = None,
    loader: Optional[ImageLoader] = None,
    rng: Optional[np.random.Generator] = None,
    seed: Optional[int] = None,
) -> SampledParticles:
    """
    Sample an image into one particle set.

    Args:
        image_src: Image bytes, path, URL, PIL image or RGBA array
        options: SimpleSamplerOptions or a partial dict
        loader: Loader to decode through
        rng: Generator for the per-particle animation phase
        seed: Used to create a generator when rng is not given

    Returns:
        SampledParticles in scan order, or by importance when trimmed
    """
    loader = loader or ImageLoader()
    rng = rng if rng is not None else np.random.default_rng(seed)
    return _sample(loader.load(image_src), None, _options(options), rng)


def sample_with_depth_map(
    image_src: ImageSource,
    depth_map_src: ImageSource,
    options: Optional[Any] = None,
    loader: Optional[ImageLoader] = None,
    rng: Optional[np.random.Generator] = None,
    seed: Optional[int] = None,
) -> SampledParticles:
    """Like sample_image_to_particles, with Z taken from the depth map's red channel"""
    loader = loader or ImageLoader()
    rng = rng if rng is not None else np.random.default_rng(seed)
    image = loader.load(image_src)
    depth = loader.load(depth_map_src)
    return _sample(image, depth, _options(options), rng)
