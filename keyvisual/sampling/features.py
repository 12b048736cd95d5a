"""
Feature Extractor - Per-pixel features for particle selection

One extraction pass turns an image (plus optional depth map) into a
PixelFeatures table: aspect-corrected position, luminance, alpha, Sobel
edge strength, raw depth and color for every visited grid pixel.
No thresholding happens here; filtering belongs to the layer selector.
"""

import time
import asyncio
import logging
import numpy as np
from typing import Optional
from dataclasses import dataclass, fields

from PIL import Image

from ..core.loader import ImageLoader, ImageSource, LoadedImage

logger = logging.getLogger(__name__)

# Perceptual luminance weights over the 0-255 channel range
LUMA_WEIGHTS = (0.299, 0.587, 0.114)

# Sobel magnitude is doubled before clamping so mid-contrast edges reach ~1
EDGE_GAIN = 2.0


@dataclass(frozen=True)
class PixelFeatures:
    """Per-pixel feature table, one row per sampled pixel"""
    width: int              # sampled image width
    height: int             # sampled image height
    x: np.ndarray           # aspect-corrected [-aspect, aspect]
    y: np.ndarray           # [-1, 1], Y up
    depth_raw: np.ndarray   # [0, 1], 1 = near
    luma: np.ndarray
    alpha: np.ndarray
    edge_weight: np.ndarray
    r: np.ndarray
    g: np.ndarray
    b: np.ndarray
    source_index: np.ndarray  # py * width + px in the sampled image

    def __post_init__(self):
        arrays = [getattr(self, f.name) for f in fields(self) if isinstance(getattr(self, f.name), np.ndarray)]
        lengths = {len(a) for a in arrays}
        if len(lengths) > 1:
            raise ValueError(f"Feature arrays differ in length: {sorted(lengths)}")
        for arr in arrays:
            arr.setflags(write=False)

    @property
    def count(self) -> int:
        return len(self.x)

    @classmethod
    def empty(cls, width: int = 0, height: int = 0) -> 'PixelFeatures':
        f = np.zeros(0, dtype=np.float32)
        return cls(width, height, f, f.copy(), f.copy(), f.copy(), f.copy(), f.copy(),
                   f.copy(), f.copy(), f.copy(), np.zeros(0, dtype=np.uint32))


# =============================================================================
# Pixel math
# =============================================================================

def compute_luma(rgba: np.ndarray) -> np.ndarray:
    """Luminance in [0, 1] from an HxWx(3|4) uint8 array"""
    rgb = rgba[..., :3].astype(np.float32)
    wr, wg, wb = LUMA_WEIGHTS
    return (rgb[..., 0] * wr + rgb[..., 1] * wg + rgb[..., 2] * wb) / 255.0


def sobel_edges(luma: np.ndarray) -> np.ndarray:
    """
    3x3 Sobel gradient magnitude of a luminance image, clamped to [0, 1].
    Border pixels have no full neighbourhood and score 0.
    """
    h, w = luma.shape
    edges = np.zeros((h, w), dtype=np.float32)
    if h < 3 or w < 3:
        return edges

    tl = luma[:-2, :-2]
    tc = luma[:-2, 1:-1]
    tr = luma[:-2, 2:]
    ml = luma[1:-1, :-2]
    mr = luma[1:-1, 2:]
    bl = luma[2:, :-2]
    bc = luma[2:, 1:-1]
    br = luma[2:, 2:]

    gx = -tl + tr - 2 * ml + 2 * mr - bl + br
    gy = -tl - 2 * tc - tr + bl + 2 * bc + br

    edges[1:-1, 1:-1] = np.minimum(1.0, np.sqrt(gx * gx + gy * gy) * EDGE_GAIN)
    return edges


def _sample_size(width: int, height: int, max_sample_dim: int):
    scale = min(1.0, max_sample_dim / max(width, height))
    return max(1, int(np.floor(width * scale))), max(1, int(np.floor(height * scale)))


def _resized(img: Image.Image, size) -> Image.Image:
    if img.size == size:
        return img
    return img.resize(size, Image.BILINEAR)


# =============================================================================
# Extractor
# =============================================================================

class FeatureExtractor:
    """Builds PixelFeatures tables from decoded images"""

    def __init__(
        self,
        sample_step: int = 2,
        max_sample_dim: int = 512,
        aspect_ratio: Optional[float] = None,
        skip_transparent: bool = False,
    ):
        if sample_step < 1:
            raise ValueError(f"sample_step must be >= 1, got {sample_step}")
        if max_sample_dim < 1:
            raise ValueError(f"max_sample_dim must be >= 1, got {max_sample_dim}")
        self.sample_step = int(sample_step)
        self.max_sample_dim = int(max_sample_dim)
        self.aspect_ratio = aspect_ratio
        self.skip_transparent = skip_transparent

    def extract(self, image: LoadedImage, depth_map: Optional[LoadedImage] = None) -> PixelFeatures:
        """Extract one complete feature table"""
        started = time.perf_counter()

        size = _sample_size(image.width, image.height, self.max_sample_dim)
        sample_w, sample_h = size
        rgba = np.asarray(_resized(image.image, size), dtype=np.uint8)

        luma_full = compute_luma(rgba)
        edge_full = sobel_edges(luma_full)

        if depth_map is not None:
            depth_rgba = np.asarray(_resized(depth_map.image, size), dtype=np.uint8)
            # White = near, black = far
            depth_full = depth_rgba[..., 0].astype(np.float32) / 255.0
        else:
            # Brighter = nearer
            depth_full = luma_full

        step = self.sample_step
        py, px = np.meshgrid(
            np.arange(0, sample_h, step),
            np.arange(0, sample_w, step),
            indexing='ij',
        )
        py = py.ravel()
        px = px.ravel()

        alpha = rgba[py, px, 3].astype(np.float32) / 255.0
        if self.skip_transparent:
            keep = alpha > 0
            py, px, alpha = py[keep], px[keep], alpha[keep]

        aspect = self.aspect_ratio if self.aspect_ratio is not None else sample_w / sample_h
        x = ((px / sample_w) * 2 - 1) * aspect
        y = -((py / sample_h) * 2 - 1)
        rgb = rgba[py, px, :3].astype(np.float32) / 255.0

        features = PixelFeatures(
            width=sample_w,
            height=sample_h,
            x=x.astype(np.float32),
            y=y.astype(np.float32),
            depth_raw=depth_full[py, px].astype(np.float32),
            luma=luma_full[py, px].astype(np.float32),
            alpha=alpha,
            edge_weight=edge_full[py, px].astype(np.float32),
            r=np.ascontiguousarray(rgb[:, 0]),
            g=np.ascontiguousarray(rgb[:, 1]),
            b=np.ascontiguousarray(rgb[:, 2]),
            source_index=(py * sample_w + px).astype(np.uint32),
        )

        logger.debug(
            "Extracted %d pixel features from %dx%d sample (step %d) in %.1f ms",
            features.count, sample_w, sample_h, step, (time.perf_counter() - started) * 1000,
        )
        return features


def extract_pixel_features(
    image_src: ImageSource,
    depth_map_src: Optional[ImageSource] = None,
    sample_step: int = 2,
    max_sample_dim: int = 512,
    aspect_ratio: Optional[float] = None,
    skip_transparent: bool = False,
    loader: Optional[ImageLoader] = None,
) -> PixelFeatures:
    """Decode sources and extract features; decode failures propagate"""
    loader = loader or ImageLoader()
    image = loader.load(image_src)
    depth = loader.load(depth_map_src) if depth_map_src is not None else None
    extractor = FeatureExtractor(sample_step, max_sample_dim, aspect_ratio, skip_transparent)
    return extractor.extract(image, depth)


async def extract_pixel_features_async(
    image_src: ImageSource,
    depth_map_src: Optional[ImageSource] = None,
    sample_step: int = 2,
    max_sample_dim: int = 512,
    aspect_ratio: Optional[float] = None,
    skip_transparent: bool = False,
    loader: Optional[ImageLoader] = None,
) -> PixelFeatures:
    """Same as extract_pixel_features, without blocking the event loop"""
    loader = loader or ImageLoader()
    if depth_map_src is not None:
        image, depth = await asyncio.gather(
            loader.load_async(image_src), loader.load_async(depth_map_src)
        )
    else:
        image, depth = await loader.load_async(image_src), None

    extractor = FeatureExtractor(sample_step, max_sample_dim, aspect_ratio, skip_transparent)
    return await asyncio.to_thread(extractor.extract, image, depth)
