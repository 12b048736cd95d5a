"""
Baked point cloud (TFPC) - binary storage for sampled particle layers

Baking once offline skips image decode and sampling at runtime. Layout,
little-endian throughout:

    header        64 bytes   magic, version, counts, image size, reserved
    art direction 48 bytes
    layer configs 3 x 48     contour, fill, highlight
    particles     36 bytes each, layers contiguous in the same order:
                  position xyz, color rgb, luma, alpha, edge weight

Seeds are not stored; decoding draws fresh ones.
"""

import logging
import struct
import numpy as np
import requests
from pathlib import Path
from typing import Dict, Optional, Union
from dataclasses import dataclass

from .config import (
    LayerKind, LayerConfig, ArtDirectionConfig, ColorMode, LAYER_ORDER,
)
from .errors import KeyVisualError, PointCloudFormatError
from ..sampling.selector import LayerData
from ..sampling.merger import LayerRange
from ..sampling.layered import LayeredParticleData

logger = logging.getLogger(__name__)

MAGIC = b"TFPC"
VERSION = 1
HEADER_SIZE = 64
ART_DIRECTION_SIZE = 48
LAYER_CONFIG_SIZE = 48
LAYER_CONFIGS_SIZE = LAYER_CONFIG_SIZE * 3
PAYLOAD_OFFSET = HEADER_SIZE + ART_DIRECTION_SIZE + LAYER_CONFIGS_SIZE
BYTES_PER_PARTICLE = 36

_HEADER = struct.Struct('<4s7I')
_ART_DIRECTION = struct.Struct('<4fB3x2f')
_LAYER_CONFIG = struct.Struct('<B3x7fB')

PARTICLE_DTYPE = np.dtype([
    ('position', '<f4', (3,)),
    ('color', '<f4', (3,)),
    ('luma', '<f4'),
    ('alpha', '<f4'),
    ('edge_weight', '<f4'),
])


@dataclass
class DecodedPointCloud:
    """Contents of a TFPC file"""
    version: int
    image_width: int
    image_height: int
    art_direction: ArtDirectionConfig
    layers: Dict[LayerKind, LayerData]
    offsets: Dict[LayerKind, LayerRange]

    @property
    def total_count(self) -> int:
        return sum(self.layers[kind].count for kind in LAYER_ORDER)

    def to_particle_data(self) -> LayeredParticleData:
        return LayeredParticleData(
            layers=self.layers,
            image_width=self.image_width,
            image_height=self.image_height,
            art_direction=self.art_direction,
        )


# =============================================================================
# Encoder
# =============================================================================

def encode_tfpc(data: LayeredParticleData) -> bytes:
    """Serialize layered particle data"""
    layers = data.layers
    total = data.total_count
    buf = bytearray(estimate_tfpc_size(total))

    _HEADER.pack_into(
        buf, 0, MAGIC, VERSION, total,
        layers[LayerKind.CONTOUR].count,
        layers[LayerKind.FILL].count,
        layers[LayerKind.HIGHLIGHT].count,
        data.image_width, data.image_height,
    )

    art = data.art_direction
    _ART_DIRECTION.pack_into(
        buf, HEADER_SIZE,
        art.contrast, art.gamma, art.depth_scale, art.depth_gamma,
        1 if art.depth_invert else 0,
        art.luma_threshold, art.alpha_threshold,
    )

    for i, kind in enumerate(LAYER_ORDER):
        c = layers[kind].config
        _LAYER_CONFIG.pack_into(
            buf, HEADER_SIZE + ART_DIRECTION_SIZE + i * LAYER_CONFIG_SIZE,
            1 if c.enabled else 0,
            c.weight, c.importance_edge_bias, c.min_alpha, c.min_luma,
            c.min_edge, c.opacity_multiplier, c.size_multiplier,
            1 if ColorMode(c.color_mode) is ColorMode.TINT else 0,
        )

    particles = np.zeros(total, dtype=PARTICLE_DTYPE)
    start = 0
    for kind in LAYER_ORDER:
        layer = layers[kind]
        stop = start + layer.count
        particles['position'][start:stop] = np.asarray(layer.positions).reshape(-1, 3)
        particles['color'][start:stop] = np.asarray(layer.colors).reshape(-1, 3)
        particles['luma'][start:stop] = layer.luma
        particles['alpha'][start:stop] = layer.alpha
        particles['edge_weight'][start:stop] = layer.edge_weight
        start = stop

    buf[PAYLOAD_OFFSET:] = particles.tobytes()
    logger.debug("Encoded TFPC: %d particles, %s", total, format_file_size(len(buf)))
    return bytes(buf)


# =============================================================================
# Decoder
# =============================================================================

def decode_tfpc(
    buffer: bytes,
    rng: Optional[np.random.Generator] = None,
    seed: Optional[int] = None,
) -> DecodedPointCloud:
    """
    Parse a TFPC buffer.

    Args:
        buffer: Raw file bytes
        rng: Generator for the regenerated animation seeds
        seed: Used to create a generator when rng is not given

    Raises:
        PointCloudFormatError: bad magic, unsupported version or truncated data
    """
    buffer = bytes(buffer)
    if len(buffer) < PAYLOAD_OFFSET:
        raise PointCloudFormatError(
            f"Invalid TFPC file: {len(buffer)} bytes is shorter than the {PAYLOAD_OFFSET}-byte preamble"
        )

    magic, version, total, n_contour, n_fill, n_highlight, width, height = _HEADER.unpack_from(buffer, 0)
    if magic != MAGIC:
        raise PointCloudFormatError(f"Invalid TFPC file: expected magic {MAGIC!r}, got {magic!r}")
    if version != VERSION:
        raise PointCloudFormatError(f"Unsupported TFPC version: {version}")

    counts = {LayerKind.CONTOUR: n_contour, LayerKind.FILL: n_fill, LayerKind.HIGHLIGHT: n_highlight}
    if sum(counts.values()) != total:
        raise PointCloudFormatError(
            f"Invalid TFPC file: layer counts sum to {sum(counts.values())}, header says {total}"
        )
    expected = estimate_tfpc_size(total)
    if len(buffer) < expected:
        raise PointCloudFormatError(f"Truncated TFPC file: expected {expected} bytes, got {len(buffer)}")

    contrast, gamma, depth_scale, depth_gamma, depth_invert, luma_threshold, alpha_threshold = \
        _ART_DIRECTION.unpack_from(buffer, HEADER_SIZE)
    art = ArtDirectionConfig(
        contrast=contrast,
        gamma=gamma,
        depth_scale=depth_scale,
        depth_gamma=depth_gamma,
        depth_invert=depth_invert == 1,
        luma_threshold=luma_threshold,
        alpha_threshold=alpha_threshold,
    )

    configs = {}
    for i, kind in enumerate(LAYER_ORDER):
        values = _LAYER_CONFIG.unpack_from(buffer, HEADER_SIZE + ART_DIRECTION_SIZE + i * LAYER_CONFIG_SIZE)
        configs[kind] = LayerConfig(
            enabled=values[0] == 1,
            weight=values[1],
            importance_edge_bias=values[2],
            min_alpha=values[3],
            min_luma=values[4],
            min_edge=values[5],
            opacity_multiplier=values[6],
            size_multiplier=values[7],
            color_mode=ColorMode.TINT if values[8] == 1 else ColorMode.IMAGE,
        )

    particles = np.frombuffer(buffer, dtype=PARTICLE_DTYPE, count=total, offset=PAYLOAD_OFFSET)
    rng = rng if rng is not None else np.random.default_rng(seed)

    layers = {}
    offsets = {}
    start = 0
    for kind in LAYER_ORDER:
        count = counts[kind]
        chunk = particles[start:start + count]
        layers[kind] = LayerData(
            kind=kind,
            config=configs[kind],
            positions=chunk['position'].astype(np.float32).reshape(-1),
            colors=chunk['color'].astype(np.float32).reshape(-1),
            luma=chunk['luma'].astype(np.float32),
            alpha=chunk['alpha'].astype(np.float32),
            edge_weight=chunk['edge_weight'].astype(np.float32),
            seed=rng.random(count, dtype=np.float32),
        )
        offsets[kind] = LayerRange(start, count)
        start += count

    logger.debug("Decoded TFPC v%d: %d particles (%dx%d)", version, total, width, height)
    return DecodedPointCloud(
        version=version,
        image_width=width,
        image_height=height,
        art_direction=art,
        layers=layers,
        offsets=offsets,
    )


# =============================================================================
# Files
# =============================================================================

def save_tfpc(data: LayeredParticleData, path: Union[str, Path]) -> Path:
    """Bake to a file, creating parent directories"""
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_bytes(encode_tfpc(data))
    return path


def load_tfpc(
    source: Union[str, Path],
    rng: Optional[np.random.Generator] = None,
    seed: Optional[int] = None,
    timeout: float = 30,
) -> DecodedPointCloud:
    """Read a baked cloud from a path or an http(s) URL"""
    if isinstance(source, str) and source.startswith(('http://', 'https://')):
        try:
            response = requests.get(source, timeout=timeout)
            response.raise_for_status()
        except requests.RequestException as exc:
            raise KeyVisualError(f"Failed to load TFPC from {source}: {exc}") from exc
        return decode_tfpc(response.content, rng=rng, seed=seed)

    return decode_tfpc(Path(source).read_bytes(), rng=rng, seed=seed)


def estimate_tfpc_size(total_particles: int) -> int:
    return PAYLOAD_OFFSET + total_particles * BYTES_PER_PARTICLE


def format_file_size(num_bytes: int) -> str:
    """Human-readable size: B below 1 KB, one decimal KB, two decimal MB"""
    if num_bytes < 1024:
        return f"{num_bytes} B"
    if num_bytes < 1024 * 1024:
        return f"{num_bytes / 1024:.1f} KB"
    return f"{num_bytes / (1024 * 1024):.2f} MB"
