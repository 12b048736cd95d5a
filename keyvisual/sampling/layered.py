"""
Layered Sampler - Image + depth map to layered particle data

Ties the pipeline together:

    image bytes -> FeatureExtractor -> LayerSelector (x3) -> LayeredParticleData

and provides the async loader hosts use so a newer request always wins
over a slower, older one.
"""

import asyncio
import logging
import numpy as np
from typing import Dict, Optional, Any
from dataclasses import dataclass

from ..core.config import LayerKind, LayeredSamplerConfig, ArtDirectionConfig, LAYER_ORDER
from ..core.loader import ImageLoader, ImageSource, LoadedImage
from .features import FeatureExtractor, PixelFeatures
from .selector import LayerSelector, LayerData
from .merger import merge_layers, MergedParticles

logger = logging.getLogger(__name__)


@dataclass
class LayeredParticleData:
    """One complete, reproducible sampling run"""
    layers: Dict[LayerKind, LayerData]
    image_width: int
    image_height: int
    art_direction: ArtDirectionConfig

    @property
    def total_count(self) -> int:
        return sum(self.layers[kind].count for kind in LAYER_ORDER)

    def layer(self, kind) -> LayerData:
        return self.layers[LayerKind(kind)]

    def merged(self) -> MergedParticles:
        return merge_layers(self.layers)


class LayeredSampler:
    """Runs feature extraction and per-layer selection for one config"""

    def __init__(
        self,
        config: Optional[LayeredSamplerConfig] = None,
        loader: Optional[ImageLoader] = None,
        rng: Optional[np.random.Generator] = None,
        seed: Optional[int] = None,
    ):
        self.config = config or LayeredSamplerConfig()
        self.loader = loader or ImageLoader()
        self.selector = LayerSelector(rng=rng, seed=seed)

    @property
    def extractor(self) -> FeatureExtractor:
        c = self.config
        return FeatureExtractor(c.sample_step, c.max_sample_dim, c.aspect_ratio, c.skip_transparent)

    def select(self, features: PixelFeatures, image_width: int, image_height: int) -> LayeredParticleData:
        """Layer selection over an existing feature table"""
        c = self.config
        layers = self.selector.select_all(features, c.layers, c.art_direction, c.max_particles)
        return LayeredParticleData(
            layers=layers,
            image_width=image_width,
            image_height=image_height,
            art_direction=c.art_direction,
        )

    def sample_loaded(self, image: LoadedImage, depth_map: Optional[LoadedImage] = None) -> LayeredParticleData:
        features = self.extractor.extract(image, depth_map)
        return self.select(features, image.width, image.height)

    def sample(self, image_src: ImageSource, depth_map_src: Optional[ImageSource] = None) -> LayeredParticleData:
        image = self.loader.load(image_src)
        depth = self.loader.load(depth_map_src) if depth_map_src is not None else None
        return self.sample_loaded(image, depth)

    async def sample_async(
        self, image_src: ImageSource, depth_map_src: Optional[ImageSource] = None
    ) -> LayeredParticleData:
        if depth_map_src is not None:
            image, depth = await asyncio.gather(
                self.loader.load_async(image_src), self.loader.load_async(depth_map_src)
            )
        else:
            image, depth = await self.loader.load_async(image_src), None
        return await asyncio.to_thread(self.sample_loaded, image, depth)


def sample_layered_particles(
    image_src: ImageSource,
    depth_map_src: Optional[ImageSource] = None,
    config: Optional[Any] = None,
    loader: Optional[ImageLoader] = None,
    seed: Optional[int] = None,
) -> LayeredParticleData:
    """
    Generate layered particle data from an image and optional depth map.

    Args:
        image_src: Image bytes, path, URL, PIL image or RGBA array
        depth_map_src: Depth map source (red channel, white = near)
        config: LayeredSamplerConfig or a partial dict merged over the defaults
        loader: Loader to decode through (pass one with an ImageCache to reuse decodes)
        seed: Seed for the per-particle animation phase

    Returns:
        LayeredParticleData ready for merging or baking
    """
    if config is None or isinstance(config, dict):
        config = LayeredSamplerConfig.from_dict(config or {})
    return LayeredSampler(config, loader=loader, seed=seed).sample(image_src, depth_map_src)


class KeyVisualLoader:
    """
    Async loader where the latest request wins.

    Each request() cancels the in-flight one; a superseded sampling run
    that still completes is discarded instead of overwriting fresher data.
    """

    def __init__(self, loader: Optional[ImageLoader] = None, seed: Optional[int] = None):
        self.loader = loader or ImageLoader()
        self.rng = np.random.default_rng(seed)
        self.current: Optional[LayeredParticleData] = None
        self._generation = 0
        self._task: Optional[asyncio.Task] = None

    @property
    def generation(self) -> int:
        return self._generation

    @property
    def pending(self) -> bool:
        return self._task is not None and not self._task.done()

    def request(
        self,
        image_src: ImageSource,
        depth_map_src: Optional[ImageSource] = None,
        config: Optional[LayeredSamplerConfig] = None,
    ) -> 'asyncio.Task':
        """Start loading, superseding any earlier request. Must run inside an event loop."""
        self.cancel()
        self._generation += 1
        generation = self._generation
        sampler = LayeredSampler(config, loader=self.loader, rng=self.rng)
        self._task = asyncio.get_running_loop().create_task(
            self._run(generation, sampler, image_src, depth_map_src)
        )
        return self._task

    async def load(
        self,
        image_src: ImageSource,
        depth_map_src: Optional[ImageSource] = None,
        config: Optional[LayeredSamplerConfig] = None,
    ) -> Optional[LayeredParticleData]:
        """Request and await; returns None when superseded before completing"""
        task = self.request(image_src, depth_map_src, config)
        try:
            return await task
        except asyncio.CancelledError:
            if task.cancelled() and asyncio.current_task().cancelling() == 0:
                return None
            raise

    def cancel(self) -> None:
        if self._task is not None and not self._task.done():
            self._task.cancel()
        self._task = None

    async def _run(self, generation, sampler, image_src, depth_map_src) -> Optional[LayeredParticleData]:
        data = await sampler.sample_async(image_src, depth_map_src)
        if generation != self._generation:
            logger.info("Dropping stale key visual load (generation %d < %d)", generation, self._generation)
            return None
        self.current = data
        return data
