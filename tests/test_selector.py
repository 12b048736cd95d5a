"""Tests for importance-ranked layer selection."""

import numpy as np

from keyvisual.core.config import (
    LayerKind, LAYER_ORDER, LayerConfig, ArtDirectionConfig, LayeredSamplerConfig,
)
from keyvisual.sampling.features import PixelFeatures, extract_pixel_features
from keyvisual.sampling.selector import (
    LayerSelector, apply_contrast, apply_gamma, remap_depth, compute_layer_counts,
)


def make_features(luma, edge=None, alpha=None, depth=None) -> PixelFeatures:
    luma = np.asarray(luma, dtype=np.float32)
    n = len(luma)
    edge = np.zeros(n, dtype=np.float32) if edge is None else np.asarray(edge, dtype=np.float32)
    alpha = np.ones(n, dtype=np.float32) if alpha is None else np.asarray(alpha, dtype=np.float32)
    depth = luma.copy() if depth is None else np.asarray(depth, dtype=np.float32)
    x = np.arange(n, dtype=np.float32)
    return PixelFeatures(
        width=n, height=1,
        x=x, y=np.zeros(n, dtype=np.float32),
        depth_raw=depth, luma=luma.copy(), alpha=alpha, edge_weight=edge,
        r=luma.copy(), g=luma.copy(), b=luma.copy(),
        source_index=np.arange(n, dtype=np.uint32),
    )


def test_art_direction_transforms():
    v = np.array([0.0, 0.25, 0.5, 1.0])
    np.testing.assert_allclose(apply_contrast(v, 2.0), [0.0, 0.0, 0.5, 1.0])
    np.testing.assert_allclose(apply_gamma(v, 2.0), [0.0, 0.0625, 0.25, 1.0])

    art = ArtDirectionConfig(depth_scale=2.0, depth_invert=True)
    np.testing.assert_allclose(remap_depth(np.array([1.0, 0.0]), art), [-1.0, 1.0])


def test_layer_counts_split_by_weight():
    layers = LayeredSamplerConfig().layers
    counts = compute_layer_counts(layers, 50000)
    assert counts[LayerKind.CONTOUR] == 22500
    assert counts[LayerKind.FILL] == 22500
    assert counts[LayerKind.HIGHLIGHT] == 5000

    layers[LayerKind.HIGHLIGHT].enabled = False
    counts = compute_layer_counts(layers, 1000)
    assert counts[LayerKind.HIGHLIGHT] == 0
    assert counts[LayerKind.CONTOUR] + counts[LayerKind.FILL] == 1000


def test_layer_counts_zero_weight_or_budget():
    layers = {kind: LayerConfig(weight=0.0) for kind in LAYER_ORDER}
    assert sum(compute_layer_counts(layers, 100).values()) == 0
    assert sum(compute_layer_counts(LayeredSamplerConfig().layers, 0).values()) == 0


def test_sum_of_counts_close_to_budget():
    features = make_features(np.linspace(0.1, 1.0, 5000), edge=np.linspace(0.2, 1.0, 5000))
    layers = LayeredSamplerConfig.from_dict({
        'layers': {'highlight': {'min_luma': 0.0}},
    }).layers
    result = LayerSelector(seed=1).select_all(features, layers, ArtDirectionConfig(), 3000)
    total = sum(result[kind].count for kind in LAYER_ORDER)
    assert abs(total - 3000) <= len(LAYER_ORDER)


def test_disabled_layer_is_empty():
    features = make_features(np.ones(50))
    config = LayerConfig(enabled=False, weight=100.0, min_luma=0.0)
    layer = LayerSelector(seed=0).select(features, 'fill', config, ArtDirectionConfig(), 50)
    assert layer.count == 0
    assert len(layer.positions) == 0


def test_min_luma_is_monotonic():
    rng = np.random.default_rng(3)
    features = make_features(rng.random(2000), edge=rng.random(2000))
    art = ArtDirectionConfig()
    selector = LayerSelector(seed=0)
    previous = None
    for min_luma in (0.0, 0.2, 0.4, 0.6, 0.8, 1.0):
        config = LayerConfig(min_luma=min_luma)
        count = selector.select(features, 'fill', config, art, 10_000).count
        if previous is not None:
            assert count <= previous
        previous = count


def test_ranking_prefers_importance():
    features = make_features([0.2, 0.9, 0.5, 0.7])
    config = LayerConfig(importance_edge_bias=0.0, min_luma=0.0)
    layer = LayerSelector(seed=0).select(features, 'fill', config, ArtDirectionConfig(), 2)
    # x holds the scan index
    np.testing.assert_array_equal(layer.positions.reshape(-1, 3)[:, 0], [1, 3])


def test_ties_keep_scan_order():
    features = make_features([0.5] * 6)
    config = LayerConfig(importance_edge_bias=0.0, min_luma=0.0)
    layer = LayerSelector(seed=0).select(features, 'fill', config, ArtDirectionConfig(), 4)
    np.testing.assert_array_equal(layer.positions.reshape(-1, 3)[:, 0], [0, 1, 2, 3])


def test_no_padding_when_few_candidates():
    features = make_features([0.9, 0.01, 0.02])
    config = LayerConfig(min_luma=0.5)
    layer = LayerSelector(seed=0).select(features, 'highlight', config, ArtDirectionConfig(), 100)
    assert layer.count == 1


def test_selection_deterministic_apart_from_seed(square_image):
    features = extract_pixel_features(square_image, sample_step=1)
    config = LayeredSamplerConfig(max_particles=1500)
    a = LayerSelector(seed=1).select_all(features, config.layers, config.art_direction, 1500)
    b = LayerSelector(seed=2).select_all(features, config.layers, config.art_direction, 1500)
    for kind in LAYER_ORDER:
        for name in ('positions', 'colors', 'luma', 'alpha', 'edge_weight'):
            np.testing.assert_array_equal(getattr(a[kind], name), getattr(b[kind], name))
    assert not np.array_equal(a[LayerKind.FILL].seed, b[LayerKind.FILL].seed)


def test_same_seed_same_particle_seeds(square_image):
    features = extract_pixel_features(square_image, sample_step=2)
    config = LayeredSamplerConfig()
    a = LayerSelector(seed=7).select_all(features, config.layers, config.art_direction, 500)
    b = LayerSelector(seed=7).select_all(features, config.layers, config.art_direction, 500)
    np.testing.assert_array_equal(a[LayerKind.CONTOUR].seed, b[LayerKind.CONTOUR].seed)


def test_white_image_fill_takes_every_pixel(white_image):
    features = extract_pixel_features(white_image, sample_step=1)
    config = LayeredSamplerConfig(sample_step=1)
    targets = compute_layer_counts(config.layers, config.max_particles)
    result = LayerSelector(seed=0).select_all(features, config.layers, config.art_direction, config.max_particles)
    assert result[LayerKind.FILL].count == min(targets[LayerKind.FILL], 10000)
    # Flat image: no edges for the contour layer
    assert result[LayerKind.CONTOUR].count == 0


def test_fully_transparent_image_selects_nothing(transparent_image):
    features = extract_pixel_features(transparent_image, sample_step=1)
    config = LayeredSamplerConfig()
    result = LayerSelector(seed=0).select_all(features, config.layers, config.art_direction, 5000)
    assert all(result[kind].count == 0 for kind in LAYER_ORDER)


def test_output_layout():
    features = make_features([0.9, 0.8], depth=[1.0, 0.0])
    art = ArtDirectionConfig(depth_scale=1.0)
    layer = LayerSelector(seed=0).select(features, 'fill', LayerConfig(min_luma=0.0), art, 2)
    assert layer.kind is LayerKind.FILL
    assert layer.positions.shape == (6,)
    assert layer.colors.shape == (6,)
    assert layer.positions.dtype == np.float32
    np.testing.assert_allclose(layer.positions.reshape(-1, 3)[:, 2], [0.5, -0.5])
    assert ((layer.seed >= 0) & (layer.seed < 1)).all()
