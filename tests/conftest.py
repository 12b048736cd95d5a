"""Shared test fixtures."""

import io

import numpy as np
import pytest
from PIL import Image


def rgba(width: int, height: int, color=(255, 255, 255, 255)) -> np.ndarray:
    """Solid HxWx4 uint8 image"""
    pixels = np.zeros((height, width, 4), dtype=np.uint8)
    pixels[...] = color
    return pixels


def png_bytes(pixels: np.ndarray) -> bytes:
    buf = io.BytesIO()
    Image.fromarray(pixels).save(buf, format='PNG')
    return buf.getvalue()


def png16_bytes(values: np.ndarray) -> bytes:
    """16-bit grayscale PNG from an HxW uint16 array"""
    buf = io.BytesIO()
    Image.fromarray(values.astype(np.uint16)).save(buf, format='PNG')
    return buf.getvalue()


@pytest.fixture
def white_image() -> np.ndarray:
    return rgba(100, 100)


@pytest.fixture
def transparent_image() -> np.ndarray:
    return rgba(32, 32, (255, 255, 255, 0))


@pytest.fixture
def square_image() -> np.ndarray:
    """Opaque black 64x64 with a white 32x32 square in the middle"""
    pixels = rgba(64, 64, (0, 0, 0, 255))
    pixels[16:48, 16:48, :3] = 255
    return pixels


@pytest.fixture
def gradient_image() -> np.ndarray:
    """Opaque 64x32, luminance rising left to right"""
    pixels = rgba(64, 32)
    ramp = np.linspace(0, 255, 64).astype(np.uint8)
    pixels[..., 0] = ramp[None, :]
    pixels[..., 1] = ramp[None, :]
    pixels[..., 2] = ramp[None, :]
    return pixels


@pytest.fixture
def square_png(tmp_path, square_image):
    path = tmp_path / "square.png"
    path.write_bytes(png_bytes(square_image))
    return path
