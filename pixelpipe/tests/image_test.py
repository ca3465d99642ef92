"""
Tests for the image lifecycle
"""

import pytest
import sys

from os.path import dirname, join

import numpy as np

sys.path.append(join(dirname(dirname(dirname(__file__)))))

from pixelpipe.constants import C
from pixelpipe.image import Image, UseAfterDispose, DoubleDispose, ImageLifecycleError

PIXELS_2x1 = bytes([10, 20, 30, 40, 50, 60, 70, 80])

def test_create_from_pixels():
    img = Image.create_from_pixels(2, 1, C.RGBA32, PIXELS_2x1, name='tiny')
    assert img.width == 2
    assert img.height == 1
    assert img.shape == (1, 2, 4)
    assert img.pixels == PIXELS_2x1
    assert img.name == 'tiny'
    assert img.history == [['pixels', (2, 1)]]
    assert not img.disposed
    assert img.holders == 1

def test_create_from_pixels_rejects_bad_input():
    with pytest.raises(ValueError):
        Image.create_from_pixels(2, 2, C.RGBA32, PIXELS_2x1)
    with pytest.raises(ValueError):
        Image.create_from_pixels(0, 1, C.RGBA32, b'')
    with pytest.raises(ValueError):
        Image.create_from_pixels(2, 1, 'cmyk', PIXELS_2x1)

def test_array_is_not_writable():
    img = Image.create_random(3, 3, np.random.default_rng(1))
    with pytest.raises(ValueError):
        img.array[0, 0, 0] = 1

def test_use_after_dispose():
    img = Image.create_random(2, 2, np.random.default_rng(1), name='gone')
    img.dispose()
    assert img.disposed
    for read in [lambda: img.width, lambda: img.height, lambda: img.pixels,
                 lambda: img.array, lambda: img.copy()]:
        with pytest.raises(UseAfterDispose) as e:
            read()
        assert str(e.value).startswith("Object is disposed.")
        assert e.value.image_name == 'gone'
    # repr still works, so the image can be logged
    assert 'disposed' in repr(img)

def test_double_dispose():
    img = Image.create_random(2, 2, np.random.default_rng(1))
    img.dispose()
    with pytest.raises(DoubleDispose):
        img.dispose()
    with pytest.raises(ImageLifecycleError):
        img.release()

def test_retain_release():
    img = Image.create_random(2, 2, np.random.default_rng(1))
    assert img.retain() is img
    assert img.holders == 2
    img.release()
    assert not img.disposed
    assert img.height == 2
    img.release()
    assert img.disposed
    with pytest.raises(UseAfterDispose):
        img.retain()

def test_copy_is_independent():
    img = Image.create_random(2, 2, np.random.default_rng(1), name='orig')
    c = img.copy()
    assert c is not img
    assert c.pixels == img.pixels
    assert c.history[-1] == ['copy', 'orig']
    c.dispose()
    assert img.width == 2

def test_context_manager():
    with Image.create_random(2, 2, np.random.default_rng(1)) as img:
        assert img.width == 2
    assert img.disposed

    # disposing inside the block is not an error
    with Image.create_random(2, 2, np.random.default_rng(1)) as img:
        img.dispose()
    assert img.disposed
