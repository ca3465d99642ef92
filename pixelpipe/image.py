"""This module provides the following classes:

Image - Holds a decoded pixel buffer with an explicit lifecycle (live or disposed).

ImageLifecycleError - base class for lifecycle errors:
    UseAfterDispose - an image was read after it was disposed.
    DoubleDispose   - an image was disposed (or released) after it was already disposed.

An Image starts with one holder. Additional holders call retain() and
give up their hold with release(); the pixels are disposed when the
last holder releases. dispose() ends the lifecycle immediately,
whoever else holds the image.
"""

import copy
import itertools
import logging

import numpy as np

from .constants import C

logger = logging.getLogger(__name__)

P_PIXELS = 'pixels'
P_COPY   = 'copy'
P_RESIZE = 'resize'

_serial = itertools.count(1)


class ImageLifecycleError(RuntimeError):
    """Base class for using an image outside of its lifecycle"""


class UseAfterDispose(ImageLifecycleError):
    """An image was read after it was disposed"""
    def __init__(self, image_name):
        super().__init__(f"{C.DISPOSED_MESSAGE} (image {image_name})")
        self.image_name = image_name


class DoubleDispose(ImageLifecycleError):
    """dispose() or release() on an image that was already disposed"""
    def __init__(self, image_name):
        super().__init__(f"Image {image_name} is already disposed.")
        self.image_name = image_name


class Image:
    """Abstraction to hold an in-memory image.
    The pixel buffer is H x W x 4 uint8 and is never writable.
    If a stage needs different pixels, it creates a new Image."""
    def __init__(self, img, *, pixel_format=C.RGBA32, name=None, history=None):
        if pixel_format not in C.PIXEL_FORMATS:
            raise ValueError(f"unknown pixel format {pixel_format}")
        if img.ndim != 3 or img.shape[2] != C.BYTES_PER_PIXEL or img.dtype != np.uint8:
            raise ValueError(f"pixel buffer must be HxWx{C.BYTES_PER_PIXEL} uint8, not {img.shape} {img.dtype}")
        img.flags.writeable = False
        self._img = img
        self.pixel_format = pixel_format
        self.name = name if name is not None else f"image{next(_serial)}"
        self.history = history if history is not None else [[P_PIXELS, (img.shape[1], img.shape[0])]]
        self._holders = 1

    @classmethod
    def create_from_pixels(cls, width, height, pixel_format, pixel_bytes, name=None):
        """Create a live image from raw pixel bytes, 4 bytes per pixel, row major."""
        if width <= 0 or height <= 0:
            raise ValueError(f"invalid dimensions {width}x{height}")
        expected = width * height * C.BYTES_PER_PIXEL
        if len(pixel_bytes) != expected:
            raise ValueError(f"{width}x{height} {pixel_format} needs {expected} bytes, got {len(pixel_bytes)}")
        img = np.frombuffer(bytes(pixel_bytes), np.uint8).reshape(height, width, C.BYTES_PER_PIXEL).copy()
        return cls(img, pixel_format=pixel_format, name=name)

    @classmethod
    def create_random(cls, width, height, rng=None, pixel_format=C.RGBA32, name=None):
        """Create an image of random pixels. Used by the tests and the demo."""
        if rng is None:
            rng = np.random.default_rng()
        pixel_bytes = rng.integers(0, 256, size=width * height * C.BYTES_PER_PIXEL, dtype=np.uint8).tobytes()
        return cls.create_from_pixels(width, height, pixel_format, pixel_bytes, name=name)

    def __repr__(self):
        state = 'disposed' if self.disposed else f"{self._img.shape[1]}x{self._img.shape[0]}"
        return f"<Image {self.name} {self.pixel_format} {state} history={self.history}>"

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_value, traceback):
        if not self.disposed:
            self.dispose()
        return False

    def _live_img(self):
        if self._img is None:
            raise UseAfterDispose(self.name)
        return self._img

    @property
    def disposed(self):
        return self._img is None

    @property
    def holders(self):
        return self._holders

    @property
    def width(self):
        return self._live_img().shape[1]

    @property
    def height(self):
        return self._live_img().shape[0]

    @property
    def shape(self):
        """Returns shape. note: shape[0] = height, shape[1]=width, shape[2]==channels"""
        return tuple(self._live_img().shape)

    @property
    def array(self):
        """return the pixel buffer as a numpy array that is not writable."""
        return self._live_img()

    @property
    def pixels(self):
        """Returns the pixel bytes"""
        return self._live_img().tobytes()

    def copy(self, name=None):
        """Returns a new live image with its own pixel buffer."""
        history = copy.copy(self.history)
        history.append([P_COPY, self.name])
        return Image(np.copy(self._live_img()),
                     pixel_format=self.pixel_format,
                     name=name,
                     history=history)

    def retain(self):
        """Add a holder. Returns self so it can be used inline."""
        self._live_img()
        self._holders += 1
        return self

    def release(self):
        """Give up one hold. The image is disposed when the last holder releases it."""
        if self.disposed:
            raise DoubleDispose(self.name)
        self._holders -= 1
        if self._holders == 0:
            self.dispose()

    def dispose(self):
        """End the lifecycle of this image. A disposed image cannot be read or disposed again."""
        if self.disposed:
            raise DoubleDispose(self.name)
        logger.debug("dispose %s", self.name)
        self._img = None
        self._holders = 0
