"""
Image and conversion stages.

ResizeImages   - borrows an image column, outputs a resized image.
ExtractPixels  - consumes an image column, outputs a float32 feature vector.
MapValueToKey  - learns a vocabulary and maps values to keys 1..N (0 is missing).
MapKeyToValue  - maps keys back to the values they stand for.
CacheCheckpoint - estimators after it read cached columns from a snapshot; image columns, which
                  are never cached, still come from the stages before it.
"""

import copy
import logging

import cv2
import numpy as np

from .constants import C
from .dataset import SchemaError
from .image import Image,P_RESIZE
from .stage import Estimator,Transformer,TrivialEstimator

logger = logging.getLogger(__name__)


def resample(img, width, height, resizing=C.FILL):
    """Resize an HxWx4 buffer to height x width.
    FILL stretches; ISO_CROP keeps the aspect ratio and crops the center;
    ISO_PAD keeps the aspect ratio and pads with transparent black."""
    (src_h, src_w) = img.shape[:2]
    if resizing == C.FILL:
        return cv2.resize(img, (width, height), interpolation=cv2.INTER_LINEAR)
    if resizing == C.ISO_CROP:
        scale = max(width / src_w, height / src_h)
        rw = max(width,  int(round(src_w * scale)))
        rh = max(height, int(round(src_h * scale)))
        resized = cv2.resize(img, (rw, rh), interpolation=cv2.INTER_LINEAR)
        x0 = (rw - width) // 2
        y0 = (rh - height) // 2
        return np.ascontiguousarray(resized[y0:y0+height, x0:x0+width])
    if resizing == C.ISO_PAD:
        scale = min(width / src_w, height / src_h)
        rw = min(width,  max(1, int(round(src_w * scale))))
        rh = min(height, max(1, int(round(src_h * scale))))
        resized = cv2.resize(img, (rw, rh), interpolation=cv2.INTER_LINEAR)
        left = (width - rw) // 2
        top  = (height - rh) // 2
        return cv2.copyMakeBorder(resized, top, height - rh - top, left, width - rw - left,
                                  cv2.BORDER_CONSTANT, value=(0, 0, 0, 0))
    raise ValueError(f"unknown resizing {resizing}")


class ResizeImages(TrivialEstimator):
    """Resize images to width x height. Never disposes or changes its input.

    :param reuse_same_size: when the input is already width x height, return the input
        itself instead of a copy. The output then aliases the caller's image, and whoever
        disposes the output disposes the caller's image. Only for reproducing that behavior.
    """
    def __init__(self, *, input_column, output_column, width, height, resizing=C.FILL, reuse_same_size=False):
        super().__init__()
        if width <= 0 or height <= 0:
            raise ValueError(f"invalid target size {width}x{height}")
        if resizing not in C.RESIZING_KINDS:
            raise ValueError(f"resizing must be one of {sorted(C.RESIZING_KINDS)}")
        self.input_columns  = (input_column,)
        self.output_columns = (output_column,)
        self.width  = width
        self.height = height
        self.resizing = resizing
        self.reuse_same_size = reuse_same_size

    def resize(self, src:Image) -> Image:
        if (src.width, src.height) == (self.width, self.height):
            if self.reuse_same_size:
                logger.debug("%s is already %sx%s; reusing it", src.name, self.width, self.height)
                return src
            return src.copy()
        history = copy.copy(src.history)
        history.append([P_RESIZE, (self.width, self.height)])
        return Image(resample(src.array, self.width, self.height, self.resizing),
                     pixel_format=src.pixel_format,
                     history=history)

    def map_row(self, inputs, owned):
        (column,) = self.input_columns
        return {self.output_columns[0]: self.resize(inputs[column])}


class ExtractPixels(TrivialEstimator):
    """Turn an image into a float32 vector of (value - offset) * scale, colors in RGB(A) order.
    Consumes the input: an image it was given ownership of is disposed once the vector is made.
    :param interleave: if True, the vector is pixel by pixel (rgbrgb...); otherwise plane by plane.
    """
    def __init__(self, *, input_column, output_column, interleave=False, offset=0.0, scale=1.0, use_alpha=False):
        super().__init__()
        self.input_columns  = (input_column,)
        self.output_columns = (output_column,)
        self.consumes       = (input_column,)
        self.interleave = interleave
        self.offset = offset
        self.scale  = scale
        self.use_alpha = use_alpha

    def extract(self, img:Image):
        (r, g, b, a) = C.CHANNELS[img.pixel_format]
        order = [r, g, b, a] if self.use_alpha else [r, g, b]
        planes = img.array[:, :, order].astype(np.float32)
        values = (planes - np.float32(self.offset)) * np.float32(self.scale)
        if not self.interleave:
            values = values.transpose(2, 0, 1)
        return np.ascontiguousarray(values).reshape(-1)

    def map_row(self, inputs, owned):
        (column,) = self.input_columns
        img = inputs[column]
        vector = self.extract(img)
        if column in owned:
            img.dispose()
        return {self.output_columns[0]: vector}


class ValueToKeyTransformer(Transformer):
    def __init__(self, input_column, output_column, values):
        super().__init__()
        self.input_columns  = (input_column,)
        self.output_columns = (output_column,)
        self.values = list(values)
        self._keys = {v:i+1 for (i,v) in enumerate(self.values)}

    def map_row(self, inputs, owned):
        value = inputs[self.input_columns[0]]
        return {self.output_columns[0]: self._keys.get(value, C.MISSING_KEY)}

    def key_values(self, column):
        if column == self.output_columns[0]:
            return self.values
        return None


class MapValueToKey(Estimator):
    """Keys are assigned in order of first occurrence."""
    def __init__(self, *, input_column, output_column):
        self.input_column  = input_column
        self.output_column = output_column

    def fit(self, view):
        self.require_columns(view, [self.input_column])
        values = []
        seen = set()
        for value in view.column(self.input_column):
            if value is None or value in seen:
                continue
            seen.add(value)
            values.append(value)
        logger.info("%s: %s distinct values", self.input_column, len(values))
        return ValueToKeyTransformer(self.input_column, self.output_column, values)


class KeyToValueTransformer(Transformer):
    def __init__(self, input_column, output_column, values):
        super().__init__()
        self.input_columns  = (input_column,)
        self.output_columns = (output_column,)
        self.values = list(values)

    def map_row(self, inputs, owned):
        key = int(inputs[self.input_columns[0]])
        if key == C.MISSING_KEY:
            return {self.output_columns[0]: None}
        if not 0 < key <= len(self.values):
            raise ValueError(f"key {key} out of range 1..{len(self.values)}")
        return {self.output_columns[0]: self.values[key-1]}


class MapKeyToValue(Estimator):
    def __init__(self, *, input_column, output_column):
        self.input_column  = input_column
        self.output_column = output_column

    def fit(self, view):
        self.require_columns(view, [self.input_column])
        values = view.key_values(self.input_column)
        if values is None:
            raise SchemaError(f"column '{self.input_column}' is not a key column")
        return KeyToValueTransformer(self.input_column, self.output_column, values)


class PassThrough(Transformer):
    def map_row(self, inputs, owned):
        return {}


class CacheCheckpoint(Estimator):
    caches = True
    def fit(self, view):
        return PassThrough()
