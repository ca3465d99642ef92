"""Constants"""

# pylint: disable=too-few-public-methods
class C:
    """Constants"""
    RGBA32 = 'rgba32'
    BGRA32 = 'bgra32'
    PIXEL_FORMATS = set([RGBA32, BGRA32])
    BYTES_PER_PIXEL = 4

    # channel index of red, green, blue, alpha in each pixel format
    CHANNELS = {RGBA32: (0, 1, 2, 3),
                BGRA32: (2, 1, 0, 3)}

    FILL     = 'fill'
    ISO_CROP = 'iso_crop'
    ISO_PAD  = 'iso_pad'
    RESIZING_KINDS = set([FILL, ISO_CROP, ISO_PAD])

    MISSING_KEY = 0
    DISPOSED_MESSAGE = "Object is disposed."

    # default column names produced by the trainer
    SCORE = 'score'
    PREDICTED_LABEL = 'predicted_label'
