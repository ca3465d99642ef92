#!/usr/bin/env python3
"""
Train and evaluate a tiny image classifier on random images, and show what happens
to the caller's images afterwards.

With --legacy, the resize stage reuses images that are already the target size and
the pipeline does not check ownership. The pixel extractor then disposes the caller's
image through the alias, so reading it afterwards fails, and so does evaluation.
Without --legacy, the caller's images are still readable after the run.
"""

import sys
import logging

import numpy as np

from pixelpipe.constants import C
from pixelpipe.dataset import Dataset
from pixelpipe.evaluate import evaluate, WrappedEvaluationFailure
from pixelpipe.image import Image, UseAfterDispose
from pixelpipe.pipeline import EstimatorChain, PipelineOptions
from pixelpipe.trainer import LbfgsMaximumEntropy
from pixelpipe.transforms import ResizeImages, ExtractPixels, MapValueToKey, MapKeyToValue

PIXEL_OFFSET = 177

class InputData:
    __slots__ = ('source_image', 'label_value')
    def __init__(self, source_image=None, label_value=None):
        self.source_image = source_image
        self.label_value = label_value

class OutputData:
    __slots__ = ('predicted_label_value', 'score')

def create_pipeline(resize_to, *, legacy=False, seed=None):
    options = PipelineOptions(seed=seed, ownership_checks=not legacy)
    return EstimatorChain([
        ResizeImages(input_column='source_image', output_column='resized_image',
                     width=resize_to, height=resize_to, reuse_same_size=legacy),
        ExtractPixels(input_column='resized_image', output_column='extracted_pixels',
                      interleave=True, offset=PIXEL_OFFSET),
        MapValueToKey(input_column='label_value', output_column='label_key'),
        LbfgsMaximumEntropy(label_column='label_key', feature_column='extracted_pixels'),
        MapKeyToValue(input_column=C.PREDICTED_LABEL, output_column='predicted_label_value'),
    ], options).append_cache_checkpoint()

def create_random_input_data(count, size, seed=1):
    """Returns the caller's records and a Dataset that borrows them."""
    rng = np.random.default_rng(seed)
    records = [InputData(Image.create_random(size, size, rng, name=f"input{i}"), f"label_{i}")
               for i in range(count)]
    return (records, Dataset.from_records(records))

def run(*, image_size, resize_to, legacy, count=2, out=sys.stdout):
    """Fit, transform and evaluate. Returns (first image still readable, metrics or None)."""
    pipeline = create_pipeline(resize_to, legacy=legacy, seed=1)
    (_, training_data) = create_random_input_data(count, image_size)
    model = pipeline.fit(training_data)

    (test_records, test_data) = create_random_input_data(count, image_size)
    predictions = model.transform(test_data)
    for rec in predictions.to_records(OutputData):
        print(f"predicted {rec.predicted_label_value} score {rec.score}", file=out)

    try:
        print(f"first input is {test_records[0].source_image.height} pixels high", file=out)
        readable = True
    except UseAfterDispose as e:
        print(f"first input: {e}", file=out)
        readable = False

    try:
        metrics = evaluate(predictions, label_column='label_key')
        print(metrics, file=out)
    except WrappedEvaluationFailure as e:
        print(f"evaluation failed: {e.root_cause}", file=out)
        metrics = None
    model.print_stats(out=out)
    return (readable, metrics)


if __name__=="__main__":
    import argparse
    parser = argparse.ArgumentParser(description="Show the lifetime of images passed through a pipeline",
                                     formatter_class=argparse.ArgumentDefaultsHelpFormatter)
    parser.add_argument("--image-size", type=int, default=2, help="width and height of the random input images")
    parser.add_argument("--resize-to", type=int, default=2, help="width and height the pipeline resizes to")
    parser.add_argument("--count", type=int, default=2, help="number of images")
    parser.add_argument("--legacy", help="reuse same-size images and skip ownership checks", action='store_true')
    parser.add_argument("--loglevel", default='WARNING', help="logging level")
    args = parser.parse_args()
    logging.basicConfig(level=args.loglevel.upper(),
                        format="%(asctime)s %(name)s %(levelname)s %(message)s")

    run(image_size=args.image_size, resize_to=args.resize_to, legacy=args.legacy, count=args.count)
