"""
Tests for the metric evaluator
"""

import pytest
import sys
import math

from os.path import dirname, join

import numpy as np

sys.path.append(join(dirname(dirname(dirname(__file__)))))

from pixelpipe.dataset import Dataset
from pixelpipe.evaluate import evaluate, WrappedEvaluationFailure
from pixelpipe.image import Image, UseAfterDispose
from pixelpipe.pipeline import TransformerChain, StageError
from pixelpipe.stage import TrivialEstimator

SCORED = [{'key': 1, 'predicted_label': 1, 'score': np.array([0.9, 0.1], dtype=np.float32)},
          {'key': 2, 'predicted_label': 2, 'score': np.array([0.2, 0.8], dtype=np.float32)},
          {'key': 2, 'predicted_label': 1, 'score': np.array([0.6, 0.4], dtype=np.float32)}]


class ScoreFromImage(TrivialEstimator):
    """Produces key, prediction and score columns from an image's width"""
    input_columns  = ('img',)
    output_columns = ('key', 'predicted_label', 'score')
    def map_row(self, inputs, owned):
        assert inputs['img'].width > 0
        return {'key': 1, 'predicted_label': 1, 'score': np.array([1.0, 0.0])}


class FailsOnKey(TrivialEstimator):
    input_columns  = ('img',)
    output_columns = ('key', 'predicted_label', 'score')
    def map_row(self, inputs, owned):
        raise KeyError('key')


def test_metrics():
    m = evaluate(Dataset.from_records(SCORED), label_column='key', top_k=1)
    assert m.micro_accuracy == pytest.approx(2/3)
    assert m.macro_accuracy == pytest.approx(0.75)
    losses = [-math.log(0.9), -math.log(0.8), -math.log(0.4)]
    assert m.log_loss == pytest.approx(sum(losses) / 3, rel=1e-5)
    assert m.per_class_log_loss[0] == pytest.approx(losses[0], rel=1e-5)
    assert m.per_class_log_loss[1] == pytest.approx((losses[1] + losses[2]) / 2, rel=1e-5)
    prior = -(1/3 * math.log(1/3) + 2/3 * math.log(2/3))
    assert m.log_loss_reduction == pytest.approx(1 - m.log_loss / prior, rel=1e-5)
    assert m.confusion_matrix.tolist() == [[1, 0], [1, 1]]
    assert m.top_k_accuracy == pytest.approx(2/3)
    assert 'micro_accuracy' in repr(m)

def test_missing_labels_are_skipped():
    rows = SCORED + [{'key': 0, 'predicted_label': 1, 'score': np.array([0.5, 0.5])}]
    m = evaluate(Dataset.from_records(rows), label_column='key')
    assert m.micro_accuracy == pytest.approx(2/3)
    assert m.top_k_accuracy is None

def test_no_rows():
    with pytest.raises(ValueError):
        evaluate(Dataset.from_records(SCORED[:0], columns=['key', 'predicted_label', 'score']),
                 label_column='key')

def test_lifecycle_error_is_wrapped():
    img = Image.create_random(2, 2, np.random.default_rng(1), name='early')
    data = Dataset.from_records([{'img': img}])
    view = TransformerChain([ScoreFromImage()]).transform(data)
    assert evaluate(view, label_column='key').micro_accuracy == 1.0

    img.dispose()
    with pytest.raises(WrappedEvaluationFailure) as e:
        evaluate(view, label_column='key')
    assert isinstance(e.value.__cause__, StageError)
    assert isinstance(e.value.root_cause, UseAfterDispose)
    assert e.value.root_cause.image_name == 'early'

def test_other_errors_are_not_wrapped():
    data = Dataset.from_records([{'img': Image.create_random(2, 2, np.random.default_rng(1))}])
    view = TransformerChain([FailsOnKey()]).transform(data)
    with pytest.raises(StageError) as e:
        evaluate(view, label_column='key')
    assert isinstance(e.value.__cause__, KeyError)
