import sys
import io

from os.path import dirname,abspath

import pytest

sys.path.append( dirname(dirname(abspath(__file__))))

from pixelpipe.evaluate import evaluate, WrappedEvaluationFailure, MulticlassMetrics
from pixelpipe.image import UseAfterDispose
from pixelpipe.pipeline import StageError

import demo_disposing

RESIZE_TO = 2

def fit_and_transform(image_size, legacy):
    pipeline = demo_disposing.create_pipeline(RESIZE_TO, legacy=legacy, seed=1)
    (_, training_data) = demo_disposing.create_random_input_data(2, image_size)
    model = pipeline.fit(training_data)
    (test_records, test_data) = demo_disposing.create_random_input_data(2, image_size)
    predictions = model.transform(test_data)
    assert test_records[0].source_image.height == image_size
    outputs = predictions.to_records(demo_disposing.OutputData)
    assert len(outputs) == 2
    assert all(o.predicted_label_value in ('label_0', 'label_1') for o in outputs)
    return (test_records, predictions)

def test_legacy_same_size_disposes_caller_image():
    (test_records, predictions) = fit_and_transform(image_size=2, legacy=True)

    with pytest.raises(UseAfterDispose) as e1:
        test_records[0].source_image.height
    assert str(e1.value).startswith("Object is disposed.")

    with pytest.raises(WrappedEvaluationFailure) as e2:
        evaluate(predictions, label_column='label_key', predicted_label_column='predicted_label')
    assert isinstance(e2.value.__cause__, StageError)
    assert isinstance(e2.value.__cause__.__cause__, UseAfterDispose)
    assert str(e2.value.root_cause).startswith("Object is disposed.")

def test_legacy_different_size_keeps_caller_image():
    (test_records, predictions) = fit_and_transform(image_size=3, legacy=True)
    assert test_records[0].source_image.height == 3
    metrics = evaluate(predictions, label_column='label_key', predicted_label_column='predicted_label')
    assert isinstance(metrics, MulticlassMetrics)
    assert 0.0 <= metrics.micro_accuracy <= 1.0

@pytest.mark.parametrize('image_size', [2, 3])
def test_fixed_pipeline_keeps_caller_image(image_size):
    (test_records, predictions) = fit_and_transform(image_size=image_size, legacy=False)
    assert test_records[0].source_image.height == image_size
    assert test_records[1].source_image.width == image_size
    metrics = evaluate(predictions, label_column='label_key')
    assert metrics.confusion_matrix.sum() == 2

def test_run():
    out = io.StringIO()
    (readable, metrics) = demo_disposing.run(image_size=2, resize_to=2, legacy=True, out=out)
    assert not readable
    assert metrics is None
    assert 'evaluation failed: Object is disposed.' in out.getvalue()

    out = io.StringIO()
    (readable, metrics) = demo_disposing.run(image_size=2, resize_to=2, legacy=False, out=out)
    assert readable
    assert metrics is not None
    assert 'first input is 2 pixels high' in out.getvalue()
