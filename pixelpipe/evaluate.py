"""
Multiclass metrics.

evaluate() reads only the label key, predicted key and score columns; it never
touches an image. But on a lazy view, reading those columns runs the stages
upstream of them, and those stages may read an image whose lifecycle has already
ended. Lifecycle errors therefore surface here late and wrapped:

    WrappedEvaluationFailure
      __cause__: StageError           (which stage, which row)
        __cause__: UseAfterDispose    (which image)

WrappedEvaluationFailure.root_cause is the innermost error.
"""

import math
import logging

import numpy as np
from sklearn.metrics import accuracy_score, confusion_matrix, log_loss, recall_score

from .constants import C
from .image import ImageLifecycleError

logger = logging.getLogger(__name__)

EPSILON = 1e-15


class WrappedEvaluationFailure(RuntimeError):
    """Evaluation failed because an image upstream was used outside of its lifecycle"""
    @property
    def root_cause(self):
        e = self
        while e.__cause__ is not None:
            e = e.__cause__
        return e


def lifecycle_error_in_chain(e):
    """Return the first ImageLifecycleError in the cause chain of e, or None."""
    while e is not None:
        if isinstance(e, ImageLifecycleError):
            return e
        e = e.__cause__
    return None


class MulticlassMetrics:
    def __init__(self, *, micro_accuracy, macro_accuracy, log_loss, log_loss_reduction,
                 per_class_log_loss, confusion_matrix, top_k=0, top_k_accuracy=None):
        self.micro_accuracy = micro_accuracy
        self.macro_accuracy = macro_accuracy
        self.log_loss = log_loss
        self.log_loss_reduction = log_loss_reduction
        self.per_class_log_loss = per_class_log_loss
        self.confusion_matrix = confusion_matrix
        self.top_k = top_k
        self.top_k_accuracy = top_k_accuracy

    def __repr__(self):
        return (f"<MulticlassMetrics micro_accuracy={self.micro_accuracy:.4} "
                f"macro_accuracy={self.macro_accuracy:.4} log_loss={self.log_loss:.4} "
                f"log_loss_reduction={self.log_loss_reduction:.4}>")


def _materialize(data, columns):
    try:
        return [tuple(np.array(row[c], copy=True) if isinstance(row[c], np.ndarray) else row[c]
                      for c in columns)
                for row in data.rows(columns)]
    except RuntimeError as e:
        cause = lifecycle_error_in_chain(e)
        if cause is None:
            raise
        raise WrappedEvaluationFailure(f"evaluation of {data} failed: {cause}") from e


def evaluate(data, label_column, predicted_label_column=C.PREDICTED_LABEL, score_column=C.SCORE, top_k=0):
    """Compute multiclass metrics. Label and prediction columns hold keys (1..N); the score
    column holds a probability vector per row, indexed by key-1. Rows with a missing label
    are skipped."""
    rows = _materialize(data, [label_column, predicted_label_column, score_column])
    rows = [r for r in rows if int(r[0]) != C.MISSING_KEY]
    if not rows:
        raise ValueError("no labeled rows to evaluate")

    y_true = np.array([int(r[0]) - 1 for r in rows])
    y_pred = np.array([int(r[1]) - 1 for r in rows])
    scores = np.stack([np.asarray(r[2], dtype=np.float64) for r in rows])
    n_classes = scores.shape[1]
    labels = list(range(n_classes))
    scores = np.clip(scores, EPSILON, 1.0)
    scores = scores / scores.sum(axis=1, keepdims=True)

    present = sorted(set(y_true.tolist()))
    ll = log_loss(y_true, scores, labels=labels)
    row_losses = -np.log(scores[np.arange(len(y_true)), y_true])
    per_class = [float(row_losses[y_true == c].mean()) if c in present else 0.0 for c in labels]

    priors = np.bincount(y_true, minlength=n_classes) / len(y_true)
    prior_ll = -sum(p * math.log(p) for p in priors if p > 0)
    reduction = 1.0 - ll / prior_ll if prior_ll > 0 else float('nan')

    top_k_accuracy = None
    if top_k > 0:
        top = np.argsort(-scores, axis=1, kind='stable')[:, :top_k]
        top_k_accuracy = float(np.mean([t in tk for (t, tk) in zip(y_true, top)]))

    metrics = MulticlassMetrics(
        micro_accuracy = float(accuracy_score(y_true, y_pred)),
        macro_accuracy = float(recall_score(y_true, y_pred, labels=present, average='macro', zero_division=0)),
        log_loss = float(ll),
        log_loss_reduction = reduction,
        per_class_log_loss = per_class,
        confusion_matrix = confusion_matrix(y_true, y_pred, labels=labels),
        top_k = top_k,
        top_k_accuracy = top_k_accuracy)
    logger.info("%s", metrics)
    return metrics
