"""
Multiclass maximum entropy (multinomial logistic regression) trainer, fit with L-BFGS.
Uses scikit-learn's LogisticRegression.
"""

import logging

import numpy as np
from sklearn.linear_model import LogisticRegression

from .constants import C
from .dataset import SchemaError
from .stage import Estimator,Transformer

logger = logging.getLogger(__name__)


class MaximumEntropyModel(Transformer):
    """Outputs score (class probabilities, indexed by key-1) and predicted_label (a key)."""
    def __init__(self, model, feature_column, label_values, *,
                 score_column=C.SCORE, predicted_label_column=C.PREDICTED_LABEL):
        super().__init__()
        self.model = model
        self.input_columns  = (feature_column,)
        self.output_columns = (score_column, predicted_label_column)
        self.label_values = list(label_values)
        # LogisticRegression only knows the classes it saw; scores are over every key
        self._positions = np.asarray(model.classes_, dtype=np.int64) - 1

    def map_row(self, inputs, owned):
        features = np.asarray(inputs[self.input_columns[0]], dtype=np.float32).reshape(1, -1)
        probs = self.model.predict_proba(features)[0]
        score = np.zeros(len(self.label_values), dtype=np.float32)
        score[self._positions] = probs
        predicted = int(np.argmax(score)) + 1
        return {self.output_columns[0]: score,
                self.output_columns[1]: predicted}

    def key_values(self, column):
        if column == self.output_columns[1]:
            return self.label_values
        return None


class LbfgsMaximumEntropy(Estimator):
    """
    :param label_column: key column (1..N)
    :param feature_column: float vector column
    :param l2_regularization: L2 weight; LogisticRegression is given C = 1/l2_regularization
    """
    def __init__(self, *, label_column, feature_column, l2_regularization=1.0, max_iterations=100):
        if l2_regularization <= 0:
            raise ValueError("l2_regularization must be positive")
        self.label_column = label_column
        self.feature_column = feature_column
        self.l2_regularization = l2_regularization
        self.max_iterations = max_iterations

    def fit(self, view):
        self.require_columns(view, [self.label_column, self.feature_column])
        label_values = view.key_values(self.label_column)
        if label_values is None:
            raise SchemaError(f"label column '{self.label_column}' is not a key column")
        features = []
        labels = []
        for row in view.rows([self.feature_column, self.label_column]):
            key = int(row[self.label_column])
            if key == C.MISSING_KEY:
                continue
            features.append(np.asarray(row[self.feature_column], dtype=np.float32))
            labels.append(key)
        if len(set(labels)) < 2:
            raise ValueError(f"need at least two classes to train, got {sorted(set(labels))}")

        seed = view.options.seed if view.options is not None else None
        model = LogisticRegression(solver='lbfgs',
                                   C=1.0 / self.l2_regularization,
                                   max_iter=self.max_iterations,
                                   random_state=seed)
        logger.info("training on %s rows, %s features, %s classes",
                    len(labels), len(features[0]), len(set(labels)))
        model.fit(np.stack(features), np.asarray(labels))
        return MaximumEntropyModel(model, self.feature_column, label_values)
