"""
Stage implementation: the Transformer and Estimator base classes.

A Transformer maps the columns of one row to new columns. For every
input column it declares whether it borrows the value (read only) or
consumes it (takes ownership and may dispose it once its outputs are
produced). An Estimator learns from a data view and returns a
Transformer.
"""

import math
import time
from enum import Enum
from abc import ABC,abstractmethod

from .dataset import SchemaError


class Ownership(Enum):
    BORROWS  = 'borrows'
    CONSUMES = 'consumes'


def validate_stage(stage):
    if not hasattr(stage,'count'):
        raise RuntimeError(str(stage) + " did not call super().__init__()")


class Transformer(ABC):
    """Abstract base class for a fitted pipeline stage"""
    input_columns  = ()
    output_columns = ()
    consumes       = ()         # input columns whose ownership this stage takes

    def __init__(self):
        self.sum_t   = 0
        self.sum_t2  = 0
        self.count   = 0

    def __repr__(self):
        return f"<{self.name} {list(self.input_columns)} -> {list(self.output_columns)}>"

    @property
    def name(self):
        return self.__class__.__name__

    def ownership(self, column):
        return Ownership.CONSUMES if column in self.consumes else Ownership.BORROWS

    @abstractmethod
    def map_row(self, inputs:dict, owned:set) -> dict:
        """Compute the output columns for one row.
        :param inputs: input column name -> value
        :param owned: input columns whose values this stage now owns. Only these may be disposed,
                      and only after the outputs have been computed.
        """

    def run_row(self, inputs, owned):
        """Called by the executor. Maps the row and keeps timing statistics."""
        t0 = time.time()
        outputs = self.map_row(inputs, owned)
        t = time.time() - t0
        self.sum_t  += t
        self.sum_t2 += (t*t)
        self.count  += 1
        return outputs

    def key_values(self, column):
        """For key columns this stage produces, the values that keys 1..N stand for."""
        return None

    @property
    def t_mean(self):
        return self.sum_t / self.count if self.count>0 else float("nan")

    @property
    def t2_mean(self):
        return self.sum_t2 / self.count if self.count>0 else float("nan")

    @property
    def t_variance(self):
        return self.t2_mean - self.t_mean * self.t_mean

    @property
    def t_stddev(self):
        return math.sqrt(max(self.t_variance, 0.0))


class Estimator(ABC):
    """Abstract base class for a stage that must be fit before it can transform"""
    caches = False              # downstream estimators fit on a materialized snapshot

    @abstractmethod
    def fit(self, view) -> Transformer:
        """Learn from the view and return the fitted transformer."""

    def append(self, other):
        """Return an EstimatorChain of this estimator followed by other."""
        from .pipeline import EstimatorChain
        return EstimatorChain([self]).append(other)

    def require_columns(self, view, columns):
        for column in columns:
            if column not in view.schema:
                raise SchemaError(f"{self.__class__.__name__} needs column '{column}', "
                                  f"which is not in {view.schema}")


class TrivialEstimator(Estimator, Transformer):
    """A stage with nothing to learn. Fitting checks the schema and returns the stage itself."""
    def fit(self, view):
        validate_stage(self)
        self.require_columns(view, self.input_columns)
        return self
