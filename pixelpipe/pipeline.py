"""
Pipeline: fitting chains of estimators and running chains of transformers.

EstimatorChain.fit() returns a TransformerChain. TransformerChain.transform()
returns a lazy TransformedView; nothing runs until the view is enumerated, and
then only the stages needed for the requested columns run. Every enumeration
runs them again, one row at a time, in the caller's thread.

Ownership bookkeeping, per row:
  - columns of the source view are borrowed (unless the source row owns them);
  - every value a stage produces is owned by the row;
  - a stage that consumes an owned value takes ownership of it;
  - when the row is closed, owned images nobody took are disposed.
"""

import sys
import logging

from .image import Image
from .dataset import DataView, Row, SchemaError
from .stage import Ownership, Estimator, validate_stage

logger = logging.getLogger(__name__)


class StageError(RuntimeError):
    """A stage raised while processing a row. The original error is the __cause__."""
    def __init__(self, stage, index, cause):
        super().__init__(f"{stage.name} failed on row {index}: {cause}")
        self.stage = stage
        self.index = index


class OwnershipViolation(RuntimeError):
    """A stage disposed an image it only borrowed"""


class PipelineOptions:
    """Explicit configuration for a pipeline. There is no process-wide context."""
    __slots__ = ('seed','ownership_checks','verbose','debug')
    def __init__(self, **kwargs):
        self.seed = None
        self.ownership_checks = True
        self.verbose = False
        self.debug = False
        for (k,v) in kwargs.items():
            setattr(self,k,v)

    def __repr__(self):
        return "<PipelineOptions " + " ".join(f"{k}={getattr(self,k)}" for k in self.__slots__) + ">"


def set_log_level(options):
    pkg_logger = logging.getLogger(__package__)
    if options.debug:
        pkg_logger.setLevel(logging.DEBUG)
    elif options.verbose:
        pkg_logger.setLevel(logging.INFO)


class PipelineRow(Row):
    """A row of a TransformedView. Source columns come from the source row;
    everything else is computed by running the stage that produces it."""
    def __init__(self, view, source):
        super().__init__(source.index)
        self.view = view
        self.source = source

    def compute(self, name):
        t = self.view.producer(name)
        if t is None:
            self.set(name, self.source[name])
        else:
            self._run(t)

    def take(self, name):
        if self.view.producer(name) is None:
            (value, owned) = self.source.take(name)
            self.set(name, value)
            return (value, owned)
        return super().take(name)

    def images(self):
        return super().images() + self.source.images()

    def _run(self, t):
        inputs = {}
        owned  = set()
        for column in t.input_columns:
            if t.ownership(column) == Ownership.CONSUMES:
                (value, is_owned) = self.take(column)
                if is_owned:
                    owned.add(column)
            else:
                value = self[column]
            inputs[column] = value
        borrowed = [v for (c,v) in inputs.items()
                    if c not in owned and isinstance(v, Image) and not v.disposed]

        logger.debug("<%s> row %s owns %s", t.name, self.index, sorted(owned))
        try:
            outputs = t.run_row(inputs, owned)
        except Exception as e:
            raise StageError(t, self.index, e) from e

        if self.view.options.ownership_checks:
            for img in borrowed:
                if img.disposed:
                    raise OwnershipViolation(f"{t.name} disposed {img.name} on row {self.index}, "
                                             "but only borrowed it")
        moved = [inputs[c] for c in owned]
        for name in t.output_columns:
            self._store(t, name, outputs[name], moved)

    def _store(self, t, name, value, moved=()):
        """Store a stage output as owned by the row. An owned input passed through is a move;
        any other image the row already refers to is an alias."""
        if isinstance(value, Image) and any(value is img for img in moved):
            logger.debug("%s moved %s to output %s on row %s", t.name, value.name, name, self.index)
        elif isinstance(value, Image) and any(value is img for img in self.images()):
            if self.view.options.ownership_checks:
                logger.warning("%s output %s on row %s is %s, which it does not own; storing a copy",
                               t.name, name, self.index, value.name)
                value = value.copy()
            else:
                logger.debug("%s output %s on row %s aliases %s", t.name, name, self.index, value.name)
        self.set(name, value, owned=True)


class TransformedView(DataView):
    """Lazy view of a source view run through a list of transformers"""
    def __init__(self, source, transformers, options=None):
        self.source  = source
        self.transformers = list(transformers)
        self.options = options if options is not None else PipelineOptions()
        self._producers = {}
        available = list(source.schema)
        for t in self.transformers:
            validate_stage(t)
            for column in t.input_columns:
                if column not in available:
                    raise SchemaError(f"{t.name} needs column '{column}', which is not in {available}")
            for column in t.output_columns:
                if column in available:
                    raise SchemaError(f"{t.name} output column '{column}' already exists")
                self._producers[column] = t
                available.append(column)
        self._schema = available

    def __repr__(self):
        return f"<TransformedView {[t.name for t in self.transformers]} over {self.source}>"

    @property
    def schema(self):
        return self._schema

    def producer(self, column):
        return self._producers.get(column)

    def key_values(self, column):
        t = self.producer(column)
        if t is None:
            return self.source.key_values(column)
        return t.key_values(column)

    def source_columns(self, columns):
        """The source columns needed to compute columns"""
        needed = set()
        todo = list(columns)
        seen = set()
        while todo:
            column = todo.pop()
            if column in seen:
                continue
            seen.add(column)
            t = self.producer(column)
            if t is None:
                needed.add(column)
            else:
                todo.extend(t.input_columns)
        return [column for column in self.source.schema if column in needed]

    def rows(self, columns=None):
        columns = self.check_columns(columns)
        for src in self.source.rows(self.source_columns(columns)):
            row = PipelineRow(self, src)
            try:
                for name in columns:
                    row[name]       # pylint: disable=pointless-statement
                yield row
            finally:
                row.close()


class TransformerChain:
    """A fitted pipeline"""
    def __init__(self, transformers, options=None):
        self.transformers = list(transformers)
        self.options = options if options is not None else PipelineOptions()
        set_log_level(self.options)

    def __len__(self):
        return len(self.transformers)

    def transform(self, data):
        """Return a lazy view of data run through every transformer."""
        logger.info("== transform %s", data)
        return TransformedView(data, self.transformers, self.options)

    def print_stats(self, out=sys.stdout):
        for t in self.transformers:
            print(f"{t.name}: calls: {t.count}  mean: {t.t_mean:.2}s  stddev: {t.t_stddev:.2}",
                  file=out)


class EstimatorChain(Estimator):
    """An unfitted pipeline: estimators applied in order"""
    def __init__(self, estimators=(), options=None):
        self.estimators = list(estimators)
        self.options = options if options is not None else PipelineOptions()
        set_log_level(self.options)

    def append(self, other):
        if isinstance(other, EstimatorChain):
            return EstimatorChain(self.estimators + other.estimators, self.options)
        return EstimatorChain(self.estimators + [other], self.options)

    def append_cache_checkpoint(self):
        from .transforms import CacheCheckpoint
        return self.append(CacheCheckpoint())

    def fit(self, view):
        """Fit each estimator on the output of the transformers fitted before it."""
        logger.info("== fit %s", view)
        source = view
        prefix = []
        transformers = []
        for (i, est) in enumerate(self.estimators):
            logger.info("fit %s", est.__class__.__name__)
            t = est.fit(TransformedView(source, prefix, self.options))
            transformers.append(t)
            prefix.append(t)
            # a checkpoint with nothing left to fit has nothing to cache for
            if est.caches and i < len(self.estimators)-1:
                source = TransformedView(source, prefix, self.options).cache()
                prefix = []
        return TransformerChain(transformers, self.options)
