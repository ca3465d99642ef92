"""
Data views and caller-owned datasets.

DataView - anything that can be enumerated row by row. Each row is a Row cursor
           that is only valid until the enumeration moves to the next row.

Dataset  - a DataView over records supplied by the caller. Records are referenced,
           never copied. Images in the records are borrowed: the dataset (and any
           pipeline reading from it) does not dispose them, unless the dataset was
           created with transfer_ownership=True.

CachedView - a snapshot of a view's non-image columns, falling back to the view itself
             for the columns it does not hold.
"""

import logging
from abc import ABC,abstractmethod

import numpy as np

from .image import Image

logger = logging.getLogger(__name__)


class SchemaError(ValueError):
    """A column was requested that the view does not have"""


def _field(record, name):
    if isinstance(record, dict):
        return record[name]
    return getattr(record, name)


def _record_columns(record):
    if isinstance(record, dict):
        return list(record.keys())
    if hasattr(record, '__dict__'):
        return [k for k in vars(record) if not k.startswith('_')]
    return list(record.__slots__)


class Row:
    """Cursor onto one row.

    Values are computed on demand and kept until close(). The row tracks
    which values it owns; close() disposes the owned images that nobody
    took ownership of.
    """
    def __init__(self, index):
        self.index   = index
        self._values = {}
        self._owned  = {}           # column -> Image owned by this row

    def __repr__(self):
        return f"<{self.__class__.__name__} {self.index} {list(self._values)}>"

    def __getitem__(self, name):
        if name not in self._values:
            self.compute(name)
        return self._values[name]

    def compute(self, name):
        """Compute name and set() it. The base row holds only what it was given."""
        raise KeyError(name)

    def set(self, name, value, owned=False):
        self._values[name] = value
        if owned and isinstance(value, Image):
            self._owned[name] = value

    def take(self, name):
        """Returns (value, owned). If owned is True, ownership moved to the caller
        and this row will no longer dispose the value."""
        value = self[name]
        if self._owned.pop(name, None) is not None:
            return (value, True)
        return (value, False)

    def images(self):
        """Every image this row currently refers to."""
        return [v for v in self._values.values() if isinstance(v, Image)]

    def close(self):
        for (name, img) in self._owned.items():
            if not img.disposed:
                logger.debug("row %s: dispose owned column %s", self.index, name)
                img.dispose()
        self._owned = {}


class DataView(ABC):
    """Base class for everything that can be enumerated as rows."""
    options = None

    @property
    @abstractmethod
    def schema(self) -> list:
        """Ordered list of column names"""

    @abstractmethod
    def rows(self, columns=None):
        """Generator of Row cursors with the requested columns available."""

    def key_values(self, column):
        return None

    def check_columns(self, columns):
        if columns is None:
            return list(self.schema)
        for name in columns:
            if name not in self.schema:
                raise SchemaError(f"no column '{name}' in {self.schema}")
        return list(columns)

    def column(self, name):
        """All of the values of one column."""
        return [row[name] for row in self.rows([name])]

    def count(self):
        return sum(1 for _ in self.rows([]))

    def to_records(self, record_type=dict, columns=None):
        """Materialize output records. Images are never copied into records:
        by default image columns are left out, and asking for one is an error. Arrays are copied."""
        explicit = columns is not None or hasattr(record_type, '__slots__')
        if columns is None:
            columns = list(getattr(record_type, '__slots__', self.schema))
        ret = []
        for row in self.rows(columns):
            values = {}
            for name in columns:
                value = row[name]
                if isinstance(value, Image) and not explicit:
                    continue
                if isinstance(value, Image):
                    raise TypeError(f"column '{name}' holds images; output records cannot hold images")
                if isinstance(value, np.ndarray):
                    value = np.array(value, copy=True)
                values[name] = value
            if record_type is dict:
                ret.append(values)
            else:
                rec = record_type()
                for (k,v) in values.items():
                    setattr(rec, k, v)
                ret.append(rec)
        return ret

    def cache(self):
        """Return a CachedView: a snapshot of every column that does not hold images,
        backed by this view for the image columns."""
        records = []
        image_columns = set()
        for row in self.rows():
            rec = {}
            for name in self.schema:
                value = row[name]
                if isinstance(value, Image):
                    image_columns.add(name)
                elif isinstance(value, np.ndarray):
                    rec[name] = np.array(value, copy=True)
                else:
                    rec[name] = value
            records.append(rec)
        columns = [name for name in self.schema if name not in image_columns]
        records = [{k:rec[k] for k in columns} for rec in records]
        logger.info("cached %s rows, columns %s", len(records), columns)
        snapshot = Dataset(records,
                           columns=columns,
                           key_values={name:self.key_values(name) for name in columns
                                       if self.key_values(name) is not None})
        return CachedView(snapshot, self)


class Dataset(DataView):
    """Rows supplied by the caller."""
    def __init__(self, records, *, columns=None, transfer_ownership=False, key_values=None):
        self.records = list(records)
        if columns is None:
            columns = _record_columns(self.records[0]) if self.records else []
        self.columns = list(columns)
        self.transfer_ownership = transfer_ownership
        self._key_values = key_values or {}

    @classmethod
    def from_records(cls, records, columns=None, transfer_ownership=False):
        return cls(records, columns=columns, transfer_ownership=transfer_ownership)

    def __repr__(self):
        return f"<Dataset rows={len(self.records)} columns={self.columns}>"

    def __len__(self):
        return len(self.records)

    @property
    def schema(self):
        return self.columns

    def key_values(self, column):
        return self._key_values.get(column)

    def rows(self, columns=None):
        columns = self.check_columns(columns)
        for (index, record) in enumerate(self.records):
            row = Row(index)
            for name in columns:
                row.set(name, _field(record, name), owned=self.transfer_ownership)
            if self.transfer_ownership:
                # the row owns every image of the record, requested or not
                for name in self.columns:
                    if name not in columns and isinstance(_field(record, name), Image):
                        row.set(name, _field(record, name), owned=True)
            try:
                yield row
            finally:
                row.close()


class CachedView(DataView):
    """A cached snapshot of a view. Columns in the snapshot are read from it;
    image columns, which are never cached, are read from the live view."""
    def __init__(self, snapshot, live):
        self.snapshot = snapshot
        self.live     = live
        self.options  = live.options

    def __repr__(self):
        return f"<CachedView {self.snapshot.columns} over {self.live}>"

    @property
    def schema(self):
        return self.live.schema

    def key_values(self, column):
        return self.live.key_values(column)

    def rows(self, columns=None):
        columns = self.check_columns(columns)
        if all(name in self.snapshot.schema for name in columns):
            return self.snapshot.rows(columns)
        logger.debug("columns %s are not all cached; reading %s", columns, self.live)
        return self.live.rows(columns)
