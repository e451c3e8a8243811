"""
Hash index structures used for candidate template voting.

A HashIndex holds one HashTable per TableKey. Each table is bound to a triplet
of reference grid cells and maps quantized HashKeys to the templates that
produced them during training.
"""

from __future__ import annotations

from typing import Dict, Iterator, NamedTuple, Optional, Tuple

import numpy as np

from ..core.errors import ConfigurationError
from .interfaces import Template

Cell = Tuple[int, int]


class HashKey(NamedTuple):
    """Quantized triplet signature: two relative depth bins and three normal bins."""

    d1: int
    d2: int
    n1: int
    n2: int
    n3: int


class Triplet(NamedTuple):
    """Three reference grid cells (column, row); ``p1`` is the anchor."""

    p1: Cell
    p2: Cell
    p3: Cell


class TableKey(NamedTuple):
    """
    Composite key of a hash table.

    ``cell`` is the anchor cell of the table's triplet and ``bin`` the ordinal
    of the triplet among all triplets anchored at that cell.
    """

    cell: Cell
    bin: int


class HashTable:
    """
    Bucketed index from HashKeys to templates.

    Buckets keep insertion order, which makes bucket contents reproducible for
    identical training input.

    Args:
        triplet: Reference grid triplet the keys of this table are derived from
    """

    def __init__(self, triplet: Triplet):
        self.triplet = triplet
        self.buckets: Dict[HashKey, Dict[Template, int]] = {}

    def insert(self, key: HashKey, template: Template, weight: int = 1) -> None:
        """Add ``template`` to the bucket of ``key``."""
        bucket = self.buckets.setdefault(key, {})
        bucket[template] = bucket.get(template, 0) + weight

    def lookup(self, key: HashKey) -> Dict[Template, int]:
        """Return the (template, weight) entries of a bucket, empty if missing."""
        return self.buckets.get(key, {})

    def __len__(self) -> int:
        return len(self.buckets)

    def __repr__(self) -> str:
        return f"HashTable(triplet={self.triplet}, buckets={len(self.buckets)})"


class HashIndex:
    """
    Trained lookup structure: exactly one HashTable per TableKey.

    Args:
        grid_size: Reference grid (columns, rows) the triplets live on
        bin_edges: Inner edges used to quantize relative depths
    """

    def __init__(self, grid_size: Tuple[int, int], bin_edges: Optional[np.ndarray] = None):
        self.grid_size = tuple(grid_size)
        self.bin_edges = np.asarray(bin_edges if bin_edges is not None else [], dtype=np.float64)
        self.tables: Dict[TableKey, HashTable] = {}

    def add_table(self, key: TableKey, table: HashTable) -> None:
        """
        Register a table under ``key``.

        Raises:
            ConfigurationError: If a table already exists for ``key``
        """
        if key in self.tables:
            raise ConfigurationError(f"Hash table {key} already exists")
        if table.triplet.p1 != key.cell:
            raise ConfigurationError(
                f"Table anchored at {table.triplet.p1} cannot be stored under cell {key.cell}"
            )
        self.tables[key] = table

    def quantize_depth(self, value: float) -> int:
        """Bin index of a relative depth."""
        return int(np.searchsorted(self.bin_edges, value, side="right"))

    def items(self) -> Iterator[Tuple[TableKey, HashTable]]:
        return iter(self.tables.items())

    def __getitem__(self, key: TableKey) -> HashTable:
        return self.tables[key]

    def __len__(self) -> int:
        return len(self.tables)

    def __repr__(self) -> str:
        return f"HashIndex(tables={len(self.tables)}, grid_size={self.grid_size})"
