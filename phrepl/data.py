import dataclasses
from collections.abc import Mapping, Sequence
from dataclasses import dataclass
from itertools import chain, islice
from typing import Any, Iterable, Iterator, Union


# ----------------
#  Data Structures
# ----------------


# itertools recipes
# https://docs.python.org/3/library/itertools.html#itertools-recipes
def batched(iterable, n):
    "Batch data into tuples of length n. The last batch may be shorter."
    # batched('ABCDEFG', 3) --> ABC DEF G
    if n < 1:
        raise ValueError('n must be at least one')
    it = iter(iterable)
    while (batch := tuple(islice(it, n))):
        yield batch


@dataclass(frozen=True, slots=True)
class Vec(Sequence):
    """
    A Trie with at most 32 elements in each node.

    Used for anything in the session that only ever grows at the end:
    the input history and the key order of an OrderedMap.
    """
    xs: tuple[Union[Any, 'Vec'], ...]
    height: int

    def _is_leaf(self):
        return self.height == 0

    def __len__(self):
        if self._is_leaf():
            return len(self.xs)
        # vectors are contiguous, so only the final subnode can be partial
        return (1 << (5 * self.height)) * (len(self.xs) - 1) + len(self.xs[-1])

    def __getitem__(self, idx: int | slice):
        if isinstance(idx, slice):
            return Vec.from_iter(islice(self, *idx.indices(len(self))))
        if idx < 0:
            idx += len(self)
        if idx < 0 or idx >= len(self):
            raise IndexError('vector index out of range')

        if self._is_leaf():
            return self.xs[idx]

        subvec_idx = idx >> (5 * self.height)
        mask = (1 << (5 * self.height)) - 1
        return self.xs[subvec_idx][mask & idx]

    def __iter__(self):
        if self._is_leaf():
            return iter(self.xs)
        return chain.from_iterable(self.xs)

    def __reversed__(self):
        if self._is_leaf():
            return reversed(self.xs)
        return chain.from_iterable(map(reversed, reversed(self.xs)))

    def __eq__(self, other):
        if not isinstance(other, Vec):
            return NotImplemented
        return len(self) == len(other) and all(
            x is y or x == y for x, y in zip(self, other)
        )

    __hash__ = None

    def conj(self, x):
        if self._is_leaf():
            if len(self.xs) < 32:
                return Vec(self.xs + (x,), 0)
            return Vec((self, Vec((x,), 0)), 1)

        old_tail = self.xs[-1]
        new_tail = old_tail.conj(x)
        if new_tail.height == old_tail.height:
            return Vec(self.xs[:-1] + (new_tail,), self.height)
        if len(self.xs) < 32:
            # the tail overflowed into a taller node; keep its new sibling
            return Vec(self.xs + new_tail.xs[1:], self.height)

        new_new_tail = x
        for i in range(self.height + 1):
            new_new_tail = Vec((new_new_tail,), i)
        return Vec((self, new_new_tail), self.height + 1)

    def __add__(self, other):
        if not isinstance(other, Vec):
            return NotImplemented
        result = self
        for x in other:
            result = result.conj(x)
        return result

    def __repr__(self):
        return 'Vec([' + ', '.join(map(repr, self)) + '])'

    @staticmethod
    def from_iter(xs: Iterable):
        # Every time the first batch in the iterator has less than
        # 32 items we nest the iterator into another iterator that
        # batches up up to 32 of those.
        def aux(it, level):
            it0 = (Vec(ys, level) for ys in batched(it, 32))

            first = next(it0)
            if len(first.xs) < 32:
                return first
            try:
                second = next(it0)
            except StopIteration:
                return first

            # undo having taken the first item
            it0 = chain(iter([first, second]), it0)
            return aux(it0, level + 1)

        # Due to the construction of aux, only an empty xs will cause
        # StopIteration to be raised.
        try:
            return aux(xs, 0)
        except StopIteration:
            return _EMPTY_VEC

    @staticmethod
    def empty():
        return _EMPTY_VEC


_EMPTY_VEC = Vec((), 0)


@dataclass(frozen=True, slots=True)
class _Collision(Mapping):
    "entries whose keys share all 32 bits of their hash"
    pairs: tuple

    def __len__(self):
        return len(self.pairs)

    def __iter__(self):
        return (k for (k, _) in self.pairs)

    def __getitem__(self, key):
        for k, v in self.pairs:
            if k is key or k == key:
                return v
        raise KeyError(key)

    def assoc(self, key, value):
        others = tuple((k, v) for (k, v) in self.pairs if k != key)
        return _Collision(others + ((key, value),))

    def dissoc(self, key):
        return _Collision(tuple((k, v) for (k, v) in self.pairs if k != key))


@dataclass(frozen=True, slots=True)
class Map(Mapping):
    """
    A HAMT Map. A Map is a 32 element tuple containing either a map entry or a
    another map with further levels of the tree. The index is the next 5
    bits of a 32-bit hash for each level down.
    """
    xs: tuple

    kindset: int
    "A 32-bit bitset with 0 a map node, 1 for a map entry"

    height: int

    _len: int

    def __len__(self):
        return self._len

    def _hash32(self, k):
        return hash(k) & ((1 << 32) - 1)

    def _idx_for_key(self, k):
        h = self._hash32(k)
        return (h >> (self.height * 5)) & 0b11111

    def _is_leaf(self, idx):
        return bool(self.kindset & (1 << idx))

    def __getitem__(self, k):
        idx = self._idx_for_key(k)
        if self._is_leaf(idx):
            entry = self.xs[idx]
            if entry[0] is not k and entry[0] != k:
                raise KeyError(k)
            return entry[1]

        next_map = self.xs[idx]
        if next_map is None:
            raise KeyError(k)
        return next_map[k]

    def __iter__(self):
        for i, x in enumerate(self.xs):
            if self._is_leaf(i):
                yield x[0]
            elif x is not None:
                yield from x

    def _with_replacement(self, idx, new_value, *, leaf: bool):
        "return a new map with a single item in the xs tuple replaced"
        new_xs = self.xs[:idx] + (new_value,) + self.xs[idx + 1:]
        if leaf:
            new_kindset = self.kindset | (1 << idx)
        else:
            new_kindset = self.kindset & (((1 << 32) - 1) ^ (1 << idx))

        len_of_replaced = (
            1 if self._is_leaf(idx)
            else len(node) if (node := self.xs[idx]) is not None
            else 0
        )
        len_of_replacement = (
            1 if leaf
            else len(new_value) if new_value is not None
            else 0
        )
        new_len = self._len - len_of_replaced + len_of_replacement
        return Map(new_xs, new_kindset, _len=new_len, height=self.height)

    def assoc(self, k, v):
        idx = self._idx_for_key(k)

        if self._is_leaf(idx):
            entry = self.xs[idx]
            if entry[0] == k:
                if entry[1] is v:
                    return self
                return self._with_replacement(idx, (k, v), leaf=True)
            if self.height == 0:
                new_subnode = _Collision((entry, (k, v)))
            else:
                new_subnode = (
                    dataclasses.replace(_EMPTY_MAP, height=(self.height - 1))
                    .assoc(entry[0], entry[1])
                    .assoc(k, v)
                )
            return self._with_replacement(idx, new_subnode, leaf=False)

        subnode = self.xs[idx]
        if subnode is None:
            return self._with_replacement(idx, (k, v), leaf=True)
        new_subnode = subnode.assoc(k, v)
        return self._with_replacement(idx, new_subnode, leaf=False)

    def dissoc(self, key):
        idx = self._idx_for_key(key)

        if self._is_leaf(idx):
            (k, _) = self.xs[idx]
            if k != key:
                return self
            return self._with_replacement(idx, None, leaf=False)
        subnode = self.xs[idx]
        if subnode is None or key not in subnode:
            return self
        new_subnode = subnode.dissoc(key)
        if len(new_subnode) == 1:
            new_entry = next(iter(new_subnode.items()))
            return self._with_replacement(idx, new_entry, leaf=True)
        return self._with_replacement(idx, new_subnode, leaf=False)

    def __repr__(self):
        return 'Map({' + ', '.join(
            f'{k!r}: {v!r}' for (k, v) in self.items()
        ) + '})'

    @classmethod
    def empty(cls):
        return _EMPTY_MAP

    @staticmethod
    def from_iter(it):
        m = _EMPTY_MAP
        for k, v in it:
            m = m.assoc(k, v)
        return m


_EMPTY_MAP = Map(
    tuple([None] * 32), kindset=0, _len=0, height=6
)


@dataclass(frozen=True, slots=True, eq=False)
class OrderedMap(Mapping):
    """
    A persistent map that remembers insertion order.

    Lookups go through the HAMT index; iteration follows the key vector.
    Re-assigning a key keeps its original position.
    """
    index: Map
    order: Vec

    def __len__(self):
        return len(self.index)

    def __iter__(self) -> Iterator:
        return iter(self.order)

    def __getitem__(self, key):
        return self.index[key]

    def __contains__(self, key):
        try:
            self.index[key]
        except KeyError:
            return False
        return True

    def __eq__(self, other):
        if not isinstance(other, Mapping):
            return NotImplemented
        if len(self) != len(other):
            return False
        return list(self.items()) == list(other.items())

    __hash__ = None

    def assoc(self, key, value):
        if key in self:
            if self.index[key] is value:
                return self
            return OrderedMap(self.index.assoc(key, value), self.order)
        return OrderedMap(self.index.assoc(key, value), self.order.conj(key))

    def dissoc(self, key):
        if key not in self:
            return self
        return OrderedMap(
            self.index.dissoc(key),
            Vec.from_iter(k for k in self.order if k != key),
        )

    def update(self, other: Mapping):
        result = self
        for k, v in other.items():
            result = result.assoc(k, v)
        return result

    def __or__(self, other):
        if not isinstance(other, Mapping):
            return NotImplemented
        return self.update(other)

    def first_key(self):
        return self.order[0] if len(self.order) else None

    def last_key(self):
        return self.order[-1] if len(self.order) else None

    def __repr__(self):
        return 'OrderedMap({' + ', '.join(
            f'{k!r}: {v!r}' for (k, v) in self.items()
        ) + '})'

    @staticmethod
    def empty():
        return _EMPTY_ORDERED_MAP

    @staticmethod
    def from_iter(it):
        m = _EMPTY_ORDERED_MAP
        for k, v in it:
            m = m.assoc(k, v)
        return m


_EMPTY_ORDERED_MAP = OrderedMap(_EMPTY_MAP, _EMPTY_VEC)
