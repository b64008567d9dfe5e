from phrepl.data import Map, OrderedMap, Vec


# ----------
#  Vec
# ----------


def test_vec():
    assert len(Vec.from_iter([])) == 0
    assert Vec.from_iter([]) is Vec.empty()

    assert len(Vec.from_iter(range(31))) == 31
    assert Vec.from_iter(range(31))[30] == 30
    assert Vec.from_iter(range(31))[-1] == 30

    # two levels
    v = Vec.from_iter(range(33))
    assert len(v) == 33
    assert v.height == 1
    assert v[32] == 32
    assert v[2] == 2


def test_vec__three_levels():
    v = Vec.from_iter(range(1030))
    assert len(v) == 1030
    assert v.height == 2
    assert v[600] == 600
    assert v[1024] == 1024
    assert v[-1] == 1029
    assert list(v) == list(range(1030))
    assert list(reversed(v)) == list(reversed(range(1030)))


def test_vec__conj():
    assert Vec.empty().conj('a') == Vec.from_iter(['a'])
    assert Vec.from_iter(range(32)).conj(32) == Vec.from_iter(range(33))
    for i in range(1022, 1028):
        assert Vec.from_iter(range(i)).conj(i) == Vec.from_iter(range(i + 1))


def test_vec__history_grows_at_the_end():
    history = Vec.empty()
    for line in ('1 + 1', '$x = 2', 'echo $x;'):
        history = history.conj(line)
    assert list(history) == ['1 + 1', '$x = 2', 'echo $x;']
    assert history[0] == '1 + 1'


def test_vec__add_and_slice():
    assert Vec.from_iter([1, 2]) + Vec.empty() == Vec.from_iter([1, 2])
    assert Vec.from_iter(range(40)) + Vec.from_iter(range(40, 90)) \
        == Vec.from_iter(range(90))

    v = Vec.from_iter(range(6))
    assert v[2:4] == Vec.from_iter([2, 3])
    assert v[::2] == Vec.from_iter([0, 2, 4])
    assert len(v[100:101]) == 0


# ----------
#  Map
# ----------


def test_hamt():
    m = Map.empty()
    assert 'a' not in m
    assert len(m) == 0

    m1 = m.assoc('a', 1)
    assert m1['a'] == 1
    assert 'a' not in m

    m2 = m1.assoc('a', 2).assoc('b', 3)
    assert m2['a'] == 2 and m2['b'] == 3
    assert len(m2) == 2
    assert m1['a'] == 1


def test_hamt__many_keys():
    m = Map.empty()
    for i in range(200):
        m = m.assoc(i, i * i)
    assert len(m) == 200
    assert all(m[i] == i * i for i in range(200))

    for i in range(0, 200, 2):
        m = m.dissoc(i)
    assert len(m) == 100
    assert 2 not in m and 3 in m


# -------------
#  OrderedMap
# -------------


def test_ordered_map__keeps_insertion_order():
    m = OrderedMap.empty().assoc('$b', 1).assoc('$a', 2).assoc('$c', 3)
    assert list(m) == ['$b', '$a', '$c']
    assert list(m.values()) == [1, 2, 3]

    # reassigning keeps the original position
    m2 = m.assoc('$a', 20)
    assert list(m2.items()) == [('$b', 1), ('$a', 20), ('$c', 3)]
    assert m['$a'] == 2


def test_ordered_map__assoc_same_value_is_identity():
    value = object()
    m = OrderedMap.empty().assoc('k', value)
    assert m.assoc('k', value) is m


def test_ordered_map__dissoc_and_update():
    m = OrderedMap.from_iter([('x', 1), ('y', 2), ('z', 3)])
    assert list(m.dissoc('y')) == ['x', 'z']
    assert m.dissoc('missing') is m

    merged = m.update({'y': 20, 'w': 4})
    assert list(merged.items()) == [('x', 1), ('y', 20), ('z', 3), ('w', 4)]
    assert (m | {'w': 4}) == merged.assoc('y', 2)


def test_ordered_map__equality_and_ends():
    m = OrderedMap.from_iter([('a', 1), ('b', 2)])
    assert m == {'a': 1, 'b': 2}
    assert m != OrderedMap.from_iter([('b', 2), ('a', 1)])
    assert m.first_key() == 'a'
    assert m.last_key() == 'b'
    assert OrderedMap.empty().first_key() is None
    assert m.get('missing', 0) == 0
