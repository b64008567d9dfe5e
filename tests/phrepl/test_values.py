import pytest

from phrepl.exceptions import TypeError as ReplTypeError
from phrepl.values import (
    Generator,
    PhpArray,
    compare,
    debug_type,
    format_float,
    format_value,
    gettype,
    is_numeric,
    loose_equals,
    normalize_key,
    repr_float,
    strict_equals,
    to_bool,
    to_int,
    to_number,
    to_string,
    type_of,
)


def test_normalize_key():
    assert normalize_key('5') == 5
    assert normalize_key('-5') == -5
    assert normalize_key('05') == '05'
    assert normalize_key('5.0') == '5.0'
    assert normalize_key(True) == 1
    assert normalize_key(3.7) == 3
    assert normalize_key(None) == ''
    with pytest.raises(ReplTypeError):
        normalize_key(PhpArray.empty())


def test_php_array_append_follows_the_highest_int_key():
    a = PhpArray.from_list(['a', 'b'])
    assert a.is_list()
    assert a.to_list() == ['a', 'b']

    b = a.assoc(10, 'c').append('d')
    assert b.to_dict() == {0: 'a', 1: 'b', 10: 'c', 11: 'd'}
    assert not b.is_list()

    # removing the last key does not move the next index back
    c = b.dissoc(11).append('e')
    assert c.last_key() == 12
    assert len(a) == 2


def test_php_array_string_keys_are_normalized():
    a = PhpArray.empty().assoc('1', 'one')
    assert a.has(1)
    assert a.get('1') == 'one'
    assert a.get('missing', 'dflt') == 'dflt'
    assert PhpArray.from_items([('x', 1), ('y', 2)]) == \
        PhpArray.from_items([('x', 1), ('y', 2)])
    assert PhpArray.from_items([('x', 1), ('y', 2)]) != \
        PhpArray.from_items([('y', 2), ('x', 1)])


def test_type_names():
    assert [type_of(v) for v in (None, True, 1, 1.5, 's', PhpArray.empty())] \
        == ['Null', 'Bool', 'Int', 'Float', 'String', 'Array']
    assert type_of(len) == 'Callable'
    assert debug_type(1.5) == 'float'
    assert debug_type(len) == 'Closure'
    assert gettype(1.5) == 'double'
    assert gettype(None) == 'NULL'


def test_numeric_strings():
    assert is_numeric('12')
    assert is_numeric(' 1.5e3 ')
    assert not is_numeric('12abc')
    assert not is_numeric(True)

    assert to_number('12') == 12
    assert to_number('1.5') == 1.5
    assert to_number('12abc') == 12
    assert to_number('abc') == 0
    assert to_number(None) == 0
    with pytest.raises(ReplTypeError):
        to_number(PhpArray.empty())


def test_conversions():
    assert to_int(3.9) == 3
    assert to_int(float('nan')) == 0
    assert to_int(PhpArray.from_list([1])) == 1
    assert to_bool('0') is False
    assert to_bool('0.0') is True
    assert to_bool(PhpArray.empty()) is False
    assert to_string(True) == '1'
    assert to_string(False) == ''
    assert to_string(None) == ''
    assert to_string(PhpArray.empty()) == 'Array'


def test_float_formatting():
    assert format_float(0.1 + 0.2) == '0.3'
    assert format_float(1.0) == '1'
    assert format_float(1e20) == '1.0E+20'
    assert format_float(float('inf')) == 'INF'
    assert format_float(-0.0) == '-0'
    assert repr_float(1.0) == '1'
    assert repr_float(0.1 + 0.2) == '0.30000000000000004'


def test_equality():
    assert loose_equals('1e1', '10')
    assert loose_equals(1, '1')
    assert not loose_equals(0, 'a')
    assert loose_equals(None, '')
    assert loose_equals(None, False)
    assert loose_equals(
        PhpArray.from_items([('a', 1), ('b', 2)]),
        PhpArray.from_items([('b', 2), ('a', '1')]),
    )

    assert not strict_equals(1, '1')
    assert not strict_equals(1, 1.0)
    assert strict_equals(PhpArray.from_list([1]), PhpArray.from_list([1]))
    assert not strict_equals(None, False)


def test_compare():
    assert compare(1, 2) == -1
    assert compare('10', '9') == 1
    assert compare('abc', 'abd') == -1
    assert compare(2, '10') == -1
    assert compare(PhpArray.from_list([1, 2]), PhpArray.from_list([1])) == 1
    assert compare(None, False) == 0


def test_format_value():
    assert format_value(None) == 'null'
    assert format_value(False) == 'false'
    assert format_value('say "hi"') == '"say \\"hi\\""'
    assert format_value(PhpArray.from_list([1, 'a'])) == '[1, "a"]'
    assert format_value(PhpArray.from_items([('k', 1.5)])) == '["k" => 1.5]'
    assert format_value(len) == '<function>'


def test_format_value_uses_show():
    class Shown:
        def show(self):
            return 'shown!'

    assert format_value(Shown()) == 'shown!'


def _counting(n):
    total = 0
    for i in range(n):
        sent = yield (None, i)
        total += sent or 0
    return total


def test_generator():
    gen = Generator(_counting(3))
    assert gen.valid()
    assert (gen.key(), gen.current()) == (0, 0)
    gen.next()
    assert gen.current() == 1
    assert gen.send(10) == 2
    gen.next()
    assert not gen.valid()
    assert gen.getReturn() == 10

    with pytest.raises(RuntimeError):
        gen.rewind()


def test_generator_iterates_values():
    assert list(Generator(_counting(3))) == [0, 1, 2]
    assert format_value(Generator(_counting(1))) == '<generator>'
