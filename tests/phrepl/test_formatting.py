import pytest

from phrepl import formatting
from phrepl.exceptions import EvaluationError
from phrepl.values import PhpArray


def test_var_dump_scalars():
    assert formatting.var_dump(None) == 'NULL'
    assert formatting.var_dump(True) == 'bool(true)'
    assert formatting.var_dump(3) == 'int(3)'
    assert formatting.var_dump(1.0) == 'float(1)'
    assert formatting.var_dump(0.1) == 'float(0.1)'
    # the length is in bytes
    assert formatting.var_dump('é') == 'string(2) "é"'


def test_var_dump_nested_array():
    value = PhpArray.from_items([('a', 1), ('b', PhpArray.from_list([True]))])
    assert formatting.var_dump(value) == '\n'.join([
        'array(2) {',
        '  ["a"]=>',
        '  int(1)',
        '  ["b"]=>',
        '  array(1) {',
        '    [0]=>',
        '    bool(true)',
        '  }',
        '}',
    ])


def test_print_r():
    assert formatting.print_r(1.5) == '1.5'
    assert formatting.print_r(False) == ''
    assert formatting.print_r(PhpArray.from_list([1, 2])) == (
        'Array\n'
        '(\n'
        '    [0] => 1\n'
        '    [1] => 2\n'
        ')\n'
    )


def test_var_export():
    assert formatting.var_export(1.0) == '1.0'
    assert formatting.var_export("it's") == "'it\\'s'"
    assert formatting.var_export(None) == 'NULL'
    assert formatting.var_export(PhpArray.from_list([1, 'a'])) == (
        "array (\n"
        "  0 => 1,\n"
        "  1 => 'a',\n"
        ")"
    )


@pytest.mark.parametrize('fmt, args, expected', [
    ('%d items', [3], '3 items'),
    ('%05.2f', [3.14159], '03.14'),
    ('%-5s|', ['ab'], 'ab   |'),
    ('%5s|', ['ab'], '   ab|'),
    ("%'*8s", ['hi'], '******hi'),
    ('%+d', [5], '+5'),
    ('%+d', [-5], '-5'),
    ('%x %X %o %b', [255, 255, 8, 5], 'ff FF 10 101'),
    ('%2$s %1$s', ['a', 'b'], 'b a'),
    ('%e', [1234.5], '1.234500e+3'),
    ('%.1s', ['abc'], 'a'),
    ('%c', [65], 'A'),
    ('100%%', [], '100%'),
    ('%s', [True], '1'),
    ('%u', [-1], '18446744073709551615'),
])
def test_sprintf(fmt, args, expected):
    assert formatting.sprintf(fmt, args) == expected


def test_sprintf_too_few_arguments():
    with pytest.raises(EvaluationError) as exc_info:
        formatting.sprintf('%d %d', [1])
    assert exc_info.value.reason == '3 arguments are required, 2 given'


@pytest.mark.parametrize('args, expected', [
    ((1234567.891, 2), '1,234,567.89'),
    ((1234.5,), '1,235'),
    ((0.5,), '1'),
    ((-1234.567, 2, ',', '.'), '-1.234,57'),
    ((1000, 0, '.', ' '), '1 000'),
])
def test_number_format(args, expected):
    assert formatting.number_format(*args) == expected


def test_php_round_goes_away_from_zero():
    assert formatting.php_round(2.5) == 3.0
    assert formatting.php_round(-2.5) == -3.0
    assert formatting.php_round(1.955, 2) == 1.96
    assert formatting.php_round(1234, -2) == 1200.0


@pytest.mark.parametrize('num, precision, expected', [
    (1.5, 400, 1.5),
    (1.5, -400, 0.0),
    (550.0, -3, 1000.0),
    (1e300, 2, 1e300),
])
def test_php_round_with_extreme_precision(num, precision, expected):
    assert formatting.php_round(num, precision) == expected


def test_number_format_with_many_decimals():
    assert formatting.number_format(1.5, 40) == '1.' + '5'.ljust(40, '0')
