import pytest

from phrepl import builtins
from phrepl.builtins import Updated
from phrepl.exceptions import EvaluationError, ReplError
from phrepl.exceptions import TypeError as ReplTypeError
from phrepl.runtime import HostRuntime
from phrepl.values import PhpArray


def arr(*values):
    return PhpArray.from_list(values)


def assoc(**items):
    return PhpArray.from_items(items.items())


@pytest.fixture
def output():
    return []


@pytest.fixture
def runtime(output):
    return HostRuntime(writer=output.append)


@pytest.fixture
def call(runtime):
    def call(name, *args, **named):
        return runtime.call_function(name, args, named)
    return call


# -----------
#  Strings
# -----------

def test_string_lengths(call):
    assert call('strlen', 'héllo') == 6
    assert call('mb_strlen', 'héllo') == 5


def test_scalar_arguments_are_coerced(call):
    assert call('strlen', 12345) == 5
    assert call('str_contains', 'a1b', 1) is True
    with pytest.raises(ReplTypeError) as exc_info:
        call('strlen', arr())
    assert exc_info.value.reason == \
        'strlen(): Argument #1 ($string) must be of type string, array given'


def test_substr(call):
    assert call('substr', 'hello', 1, 3) == 'ell'
    assert call('substr', 'hello', -3) == 'llo'
    assert call('substr', 'hello', 10) == ''


def test_explode_and_implode(call):
    assert call('explode', ',', 'a,b,c') == arr('a', 'b', 'c')
    assert call('explode', ',', 'a,b,c', 2) == arr('a', 'b,c')
    assert call('explode', ',', 'a,b,c', -1) == arr('a', 'b')
    with pytest.raises(EvaluationError, match='cannot be empty'):
        call('explode', '', 'abc')

    assert call('implode', ', ', arr(1, 2.5, True)) == '1, 2.5, 1'
    assert call('implode', arr('a', 'b')) == 'ab'
    assert call('join', '-', arr('x', 'y')) == 'x-y'


def test_str_replace_reports_its_count():
    result = builtins.str_replace('a', 'o', 'banana')
    assert result == Updated('bonono', {3: 3})
    result = builtins.str_replace(arr('a', 'n'), arr('1', '2'), 'banana')
    assert result.result == 'b12121'


def test_string_helpers(call):
    assert call('levenshtein', 'kitten', 'sitting') == 3
    assert call('strcmp', 'a', 'b') == -1
    assert call('strnatcmp', 'img12', 'img10') == 1
    assert call('md5', '') == 'd41d8cd98f00b204e9800998ecf8427e'
    assert call('base64_encode', 'hi') == 'aGk='
    assert call('ctype_digit', '123') is True
    assert call('ctype_digit', '') is False
    assert call('sprintf', '%s-%03d', 'a', 7) == 'a-007'
    assert call('number_format', 1234.5, 1) == '1,234.5'


# ----------------------
#  Regular expressions
# ----------------------

def test_preg_match_fills_the_matches_argument():
    count, arguments = builtins.preg_match(r'/(\d+)-(?<tag>\w)/', 'ab 12-z')
    assert count == 1
    assert arguments[2].to_dict() == {0: '12-z', 1: '12', 'tag': 'z', 2: 'z'}

    count, arguments = builtins.preg_match('/x/', 'abc')
    assert count == 0
    assert len(arguments[2]) == 0


def test_preg_match_all():
    count, arguments = builtins.preg_match_all(r'/\d/', 'a1b2')
    assert count == 2
    assert arguments[2] == PhpArray.from_list([arr('1', '2')])


def test_preg_replace_and_split(call):
    assert call('preg_replace', '/a+/', 'X', 'caaat') == 'cXt'
    assert call('preg_replace', r'/(\w+) (\w+)/', '$2 $1', 'hello world') \
        == 'world hello'
    assert call('preg_replace', '/A/i', '-', 'aAb', 1) == '-Ab'
    assert call('preg_split', r'/[\s,]+/', 'a, b  c') == arr('a', 'b', 'c')
    assert call('preg_quote', 'a.b*c') == 'a\\.b\\*c'


@pytest.mark.parametrize('pattern, reason', [
    ('abc', 'Delimiter must not be alphanumeric'),
    ('/abc', "No ending delimiter '/' found"),
    ('/abc/q', "Unknown modifier 'q'"),
    ('/(/', 'Compilation failed'),
])
def test_bad_patterns(call, pattern, reason):
    with pytest.raises(EvaluationError) as exc_info:
        call('preg_match', pattern, 'x')
    assert exc_info.value.reason.startswith(reason)


# ---------
#  Arrays
# ---------

def test_count(call):
    assert call('count', arr(1, 2)) == 2
    assert call('count', arr(1, arr(2, 3)), 1) == 4
    with pytest.raises(ReplTypeError, match='Countable|array, int given'):
        call('count', 5)


def test_callbacks(call):
    assert call('array_map', 'strtoupper', arr('a', 'b')) == arr('A', 'B')
    assert call('array_map', None, arr(1, 2), arr(3)) == \
        arr(arr(1, 3), arr(2, None))
    assert call('array_map', lambda v: v * 2, assoc(x=1)) == assoc(x=2)
    assert call('array_filter', arr(1, 0, 2, '')).to_dict() == {0: 1, 2: 2}
    assert call('array_filter', arr(1, 2, 3, 4), lambda v: v % 2 == 0) \
        .to_dict() == {1: 2, 3: 4}
    assert call('array_reduce', arr(1, 2, 3), lambda c, v: c + v, 0) == 6
    assert call('call_user_func', 'strrev', 'abc') == 'cba'
    assert call('call_user_func_array', 'str_repeat',
                PhpArray.from_items([(0, 'ab'), ('times', 2)])) == 'abab'


def test_sorting_updates_the_array(runtime):
    assert builtins.sort(arr(3, 1, 2)) == Updated(True, {0: arr(1, 2, 3)})
    assert builtins.rsort(arr('b', 'c', 'a'))[1][0] == arr('c', 'b', 'a')
    _, updated = builtins.usort(runtime, arr(1, 3, 2), lambda a, b: b - a)
    assert updated[0] == arr(3, 2, 1)

    _, updated = builtins.ksort(PhpArray.from_items([('b', 1), ('a', 2)]))
    assert list(updated[0].keys()) == ['a', 'b']
    _, updated = builtins.asort(PhpArray.from_items([('x', 2), ('y', 1)]))
    assert updated[0].to_dict() == {'y': 1, 'x': 2}


def test_push_pop_shift():
    assert builtins.array_push(arr(1), 2, 3) == Updated(3, {0: arr(1, 2, 3)})
    assert builtins.array_pop(arr(1, 2)) == Updated(2, {0: arr(1)})
    assert builtins.array_pop(arr()) == Updated(None, {0: arr()})
    shifted = builtins.array_shift(PhpArray.from_items([(5, 'a'), (9, 'b')]))
    assert shifted == Updated('a', {0: arr('b')})
    assert builtins.array_unshift(arr(2), 0, 1) == \
        Updated(3, {0: arr(0, 1, 2)})


def test_array_functions(call):
    assert call('array_keys', assoc(a=1, b=2)) == arr('a', 'b')
    assert call('array_values', assoc(a=1)) == arr(1)
    assert call('array_merge', PhpArray.from_items([('a', 1), (0, 'x')]),
                PhpArray.from_items([('a', 2), (0, 'y')])) == \
        PhpArray.from_items([('a', 2), (0, 'x'), (1, 'y')])
    assert call('array_slice', arr(1, 2, 3, 4), 1, 2) == arr(2, 3)
    assert call('array_slice', arr(1, 2, 3, 4), -2, None, True).to_dict() == \
        {2: 3, 3: 4}
    assert call('array_reverse', arr(1, 2)) == arr(2, 1)
    assert call('array_unique', arr(1, '1', 2)).to_dict() == {0: 1, 2: 2}
    assert call('array_sum', arr(1, 2.5, '3')) == 6.5
    assert call('array_search', '2', arr(1, 2)) == 1
    assert call('array_search', '2', arr(1, 2), True) is False
    assert call('in_array', 'a', arr('a')) is True
    assert call('array_key_exists', '0', arr('x')) is True
    assert call('array_combine', arr('a', 'b'), arr(1, 2)) == assoc(a=1, b=2)
    assert call('array_flip', assoc(a=1)).to_dict() == {1: 'a'}
    assert call('array_fill', 5, 2, 'v').to_dict() == {5: 'v', 6: 'v'}
    assert call('array_chunk', arr(1, 2, 3), 2) == arr(arr(1, 2), arr(3))
    assert call('array_column', arr(assoc(id=1, n='a'), assoc(id=2, n='b')),
                'n', 'id').to_dict() == {1: 'a', 2: 'b'}
    assert call('array_diff', arr(1, 2, 3), arr(2)).to_dict() == {0: 1, 2: 3}
    assert call('array_count_values', arr('a', 'b', 'a')) == assoc(a=2, b=1)


def test_range(call):
    assert call('range', 1, 5) == arr(1, 2, 3, 4, 5)
    assert call('range', 5, 1, 2) == arr(5, 3, 1)
    assert call('range', 'a', 'e', 2) == arr('a', 'c', 'e')
    assert call('range', 0, 1, 0.25) == arr(0.0, 0.25, 0.5, 0.75, 1.0)
    with pytest.raises(EvaluationError, match='cannot be 0'):
        call('range', 1, 2, 0)


# --------------
#  Maths, types
# --------------

def test_maths(call):
    assert call('max', arr(1, 5, 3)) == 5
    assert call('min', 2, 1.5) == 1.5
    assert call('intdiv', -7, 2) == -3
    with pytest.raises(EvaluationError, match='Division by zero'):
        call('intdiv', 1, 0)
    with pytest.raises(EvaluationError, match='PHP_INT_MIN by -1'):
        call('intdiv', -2**63, -1)
    assert call('pow', 2, 10) == 1024
    assert call('pow', 2, -1) == 0.5
    assert call('pow', 2, 64) == 2.0 ** 64
    assert call('round', 2.5) == 3.0
    assert call('round', 1.5, 400) == 1.5
    assert call('floor', 2.7) == 2.0
    assert call('abs', '-3') == 3
    assert call('sqrt', -1) != call('sqrt', -1)
    assert call('base_convert', 'ff', 16, 2) == '11111111'
    assert call('dechex', 255) == 'ff'


def test_types(call):
    assert call('intval', '0x1A', 16) == 26
    assert call('intval', '12abc') == 12
    assert call('gettype', 1.5) == 'double'
    assert call('get_debug_type', arr()) == 'array'
    assert call('is_numeric', '1e3') is True
    assert call('is_callable', 'strlen') is True
    assert call('boolval', '0') is False


# -----------------------
#  Constants, functions
# -----------------------

def test_define_and_constant(call):
    assert call('define', 'GREETING', 'hi') is True
    assert call('defined', 'GREETING') is True
    assert call('constant', 'GREETING') == 'hi'
    assert call('function_exists', 'STRLEN') is True
    assert call('function_exists', 'nope') is False


# -------
#  JSON
# -------

def test_json_encode(call):
    value = PhpArray.from_items([('a', 1), ('b', arr(1.0, 'x/y'))])
    assert call('json_encode', value) == '{"a":1,"b":[1,"x\\/y"]}'
    assert call('json_encode', arr()) == '[]'
    assert call('json_encode', 'é') == '"\\u00e9"'
    assert call('json_encode', 'é', 256) == '"é"'


def test_json_decode(call, runtime):
    assert call('json_decode', '{"a":[1,2]}', True) == assoc(a=arr(1, 2))
    assert call('json_decode', 'not json') is None
    obj = call('json_decode', '{"a":1}')
    assert obj.class_name() == 'stdClass'
    assert runtime.get_property(obj, 'a') == 1


# ---------
#  Output
# ---------

def test_output_goes_to_the_runtime_writer(call, output):
    assert call('var_dump', 1, 'a') is None
    assert output == ['int(1)\n', 'string(1) "a"\n']

    output.clear()
    assert call('print_r', arr(1)) is True
    assert output == ['Array\n(\n    [0] => 1\n)\n']

    output.clear()
    assert call('print_r', 'x', True) == 'x'
    assert call('var_export', 1.5, True) == '1.5'
    assert output == []

    assert call('printf', '%d!', 3) == 2
    assert output == ['3!']


def test_dates(call):
    assert call('date', 'Y-m-d H:i:s', 0) == '1970-01-01 00:00:00'
    assert call('date', 'L', 951782400) == '1'
    assert call('date', '\\Y', 0) == 'Y'


def test_errors_keep_their_message(call):
    with pytest.raises(ReplError):
        call('array_combine', arr(1), arr())
