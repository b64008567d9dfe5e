"""
phrepl.builtins

The standard function library. Functions are plain python functions named
and parametrised like their PHP counterparts. The @builtin decorator
registers them, and the annotations on their parameters say how arguments
are coerced, with PHP's type error when they can't be.

Functions that need the runtime (callbacks, output, classes) are
registered with runtime=True and get it as their first argument.

Functions that PHP declares with by-reference parameters (sort, array_pop,
preg_match, ...) return an Updated, naming the new value of each such
argument by position; the evaluator writes those back.
"""
import base64
import functools
import hashlib
import html
import inspect
import json
import math
import random
import re
import sys
import textwrap
import time
import zlib
from collections import namedtuple
from datetime import datetime, timezone
from urllib.parse import quote, quote_plus, unquote, unquote_plus

from phrepl import formatting
from phrepl.exceptions import EvaluationError
from phrepl.exceptions import TypeError as ReplTypeError
from phrepl.values import (
    Generator, ObjectHandle, PhpArray, compare, debug_type, gettype,
    is_numeric, loose_equals, normalize_key, strict_equals,
    to_bool, to_float, to_int, to_number, to_string,
)

Updated = namedtuple('Updated', ['result', 'arguments'])

_FUNCTIONS = {}  # name -> (function, needs runtime)

OUTPUT_FUNCTIONS = {
    # name -> position of the "return instead of printing" flag, if any
    'var_dump': None,
    'print_r': 1,
    'var_export': 1,
    'printf': None,
    'vprintf': None,
}

STANDARD_CONSTANTS = {
    'PHP_EOL': '\n',
    'PHP_INT_MAX': 2**63 - 1,
    'PHP_INT_MIN': -2**63,
    'PHP_INT_SIZE': 8,
    'PHP_FLOAT_EPSILON': sys.float_info.epsilon,
    'PHP_FLOAT_MAX': sys.float_info.max,
    'PHP_FLOAT_MIN': sys.float_info.min,
    'PHP_FLOAT_DIG': 15,
    'PHP_VERSION': '8.3.0',
    'PHP_MAJOR_VERSION': 8,
    'PHP_MINOR_VERSION': 3,
    'PHP_OS': sys.platform.capitalize(),
    'PHP_OS_FAMILY': {'linux': 'Linux', 'darwin': 'Darwin',
                      'win32': 'Windows'}.get(sys.platform, 'Unknown'),
    'DIRECTORY_SEPARATOR': '/',
    'NAN': math.nan,
    'INF': math.inf,
    'M_PI': math.pi,
    'M_E': math.e,
    'M_SQRT2': math.sqrt(2),
    'E_ALL': 32767,
    'E_ERROR': 1,
    'E_WARNING': 2,
    'E_NOTICE': 8,
    'E_STRICT': 2048,
    'SORT_REGULAR': 0,
    'SORT_NUMERIC': 1,
    'SORT_STRING': 2,
    'SORT_FLAG_CASE': 8,
    'COUNT_NORMAL': 0,
    'COUNT_RECURSIVE': 1,
    'ARRAY_FILTER_USE_BOTH': 1,
    'ARRAY_FILTER_USE_KEY': 2,
    'STR_PAD_LEFT': 0,
    'STR_PAD_RIGHT': 1,
    'STR_PAD_BOTH': 2,
    'JSON_HEX_TAG': 1,
    'JSON_FORCE_OBJECT': 16,
    'JSON_UNESCAPED_SLASHES': 64,
    'JSON_PRETTY_PRINT': 128,
    'JSON_UNESCAPED_UNICODE': 256,
    'JSON_PRESERVE_ZERO_FRACTION': 1024,
    'JSON_THROW_ON_ERROR': 4194304,
    'JSON_OBJECT_AS_ARRAY': 1,
    'PREG_PATTERN_ORDER': 1,
    'PREG_SET_ORDER': 2,
    'PREG_SPLIT_NO_EMPTY': 1,
}

_MISSING = object()


# ---------------
#  Registration
# ---------------

def _type_error(fn, position, param, expected, value):
    return ReplTypeError(
        fn,
        f'{fn}(): Argument #{position} (${param}) must be of type '
        f'{expected}, {debug_type(value)} given'
    )


def _as_string(value, fn, position, param):
    match value:
        case str():
            return value
        case None | bool() | int() | float():
            return to_string(value)
        case ObjectHandle() if value.bound_method('__toString') is not None:
            return to_string(value)
    raise _type_error(fn, position, param, 'string', value)


def _as_int(value, fn, position, param):
    match value:
        case bool() | int() | float() | None:
            return to_int(value)
        case str() if is_numeric(value):
            return to_int(value)
    raise _type_error(fn, position, param, 'int', value)


def _as_float(value, fn, position, param):
    match value:
        case bool() | int() | float() | None:
            return to_float(value)
        case str() if is_numeric(value):
            return to_float(value)
    raise _type_error(fn, position, param, 'float', value)


def _as_bool(value, fn, position, param):
    if value is None or isinstance(value, (bool, int, float, str)):
        return to_bool(value)
    raise _type_error(fn, position, param, 'bool', value)


def _as_array(value, fn, position, param):
    if isinstance(value, PhpArray):
        return value
    raise _type_error(fn, position, param, 'array', value)


_COERCIONS = {
    str: _as_string,
    int: _as_int,
    float: _as_float,
    bool: _as_bool,
    PhpArray: _as_array,
}


def _coercing(fn, name, skip):
    params = list(inspect.signature(fn).parameters.values())[skip:]
    plan = [
        (i, p.name.rstrip('_'), _COERCIONS[p.annotation],
         p.kind is p.VAR_POSITIONAL)
        for i, p in enumerate(params) if p.annotation in _COERCIONS
    ]
    if not plan:
        return fn

    @functools.wraps(fn)
    def wrapper(*args, **kwargs):
        fixed, args = args[:skip], list(args[skip:])
        for i, param, coerce, variadic in plan:
            if variadic:
                for j in range(i, len(args)):
                    args[j] = coerce(args[j], name, j + 1, param)
            elif i < len(args):
                args[i] = coerce(args[i], name, i + 1, param)
            elif params[i].name in kwargs:
                kwargs[params[i].name] = coerce(
                    kwargs[params[i].name], name, i + 1, param
                )
        return fn(*fixed, *args, **kwargs)
    return wrapper


def builtin(*names, runtime=False):
    def register(fn):
        all_names = names or (fn.__name__.rstrip('_'),)
        wrapped = _coercing(fn, all_names[0], 1 if runtime else 0)
        for name in all_names:
            _FUNCTIONS[name] = (wrapped, runtime)
        return fn
    return register


def standard_functions(runtime):
    "lower-case name -> callable, with the runtime bound where needed"
    return {
        name.lower(): functools.partial(fn, runtime) if needs_runtime else fn
        for name, (fn, needs_runtime) in _FUNCTIONS.items()
    }


def _sign(value):
    n = to_number(value)
    return (n > 0) - (n < 0)


def _slice_bounds(n, offset, length):
    "start and end of PHP's substr/array_slice window over n items"
    start = offset if offset >= 0 else max(n + offset, 0)
    start = min(start, n)
    if length is None:
        end = n
    elif length >= 0:
        end = min(start + length, n)
    else:
        end = max(n + length, start)
    return start, end


def _reindexed(items):
    "rebuild from (key, value) pairs, renumbering the integer keys"
    result = PhpArray.empty()
    for k, v in items:
        result = result.append(v) if isinstance(k, int) else result.assoc(k, v)
    return result


# -----------
#  Strings
# -----------

@builtin('strlen')
def strlen(string: str):
    return len(string.encode('utf-8'))


@builtin('mb_strlen')
def mb_strlen(string: str, encoding=None):
    return len(string)


@builtin('strtoupper', 'mb_strtoupper')
def strtoupper(string: str, encoding=None):
    return string.upper()


@builtin('strtolower', 'mb_strtolower')
def strtolower(string: str, encoding=None):
    return string.lower()


@builtin('ucfirst')
def ucfirst(string: str):
    return string[:1].upper() + string[1:]


@builtin('lcfirst')
def lcfirst(string: str):
    return string[:1].lower() + string[1:]


@builtin('ucwords')
def ucwords(string: str, separators: str = ' \t\r\n\f\v'):
    chars = list(string)
    capitalize = True
    for i, c in enumerate(chars):
        if capitalize:
            chars[i] = c.upper()
        capitalize = c in separators
    return ''.join(chars)


def _charlist(characters):
    "expand the a..z ranges PHP allows in trim's character list"
    def expand(m):
        a, b = m.group(1), m.group(2)
        return ''.join(chr(c) for c in range(ord(a), ord(b) + 1))
    return re.sub(r'(.)\.\.(.)', expand, characters)


@builtin('trim')
def trim(string: str, characters: str = ' \n\r\t\v\0'):
    return string.strip(_charlist(characters))


@builtin('ltrim')
def ltrim(string: str, characters: str = ' \n\r\t\v\0'):
    return string.lstrip(_charlist(characters))


@builtin('rtrim', 'chop')
def rtrim(string: str, characters: str = ' \n\r\t\v\0'):
    return string.rstrip(_charlist(characters))


@builtin('str_repeat')
def str_repeat(string: str, times: int):
    if times < 0:
        raise EvaluationError(
            'str_repeat',
            'str_repeat(): Argument #2 ($times) must be greater than or equal to 0'
        )
    return string * times


@builtin('str_pad')
def str_pad(string: str, length: int, pad_string: str = ' ', pad_type: int = 1):
    missing = length - len(string)
    if missing <= 0:
        return string
    if not pad_string:
        raise EvaluationError(
            'str_pad', 'str_pad(): Argument #3 ($pad_string) must be a non-empty string'
        )

    def fill(n):
        return (pad_string * (n // len(pad_string) + 1))[:n]

    match pad_type:
        case 0:
            return fill(missing) + string
        case 2:
            left = missing // 2
            return fill(left) + string + fill(missing - left)
    return string + fill(missing)


@builtin('str_split', 'mb_str_split')
def str_split(string: str, length: int = 1):
    if length < 1:
        raise EvaluationError(
            'str_split', 'str_split(): Argument #2 ($length) must be greater than 0'
        )
    if not string:
        return PhpArray.from_list([''])
    return PhpArray.from_list(
        string[i:i + length] for i in range(0, len(string), length)
    )


@builtin('strrev')
def strrev(string: str):
    return string[::-1]


@builtin('str_contains')
def str_contains(haystack: str, needle: str):
    return needle in haystack


@builtin('str_starts_with')
def str_starts_with(haystack: str, needle: str):
    return haystack.startswith(needle)


@builtin('str_ends_with')
def str_ends_with(haystack: str, needle: str):
    return haystack.endswith(needle)


def _offset(haystack, offset, fn):
    if offset < 0:
        offset += len(haystack)
    if not 0 <= offset <= len(haystack):
        raise EvaluationError(
            fn, f'{fn}(): Argument #3 ($offset) must be contained in argument #1 ($haystack)'
        )
    return offset


@builtin('strpos', 'mb_strpos')
def strpos(haystack: str, needle: str, offset: int = 0):
    found = haystack.find(needle, _offset(haystack, offset, 'strpos'))
    return found if found >= 0 else False


@builtin('stripos')
def stripos(haystack: str, needle: str, offset: int = 0):
    found = haystack.lower().find(needle.lower(), _offset(haystack, offset, 'stripos'))
    return found if found >= 0 else False


@builtin('strrpos')
def strrpos(haystack: str, needle: str, offset: int = 0):
    if offset >= 0:
        found = haystack.rfind(needle, offset)
    else:
        found = haystack.rfind(needle, 0, len(haystack) + offset + len(needle))
    return found if found >= 0 else False


@builtin('strstr')
def strstr(haystack: str, needle: str, before_needle: bool = False):
    found = haystack.find(needle)
    if found < 0:
        return False
    return haystack[:found] if before_needle else haystack[found:]


@builtin('stristr')
def stristr(haystack: str, needle: str, before_needle: bool = False):
    found = haystack.lower().find(needle.lower())
    if found < 0:
        return False
    return haystack[:found] if before_needle else haystack[found:]


@builtin('strrchr')
def strrchr(haystack: str, needle: str):
    found = haystack.rfind(needle[:1])
    return haystack[found:] if found >= 0 else False


@builtin('substr', 'mb_substr')
def substr(string: str, offset: int, length=None, encoding=None):
    start, end = _slice_bounds(
        len(string), offset, None if length is None else to_int(length)
    )
    return string[start:end]


@builtin('substr_count')
def substr_count(haystack: str, needle: str):
    if not needle:
        raise EvaluationError(
            'substr_count', 'substr_count(): Argument #2 ($needle) cannot be empty'
        )
    return haystack.count(needle)


@builtin('substr_replace')
def substr_replace(string: str, replace: str, offset: int, length=None):
    start, end = _slice_bounds(
        len(string), offset, None if length is None else to_int(length)
    )
    return string[:start] + replace + string[end:]


@builtin('str_replace')
def str_replace(search, replace, subject, count=None):
    searches = search.to_list() if isinstance(search, PhpArray) else [search]
    if isinstance(replace, PhpArray):
        replacements = replace.to_list()
    else:
        replacements = [replace] * len(searches)
    total = 0

    def apply(text):
        nonlocal total
        text = to_string(text)
        for i, s in enumerate(searches):
            s = to_string(s)
            if not s:
                continue
            r = to_string(replacements[i]) if i < len(replacements) else ''
            total += text.count(s)
            text = text.replace(s, r)
        return text

    if isinstance(subject, PhpArray):
        result = PhpArray.from_items((k, apply(v)) for k, v in subject.items())
    else:
        result = apply(subject)
    return Updated(result, {3: total})


@builtin('str_ireplace')
def str_ireplace(search: str, replace: str, subject: str):
    return re.sub(re.escape(search), lambda m: replace, subject, flags=re.IGNORECASE)


@builtin('strtr')
def strtr(string: str, from_, to=None):
    if to is None:
        if not isinstance(from_, PhpArray):
            raise EvaluationError(
                'strtr', 'strtr(): Argument #2 ($from) must be of type array, '
                f'{debug_type(from_)} given'
            )
        pairs = {to_string(k): to_string(v) for k, v in from_.items() if k != ''}
        if not pairs:
            return string
        pattern = re.compile('|'.join(
            re.escape(k) for k in sorted(pairs, key=len, reverse=True)
        ))
        return pattern.sub(lambda m: pairs[m.group(0)], string)
    from_, to = to_string(from_), to_string(to)
    n = min(len(from_), len(to))
    return string.translate(str.maketrans(from_[:n], to[:n]))


@builtin('str_word_count')
def str_word_count(string: str):
    return len(re.findall(r"[A-Za-z'-]+", string))


@builtin('wordwrap')
def wordwrap(string: str, width: int = 75, break_: str = '\n',
             cut_long_words: bool = False):
    lines = []
    for paragraph in string.split(break_):
        lines.extend(textwrap.wrap(
            paragraph, width, break_long_words=cut_long_words,
            break_on_hyphens=False,
        ) or [''])
    return break_.join(lines)


@builtin('nl2br')
def nl2br(string: str):
    return re.sub(r'(\r\n|\n|\r)', r'<br />\1', string)


@builtin('htmlspecialchars', 'htmlentities')
def htmlspecialchars(string: str):
    return html.escape(string).replace('&#x27;', '&#039;')


@builtin('htmlspecialchars_decode', 'html_entity_decode')
def htmlspecialchars_decode(string: str):
    return html.unescape(string)


@builtin('strip_tags')
def strip_tags(string: str):
    return re.sub(r'<[^>]*>', '', string)


@builtin('addslashes')
def addslashes(string: str):
    return re.sub(r'([\\\'"\0])', r'\\\1', string)


@builtin('stripslashes')
def stripslashes(string: str):
    return re.sub(r'\\(.?)', r'\1', string)


@builtin('chr')
def chr_(codepoint: int):
    return chr(codepoint % 256)


@builtin('ord')
def ord_(character: str):
    encoded = character.encode('utf-8')
    return encoded[0] if encoded else 0


@builtin('bin2hex')
def bin2hex(string: str):
    return string.encode('utf-8').hex()


@builtin('hex2bin')
def hex2bin(string: str):
    try:
        return bytes.fromhex(string).decode('utf-8', errors='replace')
    except ValueError:
        return False


@builtin('strcmp')
def strcmp(string1: str, string2: str):
    return (string1 > string2) - (string1 < string2)


@builtin('strcasecmp')
def strcasecmp(string1: str, string2: str):
    return strcmp(string1.lower(), string2.lower())


@builtin('strncmp')
def strncmp(string1: str, string2: str, length: int):
    return strcmp(string1[:length], string2[:length])


@builtin('strncasecmp')
def strncasecmp(string1: str, string2: str, length: int):
    return strcmp(string1[:length].lower(), string2[:length].lower())


def _natural_key(s):
    return [int(part) if part.isdigit() else part
            for part in re.split(r'(\d+)', s)]


def _natural_compare(a, b):
    ka, kb = _natural_key(a), _natural_key(b)
    try:
        return (ka > kb) - (ka < kb)
    except TypeError:
        return strcmp(a, b)


@builtin('strnatcmp')
def strnatcmp(string1: str, string2: str):
    return _natural_compare(string1, string2)


@builtin('strnatcasecmp')
def strnatcasecmp(string1: str, string2: str):
    return _natural_compare(string1.lower(), string2.lower())


@builtin('levenshtein')
def levenshtein(string1: str, string2: str):
    previous = list(range(len(string2) + 1))
    for i, a in enumerate(string1, 1):
        current = [i]
        for j, b in enumerate(string2, 1):
            current.append(min(
                previous[j] + 1, current[j - 1] + 1, previous[j - 1] + (a != b)
            ))
        previous = current
    return previous[-1]


@builtin('implode', 'join')
def implode(separator, array=None):
    if array is None:
        if not isinstance(separator, PhpArray):
            raise _type_error('implode', 1, 'array', 'array', separator)
        separator, array = '', separator
    elif isinstance(separator, PhpArray):
        separator, array = array, separator
    if not isinstance(array, PhpArray):
        raise _type_error('implode', 2, 'array', '?array', array)
    return to_string(separator).join(to_string(v) for v in array.values())


@builtin('explode')
def explode(separator: str, string: str, limit: int = 2**63 - 1):
    if not separator:
        raise EvaluationError(
            'explode', 'explode(): Argument #1 ($separator) cannot be empty'
        )
    if limit > 0:
        parts = string.split(separator, limit - 1)
    else:
        parts = string.split(separator)
        if limit < 0:
            parts = parts[:limit]
        else:
            parts = [separator.join(parts)]
    return PhpArray.from_list(parts)


@builtin('sprintf')
def sprintf(format: str, *values):
    return formatting.sprintf(format, values)


@builtin('vsprintf')
def vsprintf(format: str, values: PhpArray):
    return formatting.sprintf(format, values.to_list())


@builtin('number_format')
def number_format(num: float, decimals: int = 0, decimal_separator: str = '.',
                  thousands_separator: str = ','):
    return formatting.number_format(
        num, decimals, decimal_separator, thousands_separator
    )


@builtin('md5')
def md5(string: str):
    return hashlib.md5(string.encode('utf-8')).hexdigest()


@builtin('sha1')
def sha1(string: str):
    return hashlib.sha1(string.encode('utf-8')).hexdigest()


@builtin('crc32')
def crc32(string: str):
    return zlib.crc32(string.encode('utf-8'))


@builtin('hash')
def hash_(algo: str, data: str):
    try:
        return hashlib.new(algo.lower(), data.encode('utf-8')).hexdigest()
    except ValueError:
        raise EvaluationError(
            'hash', 'hash(): Argument #1 ($algo) must be a valid hashing algorithm'
        ) from None


@builtin('base64_encode')
def base64_encode(string: str):
    return base64.b64encode(string.encode('utf-8')).decode('ascii')


@builtin('base64_decode')
def base64_decode(string: str):
    try:
        return base64.b64decode(string).decode('utf-8', errors='replace')
    except ValueError:
        return False


@builtin('urlencode')
def urlencode(string: str):
    return quote_plus(string)


@builtin('rawurlencode')
def rawurlencode(string: str):
    return quote(string, safe='-_.~')


@builtin('urldecode')
def urldecode(string: str):
    return unquote_plus(string)


@builtin('rawurldecode')
def rawurldecode(string: str):
    return unquote(string)


@builtin('http_build_query')
def http_build_query(data: PhpArray):
    return '&'.join(
        f'{quote_plus(to_string(k))}={quote_plus(to_string(v))}'
        for k, v in data.items()
    )


@builtin('uniqid')
def uniqid(prefix: str = ''):
    now = time.time()
    return prefix + f'{int(now):08x}{int((now % 1) * 1_000_000):05x}'


def _ctype(test):
    def check(text):
        return isinstance(text, str) and text != '' and test(text)
    return check


for _name, _test in {
    'ctype_digit': str.isdigit,
    'ctype_alpha': str.isalpha,
    'ctype_alnum': str.isalnum,
    'ctype_upper': str.isupper,
    'ctype_lower': str.islower,
    'ctype_space': str.isspace,
    'ctype_xdigit': lambda s: all(c in '0123456789abcdefABCDEF' for c in s),
    'ctype_punct': lambda s: all(c.isprintable() and not c.isalnum()
                                 and not c.isspace() for c in s),
}.items():
    builtin(_name)(_ctype(_test))


# ----------
#  Regular expressions
# ----------

_BRACKETS = {'(': ')', '{': '}', '[': ']', '<': '>'}
_PCRE_MODIFIERS = {'i': re.I, 'm': re.M, 's': re.S, 'x': re.X,
                   'u': 0, 'D': 0, 'U': 0}


@functools.lru_cache(maxsize=256)
def _regex(pattern: str):
    "compile a delimited PCRE pattern like /ab+c/i"
    pattern = pattern.lstrip()
    if not pattern:
        raise EvaluationError('preg', 'Empty regular expression')
    delimiter = pattern[0]
    if delimiter.isalnum() or delimiter == '\\':
        raise EvaluationError(
            'preg', 'Delimiter must not be alphanumeric, backslash, or NUL'
        )
    closing = _BRACKETS.get(delimiter, delimiter)
    end = pattern.rfind(closing)
    if end <= 0:
        raise EvaluationError('preg', f"No ending delimiter '{closing}' found")
    body, modifiers = pattern[1:end], pattern[end + 1:]
    flags = 0
    for m in modifiers:
        if m not in _PCRE_MODIFIERS:
            raise EvaluationError('preg', f"Unknown modifier '{m}'")
        flags |= _PCRE_MODIFIERS[m]
    body = re.sub(r'\(\?<([A-Za-z_])', r'(?P<\1', body)
    body = re.sub(r"\(\?'([A-Za-z_]\w*)'", r'(?P<\1>', body)
    try:
        return re.compile(body, flags)
    except re.error as e:
        raise EvaluationError('preg', f'Compilation failed: {e}') from None


def _match_array(m):
    result = PhpArray.empty().assoc(0, m.group(0))
    names = {index: name for name, index in m.re.groupindex.items()}
    for i in range(1, m.re.groups + 1):
        if i in names:
            result = result.assoc(names[i], m.group(i) or '')
        result = result.assoc(i, m.group(i) or '')
    return result


def _expand(template, m):
    "substitute $1, ${1} and \\1 references in a preg replacement"
    def group(ref):
        n = int(ref.group(1) or ref.group(2) or ref.group(3))
        return (m.group(n) or '') if n <= m.re.groups else ''
    return re.sub(r'\\(\d{1,2})|\$(\d{1,2})|\$\{(\d{1,2})\}', group, template)


@builtin('preg_match')
def preg_match(pattern: str, subject: str, matches=None, flags: int = 0,
               offset: int = 0):
    m = _regex(pattern).search(subject, offset)
    found = _match_array(m) if m else PhpArray.empty()
    return Updated(1 if m else 0, {2: found})


@builtin('preg_match_all')
def preg_match_all(pattern: str, subject: str, matches=None, flags: int = 1,
                   offset: int = 0):
    regex = _regex(pattern)
    found = [_match_array(m) for m in regex.finditer(subject, offset)]
    if flags & 2:
        result = PhpArray.from_list(found)
    else:
        keys = list(found[0].keys()) if found else list(range(regex.groups + 1))
        result = PhpArray.from_items(
            (k, PhpArray.from_list(f.get(k, '') for f in found)) for k in keys
        )
    return Updated(len(found), {2: result})


@builtin('preg_replace')
def preg_replace(pattern, replacement, subject, limit: int = -1):
    patterns = pattern.to_list() if isinstance(pattern, PhpArray) else [pattern]
    if isinstance(replacement, PhpArray):
        replacements = replacement.to_list()
    else:
        replacements = [replacement] * len(patterns)

    def apply(text):
        text = to_string(text)
        for i, p in enumerate(patterns):
            r = to_string(replacements[i]) if i < len(replacements) else ''
            text = _regex(to_string(p)).sub(
                lambda m: _expand(r, m), text, count=max(limit, 0)
            )
        return text

    if isinstance(subject, PhpArray):
        return PhpArray.from_items((k, apply(v)) for k, v in subject.items())
    return apply(subject)


@builtin('preg_replace_callback', runtime=True)
def preg_replace_callback(rt, pattern: str, callback, subject: str,
                          limit: int = -1):
    return _regex(pattern).sub(
        lambda m: to_string(rt.call_callback(callback, _match_array(m))),
        subject, count=max(limit, 0),
    )


@builtin('preg_split')
def preg_split(pattern: str, subject: str, limit: int = -1, flags: int = 0):
    parts = _regex(pattern).split(subject, maxsplit=max(limit - 1, 0))
    if _regex(pattern).groups:
        # python also returns the captured groups; PHP only does with a flag
        parts = parts[::_regex(pattern).groups + 1]
    if flags & 1:
        parts = [p for p in parts if p]
    return PhpArray.from_list(parts)


@builtin('preg_quote')
def preg_quote(str_: str, delimiter=None):
    special = set('.\\+*?[^]$(){}=!<>|:-#/') | set(delimiter or '')
    return ''.join('\\' + c if c in special else c for c in str_)


@builtin('preg_grep')
def preg_grep(pattern: str, array: PhpArray):
    regex = _regex(pattern)
    return PhpArray.from_items(
        (k, v) for k, v in array.items() if regex.search(to_string(v))
    )


# ---------
#  Arrays
# ---------

@builtin('count', 'sizeof', runtime=True)
def count(rt, value, mode: int = 0):
    if isinstance(value, PhpArray):
        if mode == 1:
            return sum(
                1 + (count(rt, v, 1) if isinstance(v, PhpArray) else 0)
                for v in value.values()
            )
        return len(value)
    if isinstance(value, ObjectHandle) and rt.instanceof(value, 'Countable'):
        return to_int(rt.call_method(value, 'count'))
    raise _type_error('count', 1, 'value', 'Countable|array', value)


@builtin('array_map', runtime=True)
def array_map(rt, callback, array: PhpArray, *arrays: PhpArray):
    if not arrays:
        if callback is None:
            return array
        fn = rt.callable_for(callback)
        result = PhpArray.from_items(
            (k, rt.invoke(fn, [v], label='Callback')) for k, v in array.items()
        )
        return result if not array.is_list() else PhpArray.from_list(result.values())
    columns = [array.to_list(), *(a.to_list() for a in arrays)]
    length = max(len(c) for c in columns)
    rows = [[c[i] if i < len(c) else None for c in columns] for i in range(length)]
    if callback is None:
        return PhpArray.from_list(PhpArray.from_list(row) for row in rows)
    fn = rt.callable_for(callback)
    return PhpArray.from_list(rt.invoke(fn, row, label='Callback') for row in rows)


@builtin('array_filter', runtime=True)
def array_filter(rt, array: PhpArray, callback=None, mode: int = 0):
    if callback is None:
        return PhpArray.from_items((k, v) for k, v in array.items() if to_bool(v))
    fn = rt.callable_for(callback)

    def keep(k, v):
        match mode:
            case 2:
                args = [k]
            case 1:
                args = [v, k]
            case _:
                args = [v]
        return to_bool(rt.invoke(fn, args, label='Callback'))

    kept = PhpArray.empty()
    for k, v in array.items():
        if keep(k, v):
            kept = kept.assoc(k, v)
    return kept


@builtin('array_reduce', runtime=True)
def array_reduce(rt, array: PhpArray, callback, initial=None):
    fn = rt.callable_for(callback)
    carry = initial
    for v in array.values():
        carry = rt.invoke(fn, [carry, v], label='Callback')
    return carry


@builtin('array_walk', runtime=True)
def array_walk(rt, array: PhpArray, callback, arg=_MISSING):
    fn = rt.callable_for(callback)
    for k, v in array.items():
        args = [v, k] if arg is _MISSING else [v, k, arg]
        rt.invoke(fn, args, label='Callback')
    return True


@builtin('array_keys')
def array_keys(array: PhpArray, filter_value=_MISSING, strict: bool = False):
    if filter_value is _MISSING:
        return PhpArray.from_list(array.keys())
    equals = strict_equals if strict else loose_equals
    return PhpArray.from_list(
        k for k, v in array.items() if equals(v, filter_value)
    )


@builtin('array_values')
def array_values(array: PhpArray):
    return PhpArray.from_list(array.values())


@builtin('array_merge')
def array_merge(*arrays: PhpArray):
    return _reindexed(item for a in arrays for item in a.items())


@builtin('array_replace')
def array_replace(array: PhpArray, *replacements: PhpArray):
    for r in replacements:
        for k, v in r.items():
            array = array.assoc(k, v)
    return array


@builtin('array_combine')
def array_combine(keys: PhpArray, values: PhpArray):
    if len(keys) != len(values):
        raise EvaluationError(
            'array_combine',
            'array_combine(): Argument #1 ($keys) and argument #2 ($values) '
            'must have the same number of elements'
        )
    return PhpArray.from_items(
        (normalize_key(k if not isinstance(k, float) else to_string(k)), v)
        for k, v in zip(keys.values(), values.values())
    )


@builtin('array_flip')
def array_flip(array: PhpArray):
    return PhpArray.from_items(
        (v, k) for k, v in array.items() if isinstance(v, (int, str))
    )


@builtin('array_slice')
def array_slice(array: PhpArray, offset: int, length=None,
                preserve_keys: bool = False):
    items = list(array.items())
    start, end = _slice_bounds(
        len(items), offset, None if length is None else to_int(length)
    )
    window = items[start:end]
    if preserve_keys:
        return PhpArray.from_items(window)
    return _reindexed(window)


@builtin('array_splice')
def array_splice(array: PhpArray, offset: int, length=None, replacement=None):
    items = list(array.items())
    start, end = _slice_bounds(
        len(items), offset, None if length is None else to_int(length)
    )
    if replacement is None:
        inserted = []
    elif isinstance(replacement, PhpArray):
        inserted = [(0, v) for v in replacement.values()]
    else:
        inserted = [(0, replacement)]
    removed = _reindexed(items[start:end])
    updated = _reindexed(items[:start] + inserted + items[end:])
    return Updated(removed, {0: updated})


@builtin('array_sum')
def array_sum(array: PhpArray):
    return sum((to_number(v) for v in array.values()), 0)


@builtin('array_product')
def array_product(array: PhpArray):
    return functools.reduce(
        lambda a, b: a * b, (to_number(v) for v in array.values()), 1
    )


@builtin('array_search')
def array_search(needle, haystack: PhpArray, strict: bool = False):
    equals = strict_equals if strict else loose_equals
    for k, v in haystack.items():
        if equals(v, needle):
            return k
    return False


@builtin('in_array')
def in_array(needle, haystack: PhpArray, strict: bool = False):
    return array_search(needle, haystack, strict) is not False


@builtin('array_key_exists', 'key_exists')
def array_key_exists(key, array: PhpArray):
    return array.has(key)


@builtin('array_key_first')
def array_key_first(array: PhpArray):
    return array.first_key() if len(array) else None


@builtin('array_key_last')
def array_key_last(array: PhpArray):
    return array.last_key() if len(array) else None


@builtin('array_is_list')
def array_is_list(array: PhpArray):
    return array.is_list()


@builtin('array_unique')
def array_unique(array: PhpArray, flags: int = 2):
    seen = set()
    result = PhpArray.empty()
    for k, v in array.items():
        marker = to_string(v) if flags == 2 else to_number(v)
        if marker not in seen:
            seen.add(marker)
            result = result.assoc(k, v)
    return result


@builtin('array_count_values')
def array_count_values(array: PhpArray):
    counts = PhpArray.empty()
    for v in array.values():
        counts = counts.assoc(v, counts.get(v, 0) + 1)
    return counts


@builtin('array_reverse')
def array_reverse(array: PhpArray, preserve_keys: bool = False):
    items = reversed(list(array.items()))
    if preserve_keys:
        return PhpArray.from_items(items)
    return _reindexed(items)


@builtin('array_fill')
def array_fill(start_index: int, count: int, value):
    if count < 0:
        raise EvaluationError(
            'array_fill',
            'array_fill(): Argument #2 ($count) must be greater than or equal to 0'
        )
    return PhpArray.from_items((start_index + i, value) for i in range(count))


@builtin('array_fill_keys')
def array_fill_keys(keys: PhpArray, value):
    return PhpArray.from_items((k, value) for k in keys.values())


@builtin('array_pad')
def array_pad(array: PhpArray, length: int, value):
    missing = abs(length) - len(array)
    if missing <= 0:
        return array
    padding = [(0, value)] * missing
    items = list(array.items())
    return _reindexed(items + padding if length > 0 else padding + items)


@builtin('array_chunk')
def array_chunk(array: PhpArray, length: int, preserve_keys: bool = False):
    if length < 1:
        raise EvaluationError(
            'array_chunk', 'array_chunk(): Argument #2 ($length) must be greater than 0'
        )
    items = list(array.items())
    chunks = [items[i:i + length] for i in range(0, len(items), length)]
    return PhpArray.from_list(
        PhpArray.from_items(c) if preserve_keys else PhpArray.from_list(v for _, v in c)
        for c in chunks
    )


def _row_get(row, key):
    if isinstance(row, PhpArray):
        return row.has(key), row.get(key)
    if isinstance(row, ObjectHandle):
        props = {name: v for (name, v, visibility, _) in row.properties()
                 if visibility == 'public'}
        return key in props, props.get(key)
    return False, None


@builtin('array_column')
def array_column(array: PhpArray, column_key, index_key=None):
    result = PhpArray.empty()
    for row in array.values():
        if column_key is None:
            found, value = True, row
        else:
            found, value = _row_get(row, column_key)
        if not found:
            continue
        has_index, index = _row_get(row, index_key) if index_key is not None else (False, None)
        result = result.assoc(index, value) if has_index else result.append(value)
    return result


def _string_values(arrays):
    return {to_string(v) for a in arrays for v in a.values()}


@builtin('array_diff')
def array_diff(array: PhpArray, *arrays: PhpArray):
    others = _string_values(arrays)
    return PhpArray.from_items(
        (k, v) for k, v in array.items() if to_string(v) not in others
    )


@builtin('array_diff_key')
def array_diff_key(array: PhpArray, *arrays: PhpArray):
    return PhpArray.from_items(
        (k, v) for k, v in array.items() if not any(k in a for a in arrays)
    )


@builtin('array_diff_assoc')
def array_diff_assoc(array: PhpArray, *arrays: PhpArray):
    return PhpArray.from_items(
        (k, v) for k, v in array.items()
        if not any(k in a and to_string(a[k]) == to_string(v) for a in arrays)
    )


@builtin('array_intersect')
def array_intersect(array: PhpArray, *arrays: PhpArray):
    return PhpArray.from_items(
        (k, v) for k, v in array.items()
        if all(to_string(v) in _string_values([a]) for a in arrays)
    )


@builtin('array_intersect_key')
def array_intersect_key(array: PhpArray, *arrays: PhpArray):
    return PhpArray.from_items(
        (k, v) for k, v in array.items() if all(k in a for a in arrays)
    )


@builtin('array_rand')
def array_rand(array: PhpArray, num: int = 1):
    if not len(array) or not 1 <= num <= len(array):
        raise EvaluationError(
            'array_rand',
            'array_rand(): Argument #2 ($num) must be between 1 and the '
            'number of elements in argument #1 ($array)'
        )
    keys = list(array.keys())
    if num == 1:
        return random.choice(keys)
    chosen = set(random.sample(range(len(keys)), num))
    return PhpArray.from_list(k for i, k in enumerate(keys) if i in chosen)


@builtin('array_find', runtime=True)
def array_find(rt, array: PhpArray, callback):
    fn = rt.callable_for(callback)
    for k, v in array.items():
        if to_bool(rt.invoke(fn, [v, k], label='Callback')):
            return v
    return None


@builtin('array_any', runtime=True)
def array_any(rt, array: PhpArray, callback):
    fn = rt.callable_for(callback)
    return any(to_bool(rt.invoke(fn, [v, k], label='Callback'))
               for k, v in array.items())


@builtin('array_all', runtime=True)
def array_all(rt, array: PhpArray, callback):
    fn = rt.callable_for(callback)
    return all(to_bool(rt.invoke(fn, [v, k], label='Callback'))
               for k, v in array.items())


@builtin('array_push')
def array_push(array: PhpArray, *values):
    for v in values:
        array = array.append(v)
    return Updated(len(array), {0: array})


@builtin('array_pop')
def array_pop(array: PhpArray):
    if not len(array):
        return Updated(None, {0: array})
    last = array.last_key()
    rest = PhpArray.from_items((k, v) for k, v in array.items() if k != last)
    return Updated(array[last], {0: rest})


@builtin('array_shift')
def array_shift(array: PhpArray):
    if not len(array):
        return Updated(None, {0: array})
    first = array.first_key()
    rest = _reindexed((k, v) for k, v in array.items() if k != first)
    return Updated(array[first], {0: rest})


@builtin('array_unshift')
def array_unshift(array: PhpArray, *values):
    updated = _reindexed([(0, v) for v in values] + list(array.items()))
    return Updated(len(updated), {0: updated})


def _sort_key(flags):
    match flags:
        case 1:
            return to_float
        case 2:
            return to_string
        case 10:
            return lambda v: to_string(v).lower()
    return functools.cmp_to_key(compare)


def _user_order(rt, callback):
    fn = rt.callable_for(callback)
    return functools.cmp_to_key(
        lambda a, b: _sign(rt.invoke(fn, [a, b], label='Callback'))
    )


def _sorted_values(array, key, reverse=False):
    return PhpArray.from_list(sorted(array.values(), key=key, reverse=reverse))


def _sorted_items(array, key, by_key=False, reverse=False):
    return PhpArray.from_items(sorted(
        array.items(), key=lambda kv: key(kv[0] if by_key else kv[1]),
        reverse=reverse,
    ))


@builtin('sort')
def sort(array: PhpArray, flags: int = 0):
    return Updated(True, {0: _sorted_values(array, _sort_key(flags))})


@builtin('rsort')
def rsort(array: PhpArray, flags: int = 0):
    return Updated(True, {0: _sorted_values(array, _sort_key(flags), reverse=True)})


@builtin('usort', runtime=True)
def usort(rt, array: PhpArray, callback):
    return Updated(True, {0: _sorted_values(array, _user_order(rt, callback))})


@builtin('asort')
def asort(array: PhpArray, flags: int = 0):
    return Updated(True, {0: _sorted_items(array, _sort_key(flags))})


@builtin('arsort')
def arsort(array: PhpArray, flags: int = 0):
    return Updated(True, {0: _sorted_items(array, _sort_key(flags), reverse=True)})


@builtin('uasort', runtime=True)
def uasort(rt, array: PhpArray, callback):
    return Updated(True, {0: _sorted_items(array, _user_order(rt, callback))})


@builtin('ksort')
def ksort(array: PhpArray, flags: int = 0):
    return Updated(True, {0: _sorted_items(array, _sort_key(flags), by_key=True)})


@builtin('krsort')
def krsort(array: PhpArray, flags: int = 0):
    return Updated(True, {0: _sorted_items(
        array, _sort_key(flags), by_key=True, reverse=True
    )})


@builtin('uksort', runtime=True)
def uksort(rt, array: PhpArray, callback):
    return Updated(True, {0: _sorted_items(
        array, _user_order(rt, callback), by_key=True
    )})


@builtin('shuffle')
def shuffle(array: PhpArray):
    values = array.to_list()
    random.shuffle(values)
    return Updated(True, {0: PhpArray.from_list(values)})


@builtin('reset', 'current')
def reset(array: PhpArray):
    return array[array.first_key()] if len(array) else False


@builtin('end')
def end(array: PhpArray):
    return array[array.last_key()] if len(array) else False


@builtin('key')
def key(array: PhpArray):
    return array.first_key() if len(array) else None


@builtin('range')
def range_(start, end, step=1):
    letters = (
        isinstance(start, str) and isinstance(end, str)
        and len(start) == 1 and len(end) == 1
        and not (start.isdigit() and end.isdigit())
    )
    if letters:
        a, b = ord(start), ord(end)
        step = abs(to_int(step)) or 1
        codes = range(a, b + 1, step) if a <= b else range(a, b - 1, -step)
        return PhpArray.from_list(chr(c) for c in codes)
    s, e, st = to_number(start), to_number(end), abs(to_number(step))
    if st == 0:
        raise EvaluationError(
            'range', 'range(): Argument #3 ($step) cannot be 0'
        )
    use_float = any(isinstance(x, float) and not x.is_integer() for x in (s, e, st)) \
        or any(isinstance(x, float) for x in (s, e))
    count = int(abs(e - s) / st + 1e-9)
    direction = 1 if e >= s else -1
    values = [s + direction * i * st for i in range(count + 1)]
    if use_float:
        return PhpArray.from_list(float(v) for v in values)
    return PhpArray.from_list(int(v) for v in values)


@builtin('iterator_to_array', runtime=True)
def iterator_to_array(rt, iterator, preserve_keys: bool = True):
    if preserve_keys:
        return PhpArray.from_items(rt.iterate(iterator))
    return PhpArray.from_list(v for _, v in rt.iterate(iterator))


@builtin('iterator_count', runtime=True)
def iterator_count(rt, iterator):
    return sum(1 for _ in rt.iterate(iterator))


# ---------
#  Math
# ---------

@builtin('abs')
def abs_(num):
    return abs(to_number(num))


@builtin('max')
def max_(value, *values):
    items = value.to_list() if not values and isinstance(value, PhpArray) else [value, *values]
    if not items:
        raise EvaluationError(
            'max', 'max(): Argument #1 ($value) must contain at least one element'
        )
    return functools.reduce(lambda a, b: b if compare(b, a) > 0 else a, items)


@builtin('min')
def min_(value, *values):
    items = value.to_list() if not values and isinstance(value, PhpArray) else [value, *values]
    if not items:
        raise EvaluationError(
            'min', 'min(): Argument #1 ($value) must contain at least one element'
        )
    return functools.reduce(lambda a, b: b if compare(b, a) < 0 else a, items)


@builtin('floor')
def floor(num: float):
    return float(math.floor(num)) if math.isfinite(num) else num


@builtin('ceil')
def ceil(num: float):
    return float(math.ceil(num)) if math.isfinite(num) else num


@builtin('round')
def round_(num: float, precision: int = 0):
    return formatting.php_round(num, precision)


@builtin('intdiv')
def intdiv(num1: int, num2: int):
    if num2 == 0:
        raise EvaluationError('DivisionByZeroError', 'Division by zero')
    if num1 == STANDARD_CONSTANTS['PHP_INT_MIN'] and num2 == -1:
        raise EvaluationError(
            'ArithmeticError', 'Division of PHP_INT_MIN by -1 is not an integer'
        )
    quotient = abs(num1) // abs(num2)
    return quotient if (num1 >= 0) == (num2 > 0) else -quotient


@builtin('fmod')
def fmod(num1: float, num2: float):
    if num2 == 0:
        return math.nan
    return math.fmod(num1, num2)


@builtin('sqrt')
def sqrt(num: float):
    return math.sqrt(num) if num >= 0 else math.nan


@builtin('pow')
def pow_(num, exponent):
    base, exp = to_number(num), to_number(exponent)
    if isinstance(base, int) and isinstance(exp, int) and exp >= 0:
        result = base ** exp
        return result if -2**63 <= result < 2**63 else float(result)
    try:
        return float(base) ** float(exp)
    except ZeroDivisionError:
        return math.inf
    except OverflowError:
        return math.inf


@builtin('pi')
def pi():
    return math.pi


@builtin('exp')
def exp(num: float):
    return math.exp(num)


@builtin('log')
def log(num: float, base: float = math.e):
    if num <= 0:
        return -math.inf if num == 0 else math.nan
    return math.log(num) if base == math.e else math.log(num, base)


@builtin('log10')
def log10(num: float):
    return math.log10(num) if num > 0 else (-math.inf if num == 0 else math.nan)


@builtin('log2')
def log2(num: float):
    return math.log2(num) if num > 0 else (-math.inf if num == 0 else math.nan)


for _name in ('sin', 'cos', 'tan', 'asin', 'acos', 'atan', 'sinh', 'cosh',
              'tanh'):
    builtin(_name)(functools.wraps(getattr(math, _name))(
        lambda num, _f=getattr(math, _name): _f(to_float(num))
    ))


@builtin('atan2')
def atan2(y: float, x: float):
    return math.atan2(y, x)


@builtin('hypot')
def hypot(x: float, y: float):
    return math.hypot(x, y)


@builtin('deg2rad')
def deg2rad(num: float):
    return math.radians(num)


@builtin('rad2deg')
def rad2deg(num: float):
    return math.degrees(num)


@builtin('is_nan')
def is_nan(num: float):
    return math.isnan(num)


@builtin('is_finite')
def is_finite(num: float):
    return math.isfinite(num)


@builtin('is_infinite')
def is_infinite(num: float):
    return math.isinf(num)


@builtin('base_convert')
def base_convert(num: str, from_base: int, to_base: int):
    digits = '0123456789abcdefghijklmnopqrstuvwxyz'
    valid = ''.join(c for c in num.lower() if c in digits[:from_base])
    n = int(valid, from_base) if valid else 0
    if n == 0:
        return '0'
    out = []
    while n:
        n, r = divmod(n, to_base)
        out.append(digits[r])
    return ''.join(reversed(out))


@builtin('bindec')
def bindec(binary_string: str):
    return int(''.join(c for c in binary_string if c in '01') or '0', 2)


@builtin('decbin')
def decbin(num: int):
    return format(num if num >= 0 else num + 2**64, 'b')


@builtin('hexdec')
def hexdec(hex_string: str):
    return int(''.join(c for c in hex_string if c in '0123456789abcdefABCDEF') or '0', 16)


@builtin('dechex')
def dechex(num: int):
    return format(num if num >= 0 else num + 2**64, 'x')


@builtin('octdec')
def octdec(octal_string: str):
    return int(''.join(c for c in octal_string if c in '01234567') or '0', 8)


@builtin('decoct')
def decoct(num: int):
    return format(num if num >= 0 else num + 2**64, 'o')


@builtin('rand', 'mt_rand')
def rand(min=None, max=None):
    if min is None:
        return random.randint(0, 2**31 - 1)
    return random.randint(to_int(min), to_int(max))


@builtin('random_int')
def random_int(min: int, max: int):
    if min > max:
        raise EvaluationError(
            'random_int',
            'random_int(): Argument #1 ($min) must be less than or equal to argument #2 ($max)'
        )
    return random.randint(min, max)


@builtin('mt_srand', 'srand')
def mt_srand(seed: int = 0):
    random.seed(seed)


@builtin('mt_getrandmax', 'getrandmax')
def mt_getrandmax():
    return 2**31 - 1


@builtin('lcg_value')
def lcg_value():
    return random.random()


# ---------
#  Types
# ---------

@builtin('gettype')
def gettype_(value):
    return gettype(value)


@builtin('get_debug_type')
def get_debug_type(value):
    return debug_type(value)


@builtin('intval')
def intval(value, base: int = 10):
    if isinstance(value, str) and base != 10:
        text = value.strip().lower()
        if base == 16:
            text = text.removeprefix('0x')
        elif base == 2:
            text = text.removeprefix('0b')
        elif base == 8:
            text = text.removeprefix('0o')
        try:
            return int(text, base)
        except ValueError:
            return 0
    return to_int(value)


@builtin('floatval', 'doubleval')
def floatval(value):
    return to_float(value)


@builtin('strval')
def strval(value):
    return to_string(value)


@builtin('boolval')
def boolval(value):
    return to_bool(value)


@builtin('is_int', 'is_integer', 'is_long')
def is_int(value):
    return isinstance(value, int) and not isinstance(value, bool)


@builtin('is_float', 'is_double')
def is_float(value):
    return isinstance(value, float)


@builtin('is_string')
def is_string(value):
    return isinstance(value, str)


@builtin('is_bool')
def is_bool(value):
    return isinstance(value, bool)


@builtin('is_array')
def is_array(value):
    return isinstance(value, PhpArray)


@builtin('is_null')
def is_null(value):
    return value is None


@builtin('is_numeric')
def is_numeric_(value):
    return is_numeric(value)


@builtin('is_scalar')
def is_scalar(value):
    return isinstance(value, (bool, int, float, str))


@builtin('is_object')
def is_object(value):
    return not (value is None or isinstance(value, (bool, int, float, str, PhpArray)))


@builtin('is_callable', runtime=True)
def is_callable(rt, value):
    if isinstance(value, str) and '::' not in value:
        return rt.function_exists(value)
    try:
        rt.callable_for(value)
    except EvaluationError:
        return False
    return True


@builtin('is_iterable', runtime=True)
def is_iterable(rt, value):
    return isinstance(value, (PhpArray, Generator)) or rt.instanceof(value, 'Traversable')


@builtin('is_countable', runtime=True)
def is_countable(rt, value):
    return isinstance(value, PhpArray) or rt.instanceof(value, 'Countable')


# -----------------------
#  Classes and functions
# -----------------------

def _info_of(rt, object_or_class):
    if isinstance(object_or_class, str):
        return rt.types.get(object_or_class)
    return getattr(object_or_class, 'info', None)


@builtin('get_class')
def get_class(object):
    if not is_object(object):
        raise _type_error('get_class', 1, 'object', 'object', object)
    return debug_type(object)


@builtin('get_parent_class', runtime=True)
def get_parent_class(rt, object_or_class):
    info = _info_of(rt, object_or_class)
    if info is None or info.parent is None:
        return False
    return info.parent.name


@builtin('get_object_vars')
def get_object_vars(object):
    if isinstance(object, ObjectHandle):
        return PhpArray.from_items(
            (name, v) for (name, v, _, _) in object.properties()
        )
    return PhpArray.from_items(
        (k, v) for k, v in getattr(object, '__dict__', {}).items()
        if not k.startswith('_')
    )


@builtin('get_class_methods', runtime=True)
def get_class_methods(rt, object_or_class):
    info = _info_of(rt, object_or_class)
    if info is None:
        return PhpArray.empty()
    names = []
    for ancestor in info.mro():
        for method in ancestor.methods.values():
            if method.name.lower() not in (n.lower() for n in names):
                names.append(method.name)
    return PhpArray.from_list(names)


@builtin('method_exists', runtime=True)
def method_exists(rt, object_or_class, method: str):
    info = _info_of(rt, object_or_class)
    if info is not None:
        return info.find_method(method) is not None
    return callable(getattr(object_or_class, method, None))


@builtin('property_exists', runtime=True)
def property_exists(rt, object_or_class, property: str):
    if isinstance(object_or_class, ObjectHandle):
        if any(name == property for (name, *_) in object_or_class.properties()):
            return True
    info = _info_of(rt, object_or_class)
    if info is None:
        return False
    return (info.find_property(property) is not None
            or info.find_static_owner(property) is not None)


@builtin('class_exists', runtime=True)
def class_exists(rt, class_: str, autoload: bool = True):
    return rt.class_exists(class_, 'class')


@builtin('interface_exists', runtime=True)
def interface_exists(rt, interface: str, autoload: bool = True):
    return rt.class_exists(interface, 'interface')


@builtin('trait_exists', runtime=True)
def trait_exists(rt, trait: str, autoload: bool = True):
    return rt.class_exists(trait, 'trait')


@builtin('enum_exists', runtime=True)
def enum_exists(rt, enum: str, autoload: bool = True):
    return rt.class_exists(enum, 'enum')


@builtin('is_a', runtime=True)
def is_a(rt, object_or_class, class_: str, allow_string: bool = False):
    if isinstance(object_or_class, str):
        if not allow_string:
            return False
        info = rt.types.get(object_or_class)
        return info is not None and info.is_subclass_of(class_)
    return rt.instanceof(object_or_class, class_)


@builtin('is_subclass_of', runtime=True)
def is_subclass_of(rt, object_or_class, class_: str, allow_string: bool = True):
    info = _info_of(rt, object_or_class)
    if info is None or info.name.lower() == class_.lstrip('\\').lower():
        return False
    return info.is_subclass_of(class_)


@builtin('class_implements', runtime=True)
def class_implements(rt, object_or_class):
    info = _info_of(rt, object_or_class)
    if info is None:
        return False
    return PhpArray.from_items(
        (a.name, a.name) for a in info.ancestors() if a.kind == 'interface'
    )


@builtin('spl_object_id')
def spl_object_id(object):
    if isinstance(object, ObjectHandle):
        return object.object_id()
    return id(object) & 0xffff


@builtin('spl_object_hash')
def spl_object_hash(object):
    return format(spl_object_id(object), '032x')


@builtin('function_exists', runtime=True)
def function_exists(rt, function: str):
    return rt.function_exists(function)


@builtin('call_user_func', runtime=True)
def call_user_func(rt, callback, *args):
    return rt.invoke(rt.callable_for(callback), args, label='Callback')


@builtin('call_user_func_array', runtime=True)
def call_user_func_array(rt, callback, args: PhpArray):
    positional = [v for k, v in args.items() if isinstance(k, int)]
    named = {k: v for k, v in args.items() if isinstance(k, str)}
    return rt.invoke(rt.callable_for(callback), positional, named,
                     label='Callback')


@builtin('define', runtime=True)
def define(rt, constant_name: str, value):
    rt.define_constant(constant_name, value)
    return True


@builtin('defined', runtime=True)
def defined(rt, constant_name: str):
    return rt.constant_exists(constant_name)


@builtin('constant', runtime=True)
def constant(rt, name: str):
    if '::' in name:
        class_name, const = name.split('::', 1)
        return rt.class_constant(class_name, const)
    return rt.get_constant(name)


# --------
#  JSON
# --------

_JSON_PRETTY = 128
_JSON_UNESCAPED_SLASHES = 64
_JSON_UNESCAPED_UNICODE = 256
_JSON_FORCE_OBJECT = 16
_JSON_PRESERVE_ZERO_FRACTION = 1024
_JSON_THROW = 4194304


def _json_data(rt, value, flags):
    match value:
        case float() if value.is_integer() and not flags & _JSON_PRESERVE_ZERO_FRACTION:
            return int(value)
        case PhpArray() if value.is_list() and not flags & _JSON_FORCE_OBJECT:
            return [_json_data(rt, v, flags) for v in value.values()]
        case PhpArray():
            return {str(k): _json_data(rt, v, flags) for k, v in value.items()}
        case ObjectHandle() if value.is_enum_case():
            props = dict((name, v) for (name, v, _, _) in value.properties())
            if 'value' not in props:
                raise EvaluationError(
                    'json_encode', 'Non-backed enums have no default serialization'
                )
            return props['value']
        case ObjectHandle() if rt.instanceof(value, 'JsonSerializable'):
            return _json_data(rt, rt.call_method(value, 'jsonSerialize'), flags)
        case ObjectHandle():
            return {name: _json_data(rt, v, flags)
                    for (name, v, visibility, _) in value.properties()
                    if visibility == 'public'}
        case None | bool() | int() | float() | str():
            return value
    return {}


@builtin('json_encode', runtime=True)
def json_encode(rt, value, flags: int = 0, depth: int = 512):
    try:
        text = json.dumps(
            _json_data(rt, value, flags),
            ensure_ascii=not flags & _JSON_UNESCAPED_UNICODE,
            indent=4 if flags & _JSON_PRETTY else None,
            separators=(',', ': ') if flags & _JSON_PRETTY else (',', ':'),
            allow_nan=False,
        )
    except ValueError as e:
        if flags & _JSON_THROW:
            raise EvaluationError('JsonException', str(e)) from None
        return False
    if not flags & _JSON_UNESCAPED_SLASHES:
        text = text.replace('/', '\\/')
    return text


def _from_json(rt, data, associative):
    match data:
        case dict() if associative:
            return PhpArray.from_items(
                (k, _from_json(rt, v, associative)) for k, v in data.items()
            )
        case dict():
            obj = rt.construct('stdClass')
            for k, v in data.items():
                obj.props[k] = _from_json(rt, v, associative)
            return obj
        case list():
            return PhpArray.from_list(_from_json(rt, v, associative) for v in data)
    return data


@builtin('json_decode', runtime=True)
def json_decode(rt, json_: str, associative=None, depth: int = 512,
                flags: int = 0):
    try:
        data = json.loads(json_)
    except ValueError:
        if flags & _JSON_THROW:
            raise EvaluationError('JsonException', 'Syntax error') from None
        return None
    return _from_json(rt, data, to_bool(associative) or bool(flags & 1))


@builtin('json_last_error')
def json_last_error():
    return 0


@builtin('json_last_error_msg')
def json_last_error_msg():
    return 'No error'


# ------------------
#  Dates and times
# ------------------

_DATE_CODES = {
    'd': lambda t: f'{t.day:02d}',
    'D': lambda t: t.strftime('%a'),
    'j': lambda t: str(t.day),
    'l': lambda t: t.strftime('%A'),
    'N': lambda t: str(t.isoweekday()),
    'w': lambda t: str(t.isoweekday() % 7),
    'z': lambda t: str(t.timetuple().tm_yday - 1),
    'W': lambda t: f'{t.isocalendar()[1]:02d}',
    'F': lambda t: t.strftime('%B'),
    'm': lambda t: f'{t.month:02d}',
    'M': lambda t: t.strftime('%b'),
    'n': lambda t: str(t.month),
    't': lambda t: str(((t.replace(day=28) + _FOUR_DAYS).replace(day=1) - _ONE_DAY).day),
    'L': lambda t: '1' if (t.year % 4 == 0 and t.year % 100) or t.year % 400 == 0 else '0',
    'Y': lambda t: str(t.year),
    'y': lambda t: f'{t.year % 100:02d}',
    'a': lambda t: 'am' if t.hour < 12 else 'pm',
    'A': lambda t: 'AM' if t.hour < 12 else 'PM',
    'g': lambda t: str(t.hour % 12 or 12),
    'G': lambda t: str(t.hour),
    'h': lambda t: f'{t.hour % 12 or 12:02d}',
    'H': lambda t: f'{t.hour:02d}',
    'i': lambda t: f'{t.minute:02d}',
    's': lambda t: f'{t.second:02d}',
    'u': lambda t: f'{t.microsecond:06d}',
    'v': lambda t: f'{t.microsecond // 1000:03d}',
    'e': lambda t: 'UTC',
    'T': lambda t: 'UTC',
    'P': lambda t: '+00:00',
    'O': lambda t: '+0000',
    'Z': lambda t: '0',
    'c': lambda t: t.strftime('%Y-%m-%dT%H:%M:%S+00:00'),
    'r': lambda t: t.strftime('%a, %d %b %Y %H:%M:%S +0000'),
    'U': lambda t: str(int(t.timestamp())),
}

_ONE_DAY = datetime(2000, 1, 2) - datetime(2000, 1, 1)
_FOUR_DAYS = _ONE_DAY * 4


@builtin('date')
def date(format: str, timestamp=None):
    when = datetime.fromtimestamp(
        time.time() if timestamp is None else to_int(timestamp), timezone.utc
    )
    out = []
    chars = iter(format)
    for c in chars:
        if c == '\\':
            out.append(next(chars, ''))
        elif c in _DATE_CODES:
            out.append(_DATE_CODES[c](when))
        else:
            out.append(c)
    return ''.join(out)


@builtin('time')
def time_():
    return int(time.time())


@builtin('microtime')
def microtime(as_float: bool = False):
    now = time.time()
    if as_float:
        return now
    return f'{now % 1:.8f} {int(now)}'


@builtin('hrtime')
def hrtime(as_number: bool = False):
    ns = time.perf_counter_ns()
    if as_number:
        return ns
    return PhpArray.from_list([ns // 1_000_000_000, ns % 1_000_000_000])


@builtin('date_default_timezone_get')
def date_default_timezone_get():
    return 'UTC'


# ----------
#  Output
# ----------

@builtin('var_dump', runtime=True)
def var_dump(rt, value, *values):
    for v in (value, *values):
        rt.write(formatting.var_dump(v) + '\n')


@builtin('print_r', runtime=True)
def print_r(rt, value, return_: bool = False):
    text = formatting.print_r(value)
    if return_:
        return text
    rt.write(text)
    return True


@builtin('var_export', runtime=True)
def var_export(rt, value, return_: bool = False):
    text = formatting.var_export(value)
    if return_:
        return text
    rt.write(text)
    return None


@builtin('printf', runtime=True)
def printf(rt, format: str, *values):
    text = formatting.sprintf(format, values)
    rt.write(text)
    return len(text)


@builtin('vprintf', runtime=True)
def vprintf(rt, format: str, values: PhpArray):
    text = formatting.sprintf(format, values.to_list())
    rt.write(text)
    return len(text)

