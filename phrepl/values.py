"""
phrepl.values

The runtime values of the language and the pure operations on them:
type names, conversions, comparisons and the display form.

Values are plain Python objects where possible (None, bool, int, float,
str). Arrays are PhpArray, a persistent ordered map, so that assigning an
array copies it for free. Objects owned by the host runtime derive from
ObjectHandle.
"""
import math
import re
from collections.abc import Mapping
from dataclasses import dataclass

from phrepl.data import OrderedMap
from phrepl.exceptions import TypeError as ReplTypeError


# ----------
#  Arrays
# ----------

_INT_KEY = re.compile(r'(0|-?[1-9][0-9]*)\Z')


def normalize_key(key):
    "PHP's array key casting rules"
    match key:
        case bool():
            return int(key)
        case int():
            return key
        case float():
            if math.isnan(key) or math.isinf(key):
                return 0
            return int(key)
        case None:
            return ''
        case str() if _INT_KEY.match(key) and -2**63 <= int(key) < 2**63:
            return int(key)
        case str():
            return key
    raise ReplTypeError('Array', f'Illegal offset type: {debug_type(key)}')


@dataclass(frozen=True, slots=True, eq=False)
class PhpArray(Mapping):
    """
    An ordered map from int|str keys to values with PHP's array semantics.

    Every update returns a new array. next_index is where append puts the
    next element, and it never goes backwards, even when keys are removed.
    """
    entries: OrderedMap
    next_index: int = 0

    def __len__(self):
        return len(self.entries)

    def __iter__(self):
        return iter(self.entries)

    def __getitem__(self, key):
        return self.entries[key]

    def __contains__(self, key):
        return key in self.entries

    def __eq__(self, other):
        if isinstance(other, PhpArray):
            return list(self.items()) == list(other.items())
        return NotImplemented

    __hash__ = None

    def get(self, key, default=None):
        try:
            return self.entries[normalize_key(key)]
        except KeyError:
            return default

    def has(self, key):
        return normalize_key(key) in self.entries

    def assoc(self, key, value):
        key = normalize_key(key)
        next_index = self.next_index
        if isinstance(key, int) and key >= next_index:
            next_index = key + 1
        return PhpArray(self.entries.assoc(key, value), next_index)

    def append(self, value):
        return PhpArray(
            self.entries.assoc(self.next_index, value), self.next_index + 1
        )

    def dissoc(self, key):
        return PhpArray(self.entries.dissoc(normalize_key(key)), self.next_index)

    def is_list(self):
        return all(k == i for i, k in enumerate(self.entries))

    def first_key(self):
        return self.entries.first_key()

    def last_key(self):
        return self.entries.last_key()

    def to_list(self):
        return list(self.entries.values())

    def to_dict(self):
        return dict(self.entries.items())

    def __repr__(self):
        if self.is_list():
            return f'PhpArray({self.to_list()!r})'
        return f'PhpArray({self.to_dict()!r})'

    @staticmethod
    def empty():
        return _EMPTY_ARRAY

    @staticmethod
    def from_list(values):
        result = _EMPTY_ARRAY
        for v in values:
            result = result.append(v)
        return result

    @staticmethod
    def from_items(items):
        result = _EMPTY_ARRAY
        for k, v in items:
            result = result.assoc(k, v)
        return result


_EMPTY_ARRAY = PhpArray(OrderedMap.empty(), 0)


# -------------
#  Generators
# -------------

class Generator:
    """
    The PHP Generator API over a Python generator.

    The wrapped generator yields (key, value) pairs, with key None meaning
    "the next automatic key", and receives the values given to send().
    Its return value becomes getReturn().
    """

    def __init__(self, gen):
        self._gen = gen
        self._started = False
        self._finished = False
        self._current = (None, None)
        self._auto_key = 0
        self._return = None
        self._advanced = False

    def _resume(self, sent=None, first=False):
        try:
            if first:
                pair = next(self._gen)
            else:
                pair = self._gen.send(sent)
        except StopIteration as stop:
            self._finished = True
            self._current = (None, None)
            self._return = stop.value
            return
        key, value = pair
        if key is None:
            key = self._auto_key
            self._auto_key += 1
        elif isinstance(key, int) and key >= self._auto_key:
            self._auto_key = key + 1
        self._current = (key, value)

    def _ensure_started(self):
        if not self._started:
            self._started = True
            self._resume(first=True)

    def current(self):
        self._ensure_started()
        return self._current[1]

    def key(self):
        self._ensure_started()
        return self._current[0]

    def next(self):
        self._ensure_started()
        if not self._finished:
            self._advanced = True
            self._resume()

    def valid(self):
        self._ensure_started()
        return not self._finished

    def send(self, value):
        if not self._started:
            # the value goes to the first yield, as in PHP
            self._ensure_started()
        if self._finished:
            return None
        self._advanced = True
        self._resume(value)
        return self.current()

    def rewind(self):
        if self._advanced:
            raise RuntimeError('Cannot rewind a generator that was already run')
        self._ensure_started()

    def getReturn(self):
        if not self._finished:
            raise RuntimeError(
                "Cannot get return value of a generator that hasn't returned"
            )
        return self._return

    def items(self):
        "iterate (key, value) pairs, advancing the generator"
        self.rewind()
        while self.valid():
            yield self._current
            self.next()

    def __iter__(self):
        return (v for (_, v) in self.items())

    def __repr__(self):
        return f'<Generator object at {hex(id(self))}>'


# ----------
#  Objects
# ----------

class ObjectHandle:
    """
    Objects that belong to the host runtime's object system.

    The runtime's Instance fills these in; the functions in this module
    only rely on this much of it.
    """

    def class_name(self) -> str:
        raise NotImplementedError

    def type_name(self) -> str:
        return self.class_name()

    def bound_method(self, name):
        "a callable for the method called name, or None"
        return None

    def is_enum_case(self) -> bool:
        return False

    def case_name(self) -> str:
        raise NotImplementedError

    def is_anonymous(self) -> bool:
        return False

    def loosely_equals(self, other) -> bool:
        return False

    def properties(self):
        "(name, value, visibility, declaring class name) for var_dump and friends"
        return []

    def object_id(self) -> int:
        return id(self) & 0xffff

    def short_hash(self):
        return format(id(self) & 0xffffffff, '08x')


def is_object(value):
    return not (
        value is None
        or isinstance(value, (bool, int, float, str, PhpArray))
    )


def is_callable_value(value):
    if isinstance(value, ObjectHandle):
        return value.bound_method('__invoke') is not None
    return callable(value) and not isinstance(value, type)


# -------------
#  Type names
# -------------

def type_of(value) -> str:
    "The type name the REPL displays next to a value"
    match value:
        case None:
            return 'Null'
        case bool():
            return 'Bool'
        case int():
            return 'Int'
        case float():
            return 'Float'
        case str():
            return 'String'
        case PhpArray():
            return 'Array'
        case Generator():
            return 'Generator'
        case ObjectHandle() if value.is_anonymous():
            return 'class@anonymous'
        case ObjectHandle():
            return value.type_name()
    show_type = getattr(value, 'show_type', None)
    if show_type is not None and not isinstance(value, type):
        try:
            return str(show_type())
        except Exception:
            return type(value).__name__
    if callable(value):
        return 'Callable'
    return type(value).__name__


def debug_type(value) -> str:
    "The type names used inside PHP's error messages"
    match value:
        case None:
            return 'null'
        case bool():
            return 'bool'
        case int():
            return 'int'
        case float():
            return 'float'
        case str():
            return 'string'
        case PhpArray():
            return 'array'
        case Generator():
            return 'Generator'
        case ObjectHandle() if value.is_anonymous():
            return 'class@anonymous'
        case ObjectHandle():
            return value.class_name()
    if callable(value):
        return 'Closure'
    return type(value).__name__


def gettype(value) -> str:
    match value:
        case None:
            return 'NULL'
        case bool():
            return 'boolean'
        case int():
            return 'integer'
        case float():
            return 'double'
        case str():
            return 'string'
        case PhpArray():
            return 'array'
    return 'object'


# -------------
#  Conversions
# -------------

_NUMERIC = re.compile(
    r'[ \t\n\r\v\f]*[+-]?(\d+(\.\d*)?|\.\d+)([eE][+-]?\d+)?[ \t\n\r\v\f]*\Z'
)
_LEADING_NUMERIC = re.compile(
    r'[ \t\n\r\v\f]*[+-]?(\d+(\.\d*)?|\.\d+)([eE][+-]?\d+)?'
)


def is_numeric(value):
    if isinstance(value, bool):
        return False
    if isinstance(value, (int, float)):
        return True
    return isinstance(value, str) and _NUMERIC.match(value) is not None


def _number_from_text(text):
    text = text.strip()
    try:
        return int(text)
    except ValueError:
        return float(text)


def to_number(value, operator='+'):
    "int or float, following PHP's arithmetic conversions"
    match value:
        case None:
            return 0
        case bool():
            return int(value)
        case int() | float():
            return value
        case str() if _NUMERIC.match(value):
            return _number_from_text(value)
        case str():
            m = _LEADING_NUMERIC.match(value)
            return _number_from_text(m.group(0)) if m else 0
    raise ReplTypeError(
        'BinaryOp',
        f'Unsupported operand types: {debug_type(value)} {operator} int'
    )


def to_int(value):
    match value:
        case float():
            if math.isnan(value) or math.isinf(value):
                return 0
            return int(value)
        case PhpArray():
            return 1 if len(value) else 0
        case ObjectHandle():
            return 1
    number = to_number(value)
    return int(number)


def to_float(value):
    match value:
        case PhpArray():
            return 1.0 if len(value) else 0.0
        case ObjectHandle():
            return 1.0
    return float(to_number(value))


def to_bool(value):
    match value:
        case None:
            return False
        case bool():
            return value
        case int() | float():
            return value != 0
        case str():
            return value not in ('', '0')
        case PhpArray():
            return len(value) > 0
    return True


def format_float(f: float) -> str:
    "PHP's float to string conversion, with precision=14"
    if math.isnan(f):
        return 'NAN'
    if math.isinf(f):
        return 'INF' if f > 0 else '-INF'
    if f == 0 and math.copysign(1.0, f) < 0:
        return '-0'
    text = '%.14G' % f
    if 'E' in text:
        mantissa, exponent = text.split('E')
        if '.' not in mantissa:
            mantissa += '.0'
        sign = exponent[0]
        digits = exponent[1:].lstrip('0') or '0'
        text = f'{mantissa}E{sign}{digits}'
    return text


def repr_float(f: float) -> str:
    "the round-trippable form, used by var_dump and var_export"
    if math.isnan(f):
        return 'NAN'
    if math.isinf(f):
        return 'INF' if f > 0 else '-INF'
    text = repr(f)
    if text.endswith('.0'):
        text = text[:-2]
    if 'e' in text:
        mantissa, exponent = text.split('e')
        if '.' not in mantissa:
            mantissa += '.0'
        sign = '-' if exponent.startswith('-') else '+'
        text = f'{mantissa}E{sign}{exponent.lstrip("+-").lstrip("0")}'
    return text


def to_string(value) -> str:
    "The stringification used by interpolation, echo and concatenation"
    match value:
        case str():
            return value
        case None:
            return ''
        case bool():
            return '1' if value else ''
        case int():
            return str(value)
        case float():
            return format_float(value)
        case PhpArray():
            return 'Array'
        case ObjectHandle():
            to_str = value.bound_method('__toString')
            if to_str is not None:
                return str(to_str())
            return value.class_name()
    if type(value).__str__ is not object.__str__:
        return str(value)
    return type_of(value)


# -------------
#  Comparison
# -------------

def _compare_numbers(a, b):
    return (a > b) - (a < b)


def strict_equals(a, b) -> bool:
    "==="
    if a is None or b is None:
        return a is b
    if isinstance(a, bool) or isinstance(b, bool):
        return isinstance(a, bool) and isinstance(b, bool) and a == b
    if type(a) in (int, float, str) or type(b) in (int, float, str):
        return type(a) is type(b) and a == b
    if isinstance(a, PhpArray) and isinstance(b, PhpArray):
        if len(a) != len(b):
            return False
        for (ka, va), (kb, vb) in zip(a.items(), b.items()):
            if ka != kb or not strict_equals(va, vb):
                return False
        return True
    if isinstance(a, PhpArray) or isinstance(b, PhpArray):
        return False
    return a is b


def loose_equals(a, b) -> bool:
    "=="
    if isinstance(a, str) and isinstance(b, str):
        if is_numeric(a) and is_numeric(b):
            return to_number(a) == to_number(b)
        return a == b
    if a is None and isinstance(b, str):
        return b == ''
    if b is None and isinstance(a, str):
        return a == ''
    if isinstance(a, bool) or isinstance(b, bool) or a is None or b is None:
        return to_bool(a) == to_bool(b)
    if isinstance(a, (int, float)) and isinstance(b, (int, float)):
        return a == b
    if isinstance(a, (int, float)) and isinstance(b, str):
        return a == to_number(b) if is_numeric(b) else to_string(a) == b
    if isinstance(b, (int, float)) and isinstance(a, str):
        return loose_equals(b, a)
    if isinstance(a, PhpArray) and isinstance(b, PhpArray):
        if len(a) != len(b):
            return False
        for k, v in a.items():
            if k not in b or not loose_equals(v, b[k]):
                return False
        return True
    if isinstance(a, PhpArray) or isinstance(b, PhpArray):
        return False
    if isinstance(a, ObjectHandle) and isinstance(b, ObjectHandle):
        return a is b or a.loosely_equals(b)
    return a is b or a == b


def compare(a, b) -> int:
    "<=>, returning -1, 0 or 1"
    if isinstance(a, str) and isinstance(b, str):
        if is_numeric(a) and is_numeric(b):
            return _compare_numbers(to_number(a), to_number(b))
        return _compare_numbers(a, b)
    if a is None and isinstance(b, str):
        return _compare_numbers('', b)
    if b is None and isinstance(a, str):
        return _compare_numbers(a, '')
    if isinstance(a, bool) or isinstance(b, bool) or a is None or b is None:
        return _compare_numbers(to_bool(a), to_bool(b))
    if isinstance(a, (int, float)) and isinstance(b, (int, float)):
        return _compare_numbers(a, b)
    if isinstance(a, (int, float)) and isinstance(b, str):
        if is_numeric(b):
            return _compare_numbers(a, to_number(b))
        return _compare_numbers(to_string(a), b)
    if isinstance(a, str) and isinstance(b, (int, float)):
        return -compare(b, a)
    if isinstance(a, PhpArray) and isinstance(b, PhpArray):
        if len(a) != len(b):
            return _compare_numbers(len(a), len(b))
        for k, v in a.items():
            if k not in b:
                return 1
            c = compare(v, b[k])
            if c:
                return c
        return 0
    if isinstance(a, PhpArray):
        return 1
    if isinstance(b, PhpArray):
        return -1
    if loose_equals(a, b):
        return 0
    return 1


# -----------
#  Display
# -----------

def addslashes(s: str) -> str:
    return (
        s.replace('\\', '\\\\')
        .replace("'", "\\'")
        .replace('"', '\\"')
        .replace('\0', '\\0')
    )


def format_value(value) -> str:
    "The form the REPL prints after '$var: Type = '"
    match value:
        case None:
            return 'null'
        case bool():
            return 'true' if value else 'false'
        case int():
            return str(value)
        case float():
            return format_float(value)
        case str():
            return '"' + addslashes(value) + '"'
        case PhpArray() if value.is_list():
            return '[' + ', '.join(map(format_value, value.values())) + ']'
        case PhpArray():
            return '[' + ', '.join(
                f'{format_value(k)} => {format_value(v)}'
                for (k, v) in value.items()
            ) + ']'
        case Generator():
            return '<generator>'
        case ObjectHandle():
            return _format_object(value)
    for method_name in ('show', 'toString'):
        method = getattr(value, method_name, None)
        if callable(method) and not isinstance(value, type):
            return str(method())
    if callable(value):
        return '<function>'
    if type(value).__str__ is not object.__str__:
        return str(value)
    return f'{type(value).__name__}@{format(id(value) & 0xffffffff, "08x")}'


def _format_object(obj: ObjectHandle) -> str:
    for method_name in ('show', 'toString', '__toString'):
        method = obj.bound_method(method_name)
        if method is not None:
            return to_string(method())
    if obj.is_enum_case():
        return f'{obj.class_name()}::{obj.case_name()}'
    if obj.bound_method('__invoke') is not None:
        return '<function>'
    if obj.is_anonymous():
        return 'a@' + obj.short_hash()
    return f'{obj.class_name()}@{obj.short_hash()}'
