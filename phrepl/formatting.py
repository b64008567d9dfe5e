"""
phrepl.formatting

The text the output builtins produce: var_dump, print_r, var_export and
the printf family. Everything here returns strings; writing them out is
up to the caller.
"""
import re
from decimal import ROUND_HALF_UP, Decimal, localcontext

from phrepl.exceptions import EvaluationError
from phrepl.values import (
    Generator, ObjectHandle, PhpArray, repr_float, to_float,
    to_int, to_string,
)


def _object_header(value):
    if isinstance(value, ObjectHandle):
        return value.class_name(), value.object_id()
    if isinstance(value, Generator):
        return 'Generator', id(value) & 0xffff
    if callable(value):
        return 'Closure', id(value) & 0xffff
    return type(value).__name__, id(value) & 0xffff


def _python_properties(value):
    try:
        attrs = vars(value)
    except TypeError:
        return []
    return [(k, v, 'public', None) for k, v in attrs.items()
            if not k.startswith('_')]


def _properties(value):
    if isinstance(value, ObjectHandle):
        return value.properties()
    if isinstance(value, Generator) or callable(value):
        return []
    return _python_properties(value)


# ------------
#  var_dump
# ------------

def var_dump(value, indent='') -> str:
    match value:
        case None:
            return 'NULL'
        case bool():
            return f'bool({"true" if value else "false"})'
        case int():
            return f'int({value})'
        case float():
            return f'float({repr_float(value)})'
        case str():
            return f'string({len(value.encode("utf-8"))}) "{value}"'
        case PhpArray():
            lines = [f'array({len(value)}) {{']
            for k, v in value.items():
                key = f'[{k}]' if isinstance(k, int) else f'["{k}"]'
                lines.append(f'{indent}  {key}=>')
                lines.append(f'{indent}  {var_dump(v, indent + "  ")}')
            lines.append(indent + '}')
            return '\n'.join(lines)
        case ObjectHandle() if value.is_enum_case():
            return f'enum({value.class_name()}::{value.case_name()})'
    name, handle = _object_header(value)
    props = _properties(value)
    lines = [f'object({name})#{handle} ({len(props)}) {{']
    for prop, v, visibility, owner in props:
        match visibility:
            case 'protected':
                key = f'["{prop}":protected]'
            case 'private':
                key = f'["{prop}":"{owner}":private]'
            case _:
                key = f'["{prop}"]'
        lines.append(f'{indent}  {key}=>')
        lines.append(f'{indent}  {var_dump(v, indent + "  ")}')
    lines.append(indent + '}')
    return '\n'.join(lines)


# -----------
#  print_r
# -----------

def print_r(value, level=0) -> str:
    pad = ' ' * (8 * level)

    def body(items):
        lines = [f'{pad}(']
        for key, v in items:
            lines.append(f'{pad}    [{key}] => {print_r(v, level + 1)}')
        lines.append(f'{pad})\n')
        return '\n'.join(lines)

    match value:
        case PhpArray():
            return 'Array\n' + body(value.items())
        case ObjectHandle() if value.is_enum_case():
            props = [(name, v) for (name, v, _, _) in value.properties()]
            suffix = ''
            if len(props) > 1:
                suffix = ':int' if isinstance(props[1][1], int) else ':string'
            return f'{value.class_name()} Enum{suffix}\n' + body(props)
        case ObjectHandle() | Generator():
            pass
        case _ if not callable(value) and (
                value is None or isinstance(value, (bool, int, float, str))):
            return to_string(value)
    name, _ = _object_header(value)
    items = []
    for prop, v, visibility, owner in _properties(value):
        match visibility:
            case 'protected':
                items.append((f'{prop}:protected', v))
            case 'private':
                items.append((f'{prop}:{owner}:private', v))
            case _:
                items.append((prop, v))
    return f'{name} Object\n' + body(items)


# --------------
#  var_export
# --------------

def _export_string(s):
    return "'" + s.replace('\\', '\\\\').replace("'", "\\'") + "'"


def _export_float(f):
    text = repr_float(f)
    if text.lstrip('-').isdigit():
        text += '.0'
    return text


def var_export(value, indent='') -> str:
    match value:
        case None:
            return 'NULL'
        case bool():
            return 'true' if value else 'false'
        case int():
            return str(value)
        case float():
            return _export_float(value)
        case str():
            return _export_string(value)
        case PhpArray():
            lines = ['array (']
            for k, v in value.items():
                key = str(k) if isinstance(k, int) else _export_string(k)
                if isinstance(v, PhpArray) or _is_exported_object(v):
                    lines.append(f'{indent}  {key} => ')
                    lines.append(f'{indent}  {var_export(v, indent + "  ")},')
                else:
                    lines.append(f'{indent}  {key} => {var_export(v)},')
            lines.append(indent + ')')
            return '\n'.join(lines)
        case ObjectHandle() if value.is_enum_case():
            return f'\\{value.class_name()}::{value.case_name()}'
    name, _ = _object_header(value)
    props = _properties(value)
    entries = [
        f"{indent}   {_export_string(prop)} => {var_export(v, indent + '  ')},"
        for (prop, v, _, _) in props
    ]
    if name == 'stdClass':
        head = '(object) array('
    else:
        head = f'\\{name}::__set_state(array('
    tail = indent + ')' + ('' if name == 'stdClass' else ')')
    return '\n'.join([head, *entries, tail])


def _is_exported_object(value):
    if value is None or isinstance(value, (bool, int, float, str, PhpArray)):
        return False
    return not (isinstance(value, ObjectHandle) and value.is_enum_case())


# ----------
#  sprintf
# ----------

_CONVERSION = re.compile(
    r"%(?:(\d+)\$)?((?:[-+ 0]|'.)*)(\d+)?(?:\.(\d+))?([bcdeEfFgGosuxX%])"
)


def _exponent(text):
    "PHP writes 1.0e+3 where python writes 1.0e+03"
    return re.sub(r'([eE][+-])0*(\d)', r'\1\2', text)


def _unsigned(n):
    return n + 2**64 if n < 0 else n


def sprintf(fmt: str, args) -> str:
    args = list(args)
    position = 0

    def convert(m):
        nonlocal position
        argnum, flags, width, precision, spec = m.groups()
        if spec == '%':
            return '%'
        if argnum is not None:
            index = int(argnum) - 1
        else:
            index = position
            position += 1
        if index >= len(args):
            raise EvaluationError(
                'sprintf',
                f'{index + 2} arguments are required, {len(args) + 1} given'
            )
        value = args[index]

        left = False
        plus = False
        pad = ' '
        i = 0
        while i < len(flags):
            c = flags[i]
            if c == "'":
                pad = flags[i + 1]
                i += 2
                continue
            if c == '-':
                left = True
            elif c == '+':
                plus = True
            elif c == '0':
                pad = '0'
            elif c == ' ':
                pad = ' '
            i += 1

        sign = ''
        match spec:
            case 'd':
                n = to_int(value)
                text = str(abs(n))
                sign = '-' if n < 0 else ('+' if plus else '')
            case 'u':
                text = str(_unsigned(to_int(value)))
            case 'f' | 'F':
                f = to_float(value)
                text = f'{abs(f):.{int(precision or 6)}f}'
                sign = '-' if f < 0 else ('+' if plus else '')
            case 'e' | 'E':
                f = to_float(value)
                text = _exponent(f'{abs(f):.{int(precision or 6)}{spec}}')
                sign = '-' if f < 0 else ('+' if plus else '')
            case 'g' | 'G':
                f = to_float(value)
                text = _exponent(f'{abs(f):.{int(precision or 6)}{spec}}')
                sign = '-' if f < 0 else ('+' if plus else '')
            case 's':
                text = to_string(value)
                if precision is not None:
                    text = text[:int(precision)]
            case 'x':
                text = format(_unsigned(to_int(value)), 'x')
            case 'X':
                text = format(_unsigned(to_int(value)), 'X')
            case 'o':
                text = format(_unsigned(to_int(value)), 'o')
            case 'b':
                text = format(_unsigned(to_int(value)), 'b')
            case 'c':
                return chr(to_int(value))

        width = int(width or 0)
        if left:
            return (sign + text).ljust(width, ' ' if pad == '0' and spec != 's' else pad)
        if pad == '0' and spec != 's':
            return sign + text.rjust(width - len(sign), '0')
        return (sign + text).rjust(width, pad)

    return _CONVERSION.sub(convert, fmt)


def _round_half_up(num, places):
    "num as a Decimal rounded half away from zero to places decimals"
    exact = Decimal(repr(float(num)))
    if not exact.is_finite() or places >= -exact.as_tuple().exponent:
        return exact
    # anything below 10 ** (adjusted + 1) rounds to zero past this point
    places = max(places, -exact.adjusted() - 2)
    with localcontext() as context:
        context.prec = max(context.prec, exact.adjusted() + places + 2)
        return exact.quantize(Decimal(1).scaleb(-places), rounding=ROUND_HALF_UP)


def number_format(num: float, decimals=0, decimal_separator='.',
                  thousands_separator=',') -> str:
    rounded = _round_half_up(num, max(decimals, 0))
    negative = rounded < 0
    whole, _, fraction = f'{abs(rounded):f}'.partition('.')
    groups = []
    while len(whole) > 3:
        groups.insert(0, whole[-3:])
        whole = whole[:-3]
    groups.insert(0, whole)
    text = thousands_separator.join(groups)
    if decimals > 0:
        text += decimal_separator + fraction.ljust(decimals, '0')
    if negative and rounded != 0:
        text = '-' + text
    return text


def php_round(num, precision=0) -> float:
    "round half away from zero, as PHP does"
    if isinstance(num, float) and (num != num or num in (float('inf'), float('-inf'))):
        return num
    return float(_round_half_up(num, precision))
