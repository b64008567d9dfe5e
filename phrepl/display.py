"""
phrepl.display

Everything the driver prints that is not a value: the banner, the help
text, the :vars and :history listings, error lines and the ANSI codes
used to colour them.
"""
from phrepl.exceptions import CommandError
from phrepl.values import format_value


RESET = '\033[0m'
BOLD = '\033[1m'
RED = '\033[31m'
MAGENTA = '\033[35m'
PINK = '\033[95m'
GREY = '\033[90m'
BLUE = '\033[38;2;85;85;255m'


def paint(text, *codes, enabled=True):
    if not enabled or not codes:
        return text
    return ''.join(codes) + text + RESET


HELP = """
phrepl - REPL Commands:

  :help           Show this help message
  :exit           Exit the REPL (also :quit, Ctrl-D)
  :vars           List all defined variables
  :history        Show command history
  :reset          Reset the REPL state (clear all variables and history)
  :load <file>    Load a .phrepl or .php file (functions & classes become available)
  :import <spec>  Import python callables, e.g. math/sqrt or os::path/*
  :type <expr>    Show the type of an expression
  :kind <expr>    Show the kind of an expression (also :k)

Evaluate any PHP expression or statement:
  array_map(fn($x) => $x * 2, [1, 2, 3])
  function inc($x) { return $x + 1; }
  $var0[0] ?? 'none'
"""


def banner(color=False):
    name = paint('phrepl', BLUE, enabled=color)
    return f'Welcome to {name} console.\n\nType in expressions to have them evaluated.\n'


def prompt(continuing=False, color=False):
    name = paint('phrepl', BLUE, enabled=color)
    return f'{name} {{ ' if continuing else f'{name} > '


def variables_listing(session) -> str:
    if not session.variables:
        return 'No variables defined'
    lines = ['', 'Defined variables:']
    for name, value in session.variables.items():
        lines.append(f'  {name} = {format_value(value)}')
    return '\n'.join(lines) + '\n'


def history_listing(session) -> str:
    if not session.history:
        return 'No history'
    lines = ['', 'Command history:']
    for i, entry in enumerate(session.history, start=1):
        lines.append(f'  {i}. {entry}')
    return '\n'.join(lines) + '\n'


def binding_line(name, type_name, formatted, color=False) -> str:
    "$x: Type = value"
    if not color:
        return f'{name}: {type_name} = {formatted}'
    return (f'{paint(name, BOLD)}: {paint(type_name, BOLD, PINK)} = '
            f'{paint(formatted, BOLD)}')


def defined_line(kind, name, color=False) -> str:
    "// class Foo defined"
    return f'// {paint(kind, PINK, enabled=color)} {name} defined'


def imported_line(kind, qualified_name, color=False) -> str:
    suffix = '()' if kind == 'function' else ''
    return f'{paint("imported", MAGENTA, enabled=color)} {kind} {qualified_name}{suffix}'


def format_error(error, color=False) -> str:
    """
    One line for a failed turn, labelled by the kind of error: Error,
    Parse error or TypeError. Unknown commands print their reason alone.
    """
    if isinstance(error, CommandError):
        return error.reason
    return f'{paint(error.label + ":", RED, enabled=color)} {error.reason}'
