"""
phrepl.repl

The read-eval-print loop. Each turn is a Repl.step that hands back the
next turn as a More, so a session of any length runs in constant stack
through trampoline.run.
"""
import argparse
import dataclasses
import logging
import os
import re
import sys

from phrepl import display
from phrepl.completeness import is_complete
from phrepl.config import Config
from phrepl.exceptions import CommandError, ReplError
from phrepl.interp import evaluate_source
from phrepl.result import Bind, Declared, Failure, Import, Namespace, Silent, Success, Value
from phrepl.runtime import HostRuntime
from phrepl.session import Session
from phrepl.trampoline import Done, More, run
from phrepl.values import Generator, ObjectHandle, PhpArray, to_string, type_of

log = logging.getLogger(__name__)

FAREWELL = '\nbye \\o'

_COMMAND = re.compile(r':([A-Za-z]+)(?:\s+(.+))?\Z', re.S)
_OPEN_TAG = re.compile(r'\A\s*<\?php\s*')
_LOADABLE = ('.php', '.phrepl')


def _quiet(text):
    pass


def kind_of(value, runtime) -> str:
    "the kind :kind shows: * -> * for containers, * otherwise"
    if isinstance(value, ObjectHandle):
        method = value.bound_method('show_kind') or value.bound_method('showKind')
        if method is not None:
            return to_string(runtime.invoke(method, [], name='show_kind'))
    elif not isinstance(value, (PhpArray, Generator)):
        method = getattr(value, 'show_kind', None)
        if callable(method):
            return to_string(method())
    if isinstance(value, (PhpArray, Generator)):
        return '* -> *'
    return '*'


class Repl:
    """
    The driver. read_line(prompt) gives the next line of input or None at
    the end of it, and write prints text.
    """

    def __init__(self, read_line, write, runtime=None):
        self.read_line = read_line
        self.write = write
        self.runtime = runtime if runtime is not None else HostRuntime(writer=write)

    def say(self, text=''):
        self.write(text + '\n')

    def loop(self, session):
        "run turns until :exit or the end of input, giving the last Session"
        return run(self.step(session))

    def step(self, session):
        color = session.color_enabled
        try:
            line = self.read_line(
                display.prompt(bool(session.incomplete_buffer), color)
            )
        except KeyboardInterrupt:
            self.say()
            session = session.clear_buffer()
            return More(lambda: self.step(session))
        if line is None:
            self.say(FAREWELL)
            return Done(session)

        try:
            next_session = self.process(line, session)
        except ReplError as e:
            self.say(display.format_error(e, color))
            next_session = session.clear_buffer()
        except Exception as e:
            log.exception('turn failed: %r', line)
            self.say(f'Error: {e}')
            next_session = session.clear_buffer()

        if next_session is None:
            self.say(FAREWELL)
            return Done(session)
        return More(lambda: self.step(next_session))

    def process(self, line, session):
        "the Session after one line of input, or None to stop"
        buffered = session.incomplete_buffer
        text = f'{buffered}\n{line}' if buffered else line
        trimmed = text.strip()
        if not trimmed:
            return session
        if trimmed.startswith(':') and not buffered:
            return self.command(trimmed, session)
        if not is_complete(text):
            log.debug('incomplete input, %d lines buffered', text.count('\n') + 1)
            return session.with_buffer(text)
        return self.evaluate(trimmed, session.clear_buffer())

    def evaluate(self, source, session):
        match evaluate_source(source, session, self.runtime):
            case Failure(error):
                log.debug('evaluation failed: %s', error)
                self.say(display.format_error(error, session.color_enabled))
                return session
            case Success(result):
                return self.apply(result, session.with_history(source), self.say)

    def apply(self, result, session, say):
        "store what an EvaluationResult binds and tell the user about it"
        color = session.color_enabled
        session = session.with_variables(result.side_assignments)
        if result.removed_variables:
            session = session.without_variables(result.removed_variables)

        match result.binding:
            case Bind(name) if result.type == 'Function':
                session = session.with_variable(name, result.value)
                say(display.defined_line('function', name.lstrip('$'), color))
            case Bind(name):
                session = session.with_variable(name, result.value)
                say(display.binding_line(name, result.type, result.format(), color))
            case Namespace(name):
                session = session.with_namespace(name)
                say(f'Namespace set to: {name}' if name else 'Namespace cleared')
            case Import(aliases):
                for alias in aliases:
                    session = session.with_alias(alias.alias, alias.name)
                what = 'class/function' if len(aliases) == 1 else 'classes/functions'
                say(f'Imported {len(aliases)} {what}')
            case Declared(kind, name):
                say(display.defined_line(kind, name, color))
            case Silent():
                pass
            case Value() if result.is_side_effect_only:
                if say is not _quiet:
                    self.write('\n')
            case Value():
                session, name = session.next_variable()
                session = session.with_variable(name, result.value)
                say(display.binding_line(name, result.type, result.format(), color))
        return session

    # Commands

    def command(self, text, session):
        match = _COMMAND.match(text)
        name, argument = match.group(1, 2) if match else (None, None)
        color = session.color_enabled
        match name, argument:
            case ('exit' | 'quit'), None:
                return None
            case 'help', None:
                self.say(display.HELP)
            case 'vars', None:
                self.say(display.variables_listing(session))
            case 'history', None:
                self.say(display.history_listing(session))
            case 'reset', None:
                self.runtime.reset()
                self.say('REPL state reset')
                return session.reset()
            case 'load', str():
                return self.load(argument.strip(), session)
            case 'import', str():
                self.import_python(argument.strip(), color)
            case 'type', str():
                self.show(argument, session, lambda value: type_of(value))
            case ('kind' | 'k'), str():
                self.show(argument, session, lambda value: kind_of(value, self.runtime))
            case _:
                raise CommandError(text, f'Unknown command: {text}')
        return session

    def show(self, source, session, describe):
        match evaluate_source(source.strip(), session, self.runtime):
            case Failure(error):
                self.say(display.format_error(error, session.color_enabled))
            case Success(result):
                self.say(describe(result.value))

    def load(self, path, session):
        if not os.path.exists(path):
            self.say(f'Error: File not found: {path}')
            return session
        if os.path.splitext(path)[1] not in _LOADABLE:
            self.say('Error: File must have .php or .phrepl extension')
            return session
        try:
            with open(path, encoding='utf-8') as f:
                source = f.read()
        except (OSError, UnicodeDecodeError) as e:
            log.debug('reading %s failed', path, exc_info=True)
            self.say(f'Error loading file: {e}')
            return session
        source = _OPEN_TAG.sub('', source)

        with self.runtime.redirect_output(_quiet):
            outcome = evaluate_source(source, session, self.runtime)
        match outcome:
            case Failure(error):
                self.say(f'Error loading file: {error.reason}')
                return session
            case Success(result):
                if isinstance(result.binding, Value):
                    result = dataclasses.replace(result, binding=Silent())
                session = self.apply(result, session, _quiet)
        log.debug('loaded %s', path)
        self.say(f'// file {os.path.basename(path)} loaded')
        return session

    def import_python(self, spec, color):
        try:
            imported = self.runtime.import_python(spec)
        except ReplError as e:
            self.say(display.format_error(e, color))
            return
        for kind, name in imported:
            self.say(display.imported_line(kind, name, color))


# ----------------
#  Entry point
# ----------------

def _lines(stream):
    "a read_line over an iterable of lines, ignoring the prompt"
    it = iter(stream)

    def read_line(prompt):
        line = next(it, None)
        return None if line is None else line.rstrip('\r\n')
    return read_line


def _load_history(path):
    try:
        import readline
    except ImportError:
        return None
    try:
        readline.read_history_file(path)
    except FileNotFoundError:
        pass
    except OSError:
        log.warning('could not read history from %s', path, exc_info=True)
    return readline


def _save_history(readline, path):
    if readline is None:
        return
    try:
        readline.write_history_file(path)
    except OSError:
        log.warning('could not write history to %s', path, exc_info=True)


def _write(text):
    sys.stdout.write(text)
    sys.stdout.flush()


def build_parser():
    parser = argparse.ArgumentParser(
        prog='phrepl',
        description='An interactive shell for a PHP-like language.',
    )
    parser.add_argument('-c', '--color', action='store_true',
                        help='colour the prompt and results (also PHREPL_COLOR=1)')
    parser.add_argument('--no-banner', action='store_true',
                        help='do not print the welcome banner')
    parser.add_argument('--history-file', metavar='PATH',
                        help='where to keep line history (default ~/.phrepl_history)')
    parser.add_argument('-v', '--verbose', action='count', default=0,
                        help='log more; repeat for debug output')
    parser.add_argument('--log-file', metavar='PATH',
                        help='write the log here instead of stderr')
    parser.add_argument('script', nargs='?',
                        help='run the statements of this file and exit')
    return parser


def main(argv=None):
    config = Config.from_args(build_parser().parse_args(argv))
    logging.basicConfig(
        level=config.log_level,
        filename=config.log_file,
        format='%(asctime)s %(name)s %(levelname)s %(message)s',
    )
    session = Session.create(config.color)
    runtime = HostRuntime(writer=_write)

    if config.script is not None:
        try:
            with open(config.script, encoding='utf-8') as f:
                lines = f.read().splitlines()
        except OSError as e:
            print(f'phrepl: {e}', file=sys.stderr)
            return 1
        Repl(_lines(lines), _write, runtime).loop(session)
        return 0

    if not sys.stdin.isatty():
        Repl(_lines(sys.stdin), _write, runtime).loop(session)
        return 0

    readline = _load_history(config.history_file)

    def read_line(prompt):
        try:
            return input(prompt)
        except EOFError:
            return None

    if config.banner:
        _write(display.banner(config.color) + '\n')
    try:
        Repl(read_line, _write, runtime).loop(session)
    finally:
        _save_history(readline, config.history_file)
    return 0


if __name__ == '__main__':
    sys.exit(main())
