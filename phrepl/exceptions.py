class ReplError(Exception):
    "Base of every error a REPL turn can report to the user"

    label = 'Error'

    def __init__(self, subject, reason, /):
        super().__init__(subject, reason)
        # subject is the node kind, input text or command the error is about
        self.subject = subject
        self.reason = reason

    def __str__(self):
        return f'{self.label}: {self.reason}'


class ParseError(ReplError):
    "the fragment could not be turned into a syntax tree"

    label = 'Parse error'

    @property
    def input(self):
        return self.subject

    def __str__(self):
        return f'Parse error: {self.reason}\nInput: {self.input}'


class EvaluationError(ReplError):
    "valid syntax, but the evaluation failed"


class TypeError(ReplError):
    "an arity or type contract was violated"

    label = 'TypeError'


class CommandError(ReplError):
    "a malformed or unknown REPL command"

    label = 'Command error'

    @property
    def command(self):
        return self.subject
