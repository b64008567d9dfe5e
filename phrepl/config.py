"""
phrepl.config

Start-up settings, gathered from the command line and the environment.
"""
import logging
import os
from dataclasses import dataclass
from typing import Optional


DEFAULT_HISTORY_FILE = '~/.phrepl_history'


def _log_level(verbosity: int) -> int:
    if verbosity >= 2:
        return logging.DEBUG
    if verbosity == 1:
        return logging.INFO
    return logging.WARNING


@dataclass(frozen=True)
class Config:
    color: bool = False
    banner: bool = True
    history_file: Optional[str] = None
    log_level: int = logging.WARNING
    log_file: Optional[str] = None
    script: Optional[str] = None

    @staticmethod
    def from_args(namespace, environ=None):
        """
        Combine parsed arguments with the environment. NO_COLOR switches
        colour off whatever else asks for it.
        """
        environ = os.environ if environ is None else environ
        color = namespace.color or environ.get('PHREPL_COLOR') == '1'
        if 'NO_COLOR' in environ:
            color = False
        history_file = (namespace.history_file
                        or environ.get('PHREPL_HISTORY')
                        or DEFAULT_HISTORY_FILE)
        return Config(
            color=color,
            banner=not namespace.no_banner,
            history_file=os.path.expanduser(history_file),
            log_level=_log_level(namespace.verbose),
            log_file=namespace.log_file,
            script=namespace.script,
        )
