import dataclasses
from dataclasses import dataclass, field
from typing import Optional

from phrepl.data import OrderedMap, Vec


@dataclass(frozen=True)
class Session:
    """
    The REPL state between two turns. It is never changed in place: each
    operation gives back a new Session and the driver keeps the latest.
    """
    variables: OrderedMap = field(default_factory=OrderedMap.empty)  # '$name' -> value
    history: Vec = field(default_factory=Vec.empty)  # str
    color_enabled: bool = False
    var_counter: int = 0
    incomplete_buffer: str = ''
    current_namespace: Optional[str] = None
    use_aliases: OrderedMap = field(default_factory=OrderedMap.empty)  # alias -> full name

    @staticmethod
    def empty():
        return _EMPTY_SESSION

    @staticmethod
    def create(color_enabled=False):
        return _EMPTY_SESSION.with_colors(color_enabled)

    # Variables

    def with_variable(self, name: str, value):
        return dataclasses.replace(
            self, variables=self.variables.assoc(name, value)
        )

    def with_variables(self, bindings):
        if not bindings:
            return self
        return dataclasses.replace(
            self, variables=self.variables.update(bindings)
        )

    def without_variables(self, names):
        variables = self.variables
        for name in names:
            variables = variables.dissoc(name)
        return dataclasses.replace(self, variables=variables)

    def get_variable(self, name: str):
        return self.variables[name]

    def has_variable(self, name: str):
        return name in self.variables

    def next_variable(self) -> tuple['Session', str]:
        name = f'$var{self.var_counter}'
        return dataclasses.replace(self, var_counter=self.var_counter + 1), name

    # History and input

    def with_history(self, entry: str):
        return dataclasses.replace(self, history=self.history.conj(entry))

    def with_buffer(self, text: str):
        return dataclasses.replace(self, incomplete_buffer=text)

    def clear_buffer(self):
        if not self.incomplete_buffer:
            return self
        return dataclasses.replace(self, incomplete_buffer='')

    def with_colors(self, enabled: bool):
        return dataclasses.replace(self, color_enabled=enabled)

    # Namespaces

    def with_namespace(self, name: Optional[str]):
        return dataclasses.replace(self, current_namespace=(name or None))

    def with_alias(self, alias: str, full_name: str):
        return dataclasses.replace(
            self, use_aliases=self.use_aliases.assoc(alias, full_name.lstrip('\\'))
        )

    def resolve_name(self, name: str) -> str:
        """
        Resolve a class or function name the way a namespaced file would:
        fully qualified names are left alone, then use-aliases are tried,
        then the current namespace is prefixed.
        """
        if name.startswith('\\'):
            return name[1:]
        if name in self.use_aliases:
            return self.use_aliases[name]
        first, sep, rest = name.partition('\\')
        if sep and first in self.use_aliases:
            return self.use_aliases[first] + '\\' + rest
        if self.current_namespace:
            return self.current_namespace + '\\' + name
        return name

    def reset(self):
        "forget everything but the colour setting"
        return Session(color_enabled=self.color_enabled)


_EMPTY_SESSION = Session()
