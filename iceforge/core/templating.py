"""Narrow ``$in`` / ``$out`` command templating for custom build rules.

Templates are split into argv tokens *before* substitution, so a substituted
path is always exactly one argument and is never re-interpreted by a shell.
Only a closed set of placeholders is recognised; anything else is rejected
when the manifest is resolved.
"""

from __future__ import annotations

import re
import shlex

from pydantic import BaseModel, ConfigDict

PLACEHOLDERS: frozenset[str] = frozenset({"in", "out"})

# $$ | ${name} | $name | a lone $
_PLACEHOLDER_RE = re.compile(r"\$(?:(\$)|\{([A-Za-z_][A-Za-z0-9_]*)\}|([A-Za-z_][A-Za-z0-9_]*)|)")


class TemplateError(ValueError):
    """Raised when a command template cannot be parsed."""


class CommandTemplate(BaseModel):
    """A parsed command template: argv tokens with placeholders left in."""

    model_config = ConfigDict(frozen=True)

    source: str
    tokens: tuple[str, ...]

    def render(self, in_path: str, out_path: str) -> tuple[str, ...]:
        """Substitute ``$in`` / ``$out`` and return the argv tuple."""
        values = {"in": in_path, "out": out_path}
        return tuple(_substitute(token, values) for token in self.tokens)


def _substitute(token: str, values: dict[str, str]) -> str:
    def repl(match: re.Match[str]) -> str:
        if match.group(1):
            return "$"
        return values[match.group(2) or match.group(3)]

    return _PLACEHOLDER_RE.sub(repl, token)


def parse_command_template(text: str) -> CommandTemplate:
    """Tokenise *text* and validate every placeholder it uses.

    Raises
    ------
    TemplateError
        On unbalanced quoting, a dangling ``$`` or any placeholder outside
        ``$in`` / ``$out``.
    """
    try:
        tokens = shlex.split(text)
    except ValueError as exc:
        raise TemplateError(f"cannot split command {text!r}: {exc}") from exc
    if not tokens:
        raise TemplateError("command template is empty")

    problems: list[str] = []
    for token in tokens:
        for match in _PLACEHOLDER_RE.finditer(token):
            if match.group(1):
                continue
            name = match.group(2) or match.group(3)
            if name is None:
                problems.append(f"dangling '$' in {token!r} (use '$$' for a literal dollar)")
            elif name not in PLACEHOLDERS:
                problems.append(f"unknown placeholder '${name}'")
    if problems:
        raise TemplateError("; ".join(problems))
    return CommandTemplate(source=text, tokens=tuple(tokens))
