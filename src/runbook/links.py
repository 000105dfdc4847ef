"""Link directive parsing and captured-output filtering.

Link, vars and opts fragments carry YAML mappings in their bodies. A link
body reads like:

    file: other.md
    block: deploy
    vars:
      REGION: eu-west-1
    exec: true
    pattern: '^(?P<key>\\w+)=(?P<value>.*)$'
    format: 'export {key}={value}'
"""

import re
import shlex
from dataclasses import dataclass, field
from typing import Iterable

import yaml

from .errors import LinkDirectiveError

# PCRE-style (?<name>...) groups are accepted alongside Python (?P<name>...)
_NAMED_GROUP = re.compile(r"\(\?<(?![=!])")
_PLACEHOLDER = re.compile(r"%?\{(\w+)\}")

DEFAULT_PATTERN = "(?P<line>.*)"
DEFAULT_FORMAT = "{line}"


@dataclass
class LinkDirective:
    """Parsed body of a link fragment."""

    file: str | None = None
    block: str | None = None
    next_block: str | None = None
    vars: dict[str, str] = field(default_factory=dict)
    load: str | None = None
    save: str | None = None
    eval: bool = False
    exec: bool = False
    return_: bool = False
    pattern: str = DEFAULT_PATTERN
    format: str = DEFAULT_FORMAT

    @property
    def target_block(self) -> str | None:
        """Block to run on arrival; `next_block` wins over `block`."""
        return self.next_block or self.block or None

    @property
    def evaluates(self) -> bool:
        return self.eval or self.exec


def parse_mapping(body: Iterable[str]) -> dict:
    """Read a fragment body as a YAML mapping.

    An empty body is an empty mapping.

    Raises:
        LinkDirectiveError: if the body is not valid YAML or not a mapping.
    """
    text = "\n".join(body)
    try:
        data = yaml.safe_load(text)
    except yaml.YAMLError as e:
        raise LinkDirectiveError(f"Invalid YAML: {e}") from e

    if data is None:
        return {}
    if not isinstance(data, dict):
        raise LinkDirectiveError(f"Expected a mapping, got {type(data).__name__}")
    return data


def parse_link_directive(body: Iterable[str]) -> LinkDirective:
    """Build a LinkDirective from a link fragment body."""
    data = parse_mapping(body)

    variables = data.get("vars") or {}
    if not isinstance(variables, dict):
        raise LinkDirectiveError("`vars` must be a mapping")

    def _optional(key: str) -> str | None:
        value = data.get(key)
        return None if value in (None, "") else str(value)

    return LinkDirective(
        file=_optional("file"),
        block=_optional("block"),
        next_block=_optional("next_block"),
        vars={str(k): scalar_text(v) for k, v in variables.items()},
        load=_optional("load"),
        save=_optional("save"),
        eval=bool(data.get("eval", False)),
        exec=bool(data.get("exec", False)),
        return_=bool(data.get("return", False)),
        pattern=str(data.get("pattern") or DEFAULT_PATTERN),
        format=str(data.get("format") or DEFAULT_FORMAT),
    )


def scalar_text(value) -> str:
    if value is None:
        return ""
    if isinstance(value, bool):
        return str(value).lower()
    return str(value)


def assignment_line(key: str, value: str) -> str:
    """Shell assignment for a variable binding."""
    return f"{key}={shlex.quote(value)}"


def comment_line(text: str | None) -> str:
    """Shell comment naming a fragment, with `#` in the name escaped."""
    if not text:
        return "# "
    escaped = text.replace("#", "\\#")
    return "\n".join(f"# {line}" for line in escaped.split("\n"))


def compile_pattern(pattern: str) -> re.Pattern:
    """Compile a user-supplied pattern, accepting `(?<name>...)` groups."""
    return re.compile(_NAMED_GROUP.sub("(?P<", pattern))


def format_groups(fmt: str, groups: dict[str, str | None]) -> str:
    """Fill `{name}` (or `%{name}`) placeholders from match groups."""
    return _PLACEHOLDER.sub(lambda m: groups.get(m.group(1)) or "", fmt)


def filter_output_lines(
    lines: Iterable[str],
    begin: str = "",
    end: str = "",
    match: str = "",
    fmt: str = "",
) -> list[str]:
    """Select and reformat lines captured from an `exec` run.

    With `begin`, collection starts after the first line matching it; a
    line matching `end` stops collection. With `match`, only matching
    lines are kept, formatted with `fmt` from the named groups when given.
    With only `fmt`, every collected line is formatted as `{value}`.
    """
    begin_re = compile_pattern(begin) if begin else None
    end_re = compile_pattern(end) if end else None
    match_re = compile_pattern(match) if match else None

    collecting = begin_re is None
    collected = []
    for line in lines:
        if not collecting:
            if begin_re is not None and begin_re.search(line):
                collecting = True
            continue

        if end_re is not None and end_re.search(line):
            collecting = False
        elif match_re is not None:
            found = match_re.search(line)
            if found is None:
                continue
            if fmt:
                collected.append(format_groups(fmt, found.groupdict()))
            else:
                collected.append(found.group(0))
        elif fmt:
            collected.append(format_groups(fmt, {"value": line}))
        else:
            collected.append(line)
    return collected


def reformat_lines(
    lines: Iterable[str], pattern: str = DEFAULT_PATTERN, fmt: str = DEFAULT_FORMAT
) -> list[str]:
    """Replace the first match of `pattern` in each line using `fmt`.

    Lines without a match are dropped.
    """
    regex = compile_pattern(pattern)
    result = []
    for line in lines:
        if regex.search(line) is None:
            continue
        result.append(
            regex.sub(lambda m: format_groups(fmt, m.groupdict()), line, count=1)
        )
    return result
