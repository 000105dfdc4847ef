"""Dependency resolution and script assembly for document fragments.

Given the fragment table of one document, the resolver answers which
fragments a target needs, in which order, and what script text they
produce. It never runs anything.
"""

import logging
import os
import re
import shlex
from dataclasses import dataclass, field, replace
from typing import Iterable

from .errors import NamedFragmentNotFound
from .fragment import Fragment, FragmentType, NAVIGATION_TYPES

logger = logging.getLogger(__name__)

# Target token of a call expression: %(helper <$in >$out)
CALL_TARGET_PATTERN = re.compile(r"^%\((\S+?)[\s)]")
CALL_STDIN_PATTERN = re.compile(r"<(?P<var>\$)?(?P<name>[\-.\w]+)")
CALL_STDOUT_PATTERN = re.compile(r">(?P<var>\$)?(?P<name>[\-.\w]+)")


@dataclass
class Assembly:
    """Result of assembling the script for one target fragment."""

    fragments: list[Fragment]
    code_lines: list[str]
    block_names: list[str]
    dependencies: dict[str, list[str]] = field(default_factory=dict)
    unmet_dependencies: list[str] = field(default_factory=list)


def helper_name(call: str) -> str | None:
    """Name of the bracket-referenced helper a call expression targets."""
    match = CALL_TARGET_PATTERN.match(call.strip())
    if match is None:
        return None
    return f"[{match.group(1)}]"


def wrap_part_name(wrap: str, part: str) -> str:
    """Name of the before/after fragment for a wrap.

    Braced wrap names keep their braces: `{w}` -> `{w-before}`.
    """
    if wrap.endswith("}"):
        return f"{wrap[:-1]}-{part}}}"
    return f"{wrap}-{part}"


class Resolver:
    """Resolve requirements, wraps and calls over a fragment table."""

    def __init__(
        self,
        fragments: Iterable[Fragment],
        port_format: str = "{key}={value}",
        query_command: str = "yq",
        label_format_above: str = "",
        label_format_below: str = "",
    ) -> None:
        self.fragments = list(fragments)
        self.port_format = port_format
        self.query_command = query_command
        self.label_format_above = label_format_above
        self.label_format_below = label_format_below

    def lookup(self, name: str) -> Fragment | None:
        """Return the first fragment whose effective name equals `name`."""
        for fragment in self.fragments:
            if fragment.is_named(name):
                return fragment
        return None

    def transitive_requirements(self, names: Iterable[str]) -> list[str]:
        """Collect every name reachable through requirements, once each.

        Names are returned in discovery order. Unknown names are kept
        (they have no requirements of their own).
        """
        visited: list[str] = []
        seen: set[str] = set()
        pending = list(names)
        while pending:
            name = pending.pop(0)
            if name in seen:
                continue
            seen.add(name)
            visited.append(name)
            fragment = self.lookup(name)
            if fragment is not None:
                pending.extend(r for r in fragment.requirements if r not in seen)
        return visited

    def dependencies(self, name: str) -> dict[str, list[str]]:
        """Map each name in the target's closure to its direct requirements."""
        memo: dict[str, list[str]] = {}
        pending = [name]
        while pending:
            current = pending.pop(0)
            if current in memo:
                continue
            fragment = self.lookup(current)
            memo[current] = list(fragment.requirements) if fragment else []
            pending.extend(memo[current])
        return memo

    def resolve(self, name: str) -> list[Fragment]:
        """Fragments needed to run `name`, in document order.

        A fragment with a call expression gets a copy of its helper,
        tagged with the call, spliced in front of it. A missing helper
        is skipped.

        Raises:
            NamedFragmentNotFound: if no fragment is named `name`.
        """
        target = self.lookup(name)
        if target is None:
            raise NamedFragmentNotFound(name)

        wanted = {target.name, *self.transitive_requirements(target.requirements)}
        selected = [f for f in self.fragments if f.name in wanted]

        resolved = []
        for fragment in selected:
            if fragment.call:
                helper = self._helper_for(fragment.call)
                if helper is not None:
                    resolved.append(replace(helper, applied_call=fragment.call))
                else:
                    logger.debug("No helper for call %s in %s", fragment.call, fragment.name)
            resolved.append(fragment)
        return resolved

    def _helper_for(self, call: str) -> Fragment | None:
        name = helper_name(call)
        if name is None:
            return None
        return self.lookup(name)

    def expand_wraps(self, fragments: Iterable[Fragment]) -> list[Fragment]:
        """Surround each wrapped fragment with its wrap fragments.

        For wraps [w1, w2] the order is:
            w1-before, w2-before, w1, w2, <fragment>, w2, w2-after, w1, w1-after
        Missing wrap fragments contribute nothing.
        """
        expanded = []
        for fragment in fragments:
            if not fragment.wraps:
                expanded.append(fragment)
                continue

            for wrap in fragment.wraps:
                expanded.extend(self._present(wrap_part_name(wrap, "before")))
            for wrap in fragment.wraps:
                expanded.extend(self._present(wrap))
            expanded.append(fragment)
            for wrap in reversed(fragment.wraps):
                expanded.extend(self._present(wrap))
                expanded.extend(self._present(wrap_part_name(wrap, "after")))
        return expanded

    def _present(self, name: str) -> list[Fragment]:
        fragment = self.lookup(name)
        return [fragment] if fragment is not None else []

    def assemble(
        self, name: str, inherited_block_names: Iterable[str] = ()
    ) -> Assembly:
        """Resolve `name`, expand wraps and produce the script lines.

        Raises:
            NamedFragmentNotFound: if no fragment is named `name`.
        """
        inherited = set(inherited_block_names)
        resolved = self.resolve(name)
        fragments = self.expand_wraps(resolved)

        code_lines: list[str] = []
        for fragment in fragments:
            code_lines.extend(self.code_for(fragment))

        found = {f.name for f in resolved}
        unmet = [
            n
            for n in self.transitive_requirements(self.lookup(name).requirements)
            if n not in found and n not in inherited
        ]

        block_names = []
        for fragment in fragments:
            if fragment.name and fragment.name not in block_names:
                block_names.append(fragment.name)

        return Assembly(
            fragments=fragments,
            code_lines=code_lines,
            block_names=block_names,
            dependencies=self.dependencies(name),
            unmet_dependencies=unmet,
        )

    def code_for(self, fragment: Fragment) -> list[str]:
        """Script lines a single fragment contributes."""
        if fragment.applied_call:
            return [self._query_command(fragment)]
        if fragment.stdout_binding is not None:
            return self._heredoc(fragment)
        if fragment.type in NAVIGATION_TYPES:
            return []
        if fragment.type == FragmentType.PORT:
            return self._port_lines(fragment)
        return self._labelled_body(fragment)

    def _query_command(self, fragment: Fragment) -> str:
        """One line piping the fragment body as a query between bindings."""
        body = "\n".join(fragment.body)
        call = fragment.applied_call.strip()
        stdin = CALL_STDIN_PATTERN.search(call)
        stdout = CALL_STDOUT_PATTERN.search(call)

        if stdin is None:
            command = f"{self.query_command} '{body}'"
        elif stdin.group("var"):
            command = f"echo \"${stdin.group('name')}\" | {self.query_command} '{body}'"
        else:
            command = f"{self.query_command} e '{body}' '{stdin.group('name')}'"

        if stdout is None:
            return command
        if stdout.group("var"):
            return f"export {stdout.group('name')}=$({command})"
        return f"{command} > '{stdout.group('name')}'"

    def _heredoc(self, fragment: Fragment) -> list[str]:
        binding = fragment.stdout_binding
        if binding.is_variable:
            return [f'export {binding.name}=$(cat <<"EOF"', *fragment.body, "EOF", ")"]
        return [f"cat > '{binding.name}' <<\"EOF\"", *fragment.body, "EOF"]

    def _port_lines(self, fragment: Fragment) -> list[str]:
        keys = " ".join(fragment.body).split()
        return [
            self.port_format.format(key=key, value=shlex.quote(os.environ.get(key, "")))
            for key in keys
        ]

    def _labelled_body(self, fragment: Fragment) -> list[str]:
        lines = list(fragment.body)
        if not (self.label_format_above or self.label_format_below):
            return lines

        block_name = re.sub(r"\s+", "_", fragment.name or "")
        if self.label_format_above:
            lines.insert(0, self.label_format_above.format(block_name=block_name))
        if self.label_format_below:
            lines.append(self.label_format_below.format(block_name=block_name))
        return lines
