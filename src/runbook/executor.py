"""Execute a chosen fragment according to its type."""

import logging
import os
import re
from dataclasses import replace
from pathlib import Path
from typing import Callable

from .config import Config
from .errors import NamedFragmentNotFound
from .fragment import Fragment, FragmentType
from .links import (
    LinkDirective,
    assignment_line,
    comment_line,
    filter_output_lines,
    parse_link_directive,
    parse_mapping,
    reformat_lines,
    scalar_text,
)
from .navigation import LinkHistory, LinkState
from .resolver import Assembly, Resolver
from .runner import CommandResult, OutputLine, ProcessRunner

logger = logging.getLogger(__name__)


class BlockExecutor:
    """Dispatch execution of one fragment and compute the next LinkState.

    Hooks:
        approve(script) -> bool: asked before a shell script runs when
            `prompt_approve` is set.
        report(message): user-facing error and status messages.
        on_line(line): live output while a script runs.
        on_result(fragment, script, result): called after every shell run.
    """

    def __init__(
        self,
        config: Config,
        history: LinkHistory,
        runner: ProcessRunner | None = None,
        approve: Callable[[str], bool] | None = None,
        report: Callable[[str], None] | None = None,
        on_line: Callable[[OutputLine], None] | None = None,
        on_result: Callable[[Fragment, str, CommandResult], None] | None = None,
    ) -> None:
        self.config = config
        self.history = history
        self.runner = runner or ProcessRunner(
            shell=config.shell, timeout=config.timeout, relay_stdin=config.relay_stdin
        )
        self.approve = approve
        self.report = report or (lambda message: logger.warning("%s", message))
        self.on_line = on_line
        self.on_result = on_result

    def make_resolver(self, fragments: list[Fragment]) -> Resolver:
        """Resolver over a fragment table using the live output settings."""
        output = self.config.output
        return Resolver(
            fragments,
            port_format=output.port_format,
            query_command=output.query_command,
            label_format_above=output.code_label_format_above,
            label_format_below=output.code_label_format_below,
        )

    def execute(self, resolver: Resolver, name: str, state: LinkState) -> LinkState:
        """Run the fragment called `name` under `state`.

        Raises:
            NamedFragmentNotFound: if no fragment is named `name`.
            LinkDirectiveError: if a link, vars or opts body is malformed.
        """
        fragment = resolver.lookup(name)
        if fragment is None:
            raise NamedFragmentNotFound(name)

        logger.info("Executing %s (%s)", name, fragment.type.value or "default")
        if fragment.type == FragmentType.LINK:
            return self.execute_link(resolver, fragment, state)
        if fragment.type == FragmentType.VARS:
            return self.execute_vars(fragment, state)
        if fragment.type == FragmentType.OPTS:
            return self.execute_opts(resolver, fragment, state)
        return self.execute_shell(resolver, fragment, state)

    # Shell

    def execute_shell(
        self, resolver: Resolver, fragment: Fragment, state: LinkState
    ) -> LinkState:
        """Assemble, optionally approve, and run a script. Context is unchanged."""
        assembly = resolver.assemble(fragment.name, state.inherited_block_names)
        if assembly.unmet_dependencies:
            logger.warning(
                "Unmet dependencies for %s: %s",
                fragment.name,
                ", ".join(assembly.unmet_dependencies),
            )

        script = "\n".join(state.inherited_lines + assembly.code_lines)
        unchanged = replace(state, block_name=None, display_menu=None, prior_was_link=False)

        if self.config.prompt_approve and self.approve is not None:
            if not self.approve(script):
                logger.info("Execution of %s declined", fragment.name)
                return unchanged

        result = self._runner_for(fragment).stream(script, on_line=self.on_line)
        if self.on_result is not None:
            self.on_result(fragment, script, result)
        if not result.success:
            self.report(_failure_message(fragment.name, result))
        return unchanged

    def _runner_for(self, fragment: Fragment) -> ProcessRunner:
        """The configured runner, or a copy using the fragment's own shell."""
        shell = fragment.shell or self.config.shell
        if shell != self.runner.shell:
            return ProcessRunner(
                shell=shell,
                timeout=self.runner.timeout or 0.0,
                relay_stdin=self.runner.relay_stdin,
                stdin=self.runner.stdin,
            )
        return self.runner

    # Vars and opts

    def execute_vars(self, fragment: Fragment, state: LinkState) -> LinkState:
        """Export each binding and carry an assignment line forward."""
        data = parse_mapping(fragment.body)
        lines = []
        for key, value in data.items():
            text = scalar_text(value)
            os.environ[str(key)] = text
            lines.append(assignment_line(str(key), text))
        logger.debug("Set variables: %s", ", ".join(str(k) for k in data))
        return replace(
            state,
            block_name=None,
            display_menu=None,
            prior_was_link=False,
            inherited_lines=state.inherited_lines + lines,
        )

    def execute_opts(
        self, resolver: Resolver, fragment: Fragment, state: LinkState
    ) -> LinkState:
        """Merge the opts fragments `fragment` requires into the live config."""
        overrides: dict = {}
        for required in resolver.resolve(fragment.name):
            if required.type == FragmentType.OPTS:
                overrides.update(parse_mapping(required.body))

        applied = self.config.apply_overrides(overrides)
        logger.info("Applied options: %s", ", ".join(applied))
        return replace(state, block_name=None, display_menu=None, prior_was_link=False)

    # Links

    def execute_link(
        self, resolver: Resolver, fragment: Fragment, state: LinkState
    ) -> LinkState:
        """Interpret a link directive and compute the state to continue with."""
        directive = parse_link_directive(fragment.body)
        assembly = resolver.assemble(fragment.name, state.inherited_block_names)
        code_lines = list(assembly.code_lines)

        if directive.vars:
            code_lines.append(comment_line(fragment.name))
            for key, value in directive.vars.items():
                os.environ[key] = value
                code_lines.append(assignment_line(key, value))

        if directive.load:
            code_lines += self._load_lines(directive.load)

        if directive.evaluates:
            code_lines = self.evaluate(fragment, directive, state, code_lines)

        if directive.save:
            self._save_lines(directive.save, state.inherited_lines)

        if directive.return_:
            return self.return_to_caller(
                state, assembly, code_lines, directive.target_block
            )

        return self.push_and_jump(
            state,
            assembly,
            code_lines,
            next_document=directive.file or state.document_path,
            next_block=directive.target_block,
        )

    def _load_lines(self, path: str) -> list[str]:
        try:
            return Path(path).expanduser().read_text().splitlines()
        except OSError as e:
            self.report(f"Cannot load {path}: {e}")
            return []

    def _save_lines(self, path: str, lines: list[str]) -> None:
        try:
            target = Path(path).expanduser()
            target.write_text("\n".join(lines) + "\n" if lines else "")
            logger.info("Saved %d inherited line(s) to %s", len(lines), target)
        except OSError as e:
            self.report(f"Cannot save {path}: {e}")

    def evaluate(
        self,
        fragment: Fragment,
        directive: LinkDirective,
        state: LinkState,
        code_lines: list[str],
    ) -> list[str]:
        """Run inherited plus new code now; its output becomes the new code.

        `exec` captures stdout and stderr as they stream and applies the
        configured assignment filter. `eval` keeps stdout only.
        """
        script = "\n".join(state.inherited_lines + code_lines)
        output = self.config.output

        if directive.exec:
            result = self._runner_for(fragment).stream(script, on_line=self.on_line)
            lines = filter_output_lines(
                result.output_lines,
                begin=output.assignment_begin,
                end=output.assignment_end,
                match=output.assignment_match,
                fmt=output.assignment_format,
            )
        else:
            result = self._runner_for(fragment).run(script)
            lines = result.stdout.splitlines()

        if not result.success:
            self.report(_failure_message(fragment.name, result))

        lines = reformat_lines(lines, directive.pattern, directive.format)
        block_name = re.sub(r"\s+", "_", fragment.name or "")
        if output.code_label_format_above:
            lines.insert(0, output.code_label_format_above.format(block_name=block_name))
        if output.code_label_format_below:
            lines.append(output.code_label_format_below.format(block_name=block_name))
        return lines

    def push_and_jump(
        self,
        state: LinkState,
        assembly: Assembly,
        code_lines: list[str],
        next_document: str | None,
        next_block: str | None,
    ) -> LinkState:
        """Save the current state for "back" and move on with merged context.

        Existing dependency entries are kept over the new ones.
        """
        self.history.push(state)
        logger.info("Link to %s (block %s)", next_document, next_block)
        return LinkState(
            block_name=next_block,
            document_path=next_document,
            prior_was_link=True,
            inherited_lines=state.inherited_lines + code_lines,
            inherited_block_names=sorted(
                set(state.inherited_block_names) | set(assembly.block_names)
            ),
            inherited_dependencies={
                **assembly.dependencies,
                **state.inherited_dependencies,
            },
        )

    def return_to_caller(
        self,
        state: LinkState,
        assembly: Assembly,
        code_lines: list[str],
        next_block: str | None,
    ) -> LinkState:
        """Add this code to the caller's state and go back to its menu.

        With no caller on the history stack, behaves like a link to the
        current document.
        """
        caller = self.history.pop()
        if not caller.document_path:
            logger.debug("Return with empty history; continuing in place")
            return self.push_and_jump(
                state,
                assembly,
                code_lines,
                next_document=state.document_path,
                next_block=next_block,
            )

        restored = LinkState(
            block_name=None,
            document_path=caller.document_path,
            prior_was_link=True,
            inherited_lines=caller.inherited_lines + code_lines,
            inherited_block_names=sorted(
                set(caller.inherited_block_names) | set(assembly.block_names)
            ),
            inherited_dependencies={
                **assembly.dependencies,
                **caller.inherited_dependencies,
            },
        )
        self.history.push(restored)
        logger.info("Return to %s", caller.document_path)
        return restored


def _failure_message(name: str | None, result: CommandResult) -> str:
    if result.error:
        return f"{name}: {result.error}"
    return f"{name}: exited with status {result.exit_code}"
