"""Navigation loop: parse, show the menu, take a choice, execute, repeat."""

import logging
from dataclasses import dataclass, replace
from enum import Enum
from typing import Callable, Iterable

from .errors import LinkDirectiveError
from .navigation import LinkHistory, LinkState, merge_link_state

logger = logging.getLogger(__name__)

# Block queue entry meaning "stop running blocks and stay in the menu"
STAY = "."


class State(Enum):
    PARSE_DOCUMENT = "parse_document"
    DISPLAY_MENU = "display_menu"
    USER_CHOICE = "user_choice"
    EXECUTE_BLOCK = "execute_block"
    EXIT = "exit"


class ChoiceKind(Enum):
    BLOCK = "block"
    BACK = "back"
    EXIT = "exit"


@dataclass
class Choice:
    """What the user picked from a menu."""

    kind: ChoiceKind
    name: str | None = None

    @classmethod
    def block(cls, name: str) -> "Choice":
        return cls(ChoiceKind.BLOCK, name)

    @classmethod
    def back(cls) -> "Choice":
        return cls(ChoiceKind.BACK)

    @classmethod
    def exit(cls) -> "Choice":
        return cls(ChoiceKind.EXIT)


@dataclass
class Callbacks:
    """Side effects the navigation loop delegates to its driver.

    `choose` returns None when the user cancels the prompt.
    """

    parse_document: Callable[[str], None]
    choose: Callable[[LinkState, LinkHistory], Choice | None]
    execute: Callable[[str, LinkState], LinkState]
    report: Callable[[str], None]


class NavigationLoop:
    """Explicit state machine driving one interactive session.

    With an initial block queue the loop runs those blocks and stops
    ("run-then-stop"), unless a STAY entry hands control to the menu.
    """

    def __init__(self, history: LinkHistory | None = None) -> None:
        self.history = history if history is not None else LinkHistory()
        self.state = State.PARSE_DOCUMENT
        self.current = LinkState()

    def run(
        self,
        initial_document: str,
        initial_block_queue: Iterable[str] | None,
        callbacks: Callbacks,
    ) -> LinkState:
        """Run until exit. Returns the final LinkState.

        Raises:
            NamedFragmentNotFound: when a requested block does not exist.
        """
        queue = list(initial_block_queue or [])
        exit_when_queue_empty = bool(queue)
        self.current = LinkState(
            document_path=initial_document,
            display_menu=not queue,
            prior_was_link=False,
        )
        self.state = State.PARSE_DOCUMENT
        chosen: str | None = None
        from_menu = False

        while self.state is not State.EXIT:
            logger.debug("State %s at %s", self.state.value, self.current.document_path)

            if self.state is State.PARSE_DOCUMENT:
                callbacks.parse_document(self.current.document_path)

                if exit_when_queue_empty and not queue and not self.current.prior_was_link:
                    self.state = State.EXIT
                elif self.current.display_menu:
                    self.state = State.DISPLAY_MENU
                elif self.current.block_name:
                    chosen, from_menu = self.current.block_name, False
                    self.state = State.EXECUTE_BLOCK
                elif not queue:
                    self.state = State.EXIT
                else:
                    chosen, from_menu = queue.pop(0), False
                    if chosen == STAY:
                        exit_when_queue_empty = False
                        self.current = merge_link_state(
                            self.current, LinkState(display_menu=True, prior_was_link=False)
                        )
                        self.state = State.PARSE_DOCUMENT
                    else:
                        self.state = State.EXECUTE_BLOCK

            elif self.state is State.DISPLAY_MENU:
                exit_when_queue_empty = False
                self.state = State.USER_CHOICE

            elif self.state is State.USER_CHOICE:
                try:
                    choice = callbacks.choose(self.current, self.history)
                except KeyboardInterrupt:
                    choice = None
                if choice is None:
                    choice = (
                        Choice.back() if self.history.prior_state_exists() else Choice.exit()
                    )

                if choice.kind is ChoiceKind.EXIT:
                    self.state = State.EXIT
                elif choice.kind is ChoiceKind.BACK:
                    self.go_back()
                else:
                    chosen, from_menu = choice.name, True
                    self.state = State.EXECUTE_BLOCK

            elif self.state is State.EXECUTE_BLOCK:
                next_state = self._execute(chosen, callbacks)
                if next_state.block_name:
                    next_state = replace(next_state, display_menu=False)
                elif not from_menu and next_state.display_menu is None:
                    next_state = replace(next_state, display_menu=not queue)
                self.current = merge_link_state(self.current, next_state)
                self.state = State.PARSE_DOCUMENT

        return self.current

    def _execute(self, name: str, callbacks: Callbacks) -> LinkState:
        try:
            return callbacks.execute(name, self.current)
        except LinkDirectiveError as e:
            callbacks.report(f"{name}: {e}")
            return replace(self.current, block_name=None, display_menu=None)

    def go_back(self) -> None:
        """Restore the most recent history state, or exit when there is none."""
        if not self.history.prior_state_exists():
            self.state = State.EXIT
            return

        restored = self.history.pop()
        logger.info("Back to %s", restored.document_path)
        self.current = merge_link_state(
            self.current,
            replace(restored, block_name=None, display_menu=True, prior_was_link=True),
        )
        self.state = State.PARSE_DOCUMENT
