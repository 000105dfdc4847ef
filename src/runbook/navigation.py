"""Navigation state management for link jumps and back navigation."""

from dataclasses import dataclass, field


@dataclass
class LinkState:
    """Snapshot of where the session is and the context it carries.

    `display_menu` and `prior_was_link` use None for "not specified" so a
    merge can tell an explicit False from an absent value.
    """

    block_name: str | None = None
    document_path: str | None = None
    display_menu: bool | None = None
    prior_was_link: bool | None = None
    inherited_lines: list[str] = field(default_factory=list)
    inherited_block_names: list[str] = field(default_factory=list)
    inherited_dependencies: dict[str, list[str]] = field(default_factory=dict)

    @classmethod
    def empty(cls) -> "LinkState":
        return cls()


def merge_link_state(current: LinkState, next_state: LinkState) -> LinkState:
    """Combine the running state with the state an action produced.

    The next state wins, except that unset `display_menu` and
    `prior_was_link` are taken from the current state and a missing
    `document_path` stays where it was.
    """
    return LinkState(
        block_name=next_state.block_name,
        document_path=next_state.document_path or current.document_path,
        display_menu=(
            current.display_menu
            if next_state.display_menu is None
            else next_state.display_menu
        ),
        prior_was_link=(
            current.prior_was_link
            if next_state.prior_was_link is None
            else next_state.prior_was_link
        ),
        inherited_lines=list(next_state.inherited_lines),
        inherited_block_names=list(next_state.inherited_block_names),
        inherited_dependencies=dict(next_state.inherited_dependencies),
    )


class LinkHistory:
    """Stack-based history of link states.

    `pop` and `peek` never raise; on an empty stack they return an empty
    LinkState.
    """

    def __init__(self) -> None:
        self._stack: list[LinkState] = []

    def push(self, state: LinkState) -> None:
        """Push a state onto the history stack."""
        self._stack.append(state)

    def pop(self) -> LinkState:
        """Pop and return the most recent state, or an empty state."""
        if self._stack:
            return self._stack.pop()
        return LinkState.empty()

    def peek(self) -> LinkState:
        """Return the most recent state without removing it."""
        if self._stack:
            return self._stack[-1]
        return LinkState.empty()

    def prior_state_exists(self) -> bool:
        """Check if there is a state with a document to go back to."""
        return bool(self.peek().document_path)

    def clear(self) -> None:
        """Clear all navigation history."""
        self._stack.clear()

    def is_empty(self) -> bool:
        """Check if the history stack is empty."""
        return len(self._stack) == 0

    def __len__(self) -> int:
        return len(self._stack)
