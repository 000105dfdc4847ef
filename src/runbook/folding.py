"""Fold engine: decides which menu entries are visible under folded headings."""

import logging
from dataclasses import replace
from enum import Enum
from typing import Callable, Iterable

from .config import FoldConfig
from .fragment import Fragment

logger = logging.getLogger(__name__)


class FoldMode(Enum):
    """INITIALIZE on the first render of a document, STEADY afterwards."""

    INITIALIZE = "initialize"
    STEADY = "steady"


class FoldEngine:
    """Single left-to-right pass computing collapsed/collapsible/hidden flags.

    `fold_state` maps fragment ids to the level they are folded at. It is
    shared with the caller and updated in place on every pass.
    """

    def __init__(self, fold_state: dict[str, int], config: FoldConfig | None = None) -> None:
        self.fold_state = fold_state
        self.config = config or FoldConfig()

    def _option(self, fragment: Fragment, suffix: str) -> bool:
        key = f"{fragment.type.value}{fragment.level}_{suffix}"
        return self.config.option(key)

    def is_collapsible(self, fragment: Fragment) -> bool:
        return self._option(fragment, "collapsible")

    def is_foldable_type(self, fragment: Fragment) -> bool:
        return fragment.type.value in self.config.collapsible_types

    def should_fold(self, fragment: Fragment, mode: FoldMode) -> bool:
        """Whether `fragment` starts a folded region in this pass."""
        if mode is FoldMode.STEADY:
            return bool(self.fold_state.get(fragment.id))

        by_default = self._option(fragment, "collapse")
        by_token = fragment.token == self.config.collapse_token
        return (by_default or by_token) and fragment.token != self.config.expand_token

    def step(
        self, fragment: Fragment, collapsed_level: int | None, mode: FoldMode
    ) -> tuple[Fragment, int | None]:
        """Annotate one fragment and return it with the next cursor value."""
        collapsible = self.is_collapsible(fragment)
        collapsed = fragment.collapsed

        if collapsed_level is None:
            collapsed = self.should_fold(fragment, mode)
            if collapsed:
                collapsed_level = fragment.level
            hidden = False

        elif fragment.level is None:
            hidden = True

        elif fragment.level > collapsed_level:
            # Inside a folded region; track this heading's own fold anyway
            collapsed = self.should_fold(fragment, mode)
            if collapsed:
                collapsed_level = fragment.level
            hidden = True

        elif collapsible:
            collapsed = self.should_fold(fragment, mode)
            collapsed_level = fragment.level if collapsed else None
            hidden = False

        elif self.is_foldable_type(fragment):
            collapsible = False
            collapsed = False
            hidden = False

        else:
            hidden = True

        if collapsed:
            self.fold_state[fragment.id] = fragment.level
        else:
            self.fold_state.pop(fragment.id, None)

        annotated = replace(
            fragment, collapsed=collapsed, collapsible=collapsible, hidden=hidden
        )
        return annotated, collapsed_level

    def analyze(
        self,
        fragments: Iterable[Fragment],
        mode: FoldMode = FoldMode.STEADY,
        on_each: Callable[[Fragment, int | None], None] | None = None,
    ) -> list[Fragment]:
        """Return annotated copies of every fragment.

        `on_each` is called with each annotated fragment and the cursor
        value after it.
        """
        annotated = []
        collapsed_level = None
        for fragment in fragments:
            result, collapsed_level = self.step(fragment, collapsed_level, mode)
            if on_each is not None:
                on_each(result, collapsed_level)
            annotated.append(result)
        return annotated

    def filter_hidden(
        self, fragments: Iterable[Fragment], mode: FoldMode = FoldMode.STEADY
    ) -> list[Fragment]:
        """Annotate and drop the fragments hidden by a folded ancestor."""
        return [f for f in self.analyze(fragments, mode) if not f.hidden]

    def toggle(self, fragment: Fragment) -> bool:
        """Flip the fold state of a heading. Returns True if now folded."""
        if self.fold_state.get(fragment.id):
            del self.fold_state[fragment.id]
            logger.debug("Unfolded %s", fragment.id)
            return False
        self.fold_state[fragment.id] = fragment.level or 1
        logger.debug("Folded %s at level %s", fragment.id, fragment.level)
        return True
