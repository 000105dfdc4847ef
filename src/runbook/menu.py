"""Textual screens for picking a block and approving a script."""

from textual.app import App, ComposeResult
from textual.binding import Binding
from textual.containers import Horizontal, Vertical
from textual.widgets import Footer, Markdown, OptionList, Static
from textual.widgets.option_list import Option

from .errors import RunbookError
from .folding import FoldEngine, FoldMode
from .fragment import EXECUTABLE_TYPES, Fragment, FragmentType
from .resolver import Resolver
from .sequencer import Choice

FOLDED_SYMBOL = "▸"
UNFOLDED_SYMBOL = "▾"
DIVIDER_RULE = "─" * 24


def is_selectable(fragment: Fragment) -> bool:
    """Whether a fragment can be run from the menu."""
    return bool(fragment.name) and fragment.type in EXECUTABLE_TYPES


def menu_label(fragment: Fragment) -> str:
    """One menu line for a fragment."""
    if fragment.type in (FragmentType.HEADING, FragmentType.DIVIDER):
        symbol = ""
        if fragment.collapsible:
            symbol = FOLDED_SYMBOL if fragment.collapsed else UNFOLDED_SYMBOL
        if fragment.type == FragmentType.DIVIDER:
            return f"{symbol} {DIVIDER_RULE}".strip()
        indent = "  " * ((fragment.level or 1) - 1)
        return f"{indent}{symbol} {fragment.title}".rstrip()
    if fragment.type == FragmentType.TEXT:
        return f"  {fragment.title}"
    kind = fragment.type.value or fragment.shell or "shell"
    return f"  {fragment.name}  ({kind})"


def code_preview(code_lines: list[str], language: str = "bash") -> str:
    """Markdown source showing script lines as a fenced block."""
    body = "\n".join(code_lines)
    return f"```{language}\n{body}\n```"


class BlockMenu(App):
    """Menu of a document's fragments. Exits with a Choice, or None."""

    TITLE = "Runbook"

    CSS = """
    #menu-container {
        width: 100%;
        height: 1fr;
    }

    #block-list {
        width: 45%;
        height: 100%;
        border: solid $accent;
    }

    #preview {
        width: 55%;
        height: 100%;
        border: solid $success;
    }

    #menu-header {
        background: $primary-background;
        color: $accent;
        text-style: bold;
        padding: 0 1;
        height: 1;
    }
    """

    BINDINGS = [
        Binding("q", "quit_menu", "Quit"),
        Binding("escape", "go_back", "Back"),
        Binding("space", "toggle_fold", "Fold"),
    ]

    def __init__(
        self,
        fragments: list[Fragment],
        fold_engine: FoldEngine,
        mode: FoldMode,
        resolver: Resolver | None = None,
        inherited_block_names: list[str] | None = None,
        header: str = "",
        can_go_back: bool = False,
    ) -> None:
        super().__init__()
        self.fragments = fragments
        self.fold_engine = fold_engine
        self.mode = mode
        self.resolver = resolver
        self.inherited_block_names = inherited_block_names or []
        self.header = header
        self.can_go_back = can_go_back
        self._visible: list[Fragment] = []

    def compose(self) -> ComposeResult:
        yield Static(self.header, id="menu-header")
        with Horizontal(id="menu-container"):
            yield OptionList(id="block-list")
            with Vertical(id="preview"):
                yield Markdown(id="preview-markdown")
        yield Footer()

    def on_mount(self) -> None:
        self._refresh_options()
        self.query_one("#block-list", OptionList).focus()

    def _refresh_options(self, keep_id: str | None = None) -> None:
        option_list = self.query_one("#block-list", OptionList)
        self._visible = self.fold_engine.filter_hidden(self.fragments, self.mode)
        option_list.clear_options()
        option_list.add_options(
            [
                Option(
                    menu_label(f),
                    id=str(index),
                    disabled=not (is_selectable(f) or f.collapsible),
                )
                for index, f in enumerate(self._visible)
            ]
        )
        if keep_id is not None:
            for index, fragment in enumerate(self._visible):
                if fragment.id == keep_id:
                    option_list.highlighted = index
                    break

    def _fragment_for(self, option_id: str | None) -> Fragment | None:
        if option_id is None:
            return None
        return self._visible[int(option_id)]

    def on_option_list_option_highlighted(self, event: OptionList.OptionHighlighted) -> None:
        fragment = self._fragment_for(event.option_id)
        preview = self.query_one("#preview-markdown", Markdown)
        if fragment is None or not is_selectable(fragment) or self.resolver is None:
            preview.update("")
            return
        try:
            assembly = self.resolver.assemble(fragment.name, self.inherited_block_names)
        except RunbookError as e:
            preview.update(f"*{e}*")
            return
        lines = assembly.code_lines or fragment.body
        preview.update(code_preview(lines, "yaml" if not assembly.code_lines else "bash"))

    def on_option_list_option_selected(self, event: OptionList.OptionSelected) -> None:
        fragment = self._fragment_for(event.option_id)
        if fragment is None:
            return
        if is_selectable(fragment):
            self.exit(Choice.block(fragment.name))
        elif fragment.collapsible:
            self._toggle(fragment)

    def action_toggle_fold(self) -> None:
        option_list = self.query_one("#block-list", OptionList)
        if option_list.highlighted is None:
            return
        fragment = self._visible[option_list.highlighted]
        if fragment.collapsible:
            self._toggle(fragment)

    def _toggle(self, fragment: Fragment) -> None:
        self.fold_engine.toggle(fragment)
        self.mode = FoldMode.STEADY
        self._refresh_options(keep_id=fragment.id)

    def action_go_back(self) -> None:
        self.exit(Choice.back() if self.can_go_back else Choice.exit())

    def action_quit_menu(self) -> None:
        self.exit(Choice.exit())


class ApproveApp(App):
    """Show an assembled script and ask whether to run it."""

    TITLE = "Runbook"

    BINDINGS = [
        Binding("y", "approve", "Run"),
        Binding("n", "decline", "Cancel"),
        Binding("escape", "decline", "Cancel", show=False),
    ]

    def __init__(self, script: str, title: str = "") -> None:
        super().__init__()
        self.script = script
        self.prompt_title = title

    def compose(self) -> ComposeResult:
        yield Static(self.prompt_title or "Run this script?", id="approve-header")
        yield Markdown(code_preview(self.script.splitlines()))
        yield Footer()

    def action_approve(self) -> None:
        self.exit(True)

    def action_decline(self) -> None:
        self.exit(False)
