"""Session driver: wires parsing, menus, execution and navigation together."""

import logging
import sys
from pathlib import Path
from typing import Callable, Iterable, TextIO

from .config import Config
from .document import DocumentReader
from .executor import BlockExecutor
from .folding import FoldEngine, FoldMode
from .fragment import Fragment
from .menu import ApproveApp, BlockMenu
from .navigation import LinkHistory, LinkState
from .runner import STDERR, CommandResult, OutputLine, ProcessRunner
from .saved import AssetWriter
from .sequencer import Callbacks, Choice, NavigationLoop

logger = logging.getLogger(__name__)

Chooser = Callable[["Session", LinkState, LinkHistory], Choice | None]


class Session:
    """One interactive run over a document and the documents it links to.

    Owns the fold state and the set of documents already rendered, which
    selects the fold mode for each menu.
    """

    def __init__(
        self,
        config: Config,
        runner: ProcessRunner | None = None,
        chooser: Chooser | None = None,
        approver: Callable[[str], bool] | None = None,
        stdout: TextIO | None = None,
        stderr: TextIO | None = None,
    ) -> None:
        self.config = config
        self.stdout = stdout or sys.stdout
        self.stderr = stderr or sys.stderr
        self.reader = DocumentReader(
            collapse_token=config.fold.collapse_token,
            expand_token=config.fold.expand_token,
        )
        self.history = LinkHistory()
        self.fold_state: dict[str, int] = {}
        self.fold_engine = FoldEngine(self.fold_state, config.fold)
        self._rendered: set[str] = set()
        self.document: str | None = None
        self.fragments: list[Fragment] = []
        self.assets = AssetWriter(config.assets, shell=config.shell)
        self.chooser = chooser or show_menu
        self.executor = BlockExecutor(
            config,
            self.history,
            runner=runner,
            approve=approver or approve_with_dialog,
            report=self.report,
            on_line=self.echo,
            on_result=self.save_assets,
        )
        self.loop = NavigationLoop(self.history)

    def run(self, document: str, blocks: Iterable[str] = ()) -> LinkState:
        """Run the navigation loop starting at `document`."""
        callbacks = Callbacks(
            parse_document=self.parse_document,
            choose=lambda state, history: self.chooser(self, state, history),
            execute=self.execute,
            report=self.report,
        )
        return self.loop.run(document, list(blocks), callbacks)

    def parse_document(self, path: str) -> None:
        logger.debug("Parsing %s", path)
        self.fragments = self.reader.parse(Path(path))
        self.document = path

    def menu_fragments(self) -> list[Fragment]:
        """Fragments offered in the menu for the current document."""
        if self.config.menu_include_imported_blocks:
            return list(self.fragments)
        return [f for f in self.fragments if f.depth == 0]

    def fold_mode(self) -> FoldMode:
        """INITIALIZE the first time a document is shown, STEADY afterwards."""
        if self.document in self._rendered:
            return FoldMode.STEADY
        self._rendered.add(self.document)
        return FoldMode.INITIALIZE

    def execute(self, name: str, state: LinkState) -> LinkState:
        resolver = self.executor.make_resolver(self.fragments)
        return self.executor.execute(resolver, name, state)

    def report(self, message: str) -> None:
        print(f"! {message}", file=self.stderr)

    def echo(self, line: OutputLine) -> None:
        stream = self.stderr if line.stream == STDERR else self.stdout
        print(line.text, file=stream, flush=True)

    def save_assets(self, fragment: Fragment, script: str, result: CommandResult) -> None:
        self.assets.save(self.document or "", fragment.name or "", script, result)


def show_menu(session: Session, state: LinkState, history: LinkHistory) -> Choice | None:
    """Show the Textual block menu for the session's current document."""
    header = str(session.document or "")
    if state.inherited_lines:
        header += f"  [{len(state.inherited_lines)} inherited line(s)]"
    app = BlockMenu(
        session.menu_fragments(),
        session.fold_engine,
        session.fold_mode(),
        resolver=session.executor.make_resolver(session.fragments),
        inherited_block_names=state.inherited_block_names,
        header=header,
        can_go_back=history.prior_state_exists(),
    )
    return app.run()


def approve_with_dialog(script: str) -> bool:
    return bool(ApproveApp(script).run())
