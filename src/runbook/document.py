"""Markdown document parsing into fragments, with cached nested imports."""

import logging
import re
from collections import OrderedDict
from dataclasses import dataclass
from pathlib import Path

from .fragment import Fragment, FragmentType, StreamBinding

logger = logging.getLogger(__name__)

# ```bash :name +requirement +{wrap} <$IN >out.txt %(helper <$A >$B)
FENCE_START_PATTERN = re.compile(
    r"^(?P<indent> *)`{3,}(?P<shell>[^`\s]*)(?: +:(?P<name>\S+))?(?P<rest>.*)$"
)
FENCE_END_PATTERN = re.compile(r"^ *`{3,}\s*$")
IMPORT_PATTERN = re.compile(r"^ *@import +(?P<name>.+?) *$")
CALL_PATTERN = re.compile(r"%\([^)]+\)")
STDIN_PATTERN = re.compile(r"^<(?P<var>\$)?(?P<name>[\-.\w]+)$")
STDOUT_PATTERN = re.compile(r"^>(?P<var>\$)?(?P<name>[\-.\w]+)$")
WRAP_PATTERN = re.compile(r"^\{.+\}$")
NICKNAME_PATTERN = re.compile(r"^\[.*\]$")

# Thematic breaks (---, ***, ___) become dividers one level below ###
DIVIDER_PATTERN = re.compile(r"^ {0,3}([-*_])(?: *\1){2,} *$")
DIVIDER_LEVEL = 4

SHELL_NAMES = {"bash", "sh", "zsh", "fish", "ksh", "dash"}

TYPE_NAMES = {
    "": FragmentType.DEFAULT,
    "shell": FragmentType.SHELL,
    "link": FragmentType.LINK,
    "vars": FragmentType.VARS,
    "opts": FragmentType.OPTS,
    "yaml": FragmentType.YAML,
    "port": FragmentType.PORT,
}


@dataclass
class _CacheEntry:
    mtime: float
    lines: list[str]


class FileCache:
    """Source lines of recently read documents, keyed by resolved path.

    A document and the files it imports share entries however they were
    reached. An entry whose file changed on disk is dropped on lookup.
    """

    def __init__(self, max_size: int = 10) -> None:
        self._entries: OrderedDict[Path, _CacheEntry] = OrderedDict()
        self._max_size = max_size

    def lines(self, path: Path) -> list[str] | None:
        """Cached lines for `path`, or None when missing or stale."""
        path = path.resolve()
        entry = self._entries.get(path)
        if entry is None:
            return None

        try:
            fresh = path.stat().st_mtime == entry.mtime
        except OSError:
            fresh = False
        if not fresh:
            logger.debug("Dropping stale cache entry for %s", path)
            del self._entries[path]
            return None

        self._entries.move_to_end(path)
        return entry.lines

    def store(self, path: Path, mtime: float, lines: list[str]) -> None:
        path = path.resolve()
        self._entries[path] = _CacheEntry(mtime, list(lines))
        self._entries.move_to_end(path)
        while len(self._entries) > self._max_size:
            self._entries.popitem(last=False)

    def __len__(self) -> int:
        return len(self._entries)


@dataclass
class SourceLine:
    """A line of a document after imports are spliced in."""

    text: str
    path: Path
    number: int
    depth: int = 0


class DocumentReader:
    """Read documents, expand `@import` lines and parse fragments."""

    def __init__(
        self,
        cache_size: int = 10,
        collapse_token: str = "+",
        expand_token: str = "-",
    ) -> None:
        self.cache = FileCache(max_size=cache_size)
        tokens = "|".join(re.escape(t) for t in (collapse_token, expand_token) if t)
        self.heading_pattern = re.compile(
            rf"^(?P<hashes>#{{1,6}})\s+(?:(?P<token>{tokens})\s*)?(?P<title>.*?)\s*$"
            if tokens
            else r"^(?P<hashes>#{1,6})\s+(?P<token>)(?P<title>.*?)\s*$"
        )

    def read_source(self, path: Path) -> list[str]:
        """Raw lines of one file, through the cache.

        Raises:
            OSError: if the file cannot be read.
        """
        cached = self.cache.lines(path)
        if cached is not None:
            return cached

        mtime = path.stat().st_mtime
        lines = path.read_text(encoding="utf-8").splitlines()
        self.cache.store(path, mtime, lines)
        return lines

    def read_lines(
        self, path: Path, depth: int = 0, _chain: tuple[Path, ...] = ()
    ) -> list[SourceLine]:
        """Lines of `path` with imported files spliced in place.

        Imports resolve relative to the importing file. A missing or
        circular import is logged and skipped.
        """
        path = path.resolve()
        lines = []
        for number, text in enumerate(self.read_source(path), start=1):
            match = IMPORT_PATTERN.match(text)
            if match is None:
                lines.append(SourceLine(text, path, number, depth))
                continue

            target = (path.parent / match.group("name")).resolve()
            if target in _chain or target == path:
                logger.warning("Skipping circular import of %s in %s", target, path)
                continue
            try:
                lines.extend(self.read_lines(target, depth + 1, _chain + (path,)))
            except OSError as e:
                logger.warning("Cannot import %s: %s", target, e)
        return lines

    def parse(self, path: Path | str) -> list[Fragment]:
        """Parse a document into fragments in document order."""
        return self.parse_lines(self.read_lines(Path(path)))

    def parse_lines(self, lines: list[SourceLine]) -> list[Fragment]:
        fragments: list[Fragment] = []
        paragraph: list[SourceLine] = []
        fence: tuple[SourceLine, re.Match] | None = None
        body: list[str] = []

        def flush_paragraph() -> None:
            if paragraph:
                first = paragraph[0]
                fragments.append(
                    Fragment(
                        id=_fragment_id(first),
                        type=FragmentType.TEXT,
                        body=[line.text for line in paragraph],
                        depth=first.depth,
                    )
                )
                paragraph.clear()

        for line in lines:
            if fence is not None:
                if FENCE_END_PATTERN.match(line.text):
                    fragments.append(self._code_fragment(*fence, body))
                    fence, body = None, []
                else:
                    indent = len(fence[1].group("indent"))
                    body.append(_dedent(line.text, indent))
                continue

            start = FENCE_START_PATTERN.match(line.text)
            if start is not None:
                flush_paragraph()
                fence = (line, start)
                continue

            if DIVIDER_PATTERN.match(line.text):
                flush_paragraph()
                fragments.append(
                    Fragment(
                        id=_fragment_id(line),
                        type=FragmentType.DIVIDER,
                        body=[line.text.strip()],
                        hierarchy_level=DIVIDER_LEVEL,
                        depth=line.depth,
                    )
                )
                continue

            heading = self.heading_pattern.match(line.text)
            if heading is not None:
                flush_paragraph()
                fragments.append(
                    Fragment(
                        id=_fragment_id(line),
                        type=FragmentType.HEADING,
                        body=[heading.group("title")],
                        hierarchy_level=len(heading.group("hashes")),
                        token=heading.group("token") or "",
                        depth=line.depth,
                    )
                )
                continue

            if line.text.strip():
                paragraph.append(line)
            else:
                flush_paragraph()

        if fence is not None:
            logger.warning("Unterminated code fence at %s:%d", fence[0].path, fence[0].number)
            fragments.append(self._code_fragment(*fence, body))
        flush_paragraph()
        return fragments

    def _code_fragment(self, line: SourceLine, start: re.Match, body: list[str]) -> Fragment:
        shell = start.group("shell").lower()
        if shell in TYPE_NAMES:
            fragment_type = TYPE_NAMES[shell]
            shell = ""
        elif shell in SHELL_NAMES:
            fragment_type = FragmentType.SHELL
        else:
            fragment_type = FragmentType.TEXT
            shell = ""

        name = start.group("name")
        fragment = Fragment(
            id=_fragment_id(line),
            type=fragment_type,
            body=list(body),
            shell=shell,
            depth=line.depth,
        )
        if name and NICKNAME_PATTERN.match(name):
            fragment.nickname = name
        elif name:
            fragment.public_name = name

        rest = start.group("rest")
        call = CALL_PATTERN.search(rest)
        if call is not None:
            fragment.call = call.group(0)
            rest = rest[: call.start()] + rest[call.end() :]

        for token in rest.split():
            stdin = STDIN_PATTERN.match(token)
            stdout = STDOUT_PATTERN.match(token)
            if token.startswith("+") and len(token) > 1:
                target = token[1:]
                if WRAP_PATTERN.match(target):
                    fragment.wraps.append(target)
                else:
                    fragment.requirements.append(target)
            elif stdin is not None:
                fragment.stdin_binding = StreamBinding(stdin.group("name"), bool(stdin.group("var")))
            elif stdout is not None:
                fragment.stdout_binding = StreamBinding(stdout.group("name"), bool(stdout.group("var")))
            elif "=" in token:
                key, _, value = token.partition("=")
                fragment.extra[key] = value
        return fragment


def _fragment_id(line: SourceLine) -> str:
    return f"{line.path}:{line.number}"


def _dedent(text: str, indent: int) -> str:
    if indent and text[:indent].strip() == "":
        return text[indent:]
    return text
