"""Fragment records produced by the document parser."""

from dataclasses import dataclass, field
from enum import Enum


class FragmentType(str, Enum):
    """Fragment types understood by the resolver and the navigator."""

    DEFAULT = ""
    SHELL = "shell"
    LINK = "link"
    VARS = "vars"
    OPTS = "opts"
    YAML = "yaml"
    PORT = "port"
    HEADING = "heading"
    DIVIDER = "divider"
    TEXT = "text"


# Types handled entirely by the navigator; they contribute no script lines
NAVIGATION_TYPES = {FragmentType.LINK, FragmentType.OPTS, FragmentType.VARS}

# Types a user can pick from the menu
EXECUTABLE_TYPES = {
    FragmentType.DEFAULT,
    FragmentType.SHELL,
    FragmentType.LINK,
    FragmentType.VARS,
    FragmentType.OPTS,
    FragmentType.PORT,
}


@dataclass
class StreamBinding:
    """Target of a fragment's stdin or stdout: a variable or a file."""

    name: str
    is_variable: bool = False


@dataclass
class Fragment:
    """One named unit of document text with its metadata."""

    id: str
    type: FragmentType = FragmentType.DEFAULT
    public_name: str | None = None
    nickname: str | None = None
    body: list[str] = field(default_factory=list)
    requirements: list[str] = field(default_factory=list)
    wraps: list[str] = field(default_factory=list)
    call: str | None = None
    stdin_binding: StreamBinding | None = None
    stdout_binding: StreamBinding | None = None
    hierarchy_level: int | None = None
    token: str = ""
    shell: str = ""
    depth: int = 0
    extra: dict[str, str] = field(default_factory=dict)

    # Set on a helper copy spliced in front of a fragment that calls it
    applied_call: str | None = None

    # Computed by the fold engine
    collapsed: bool = False
    collapsible: bool = False
    hidden: bool = False

    @property
    def name(self) -> str | None:
        """Effective lookup name: nickname when present, else public name."""
        return self.nickname or self.public_name

    @property
    def level(self) -> int | None:
        return self.hierarchy_level

    def is_named(self, name: str) -> bool:
        return self.name is not None and self.name == name

    @property
    def title(self) -> str:
        """Text shown for this fragment in a menu."""
        if self.name:
            return self.name
        if self.body:
            return self.body[0].strip()
        return ""
