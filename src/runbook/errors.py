"""Exceptions raised by runbook."""


class RunbookError(Exception):
    """Base class for runbook errors."""


class NamedFragmentNotFound(RunbookError):
    """A fragment was requested by a name that no fragment carries."""

    def __init__(self, name: str) -> None:
        super().__init__(f"Named code block `{name}` not found.")
        self.name = name


class LinkDirectiveError(RunbookError):
    """A link, vars or opts body could not be read as a mapping."""
