"""Configuration loading and defaults for Runbook."""

import tomllib
from dataclasses import dataclass, field, fields
from pathlib import Path


def get_config_dir() -> Path:
    """Get the runbook config directory (XDG-style)."""
    return Path.home() / ".config" / "runbook"


def get_config_path() -> Path:
    """Get the config file path."""
    return get_config_dir() / "config.toml"


def get_default_data_dir() -> Path:
    """Get the default data directory for saved scripts and output."""
    return Path.home() / ".local" / "share" / "runbook"


def _default_fold_options() -> dict[str, bool]:
    return {
        "divider4_collapse": False,
        "divider4_collapsible": True,
        "heading1_collapse": False,
        "heading1_collapsible": True,
        "heading2_collapse": False,
        "heading2_collapsible": True,
        "heading3_collapse": False,
        "heading3_collapsible": True,
    }


@dataclass
class FoldConfig:
    """Menu folding configuration."""

    collapse_token: str = "+"
    expand_token: str = "-"
    collapsible_types: list[str] = field(default_factory=lambda: ["heading", "divider"])
    options: dict[str, bool] = field(default_factory=_default_fold_options)

    def option(self, key: str) -> bool:
        """Look up a `{type}{level}_collapse(ible)` switch; missing means False."""
        return bool(self.options.get(key, False))


@dataclass
class OutputConfig:
    """Templates used when generating script text and filtering output."""

    port_format: str = "{key}={value}"
    query_command: str = "yq"
    code_label_format_above: str = ""
    code_label_format_below: str = ""
    assignment_begin: str = ""
    assignment_end: str = ""
    assignment_match: str = ""
    assignment_format: str = ""


@dataclass
class AssetConfig:
    """Saved script and output log configuration."""

    executed_script: bool = False
    execution_output: bool = False
    script_directory: Path = field(default_factory=lambda: get_default_data_dir() / "scripts")
    output_directory: Path = field(default_factory=lambda: get_default_data_dir() / "logs")


@dataclass
class Config:
    """Application configuration."""

    shell: str = "bash"
    prompt_approve: bool = False
    relay_stdin: bool = True
    timeout: float = 0.0
    menu_include_imported_blocks: bool = False
    log_level: str = "WARNING"
    data_directory: Path = field(default_factory=get_default_data_dir)
    fold: FoldConfig = field(default_factory=FoldConfig)
    output: OutputConfig = field(default_factory=OutputConfig)
    assets: AssetConfig = field(default_factory=AssetConfig)
    extra: dict[str, object] = field(default_factory=dict)

    def apply_overrides(self, data: dict) -> list[str]:
        """Merge key/value overrides (from an opts block) into this config.

        Returns the keys that were applied.
        """
        applied = []
        sections = {
            "fold": self.fold,
            "output": self.output,
            "assets": self.assets,
        }
        scalar_names = {
            f.name for f in fields(self) if f.name not in sections and f.name != "extra"
        }

        for key, value in data.items():
            key = str(key)
            if key.endswith("_collapse") or key.endswith("_collapsible"):
                self.fold.options[key] = bool(value)
            elif key in scalar_names:
                setattr(self, key, _coerce(getattr(self, key), value))
            elif key in sections and isinstance(value, dict):
                section = sections[key]
                for sub_key, sub_value in value.items():
                    if hasattr(section, sub_key):
                        setattr(section, sub_key, _coerce(getattr(section, sub_key), sub_value))
                    elif key == "fold":
                        section.options[sub_key] = bool(sub_value)
            else:
                section = next(
                    (s for s in sections.values() if key in {f.name for f in fields(s)}),
                    None,
                )
                if section is not None:
                    setattr(section, key, _coerce(getattr(section, key), value))
                else:
                    self.extra[key] = value
            applied.append(key)

        return applied

    @classmethod
    def load(cls, config_path: Path | None = None) -> "Config":
        """Load configuration from file or create defaults."""
        if config_path is None:
            config_path = get_config_path()

            # Ensure config directory exists
            config_dir = get_config_dir()
            config_dir.mkdir(parents=True, exist_ok=True)

            if not config_path.exists():
                # Create default config file
                default_config = cls()
                default_config.save()
                return default_config

        # Load existing config
        with open(config_path, "rb") as f:
            data = tomllib.load(f)

        # Parse data_directory (saved scripts and logs default under it)
        data_dir = data.get("data_directory", str(get_default_data_dir()))
        data_directory = Path(data_dir).expanduser()

        # Parse fold config
        fold_data = data.get("fold", {})
        fold_options = _default_fold_options()
        for key, value in fold_data.items():
            if key.endswith("_collapse") or key.endswith("_collapsible"):
                fold_options[key] = bool(value)
        fold = FoldConfig(
            collapse_token=fold_data.get("collapse_token", "+"),
            expand_token=fold_data.get("expand_token", "-"),
            collapsible_types=fold_data.get("collapsible_types", ["heading", "divider"]),
            options=fold_options,
        )

        # Parse output config
        out_data = data.get("output", {})
        output = OutputConfig(
            port_format=out_data.get("port_format", "{key}={value}"),
            query_command=out_data.get("query_command", "yq"),
            code_label_format_above=out_data.get("code_label_format_above", ""),
            code_label_format_below=out_data.get("code_label_format_below", ""),
            assignment_begin=out_data.get("assignment_begin", ""),
            assignment_end=out_data.get("assignment_end", ""),
            assignment_match=out_data.get("assignment_match", ""),
            assignment_format=out_data.get("assignment_format", ""),
        )

        # Parse assets config
        asset_data = data.get("assets", {})
        assets = AssetConfig(
            executed_script=asset_data.get("executed_script", False),
            execution_output=asset_data.get("execution_output", False),
            script_directory=Path(
                asset_data.get("script_directory", str(data_directory / "scripts"))
            ).expanduser(),
            output_directory=Path(
                asset_data.get("output_directory", str(data_directory / "logs"))
            ).expanduser(),
        )

        return cls(
            shell=data.get("shell", "bash"),
            prompt_approve=data.get("prompt_approve", False),
            relay_stdin=data.get("relay_stdin", True),
            timeout=float(data.get("timeout", 0)),
            menu_include_imported_blocks=data.get("menu_include_imported_blocks", False),
            log_level=data.get("log_level", "WARNING"),
            data_directory=data_directory,
            fold=fold,
            output=output,
            assets=assets,
        )

    def save(self, config_path: Path | None = None) -> None:
        """Save configuration to file."""
        if config_path is None:
            config_path = get_config_path()
        config_path.parent.mkdir(parents=True, exist_ok=True)

        # Build TOML content manually (tomllib is read-only)
        lines = [
            '# Runbook Configuration',
            '',
            '# Shell used to run assembled scripts',
            f'shell = "{self.shell}"',
            '',
            '# Show assembled code and ask before running it',
            f'prompt_approve = {str(self.prompt_approve).lower()}',
            '',
            '# Forward terminal input to running scripts',
            f'relay_stdin = {str(self.relay_stdin).lower()}',
            '',
            '# Seconds before a running script is killed (0 = never)',
            f'timeout = {self.timeout}',
            '',
            '# List blocks from @import-ed files in the menu',
            f'menu_include_imported_blocks = {str(self.menu_include_imported_blocks).lower()}',
            '',
            f'log_level = "{self.log_level}"',
            '',
            '# Directory for saved scripts and output logs',
            '# Default: ~/.local/share/runbook',
            f'data_directory = "{self.data_directory}"',
            '',
            '# Menu folding: {type}{level}_collapse / {type}{level}_collapsible',
            '[fold]',
            f'collapse_token = "{self.fold.collapse_token}"',
            f'expand_token = "{self.fold.expand_token}"',
        ]

        types_str = ", ".join(f'"{t}"' for t in self.fold.collapsible_types)
        lines.append(f'collapsible_types = [{types_str}]')
        for key in sorted(self.fold.options):
            lines.append(f'{key} = {str(self.fold.options[key]).lower()}')

        lines.extend([
            '',
            '[output]',
            f'port_format = "{self.output.port_format}"',
            f'query_command = "{self.output.query_command}"',
            f"code_label_format_above = '{self.output.code_label_format_above}'",
            f"code_label_format_below = '{self.output.code_label_format_below}'",
            f"assignment_begin = '{self.output.assignment_begin}'",
            f"assignment_end = '{self.output.assignment_end}'",
            f"assignment_match = '{self.output.assignment_match}'",
            f"assignment_format = '{self.output.assignment_format}'",
            '',
            '[assets]',
            f'executed_script = {str(self.assets.executed_script).lower()}',
            f'execution_output = {str(self.assets.execution_output).lower()}',
            f'script_directory = "{self.assets.script_directory}"',
            f'output_directory = "{self.assets.output_directory}"',
        ])

        config_path.write_text("\n".join(lines) + "\n")


def _coerce(current, value):
    """Convert an override value to the type of the field it replaces."""
    if isinstance(current, bool):
        if isinstance(value, str):
            return value.strip().lower() in ("1", "true", "yes", "on")
        return bool(value)
    if isinstance(current, Path):
        return Path(str(value)).expanduser()
    if isinstance(current, (int, float)) and not isinstance(value, bool):
        try:
            return type(current)(value)
        except (TypeError, ValueError):
            return current
    if isinstance(current, str):
        return str(value)
    return value
