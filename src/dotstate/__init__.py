"""Core package for the dotstate project."""

from .actual import (
    ActualStateAbsent,
    ActualStateDir,
    ActualStateEntry,
    ActualStateFile,
    ActualStateSymlink,
    get_actual_state_entry,
)
from .cli import app, run
from .config import Config, ConfigError, KeePassXCConfig, Settings, load_config
from .engine import Reconciler
from .errors import (
    ApplyError,
    CommandError,
    DotstateError,
    MissingConfigError,
    NotManagedError,
    ParseError,
    PromptError,
    ReconcileCancelled,
    UnsupportedEntryError,
)
from .keepassxc import KeePassXC
from .lazy import LazyContents, LazyLinkname
from .models import (
    SCRIPT_ONCE_STATE_BUCKET,
    ApplyAction,
    ApplyResult,
    EntryKind,
    EntryState,
    IncludeSet,
    ScriptOnceState,
)
from .persistent_state import (
    DryRunPersistentState,
    MemoryPersistentState,
    PersistentState,
    TOMLPersistentState,
)
from .source import SourceState, read_source_state
from .system import DryRunSystem, DumpSystem, FileInfo, RealSystem, System
from .target import (
    TargetStateAbsent,
    TargetStateDir,
    TargetStateEntry,
    TargetStateFile,
    TargetStatePresent,
    TargetStateRenameDir,
    TargetStateScript,
    TargetStateSymlink,
)

__all__ = [
    "ActualStateAbsent",
    "ActualStateDir",
    "ActualStateEntry",
    "ActualStateFile",
    "ActualStateSymlink",
    "get_actual_state_entry",
    "Config",
    "ConfigError",
    "KeePassXCConfig",
    "Settings",
    "load_config",
    "Reconciler",
    "ApplyError",
    "CommandError",
    "DotstateError",
    "MissingConfigError",
    "NotManagedError",
    "ParseError",
    "PromptError",
    "ReconcileCancelled",
    "UnsupportedEntryError",
    "KeePassXC",
    "LazyContents",
    "LazyLinkname",
    "SCRIPT_ONCE_STATE_BUCKET",
    "ApplyAction",
    "ApplyResult",
    "EntryKind",
    "EntryState",
    "IncludeSet",
    "ScriptOnceState",
    "DryRunPersistentState",
    "MemoryPersistentState",
    "PersistentState",
    "TOMLPersistentState",
    "SourceState",
    "read_source_state",
    "DryRunSystem",
    "DumpSystem",
    "FileInfo",
    "RealSystem",
    "System",
    "TargetStateAbsent",
    "TargetStateDir",
    "TargetStateEntry",
    "TargetStateFile",
    "TargetStatePresent",
    "TargetStateRenameDir",
    "TargetStateScript",
    "TargetStateSymlink",
    "app",
    "run",
]
