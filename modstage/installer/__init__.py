"""Installer engine: parse, select, plan and apply FOMOD packages."""

from .conditions import (
    ALWAYS,
    NEVER,
    UNSET,
    AllOf,
    Always,
    AnyOf,
    ConditionExpr,
    EvaluationContext,
    FileState,
    FileStatus,
    FlagEquals,
    Not,
    VersionAtLeast,
    describe,
    evaluate,
    referenced_flags,
)
from .conflicts import (
    ConflictEntry,
    ConflictKind,
    Severity,
    normalize_relpath,
    plan_outputs,
    preview_conflicts,
    snapshot_owners,
)
from .models import (
    Group,
    GroupKind,
    InstallRule,
    Installer,
    InstallStep,
    LintFinding,
    ModuleInfo,
    OptionItem,
    OptionKind,
    OptionRef,
    RuleKind,
    TypePattern,
)
from .parser import (
    ParseResult,
    find_installer_root,
    find_numbered_root,
    installer_digest,
    lint_installer,
    load_installer,
    parse_installer,
)
from .persistence import (
    JsonRecordStore,
    PlanRecord,
    RecordStore,
    plan_from_record,
    record_from_plan,
    record_key,
    restore_selection,
)
from .planning import (
    FileOp,
    InstallPlan,
    OptionSelection,
    compile_plan,
    find_content_root,
    normalize_install_path,
    render_plan,
)
from .selection import (
    GroupView,
    OptionView,
    SelectionState,
    StepStatus,
    StepView,
    WizardView,
)
from .transaction import (
    InstalledManifest,
    Transaction,
    TransactionState,
    apply_plan,
)

__all__ = [
    "ALWAYS",
    "NEVER",
    "UNSET",
    "AllOf",
    "Always",
    "AnyOf",
    "ConditionExpr",
    "EvaluationContext",
    "FileState",
    "FileStatus",
    "FlagEquals",
    "Not",
    "VersionAtLeast",
    "describe",
    "evaluate",
    "referenced_flags",
    "ConflictEntry",
    "ConflictKind",
    "Severity",
    "normalize_relpath",
    "plan_outputs",
    "preview_conflicts",
    "snapshot_owners",
    "Group",
    "GroupKind",
    "InstallRule",
    "Installer",
    "InstallStep",
    "LintFinding",
    "ModuleInfo",
    "OptionItem",
    "OptionKind",
    "OptionRef",
    "RuleKind",
    "TypePattern",
    "ParseResult",
    "find_installer_root",
    "find_numbered_root",
    "installer_digest",
    "lint_installer",
    "load_installer",
    "parse_installer",
    "JsonRecordStore",
    "PlanRecord",
    "RecordStore",
    "plan_from_record",
    "record_from_plan",
    "record_key",
    "restore_selection",
    "FileOp",
    "InstallPlan",
    "OptionSelection",
    "compile_plan",
    "find_content_root",
    "normalize_install_path",
    "render_plan",
    "GroupView",
    "OptionView",
    "SelectionState",
    "StepStatus",
    "StepView",
    "WizardView",
    "InstalledManifest",
    "Transaction",
    "TransactionState",
    "apply_plan",
]
