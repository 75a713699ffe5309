"""FOMOD installer document parser.

Turns ``fomod/ModuleConfig.xml`` (and optionally ``fomod/info.xml``) into an
``Installer``. Unknown elements and attributes are reported as warnings and
skipped; structural problems raise ``ParseError`` with the element path.
Nothing here evaluates conditions or resolves file paths.
"""

import codecs
import hashlib
import logging
import re
import xml.etree.ElementTree as ET
from collections import deque
from dataclasses import dataclass, field, replace
from pathlib import Path

from modstage.errors import ParseError, ParseWarning

from .conditions import (
    ALWAYS,
    ConditionExpr,
    FileState,
    FileStatus,
    FlagEquals,
    VersionAtLeast,
    all_of,
    any_of,
    negate,
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
    RuleKind,
    TypePattern,
)

_logging = logging.getLogger(__name__)

FOMOD_DIR = "fomod"
MODULE_CONFIG = "moduleconfig.xml"
INFO_FILE = "info.xml"

_XML_DECLARATION = re.compile(r"^\s*<\?xml[^>]*\?>")

# Version subjects for the FOMOD version dependency elements.
_VERSION_ELEMENTS = {
    "gameDependency": "game",
    "fommDependency": "mod_manager",
    "foseDependency": "script_extender",
}

# Accepted without effect: presentation hints and ordering the model keeps implicitly.
_IGNORED_ATTRIBUTES = {"position", "colour", "height", "showImage", "showFade"}


@dataclass
class ParseResult:
    installer: Installer
    warnings: list[ParseWarning] = field(default_factory=list)


def decode_document(data: bytes, warnings: list[ParseWarning], label: str) -> str:
    """Decode installer XML bytes, honouring BOMs.

    Installer documents are frequently UTF-16 with a BOM; anything without a
    BOM is read as UTF-8, falling back to a lossy decode with a warning.
    """
    if data.startswith(codecs.BOM_UTF16_LE):
        text = data[len(codecs.BOM_UTF16_LE):].decode("utf-16-le", errors="replace")
    elif data.startswith(codecs.BOM_UTF16_BE):
        text = data[len(codecs.BOM_UTF16_BE):].decode("utf-16-be", errors="replace")
    elif data.startswith(codecs.BOM_UTF8):
        text = data[len(codecs.BOM_UTF8):].decode("utf-8", errors="replace")
    else:
        try:
            text = data.decode("utf-8")
        except UnicodeDecodeError:
            warnings.append(
                ParseWarning(label, "document is not valid UTF-8, using lossy decoding")
            )
            text = data.decode("utf-8", errors="replace")

    # The declaration may name an encoding that no longer applies to the decoded text.
    return _XML_DECLARATION.sub("", text.lstrip("﻿"), count=1)


def _local(name: str) -> str:
    return name.rsplit("}", 1)[-1]


class _DocumentReader:
    """Walks one XML tree, tracking element paths and collecting warnings."""

    def __init__(self, warnings: list[ParseWarning]):
        self.warnings = warnings

    def warn(self, path: str, message: str) -> None:
        _logging.warning(f"{path}: {message}")
        self.warnings.append(ParseWarning(path, message))

    def children(self, element: ET.Element, path: str, known: set[str]):
        """Yield (tag, child, child_path) for known children; warn on the rest."""
        counts: dict[str, int] = {}
        for child in element:
            if not isinstance(child.tag, str):
                continue
            tag = _local(child.tag)
            index = counts.get(tag, 0)
            counts[tag] = index + 1
            child_path = f"{path}/{tag}[{index}]"
            if tag not in known:
                self.warn(child_path, f"unknown element '{tag}' ignored")
                continue
            yield tag, child, child_path

    def attributes(self, element: ET.Element, path: str, known: set[str]) -> dict:
        values = {}
        for raw_name, value in element.attrib.items():
            if raw_name.startswith("{"):
                continue
            if raw_name in known:
                values[raw_name] = value
            elif raw_name not in _IGNORED_ATTRIBUTES:
                self.warn(path, f"unknown attribute '{raw_name}' ignored")
        return values

    def required(self, attrs: dict, name: str, path: str, entity: str) -> str:
        value = attrs.get(name)
        if value is None or not value.strip():
            raise ParseError(path, f"{entity} field '{name}' is required")
        return value


class _ModuleConfigReader(_DocumentReader):
    def read(self, root: ET.Element, digest: str) -> Installer:
        path = "config"
        if _local(root.tag) != "config":
            raise ParseError(_local(root.tag), "root element must be 'config'")
        self.attributes(root, path, set())

        module_name = ""
        image = None
        module_condition: ConditionExpr = ALWAYS
        required_rules: tuple[InstallRule, ...] = ()
        conditional_rules: list[InstallRule] = []
        steps: tuple[InstallStep, ...] = ()

        known = {
            "moduleName",
            "moduleImage",
            "moduleDependencies",
            "requiredInstallFiles",
            "installSteps",
            "conditionalFileInstalls",
        }
        for tag, child, child_path in self.children(root, path, known):
            if tag == "moduleName":
                self.attributes(child, child_path, set())
                module_name = (child.text or "").strip()
            elif tag == "moduleImage":
                attrs = self.attributes(child, child_path, {"path"})
                image = attrs.get("path") or None
            elif tag == "moduleDependencies":
                module_condition = self.composite(child, child_path)
            elif tag == "requiredInstallFiles":
                required_rules = self.file_list(child, child_path)
            elif tag == "installSteps":
                steps = self.install_steps(child, child_path)
            elif tag == "conditionalFileInstalls":
                conditional_rules.extend(self.conditional_installs(child, child_path))

        return Installer(
            module_name=module_name,
            steps=steps,
            required_rules=required_rules,
            conditional_rules=tuple(conditional_rules),
            module_condition=module_condition,
            image=image,
            digest=digest,
        )

    def install_steps(self, element: ET.Element, path: str) -> tuple[InstallStep, ...]:
        attrs = self.attributes(element, path, {"order"})
        steps = []
        for _, child, child_path in self.children(element, path, {"installStep"}):
            steps.append(self.install_step(child, child_path))
        return tuple(self.ordered(steps, attrs.get("order"), path))

    def install_step(self, element: ET.Element, path: str) -> InstallStep:
        attrs = self.attributes(element, path, {"name"})
        name = self.required(attrs, "name", path, "Install step")
        visible: ConditionExpr = ALWAYS
        groups: tuple[Group, ...] = ()
        for tag, child, child_path in self.children(
            element, path, {"visible", "optionalFileGroups"}
        ):
            if tag == "visible":
                visible = self.composite(child, child_path)
            else:
                group_attrs = self.attributes(child, child_path, {"order"})
                parsed = [
                    self.group(g, g_path)
                    for _, g, g_path in self.children(child, child_path, {"group"})
                ]
                groups = tuple(self.ordered(parsed, group_attrs.get("order"), child_path))
        return InstallStep(name=name, groups=groups, visible=visible)

    def group(self, element: ET.Element, path: str) -> Group:
        attrs = self.attributes(element, path, {"name", "type"})
        name = self.required(attrs, "name", path, "Group")
        raw_kind = self.required(attrs, "type", path, f"Group '{name}'")
        try:
            kind = GroupKind(raw_kind.strip())
        except ValueError:
            allowed = ", ".join(k.value for k in GroupKind)
            raise ParseError(
                path, f"Group '{name}' type '{raw_kind}' is invalid (expected one of: {allowed})"
            )

        options: list[OptionItem] = []
        for _, plugins, plugins_path in self.children(element, path, {"plugins"}):
            plugin_attrs = self.attributes(plugins, plugins_path, {"order"})
            parsed = [
                self.option(p, p_path)
                for _, p, p_path in self.children(plugins, plugins_path, {"plugin"})
            ]
            options.extend(self.ordered(parsed, plugin_attrs.get("order"), plugins_path))
        return Group(name=name, kind=kind, options=tuple(options))

    def option(self, element: ET.Element, path: str) -> OptionItem:
        attrs = self.attributes(element, path, {"name"})
        name = self.required(attrs, "name", path, "Option")
        description = ""
        image = None
        flags: list[tuple[str, str]] = []
        rules: tuple[InstallRule, ...] = ()
        kind = OptionKind.OPTIONAL
        patterns: tuple[TypePattern, ...] = ()

        known = {"description", "image", "files", "conditionFlags", "typeDescriptor"}
        for tag, child, child_path in self.children(element, path, known):
            if tag == "description":
                description = (child.text or "").strip()
            elif tag == "image":
                image = self.attributes(child, child_path, {"path"}).get("path") or None
            elif tag == "files":
                rules = self.file_list(child, child_path)
            elif tag == "conditionFlags":
                for _, flag, flag_path in self.children(child, child_path, {"flag"}):
                    flag_attrs = self.attributes(flag, flag_path, {"name"})
                    flag_name = self.required(flag_attrs, "name", flag_path, "Flag")
                    flags.append((flag_name, (flag.text or "").strip()))
            elif tag == "typeDescriptor":
                kind, patterns = self.type_descriptor(child, child_path)

        return OptionItem(
            name=name,
            description=description,
            image=image,
            kind=kind,
            patterns=patterns,
            visible=_visibility(kind, patterns),
            flags=tuple(flags),
            rules=rules,
        )

    def type_descriptor(
        self, element: ET.Element, path: str
    ) -> tuple[OptionKind, tuple[TypePattern, ...]]:
        kind = OptionKind.OPTIONAL
        patterns: list[TypePattern] = []
        for tag, child, child_path in self.children(
            element, path, {"type", "dependencyType"}
        ):
            if tag == "type":
                kind = self.option_kind(child, child_path)
                continue
            for sub_tag, sub, sub_path in self.children(
                child, child_path, {"defaultType", "patterns"}
            ):
                if sub_tag == "defaultType":
                    kind = self.option_kind(sub, sub_path)
                    continue
                for _, pattern, pattern_path in self.children(sub, sub_path, {"pattern"}):
                    patterns.append(self.type_pattern(pattern, pattern_path))
        return kind, tuple(patterns)

    def type_pattern(self, element: ET.Element, path: str) -> TypePattern:
        condition: ConditionExpr | None = None
        kind: OptionKind | None = None
        for tag, child, child_path in self.children(element, path, {"dependencies", "type"}):
            if tag == "dependencies":
                condition = self.composite(child, child_path)
            else:
                kind = self.option_kind(child, child_path)
        if kind is None:
            raise ParseError(path, "Pattern field 'type' is required")
        return TypePattern(condition=condition or ALWAYS, kind=kind)

    def option_kind(self, element: ET.Element, path: str) -> OptionKind:
        attrs = self.attributes(element, path, {"name"})
        raw = self.required(attrs, "name", path, "Type")
        try:
            return OptionKind(raw.strip())
        except ValueError:
            allowed = ", ".join(k.value for k in OptionKind)
            raise ParseError(path, f"Type '{raw}' is invalid (expected one of: {allowed})")

    def file_list(
        self, element: ET.Element, path: str, condition: ConditionExpr = ALWAYS
    ) -> tuple[InstallRule, ...]:
        self.attributes(element, path, set())
        rules = []
        for tag, child, child_path in self.children(element, path, {"file", "folder"}):
            attrs = self.attributes(
                child,
                child_path,
                {"source", "destination", "priority", "alwaysInstall", "installIfUsable"},
            )
            source = self.required(attrs, "source", child_path, tag.capitalize())
            raw_priority = attrs.get("priority", "0").strip() or "0"
            try:
                priority = int(raw_priority)
            except ValueError:
                raise ParseError(child_path, f"priority '{raw_priority}' must be an integer")
            rules.append(
                InstallRule(
                    source=source,
                    # An omitted destination installs to the source path.
                    destination=attrs.get("destination", source),
                    kind=RuleKind.FILE if tag == "file" else RuleKind.FOLDER,
                    condition=condition,
                    priority=priority,
                    always_install=_truthy(attrs.get("alwaysInstall")),
                    install_if_usable=_truthy(attrs.get("installIfUsable")),
                )
            )
        return tuple(rules)

    def conditional_installs(self, element: ET.Element, path: str) -> list[InstallRule]:
        rules: list[InstallRule] = []
        for _, patterns, patterns_path in self.children(element, path, {"patterns"}):
            for _, pattern, pattern_path in self.children(patterns, patterns_path, {"pattern"}):
                condition: ConditionExpr = ALWAYS
                files = None
                for tag, child, child_path in self.children(
                    pattern, pattern_path, {"dependencies", "files"}
                ):
                    if tag == "dependencies":
                        condition = self.composite(child, child_path)
                    else:
                        files = (child, child_path)
                if files is not None:
                    rules.extend(self.file_list(files[0], files[1], condition))
        return rules

    def composite(self, element: ET.Element, path: str) -> ConditionExpr:
        attrs = self.attributes(element, path, {"operator"})
        operator = attrs.get("operator", "And").strip()
        if operator not in ("And", "Or"):
            raise ParseError(path, f"operator '{operator}' is invalid (expected And or Or)")

        known = {"flagDependency", "fileDependency", "dependencies", *_VERSION_ELEMENTS}
        terms: list[ConditionExpr] = []
        for tag, child, child_path in self.children(element, path, known):
            if tag == "flagDependency":
                dep = self.attributes(child, child_path, {"flag", "value"})
                flag = self.required(dep, "flag", child_path, "Flag dependency")
                if "value" not in dep:
                    raise ParseError(child_path, "Flag dependency field 'value' is required")
                terms.append(FlagEquals(flag, dep["value"]))
            elif tag == "fileDependency":
                dep = self.attributes(child, child_path, {"file", "state"})
                file_name = self.required(dep, "file", child_path, "File dependency")
                raw_state = self.required(dep, "state", child_path, "File dependency")
                try:
                    terms.append(FileState(file_name, FileStatus.parse(raw_state)))
                except ValueError as e:
                    raise ParseError(child_path, str(e))
            elif tag == "dependencies":
                terms.append(self.composite(child, child_path))
            else:
                dep = self.attributes(child, child_path, {"version"})
                version = self.required(dep, "version", child_path, tag)
                terms.append(VersionAtLeast(_VERSION_ELEMENTS[tag], version))

        if not terms:
            return ALWAYS
        if operator == "Or":
            return any_of(terms)
        return all_of(terms)

    def ordered(self, items: list, order: str | None, path: str) -> list:
        """Apply a FOMOD ``order`` attribute; absent or Explicit keeps document order."""
        if order is None or order == "Explicit":
            return items
        if order == "Ascending":
            return sorted(items, key=lambda item: item.name.lower())
        if order == "Descending":
            return sorted(items, key=lambda item: item.name.lower(), reverse=True)
        self.warn(path, f"unknown order '{order}', keeping document order")
        return items


class _InfoReader(_DocumentReader):
    _FIELDS = {
        "Name": "name",
        "Author": "author",
        "Version": "version",
        "Website": "website",
        "Description": "description",
    }
    _KNOWN_EXTRAS = {"Groups", "Id", "CategoryId", "LastKnownVersion"}

    def read(self, root: ET.Element) -> ModuleInfo:
        path = _local(root.tag)
        values: dict[str, str] = {}
        groups: list[str] = []
        known = set(self._FIELDS) | self._KNOWN_EXTRAS
        for tag, child, child_path in self.children(root, path, known):
            if tag == "Groups":
                groups.extend(
                    (e.text or "").strip()
                    for _, e, _ in self.children(child, child_path, {"element"})
                )
            elif tag in self._FIELDS:
                values[self._FIELDS[tag]] = (child.text or "").strip()
        return ModuleInfo(groups=tuple(g for g in groups if g), **values)


def _truthy(value: str | None) -> bool:
    return value is not None and value.strip().lower() in ("true", "1")


def _visibility(kind: OptionKind, patterns: tuple[TypePattern, ...]) -> ConditionExpr:
    """Condition under which an option's resolved kind is not NotUsable.

    Patterns are tried in order and the first match wins, so pattern ``i``
    only decides the kind when none of the earlier patterns matched.
    """
    unusable: list[ConditionExpr] = []
    earlier: list[ConditionExpr] = []
    for pattern in patterns:
        if pattern.kind is OptionKind.NOT_USABLE:
            unusable.append(all_of([*(negate(c) for c in earlier), pattern.condition]))
        earlier.append(pattern.condition)
    if kind is OptionKind.NOT_USABLE:
        unusable.append(all_of([negate(c) for c in earlier]))
    if not unusable:
        return ALWAYS
    return negate(any_of(unusable))


def _parse_xml(text: str, label: str) -> ET.Element:
    try:
        return ET.fromstring(text)
    except ET.ParseError as e:
        line, column = e.position
        raise ParseError(label, f"malformed XML at line {line}, col {column + 1}: {e}")


def installer_digest(module_config: bytes | None, info: bytes | None = None) -> str:
    """SHA-256 over the raw installer documents."""
    hasher = hashlib.sha256()
    for part in (module_config, info):
        data = part or b""
        hasher.update(len(data).to_bytes(8, "big"))
        hasher.update(data)
    return hasher.hexdigest()


def parse_installer(module_config: bytes | None, info: bytes | None = None) -> ParseResult:
    """Parse installer documents into an ``Installer``.

    Args:
        module_config: Raw ``ModuleConfig.xml`` bytes, or None when the
            package only ships ``info.xml``
        info: Raw ``info.xml`` bytes, if present

    Returns:
        ParseResult with the installer and any non-fatal warnings

    Raises:
        ParseError: On malformed XML or a structurally invalid installer
    """
    if module_config is None and info is None:
        raise ParseError("", "no installer documents supplied")

    warnings: list[ParseWarning] = []
    digest = installer_digest(module_config, info)

    module_info = None
    if info is not None:
        info_text = decode_document(info, warnings, "info.xml")
        module_info = _InfoReader(warnings).read(_parse_xml(info_text, "info.xml"))

    if module_config is None:
        installer = Installer(
            module_name=module_info.name if module_info else "",
            info=module_info,
            digest=digest,
        )
        return ParseResult(installer, warnings)

    config_text = decode_document(module_config, warnings, "ModuleConfig.xml")
    root = _parse_xml(config_text, "ModuleConfig.xml")
    installer = _ModuleConfigReader(warnings).read(root, digest)
    if module_info is not None:
        installer = replace(installer, info=module_info)

    _logging.debug(f"Parsed installer '{installer.display_name}': {installer.summary()}")
    return ParseResult(installer, warnings)


def _find_child(directory: Path, name: str, want_dir: bool) -> Path | None:
    """Case-insensitive lookup of a direct child."""
    target = name.lower()
    try:
        entries = sorted(directory.iterdir())
    except OSError:
        return None
    for entry in entries:
        if entry.name.lower() == target and entry.is_dir() == want_dir:
            return entry
    return None


def find_installer_root(staging_root: Path) -> Path | None:
    """Breadth-first search for the directory that holds a ``fomod`` folder.

    The archive may wrap the real package in one or more folders. Entries are
    visited in sorted order so the result does not depend on directory
    listing order.
    """
    queue = deque([staging_root])
    visited: set[Path] = set()
    while queue:
        current = queue.popleft()
        resolved = current.resolve()
        if resolved in visited:
            continue
        visited.add(resolved)

        fomod = _find_child(current, FOMOD_DIR, want_dir=True)
        if fomod is not None and (
            _find_child(fomod, MODULE_CONFIG, want_dir=False)
            or _find_child(fomod, INFO_FILE, want_dir=False)
        ):
            return current

        try:
            subdirs = sorted(p for p in current.iterdir() if p.is_dir())
        except OSError as e:
            _logging.debug(f"Cannot read directory {current}: {e}")
            continue
        queue.extend(subdirs)
    return None


def is_numbered_component(name: str) -> bool:
    return len(name) >= 2 and name[0].isdigit() and name[1].isdigit()


def numbered_components(directory: Path) -> list[str]:
    """Sorted names of ``NN...`` component folders directly under ``directory``."""
    try:
        entries = list(directory.iterdir())
    except OSError as e:
        _logging.debug(f"Cannot read directory {directory}: {e}")
        return []
    return sorted(e.name for e in entries if e.is_dir() and is_numbered_component(e.name))


def find_numbered_root(staging_root: Path) -> Path | None:
    """Directory holding two or more numbered component folders.

    Packages without a ``fomod`` folder often split their content into
    ``00 Core``, ``01 Optional ...`` folders. Single-directory wrappers are
    descended.
    """
    current = staging_root
    while current.is_dir():
        if len(numbered_components(current)) >= 2:
            return current
        entries = list(current.iterdir())
        if len(entries) != 1 or not entries[0].is_dir():
            return None
        current = entries[0]
    return None


def numbered_installer(root: Path) -> Installer:
    """One step offering every numbered folder; ``00`` folders are required."""
    components = numbered_components(root)
    options = tuple(
        OptionItem(
            name=name,
            description=name,
            kind=OptionKind.REQUIRED if name.startswith("00") else OptionKind.OPTIONAL,
            rules=(InstallRule(source=name, destination="", kind=RuleKind.FOLDER),),
        )
        for name in components
    )
    return Installer(
        module_name=root.name,
        steps=(InstallStep("Components", (Group("Components", GroupKind.OPTIONAL, options),)),),
        digest=installer_digest("\n".join(components).encode("utf-8")),
    )


def load_installer(staging_root: Path) -> ParseResult:
    """Locate and parse the installer documents under an extracted package.

    Packages without installer documents but with numbered component folders
    get a synthesized single-step installer.

    Raises:
        ParseError: If no installer documents are found or they are invalid
    """
    base = find_installer_root(staging_root)
    if base is None:
        numbered = find_numbered_root(staging_root)
        if numbered is None:
            raise ParseError("", f"no fomod installer found in {staging_root}")
        _logging.info(f"Offering numbered components from {numbered}")
        return ParseResult(numbered_installer(numbered))

    fomod = _find_child(base, FOMOD_DIR, want_dir=True)
    config_path = _find_child(fomod, MODULE_CONFIG, want_dir=False)
    info_path = _find_child(fomod, INFO_FILE, want_dir=False)
    _logging.info(f"Loading installer from {fomod}")

    try:
        module_config = config_path.read_bytes() if config_path else None
        info = info_path.read_bytes() if info_path else None
    except OSError as e:
        raise ParseError(str(fomod), f"cannot read installer documents: {e}")
    return parse_installer(module_config, info)


def lint_installer(installer: Installer) -> list[LintFinding]:
    """Advisory findings about an installer that parsed successfully."""
    findings = []
    if not installer.module_name:
        findings.append(LintFinding("config", "module name is empty"))
    if not installer.steps and not installer.required_rules and not installer.conditional_rules:
        findings.append(LintFinding("config", "installer installs nothing"))
    for s, step in enumerate(installer.steps):
        if not step.groups:
            findings.append(LintFinding(f"step[{s}]", f"step '{step.name}' has no groups"))
        for g, group in enumerate(step.groups):
            location = f"step[{s}].group[{g}]"
            if not group.options:
                findings.append(LintFinding(location, f"group '{group.name}' has no options"))
            seen: set[str] = set()
            for option in group.options:
                if option.name in seen:
                    findings.append(
                        LintFinding(location, f"option name '{option.name}' is duplicated")
                    )
                seen.add(option.name)
            forced = [o for o in group.options if o.kind is OptionKind.REQUIRED]
            if group.kind.is_radio and len(forced) > 1:
                findings.append(
                    LintFinding(
                        location,
                        f"group '{group.name}' allows one option but marks {len(forced)} as required",
                    )
                )
    return findings


__all__ = [
    "ParseResult",
    "decode_document",
    "installer_digest",
    "parse_installer",
    "find_installer_root",
    "find_numbered_root",
    "is_numbered_component",
    "numbered_components",
    "numbered_installer",
    "load_installer",
    "lint_installer",
]
