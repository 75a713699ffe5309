"""Pytest fixtures and utilities for modstage tests."""

import hashlib
import os
import tempfile
from pathlib import Path
from typing import Generator
from unittest.mock import patch

import pytest


@pytest.fixture
def temp_dir() -> Generator[Path, None, None]:
    """Create a temporary directory for test files."""
    with tempfile.TemporaryDirectory() as tmpdir:
        yield Path(tmpdir)


@pytest.fixture
def mock_config_dir(temp_dir: Path) -> Generator[Path, None, None]:
    """Point MODSTAGE_CONFIG at a temp config file."""
    config_dir = temp_dir / ".config" / "modstage"
    config_dir.mkdir(parents=True, exist_ok=True)
    with patch.dict(os.environ, {"MODSTAGE_CONFIG": str(config_dir / "config.json")}):
        yield config_dir


@pytest.fixture
def mock_tty() -> Generator[None, None, None]:
    """Mock sys.stdin.isatty to return True."""
    with patch("sys.stdin.isatty", return_value=True):
        yield


@pytest.fixture
def mock_no_tty() -> Generator[None, None, None]:
    """Mock sys.stdin.isatty to return False."""
    with patch("sys.stdin.isatty", return_value=False):
        yield


def module_config(body: str, name: str = "Test Mod") -> bytes:
    """Wrap installer XML body in a ModuleConfig root."""
    return (
        '<?xml version="1.0" encoding="utf-8"?>\n'
        '<config xmlns:xsi="http://www.w3.org/2001/XMLSchema-instance" '
        'xsi:noNamespaceSchemaLocation="http://qconsulting.ca/fo3/ModConfig5.0.xsd">\n'
        f"<moduleName>{name}</moduleName>\n{body}\n</config>\n"
    ).encode("utf-8")


def plugin(
    name: str,
    files: str = "",
    flags: dict[str, str] | None = None,
    kind: str = "Optional",
    type_descriptor: str | None = None,
) -> str:
    flag_xml = ""
    if flags:
        flag_xml = (
            "<conditionFlags>"
            + "".join(f'<flag name="{k}">{v}</flag>' for k, v in flags.items())
            + "</conditionFlags>"
        )
    files_xml = f"<files>{files}</files>" if files else ""
    descriptor = type_descriptor or f'<type name="{kind}"/>'
    return (
        f'<plugin name="{name}"><description>{name} description</description>'
        f"{files_xml}{flag_xml}<typeDescriptor>{descriptor}</typeDescriptor></plugin>"
    )


def group(name: str, kind: str, *plugins: str) -> str:
    return f'<group name="{name}" type="{kind}"><plugins order="Explicit">{"".join(plugins)}</plugins></group>'


def step(name: str, *groups: str, visible: str = "") -> str:
    visible_xml = f"<visible>{visible}</visible>" if visible else ""
    return (
        f'<installStep name="{name}">{visible_xml}'
        f'<optionalFileGroups order="Explicit">{"".join(groups)}</optionalFileGroups></installStep>'
    )


def steps(*items: str) -> str:
    return f'<installSteps order="Explicit">{"".join(items)}</installSteps>'


def write_tree(root: Path, files: dict[str, str | bytes]) -> Path:
    """Create files under root from a relative path -> content mapping."""
    for rel, content in files.items():
        path = root / rel
        path.parent.mkdir(parents=True, exist_ok=True)
        if isinstance(content, bytes):
            path.write_bytes(content)
        else:
            path.write_text(content)
    return root


def tree_hash(root: Path) -> str:
    """Content hash of a directory tree (paths and bytes), '' if absent."""
    if not root.exists():
        return ""
    hasher = hashlib.sha256()
    for path in sorted(root.rglob("*")):
        rel = path.relative_to(root).as_posix()
        hasher.update(rel.encode())
        if path.is_file():
            hasher.update(path.read_bytes())
    return hasher.hexdigest()


@pytest.fixture
def opt_installer_xml() -> bytes:
    """One step, one ExactlyOne group: Opt1 sets F=1 and copies a.txt, Opt2 sets F=2 and copies b.txt."""
    return module_config(
        steps(
            step(
                "Main",
                group(
                    "Variant",
                    "SelectExactlyOne",
                    plugin("Opt1", '<file source="a.txt" destination="a.txt"/>', {"F": "1"}),
                    plugin("Opt2", '<file source="b.txt" destination="b.txt"/>', {"F": "2"}),
                ),
            )
        )
    )


@pytest.fixture
def opt_staging(temp_dir: Path, opt_installer_xml: bytes) -> Path:
    """Extracted package for the Opt1/Opt2 installer."""
    staging = temp_dir / "staging"
    write_tree(
        staging,
        {
            "fomod/ModuleConfig.xml": opt_installer_xml,
            "a.txt": "alpha",
            "b.txt": "bravo",
        },
    )
    return staging
