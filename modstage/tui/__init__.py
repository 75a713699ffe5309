"""Terminal UI for the installer wizard.

questionary prompts with a prompt_toolkit style, guarded by a TTY check.
Headless callers pass selections on the command line instead.
"""

from .wizard import WIZARD_STYLE, run_wizard

__all__ = ["WIZARD_STYLE", "run_wizard"]
