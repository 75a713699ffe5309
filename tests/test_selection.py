"""Tests for the selection state machine."""

import pytest

from modstage.errors import SelectionError
from modstage.installer import OptionRef, SelectionState, StepStatus, parse_installer

from tests.conftest import group, module_config, plugin, step, steps


def build(*items: str, body_prefix: str = ""):
    return parse_installer(module_config(body_prefix + steps(*items))).installer


@pytest.fixture
def opt_installer(opt_installer_xml):
    return parse_installer(opt_installer_xml).installer


@pytest.fixture
def two_step_installer():
    """Step 'Extras' is only shown when 'Core' set Mode=full."""
    return build(
        step(
            "Core",
            group(
                "Mode",
                "SelectExactlyOne",
                plugin("Lite", flags={"Mode": "lite"}),
                plugin("Full", flags={"Mode": "full"}),
            ),
        ),
        step(
            "Extras",
            group("Addons", "SelectAny", plugin("Sounds"), plugin("Music")),
            visible='<flagDependency flag="Mode" value="full"/>',
        ),
    )


class TestExactlyOne:
    def test_default_selects_first_visible(self, opt_installer):
        state = SelectionState(opt_installer)
        assert state.selected_refs() == [OptionRef(0, 0, 0)]
        assert state.flags == {"F": "1"}
        assert state.is_commit_eligible()

    def test_selecting_second_deselects_first(self, opt_installer):
        state = SelectionState(opt_installer)
        state.set_selected(0, 0, 1, True)
        assert state.selected_refs() == [OptionRef(0, 0, 1)]
        assert state.flags == {"F": "2"}

    def test_empty_group_blocks_commit(self, opt_installer):
        state = SelectionState(opt_installer, apply_defaults=False)
        assert not state.is_commit_eligible()
        violations = state.violations()
        assert len(violations) == 1
        assert violations[0].group_name == "Variant"
        assert str(violations[0]) == "Select exactly one option in group 'Variant'"
        assert state.step_status(0) is StepStatus.INCOMPLETE

        state.toggle(0, 0, 1)
        assert state.is_commit_eligible()
        assert state.step_status(0) is StepStatus.COMPLETE

    def test_three_options(self):
        installer = build(
            step("S", group("G", "SelectExactlyOne", plugin("A"), plugin("B"), plugin("C")))
        )
        state = SelectionState(installer, apply_defaults=False)
        assert not state.is_commit_eligible()
        state.toggle(0, 0, 0)
        assert state.is_commit_eligible()
        for second in (1, 2):
            state.toggle(0, 0, second)
            assert state.selected_refs() == [OptionRef(0, 0, second)]
            assert state.is_commit_eligible()

    def test_retoggle_keeps_selection(self, opt_installer):
        state = SelectionState(opt_installer)
        state.toggle(0, 0, 0)
        assert state.is_selected(0, 0, 0)


class TestGroupKinds:
    def test_at_most_one_toggle_deselects(self):
        installer = build(step("S", group("G", "SelectAtMostOne", plugin("A"), plugin("B"))))
        state = SelectionState(installer)
        assert state.selected_refs() == []
        state.toggle(0, 0, 1)
        state.toggle(0, 0, 0)
        assert state.selected_refs() == [OptionRef(0, 0, 0)]
        state.toggle(0, 0, 0)
        assert state.selected_refs() == []
        assert state.is_commit_eligible()

    def test_select_all_locks_every_option(self):
        installer = build(step("S", group("G", "SelectAll", plugin("A"), plugin("B"))))
        state = SelectionState(installer)
        assert len(state.selected_refs()) == 2
        assert state.is_locked(0, 0, 1)
        with pytest.raises(SelectionError, match="cannot be deselected"):
            state.set_selected(0, 0, 1, False)

    def test_at_least_one(self):
        installer = build(step("S", group("G", "SelectAtLeastOne", plugin("A"), plugin("B"))))
        state = SelectionState(installer, apply_defaults=False)
        assert not state.is_commit_eligible()
        state.toggle(0, 0, 0)
        state.toggle(0, 0, 1)
        assert len(state.selected_refs()) == 2
        assert state.is_commit_eligible()


class TestForcedOptions:
    def test_required_option_is_selected_and_locked(self):
        installer = build(
            step("S", group("G", "SelectAny", plugin("Core", kind="Required"), plugin("Extra")))
        )
        state = SelectionState(installer)
        assert state.is_selected(0, 0, 0)
        assert state.is_locked(0, 0, 0)
        with pytest.raises(SelectionError):
            state.toggle(0, 0, 0)
        assert state.is_selected(0, 0, 0)

    def test_required_radio_option_cannot_be_replaced(self):
        installer = build(
            step("S", group("G", "SelectExactlyOne", plugin("A", kind="Required"), plugin("B")))
        )
        state = SelectionState(installer)
        with pytest.raises(SelectionError, match="cannot be replaced"):
            state.set_selected(0, 0, 1, True)
        assert state.selected_refs() == [OptionRef(0, 0, 0)]

    def test_recommended_preselected(self):
        installer = build(
            step("S", group("G", "SelectAny", plugin("A"), plugin("B", kind="Recommended")))
        )
        state = SelectionState(installer)
        assert state.selected_refs() == [OptionRef(0, 0, 1)]
        assert not state.is_locked(0, 0, 1)


class TestVisibility:
    def test_hidden_option_cannot_be_selected(self):
        installer = build(
            step("S", group("G", "SelectAny", plugin("A"), plugin("Broken", kind="NotUsable")))
        )
        state = SelectionState(installer)
        assert not state.option_visible(0, 0, 1)
        with pytest.raises(SelectionError, match="not available"):
            state.toggle(0, 0, 1)

    def test_later_step_sees_earlier_flags(self, two_step_installer):
        state = SelectionState(two_step_installer)
        assert not state.step_visible(1)
        assert state.step_status(1) is StepStatus.HIDDEN

        state.set_selected(0, 0, 1, True)
        assert state.step_visible(1)
        state.toggle(1, 0, 0)
        assert OptionRef(1, 0, 0) in state.selected_refs()

    def test_hiding_a_step_drops_its_selections_from_active_set(self, two_step_installer):
        state = SelectionState(two_step_installer)
        state.set_selected(0, 0, 1, True)
        state.toggle(1, 0, 1)

        state.set_selected(0, 0, 0, True)
        assert state.is_selected(1, 0, 1)
        assert not state.is_active(1, 0, 1)
        assert state.selected_refs() == [OptionRef(0, 0, 0)]
        assert state.flags == {"Mode": "lite"}

    def test_step_cannot_see_its_own_flags(self):
        installer = build(
            step(
                "S",
                group("First", "SelectAny", plugin("Setter", flags={"X": "1"})),
                group(
                    "Second",
                    "SelectAny",
                    plugin(
                        "Gated",
                        type_descriptor=(
                            '<dependencyType><defaultType name="NotUsable"/><patterns>'
                            '<pattern><dependencies><flagDependency flag="X" value="1"/>'
                            '</dependencies><type name="Optional"/></pattern>'
                            "</patterns></dependencyType>"
                        ),
                    ),
                ),
            )
        )
        state = SelectionState(installer)
        state.toggle(0, 0, 0)
        assert state.flags == {"X": "1"}
        assert not state.option_visible(0, 1, 0)

    def test_unrelated_toggle_keeps_visibility(self):
        gated = (
            '<dependencyType><defaultType name="NotUsable"/><patterns>'
            '<pattern><dependencies><flagDependency flag="Y" value="1"/></dependencies>'
            '<type name="Optional"/></pattern></patterns></dependencyType>'
        )
        installer = build(
            step(
                "One",
                group(
                    "G",
                    "SelectAny",
                    plugin("Unrelated", flags={"X": "1"}),
                    plugin("Gate", flags={"Y": "1"}),
                ),
            ),
            step(
                "Two",
                group("H", "SelectAny", plugin("Always"), plugin("Gated", type_descriptor=gated)),
                visible='<flagDependency flag="Y" value="1"/>',
            ),
        )
        for gate_selected in (False, True):
            state = SelectionState(installer)
            if gate_selected:
                state.toggle(0, 0, 1)
            refs = [(s, g, o) for s in (0, 1) for g in (0,) for o in (0, 1)]
            before = ([state.step_visible(s) for s in (0, 1)], [state.option_visible(*r) for r in refs])
            state.toggle(0, 0, 0)
            after = ([state.step_visible(s) for s in (0, 1)], [state.option_visible(*r) for r in refs])
            assert before == after

    def test_queries_do_not_mutate(self, two_step_installer):
        state = SelectionState(two_step_installer)
        before = (state.selected_refs(), state.flags)
        state.view()
        state.violations()
        state.step_status(1)
        assert (state.selected_refs(), state.flags) == before

    def test_default_flags_seed_visibility(self):
        installer = build(
            step(
                "S",
                group("G", "SelectAny", plugin("P")),
                visible='<flagDependency flag="Preset" value="yes"/>',
            )
        )
        assert not SelectionState(installer).step_visible(0)
        assert SelectionState(installer, default_flags={"Preset": "yes"}).step_visible(0)

    def test_module_condition_violation(self):
        installer = build(
            step("S", group("G", "SelectAny", plugin("P"))),
            body_prefix='<moduleDependencies><flagDependency flag="Game" value="SSE"/></moduleDependencies>',
        )
        state = SelectionState(installer)
        assert not state.is_commit_eligible()
        assert "requirements are not met" in str(state.violations()[0])


class TestNavigation:
    def test_skips_hidden_steps(self, two_step_installer):
        state = SelectionState(two_step_installer)
        assert state.current_step == 0
        assert state.next_step() is None

        state.set_selected(0, 0, 1, True)
        assert state.next_step() == 1
        assert state.current_step == 1
        assert state.previous_step() == 0

    def test_no_steps(self):
        installer = parse_installer(module_config("")).installer
        state = SelectionState(installer)
        assert state.current_step is None
        assert state.is_commit_eligible()


class TestFromRefs:
    def test_restores_selection(self, two_step_installer):
        state = SelectionState.from_refs(two_step_installer, [(0, 0, 1), OptionRef(1, 0, 0)])
        assert state.selected_refs() == [OptionRef(0, 0, 1), OptionRef(1, 0, 0)]
        assert state.flags == {"Mode": "full"}

    def test_unknown_ref_raises(self, opt_installer):
        with pytest.raises(SelectionError, match="no option"):
            SelectionState.from_refs(opt_installer, [(0, 0, 5)])

    def test_view_reports_state(self, opt_installer):
        state = SelectionState(opt_installer)
        view = state.view()
        assert view.installer_name == "Test Mod"
        assert view.commit_eligible
        assert view.flags == (("F", "1"),)
        options = view.steps[0].groups[0].options
        assert [o.selected for o in options] == [True, False]
        assert view.steps[0].groups[0].is_radio
