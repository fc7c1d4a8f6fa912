"""Tests for action-group routing."""

import pytest

from table_automation.filters import FilterCondition, FilterGroup
from table_automation.routing import GroupMatchPolicy, evaluate_groups, order_groups, route_action_groups
from table_automation.types import ActionGroup


def group(group_id, order, field=None, value=None):
    condition = None
    if field is not None:
        condition = FilterGroup(children=[FilterCondition(field, 'equal', value)])
    return ActionGroup(id=group_id, condition=condition, order=order)


class TestRouteActionGroups:
    """Tests for route_action_groups."""

    def test_first_match_skips_false_group(self):
        """Given A(order 0, false) and B(order 1, true), only B is selected."""
        groups = [group('A', 0, 'status', 'Open'), group('B', 1, 'status', 'Done')]
        selected = route_action_groups(groups, {'status': 'Done'})
        assert [g.id for g in selected] == ['B']

    def test_sorted_by_order_not_position(self):
        groups = [group('late', 5), group('early', 1)]
        assert [g.id for g in order_groups(groups)] == ['early', 'late']
        assert [g.id for g in route_action_groups(groups, {})] == ['early']

    def test_first_match_wins(self):
        groups = [group('A', 0, 'status', 'Done'), group('B', 1, 'status', 'Done'), group('C', 2)]
        assert [g.id for g in route_action_groups(groups, {'status': 'Done'})] == ['A']

    def test_all_matches(self):
        groups = [group('A', 0, 'status', 'Done'), group('B', 1, 'status', 'Open'), group('C', 2)]
        selected = route_action_groups(groups, {'status': 'Done'}, policy=GroupMatchPolicy.ALL_MATCHES)
        assert [g.id for g in selected] == ['A', 'C']

    def test_empty_condition_always_matches(self):
        assert [g.id for g in route_action_groups([group('default', 0)], {})] == ['default']

    def test_no_match(self):
        assert route_action_groups([group('A', 0, 'status', 'Open')], {'status': 'Done'}) == []
        assert route_action_groups([], {}) == []

    def test_unknown_field_does_not_match(self):
        groups = [group('A', 0, 'deleted_field', 'x'), group('B', 1)]
        assert [g.id for g in route_action_groups(groups, {'status': 'Done'})] == ['B']


class TestEvaluateGroups:

    def test_stops_after_first_match(self):
        groups = [group('A', 0, 'status', 'Open'), group('B', 1), group('C', 2)]
        evaluated = evaluate_groups(groups, {'status': 'Done'})
        assert [(g.id, matched) for g, matched in evaluated] == [('A', False), ('B', True)]
