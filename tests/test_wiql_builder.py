from __future__ import annotations

import pytest

from services import wiql_builder
from services.errors import InvalidFilter
from services.models import ItemFilter


def test_build_iteration_filter_strips_values() -> None:
    item_filter = wiql_builder.build_iteration_filter("  Fabrikam\\Sprint 1 ", assigned_to=" Ada ")

    assert item_filter == ItemFilter("Fabrikam\\Sprint 1", assigned_to="Ada")


@pytest.mark.parametrize("iteration_path", [None, "", "   "])
def test_iteration_path_is_required(iteration_path) -> None:
    with pytest.raises(InvalidFilter):
        wiql_builder.build_iteration_filter(iteration_path)


def test_blank_assignee_is_rejected() -> None:
    with pytest.raises(InvalidFilter):
        wiql_builder.build_iteration_filter("Sprint 1", assigned_to=" ")


def test_control_characters_are_rejected() -> None:
    with pytest.raises(InvalidFilter):
        wiql_builder.build_iteration_filter("Sprint 1\n OR 1=1")


def test_unknown_type_is_rejected() -> None:
    with pytest.raises(InvalidFilter, match="Invalid work item type"):
        wiql_builder.build_iteration_filter("Sprint 1", work_item_type="Saga")


def test_iteration_query_escapes_quotes() -> None:
    query = wiql_builder.iteration_query(ItemFilter("Team's Sprint", assigned_to="O'Brien", work_item_type="Bug"))

    assert "[System.IterationPath] = 'Team''s Sprint'" in query
    assert "[System.AssignedTo] = 'O''Brien'" in query
    assert "[System.WorkItemType] = 'Bug'" in query
    assert "[System.State] <> 'Removed'" in query


def test_iteration_query_without_optional_predicates() -> None:
    query = wiql_builder.iteration_query(ItemFilter("Sprint 1"))

    assert "AssignedTo] =" not in query
    assert "[System.WorkItemType] =" not in query


def test_type_query_all_covers_tree_root_types() -> None:
    query = wiql_builder.type_query("All")

    assert "IN ('Epic', 'Feature', 'User Story', 'Task')" in query


def test_type_query_defaults_to_epic() -> None:
    assert "[System.WorkItemType] = 'Epic'" in wiql_builder.type_query(None)


def test_children_query_uses_forward_links() -> None:
    query = wiql_builder.children_query(42)

    assert "[Source].[System.Id] = 42" in query
    assert "Hierarchy-Forward" in query
    assert "MODE (MustContain)" in query


def test_search_query_filters_by_type() -> None:
    query = wiql_builder.search_query("it's", "Feature")

    assert "CONTAINS 'it''s'" in query
    assert "[System.WorkItemType] = 'Feature'" in query
    assert "WorkItemType] =" not in wiql_builder.search_query("login")


@pytest.mark.parametrize("text, expected", [
    ("1234", 1234),
    (" 42 ", 42),
    ("42a", None),
    ("Sprint 42", None),
    ("", None),
    (None, None),
])
def test_parse_numeric_query(text, expected) -> None:
    assert wiql_builder.parse_numeric_query(text) == expected
