"""
Tests for the status partition and the stock effect of status changes.
"""
import pytest

from garage_backend.models import ServiceOrderStatus as S
from garage_backend.services.status_machine import (
    AFFECTING_STATUSES,
    NON_AFFECTING_STATUSES,
    InventoryAction,
    inventory_action,
    is_documented_transition,
    transition_graph,
)


class TestPartition:

    def test_sets_are_disjoint(self):
        assert not AFFECTING_STATUSES & NON_AFFECTING_STATUSES

    def test_canceled_in_neither_set(self):
        assert S.CANCELED not in AFFECTING_STATUSES
        assert S.CANCELED not in NON_AFFECTING_STATUSES

    def test_every_other_status_is_classified(self):
        classified = AFFECTING_STATUSES | NON_AFFECTING_STATUSES
        assert set(S) - classified == {S.CANCELED}


class TestInventoryAction:

    @pytest.mark.parametrize("old,new", [
        (S.APPROVED, S.IN_PROGRESS),
        (S.OPENED, S.COMPLETED),
        (S.WAITING_APPROVAL, S.WAITING_PARTS),
    ])
    def test_consume(self, old, new):
        assert inventory_action(old, new) == InventoryAction.CONSUME

    @pytest.mark.parametrize("old,new", [
        (S.IN_PROGRESS, S.APPROVED),
        (S.WAITING_PARTS, S.OPENED),
        (S.COMPLETED, S.DIAGNOSING),
    ])
    def test_restore(self, old, new):
        assert inventory_action(old, new) == InventoryAction.RESTORE

    @pytest.mark.parametrize("old,new", [
        (S.IN_PROGRESS, S.WAITING_PARTS),
        (S.WAITING_PARTS, S.IN_PROGRESS),
        (S.COMPLETED, S.DELIVERED),
        (S.OPENED, S.APPROVED),
        (S.IN_PROGRESS, S.CANCELED),
        (S.CANCELED, S.IN_PROGRESS),
    ])
    def test_no_effect(self, old, new):
        assert inventory_action(old, new) == InventoryAction.NONE


class TestTransitionGraph:

    def test_documented_transitions(self):
        assert is_documented_transition(S.APPROVED, S.IN_PROGRESS)
        assert not is_documented_transition(S.DELIVERED, S.OPENED)

    def test_graph_is_serializable(self):
        graph = transition_graph()
        assert graph["concluida"] == ["entregue"]
        assert graph["cancelada"] == []
        assert len(graph) == len(S)
