from decimal import Decimal

from ticketbot.domain import ChefRecord, ChefStatus
from ticketbot.status import project, render_dashboard


def _chef(user_id, status):
    return ChefRecord(user_id=user_id, username=user_id, status=status, debt_amount=Decimal("0"), total_completed=0)


def test_projection_counts_only_open_chefs():
    chefs = [_chef("a", ChefStatus.OPEN), _chef("b", ChefStatus.BUSY), _chef("c", ChefStatus.CLOSED), _chef("d", ChefStatus.OPEN)]
    view = project(chefs)
    assert view.open_count == 2
    assert [c.user_id for c in view.open_chefs] == ["a", "d"]
    assert view.total == 4
    assert view.any_open


def test_projection_of_empty_ledger():
    view = project([])
    assert view.open_count == 0
    assert not view.any_open


def test_dashboard_lists_every_chef_and_capacity():
    text = render_dashboard([_chef("a", ChefStatus.OPEN), _chef("b", ChefStatus.CLOSED)], capacity=4)
    assert "🟢 <@a> - OPEN" in text
    assert "🔴 <@b> - CLOSED" in text
    assert "1/4 chefs currently open" in text


def test_dashboard_without_chefs():
    assert "No chefs registered" in render_dashboard([])
