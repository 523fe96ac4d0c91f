"""
Tests for the processing budget and the budget-aware delay.
"""

from rankwatch.budget import ProcessingBudget, timeout_aware_delay


def test_budget_tracks_elapsed_time(clock):
    budget = ProcessingBudget(10.0, clock=clock)

    clock.advance(4.0)

    assert budget.elapsed() == 4.0
    assert budget.remaining() == 6.0
    assert budget.should_continue()
    assert budget.elapsed_ms() == 4000


def test_budget_stops_at_deadline(clock):
    budget = ProcessingBudget(1.0, clock=clock)

    clock.advance(1.0)

    assert not budget.should_continue()
    assert budget.remaining() == 0.0


def test_from_remaining_subtracts_buffer(clock):
    budget = ProcessingBudget.from_remaining(300.0, 30.0, clock=clock)

    assert budget.max_execution_time == 270.0
    assert budget.buffer_time == 30.0


def test_from_remaining_never_negative(clock):
    budget = ProcessingBudget.from_remaining(10.0, 30.0, clock=clock)

    assert budget.max_execution_time == 0.0
    assert not budget.should_continue()


async def test_delay_sleeps_full_amount_with_room(clock, sleep):
    budget = ProcessingBudget(10.0, clock=clock)

    slept = await timeout_aware_delay(1.0, budget, sleep)

    assert slept == 1.0
    assert sleep.calls == [1.0]


async def test_delay_shrinks_to_remaining_budget(clock, sleep):
    budget = ProcessingBudget(10.0, clock=clock)
    clock.advance(9.75)

    slept = await timeout_aware_delay(1.0, budget, sleep)

    assert slept == 0.25
    assert sleep.calls == [0.25]


async def test_delay_skipped_when_budget_spent(clock, sleep):
    budget = ProcessingBudget(1.0, clock=clock)
    clock.advance(2.0)

    assert await timeout_aware_delay(1.0, budget, sleep) == 0.0
    assert sleep.calls == []


async def test_delay_without_budget(sleep):
    assert await timeout_aware_delay(0.5, None, sleep) == 0.5
    assert await timeout_aware_delay(0, None, sleep) == 0.0
    assert sleep.calls == [0.5]
