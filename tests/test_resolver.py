"""Tests for the next-open-slot resolver and round-robin fallback."""

import pytest

from crewcal.errors import ConcurrentUpdateError, InvalidInputError, SlotNotFoundError
from crewcal.schemas.calendar_schema import OrgCalendarSettings
from crewcal.schemas.scheduling_schema import FallbackStrategy, StrategyUsed
from crewcal.scheduling.resolver import NextOpenSlotResolver, round_robin_start_index
from crewcal.tools.calendar_store import InMemoryCalendarStore
from tests.conftest import (
    LA,
    ORG,
    make_event,
    make_time_off,
    make_weekly_hours,
    make_worker,
    utc,
)

MONDAY = "2026-03-02"


class RacingStore(InMemoryCalendarStore):
    """Moves the pointer to ``w1`` just before each of the first ``races`` CAS calls."""

    def __init__(self, races: int) -> None:
        super().__init__()
        self.races = races

    def compare_and_set_round_robin_pointer(self, org_id, expected_version, worker_id):
        if self.races > 0:
            self.races -= 1
            current = self.get_round_robin_pointer(org_id)
            super().compare_and_set_round_robin_pointer(org_id, current.version, "w1")
        return super().compare_and_set_round_robin_pointer(org_id, expected_version, worker_id)


def _seed_crew(store: InMemoryCalendarStore) -> InMemoryCalendarStore:
    store.set_org_settings(ORG, OrgCalendarSettings(timezone=LA))
    make_worker(store, "w0", name="Owner")
    for index in (1, 2, 3):
        make_worker(store, f"w{index}", name=f"Worker {index}")
        make_weekly_hours(store, f"w{index}")
    return store


@pytest.fixture
def resolver(crew_store, clock):
    # w0 has no working hours, so resolving for w0 always falls back.
    make_worker(crew_store, "w0", name="Owner")
    return NextOpenSlotResolver(crew_store, clock=clock)


class TestStartIndex:
    def test_after_last_worker(self):
        assert round_robin_start_index(["a", "b", "c"], "b") == 2

    def test_last_worker_at_end_wraps_later(self):
        assert round_robin_start_index(["a", "b", "c"], "c") == 3

    def test_unknown_last_worker(self):
        assert round_robin_start_index(["a", "b", "c"], "z") == 0
        assert round_robin_start_index(["a", "b", "c"], None) == 0


class TestPreferredWorker:
    def test_preferred_worker_first_slot(self, resolver):
        found = resolver.resolve(ORG, MONDAY, 60, 7, "w1", FallbackStrategy.OWNER)
        assert found.worker_id == "w1"
        assert found.strategy_used == StrategyUsed.PREFERRED
        assert found.slot_utc == utc(2026, 3, 2, 16, 0)
        assert found.duration_minutes == 60

    def test_searches_following_days(self, resolver, crew_store):
        make_event(crew_store, ["w1"], utc(2026, 3, 2, 16), utc(2026, 3, 3, 1))
        found = resolver.resolve(ORG, MONDAY, 60, 7, "w1", FallbackStrategy.OWNER)
        assert found.slot_utc == utc(2026, 3, 3, 16, 0)
        assert found.strategy_used == StrategyUsed.PREFERRED

    def test_weekend_start_rolls_to_monday(self, resolver):
        found = resolver.resolve(ORG, "2026-02-28", 30, 7, "w1", FallbackStrategy.OWNER)
        assert found.slot_utc == utc(2026, 3, 2, 16, 0)

    def test_past_slots_skipped(self, resolver, clock):
        clock.now = utc(2026, 3, 2, 17, 10)  # 09:10 Pacific
        found = resolver.resolve(ORG, MONDAY, 30, 1, "w1", FallbackStrategy.OWNER)
        assert found.slot_utc == utc(2026, 3, 2, 17, 30)

    def test_preferred_wins_even_if_others_earlier(self, resolver, crew_store):
        make_event(crew_store, ["w1"], utc(2026, 3, 2, 16), utc(2026, 3, 2, 20))
        found = resolver.resolve(ORG, MONDAY, 30, 7, "w1")
        assert found.worker_id == "w1"
        assert found.slot_utc == utc(2026, 3, 2, 20, 0)

    def test_default_lookahead(self, resolver, crew_store):
        # Busy Monday through Friday; the next opening is the following Monday.
        make_event(crew_store, ["w1"], utc(2026, 3, 2), utc(2026, 3, 7, 8))
        with pytest.raises(SlotNotFoundError, match="7 days"):
            resolver.resolve(ORG, MONDAY, 30, None, "w1", FallbackStrategy.OWNER)


class TestOwnerStrategy:
    def test_owner_fails_without_fallback(self, resolver):
        with pytest.raises(SlotNotFoundError, match="No open slots found in the next 7 days"):
            resolver.resolve(ORG, MONDAY, 30, 7, "w0", FallbackStrategy.OWNER)

    def test_single_day_message(self, resolver):
        with pytest.raises(SlotNotFoundError, match="next 1 day\\."):
            resolver.resolve(ORG, MONDAY, 30, 1, "w0", "OWNER")

    def test_owner_does_not_move_pointer(self, resolver, crew_store):
        with pytest.raises(SlotNotFoundError):
            resolver.resolve(ORG, MONDAY, 30, 7, "w0", FallbackStrategy.OWNER)
        assert crew_store.get_round_robin_pointer(ORG).version == 0

    def test_window_lost_in_dst_gap_is_no_slot(self, resolver, crew_store):
        make_worker(crew_store, "night")
        make_weekly_hours(crew_store, "night", days=(0,), start="02:30", end="03:15")
        with pytest.raises(SlotNotFoundError):
            resolver.resolve(ORG, "2026-03-08", 15, 2, "night", FallbackStrategy.OWNER)


class TestRoundRobin:
    def test_rotates_evenly(self, resolver, crew_store):
        picks = [
            resolver.resolve(ORG, MONDAY, 30, 7, "w0", FallbackStrategy.ROUND_ROBIN).worker_id
            for _ in range(6)
        ]
        assert picks == ["w1", "w2", "w3", "w1", "w2", "w3"]
        pointer = crew_store.get_round_robin_pointer(ORG)
        assert pointer.last_worker_id == "w3"
        assert pointer.version == 6

    def test_reports_round_robin_strategy(self, resolver):
        found = resolver.resolve(ORG, MONDAY, 30, 7, "w0")
        assert found.strategy_used == StrategyUsed.ROUND_ROBIN
        assert found.slot_utc == utc(2026, 3, 2, 16, 0)

    def test_explicit_candidates_order(self, resolver):
        picks = [
            resolver.resolve(ORG, MONDAY, 30, 7, "w0", "ROUND_ROBIN", ["w3", "w1"]).worker_id
            for _ in range(3)
        ]
        assert picks == ["w3", "w1", "w3"]

    def test_skips_unavailable_worker(self, resolver, crew_store):
        make_time_off(crew_store, "w2", utc(2026, 3, 1), utc(2026, 3, 12))
        picks = [resolver.resolve(ORG, MONDAY, 30, 3, "w0").worker_id for _ in range(4)]
        assert picks == ["w1", "w3", "w1", "w3"]

    def test_continues_from_stored_pointer(self, resolver, crew_store):
        crew_store.compare_and_set_round_robin_pointer(ORG, 0, "w2")
        assert resolver.resolve(ORG, MONDAY, 30, 7, "w0").worker_id == "w3"

    def test_pointer_not_in_candidates_starts_at_first(self, resolver, crew_store):
        crew_store.compare_and_set_round_robin_pointer(ORG, 0, "someone_else")
        assert resolver.resolve(ORG, MONDAY, 30, 7, "w0").worker_id == "w1"

    def test_fallback_worker_gets_own_earliest_slot(self, resolver, crew_store):
        make_event(crew_store, ["w1"], utc(2026, 3, 2, 16), utc(2026, 3, 2, 18))
        found = resolver.resolve(ORG, MONDAY, 30, 7, "w0")
        assert found.worker_id == "w1"
        assert found.slot_utc == utc(2026, 3, 2, 18, 0)

    def test_nobody_available(self, resolver, crew_store):
        for worker_id in ("w1", "w2", "w3"):
            make_time_off(crew_store, worker_id, utc(2026, 3, 1), utc(2026, 3, 12))
        with pytest.raises(SlotNotFoundError, match="next 3 days"):
            resolver.resolve(ORG, MONDAY, 30, 3, "w0")
        assert crew_store.get_round_robin_pointer(ORG).version == 0

    def test_no_candidates_besides_preferred(self, resolver):
        with pytest.raises(SlotNotFoundError, match="No round-robin fallback workers"):
            resolver.resolve(ORG, MONDAY, 30, 7, "w0", "ROUND_ROBIN", ["w0"])

    def test_unknown_candidate(self, resolver):
        with pytest.raises(InvalidInputError, match="worker_id"):
            resolver.resolve(ORG, MONDAY, 30, 7, "w0", "ROUND_ROBIN", ["w1", "ghost"])


class TestConcurrentAssignment:
    def test_lost_race_rereads_pointer(self, clock):
        store = _seed_crew(RacingStore(races=1))
        found = NextOpenSlotResolver(store, clock=clock).resolve(ORG, MONDAY, 30, 7, "w0")
        assert found.worker_id == "w2"
        pointer = store.get_round_robin_pointer(ORG)
        assert pointer.last_worker_id == "w2"
        assert pointer.version == 2

    def test_gives_up_after_retries(self, clock):
        store = _seed_crew(RacingStore(races=100))
        with pytest.raises(ConcurrentUpdateError, match="Round-robin pointer"):
            NextOpenSlotResolver(store, clock=clock).resolve(ORG, MONDAY, 30, 7, "w0")


class TestInvalidInput:
    @pytest.mark.parametrize("lookahead", [0, 22, -1, True])
    def test_lookahead_bounds(self, resolver, lookahead):
        with pytest.raises(InvalidInputError, match="lookahead_days"):
            resolver.resolve(ORG, MONDAY, 30, lookahead, "w1")

    def test_unknown_strategy(self, resolver):
        with pytest.raises(InvalidInputError, match="fallback_strategy"):
            resolver.resolve(ORG, MONDAY, 30, 7, "w1", "RANDOM")

    def test_bad_duration(self, resolver):
        with pytest.raises(InvalidInputError, match="duration_minutes"):
            resolver.resolve(ORG, MONDAY, 0, 7, "w1")

    def test_missing_preferred_worker(self, resolver):
        with pytest.raises(InvalidInputError, match="worker_id"):
            resolver.resolve(ORG, MONDAY, 30, 7, "")


class TestPreviewRoundRobin:
    def test_cycle_matches_expected(self, resolver):
        report = resolver.preview_round_robin(ORG, MONDAY, iterations=4, worker_ids=["w1", "w2", "w3"])
        assert report.actual_sequence == ["w1", "w2", "w3", "w1"]
        assert report.expected_sequence == report.actual_sequence
        assert report.passed
        assert report.summary == "Worker 1 -> Worker 2 -> Worker 3 -> Worker 1"
        assert report.assignments[0].slot_utc == utc(2026, 3, 2, 16, 0)

    def test_workers_without_openings_skipped(self, resolver):
        report = resolver.preview_round_robin(ORG, MONDAY, iterations=3)
        assert report.skipped_worker_ids == ["w0"]
        assert report.eligible_worker_ids == ["w1", "w2", "w3"]

    def test_starts_after_stored_pointer(self, resolver, crew_store):
        crew_store.compare_and_set_round_robin_pointer(ORG, 0, "w2")
        report = resolver.preview_round_robin(ORG, MONDAY, iterations=2, worker_ids=["w1", "w2", "w3"])
        assert report.actual_sequence == ["w3", "w1"]
        assert report.last_worker_id == "w2"

    def test_does_not_move_pointer(self, resolver, crew_store):
        resolver.preview_round_robin(ORG, MONDAY, iterations=5)
        assert crew_store.get_round_robin_pointer(ORG).version == 0

    def test_defaults(self, resolver):
        report = resolver.preview_round_robin(ORG, MONDAY)
        assert report.iterations == 6
        assert report.duration_minutes == 30
        assert report.lookahead_days == 7
        assert report.start_date == MONDAY

    def test_nobody_available(self, resolver):
        report = resolver.preview_round_robin(ORG, MONDAY, worker_ids=["w0"])
        assert report.assignments == []
        assert not report.passed
        assert report.summary == "No available workers found in lookahead window."

    @pytest.mark.parametrize("iterations", [0, 31])
    def test_iteration_bounds(self, resolver, iterations):
        with pytest.raises(InvalidInputError, match="iterations"):
            resolver.preview_round_robin(ORG, MONDAY, iterations=iterations)

    def test_empty_org(self, clock):
        resolver = NextOpenSlotResolver(InMemoryCalendarStore(), clock=clock)
        with pytest.raises(InvalidInputError, match="worker_ids"):
            resolver.preview_round_robin(ORG, MONDAY)
