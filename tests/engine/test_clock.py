# tests/engine/test_clock.py
"""Tests for play loop clocks."""


class TestMockClock:
    def test_sleep_advances_time(self) -> None:
        from tokensim.engine.clock import MockClock

        clock = MockClock(start=10.0)
        clock.sleep(0.25)
        clock.sleep(0.5)

        assert clock.monotonic() == 10.75
        assert clock.sleeps == [0.25, 0.5]

    def test_advance_is_not_a_sleep(self) -> None:
        from tokensim.engine.clock import MockClock

        clock = MockClock()
        clock.advance(2.0)

        assert clock.monotonic() == 2.0
        assert clock.sleeps == []


class TestSystemClock:
    def test_monotonic_never_decreases(self) -> None:
        from tokensim.engine.clock import SystemClock

        clock = SystemClock()
        first = clock.monotonic()
        clock.sleep(0)

        assert clock.monotonic() >= first


class TestPlayPacing:
    def test_slow_tick_skips_sleep(self, simple_pipeline) -> None:
        """A tick that takes longer than the delay is not followed by a sleep."""
        from tokensim.core.config import EngineSettings
        from tokensim.engine.clock import MockClock
        from tokensim.engine.simulation import Simulation

        clock = MockClock()
        sim = Simulation(EngineSettings(playback={"ticks_per_second": 10}), clock=clock)
        sim.load(simple_pipeline)
        sim.add_tick_listener(lambda report: clock.advance(1.0))

        assert sim.play(max_ticks=3) == 3

        assert clock.sleeps == []
