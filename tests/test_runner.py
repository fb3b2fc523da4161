"""Tests for the driver loop and command line."""

import itertools
import logging
import os
from unittest.mock import MagicMock, patch

import numpy as np
import pytest

from mind_codec import load_checkpoint
from mind_config import load_mind_config
from mind_foundation import MAX_TICK, create_random_state, step_n
from mind_foundation import step as real_step
from mind_runner import RunStats, build_parser, initial_state, main, run


@pytest.fixture
def state():
    return create_random_state(8, seed=21)


@pytest.fixture(autouse=True)
def restore_logging():
    root = logging.getLogger("neuromind")
    saved = (list(root.handlers), root.level)
    yield
    for handler in list(root.handlers):
        root.removeHandler(handler)
        handler.close()
    for handler in saved[0]:
        root.addHandler(handler)
    root.setLevel(saved[1])


class TestRun:

    def test_runs_requested_steps(self, state):
        expected = state.copy()
        step_n(expected, 2 * MAX_TICK + 5)
        stats = run(state, steps=2 * MAX_TICK + 5)
        assert isinstance(stats, RunStats)
        assert stats.steps == 2 * MAX_TICK + 5
        assert state.tick == 5
        np.testing.assert_array_equal(state.signal_map, expected.signal_map)

    def test_no_checkpoint_without_path(self, state):
        assert run(state, steps=3).checkpoints == 0

    def test_periodic_checkpoints(self, state, tmp_path):
        path = tmp_path / "run.mind.zst"
        stats = run(state, steps=10, checkpoint_path=str(path), checkpoint_every=4)
        # Ticks 4 and 8, plus the final one at 10.
        assert stats.checkpoints == 3
        assert load_checkpoint(path).tick == 10

    def test_no_duplicate_final_checkpoint(self, state, tmp_path):
        path = tmp_path / "run.mind.zst"
        stats = run(state, steps=8, checkpoint_path=str(path), checkpoint_every=4)
        assert stats.checkpoints == 2

    def test_final_checkpoint_only(self, state, tmp_path):
        path = tmp_path / "run.mind.zst"
        stats = run(state, steps=7, checkpoint_path=str(path))
        assert stats.checkpoints == 1
        assert load_checkpoint(path).tick == 7

    def test_progress_reported_by_interval(self, state, caplog):
        clock = itertools.count(0.0, 0.25).__next__
        with caplog.at_level(logging.INFO, logger="neuromind.runner"):
            run(state, steps=8, report_interval=1.0, clock=clock)
        progress = [r for r in caplog.records if r.getMessage().startswith("Tick ")]
        # One report at the first tick, then one per simulated second.
        assert len(progress) == 2
        assert "delta 1" in progress[0].getMessage()
        assert "delta 4" in progress[1].getMessage()

    def test_interrupt_stops_and_checkpoints(self, state, tmp_path):
        path = tmp_path / "run.mind.zst"
        calls = {"n": 0}

        def flaky_step(s):
            calls["n"] += 1
            if calls["n"] == 4:
                raise KeyboardInterrupt
            s.tick += 1

        with patch("mind_runner.step", side_effect=flaky_step):
            stats = run(state, steps=None, checkpoint_path=str(path))
        assert stats.interrupted
        assert stats.steps == 3
        assert stats.checkpoints == 1
        assert load_checkpoint(path).tick == 3

    def test_interrupt_mid_tick_rolls_back(self, state, tmp_path, caplog):
        path = tmp_path / "run.mind.zst"
        expected = state.copy()
        step_n(expected, 2)
        calls = {"n": 0}

        def torn_step(s):
            calls["n"] += 1
            if calls["n"] == 3:
                # Partway through a tick: clock advanced, schedule and signal half written.
                s.tick += 1
                s.next_activations[:] = 99.0
                s.signal_map[: s.neurons // 2] = -1.0
                raise KeyboardInterrupt
            real_step(s)

        with patch("mind_runner.step", side_effect=torn_step):
            with caplog.at_level(logging.WARNING, logger="neuromind.runner"):
                stats = run(state, steps=None, checkpoint_path=str(path))

        assert stats.interrupted
        assert stats.steps == 2
        assert "rolled back to tick 2" in caplog.text
        saved = load_checkpoint(path)
        assert saved.tick == expected.tick == 2
        np.testing.assert_array_equal(saved.signal_map, expected.signal_map)
        np.testing.assert_array_equal(saved.next_activations, expected.next_activations)
        np.testing.assert_array_equal(state.neural_activity, expected.neural_activity)

    def test_events_logged(self, state, tmp_path):
        events = MagicMock()
        run(state, steps=2, checkpoint_path=str(tmp_path / "a.mind.zst"), event_log=events)
        names = [c.args[0] for c in events.log_event.call_args_list]
        assert names == ["run_started", "checkpoint_saved", "run_finished"]

    def test_steps_per_second(self):
        assert RunStats(steps=10, elapsed=2.0).steps_per_second == 5.0
        assert RunStats().steps_per_second == 0.0


class TestInitialState:

    def test_fresh_from_config(self):
        cfg = load_mind_config({"simulation": {"neurons": 6, "seed": 3}})
        state = initial_state(cfg)
        assert state.neurons == 6
        np.testing.assert_array_equal(state.signal_map, create_random_state(6, seed=3).signal_map)

    def test_resume(self, state, tmp_path):
        path = tmp_path / "a.mind.zst"
        run(state, steps=5, checkpoint_path=str(path))
        resumed = initial_state(load_mind_config(), path)
        assert resumed.tick == 5


class TestCLI:

    def test_parser_defaults(self):
        args = build_parser().parse_args([])
        assert args.steps is None
        assert not args.resume

    def test_fresh_run_writes_checkpoint(self, tmp_path):
        path = tmp_path / "cli.mind.zst"
        code = main(["--neurons", "5", "--seed", "1", "--steps", "12",
                     "--checkpoint", str(path), "--compression-level", "1"])
        assert code == 0
        state = load_checkpoint(path)
        assert state.neurons == 5
        assert state.tick == 12

    def test_resume_continues(self, tmp_path):
        path = tmp_path / "cli.mind.zst"
        assert main(["--neurons", "4", "--steps", "3", "--checkpoint", str(path)]) == 0
        assert main(["--resume", "--steps", "2", "--checkpoint", str(path)]) == 0
        assert load_checkpoint(path).tick == 5

    def test_resume_missing_checkpoint_fails(self, tmp_path):
        assert main(["--resume", "--steps", "1",
                     "--checkpoint", str(tmp_path / "missing.mind.zst")]) == 1

    def test_resume_corrupt_checkpoint_fails(self, tmp_path):
        path = tmp_path / "bad.mind.zst"
        path.write_bytes(os.urandom(64))
        assert main(["--resume", "--steps", "1", "--checkpoint", str(path)]) == 1

    def test_default_checkpoint_location(self, tmp_path):
        with patch.dict(os.environ, {"MIND_HOME": str(tmp_path)}):
            assert main(["--neurons", "3", "--steps", "1"]) == 0
        assert (tmp_path / "checkpoints" / "main.mind.zst").exists()

    def test_config_file(self, tmp_path):
        cfg_path = tmp_path / "mind.json"
        cfg_path.write_text('{"simulation": {"neurons": 7}, "checkpoint": {"path": "%s"}}'
                            % (tmp_path / "from_cfg.mind.zst"))
        assert main(["--config", str(cfg_path), "--steps", "2"]) == 0
        assert load_checkpoint(tmp_path / "from_cfg.mind.zst").neurons == 7
