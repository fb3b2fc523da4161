"""
Mind Runner - Drive a network tick by tick, report progress, checkpoint.

Usage::

    # CLI: fresh 400-neuron network, 100k ticks, checkpoint every 10k
    python -m mind_runner --neurons 400 --steps 100000 --checkpoint-every 10000

    # CLI: continue from the default checkpoint until interrupted
    python -m mind_runner --resume

    # Programmatic
    from mind_runner import run
    stats = run(state, steps=1000, checkpoint_path="run.mind.zst")
"""

from __future__ import annotations

import argparse
import logging
import sys
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, List, Optional

import numpy as np

from mind_codec import DEFAULT_COMPRESSION_LEVEL, save_checkpoint, load_checkpoint
from mind_config import MindConfig, load_mind_config
from mind_foundation import MindError, MindState, create_random_state, step
from mind_monitoring import MindEventLog, health_context, setup_logging
from mind_paths import get_checkpoint_path

logger = logging.getLogger("neuromind.runner")

_STEPPED_FIELDS = ("next_activations", "signal_map", "neural_activity")


@dataclass
class RunStats:
    """Outcome of one ``run`` call.

    Attributes:
        steps: Ticks executed (not wrapped).
        checkpoints: Checkpoint files written.
        elapsed: Wall-clock seconds spent in the loop.
        interrupted: True if the loop stopped on KeyboardInterrupt.
    """

    steps: int = 0
    checkpoints: int = 0
    elapsed: float = 0.0
    interrupted: bool = False

    @property
    def steps_per_second(self) -> float:
        return self.steps / self.elapsed if self.elapsed > 0 else 0.0


def run(
    state: MindState,
    steps: Optional[int] = None,
    report_interval: float = 1.0,
    checkpoint_path: Optional[str] = None,
    checkpoint_every: int = 0,
    compression_level: int = DEFAULT_COMPRESSION_LEVEL,
    backup: bool = False,
    event_log: Optional[MindEventLog] = None,
    clock: Callable[[], float] = time.monotonic,
) -> RunStats:
    """Step ``state`` repeatedly.

    Args:
        state: A validated state, mutated in place.
        steps: Number of ticks, or None to run until interrupted.
        report_interval: Minimum seconds between progress log lines.
        checkpoint_path: Where to write snapshots; None disables them.
        checkpoint_every: Snapshot every this many ticks (0 = only at the end).
        event_log: Optional structured event sink.
        clock: Monotonic time source.

    Returns:
        ``RunStats`` for the loop.
    """
    stats = RunStats()
    started = clock()
    next_report = started
    last_reported = 0

    def checkpoint() -> None:
        save_checkpoint(state, checkpoint_path, compression_level, backup=backup)
        stats.checkpoints += 1
        if event_log is not None:
            event_log.log_event(
                "checkpoint_saved",
                {"path": checkpoint_path, "steps": stats.steps, "tick": state.tick},
            )

    if event_log is not None:
        event_log.log_event("run_started", {"neurons": state.neurons, "steps": steps})

    # step() mutates these in place; an interrupt mid-tick restores them.
    saved_tick = state.tick
    saved = {name: getattr(state, name).copy() for name in _STEPPED_FIELDS}
    in_step = False

    try:
        while steps is None or stats.steps < steps:
            saved_tick = state.tick
            for name, buf in saved.items():
                np.copyto(buf, getattr(state, name))
            in_step = True
            step(state)
            in_step = False
            stats.steps += 1

            now = clock()
            if now >= next_report:
                logger.info(
                    "Tick %d (delta %d) | %s",
                    stats.steps, stats.steps - last_reported, health_context(state),
                )
                last_reported = stats.steps
                next_report = now + report_interval

            if checkpoint_path and checkpoint_every > 0 and stats.steps % checkpoint_every == 0:
                checkpoint()
    except KeyboardInterrupt:
        stats.interrupted = True
        if in_step:
            state.tick = saved_tick
            for name, buf in saved.items():
                getattr(state, name)[...] = buf
            logger.warning(
                "Interrupted mid-tick; rolled back to tick %d", saved_tick
            )
        logger.warning("Interrupted after %d ticks", stats.steps)

    stats.elapsed = clock() - started

    if checkpoint_path and (checkpoint_every <= 0 or stats.steps % checkpoint_every != 0):
        checkpoint()

    logger.info(
        "Ran %d ticks in %.2fs (%.0f ticks/s)",
        stats.steps, stats.elapsed, stats.steps_per_second,
    )
    if event_log is not None:
        event_log.log_event(
            "run_finished",
            {
                "steps": stats.steps,
                "checkpoints": stats.checkpoints,
                "elapsed": round(stats.elapsed, 3),
                "interrupted": stats.interrupted,
            },
        )
    return stats


# ── CLI ────────────────────────────────────────────────────────────────


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="Run a recurrent refractory network and checkpoint its state"
    )
    parser.add_argument("--config", type=str, default=None, help="JSON config file")
    parser.add_argument("--neurons", type=int, default=None, help="Network size for a fresh state")
    parser.add_argument("--seed", type=int, default=None, help="Initializer seed")
    parser.add_argument(
        "--steps", type=int, default=None, help="Ticks to run (default: until interrupted)"
    )
    parser.add_argument(
        "--checkpoint",
        type=str,
        default=None,
        help=f"Checkpoint file (default: {get_checkpoint_path()})",
    )
    parser.add_argument(
        "--resume", action="store_true", help="Load the checkpoint instead of a fresh state"
    )
    parser.add_argument(
        "--checkpoint-every", type=int, default=None, help="Snapshot every N ticks"
    )
    parser.add_argument(
        "--compression-level", type=int, default=None, help="Zstandard compression level"
    )
    parser.add_argument("--log-level", type=str, default=None, help="DEBUG, INFO, ...")
    return parser


def _apply_args(cfg: MindConfig, args: argparse.Namespace) -> None:
    if args.neurons is not None:
        cfg.simulation.neurons = args.neurons
    if args.seed is not None:
        cfg.simulation.seed = args.seed
    if args.checkpoint is not None:
        cfg.checkpoint.path = args.checkpoint
    if args.checkpoint_every is not None:
        cfg.checkpoint.every_steps = args.checkpoint_every
    if args.compression_level is not None:
        cfg.checkpoint.compression_level = args.compression_level
    if args.log_level is not None:
        cfg.monitoring.log_level = args.log_level


def initial_state(cfg: MindConfig, resume_from: Optional[Path] = None) -> MindState:
    """Load ``resume_from`` or build a fresh random state from ``cfg``."""
    if resume_from is not None:
        return load_checkpoint(resume_from)
    sim = cfg.simulation
    return create_random_state(
        sim.neurons,
        seed=sim.seed,
        threshold_range=sim.threshold_range,
        weight_range=sim.weight_range,
        delay_range=sim.delay_range,
        signal_range=sim.signal_range,
    )


def main(argv: Optional[List[str]] = None) -> int:
    args = build_parser().parse_args(argv)
    cfg = load_mind_config(config_path=args.config)
    _apply_args(cfg, args)
    setup_logging(cfg)

    checkpoint_path = Path(cfg.checkpoint.path or get_checkpoint_path())

    try:
        state = initial_state(cfg, checkpoint_path if args.resume else None)
    except (MindError, FileNotFoundError, ValueError) as exc:
        logger.error("Could not prepare state: %s", exc)
        return 1

    logger.info("Neurons: %d. Links: %d", state.neurons, state.outputs_weights.size)

    event_log = MindEventLog(cfg)
    try:
        run(
            state,
            steps=args.steps,
            report_interval=cfg.monitoring.report_interval,
            checkpoint_path=str(checkpoint_path),
            checkpoint_every=cfg.checkpoint.every_steps,
            compression_level=cfg.checkpoint.compression_level,
            backup=cfg.checkpoint.backup,
            event_log=event_log,
        )
    except MindError as exc:
        logger.error("Run failed: %s", exc)
        return 1
    finally:
        event_log.close()
    return 0


if __name__ == "__main__":
    sys.exit(main())
