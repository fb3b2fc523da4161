"""
Mind Foundation - Core recurrent network model.

Implements the fixed-topology, discrete-time network of N fully-connected
neurons with refractory timing:

    - ``MindState``: the mutable model data (dense numpy tensors)
    - ``validate_state`` / ``check_state``: structural invariant checker
    - ``step``: advances a state by exactly one tick, in place
    - ``create_random_state``: first-generation initializer

Design principles:
    - Dense by construction: N x N weight matrices, row-major, so a tick is
      two matrix-vector products
    - Bounded clock: ``tick`` wraps at ``MAX_TICK`` and refractory schedules
      are shifted with it, so relative timing survives indefinitely
    - Explicit state: every operation takes the state it mutates; no globals
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Optional, Sequence

import numpy as np

logger = logging.getLogger("neuromind.foundation")

MAX_TICK = 1024

DEFAULT_DTYPE = np.float32

VECTOR_FIELDS = (
    "activation_thresholds",
    "reactivation_delays",
    "next_activations",
    "signal_map",
)

MATRIX_FIELDS = (
    "outputs_weights",
    "input_weights",
)


# ---------------------------------------------------------------------------
# Errors
# ---------------------------------------------------------------------------

class MindError(Exception):
    """Base class for every error raised by neuromind."""


class StructuralInvariantViolation(MindError, ValueError):
    """A state field does not have the size implied by ``neural_activity``.

    Attributes:
        field: Name of the offending field.
        expected_size: The neuron count N every dimension must equal.
        actual_shape: Shape actually found on the field.
    """

    def __init__(self, field: str, expected_size: int, actual_shape: tuple):
        self.field = field
        self.expected_size = expected_size
        self.actual_shape = tuple(actual_shape)
        super().__init__(
            f"{field} has shape {self.actual_shape}, expected size "
            f"{expected_size} in every dimension"
        )


# ---------------------------------------------------------------------------
# State
# ---------------------------------------------------------------------------

@dataclass(eq=False)
class MindState:
    """Mutable data of one simulated network.

    Attributes:
        tick: Bounded clock in ``[0, MAX_TICK)``.
        activation_thresholds: (N,) firing threshold per neuron.
        outputs_weights: (N, N); row i distributes neuron i's output.
        input_weights: (N, N); row i aggregates the signal map for neuron i.
        reactivation_delays: (N,) minimum refractory ticks per neuron.
        next_activations: (N,) earliest tick each neuron may fire again.
        signal_map: (N,) current network output, next tick's input.
        neural_activity: (N,) this tick's activity. Derived, never persisted.
    """

    tick: int
    activation_thresholds: np.ndarray
    outputs_weights: np.ndarray
    input_weights: np.ndarray
    reactivation_delays: np.ndarray
    next_activations: np.ndarray
    signal_map: np.ndarray
    neural_activity: np.ndarray

    @property
    def neurons(self) -> int:
        return len(self.neural_activity)

    @classmethod
    def from_arrays(
        cls,
        *,
        tick: int = 0,
        activation_thresholds: Any,
        outputs_weights: Any,
        input_weights: Any,
        reactivation_delays: Any,
        next_activations: Any,
        signal_map: Any,
        neural_activity: Optional[Any] = None,
        dtype: Any = DEFAULT_DTYPE,
    ) -> "MindState":
        """Build a validated state from array-likes.

        Every field is copied into a freshly owned C-contiguous array of
        ``dtype``. ``neural_activity`` defaults to zeros sized like
        ``signal_map``.

        Raises:
            StructuralInvariantViolation: If the shapes are inconsistent.
        """
        def owned(value: Any) -> np.ndarray:
            return np.array(value, dtype=dtype, order="C", copy=True)

        signal = owned(signal_map)
        if neural_activity is None:
            activity = np.zeros(signal.shape[:1], dtype=dtype)
        else:
            activity = owned(neural_activity)

        state = cls(
            tick=int(tick),
            activation_thresholds=owned(activation_thresholds),
            outputs_weights=owned(outputs_weights),
            input_weights=owned(input_weights),
            reactivation_delays=owned(reactivation_delays),
            next_activations=owned(next_activations),
            signal_map=signal,
            neural_activity=activity,
        )
        validate_state(state)
        return state

    def copy(self) -> "MindState":
        """Return a deep copy that shares no buffers with this state."""
        return MindState(
            tick=self.tick,
            activation_thresholds=self.activation_thresholds.copy(),
            outputs_weights=self.outputs_weights.copy(),
            input_weights=self.input_weights.copy(),
            reactivation_delays=self.reactivation_delays.copy(),
            next_activations=self.next_activations.copy(),
            signal_map=self.signal_map.copy(),
            neural_activity=self.neural_activity.copy(),
        )


# ---------------------------------------------------------------------------
# Validation
# ---------------------------------------------------------------------------

def check_state(state: MindState) -> Optional[StructuralInvariantViolation]:
    """Return the first violated shape invariant, or None if the state is sound.

    Inspects shapes only. ``N`` is taken from ``neural_activity``; the
    vectors are checked first, in declaration order, then both matrices.
    """
    activity_shape = np.shape(state.neural_activity)
    if len(activity_shape) != 1:
        size = activity_shape[0] if activity_shape else 0
        return StructuralInvariantViolation("neural_activity", size, activity_shape)
    n = activity_shape[0]

    for name in VECTOR_FIELDS:
        shape = np.shape(getattr(state, name))
        if shape != (n,):
            return StructuralInvariantViolation(name, n, shape)

    for name in MATRIX_FIELDS:
        shape = np.shape(getattr(state, name))
        if shape != (n, n):
            return StructuralInvariantViolation(name, n, shape)

    return None


def validate_state(state: MindState) -> None:
    """Raise the first violated shape invariant of ``state``.

    Raises:
        StructuralInvariantViolation: Naming the field and the expected size.
    """
    error = check_state(state)
    if error is not None:
        raise error


# ---------------------------------------------------------------------------
# Simulation
# ---------------------------------------------------------------------------

def step(state: MindState) -> None:
    """Advance ``state`` by one tick, in place.

    ``state`` must already have passed ``validate_state``; shapes are not
    re-checked beyond debug assertions.

    Pipeline:
        1. Advance the clock; on reaching MAX_TICK shift every scheduled
           activation back by the pre-reset tick and restart at 0
        2. Neurons out of refractory accumulate input_weights @ signal_map;
           refractory neurons get 0
        3. Neurons whose activity exceeds their threshold fire and are
           rescheduled at tick + max(delay, MAX_TICK); the rest are cleared
        4. Propagate: signal_map = outputs_weights @ neural_activity
    """
    n = len(state.neural_activity)
    assert state.signal_map.shape == (n,), "signal_map does not match N"
    assert state.activation_thresholds.shape == (n,), "activation_thresholds does not match N"
    assert state.reactivation_delays.shape == (n,), "reactivation_delays does not match N"

    # 1. Tick advance & wraparound
    state.tick += 1
    if state.tick >= MAX_TICK:
        state.next_activations -= state.tick
        logger.debug("Tick wrapped at %d", state.tick)
        state.tick = 0
    tick = state.tick

    # 2. Signal accumulation
    ready = state.next_activations <= tick
    accumulated = state.input_weights @ state.signal_map
    np.copyto(state.neural_activity, np.where(ready, accumulated, 0))

    # 3. Activation decision
    fired = state.neural_activity > state.activation_thresholds
    state.next_activations[fired] = tick + np.maximum(
        state.reactivation_delays[fired], MAX_TICK
    )
    state.neural_activity[~fired] = 0

    # 4. Propagation
    np.copyto(state.signal_map, state.outputs_weights @ state.neural_activity)


def step_n(state: MindState, n: int) -> None:
    """Run ``n`` ticks on ``state``."""
    for _ in range(n):
        step(state)


# ---------------------------------------------------------------------------
# Initialization
# ---------------------------------------------------------------------------

def _weights_without_self_loops(
    rng: np.random.Generator, neurons: int, low: float, high: float, dtype: Any
) -> np.ndarray:
    weights = rng.uniform(low, high, size=(neurons, neurons)).astype(dtype)
    np.fill_diagonal(weights, 0.0)
    return weights


def create_random_state(
    neurons: int,
    rng: Optional[np.random.Generator] = None,
    seed: Optional[int] = None,
    threshold_range: Sequence[float] = (0.0, 1.0),
    weight_range: Sequence[float] = (0.0, 1.0),
    delay_range: Sequence[float] = (0.0, 10.0),
    signal_range: Sequence[float] = (0.0, 1.0),
    dtype: Any = DEFAULT_DTYPE,
) -> MindState:
    """Create a first-generation state with uniform random parameters.

    Both weight matrices have a zeroed diagonal (no self-loops); the
    refractory schedule and activity start at zero.

    Args:
        neurons: Network size N (>= 1).
        rng: Generator to draw from; built from ``seed`` when omitted.
        seed: Seed for a new generator, ignored when ``rng`` is given.

    Returns:
        A validated ``MindState`` at tick 0.
    """
    if neurons < 1:
        raise ValueError(f"neurons must be >= 1, got {neurons}")
    if rng is None:
        rng = np.random.default_rng(seed)

    state = MindState(
        tick=0,
        activation_thresholds=rng.uniform(*threshold_range, size=neurons).astype(dtype),
        outputs_weights=_weights_without_self_loops(rng, neurons, *weight_range, dtype),
        input_weights=_weights_without_self_loops(rng, neurons, *weight_range, dtype),
        reactivation_delays=rng.uniform(*delay_range, size=neurons).astype(dtype),
        next_activations=np.zeros(neurons, dtype=dtype),
        signal_map=rng.uniform(*signal_range, size=neurons).astype(dtype),
        neural_activity=np.zeros(neurons, dtype=dtype),
    )
    validate_state(state)
    logger.info("Created random state: %d neurons, %d links", neurons, neurons * neurons)
    return state
