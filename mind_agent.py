"""
Mind Agent - Single-neuron signal injector.

An agent owns one neuron index and pushes an external value straight into
the signal map, bypassing the refractory schedule. Call it between ticks,
never from inside ``step``.

Usage::

    from mind_agent import NeuronAgent
    agent = NeuronAgent(3)
    agent.inject(state, 0.8)
    step(state)
    print(agent.activity(state))
"""

from __future__ import annotations

import logging

from mind_foundation import MindState

logger = logging.getLogger("neuromind.agent")


class NeuronAgent:
    """Drives a single neuron of a ``MindState``.

    Args:
        index: Neuron index in ``[0, N)`` of the states it is used with.
    """

    def __init__(self, index: int) -> None:
        if index < 0:
            raise IndexError(f"Neuron index must be non-negative, got {index}")
        self.index = index

    def __repr__(self) -> str:
        return f"NeuronAgent(index={self.index})"

    def _check(self, state: MindState) -> None:
        if self.index >= state.neurons:
            raise IndexError(
                f"Neuron {self.index} out of range for a {state.neurons}-neuron state"
            )

    def inject(self, state: MindState, value: float) -> None:
        """Set this neuron's signal to ``value`` and make it ready immediately."""
        self._check(state)
        state.signal_map[self.index] = value
        state.next_activations[self.index] = 0
        logger.debug("Injected %.4f into neuron %d", value, self.index)

    def activity(self, state: MindState) -> float:
        """Return this neuron's activity from the last tick."""
        self._check(state)
        return float(state.neural_activity[self.index])
