"""Simple usage example for neuromind.

Builds a small random network, pokes one neuron with an agent, runs it past
a clock wraparound, and round-trips a checkpoint.
"""

import sys
import os

sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

import numpy as np

from mind_agent import NeuronAgent
from mind_codec import decode, describe, encode
from mind_foundation import MAX_TICK, create_random_state, step, step_n
from mind_monitoring import health_context


def main():
    state = create_random_state(10 * 10, seed=2024)
    print("=== Initial State ===")
    print(f"Neurons: {state.neurons}. Links: {state.outputs_weights.size}")
    print(health_context(state))

    print("\n=== First ticks ===")
    for _ in range(3):
        step(state)
        print(health_context(state))

    print("\n=== Agent injection ===")
    agent = NeuronAgent(0)
    agent.inject(state, 5.0)
    step(state)
    print(f"Neuron 0 activity after injection: {agent.activity(state):.3f}")

    print(f"\n=== Past the wraparound ({MAX_TICK} ticks) ===")
    step_n(state, MAX_TICK)
    print(health_context(state))

    print("\n=== Checkpoint ===")
    blob = encode(state)
    print(describe(blob))
    restored = decode(blob)
    same = all(
        np.array_equal(getattr(state, name), getattr(restored, name))
        for name in ("input_weights", "outputs_weights", "signal_map", "next_activations")
    )
    print(f"Restored tick {restored.tick}, tensors identical: {same}")


if __name__ == "__main__":
    main()
