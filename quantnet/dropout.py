"""Dropout layer that zeroes random inputs during training."""

from __future__ import annotations

import numpy as np


class DropoutLayer:
    """Drops each input with ``probability`` and rescales the survivors.

    The layer works in place on the arrays it is given, and remembers the
    random draws of the last forward pass so the backward pass can reuse them.
    """

    def __init__(self, batch, inputs, probability=0.5):
        if batch <= 0 or inputs <= 0:
            raise ValueError("layer dimensions must be positive")
        if not 0.0 <= probability < 1.0:
            raise ValueError("probability must be in [0, 1)")
        self.batch = batch
        self.inputs = inputs
        self.outputs = inputs
        self.probability = probability
        self.scale = 1.0 / (1.0 - probability)
        self.rand = np.zeros(inputs * batch, dtype=np.float32)

    def __str__(self) -> str:
        return (
            f"dropout       p = {self.probability:.2f}               "
            f"{self.inputs:4d}  ->  {self.inputs:4d}"
        )

    def resize(self, inputs):
        """Change the number of inputs per example."""
        if inputs <= 0:
            raise ValueError("inputs must be positive")
        self.inputs = inputs
        self.outputs = inputs
        self.rand = np.zeros(inputs * self.batch, dtype=np.float32)

    def _check(self, array, name) -> None:
        if not isinstance(array, np.ndarray):
            raise TypeError(f"{name} must be a numpy array updated in place")
        if array.size != self.batch * self.inputs:
            raise ValueError(f"{name} has {array.size} values, expected {self.batch * self.inputs}")

    def _apply(self, array: np.ndarray) -> np.ndarray:
        kept = array.reshape(-1) * np.float32(self.scale)
        result = np.where(self.rand < self.probability, 0, kept)
        array[...] = result.reshape(array.shape)
        return array

    def forward(self, inputs, train=False, rng=None):
        """Drop inputs in place when training; otherwise leave them untouched."""
        self._check(inputs, "inputs")
        if not train:
            return inputs
        generator = rng if rng is not None else np.random.default_rng()
        self.rand[...] = generator.random(self.rand.size, dtype=np.float32)
        return self._apply(inputs)

    def backward(self, delta):
        """Apply the last forward pass's mask and scale to ``delta`` in place."""
        if delta is None:
            return None
        self._check(delta, "delta")
        return self._apply(delta)