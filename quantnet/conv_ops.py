"""Element-wise helpers shared by the convolution layers."""

from __future__ import annotations

import enum
from dataclasses import dataclass

import numpy as np

LEAKY_SLOPE = 0.1
RELU6_CAP = 6.0


class Activation(enum.Enum):
    """Activation functions applied to layer outputs."""

    LINEAR = "linear"
    RELU = "relu"
    LEAKY = "leaky"
    RELU6 = "relu6"


@dataclass
class UpdateArgs:
    """Hyper-parameters for one SGD-with-momentum update step."""

    learning_rate: float
    momentum: float = 0.9
    decay: float = 0.0
    batch: int = 1

    def __post_init__(self) -> None:
        if self.batch < 1:
            raise ValueError("batch must be at least 1")


def activate(values, activation):
    """Return ``values`` passed through ``activation`` as a new float32 array."""
    x = np.asarray(values, dtype=np.float32)
    activation = Activation(activation)
    if activation is Activation.LINEAR:
        return x.copy()
    if activation is Activation.RELU:
        return np.maximum(x, np.float32(0))
    if activation is Activation.LEAKY:
        return np.where(x > 0, x, np.float32(LEAKY_SLOPE) * x).astype(np.float32)
    return np.clip(x, np.float32(0), np.float32(RELU6_CAP))


def gradient(output, activation):
    """Return the derivative of ``activation`` evaluated at its ``output``."""
    y = np.asarray(output, dtype=np.float32)
    activation = Activation(activation)
    if activation is Activation.LINEAR:
        return np.ones_like(y)
    if activation is Activation.RELU:
        return (y > 0).astype(np.float32)
    if activation is Activation.LEAKY:
        return np.where(y > 0, 1.0, LEAKY_SLOPE).astype(np.float32)
    return ((y > 0) & (y < RELU6_CAP)).astype(np.float32)


def _rows(values, n, size) -> np.ndarray:
    arr = np.asarray(values, dtype=np.float32)
    if arr.size != n * size:
        raise ValueError(f"expected {n * size} values, got {arr.size}")
    return arr.reshape(n, size)


def binarize_weights(weights, n, size):
    """Replace each of ``n`` filters by ±(mean absolute weight), keeping signs."""
    rows = _rows(weights, n, size)
    means = np.abs(rows).mean(axis=1, keepdims=True)
    return np.where(rows > 0, means, -means).astype(np.float32).reshape(-1)


def binarize(values):
    """Map positive values to 1 and everything else to -1."""
    x = np.asarray(values, dtype=np.float32)
    return np.where(x > 0, 1.0, -1.0).astype(np.float32)


def binarize_input(values, n, size):
    """Replace each of ``size`` positions by ±(mean absolute value over ``n`` channels)."""
    rows = _rows(values, n, size)
    means = np.abs(rows).mean(axis=0, keepdims=True)
    return np.where(rows > 0, means, -means).astype(np.float32).reshape(-1)


def _channel_view(array, batch, n, size, name) -> np.ndarray:
    if not isinstance(array, np.ndarray):
        raise TypeError(f"{name} must be a numpy array updated in place")
    if array.size != batch * n * size:
        raise ValueError(f"{name} has {array.size} values, expected {batch * n * size}")
    return array.reshape(batch, n, size)


def _per_channel(values, n, name) -> np.ndarray:
    arr = np.asarray(values, dtype=np.float32).reshape(-1)
    if arr.size != n:
        raise ValueError(f"{name} has {arr.size} values, expected {n}")
    return arr[None, :, None]


def add_bias(output, biases, batch, n, size):
    """Add each channel's bias to every spatial position of ``output`` in place."""
    view = _channel_view(output, batch, n, size, "output")
    output[...] = (view + _per_channel(biases, n, "biases")).reshape(output.shape)
    return output


def scale_bias(output, scales, batch, n, size):
    """Multiply every spatial position of ``output`` by its channel's scale in place."""
    view = _channel_view(output, batch, n, size, "output")
    output[...] = (view * _per_channel(scales, n, "scales")).reshape(output.shape)
    return output


def backward_bias(bias_updates, delta, batch, n, size):
    """Accumulate the per-channel sum of ``delta`` into ``bias_updates`` in place."""
    if not isinstance(bias_updates, np.ndarray):
        raise TypeError("bias_updates must be a numpy array updated in place")
    if bias_updates.size != n:
        raise ValueError(f"bias_updates has {bias_updates.size} values, expected {n}")
    d = np.asarray(delta, dtype=np.float32)
    if d.size != batch * n * size:
        raise ValueError(f"delta has {d.size} values, expected {batch * n * size}")
    sums = d.reshape(batch, n, size).sum(axis=(0, 2))
    bias_updates[...] = (bias_updates.reshape(-1) + sums).reshape(bias_updates.shape)
    return bias_updates