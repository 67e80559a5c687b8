"""Transposed (fractionally strided) convolution layer."""

from __future__ import annotations

import math

import numpy as np

from .conv_ops import Activation, UpdateArgs, activate, add_bias, backward_bias, gradient
from .gemm import gemm
from .im2col import col2im, im2col

_BN_EPSILON = 0.00001
_INIT_SCALE = 0.02


def _regrow(array: np.ndarray, length: int) -> np.ndarray:
    """Return an array of ``length`` keeping the old prefix, zero-filled after it."""
    grown = np.zeros(length, dtype=array.dtype)
    keep = min(length, array.size)
    grown[:keep] = array[:keep]
    return grown


class DeconvolutionalLayer:
    """A transposed convolution over channel-first batches stored as flat arrays.

    Inputs have ``batch * c * h * w`` values and outputs ``batch * n * out_h *
    out_w`` values, where ``out_h = (h - 1) * stride + size - 2 * pad``.  The
    weights form a ``(c, n * size * size)`` matrix stored row by row.

    Batch-normalization statistics are kept so that :meth:`denormalize` can
    fold them into the weights; the forward pass itself applies the biases.
    """

    def __init__(
        self,
        batch,
        h,
        w,
        c,
        n,
        size=4,
        stride=2,
        padding=0,
        activation=Activation.LINEAR,
        batch_normalize=False,
        adam=False,
        rng=None,
    ):
        if min(batch, h, w, c, n, size, stride) <= 0:
            raise ValueError("layer dimensions must be positive")
        if padding < 0:
            raise ValueError("padding must be non-negative")
        generator = rng if rng is not None else np.random.default_rng()

        self.batch = batch
        self.h = h
        self.w = w
        self.c = c
        self.n = n
        self.size = size
        self.stride = stride
        self.pad = padding
        self.activation = Activation(activation)
        self.batch_normalize = bool(batch_normalize)
        self.learning_rate_scale = 1.0

        self.nweights = c * n * size * size
        self.nbiases = n
        self.weights = (_INIT_SCALE * generator.standard_normal(self.nweights)).astype(np.float32)
        self.weight_updates = np.zeros(self.nweights, dtype=np.float32)
        self.biases = np.zeros(n, dtype=np.float32)
        self.bias_updates = np.zeros(n, dtype=np.float32)

        self.out_c = n
        self._set_geometry()
        self.weights *= np.float32(self.out_w * self.out_h / (self.w * self.h))

        self.output = np.zeros(self.batch * self.outputs, dtype=np.float32)
        self.delta = np.zeros(self.batch * self.outputs, dtype=np.float32)

        self.scales = None
        self.scale_updates = None
        if self.batch_normalize:
            self.scales = np.ones(n, dtype=np.float32)
            self.scale_updates = np.zeros(n, dtype=np.float32)
            self.mean = np.zeros(n, dtype=np.float32)
            self.variance = np.zeros(n, dtype=np.float32)
            self.mean_delta = np.zeros(n, dtype=np.float32)
            self.variance_delta = np.zeros(n, dtype=np.float32)
            self.rolling_mean = np.zeros(n, dtype=np.float32)
            self.rolling_variance = np.zeros(n, dtype=np.float32)
            self.x = np.zeros(self.batch * self.outputs, dtype=np.float32)
            self.x_norm = np.zeros(self.batch * self.outputs, dtype=np.float32)

        self.adam = bool(adam)
        if self.adam:
            self.m = np.zeros(self.nweights, dtype=np.float32)
            self.v = np.zeros(self.nweights, dtype=np.float32)
            self.bias_m = np.zeros(n, dtype=np.float32)
            self.bias_v = np.zeros(n, dtype=np.float32)
            self.scale_m = np.zeros(n, dtype=np.float32)
            self.scale_v = np.zeros(n, dtype=np.float32)

    def _set_geometry(self) -> None:
        self.out_h = (self.h - 1) * self.stride + self.size - 2 * self.pad
        self.out_w = (self.w - 1) * self.stride + self.size - 2 * self.pad
        if self.out_h <= 0 or self.out_w <= 0:
            raise ValueError("padding leaves no output")
        self.outputs = self.out_h * self.out_w * self.out_c
        self.inputs = self.w * self.h * self.c

    def __str__(self) -> str:
        return (
            f"deconv{self.n:5d} {self.size:2d} x{self.size:2d} /{self.stride:2d}  "
            f"{self.w:4d} x{self.h:4d} x{self.c:4d}   ->  "
            f"{self.out_w:4d} x{self.out_h:4d} x{self.out_c:4d}"
        )

    def bilinear_init(self):
        """Set each filter's own input channel to a bilinear upsampling kernel."""
        center = (self.size - 1) / 2.0
        offsets = 1.0 - np.abs(np.arange(self.size) - center)
        kernel = np.outer(offsets, offsets).astype(np.float32)
        view = self.weights.reshape(-1, self.c, self.size, self.size)
        for f in range(self.n):
            view[f, f % self.c] = kernel

    def workspace_size(self):
        """Bytes of float scratch space needed for one image's column matrix."""
        return self.h * self.w * self.size * self.size * self.n * 4

    def resize(self, h, w):
        """Change the input size, regrowing the output buffers."""
        self.h = h
        self.w = w
        self._set_geometry()
        length = self.batch * self.outputs
        self.output = _regrow(self.output, length)
        self.delta = _regrow(self.delta, length)
        if self.batch_normalize:
            self.x = _regrow(self.x, length)
            self.x_norm = _regrow(self.x_norm, length)

    def _check_input(self, inputs) -> np.ndarray:
        flat = np.asarray(inputs, dtype=np.float32).reshape(-1)
        expected = self.batch * self.inputs
        if flat.size != expected:
            raise ValueError(f"input has {flat.size} values, expected {expected}")
        return flat

    def _image(self, flat: np.ndarray, b: int) -> np.ndarray:
        spatial = self.h * self.w
        start = b * self.c * spatial
        return flat[start:start + self.c * spatial].reshape(self.c, spatial)

    def forward(self, inputs):
        """Spread each input pixel over a kernel-sized patch, add biases, activate."""
        data = self._check_input(inputs)
        self.output.fill(0)
        weights = self.weights.reshape(self.c, -1)
        spatial = self.h * self.w
        for b in range(self.batch):
            cols = np.zeros((weights.shape[1], spatial), dtype=np.float32)
            gemm(weights, self._image(data, b), cols, 1.0, 0.0, trans_a=True)
            image = col2im(cols, self.out_c, self.out_h, self.out_w, self.size, self.stride, self.pad)
            self.output[b * self.outputs:(b + 1) * self.outputs] = image.reshape(-1)
        add_bias(self.output, self.biases, self.batch, self.n, self.out_h * self.out_w)
        self.output[...] = activate(self.output, self.activation)
        return self.output

    def backward(self, inputs, input_delta=None):
        """Back-propagate ``delta`` into weight and bias updates.

        When ``input_delta`` is given it is an array that receives the
        gradient with respect to the inputs, added in place.
        """
        data = self._check_input(inputs)
        self.delta[...] = self.delta * gradient(self.output, self.activation)
        backward_bias(self.bias_updates, self.delta, self.batch, self.n, self.out_h * self.out_w)

        flat_delta = None
        if input_delta is not None:
            if not isinstance(input_delta, np.ndarray):
                raise TypeError("input_delta must be a numpy array updated in place")
            if input_delta.size != self.batch * self.inputs:
                raise ValueError(
                    f"input_delta has {input_delta.size} values, expected {self.batch * self.inputs}"
                )
            flat_delta = input_delta.astype(np.float32).reshape(-1)

        weights = self.weights.reshape(self.c, -1)
        updates = self.weight_updates.reshape(self.c, -1)
        for b in range(self.batch):
            out_delta = self.delta[b * self.outputs:(b + 1) * self.outputs].reshape(
                self.out_c, self.out_h, self.out_w
            )
            cols = im2col(out_delta, self.size, self.stride, self.pad)
            gemm(self._image(data, b), cols, updates, 1.0, 1.0, trans_b=True)
            if flat_delta is not None:
                gemm(weights, cols, self._image(flat_delta, b), 1.0, 1.0)

        if flat_delta is not None:
            input_delta[...] = flat_delta.reshape(input_delta.shape)
        return input_delta

    def update(self, args: UpdateArgs):
        """Apply one SGD-with-momentum step from the accumulated updates."""
        learning_rate = args.learning_rate * self.learning_rate_scale
        step = np.float32(learning_rate / args.batch)
        momentum = np.float32(args.momentum)

        self.biases += step * self.bias_updates
        self.bias_updates *= momentum

        if self.scales is not None and self.scale_updates is not None:
            self.scales += step * self.scale_updates
            self.scale_updates *= momentum

        self.weight_updates += np.float32(-args.decay * args.batch) * self.weights
        self.weights += step * self.weight_updates
        self.weight_updates *= momentum

    def denormalize(self):
        """Fold the rolling batch-norm statistics into the weights and biases."""
        if not self.batch_normalize:
            raise ValueError("layer has no batch normalization to fold")
        per_filter = self.c * self.size * self.size
        factors = np.array(
            [s / math.sqrt(v + _BN_EPSILON) for s, v in zip(self.scales, self.rolling_variance)],
            dtype=np.float32,
        )
        self.weights.reshape(self.n, per_filter)[...] *= factors[:, None]
        self.biases -= self.rolling_mean * factors
        self.scales[...] = 1
        self.rolling_mean[...] = 0
        self.rolling_variance[...] = 1