"""Convolutional layer with float and integer-quantized forward passes."""

from __future__ import annotations

import math

import numpy as np

from .conv_ops import Activation, UpdateArgs, activate, add_bias, backward_bias, gradient
from .gemm import gemm, gemm_uint8_int32
from .im2col import col2im, conv_output_size, im2col

_BN_EPSILON = 0.00001


def _regrow(array: np.ndarray, length: int) -> np.ndarray:
    """Return an array of ``length`` keeping the old prefix, zero-filled after it."""
    grown = np.zeros(length, dtype=array.dtype)
    keep = min(length, array.size)
    grown[:keep] = array[:keep]
    return grown


def _round_half_away(values: np.ndarray) -> np.ndarray:
    return np.sign(values) * np.floor(np.abs(values) + 0.5)


class ConvolutionalLayer:
    """A 2-D convolution over channel-first batches stored as flat arrays.

    Inputs have ``batch * c * h * w`` values and outputs ``batch * n * out_h *
    out_w`` values.  Weights are laid out filter by filter, each filter holding
    ``c / groups`` channels of ``size`` x ``size`` kernels.
    """

    def __init__(
        self,
        batch,
        h,
        w,
        c,
        n,
        groups=1,
        size=3,
        stride=1,
        padding=0,
        activation=Activation.LEAKY,
        batch_normalize=False,
        binary=False,
        quant_stop_flag=False,
        adam=False,
        close_quantization=False,
        layer_quantization=False,
        rng=None,
    ):
        if min(batch, h, w, c, n, groups, size, stride) <= 0:
            raise ValueError("layer dimensions must be positive")
        if padding < 0:
            raise ValueError("padding must be non-negative")
        if c % groups or n % groups:
            raise ValueError("channels and filters must be divisible by groups")
        generator = rng if rng is not None else np.random.default_rng()

        self.batch = batch
        self.h = h
        self.w = w
        self.c = c
        self.n = n
        self.groups = groups
        self.size = size
        self.stride = stride
        self.pad = padding
        self.activation = Activation(activation)
        self.batch_normalize = bool(batch_normalize)
        self.binary = bool(binary)
        self.learning_rate_scale = 1.0

        self.nweights = c // groups * n * size * size
        self.nbiases = n
        fan_in = size * size * c // groups
        scale = math.sqrt(2.0 / fan_in)
        self.weights = (scale * generator.standard_normal(self.nweights)).astype(np.float32)
        self.weight_updates = np.zeros(self.nweights, dtype=np.float32)
        self.biases = np.zeros(n, dtype=np.float32)
        self.bias_updates = np.zeros(n, dtype=np.float32)

        self.out_c = n
        self._set_geometry()

        self.output = np.zeros(self.batch * self.outputs, dtype=np.float32)
        self.delta = np.zeros(self.batch * self.outputs, dtype=np.float32)

        # Quantization parameters, filled in by whoever calibrates the layer.
        self.layer_quant_flag = bool(layer_quantization)
        self.close_quantization = bool(close_quantization)
        self.quant_stop_flag = bool(quant_stop_flag)
        self.quant_min = 0
        self.quant_max = 255
        self.input_zero_point = 0
        self.activ_zero_point = 0
        self.activ_scale = 0.0
        self.weights_uint8 = np.zeros(self.nweights, dtype=np.uint8)
        self.zero_point_uint8 = np.zeros(self.nweights, dtype=np.uint8)
        self.biases_int32 = np.zeros(n, dtype=np.int32)
        self.M_value = np.zeros(n, dtype=np.float64)
        self.M0_right_shift_value = np.zeros(n, dtype=np.float64)
        self.output_int32 = np.zeros(self.batch * self.outputs, dtype=np.int32)
        self.output_uint8 = np.zeros(self.batch * self.outputs, dtype=np.uint8)

        self.scales = None
        self.scale_updates = None
        self.binary_weights = None
        if self.binary:
            self.binary_weights = np.zeros(self.nweights, dtype=np.float32)
            self.scales = np.zeros(n, dtype=np.float32)

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
        self.out_h = self.out_height()
        self.out_w = self.out_width()
        if self.out_h <= 0 or self.out_w <= 0:
            raise ValueError("kernel does not fit in the padded input")
        self.outputs = self.out_h * self.out_w * self.out_c
        self.inputs = self.w * self.h * self.c

    @property
    def uses_quantized_forward(self) -> bool:
        """Whether this layer is configured to run its integer forward pass."""
        return self.layer_quant_flag and not self.close_quantization

    def __str__(self) -> str:
        bflops = (
            2.0 * self.n * self.size * self.size * self.c / self.groups * self.out_h * self.out_w
        ) / 1e9
        return (
            f"conv  {self.n:5d} {self.size:2d} x{self.size:2d} /{self.stride:2d}  "
            f"{self.w:4d} x{self.h:4d} x{self.c:4d}   ->  "
            f"{self.out_w:4d} x{self.out_h:4d} x{self.out_c:4d}  {bflops:5.3f} BFLOPs"
        )

    def out_height(self):
        """Number of output rows for the current input height."""
        return conv_output_size(self.h, self.size, self.stride, self.pad)

    def out_width(self):
        """Number of output columns for the current input width."""
        return conv_output_size(self.w, self.size, self.stride, self.pad)

    def workspace_size(self):
        """Bytes of float scratch space needed to unfold one group's input."""
        return self.out_h * self.out_w * self.size * self.size * self.c // self.groups * 4

    def resize(self, w, h):
        """Change the input size, regrowing the output buffers."""
        self.w = w
        self.h = h
        self._set_geometry()
        length = self.batch * self.outputs
        self.output = _regrow(self.output, length)
        self.delta = _regrow(self.delta, length)
        self.output_int32 = _regrow(self.output_int32, length)
        self.output_uint8 = _regrow(self.output_uint8, length)
        if self.batch_normalize:
            self.x = _regrow(self.x, length)
            self.x_norm = _regrow(self.x_norm, length)

    # Slicing helpers -------------------------------------------------------

    def _dims(self):
        m = self.n // self.groups
        k = self.size * self.size * self.c // self.groups
        spatial = self.out_h * self.out_w
        return m, k, spatial

    def _group_weights(self, weights: np.ndarray, group: int) -> np.ndarray:
        m, k, _ = self._dims()
        start = group * self.nweights // self.groups
        return weights[start:start + m * k].reshape(m, k)

    def _input_slice(self, flat: np.ndarray, b: int, group: int) -> np.ndarray:
        per_group = self.c // self.groups * self.h * self.w
        start = (b * self.groups + group) * per_group
        return flat[start:start + per_group].reshape(self.c // self.groups, self.h, self.w)

    def _output_slice(self, flat: np.ndarray, b: int, group: int) -> np.ndarray:
        m, _, spatial = self._dims()
        start = (b * self.groups + group) * spatial * m
        return flat[start:start + spatial * m].reshape(m, spatial)

    def _check_input(self, inputs, dtype) -> np.ndarray:
        flat = np.asarray(inputs, dtype=dtype).reshape(-1)
        expected = self.batch * self.inputs
        if flat.size != expected:
            raise ValueError(f"input has {flat.size} values, expected {expected}")
        return flat

    # Passes ------------------------------------------------------------------

    def forward(self, inputs):
        """Run the float forward pass: convolve, add biases, activate."""
        data = self._check_input(inputs, np.float32)
        self.output.fill(0)
        m, _, spatial = self._dims()
        for b in range(self.batch):
            for g in range(self.groups):
                cols = im2col(self._input_slice(data, b, g), self.size, self.stride, self.pad)
                gemm(self._group_weights(self.weights, g), cols, self._output_slice(self.output, b, g), 1.0, 1.0)
        add_bias(self.output, self.biases, self.batch, self.n, spatial)
        count = m * spatial * self.batch
        self.output[:count] = activate(self.output[:count], self.activation)
        return self.output

    def forward_quantized(self, inputs):
        """Run the uint8 forward pass and return the uint8 output buffer.

        The requantized results are written for the first image of the batch;
        with ``quant_stop_flag`` set they are also dequantized into ``output``.
        """
        data = self._check_input(inputs, np.uint8)
        _, _, spatial = self._dims()
        zero_points = self.zero_point_uint8[: self._dims()[0] * self._dims()[1]].reshape(
            self._dims()[0], self._dims()[1]
        )
        for b in range(self.batch):
            for g in range(self.groups):
                cols = im2col(
                    self._input_slice(data, b, g),
                    self.size,
                    self.stride,
                    self.pad,
                    pad_value=self.input_zero_point,
                )
                acc = self._output_slice(self.output_int32, b, g)
                gemm_uint8_int32(self._group_weights(self.weights_uint8, g), cols, acc, 1, 0)
                gemm_uint8_int32(zero_points, cols, acc, -1, 1)

        acc = self.output_int32[: self.outputs].reshape(self.out_c, spatial).astype(np.int64)
        acc = acc + self.biases_int32.astype(np.int64)[:, None]
        scaled = np.trunc(acc * self.M_value[:, None]).astype(np.int64)
        q = np.trunc(scaled * self.M0_right_shift_value[:, None]).astype(np.int64)
        q = q.astype(np.int32).astype(np.int64)

        zp = int(self.activ_zero_point)
        if self.activation is Activation.LEAKY:
            values = np.where(q < 0, _round_half_away(q * 0.1).astype(np.int64) + zp, q + zp)
        elif self.activation is Activation.RELU6:
            values = np.where(q <= 0, zp, q + zp)
        else:
            values = q + zp
        wrapped = values & 0xFF
        final = np.clip(wrapped, self.quant_min, self.quant_max).astype(np.uint8)
        self.output_uint8[: self.outputs] = final.reshape(-1)

        if self.quant_stop_flag:
            dequant = (self.output_uint8[: self.outputs].astype(np.int64) - zp) * self.activ_scale
            self.output[: self.outputs] = dequant.astype(np.float32)
        return self.output_uint8

    def backward(self, inputs, input_delta=None):
        """Back-propagate ``delta`` into weight and bias updates.

        When ``input_delta`` is given it is an array that receives the
        gradient with respect to the inputs, added in place.
        """
        data = self._check_input(inputs, np.float32)
        _, _, spatial = self._dims()
        self.delta[...] = self.delta * gradient(self.output, self.activation)
        backward_bias(self.bias_updates, self.delta, self.batch, self.n, spatial)

        flat_delta = None
        if input_delta is not None:
            if not isinstance(input_delta, np.ndarray):
                raise TypeError("input_delta must be a numpy array updated in place")
            if input_delta.size != self.batch * self.inputs:
                raise ValueError(
                    f"input_delta has {input_delta.size} values, expected {self.batch * self.inputs}"
                )
            flat_delta = input_delta.astype(np.float32).reshape(-1)

        for b in range(self.batch):
            for g in range(self.groups):
                out_delta = self._output_slice(self.delta, b, g)
                cols = im2col(self._input_slice(data, b, g), self.size, self.stride, self.pad)
                gemm(out_delta, cols, self._group_weights(self.weight_updates, g), 1.0, 1.0, trans_b=True)
                if flat_delta is not None:
                    weights = self._group_weights(self.weights, g)
                    col_delta = np.zeros((weights.shape[1], spatial), dtype=np.float32)
                    gemm(weights, out_delta, col_delta, 1.0, 0.0, trans_a=True)
                    image = col2im(
                        col_delta, self.c // self.groups, self.h, self.w, self.size, self.stride, self.pad
                    )
                    self._input_slice(flat_delta, b, g)[...] += image

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
        per_filter = self.c // self.groups * self.size * self.size
        factors = (self.scales / np.sqrt(self.rolling_variance + _BN_EPSILON)).astype(np.float32)
        self.weights.reshape(self.n, per_filter)[...] *= factors[:, None]
        self.biases -= self.rolling_mean * factors
        self.scales[...] = 1
        self.rolling_mean[...] = 0
        self.rolling_variance[...] = 1

    # Image views -------------------------------------------------------------

    def weight_image(self, index):
        """Return filter ``index`` as a (channels, size, size) view of the weights."""
        if not 0 <= index < self.n:
            raise IndexError(f"filter index {index} out of range")
        channels = self.c // self.groups
        length = channels * self.size * self.size
        start = index * length
        return self.weights[start:start + length].reshape(channels, self.size, self.size)

    def rgbgr_weights(self):
        """Swap the first and third channel of every three-channel filter."""
        for index in range(self.n):
            image = self.weight_image(index)
            if image.shape[0] == 3:
                image[[0, 2]] = image[[2, 0]]

    def rescale_weights(self, scale, trans):
        """Scale three-channel filters and shift their biases by ``sum * trans``."""
        for index in range(self.n):
            image = self.weight_image(index)
            if image.shape[0] == 3:
                image *= np.float32(scale)
                self.biases[index] += np.float32(image.sum() * trans)

    def output_image(self):
        """Return the first output of the batch as a (out_c, out_h, out_w) view."""
        return self.output[: self.outputs].reshape(self.out_c, self.out_h, self.out_w)

    def delta_image(self):
        """Return the first delta of the batch as a (out_c, out_h, out_w) view."""
        return self.delta[: self.outputs].reshape(self.out_c, self.out_h, self.out_w)