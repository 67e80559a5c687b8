# quantnet

quantnet is a set of neural-network building blocks written with NumPy. It
provides:

- general matrix multiplication;
- im2col and col2im;
- convolutional, deconvolutional, crop, dropout and detection layers.

The convolutional layer has two forward passes. One works on floats. The
other works on 8-bit quantized data: inputs and weights are `uint8` and the
products add up in `int32`.

Each layer keeps its data in flat `float32` arrays laid out channel-first.
A batch holds `batch * c * h * w` input values. Passes work on these arrays in
place wherever that is possible.

## Installation

```
pip install .
```

To run the tests:

```
pip install ".[test]"
pytest
```

## Modules

### `quantnet.gemm`

- `gemm(a, b, c, alpha, beta, trans_a, trans_b)` computes
  `c = alpha * op(a) @ op(b) + beta * c` in float32. It writes the result into
  `c`.
- `gemm_uint8_int32(a, b, c, alpha, beta)` multiplies two `uint8` matrices into
  an integer accumulator.
- `gemm_int8_int32(a, b, c, alpha)` multiplies two `int8` matrices. Here `a` is
  stored transposed, with shape `(K, M)`. Each sum is divided by `R_MULT` (32),
  rounding toward zero, and clamped to `±INT16_LIMIT` before it is added to `c`.
- `gemm_bin(a, b, c)` adds a row of `b` to `c` where `a` is set, and subtracts
  it where `a` is not set.
- `random_matrix(rows, cols, rng)` returns a matrix of uniform values in
  `[0, 1)`.
- `time_random_matrix(trans_a, trans_b, m, k, n)` times ten float
  multiplications. It prints a summary line and returns the elapsed processor
  time in seconds.

An output array of the wrong shape or dtype raises `ValueError` or
`TypeError`.

### `quantnet.im2col`

- `conv_output_size(size, ksize, stride, pad)` returns the number of kernel
  positions along one axis.
- `get_pixel(image, row, col, channel, pad, pad_value)` reads one pixel at
  padded coordinates.
- `im2col(image, ksize, stride, pad, pad_value)` unfolds a
  `(channels, height, width)` image into a
  `(channels*ksize*ksize, out_h*out_w)` matrix. The result keeps the image's
  dtype.
- `col2im(columns, channels, height, width, ksize, stride, pad)` is the adjoint
  of `im2col`. It sums overlapping entries into a float32 image.

### `quantnet.conv_ops`

These helpers are shared by the layers:

- `Activation` covers `LINEAR`, `RELU`, `LEAKY` (slope 0.1) and `RELU6`.
  `activate` and `gradient` apply an activation and its derivative.
- `add_bias`, `scale_bias` and `backward_bias` work per channel, in place.
- `binarize`, `binarize_weights` and `binarize_input` do sign binarization.
  The last two use mean-magnitude scaling.
- `UpdateArgs` is a dataclass of `learning_rate`, `momentum`, `decay` and
  `batch`, used for one SGD-with-momentum step.

### `quantnet.convolutional`

`ConvolutionalLayer` is a grouped 2-D convolution. It has these methods:

- `forward(inputs)` convolves, adds biases and applies the activation.
- `backward(inputs, input_delta)` accumulates the weight and bias updates from
  `layer.delta`. When `input_delta` is given, it also adds the gradient with
  respect to the inputs into that array.
- `update(args)` applies an `UpdateArgs` step.
- `resize(w, h)` changes the input size.
- `denormalize()` folds the rolling batch-norm statistics into the weights and
  biases.
- `weight_image(index)`, `output_image()` and `delta_image()` return
  `(channels, height, width)` views.
- `rgbgr_weights()` and `rescale_weights(scale, trans)` adjust three-channel
  filters.
- `out_height()`, `out_width()` and `workspace_size()` report the layer's
  geometry.

`forward_quantized(inputs)` runs the integer path:

1. It takes `uint8` inputs and uses the `weights_uint8` and `zero_point_uint8`
   weights.
2. It adds `biases_int32` and requantizes each filter with `M_value` and
   `M0_right_shift_value`.
3. It shifts the results by `activ_zero_point`.
4. It clamps them to `[quant_min, quant_max]` in `output_uint8`.

If `quant_stop_flag` is set, it also dequantizes the results into `output`
with `activ_scale`.

### `quantnet.deconvolutional`

`DeconvolutionalLayer` is a transposed convolution. Its output size is
`(h - 1) * stride + size - 2 * pad`. It has:

- forward and backward passes;
- `update`, `resize(h, w)` and `denormalize`;
- `bilinear_init()`, which sets up an upsampling kernel.

### `quantnet.crop`

`CropLayer` cuts a fixed window out of each image. It maps values from
`[0, 1]` to `[-1, 1]` unless `noadjust` is set.

- While training, the window is placed at random. It is also mirrored at
  random when `flip` is set.
- Otherwise the window is centred.

### `quantnet.dropout`

`DropoutLayer` works in place while training:

- `forward` zeroes each input with the given probability and scales the
  survivors by `1 / (1 - p)`.
- `backward` applies the same mask and scale to a delta array.

### `quantnet.detection`

`DetectionLayer` computes the cost of a grid detector, with
`side*side*classes` class scores, `side*side*n` confidences and the box
coordinates.

- `forward(inputs, truth, train, seen, rng)` fills `delta` when training. It
  also sets `cost` and a `last_stats` dictionary of averages.
- `backward(delta)` adds the layer's gradient into an array.
- `detections(w, h, thresh)` returns a list of `Detection` objects, each with a
  `Box`.

The module also provides `box_iou` and `box_rmse`.

## Example

```python
import numpy as np
from quantnet.conv_ops import Activation, UpdateArgs
from quantnet.convolutional import ConvolutionalLayer

rng = np.random.default_rng(0)
layer = ConvolutionalLayer(
    batch=1, h=8, w=8, c=3, n=4, groups=1, size=3, stride=1, padding=1,
    activation=Activation.LEAKY, batch_normalize=False, binary=False,
    quant_stop_flag=False, adam=False, close_quantization=False,
    layer_quantization=False, rng=rng,
)
x = rng.standard_normal(layer.inputs).astype(np.float32)
y = layer.forward(x)            # flat array of out_c * out_h * out_w values
layer.delta[:] = 1.0
layer.backward(x, None)
layer.update(UpdateArgs(learning_rate=0.01, momentum=0.9, decay=0.0005, batch=1))
```

Randomness comes from a `numpy.random.Generator` that you pass in, so runs can
be repeated. Where no generator is given, a fresh one is created.

## What the package does not do

quantnet is a library of layers, not a complete framework. It has no:

- network container;
- configuration or weight-file reader;
- data loader;
- training loop;
- command-line program;
- GPU support.

There are also some limits within the layers:

- The forward passes of the convolutional and deconvolutional layers add
  biases only. Batch normalization is not computed during a pass; its
  statistics are kept so that `denormalize` can fold them in.
- The quantization parameters of `ConvolutionalLayer` start at zero. You must
  calibrate them before `forward_quantized` gives useful results.
- The requantized output of `forward_quantized` is written for the first image
  of the batch only.