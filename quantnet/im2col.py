"""Rearranging image patches into matrix columns and back.

Images are stored channel-first with shape ``(channels, height, width)``.
A column matrix has one row per (channel, kernel row, kernel column) triple,
ordered channel-major, and one column per output position in row-major order.
"""

from __future__ import annotations

import numpy as np


def conv_output_size(size, ksize, stride, pad):
    """Return the number of kernel positions along one image axis."""
    if ksize <= 0:
        raise ValueError("kernel size must be positive")
    if stride <= 0:
        raise ValueError("stride must be positive")
    if pad < 0:
        raise ValueError("padding must be non-negative")
    span = size + 2 * pad - ksize
    # Integer division that truncates toward zero.
    quotient = abs(span) // stride
    return (quotient if span >= 0 else -quotient) + 1


def _as_image(image) -> np.ndarray:
    arr = np.asarray(image)
    if arr.ndim != 3:
        raise ValueError(f"expected a (channels, height, width) image, got {arr.ndim} dimension(s)")
    return arr


def _output_shape(height, width, ksize, stride, pad):
    out_h = conv_output_size(height, ksize, stride, pad)
    out_w = conv_output_size(width, ksize, stride, pad)
    if out_h <= 0 or out_w <= 0:
        raise ValueError("kernel does not fit in the padded image")
    return out_h, out_w


def get_pixel(image, row, col, channel, pad, pad_value=0):
    """Read one pixel at padded coordinates, returning ``pad_value`` outside the image."""
    arr = _as_image(image)
    _, height, width = arr.shape
    row -= pad
    col -= pad
    if row < 0 or col < 0 or row >= height or col >= width:
        return pad_value
    return arr[channel, row, col]


def im2col(image, ksize, stride, pad, pad_value=0):
    """Unfold ``image`` into a ``(channels*ksize*ksize, out_h*out_w)`` matrix.

    The result keeps the image's dtype; positions that fall in the padding
    take ``pad_value``.
    """
    arr = _as_image(image)
    channels, height, width = arr.shape
    out_h, out_w = _output_shape(height, width, ksize, stride, pad)

    padded = np.pad(
        arr,
        ((0, 0), (pad, pad), (pad, pad)),
        mode="constant",
        constant_values=pad_value,
    )
    columns = np.empty((channels, ksize, ksize, out_h, out_w), dtype=arr.dtype)
    row_stop = stride * (out_h - 1) + 1
    col_stop = stride * (out_w - 1) + 1
    for ky in range(ksize):
        for kx in range(ksize):
            columns[:, ky, kx] = padded[:, ky:ky + row_stop:stride, kx:kx + col_stop:stride]
    return columns.reshape(channels * ksize * ksize, out_h * out_w)


def col2im(columns, channels, height, width, ksize, stride, pad):
    """Fold a column matrix back into a float32 image, summing overlapping entries.

    This is the adjoint of :func:`im2col`; entries that land in the padding
    are dropped.
    """
    out_h, out_w = _output_shape(height, width, ksize, stride, pad)
    cols = np.asarray(columns, dtype=np.float32)
    expected = channels * ksize * ksize * out_h * out_w
    if cols.size != expected:
        raise ValueError(f"column data has {cols.size} values, expected {expected}")
    cols = cols.reshape(channels, ksize, ksize, out_h, out_w)

    padded = np.zeros((channels, height + 2 * pad, width + 2 * pad), dtype=np.float32)
    row_stop = stride * (out_h - 1) + 1
    col_stop = stride * (out_w - 1) + 1
    for ky in range(ksize):
        for kx in range(ksize):
            padded[:, ky:ky + row_stop:stride, kx:kx + col_stop:stride] += cols[:, ky, kx]
    return padded[:, pad:pad + height, pad:pad + width].copy()