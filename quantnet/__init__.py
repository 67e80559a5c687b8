"""NumPy neural-network layers: matrix kernels, im2col, and convolutional,
deconvolutional, crop, dropout and detection layers with float and 8-bit
quantized convolution."""

__version__ = "0.1.0"
__all__ = [
    "gemm",
    "im2col",
    "conv_ops",
    "convolutional",
    "deconvolutional",
    "crop",
    "dropout",
    "detection",
]