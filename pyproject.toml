[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "quantnet"
version = "0.1.0"
description = "Convolutional, deconvolutional, crop, dropout and detection layers built on NumPy. The convolutional layer has both a float and an 8-bit quantized forward pass."
requires-python = ">=3.10"
dependencies = [
    "numpy",
]
keywords = [
    "neural-network",
    "convolution",
    "deconvolution",
    "quantization",
    "im2col",
    "gemm",
    "object-detection",
]
classifiers = [
    "Development Status :: 3 - Alpha",
    "Intended Audience :: Science/Research",
    "Intended Audience :: Developers",
    "Programming Language :: Python :: 3",
    "Programming Language :: Python :: 3 :: Only",
    "Programming Language :: Python :: 3.10",
    "Programming Language :: Python :: 3.11",
    "Programming Language :: Python :: 3.12",
    "Programming Language :: Python :: 3.13",
    "Operating System :: OS Independent",
    "Topic :: Scientific/Engineering :: Artificial Intelligence",
]

[project.optional-dependencies]
test = [
    "pytest",
]

[tool.hatch.build.targets.wheel]
packages = ["quantnet"]

[tool.pytest.ini_options]
testpaths = ["tests"]
addopts = "-ra"
