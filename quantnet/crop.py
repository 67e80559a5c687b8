"""Layer that cuts a fixed-size window out of each input image."""

from __future__ import annotations

import numpy as np


class CropLayer:
    """Crops ``crop_height`` x ``crop_width`` windows from channel-first images.

    During training the window is placed at random and may be mirrored;
    otherwise it is centred.  Values are mapped from [0, 1] to [-1, 1] unless
    ``noadjust`` is set.
    """

    def __init__(
        self,
        batch,
        h,
        w,
        c,
        crop_height,
        crop_width,
        flip=False,
        angle=0.0,
        saturation=1.0,
        exposure=1.0,
    ):
        if min(batch, h, w, c, crop_height, crop_width) <= 0:
            raise ValueError("layer dimensions must be positive")
        if crop_height > h or crop_width > w:
            raise ValueError("crop window is larger than the input")
        self.batch = batch
        self.h = h
        self.w = w
        self.c = c
        self.scale = crop_height / h
        self.flip = bool(flip)
        self.angle = angle
        self.saturation = saturation
        self.exposure = exposure
        self.noadjust = False
        self.out_w = crop_width
        self.out_h = crop_height
        self.out_c = c
        self.inputs = self.w * self.h * self.c
        self.outputs = self.out_w * self.out_h * self.out_c
        self.output = np.zeros(self.outputs * batch, dtype=np.float32)

    def __str__(self) -> str:
        return f"Crop Layer: {self.h} x {self.w} -> {self.out_h} x {self.out_w} x {self.c} image"

    def resize(self, w, h):
        """Change the input size, keeping the crop proportional to the height."""
        self.w = w
        self.h = h
        self.out_w = int(self.scale * w)
        self.out_h = int(self.scale * h)
        if self.out_w <= 0 or self.out_h <= 0:
            raise ValueError("resized crop window is empty")
        self.inputs = self.w * self.h * self.c
        self.outputs = self.out_h * self.out_w * self.out_c
        length = self.batch * self.outputs
        grown = np.zeros(length, dtype=np.float32)
        keep = min(length, self.output.size)
        grown[:keep] = self.output[:keep]
        self.output = grown

    def forward(self, inputs, train=False, rng=None):
        """Crop every image of the batch with one shared window."""
        if self.out_h > self.h or self.out_w > self.w:
            raise ValueError("crop window is larger than the input")
        data = np.asarray(inputs, dtype=np.float32).reshape(-1)
        expected = self.batch * self.inputs
        if data.size != expected:
            raise ValueError(f"input has {data.size} values, expected {expected}")
        generator = rng if rng is not None else np.random.default_rng()

        flip = bool(self.flip and generator.integers(2))
        dh = int(generator.integers(self.h - self.out_h + 1))
        dw = int(generator.integers(self.w - self.out_w + 1))
        scale, trans = (1.0, 0.0) if self.noadjust else (2.0, -1.0)
        if not train:
            flip = False
            dh = (self.h - self.out_h) // 2
            dw = (self.w - self.out_w) // 2

        images = data.reshape(self.batch, self.c, self.h, self.w)
        rows = images[:, :, dh:dh + self.out_h, :]
        steps = np.arange(self.out_w)
        cols = self.w - dw - 1 - steps if flip else dw + steps
        window = rows[..., cols]
        self.output[...] = (window * np.float32(scale) + np.float32(trans)).reshape(-1)
        return self.output

    def output_image(self):
        """Return the first output of the batch as a (out_c, out_h, out_w) view."""
        return self.output[: self.outputs].reshape(self.out_c, self.out_h, self.out_w)