"""Grid detection layer: per-cell class scores, box confidences and boxes.

The flat output of one image holds, in order, ``side*side*classes`` class
scores, ``side*side*n`` box confidences and ``side*side*n*coords`` box
coordinates.  A truth record for one cell holds ``1 + classes + coords``
values: an object flag, one-hot classes and the box.
"""

from __future__ import annotations

import math
from dataclasses import dataclass, field

import numpy as np


@dataclass
class Box:
    """An axis-aligned box given by its centre and size."""

    x: float
    y: float
    w: float
    h: float


@dataclass
class Detection:
    """One predicted box with its objectness and thresholded class scores."""

    bbox: Box
    objectness: float
    prob: list = field(default_factory=list)


def _overlap(x1: float, w1: float, x2: float, w2: float) -> float:
    left = max(x1 - w1 / 2, x2 - w2 / 2)
    right = min(x1 + w1 / 2, x2 + w2 / 2)
    return right - left


def _intersection(a: Box, b: Box) -> float:
    w = _overlap(a.x, a.w, b.x, b.w)
    h = _overlap(a.y, a.h, b.y, b.h)
    if w < 0 or h < 0:
        return 0.0
    return w * h


def box_iou(a, b):
    """Intersection over union of two boxes; NaN when both have no area."""
    inter = _intersection(a, b)
    union = a.w * a.h + b.w * b.h - inter
    if union == 0:
        return float("nan")
    return inter / union


def box_rmse(a, b):
    """Euclidean distance between the (x, y, w, h) vectors of two boxes."""
    return math.sqrt((a.x - b.x) ** 2 + (a.y - b.y) ** 2 + (a.w - b.w) ** 2 + (a.h - b.h) ** 2)


def _box_at(values: np.ndarray, index: int) -> Box:
    return Box(*(float(v) for v in values[index:index + 4]))


class DetectionLayer:
    """Scores ``n`` candidate boxes in every cell of a ``side`` x ``side`` grid."""

    def __init__(self, batch, inputs, n, side, classes, coords=4, rescore=False):
        if min(batch, n, side, classes) <= 0 or coords < 4:
            raise ValueError("layer dimensions must be positive and coords at least 4")
        if side * side * ((1 + coords) * n + classes) != inputs:
            raise ValueError("inputs do not match side, boxes, classes and coords")
        self.batch = batch
        self.inputs = inputs
        self.outputs = inputs
        self.n = n
        self.side = side
        self.w = side
        self.h = side
        self.classes = classes
        self.coords = coords
        self.rescore = bool(rescore)
        self.truths = side * side * (1 + coords + classes)

        self.softmax = False
        self.sqrt = False
        self.forced = False
        self.random = False
        self.object_scale = 1.0
        self.noobject_scale = 1.0
        self.class_scale = 1.0
        self.coord_scale = 1.0

        self.cost = 0.0
        self.last_stats: dict = {}
        self.output = np.zeros(batch * self.outputs, dtype=np.float32)
        self.delta = np.zeros(batch * self.outputs, dtype=np.float32)

    def __str__(self) -> str:
        return "Detection Layer"

    def _apply_softmax(self) -> None:
        locations = self.side * self.side
        rows = self.output.reshape(self.batch, self.inputs)
        span = locations * self.classes
        scores = rows[:, :span].reshape(self.batch, locations, self.classes).astype(np.float64)
        exps = np.exp(scores - scores.max(axis=2, keepdims=True))
        probs = exps / exps.sum(axis=2, keepdims=True)
        rows[:, :span] = probs.reshape(self.batch, span).astype(np.float32)

    def _predicted_box(self, index: int) -> Box:
        out = _box_at(self.output, index)
        out.x /= self.side
        out.y /= self.side
        if self.sqrt:
            out.w = out.w * out.w
            out.h = out.h * out.h
        return out

    def forward(self, inputs, truth=None, train=False, seen=0, rng=None):
        """Copy the inputs to the output and, when training, compute the loss gradient."""
        data = np.asarray(inputs, dtype=np.float32).reshape(-1)
        if data.size != self.batch * self.inputs:
            raise ValueError(f"input has {data.size} values, expected {self.batch * self.inputs}")
        self.output[...] = data
        if self.softmax:
            self._apply_softmax()
        if not train:
            return self.output

        if truth is None:
            raise ValueError("training requires truth values")
        labels = np.asarray(truth, dtype=np.float32).reshape(-1)
        if labels.size != self.batch * self.truths:
            raise ValueError(f"truth has {labels.size} values, expected {self.batch * self.truths}")
        generator = rng if rng is not None else np.random.default_rng()

        out = self.output
        delta = self.delta
        delta.fill(0)
        locations = self.side * self.side
        record = 1 + self.coords + self.classes
        avg_iou = avg_cat = avg_allcat = avg_obj = avg_anyobj = 0.0
        count = 0

        for b in range(self.batch):
            index = b * self.inputs
            for i in range(locations):
                truth_index = (b * locations + i) * record
                is_obj = int(labels[truth_index])
                for j in range(self.n):
                    p_index = index + locations * self.classes + i * self.n + j
                    delta[p_index] = self.noobject_scale * (0 - out[p_index])
                    avg_anyobj += float(out[p_index])
                if not is_obj:
                    continue

                class_index = index + i * self.classes
                for j in range(self.classes):
                    target = float(labels[truth_index + 1 + j])
                    value = float(out[class_index + j])
                    delta[class_index + j] = self.class_scale * (target - value)
                    if target:
                        avg_cat += value
                    avg_allcat += value

                truth_box = _box_at(labels, truth_index + 1 + self.classes)
                truth_box.x /= self.side
                truth_box.y /= self.side

                best_index = -1
                best_iou = 0.0
                best_rmse = 20.0
                for j in range(self.n):
                    box_index = index + locations * (self.classes + self.n) + (i * self.n + j) * self.coords
                    candidate = self._predicted_box(box_index)
                    iou = box_iou(candidate, truth_box)
                    rmse = box_rmse(candidate, truth_box)
                    if best_iou > 0 or iou > 0:
                        if iou > best_iou:
                            best_iou = iou
                            best_index = j
                    elif rmse < best_rmse:
                        best_rmse = rmse
                        best_index = j

                if self.forced:
                    best_index = 1 if truth_box.w * truth_box.h < 0.1 else 0
                if self.random and seen < 64000:
                    best_index = int(generator.integers(self.n))

                box_index = index + locations * (self.classes + self.n) + (i * self.n + best_index) * self.coords
                tbox_index = truth_index + 1 + self.classes
                iou = box_iou(self._predicted_box(box_index), truth_box)

                p_index = index + locations * self.classes + i * self.n + best_index
                avg_obj += float(out[p_index])
                delta[p_index] = self.object_scale * (1.0 - out[p_index])
                if self.rescore:
                    delta[p_index] = self.object_scale * (iou - out[p_index])

                for k in range(4):
                    delta[box_index + k] = self.coord_scale * (labels[tbox_index + k] - out[box_index + k])
                if self.sqrt:
                    for k in (2, 3):
                        target = math.sqrt(float(labels[tbox_index + k]))
                        delta[box_index + k] = self.coord_scale * (target - out[box_index + k])

                avg_iou += iou
                count += 1

        self.cost = float(np.sum(delta.astype(np.float64) ** 2))

        def ratio(total: float, denominator: float) -> float:
            return total / denominator if denominator else float("nan")

        self.last_stats = {
            "avg_iou": ratio(avg_iou, count),
            "pos_cat": ratio(avg_cat, count),
            "all_cat": ratio(avg_allcat, count * self.classes),
            "pos_obj": ratio(avg_obj, count),
            "any_obj": ratio(avg_anyobj, self.batch * locations * self.n),
            "count": count,
        }
        return self.output

    def backward(self, delta):
        """Add this layer's gradient into ``delta`` in place."""
        if delta is None:
            return None
        if not isinstance(delta, np.ndarray):
            raise TypeError("delta must be a numpy array updated in place")
        if delta.size != self.batch * self.inputs:
            raise ValueError(f"delta has {delta.size} values, expected {self.batch * self.inputs}")
        flat = delta.reshape(-1) + self.delta
        delta[...] = flat.reshape(delta.shape)
        return delta

    def detections(self, w, h, thresh):
        """Turn the first output of the batch into boxes scaled to a ``w`` x ``h`` image."""
        predictions = self.output
        locations = self.side * self.side
        power = 2 if self.sqrt else 1
        result = []
        for i in range(locations):
            row, col = divmod(i, self.side)
            class_index = i * self.classes
            for n in range(self.n):
                p_index = locations * self.classes + i * self.n + n
                scale = float(predictions[p_index])
                box_index = locations * (self.classes + self.n) + (i * self.n + n) * 4
                bbox = Box(
                    x=(float(predictions[box_index]) + col) / self.side * w,
                    y=(float(predictions[box_index + 1]) + row) / self.side * h,
                    w=float(predictions[box_index + 2]) ** power * w,
                    h=float(predictions[box_index + 3]) ** power * h,
                )
                probs = []
                for j in range(self.classes):
                    prob = scale * float(predictions[class_index + j])
                    probs.append(prob if prob > thresh else 0.0)
                result.append(Detection(bbox=bbox, objectness=scale, prob=probs))
        return result