import numpy as np
import pytest

from quantnet.im2col import col2im, conv_output_size, get_pixel, im2col


@pytest.mark.parametrize("size", [1, 4, 7, 13])
def test_same_padding_keeps_size(size):
    assert conv_output_size(size, 3, 1, 1) == size


def test_stride_shrinks_output():
    assert conv_output_size(8, 2, 2, 0) == 4


@pytest.mark.parametrize(
    "ksize, stride, pad",
    [(0, 1, 0), (3, 0, 1), (3, 1, -1)],
)
def test_conv_output_size_rejects_bad_arguments(ksize, stride, pad):
    with pytest.raises(ValueError):
        conv_output_size(5, ksize, stride, pad)


def test_get_pixel_inside_and_outside():
    image = np.arange(12, dtype=np.float32).reshape(1, 3, 4)
    assert get_pixel(image, 1, 1, 0, 1) == image[0, 0, 0]
    assert get_pixel(image, 3, 4, 0, 1) == image[0, 2, 3]
    assert get_pixel(image, 0, 2, 0, 1, pad_value=-5) == -5
    assert get_pixel(image, 4, 2, 0, 1, pad_value=7) == 7


def test_kernel_of_one_is_a_reshape():
    rng = np.random.default_rng(0)
    image = rng.random((3, 4, 5), dtype=np.float32)
    cols = im2col(image, 1, 1, 0)
    np.testing.assert_array_equal(cols, image.reshape(3, 20))


def test_full_kernel_gives_single_column():
    image = np.array([[[1, 2], [3, 4]]], dtype=np.float32)
    cols = im2col(image, 2, 1, 0)
    np.testing.assert_array_equal(cols, image.reshape(4, 1))


def test_padding_fills_with_pad_value():
    image = np.ones((2, 3, 3), dtype=np.uint8)
    cols = im2col(image, 3, 1, 1, pad_value=9)
    assert cols.dtype == np.uint8
    assert cols.shape == (2 * 9, 9)
    # Kernel row 0, column 0 at output position 0 reads the padded corner.
    assert cols[0, 0] == 9
    # The centre kernel tap never reads padding.
    assert np.all(cols[4] == 1)


def test_output_shape_with_stride():
    image = np.zeros((3, 8, 6), dtype=np.float32)
    cols = im2col(image, 3, 2, 1)
    out_h = conv_output_size(8, 3, 2, 1)
    out_w = conv_output_size(6, 3, 2, 1)
    assert cols.shape == (3 * 9, out_h * out_w)


@pytest.mark.parametrize("ksize, stride, pad", [(3, 1, 1), (2, 2, 0), (3, 2, 1), (1, 1, 0)])
def test_col2im_is_adjoint_of_im2col(ksize, stride, pad):
    rng = np.random.default_rng(1)
    image = rng.standard_normal((2, 5, 6)).astype(np.float64)
    cols = im2col(image, ksize, stride, pad)
    other = rng.standard_normal(cols.shape)
    lhs = float(np.sum(cols * other))
    rhs = float(np.sum(image * col2im(other, 2, 5, 6, ksize, stride, pad)))
    assert lhs == pytest.approx(rhs, rel=1e-4, abs=1e-4)


def test_col2im_non_overlapping_round_trip():
    rng = np.random.default_rng(2)
    image = rng.random((3, 4, 6), dtype=np.float32)
    cols = im2col(image, 2, 2, 0)
    restored = col2im(cols, 3, 4, 6, 2, 2, 0)
    np.testing.assert_allclose(restored, image)


def test_col2im_rejects_wrong_size():
    with pytest.raises(ValueError):
        col2im(np.zeros(5), 1, 3, 3, 3, 1, 1)


def test_im2col_rejects_non_image():
    with pytest.raises(ValueError):
        im2col(np.zeros((4, 4)), 3, 1, 1)


def test_im2col_rejects_kernel_larger_than_image():
    with pytest.raises(ValueError):
        im2col(np.zeros((1, 2, 2)), 5, 1, 0)