import numpy as np
import pytest

from quantnet.gemm import (
    INT16_LIMIT,
    R_MULT,
    gemm,
    gemm_bin,
    gemm_int8_int32,
    gemm_uint8_int32,
    random_matrix,
    time_random_matrix,
)


def _rand(rows, cols, seed):
    return random_matrix(rows, cols, np.random.default_rng(seed))


def test_gemm_worked_example():
    a = np.array([[1, 2], [3, 4]], dtype=np.float32)
    b = np.array([[5, 6], [7, 8]], dtype=np.float32)
    c = np.zeros((2, 2), dtype=np.float32)
    out = gemm(a, b, c, 1.0, 0.0)
    assert out is c
    np.testing.assert_array_equal(c, [[19, 22], [43, 50]])


def test_gemm_identity_leaves_matrix():
    b = _rand(3, 4, 1)
    c = np.zeros((3, 4), dtype=np.float32)
    gemm(np.eye(3, dtype=np.float32), b, c)
    np.testing.assert_allclose(c, b)


@pytest.mark.parametrize("trans_a,trans_b", [(False, False), (True, False), (False, True), (True, True)])
def test_gemm_transposes_agree(trans_a, trans_b):
    a = _rand(3, 5, 2)
    b = _rand(5, 4, 3)
    expected = gemm(a, b, np.zeros((3, 4), dtype=np.float32))
    arg_a = a.T.copy() if trans_a else a
    arg_b = b.T.copy() if trans_b else b
    got = gemm(arg_a, arg_b, np.zeros((3, 4), dtype=np.float32), 1.0, 1.0, trans_a, trans_b)
    np.testing.assert_allclose(got, expected, rtol=1e-5)


def test_gemm_beta_scales_existing_output():
    c = _rand(2, 3, 4)
    original = c.copy()
    gemm(_rand(2, 2, 5), _rand(2, 3, 6), c, 0.0, 2.0)
    np.testing.assert_allclose(c, 2 * original)


def test_gemm_alpha_is_linear():
    a = _rand(2, 3, 7)
    b = _rand(3, 2, 8)
    once = gemm(a, b, np.zeros((2, 2), dtype=np.float32), 1.0, 0.0)
    thrice = gemm(a, b, np.zeros((2, 2), dtype=np.float32), 3.0, 0.0)
    np.testing.assert_allclose(thrice, 3 * once, rtol=1e-5)


def test_gemm_rejects_mismatched_shapes():
    with pytest.raises(ValueError):
        gemm(_rand(2, 3, 0), _rand(4, 2, 0), np.zeros((2, 2), dtype=np.float32))


def test_gemm_rejects_wrong_output_shape():
    with pytest.raises(ValueError):
        gemm(_rand(2, 3, 0), _rand(3, 2, 0), np.zeros((3, 3), dtype=np.float32))


def test_uint8_matches_float_gemm():
    rng = np.random.default_rng(11)
    a = rng.integers(0, 256, size=(3, 4), dtype=np.uint8)
    b = rng.integers(0, 256, size=(4, 5), dtype=np.uint8)
    c = np.zeros((3, 5), dtype=np.int32)
    gemm_uint8_int32(a, b, c, 1, 0)
    ref = gemm(a.astype(np.float32), b.astype(np.float32), np.zeros((3, 5), dtype=np.float32), 1.0, 0.0)
    np.testing.assert_array_equal(c, ref.astype(np.int32))


def test_uint8_negative_alpha_cancels():
    rng = np.random.default_rng(12)
    a = rng.integers(0, 256, size=(2, 3), dtype=np.uint8)
    b = rng.integers(0, 256, size=(3, 4), dtype=np.uint8)
    c = np.zeros((2, 4), dtype=np.int32)
    gemm_uint8_int32(a, b, c, 1, 0)
    gemm_uint8_int32(a, b, c, -1, 1)
    np.testing.assert_array_equal(c, np.zeros((2, 4), dtype=np.int32))


def test_uint8_fractional_alpha_truncates_each_term():
    a = np.array([[1, 1]], dtype=np.uint8)
    b = np.array([[1], [1]], dtype=np.uint8)
    c = np.zeros((1, 1), dtype=np.int32)
    gemm_uint8_int32(a, b, c, 0.5, 0)
    assert c[0, 0] == 0


def test_uint8_rejects_float_output():
    with pytest.raises(TypeError):
        gemm_uint8_int32(np.ones((1, 1), dtype=np.uint8), np.ones((1, 1), dtype=np.uint8),
                         np.zeros((1, 1), dtype=np.float32))


def test_int8_divides_by_r_mult():
    a = np.array([[4]], dtype=np.int8)
    b = np.array([[R_MULT]], dtype=np.int8)
    c = np.zeros((1, 1), dtype=np.int32)
    gemm_int8_int32(a, b, c, 1)
    assert c[0, 0] == 4


def test_int8_clamps_large_sums():
    a = np.full((200, 1), 127, dtype=np.int8)
    b = np.full((200, 1), 127, dtype=np.int8)
    pos = gemm_int8_int32(a, b, np.zeros((1, 1), dtype=np.int32), 1)
    neg = gemm_int8_int32(a, b, np.zeros((1, 1), dtype=np.int32), -1)
    assert pos[0, 0] == INT16_LIMIT
    assert neg[0, 0] == -INT16_LIMIT


def test_int8_first_operand_is_transposed():
    a = np.array([[R_MULT, 0], [0, R_MULT]], dtype=np.int8).T
    b = np.array([[1, 2, 3], [4, 5, 6]], dtype=np.int8)
    c = np.zeros((2, 3), dtype=np.int32)
    gemm_int8_int32(a, b, c, 1)
    np.testing.assert_array_equal(c, b.astype(np.int32))


def test_int8_rejects_mismatched_shapes():
    with pytest.raises(ValueError):
        gemm_int8_int32(np.ones((2, 3), dtype=np.int8), np.ones((3, 2), dtype=np.int8),
                        np.zeros((3, 2), dtype=np.int32))


def test_gemm_bin_all_set_adds_rows():
    b = _rand(3, 4, 20)
    c = np.zeros((1, 4), dtype=np.float32)
    gemm_bin(np.ones((1, 3), dtype=np.int8), b, c)
    np.testing.assert_allclose(c[0], b.sum(axis=0), rtol=1e-5)


def test_gemm_bin_matches_signed_gemm():
    mask = np.array([[1, 0, 1], [0, 0, 1]], dtype=np.int8)
    b = _rand(3, 2, 21)
    got = gemm_bin(mask, b, np.zeros((2, 2), dtype=np.float32))
    signs = np.where(mask != 0, 1.0, -1.0).astype(np.float32)
    ref = gemm(signs, b, np.zeros((2, 2), dtype=np.float32))
    np.testing.assert_allclose(got, ref, rtol=1e-5)


def test_random_matrix_range_and_shape():
    m = _rand(7, 9, 30)
    assert m.shape == (7, 9)
    assert m.dtype == np.float32
    assert np.all((m >= 0) & (m <= 1))


def test_random_matrix_is_reproducible_with_seed():
    np.testing.assert_array_equal(_rand(4, 4, 31), _rand(4, 4, 31))


def test_random_matrix_rejects_negative_size():
    with pytest.raises(ValueError):
        random_matrix(-1, 2)


def test_time_random_matrix_reports(capsys):
    elapsed = time_random_matrix(False, True, 3, 4, 5)
    out = capsys.readouterr().out
    assert elapsed >= 0
    assert out.startswith("Matrix Multiplication 3x4 * 4x5, TA=0, TB=1:")