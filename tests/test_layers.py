"""
Tests for Layers and their Building Blocks
==========================================

Unit tests for activations, losses, layer parameters, and the dense,
convolution and pooling layers.
"""

import numpy as np
import pytest
import sys
import os

# Add project root to path
sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..'))

from nnscratch.activations import ReLU, Sigmoid, Softmax, Tanh, get_activation
from nnscratch.exceptions import ConfigurationError, ShapeMismatchError
from nnscratch.layers import Conv2D, Dense, LayerType, MaxPool2D
from nnscratch.losses import CrossEntropyLoss, MSELoss, get_loss
from nnscratch.params import ConvParams, DenseParams, PaddingType, PoolParams


class TestActivations:
    """Tests for activation functions."""

    def test_derivative_fixed_points_at_zero(self):
        """derivative(f(0)) gives each kind's known value."""
        assert float(Sigmoid().derivative(Sigmoid().forward(0.0))) == pytest.approx(0.25)
        assert float(Tanh().derivative(Tanh().forward(0.0))) == pytest.approx(1.0)
        assert float(ReLU().derivative(ReLU().forward(0.0))) == pytest.approx(1.0)

    def test_relu_is_leaky(self):
        """Test leaky ReLU forward and derivative."""
        relu = ReLU()
        x = np.array([-2.0, -0.5, 0.0, 3.0])
        out = relu.forward(x)

        np.testing.assert_allclose(out, [-0.02, -0.005, 0.0, 3.0])
        np.testing.assert_allclose(relu.derivative(out), [0.01, 0.01, 1.0, 1.0])

    def test_derivatives_take_outputs(self):
        """Sigmoid and tanh derivatives are computed from activated values."""
        a = np.array([0.1, 0.5, 0.9])
        np.testing.assert_allclose(Sigmoid().derivative(a), a * (1 - a))
        np.testing.assert_allclose(Tanh().derivative(a), 1 - a ** 2)

    def test_softmax_sums_to_one(self):
        """Softmax output is a probability distribution."""
        rng = np.random.default_rng(0)
        for _ in range(5):
            x = rng.normal(scale=10.0, size=7)
            assert np.sum(Softmax().forward(x)) == pytest.approx(1.0, abs=1e-9)

    def test_softmax_shift_invariant(self):
        """softmax(x) == softmax(x + c)."""
        x = np.array([1.0, -2.0, 0.5, 3.0])
        softmax = Softmax()
        np.testing.assert_allclose(softmax.forward(x), softmax.forward(x + 123.4), atol=1e-12)

    def test_softmax_large_inputs(self):
        """Large scores do not overflow."""
        out = Softmax().forward(np.array([1000.0, 1000.0]))
        np.testing.assert_allclose(out, [0.5, 0.5])

    def test_softmax_rowwise(self):
        """A 2-D input is normalized row by row."""
        out = Softmax().forward(np.array([[1.0, 2.0, 3.0], [0.0, 0.0, 0.0]]))
        np.testing.assert_allclose(out.sum(axis=1), [1.0, 1.0])
        np.testing.assert_allclose(out[1], [1 / 3] * 3)

    def test_softmax_jacobian(self):
        """Softmax derivative is the Jacobian diag(a) - a a^T."""
        a = np.array([0.2, 0.3, 0.5])
        jac = Softmax().derivative(a)
        assert jac.shape == (3, 3)
        np.testing.assert_allclose(jac.sum(axis=0), 0.0, atol=1e-12)

    def test_forward_does_not_mutate(self):
        """Activations return new arrays."""
        x = np.array([-1.0, 2.0])
        for act in (Sigmoid(), ReLU(), Tanh(), Softmax()):
            act.forward(x)
            np.testing.assert_array_equal(x, [-1.0, 2.0])

    def test_registry(self):
        """Activations are looked up by name."""
        assert isinstance(get_activation('sigmoid'), Sigmoid)
        assert isinstance(get_activation('ReLU'), ReLU)
        assert isinstance(get_activation('leaky-relu'), ReLU)
        assert isinstance(get_activation('TanH'), Tanh)
        assert isinstance(get_activation('SoftMax'), Softmax)

        relu = ReLU()
        assert get_activation(relu) is relu

        with pytest.raises(ValueError, match="Unknown activation"):
            get_activation('swish')


class TestLosses:
    """Tests for loss functions."""

    def test_mse(self):
        """Squared error summed over outputs, gradient 2 * (o - t)."""
        loss = MSELoss()
        assert loss.forward([1.0, 2.0], [0.0, 0.0]) == pytest.approx(5.0)
        np.testing.assert_allclose(loss.backward([1.0, 2.0], [0.0, 0.0]), [2.0, 4.0])

    def test_cross_entropy(self):
        """-log(p_true), gradient p - one_hot."""
        loss = CrossEntropyLoss()
        outputs = np.array([0.25, 0.75])
        targets = np.array([0.0, 1.0])

        assert loss.forward(outputs, targets) == pytest.approx(-np.log(0.75))
        np.testing.assert_allclose(loss.backward(outputs, targets), [0.25, -0.25])

    def test_cross_entropy_explicit_index(self):
        """An explicit true_index overrides argmax(targets)."""
        loss = CrossEntropyLoss()
        outputs = np.array([0.5, 0.25, 0.25])
        np.testing.assert_allclose(loss.backward(outputs, [1, 0, 0], true_index=2),
                                   [0.5, 0.25, -0.75])

    def test_cross_entropy_zero_probability(self):
        """log(0) gives an infinite loss rather than raising."""
        assert np.isinf(CrossEntropyLoss().forward([1.0, 0.0], [0.0, 1.0]))

    def test_shape_mismatch(self):
        """Outputs and targets must have the same length."""
        with pytest.raises(ShapeMismatchError):
            MSELoss().forward([1.0, 2.0], [1.0])
        with pytest.raises(ShapeMismatchError):
            CrossEntropyLoss().backward([0.5, 0.5], [0.0, 0.0, 1.0])

    def test_true_index_out_of_range(self):
        """true_index must address an output."""
        with pytest.raises(ShapeMismatchError):
            CrossEntropyLoss().forward([0.5, 0.5], [0.0, 1.0], true_index=2)

    def test_registry(self):
        """Losses are looked up by name."""
        assert isinstance(get_loss('MSE'), MSELoss)
        assert isinstance(get_loss('ce'), CrossEntropyLoss)
        assert isinstance(get_loss('cross-entropy'), CrossEntropyLoss)

        with pytest.raises(ValueError, match="Unknown loss"):
            get_loss('hinge')


class TestDenseParams:
    """Tests for dense weight initialization."""

    def test_shapes(self):
        """Weights are nodes_in x nodes_out, biases nodes_out."""
        p = DenseParams(4, 3)
        assert p.weights.shape == (4, 3)
        assert p.biases.shape == (3,)
        assert p.num_params == 15

    def test_xavier_bound(self):
        """Sigmoid layers use the Xavier scale."""
        p = DenseParams(30, 20)
        p.init(Sigmoid(), np.random.default_rng(0))

        bound = np.sqrt(3.0) * np.sqrt(2.0 / 50)
        assert np.all(np.abs(p.weights) <= bound)
        np.testing.assert_array_equal(p.biases, 0.0)

    def test_he_std(self):
        """ReLU layers use the He scale."""
        p = DenseParams(200, 300)
        p.init(ReLU(), np.random.default_rng(1))

        expected = np.sqrt(2.0 / 200)
        assert np.std(p.weights) == pytest.approx(expected, rel=0.05)
        assert np.abs(p.weights).max() <= np.sqrt(3.0) * expected

    def test_reinit_in_place(self):
        """init() redraws weights into the same arrays and zeroes biases."""
        p = DenseParams(3, 2)
        weights = p.weights
        p.init(Tanh(), np.random.default_rng(0))
        p.biases += 1.0
        p.init(Tanh(), np.random.default_rng(0))

        assert p.weights is weights
        np.testing.assert_array_equal(p.biases, 0.0)

    def test_same_seed_same_weights(self):
        """Initialization is reproducible with a seeded generator."""
        a, b = DenseParams(5, 4), DenseParams(5, 4)
        a.init(Sigmoid(), np.random.default_rng(7))
        b.init(Sigmoid(), np.random.default_rng(7))
        np.testing.assert_array_equal(a.weights, b.weights)

    def test_invalid_sizes(self):
        """Node counts must be positive integers."""
        with pytest.raises(ConfigurationError):
            DenseParams(0, 3)


class TestConvParams:
    """Tests for convolution parameters and padding."""

    def test_padding_amounts(self):
        """valid -> 0, same -> (K-1)//2, full -> K-1."""
        assert PaddingType.VALID.amount(5) == 0
        assert PaddingType.SAME.amount(5) == 2
        assert PaddingType.FULL.amount(5) == 4
        assert PaddingType.parse('Same') is PaddingType.SAME

        with pytest.raises(ConfigurationError):
            PaddingType.parse('reflect')

    def test_add_padding(self):
        """Padding zero-fills the border and copies the input into the interior."""
        p = ConvParams(3, 'full')
        p.inputs = np.ones((2, 2, 3))
        data = p.add_padding()

        assert p.padding == 2
        assert data.shape == (2, 6, 7)
        assert data.sum() == pytest.approx(12.0)
        np.testing.assert_array_equal(data[:, 2:4, 2:5], 1.0)

    def test_valid_padding_keeps_data(self):
        """Valid padding uses the inputs as they are."""
        p = ConvParams(3, 'valid')
        p.inputs = np.arange(18.0).reshape(2, 3, 3)
        np.testing.assert_array_equal(p.add_padding(), p.inputs)

    def test_init_one_kernel_per_channel(self):
        """Weights have one KxK kernel per input channel."""
        p = ConvParams(3, 'same')
        assert not p.initialized
        p.init((4, 8, 8), ReLU(), np.random.default_rng(0))

        assert p.initialized
        assert p.weights.shape == (4, 3, 3)
        assert p.bias == 0.0
        assert p.output_shape == (4, 8, 8)

    def test_kernel_too_large(self):
        """A kernel larger than the padded input is rejected."""
        with pytest.raises(ConfigurationError):
            ConvParams(5, 'valid').shapes_for((1, 3, 3))

    def test_pool_params_default_stride(self):
        """Pool stride defaults to the window size."""
        p = PoolParams(3)
        assert p.stride == 3
        assert p.shapes_for((2, 9, 7))[1] == (2, 3, 2)


class TestDense:
    """Tests for Dense layer."""

    def _layer(self, nodes_in, nodes_out, activation='sigmoid'):
        layer = Dense(nodes_in, nodes_out, activation)
        layer.initialize((nodes_in,), np.random.default_rng(0))
        return layer

    def test_forward_known_values(self):
        """y = f(x @ W + b)."""
        layer = self._layer(2, 1)
        layer.params.weights[...] = [[1.0], [1.0]]
        layer.params.biases[...] = [-1.0]

        out = layer.forward([0.5, 0.5])
        np.testing.assert_allclose(out, [0.5])
        assert layer.layer_type is LayerType.DENSE

    def test_forward_caches(self):
        """Forward caches inputs and outputs for the backward pass."""
        layer = self._layer(3, 2)
        x = np.array([1.0, -1.0, 0.5])
        out = layer.forward(x)

        np.testing.assert_array_equal(layer.params.inputs, x)
        np.testing.assert_array_equal(layer.params.outputs, out)

    def test_backward_updates_and_shapes(self):
        """Backward returns dL/dx and applies the SGD step."""
        layer = self._layer(3, 2, 'tanh')
        x = np.array([1.0, -1.0, 0.5])
        out = layer.forward(x)
        w_before = layer.params.weights.copy()
        grad = np.array([0.3, -0.2])

        grad_input = layer.backward(grad, learning_rate=0.1)

        delta = grad * (1 - out ** 2)
        np.testing.assert_allclose(grad_input, w_before @ delta)
        np.testing.assert_allclose(layer.params.weights, w_before - 0.1 * np.outer(x, delta))
        np.testing.assert_allclose(layer.params.biases, -0.1 * delta)
        assert layer.grads['weight'].shape == (3, 2)

    def test_softmax_skips_derivative(self):
        """With softmax the incoming gradient is used as the delta."""
        layer = self._layer(2, 3, 'softmax')
        layer.forward([0.2, 0.4])
        grad = np.array([0.1, -0.3, 0.2])
        layer.backward(grad, learning_rate=0.0)
        np.testing.assert_allclose(layer.grads['bias'], grad)

    def test_wrong_input_size(self):
        """Inputs must have nodes_in entries."""
        layer = self._layer(3, 2)
        with pytest.raises(ShapeMismatchError):
            layer.forward([1.0, 2.0])

    def test_initialize_checks_size(self):
        """initialize() rejects an incompatible incoming shape."""
        with pytest.raises(ConfigurationError):
            Dense(10, 2).initialize((2, 2, 2), np.random.default_rng(0))

    def test_initialize_accepts_flattened_shape(self):
        """A spatial input shape is accepted if its size matches."""
        assert Dense(8, 2).initialize((2, 2, 2), np.random.default_rng(0)) == (2,)


class TestConv2D:
    """Tests for Conv2D layer."""

    def _layer(self, input_shape, kernel_size=3, padding='valid', stride=1, activation='relu'):
        layer = Conv2D(kernel_size, padding, stride, activation)
        layer.initialize(input_shape, np.random.default_rng(0))
        return layer

    @pytest.mark.parametrize("padding,expected", [
        ('valid', (1, 4, 3)),
        ('same', (1, 6, 5)),
        ('full', (1, 8, 7)),
    ])
    def test_shape_law(self, padding, expected):
        """valid: H-K+1, same: H, full: H+K-1 (stride 1)."""
        layer = self._layer((1, 6, 5), padding=padding)
        out = layer.forward(np.random.default_rng(1).normal(size=(1, 6, 5)))
        assert out.shape == expected
        assert layer.output_shape == expected

    def test_same_padding_even_kernel(self):
        """With an even kernel, same padding stays within one of the input size."""
        layer = self._layer((1, 6, 6), kernel_size=2, padding='same')
        out = layer.forward(np.ones((1, 6, 6)))
        assert abs(out.shape[1] - 6) <= 1 and abs(out.shape[2] - 6) <= 1

    def test_stride(self):
        """out = (dim - K) // stride + 1."""
        layer = self._layer((2, 7, 8), stride=2)
        out = layer.forward(np.ones((2, 7, 8)))
        assert out.shape == (2, 3, 3)

    def test_cross_correlation_values(self):
        """Each channel is correlated with its own kernel, without flipping."""
        layer = self._layer((2, 3, 3))
        layer.params.weights[0] = [[1.0, 0.0, 0.0], [0.0, 0.0, 0.0], [0.0, 0.0, 0.0]]
        layer.params.weights[1] = [[0.0, 0.0, 0.0], [0.0, 0.0, 0.0], [0.0, 0.0, 2.0]]
        x = np.arange(18.0).reshape(2, 3, 3)

        out = layer.forward(x)
        np.testing.assert_allclose(out.reshape(-1), [0.0, 2.0 * 17.0])

    def test_bias_added_per_kernel_tap(self):
        """The shared bias is added K*K times to every output cell."""
        layer = self._layer((1, 4, 4))
        layer.params.weights[...] = 0.0
        layer.params.bias = 0.5

        out = layer.forward(np.ones((1, 4, 4)))
        np.testing.assert_allclose(out, 9 * 0.5)

    def test_backward_bias_is_mean_delta(self):
        """The bias moves by lr times the mean of the delta."""
        layer = self._layer((1, 4, 4))
        layer.params.weights[...] = 0.1
        layer.params.bias = 0.2
        layer.forward(np.ones((1, 4, 4)))

        grad = np.array([[[1.0, 2.0], [3.0, 6.0]]])
        layer.backward(grad, learning_rate=0.5)

        # Positive outputs, so the leaky ReLU derivative is 1
        assert layer.grads['bias'] == pytest.approx(3.0)
        assert layer.params.bias == pytest.approx(0.2 - 0.5 * 3.0)

    def test_backward_shapes(self):
        """Input gradient has the unpadded input shape."""
        for padding in ('valid', 'same', 'full'):
            layer = self._layer((3, 6, 5), padding=padding, stride=2)
            out = layer.forward(np.ones((3, 6, 5)))
            grad_input = layer.backward(np.ones(out.shape), learning_rate=0.01)

            assert grad_input.shape == (3, 6, 5)
            assert layer.grads['weight'].shape == layer.params.weights.shape

    def test_input_gradient_uses_rotated_kernel(self):
        """A single error value spreads back as the kernel itself."""
        layer = self._layer((1, 3, 3))
        kernel = np.arange(1.0, 10.0).reshape(3, 3)
        layer.params.weights[0] = kernel
        layer.forward(np.ones((1, 3, 3)))

        grad_input = layer.backward(np.ones((1, 1, 1)), learning_rate=0.0)
        np.testing.assert_allclose(grad_input[0], kernel)

    def test_uninitialized(self):
        """Forward before initialize() is a configuration error."""
        with pytest.raises(ConfigurationError):
            Conv2D(3).forward(np.ones((1, 5, 5)))

    def test_wrong_input_shape(self):
        """The input must match the initialized shape."""
        layer = self._layer((1, 5, 5))
        with pytest.raises(ShapeMismatchError):
            layer.forward(np.ones((2, 5, 5)))

    def test_reset_redraws(self):
        """reset() keeps the shape and draws new weights."""
        layer = self._layer((2, 5, 5))
        before = layer.params.weights.copy()
        layer.reset(np.random.default_rng(99))

        assert layer.params.weights.shape == before.shape
        assert not np.array_equal(layer.params.weights, before)


class TestMaxPool2D:
    """Tests for MaxPool2D layer."""

    def _layer(self, input_shape, kernel_size=2, stride=None):
        layer = MaxPool2D(kernel_size, stride)
        layer.initialize(input_shape, None)
        return layer

    def test_forward_shape(self):
        """Test output shape after pooling."""
        layer = self._layer((3, 8, 6))
        out = layer.forward(np.random.default_rng(0).normal(size=(3, 8, 6)))
        assert out.shape == (3, 4, 3)
        assert layer.activation is None
        assert layer.layer_type is LayerType.POOLING

    def test_max_values(self):
        """Test that max values are correctly extracted."""
        layer = self._layer((1, 2, 2))
        out = layer.forward(np.array([[[1.0, 2.0], [3.0, 4.0]]]))
        assert out[0, 0, 0] == 4.0

    def test_backward_gradient_routing(self):
        """Gradient reaches only the max position."""
        layer = self._layer((1, 2, 2))
        layer.forward(np.array([[[1.0, 2.0], [3.0, 4.0]]]))

        grad_input = layer.backward(np.array([[[1.0]]]), learning_rate=0.1)
        np.testing.assert_array_equal(grad_input, [[[0.0, 0.0], [0.0, 1.0]]])

    def test_one_cell_per_window(self):
        """Every window with a unique max routes all of its error to one cell."""
        layer = self._layer((2, 4, 4))
        x = np.random.default_rng(3).permutation(32).reshape(2, 4, 4).astype(float)
        layer.forward(x)

        grad = np.arange(1.0, 9.0).reshape(2, 2, 2)
        grad_input = layer.backward(grad, learning_rate=0.1)

        for c in range(2):
            for i in range(2):
                for j in range(2):
                    window_x = x[c, 2 * i:2 * i + 2, 2 * j:2 * j + 2]
                    window_g = grad_input[c, 2 * i:2 * i + 2, 2 * j:2 * j + 2]
                    assert np.count_nonzero(window_g) == 1
                    assert window_g[np.unravel_index(np.argmax(window_x), (2, 2))] == grad[c, i, j]

    def test_ties_go_to_first_in_row_major_order(self):
        """Equal maxima: the first one in row-major order receives the error."""
        layer = self._layer((1, 2, 2))
        layer.forward(np.array([[[5.0, 1.0], [5.0, 5.0]]]))
        grad_input = layer.backward(np.array([[[2.0]]]), learning_rate=0.1)
        np.testing.assert_array_equal(grad_input, [[[2.0, 0.0], [0.0, 0.0]]])

    def test_overlapping_windows_accumulate(self):
        """With stride < kernel a shared max collects every window's error."""
        layer = self._layer((1, 3, 3), kernel_size=2, stride=1)
        x = np.zeros((1, 3, 3))
        x[0, 1, 1] = 9.0
        layer.forward(x)

        grad_input = layer.backward(np.ones((1, 2, 2)), learning_rate=0.1)
        assert grad_input[0, 1, 1] == 4.0
        assert grad_input.sum() == 4.0


if __name__ == '__main__':
    pytest.main([__file__, '-v'])
