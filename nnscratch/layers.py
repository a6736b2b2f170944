"""
Network Layers
==============

The three layer kinds a network can stack. Each layer owns its parameters
and implements a forward pass and a backward pass that applies the gradient
step to its own parameters and returns the gradient for the previous layer.

Layers implemented:
- Dense: fully connected, works on 1-D vectors
- Conv2D: depth-wise cross-correlation with a shared bias, works on (C, H, W)
- MaxPool2D: max pooling, works on (C, H, W)

The set is closed: Network dispatches on `layer_type` and only ever sees
these three variants.
"""

from enum import Enum

import numpy as np
from numpy.lib.stride_tricks import sliding_window_view

from .activations import Softmax, get_activation
from .exceptions import ConfigurationError, ShapeMismatchError
from .params import ConvParams, DenseParams, PoolParams


class LayerType(Enum):
    DENSE = 'dense'
    CONVOLUTIONAL = 'convolutional'
    POOLING = 'pooling'


def _windows(data, kernel, stride):
    """
    View of every kernel position over the last two axes of a (C, H, W) array.

    Returns:
        Array of shape (C, out_h, out_w, kernel, kernel); no data is copied.
    """
    view = sliding_window_view(data, (kernel, kernel), axis=(1, 2))
    return view[:, ::stride, ::stride]


class Layer:
    """Base class for all layers."""

    layer_type = None

    def __init__(self, activation=None):
        self.activation = get_activation(activation) if activation is not None else None
        self.params = None
        self.grads = {}     # Gradients from the last backward pass
        self._initialized = False

    @property
    def initialized(self):
        return self._initialized

    @property
    def is_spatial(self):
        return self.layer_type is not LayerType.DENSE

    def initialize(self, input_shape, rng):
        """Fix the input shape, create the weights and return the output shape."""
        raise NotImplementedError

    def reset(self, rng):
        """Redraw the weights in place, keeping the layer's shape."""
        raise NotImplementedError

    def forward(self, x):
        """Forward pass."""
        raise NotImplementedError

    def backward(self, grad_output, learning_rate):
        """Backward pass: update own parameters, return gradient w.r.t. input."""
        raise NotImplementedError

    @property
    def output_shape(self):
        raise NotImplementedError

    @property
    def num_params(self):
        return 0

    def __call__(self, x):
        return self.forward(x)

    def _activation_delta(self, grad_output, outputs):
        # Softmax is paired with cross-entropy, whose gradient is already w.r.t. z
        if isinstance(self.activation, Softmax):
            return grad_output
        return grad_output * self.activation.derivative(outputs)


class Dense(Layer):
    """
    Fully Connected (Dense) Layer.

    Args:
        nodes_in: Number of input features
        nodes_out: Number of output features
        activation: Activation name or instance (default: 'sigmoid')

    Forward: output = f(input @ W + b)
    """

    layer_type = LayerType.DENSE

    def __init__(self, nodes_in, nodes_out, activation='sigmoid'):
        super().__init__(activation)
        self.params = DenseParams(nodes_in, nodes_out)

    def initialize(self, input_shape, rng):
        size = int(np.prod(input_shape))
        if size != self.params.nodes_in:
            raise ConfigurationError(
                f"{self!r} expects {self.params.nodes_in} inputs but receives {size} "
                f"(from shape {tuple(input_shape)})"
            )
        self.params.init(self.activation, rng)
        self._initialized = True
        return self.output_shape

    def reset(self, rng):
        self.params.init(self.activation, rng)
        self._initialized = True

    def forward(self, x):
        """Forward pass: y = f(x @ W + b)"""
        p = self.params
        x = np.asarray(x, dtype=np.float64)
        if x.shape != (p.nodes_in,):
            raise ShapeMismatchError(f"{self!r} got input of shape {x.shape}")

        p.inputs = x.copy()
        p.outputs = self.activation.forward(x @ p.weights + p.biases)
        return p.outputs.copy()

    def backward(self, grad_output, learning_rate):
        """
        Backward pass.

        delta = grad_output * f'(outputs)
        dL/dW = outer(inputs, delta)
        dL/db = delta
        dL/dx = W @ delta   (weights as used in the forward pass)
        """
        p = self.params
        grad_output = np.asarray(grad_output, dtype=np.float64).reshape(-1)
        if grad_output.shape != (p.nodes_out,):
            raise ShapeMismatchError(
                f"{self!r} got a gradient of size {grad_output.size}, expected {p.nodes_out}"
            )

        delta = self._activation_delta(grad_output, p.outputs)

        self.grads['weight'] = np.outer(p.inputs, delta)
        self.grads['bias'] = delta

        grad_input = p.weights @ delta

        p.weights -= learning_rate * self.grads['weight']
        p.biases -= learning_rate * self.grads['bias']

        return grad_input

    @property
    def output_shape(self):
        return (self.params.nodes_out,)

    @property
    def num_params(self):
        return self.params.num_params

    def __repr__(self):
        return f"Dense({self.params.nodes_in}, {self.params.nodes_out}, activation={self.activation.name})"


class Conv2D(Layer):
    """
    Depth-wise 2D Convolutional Layer.

    Every input channel is cross-correlated with its own KxK kernel; all
    channels share one scalar bias. The output has as many channels as the
    input.

    Args:
        kernel_size: Side length K of the square kernel
        padding: 'valid' (none), 'same' ((K-1)//2 per side) or 'full' (K-1 per side)
        stride: Stride of the convolution (default: 1)
        activation: Activation name or instance (default: 'relu')

    Output size per axis:
        out = (dim + 2*pad - K) // stride + 1

    The bias is added at every kernel tap, i.e. K*K times per output cell.

    The backward pass computes:
    1. dL/dW by correlating the padded input with the output delta
    2. dL/db as the mean of the output delta
    3. dL/dX as the full convolution of the (stride-dilated) delta with the
       180-degree rotated kernel, cropped back to the unpadded input
    """

    layer_type = LayerType.CONVOLUTIONAL

    def __init__(self, kernel_size, padding='valid', stride=1, activation='relu'):
        super().__init__(activation)
        self.params = ConvParams(kernel_size, padding, stride)

    def initialize(self, input_shape, rng):
        self.params.init(input_shape, self.activation, rng)
        self._initialized = True
        return self.output_shape

    def reset(self, rng):
        if self.params.input_shape is None:
            raise ConfigurationError(f"{self!r} cannot be reset before it is initialized")
        self.params.init(self.params.input_shape, self.activation, rng)

    def forward(self, x):
        """
        Forward pass (cross-correlation).

        Args:
            x: Input tensor, shape (channels, height, width)

        Returns:
            Output tensor, shape (channels, out_height, out_width)
        """
        p = self.params
        x = np.asarray(x, dtype=np.float64)
        if p.input_shape is None:
            raise ConfigurationError(f"{self!r} used before it was initialized")
        if x.shape != p.input_shape:
            raise ShapeMismatchError(f"{self!r} expects input {p.input_shape}, got {x.shape}")

        p.inputs = x.copy()
        data = p.add_padding()
        k = p.kernel

        windows = _windows(data, k, p.stride)
        z = np.einsum('chwij,cij->chw', windows, p.weights) + k * k * p.bias

        # Row-wise activation (matters for softmax)
        p.outputs = self.activation.forward(z)
        return p.outputs.copy()

    def backward(self, grad_output, learning_rate):
        """
        Backward pass (full convolution with the rotated kernel).

        Args:
            grad_output: Gradient w.r.t. outputs, shape (channels, out_height, out_width)

        Returns:
            grad_input: Gradient w.r.t. the unpadded input
        """
        p = self.params
        k, s = p.kernel, p.stride
        grad_output = np.asarray(grad_output, dtype=np.float64)
        if grad_output.size != p.outputs.size:
            raise ShapeMismatchError(
                f"{self!r} got a gradient of shape {grad_output.shape}, expected {p.outputs.shape}"
            )

        delta = self._activation_delta(grad_output.reshape(p.outputs.shape), p.outputs)
        channels, out_h, out_w = delta.shape

        # Gradient w.r.t. weights and the shared bias
        windows = _windows(p.data, k, s)
        self.grads['weight'] = np.einsum('chwij,chw->cij', windows, delta)
        self.grads['bias'] = float(np.mean(delta))

        # Spread delta back onto the positions the kernel visited
        _, data_h, data_w = p.data.shape
        dilated = np.zeros((channels, data_h - k + 1, data_w - k + 1))
        dilated[:, :(out_h - 1) * s + 1:s, :(out_w - 1) * s + 1:s] = delta

        padded = np.pad(dilated, ((0, 0), (k - 1, k - 1), (k - 1, k - 1)), mode='constant')
        rotated = p.weights[:, ::-1, ::-1]
        grad_data = np.einsum('chwij,cij->chw', _windows(padded, k, 1), rotated)

        _, height, width = p.inputs.shape
        pad = p.padding
        grad_input = grad_data[:, pad:pad + height, pad:pad + width]

        p.weights -= learning_rate * self.grads['weight']
        p.bias -= learning_rate * self.grads['bias']

        return grad_input

    @property
    def output_shape(self):
        return self.params.output_shape

    @property
    def num_params(self):
        return self.params.num_params

    def __repr__(self):
        p = self.params
        return (f"Conv2D(kernel_size={p.kernel}, padding={p.padding_type.value}, "
                f"stride={p.stride}, activation={self.activation.name})")


class MaxPool2D(Layer):
    """
    Max Pooling Layer.

    Downsamples by taking the maximum value in each window.

    Args:
        kernel_size: Size of pooling window (default: 2)
        stride: Stride (default: same as kernel_size)

    Backprop: Gradient flows only to the max element in each window. When a
    window holds several equal maxima, the first one in row-major order wins.
    """

    layer_type = LayerType.POOLING

    def __init__(self, kernel_size=2, stride=None):
        super().__init__(activation=None)
        self.params = PoolParams(kernel_size, stride)

    def initialize(self, input_shape, rng):
        p = self.params
        p.input_shape, p.output_shape = p.shapes_for(input_shape)
        self._initialized = True
        return self.output_shape

    def reset(self, rng):
        """Nothing to redraw: pooling has no weights."""

    def forward(self, x):
        """
        Forward pass: max pooling.

        Args:
            x: Input, shape (channels, height, width)

        Returns:
            Output, shape (channels, h_out, w_out)
        """
        p = self.params
        x = np.asarray(x, dtype=np.float64)
        if p.input_shape is None:
            raise ConfigurationError(f"{self!r} used before it was initialized")
        if x.shape != p.input_shape:
            raise ShapeMismatchError(f"{self!r} expects input {p.input_shape}, got {x.shape}")

        channels = x.shape[0]
        _, out_h, out_w = p.output_shape

        windows = _windows(x, p.kernel, p.stride).reshape(channels, out_h, out_w, -1)

        p.inputs = x.copy()
        p.outputs = np.max(windows, axis=-1)
        p.argmax = np.argmax(windows, axis=-1)
        return p.outputs.copy()

    def backward(self, grad_output, learning_rate):
        """Route each gradient value to the max position of its window."""
        p = self.params
        grad_output = np.asarray(grad_output, dtype=np.float64)
        if grad_output.size != p.outputs.size:
            raise ShapeMismatchError(
                f"{self!r} got a gradient of shape {grad_output.shape}, expected {p.outputs.shape}"
            )
        grad_output = grad_output.reshape(p.outputs.shape)

        channels, out_h, out_w = p.outputs.shape
        k, s = p.kernel, p.stride

        # Absolute input coordinates of every window's max
        rows = np.arange(out_h).reshape(1, out_h, 1) * s + p.argmax // k
        cols = np.arange(out_w).reshape(1, 1, out_w) * s + p.argmax % k
        chans = np.broadcast_to(np.arange(channels).reshape(channels, 1, 1), p.argmax.shape)

        grad_input = np.zeros(p.inputs.shape)
        # Overlapping windows may share a max position
        np.add.at(grad_input, (chans, rows, cols), grad_output)

        return grad_input

    @property
    def output_shape(self):
        return self.params.output_shape

    def __repr__(self):
        return f"MaxPool2D(kernel_size={self.params.kernel}, stride={self.params.stride})"
