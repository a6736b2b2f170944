"""
Layer Parameters
================

Learnable state and forward-pass caches owned by each layer kind.

- DenseParams: weight matrix (nodes_in x nodes_out), bias vector, last inputs/outputs
- ConvParams: one KxK kernel per input channel, one shared scalar bias,
  last inputs, padded inputs (data) and outputs
- PoolParams: window geometry plus the argmax of every window from the last
  forward pass (no learnable weights)

Weight initialization depends on the activation that follows the layer:
    Sigmoid / Tanh / Softmax: std = sqrt(2 / (fan_in + fan_out))   (Xavier)
    ReLU:                     std = sqrt(2 / fan_in)                (He)
Weights are drawn uniformly from [-sqrt(3)*std, sqrt(3)*std], which has
exactly that standard deviation. Biases start at zero.
"""

from enum import Enum

import numpy as np

from .activations import ReLU
from .exceptions import ConfigurationError


def init_std(activation, fan_in, fan_out):
    """Standard deviation of the initial weights for the given activation."""
    if isinstance(activation, ReLU):
        return np.sqrt(2.0 / fan_in)
    return np.sqrt(2.0 / (fan_in + fan_out))


def uniform_weights(rng, shape, std):
    """Sample weights uniformly with the requested standard deviation."""
    bound = np.sqrt(3.0) * std
    return rng.uniform(-bound, bound, size=shape)


def output_size(dim, kernel, stride):
    """Number of kernel positions that fit along one axis: (dim - K) // S + 1."""
    if dim < kernel:
        return 0
    return (dim - kernel) // stride + 1


def _check_positive(name, value):
    if int(value) != value or value < 1:
        raise ConfigurationError(f"{name} must be a positive integer, got {value}")
    return int(value)


class PaddingType(Enum):
    """How much zero padding a convolution adds around its input."""

    SAME = 'same'
    VALID = 'valid'
    FULL = 'full'

    @classmethod
    def parse(cls, value):
        if isinstance(value, cls):
            return value
        try:
            return cls(str(value).lower())
        except ValueError:
            available = ', '.join(p.value for p in cls)
            raise ConfigurationError(
                f"Unknown padding '{value}'. Available: {available}"
            ) from None

    def amount(self, kernel):
        """Padding added on each side for a kernel of the given size."""
        if self is PaddingType.SAME:
            return (kernel - 1) // 2
        if self is PaddingType.FULL:
            return kernel - 1
        return 0


class DenseParams:
    """
    Parameters of a fully connected layer.

    Args:
        nodes_in: Number of input nodes (rows of the weight matrix)
        nodes_out: Number of output nodes (columns of the weight matrix)
    """

    def __init__(self, nodes_in, nodes_out):
        self.nodes_in = _check_positive('nodes_in', nodes_in)
        self.nodes_out = _check_positive('nodes_out', nodes_out)

        self.weights = np.zeros((self.nodes_in, self.nodes_out))
        self.biases = np.zeros(self.nodes_out)

        # Cache for backward pass
        self.inputs = np.zeros(self.nodes_in)
        self.outputs = np.zeros(self.nodes_out)

    def init(self, activation, rng):
        """(Re)draw the weights in place and zero the biases."""
        std = init_std(activation, self.nodes_in, self.nodes_out)
        self.weights[...] = uniform_weights(rng, self.weights.shape, std)
        self.biases[...] = 0.0

    @property
    def num_params(self):
        return self.weights.size + self.biases.size


class ConvParams:
    """
    Parameters of a depth-wise convolution with a single shared bias.

    Args:
        kernel: Side length K of the square kernel
        padding_type: 'same', 'valid' or 'full'
        stride: Step between kernel positions

    The number of kernels equals the number of input channels and is fixed
    by init(); until then `weights` is None.
    """

    def __init__(self, kernel, padding_type='valid', stride=1):
        self.kernel = _check_positive('kernel_size', kernel)
        self.padding_type = PaddingType.parse(padding_type)
        self.padding = self.padding_type.amount(self.kernel)
        self.stride = _check_positive('stride', stride)

        self.weights = None
        self.bias = 0.0

        self.input_shape = None
        self.output_shape = None

        # Cache for backward pass
        self.inputs = None
        self.data = None
        self.outputs = None

    @property
    def initialized(self):
        return self.weights is not None

    def shapes_for(self, input_shape):
        """Compute (input_shape, output_shape) for a (C, H, W) input."""
        if len(input_shape) != 3:
            raise ConfigurationError(
                f"Convolution expects a (channels, height, width) input, got {tuple(input_shape)}"
            )
        channels, height, width = (int(d) for d in input_shape)
        pad = self.padding_type.amount(self.kernel)
        out_h = output_size(height + 2 * pad, self.kernel, self.stride)
        out_w = output_size(width + 2 * pad, self.kernel, self.stride)

        if out_h < 1 or out_w < 1:
            raise ConfigurationError(
                f"Kernel {self.kernel}x{self.kernel} does not fit a {height}x{width} "
                f"input with '{self.padding_type.value}' padding"
            )
        return (channels, height, width), (channels, out_h, out_w)

    def init(self, input_shape, activation, rng):
        """Create one kernel per input channel and zero the bias."""
        self.input_shape, self.output_shape = self.shapes_for(input_shape)
        channels = self.input_shape[0]
        fan = self.kernel * self.kernel
        std = init_std(activation, fan, fan)
        self.weights = uniform_weights(rng, (channels, self.kernel, self.kernel), std)
        self.bias = 0.0

    def add_padding(self):
        """Zero-pad the cached inputs into `data`, the buffer the kernel slides over."""
        self.padding = self.padding_type.amount(self.kernel)

        if self.padding_type is PaddingType.VALID:
            self.data = self.inputs.copy()
            return self.data

        channels, height, width = self.inputs.shape
        pad = self.padding
        padded = np.zeros((channels, height + 2 * pad, width + 2 * pad))
        padded[:, pad:pad + height, pad:pad + width] = self.inputs

        self.data = padded
        return self.data

    @property
    def num_params(self):
        if self.weights is None:
            return 0
        return self.weights.size + 1


class PoolParams:
    """
    Window geometry and forward-pass caches of a max pooling layer.

    Args:
        kernel: Side length of the square pooling window
        stride: Step between windows (defaults to the window size)
    """

    def __init__(self, kernel, stride=None):
        self.kernel = _check_positive('kernel_size', kernel)
        self.stride = _check_positive('stride', stride if stride is not None else kernel)

        self.input_shape = None
        self.output_shape = None

        # Cache for backward pass
        self.inputs = None
        self.outputs = None
        self.argmax = None

    def shapes_for(self, input_shape):
        if len(input_shape) != 3:
            raise ConfigurationError(
                f"Pooling expects a (channels, height, width) input, got {tuple(input_shape)}"
            )
        channels, height, width = (int(d) for d in input_shape)
        out_h = output_size(height, self.kernel, self.stride)
        out_w = output_size(width, self.kernel, self.stride)

        if out_h < 1 or out_w < 1:
            raise ConfigurationError(
                f"Pool window {self.kernel}x{self.kernel} does not fit a {height}x{width} input"
            )
        return (channels, height, width), (channels, out_h, out_w)
