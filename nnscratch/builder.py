"""
Layer Builder
=============

Builds the usual "convolutions first, dense layers after" stack from
per-layer lists instead of hand-written layer objects.

Example:
    >>> builder = (LayerBuilder()
    ...            .set_image((1, 8, 8))
    ...            .set_conv_layers(2)
    ...            .set_kernels([3, 3])
    ...            .set_paddings(['same', 'valid'])
    ...            .set_strides([1, 1])
    ...            .set_dense_layers([None, 16, 4])
    ...            .set_activations(['relu', 'relu', 'relu', 'softmax']))
    >>> net = builder.network(loss='cross_entropy', verbose=False)
"""

import numpy as np

from .exceptions import ConfigurationError
from .layers import Conv2D, Dense
from .network import Network
from .params import ConvParams


class LayerBuilder:
    """
    Collects layer hyperparameters and turns them into layers.

    - kernels / paddings / strides: one entry per convolution layer
    - activations: one entry per layer, convolutions first
    - conv_layers: number of leading convolution layers
    - image: input shape, (channels, height, width) or (height, width)
    - dense_layers: node counts [n_in, n_1, ..., n_out]; n_in may be None to
      use the flattened size of the last convolution output
    """

    def __init__(self):
        self.kernels = []
        self.paddings = []
        self.strides = []
        self.activations = []
        self.conv_layers = 0
        self.image = None
        self.dense_layers = []

    def set_kernels(self, kernels):
        self.kernels = list(kernels)
        return self

    def set_paddings(self, paddings):
        self.paddings = list(paddings)
        return self

    def set_strides(self, strides):
        self.strides = list(strides)
        return self

    def set_activations(self, activations):
        self.activations = list(activations)
        return self

    def set_conv_layers(self, conv_layers):
        self.conv_layers = int(conv_layers)
        return self

    def set_image(self, image):
        self.image = tuple(image)
        return self

    def set_dense_layers(self, dense_layers):
        self.dense_layers = list(dense_layers)
        return self

    @property
    def input_shape(self):
        if self.image is None:
            return None
        if len(self.image) == 2:
            return (1,) + self.image
        return self.image

    def _check(self):
        n = self.conv_layers
        for name in ('kernels', 'paddings', 'strides'):
            if len(getattr(self, name)) != n:
                raise ConfigurationError(
                    f"Expected {n} {name} for {n} convolution layers, got {len(getattr(self, name))}"
                )

        n_dense = max(len(self.dense_layers) - 1, 0)
        if len(self.dense_layers) == 1:
            raise ConfigurationError("dense_layers needs an input size and at least one output size")
        if len(self.activations) != n + n_dense:
            raise ConfigurationError(
                f"Expected {n + n_dense} activations ({n} convolution + {n_dense} dense), "
                f"got {len(self.activations)}"
            )
        if n + n_dense == 0:
            raise ConfigurationError("No layers to build")
        if n and self.image is None:
            raise ConfigurationError("set_image() is required when building convolution layers")

    def _flattened_size(self):
        shape = self.input_shape
        for kernel, padding, stride in zip(self.kernels, self.paddings, self.strides):
            _, shape = ConvParams(kernel, padding, stride).shapes_for(shape)
        return int(np.prod(shape))

    def build(self):
        """
        Create the layers.

        Returns:
            List of Conv2D layers followed by Dense layers
        """
        self._check()
        n = self.conv_layers

        layers = [
            Conv2D(self.kernels[i], self.paddings[i], self.strides[i], self.activations[i])
            for i in range(n)
        ]

        sizes = list(self.dense_layers)
        if sizes and sizes[0] is None:
            if not n:
                raise ConfigurationError("The dense input size can only be inferred after convolutions")
            sizes[0] = self._flattened_size()

        for j in range(len(sizes) - 1):
            layers.append(Dense(sizes[j], sizes[j + 1], self.activations[n + j]))

        return layers

    def network(self, **kwargs):
        """Build the layers and wrap them in a Network (kwargs go to Network)."""
        if self.conv_layers:
            kwargs.setdefault('input_shape', self.input_shape)
        return Network(self.build(), **kwargs)
