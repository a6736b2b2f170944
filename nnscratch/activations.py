"""
Activation Functions
====================

Non-linear activation functions applied by dense and convolutional layers.

Each activation implements:
- forward(x): the activation itself
- derivative(a): the derivative, evaluated on the *activated* output a = f(x)

Working on outputs means a layer only needs to cache what it produced during
the forward pass; it never has to keep the raw pre-activation values around.

Softmax is the exception: its derivative is a full Jacobian. In training it is
always paired with cross-entropy, whose gradient already folds the Jacobian in
(dL/dz = softmax(z) - one_hot), so layers skip the derivative for softmax.
"""

import numpy as np


class Activation:
    """Base class for all activation functions."""

    name = None

    def forward(self, x):
        """Apply activation function."""
        raise NotImplementedError

    def derivative(self, a):
        """Derivative of the activation, given the activated output a."""
        raise NotImplementedError

    def __call__(self, x):
        return self.forward(x)

    def __eq__(self, other):
        return isinstance(other, Activation) and self.name == other.name

    def __hash__(self):
        return hash(self.name)

    def __repr__(self):
        return f"{type(self).__name__}()"


class Sigmoid(Activation):
    """
    Sigmoid: f(x) = 1 / (1 + exp(-x))

    Squashes output to (0, 1).

    Derivative (in terms of the output a = f(x)):
        f'(a) = a * (1 - a)
    """

    name = 'sigmoid'

    def forward(self, x):
        # Clip for numerical stability
        x_clipped = np.clip(x, -500, 500)
        return 1.0 / (1.0 + np.exp(-x_clipped))

    def derivative(self, a):
        a = np.asarray(a, dtype=np.float64)
        return a * (1 - a)


class ReLU(Activation):
    """
    Leaky Rectified Linear Unit: f(x) = x if x > 0 else alpha * x

    The small negative slope keeps units from dying.

    Args:
        alpha: Slope for negative values (default: 0.01)

    Derivative (in terms of the output a = f(x), which has the sign of x):
        f'(a) = 1 if a >= 0 else alpha
    """

    name = 'relu'

    def __init__(self, alpha=0.01):
        self.alpha = alpha

    def forward(self, x):
        x = np.asarray(x, dtype=np.float64)
        return np.where(x > 0, x, self.alpha * x)

    def derivative(self, a):
        a = np.asarray(a, dtype=np.float64)
        return np.where(a >= 0, 1.0, self.alpha)


class Tanh(Activation):
    """
    Hyperbolic Tangent: f(x) = tanh(x)

    Output range: (-1, 1)

    Derivative (in terms of the output a = f(x)):
        f'(a) = 1 - a^2
    """

    name = 'tanh'

    def forward(self, x):
        return np.tanh(x)

    def derivative(self, a):
        a = np.asarray(a, dtype=np.float64)
        return 1 - a ** 2


class Softmax(Activation):
    """
    Softmax: f(x_i) = exp(x_i) / sum(exp(x_j))

    Converts scores to a probability distribution along the last axis, so a
    2-D input is treated as a stack of row vectors.

    Numerical Stability:
        We subtract max(x) before exp to prevent overflow.
        This doesn't change the result: exp(x-c)/sum(exp(x-c)) = exp(x)/sum(exp(x))
    """

    name = 'softmax'

    def forward(self, x):
        x = np.asarray(x, dtype=np.float64)
        x_shifted = x - np.max(x, axis=-1, keepdims=True)
        exp_x = np.exp(x_shifted)
        return exp_x / np.sum(exp_x, axis=-1, keepdims=True)

    def derivative(self, a):
        """
        Full Jacobian of softmax for a single output vector a.
        J[i,j] = a[i] * (delta[i,j] - a[j])

        Not used during training: cross-entropy already produces the combined
        gradient.
        """
        a = np.asarray(a, dtype=np.float64)
        return np.diag(a) - np.outer(a, a)


# ====================================
# Activation Registry
# ====================================

ACTIVATIONS = {
    'sigmoid': Sigmoid,
    'relu': ReLU,
    'leaky_relu': ReLU,
    'leakyrelu': ReLU,
    'tanh': Tanh,
    'softmax': Softmax,
}


def get_activation(name):
    """
    Get activation function by name.

    Args:
        name: String name ('relu', 'sigmoid', etc.) or Activation instance

    Returns:
        Activation instance

    Example:
        >>> act = get_activation('relu')
        >>> act(np.array([-1.0, 0.0, 1.0]))
        array([-0.01,  0.  ,  1.  ])
    """
    if isinstance(name, Activation):
        return name

    name_lower = str(name).lower().replace('-', '_')
    if name_lower not in ACTIVATIONS:
        available = ', '.join(ACTIVATIONS.keys())
        raise ValueError(f"Unknown activation '{name}'. Available: {available}")

    return ACTIVATIONS[name_lower]()
