"""
Loss Functions
==============

Loss functions measure how wrong a single prediction is.

Each loss implements:
- forward(outputs, targets, true_index): scalar loss for one sample
- backward(outputs, targets, true_index): gradient w.r.t. the outputs

`true_index` is the position of the correct class in a one-hot target. When it
is omitted it is taken from argmax(targets).
"""

import numpy as np

from .exceptions import ShapeMismatchError


class Loss:
    """Base class for loss functions."""

    name = None

    def forward(self, outputs, targets, true_index=None):
        """Compute loss value."""
        raise NotImplementedError

    def backward(self, outputs, targets, true_index=None):
        """Compute gradient of loss w.r.t. outputs."""
        raise NotImplementedError

    def __call__(self, outputs, targets, true_index=None):
        return self.forward(outputs, targets, true_index)

    def __repr__(self):
        return f"{type(self).__name__}()"

    @staticmethod
    def _check(outputs, targets, true_index):
        outputs = np.asarray(outputs, dtype=np.float64).reshape(-1)
        targets = np.asarray(targets, dtype=np.float64).reshape(-1)

        if outputs.shape != targets.shape:
            raise ShapeMismatchError(
                f"Outputs ({outputs.size}) and targets ({targets.size}) are not compatible"
            )

        if true_index is None:
            true_index = int(np.argmax(targets))
        elif not 0 <= true_index < outputs.size:
            raise ShapeMismatchError(
                f"true_index {true_index} out of range for {outputs.size} outputs"
            )

        return outputs, targets, true_index


class MSELoss(Loss):
    """
    Squared error summed over the output vector.

    Formula: L = sum((y_pred - y_true)^2)

    Gradient: dL/dy_pred = 2 * (y_pred - y_true)
    """

    name = 'mse'

    def forward(self, outputs, targets, true_index=None):
        outputs, targets, _ = self._check(outputs, targets, true_index)
        return float(np.sum((outputs - targets) ** 2))

    def backward(self, outputs, targets, true_index=None):
        outputs, targets, _ = self._check(outputs, targets, true_index)
        return 2.0 * (outputs - targets)


class CrossEntropyLoss(Loss):
    """
    Cross-Entropy Loss for a softmax output.

    Formula for the correct class k: L = -log(p_k)

    No epsilon clipping: log(0) yields inf, which the training loop counts as
    a zero contribution to the epoch cost.

    Gradient (softmax + cross-entropy combined):
        dL/dz = p - one_hot(k)
    """

    name = 'cross_entropy'

    def forward(self, outputs, targets, true_index=None):
        outputs, _, true_index = self._check(outputs, targets, true_index)
        with np.errstate(divide='ignore', invalid='ignore'):
            return float(-np.log(outputs[true_index]))

    def backward(self, outputs, targets, true_index=None):
        outputs, _, true_index = self._check(outputs, targets, true_index)
        grad = outputs.copy()
        grad[true_index] -= 1.0
        return grad


# ============================================================================
# Loss Registry
# ============================================================================

LOSSES = {
    'mse': MSELoss,
    'mean_squared_error': MSELoss,
    'cross_entropy': CrossEntropyLoss,
    'crossentropy': CrossEntropyLoss,
    'ce': CrossEntropyLoss,
    'cel': CrossEntropyLoss,
    'categorical_crossentropy': CrossEntropyLoss,
}


def get_loss(name):
    """
    Get loss function by name.

    Args:
        name: String name or Loss instance

    Returns:
        Loss instance
    """
    if isinstance(name, Loss):
        return name

    name_lower = str(name).lower().replace('-', '_').replace(' ', '_')
    if name_lower not in LOSSES:
        available = ', '.join(sorted(set(LOSSES.keys())))
        raise ValueError(f"Unknown loss '{name}'. Available: {available}")

    return LOSSES[name_lower]()
