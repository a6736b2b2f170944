"""
nnscratch
=========

A neural network training engine written from scratch with NumPy:
- Dense, depth-wise convolution and max pooling layers
- Sigmoid, leaky ReLU, tanh and softmax activations
- MSE and cross-entropy losses
- Mini-batch gradient descent with progressive L2 gradient clipping
- JSON snapshots of whole networks
"""

from .activations import ReLU, Sigmoid, Tanh, Softmax, get_activation
from .exceptions import NetworkError, ConfigurationError, ShapeMismatchError, PersistenceError
from .losses import CrossEntropyLoss, MSELoss, get_loss
from .params import PaddingType, DenseParams, ConvParams, PoolParams
from .layers import LayerType, Layer, Dense, Conv2D, MaxPool2D
from .network import Network
from .builder import LayerBuilder
from .persistence import save_network, load_network
from .utils import configure_logging, make_rng, one_hot_encode
from . import visualizations

__version__ = "1.0.0"
__all__ = [
    # Activations
    'ReLU', 'Sigmoid', 'Tanh', 'Softmax', 'get_activation',
    # Errors
    'NetworkError', 'ConfigurationError', 'ShapeMismatchError', 'PersistenceError',
    # Losses
    'CrossEntropyLoss', 'MSELoss', 'get_loss',
    # Parameters
    'PaddingType', 'DenseParams', 'ConvParams', 'PoolParams',
    # Layers
    'LayerType', 'Layer', 'Dense', 'Conv2D', 'MaxPool2D',
    # Network
    'Network', 'LayerBuilder', 'save_network', 'load_network',
    # Utilities
    'configure_logging', 'make_rng', 'one_hot_encode',
]
