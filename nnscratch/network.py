"""
Network
=======

The class that ties everything together:
- Layer validation and one-time initialization
- Forward pass across spatial (C, H, W) and flat layers
- Backward pass (backpropagation) with the flat -> spatial reshape
- Mini-batch training loop with progressive gradient clipping
- Reset, summary, saving/loading

Convolution and pooling layers must come before every dense layer; the
spatial tensor is flattened once, in channel/row/column order, on entering
the first dense layer.

Example:
    >>> from nnscratch import Network, Dense
    >>> net = Network([Dense(2, 3, 'sigmoid'), Dense(3, 1, 'sigmoid')],
    ...               learning_rate=0.5, seed=0, verbose=False)
    >>> history = net.dense_train([([0, 1], [1]), ([1, 1], [0])], epochs=10)
"""

import logging

import numpy as np
from tqdm import tqdm

from .activations import Softmax
from .exceptions import ConfigurationError, ShapeMismatchError
from .layers import Layer
from .losses import CrossEntropyLoss, get_loss
from .utils import accuracy_score, clip_by_norm, create_batches, make_rng

logger = logging.getLogger(__name__)


class Network:
    """
    A linear stack of layers trained with mini-batch gradient descent.

    Args:
        layers: Sequence of Dense / Conv2D / MaxPool2D layers
        learning_rate: Step size (> 0)
        batch_size: Samples per gradient step (>= 1)
        loss: 'mse' or 'cross_entropy' (or a Loss instance)
        grad_threshold: L2 bound for the accumulated batch gradient (> 0)
        input_shape: (channels, height, width) when the first layer is spatial;
            inferred from the first dense layer otherwise
        seed: int seed or numpy Generator for initialization and shuffling
        verbose: Show a progress bar while training

    Every layer is initialized once here; shapes that cannot be chained raise
    ConfigurationError.
    """

    def __init__(self, layers, learning_rate=0.1, batch_size=1, loss='mse',
                 grad_threshold=0.2, input_shape=None, seed=None, verbose=True):
        if learning_rate <= 0:
            raise ConfigurationError(f"learning_rate must be > 0, got {learning_rate}")
        if int(batch_size) != batch_size or batch_size < 1:
            raise ConfigurationError(f"batch_size must be an integer >= 1, got {batch_size}")
        if grad_threshold <= 0:
            raise ConfigurationError(f"grad_threshold must be > 0, got {grad_threshold}")

        self.layers = list(layers)
        self.learning_rate = float(learning_rate)
        self.batch_size = int(batch_size)
        self.loss_function = get_loss(loss)
        self.grad_threshold = float(grad_threshold)
        self.verbose = verbose
        self.rng = make_rng(seed)

        # Training state
        self.cost = 0.0
        self.history = []

        self.input_shape = self._initialize_layers(input_shape)

    def _initialize_layers(self, input_shape):
        """Thread the input shape through every layer and create the weights."""
        if not self.layers:
            raise ConfigurationError("A network needs at least one layer")

        for layer in self.layers:
            if not isinstance(layer, Layer):
                raise ConfigurationError(f"Not a layer: {layer!r}")

        first = self.layers[0]
        if input_shape is None:
            if first.is_spatial:
                raise ConfigurationError(
                    f"input_shape (channels, height, width) is required when the first layer is {first!r}"
                )
            input_shape = (first.params.nodes_in,)
        input_shape = tuple(int(d) for d in input_shape)

        shape = input_shape
        seen_dense = False
        for layer in self.layers:
            if layer.is_spatial and seen_dense:
                raise ConfigurationError(
                    f"{layer!r} follows a dense layer; convolution and pooling "
                    "layers must precede all dense layers"
                )
            seen_dense = seen_dense or not layer.is_spatial
            shape = layer.initialize(shape, self.rng)

        last = self.layers[-1]
        uses_ce = isinstance(self.loss_function, CrossEntropyLoss)
        if isinstance(last.activation, Softmax) and not uses_ce:
            raise ConfigurationError(
                f"A softmax output layer must be trained with cross-entropy, not {self.loss_function!r}"
            )
        if uses_ce and not isinstance(last.activation, Softmax):
            logger.warning("Cross-entropy loss without a softmax output layer; "
                           "gradients assume softmax outputs")

        return input_shape

    @property
    def output_size(self):
        return int(np.prod(self.layers[-1].output_shape))

    # ------------------------------------------------------------------
    # Inference
    # ------------------------------------------------------------------

    def forward(self, x):
        """
        Forward pass through the network.

        Args:
            x: A (C, H, W) tensor if the first layer is spatial, else a vector

        Returns:
            Flat output vector of the last layer
        """
        spatial = np.asarray(x, dtype=np.float64)
        flat = None

        for layer in self.layers:
            if layer.is_spatial:
                spatial = layer.forward(spatial)
            else:
                if flat is None:
                    flat = spatial.reshape(-1)
                flat = layer.forward(flat)

        if flat is None:
            flat = spatial.reshape(-1)
        return flat

    def dense_forward(self, inputs):
        """Forward pass for a network that starts with a dense layer."""
        inputs = np.asarray(inputs, dtype=np.float64)
        if self.layers[0].is_spatial:
            raise ConfigurationError("dense_forward() needs a dense first layer; use conv_forward()")
        if inputs.ndim != 1:
            raise ShapeMismatchError(f"dense_forward() expects a vector, got shape {inputs.shape}")
        return self.forward(inputs)

    def conv_forward(self, inputs):
        """Forward pass for a network that starts with a spatial layer."""
        inputs = self._as_image(inputs)
        if not self.layers[0].is_spatial:
            raise ConfigurationError("conv_forward() needs a spatial first layer; use dense_forward()")
        return self.forward(inputs)

    def predict(self, x):
        """Output vector for a single sample of either kind."""
        if self.layers[0].is_spatial:
            return self.conv_forward(x)
        return self.dense_forward(x)

    @staticmethod
    def _as_image(x):
        x = np.asarray(x, dtype=np.float64)
        if x.ndim == 2:
            x = x[np.newaxis, ...]
        if x.ndim != 3:
            raise ShapeMismatchError(f"Expected a (channels, height, width) tensor, got shape {x.shape}")
        return x

    # ------------------------------------------------------------------
    # Training
    # ------------------------------------------------------------------

    def backward(self, loss_gradient):
        """
        Backward pass through the network.

        Walks the layers in reverse, letting each apply its gradient step.
        Crossing from a dense layer into a spatial one, the flat delta is
        reshaped to that layer's last output shape.

        Args:
            loss_gradient: Gradient of the loss w.r.t. the network output

        Returns:
            Gradient w.r.t. the network input
        """
        delta = np.asarray(loss_gradient, dtype=np.float64)
        last = self.layers[-1]
        if last.is_spatial:
            delta = delta.reshape(last.params.outputs.shape)

        for i in range(len(self.layers) - 1, -1, -1):
            layer = self.layers[i]
            delta = layer.backward(delta, self.learning_rate)

            if not layer.is_spatial and i > 0 and self.layers[i - 1].is_spatial:
                delta = delta.reshape(self.layers[i - 1].params.outputs.shape)

        return delta

    def train(self, samples, epochs=1, verbose=None):
        """
        Train the network.

        Each epoch shuffles the samples and walks them in batches. Within a
        batch the loss gradients are summed sample by sample, and the running
        sum is clipped to grad_threshold after every sample. One backward
        pass per batch applies the result.

        Args:
            samples: Sequence of (input, target) pairs
            epochs: Number of passes over the samples
            verbose: Show a progress bar (defaults to the network setting)

        Returns:
            List with the mean cost of every epoch trained so far
        """
        samples = list(samples)
        if not samples:
            raise ValueError("No training samples given")
        if verbose is None:
            verbose = self.verbose

        inputs = [np.asarray(x, dtype=np.float64) for x, _ in samples]
        targets = [np.asarray(y, dtype=np.float64).reshape(-1) for _, y in samples]
        n_samples = len(samples)

        logger.info("Training on %d samples for %d epochs (batch_size=%d, learning_rate=%g)",
                    n_samples, epochs, self.batch_size, self.learning_rate)

        pbar = tqdm(range(epochs), desc="Training", disable=not verbose)
        for epoch in pbar:
            epoch_cost = 0.0
            for batch in create_batches(n_samples, self.batch_size, rng=self.rng):
                epoch_cost += self._train_batch(batch, inputs, targets)

            self.cost = epoch_cost / n_samples
            self.history.append(self.cost)
            logger.debug("Epoch %d/%d - cost: %.6f", epoch + 1, epochs, self.cost)

            if verbose:
                pbar.set_postfix({'cost': f'{self.cost:.6f}'})

        logger.info("Training finished - cost: %.6f", self.cost)
        return self.history

    def _train_batch(self, batch, inputs, targets):
        loss_gradient = np.zeros(self.output_size)
        batch_cost = 0.0

        for idx in batch:
            outputs = self.forward(inputs[idx])
            target = targets[idx]
            true_index = int(np.argmax(target))

            loss = self.loss_function(outputs, target, true_index)
            if np.isfinite(loss):
                batch_cost += loss
            else:
                logger.debug("Non-finite loss for sample %d ignored in cost", idx)

            loss_gradient += self.loss_function.backward(outputs, target, true_index)
            loss_gradient = clip_by_norm(loss_gradient, self.grad_threshold)

        self.backward(loss_gradient)
        return batch_cost

    def dense_train(self, samples, epochs=1, verbose=None):
        """Train on (vector, target) pairs."""
        samples = list(samples)
        if self.layers[0].is_spatial:
            raise ConfigurationError("dense_train() needs a dense first layer; use conv_train()")
        for x, _ in samples:
            if np.ndim(x) != 1:
                raise ShapeMismatchError(f"dense_train() expects vector inputs, got shape {np.shape(x)}")
        return self.train(samples, epochs, verbose)

    def conv_train(self, samples, epochs=1, verbose=None):
        """Train on ((channels, height, width) tensor, target) pairs."""
        if not self.layers[0].is_spatial:
            raise ConfigurationError("conv_train() needs a spatial first layer; use dense_train()")
        samples = [(self._as_image(x), y) for x, y in samples]
        return self.train(samples, epochs, verbose)

    def evaluate(self, samples):
        """
        Evaluate on (input, target) pairs.

        Returns:
            Tuple of (mean loss, accuracy)
        """
        samples = list(samples)
        if not samples:
            raise ValueError("No evaluation samples given")
        predictions = []
        total_loss = 0.0

        for x, y in samples:
            outputs = self.predict(x)
            loss = self.loss_function(outputs, y)
            if np.isfinite(loss):
                total_loss += loss
            predictions.append(outputs)

        y_true = np.array([np.asarray(y, dtype=np.float64).reshape(-1) for _, y in samples])
        accuracy = accuracy_score(y_true, np.array(predictions))

        return total_loss / len(samples), accuracy

    def reset(self):
        """Redraw every layer's weights in place; the topology stays the same."""
        for layer in self.layers:
            layer.reset(self.rng)
        self.cost = 0.0
        self.history = []
        logger.debug("Network weights reset")

    # ------------------------------------------------------------------
    # Inspection and persistence
    # ------------------------------------------------------------------

    def summary(self):
        """Print model summary."""
        print("\n" + "=" * 70)
        print("Network Summary")
        print("=" * 70)
        print(f"Input shape: {self.input_shape}")
        print(f"Loss: {self.loss_function.name}, learning rate: {self.learning_rate}, "
              f"batch size: {self.batch_size}")
        print("-" * 70)

        total_params = 0

        for i, layer in enumerate(self.layers):
            n_params = layer.num_params
            total_params += n_params
            shape = str(tuple(layer.output_shape))
            print(f"{i:3d}. {str(layer):<45} {shape:<12} Params: {n_params:,}")

        print("-" * 70)
        print(f"Total trainable parameters: {total_params:,}")
        print("=" * 70 + "\n")

        return total_params

    def save(self, filepath):
        """
        Save the network to a JSON file.

        Args:
            filepath: Path to save file (.json)
        """
        from .persistence import save_network
        save_network(self, filepath)

    @classmethod
    def load(cls, filepath, verbose=True):
        """
        Load a network saved with save().

        Args:
            filepath: Path to saved network (.json)

        Returns:
            A new Network holding the saved layers and weights
        """
        from .persistence import load_network
        return load_network(filepath, verbose=verbose)

    def __repr__(self):
        return f"Network(layers={len(self.layers)}, input_shape={self.input_shape}, loss={self.loss_function.name})"
