"""
Utility Functions
=================

Helper functions for:
- Logging setup
- Random number generators
- Preprocessing (one-hot targets)
- Batching
- Metrics
"""

import logging
import os

import numpy as np


def configure_logging(level=None):
    """
    Set up logging for scripts that drive the library.

    The level comes from the argument, else the LOG_LEVEL environment
    variable, else INFO.
    """
    if level is None:
        level = os.getenv('LOG_LEVEL', 'INFO')
    if isinstance(level, str):
        level = getattr(logging, level.upper(), logging.INFO)

    logging.basicConfig(
        level=level,
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
    )
    logging.getLogger('nnscratch').setLevel(level)


def make_rng(seed=None):
    """
    Get a NumPy random generator.

    Args:
        seed: int seed, an existing Generator (returned as is) or None for
              fresh OS entropy
    """
    if isinstance(seed, np.random.Generator):
        return seed
    return np.random.default_rng(seed)


def one_hot_encode(labels, num_classes=None):
    """
    Convert integer labels to one-hot encoded vectors.

    Args:
        labels: Integer labels, shape (N,)
        num_classes: Number of classes (inferred if None)

    Returns:
        One-hot matrix, shape (N, num_classes)
    """
    labels = np.asarray(labels).astype(int)

    if num_classes is None:
        num_classes = labels.max() + 1

    one_hot = np.zeros((len(labels), num_classes), dtype=np.float64)
    one_hot[np.arange(len(labels)), labels] = 1.0

    return one_hot


def create_batches(n_samples, batch_size, rng=None, shuffle=True):
    """
    Split sample indices into mini-batches.

    Args:
        n_samples: Number of samples
        batch_size: Batch size; the last batch holds whatever remains
        rng: numpy Generator used for the shuffle
        shuffle: Whether to shuffle (uniform permutation) first

    Yields:
        Arrays of sample indices
    """
    if shuffle:
        indices = make_rng(rng).permutation(n_samples)
    else:
        indices = np.arange(n_samples)

    for start_idx in range(0, n_samples, batch_size):
        end_idx = min(start_idx + batch_size, n_samples)
        yield indices[start_idx:end_idx]


def clip_by_norm(gradient, threshold):
    """Rescale a vector so its L2 norm does not exceed threshold."""
    norm = np.linalg.norm(gradient)
    if norm > threshold:
        return gradient * (threshold / norm)
    return gradient


def accuracy_score(y_true, y_pred):
    """
    Compute classification accuracy.

    Args:
        y_true: True labels (integers or one-hot)
        y_pred: Predictions (probabilities or one-hot)

    Returns:
        Accuracy as float
    """
    y_true = np.asarray(y_true)
    y_pred = np.asarray(y_pred)
    if y_true.ndim > 1:
        y_true = np.argmax(y_true, axis=1)
    if y_pred.ndim > 1:
        y_pred = np.argmax(y_pred, axis=1)

    return float(np.mean(y_true == y_pred))
