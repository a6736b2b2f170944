"""
persistence.py
~~~~~~~~~~~~~~

JSON snapshots of whole networks.

A snapshot holds the network hyperparameters and, per layer, its type tag,
activation name, weights/biases and the shapes needed to rebuild it. Loading
rebuilds the network from the document alone and replaces nothing in place.

Floats are written with Python's shortest round-trip repr, so a save/load
cycle reproduces every weight bit for bit.
"""

import json
import logging
import os
from typing import Any, Dict

import numpy as np

from .exceptions import PersistenceError
from .layers import Conv2D, Dense, LayerType, MaxPool2D
from .network import Network

logger = logging.getLogger(__name__)

FORMAT = 'nnscratch-network'
VERSION = 1


class NetworkEncoder(json.JSONEncoder):
    """JSON encoder that handles numpy arrays and scalars."""

    def default(self, obj: Any) -> Any:
        if isinstance(obj, np.ndarray):
            return obj.tolist()
        if isinstance(obj, np.generic):
            return obj.item()
        return super().default(obj)


def _layer_to_dict(layer) -> Dict[str, Any]:
    p = layer.params
    activation = layer.activation.name if layer.activation is not None else None

    if layer.layer_type is LayerType.DENSE:
        return {
            'type': layer.layer_type.value,
            'activation': activation,
            'nodes_in': p.nodes_in,
            'nodes_out': p.nodes_out,
            'weights': p.weights,
            'biases': p.biases,
        }
    if layer.layer_type is LayerType.CONVOLUTIONAL:
        return {
            'type': layer.layer_type.value,
            'activation': activation,
            'kernel': p.kernel,
            'padding_type': p.padding_type.value,
            'padding': p.padding,
            'stride': p.stride,
            'weights': p.weights,
            'bias': float(p.bias),
            'input_shape': list(p.input_shape),
            'output_shape': list(p.output_shape),
        }
    return {
        'type': layer.layer_type.value,
        'activation': None,
        'kernel': p.kernel,
        'stride': p.stride,
        'input_shape': list(p.input_shape),
        'output_shape': list(p.output_shape),
    }


def network_to_dict(network: Network) -> Dict[str, Any]:
    """Describe a network as a JSON-serializable dictionary."""
    return {
        'format': FORMAT,
        'version': VERSION,
        'learning_rate': network.learning_rate,
        'batch_size': network.batch_size,
        'loss': network.loss_function.name,
        'grad_threshold': network.grad_threshold,
        'cost': network.cost,
        'input_shape': list(network.input_shape),
        'history': list(network.history),
        'layers': [_layer_to_dict(layer) for layer in network.layers],
    }


def _layer_from_dict(entry: Dict[str, Any]):
    layer_type = LayerType(entry['type'])

    if layer_type is LayerType.DENSE:
        return Dense(entry['nodes_in'], entry['nodes_out'], entry['activation'])
    if layer_type is LayerType.CONVOLUTIONAL:
        return Conv2D(entry['kernel'], entry['padding_type'], entry['stride'], entry['activation'])
    return MaxPool2D(entry['kernel'], entry['stride'])


def _restore_array(name, values, shape):
    array = np.array(values, dtype=np.float64)
    if array.shape != tuple(shape):
        raise ValueError(f"{name} has shape {array.shape}, expected {tuple(shape)}")
    return array


def network_from_dict(doc: Dict[str, Any], verbose: bool = True) -> Network:
    """
    Rebuild a network from a dictionary produced by network_to_dict().

    Raises:
        KeyError, TypeError, ValueError: If the document is malformed
    """
    if doc.get('format') != FORMAT:
        raise ValueError(f"Not a network snapshot (format={doc.get('format')!r})")
    if doc.get('version') != VERSION:
        raise ValueError(f"Unsupported snapshot version {doc.get('version')!r}")

    entries = doc['layers']
    layers = [_layer_from_dict(entry) for entry in entries]

    network = Network(
        layers,
        learning_rate=doc['learning_rate'],
        batch_size=doc['batch_size'],
        loss=doc['loss'],
        grad_threshold=doc['grad_threshold'],
        input_shape=doc['input_shape'],
        verbose=verbose,
    )

    for i, (layer, entry) in enumerate(zip(layers, entries)):
        p = layer.params
        if layer.layer_type is LayerType.DENSE:
            p.weights = _restore_array(f"layer {i} weights", entry['weights'], p.weights.shape)
            p.biases = _restore_array(f"layer {i} biases", entry['biases'], p.biases.shape)
            continue

        if list(p.output_shape) != list(entry['output_shape']):
            raise ValueError(
                f"layer {i} output shape {list(entry['output_shape'])} does not match "
                f"the rebuilt shape {list(p.output_shape)}"
            )
        if layer.layer_type is LayerType.CONVOLUTIONAL:
            p.weights = _restore_array(f"layer {i} weights", entry['weights'], p.weights.shape)
            p.bias = float(entry['bias'])

    network.cost = float(doc.get('cost', 0.0))
    network.history = [float(c) for c in doc.get('history', [])]
    return network


def save_network(network: Network, filepath: str) -> None:
    """
    Write a network snapshot to a JSON file.

    Raises:
        PersistenceError: If the file cannot be written
    """
    doc = network_to_dict(network)
    directory = os.path.dirname(filepath)

    try:
        if directory and not os.path.exists(directory):
            os.makedirs(directory)
        with open(filepath, 'w', encoding='utf-8') as f:
            json.dump(doc, f, cls=NetworkEncoder)
    except OSError as e:
        raise PersistenceError(f"Cannot write network to {filepath}: {e}") from e

    logger.info("Network saved to %s (%d layers)", filepath, len(network.layers))


def load_network(filepath: str, verbose: bool = True) -> Network:
    """
    Read a network snapshot from a JSON file.

    Raises:
        PersistenceError: If the file is missing, unreadable or malformed
    """
    try:
        with open(filepath, 'r', encoding='utf-8') as f:
            doc = json.load(f)
    except OSError as e:
        raise PersistenceError(f"Cannot read network from {filepath}: {e}") from e
    except json.JSONDecodeError as e:
        raise PersistenceError(f"Network file {filepath} is not valid JSON: {e}") from e

    try:
        network = network_from_dict(doc, verbose=verbose)
    except (KeyError, TypeError, ValueError, AttributeError) as e:
        raise PersistenceError(f"Malformed network document {filepath}: {e}") from e

    logger.info("Network loaded from %s (%d layers)", filepath, len(network.layers))
    return network
