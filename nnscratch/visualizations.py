"""
Visualization Utilities
=======================

This module provides functions for visualizing:
- Training progress (cost per epoch)
- Convolution kernels
- Feature maps produced by the convolution layers
"""

import logging

import numpy as np
import matplotlib.pyplot as plt

from .layers import LayerType

logger = logging.getLogger(__name__)


def _finish(fig, save_path, show, what):
    plt.tight_layout()

    if save_path:
        fig.savefig(save_path, dpi=150, bbox_inches='tight')
        logger.info("%s saved to %s", what, save_path)

    if show:
        plt.show()
    return fig


def _grid(n_images, figsize):
    n_cols = int(np.ceil(np.sqrt(n_images)))
    n_rows = int(np.ceil(n_images / n_cols))
    fig, axes = plt.subplots(n_rows, n_cols, figsize=figsize)
    return fig, np.array(axes).flatten()


def plot_cost_history(history, figsize=(8, 5), save_path=None, show=True):
    """
    Plot the mean cost of every training epoch.

    Args:
        history: List of per-epoch costs (Network.history)
        figsize: Figure size
        save_path: Path to save figure
        show: Call plt.show()
    """
    fig, ax = plt.subplots(figsize=figsize)

    epochs = range(1, len(history) + 1)
    ax.plot(epochs, history, 'b-', label='Training Cost', linewidth=2)
    ax.set_xlabel('Epoch', fontsize=12)
    ax.set_ylabel('Cost', fontsize=12)
    ax.set_title('Training Cost', fontsize=14)
    ax.legend(fontsize=10)
    ax.grid(True, alpha=0.3)

    return _finish(fig, save_path, show, "Cost history plot")


def visualize_kernels(network, figsize=(12, 8), save_path=None, show=True):
    """
    Visualize every convolution kernel of a network.

    One image per (layer, channel) kernel, scaled to [0, 1].
    """
    kernels = []
    for i, layer in enumerate(network.layers):
        if layer.layer_type is LayerType.CONVOLUTIONAL:
            for c, kernel in enumerate(layer.params.weights):
                kernels.append((f'Layer {i} ch {c}', kernel))

    if not kernels:
        raise ValueError("Network has no convolution layers")

    fig, axes = _grid(len(kernels), figsize)

    for ax, (title, kernel) in zip(axes, kernels):
        # Normalize for visualization
        img = (kernel - kernel.min()) / (kernel.max() - kernel.min() + 1e-8)
        ax.imshow(img, cmap='gray')
        ax.set_title(title, fontsize=8)
        ax.axis('off')

    # Hide unused subplots
    for ax in axes[len(kernels):]:
        ax.axis('off')

    fig.suptitle('Convolution Kernels', fontsize=14)
    return _finish(fig, save_path, show, "Kernel visualization")


def visualize_feature_maps(network, x, figsize=(12, 12), save_path=None, show=True):
    """
    Run one forward pass and show the output channels of each spatial layer.

    Args:
        network: Network whose first layer is spatial
        x: Input tensor, shape (C, H, W) or (H, W)
    """
    network.conv_forward(x)

    maps = []
    for i, layer in enumerate(network.layers):
        if layer.is_spatial:
            for c, fmap in enumerate(layer.params.outputs):
                maps.append((f'{type(layer).__name__} {i} ch {c}', fmap))

    fig, axes = _grid(len(maps), figsize)

    for ax, (title, fmap) in zip(axes, maps):
        ax.imshow(fmap, cmap='viridis')
        ax.set_title(title, fontsize=8)
        ax.axis('off')

    for ax in axes[len(maps):]:
        ax.axis('off')

    fig.suptitle('Feature Maps', fontsize=14)
    return _finish(fig, save_path, show, "Feature maps")
