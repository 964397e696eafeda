"""Learned building blocks shared by the network modules."""

from .layers import ConvBnReLU2D, ConvBnReLU3D

__all__ = ["ConvBnReLU2D", "ConvBnReLU3D"]
