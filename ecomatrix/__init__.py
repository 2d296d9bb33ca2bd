"""EcoMatrix: turn a story idea into an illustrated comic."""

__version__ = "0.1.0"
