"""Utility functions for validating options and packing variable arrays."""

from numbers import Integral, Real
import numpy as np
from gibbshmc.errors import ConfigurationError


def check_positive_int(value, name):
    """Check an option is a strictly positive integer.

    Args:
        value (object): Option value to check.
        name (str): Option name to use in error message.

    Returns:
        int: Validated value.

    Raises:
        ConfigurationError: If `value` is not an integer greater than zero.
    """
    if isinstance(value, bool) or not isinstance(value, Integral) or value < 1:
        raise ConfigurationError(f'{name} must be a positive integer, got {value!r}.')
    return int(value)


def check_non_negative_int(value, name):
    """Check an option is an integer greater than or equal to zero."""
    if isinstance(value, bool) or not isinstance(value, Integral) or value < 0:
        raise ConfigurationError(
            f'{name} must be a non-negative integer, got {value!r}.')
    return int(value)


def check_positive_float(value, name):
    """Check an option is a finite real number greater than zero."""
    if (isinstance(value, bool) or not isinstance(value, Real) or
            not np.isfinite(value) or value <= 0):
        raise ConfigurationError(f'{name} must be a positive number, got {value!r}.')
    return float(value)


def check_probability(value, name):
    """Check an option lies in the open interval (0, 1)."""
    if (isinstance(value, bool) or not isinstance(value, Real) or
            not 0 < value < 1):
        raise ConfigurationError(
            f'{name} must be in the open interval (0, 1), got {value!r}.')
    return float(value)


def flatten_values(values):
    """Concatenate a sequence of arrays into a single one-dimensional array."""
    if len(values) == 0:
        return np.zeros(0)
    return np.concatenate([np.ravel(v) for v in values]).astype(np.float64)


def split_and_reshape(array, shapes):
    """Split a one-dimensional array into subarrays of specified shapes.

    Args:
        array (array): One-dimensional array to split.
        shapes (Sequence[Tuple[int]]): Shapes of the subarrays, in order.

    Returns:
        List[array]: Subarrays with the requested shapes.

    Raises:
        ConfigurationError: If the array size does not match the total size
            of the requested shapes.
    """
    sizes = [int(np.prod(s, dtype=np.int64)) for s in shapes]
    if array.shape != (sum(sizes),):
        raise ConfigurationError(
            f'Flat array of shape {array.shape} does not match variable sizes '
            f'{sizes}.')
    parts = []
    i = 0
    for size, shape in zip(sizes, shapes):
        parts.append(array[i:i + size].reshape(shape))
        i += size
    return parts
