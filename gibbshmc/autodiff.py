"""Automatic differentation fallback for constructing derivative functions."""

from gibbshmc.errors import ConfigurationError

AUTOGRAD_AVAILABLE = True
try:
    import autograd
except ImportError:
    AUTOGRAD_AVAILABLE = False


"""List of names of valid differential operators.

Each name is the name of an autograd operator taking a single function as
argument.
"""
DIFF_OPS = [
    # value and gradient for scalar valued functions
    'value_and_grad',
]


def autodiff_fallback(diff_func, func, diff_op_name, name):
    """Generate derivative function automatically if not provided.

    Uses automatic differentiation to generate a function corresponding to a
    differential operator applied to a function if an alternative
    implementation of the derivative function has not been provided.

    Args:
        diff_func (None or Callable): Either a callable implementing the
            required derivative function or `None` if none was provided.
        func (Callable): Function to differentiate.
        diff_op_name (str): String specifying name of autograd differential
            operator to use to generate required derivative function.
        name (str): Name of derivative function to use in error message.

    Returns:
        Callable: `diff_func` value if not `None` otherwise generated
            derivative of `func` by applying named differential operator.
    """
    if diff_func is not None:
        return diff_func
    elif diff_op_name not in DIFF_OPS:
        raise ValueError(
            f'Differential operator {diff_op_name} is not defined.')
    elif AUTOGRAD_AVAILABLE:
        return getattr(autograd, diff_op_name)(func)
    else:
        raise ConfigurationError(
            f'Autograd not available therefore {name} must be provided.')
