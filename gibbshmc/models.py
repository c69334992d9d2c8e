"""Model oracle wrapping a user supplied log density and its gradient."""

import numpy as np
from gibbshmc.autodiff import autodiff_fallback
from gibbshmc.errors import (
    ConfigurationError, NumericDivergenceError, StateCorruptionError)
from gibbshmc.states import ParameterState, cache_in_state, _cache_key_func
from gibbshmc.transforms import Transform, transform_from_support
from gibbshmc.utils import flatten_values, split_and_reshape


class Model(object):
    """Unnormalized target density over a set of named variables.

    The log density function receives a dictionary mapping variable names to
    their values in their natural (possibly constrained) space. Evaluations
    on a `gibbshmc.states.ParameterState` return the log density of the values
    in their *current* representation: for any linked variables the log
    absolute Jacobian determinant of the map from unconstrained to natural
    space is included, so the density is correct for the variables the state
    actually holds.
    """

    def __init__(self, log_dens, grad_log_dens=None, priors=None,
                 transforms=None):
        """
        Args:
            log_dens (Callable[[Dict[str, array]], float]): Function which given
                a dictionary of variable values returns the logarithm of an
                unnormalized probability density. Must be pure; a non-finite
                return value marks the values as outside the support.
            grad_log_dens (None or Callable[[Dict[str, array]],
                    Dict[str, array] or Tuple[Dict[str, array], float]]):
                Function which given a dictionary of variable values returns a
                dictionary of derivatives of `log_dens` with respect to each
                variable. Optionally the function may instead return a 2-tuple
                with the second entry the value of `log_dens`. If `None` (the
                default) an automatic differentiation fallback is constructed
                the first time a gradient is needed, in which case `log_dens`
                should be written using `autograd.numpy`.
            priors (None or Mapping[str, scipy.stats frozen distribution]):
                Prior distributions of variables, used for proposals drawn
                from the prior, for sampling initial values and to infer
                transforms to unconstrained space.
            transforms (None or Mapping[str, Transform]): Transforms to
                unconstrained space keyed by variable name. Variables without
                an entry use a transform inferred from the support of their
                prior or otherwise the identity.
        """
        self._log_dens = log_dens
        self._grad_log_dens_func = grad_log_dens
        self.priors = dict(priors) if priors is not None else {}
        self._transforms = dict(transforms) if transforms is not None else {}
        for name, transform in self._transforms.items():
            if not isinstance(transform, Transform):
                raise ConfigurationError(
                    f'Transform for {name!r} must be a Transform instance.')

    def prior(self, name):
        """Prior distribution of variable `name`."""
        if name not in self.priors:
            raise ConfigurationError(f'No prior specified for variable {name!r}.')
        return self.priors[name]

    def transform(self, name):
        """Transform from natural to unconstrained space for variable `name`."""
        if name not in self._transforms:
            self._transforms[name] = transform_from_support(
                self.priors.get(name))
        return self._transforms[name]

    def natural_values(self, state):
        """Dictionary of variable values mapped to their natural space."""
        return {
            name: self.transform(name).inverse(val) if state.is_linked(name)
            else val for name, val in state.items()}

    def _log_det_jacobian(self, state):
        return sum(
            self.transform(name).log_det_jacobian(state[name])
            for name in state if state.is_linked(name))

    @staticmethod
    def _call(func, values):
        try:
            return func(values)
        except ConfigurationError:
            raise
        except (ArithmeticError, ValueError) as e:
            raise NumericDivergenceError(
                f'Model evaluation failed: {e!s}') from e

    def log_dens(self, state):
        """Log density of state values in their current representation.

        The value is cached in the state and only recomputed after the state
        values change.

        Args:
            state (gibbshmc.states.ParameterState): State to compute value at.

        Returns:
            float: Log density (may be non-finite outside the support).
        """
        if state.log_dens is None:
            log_dens = float(self._call(
                self._log_dens, self.natural_values(state)))
            state._store_log_dens(log_dens + self._log_det_jacobian(state))
            if state._call_counts is not None:
                state._call_counts[_cache_key_func(self, 'log_dens', ())] += 1
        return state.log_dens

    def _autodiff_grad_log_dens(self, values):
        names = list(values)
        shapes = [np.shape(values[name]) for name in names]

        def flat_log_dens(flat):
            return self._log_dens(
                dict(zip(names, split_and_reshape(flat, shapes))))

        value_and_grad = autodiff_fallback(
            None, flat_log_dens, 'value_and_grad', 'grad_log_dens')
        val, grad = value_and_grad(
            flatten_values([values[name] for name in names]))
        grads = split_and_reshape(np.asarray(grad, dtype=np.float64), shapes)
        return dict(zip(names, grads)), val

    @cache_in_state
    def _grad_log_dens(self, state, names):
        grad_func = (
            self._grad_log_dens_func if self._grad_log_dens_func is not None
            else self._autodiff_grad_log_dens)
        output = self._call(grad_func, self.natural_values(state))
        if isinstance(output, tuple):
            grads, log_dens = output
            if state.log_dens is None:
                state._store_log_dens(
                    float(log_dens) + self._log_det_jacobian(state))
        else:
            grads = output
        parts = []
        for name in names:
            if name not in grads:
                raise ConfigurationError(
                    f'Gradient function did not return a value for {name!r}.')
            grad = np.asarray(grads[name], dtype=np.float64)
            if grad.shape != state[name].shape:
                raise ConfigurationError(
                    f'Gradient for {name!r} has shape {grad.shape}, expected '
                    f'{state[name].shape}.')
            if state.is_linked(name):
                transform = self.transform(name)
                u = state[name]
                grad = (
                    grad * transform.grad_inverse(u) +
                    transform.grad_log_det_jacobian(u))
            parts.append(grad)
        return flatten_values(parts)

    def grad_log_dens(self, state, names):
        """Gradient of the log density with respect to a subset of variables.

        Derivatives are taken with respect to the current representation of
        each variable, so for linked variables the gradient is with respect to
        the unconstrained value (including the log Jacobian term).

        Args:
            state (gibbshmc.states.ParameterState): State to compute value at.
            names (Sequence[str]): Ordered names of variables to differentiate
                with respect to.

        Returns:
            array: One-dimensional array of concatenated flattened gradients.
        """
        return self._grad_log_dens(state, tuple(names))

    def evaluate(self, state, names=None, with_grad=False):
        """Evaluate log density and optionally its gradient.

        Args:
            state (gibbshmc.states.ParameterState): State to evaluate at.
            names (None or Sequence[str]): Variables to differentiate with
                respect to, all variables if `None`.
            with_grad (bool): Whether to compute the gradient.

        Returns:
            log_dens (float): Log density value.
            grad (None or array): Flat gradient if `with_grad` else `None`.
        """
        if not with_grad:
            return self.log_dens(state), None
        names = state.names if names is None else names
        grad = self.grad_log_dens(state, names)
        return self.log_dens(state), grad

    def sample_prior(self, rng, names=None):
        """Draw variable values independently from their priors.

        Args:
            rng (numpy.random.Generator): Numpy random number generator.
            names (None or Iterable[str]): Variables to sample, defaults to all
                variables with priors.

        Returns:
            Dict[str, array]: Sampled values.
        """
        names = self.priors if names is None else names
        return {
            name: np.asarray(self.prior(name).rvs(random_state=rng),
                             dtype=np.float64)
            for name in names}

    def initial_state(self, init_values=None, rng=None):
        """Create a parameter state from initial values and prior draws.

        Args:
            init_values (None or Mapping[str, array_like]): Initial values of
                some or all variables. Any variable with a prior but without
                an initial value is sampled from its prior.
            rng (None or numpy.random.Generator): Random number generator used
                to sample missing values.

        Returns:
            gibbshmc.states.ParameterState: New state in natural space.
        """
        init_values = {} if init_values is None else dict(init_values)
        missing = [name for name in self.priors if name not in init_values]
        if missing:
            if rng is None:
                rng = np.random.default_rng()
            init_values.update(self.sample_prior(rng, missing))
        if len(init_values) == 0:
            raise ConfigurationError(
                'Initial values must be given for models without priors.')
        ordered = list(self.priors) + [
            name for name in init_values if name not in self.priors]
        return ParameterState({name: init_values[name] for name in ordered})

    def check_log_dens(self, state, rtol=1e-8, atol=1e-10):
        """Check a cached log density is consistent with the state values.

        Raises:
            StateCorruptionError: If recomputing the log density gives a value
                different from the cached value.
        """
        if state.log_dens is None:
            return
        fresh = state.copy()
        fresh.log_dens = None
        recomputed = self.log_dens(fresh)
        cached = state.log_dens
        if np.isfinite(cached) or np.isfinite(recomputed):
            consistent = np.isclose(cached, recomputed, rtol=rtol, atol=atol)
        else:
            consistent = (
                np.isnan(cached) == np.isnan(recomputed) and
                (np.isnan(cached) or cached == recomputed))
        if not consistent:
            raise StateCorruptionError(
                f'Cached log density {cached} inconsistent with recomputed '
                f'value {recomputed}.')
