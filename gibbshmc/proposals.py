"""Proposal kernels for Metropolis-Hastings samplers."""

from abc import ABC, abstractmethod
from numbers import Real
import numpy as np
from scipy import linalg, stats
from gibbshmc.errors import ConfigurationError


class Proposal(ABC):
    """Kernel proposing a new value of a variable given its current value."""

    #: Whether `log_prob(a, b) == log_prob(b, a)` for all values.
    is_symmetric = False

    #: Whether the kernel acts on values in unconstrained space.
    requires_link = False

    @abstractmethod
    def sample(self, current, rng):
        """Draw a proposed value.

        Args:
            current (array): Current value.
            rng (numpy.random.Generator): Numpy random number generator.

        Returns:
            array: Proposed value with the same shape as `current`.
        """

    @abstractmethod
    def log_prob(self, value, given):
        """Log density of proposing `value` from `given`."""


def _is_discrete(dist):
    return (
        isinstance(getattr(dist, 'dist', None), stats.rv_discrete) or
        not hasattr(dist, 'logpdf'))


class StaticProposal(Proposal):
    """Independent proposal drawing values from a fixed distribution.

    Typically used with the prior of a variable to propose from the prior.
    """

    def __init__(self, dist):
        """
        Args:
            dist (scipy.stats frozen distribution): Distribution to draw
                proposals from. Univariate distributions are broadcast over
                array valued variables.
        """
        if not hasattr(dist, 'rvs'):
            raise ConfigurationError(
                f'Static proposal distribution {dist!r} has no `rvs` method.')
        self.dist = dist

    def sample(self, current, rng):
        shape = np.shape(current)
        if isinstance(getattr(self.dist, 'dist', None),
                      (stats.rv_continuous, stats.rv_discrete)):
            value = self.dist.rvs(size=shape or None, random_state=rng)
        else:
            value = self.dist.rvs(random_state=rng)
        return np.reshape(np.asarray(value, dtype=np.float64), shape)

    def log_prob(self, value, given):
        if _is_discrete(self.dist):
            return float(np.sum(self.dist.logpmf(value)))
        return float(np.sum(self.dist.logpdf(value)))


class RandomWalkProposal(Proposal):
    """Gaussian random walk proposal.

    Proposes `current + L @ n` with `n` a vector of independent standard
    normal variates and `L` either a (per-element) scale or the lower
    Cholesky factor of a covariance matrix.
    """

    is_symmetric = True
    requires_link = True

    def __init__(self, scale=1.):
        """
        Args:
            scale (float or array): Positive scalar or per-element standard
                deviation(s), or a two-dimensional positive definite
                covariance matrix for correlated proposals on flat values.
        """
        scale = np.asarray(scale, dtype=np.float64)
        if scale.ndim == 2:
            if scale.shape[0] != scale.shape[1]:
                raise ConfigurationError(
                    f'Covariance matrix must be square, got shape {scale.shape}.')
            try:
                self.chol_covar = linalg.cholesky(scale, lower=True)
            except linalg.LinAlgError as e:
                raise ConfigurationError(
                    'Random walk covariance matrix is not positive definite.'
                ) from e
            self.scale = None
        else:
            if not np.all(scale > 0) or not np.all(np.isfinite(scale)):
                raise ConfigurationError(
                    f'Random walk scale must be positive, got {scale}.')
            self.chol_covar = None
            self.scale = scale

    def sample(self, current, rng):
        current = np.asarray(current, dtype=np.float64)
        noise = rng.standard_normal(current.shape)
        if self.chol_covar is None:
            return current + self.scale * noise
        if current.size != self.chol_covar.shape[0]:
            raise ConfigurationError(
                f'Covariance dimension {self.chol_covar.shape[0]} does not '
                f'match variable size {current.size}.')
        return current + (self.chol_covar @ noise.ravel()).reshape(
            current.shape)

    def log_prob(self, value, given):
        diff = np.ravel(np.asarray(value) - np.asarray(given))
        if self.chol_covar is None:
            scale = np.broadcast_to(self.scale, np.shape(value)).ravel()
            return float(stats.norm.logpdf(diff, scale=scale).sum())
        return float(stats.multivariate_normal.logpdf(
            diff, cov=self.chol_covar @ self.chol_covar.T))


class CustomProposal(Proposal):
    """Proposal defined by user supplied functions."""

    def __init__(self, sample_func, log_prob_func=None, requires_link=False):
        """
        Args:
            sample_func (Callable[[array, Generator], array]): Function which
                given the current value and a random number generator returns
                a proposed value.
            log_prob_func (None or Callable[[array, array], float]): Function
                returning the log density of proposing its first argument from
                its second. If `None` the kernel is assumed symmetric.
            requires_link (bool): Whether the kernel acts on values in
                unconstrained space.
        """
        self.sample_func = sample_func
        self.log_prob_func = log_prob_func
        self.is_symmetric = log_prob_func is None
        self.requires_link = requires_link

    def sample(self, current, rng):
        return np.asarray(self.sample_func(current, rng), dtype=np.float64)

    def log_prob(self, value, given):
        if self.log_prob_func is None:
            return 0.
        return float(self.log_prob_func(value, given))


def as_proposal(obj):
    """Coerce an object to a `Proposal`.

    Scipy frozen distributions give a `StaticProposal`, numbers and arrays a
    `RandomWalkProposal` with the value as scale, and callables a
    `CustomProposal`.
    """
    if isinstance(obj, Proposal):
        return obj
    elif hasattr(obj, 'rvs'):
        return StaticProposal(obj)
    elif isinstance(obj, (Real, np.ndarray)) and not isinstance(obj, bool):
        return RandomWalkProposal(obj)
    elif callable(obj):
        return CustomProposal(obj)
    raise ConfigurationError(f'Cannot construct proposal from {obj!r}.')
