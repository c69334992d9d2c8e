"""Bijective transforms between constrained and unconstrained variable spaces.

Samplers whose dynamics are defined on unconstrained real space (HMC) *link*
the variables they update before a step, mapping each constrained value `x`
to an unconstrained value `u`, and *unlink* them afterwards. The log density
in linked space includes the log absolute Jacobian determinant of the inverse
map `u -> x`, which is added to (and later subtracted from) the cached log
density so that no model re-evaluation is required.
"""

from abc import ABC, abstractmethod
import numpy as np
from scipy import special
from gibbshmc.errors import ConfigurationError


class Transform(ABC):
    """Elementwise bijection from a constrained domain to the real line."""

    @abstractmethod
    def forward(self, x):
        """Map constrained value(s) `x` to unconstrained value(s)."""

    @abstractmethod
    def inverse(self, u):
        """Map unconstrained value(s) `u` back to the constrained domain."""

    @abstractmethod
    def log_det_jacobian(self, u):
        """Sum of log absolute derivatives of `inverse` evaluated at `u`."""

    @abstractmethod
    def grad_inverse(self, u):
        """Elementwise derivative of `inverse` evaluated at `u`."""

    @abstractmethod
    def grad_log_det_jacobian(self, u):
        """Derivative of `log_det_jacobian` with respect to `u`."""

    def __repr__(self):
        return f'{type(self).__name__}()'


class IdentityTransform(Transform):
    """Transform for variables already supported on the whole real line."""

    def forward(self, x):
        return np.array(x, dtype=np.float64)

    def inverse(self, u):
        return np.array(u, dtype=np.float64)

    def log_det_jacobian(self, u):
        return 0.

    def grad_inverse(self, u):
        return np.ones_like(u, dtype=np.float64)

    def grad_log_det_jacobian(self, u):
        return np.zeros_like(u, dtype=np.float64)


class LowerBoundTransform(Transform):
    """Logarithmic transform for variables bounded below, `x = lower + exp(u)`."""

    def __init__(self, lower=0.):
        self.lower = float(lower)

    def forward(self, x):
        return np.log(np.asarray(x, dtype=np.float64) - self.lower)

    def inverse(self, u):
        return self.lower + np.exp(u)

    def log_det_jacobian(self, u):
        return float(np.sum(u))

    def grad_inverse(self, u):
        return np.exp(u)

    def grad_log_det_jacobian(self, u):
        return np.ones_like(u, dtype=np.float64)

    def __repr__(self):
        return f'{type(self).__name__}(lower={self.lower})'


class UpperBoundTransform(Transform):
    """Logarithmic transform for variables bounded above, `x = upper - exp(u)`."""

    def __init__(self, upper=0.):
        self.upper = float(upper)

    def forward(self, x):
        return np.log(self.upper - np.asarray(x, dtype=np.float64))

    def inverse(self, u):
        return self.upper - np.exp(u)

    def log_det_jacobian(self, u):
        return float(np.sum(u))

    def grad_inverse(self, u):
        return -np.exp(u)

    def grad_log_det_jacobian(self, u):
        return np.ones_like(u, dtype=np.float64)

    def __repr__(self):
        return f'{type(self).__name__}(upper={self.upper})'


class IntervalTransform(Transform):
    """Logit transform for variables on an interval `(lower, upper)`.

    The inverse map is `x = lower + (upper - lower) * expit(u)`.
    """

    def __init__(self, lower=0., upper=1.):
        if not upper > lower:
            raise ConfigurationError(
                f'Interval upper bound {upper} must exceed lower bound {lower}.')
        self.lower = float(lower)
        self.upper = float(upper)

    @property
    def width(self):
        return self.upper - self.lower

    def forward(self, x):
        return special.logit(
            (np.asarray(x, dtype=np.float64) - self.lower) / self.width)

    def inverse(self, u):
        return self.lower + self.width * special.expit(u)

    def log_det_jacobian(self, u):
        # log expit(u) + log expit(-u) computed stably
        u = np.asarray(u, dtype=np.float64)
        return float(np.sum(
            np.log(self.width) - np.logaddexp(0., -u) - np.logaddexp(0., u)))

    def grad_inverse(self, u):
        s = special.expit(u)
        return self.width * s * (1 - s)

    def grad_log_det_jacobian(self, u):
        return 1 - 2 * special.expit(u)

    def __repr__(self):
        return (
            f'{type(self).__name__}(lower={self.lower}, upper={self.upper})')


def transform_from_support(dist):
    """Choose a transform from the support of a distribution.

    Args:
        dist (None or scipy.stats frozen distribution): Distribution with a
            `support` method returning the lower and upper support bounds. If
            `None` the identity transform is returned.

    Returns:
        Transform: Transform mapping the support onto the real line.
    """
    if dist is None or not hasattr(dist, 'support'):
        return IdentityTransform()
    lower, upper = (float(b) for b in dist.support())
    if np.isinf(lower) and np.isinf(upper):
        return IdentityTransform()
    elif np.isinf(upper):
        return LowerBoundTransform(lower)
    elif np.isinf(lower):
        return UpperBoundTransform(upper)
    else:
        return IntervalTransform(lower, upper)


def link(state, names, model):
    """Map variables to unconstrained space, updating the cached log density.

    Variables already linked are left unchanged, so calling `link` twice
    with the same arguments is equivalent to calling it once.

    Args:
        state (gibbshmc.states.ParameterState): State to update in place.
        names (Iterable[str]): Names of variables to link.
        model (gibbshmc.models.Model): Model defining per-variable transforms.
    """
    log_dens = state.log_dens
    log_det_jac = 0.
    for name in names:
        if state.is_linked(name):
            continue
        transform = model.transform(name)
        u = transform.forward(state[name])
        state[name] = u
        state.set_linked(name, True)
        log_det_jac += transform.log_det_jacobian(u)
    if log_dens is not None:
        state.log_dens = log_dens + log_det_jac


def unlink(state, names, model):
    """Map variables back to their natural space; exact inverse of `link`.

    Args:
        state (gibbshmc.states.ParameterState): State to update in place.
        names (Iterable[str]): Names of variables to unlink.
        model (gibbshmc.models.Model): Model defining per-variable transforms.
    """
    log_dens = state.log_dens
    log_det_jac = 0.
    for name in names:
        if not state.is_linked(name):
            continue
        transform = model.transform(name)
        u = state[name]
        log_det_jac += transform.log_det_jacobian(u)
        state[name] = transform.inverse(u)
        state.set_linked(name, False)
    if log_dens is not None:
        state.log_dens = log_dens - log_det_jac
