"""Symplectic integrators for simulation of Hamiltonian dynamics."""

import logging
import numpy as np
from gibbshmc.errors import AdaptationError, NumericDivergenceError

logger = logging.getLogger(__name__)


def leapfrog(pos, mom, grad_log_dens, step_size, n_step, inv_mass=None):
    r"""Simulate Hamiltonian dynamics with the leapfrog (Störmer-Verlet) scheme.

    Each step consists of a half step of the momentum along the gradient of
    the log density, a full step of the position along the velocity
    \(M^{-1} p\) and a second momentum half step. The gradient at the end of
    each step is reused at the start of the next so a trajectory of `n_step`
    steps needs `n_step + 1` gradient evaluations (the first of which is
    typically cached).

    Args:
        pos (array): Initial flat position vector. Not mutated.
        mom (array): Initial flat momentum vector. Not mutated.
        grad_log_dens (Callable[[array], array]): Function returning the
            gradient of the log density at a position.
        step_size (float): Integrator time step.
        n_step (int): Number of leapfrog steps.
        inv_mass (None or float or array): Diagonal of inverse mass matrix,
            identity if `None`.

    Returns:
        pos (array): Final position.
        mom (array): Final momentum.
        valid (bool): `False` if the trajectory was terminated early because
            of a non-finite gradient, in which case the returned position and
            momentum are those at the point of divergence.
    """
    pos = np.array(pos, dtype=np.float64)
    mom = np.array(mom, dtype=np.float64)
    inv_mass = 1. if inv_mass is None else inv_mass
    try:
        grad = grad_log_dens(pos)
        if not np.all(np.isfinite(grad)):
            logger.info('Non-finite gradient at trajectory start.')
            return pos, mom, False
        for s in range(n_step):
            mom = mom + 0.5 * step_size * grad
            pos = pos + step_size * inv_mass * mom
            grad = grad_log_dens(pos)
            if not np.all(np.isfinite(grad)):
                logger.info(
                    f'Terminating trajectory at step {s + 1} of {n_step} due '
                    f'to non-finite gradient.')
                return pos, mom, False
            mom = mom + 0.5 * step_size * grad
    except NumericDivergenceError as e:
        logger.info(f'Terminating trajectory due to error:\n{e!s}')
        return pos, mom, False
    return pos, mom, True


class LeapfrogIntegrator(object):
    """Leapfrog integrator with an adaptable step size."""

    def __init__(self, step_size=None):
        """
        Args:
            step_size (float or None): Integrator time step. If set to `None`
                (the default) it is assumed that a step size adapter will be
                used to set the step size before calling `integrate`.
        """
        self.step_size = step_size

    def integrate(self, pos, mom, grad_log_dens, n_step, inv_mass=None):
        """Simulate `n_step` leapfrog steps from a position and momentum.

        See `leapfrog` for the meaning of the arguments and return values.
        """
        if self.step_size is None:
            raise AdaptationError(
                'Integrator `step_size` is `None`. This value should only be '
                'used if a step size adapter is being used to set the step '
                'size.')
        return leapfrog(
            pos, mom, grad_log_dens, self.step_size, n_step, inv_mass)

    def __repr__(self):
        return f'{type(self).__name__}(step_size={self.step_size})'
