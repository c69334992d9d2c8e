"""Hamiltonian systems encapsulating energy functions and their derivatives."""

import numpy as np


class DiagonalMetricSystem(object):
    r"""Hamiltonian system for a subset of variables with a diagonal metric.

    The Hamiltonian is defined as

    \[ h(q, p) = -\log \pi(q) + \frac{1}{2} p^T M^{-1} p \]

    where \(q\) is the flat vector of the (linked) values of the variables in
    the subset, \(\pi\) the target density with all other variables held
    fixed, and \(M\) a diagonal mass matrix parameterized by a vector of
    positive metric scales \(s\) such that \(M^{-1} = \textrm{diag}(s^2)\).
    Positions are read from and written to a `gibbshmc.states.ParameterState`
    so the model caches are reused along a trajectory.
    """

    def __init__(self, model, names, metric_scale=None):
        """
        Args:
            model (gibbshmc.models.Model): Model defining the target density.
            names (Sequence[str]): Ordered names of the variables forming the
                position vector.
            metric_scale (None or array): Positive per-element scales of the
                inverse mass matrix diagonal, all ones if `None`.
        """
        self.model = model
        self.names = list(names)
        self.metric_scale = metric_scale

    @property
    def inv_mass(self):
        """Diagonal of the inverse mass matrix (scalar one if unit metric)."""
        if self.metric_scale is None:
            return 1.
        return self.metric_scale**2

    @property
    def mass(self):
        """Diagonal of the mass matrix (scalar one if unit metric)."""
        return 1. / self.inv_mass

    def kinetic_energy(self, mom):
        return 0.5 * float(np.sum(mom**2 * self.inv_mass))

    def h(self, state, mom):
        """Hamiltonian at the state position and momentum `mom`."""
        return -self.model.log_dens(state) + self.kinetic_energy(mom)

    def sample_momentum(self, rng, dim):
        """Draw a momentum vector from `N(0, M)`.

        Args:
            rng (numpy.random.Generator): Numpy random number generator.
            dim (int): Dimension of the position vector.
        """
        mom = rng.standard_normal(dim)
        if self.metric_scale is None:
            return mom
        return mom / self.metric_scale

    def grad_log_dens_func(self, state):
        """Create a gradient function of flat position for the integrator.

        The returned function writes the position into `state` (when different
        from the current value) before evaluating the gradient, so after a
        trajectory the state holds the final position.
        """
        def grad_log_dens(pos):
            if not np.array_equal(pos, state.get_flat(self.names)):
                state.set_flat(self.names, pos)
            return self.model.grad_log_dens(state, self.names)
        return grad_log_dens
