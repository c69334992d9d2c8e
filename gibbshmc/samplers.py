"""Markov kernels updating a group of variables of a parameter state.

Each sampler is responsible for a `gibbshmc.states.VariableGroup` of the
variables of a model and updates only those variables in place in a shared
`gibbshmc.states.ParameterState` when its `step` method is called, leaving the
state unchanged (bit for bit) if the proposed move is rejected.
"""

from abc import ABC, abstractmethod
import enum
import logging
from math import exp
import numpy as np
from gibbshmc.adapters import (
    AdaptationState, DualAveragingStepSizeAdapter, OnlineVarianceMetricAdapter)
from gibbshmc.errors import ConfigurationError, NumericDivergenceError
from gibbshmc.integrators import LeapfrogIntegrator
from gibbshmc.proposals import StaticProposal, as_proposal
from gibbshmc.states import VariableGroup
from gibbshmc.systems import DiagonalMetricSystem
from gibbshmc.transforms import link, unlink
from gibbshmc.utils import (
    check_non_negative_int, check_positive_float, check_positive_int,
    check_probability)

logger = logging.getLogger(__name__)


def metropolis_accept_prob(h_init, h_final):
    """Metropolis acceptance probability for a change in Hamiltonian.

    Args:
        h_init (float): Hamiltonian (negative log density) at current state.
        h_final (float): Hamiltonian at proposed state.

    Returns:
        float: `1` if the Hamiltonian does not increase, `exp(h_init - h_final)`
            if it does and `0` if the difference is not a number.
    """
    delta_h = h_final - h_init
    if np.isnan(delta_h):
        return 0.
    return 1. if delta_h <= 0 else exp(-delta_h)


def default_adapt_horizon(n_sample):
    """Default number of adaptive steps for a run of `n_sample` iterations.

    One fifth of the run, capped at 1000 steps.
    """
    return min(int(round(n_sample / 5)), 1000)


class Sampler(ABC):
    """Base class for samplers updating a group of variables."""

    def __init__(self, model, group=()):
        """
        Args:
            model (gibbshmc.models.Model): Model defining the target density.
            group (VariableGroup or str or Iterable[str]): Variables updated
                by the sampler. An empty group (the default) means all
                variables.
        """
        self.model = model
        self.group = VariableGroup.coerce(group)

    @property
    @abstractmethod
    def statistic_types(self):
        """Dictionary of step statistic names, types and default values."""

    @abstractmethod
    def step(self, state, rng):
        """Perform one update of the sampler's variables in place.

        Args:
            state (gibbshmc.states.ParameterState): Shared parameter state with
                all variables in natural space. Updated in place; on exit all
                variables are again in natural space with a valid cached log
                density.
            rng (numpy.random.Generator): Numpy random number generator.

        Returns:
            accepted (bool): Whether the proposed move was accepted.
            stats (Dict[str, numeric]): Statistics of the step.
        """

    def prepare_run(self, n_sample):
        """Hook called with the number of iterations before a chain is run."""

    def __repr__(self):
        return f'{type(self).__name__}(group={self.group!r})'


class GradientSampler(Sampler):
    """Sampler which requires gradients of the log density."""


class DerivativeFreeSampler(Sampler):
    """Sampler which requires only log density evaluations."""


class SamplerPhase(enum.Enum):
    """Lifecycle phase of an `HMCSampler`."""

    UNINITIALIZED = 0
    WARM = 1
    SAMPLING = 2


class HMCSampler(GradientSampler):
    """Static integration time Hamiltonian Monte Carlo sampler.

    Proposes moves by simulating Hamiltonian dynamics with a fixed number of
    leapfrog steps from a momentum drawn from its Gaussian marginal, with the
    proposal accepted or rejected in a Metropolis step [1]. The variables of
    the sampler's group are mapped to unconstrained space before each step and
    back after it. Optionally the integrator step size is tuned with dual
    averaging [2] and a diagonal metric estimated from the position variances
    over an initial adaptation horizon, after which both are frozen.

    The first call of `step` only initializes the sampler (evaluating the
    model and initializing any adaptation) and returns `accepted=True` without
    moving the state.

    References:

      1. Duane, S., Kennedy, A.D., Pendleton, B.J. and Roweth, D., 1987.
         Hybrid Monte Carlo. Physics letters B, 195(2), pp.216-222.
      2. Hoffman, M.D. and Gelman, A., 2014. The No-U-turn sampler:
         adaptively setting path lengths in Hamiltonian Monte Carlo.
         Journal of Machine Learning Research, 15(1), pp.1593-1623.
    """

    statistic_types = {
        'accept_prob': (np.float64, np.nan),
        'accepted': (bool, False),
        'step_size': (np.float64, np.nan),
        'n_step': (np.int64, -1),
        'delta_h': (np.float64, np.nan),
        'diverging': (bool, False),
    }

    def __init__(self, model, n_step=None, step_size=None, group=(),
                 n_adapt=0, target_accept=0.65, adapt_metric=True,
                 min_metric_samples=500, adapters=None, check_restore=False,
                 trajectory_length=None):
        """
        Args:
            model (gibbshmc.models.Model): Model defining the target density.
            n_step (None or int): Number of leapfrog steps per trajectory.
                Exactly one of `n_step` and `trajectory_length` must be given.
            step_size (None or float): Integrator step size. May only be
                `None` if adaptation is enabled with an adapter which sets the
                step size, in which case an initial step size is found by a
                coarse search before adaptation.
            group (VariableGroup or str or Iterable[str]): Variables updated
                by the sampler, defaults to all variables.
            n_adapt (None or int): Adaptation horizon: number of steps (after
                the initializing call) during which the step size and metric
                are adapted. Zero disables adaptation. If `None` the horizon is
                set from the number of iterations of the run when sampling
                with `gibbshmc.composers.SamplerComposer.sample_chain`, see
                `default_adapt_horizon`.
            target_accept (float): Target mean acceptance probability of the
                dual averaging step size adaptation.
            adapt_metric (bool): Whether to adapt a diagonal metric.
            min_metric_samples (int): Minimum number of samples before the
                metric estimate is applied.
            adapters (None or Iterable[gibbshmc.adapters.Adapter]): Adapters
                to use during the adaptation horizon. If `None` these are
                constructed from the `target_accept`, `adapt_metric` and
                `min_metric_samples` arguments.
            check_restore (bool): Whether to verify the cached log density
                against a recomputation after each rejection.
            trajectory_length (None or float): Target integration time of each
                trajectory. If given the number of leapfrog steps is
                `max(1, round(trajectory_length / step_size))`, recomputed
                whenever the step size changes.
        """
        super().__init__(model, group)
        if (n_step is None) == (trajectory_length is None):
            raise ConfigurationError(
                'Exactly one of n_step and trajectory_length must be given.')
        self._n_step = (
            None if n_step is None else check_positive_int(n_step, 'n_step'))
        self.trajectory_length = (
            None if trajectory_length is None else
            check_positive_float(trajectory_length, 'trajectory_length'))
        if step_size is not None:
            step_size = check_positive_float(step_size, 'step_size')
        self.n_adapt = (
            None if n_adapt is None else
            check_non_negative_int(n_adapt, 'n_adapt'))
        target_accept = check_probability(target_accept, 'target_accept')
        if adapters is None:
            adapters = []
            if self.n_adapt != 0:
                adapters.append(DualAveragingStepSizeAdapter(target_accept))
                if adapt_metric:
                    adapters.append(
                        OnlineVarianceMetricAdapter(min_metric_samples))
        self.adapters = list(adapters)
        if step_size is None and not self._adapts_step_size:
            raise ConfigurationError(
                'step_size must be specified when the step size is not '
                'adapted (n_adapt=0 or no step size adapter).')
        self.integrator = LeapfrogIntegrator(step_size)
        self.system = None
        self.adapt_state = None
        self.phase = SamplerPhase.UNINITIALIZED
        self.check_restore = check_restore

    @property
    def _adapts_step_size(self):
        return self.n_adapt != 0 and any(
            adapter.adapts_step_size for adapter in self.adapters)

    @property
    def step_size(self):
        return self.integrator.step_size

    @property
    def n_step(self):
        """Number of leapfrog steps per trajectory at the current step size."""
        if self.trajectory_length is None:
            return self._n_step
        elif self.step_size is None:
            return None
        return max(1, int(round(self.trajectory_length / self.step_size)))

    def prepare_run(self, n_sample):
        if self.n_adapt is None and self.phase is SamplerPhase.UNINITIALIZED:
            self.n_adapt = default_adapt_horizon(n_sample)
            if self.step_size is None and not self._adapts_step_size:
                raise ConfigurationError(
                    f'Run of {n_sample} iterations too short to adapt the '
                    f'step size, step_size must be specified.')

    def step(self, state, rng):
        names = self.group.resolve(state)
        if self.phase is SamplerPhase.UNINITIALIZED:
            if self.n_adapt is None:
                raise ConfigurationError(
                    'Adaptation horizon not set: give n_adapt explicitly or '
                    'sample with SamplerComposer.sample_chain.')
            return self._initialize(state, names, rng)
        self.model.log_dens(state)
        link(state, names, self.model)
        try:
            return self._transition(state, names, rng)
        finally:
            unlink(state, names, self.model)

    def _initialize(self, state, names, rng):
        self.model.log_dens(state)
        if self.system is None or self.system.names != names:
            self.system = DiagonalMetricSystem(self.model, names)
        if self.n_adapt > 0 and len(self.adapters) > 0:
            link(state, names, self.model)
            try:
                self.adapt_state = AdaptationState(self.n_adapt)
                for adapter in self.adapters:
                    adapter.initialize(self.adapt_state, state, self, rng)
            finally:
                unlink(state, names, self.model)
            self.phase = SamplerPhase.WARM
        else:
            self.phase = SamplerPhase.SAMPLING
        stats = {
            'accept_prob': 1., 'accepted': True, 'step_size': self.step_size,
            'n_step': 0, 'delta_h': 0., 'diverging': False}
        return True, stats

    def _transition(self, state, names, rng):
        snapshot = state.snapshot()
        pos = state.get_flat(names)
        mom = self.system.sample_momentum(rng, pos.size)
        try:
            h_init = self.system.h(state, mom)
        except NumericDivergenceError:
            h_init = np.nan
        step_size, n_step = self.step_size, self.n_step
        if np.isfinite(h_init):
            _, mom, valid = self.integrator.integrate(
                pos, mom, self.system.grad_log_dens_func(state), n_step,
                self.system.inv_mass)
            try:
                h_final = self.system.h(state, mom) if valid else np.inf
            except NumericDivergenceError:
                h_final = np.inf
            accept_prob = metropolis_accept_prob(h_init, h_final)
        else:
            valid, h_final, accept_prob = False, np.inf, 0.
        accepted = rng.uniform() < accept_prob
        if not accepted:
            state.restore(snapshot)
            if self.check_restore:
                self.model.check_log_dens(state)
        stats = {
            'accept_prob': accept_prob, 'accepted': accepted,
            'step_size': step_size, 'n_step': n_step,
            'delta_h': h_final - h_init, 'diverging': not valid}
        logger.debug(
            f'HMC step: step_size={step_size:.3g}, '
            f'accept_prob={accept_prob:.3f}')
        if self.phase is SamplerPhase.WARM:
            self._adapt(state, stats)
        return accepted, stats

    def _adapt(self, state, stats):
        for adapter in self.adapters:
            adapter.update(self.adapt_state, state, stats, self)
        self.adapt_state.n_update += 1
        if self.adapt_state.horizon_reached:
            for adapter in self.adapters:
                adapter.finalize(self.adapt_state, self)
            self.adapt_state.frozen = True
            self.phase = SamplerPhase.SAMPLING
            logger.info(
                f'Adaptation finished after {self.adapt_state.n_update} '
                f'iterations, step size frozen at {self.step_size:.4g}.')

    def __repr__(self):
        return (
            f'{type(self).__name__}(group={self.group!r}, '
            f'n_step={self.n_step}, step_size={self.step_size}, '
            f'n_adapt={self.n_adapt})')


class MHSampler(DerivativeFreeSampler):
    """Metropolis-Hastings sampler for a group of variables.

    Proposes new values for all variables in the group jointly, either with
    one proposal kernel per variable or a single kernel acting on the flat
    vector of the group's values, and accepts with the Metropolis-Hastings
    probability including the proposal density correction for asymmetric
    kernels. Variables without an explicit kernel are proposed from their
    prior. The group is mapped to unconstrained space for the step only if
    every kernel acts on unconstrained values (for example random walks).
    """

    statistic_types = {
        'accept_prob': (np.float64, np.nan),
        'accepted': (bool, False),
    }

    def __init__(self, model, group=(), proposals=None, check_restore=False):
        """
        Args:
            model (gibbshmc.models.Model): Model defining the target density.
            group (VariableGroup or str or Iterable[str]): Variables updated
                by the sampler, defaults to all variables.
            proposals (None or Proposal or Mapping[str, object]): Either a
                single kernel (or object coercible with
                `gibbshmc.proposals.as_proposal`) acting jointly on the flat
                vector of the group's values, or a mapping from variable names
                to per-variable kernels. Variables without a kernel are
                proposed from their prior.
            check_restore (bool): Whether to verify the cached log density
                against a recomputation after each rejection.
        """
        super().__init__(model, group)
        if proposals is None:
            proposals = {}
        if isinstance(proposals, dict):
            self.joint_proposal = None
            self.proposals = {
                name: as_proposal(prop) for name, prop in proposals.items()}
            if not self.group.is_all:
                extra = set(self.proposals).difference(self.group.names)
                if extra:
                    raise ConfigurationError(
                        f'Proposals given for variables {sorted(extra)} not '
                        f'in sampler group.')
        else:
            self.joint_proposal = as_proposal(proposals)
            self.proposals = {}
        self.check_restore = check_restore

    def _proposal(self, name):
        if name not in self.proposals:
            self.proposals[name] = StaticProposal(self.model.prior(name))
        return self.proposals[name]

    def _requires_link(self, names):
        if self.joint_proposal is not None:
            return self.joint_proposal.requires_link
        return all(self._proposal(name).requires_link for name in names)

    def _propose(self, state, names, rng):
        """Write proposed values to state and return log proposal ratio."""
        if self.joint_proposal is not None:
            kernels = [(names, self.joint_proposal)]
        else:
            kernels = [([name], self._proposal(name)) for name in names]
        log_q_ratio = 0.
        for kernel_names, proposal in kernels:
            if proposal is self.joint_proposal:
                current = state.get_flat(kernel_names)
            else:
                current = state[kernel_names[0]].copy()
            value = proposal.sample(current, rng)
            if not np.all(np.isfinite(value)):
                return None
            if proposal is self.joint_proposal:
                state.set_flat(kernel_names, value)
            else:
                state[kernel_names[0]] = value
            if not proposal.is_symmetric:
                log_q_ratio += (
                    proposal.log_prob(current, value) -
                    proposal.log_prob(value, current))
        return log_q_ratio

    def step(self, state, rng):
        names = self.group.resolve(state)
        linked = self._requires_link(names)
        self.model.log_dens(state)
        if linked:
            link(state, names, self.model)
        try:
            snapshot = state.snapshot()
            log_dens_init = self.model.log_dens(state)
            try:
                log_q_ratio = self._propose(state, names, rng)
                log_dens_prop = (
                    np.nan if log_q_ratio is None else
                    self.model.log_dens(state))
            except NumericDivergenceError as e:
                logger.info(f'Rejecting proposal due to error:\n{e!s}')
                log_q_ratio, log_dens_prop = 0., np.nan
            if log_q_ratio is None:
                accept_prob = 0.
            else:
                accept_prob = metropolis_accept_prob(
                    -log_dens_init, -log_dens_prop - log_q_ratio)
            accepted = rng.uniform() < accept_prob
            if not accepted:
                state.restore(snapshot)
                if self.check_restore:
                    self.model.check_log_dens(state)
        finally:
            if linked:
                unlink(state, names, self.model)
        return accepted, {'accept_prob': accept_prob, 'accepted': accepted}

    def __repr__(self):
        return (
            f'{type(self).__name__}(group={self.group!r}, '
            f'proposals={self.joint_proposal or self.proposals!r})')
