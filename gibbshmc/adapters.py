"""Methods for adaptively setting algorithmic parameters of HMC samplers."""

from abc import ABC, abstractmethod
import logging
from math import exp, log
import numpy as np
from gibbshmc.errors import (
    AdaptationError, ConfigurationError, NumericDivergenceError)
from gibbshmc.utils import (
    check_non_negative_int, check_positive_float, check_positive_int,
    check_probability)

logger = logging.getLogger(__name__)


class AdaptationState(object):
    """Mutable adaptation variables of a single HMC sampler.

    Owned one-to-one by a `gibbshmc.samplers.HMCSampler` and passed explicitly
    to its adapters, which read and update the entries they are responsible
    for. Once `frozen` is set no adapter updates the sampler parameters again.

    Attributes:
        horizon (int): Number of adaptive updates before freezing.
        n_update (int): Number of adaptive updates performed so far.
        step_size (float or None): Current integrator step size.
        log_step_size_reg_target (float or None): Point the dual averaging
            log step size is shrunk towards, `log(10 * init_step_size)`.
        smoothed_log_step_size (float): Running weighted average of the log
            step size, initially zero.
        adapt_stat_error (float): Running average of the difference between
            the target and observed acceptance probabilities.
        iter (int): Dual averaging iteration counter.
        n_sample (int): Number of positions accumulated for the metric.
        mean (None or array): Running mean of the positions.
        sum_diff_sq (None or array): Running sum of squared deviations of the
            positions from their mean.
        metric_scale (None or array): Current diagonal metric scale.
        frozen (bool): Whether adaptation has finished.
    """

    def __init__(self, horizon):
        self.horizon = horizon
        self.n_update = 0
        self.step_size = None
        self.log_step_size_reg_target = None
        self.smoothed_log_step_size = 0.
        self.adapt_stat_error = 0.
        self.iter = 0
        self.n_sample = 0
        self.mean = None
        self.sum_diff_sq = None
        self.metric_scale = None
        self.frozen = False

    @property
    def horizon_reached(self):
        return self.n_update >= self.horizon

    def __repr__(self):
        return (
            f'{type(self).__name__}(n_update={self.n_update}, '
            f'horizon={self.horizon}, step_size={self.step_size}, '
            f'frozen={self.frozen})')


class Adapter(ABC):
    """Abstract adapter for implementing schemes to adapt sampler parameters.

    Adaptation schemes are assumed to be based on updating a collection of
    adaptation variables after each sampler step based on the sampled state
    and/or statistics of the step such as the acceptance probability. After
    the adaptation horizon the final adaptation variables are used to set the
    sampler parameters which then stay fixed.
    """

    # Whether the adapter sets the integrator step size.
    adapts_step_size = False

    @abstractmethod
    def initialize(self, adapt_state, state, sampler, rng):
        """Initialize adaptation variables prior to starting adaptive steps.

        Args:
            adapt_state (AdaptationState): Adaptation state to initialize.
            state (gibbshmc.states.ParameterState): Initial parameter state
                with the sampler variables linked. Should not be mutated.
            sampler (gibbshmc.samplers.HMCSampler): Sampler being adapted.
                Attributes of the sampler integrator and system may be
                updated in place.
            rng (numpy.random.Generator): Numpy random number generator.
        """

    @abstractmethod
    def update(self, adapt_state, state, trans_stats, sampler):
        """Update adaptation variables after an adaptive step.

        Args:
            adapt_state (AdaptationState): Current adaptation state, updated
                in place.
            state (gibbshmc.states.ParameterState): Parameter state following
                the step, with the sampler variables linked. Should not be
                mutated.
            trans_stats (Dict[str, numeric]): Statistics of the step.
            sampler (gibbshmc.samplers.HMCSampler): Sampler being adapted.
        """

    @abstractmethod
    def finalize(self, adapt_state, sampler):
        """Set final sampler parameters from the adaptation state.

        Args:
            adapt_state (AdaptationState): Final adaptation state.
            sampler (gibbshmc.samplers.HMCSampler): Sampler being adapted.
        """


class DualAveragingStepSizeAdapter(Adapter):
    """Dual averaging integrator step size adapter.

    Implementation of the dual averaging step size adaptation algorithm
    described in [1], a modified version of the stochastic optimisation scheme
    of [2]. The step size is adapted to control the `accept_prob` statistic of
    the HMC steps to be close to a target value. On finalizing, the step size
    is set to the exponential of the smoothed log step size estimate rather
    than the last (noisy) iterate.

    References:

      1. Hoffman, M.D. and Gelman, A., 2014. The No-U-turn sampler:
         adaptively setting path lengths in Hamiltonian Monte Carlo.
         Journal of Machine Learning Research, 15(1), pp.1593-1623.
      2. Nesterov, Y., 2009. Primal-dual subgradient methods for convex
         problems. Mathematical programming 120(1), pp.221-259.
    """

    adapts_step_size = True

    def __init__(self, target_accept=0.65, gamma=0.05, t0=10, kappa=0.75,
                 max_init_step_size_iters=100):
        """
        Args:
            target_accept (float): Target value for the mean acceptance
                probability, in the open interval (0, 1).
            gamma (float): Coefficient controlling amount of regularisation
                of the log step size towards `log(10 * init_step_size)`.
                Defaults to 0.05 as recommended in Hoffman and Gelman (2014).
            t0 (int): Offset used for the iteration based weighting of the
                acceptance statistic error estimate, stabilising early
                iterations. Defaults to 10.
            kappa (float): Exponent of decay in schedule weighting updates to
                the smoothed log step size estimate. Should be in the interval
                (0.5, 1]. Defaults to 0.75.
            max_init_step_size_iters (int): Maximum number of iterations to use
                in the initial search for a reasonable step size, with an
                `AdaptationError` raised if a suitable step size is not found.
        """
        self.target_accept = check_probability(target_accept, 'target_accept')
        self.gamma = check_positive_float(gamma, 'gamma')
        self.t0 = check_non_negative_int(t0, 't0')
        self.kappa = check_positive_float(kappa, 'kappa')
        self.max_init_step_size_iters = check_positive_int(
            max_init_step_size_iters, 'max_init_step_size_iters')

    def initialize(self, adapt_state, state, sampler, rng):
        adapt_state.iter = 0
        adapt_state.smoothed_log_step_size = 0.
        adapt_state.adapt_stat_error = 0.
        if sampler.integrator.step_size is None:
            init_step_size = self._find_and_set_init_step_size(
                state, sampler, rng)
        else:
            init_step_size = sampler.integrator.step_size
        adapt_state.step_size = init_step_size
        adapt_state.log_step_size_reg_target = log(10 * init_step_size)

    def _find_and_set_init_step_size(self, state, sampler, rng):
        """Find initial step size by coarse search using single step statistics.

        Adaptation of Algorithm 4 in Hoffman and Gelman (2014). The absolute
        value of the change in Hamiltonian over a single step being larger or
        smaller than log(2) is used to determine whether the step size is too
        big or too small, with a trajectory terminated by a divergence always
        counted as too big. The step size is halved or doubled from one until
        the criterion changes.
        """
        system, integrator = sampler.system, sampler.integrator
        pos = state.get_flat(system.names)
        mom = system.sample_momentum(rng, pos.size)
        try:
            h_init = system.h(state, mom)
        except NumericDivergenceError as e:
            raise AdaptationError(
                f'Model evaluation failed at initial state: {e!s}') from e
        if not np.isfinite(h_init):
            raise AdaptationError(
                'Hamiltonian not finite at initial state.')
        integrator.step_size = 1.
        delta_h_threshold = log(2)
        for s in range(self.max_init_step_size_iters):
            trial = state.copy()
            _, mom_new, valid = integrator.integrate(
                pos, mom, system.grad_log_dens_func(trial), 1,
                system.inv_mass)
            try:
                delta_h = (
                    abs(h_init - system.h(trial, mom_new)) if valid else np.nan)
            except NumericDivergenceError:
                delta_h = np.nan
            if s == 0 or np.isnan(delta_h):
                step_size_too_big = (
                    np.isnan(delta_h) or delta_h > delta_h_threshold)
            if (step_size_too_big and delta_h <= delta_h_threshold) or (
                    not step_size_too_big and delta_h > delta_h_threshold):
                logger.debug(f'Initial step size set to {integrator.step_size}.')
                return integrator.step_size
            elif step_size_too_big:
                integrator.step_size /= 2
            else:
                integrator.step_size *= 2
        raise AdaptationError(
            f'Could not find reasonable initial step size in '
            f'{self.max_init_step_size_iters} iterations (final step size '
            f'{integrator.step_size}). A very large final step size may '
            f'indicate that the target distribution is improper such that the '
            f'log density is flat in one or more directions while a very small '
            f'final step size may indicate that the density function is '
            f'insufficiently smooth at the point initialized at.')

    def update(self, adapt_state, state, trans_stats, sampler):
        adapt_state.iter += 1
        m = adapt_state.iter
        error_weight = 1 / (self.t0 + m)
        adapt_state.adapt_stat_error *= (1 - error_weight)
        adapt_state.adapt_stat_error += error_weight * (
            self.target_accept - trans_stats['accept_prob'])
        log_step_size = adapt_state.log_step_size_reg_target - (
            adapt_state.adapt_stat_error * m**0.5 / self.gamma)
        smoothing_weight = m**(-self.kappa)
        adapt_state.smoothed_log_step_size *= (1 - smoothing_weight)
        adapt_state.smoothed_log_step_size += smoothing_weight * log_step_size
        adapt_state.step_size = exp(log_step_size)
        sampler.integrator.step_size = adapt_state.step_size

    def finalize(self, adapt_state, sampler):
        adapt_state.step_size = exp(adapt_state.smoothed_log_step_size)
        sampler.integrator.step_size = adapt_state.step_size


class OnlineVarianceMetricAdapter(Adapter):
    """Diagonal metric adapter using online variance estimates.

    Uses Welford's algorithm [1] to stably compute an online estimate of the
    sample variances of the (unconstrained) position components during
    adaptation. Once at least `min_samples` positions have been accumulated
    the diagonal metric scale is set to the estimated standard deviations,
    with a small floor added to the variances, normalized so that the smallest
    scale is one. Estimates from fewer samples are never applied.

    References:

      1. Welford, B. P., 1962. Note on a method for calculating corrected sums
         of squares and products. Technometrics, 4(3), pp. 419–420.
    """

    def __init__(self, min_samples=500, var_floor=None):
        """
        Args:
            min_samples (int): Minimum number of accumulated positions before
                the variance estimates are used to set the metric. At least 2.
            var_floor (None or float): Value added to each variance estimate.
                Defaults to 100 times the machine epsilon.
        """
        self.min_samples = check_positive_int(min_samples, 'min_metric_samples')
        if self.min_samples < 2:
            raise ConfigurationError(
                'min_metric_samples must be at least 2 to estimate variances.')
        self.var_floor = (
            100 * np.finfo(np.float64).eps if var_floor is None
            else check_positive_float(var_floor, 'var_floor'))

    def initialize(self, adapt_state, state, sampler, rng):
        pos = state.get_flat(sampler.system.names)
        adapt_state.n_sample = 0
        adapt_state.mean = np.zeros_like(pos)
        adapt_state.sum_diff_sq = np.zeros_like(pos)
        adapt_state.metric_scale = sampler.system.metric_scale

    def update(self, adapt_state, state, trans_stats, sampler):
        # Welford (1962) incremental algorithm
        pos = state.get_flat(sampler.system.names)
        adapt_state.n_sample += 1
        pos_minus_mean = pos - adapt_state.mean
        adapt_state.mean += pos_minus_mean / adapt_state.n_sample
        adapt_state.sum_diff_sq += pos_minus_mean * (pos - adapt_state.mean)
        if adapt_state.n_sample >= self.min_samples:
            self._set_metric_scale(adapt_state, sampler)

    def _set_metric_scale(self, adapt_state, sampler):
        var_est = adapt_state.sum_diff_sq / (adapt_state.n_sample - 1)
        std_est = np.sqrt(var_est + self.var_floor)
        adapt_state.metric_scale = std_est / std_est.min()
        sampler.system.metric_scale = adapt_state.metric_scale

    def finalize(self, adapt_state, sampler):
        if adapt_state.n_sample >= self.min_samples:
            self._set_metric_scale(adapt_state, sampler)
        else:
            logger.info(
                f'Only {adapt_state.n_sample} samples accumulated for metric '
                f'adaptation (minimum {self.min_samples}), metric left '
                f'unchanged.')
