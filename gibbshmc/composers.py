"""Gibbs-style composition of samplers over disjoint groups of variables."""

import logging
from timeit import default_timer as timer
import numpy as np
from gibbshmc.chains import Chain
from gibbshmc.errors import ConfigurationError
from gibbshmc.progressbars import DummyProgressBar, ProgressBar
from gibbshmc.samplers import Sampler
from gibbshmc.utils import check_positive_int

logger = logging.getLogger(__name__)


class SamplerComposer(object):
    """Sequential composition of samplers updating disjoint variable groups.

    One outer iteration calls the `step` method of each sampler exactly once,
    in registration order, on a single shared parameter state. Each sampler
    targets the conditional distribution of its group given the current
    values of all other variables so the composition leaves the joint target
    distribution invariant.
    """

    def __init__(self, samplers):
        """
        Args:
            samplers (Sequence[gibbshmc.samplers.Sampler]): Ordered samplers,
                all defined on the same model. Their variable groups must be
                pairwise disjoint and a sampler covering all variables may
                only be used on its own.

        Raises:
            ConfigurationError: If the samplers are incompatible.
        """
        samplers = list(samplers)
        if len(samplers) == 0:
            raise ConfigurationError('At least one sampler must be given.')
        for sampler in samplers:
            if not isinstance(sampler, Sampler):
                raise ConfigurationError(f'{sampler!r} is not a Sampler.')
        for i, sampler in enumerate(samplers):
            for other in samplers[:i]:
                if sampler is other:
                    raise ConfigurationError(
                        f'Sampler {sampler!r} registered more than once.')
                if sampler.model is not other.model:
                    raise ConfigurationError(
                        'All samplers must be defined on the same model.')
                if sampler.group.overlaps(other.group):
                    raise ConfigurationError(
                        f'Variable groups of {other!r} and {sampler!r} '
                        f'overlap. Groups must be disjoint and a group of all '
                        f'variables can only be used with a single sampler.')
        self.samplers = samplers
        self.model = samplers[0].model

    def check_coverage(self, state):
        """Check every variable in `state` is updated by some sampler.

        Raises:
            ConfigurationError: If a group names an unknown variable or some
                variable is not in any group.
        """
        covered = set()
        for sampler in self.samplers:
            covered.update(sampler.group.resolve(state))
        missing = [name for name in state.names if name not in covered]
        if missing:
            raise ConfigurationError(
                f'Variables {missing} are not updated by any sampler.')

    def step(self, state, rng):
        """Perform one outer iteration, updating `state` in place.

        Args:
            state (gibbshmc.states.ParameterState): Shared parameter state.
            rng (numpy.random.Generator): Numpy random number generator.

        Returns:
            accepted (bool): Whether any sampler accepted a move.
            stats (Dict[int, Dict[str, numeric]]): Step statistics of each
                sampler keyed by its position.
        """
        accepted = False
        stats = {}
        for i, sampler in enumerate(self.samplers):
            sampler_accepted, stats[i] = sampler.step(state, rng)
            accepted = accepted or sampler_accepted
        return accepted, stats

    def _monitor_dict(self, accepted, stats):
        monitor = {'accept_rate': accepted}
        for i, sampler_stats in stats.items():
            if sampler_stats.get('step_size') is not None:
                key = 'step_size' if len(self.samplers) == 1 else f'step_size_{i}'
                monitor[key] = sampler_stats['step_size']
        return monitor

    def sample_chain(self, n_sample, init_values=None, rng=None,
                     display_progress=True, chain=None):
        """Sample a chain by repeated outer iterations.

        Args:
            n_sample (int): Number of outer iterations.
            init_values (None or Mapping[str, array_like]): Initial values of
                the variables. Variables without an initial value are drawn
                from their prior.
            rng (None or int or numpy.random.Generator): Random number
                generator or seed.
            display_progress (bool): Whether to show a progress bar.
            chain (None or gibbshmc.chains.Chain): Collector to append the
                iterations to, a new one is created if `None`.

        Returns:
            gibbshmc.chains.Chain: Record of the sampled chain. If sampling
                is interrupted with `KeyboardInterrupt` the iterations
                completed before the interruption are returned.
        """
        n_sample = check_positive_int(n_sample, 'n_sample')
        rng = np.random.default_rng(rng)
        state = self.model.initial_state(init_values, rng)
        self.check_coverage(state)
        for sampler in self.samplers:
            sampler.prepare_run(n_sample)
        chain = Chain() if chain is None else chain
        progress_bar_class = (
            ProgressBar if display_progress else DummyProgressBar)
        progress_bar = progress_bar_class(range(n_sample), 'Sampling')
        last_snapshot = None
        start_time = timer()
        sample_index = 0
        try:
            with progress_bar:
                for sample_index, monitor_dict in progress_bar:
                    accepted, stats = self.step(state, rng)
                    if accepted or last_snapshot is None:
                        last_snapshot = state.copy(read_only=True)
                    chain.append(accepted, last_snapshot, stats)
                    monitor_dict.update(self._monitor_dict(accepted, stats))
        except KeyboardInterrupt:
            logger.error(
                f'Sampling manually interrupted at iteration {sample_index}. '
                f'Chain containing the iterations completed before the '
                f'interruption will be returned.')
        logger.info(
            f'Sampled {len(chain)} iterations in '
            f'{timer() - start_time:.2f}s with accept rate '
            f'{chain.accept_rate:.3f}.')
        return chain


def sample(model, samplers, n_sample, **kwargs):
    """Sample a chain from a model with one sampler or a list of samplers.

    Args:
        model (gibbshmc.models.Model): Model to sample from.
        samplers (Sampler or Sequence[Sampler]): Sampler or ordered samplers
            with disjoint groups to compose.
        n_sample (int): Number of outer iterations.
        **kwargs: Additional keyword arguments passed to
            `SamplerComposer.sample_chain`.

    Returns:
        gibbshmc.chains.Chain: Record of the sampled chain.
    """
    if isinstance(samplers, Sampler):
        samplers = [samplers]
    composer = SamplerComposer(samplers)
    if composer.model is not model:
        raise ConfigurationError('Samplers must be defined on the given model.')
    return composer.sample_chain(n_sample, **kwargs)
