import numpy as np
import pytest
from scipy import stats
import gibbshmc

SEED = 3046987125


@pytest.fixture()
def rng():
    return np.random.default_rng(SEED)


@pytest.fixture()
def normal_model():
    return gibbshmc.models.Model(
        log_dens=lambda v: -0.5 * float(np.sum(v['x']**2)),
        grad_log_dens=lambda v: {'x': -v['x']},
        priors={'x': stats.norm()})


@pytest.mark.parametrize('h_init, h_final, expected', [
    (1., 0.5, 1.),
    (1., 1., 1.),
    (1., 2., np.exp(-1.)),
    (0., np.inf, 0.),
    (np.inf, np.inf, 0.),
    (0., np.nan, 0.),
])
def test_metropolis_accept_prob(h_init, h_final, expected):
    assert np.isclose(
        gibbshmc.samplers.metropolis_accept_prob(h_init, h_final), expected)


class TestHMCSamplerConfiguration:

    @pytest.mark.parametrize('kwargs', [
        {'n_step': 0, 'step_size': 0.1},
        {'n_step': 5, 'step_size': 0.},
        {'n_step': 5, 'step_size': -0.1},
        {'n_step': 5},
        {'n_step': 5, 'step_size': 0.1, 'n_adapt': -1},
        {'n_step': 5, 'step_size': 0.1, 'target_accept': 1.},
        {'n_step': 5, 'n_adapt': 10, 'min_metric_samples': 1},
        {'n_step': 5, 'n_adapt': 10, 'adapters': []},
        {'n_step': 5, 'n_adapt': 10,
         'adapters': [gibbshmc.adapters.OnlineVarianceMetricAdapter()]},
        {'n_step': 5, 'adapters': [
            gibbshmc.adapters.DualAveragingStepSizeAdapter()]},
        {'step_size': 0.1},
        {'n_step': 5, 'step_size': 0.1, 'trajectory_length': 1.},
        {'step_size': 0.1, 'trajectory_length': -1.},
    ])
    def test_invalid_options(self, normal_model, kwargs):
        with pytest.raises(gibbshmc.errors.ConfigurationError):
            gibbshmc.samplers.HMCSampler(normal_model, **kwargs)

    def test_configuration_error_is_value_error(self, normal_model):
        with pytest.raises(ValueError):
            gibbshmc.samplers.HMCSampler(normal_model, n_step=5)

    def test_statistic_types(self, normal_model):
        sampler = gibbshmc.samplers.HMCSampler(
            normal_model, n_step=5, step_size=0.1)
        assert set(sampler.statistic_types) == {
            'accept_prob', 'accepted', 'step_size', 'n_step', 'delta_h',
            'diverging'}

    def test_explicit_adapters_with_step_size_adapter(self, normal_model):
        sampler = gibbshmc.samplers.HMCSampler(
            normal_model, n_step=5, n_adapt=10,
            adapters=[gibbshmc.adapters.DualAveragingStepSizeAdapter()])
        assert sampler.step_size is None
        assert len(sampler.adapters) == 1


@pytest.mark.parametrize('n_sample, expected', [
    (2, 0), (10, 2), (1001, 200), (5000, 1000), (100000, 1000)])
def test_default_adapt_horizon(n_sample, expected):
    assert gibbshmc.samplers.default_adapt_horizon(n_sample) == expected


class TestDefaultHorizon:

    def test_horizon_set_from_run_length(self, normal_model):
        sampler = gibbshmc.samplers.HMCSampler(
            normal_model, n_step=3, n_adapt=None)
        chain = gibbshmc.composers.sample(
            normal_model, sampler, 100, init_values={'x': 0.}, rng=SEED,
            display_progress=False)
        assert sampler.n_adapt == 20
        assert sampler.adapt_state.n_update == 20
        assert sampler.adapt_state.frozen
        assert len(chain) == 100

    def test_step_without_horizon_raises(self, normal_model, rng):
        sampler = gibbshmc.samplers.HMCSampler(
            normal_model, n_step=3, n_adapt=None)
        state = gibbshmc.states.ParameterState({'x': 0.})
        with pytest.raises(gibbshmc.errors.ConfigurationError):
            sampler.step(state, rng)

    def test_run_too_short_to_adapt_raises(self, normal_model):
        sampler = gibbshmc.samplers.HMCSampler(
            normal_model, n_step=3, n_adapt=None)
        with pytest.raises(gibbshmc.errors.ConfigurationError):
            sampler.prepare_run(2)

    def test_explicit_horizon_unchanged(self, normal_model):
        sampler = gibbshmc.samplers.HMCSampler(
            normal_model, n_step=3, n_adapt=7)
        sampler.prepare_run(100)
        assert sampler.n_adapt == 7


class TestTrajectoryLength:

    def test_fixed_step_size(self, normal_model, rng):
        sampler = gibbshmc.samplers.HMCSampler(
            normal_model, trajectory_length=1., step_size=0.3)
        assert sampler.n_step == 3
        state = gibbshmc.states.ParameterState({'x': np.array([0.5, -1.])})
        sampler.step(state, rng)
        _, stats = sampler.step(state, rng)
        assert stats['n_step'] == 3

    def test_short_trajectory_takes_one_step(self, normal_model):
        sampler = gibbshmc.samplers.HMCSampler(
            normal_model, trajectory_length=0.01, step_size=0.3)
        assert sampler.n_step == 1

    def test_n_step_follows_adapted_step_size(self, normal_model, rng):
        sampler = gibbshmc.samplers.HMCSampler(
            normal_model, trajectory_length=1.5, n_adapt=50,
            adapt_metric=False)
        assert sampler.n_step is None
        state = gibbshmc.states.ParameterState({'x': np.array([0.5, -1.])})
        sampler.step(state, rng)
        n_steps = set()
        for _ in range(60):
            _, stats = sampler.step(state, rng)
            assert stats['n_step'] == max(
                1, int(round(1.5 / stats['step_size'])))
            n_steps.add(stats['n_step'])
        assert len(n_steps) > 1
        assert sampler.n_step == max(1, int(round(1.5 / sampler.step_size)))


class TestHMCSampler:

    @pytest.fixture()
    def state(self):
        return gibbshmc.states.ParameterState({'x': np.array([0.5, -1.])})

    def test_first_step_initializes_only(self, normal_model, state, rng):
        sampler = gibbshmc.samplers.HMCSampler(
            normal_model, n_step=5, step_size=0.2)
        accepted, stats = sampler.step(state, rng)
        assert accepted
        assert np.all(state['x'] == np.array([0.5, -1.]))
        assert state.log_dens == -0.5 * (0.25 + 1.)
        assert sampler.phase is gibbshmc.samplers.SamplerPhase.SAMPLING

    def test_step_updates_state(self, normal_model, state, rng):
        sampler = gibbshmc.samplers.HMCSampler(
            normal_model, n_step=5, step_size=0.2)
        sampler.step(state, rng)
        accepted, stats = sampler.step(state, rng)
        assert accepted == stats['accepted']
        assert 0 <= stats['accept_prob'] <= 1
        assert stats['n_step'] == 5
        assert stats['step_size'] == 0.2
        assert not stats['diverging']
        assert not state.is_linked('x')
        assert np.isclose(
            state.log_dens, -0.5 * float(np.sum(state['x']**2)))

    def test_reject_restores_state(self, state, rng):
        calls = []

        def grad_log_dens(values):
            calls.append(1)
            if len(calls) > 1:
                return {'x': np.full(2, np.nan)}
            return {'x': -values['x']}

        model = gibbshmc.models.Model(
            lambda v: -0.5 * float(np.sum(v['x']**2)), grad_log_dens)
        sampler = gibbshmc.samplers.HMCSampler(
            model, n_step=5, step_size=0.2, check_restore=True)
        sampler.step(state, rng)
        values_before = state['x'].copy()
        log_dens_before = state.log_dens
        accepted, stats = sampler.step(state, rng)
        assert not accepted
        assert stats['accept_prob'] == 0.
        assert stats['diverging']
        assert np.array_equal(state['x'], values_before)
        assert state['x'].tobytes() == values_before.tobytes()
        assert state.log_dens == log_dens_before

    def test_only_group_variables_updated(self, rng):
        model = gibbshmc.models.Model(
            lambda v: -0.5 * float(np.sum(v['x']**2) + v['y']**2),
            lambda v: {'x': -v['x'], 'y': -v['y']})
        state = gibbshmc.states.ParameterState({'x': np.zeros(2), 'y': 1.})
        sampler = gibbshmc.samplers.HMCSampler(
            model, n_step=3, step_size=0.3, group='x')
        for _ in range(20):
            sampler.step(state, rng)
        assert state['y'] == 1.
        assert not np.all(state['x'] == 0.)

    def test_constrained_variable_stays_in_support(self, rng):
        prior = stats.gamma(3., scale=0.5)
        model = gibbshmc.models.Model(
            lambda v: float(prior.logpdf(v['s'])),
            lambda v: {'s': 2. / v['s'] - 2.},
            priors={'s': prior})
        state = gibbshmc.states.ParameterState({'s': 1.})
        sampler = gibbshmc.samplers.HMCSampler(
            model, n_step=10, step_size=0.5)
        samples = []
        for _ in range(2000):
            sampler.step(state, rng)
            assert not state.is_linked('s')
            samples.append(float(state['s']))
        samples = np.array(samples)
        assert np.all(samples > 0)
        assert abs(samples[200:].mean() - prior.mean()) < 0.1

    def test_standard_normal_end_to_end(self, rng):
        model = gibbshmc.models.Model(
            log_dens=lambda v: -0.5 * float(v['x']**2),
            grad_log_dens=lambda v: {'x': -v['x']})
        state = gibbshmc.states.ParameterState({'x': 0.})
        sampler = gibbshmc.samplers.HMCSampler(
            model, n_step=10, n_adapt=1000, target_accept=0.65)
        samples = []
        for _ in range(5000):
            sampler.step(state, rng)
            samples.append(float(state['x']))
        samples = np.array(samples)
        assert abs(samples.mean()) < 0.05
        assert abs(samples.var() - 1.) < 0.1


class TestMHSampler:

    def test_prior_proposal_default(self, normal_model, rng):
        sampler = gibbshmc.samplers.MHSampler(normal_model)
        state = gibbshmc.states.ParameterState({'x': 0.})
        accepted, stats = sampler.step(state, rng)
        assert isinstance(
            sampler.proposals['x'], gibbshmc.proposals.StaticProposal)
        # Proposing from the target itself is always accepted
        assert accepted
        assert np.isclose(stats['accept_prob'], 1.)

    def test_missing_prior_raises(self, rng):
        model = gibbshmc.models.Model(lambda v: -0.5 * float(v['x']**2))
        sampler = gibbshmc.samplers.MHSampler(model)
        state = gibbshmc.states.ParameterState({'x': 0.})
        with pytest.raises(gibbshmc.errors.ConfigurationError):
            sampler.step(state, rng)

    def test_proposal_outside_group_raises(self, normal_model):
        with pytest.raises(gibbshmc.errors.ConfigurationError):
            gibbshmc.samplers.MHSampler(
                normal_model, group='x', proposals={'y': 0.5})

    def test_reject_restores_state(self, normal_model, rng):
        proposal = gibbshmc.proposals.CustomProposal(
            lambda current, rng: current + 100.)
        sampler = gibbshmc.samplers.MHSampler(
            normal_model, proposals={'x': proposal}, check_restore=True)
        state = gibbshmc.states.ParameterState({'x': 0.1})
        accepted, stats = sampler.step(state, rng)
        assert not accepted
        assert state['x'] == 0.1
        assert state.log_dens == -0.5 * 0.1**2

    def test_non_finite_proposal_rejected(self, normal_model, rng):
        proposal = gibbshmc.proposals.CustomProposal(
            lambda current, rng: current * np.nan)
        sampler = gibbshmc.samplers.MHSampler(
            normal_model, proposals={'x': proposal})
        state = gibbshmc.states.ParameterState({'x': 0.1})
        accepted, stats = sampler.step(state, rng)
        assert not accepted
        assert stats['accept_prob'] == 0.
        assert state['x'] == 0.1

    def test_domain_error_in_log_dens_rejected(self, rng):
        import math
        model = gibbshmc.models.Model(
            lambda v: math.log(v['s']) - float(v['s']))
        sampler = gibbshmc.samplers.MHSampler(model, proposals={'s': 5.})
        state = gibbshmc.states.ParameterState({'s': 0.1})
        n_reject = 0
        for _ in range(50):
            accepted, stats = sampler.step(state, rng)
            assert state['s'] > 0
            if not accepted and stats['accept_prob'] == 0.:
                n_reject += 1
        assert n_reject > 0

    def test_random_walk_links_constrained_group(self, rng):
        prior = stats.gamma(2.)
        model = gibbshmc.models.Model(
            lambda v: float(prior.logpdf(v['s'])), priors={'s': prior})
        sampler = gibbshmc.samplers.MHSampler(model, proposals={'s': 2.})
        state = gibbshmc.states.ParameterState({'s': 1.})
        samples = []
        for _ in range(5000):
            sampler.step(state, rng)
            assert not state.is_linked('s')
            samples.append(float(state['s']))
        samples = np.array(samples)
        assert np.all(samples > 0)
        assert abs(samples[500:].mean() - 2.) < 0.2

    def test_mixed_proposals_not_linked(self, rng):
        prior = stats.gamma(2.)
        model = gibbshmc.models.Model(
            lambda v: float(prior.logpdf(v['s']) + prior.logpdf(v['t'])),
            priors={'s': prior, 't': prior})
        sampler = gibbshmc.samplers.MHSampler(model, proposals={'s': 0.5})
        state = gibbshmc.states.ParameterState({'s': 1., 't': 1.})
        assert not sampler._requires_link(['s', 't'])
        assert sampler._requires_link(['s'])
        for _ in range(200):
            sampler.step(state, rng)
            assert state['t'] > 0

    def test_joint_covariance_proposal(self, rng):
        covar = np.array([[1., 0.8], [0.8, 1.]])
        target = stats.multivariate_normal(np.zeros(2), covar)
        model = gibbshmc.models.Model(lambda v: float(target.logpdf(v['x'])))
        sampler = gibbshmc.samplers.MHSampler(
            model, proposals=gibbshmc.proposals.RandomWalkProposal(
                0.5 * covar))
        state = gibbshmc.states.ParameterState({'x': np.zeros(2)})
        samples = []
        for _ in range(10000):
            sampler.step(state, rng)
            samples.append(state['x'].copy())
        samples = np.array(samples)[1000:]
        assert np.allclose(samples.mean(0), 0., atol=0.15)
        assert abs(np.corrcoef(samples.T)[0, 1] - 0.8) < 0.1
