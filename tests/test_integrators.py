import pytest
import numpy as np
from scipy import stats
import gibbshmc

SEED = 3046987125


@pytest.fixture
def rng():
    return np.random.default_rng(SEED)


def _gaussian_grad(scale):
    return lambda pos: -pos / scale**2


def _gaussian_h(pos, mom, scale, inv_mass=1.):
    return 0.5 * np.sum((pos / scale)**2) + 0.5 * np.sum(mom**2 * inv_mass)


class TestLeapfrog:

    scale = np.array([0.5, 1., 2.])

    @pytest.fixture
    def init(self, rng):
        return rng.standard_normal(3) * self.scale, rng.standard_normal(3)

    def test_reversible(self, init):
        pos, mom = init
        grad = _gaussian_grad(self.scale)
        pos_f, mom_f, valid = gibbshmc.integrators.leapfrog(
            pos, mom, grad, 0.1, 20)
        assert valid
        pos_r, mom_r, valid = gibbshmc.integrators.leapfrog(
            pos_f, -mom_f, grad, 0.1, 20)
        assert valid
        assert np.allclose(pos_r, pos)
        assert np.allclose(-mom_r, mom)

    def test_inputs_not_mutated(self, init):
        pos, mom = init
        pos_copy, mom_copy = pos.copy(), mom.copy()
        gibbshmc.integrators.leapfrog(
            pos, mom, _gaussian_grad(self.scale), 0.1, 5)
        assert np.all(pos == pos_copy)
        assert np.all(mom == mom_copy)

    def test_energy_error_decreases_with_step_size(self, rng):
        grad = _gaussian_grad(self.scale)
        inits = [
            (rng.standard_normal(3) * self.scale, rng.standard_normal(3))
            for _ in range(20)]
        mean_errors = []
        for step_size in [0.2, 0.1, 0.05, 0.025]:
            n_step = int(round(1. / step_size))
            errors = []
            for pos, mom in inits:
                pos_f, mom_f, valid = gibbshmc.integrators.leapfrog(
                    pos, mom, grad, step_size, n_step)
                assert valid
                errors.append(abs(
                    _gaussian_h(pos_f, mom_f, self.scale) -
                    _gaussian_h(pos, mom, self.scale)))
            mean_errors.append(np.mean(errors))
        assert all(
            e2 < e1 for e1, e2 in zip(mean_errors[:-1], mean_errors[1:]))

    def test_inv_mass_scaling(self, init):
        pos, mom = init
        inv_mass = self.scale**2
        pos_f, mom_f, valid = gibbshmc.integrators.leapfrog(
            pos, mom, _gaussian_grad(self.scale), 0.01, 100, inv_mass)
        h_init = _gaussian_h(pos, mom, self.scale, inv_mass)
        h_final = _gaussian_h(pos_f, mom_f, self.scale, inv_mass)
        assert valid
        assert abs(h_final - h_init) < 1e-3

    def test_non_finite_gradient_invalid(self, init):
        pos, mom = init
        calls = []

        def grad(pos):
            calls.append(pos)
            return np.full_like(pos, np.nan) if len(calls) == 3 else -pos

        _, _, valid = gibbshmc.integrators.leapfrog(pos, mom, grad, 0.1, 10)
        assert not valid
        assert len(calls) == 3

    def test_divergence_error_invalid(self, init):
        pos, mom = init

        def grad(pos):
            raise gibbshmc.errors.NumericDivergenceError('overflow')

        _, _, valid = gibbshmc.integrators.leapfrog(pos, mom, grad, 0.1, 10)
        assert not valid


class TestLeapfrogIntegrator:

    def test_no_step_size_raises(self):
        integrator = gibbshmc.integrators.LeapfrogIntegrator()
        with pytest.raises(gibbshmc.errors.AdaptationError):
            integrator.integrate(np.zeros(1), np.zeros(1), lambda q: -q, 1)

    def test_integrate_matches_leapfrog(self, rng):
        pos, mom = rng.standard_normal(2), rng.standard_normal(2)
        integrator = gibbshmc.integrators.LeapfrogIntegrator(0.3)
        out_1 = integrator.integrate(pos, mom, lambda q: -q, 7)
        out_2 = gibbshmc.integrators.leapfrog(pos, mom, lambda q: -q, 0.3, 7)
        assert np.all(out_1[0] == out_2[0])
        assert np.all(out_1[1] == out_2[1])


class TestDiagonalMetricSystem:

    @pytest.fixture
    def model(self):
        return gibbshmc.models.Model(
            lambda v: float(stats.norm.logpdf(v['x'], scale=2.).sum()),
            lambda v: {'x': -v['x'] / 4.})

    def test_kinetic_energy(self, model):
        system = gibbshmc.systems.DiagonalMetricSystem(
            model, ['x'], np.array([1., 2.]))
        mom = np.array([1., 1.])
        assert np.isclose(system.kinetic_energy(mom), 0.5 * (1 + 4))

    def test_momentum_distribution(self, model, rng):
        system = gibbshmc.systems.DiagonalMetricSystem(
            model, ['x'], np.array([1., 4.]))
        moms = np.stack([system.sample_momentum(rng, 2) for _ in range(20000)])
        assert np.allclose(moms.std(0), [1., 0.25], rtol=0.05)

    def test_grad_func_writes_position(self, model):
        state = gibbshmc.states.ParameterState({'x': np.zeros(2)})
        system = gibbshmc.systems.DiagonalMetricSystem(model, ['x'])
        grad_func = system.grad_log_dens_func(state)
        grad = grad_func(np.array([2., -4.]))
        assert np.all(state['x'] == np.array([2., -4.]))
        assert np.allclose(grad, [-0.5, 1.])

    def test_hamiltonian(self, model):
        state = gibbshmc.states.ParameterState({'x': np.array([1., 1.])})
        system = gibbshmc.systems.DiagonalMetricSystem(model, ['x'])
        mom = np.array([1., 0.])
        assert np.isclose(
            system.h(state, mom),
            -stats.norm.logpdf([1., 1.], scale=2.).sum() + 0.5)
