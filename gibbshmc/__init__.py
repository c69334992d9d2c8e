# -*- coding: utf-8 -*-
""" Gibbs composition of Hamiltonian Monte Carlo and Metropolis samplers. """

__license__ = 'MIT'

import gibbshmc.adapters
import gibbshmc.autodiff
import gibbshmc.chains
import gibbshmc.composers
import gibbshmc.errors
import gibbshmc.integrators
import gibbshmc.models
import gibbshmc.proposals
import gibbshmc.samplers
import gibbshmc.states
import gibbshmc.systems
import gibbshmc.transforms
