import setuptools

setuptools.setup(
    name='gibbshmc',
    version='0.1.0',
    description=(
        'Hamiltonian Monte Carlo with dual averaging and Gibbs composition of '
        'samplers'
    ),
    long_description=(
        'gibbshmc is a Python package providing a static integration time '
        'Hamiltonian Monte Carlo sampler with dual averaging step size and '
        'diagonal metric adaptation, Metropolis-Hastings samplers and a '
        'composer which updates disjoint groups of variables of a model in '
        'turn with different samplers.'
    ),
    packages=['gibbshmc'],
    classifiers=[
        'Development Status :: 3 - Alpha',
        'Programming Language :: Python :: 3',
        'License :: OSI Approved :: MIT License',
        'Operating System :: OS Independent',
        'Topic :: Scientific/Engineering',
        'Intended Audience :: Science/Research',
        'Intended Audience :: Developers'
    ],
    keywords='inference sampling MCMC HMC Gibbs',
    license='MIT',
    install_requires=['numpy>=1.17', 'scipy>=1.4'],
    python_requires='>=3.6',
    extras_require={
        'autodiff': ['autograd>=1.3'],
        'test': ['pytest'],
    }
)
