"""Record of the states and statistics of a sampled chain."""

import numpy as np


class Chain(object):
    """Append-only record of the outer iterations of a sampling run.

    Each iteration stores whether any move was accepted, a read-only snapshot
    of the parameter state after the iteration and the per-sampler step
    statistics.
    """

    def __init__(self):
        self._accepted = []
        self._snapshots = []
        self._stats = []

    def append(self, accepted, snapshot, stats):
        """Record an outer iteration.

        Args:
            accepted (bool): Whether any sampler accepted a move.
            snapshot (gibbshmc.states.ParameterState): State after the
                iteration (in natural space). Should not be mutated later.
            stats (Dict[int, Dict[str, numeric]]): Step statistics keyed by
                sampler position.
        """
        self._accepted.append(bool(accepted))
        self._snapshots.append(snapshot)
        self._stats.append(stats)

    def __len__(self):
        return len(self._snapshots)

    @property
    def names(self):
        return self._snapshots[0].names if self._snapshots else ()

    @property
    def snapshots(self):
        return list(self._snapshots)

    @property
    def accepted(self):
        """Boolean array of per-iteration acceptance flags."""
        return np.array(self._accepted, dtype=bool)

    @property
    def accept_rate(self):
        """Proportion of iterations in which a move was accepted."""
        if len(self) == 0:
            return np.nan
        return float(np.mean(self._accepted))

    @property
    def traces(self):
        """Dictionary of arrays of variable values with leading iteration axis."""
        return {name: self.trace(name) for name in self.names}

    def trace(self, name):
        return np.stack([snapshot[name] for snapshot in self._snapshots])

    @property
    def log_dens(self):
        return np.array([
            np.nan if snapshot.log_dens is None else snapshot.log_dens
            for snapshot in self._snapshots])

    def statistics(self, index):
        """Arrays of the step statistics of the sampler at position `index`."""
        keys = []
        for stats in self._stats:
            for key in stats[index]:
                if key not in keys:
                    keys.append(key)
        return {
            key: np.array([stats[index].get(key, np.nan)
                           for stats in self._stats])
            for key in keys}

    def mean(self, name, burn=0):
        """Sample mean of a variable over iterations after `burn`."""
        return self.trace(name)[burn:].mean(0)

    def var(self, name, burn=0):
        """Sample variance of a variable over iterations after `burn`."""
        return self.trace(name)[burn:].var(0)

    def __repr__(self):
        return (
            f'{type(self).__name__}(n_iter={len(self)}, '
            f'names={list(self.names)})')
