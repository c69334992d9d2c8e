"""Progress bar classes for tracking progress of sampling runs."""

import abc
import sys
from timeit import default_timer as timer


def _format_time(total_seconds):
    """Format a time interval in seconds as a colon-delimited string [h:]m:s"""
    total_mins, seconds = divmod(int(total_seconds), 60)
    hours, mins = divmod(total_mins, 60)
    if hours != 0:
        return f'{hours:d}:{mins:02d}:{seconds:02d}'
    else:
        return f'{mins:02d}:{seconds:02d}'


def _update_stats_running_means(iter, means, new_vals):
    """Update dictionary of running statistics means with latest values."""
    for key, val in new_vals.items():
        if key not in means:
            means[key] = float(val)
        else:
            means[key] += (float(val) - means[key]) / iter


class BaseProgressBar(abc.ABC):
    """Base class defining expected interface for progress bars.

    Iterating over a progress bar yields pairs of the next value in the
    wrapped sequence and a dictionary which the loop body may fill with
    statistics of the iteration. The bar is updated with the statistics after
    the body completes.
    """

    def __init__(self, sequence, description=None):
        """
        Args:
            sequence (Sequence): Sequence to iterate over. Must be iterable AND
                have a defined length such that `len(sequence)` is valid.
            description (None or str): Description of task to prefix progress
                bar with.
        """
        self.sequence = sequence
        self.description = description
        self.n_iter = len(sequence)

    def __iter__(self):
        for i, val in enumerate(self.sequence):
            iter_dict = {}
            yield val, iter_dict
            self.update(i + 1, iter_dict)

    def __len__(self):
        return self.n_iter

    @abc.abstractmethod
    def update(self, iter_count, iter_dict=None):
        """Update progress bar state.

        Args:
            iter_count (int): New value for iteration counter.
            iter_dict (None or Dict[str, float]): Dictionary of iteration
                statistics key-value pairs to use to update postfix stats.
        """

    def __enter__(self):
        return self

    def __exit__(self, *args):
        return False


class DummyProgressBar(BaseProgressBar):
    """Placeholder progress bar which does not display progress updates."""

    def update(self, iter_count, iter_dict=None):
        pass


class ProgressBar(BaseProgressBar):
    """Single line text progress bar redrawn in place on a terminal stream.

    For example while sampling

        Sampling:  40%|####------| 400/1000 [00:02<00:03, 185.21it/s, accept_rate=0.812]

    with the running means of any statistics passed to `update` appended.
    """

    def __init__(self, sequence, description=None, file=None, width=10,
                 min_refresh_time=0.25):
        """
        Args:
            sequence (Sequence): Sequence to iterate over.
            description (None or str): Description of task to prefix progress
                bar with.
            file (None or File): Stream to write the progress bar to. Defaults
                to `sys.stderr`.
            width (int): Number of characters in the bar.
            min_refresh_time (float): Minimum time in seconds between redraws.
        """
        super().__init__(sequence, description)
        self._file = file if file is not None else sys.stderr
        self._width = width
        self._min_refresh_time = min_refresh_time
        self._line_length = 0
        self.reset()

    def reset(self):
        self.counter = 0
        self._start_time = timer()
        self._elapsed_time = 0.
        self._last_refresh_time = None
        self._means = {}

    @property
    def prop_complete(self):
        return self.counter / self.n_iter if self.n_iter > 0 else 1.

    def _timing(self):
        elapsed = _format_time(self._elapsed_time)
        if self.counter == 0 or self._elapsed_time == 0:
            return f'{elapsed}<?, ?it/s'
        remaining = _format_time(
            (self.n_iter - self.counter) * self._elapsed_time / self.counter)
        rate = self.counter / self._elapsed_time
        return f'{elapsed}<{remaining}, {rate:.2f}it/s'

    def __str__(self):
        n_filled = int(self._width * self.prop_complete)
        bar = '#' * n_filled + '-' * (self._width - n_filled)
        fields = [self._timing()] + [
            f'{key}={val:#.3g}' for key, val in self._means.items()]
        return (
            f'{self.description + ": " if self.description else ""}'
            f'{int(self.prop_complete * 100):3d}%|{bar}| '
            f'{self.counter}/{self.n_iter} [{", ".join(fields)}]')

    def update(self, iter_count, iter_dict=None):
        self.counter = max(0, min(iter_count, self.n_iter))
        if iter_dict:
            _update_stats_running_means(iter_count, self._means, iter_dict)
        now = timer()
        self._elapsed_time = now - self._start_time
        if (self.counter == self.n_iter or self._last_refresh_time is None or
                now - self._last_refresh_time > self._min_refresh_time):
            self.refresh()
            self._last_refresh_time = now

    def refresh(self):
        """Redraw the progress bar over the current line of the stream."""
        line = str(self)
        self._file.write('\r' + line.ljust(self._line_length))
        self._line_length = len(line)
        self._file.flush()

    def __enter__(self):
        self.reset()
        return self

    def __exit__(self, *args):
        self.refresh()
        self._file.write('\n')
        self._file.flush()
        return False
