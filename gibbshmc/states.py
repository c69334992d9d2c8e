"""Objects for recording sampled variable values and caching computations."""

from collections import Counter, OrderedDict
from functools import wraps
import numpy as np
from gibbshmc.errors import ConfigurationError, ReadOnlyStateError
from gibbshmc.utils import flatten_values, split_and_reshape


def _cache_key_func(model, method, args):
    """Construct cache key for a given model, method and arguments triple."""
    if not isinstance(method, str):
        method = method.__name__
    return (f'{type(model).__name__}.{method}', id(model)) + tuple(args)


def cache_in_state(method):
    """Memoizing decorator for model methods.

    Used to decorate `gibbshmc.models.Model` methods which compute a function of
    the variable values in a `ParameterState`, with the decorated method caching
    the value returned in the state object to prevent the need for recomputation
    on future calls if the variable values have not been changed in between the
    calls. Any positional arguments after the state form part of the cache key
    and so must be hashable.

    Additionally for `ParameterState` instances initialized with a
    `_call_counts` argument, the memoized method will update a counter for the
    method in the `_call_counts` attribute every time the method being
    decorated is called (i.e. when there isn't a valid cached value available).
    """
    @wraps(method)
    def wrapper(self, state, *args):
        key = _cache_key_func(self, method, args)
        if state._cache.get(key) is None:
            state._cache[key] = method(self, state, *args)
            if state._call_counts is not None:
                state._call_counts[key] += 1
        return state._cache[key]
    return wrapper


def _as_float_array(value):
    array = np.array(value, dtype=np.float64)
    array.setflags(write=False)
    return array


class ParameterState(object):
    """Current values of all sampled variables.

    Records an ordered mapping from variable names to numeric arrays, a flag
    per variable indicating whether its value is currently represented in
    unconstrained (linked) space, and the cached unnormalized log density of
    the values in their current representation. Writing a variable value
    invalidates the cached log density and any other cached derived
    quantities, so a stale value can never be read.

    Values are stored as non-writeable float arrays with their shapes
    preserved (scalar variables as zero-dimensional arrays), so updates must
    go through item assignment or `set_flat`.
    """

    def __init__(self, values, *, linked=None, log_dens=None,
                 _call_counts=None, _read_only=False, _cache=None):
        """
        Args:
            values (Mapping[str, array_like]): Initial variable values keyed by
                variable name. Iteration order defines the variable order.

        Kwargs:
            linked (None or Iterable[str]): Names of variables whose values are
                already in unconstrained space.
            log_dens (None or float): Log density of `values`, if known.
            _call_counts (None or Dict): If a dictionary is passed it will be
                used to store counts of the number of calls of model methods
                decorated with `cache_in_state` when no cached value is
                available. The counter is shared between all copies of the
                state.
            _read_only (bool): If `True` a `gibbshmc.errors.ReadOnlyStateError`
                is raised on any attempt to update variable values.
            _cache (None or Dict): Intended for internal use only. Dictionary of
                cached derived quantities.
        """
        self._values = OrderedDict(
            (name, _as_float_array(val)) for name, val in values.items())
        self._linked = {name: False for name in self._values}
        if linked is not None:
            for name in linked:
                self._check_name(name)
                self._linked[name] = True
        self._log_dens = None if log_dens is None else float(log_dens)
        self._cache = {} if _cache is None else _cache
        self._call_counts = (
            None if _call_counts is None else
            _call_counts if isinstance(_call_counts, Counter) else
            Counter(_call_counts))
        self._read_only = _read_only

    def _check_name(self, name):
        if name not in self._values:
            raise ConfigurationError(f'Unknown variable name {name!r}.')

    def _check_writeable(self):
        if self._read_only:
            raise ReadOnlyStateError('ParameterState instance is read-only.')

    def _invalidate(self):
        self._log_dens = None
        self._cache.clear()

    def __getitem__(self, name):
        self._check_name(name)
        return self._values[name]

    def __setitem__(self, name, value):
        self._check_writeable()
        self._check_name(name)
        value = _as_float_array(value)
        if value.shape != self._values[name].shape:
            raise ConfigurationError(
                f'Value for {name!r} has shape {value.shape}, expected '
                f'{self._values[name].shape}.')
        self._values[name] = value
        self._invalidate()

    def __contains__(self, name):
        return name in self._values

    def __iter__(self):
        return iter(self._values)

    def __len__(self):
        return len(self._values)

    @property
    def names(self):
        """Tuple of variable names in state order."""
        return tuple(self._values)

    def items(self):
        return self._values.items()

    @property
    def log_dens(self):
        """Cached log density of current values or `None` if not available."""
        return self._log_dens

    @log_dens.setter
    def log_dens(self, value):
        self._check_writeable()
        self._log_dens = None if value is None else float(value)

    def _store_log_dens(self, value):
        # Caching a computed value is allowed on read-only states.
        self._log_dens = float(value)

    def is_linked(self, name):
        """Whether the value of variable `name` is in unconstrained space."""
        self._check_name(name)
        return self._linked[name]

    def set_linked(self, name, linked):
        """Set link flag of variable `name`.

        Intended for use by `gibbshmc.transforms` only, which update the value
        and the cached log density consistently with the flag.
        """
        self._check_writeable()
        self._check_name(name)
        self._linked[name] = bool(linked)

    def shapes(self, names):
        """List of shapes of the values of the named variables."""
        return [self[name].shape for name in names]

    def get_flat(self, names):
        """Concatenate values of the named variables into one flat array.

        Args:
            names (Sequence[str]): Ordered variable names.

        Returns:
            array: One-dimensional array of concatenated flattened values.
        """
        return flatten_values([self[name] for name in names])

    def set_flat(self, names, flat):
        """Set values of the named variables from a single flat array.

        Args:
            names (Sequence[str]): Ordered variable names.
            flat (array): One-dimensional array with size equal to the total
                size of the named variables.
        """
        self._check_writeable()
        parts = split_and_reshape(
            np.asarray(flat, dtype=np.float64), self.shapes(names))
        for name, part in zip(names, parts):
            self._values[name] = _as_float_array(part)
        self._invalidate()

    def copy(self, read_only=False):
        """Create a deep copy of the state object.

        Args:
            read_only (bool): Whether the state copy should be read-only.

        Returns:
            state_copy (ParameterState): A copy of the state object with values
                that are independent copies of the original state values.
        """
        state_copy = type(self)(
            self._values,
            linked=[name for name, flag in self._linked.items() if flag],
            log_dens=self._log_dens, _call_counts=self._call_counts,
            _read_only=read_only, _cache=self._cache.copy())
        return state_copy

    def snapshot(self):
        """Take a copy of the state to restore on rejection of a proposal."""
        return self.copy()

    def restore(self, snapshot):
        """Restore values, link flags and cached values from a snapshot.

        The state is updated in place so that any holder of a reference to it
        sees the restored values.

        Args:
            snapshot (ParameterState): State previously returned by `snapshot`.
        """
        self._check_writeable()
        if snapshot.names != self.names:
            raise ConfigurationError(
                'Snapshot variables do not match state variables.')
        self._values = OrderedDict(
            (name, _as_float_array(val))
            for name, val in snapshot._values.items())
        self._linked = dict(snapshot._linked)
        self._log_dens = snapshot._log_dens
        self._cache = snapshot._cache.copy()

    def __str__(self):
        return (
            '(\n ' +
            ',\n '.join([f'{k}={v}' for k, v in self._values.items()]) +
            f',\n log_dens={self._log_dens})'
        )

    def __repr__(self):
        return type(self).__name__ + str(self)


class VariableGroup(object):
    """Immutable set of variable names a sampler is responsible for.

    An empty group is a sentinel meaning all variables in the state.
    """

    __slots__ = ('_names',)

    def __init__(self, *names):
        for name in names:
            if not isinstance(name, str):
                raise ConfigurationError(
                    f'Variable names must be strings, got {name!r}.')
        object.__setattr__(self, '_names', frozenset(names))

    def __setattr__(self, name, value):
        raise AttributeError('VariableGroup instances are immutable.')

    @classmethod
    def coerce(cls, obj):
        """Construct a group from a group, a single name, or names iterable."""
        if isinstance(obj, cls):
            return obj
        elif obj is None:
            return cls()
        elif isinstance(obj, str):
            return cls(obj)
        else:
            return cls(*obj)

    @property
    def names(self):
        """Frozen set of names in the group (empty for all variables)."""
        return self._names

    @property
    def is_all(self):
        """Whether the group covers all variables."""
        return len(self._names) == 0

    def overlaps(self, other):
        """Whether this group shares any variable with another group."""
        if self.is_all or other.is_all:
            return True
        return not self._names.isdisjoint(other._names)

    def resolve(self, state):
        """Ordered list of names in the group for a given state.

        Args:
            state (ParameterState): State defining the full variable set and
                its order.

        Returns:
            List[str]: Names of the variables in the group, in state order.

        Raises:
            ConfigurationError: If the group names a variable not in `state`.
        """
        if self.is_all:
            return list(state.names)
        unknown = self._names.difference(state.names)
        if unknown:
            raise ConfigurationError(
                f'Variables {sorted(unknown)} not present in parameter state '
                f'with variables {list(state.names)}.')
        return [name for name in state.names if name in self._names]

    def __iter__(self):
        return iter(sorted(self._names))

    def __len__(self):
        return len(self._names)

    def __eq__(self, other):
        return isinstance(other, VariableGroup) and self._names == other._names

    def __hash__(self):
        return hash(self._names)

    def __repr__(self):
        return f'{type(self).__name__}({", ".join(map(repr, self))})'
