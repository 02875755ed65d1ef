"""
Tests for the runtime modules: argument cache, wrapper runtime, tracer entry points.

Validates:
  - Traced definitions are transparent: same result, same exceptions
  - Header / args / ret emission per trace level
  - Recursive calls go through the traced wrapper
  - Multi-dispatch implementations keep independent cache entries
  - Replay skips effectful names and survives failures
"""

import asyncio
import functools
import inspect
import logging
import threading

import pydantic
import pytest

from tracepoint import configure, deep, reset_config, shallow
from tracepoint.analysis.hierarchy import reset_and_extend
from tracepoint.runtime import arg_cache, wrappers
from tracepoint.runtime.arg_cache import ArgVector
from tracepoint.runtime.tracer import Tracer
from tracepoint.sink.sinks import RecordingSink, use_sink


def headers(rec):
    return [e[1] for e in rec.events if e[0] == 'label' and e[2] and not e[1][0].isdigit()]


class TracedCase:
    def setup_method(self):
        arg_cache.clear()
        reset_and_extend()
        reset_config()
        self._sink = use_sink(RecordingSink())
        self.rec = self._sink.__enter__()

    def teardown_method(self):
        self._sink.__exit__(None, None, None)
        arg_cache.clear()
        reset_config()


# ---------- Argument Cache Tests ----------

class TestArgCache:
    def setup_method(self):
        arg_cache.clear()

    def test_last_write_wins(self):
        arg_cache.record('k', (1,), {})
        arg_cache.record('k', (2,), {'b': 3})
        assert arg_cache.lookup('k') == ArgVector((2,), {'b': 3})
        assert arg_cache.size() == 1

    def test_tuple_keys(self):
        arg_cache.record(('demo.area', 'int'), (1,), {})
        arg_cache.record(('demo.area', 'str'), ('a',), {})
        assert arg_cache.lookup(('demo.area', 'int')).args == (1,)
        assert sorted(arg_cache.keys()) == [('demo.area', 'int'), ('demo.area', 'str')]

    def test_missing(self):
        assert arg_cache.lookup('nothing') is None

    def test_vector_repr(self):
        assert repr(ArgVector((1, 'x'), {'b': 2})) == "(1, 'x', b=2)"
        assert repr(ArgVector((), {})) == '()'

    def test_vector_is_a_snapshot(self):
        xs = [1]
        opts = {'a': 1}
        arg_cache.record('k', (xs,), {'opts': opts})
        xs.append(2)
        opts['b'] = 2
        assert arg_cache.lookup('k') == ArgVector(([1],), {'opts': {'a': 1}})

    def test_uncopyable_kept_by_reference(self):
        lock = threading.Lock()
        arg_cache.record('k', (lock,), {})
        assert arg_cache.lookup('k').args[0] is lock


# ---------- Wrapper Runtime Tests ----------

class TestWrappers(TracedCase):
    def test_declare(self):
        existing = object()
        assert wrappers.declare(existing, 'f') is existing
        placeholder = wrappers.declare(None, 'f')
        with pytest.raises(NameError):
            placeholder()

    def test_key_text(self):
        assert wrappers.key_text('demo.f') == 'demo.f'
        assert wrappers.key_text(('demo.area', 'int')) == 'demo.area int'

    def test_supplied_drops_defaulted_parameters(self):
        unsupplied = wrappers.UNSUPPLIED
        assert wrappers.supplied(('w', 'h'), (3, unsupplied), {}) == ((3,), {})
        # a later positional can no longer travel by position
        assert wrappers.supplied(('w', 'h', 'd'), (3, unsupplied, 5), {}) == ((3,), {'d': 5})
        assert wrappers.supplied(('a',), (1, 2, 3), {'k': unsupplied, 'j': 4}) == ((1, 2, 3), {'j': 4})

    def test_replay_uses_cache(self):
        calls = []
        arg_cache.record('demo.f', (1,), {'b': 2})
        wrappers.replay('demo.f', lambda *a, **kw: calls.append((a, kw)), 'f')
        assert calls == [((1,), {'b': 2})]

    def test_replay_nothing_cached(self):
        assert wrappers.replay('demo.g', lambda: pytest.fail('called'), 'g') is None

    def test_replay_skips_effectful_name(self):
        arg_cache.record('demo.save_', (1,), {})
        wrappers.replay('demo.save_', lambda *a: pytest.fail('called'), 'save_')

    def test_replay_suffix_is_configurable(self):
        configure(no_replay_suffix='_bang')
        calls = []
        arg_cache.record('demo.save_', (1,), {})
        wrappers.replay('demo.save_', calls.append, 'save_')
        assert calls == [1]

    def test_replay_failure_is_logged(self, caplog):
        def broken(x):
            raise RuntimeError('boom')

        arg_cache.record('demo.broken', (1,), {})
        with caplog.at_level(logging.ERROR, logger='tracepoint.runtime.wrappers'):
            assert wrappers.replay('demo.broken', broken, 'broken') is None
        assert 'replay of demo.broken failed' in caplog.text

    def test_replay_skips_coroutines(self):
        async def fetch(x):
            return x

        arg_cache.record('demo.fetch', (1,), {})
        assert wrappers.replay('demo.fetch', fetch, 'fetch') is None

    def test_dump_returns_value(self):
        assert wrappers.dump('1 + 1', 2, 3) == 2
        assert self.rec.events == [('label', '1 + 1', False, 3), ('value', 2)]

    def test_loop_step(self):
        assert wrappers.loop_step('for i in x', 'i', 7) == 7
        assert self.rec.events == [
            ('label', 'for i in x', False, 0),
            ('label', 'i', False, 0),
            ('value', 7),
        ]


# ---------- Tracer Tests ----------

class TestTracer(TracedCase):
    def test_levels(self):
        assert deep.__tracepoint_marker__ == 2
        assert shallow.__tracepoint_marker__ == 1
        with pytest.raises(ValueError):
            Tracer(3, 'deeper')

    def test_transparent_result(self):
        @shallow
        def add(a, b):
            return a + b

        assert add(2, 3) == 5
        assert add.__name__ == 'add'
        assert add.__qualname__.endswith('test_transparent_result.<locals>.add')

    def test_shallow_emission(self):
        @shallow
        def add(a, b):
            return a + b

        add(2, 3)
        labels = self.rec.labels()
        assert labels[0].endswith(' ' + '=' * 40)
        assert labels[1].startswith('> ') and labels[1].endswith('.add')
        assert labels[2:] == ['ret']
        assert self.rec.values() == [5]

    def test_deep_emission(self):
        @deep
        def add(a, b):
            return a + b

        add(2, b=3)
        assert self.rec.labels()[2:] == ['args', 'ret']
        assert self.rec.values() == [ArgVector((2, 3), {}), 5]

    def test_recursion_is_traced(self):
        @deep
        def fib(n):
            return n if n < 2 else fib(n - 1) + fib(n - 2)

        assert fib(3) == 2
        assert len(headers(self.rec)) == 5
        assert all(h.startswith('>> ') for h in headers(self.rec))
        # cache keeps the last call
        assert arg_cache.lookup(fib.__tracepoint_key__) == ArgVector((1,), {})

    def test_defaults_two_call_shapes(self):
        @deep
        def greet(name, greeting='hi', *, punct='!'):
            return f'{greeting} {name}{punct}'

        assert greet('ada') == 'hi ada!'
        assert greet('bob', 'yo', punct='?') == 'yo bob?'
        assert greet('cy', punct='.') == 'hi cy.'
        assert len(headers(self.rec)) == 3
        assert self.rec.labels().count('args') == 3
        assert self.rec.labels().count('ret') == 3
        # only what the caller passed is recorded
        vectors = self.rec.values()[0::2]
        assert vectors == [
            ArgVector(('ada',), {}),
            ArgVector(('bob', 'yo'), {'punct': '?'}),
            ArgVector(('cy',), {'punct': '.'}),
        ]
        assert str(inspect.signature(greet)) == "(name, greeting='hi', *, punct='!')"

    def test_keyword_after_skipped_default(self):
        @deep
        def box(w, h=1, d=1):
            return (w, h, d)

        assert box(2, d=3) == (2, 1, 3)
        assert arg_cache.lookup(box.__tracepoint_key__) == ArgVector((2,), {'d': 3})

    def test_exception_propagates_without_ret(self):
        @deep
        def explode(x):
            raise KeyError(x)

        with pytest.raises(KeyError):
            explode('k')
        assert 'ret' not in self.rec.labels()
        assert arg_cache.lookup(explode.__tracepoint_key__) == ArgVector(('k',), {})

    def test_outer_decorator_applied_after_tracing(self):
        @functools.lru_cache(maxsize=None)
        @shallow
        def square(x):
            return x * x

        assert square(4) == 16
        assert square(4) == 16
        assert len(headers(self.rec)) == 1
        assert square.cache_info().hits == 1

    def test_singledispatch_isolation(self):
        @functools.singledispatch
        def describe(x):
            return 'object'

        @deep
        @describe.register(int)
        def _(x):
            return f'int {x}'

        @deep
        @describe.register(str)
        def _(x):
            return f'str {x}'

        assert describe(5) == 'int 5'
        assert describe('a') == 'str a'
        assert describe(1.5) == 'object'
        keys = sorted(k[1] for k in arg_cache.keys())
        assert keys == ['int', 'str']
        assert len(headers(self.rec)) == 2
        assert headers(self.rec)[0].endswith('describe int')

    def test_guarded_definition(self):
        @deep
        @pydantic.validate_call
        def double(x: int) -> int:
            return x * 2

        assert double('3') == 6
        # the contract ran first: the traced body saw the coerced value
        assert self.rec.values()[0] == ArgVector((3,), {})
        self.rec.clear()
        with pytest.raises(pydantic.ValidationError):
            double('three')
        assert self.rec.events == []

    def test_method(self):
        class Counter:
            def __init__(self):
                self.n = 0

            @shallow
            def bump(self, by=1):
                self.n += by
                return self.n

        counter = Counter()
        assert counter.bump() == 1
        assert counter.bump(by=2) == 3
        assert headers(self.rec)[0].endswith('Counter.bump')

    def test_coroutine(self):
        @deep
        async def fetch(x):
            return x + 1

        assert asyncio.run(fetch(1)) == 2
        assert self.rec.values() == [ArgVector((1,), {}), 2]

    def test_lambda_callback(self):
        handler = deep(lambda e: e * 2)
        assert handler(4) == 8
        assert self.rec.labels() == ['>> lambda e: e * 2', 'args', 'ret']
        assert self.rec.values() == [ArgVector((4,), {}), 8]

    def test_tap_value(self):
        assert shallow(42) == 42
        assert self.rec.events == [('value', 42)]
        self.rec.clear()
        shallow({'form': 'x', 'result': 1})
        assert self.rec.events == [('label', 'x', False, None), ('value', 1)]

    def test_separator_from_config(self):
        configure(separator='-' * 8)

        @shallow
        def one():
            return 1

        one()
        assert self.rec.labels()[0].endswith(' --------')
