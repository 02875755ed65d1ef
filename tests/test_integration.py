"""
Integration tests for tracepoint.

End-to-end tests through the source loader:
  Parse -> Expand markers -> Execute statement by statement -> Trace -> Reload -> Replay
"""

import sys
import textwrap

import pytest

from tracepoint import load_file, load_source, reload
from tracepoint.analysis.hierarchy import Category, reset_and_extend
from tracepoint.errors import InstrumentationError
from tracepoint.runtime import arg_cache
from tracepoint.runtime.arg_cache import ArgVector
from tracepoint.sink.sinks import RecordingSink, use_sink


def source(text):
    return textwrap.dedent(text).lstrip()


def headers(rec):
    return [e[1] for e in rec.events if e[0] == 'label' and e[2] and not e[1][0].isdigit()]


# ---------- Realistic Modules ----------

SHAPES = source('''
    """Shape helpers."""
    import functools

    from tracepoint import deep, shallow


    @deep
    def area(w, h=1):
        return w * h


    @shallow
    def save_(path):
        return path


    @functools.singledispatch
    def describe(shape):
        return 'shape'


    @deep
    @describe.register(int)
    def _(shape):
        return f'square {shape}'


    @deep
    @describe.register(tuple)
    def _(shape):
        return f'rect {shape}'


    class Shape:
        def __init__(self, w):
            self.w = w

        @deep
        def scaled(self, k):
            return Shape(self.w * k)

        @deep
        def __repr__(self):
            return f'Shape({self.w})'
''')

EVENTS = source('''
    from tracepoint import deep


    class Bus:
        def __init__(self):
            self.handlers = {}

        def on(self, event, handler):
            self.handlers[event] = handler
            return handler


    bus = Bus()

    with deep:
        bus.on('click', lambda event: event['x'] + 1)
''')


class LoaderCase:
    def setup_method(self):
        arg_cache.clear()
        reset_and_extend()
        self._sink = use_sink(RecordingSink())
        self.rec = self._sink.__enter__()

    def teardown_method(self):
        self._sink.__exit__(None, None, None)
        arg_cache.clear()
        reset_and_extend()


# ---------- Loading Tests ----------

class TestLoadSource(LoaderCase):
    def test_definitions_are_traced(self):
        ns = load_source(SHAPES, {'__name__': 'shapes'})
        assert ns['area'](3) == 3
        assert headers(self.rec) == ['>> shapes.area']
        assert self.rec.values() == [ArgVector((3,), {}), 3]

    def test_docstring_and_name(self):
        ns = load_source(SHAPES, {'__name__': 'shapes'})
        assert ns['__doc__'] == 'Shape helpers.'
        assert ns['area'].__module__ == 'shapes'
        assert ns['area'].__qualname__ == 'area'

    def test_methods(self):
        ns = load_source(SHAPES, {'__name__': 'shapes'})
        shape = ns['Shape'](2).scaled(3)
        assert shape.w == 6
        assert headers(self.rec)[0] == '>> shapes.Shape.scaled'
        assert ns['Shape'].scaled.__qualname__ == 'Shape.scaled'

    def test_dunder_is_traced(self):
        ns = load_source(SHAPES, {'__name__': 'shapes'})
        assert repr(ns['Shape'](4)) == 'Shape(4)'
        assert headers(self.rec) == ['>> shapes.Shape.__repr__']

    def test_dispatch_keys(self):
        ns = load_source(SHAPES, {'__name__': 'shapes'})
        assert ns['describe'](2) == 'square 2'
        assert ns['describe']((1, 2)) == 'rect (1, 2)'
        assert ns['describe']('x') == 'shape'
        assert headers(self.rec) == ['>> shapes.describe int', '>> shapes.describe tuple']
        assert set(arg_cache.keys()) == {('shapes.describe', 'int'), ('shapes.describe', 'tuple')}

    def test_default_namespace(self):
        ns = load_source('from tracepoint import shallow\ny = shallow(len([1, 2]))')
        assert ns['y'] == 2
        assert ns['__name__'] == '__tracepoint__'
        assert self.rec.events == [('label', 'len([1, 2])', False, 0), ('value', 2)]

    def test_syntax_error(self):
        with pytest.raises(InstrumentationError):
            load_source('def broken(:\n    pass')

    def test_future_import_is_honoured(self):
        ns = load_source(source('''
            from __future__ import annotations
            from tracepoint import deep

            @deep
            def f(x: Undefined) -> Undefined:
                return x
        '''), {'__name__': 'fut'})
        assert ns['f'](1) == 1
        assert ns['f'].__wrapped__.__annotations__ == {'x': 'Undefined', 'return': 'Undefined'}

    def test_private_method(self):
        ns = load_source(source('''
            from tracepoint import shallow

            class Vault:
                @shallow
                def __secret(self):
                    return 42

                def open(self):
                    return self.__secret()
        '''), {'__name__': 'vault'})
        assert ns['Vault']().open() == 42
        assert headers(self.rec) == ['> vault.Vault.__secret']


# ---------- Replay Tests ----------

class TestReplay(LoaderCase):
    def test_reload_replays_last_call(self):
        ns = {'__name__': 'shapes'}
        load_source(SHAPES, ns)
        ns['area'](2, h=5)
        ns['area'](4, 5)
        self.rec.clear()

        load_source(SHAPES, ns)
        assert headers(self.rec) == ['>> shapes.area']
        assert self.rec.values() == [ArgVector((4, 5), {}), 20]

    def test_effectful_name_is_not_replayed(self):
        ns = {'__name__': 'shapes'}
        load_source(SHAPES, ns)
        ns['save_']('/tmp/out')
        self.rec.clear()

        load_source(SHAPES, ns)
        assert self.rec.events == []

    def test_dispatch_replays_per_discriminant(self):
        ns = {'__name__': 'shapes'}
        load_source(SHAPES, ns)
        ns['describe'](3)
        self.rec.clear()

        load_source(SHAPES, ns)
        assert headers(self.rec) == ['>> shapes.describe int']
        assert self.rec.values()[-1] == 'square 3'

    def test_dunder_is_not_replayed(self):
        ns = {'__name__': 'shapes'}
        load_source(SHAPES, ns)
        repr(ns['Shape'](1))
        self.rec.clear()

        load_source(SHAPES, ns)
        assert self.rec.events == []

    def test_replay_sees_reloaded_body(self):
        ns = {'__name__': 'calc'}
        load_source('from tracepoint import shallow\n@shallow\ndef f(x):\n    return x + 1', ns)
        ns['f'](10)
        self.rec.clear()

        load_source('from tracepoint import shallow\n@shallow\ndef f(x):\n    return x * 100', ns)
        assert self.rec.values() == [1000]

    def test_replay_applies_reloaded_default(self):
        ns = {'__name__': 'calc'}
        load_source('from tracepoint import deep\n@deep\ndef area(w, h=1):\n    return w * h', ns)
        assert ns['area'](3) == 3
        self.rec.clear()

        load_source('from tracepoint import deep\n@deep\ndef area(w, h=2):\n    return w * h', ns)
        assert self.rec.values() == [ArgVector((3,), {}), 6]
        assert ns['area'](3) == 6

    def test_replay_passes_arguments_as_observed(self):
        ns = {'__name__': 'calc'}
        text = source('''
            from tracepoint import shallow

            @shallow
            def push(xs):
                xs.append(len(xs) + 1)
                return len(xs)
        ''')
        load_source(text, ns)
        assert ns['push']([]) == 1
        self.rec.clear()

        load_source(text, ns)
        load_source(text, ns)
        assert self.rec.values() == [1, 1]

    def test_failed_replay_does_not_abort_load(self, caplog):
        ns = {'__name__': 'calc'}
        load_source('from tracepoint import shallow\n@shallow\ndef f(x):\n    return x', ns)
        ns['f'](0)

        load_source(source('''
            from tracepoint import shallow

            @shallow
            def f(x):
                return 1 / x

            after = 'loaded'
        '''), ns)
        assert ns['after'] == 'loaded'
        assert 'replay of calc.f failed' in caplog.text

    def test_load_file_and_reload(self, tmp_path):
        path = tmp_path / 'geometry.py'
        path.write_text(SHAPES, encoding='utf-8')
        module = load_file(path, 'geometry_under_test')
        try:
            assert sys.modules['geometry_under_test'] is module
            assert module.__file__ == str(path.resolve())
            module.area(7)
            self.rec.clear()

            assert reload(module) is module
            assert self.rec.values() == [ArgVector((7,), {}), 7]
        finally:
            sys.modules.pop('geometry_under_test', None)

    def test_reload_needs_file(self):
        import types
        with pytest.raises(InstrumentationError):
            reload(types.ModuleType('nowhere'))


# ---------- Registration Tests ----------

class TestRegistration(LoaderCase):
    def setup_method(self):
        super().setup_method()
        reset_and_extend({Category.EVENT_HANDLER_REGISTRATION: {'events.Bus.on'}})

    def test_handler_is_traced(self):
        ns = load_source(EVENTS, {'__name__': 'events'})
        handler = ns['bus'].handlers['click']
        assert handler({'x': 1}) == 2
        assert headers(self.rec) == [">> events.Bus.on 'click' events"]
        key = ('events.Bus.on', "'click'", 'events')
        assert arg_cache.lookup(key) == ArgVector(({'x': 1},), {})

    def test_handler_replays_on_reload(self):
        ns = {'__name__': 'events'}
        load_source(EVENTS, ns)
        ns['bus'].handlers['click']({'x': 41})
        self.rec.clear()

        load_source(EVENTS, ns)
        assert self.rec.values()[-1] == 42

    def test_unregistered_operator_is_dump_only(self):
        reset_and_extend()
        ns = load_source(EVENTS, {'__name__': 'events'})
        assert arg_cache.size() == 0
        # the call itself was dumped: its form and the returned handler
        assert self.rec.labels() == ["bus.on('click', lambda event: event['x'] + 1)"]


# ---------- Loop and Dump Tests ----------

class TestDumpOverlay(LoaderCase):
    def test_shallow_loop(self):
        ns = load_source(source('''
            from tracepoint import shallow

            with shallow:
                total = 0
                for i in range(3):
                    total += i
        '''), {'__name__': 'loops'})
        assert ns['total'] == 3
        assert self.rec.labels() == ['total = 0'] + ['for i in range(3)', 'i'] * 3
        assert self.rec.values() == [0, 0, 1, 2]

    def test_deep_loop_body_is_indented(self):
        load_source(source('''
            from tracepoint import deep

            with deep:
                total = 0
                for i in range(2):
                    total += i
        '''), {'__name__': 'loops'})
        body = [e for e in self.rec.events if e[0] == 'label' and e[1] == 'total += i']
        assert [e[3] for e in body] == [1, 1]

    def test_while_loop(self):
        load_source(source('''
            from tracepoint import shallow

            n = 3
            with shallow:
                while n > 0:
                    n -= 1
        '''), {'__name__': 'loops'})
        assert self.rec.values() == [{'n': 3}, {'n': 2}, {'n': 1}]

    def test_while_condition_with_generator(self):
        ns = load_source(source('''
            from tracepoint import shallow

            xs = [2, 1]
            with shallow:
                while any(y > 0 for y in xs):
                    xs = [x - 1 for x in xs]
        '''), {'__name__': 'loops'})
        assert ns['xs'] == [0, -1]
        assert self.rec.values() == [{'xs': [2, 1]}, {'xs': [1, 0]}]

    def test_comprehension(self):
        ns = load_source(source('''
            from tracepoint import shallow

            squares = shallow([i * i for i in range(3)])
        '''), {'__name__': 'loops'})
        assert ns['squares'] == [0, 1, 4]
        assert self.rec.labels() == ['for i in range(3)', 'i * i'] * 3

    def test_default_totality(self):
        ns = load_source(source('''
            from tracepoint import deep

            with deep:
                import math
                root = math.sqrt(16)
                if root > 3:
                    big = True
        '''), {'__name__': 'misc'})
        assert ns['root'] == 4.0 and ns['big'] is True
        labels = self.rec.labels()
        assert 'root = math.sqrt(16)' in labels
        assert 'if root > 3' in labels
        assert 'big = True' in labels
