"""
Category Generators
===================

One rewrite strategy per category. Each strategy is a pure function from the
original form to its instrumented replacement; nothing is executed here.

Definition protocol (plain, guarded and multi-dispatch definitions):

  a. forward-declare the public name
  b. re-emit the original under a fresh internal name, decorators stripped
  c. build the wrapper in a throw-away factory closing over the renamed
     original, then install it under the public name with the original
     decorators re-applied (contracts, ``register(discriminant)``, ...)
  d. replay the last cached call, if any

The order is fixed: the renamed original must exist before the wrapper is
built, and recursive calls inside the original resolve through the public
name, so they reach the wrapper once it is installed.

For ``def fib(n)`` at level 2 the emitted code reads roughly::

    fib = __tracepoint_rt__.declare(locals().get('fib'), 'fib')
    def fib__traced_1(n): ...
    def fib__trace_factory_2(impl__bound_4):
        def fib(n):
            return __tracepoint_rt__.invoke(impl__bound_4, 2, 'mod.fib', (n,), {}, ('n',))
        return __tracepoint_rt__.finish(fib, impl__bound_4, 'fib', 'mod.fib')
    fib__traced_wrapper_3 = fib__trace_factory_2(fib__traced_1)
    fib = fib__traced_wrapper_3
    del fib__trace_factory_2
    __tracepoint_rt__.replay('mod.fib', __tracepoint_rt__.replay_target(fib, fib__traced_wrapper_3), 'fib')
"""

import ast
import copy
from typing import Hashable, List, Optional, Sequence

from ..analysis.classifier import identify
from ..analysis.hierarchy import Category, DEFINITION_CATEGORIES
from ..analysis.resolver import (
    canonical_name, decorator_callee, dotted_name, lookup,
)
from ..utils.helpers import (
    call, is_generator_body, literal, located, name, source_of,
)
from .context import Expansion, ExpansionContext
from .dump import DumpOverlay

_LOOPS = (ast.For, ast.AsyncFor, ast.While,
          ast.ListComp, ast.SetComp, ast.DictComp, ast.GeneratorExp)


def _template(source: str) -> ast.stmt:
    """Parse one statement and drop its positions so it inherits the form's."""
    node = ast.parse(source).body[0]
    for sub in ast.walk(node):
        for position in ('lineno', 'col_offset', 'end_lineno', 'end_col_offset'):
            if hasattr(sub, position):
                delattr(sub, position)
    return node


def _placeholder_arguments(arguments: ast.arguments, unsupplied: ast.expr) -> ast.arguments:
    """Same parameters, no annotations, every default replaced by ``unsupplied``.

    Parameters left at ``unsupplied`` are dropped before the call is recorded,
    so the renamed original applies its own defaults, evaluated once and in
    the original scope.
    """
    result = copy.deepcopy(arguments)
    params = result.posonlyargs + result.args + result.kwonlyargs
    for param in params + [result.vararg, result.kwarg]:
        if param is not None:
            param.annotation = None
            param.type_comment = None
    result.defaults = [copy.deepcopy(unsupplied) for _ in result.defaults]
    result.kw_defaults = [
        None if default is None else copy.deepcopy(unsupplied)
        for default in result.kw_defaults
    ]
    return result


def _forwarded(arguments: ast.arguments):
    """Tuple/dict expressions that pass every parameter through, plus the positional names."""
    positional: List[ast.expr] = [name(p.arg) for p in arguments.posonlyargs + arguments.args]
    if arguments.vararg is not None:
        positional.append(ast.Starred(value=name(arguments.vararg.arg), ctx=ast.Load()))
    keys: List[Optional[ast.expr]] = [ast.Constant(value=p.arg) for p in arguments.kwonlyargs]
    values: List[ast.expr] = [name(p.arg) for p in arguments.kwonlyargs]
    if arguments.kwarg is not None:
        keys.append(None)
        values.append(name(arguments.kwarg.arg))
    names = ast.Tuple(
        elts=[ast.Constant(value=p.arg) for p in arguments.posonlyargs + arguments.args],
        ctx=ast.Load(),
    )
    return ast.Tuple(elts=positional, ctx=ast.Load()), ast.Dict(keys=keys, values=values), names


class Generator:
    """
    Per-category code generation at a fixed trace level.

    Usage:
        >>> ctx = ExpansionContext(namespace={}, module='demo', runtime='__tracepoint_rt__')
        >>> node = ast.parse('def square(x): return x * x').body[0]
        >>> expansion = Generator(2, ctx).generate(Category.PLAIN_DEFINITION, node)
        >>> print(ast.unparse(ast.Module(body=expansion.replacement, type_ignores=[])))
    """

    def __init__(self, level: int, ctx: ExpansionContext):
        self.level = level
        self.ctx = ctx
        self.dump = DumpOverlay(level, ctx)

    def generate(
        self,
        category: Category,
        node: ast.AST,
        outer_decorators: Sequence[ast.expr] = (),
    ) -> Expansion:
        category = self._fit(category, node)
        handler = getattr(self, f'_gen_{category.name.lower()}')
        return handler(node, list(outer_decorators))

    @staticmethod
    def _fit(category: Category, node: ast.AST) -> Category:
        """Fall back to DEFAULT when the node's shape does not match its category."""
        if category in DEFINITION_CATEGORIES:
            ok = isinstance(node, (ast.FunctionDef, ast.AsyncFunctionDef))
        elif category is Category.ANONYMOUS_CALLBACK:
            ok = isinstance(node, ast.Lambda)
        elif category is Category.EVENT_HANDLER_REGISTRATION:
            ok = isinstance(node, ast.Call)
        elif category is Category.LOOP_CONSTRUCT:
            ok = isinstance(node, _LOOPS)
        else:
            ok = True
        return category if ok else Category.DEFAULT

    # ---- Definitions ----

    def _gen_plain_definition(self, node, outer) -> Expansion:
        key = self.ctx.qualified(node.name)
        return Expansion(self._define(node, key, node.name, node.name, outer))

    def _gen_guarded_definition(self, node, outer) -> Expansion:
        # Contract decorators stay on node.decorator_list and end up on the
        # public wrapper; the renamed original is a plain def.
        key = self.ctx.qualified(node.name)
        return Expansion(self._define(node, key, node.name, node.name, outer))

    def _gen_multi_dispatch_implementation(self, node, outer) -> Expansion:
        decorator = node.decorator_list[0]
        callee = decorator_callee(decorator)
        if (isinstance(callee, ast.Attribute) and callee.attr == 'register'
                and dotted_name(callee.value) is not None):
            generic_token = dotted_name(callee.value)
            generic = self._generic_identity(generic_token)
            replay_name = generic_token.rpartition('.')[2]
        else:
            _, generic = identify(node, self.ctx.namespace)
            replay_name = node.name
        key = (generic, self._discriminant(decorator, node))
        return Expansion(self._define(node, key, node.name, replay_name, outer))

    def _generic_identity(self, token: str) -> str:
        try:
            identity = canonical_name(lookup(token, self.ctx.namespace))
        except LookupError:
            identity = None
        return identity or self.ctx.qualified(token)

    @staticmethod
    def _discriminant(decorator: ast.expr, node) -> Optional[str]:
        if isinstance(decorator, ast.Call):
            if decorator.args:
                return source_of(decorator.args[0])
            for kw in decorator.keywords:
                if kw.arg == 'cls':
                    return source_of(kw.value)
        for param in node.args.posonlyargs + node.args.args:
            if param.annotation is not None:
                return source_of(param.annotation)
        return None

    def _define(
        self,
        node,
        key: Hashable,
        public: str,
        replay_name: str,
        outer: List[ast.expr],
    ) -> List[ast.stmt]:
        ctx = self.ctx
        rt = ctx.runtime
        impl_name = ctx.fresh(public, 'traced')
        factory_name = ctx.fresh(public, 'trace_factory')
        raw_name = ctx.fresh(public, 'traced_wrapper')
        bound = ctx.fresh('impl', 'bound')
        is_coroutine = (
            isinstance(node, ast.AsyncFunctionDef) and not is_generator_body(node.body)
        )

        # a. forward declaration
        declare = _template(
            f'{public} = {rt}.declare(locals().get({ctx.mangled(public)!r}), {public!r})'
        )

        # b. renamed original
        impl = copy.deepcopy(node)
        impl.name = impl_name
        impl.decorator_list = []

        # c. wrapper, built inside a factory and installed publicly
        args_tuple, kwargs_dict, positional = _forwarded(node.args)
        if is_coroutine:
            wrapper = _template(f'async def {public}(): pass')
            invocation = ast.Await(value=call(
                ctx.rt('invoke_async'), name(bound), ast.Constant(value=self.level),
                literal(key), args_tuple, kwargs_dict, positional,
            ))
        else:
            wrapper = _template(f'def {public}(): pass')
            invocation = call(
                ctx.rt('invoke'), name(bound), ast.Constant(value=self.level),
                literal(key), args_tuple, kwargs_dict, positional,
            )
        wrapper.args = _placeholder_arguments(node.args, ctx.rt('UNSUPPLIED'))
        wrapper.body = [ast.Return(value=invocation)]

        factory = _template(f'def {factory_name}({bound}): pass')
        factory.body = [
            wrapper,
            ast.Return(value=call(
                ctx.rt('finish'), name(public), name(bound),
                ast.Constant(value=public), literal(key),
            )),
        ]
        install_raw = _template(f'{raw_name} = {factory_name}({impl_name})')
        public_value: ast.expr = name(raw_name)
        for decorator in reversed(outer + node.decorator_list):
            public_value = call(copy.deepcopy(decorator), public_value)
        install_public = ast.Assign(targets=[name(public, store=True)], value=public_value)
        cleanup = _template(f'del {factory_name}')

        # d. replay
        replay = _template(
            f'{rt}.replay({key!r}, {rt}.replay_target({public}, {raw_name}), {replay_name!r})'
        )
        return located(
            [declare, impl, factory, install_raw, install_public, cleanup, replay],
            node,
        )

    # ---- Callbacks and registrations ----

    def _gen_anonymous_callback(self, node: ast.Lambda, outer) -> Expansion:
        return Expansion(call(
            self.ctx.rt('traced_callback'),
            ast.Constant(value=self.level),
            ast.Constant(value=source_of(node)),
            node,
        ))

    def _gen_event_handler_registration(self, node: ast.Call, outer) -> Expansion:
        if not node.args or not isinstance(node.args[-1], ast.Lambda):
            return Expansion(node)
        callback = node.args[-1]
        token, identity = identify(node, self.ctx.namespace)
        handler_id = source_of(node.args[0]) if len(node.args) > 1 else None
        key = (identity, handler_id, self.ctx.scope_identity)

        handler_name = self.ctx.fresh(token.rpartition('.')[2], 'handler')
        handler = _template(f'def {handler_name}(): pass')
        handler.args = copy.deepcopy(callback.args)
        handler.body = [ast.Return(value=copy.deepcopy(callback.body))]
        ast.copy_location(handler, callback)

        statements = self._define(handler, key, handler_name, handler_name, [])
        registration = copy.deepcopy(node)
        registration.args[-1] = name(handler_name)
        return Expansion(registration, hoisted=statements)

    # ---- Dump overlay ----

    def _gen_loop_construct(self, node, outer) -> Expansion:
        return self.dump.loop(node)

    def _gen_default(self, node, outer) -> Expansion:
        return self.dump.form(node, outer)
