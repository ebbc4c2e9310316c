"""Sandboxed interpreter for script calculations.

Scripts are written in a small subset of Python and run by walking the
parsed syntax tree; they are never compiled or exec'd. The body is treated as
a function body: the first executed `return` gives the result.

Sandbox contract:
- The only names visible are `inputs` (a private deep copy of the dependency
  values), the script's own locals and the whitelisted pure functions below.
- No imports, function or class definitions, lambdas, try/with, global state,
  attribute access other than a fixed set of read-only/collection methods,
  and no dunder or underscore-prefixed names.
- Every evaluated node costs one step. Exceeding the step budget or the
  wall-clock deadline raises ScriptBudgetExceededError.
- Strings, lists and integers are capped in size so a single step cannot
  allocate unbounded memory. Operations that build a new value (operators,
  str(), list methods, str.replace) are checked against the caps before
  they run, not after.

Example:
    rate = 0.66 if inputs["years"] > 2 else 0.5
    return min(inputs["salary"] * rate, 1200)
"""

from __future__ import annotations

import ast
import copy
import logging
import textwrap
import time
from collections.abc import Callable, Iterator, Mapping
from decimal import ROUND_CEILING, ROUND_FLOOR, ROUND_HALF_UP, Decimal
from functools import lru_cache
from typing import Any

from slotengine.config import DEFAULT_SCRIPT_MAX_STEPS, DEFAULT_SCRIPT_TIMEOUT_MS, EngineConfig
from slotengine.errors import (
    ScriptBudgetExceededError,
    ScriptExecutionError,
    ScriptSandboxError,
)

logger = logging.getLogger(__name__)

MAX_SEQUENCE_LENGTH = 100_000
MAX_INT_BITS = 4096
MAX_INT_DIGITS = MAX_INT_BITS * 3 // 10
MAX_SCRIPT_LENGTH = 20_000
MAX_RESULT_SIZE = 1_000_000

_WRAPPER_NAME = "script_body"

_ALLOWED_NODES: tuple[type[ast.AST], ...] = (
    # statements
    ast.Assign,
    ast.AugAssign,
    ast.If,
    ast.For,
    ast.While,
    ast.Break,
    ast.Continue,
    ast.Return,
    ast.Expr,
    ast.Pass,
    # expressions
    ast.Constant,
    ast.Name,
    ast.BinOp,
    ast.UnaryOp,
    ast.BoolOp,
    ast.Compare,
    ast.IfExp,
    ast.Call,
    ast.keyword,
    ast.Attribute,
    ast.Subscript,
    ast.Slice,
    ast.List,
    ast.Tuple,
    ast.Dict,
    ast.Set,
    ast.ListComp,
    ast.SetComp,
    ast.DictComp,
    ast.GeneratorExp,
    ast.comprehension,
    # contexts and operators
    ast.Load,
    ast.Store,
    ast.Add,
    ast.Sub,
    ast.Mult,
    ast.Div,
    ast.FloorDiv,
    ast.Mod,
    ast.Pow,
    ast.USub,
    ast.UAdd,
    ast.Not,
    ast.And,
    ast.Or,
    ast.Eq,
    ast.NotEq,
    ast.Lt,
    ast.LtE,
    ast.Gt,
    ast.GtE,
    ast.In,
    ast.NotIn,
    ast.Is,
    ast.IsNot,
)

_ALLOWED_METHODS: tuple[tuple[type, frozenset[str]], ...] = (
    (dict, frozenset({"get", "keys", "values", "items"})),
    (list, frozenset({"append", "extend", "pop", "insert", "index", "count"})),
    (str, frozenset({"lower", "upper", "strip", "startswith", "endswith", "split", "replace"})),
    (tuple, frozenset({"index", "count"})),
)


_ITERABLE_TYPES: tuple[type, ...] = (
    list,
    tuple,
    range,
    str,
    set,
    frozenset,
    dict,
    type({}.keys()),
    type({}.values()),
    type({}.items()),
)


class _Return(Exception):
    def __init__(self, value: Any) -> None:
        self.value = value


class _Break(Exception):
    pass


class _Continue(Exception):
    pass


def _to_decimal(value: Any) -> Any:
    """float() replacement: numbers stay exact as Decimal."""
    if isinstance(value, Decimal):
        return value
    if isinstance(value, float):
        return Decimal(repr(value))
    if isinstance(value, (int, str)) and not isinstance(value, bool):
        return Decimal(str(value).strip())
    raise ScriptExecutionError(f"Cannot convert {type(value).__name__} to a number")


def _integral(value: Decimal) -> int:
    if value.is_finite() and value.adjusted() > MAX_INT_DIGITS:
        raise ScriptSandboxError("Integer result too large")
    return int(value)


def _int(value: Any = 0, *args: Any) -> int:
    if isinstance(value, Decimal):
        return _integral(value)
    return int(value, *args)


def _round(value: Any, places: int = 0) -> Any:
    """round() with half-away-from-zero, on Decimal."""
    result = _to_decimal(value).quantize(Decimal(1).scaleb(-places), rounding=ROUND_HALF_UP)
    return _integral(result) if places == 0 else result


def _floor(value: Any) -> int:
    return _integral(_to_decimal(value).to_integral_value(rounding=ROUND_FLOOR))


def _ceil(value: Any) -> int:
    return _integral(_to_decimal(value).to_integral_value(rounding=ROUND_CEILING))


def _range(*args: int) -> range:
    result = range(*args)
    if len(result) > MAX_SEQUENCE_LENGTH:
        raise ScriptSandboxError(f"range() longer than {MAX_SEQUENCE_LENGTH} items")
    return result


def _sum(values: Any, start: Any = 0) -> Any:
    if isinstance(start, bool) or not isinstance(start, (int, Decimal)):
        raise ScriptSandboxError("sum() only adds numbers")
    return sum(values, start)


def _str(value: Any = "") -> str:
    if not isinstance(value, str):
        _check_rendered_size(value, "str() result")
    return str(value)


SAFE_FUNCTIONS: dict[str, Callable[..., Any]] = {
    "abs": abs,
    "all": all,
    "any": any,
    "bool": bool,
    "ceil": _ceil,
    "dict": dict,
    "float": _to_decimal,
    "floor": _floor,
    "int": _int,
    "len": len,
    "list": list,
    "max": max,
    "min": min,
    "range": _range,
    "round": _round,
    "sorted": sorted,
    "str": _str,
    "sum": _sum,
}

_SAFE_CALLABLE_IDS = frozenset(id(fn) for fn in SAFE_FUNCTIONS.values())


def _normalize(value: Any) -> Any:
    """Recursively replace floats with Decimal so arithmetic never mixes the two."""
    if isinstance(value, float):
        return Decimal(repr(value))
    if isinstance(value, dict):
        return {k: _normalize(v) for k, v in value.items()}
    if isinstance(value, list):
        return [_normalize(v) for v in value]
    if isinstance(value, tuple):
        return tuple(_normalize(v) for v in value)
    return value


class _StaticChecker(ast.NodeVisitor):
    """Rejects syntax outside the sandbox subset before anything runs."""

    def generic_visit(self, node: ast.AST) -> None:
        if not isinstance(node, _ALLOWED_NODES):
            raise ScriptSandboxError(
                f"Unsupported syntax in script: {type(node).__name__}"
                + (f" (line {node.lineno - 1})" if hasattr(node, "lineno") else "")
            )
        super().generic_visit(node)

    def visit_Name(self, node: ast.Name) -> None:
        if node.id.startswith("_"):
            raise ScriptSandboxError(f"Name {node.id!r} is not accessible in scripts")
        self.generic_visit(node)

    def visit_Attribute(self, node: ast.Attribute) -> None:
        if node.attr.startswith("_"):
            raise ScriptSandboxError(f"Attribute {node.attr!r} is not accessible in scripts")
        self.generic_visit(node)

    def visit_Constant(self, node: ast.Constant) -> None:
        if isinstance(node.value, (bytes, complex)) or node.value is Ellipsis:
            raise ScriptSandboxError(f"Unsupported literal: {node.value!r}")
        self.generic_visit(node)


@lru_cache(maxsize=256)
def compile_script(code: str) -> tuple[ast.stmt, ...]:
    """Parse and statically check a script body (cached).

    Raises:
        ScriptSandboxError: On syntax errors or disallowed constructs.
    """
    if not code.strip():
        raise ScriptSandboxError("Script is empty")
    if len(code) > MAX_SCRIPT_LENGTH:
        raise ScriptSandboxError(f"Script exceeds {MAX_SCRIPT_LENGTH} characters")

    source = f"def {_WRAPPER_NAME}():\n" + textwrap.indent(textwrap.dedent(code), "    ")
    try:
        module = ast.parse(source, mode="exec")
    except SyntaxError as e:
        line = (e.lineno or 1) - 1
        raise ScriptSandboxError(f"Script syntax error: {e.msg} (line {line})") from e
    except (RecursionError, MemoryError) as e:
        raise ScriptSandboxError("Script is nested too deeply") from e

    wrapper = module.body[0]
    if not isinstance(wrapper, ast.FunctionDef) or len(module.body) != 1:
        raise ScriptSandboxError("Script must be a single function body")

    checker = _StaticChecker()
    for statement in wrapper.body:
        checker.visit(statement)
    return tuple(wrapper.body)


class _Frame:
    """Execution state of one script run."""

    def __init__(self, inputs: Mapping[str, Any], max_steps: int, deadline: float) -> None:
        self.variables: dict[str, Any] = {"inputs": _normalize(copy.deepcopy(dict(inputs)))}
        self.steps = 0
        self._max_steps = max_steps
        self._deadline = deadline

    def tick(self) -> None:
        self.steps += 1
        if self.steps > self._max_steps:
            raise ScriptBudgetExceededError("step limit", self.steps)
        if time.monotonic() > self._deadline:
            raise ScriptBudgetExceededError("time limit", self.steps)

    # statements

    def run_block(self, statements: tuple[ast.stmt, ...] | list[ast.stmt]) -> None:
        for statement in statements:
            self.run_statement(statement)

    def run_statement(self, node: ast.stmt) -> None:
        self.tick()
        if isinstance(node, ast.Return):
            raise _Return(self.eval(node.value) if node.value is not None else None)
        if isinstance(node, ast.Assign):
            value = self.eval(node.value)
            for target in node.targets:
                self.assign(target, value)
        elif isinstance(node, ast.AugAssign):
            current = self.eval(_as_load(node.target))
            self.assign(node.target, self.binary(node.op, current, self.eval(node.value)))
        elif isinstance(node, ast.If):
            self.run_block(node.body if self.eval(node.test) else node.orelse)
        elif isinstance(node, ast.For):
            self.run_for(node)
        elif isinstance(node, ast.While):
            self.run_while(node)
        elif isinstance(node, ast.Break):
            raise _Break()
        elif isinstance(node, ast.Continue):
            raise _Continue()
        elif isinstance(node, ast.Expr):
            self.eval(node.value)
        elif not isinstance(node, ast.Pass):
            raise ScriptSandboxError(f"Unsupported statement: {type(node).__name__}")

    def run_for(self, node: ast.For) -> None:
        completed = True
        for item in self.iterate(self.eval(node.iter)):
            self.tick()
            self.assign(node.target, item)
            try:
                self.run_block(node.body)
            except _Continue:
                continue
            except _Break:
                completed = False
                break
        if completed:
            self.run_block(node.orelse)

    def run_while(self, node: ast.While) -> None:
        completed = True
        while self.eval(node.test):
            try:
                self.run_block(node.body)
            except _Continue:
                continue
            except _Break:
                completed = False
                break
        if completed:
            self.run_block(node.orelse)

    def assign(self, target: ast.expr, value: Any) -> None:
        if isinstance(target, ast.Name):
            self.variables[target.id] = value
        elif isinstance(target, (ast.Tuple, ast.List)):
            items = list(self.iterate(value))
            if len(items) != len(target.elts):
                raise ScriptExecutionError(
                    f"Cannot unpack {len(items)} values into {len(target.elts)} names"
                )
            for element, item in zip(target.elts, items, strict=True):
                self.assign(element, item)
        elif isinstance(target, ast.Subscript):
            container = self.eval(target.value)
            if not isinstance(container, (dict, list)):
                raise ScriptSandboxError("Only lists and dicts support item assignment")
            key = self.eval(target.slice)
            if isinstance(key, slice):
                raise ScriptSandboxError("Slice assignment is not supported")
            container[key] = value
        else:
            raise ScriptSandboxError(f"Unsupported assignment target: {type(target).__name__}")

    def iterate(self, value: Any) -> Iterator[Any]:
        if isinstance(value, _ITERABLE_TYPES):
            return iter(list(value))
        raise ScriptExecutionError(f"{type(value).__name__} is not iterable")

    # expressions

    def eval(self, node: ast.expr) -> Any:
        self.tick()
        if isinstance(node, ast.Constant):
            return Decimal(repr(node.value)) if isinstance(node.value, float) else node.value
        if isinstance(node, ast.Name):
            return self.load_name(node.id)
        if isinstance(node, ast.BinOp):
            return self.binary(node.op, self.eval(node.left), self.eval(node.right))
        if isinstance(node, ast.UnaryOp):
            operand = self.eval(node.operand)
            if isinstance(node.op, ast.Not):
                return not operand
            if isinstance(node.op, ast.USub):
                return -operand
            return +operand
        if isinstance(node, ast.BoolOp):
            return self.boolean(node)
        if isinstance(node, ast.Compare):
            return self.compare(node)
        if isinstance(node, ast.IfExp):
            return self.eval(node.body) if self.eval(node.test) else self.eval(node.orelse)
        if isinstance(node, ast.Call):
            return self.call(node)
        if isinstance(node, ast.Attribute):
            raise ScriptSandboxError("Attribute access is only allowed for method calls")
        if isinstance(node, ast.Subscript):
            return self.eval(node.value)[self.eval(node.slice)]
        if isinstance(node, ast.Slice):
            return slice(
                self.eval(node.lower) if node.lower is not None else None,
                self.eval(node.upper) if node.upper is not None else None,
                self.eval(node.step) if node.step is not None else None,
            )
        if isinstance(node, ast.List):
            return [self.eval(e) for e in node.elts]
        if isinstance(node, ast.Tuple):
            return tuple(self.eval(e) for e in node.elts)
        if isinstance(node, ast.Set):
            return {self.eval(e) for e in node.elts}
        if isinstance(node, ast.Dict):
            if any(k is None for k in node.keys):
                raise ScriptSandboxError("Dict unpacking is not supported")
            return {
                self.eval(k): self.eval(v)  # type: ignore[arg-type]
                for k, v in zip(node.keys, node.values, strict=True)
            }
        if isinstance(node, (ast.ListComp, ast.GeneratorExp)):
            return [item for item in self.comprehend(node.generators, node.elt)]
        if isinstance(node, ast.SetComp):
            return set(self.comprehend(node.generators, node.elt))
        if isinstance(node, ast.DictComp):
            pair = ast.Tuple(elts=[node.key, node.value], ctx=ast.Load())
            return dict(self.comprehend(node.generators, pair))
        raise ScriptSandboxError(f"Unsupported expression: {type(node).__name__}")

    def load_name(self, name: str) -> Any:
        if name in self.variables:
            return self.variables[name]
        if name in SAFE_FUNCTIONS:
            return SAFE_FUNCTIONS[name]
        raise ScriptExecutionError(f"Name {name!r} is not defined")

    def comprehend(self, generators: list[ast.comprehension], element: ast.expr) -> list[Any]:
        saved = dict(self.variables)
        results: list[Any] = []
        try:
            self._comprehend_level(generators, 0, element, results)
        finally:
            self.variables = saved
        return results

    def _comprehend_level(
        self,
        generators: list[ast.comprehension],
        level: int,
        element: ast.expr,
        results: list[Any],
    ) -> None:
        if level == len(generators):
            results.append(self.eval(element))
            if len(results) > MAX_SEQUENCE_LENGTH:
                raise ScriptSandboxError(f"Comprehension longer than {MAX_SEQUENCE_LENGTH} items")
            return
        generator = generators[level]
        if generator.is_async:
            raise ScriptSandboxError("Async comprehensions are not supported")
        for item in self.iterate(self.eval(generator.iter)):
            self.tick()
            self.assign(generator.target, item)
            if all(self.eval(condition) for condition in generator.ifs):
                self._comprehend_level(generators, level + 1, element, results)

    def boolean(self, node: ast.BoolOp) -> Any:
        value: Any = None
        if isinstance(node.op, ast.And):
            for operand in node.values:
                value = self.eval(operand)
                if not value:
                    return value
            return value
        for operand in node.values:
            value = self.eval(operand)
            if value:
                return value
        return value

    def compare(self, node: ast.Compare) -> bool:
        left = self.eval(node.left)
        for op, comparator in zip(node.ops, node.comparators, strict=True):
            right = self.eval(comparator)
            if not _compare(op, left, right):
                return False
            left = right
        return True

    def binary(self, op: ast.operator, left: Any, right: Any) -> Any:
        _check_size(op, left, right)
        if isinstance(op, ast.Add):
            return left + right
        if isinstance(op, ast.Sub):
            return left - right
        if isinstance(op, ast.Mult):
            return left * right
        if isinstance(op, ast.Div):
            if isinstance(left, int) and isinstance(right, int):
                return Decimal(left) / Decimal(right)
            return left / right
        if isinstance(op, ast.FloorDiv):
            return left // right
        if isinstance(op, ast.Mod):
            return left % right
        if isinstance(op, ast.Pow):
            return left**right
        raise ScriptSandboxError(f"Unsupported operator: {type(op).__name__}")

    def call(self, node: ast.Call) -> Any:
        args = []
        for arg in node.args:
            if isinstance(arg, ast.Starred):
                raise ScriptSandboxError("Star arguments are not supported")
            args.append(self.eval(arg))
        kwargs = {}
        for keyword in node.keywords:
            if keyword.arg is None:
                raise ScriptSandboxError("Keyword unpacking is not supported")
            kwargs[keyword.arg] = self.eval(keyword.value)

        if isinstance(node.func, ast.Attribute):
            receiver = self.eval(node.func.value)
            method = node.func.attr
            for kind, methods in _ALLOWED_METHODS:
                if isinstance(receiver, kind) and method in methods:
                    _check_method_size(receiver, method, args)
                    return getattr(receiver, method)(*args, **kwargs)
            raise ScriptSandboxError(
                f"Method {method!r} is not allowed on {type(receiver).__name__}"
            )

        function = self.eval(node.func)
        if id(function) not in _SAFE_CALLABLE_IDS:
            raise ScriptSandboxError(f"{type(function).__name__} object is not callable")
        return function(*args, **kwargs)


def _as_load(target: ast.expr) -> ast.expr:
    """Re-read an augmented-assignment target as an expression."""
    if isinstance(target, ast.Name):
        return ast.Name(id=target.id, ctx=ast.Load())
    if isinstance(target, ast.Subscript):
        return ast.Subscript(value=target.value, slice=target.slice, ctx=ast.Load())
    raise ScriptSandboxError(f"Unsupported assignment target: {type(target).__name__}")


def _compare(op: ast.cmpop, left: Any, right: Any) -> bool:
    if isinstance(op, ast.Eq):
        return bool(left == right)
    if isinstance(op, ast.NotEq):
        return bool(left != right)
    if isinstance(op, ast.Lt):
        return bool(left < right)
    if isinstance(op, ast.LtE):
        return bool(left <= right)
    if isinstance(op, ast.Gt):
        return bool(left > right)
    if isinstance(op, ast.GtE):
        return bool(left >= right)
    if isinstance(op, ast.In):
        return left in right
    if isinstance(op, ast.NotIn):
        return left not in right
    if isinstance(op, (ast.Is, ast.IsNot)):
        if right is not None and left is not None:
            raise ScriptSandboxError("'is' comparisons are only allowed against None")
        same = left is right
        return same if isinstance(op, ast.Is) else not same
    raise ScriptSandboxError(f"Unsupported comparison: {type(op).__name__}")


def _check_size(op: ast.operator, left: Any, right: Any) -> None:
    """Refuse operations whose result would exceed the size caps."""
    sized = (str, list, tuple)
    if isinstance(op, ast.Add) and isinstance(left, sized) and isinstance(right, sized):
        if len(left) + len(right) > MAX_SEQUENCE_LENGTH:
            raise ScriptSandboxError(f"Sequence longer than {MAX_SEQUENCE_LENGTH} items")
    elif isinstance(op, ast.Mult):
        if isinstance(left, sized) and isinstance(right, int):
            length = len(left) * right
        elif isinstance(right, sized) and isinstance(left, int):
            length = len(right) * left
        else:
            length = 0
        if length > MAX_SEQUENCE_LENGTH:
            raise ScriptSandboxError(f"Sequence longer than {MAX_SEQUENCE_LENGTH} items")
        if isinstance(left, int) and isinstance(right, int):
            if left.bit_length() + right.bit_length() > MAX_INT_BITS:
                raise ScriptSandboxError("Integer result too large")
    elif isinstance(op, ast.Pow):
        if isinstance(right, (int, Decimal)) and abs(right) > 1000:
            raise ScriptSandboxError("Exponent too large")
        if isinstance(left, int) and isinstance(right, int) and right > 0:
            if max(left.bit_length(), 1) * right > MAX_INT_BITS:
                raise ScriptSandboxError("Integer result too large")
    elif isinstance(op, ast.Mod) and isinstance(left, str):
        raise ScriptSandboxError("String formatting with % is not supported")


def _check_method_size(receiver: Any, method: str, args: list[Any]) -> None:
    """Refuse list growth and str.replace results beyond the size caps."""
    if isinstance(receiver, list):
        if method in ("append", "insert"):
            grown = len(receiver) + 1
        elif method == "extend" and args:
            if not hasattr(args[0], "__len__"):
                raise ScriptSandboxError("extend() needs a sized collection")
            grown = len(receiver) + len(args[0])
        else:
            return
        if grown > MAX_SEQUENCE_LENGTH:
            raise ScriptSandboxError(f"List longer than {MAX_SEQUENCE_LENGTH} items")
    elif isinstance(receiver, str) and method == "replace" and len(args) >= 2:
        old, new = args[0], args[1]
        if not isinstance(old, str) or not isinstance(new, str):
            return
        occurrences = receiver.count(old)
        if len(args) > 2 and isinstance(args[2], int) and args[2] >= 0:
            occurrences = min(occurrences, args[2])
        if len(receiver) + occurrences * (len(new) - len(old)) > MAX_SEQUENCE_LENGTH:
            raise ScriptSandboxError(f"String longer than {MAX_SEQUENCE_LENGTH} characters")


_VIEW_TYPES = (type({}.keys()), type({}.values()), type({}.items()))


def _check_rendered_size(value: Any, what: str, limit: int = MAX_SEQUENCE_LENGTH) -> None:
    """Refuse values whose text form would be longer than `limit` characters.

    Containers are charged for their separators before their items are
    visited, so shared or self-referencing structures stop at the cap.
    """
    total = 0
    pending = [value]
    while pending:
        item = pending.pop()
        if isinstance(item, str):
            total += len(item) + 2
        elif isinstance(item, bool) or item is None:
            total += 5
        elif isinstance(item, int):
            total += item.bit_length() // 3 + 2
        elif isinstance(item, Decimal):
            total += len(item.as_tuple().digits) + 8
        elif isinstance(item, (list, tuple, set, frozenset, dict, *_VIEW_TYPES)):
            total += 2 + 2 * len(item)
            if total > limit:
                break
            if isinstance(item, dict):
                pending.extend(item.keys())
                pending.extend(item.values())
            else:
                pending.extend(item)
        else:
            total += 16
        if total > limit:
            break
    if total > limit:
        raise ScriptSandboxError(f"{what} longer than {limit} characters")


def _normalize_result(value: Any) -> Any:
    if isinstance(value, (set, frozenset, tuple)):
        return [_normalize_result(v) for v in value]
    if isinstance(value, dict):
        return {k: _normalize_result(v) for k, v in value.items()}
    if isinstance(value, list):
        return [_normalize_result(v) for v in value]
    if isinstance(value, range):
        return list(value)
    if isinstance(value, (str, int, Decimal, bool)) or value is None:
        return value
    raise ScriptExecutionError(f"Script returned unsupported type {type(value).__name__}")


class ScriptSandbox:
    """Runs script calculations under step and wall-clock budgets."""

    def __init__(
        self,
        max_steps: int = DEFAULT_SCRIPT_MAX_STEPS,
        timeout_seconds: float = DEFAULT_SCRIPT_TIMEOUT_MS / 1000,
    ) -> None:
        """Initialize the sandbox.

        Args:
            max_steps: Maximum interpreter steps per run.
            timeout_seconds: Wall-clock budget per run.
        """
        self._max_steps = max_steps
        self._timeout_seconds = timeout_seconds

    @classmethod
    def from_config(cls, config: EngineConfig) -> ScriptSandbox:
        """Build a sandbox from engine configuration."""
        return cls(
            max_steps=config.script_max_steps,
            timeout_seconds=config.script_timeout_seconds,
        )

    def run(self, code: str, inputs: Mapping[str, Any]) -> Any:
        """Run a script and return its result.

        Args:
            code: Script body.
            inputs: Dependency values, exposed to the script as `inputs`.

        Returns:
            The returned value (None if the script does not return).

        Raises:
            ScriptSandboxError: If the script uses disallowed constructs.
            ScriptBudgetExceededError: If the step or time budget is exhausted.
            ScriptExecutionError: If the script fails at runtime.
        """
        body = compile_script(code)
        frame = _Frame(inputs, self._max_steps, time.monotonic() + self._timeout_seconds)
        try:
            frame.run_block(body)
        except _Return as signal:
            _check_rendered_size(signal.value, "Script result", MAX_RESULT_SIZE)
            logger.debug("Script returned after %d steps", frame.steps)
            return _normalize_result(signal.value)
        except (_Break, _Continue) as e:
            raise ScriptSandboxError("'break'/'continue' outside a loop") from e
        except RecursionError as e:
            raise ScriptSandboxError("Script is nested too deeply") from e
        except (ArithmeticError, TypeError, ValueError, LookupError) as e:
            raise ScriptExecutionError(f"Script error: {type(e).__name__}: {e}") from e
        return None
