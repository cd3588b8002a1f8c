"""Quarantine policy — a boolean expression evaluated once per finding.

The expression language is the side-effect-free subset of Python
expressions: literals, comparisons (including ``in``), boolean and
arithmetic operators, conditional expressions, comprehensions, attribute and
item access, and a few pure builtins. Two names are bound for each finding:

- ``fullMatch``: the :class:`ScanFinding` itself;
- ``matches``: its sub-matches (list of :class:`SubMatch`).

Examples::

    fullMatch.score >= 80
    any(m.subscore > 70 and "MAL" in m.tags for m in matches)
    fullMatch.context.ext in (".exe", ".dll") or fullMatch.level == "Alert"
"""

import ast
import operator
from dataclasses import dataclass, field
from typing import Generator, Iterator

from ..models.finding import ScanFinding, SubMatch
from ..utils.logging import get_logger

logger = get_logger("engine.policy")

CONTEXT_NAMES = frozenset({"fullMatch", "matches"})

SAFE_FUNCTIONS = {
    "abs": abs,
    "all": all,
    "any": any,
    "bool": bool,
    "float": float,
    "int": int,
    "len": len,
    "max": max,
    "min": min,
    "set": set,
    "sorted": sorted,
    "str": str,
    "sum": sum,
}

# str/list methods callable on values from the context
SAFE_METHODS = frozenset({
    "count",
    "endswith",
    "lower",
    "startswith",
    "strip",
    "upper",
})

# reach arbitrary attributes through replacement fields
_BLOCKED_ATTRIBUTES = frozenset({"format", "format_map"})

_BIN_OPS = {
    ast.Add: operator.add,
    ast.Sub: operator.sub,
    ast.Mult: operator.mul,
    ast.Div: operator.truediv,
    ast.FloorDiv: operator.floordiv,
    ast.Mod: operator.mod,
}

_UNARY_OPS = {
    ast.Not: operator.not_,
    ast.USub: operator.neg,
    ast.UAdd: operator.pos,
}

_COMPARE_OPS = {
    ast.Eq: operator.eq,
    ast.NotEq: operator.ne,
    ast.Lt: operator.lt,
    ast.LtE: operator.le,
    ast.Gt: operator.gt,
    ast.GtE: operator.ge,
    ast.In: lambda a, b: a in b,
    ast.NotIn: lambda a, b: a not in b,
    ast.Is: operator.is_,
    ast.IsNot: operator.is_not,
}

_ALLOWED_NODES = (
    ast.Expression,
    ast.BoolOp, ast.And, ast.Or,
    ast.UnaryOp, *_UNARY_OPS,
    ast.BinOp, *_BIN_OPS,
    ast.Compare, *_COMPARE_OPS,
    ast.IfExp,
    ast.Call, ast.keyword,
    ast.Attribute, ast.Subscript, ast.Slice,
    ast.Name, ast.Load, ast.Store,
    ast.Constant,
    ast.List, ast.Tuple, ast.Set, ast.Dict,
    ast.GeneratorExp, ast.ListComp, ast.SetComp, ast.comprehension,
)


class PolicyError(Exception):
    """The expression does not compile or does not yield a boolean."""


class PolicyEvaluationError(Exception):
    """Evaluating the expression against one finding failed."""


@dataclass
class PolicyContext:
    """Values bound into the expression for exactly one finding."""

    fullMatch: ScanFinding = field(default_factory=ScanFinding)
    matches: list[SubMatch] = field(default_factory=list)

    @classmethod
    def for_finding(cls, finding: ScanFinding) -> "PolicyContext":
        return cls(fullMatch=finding, matches=list(finding.sub_matches))


def _check_tree(tree: ast.AST) -> None:
    """Reject any construct outside the expression subset, or unknown names.

    Functions and methods may only appear as the callee of a call, and
    comprehension variables may not shadow a bound name, so no callable
    other than the whitelisted ones can ever be invoked.
    """
    callees = {id(node.func) for node in ast.walk(tree) if isinstance(node, ast.Call)}
    reserved = CONTEXT_NAMES | SAFE_FUNCTIONS.keys()
    bound = set()
    for node in ast.walk(tree):
        if isinstance(node, ast.Name) and isinstance(node.ctx, ast.Store):
            if node.id in reserved:
                raise PolicyError(f"cannot rebind name: {node.id}")
            bound.add(node.id)

    for node in ast.walk(tree):
        if not isinstance(node, _ALLOWED_NODES):
            raise PolicyError(f"unsupported syntax: {type(node).__name__}")
        if isinstance(node, ast.Name):
            if node.id not in reserved and node.id not in bound:
                raise PolicyError(f"unknown name: {node.id}")
            if node.id in SAFE_FUNCTIONS and id(node) not in callees:
                raise PolicyError(f"function used as a value: {node.id}")
        if isinstance(node, ast.Attribute):
            if node.attr.startswith("_"):
                raise PolicyError(f"private attribute access: {node.attr}")
            if node.attr in _BLOCKED_ATTRIBUTES:
                raise PolicyError(f"attribute not allowed: {node.attr}")
            if node.attr in SAFE_METHODS and id(node) not in callees:
                raise PolicyError(f"method used as a value: {node.attr}")
        if isinstance(node, ast.keyword) and node.arg is None:
            raise PolicyError("keyword unpacking not allowed")
        if isinstance(node, ast.Call):
            func = node.func
            if isinstance(func, ast.Name) and func.id in SAFE_FUNCTIONS:
                continue
            if isinstance(func, ast.Attribute) and func.attr in SAFE_METHODS:
                continue
            raise PolicyError(f"call not allowed: {ast.unparse(func)}")


class _Evaluator:
    """Walks a checked expression tree. Never compiles or execs Python code."""

    def __init__(self, names: dict):
        self._names = names

    def eval(self, node: ast.AST, scope: dict):
        method = getattr(self, f"_eval_{type(node).__name__}", None)
        if method is None:
            raise PolicyEvaluationError(f"unsupported syntax: {type(node).__name__}")
        return method(node, scope)

    def _eval_Expression(self, node, scope):
        return self.eval(node.body, scope)

    def _eval_Constant(self, node, scope):
        return node.value

    def _eval_Name(self, node, scope):
        if node.id in scope:
            return scope[node.id]
        return self._names[node.id]

    def _eval_Attribute(self, node, scope):
        value = getattr(self.eval(node.value, scope), node.attr)
        if callable(value):
            raise PolicyEvaluationError(f"method used as a value: {node.attr}")
        return value

    def _eval_Subscript(self, node, scope):
        return self.eval(node.value, scope)[self.eval(node.slice, scope)]

    def _eval_Slice(self, node, scope):
        return slice(
            self.eval(node.lower, scope) if node.lower else None,
            self.eval(node.upper, scope) if node.upper else None,
            self.eval(node.step, scope) if node.step else None,
        )

    def _eval_BoolOp(self, node, scope):
        result = None
        for operand in node.values:
            result = self.eval(operand, scope)
            if isinstance(node.op, ast.And) and not result:
                return result
            if isinstance(node.op, ast.Or) and result:
                return result
        return result

    def _eval_UnaryOp(self, node, scope):
        return _UNARY_OPS[type(node.op)](self.eval(node.operand, scope))

    def _eval_BinOp(self, node, scope):
        return _BIN_OPS[type(node.op)](self.eval(node.left, scope), self.eval(node.right, scope))

    def _eval_Compare(self, node, scope):
        left = self.eval(node.left, scope)
        for op, comparator in zip(node.ops, node.comparators):
            right = self.eval(comparator, scope)
            if not _COMPARE_OPS[type(op)](left, right):
                return False
            left = right
        return True

    def _eval_IfExp(self, node, scope):
        if self.eval(node.test, scope):
            return self.eval(node.body, scope)
        return self.eval(node.orelse, scope)

    def _eval_Call(self, node, scope):
        func = node.func
        if isinstance(func, ast.Name):
            target = SAFE_FUNCTIONS[func.id]
        else:
            target = getattr(self.eval(func.value, scope), func.attr)
        args = [self.eval(arg, scope) for arg in node.args]
        kwargs = {kw.arg: self.eval(kw.value, scope) for kw in node.keywords}
        return target(*args, **kwargs)

    def _eval_List(self, node, scope):
        return [self.eval(elt, scope) for elt in node.elts]

    def _eval_Tuple(self, node, scope):
        return tuple(self.eval(elt, scope) for elt in node.elts)

    def _eval_Set(self, node, scope):
        return {self.eval(elt, scope) for elt in node.elts}

    def _eval_Dict(self, node, scope):
        return {self.eval(k, scope): self.eval(v, scope) for k, v in zip(node.keys, node.values)}

    def _eval_GeneratorExp(self, node, scope):
        return (self.eval(node.elt, inner) for inner in self._scopes(node.generators, scope))

    def _eval_ListComp(self, node, scope):
        return [self.eval(node.elt, inner) for inner in self._scopes(node.generators, scope)]

    def _eval_SetComp(self, node, scope):
        return {self.eval(node.elt, inner) for inner in self._scopes(node.generators, scope)}

    def _scopes(self, generators: list, scope: dict) -> Iterator[dict]:
        """Yield one variable scope per iteration of nested comprehension clauses."""
        first, rest = generators[0], generators[1:]
        for item in self.eval(first.iter, scope):
            inner = dict(scope)
            self._bind(first.target, item, inner)
            if not all(self.eval(cond, inner) for cond in first.ifs):
                continue
            if rest:
                yield from self._scopes(rest, inner)
            else:
                yield inner

    def _bind(self, target: ast.AST, value, scope: dict) -> None:
        if isinstance(target, ast.Name):
            scope[target.id] = value
        elif isinstance(target, (ast.Tuple, ast.List)):
            values = list(value)
            if len(values) != len(target.elts):
                raise PolicyEvaluationError("cannot unpack comprehension item")
            for elt, item in zip(target.elts, values):
                self._bind(elt, item, scope)
        else:
            raise PolicyEvaluationError(f"unsupported target: {type(target).__name__}")


class PolicyExpression:
    """A parsed quarantine expression. Immutable after construction."""

    def __init__(self, source: str) -> None:
        self.source = source.strip()
        try:
            tree = ast.parse(self.source, mode="eval")
        except SyntaxError as exc:
            raise PolicyError(f"expression error: {exc.msg}") from exc
        _check_tree(tree)
        self._tree = tree

    def run(self, context: PolicyContext):
        """Evaluate and return the raw result."""
        evaluator = _Evaluator({"fullMatch": context.fullMatch, "matches": context.matches})
        try:
            result = evaluator.eval(self._tree, {})
            if isinstance(result, Generator):
                result = list(result)
            return result
        except PolicyEvaluationError:
            raise
        except Exception as exc:
            raise PolicyEvaluationError(f"failed to run expression: {exc}") from exc

    def evaluate(self, context: PolicyContext) -> bool:
        """Evaluate for one finding. Non-boolean results are an evaluation error."""
        result = self.run(context)
        if not isinstance(result, bool):
            raise PolicyEvaluationError(
                f"expression returned {type(result).__name__}, expected bool"
            )
        return result

    def validate(self) -> None:
        """Run once against an empty finding; the result must be a bool."""
        try:
            result = self.run(PolicyContext())
        except PolicyEvaluationError as exc:
            raise PolicyError(f"expression error: {exc}") from exc
        if not isinstance(result, bool):
            raise PolicyError("expression error: not a bool expression")

    def __repr__(self) -> str:
        return f"PolicyExpression({self.source!r})"


def compile_policy(source: str) -> PolicyExpression:
    """Compile and validate a quarantine expression. Raises PolicyError."""
    expression = PolicyExpression(source)
    expression.validate()
    logger.debug("policy_compiled", expression=expression.source)
    return expression
