# safely/dal/binding.py
"""Pick the arguments a unit of work asks for.

Parameters are matched by annotation first, then by name:

* annotated with the runner class              -> the runner
* annotated with the locked row's mapped class -> the locked row
* annotated ``Session`` or named ``session``   -> the active session
* named ``row`` (or ``query`` for query targets) -> the locked row

``Optional[X]`` / ``X | None`` annotations are unwrapped. String annotations
that cannot be evaluated are compared by class name.
"""
from __future__ import annotations

import inspect
import logging
import re
import types
import typing
from typing import Any, Callable

from sqlalchemy.orm import Session

from safely.dal.targets import QUERY, LockTarget

log = logging.getLogger(__name__)

_SKIP = (inspect.Parameter.VAR_POSITIONAL, inspect.Parameter.VAR_KEYWORD)
_UNIONS = (typing.Union, types.UnionType)
_IDENTIFIER = re.compile(r"[A-Za-z_][\w.]*")
_WRAPPERS = {"Optional", "Union", "None"}


def _signature(fn: Callable) -> inspect.Signature:
    try:
        return inspect.signature(fn, eval_str=True)
    except (NameError, SyntaxError, TypeError, AttributeError):
        # forward references to names the callback's module does not define
        pass
    except ValueError:
        # builtins without an introspectable signature get no arguments
        return inspect.Signature()
    return inspect.signature(fn)


def _candidates(annotation) -> list:
    if annotation is inspect.Parameter.empty or annotation is typing.Any:
        return []
    if typing.get_origin(annotation) in _UNIONS:
        return [a for a in typing.get_args(annotation) if a is not type(None)]
    if isinstance(annotation, str):
        names = (name.rsplit(".", 1)[-1] for name in _IDENTIFIER.findall(annotation))
        return [name for name in names if name not in _WRAPPERS]
    return [annotation]


def annotation_matches(annotation, cls: type | None) -> bool:
    """True when ``annotation`` names ``cls`` or one of its base classes."""
    if cls is None:
        return False
    for candidate in _candidates(annotation):
        if isinstance(candidate, str):
            if candidate == cls.__name__:
                return True
        elif isinstance(candidate, type) and candidate is not object:
            try:
                if issubclass(cls, candidate):
                    return True
            except TypeError:
                continue
    return False


def _lookup(param: inspect.Parameter, runner, session: Session, target: LockTarget, row) -> tuple[bool, Any]:
    ann = param.annotation
    if annotation_matches(ann, type(runner)):
        return True, runner
    if target.is_set and annotation_matches(ann, target.row_type):
        return True, row
    if annotation_matches(ann, Session):
        return True, session
    if param.name == "session":
        return True, session
    if target.is_set and (param.name == "row" or (target.kind == QUERY and param.name == "query")):
        return True, row
    return False, None


def bind_arguments(fn: Callable, *, runner, session: Session, target: LockTarget, row=None) -> tuple[list, dict]:
    """Return ``(args, kwargs)`` for calling ``fn``.

    Unmatched parameters are left out so their defaults apply. An unmatched
    positional-only parameter without default stops positional binding.
    """
    args: list = []
    kwargs: dict = {}
    positional_open = True
    for param in _signature(fn).parameters.values():
        if param.kind in _SKIP:
            continue
        found, value = _lookup(param, runner, session, target, row)
        if param.kind is inspect.Parameter.POSITIONAL_ONLY:
            if not positional_open:
                continue
            if found:
                args.append(value)
            elif param.default is not inspect.Parameter.empty:
                args.append(param.default)
            else:
                positional_open = False
        elif found:
            kwargs[param.name] = value
    log.debug("bound %s: positional=%d keywords=%s", getattr(fn, "__qualname__", fn), len(args), sorted(kwargs))
    return args, kwargs
