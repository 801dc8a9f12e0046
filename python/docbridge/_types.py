from __future__ import annotations

import logging
from enum import Enum
from functools import lru_cache
from inspect import signature
from typing import TYPE_CHECKING, Any, Callable, ClassVar, Protocol, Union

if TYPE_CHECKING:
    from ._diff import TextDiff
    from ._node import Node, Slice

logger = logging.getLogger("docbridge")

#: Editor transaction meta key set on every edit dispatched by a [Bridge][docbridge.Bridge].
BRIDGE_META = "docbridge:bridge"

#: Editor transaction meta key controlling undo history recording.
ADD_TO_HISTORY_META = "addToHistory"

#: Editor transaction meta key marking edits that were applied from the replicated tree.
CRDT_SYNC_META = "docbridge:crdt-sync"

#: pycrdt transaction origin: text to structured tree direction.
ORIGIN_TEXT_TO_TREE = "docbridge:text-to-tree"

#: pycrdt transaction origin: structured tree to text direction.
ORIGIN_TREE_TO_TEXT = "docbridge:tree-to-text"

#: pycrdt transaction origin: bootstrap initialization.
ORIGIN_INIT = "docbridge:init"


class Reason(str, Enum):
    """Why an operation did not apply anything."""

    UNCHANGED = "unchanged"
    PARSE_ERROR = "parse-error"
    SERIALIZE_ERROR = "serialize-error"
    DETACHED = "detached"


class Result:
    """
    The outcome of a synchronization entry point.

    Entry points never raise for the conditions listed in [Reason][docbridge.Reason],
    they return a failed result instead and leave every representation untouched.
    """

    __slots__ = ("ok", "reason")

    ok: bool
    reason: Reason | None

    OK: ClassVar[Result]
    UNCHANGED: ClassVar[Result]
    PARSE_ERROR: ClassVar[Result]
    SERIALIZE_ERROR: ClassVar[Result]
    DETACHED: ClassVar[Result]

    def __init__(self, ok: bool, reason: Reason | None = None) -> None:
        self.ok = ok
        self.reason = reason

    @classmethod
    def failed(cls, reason: Reason) -> Result:
        return cls(False, reason)

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, Result):
            return False
        return self.ok == other.ok and self.reason == other.reason

    def __hash__(self) -> int:
        return hash((self.ok, self.reason))

    def __bool__(self) -> bool:
        return self.ok

    def __repr__(self) -> str:
        if self.ok:
            return "Result(ok=True)"
        assert self.reason is not None
        return f"Result(ok=False, reason={self.reason.value!r})"


Result.OK = Result(True)
Result.UNCHANGED = Result(False, Reason.UNCHANGED)
Result.PARSE_ERROR = Result(False, Reason.PARSE_ERROR)
Result.SERIALIZE_ERROR = Result(False, Reason.SERIALIZE_ERROR)
Result.DETACHED = Result(False, Reason.DETACHED)


class ErrorEvent:
    __slots__ = ("code", "message", "cause")

    def __init__(self, code: Reason, message: str, cause: BaseException | None = None) -> None:
        self.code = code
        self.message = message
        self.cause = cause

    def __str__(self) -> str:
        return f"{self.code.value}: {self.message}"


class WarningEvent:
    __slots__ = ("code", "message")

    def __init__(self, code: str, message: str) -> None:
        self.code = code
        self.message = message

    def __str__(self) -> str:
        return f"{self.code}: {self.message}"


OnError = Callable[[ErrorEvent], None]
OnWarning = Callable[[WarningEvent], None]
Normalize = Callable[[str], str]
Serialize = Callable[["Node"], str]
Parse = Callable[[str], "Node"]


def default_normalize(text: str) -> str:
    """Converts CRLF and lone CR line endings to LF."""
    if "\r" not in text:
        return text
    return text.replace("\r\n", "\n").replace("\r", "\n")


def default_on_error(event: ErrorEvent) -> None:
    cause = event.cause
    exc_info = (type(cause), cause, cause.__traceback__) if cause is not None else None
    logger.error("[bridge] %s", event, exc_info=exc_info)


def default_on_warning(event: WarningEvent) -> None:
    logger.warning("[bridge] %s", event)


@lru_cache(maxsize=1024)
def count_parameters(func: Callable) -> int:
    """Count the number of parameters in a callable"""
    return len(signature(func).parameters)


class IncrementalParseRequest:
    """What an incremental parser receives from the bridge."""

    __slots__ = ("prev_tree", "prev_text", "text", "diff")

    def __init__(self, prev_tree: Node, prev_text: str, text: str, diff: TextDiff) -> None:
        self.prev_tree = prev_tree
        self.prev_text = prev_text
        self.text = text
        self.diff = diff


class Fallback:
    """The incremental parser declined: the bridge parses the whole text."""

    __slots__ = ()


class FullTree:
    """A complete new tree; the bridge diffs it against the previous one."""

    __slots__ = ("tree",)

    def __init__(self, tree: Node) -> None:
        self.tree = tree


class RangedTree:
    """
    A complete new tree plus the replaced range, so the bridge skips the structural diff.
    A range the slice does not fit is ignored and the trees are diffed instead.

    Args:
        tree: The new tree.
        from_: Start of the replaced range, in both trees.
        to: End of the replaced range in the previous tree.
        to_b: End of the replaced range in the new tree.
    """

    __slots__ = ("tree", "from_", "to", "to_b")

    def __init__(self, tree: Node, from_: int, to: int, to_b: int) -> None:
        self.tree = tree
        self.from_ = from_
        self.to = to
        self.to_b = to_b


IncrementalParseResult = Union[Fallback, FullTree, RangedTree, None]
IncrementalParse = Callable[[IncrementalParseRequest], IncrementalParseResult]


class EditTransaction(Protocol):
    @property
    def doc(self) -> Node: ...

    @property
    def doc_changed(self) -> bool: ...

    def replace(self, from_: int, to: int, slice: Slice) -> Any: ...

    def set_meta(self, key: str, value: Any) -> Any: ...

    def get_meta(self, key: str) -> Any: ...


class TreeEditor(Protocol):
    @property
    def doc(self) -> Node: ...

    def transaction(self) -> EditTransaction: ...

    def dispatch(self, tr: EditTransaction) -> None: ...


class TextTarget(Protocol):
    def __str__(self) -> str: ...

    def replace_range(self, from_: int, to: int, text: str) -> None: ...
