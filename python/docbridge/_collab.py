from __future__ import annotations

from enum import Enum
from typing import TYPE_CHECKING, Any, Callable

from anyio import TASK_STATUS_IGNORED, Event, create_task_group
from anyio.abc import TaskGroup, TaskStatus
from pycrdt import Doc, Text, XmlFragment

from ._bridge import diff_range
from ._types import (
    ADD_TO_HISTORY_META,
    CRDT_SYNC_META,
    ORIGIN_INIT,
    ORIGIN_TEXT_TO_TREE,
    ORIGIN_TREE_TO_TEXT,
    ErrorEvent,
    Reason,
    Result,
    WarningEvent,
    default_normalize,
    default_on_error,
    default_on_warning,
)
from ._xml import (
    fragment_to_node,
    reconcile,
    replace_fragment,
    replace_shared_text,
    replace_shared_tree,
)

if TYPE_CHECKING:
    from pycrdt import Subscription

    from ._editor import Editor
    from ._node import Node
    from ._transaction import Transaction
    from ._types import (
        EditTransaction,
        Normalize,
        OnError,
        OnWarning,
        Parse,
        Serialize,
        TreeEditor,
    )


class BootstrapSource(str, Enum):
    """Which representation the shared types were initialized from."""

    TEXT = "text"
    STRUCTURED = "structured"
    BOTH_MATCH = "both-match"
    EMPTY = "empty"
    INITIAL = "initial"


class BootstrapResult:
    """
    The outcome of the initial reconciliation of a [CollabBridge][docbridge.CollabBridge].

    `parse_error` is set when converting one representation into the other failed:
    the bridge is still usable, but the other representation may be stale.
    """

    __slots__ = ("source", "parse_error")

    def __init__(self, source: BootstrapSource, parse_error: bool = False) -> None:
        self.source = source
        self.parse_error = parse_error

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, BootstrapResult):
            return False
        return self.source == other.source and self.parse_error == other.parse_error

    def __hash__(self) -> int:
        return hash((self.source, self.parse_error))

    def __repr__(self) -> str:
        return f"BootstrapResult(source={self.source.value!r}, parse_error={self.parse_error})"


class CollabBridge:
    """
    Keeps a shared [Text][pycrdt.Text] and a shared [XmlFragment][pycrdt.XmlFragment] of
    the same [Doc][pycrdt.Doc] in sync.

    Both shared types are reconciled once at construction (see
    [bootstrap_result][docbridge.CollabBridge.bootstrap_result]). Then every change to
    the shared text that does not come from the bridge marks the bridge as pending:
    shared types cannot be modified from within an observer callback, so the fragment
    is updated by [flush()][docbridge.CollabBridge.flush], or automatically while
    [started][docbridge.CollabBridge.start]:
    ```py
    async with create_task_group() as tg:
        await tg.start(bridge.start)
        text += "more"
        ...
    ```
    """

    _doc: Doc
    _text: Text
    _fragment: XmlFragment
    _serialize: Serialize
    _parse: Parse
    _normalize: Normalize
    _on_error: OnError
    _doc_type: str
    _last_bridged_text: str | None
    _pending: bool
    _wired: int
    _subscription: Subscription | None
    _task_group: TaskGroup | None
    _event: Event | None

    def __init__(
        self,
        doc: Doc,
        text: Text,
        fragment: XmlFragment,
        *,
        serialize: Serialize,
        parse: Parse,
        normalize: Normalize | None = None,
        on_error: OnError | None = None,
        initial_text: str | None = None,
        prefer: str = "text",
        doc_type: str = "doc",
    ) -> None:
        """
        Args:
            doc: The document holding both shared types.
            text: The shared text.
            fragment: The shared fragment.
            serialize: The function turning a document into text.
            parse: The function turning text into a document.
            normalize: The text normalization (default: CRLF and CR to LF).
            on_error: The callback for parse and serialize failures (default: log them).
            initial_text: The text to initialize both shared types with if both are empty.
            prefer: Which representation wins if both have different content, `"text"`
                or `"structured"`.
            doc_type: The type of the root node of documents built from the fragment.

        Raises:
            ValueError: A shared type is not integrated in `doc`, or `prefer` is invalid.
        """
        for name, shared in (("text", text), ("fragment", fragment)):
            if not shared.is_integrated:
                raise ValueError(f"The shared {name} is not integrated in a document")
            if shared.doc is not doc:
                raise ValueError(f"The shared {name} belongs to another document")
        if prefer not in ("text", "structured"):
            raise ValueError(f'prefer must be "text" or "structured", not {prefer!r}')
        self._doc = doc
        self._text = text
        self._fragment = fragment
        self._serialize = serialize
        self._parse = parse
        self._normalize = normalize or default_normalize
        self._on_error = on_error or default_on_error
        self._doc_type = doc_type
        self._last_bridged_text = None
        self._pending = False
        self._wired = 0
        self._subscription = None
        self._task_group = None
        self._event = None
        # bootstrap before observing, so that a failure cannot leave an observer behind
        self._bootstrap_result = self._bootstrap(initial_text, prefer)
        self._subscription = text.observe(self._observe_text)

    @property
    def doc(self) -> Doc:
        return self._doc

    @property
    def text(self) -> Text:
        return self._text

    @property
    def fragment(self) -> XmlFragment:
        return self._fragment

    @property
    def bootstrap_result(self) -> BootstrapResult:
        return self._bootstrap_result

    @property
    def pending(self) -> bool:
        """Whether the shared text changed since the fragment was last updated."""
        return self._pending

    @property
    def disposed(self) -> bool:
        return self._subscription is None

    def _bootstrap(self, initial_text: str | None, prefer: str) -> BootstrapResult:
        text = self._normalize(str(self._text))
        has_text = bool(text)
        has_tree = len(self._fragment.children) > 0

        if not has_text and not has_tree:
            initial = initial_text or ""
            if not initial:
                return BootstrapResult(BootstrapSource.EMPTY)
            # the text is derived from the fragment, so that both are in canonical form
            result = replace_shared_tree(
                self._fragment,
                initial,
                parse=self._parse,
                normalize=self._normalize,
                on_error=self._on_error,
                origin=ORIGIN_INIT,
            )
            if not result:
                return BootstrapResult(BootstrapSource.INITIAL, parse_error=True)
            canonical = self._tree_to_text()
            if canonical is None:
                return BootstrapResult(BootstrapSource.INITIAL, parse_error=True)
            replace_shared_text(self._text, canonical, ORIGIN_INIT, self._normalize)
            self._last_bridged_text = canonical
            return BootstrapResult(BootstrapSource.INITIAL)

        if has_text and not has_tree:
            ok = self._sync_text_to_tree(ORIGIN_INIT).reason is not Reason.PARSE_ERROR
            return BootstrapResult(BootstrapSource.TEXT, parse_error=not ok)

        tree_text = self._tree_to_text()
        if not has_text:
            if tree_text is None:
                return BootstrapResult(BootstrapSource.STRUCTURED, parse_error=True)
            replace_shared_text(self._text, tree_text, ORIGIN_INIT, self._normalize)
            self._last_bridged_text = tree_text
            return BootstrapResult(BootstrapSource.STRUCTURED)

        if tree_text is None:
            replace_shared_text(self._text, text, ORIGIN_INIT, self._normalize)
            ok = self._sync_text_to_tree(ORIGIN_INIT).reason is not Reason.PARSE_ERROR
            return BootstrapResult(BootstrapSource.TEXT, parse_error=not ok)

        if tree_text == text:
            self._last_bridged_text = text
            return BootstrapResult(BootstrapSource.BOTH_MATCH)

        if prefer == "structured":
            replace_shared_text(self._text, tree_text, ORIGIN_INIT, self._normalize)
            self._last_bridged_text = tree_text
            return BootstrapResult(BootstrapSource.STRUCTURED)
        ok = self._sync_text_to_tree(ORIGIN_INIT).reason is not Reason.PARSE_ERROR
        return BootstrapResult(BootstrapSource.TEXT, parse_error=not ok)

    def _tree_to_text(self) -> str | None:
        try:
            tree = fragment_to_node(self._fragment, self._doc_type)
            return self._normalize(self._serialize(tree))
        except Exception as exc:
            self._on_error(
                ErrorEvent(
                    Reason.SERIALIZE_ERROR, "Failed to convert the shared fragment to text", exc
                )
            )
            return None

    def _sync_text_to_tree(self, origin: Any) -> Result:
        text = self._normalize(str(self._text))
        if text == self._last_bridged_text:
            return Result.UNCHANGED
        result = replace_shared_tree(
            self._fragment,
            text,
            parse=self._parse,
            normalize=self._normalize,
            on_error=self._on_error,
            origin=origin,
        )
        if result:
            self._last_bridged_text = text
        return result

    def _observe_text(self, event: Any, txn: Any) -> None:
        if txn.origin in (ORIGIN_TREE_TO_TEXT, ORIGIN_INIT):
            return
        self._pending = True
        if self._event is not None:
            self._event.set()

    def flush(self) -> Result:
        """
        Updates the shared fragment from the shared text, if the text changed.

        Must not be called from within a transaction.

        Returns:
            `Result.OK`, `Result.UNCHANGED`, `Result.PARSE_ERROR` or `Result.DETACHED`.
        """
        if not self._pending:
            return Result.UNCHANGED
        self._pending = False
        return self._sync_text_to_tree(ORIGIN_TEXT_TO_TREE)

    async def start(self, *, task_status: TaskStatus[None] = TASK_STATUS_IGNORED) -> None:
        """
        Starts updating the shared fragment each time the shared text changes.

        Raises:
            RuntimeError: Bridge already started.
        """
        if self._task_group is not None:
            raise RuntimeError("CollabBridge already started")

        async with create_task_group() as tg:
            self._task_group = tg
            self._event = Event()
            task_status.started()
            tg.start_soon(self._start)

    async def _start(self) -> None:
        while True:
            assert self._event is not None
            await self._event.wait()
            self._event = Event()
            self.flush()

    async def stop(self) -> None:
        """
        Stops updating the shared fragment automatically.

        Raises:
            RuntimeError: Bridge not started.
        """
        if self._task_group is None:
            raise RuntimeError("CollabBridge not started")
        self._task_group.cancel_scope.cancel()
        self._task_group = None
        self._event = None

    def sync_to_shared_text(self, tree: Node) -> Result:
        """
        Makes the shared text match a document.

        Args:
            tree: The document.

        Returns:
            `Result.OK`, `Result.UNCHANGED`, `Result.SERIALIZE_ERROR`, or
                `Result.DETACHED` if the shared text is no longer integrated.
        """
        try:
            text = self._serialize(tree)
        except Exception as exc:
            self._on_error(
                ErrorEvent(Reason.SERIALIZE_ERROR, "Failed to serialize the document", exc)
            )
            return Result.SERIALIZE_ERROR
        result = replace_shared_text(self._text, text, ORIGIN_TREE_TO_TEXT, self._normalize)
        # an unchanged text must still be recorded, so that it is not bridged back
        if result or result.reason is Reason.UNCHANGED:
            self._last_bridged_text = self._normalize(text)
        return result

    def sync_to_shared_tree(self, tree: Node) -> Result:
        """
        Makes the shared fragment match a document, preserving the elements that did
        not change.

        Returns:
            `Result.OK`, or `Result.DETACHED` if the fragment is no longer integrated.
        """
        if not self._fragment.is_integrated:
            return Result.DETACHED
        with self._doc.transaction(origin=ORIGIN_TREE_TO_TEXT):
            if not reconcile(self._fragment, tree.children, origin=ORIGIN_TREE_TO_TEXT):
                replace_fragment(self._fragment, tree.children, origin=ORIGIN_TREE_TO_TEXT)
        return Result.OK

    def sync_editor(self, editor: TreeEditor) -> Result:
        """
        Makes an editor document match the shared fragment. The edit is marked as a
        CRDT sync change and is not recorded in the undo history.

        Returns:
            `Result.OK`, `Result.UNCHANGED`, or `Result.SERIALIZE_ERROR` if the fragment
                could not be converted.
        """
        try:
            tree = fragment_to_node(self._fragment, self._doc_type)
        except Exception as exc:
            self._on_error(
                ErrorEvent(
                    Reason.SERIALIZE_ERROR, "Failed to convert the shared fragment", exc
                )
            )
            return Result.SERIALIZE_ERROR
        changed = diff_range(editor.doc, tree)
        if changed is None:
            return Result.UNCHANGED
        from_, to, to_b = changed
        tr = editor.transaction()
        tr.replace(from_, to, tree.slice(from_, to_b))
        tr.set_meta(CRDT_SYNC_META, True)
        tr.set_meta(ADD_TO_HISTORY_META, False)
        editor.dispatch(tr)
        return Result.OK

    def is_crdt_sync_change(self, tr: EditTransaction) -> bool:
        """
        Returns:
            `True` if the transaction applied changes coming from the shared fragment.
        """
        return tr.get_meta(CRDT_SYNC_META) is True

    def dispose(self) -> None:
        """Stops observing the shared text. Calling it again has no effect."""
        if self._subscription is None:
            return
        self._text.unobserve(self._subscription)
        self._subscription = None
        self._pending = False

    def _wire(self) -> bool:
        self._wired += 1
        return self._wired > 1

    def _unwire(self) -> None:
        self._wired = max(0, self._wired - 1)


class EditorSync:
    """
    Pushes the changes of an [Editor][docbridge.Editor] into the shared types of a
    [CollabBridge][docbridge.CollabBridge], skipping the changes that came from the
    shared fragment.
    """

    _bridge: CollabBridge
    _editor: Editor
    _on_sync_failure: Callable[[Result, Editor], None] | None
    _on_warning: OnWarning
    _subscription: int | None

    def __init__(
        self,
        bridge: CollabBridge,
        editor: Editor,
        *,
        on_sync_failure: Callable[[Result, Editor], None] | None = None,
        on_warning: OnWarning | None = None,
    ) -> None:
        """
        Args:
            bridge: The collaborative bridge.
            editor: The editor.
            on_sync_failure: Called with the failed result when the document could not be
                serialized or the shared types are no longer integrated.
            on_warning: The callback for warnings (default: log them).
        """
        self._bridge = bridge
        self._editor = editor
        self._on_sync_failure = on_sync_failure
        self._on_warning = on_warning or default_on_warning
        if bridge._wire():
            self._on_warning(
                WarningEvent(
                    "bridge-already-wired", "This bridge is already wired to another editor"
                )
            )
        self._subscription = editor.observe(self._observe_editor)

    @property
    def closed(self) -> bool:
        return self._subscription is None

    def _observe_editor(self, tr: Transaction, editor: Editor) -> None:
        if not tr.doc_changed or self._bridge.is_crdt_sync_change(tr):
            return
        tree = editor.doc
        # the fragment is only updated once the text is, so a failure leaves both as-is
        with self._bridge.doc.transaction(origin=ORIGIN_TREE_TO_TEXT):
            result = self._bridge.sync_to_shared_text(tree)
            if result or result.reason is Reason.UNCHANGED:
                result = self._bridge.sync_to_shared_tree(tree)
        if not result:
            if self._on_sync_failure is not None:
                self._on_sync_failure(result, editor)
            self._on_warning(
                WarningEvent("sync-failed", f"Bridge sync failed: {result.reason.value}")
            )

    def close(self) -> None:
        """Stops syncing. Calling it again has no effect."""
        if self._subscription is None:
            return
        self._editor.unobserve(self._subscription)
        self._subscription = None
        self._bridge._unwire()
