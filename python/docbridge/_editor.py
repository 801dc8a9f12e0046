from __future__ import annotations

from itertools import count
from typing import Callable

from ._node import Node
from ._transaction import Step, Transaction
from ._types import ADD_TO_HISTORY_META

#: Editor transaction meta key set on transactions dispatched by undo and redo.
HISTORY_META = "docbridge:history"


class Editor:
    """
    A minimal editor holding an immutable [Node][docbridge.Node] document.

    Every change goes through a [Transaction][docbridge.Transaction] that is dispatched
    to the editor. Observers are called after each dispatched transaction, and changes
    are recorded in an undo history unless the transaction's `"addToHistory"` meta is
    `False`.
    """

    _doc: Node
    _observers: dict[int, Callable[[Transaction, Editor], None]]
    _ids: count
    _undo_stack: list[list[Step]]
    _redo_stack: list[list[Step]]

    def __init__(self, doc: Node) -> None:
        """
        Args:
            doc: The initial document.
        """
        self._doc = doc
        self._observers = {}
        self._ids = count()
        self._undo_stack = []
        self._redo_stack = []

    @property
    def doc(self) -> Node:
        """The current document."""
        return self._doc

    def transaction(self) -> Transaction:
        """
        Returns:
            A new transaction starting from the current document.
        """
        return Transaction(self)

    def dispatch(self, tr: Transaction) -> None:
        """
        Applies a transaction and notifies observers.

        Args:
            tr: The transaction to apply.

        Raises:
            RuntimeError: The transaction was created for another editor, or for a
                document that has changed since.
        """
        if tr.editor is not self:
            raise RuntimeError("Transaction belongs to another editor")
        if tr.before is not self._doc:
            raise RuntimeError("Transaction is outdated: the document has changed")
        self._doc = tr.doc
        if tr.doc_changed and not tr.get_meta(HISTORY_META):
            if tr.get_meta(ADD_TO_HISTORY_META) is not False:
                self._undo_stack.append(tr.steps)
                self._redo_stack.clear()
        for callback in list(self._observers.values()):
            callback(tr, self)

    @property
    def undo_depth(self) -> int:
        return len(self._undo_stack)

    @property
    def redo_depth(self) -> int:
        return len(self._redo_stack)

    def undo(self) -> bool:
        """
        Reverts the last recorded change.

        Returns:
            `True` if a change was reverted.
        """
        return self._revert(self._undo_stack, self._redo_stack)

    def redo(self) -> bool:
        """
        Reapplies the last reverted change.

        Returns:
            `True` if a change was reapplied.
        """
        return self._revert(self._redo_stack, self._undo_stack)

    def _revert(self, source: list[list[Step]], target: list[list[Step]]) -> bool:
        if not source:
            return False
        steps = source.pop()
        tr = self.transaction()
        for step in reversed(steps):
            inverted = step.invert()
            tr.replace(inverted.from_, inverted.to, inverted.slice)
        tr.set_meta(HISTORY_META, True)
        target.append(tr.steps)
        self.dispatch(tr)
        return True

    def observe(self, callback: Callable[[Transaction, Editor], None]) -> int:
        """
        Subscribes a callback to be called after each dispatched transaction.

        Args:
            callback: The callback, called with the transaction and the editor.

        Returns:
            The subscription ID that can be used to unobserve.
        """
        id = next(self._ids)
        self._observers[id] = callback
        return id

    def unobserve(self, id: int) -> None:
        """
        Unsubscribes a callback.

        Args:
            id: The subscription ID returned by [observe()][docbridge.Editor.observe].
        """
        self._observers.pop(id, None)
