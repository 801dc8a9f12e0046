from __future__ import annotations

from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from ._editor import Editor
    from ._node import Node, Slice


class Step:
    """One replacement, with the content it replaced so that it can be inverted."""

    __slots__ = ("from_", "to", "slice", "replaced")

    def __init__(self, from_: int, to: int, slice: Slice, replaced: Slice) -> None:
        self.from_ = from_
        self.to = to
        self.slice = slice
        self.replaced = replaced

    def invert(self) -> Step:
        return Step(self.from_, self.from_ + self.slice.size, self.replaced, self.slice)

    def apply(self, doc: Node) -> Node:
        return doc.replace(self.from_, self.to, self.slice)


class Transaction:
    """
    A batch of edits to an [Editor][docbridge.Editor] document.

    Edits are accumulated on the transaction's own copy of the document, and only take
    effect once the transaction is dispatched:
    ```py
    tr = editor.transaction()
    tr.replace(0, 0, slice)
    tr.set_meta("addToHistory", False)
    editor.dispatch(tr)
    ```
    """

    _editor: Editor
    _before: Node
    _doc: Node
    _steps: list[Step]
    _meta: dict[str, Any]

    def __init__(self, editor: Editor) -> None:
        self._editor = editor
        self._before = editor.doc
        self._doc = editor.doc
        self._steps = []
        self._meta = {}

    @property
    def editor(self) -> Editor:
        return self._editor

    @property
    def before(self) -> Node:
        """The document this transaction started from."""
        return self._before

    @property
    def doc(self) -> Node:
        """The document with every edit of this transaction applied."""
        return self._doc

    @property
    def steps(self) -> list[Step]:
        return list(self._steps)

    @property
    def doc_changed(self) -> bool:
        return bool(self._steps)

    def replace(self, from_: int, to: int, slice: Slice) -> Transaction:
        """
        Replaces the content between two positions of the current document with a
        slice.

        Args:
            from_: The start position.
            to: The end position.
            slice: The replacement content.

        Raises:
            IndexError: Position out of range.
            ReplaceError: The slice does not fit the range.

        Returns:
            This transaction.
        """
        if from_ == to and not slice.content:
            return self
        replaced = self._doc.slice(from_, to)
        step = Step(from_, to, slice, replaced)
        self._doc = step.apply(self._doc)
        self._steps.append(step)
        return self

    def replace_with(self, doc: Node) -> Transaction:
        """Replaces the whole document content with the content of another document."""
        return self.replace(0, self._doc.content_size, doc.slice(0))

    def set_meta(self, key: str, value: Any) -> Transaction:
        self._meta[key] = value
        return self

    def get_meta(self, key: str) -> Any:
        return self._meta.get(key)

    def __repr__(self) -> str:
        return f"Transaction(steps={len(self._steps)}, meta={self._meta!r})"
