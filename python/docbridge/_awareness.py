from __future__ import annotations

import copy
import math
from typing import TYPE_CHECKING, Any, Callable

from pycrdt import Awareness, StickyIndex, Text

from ._diff import code_point_offset, utf8_offset
from ._offset_map import OffsetMap, build_offset_map
from ._types import WarningEvent, default_on_warning

if TYPE_CHECKING:
    from ._node import Node
    from ._offset_map import Locate
    from ._types import OnWarning


class AwarenessAdapter:
    """
    Wraps an [Awareness][pycrdt.Awareness] to hide one cursor field from a component
    that would otherwise manage it, such as a structured editor publishing its own
    cursor while a [CursorSync][docbridge.CursorSync] owns that field.

    Setting the cursor field through the adapter has no effect, reading the local
    state reports it as `None`, and client states expose it as `"cursor"` unless they
    already hold a `"cursor"` field. Everything else is forwarded to the wrapped
    awareness.
    """

    _awareness: Awareness
    _cursor_field: str

    def __init__(self, awareness: Awareness, cursor_field: str = "pmCursor") -> None:
        """
        Args:
            awareness: The awareness to wrap.
            cursor_field: The name of the hidden field.
        """
        self._awareness = awareness
        self._cursor_field = cursor_field

    @property
    def awareness(self) -> Awareness:
        return self._awareness

    @property
    def cursor_field(self) -> str:
        return self._cursor_field

    @property
    def states(self) -> dict[int, dict[str, Any]]:
        """
        The client states, where the cursor field (if any) is renamed to `"cursor"`.
        A client publishing its text cursor as `"cursor"` keeps both fields as-is.
        """
        states: dict[int, dict[str, Any]] = {}
        for client_id, state in self._awareness.states.items():
            if self._cursor_field in state and "cursor" not in state:
                state = dict(state)
                state["cursor"] = state.pop(self._cursor_field)
            states[client_id] = state
        return states

    def get_local_state(self) -> dict[str, Any] | None:
        state = self._awareness.get_local_state()
        if state is None:
            return None
        state = copy.copy(state)
        state[self._cursor_field] = None
        return state

    def set_local_state_field(self, field: str, value: Any) -> None:
        if field == self._cursor_field:
            return
        self._awareness.set_local_state_field(field, value)

    def __getattr__(self, name: str) -> Any:
        return getattr(self._awareness, name)


class CursorSync:
    """
    Publishes the cursor of a structured editor in both coordinate spaces through an
    [Awareness][pycrdt.Awareness], so that clients editing the text and clients
    editing the structured document can render each other's cursor.

    Positions are translated with an [OffsetMap][docbridge.OffsetMap], rebuilt only
    when the document changes.

    The structured cursor is published as document positions. The text cursor is
    published as [StickyIndex][pycrdt.StickyIndex] JSON anchored in the shared text, so
    that it follows concurrent edits; see
    [resolve_text_cursor()][docbridge.CursorSync.resolve_text_cursor].
    """

    _awareness: Awareness
    _serialize: Callable[..., Any]
    _locate: Locate | None
    _cursor_field: str
    _text_cursor_field: str
    _text: Text | None
    _on_warning: OnWarning
    _map_doc: Node | None
    _map: OffsetMap | None
    _warned: bool

    def __init__(
        self,
        awareness: Awareness,
        serialize: Callable[..., Any],
        *,
        locate: Locate | None = None,
        cursor_field: str = "pmCursor",
        text_cursor_field: str = "cursor",
        text: Text | None = None,
        on_warning: OnWarning | None = None,
    ) -> None:
        """
        Args:
            awareness: The awareness to publish the cursors with.
            serialize: A plain or writer-based serializer (see
                [build_offset_map()][docbridge.build_offset_map]).
            locate: An optional function locating text leaves in the serialized text.
            cursor_field: The awareness field of the structured cursor.
            text_cursor_field: The awareness field of the text cursor.
            text: The shared text, if the text cursor should be published too.
            on_warning: The callback for warnings (default: log them).
        """
        self._awareness = awareness
        self._serialize = serialize
        self._locate = locate
        self._cursor_field = cursor_field
        self._text_cursor_field = text_cursor_field
        self._text = text
        self._on_warning = on_warning or default_on_warning
        self._map_doc = None
        self._map = None
        self._warned = False

    def offset_map(self, doc: Node) -> OffsetMap:
        """
        Returns:
            The offset map of the document, built at most once per document.
        """
        if self._map is None or self._map_doc is not doc:
            self._map = build_offset_map(
                doc, self._serialize, self._locate, on_warning=self._on_warning
            )
            self._map_doc = doc
        return self._map

    def tree_to_text(self, doc: Node, pos: int) -> int | None:
        return self.offset_map(doc).lookup(pos)

    def text_to_tree(self, doc: Node, offset: int) -> int | None:
        return self.offset_map(doc).reverse_lookup(offset)

    def sync_tree_selection(self, doc: Node, anchor: int, head: int | None = None) -> bool:
        """
        Publishes a selection of the structured editor.

        Args:
            doc: The current document.
            anchor: The anchor position.
            head: The head position (default: `anchor`).

        Returns:
            `True` if the cursor was published.
        """
        if head is None:
            head = anchor
        text_anchor = self.tree_to_text(doc, anchor)
        text_head = self.tree_to_text(doc, head)
        self._awareness.set_local_state_field(self._cursor_field, {"anchor": anchor, "head": head})
        if self._text is not None:
            if text_anchor is None or text_head is None:
                self._warn_unavailable()
                return False
            self._publish_text_cursor(text_anchor, text_head)
        return True

    def sync_text_cursor(self, doc: Node, anchor: float, head: float | None = None) -> bool:
        """
        Publishes a selection of the text editor.

        Offsets are rounded down and clamped to zero.

        Args:
            doc: The current document.
            anchor: The anchor offset.
            head: The head offset (default: `anchor`).

        Returns:
            `True` if the cursor was published.
        """
        text_anchor = _sanitize(anchor)
        text_head = _sanitize(anchor if head is None else head)
        tree_anchor = self.text_to_tree(doc, text_anchor)
        tree_head = self.text_to_tree(doc, text_head)
        if tree_anchor is None or tree_head is None:
            self._warn_unavailable()
            return False
        self._awareness.set_local_state_field(
            self._cursor_field, {"anchor": tree_anchor, "head": tree_head}
        )
        if self._text is not None:
            self._publish_text_cursor(text_anchor, text_head)
        return True

    def _publish_text_cursor(self, anchor: int, head: int) -> None:
        assert self._text is not None
        text = str(self._text)
        length = len(text)
        cursor = {}
        for name, offset in (("anchor", anchor), ("head", head)):
            index = utf8_offset(text, max(0, min(offset, length)))
            cursor[name] = self._text.sticky_index(index).to_json()
        self._awareness.set_local_state_field(self._text_cursor_field, cursor)

    def resolve_text_cursor(self, cursor: dict[str, Any]) -> tuple[int, int]:
        """
        Resolves a text cursor published in awareness against the current shared text.

        Args:
            cursor: The `{"anchor", "head"}` value of a text cursor field.

        Returns:
            The anchor and head offsets, in code points.
        """
        assert self._text is not None
        text = str(self._text)
        anchor, head = (
            code_point_offset(text, StickyIndex.from_json(cursor[name], self._text).get_index())
            for name in ("anchor", "head")
        )
        return anchor, head

    def _warn_unavailable(self) -> None:
        if self._warned:
            return
        self._warned = True
        self._on_warning(
            WarningEvent(
                "cursor-sync-unavailable",
                "The document has no text mapped in its serialized form, cursor not published",
            )
        )


def _sanitize(offset: float) -> int:
    return max(0, math.floor(offset))
