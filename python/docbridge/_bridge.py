from __future__ import annotations

from typing import TYPE_CHECKING

from ._cache import ParseCache, SerializeMemo
from ._diff import TextDiff, diff_text
from ._types import (
    ADD_TO_HISTORY_META,
    BRIDGE_META,
    ErrorEvent,
    FullTree,
    IncrementalParseRequest,
    RangedTree,
    Reason,
    Result,
    default_normalize,
    default_on_error,
    logger,
)

if TYPE_CHECKING:
    from ._node import Node
    from ._types import (
        EditTransaction,
        IncrementalParse,
        Normalize,
        OnError,
        Parse,
        Serialize,
        TextTarget,
        TreeEditor,
    )

DEFAULT_PARSE_CACHE_SIZE = 8


def diff_range(old: Node, new: Node) -> tuple[int, int, int] | None:
    """
    Finds the smallest range to replace in a document to turn it into another one.

    Args:
        old: The current document.
        new: The next document.

    Returns:
        `(from_, to, to_b)`, such that replacing `old[from_:to]` with `new[from_:to_b]`
            gives `new`, or `None` if both documents have the same content.
    """
    start = old.find_diff_start(new)
    if start is None:
        return None
    end = old.find_diff_end(new)
    if end is None:
        return None
    end_a, end_b = end
    # the common suffix may overlap the common prefix when content repeats
    overlap = start - min(end_a, end_b)
    if overlap > 0:
        end_a += overlap
        end_b += overlap
    return start, end_a, end_b


class Bridge:
    """
    Keeps a structured editor and a text buffer in sync.

    Text edits are turned into the smallest structural replacement that makes the
    editor document match the parsed text, so that unchanged nodes keep their
    identity:
    ```py
    bridge = Bridge(serialize, parse)
    editor = Editor(parse("a\\nb\\nc"))
    bridge.apply_text(editor, "a\\nx\\nc")  # only the middle paragraph is replaced
    ```
    """

    _serialize: Serialize
    _parse: Parse
    _normalize: Normalize
    _on_error: OnError
    _incremental_parse: IncrementalParse | None
    _parse_cache: ParseCache
    _memo: SerializeMemo
    _last_tree: Node | None
    _last_raw_text: str | None
    _last_normalized_text: str | None

    def __init__(
        self,
        serialize: Serialize,
        parse: Parse,
        *,
        normalize: Normalize | None = None,
        on_error: OnError | None = None,
        incremental_parse: IncrementalParse | None = None,
        parse_cache_size: int = DEFAULT_PARSE_CACHE_SIZE,
    ) -> None:
        """
        Args:
            serialize: The function turning a document into text.
            parse: The function turning text into a document.
            normalize: The text normalization (default: CRLF and CR to LF).
            on_error: The callback for parse and serialize failures (default: log them).
            incremental_parse: An optional parser reusing the previous document.
            parse_cache_size: The number of parsed documents to cache, `0` to disable.

        Raises:
            ValueError: Negative cache size.
        """
        self._serialize = serialize
        self._parse = parse
        self._normalize = normalize or default_normalize
        self._on_error = on_error or default_on_error
        self._incremental_parse = incremental_parse
        self._parse_cache = ParseCache(parse_cache_size)
        self._memo = SerializeMemo(serialize, self._normalize)
        self._last_tree = None
        self._last_raw_text = None
        self._last_normalized_text = None

    @property
    def parse_cache(self) -> ParseCache:
        return self._parse_cache

    @property
    def serialize_memo(self) -> SerializeMemo:
        return self._memo

    def apply_text(
        self,
        editor: TreeEditor,
        text: str,
        *,
        add_to_history: bool = True,
        diff: TextDiff | None = None,
        normalized: bool = False,
    ) -> Result:
        """
        Makes the editor document match a text.

        Args:
            editor: The structured editor.
            text: The new text.
            add_to_history: Whether the edit is recorded in the editor's undo history.
            diff: The changed region between the current and the new normalized text,
                if already known.
            normalized: Whether `text` is already normalized.

        Returns:
            `Result.OK` if the editor document was changed, `Result.UNCHANGED` if it
                already matched, `Result.PARSE_ERROR` or `Result.SERIALIZE_ERROR` if
                nothing could be applied.
        """
        prev_tree = editor.doc
        if prev_tree is self._last_tree and text == self._last_raw_text:
            return Result.UNCHANGED

        incoming = text if normalized else self._normalize(text)
        if prev_tree is self._last_tree and incoming == self._last_normalized_text:
            self._last_raw_text = text
            return Result.UNCHANGED

        try:
            current = self._memo(prev_tree)
        except Exception as exc:
            self._on_error(
                ErrorEvent(
                    Reason.SERIALIZE_ERROR, "Failed to serialize the current document", exc
                )
            )
            return Result.SERIALIZE_ERROR

        if incoming == current:
            return self._mark_unchanged(prev_tree, text, incoming)

        if diff is None:
            diff = diff_text(current, incoming)
        hint: RangedTree | None = None
        try:
            next_tree = None
            if self._incremental_parse is not None:
                request = IncrementalParseRequest(prev_tree, current, incoming, diff)
                result = self._incremental_parse(request)
                if isinstance(result, RangedTree):
                    hint = result
                    next_tree = result.tree
                elif isinstance(result, FullTree):
                    next_tree = result.tree
            if next_tree is None:
                next_tree = self._parse_cache.get_or_parse(incoming, self._parse)
        except Exception as exc:
            self._on_error(
                ErrorEvent(Reason.PARSE_ERROR, "Failed to parse text into a document", exc)
            )
            return Result.PARSE_ERROR

        tr = editor.transaction()
        if hint is not None:
            try:
                tr.replace(hint.from_, hint.to, next_tree.slice(hint.from_, hint.to_b))
            except (ValueError, IndexError):
                logger.debug(
                    "Ranged tree %d-%d/%d does not fit, diffing the documents instead",
                    hint.from_,
                    hint.to,
                    hint.to_b,
                    exc_info=True,
                )
                tr = editor.transaction()
                hint = None
        if hint is None:
            changed = diff_range(prev_tree, next_tree)
            if changed is None:
                return self._mark_unchanged(prev_tree, text, incoming)
            from_, to, to_b = changed
            tr.replace(from_, to, next_tree.slice(from_, to_b))
        tr.set_meta(BRIDGE_META, True)
        if not add_to_history:
            tr.set_meta(ADD_TO_HISTORY_META, False)
        editor.dispatch(tr)

        # the editor may have transformed the document further while dispatching
        self._last_tree = editor.doc
        self._last_raw_text = text
        self._last_normalized_text = incoming
        return Result.OK

    def _mark_unchanged(self, tree: Node, text: str, incoming: str) -> Result:
        self._last_tree = tree
        self._last_raw_text = text
        self._last_normalized_text = incoming
        return Result.UNCHANGED

    def extract_text(self, editor: TreeEditor) -> str:
        """
        Serializes the editor document.

        Raises:
            Exception: Whatever the serializer raised, after reporting it to the error
                callback.

        Returns:
            The serialized text, not normalized.
        """
        tree = editor.doc
        try:
            text = self._serialize(tree)
        except Exception as exc:
            self._on_error(
                ErrorEvent(Reason.SERIALIZE_ERROR, "Failed to serialize the document", exc)
            )
            raise
        self._memo.remember(tree, self._normalize(text))
        return text

    def is_bridge_change(self, tr: EditTransaction) -> bool:
        """
        Returns:
            `True` if the transaction was dispatched by
                [apply_text()][docbridge.Bridge.apply_text].
        """
        return tr.get_meta(BRIDGE_META) is True

    def sync_to_text(self, target: TextTarget, tree: Node) -> Result:
        """
        Makes a text buffer match a document, replacing only the changed region.

        Args:
            target: The text buffer.
            tree: The document.

        Returns:
            `Result.OK`, `Result.UNCHANGED` or `Result.SERIALIZE_ERROR`.
        """
        try:
            text = self._memo(tree)
        except Exception as exc:
            self._on_error(
                ErrorEvent(Reason.SERIALIZE_ERROR, "Failed to serialize the document", exc)
            )
            return Result.SERIALIZE_ERROR
        current = self._normalize(str(target))
        if current == text:
            return Result.UNCHANGED
        diff = diff_text(current, text)
        target.replace_range(diff.start, diff.end_a, text[diff.start : diff.end_b])
        return Result.OK

    def bind(self, editor: TreeEditor) -> BoundBridge:
        """
        Returns:
            A bridge bound to an editor, so that it doesn't need to be passed to each
                call.
        """
        return BoundBridge(self, editor)


class BoundBridge:
    """A [Bridge][docbridge.Bridge] bound to one editor at a time."""

    __slots__ = ("_bridge", "_editor")

    def __init__(self, bridge: Bridge, editor: TreeEditor) -> None:
        self._bridge = bridge
        self._editor = editor

    @property
    def bridge(self) -> Bridge:
        return self._bridge

    @property
    def editor(self) -> TreeEditor:
        return self._editor

    def set_editor(self, editor: TreeEditor) -> None:
        self._editor = editor

    def apply_text(
        self,
        text: str,
        *,
        add_to_history: bool = True,
        diff: TextDiff | None = None,
        normalized: bool = False,
    ) -> Result:
        return self._bridge.apply_text(
            self._editor, text, add_to_history=add_to_history, diff=diff, normalized=normalized
        )

    def extract_text(self) -> str:
        return self._bridge.extract_text(self._editor)

    def is_bridge_change(self, tr: EditTransaction) -> bool:
        return self._bridge.is_bridge_change(tr)
