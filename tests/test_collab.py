import pytest
from anyio import create_task_group, fail_after, sleep
from conftest import parse_lines, serialize_lines
from docbridge import (
    ORIGIN_TREE_TO_TEXT,
    BootstrapResult,
    BootstrapSource,
    CollabBridge,
    Editor,
    EditorSync,
    Reason,
    Result,
    replace_fragment,
)
from pycrdt import Doc, Text, XmlFragment

pytestmark = pytest.mark.anyio


def failing_parse(text):
    if "!" in text:
        raise ValueError("unexpected '!'")
    return parse_lines(text)


def failing_serialize(doc):
    text = serialize_lines(doc)
    if "boom" in text:
        raise RuntimeError("cannot serialize 'boom'")
    return text


def make_doc(text="", lines=None):
    doc = Doc()
    doc["text"] = shared_text = Text(text) if text else Text()
    doc["frag"] = fragment = XmlFragment()
    if lines is not None:
        replace_fragment(fragment, parse_lines(lines).children)
    return doc, shared_text, fragment


def make_bridge(text="", lines=None, **kwargs):
    doc, shared_text, fragment = make_doc(text, lines)
    kwargs.setdefault("serialize", serialize_lines)
    kwargs.setdefault("parse", parse_lines)
    return CollabBridge(doc, shared_text, fragment, **kwargs)


def fragment_lines(fragment):
    return "".join(f"<paragraph>{line}</paragraph>" for line in fragment)


def test_bootstrap_empty():
    bridge = make_bridge()
    assert bridge.bootstrap_result == BootstrapResult(BootstrapSource.EMPTY)
    assert str(bridge.text) == ""
    assert len(bridge.fragment.children) == 0


def test_bootstrap_initial():
    bridge = make_bridge(initial_text="a\r\nb")
    assert bridge.bootstrap_result == BootstrapResult(BootstrapSource.INITIAL)
    assert str(bridge.text) == "a\nb"
    assert str(bridge.fragment) == fragment_lines("ab")
    assert not bridge.pending


def test_bootstrap_initial_parse_error():
    errors = []
    bridge = make_bridge(initial_text="!", parse=failing_parse, on_error=errors.append)
    assert bridge.bootstrap_result == BootstrapResult(BootstrapSource.INITIAL, parse_error=True)
    assert str(bridge.text) == ""
    assert [error.code for error in errors] == [Reason.PARSE_ERROR]


def test_bootstrap_from_text():
    bridge = make_bridge("a\nb")
    assert bridge.bootstrap_result == BootstrapResult(BootstrapSource.TEXT)
    assert str(bridge.fragment) == fragment_lines("ab")
    assert str(bridge.text) == "a\nb"


def test_bootstrap_from_text_parse_error():
    errors = []
    bridge = make_bridge("a!", parse=failing_parse, on_error=errors.append)
    assert bridge.bootstrap_result == BootstrapResult(BootstrapSource.TEXT, parse_error=True)
    assert len(bridge.fragment.children) == 0
    assert str(bridge.text) == "a!"
    assert len(errors) == 1


def test_bootstrap_from_structured():
    bridge = make_bridge(lines="a\nb")
    assert bridge.bootstrap_result == BootstrapResult(BootstrapSource.STRUCTURED)
    assert str(bridge.text) == "a\nb"


def test_bootstrap_from_structured_serialize_error():
    errors = []
    bridge = make_bridge(lines="boom", serialize=failing_serialize, on_error=errors.append)
    assert bridge.bootstrap_result == BootstrapResult(
        BootstrapSource.STRUCTURED, parse_error=True
    )
    assert str(bridge.text) == ""
    assert [error.code for error in errors] == [Reason.SERIALIZE_ERROR]


def test_bootstrap_both_match():
    bridge = make_bridge("a\r\nb", lines="a\nb")
    assert bridge.bootstrap_result == BootstrapResult(BootstrapSource.BOTH_MATCH)
    assert bridge.bootstrap_result.source.value == "both-match"


def test_bootstrap_prefer_text():
    doc, shared_text, fragment = make_doc("a\nc", "a\nb")
    first = fragment.children[0]
    bridge = CollabBridge(doc, shared_text, fragment, serialize=serialize_lines, parse=parse_lines)
    assert bridge.bootstrap_result == BootstrapResult(BootstrapSource.TEXT)
    assert str(fragment) == fragment_lines("ac")
    assert fragment.children[0] == first
    assert str(shared_text) == "a\nc"


def test_bootstrap_prefer_structured():
    bridge = make_bridge("a\nc", lines="a\nb", prefer="structured")
    assert bridge.bootstrap_result == BootstrapResult(BootstrapSource.STRUCTURED)
    assert str(bridge.text) == "a\nb"
    assert str(bridge.fragment) == fragment_lines("ab")


def test_bootstrap_unconvertible_fragment():
    errors = []
    bridge = make_bridge(
        "a", lines="boom", serialize=failing_serialize, on_error=errors.append
    )
    assert bridge.bootstrap_result == BootstrapResult(BootstrapSource.TEXT)
    assert str(bridge.fragment) == fragment_lines("a")
    assert [error.code for error in errors] == [Reason.SERIALIZE_ERROR]


def test_misuse():
    doc, shared_text, fragment = make_doc()
    with pytest.raises(ValueError) as excinfo:
        CollabBridge(doc, Text(), fragment, serialize=serialize_lines, parse=parse_lines)
    assert str(excinfo.value) == "The shared text is not integrated in a document"

    other_doc, other_text, other_fragment = make_doc()
    with pytest.raises(ValueError) as excinfo:
        CollabBridge(doc, shared_text, other_fragment, serialize=serialize_lines, parse=parse_lines)
    assert str(excinfo.value) == "The shared fragment belongs to another document"

    with pytest.raises(ValueError):
        CollabBridge(
            doc,
            shared_text,
            fragment,
            serialize=serialize_lines,
            parse=parse_lines,
            prefer="both",
        )


def test_flush():
    bridge = make_bridge("a")
    assert not bridge.pending
    assert bridge.flush() == Result.UNCHANGED
    bridge.text.insert(1, "\nb")
    assert bridge.pending
    # the fragment is only updated on flush
    assert str(bridge.fragment) == fragment_lines("a")
    assert bridge.flush() == Result.OK
    assert not bridge.pending
    assert str(bridge.fragment) == fragment_lines("ab")
    assert bridge.flush() == Result.UNCHANGED


def test_flush_parse_error():
    errors = []
    bridge = make_bridge("a", parse=failing_parse, on_error=errors.append)
    bridge.text.insert(len(bridge.text), "!")
    assert bridge.flush() == Result.PARSE_ERROR
    assert str(bridge.fragment) == fragment_lines("a")
    assert len(errors) == 1
    bridge.text.insert(len(bridge.text), "\nb")
    # still failing: every attempt is reported
    assert bridge.flush() == Result.PARSE_ERROR
    assert len(errors) == 2


def test_own_changes_are_not_pending():
    bridge = make_bridge("a")
    with bridge.doc.transaction(origin=ORIGIN_TREE_TO_TEXT):
        bridge.text.insert(len(bridge.text), "b")
    assert not bridge.pending


async def test_start_stop():
    bridge = make_bridge("a")
    async with create_task_group() as tg:
        await tg.start(bridge.start)
        with pytest.raises(RuntimeError) as excinfo:
            await bridge.start()
        assert str(excinfo.value) == "CollabBridge already started"
        bridge.text.insert(len(bridge.text), "\nb")
        with fail_after(1):
            while bridge.pending:
                await sleep(0.01)
        assert str(bridge.fragment) == fragment_lines("ab")
        await bridge.stop()

    bridge.text.insert(len(bridge.text), "\nc")
    assert bridge.pending
    assert str(bridge.fragment) == fragment_lines("ab")
    with pytest.raises(RuntimeError) as excinfo:
        await bridge.stop()
    assert str(excinfo.value) == "CollabBridge not started"


def test_dispose():
    bridge = make_bridge("a")
    bridge.text.insert(len(bridge.text), "b")
    assert bridge.pending
    bridge.dispose()
    assert bridge.disposed
    assert not bridge.pending
    bridge.text.insert(len(bridge.text), "c")
    assert not bridge.pending
    bridge.dispose()


def test_sync_to_shared_text():
    bridge = make_bridge("a")
    assert bridge.sync_to_shared_text(parse_lines("a\nb")) == Result.OK
    assert str(bridge.text) == "a\nb"
    assert not bridge.pending
    assert bridge.sync_to_shared_text(parse_lines("a\nb")) == Result.UNCHANGED
    # a user change reverting to the bridged text is not bridged back
    bridge.text.insert(3, "x")
    del bridge.text[3:4]
    assert bridge.pending
    assert bridge.flush() == Result.UNCHANGED
    assert str(bridge.fragment) == fragment_lines("a")


def test_sync_to_shared_text_serialize_error():
    errors = []
    bridge = make_bridge("a", serialize=failing_serialize, on_error=errors.append)
    assert bridge.sync_to_shared_text(parse_lines("boom")) == Result.SERIALIZE_ERROR
    assert str(bridge.text) == "a"
    assert [error.code for error in errors] == [Reason.SERIALIZE_ERROR]


def test_sync_to_shared_tree():
    bridge = make_bridge("a\nb")
    first = bridge.fragment.children[0]
    assert bridge.sync_to_shared_tree(parse_lines("a\nc")) == Result.OK
    assert str(bridge.fragment) == fragment_lines("ac")
    assert bridge.fragment.children[0] == first
    assert not bridge.pending


def test_sync_editor():
    bridge = make_bridge(lines="a\nb")
    editor = Editor(parse_lines("a"))
    first = editor.doc.child(0)
    changes = []
    editor.observe(lambda tr, ed: changes.append(bridge.is_crdt_sync_change(tr)))
    assert bridge.sync_editor(editor) == Result.OK
    assert serialize_lines(editor.doc) == "a\nb"
    assert editor.doc.child(0) is first
    assert editor.undo_depth == 0
    assert changes == [True]
    assert bridge.sync_editor(editor) == Result.UNCHANGED
    assert not bridge.is_crdt_sync_change(editor.transaction())


def test_editor_sync():
    bridge = make_bridge("a")
    editor = Editor(parse_lines("a"))
    sync = EditorSync(bridge, editor)
    tr = editor.transaction().replace_with(parse_lines("a\nb"))
    editor.dispatch(tr)
    assert str(bridge.text) == "a\nb"
    assert str(bridge.fragment) == fragment_lines("ab")
    assert not bridge.pending

    sync.close()
    assert sync.closed
    editor.dispatch(editor.transaction().replace_with(parse_lines("c")))
    assert str(bridge.text) == "a\nb"
    sync.close()


def test_editor_sync_skips_crdt_changes(monkeypatch):
    bridge = make_bridge("a")
    editor = Editor(parse_lines("a"))
    EditorSync(bridge, editor)
    calls = []
    monkeypatch.setattr(bridge, "sync_to_shared_tree", calls.append)
    bridge.text.insert(len(bridge.text), "\nb")
    bridge.flush()
    assert bridge.sync_editor(editor) == Result.OK
    assert serialize_lines(editor.doc) == "a\nb"
    assert calls == []


def test_editor_sync_round_trip():
    # text edit -> fragment -> editor -> no echo back into the text
    bridge = make_bridge("a\nb")
    editor = Editor(parse_lines("a\nb"))
    EditorSync(bridge, editor)
    bridge.text.insert(3, "x")
    assert bridge.flush() == Result.OK
    assert bridge.sync_editor(editor) == Result.OK
    assert serialize_lines(editor.doc) == "a\nbx"
    assert str(bridge.text) == "a\nbx"
    assert not bridge.pending


def test_editor_sync_already_wired():
    bridge = make_bridge("a")
    warnings = []
    first = EditorSync(bridge, Editor(parse_lines("a")), on_warning=warnings.append)
    EditorSync(bridge, Editor(parse_lines("a")), on_warning=warnings.append)
    assert [warning.code for warning in warnings] == ["bridge-already-wired"]
    first.close()


def test_editor_sync_rewire_after_close():
    bridge = make_bridge("a")
    warnings = []
    EditorSync(bridge, Editor(parse_lines("a")), on_warning=warnings.append).close()
    EditorSync(bridge, Editor(parse_lines("a")), on_warning=warnings.append)
    assert warnings == []


def test_editor_sync_failure(monkeypatch):
    bridge = make_bridge("a")
    editor = Editor(parse_lines("a"))
    failures = []
    warnings = []
    EditorSync(
        bridge,
        editor,
        on_sync_failure=lambda result, ed: failures.append((result, ed)),
        on_warning=warnings.append,
    )
    monkeypatch.setattr(bridge, "sync_to_shared_text", lambda tree: Result.DETACHED)
    editor.dispatch(editor.transaction().replace_with(parse_lines("b")))
    assert failures == [(Result.DETACHED, editor)]
    assert [warning.code for warning in warnings] == ["sync-failed"]
    assert str(bridge.fragment) == fragment_lines("a")


def test_editor_sync_serialize_error():
    errors = []
    bridge = make_bridge("a", serialize=failing_serialize, on_error=errors.append)
    editor = Editor(parse_lines("a"))
    failures = []
    warnings = []
    EditorSync(
        bridge,
        editor,
        on_sync_failure=lambda result, ed: failures.append(result),
        on_warning=warnings.append,
    )
    origins = []
    bridge.fragment.observe_deep(lambda events, txn: origins.append(txn.origin))
    editor.dispatch(editor.transaction().replace_with(parse_lines("a\nboom")))
    assert str(bridge.text) == "a"
    assert str(bridge.fragment) == fragment_lines("a")
    assert origins == []
    assert failures == [Result.SERIALIZE_ERROR]
    assert [warning.code for warning in warnings] == ["sync-failed"]
    assert [error.code for error in errors] == [Reason.SERIALIZE_ERROR]


def test_editor_sync_multibyte_text():
    bridge = make_bridge("naïve 😀 x")
    editor = Editor(parse_lines("naïve 😀 x"))
    first = bridge.fragment.children[0]
    EditorSync(bridge, editor)
    editor.dispatch(editor.transaction().replace_with(parse_lines("naïve 😀 y\n😀")))
    assert str(bridge.text) == "naïve 😀 y\n😀"
    assert str(bridge.fragment) == fragment_lines(["naïve 😀 y", "😀"])
    assert bridge.fragment.children[0] == first
    assert not bridge.pending

    bridge.text.insert(len("naïve ".encode()), "très ")
    assert bridge.flush() == Result.OK
    assert str(bridge.fragment) == fragment_lines(["naïve très 😀 y", "😀"])
    assert bridge.sync_editor(editor) == Result.OK
    assert serialize_lines(editor.doc) == "naïve très 😀 y\n😀"
