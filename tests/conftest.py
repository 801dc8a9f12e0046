import gc

import pytest
from docbridge import Node


def finalize():
    gc.collect()
    # looks like PyPy needs a second one:
    gc.collect()


@pytest.fixture(scope="function", autouse=True)
def collect_gc(request):
    request.addfinalizer(finalize)


def serialize_lines(doc: Node) -> str:
    return "\n".join(paragraph.text_content for paragraph in doc.children)


def parse_lines(text: str) -> Node:
    paragraphs = []
    for line in text.split("\n"):
        paragraphs.append(Node("paragraph", [Node.text_node(line)] if line else []))
    return Node("doc", paragraphs)


@pytest.fixture
def serialize():
    """One paragraph per line."""
    return serialize_lines


@pytest.fixture
def parse():
    """One paragraph per line."""
    return parse_lines
