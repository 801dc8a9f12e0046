from ._awareness import AwarenessAdapter as AwarenessAdapter
from ._awareness import CursorSync as CursorSync
from ._bridge import DEFAULT_PARSE_CACHE_SIZE as DEFAULT_PARSE_CACHE_SIZE
from ._bridge import BoundBridge as BoundBridge
from ._bridge import Bridge as Bridge
from ._bridge import diff_range as diff_range
from ._cache import ParseCache as ParseCache
from ._cache import SerializeMemo as SerializeMemo
from ._collab import BootstrapResult as BootstrapResult
from ._collab import BootstrapSource as BootstrapSource
from ._collab import CollabBridge as CollabBridge
from ._collab import EditorSync as EditorSync
from ._diff import TextDiff as TextDiff
from ._diff import code_point_offset as code_point_offset
from ._diff import diff_text as diff_text
from ._diff import utf8_offset as utf8_offset
from ._editor import HISTORY_META as HISTORY_META
from ._editor import Editor as Editor
from ._node import Node as Node
from ._node import ReplaceError as ReplaceError
from ._node import Slice as Slice
from ._offset_map import LocateContext as LocateContext
from ._offset_map import MatchResult as MatchResult
from ._offset_map import MatchRun as MatchRun
from ._offset_map import OffsetMap as OffsetMap
from ._offset_map import OffsetMapWriter as OffsetMapWriter
from ._offset_map import TextSegment as TextSegment
from ._offset_map import build_offset_map as build_offset_map
from ._offset_map import lookup as lookup
from ._offset_map import reverse_lookup as reverse_lookup
from ._offset_map import wrap_serialize as wrap_serialize
from ._text import TextBuffer as TextBuffer
from ._transaction import Step as Step
from ._transaction import Transaction as Transaction
from ._types import ADD_TO_HISTORY_META as ADD_TO_HISTORY_META
from ._types import BRIDGE_META as BRIDGE_META
from ._types import CRDT_SYNC_META as CRDT_SYNC_META
from ._types import ORIGIN_INIT as ORIGIN_INIT
from ._types import ORIGIN_TEXT_TO_TREE as ORIGIN_TEXT_TO_TREE
from ._types import ORIGIN_TREE_TO_TEXT as ORIGIN_TREE_TO_TEXT
from ._types import EditTransaction as EditTransaction
from ._types import ErrorEvent as ErrorEvent
from ._types import Fallback as Fallback
from ._types import FullTree as FullTree
from ._types import IncrementalParseRequest as IncrementalParseRequest
from ._types import RangedTree as RangedTree
from ._types import Reason as Reason
from ._types import Result as Result
from ._types import TextTarget as TextTarget
from ._types import TreeEditor as TreeEditor
from ._types import WarningEvent as WarningEvent
from ._types import default_normalize as default_normalize
from ._version import __version__ as __version__
from ._xml import element_to_node as element_to_node
from ._xml import fragment_to_node as fragment_to_node
from ._xml import node_to_element as node_to_element
from ._xml import reconcile as reconcile
from ._xml import replace_fragment as replace_fragment
from ._xml import replace_shared_text as replace_shared_text
from ._xml import replace_shared_tree as replace_shared_tree
