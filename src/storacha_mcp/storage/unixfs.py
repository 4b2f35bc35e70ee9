"""UnixFS import (files -> directory DAG) and export (DAG -> file bytes).

Import layout: raw leaves, fixed 1 MiB chunks, balanced trees of at most
1024 children per node, plain (unsharded) directories with links sorted by
name. Export additionally understands HAMT-sharded directories, legacy
dag-pb leaves and identity CIDs, so content imported elsewhere can be read
back.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Callable, Dict, Iterator, List, Optional, Tuple, Union

from .car import BlockStore
from .cid import CID, DAG_PB, RAW
from .dagpb import (
    DataType,
    PBLink,
    PBNode,
    UnixFSData,
    decode_node,
    decode_unixfs,
    encode_node,
    encode_unixfs,
)
from .errors import BlockError

logger = logging.getLogger(__name__)

CHUNK_SIZE = 1024 * 1024
MAX_CHILDREN = 1024


@dataclass(frozen=True)
class UnixFSFile:
    name: str
    content: bytes


@dataclass(frozen=True)
class DirectoryEntryLink:
    """A link written into a directory. `name` is the path below the root;
    the root directory itself is reported with an empty name."""
    name: str
    cid: CID
    dag_size: int


OnLink = Callable[[DirectoryEntryLink], None]

_Tree = Dict[str, Union["_Tree", bytes]]


class DirectoryEncoder:
    """Encode a batch of files into one UnixFS directory.

    Blocks accumulate in `blocks` in the order they are produced, children
    before parents, root last.
    """

    def __init__(
        self,
        chunk_size: int = CHUNK_SIZE,
        max_children: int = MAX_CHILDREN,
        on_directory_entry_link: Optional[OnLink] = None,
    ):
        if chunk_size <= 0 or max_children < 2:
            raise ValueError("invalid UnixFS layout settings")
        self.chunk_size = chunk_size
        self.max_children = max_children
        self.on_directory_entry_link = on_directory_entry_link
        self._blocks: Dict[CID, bytes] = {}

    @property
    def blocks(self) -> List[Tuple[CID, bytes]]:
        return list(self._blocks.items())

    def _put(self, cid: CID, block: bytes) -> None:
        self._blocks.setdefault(cid, block)

    def _emit(self, name: str, cid: CID, dag_size: int) -> None:
        if self.on_directory_entry_link is not None:
            self.on_directory_entry_link(DirectoryEntryLink(name, cid, dag_size))

    # -- files --

    def encode_file(self, content: bytes) -> Tuple[CID, int]:
        """Returns (cid, cumulative DAG size)."""
        chunks = [content[i:i + self.chunk_size] for i in range(0, len(content), self.chunk_size)]
        if not chunks:
            chunks = [b""]

        # (cid, content bytes covered, dag size)
        level: List[Tuple[CID, int, int]] = []
        for chunk in chunks:
            cid = CID.create(RAW, chunk)
            self._put(cid, chunk)
            level.append((cid, len(chunk), len(chunk)))

        while len(level) > 1:
            level = [
                self._file_node(level[i:i + self.max_children])
                for i in range(0, len(level), self.max_children)
            ]

        cid, _, dag_size = level[0]
        return cid, dag_size

    def _file_node(self, children: List[Tuple[CID, int, int]]) -> Tuple[CID, int, int]:
        sizes = [size for _, size, _ in children]
        data = UnixFSData(type=DataType.FILE, filesize=sum(sizes), blocksizes=sizes)
        node = PBNode(
            links=[PBLink(cid=cid, name="", tsize=dag) for cid, _, dag in children],
            data=encode_unixfs(data),
        )
        block = encode_node(node)
        cid = CID.create(DAG_PB, block)
        self._put(cid, block)
        return cid, sum(sizes), len(block) + sum(dag for _, _, dag in children)

    # -- directories --

    def encode_directory(self, files: List[UnixFSFile]) -> CID:
        """Encode `files` under a single root directory and return its CID.

        Names containing "/" create intermediate directories. A later file
        with the same name replaces an earlier one.
        """
        tree: _Tree = {}
        for f in files:
            parts = [p for p in f.name.split("/") if p not in ("", ".")]
            if not parts:
                raise ValueError(f"invalid file name: {f.name!r}")
            node = tree
            for part in parts[:-1]:
                child = node.setdefault(part, {})
                if not isinstance(child, dict):
                    raise ValueError(f"{part!r} is both a file and a directory")
                node = child
            if isinstance(node.get(parts[-1]), dict):
                raise ValueError(f"{parts[-1]!r} is both a file and a directory")
            node[parts[-1]] = f.content

        cid, dag_size = self._directory(tree, "")
        self._emit("", cid, dag_size)
        return cid

    def _directory(self, tree: _Tree, path: str) -> Tuple[CID, int]:
        links: List[PBLink] = []
        total = 0
        for name in sorted(tree, key=lambda n: n.encode("utf-8")):
            entry = tree[name]
            entry_path = f"{path}/{name}" if path else name
            if isinstance(entry, dict):
                cid, dag_size = self._directory(entry, entry_path)
            else:
                cid, dag_size = self.encode_file(entry)
            self._emit(entry_path, cid, dag_size)
            links.append(PBLink(cid=cid, name=name, tsize=dag_size))
            total += dag_size

        block = encode_node(PBNode(links=links, data=encode_unixfs(UnixFSData(type=DataType.DIRECTORY))))
        cid = CID.create(DAG_PB, block)
        self._put(cid, block)
        return cid, len(block) + total


# -- export --

def _node(store: BlockStore, cid: CID) -> Tuple[PBNode, UnixFSData]:
    if cid.codec != DAG_PB:
        raise BlockError(f"not a UnixFS node: {cid}")
    try:
        node = decode_node(store.get(cid))
        if node.data is None:
            raise ValueError("missing UnixFS data")
        return node, decode_unixfs(node.data)
    except ValueError as e:
        raise BlockError(f"Invalid UnixFS node {cid}: {e}") from e


def _hamt_lookup(store: BlockStore, node: PBNode, fanout: int, name: str) -> Optional[CID]:
    # link names are a hex bucket prefix, followed by the entry name for
    # entries; bare prefixes point at sub-shards
    prefix_len = len(format(fanout - 1, "X"))
    for link in node.links:
        if len(link.name) == prefix_len:
            sub, data = _node(store, link.cid)
            if data.type != DataType.HAMT_SHARD:
                raise BlockError(f"Invalid HAMT shard: {link.cid}")
            found = _hamt_lookup(store, sub, data.fanout or fanout, name)
            if found is not None:
                return found
        elif link.name[prefix_len:] == name:
            return link.cid
    return None


def _lookup(store: BlockStore, cid: CID, name: str) -> CID:
    node, data = _node(store, cid)
    found: Optional[CID] = None
    if data.type == DataType.DIRECTORY:
        found = next((link.cid for link in node.links if link.name == name), None)
    elif data.type == DataType.HAMT_SHARD:
        if not data.fanout:
            raise BlockError(f"HAMT shard without fanout: {cid}")
        found = _hamt_lookup(store, node, data.fanout, name)
    else:
        raise BlockError(f"not a directory: {cid}")
    if found is None:
        raise BlockError(f"file does not exist: {name}")
    return found


def resolve(store: BlockStore, root: CID, path: str) -> CID:
    """Follow `path` (segments separated by "/") from `root`."""
    cid = root
    for segment in path.split("/"):
        if segment:
            cid = _lookup(store, cid, segment)
    return cid


def file_content(store: BlockStore, cid: CID) -> Iterator[bytes]:
    """Yield the bytes of the file rooted at `cid`, in order."""
    if cid.codec == RAW:
        yield store.get(cid)
        return
    node, data = _node(store, cid)
    if data.type not in (DataType.FILE, DataType.RAW):
        raise BlockError(f"not a file: {cid}")
    if data.data:
        yield data.data
    for link in node.links:
        yield from file_content(store, link.cid)


def export_file(store: BlockStore, root: CID, path: str) -> Iterator[bytes]:
    """Resolve `path` below `root` and stream the file's bytes."""
    target = resolve(store, root, path)
    logger.debug("Exporting %s%s -> %s", root, path, target)
    return file_content(store, target)
