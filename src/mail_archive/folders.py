"""Folder hierarchy synthesis from the labels recorded in the message index."""

from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
from types import MappingProxyType
from typing import Iterator, Mapping, Sequence

from mail_archive.readers.mbox_index import MessageIndexEntry

ALL_MAIL = "All Mail"
CATEGORIES_ID = "__categories__"
CATEGORIES_NAME = "Categories"
CATEGORY_PREFIX = "Category "
PATH_SEPARATOR = "/"
DEFAULT_FOLDER_NAME = "Inbox"

SYSTEM_LABEL_ORDER = (
    "Inbox",
    "Starred",
    "Important",
    "Sent",
    "Drafts",
    "Spam",
    "Trash",
    "Chats",
)
_SYSTEM_RANK = {label: rank for rank, label in enumerate(SYSTEM_LABEL_ORDER)}


@dataclass(frozen=True)
class FolderNode:
    id: str
    name: str
    message_count: int
    children: tuple["FolderNode", ...] = ()


@dataclass(frozen=True)
class FolderTree:
    """Immutable folder nodes plus the folder id -> message ordinals lookup."""

    folders: tuple[FolderNode, ...]
    folder_messages: Mapping[str, tuple[int, ...]]

    def iter_nodes(self) -> Iterator[FolderNode]:
        """Yield every node depth-first in display order."""
        stack = list(reversed(self.folders))
        while stack:
            node = stack.pop()
            yield node
            stack.extend(reversed(node.children))

    def find(self, folder_id: str) -> FolderNode | None:
        return next((node for node in self.iter_nodes() if node.id == folder_id), None)


@dataclass
class _NodeBuilder:
    name: str
    message_count: int
    children: list[str] = field(default_factory=list)


def synthesize_folders(index: Sequence[MessageIndexEntry], archive_name: str) -> FolderTree:
    """Build the folder tree for an archive.

    Label folders are used as soon as any message carries a label; otherwise
    every message lands in one folder named ``archive_name``.
    """

    if any(entry.labels for entry in index):
        return label_folder_tree(index)
    return single_folder_tree(len(index), archive_name)


def single_folder_tree(message_count: int, archive_name: str) -> FolderTree:
    name = archive_name or DEFAULT_FOLDER_NAME
    return FolderTree(
        folders=(FolderNode(id=name, name=name, message_count=message_count),),
        folder_messages=MappingProxyType({name: tuple(range(message_count))}),
    )


def label_folder_tree(index: Sequence[MessageIndexEntry]) -> FolderTree:
    """Build folders from message labels.

    ``Category *`` labels are grouped under a synthetic ``Categories`` node,
    labels containing ``/`` become nested nodes sharing common prefixes, and an
    ``All Mail`` folder always lists every message.
    """

    label_messages: dict[str, list[int]] = {}
    for ordinal, entry in enumerate(index):
        for raw_label in entry.labels:
            label = raw_label.strip()
            if not label:
                continue
            ordinals = label_messages.setdefault(label, [])
            if not ordinals or ordinals[-1] != ordinal:
                ordinals.append(ordinal)
    label_messages[ALL_MAIL] = list(range(len(index)))
    folder_messages = {label: tuple(ordinals) for label, ordinals in label_messages.items()}

    arena: dict[str, _NodeBuilder] = {}
    top_level: list[str] = []
    category_children: list[str] = []

    for label in sorted(folder_messages, key=label_sort_key):
        if label.startswith(CATEGORY_PREFIX):
            arena[label] = _NodeBuilder(
                name=label[len(CATEGORY_PREFIX) :],
                message_count=len(folder_messages[label]),
            )
            category_children.append(label)
            continue

        segments = label.split(PATH_SEPARATOR)
        siblings = top_level
        for depth, segment in enumerate(segments):
            node_id = PATH_SEPARATOR.join(segments[: depth + 1])
            node = arena.get(node_id)
            if node is None:
                # Intermediate paths only count messages labelled with that exact path.
                node = _NodeBuilder(
                    name=segment,
                    message_count=len(folder_messages.get(node_id, ())),
                )
                arena[node_id] = node
                siblings.append(node_id)
            siblings = node.children

    def freeze(node_id: str) -> FolderNode:
        node = arena[node_id]
        return FolderNode(
            id=node_id,
            name=node.name,
            message_count=node.message_count,
            children=tuple(freeze(child_id) for child_id in node.children),
        )

    folders = [freeze(node_id) for node_id in top_level]
    if category_children:
        folders.append(
            FolderNode(
                id=CATEGORIES_ID,
                name=CATEGORIES_NAME,
                message_count=0,
                children=tuple(freeze(node_id) for node_id in category_children),
            )
        )

    return FolderTree(folders=tuple(folders), folder_messages=MappingProxyType(folder_messages))


def label_sort_key(label: str) -> tuple[int, str, str]:
    return (_SYSTEM_RANK.get(label, len(SYSTEM_LABEL_ORDER)), label.casefold(), label)


def archive_display_name(path: Path, original_name: str | None = None) -> str:
    """Return the folder name for an unlabelled archive: its base name without extension."""

    source = original_name or str(path)
    name = source.replace("\\", "/").rsplit("/", 1)[-1]
    stem, dot, _extension = name.rpartition(".")
    if dot:
        name = stem
    return name or DEFAULT_FOLDER_NAME


__all__ = [
    "ALL_MAIL",
    "CATEGORIES_ID",
    "CATEGORIES_NAME",
    "CATEGORY_PREFIX",
    "FolderNode",
    "FolderTree",
    "SYSTEM_LABEL_ORDER",
    "archive_display_name",
    "label_folder_tree",
    "label_sort_key",
    "single_folder_tree",
    "synthesize_folders",
]
