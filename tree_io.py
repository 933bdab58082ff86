from __future__ import annotations

import numpy as np

from errors import InvalidInputError
from pixel_feature import SplitDescriptor
from tree_builder import InternalNode, LeafNode, TreeNode


def _split_record(node: InternalNode) -> dict:
    return {
        "kind": "internal",
        "depth": node.depth,
        "n_samples": node.n_samples,
        "score": float(node.score),
        "offset1": list(node.split.offset1),
        "offset2": list(node.split.offset2),
        "channels": list(node.split.channels),
        "threshold": float(node.split.threshold),
    }


def _leaf_record(node: LeafNode) -> dict:
    return {
        "kind": "leaf",
        "depth": node.depth,
        "n_samples": node.n_samples,
        "label": node.label.tolist(),
        "label_std": None if node.label_std is None else node.label_std.tolist(),
        "index": node.index,
    }


def export_nodes(root: TreeNode) -> list[dict]:
    """Pre-order (left first) records describing the tree topology.

    Leaf descriptors are not included; they travel as the dense leaf
    descriptor matrix.
    """
    records: list[dict] = []
    stack = [root]
    while stack:
        node = stack.pop()
        if isinstance(node, InternalNode):
            records.append(_split_record(node))
            stack.append(node.right)
            stack.append(node.left)
        else:
            records.append(_leaf_record(node))
    return records


def import_nodes(records: list[dict], descriptor_dim: int) -> TreeNode:
    """Rebuild a tree from :func:`export_nodes` output.

    Leaves get zero descriptors of length ``descriptor_dim`` until the
    descriptor matrix is assigned.
    """
    position = 0

    def read_node() -> TreeNode:
        nonlocal position
        if position >= len(records):
            raise InvalidInputError("node records end before the tree is complete")
        record = records[position]
        position += 1

        kind = record.get("kind")
        if kind == "leaf":
            label_std = record.get("label_std")
            return LeafNode(
                label=np.asarray(record["label"], dtype=np.float64),
                descriptor=np.zeros(descriptor_dim, dtype=np.float64),
                n_samples=int(record["n_samples"]),
                depth=int(record["depth"]),
                label_std=None if label_std is None else np.asarray(label_std, dtype=np.float64),
                index=int(record.get("index", -1)),
            )
        if kind != "internal":
            raise InvalidInputError(f"unknown node kind: {kind}")

        split = SplitDescriptor(
            offset1=tuple(float(v) for v in record["offset1"]),
            offset2=tuple(float(v) for v in record["offset2"]),
            channels=tuple(int(c) for c in record["channels"]),
            threshold=float(record["threshold"]),
        )
        left = read_node()
        right = read_node()
        return InternalNode(
            split=split,
            left=left,
            right=right,
            n_samples=int(record["n_samples"]),
            depth=int(record["depth"]),
            score=float(record.get("score", 0.0)),
        )

    root = read_node()
    if position != len(records):
        raise InvalidInputError(
            f"{len(records) - position} node records left over after the tree is complete"
        )
    return root
