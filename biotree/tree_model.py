#!/usr/bin/env python
"""
Tree Model Module - Arena-based representation of phylogenetic trees

Nodes live in a flat table owned by the Tree and refer to each other by
integer index. A child list is the only ownership relation; the parent index
is a back-reference used for upward navigation. Removing a node leaves a
tombstone so that stale identifiers fail loudly instead of aliasing a new node.
"""

import logging
from collections import deque

from biotree.exceptions import NotFoundError, StructureError


def add_lengths(first, second):
    """Sum two optional branch lengths. Absent plus absent stays absent."""
    if first is None and second is None:
        return None
    return (first or 0.0) + (second or 0.0)


class Node:
    """A node of a Tree, addressed by its arena index."""

    def __init__(self, node_id, label=None, length=None, support=None, metadata=None):
        self.id = node_id
        self.label = label
        self.length = length
        self.support = support
        self.metadata = dict(metadata) if metadata else {}
        self.parent_id = None
        self.child_ids = []

    def is_leaf(self):
        return not self.child_ids

    def is_internal(self):
        return bool(self.child_ids)

    @property
    def name(self):
        """Label if present, otherwise the numeric identity as a string."""
        return self.label if self.label is not None else str(self.id)

    def __repr__(self):
        return f"<Node {self.id} label={self.label!r} length={self.length!r} support={self.support!r}>"


class Tree:
    """Owns a root node and every node reachable from it."""

    def __init__(self):
        self._nodes = []
        self.root_id = None
        self._label_index = None
        self.logger = logging.getLogger(__name__)

    # Construction

    def new_node(self, label=None, length=None, support=None, metadata=None):
        """
        Create an unattached node in the arena.

        Args:
            label (str, optional): Display label.
            length (float, optional): Branch length to the future parent.
            support (float, optional): Support of the branch to the future parent.
            metadata (dict, optional): Opaque key/value annotations.

        Returns:
            Node: The new node.
        """
        node = Node(len(self._nodes), label, length, support, metadata)
        self._nodes.append(node)
        self._label_index = None
        return node

    def set_root(self, node):
        """Make an unattached node the root of the tree."""
        node = self.node(node)
        if node.parent_id is not None:
            raise StructureError(f"Node {node.id} is owned by node {node.parent_id} and cannot be the root",
                                 token=node.id)
        self.root_id = node.id
        self._label_index = None

    def add_child(self, parent, child, index=None):
        """
        Attach child under parent.

        Args:
            parent (Node or int): The new owner.
            child (Node or int): An unattached node.
            index (int, optional): Position in the parent's child list; appended if omitted.

        Raises:
            StructureError: If the child is already owned, is the root, or is an
                            ancestor of the parent.
        """
        parent = self.node(parent)
        child = self.node(child)

        if child.parent_id is not None:
            raise StructureError(f"Node {child.id} is already owned by node {child.parent_id}",
                                 token=child.id)
        if child.id == self.root_id:
            raise StructureError("The root cannot be attached under another node", token=child.id)

        # Walk up from the parent: meeting the child means a cycle. A leaf cannot close one
        cursor = parent if child.child_ids else None
        while cursor is not None:
            if cursor.id == child.id:
                raise StructureError(f"Attaching node {child.id} under node {parent.id} would create a cycle",
                                     token=child.id)
            cursor = self.parent(cursor)

        if index is None:
            parent.child_ids.append(child.id)
        else:
            parent.child_ids.insert(index, child.id)
        child.parent_id = parent.id
        self._label_index = None
        return child

    def detach(self, node):
        """
        Cut a node (with its subtree) loose from its parent.

        Returns:
            int: The position the node occupied in the parent's child list.
        """
        node = self.node(node)
        parent = self.parent(node)
        if parent is None:
            raise StructureError(f"Node {node.id} has no parent to detach from", token=node.id)
        index = parent.child_ids.index(node.id)
        del parent.child_ids[index]
        node.parent_id = None
        self._label_index = None
        return index

    def remove(self, node):
        """Detach a node and tombstone it together with its whole subtree."""
        node = self.node(node)
        if node.parent_id is not None:
            self.detach(node)
        elif node.id == self.root_id:
            self.root_id = None
        for descendant in list(self.preorder(node)):
            self._nodes[descendant.id] = None
        self._label_index = None

    def splice(self, node, inherit_support=False):
        """
        Remove an internal node, moving its children up to its parent.

        Each child is inserted where the removed node was and its length is
        summed with the removed node's length. A root with a single child is
        replaced by that child, which takes over the root-edge values.

        Args:
            node (Node or int): The node to remove.
            inherit_support (bool): Give the removed node's support to children
                                    that have none. Correct when the node has a
                                    single child, since both edges are the same split.
        """
        node = self.node(node)
        children = self.children(node)

        if node.id == self.root_id:
            if len(children) != 1:
                raise StructureError("Only a root with a single child can be spliced out", token=node.id)
            child = children[0]
            node.child_ids = []
            child.parent_id = None
            child.length = node.length
            if child.support is None:
                child.support = node.support
            self.root_id = child.id
            self._nodes[node.id] = None
            self._label_index = None
            return child

        parent = self.parent(node)
        index = self.detach(node)
        for offset, child in enumerate(children):
            child.parent_id = None
            child.length = add_lengths(node.length, child.length)
            if inherit_support and child.support is None:
                child.support = node.support
            self.add_child(parent, child, index + offset)
        node.child_ids = []
        self._nodes[node.id] = None
        self._label_index = None
        return parent

    def relabel(self, node, label):
        """Set the display label of a node, keeping the lookup index current."""
        node = self.node(node)
        node.label = label
        self._label_index = None

    def assign_internal_labels(self, prefix="NODE_"):
        """
        Give every unlabeled internal node a generated label.

        Labels are the reserved prefix followed by a counter that increases in
        pre-order, starting after the highest counter already in use.

        Returns:
            int: Number of labels assigned.
        """
        counter = 0
        for node in self.preorder():
            if node.label and node.label.startswith(prefix) and node.label[len(prefix):].isdigit():
                counter = max(counter, int(node.label[len(prefix):]))

        assigned = 0
        for node in self.internal_nodes():
            if node.label is None:
                counter += 1
                node.label = f"{prefix}{counter}"
                assigned += 1
        self._label_index = None
        self.logger.debug(f"Assigned {assigned} internal node labels with prefix {prefix}")
        return assigned

    # Addressing

    @property
    def root(self):
        if self.root_id is None:
            return None
        return self._nodes[self.root_id]

    def node(self, node):
        """
        Resolve a Node or an arena index to the live Node.

        Raises:
            StructureError: If the index is unknown or refers to a removed node.
        """
        node_id = node.id if isinstance(node, Node) else node
        if not isinstance(node_id, int) or node_id < 0 or node_id >= len(self._nodes):
            raise StructureError(f"No node with identity {node_id} in this tree", token=node_id)
        found = self._nodes[node_id]
        if found is None:
            raise StructureError(f"Node {node_id} has been removed from the tree", token=node_id)
        if isinstance(node, Node) and found is not node:
            raise StructureError(f"Node {node_id} belongs to a different tree", token=node_id)
        return found

    def find(self, identifier):
        """
        Look up a node by label, falling back to its numeric identity.

        Args:
            identifier (str, int or Node): Label or identity.

        Returns:
            Node: The matching node.

        Raises:
            NotFoundError: If nothing in the tree matches.
        """
        if isinstance(identifier, Node):
            return self.node(identifier)
        if isinstance(identifier, int):
            if 0 <= identifier < len(self._nodes) and self._nodes[identifier] is not None:
                return self._nodes[identifier]
            raise NotFoundError(identifier)

        key = str(identifier).strip()
        labels = self._labels()
        if key in labels:
            return self._nodes[labels[key]]
        if key.isdigit():
            node_id = int(key)
            if node_id < len(self._nodes) and self._nodes[node_id] is not None:
                return self._nodes[node_id]
        raise NotFoundError(identifier)

    def find_all(self, identifiers):
        """Resolve a list of identifiers, failing on the first unknown one."""
        return [self.find(identifier) for identifier in identifiers]

    def _labels(self):
        if self._label_index is None:
            self._label_index = {}
            if self.root_id is not None:
                for node in self.preorder():
                    if node.label is None:
                        continue
                    if node.label in self._label_index:
                        self.logger.warning(f"Duplicate label {node.label}; lookups resolve to node "
                                            f"{self._label_index[node.label]}")
                        continue
                    self._label_index[node.label] = node.id
        return self._label_index

    def parent(self, node):
        node = self.node(node)
        if node.parent_id is None:
            return None
        return self._nodes[node.parent_id]

    def children(self, node):
        node = self.node(node)
        return [self._nodes[child_id] for child_id in node.child_ids]

    def ancestors(self, node):
        """Ancestors of a node, from its parent up to the root."""
        result = []
        cursor = self.parent(node)
        while cursor is not None:
            result.append(cursor)
            cursor = self.parent(cursor)
        return result

    def is_ancestor(self, ancestor, node):
        """True if ancestor lies on the path from node to the root (node excluded)."""
        ancestor = self.node(ancestor)
        return any(a.id == ancestor.id for a in self.ancestors(node))

    # Traversal

    def preorder(self, start=None):
        """Yield nodes depth-first, parents before children, children in branch order."""
        start = self.root if start is None else self.node(start)
        if start is None:
            return
        stack = [start]
        while stack:
            node = stack.pop()
            yield node
            stack.extend(self._nodes[child_id] for child_id in reversed(node.child_ids))

    def postorder(self, start=None):
        """Yield nodes depth-first, children before parents."""
        start = self.root if start is None else self.node(start)
        if start is None:
            return
        stack = [(start, False)]
        while stack:
            node, expanded = stack.pop()
            if expanded or node.is_leaf():
                yield node
                continue
            stack.append((node, True))
            stack.extend((self._nodes[child_id], False) for child_id in reversed(node.child_ids))

    def levelorder(self, start=None):
        """Yield nodes breadth-first."""
        start = self.root if start is None else self.node(start)
        if start is None:
            return
        queue = deque([start])
        while queue:
            node = queue.popleft()
            yield node
            queue.extend(self._nodes[child_id] for child_id in node.child_ids)

    def leaves(self, start=None):
        return [node for node in self.preorder(start) if node.is_leaf()]

    def internal_nodes(self, start=None):
        return [node for node in self.preorder(start) if node.is_internal()]

    def __iter__(self):
        return self.preorder()

    # Summaries

    @property
    def node_count(self):
        return sum(1 for _ in self.preorder())

    @property
    def leaf_count(self):
        return len(self.leaves())

    def total_length(self):
        """Sum of branch lengths below the root; absent lengths count as zero."""
        return sum(node.length or 0.0 for node in self.preorder() if node.id != self.root_id)

    def has_complete_lengths(self, nodes=None):
        """True if every given node (default: every non-root node) carries a length."""
        if nodes is None:
            nodes = [node for node in self.preorder() if node.id != self.root_id]
        return all(node.length is not None for node in nodes)

    # Copying

    def copy(self):
        """Copy the tree, keeping every node identity."""
        clone = Tree()
        for node in self._nodes:
            if node is None:
                clone._nodes.append(None)
                continue
            twin = Node(node.id, node.label, node.length, node.support, node.metadata)
            twin.parent_id = node.parent_id
            twin.child_ids = list(node.child_ids)
            clone._nodes.append(twin)
        clone.root_id = self.root_id
        return clone

    def copy_subtree(self, start, keep=None):
        """
        Copy the subtree below start into a new tree with fresh identities.

        Args:
            start (Node or int): Root of the copied subtree.
            keep (set, optional): Identities to copy; children outside it are dropped
                                  together with their subtrees. The start node is
                                  always copied.

        Returns:
            Tree: The new tree.
        """
        start = self.node(start)
        clone = Tree()
        mapping = {}
        for node in self.preorder(start):
            if node.id != start.id:
                if keep is not None and node.id not in keep:
                    continue
                if node.parent_id not in mapping:
                    continue
            twin = clone.new_node(node.label, node.length, node.support, node.metadata)
            mapping[node.id] = twin.id
            if node.id == start.id:
                clone.set_root(twin)
            else:
                clone.add_child(mapping[node.parent_id], twin)
        return clone

    def __repr__(self):
        return f"<Tree nodes={self.node_count} leaves={self.leaf_count}>"
