"""
Standard Merkle tree compatible with OpenZeppelin's StandardMerkleTree.

Leaves are double keccak256 hashes of the ABI encoded values, sorted by hash,
laid out as a complete binary tree in an array with the root at index 0.
Pairs are hashed in sorted order so proofs verify with MerkleProof.sol.

The JSON dump uses the "standard-v1" format, so trees persisted here load
in the JavaScript library and vice versa.
"""

import json
from typing import Any, Dict, Iterator, List, Sequence, Tuple

from eth_abi import encode
from eth_utils import encode_hex, keccak, to_bytes

from reward_settlement.core.exceptions import InvalidState

FORMAT = "standard-v1"


def _coerce(leaf_encoding: Sequence[str], value: Sequence[Any]) -> List[Any]:
    coerced = []
    for abi_type, item in zip(leaf_encoding, value):
        if abi_type.startswith(("uint", "int")) and isinstance(item, str):
            coerced.append(int(item, 0))
        else:
            coerced.append(item)
    return coerced


def leaf_hash(leaf_encoding: Sequence[str], value: Sequence[Any]) -> bytes:
    return keccak(keccak(encode(list(leaf_encoding), _coerce(leaf_encoding, value))))


def hash_pair(a: bytes, b: bytes) -> bytes:
    return keccak(b"".join(sorted([a, b])))


def _left_child(i: int) -> int:
    return 2 * i + 1


def _right_child(i: int) -> int:
    return 2 * i + 2


def _parent(i: int) -> int:
    if i <= 0:
        raise ValueError("Root has no parent")
    return (i - 1) // 2


def _sibling(i: int) -> int:
    if i <= 0:
        raise ValueError("Root has no siblings")
    return i + 1 if i % 2 == 1 else i - 1


def make_merkle_tree(leaves: Sequence[bytes]) -> List[bytes]:
    if not leaves:
        raise ValueError("Expected non-zero number of leaves")

    tree: List[bytes] = [b""] * (2 * len(leaves) - 1)
    for i, leaf in enumerate(leaves):
        tree[len(tree) - 1 - i] = leaf
    for i in range(len(tree) - 1 - len(leaves), -1, -1):
        tree[i] = hash_pair(tree[_left_child(i)], tree[_right_child(i)])
    return tree


def process_proof(leaf: bytes, proof: Sequence[bytes]) -> bytes:
    result = leaf
    for node in proof:
        result = hash_pair(result, node)
    return result


class StandardMerkleTree:
    """Merkle tree over ABI encoded tuples (e.g. ("address", "uint256"))."""

    def __init__(self, tree: List[bytes], values: List[Dict[str, Any]], leaf_encoding: List[str]):
        self._tree = tree
        self._values = values
        self.leaf_encoding = leaf_encoding

    @classmethod
    def of(cls, values: Sequence[Sequence[Any]], leaf_encoding: Sequence[str]) -> "StandardMerkleTree":
        hashed = sorted(
            (
                (leaf_hash(leaf_encoding, value), value_index)
                for value_index, value in enumerate(values)
            ),
            key=lambda item: item[0],
        )
        tree = make_merkle_tree([leaf for leaf, _ in hashed])

        indexed_values = [{"value": list(value), "treeIndex": 0} for value in values]
        for leaf_index, (_, value_index) in enumerate(hashed):
            indexed_values[value_index]["treeIndex"] = len(tree) - leaf_index - 1

        return cls(tree, indexed_values, list(leaf_encoding))

    @classmethod
    def load(cls, data: Dict[str, Any]) -> "StandardMerkleTree":
        if data.get("format") != FORMAT:
            raise ValueError(f"Unknown format '{data.get('format')}'")
        tree = [to_bytes(hexstr=node) for node in data["tree"]]
        return cls(tree, data["values"], data["leafEncoding"])

    @classmethod
    def loads(cls, raw: str) -> "StandardMerkleTree":
        return cls.load(json.loads(raw))

    @property
    def root(self) -> str:
        return encode_hex(self._tree[0])

    def __len__(self) -> int:
        return len(self._values)

    def entries(self) -> Iterator[Tuple[int, List[Any]]]:
        for index, entry in enumerate(self._values):
            yield index, entry["value"]

    def get_proof(self, index: int) -> List[str]:
        """Inclusion proof of the value at `index` (value order, not tree order)."""
        tree_index = self._values[index]["treeIndex"]
        proof = []
        while tree_index > 0:
            proof.append(self._tree[_sibling(tree_index)])
            tree_index = _parent(tree_index)

        leaf = leaf_hash(self.leaf_encoding, self._values[index]["value"])
        if process_proof(leaf, proof) != self._tree[0]:
            raise InvalidState({"reason": "unable to prove value", "index": index})
        return [encode_hex(node) for node in proof]

    def verify(self, value: Sequence[Any], proof: Sequence[str]) -> bool:
        leaf = leaf_hash(self.leaf_encoding, value)
        nodes = [to_bytes(hexstr=node) for node in proof]
        return process_proof(leaf, nodes) == self._tree[0]

    def dump(self) -> Dict[str, Any]:
        return {
            "format": FORMAT,
            "tree": [encode_hex(node) for node in self._tree],
            "values": self._values,
            "leafEncoding": self.leaf_encoding,
        }

    def dumps(self) -> str:
        return json.dumps(self.dump())
