"""
Embedding utilities for memory storage.
Binary serialization and vectorised similarity over stored vectors.
"""

import struct
from typing import List, Sequence, Tuple

import numpy as np


def embed_to_blob(embedding: List[float]) -> bytes:
    """
    Convert embedding list to binary blob (float32).

    Args:
        embedding: List of floats representing the embedding vector

    Returns:
        Binary blob representation (packed float32 values)
    """
    return struct.pack(f'{len(embedding)}f', *embedding)


def blob_to_embed(blob: bytes) -> List[float]:
    """Unpack a float32 blob into a list of floats."""
    if not blob:
        return []
    num_floats = len(blob) // 4
    return list(struct.unpack(f'{num_floats}f', blob))


def cosine_similarities(query: Sequence[float],
                        rows: Sequence[Tuple[int, bytes]]) -> List[Tuple[int, float]]:
    """
    Cosine similarity between a query and many stored vectors.

    Rows whose dimensionality differs from the query are skipped, since
    vectors from a different embedding model cannot be compared.

    Args:
        query: Query vector
        rows: (key, embedding_blob) pairs

    Returns:
        (key, similarity) pairs in input order
    """
    if not query or not rows:
        return []

    query_vec = np.array(query, dtype=np.float32)
    query_norm = np.linalg.norm(query_vec)
    if query_norm == 0:
        return []

    keys = []
    vectors = []
    for key, blob in rows:
        vec = blob_to_embed(blob)
        if len(vec) != len(query_vec):
            continue
        keys.append(key)
        vectors.append(vec)

    if not vectors:
        return []

    matrix = np.array(vectors, dtype=np.float32)
    norms = np.linalg.norm(matrix, axis=1)
    dots = np.dot(matrix, query_vec)
    similarities = np.divide(dots, norms * query_norm,
                             out=np.zeros_like(dots),
                             where=(norms * query_norm) > 0)

    return [(key, float(sim)) for key, sim in zip(keys, similarities)]
