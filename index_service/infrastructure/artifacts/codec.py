import gzip
import io
import json
import tarfile
from typing import Any, Dict, Iterable, List

import numpy as np

ARTIFACT_MEMBER_MANIFEST = "manifest.json"
ARTIFACT_MEMBER_CHUNKS = "chunks.jsonl.gz"
ARTIFACT_MEMBER_EMBEDDINGS = "embeddings.f16.bin"
ARTIFACT_MEMBER_NAMES = "names.map.json"
ARTIFACT_MEMBER_HNSW = "hnsw.index"


def encode_jsonl_gz(rows: Iterable[Dict[str, Any]]) -> bytes:
    buffer = io.BytesIO()
    with gzip.GzipFile(fileobj=buffer, mode="wb") as gz:
        for row in rows:
            gz.write(json.dumps(row, ensure_ascii=False).encode("utf-8"))
            gz.write(b"\n")
    return buffer.getvalue()


def decode_jsonl_gz(data: bytes) -> List[Dict[str, Any]]:
    rows: List[Dict[str, Any]] = []
    for line in gzip.decompress(data).decode("utf-8").splitlines():
        if line.strip():
            rows.append(json.loads(line))
    return rows


def encode_float16(matrix: np.ndarray) -> bytes:
    """Little-endian IEEE half precision, row-major."""
    return np.ascontiguousarray(matrix, dtype="<f2").tobytes()


def decode_float16(data: bytes, dims: int) -> np.ndarray:
    if dims <= 0:
        raise ValueError("dims must be positive")
    halves = np.frombuffer(data, dtype="<f2")
    if halves.size % dims != 0:
        raise ValueError(f"Embedding blob of {halves.size} values is not a multiple of {dims} dims")
    return halves.astype(np.float32).reshape(-1, dims)


def pack_tar_gz(members: Dict[str, bytes]) -> bytes:
    buffer = io.BytesIO()
    with tarfile.open(fileobj=buffer, mode="w:gz") as tar:
        for name, payload in members.items():
            info = tarfile.TarInfo(name=name)
            info.size = len(payload)
            tar.addfile(info, io.BytesIO(payload))
    return buffer.getvalue()


def unpack_tar_gz(data: bytes) -> Dict[str, bytes]:
    members: Dict[str, bytes] = {}
    with tarfile.open(fileobj=io.BytesIO(data), mode="r:gz") as tar:
        for member in tar.getmembers():
            if not member.isfile():
                continue
            extracted = tar.extractfile(member)
            if extracted is not None:
                members[member.name] = extracted.read()
    return members
