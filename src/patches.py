import jsonpatch
from jsonpointer import JsonPointer


def _pointer(parts):
    return JsonPointer.from_parts(parts).path


def _walk(parts, src, dst, ops):
    if isinstance(src, dict) and isinstance(dst, dict):
        for key in src:
            if key not in dst:
                ops.append({"op": "remove", "path": _pointer(parts + [key])})
        for key, value in dst.items():
            if key not in src:
                ops.append({"op": "add", "path": _pointer(parts + [key]), "value": value})
            else:
                _walk(parts + [key], src[key], value, ops)
    elif isinstance(src, list) and isinstance(dst, list):
        common = min(len(src), len(dst))
        for i in range(common):
            _walk(parts + [i], src[i], dst[i], ops)
        for i in range(common, len(dst)):
            ops.append({"op": "add", "path": _pointer(parts + [i]), "value": dst[i]})
        # remove from the tail so earlier indices stay valid
        for i in reversed(range(common, len(src))):
            ops.append({"op": "remove", "path": _pointer(parts + [i])})
    elif type(src) is not type(dst) or src != dst:
        ops.append({"op": "replace", "path": _pointer(parts), "value": dst})


def _rank(path, order):
    for i, prefix in enumerate(order):
        if path == prefix or path.startswith(prefix + "/"):
            return i
    return len(order)


def diff(original, mutated, order=()):
    """Structural diff of two JSON documents as a list of JSON Patch operations.

    Operations come out in document order, then are stably grouped by the
    pointer prefixes in ``order``; paths not covered by ``order`` go last.
    """
    ops = []
    _walk([], original, mutated, ops)
    return sorted(ops, key=lambda op: _rank(op["path"], order))


def to_patch(ops):
    return jsonpatch.JsonPatch(ops)
