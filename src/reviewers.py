import copy
import logging
from dataclasses import dataclass

from configmaps import ConfigMapSynchronizer
from errors import DecodeError
from patches import diff, to_patch

logger = logging.getLogger(__name__)

PATCH_TYPE_JSON_PATCH = "JSONPatch"

PODS_RESOURCE = {"group": "", "version": "v1", "resource": "pods"}
POD_KIND = {"apiVersion": "v1", "kind": "Pod"}

CERTS_DIR = "/etc/ssl/certs"
INJECTED_VALUE = "true"

PATCH_ORDER = ("/spec/volumes", "/spec/containers", "/metadata/annotations")


@dataclass(frozen=True)
class AdmissionResponse:
    allowed: bool
    patch: bytes = b""
    patch_type: str = PATCH_TYPE_JSON_PATCH


def mount_path(bundle_name):
    return f"{CERTS_DIR}/{bundle_name}.pem"


def decode_pod(request):
    """Check that an admission request is about a v1 Pod and return the pod document."""
    if not isinstance(request, dict):
        raise DecodeError("admission review has no request")

    resource = request.get("resource")
    if not isinstance(resource, dict):
        raise DecodeError("admission request has no resource")
    gvr = {k: resource.get(k) or "" for k in PODS_RESOURCE}
    if gvr != PODS_RESOURCE:
        raise DecodeError(f"expected resource {PODS_RESOURCE}, got {gvr}")

    pod = request.get("object")
    if not isinstance(pod, dict):
        raise DecodeError("admission request has no object")
    gvk = {k: pod.get(k) for k in POD_KIND}
    if gvk != POD_KIND:
        raise DecodeError(f"expected kind {POD_KIND}, got {gvk}")
    if not isinstance(pod.get("metadata", {}), dict):
        raise DecodeError("pod metadata is not an object")
    spec = pod.get("spec")
    if not isinstance(spec, dict) or not isinstance(spec.get("containers"), list):
        raise DecodeError("pod spec has no containers")
    if not all(isinstance(c, dict) for c in spec["containers"]):
        raise DecodeError("pod containers must be objects")
    return pod


def requested_bundles(value):
    names = []
    for name in value.split(","):
        name = name.strip()
        if name and name not in names:
            names.append(name)
    return names


def inject(pod, bundle_names, config):
    """Return a copy of ``pod`` with the bundles volume, mounts and injected annotation added."""
    new_pod = copy.deepcopy(pod)
    spec = new_pod["spec"]

    spec.setdefault("volumes", []).append({
        "name": config.configmap_name,
        "configMap": {
            "name": config.configmap_name
        }
    })

    for c in spec["containers"]:
        mounts = c.setdefault("volumeMounts", [])
        for b in bundle_names:
            mounts.append({
                "name": config.configmap_name,
                "mountPath": mount_path(b),
                "subPath": b
            })

    annotations = new_pod.setdefault("metadata", {}).setdefault("annotations", {})
    annotations[config.annotation_injected] = INJECTED_VALUE
    return new_pod


class MutationReviewer:

    def __init__(self, store, kube):
        self.store = store
        self.kube = kube

    def review(self, request):
        config = self.store.current()
        pod = decode_pod(request)
        metadata = pod.get("metadata") or {}

        value = (metadata.get("annotations") or {}).get(config.annotation_inject)
        if value is None:
            return AdmissionResponse(allowed=True)
        if not isinstance(value, str):
            raise DecodeError(f"annotation {config.annotation_inject} must be a string")

        names = requested_bundles(value)
        if not names:
            return AdmissionResponse(allowed=True)

        namespace = request.get("namespace") or metadata.get("namespace")
        if not namespace:
            raise DecodeError("admission request has no namespace")

        bundles = [config.bundle(name) for name in names]
        pod_name = f"{namespace}/{metadata.get('generateName', '')}{metadata.get('name', '')}"
        logger.info("Adding bundles %s to pod %s", names, pod_name)

        synchronizer = ConfigMapSynchronizer(self.kube, config.configmap_name)
        for bundle in bundles:
            synchronizer.upsert(namespace, bundle.name, bundle.resolved)

        new_pod = inject(pod, names, config)
        ops = diff(pod, new_pod, PATCH_ORDER)
        if not ops:
            return AdmissionResponse(allowed=True)
        return AdmissionResponse(allowed=True, patch=to_patch(ops).to_string().encode())


class ValidationReviewer:

    def review(self, request):
        return AdmissionResponse(allowed=True)
