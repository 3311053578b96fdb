import base64
import collections
import http

import pytest
from kubernetes import client
from kubernetes.client.exceptions import ApiException

from app import create_app
from bundles import Bundle, BundleSpec, BundleType
from kube import KubeClient
from settings import Config, ConfigStore

TEST_CERTIFICATE = """-----BEGIN CERTIFICATE-----
MIIDazCCAlOgAwIBAgIUIQDtYdVyYzIapvNndRrYojB+STUwDQYJKoZIhvcNAQEL
BQAwRTELMAkGA1UEBhMCQVUxEzARBgNVBAgMClNvbWUtU3RhdGUxITAfBgNVBAoM
GEludGVybmV0IFdpZGdpdHMgUHR5IEx0ZDAeFw0yMjEwMjMxOTA4MzVaFw0yMjEx
MjIxOTA4MzVaMEUxCzAJBgNVBAYTAkFVMRMwEQYDVQQIDApTb21lLVN0YXRlMSEw
HwYDVQQKDBhJbnRlcm5ldCBXaWRnaXRzIFB0eSBMdGQwggEiMA0GCSqGSIb3DQEB
-----END CERTIFICATE-----
"""

INJECT = "ca-injector.io/inject"
INJECTED = "ca-injector.io/injected"
CONFIGMAP_NAME = "ca-bundles"


class FakeCoreV1Api(object):
    """In-memory stand-in for the CoreV1Api calls KubeClient makes."""

    def __init__(self):
        self.secrets = {}
        self.configmaps = {}
        self.calls = collections.Counter()
        self.fail_with = None

    def add_secret(self, namespace, name, data):
        self.secrets[(namespace, name)] = {k: base64.b64encode(v.encode()).decode() for k, v in data.items()}

    def add_configmap(self, namespace, name, data):
        self.configmaps[(namespace, name)] = (dict(data), 1)

    def _call(self, method):
        self.calls[method] += 1
        if self.fail_with is not None:
            raise ApiException(status=self.fail_with, reason=http.HTTPStatus(self.fail_with).phrase)

    def read_namespaced_secret(self, name, namespace, **kwargs):
        self._call("read_secret")
        if (namespace, name) not in self.secrets:
            raise ApiException(status=404, reason="Not Found")
        return client.V1Secret(
            metadata=client.V1ObjectMeta(name=name, namespace=namespace),
            data=dict(self.secrets[(namespace, name)])
        )

    def read_namespaced_config_map(self, name, namespace, **kwargs):
        self._call("read_configmap")
        if (namespace, name) not in self.configmaps:
            raise ApiException(status=404, reason="Not Found")
        data, version = self.configmaps[(namespace, name)]
        return client.V1ConfigMap(
            metadata=client.V1ObjectMeta(name=name, namespace=namespace, resource_version=str(version)),
            data=dict(data)
        )

    def create_namespaced_config_map(self, namespace, body, **kwargs):
        self._call("create_configmap")
        key = (namespace, body.metadata.name)
        if key in self.configmaps:
            raise ApiException(status=409, reason="Conflict")
        self.configmaps[key] = (dict(body.data or {}), 1)
        return body

    def replace_namespaced_config_map(self, name, namespace, body, **kwargs):
        self._call("update_configmap")
        data, version = self.configmaps[(namespace, name)]
        if body.metadata.resource_version != str(version):
            raise ApiException(status=409, reason="Conflict")
        self.configmaps[(namespace, name)] = (dict(body.data or {}), version + 1)
        return body

    def stored(self, namespace, name):
        return self.configmaps[(namespace, name)][0]


def make_config(bundles=("a", "b")):
    return Config(
        annotation_inject=INJECT,
        annotation_injected=INJECTED,
        configmap_name=CONFIGMAP_NAME,
        bundles={
            name: Bundle(name, BundleSpec(BundleType.LOCAL, TEST_CERTIFICATE), TEST_CERTIFICATE)
            for name in bundles
        }
    )


def make_pod(annotations=None, containers=2, namespace="default"):
    return {
        "apiVersion": "v1",
        "kind": "Pod",
        "metadata": {
            "name": "test-pod",
            "namespace": namespace,
            "annotations": dict(annotations or {}),
        },
        "spec": {
            "volumes": [],
            "containers": [
                {"name": f"c{i}", "image": "busybox", "volumeMounts": []}
                for i in range(containers)
            ],
        },
    }


def make_request(obj, namespace="default", resource="pods", uid="test-uid"):
    return {
        "uid": uid,
        "namespace": namespace,
        "resource": {"group": "", "version": "v1", "resource": resource},
        "object": obj,
    }


@pytest.fixture
def core_api():
    return FakeCoreV1Api()


@pytest.fixture
def kube(core_api):
    return KubeClient(core_api)


@pytest.fixture
def store():
    s = ConfigStore()
    s.publish(make_config())
    return s


@pytest.fixture
def app(store, kube):
    app = create_app(store, kube)
    app.config['TESTING'] = True
    return app
