import http
import logging

from kubernetes import client, config
from kubernetes.client.exceptions import ApiException
from kubernetes.config.config_exception import ConfigException

from errors import AlreadyExistsError, NotFoundError

logger = logging.getLogger(__name__)


def load_core_api():
    try:
        config.load_incluster_config()
        logger.info("Loaded in-cluster config")
    except ConfigException:
        config.load_kube_config()
        logger.info("Loaded kubeconfig")
    return client.CoreV1Api()


class KubeClient:
    """Thin wrapper over CoreV1Api exposing only what the injector needs.

    404 and 409 responses are translated into NotFoundError and
    AlreadyExistsError; every other ApiException propagates unchanged.
    """

    def __init__(self, api, timeout=None):
        self.api = api
        self.timeout = timeout

    def get_secret(self, namespace, name):
        try:
            return self.api.read_namespaced_secret(name=name, namespace=namespace, _request_timeout=self.timeout)
        except ApiException as e:
            if e.status == http.HTTPStatus.NOT_FOUND:
                raise NotFoundError(f"secret {namespace}/{name} not found") from e
            raise

    def get_configmap(self, namespace, name):
        try:
            return self.api.read_namespaced_config_map(name=name, namespace=namespace, _request_timeout=self.timeout)
        except ApiException as e:
            if e.status == http.HTTPStatus.NOT_FOUND:
                raise NotFoundError(f"configmap {namespace}/{name} not found") from e
            raise

    def create_configmap(self, namespace, body):
        try:
            return self.api.create_namespaced_config_map(namespace=namespace, body=body, _request_timeout=self.timeout)
        except ApiException as e:
            if e.status == http.HTTPStatus.CONFLICT:
                raise AlreadyExistsError(f"configmap {namespace}/{body.metadata.name} already exists") from e
            raise

    def update_configmap(self, namespace, body):
        return self.api.replace_namespaced_config_map(
            name=body.metadata.name, namespace=namespace, body=body, _request_timeout=self.timeout
        )
