import logging

import urllib3
from kubernetes import client
from kubernetes.client.exceptions import ApiException

from errors import AlreadyExistsError, NotFoundError, SyncError

logger = logging.getLogger(__name__)


class ConfigMapSynchronizer:

    def __init__(self, kube, configmap_name):
        self.kube = kube
        self.configmap_name = configmap_name

    def upsert(self, namespace, bundle_name, bundle_content):
        """Make sure the namespace's bundle configmap holds ``bundle_content`` under ``bundle_name``.

        Writes only when the stored value differs. Returns True if a create or
        update was issued.
        """
        try:
            return self._upsert(namespace, bundle_name, bundle_content)
        except (ApiException, urllib3.exceptions.HTTPError, NotFoundError) as e:
            raise SyncError(f"sync bundle {bundle_name} to {namespace}/{self.configmap_name} failed: {e}") from e

    def _upsert(self, namespace, bundle_name, bundle_content):
        try:
            configmap = self.kube.get_configmap(namespace, self.configmap_name)
        except NotFoundError:
            try:
                self._create(namespace, bundle_name, bundle_content)
                return True
            except AlreadyExistsError:
                logger.info("Configmap %s/%s created concurrently, re-reading", namespace, self.configmap_name)
                configmap = self.kube.get_configmap(namespace, self.configmap_name)

        data = dict(configmap.data or {})
        if data.get(bundle_name) == bundle_content:
            return False

        logger.info("Adding/Updating bundle %s on %s", bundle_name, namespace)
        data[bundle_name] = bundle_content
        configmap.data = data
        self.kube.update_configmap(namespace, configmap)
        return True

    def _create(self, namespace, bundle_name, bundle_content):
        logger.info("Creating bundles configmap on %s with %s", namespace, bundle_name)
        self.kube.create_configmap(namespace, client.V1ConfigMap(
            api_version="v1",
            kind="ConfigMap",
            metadata=client.V1ObjectMeta(
                name=self.configmap_name,
                namespace=namespace
            ),
            data={
                bundle_name: bundle_content
            }
        ))
