import base64
import binascii
import enum
import logging
from dataclasses import dataclass

import requests
import urllib3
from kubernetes.client.exceptions import ApiException

from errors import ConfigError, FetchError, InvalidCertificateError, NotFoundError

logger = logging.getLogger(__name__)

CERTIFICATE_MARKER = "-----BEGIN CERTIFICATE-----"


class BundleType(enum.Enum):
    LOCAL = "local"
    URL = "url"
    SECRET = "secret"
    CONFIGMAP = "configMap"


@dataclass(frozen=True)
class BundleSpec:
    type: BundleType
    source: str

    @classmethod
    def parse(cls, name, raw):
        if not isinstance(raw, dict):
            raise ConfigError(f"bundle {name}: expected a mapping, got {raw!r}")
        fields = {str(k).lower(): v for k, v in raw.items()}
        try:
            bundle_type = BundleType(fields.get("type"))
        except ValueError:
            raise ConfigError(f"bundle {name}: unknown type {fields.get('type')!r}") from None
        source = fields.get("source")
        if not isinstance(source, str) or not source:
            raise ConfigError(f"bundle {name}: missing source")
        spec = cls(bundle_type, source)
        if bundle_type in (BundleType.SECRET, BundleType.CONFIGMAP):
            spec.reference()
        return spec

    def reference(self):
        """Split a ``namespace/name/key`` source into its three parts."""
        parts = self.source.split("/")
        if len(parts) != 3 or not all(parts):
            raise ConfigError(f"{self.type.value} source must be namespace/name/key, got {self.source!r}")
        return tuple(parts)


@dataclass(frozen=True)
class Bundle:
    name: str
    spec: BundleSpec
    resolved: str


def validate_certificate(bundle):
    # Tolerant check: only the begin marker is required, the PEM body is not parsed.
    if not bundle or CERTIFICATE_MARKER not in bundle:
        raise InvalidCertificateError("invalid certificate")


class BundleResolver:

    def __init__(self, kube=None, session=None, timeout=None):
        self.kube = kube
        self.session = session or requests.Session()
        self.timeout = timeout
        self._resolvers = {
            BundleType.LOCAL: self._from_local,
            BundleType.URL: self._from_url,
            BundleType.SECRET: self._from_secret,
            BundleType.CONFIGMAP: self._from_configmap,
        }

    def resolve(self, name, spec):
        logger.info("Fetching bundle %s from %s: %r", name, spec.type.value, spec.source)
        try:
            bundle = self._resolvers[spec.type](spec)
            validate_certificate(bundle)
        except InvalidCertificateError as e:
            raise InvalidCertificateError(f"bundle {name}: {e}") from e
        except (ApiException, urllib3.exceptions.HTTPError) as e:
            raise FetchError(f"bundle {name}: {e}") from e
        return bundle

    def resolve_all(self, specs):
        return {name: Bundle(name, spec, self.resolve(name, spec)) for name, spec in specs.items()}

    def _from_local(self, spec):
        return spec.source

    def _from_url(self, spec):
        try:
            r = self.session.get(spec.source, timeout=self.timeout)
        except requests.RequestException as e:
            raise FetchError(f"fetch {spec.source} failed: {e}") from e
        if not 200 <= r.status_code < 300:
            raise FetchError(f"fetch {spec.source} failed: {r.status_code}")
        return r.text

    def _from_secret(self, spec):
        namespace, name, key = spec.reference()
        secret = self._cluster().get_secret(namespace, name)
        value = (secret.data or {}).get(key)
        if value is None:
            raise NotFoundError(f"key {key} not found in secret {namespace}/{name}")
        try:
            return base64.b64decode(value, validate=True).decode()
        except (binascii.Error, UnicodeDecodeError) as e:
            raise InvalidCertificateError(f"secret {namespace}/{name} key {key} is not valid base64 text") from e

    def _from_configmap(self, spec):
        namespace, name, key = spec.reference()
        configmap = self._cluster().get_configmap(namespace, name)
        value = (configmap.data or {}).get(key)
        if value is None:
            raise NotFoundError(f"key {key} not found in configmap {namespace}/{name}")
        return value

    def _cluster(self):
        if self.kube is None:
            raise FetchError("no kubernetes client configured")
        return self.kube
