"""
Injector configuration.

The config file is YAML; a handful of environment variables override it::

    annotations:
      inject: ca-injector.io/inject
      injected: ca-injector.io/injected
    configMapName: ca-bundles
    rootCA:
      corp:
        type: url
        source: https://pki.example.com/ca.pem

Every load resolves all bundles up front and produces a frozen ``Config``.
``ConfigStore`` publishes one generation at a time; request handlers take a
single snapshot with ``current()`` and never see a half-built config.
"""

import json
import logging
import os
import re
import threading
import types
from dataclasses import dataclass, field
from typing import Mapping

import yaml

from bundles import Bundle, BundleSpec
from errors import ConfigError, InjectorError, UnknownBundleError

logger = logging.getLogger(__name__)

ENV_CONFIGMAP_NAME = "CA_INJECTOR_CONFIGMAP_NAME"
ENV_ANNOTATIONS_INJECT = "CA_INJECTOR_ANNOTATIONS_INJECT"
ENV_ANNOTATIONS_INJECTED = "CA_INJECTOR_ANNOTATIONS_INJECTED"
ENV_ROOTCA = "CA_INJECTOR_ROOTCA"

POLL_INTERVAL_S = 5.0

BUNDLE_NAME = re.compile(r"[-._a-zA-Z0-9]+")


@dataclass(frozen=True)
class Config:
    annotation_inject: str
    annotation_injected: str
    configmap_name: str
    bundles: Mapping[str, Bundle] = field(default_factory=dict)

    def __post_init__(self):
        object.__setattr__(self, "bundles", types.MappingProxyType(dict(self.bundles)))

    def bundle(self, name) -> Bundle:
        try:
            return self.bundles[name]
        except KeyError:
            raise UnknownBundleError(f"unknown bundle {name!r}") from None


def _lower_keys(raw):
    if raw is None:
        return {}
    if not isinstance(raw, dict):
        raise ConfigError(f"expected a mapping, got {raw!r}")
    return {str(k).lower(): v for k, v in raw.items()}


def read_config(path, environ=None):
    """Read the config file and apply environment overrides.

    Returns a plain mapping with lower-cased top level keys.
    """
    environ = os.environ if environ is None else environ
    raw = {}
    if path:
        try:
            with open(path, "r") as f:
                raw = yaml.safe_load(f) or {}
        except OSError as e:
            raise ConfigError(f"cannot read config {path}: {e}") from e
        except yaml.YAMLError as e:
            raise ConfigError(f"cannot parse config {path}: {e}") from e
        if not isinstance(raw, dict):
            raise ConfigError(f"config {path} must be a mapping")

    data = _lower_keys(raw)
    annotations = data["annotations"] = _lower_keys(data.get("annotations"))

    if environ.get(ENV_CONFIGMAP_NAME):
        data["configmapname"] = environ[ENV_CONFIGMAP_NAME]
    if environ.get(ENV_ANNOTATIONS_INJECT):
        annotations["inject"] = environ[ENV_ANNOTATIONS_INJECT]
    if environ.get(ENV_ANNOTATIONS_INJECTED):
        annotations["injected"] = environ[ENV_ANNOTATIONS_INJECTED]
    if environ.get(ENV_ROOTCA):
        try:
            data["rootca"] = json.loads(environ[ENV_ROOTCA])
        except ValueError as e:
            raise ConfigError(f"{ENV_ROOTCA} is not valid JSON: {e}") from e

    return data


def parse_bundle_specs(raw):
    if raw is None:
        return {}
    if not isinstance(raw, dict):
        raise ConfigError("rootCA must be a mapping of bundle names")
    for name in raw:
        # Names become configmap keys and file names under the certs dir.
        if not isinstance(name, str) or not BUNDLE_NAME.fullmatch(name) or name in (".", ".."):
            raise ConfigError(f"invalid bundle name {name!r}")
    return {name: BundleSpec.parse(name, spec) for name, spec in raw.items()}


def _required(value, key):
    if not isinstance(value, str) or not value:
        raise ConfigError(f"{key} is required")
    return value


def build_config(data, resolver) -> Config:
    specs = parse_bundle_specs(data.get("rootca"))
    annotations = data.get("annotations") or {}
    inject = _required(annotations.get("inject"), "annotations.inject")
    injected = _required(annotations.get("injected"), "annotations.injected")
    configmap_name = _required(data.get("configmapname"), "configMapName")
    return Config(inject, injected, configmap_name, resolver.resolve_all(specs))


def load_config(path, resolver, environ=None) -> Config:
    logger.info("Loading config from %s", path)
    return build_config(read_config(path, environ), resolver)


class ConfigStore:

    def __init__(self, path=None, resolver=None, environ=None):
        self.path = path
        self.resolver = resolver
        self.environ = environ
        self._config = None
        self._lock = threading.Lock()

    def current(self) -> Config:
        config = self._config
        if config is None:
            raise ConfigError("config not loaded")
        return config

    def publish(self, config):
        with self._lock:
            self._config = config

    def reload(self) -> Config:
        # Reloads are serialized; readers never take the lock.
        with self._lock:
            config = load_config(self.path, self.resolver, self.environ)
            self._config = config
        logger.info("Loaded %d bundle(s): %s", len(config.bundles), ", ".join(config.bundles))
        return config


class ConfigWatcher:
    """Reload the store whenever the config file's mtime changes.

    Polls instead of relying on inotify so that ConfigMap volume updates,
    which swap a symlink, are picked up too. A failed reload is logged and
    the previous generation stays published.
    """

    def __init__(self, store, interval=POLL_INTERVAL_S):
        self.store = store
        self.interval = interval
        self._mtime = self._stat()
        self._stop = threading.Event()

    def _stat(self):
        try:
            return os.stat(self.store.path).st_mtime
        except OSError:
            return None

    def check(self):
        mtime = self._stat()
        if mtime is None or mtime == self._mtime:
            return False
        self._mtime = mtime
        try:
            self.store.reload()
        except InjectorError as e:
            logger.error("Config reload failed, keeping previous config: %s", e)
            return False
        return True

    def start(self):
        t = threading.Thread(target=self._poll_loop, daemon=True, name="config-watcher")
        t.start()
        logger.info("Config watcher started (poll every %.0fs)", self.interval)
        return t

    def stop(self):
        self._stop.set()

    def _poll_loop(self):
        while not self._stop.wait(self.interval):
            try:
                self.check()
            except Exception:
                logger.exception("Config watcher poll failed")
