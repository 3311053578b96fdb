import base64
import http
import logging
import os
import sys

from flask import Flask, jsonify, request

from bundles import BundleResolver
from errors import DecodeError, InjectorError
from kube import KubeClient, load_core_api
from reviewers import MutationReviewer, ValidationReviewer
from settings import ConfigStore, ConfigWatcher

logger = logging.getLogger(__name__)


def admission_review(uid, response):
    body = {
        'allowed': response.allowed,
        'uid': uid,
    }
    if response.patch:
        body['patchType'] = response.patch_type
        body['patch'] = base64.b64encode(response.patch).decode()
    return {
        'apiVersion': 'admission.k8s.io/v1',
        'kind': 'AdmissionReview',
        'response': body
    }


def create_app(store, kube):
    app = Flask(__name__)
    reviewers = {
        'mutate': MutationReviewer(store, kube),
        'validate': ValidationReviewer(),
    }

    def handle(name):
        body = request.get_json(silent=True)
        if not isinstance(body, dict) or not isinstance(body.get('request'), dict):
            return jsonify({'error': 'invalid admission review'}), http.HTTPStatus.BAD_REQUEST

        try:
            response = reviewers[name].review(body['request'])
        except DecodeError as e:
            logger.warning("Rejected %s request: %s", name, e)
            return jsonify({'error': str(e)}), http.HTTPStatus.BAD_REQUEST
        except InjectorError as e:
            logger.exception("Failed %s request", name)
            return jsonify({'error': str(e)}), http.HTTPStatus.INTERNAL_SERVER_ERROR

        return jsonify(admission_review(body['request'].get('uid'), response))

    @app.route('/mutate', methods=['POST'])
    def mutate():
        return handle('mutate')

    @app.route('/validate', methods=['POST'])
    def validate():
        return handle('validate')

    @app.route('/health', methods=['GET'])
    def health():
        return jsonify({'status': 'ok'}), http.HTTPStatus.OK

    return app


def main():
    logging.basicConfig(
        level=os.environ.get('LOG_LEVEL', 'INFO').upper(),
        format='%(asctime)s %(levelname)s %(name)s %(message)s'
    )
    timeout = float(os.environ.get('CA_INJECTOR_TIMEOUT', '10'))
    kube = KubeClient(load_core_api(), timeout=timeout)
    store = ConfigStore(
        path=os.environ.get('CA_INJECTOR_CONFIG', '/etc/ca-injector/config.yaml'),
        resolver=BundleResolver(kube=kube, timeout=timeout)
    )
    try:
        store.reload()
    except InjectorError as e:
        logger.error("Cannot load config: %s", e)
        sys.exit(1)
    ConfigWatcher(store).start()

    app = create_app(store, kube)
    app.run(
        host='0.0.0.0',
        port=int(os.environ.get('CA_INJECTOR_PORT', '8443')),
        ssl_context=(
            os.environ.get('TLS_CERT_FILE', '/tls/tls.crt'),
            os.environ.get('TLS_KEY_FILE', '/tls/tls.key')
        )
    )


if __name__ == '__main__':
    main()  # pragma: no cover
