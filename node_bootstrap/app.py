"""
Flask application that serves the trust bundle during a distribution session.

The application exposes a single route, ``GET /<bundle-file-name>``. Every
other path is a 404; nothing else on the authority's filesystem is reachable.
Transport is plain HTTP without authentication: run it on a trusted network
segment only.
"""
import logging
from typing import Callable, Optional

from flask import Flask, Response, abort, jsonify, request

from .models.trust import TrustBundle


def create_distribution_app(bundle: TrustBundle,
                            on_fetch: Optional[Callable[[str], None]] = None) -> Flask:
    """
    Build the distribution application for ``bundle``.

    Args:
        bundle: The bundle to serve; its bytes are held in memory for the session
        on_fetch: Called with the peer address once a full response has been sent
    """
    app = Flask(__name__)
    logger = logging.getLogger(__name__)

    @app.route('/<path:file_name>', methods=['GET'])
    def download(file_name):
        if file_name != bundle.file_name:
            logger.warning(f"Refused request for {file_name!r} from {request.remote_addr}")
            abort(404)

        peer = request.remote_addr or "unknown"
        logger.info(f"Serving {bundle.file_name} to {peer}")

        response = Response(bundle.content, mimetype='application/x-pkcs12')
        response.headers['Content-Disposition'] = f'attachment; filename="{bundle.file_name}"'
        response.headers['Cache-Control'] = 'no-store'
        if on_fetch is not None and request.method == 'GET':
            response.call_on_close(lambda: on_fetch(peer))
        return response

    @app.errorhandler(404)
    def not_found(error):
        return jsonify({'error': 'Not found'}), 404

    @app.errorhandler(405)
    def method_not_allowed(error):
        return jsonify({'error': 'Method not allowed'}), 405

    return app
