"""
Tests for the bundle distribution Flask application.
"""
import unittest
from unittest.mock import Mock

from node_bootstrap.app import create_distribution_app
from node_bootstrap.models.trust import TrustBundle


class TestDistributionApp(unittest.TestCase):
    """Test cases for create_distribution_app."""

    def setUp(self):
        self.bundle = TrustBundle(content=b"\x30\x82\x0a\x1bkeystore")
        self.on_fetch = Mock()
        self.app = create_distribution_app(self.bundle, on_fetch=self.on_fetch)
        self.client = self.app.test_client()

    def test_download_bundle(self):
        response = self.client.get('/elastic-certificates.p12')

        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.data, self.bundle.content)
        self.assertEqual(response.mimetype, 'application/x-pkcs12')
        self.assertEqual(response.headers['Cache-Control'], 'no-store')
        self.assertIn('elastic-certificates.p12', response.headers['Content-Disposition'])
        self.assertEqual(int(response.headers['Content-Length']), len(self.bundle.content))

    def test_fetch_reported_when_response_closes(self):
        response = self.client.get('/elastic-certificates.p12',
                                   environ_base={'REMOTE_ADDR': '10.0.0.21'})
        response.close()

        self.on_fetch.assert_called_once_with('10.0.0.21')

    def test_head_is_not_a_fetch(self):
        response = self.client.head('/elastic-certificates.p12')
        response.close()

        self.assertEqual(response.status_code, 200)
        self.on_fetch.assert_not_called()

    def test_unknown_file(self):
        response = self.client.get('/elastic-stack-ca.p12')

        self.assertEqual(response.status_code, 404)
        self.assertEqual(response.get_json(), {'error': 'Not found'})
        self.on_fetch.assert_not_called()

    def test_root_is_not_found(self):
        self.assertEqual(self.client.get('/').status_code, 404)

    def test_other_methods_rejected(self):
        response = self.client.put('/elastic-certificates.p12', data=b"x")

        self.assertEqual(response.status_code, 405)
        self.assertEqual(response.get_json(), {'error': 'Method not allowed'})

    def test_without_fetch_callback(self):
        app = create_distribution_app(self.bundle)
        response = app.test_client().get('/elastic-certificates.p12')
        self.assertEqual(response.data, self.bundle.content)


if __name__ == '__main__':
    unittest.main()
