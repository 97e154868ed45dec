"""Tests for uniform results and error classification."""

import requests

from results import (
    DEFAULT_ERROR_MESSAGE,
    ServiceResult,
    get_error_message,
    is_auth_error,
    is_network_error
)

class HTTPFailure(Exception):
    def __init__(self, status_code):
        super().__init__(f"status {status_code}")
        self.status_code = status_code

def test_ok_and_fail_shapes():
    assert ServiceResult.ok([1, 2]).to_dict() == {'success': True, 'data': [1, 2]}
    assert ServiceResult.fail('boom').to_dict() == {'success': False, 'error': 'boom'}
    assert ServiceResult.ok(message='done').to_dict() == {'success': True, 'message': 'done'}

def test_get_error_message():
    assert get_error_message(None) == DEFAULT_ERROR_MESSAGE
    assert get_error_message('plain') == 'plain'
    assert get_error_message({'message': 'from dict'}) == 'from dict'
    assert get_error_message({'error': 'nested'}) == 'nested'
    assert get_error_message(ValueError('bad value')) == 'bad value'
    assert get_error_message(ValueError()) == 'ValueError'

def test_is_network_error():
    assert is_network_error(requests.exceptions.ConnectionError('refused'))
    assert is_network_error(requests.exceptions.Timeout())
    assert is_network_error(Exception('Network request failed'))
    assert is_network_error('Unable to connect to server')
    assert not is_network_error(ValueError('Invalid email'))

def test_is_auth_error():
    assert is_auth_error(HTTPFailure(401))
    assert is_auth_error(HTTPFailure(403))
    assert not is_auth_error(HTTPFailure(500))
    assert is_auth_error(Exception('Token expired'))
    assert is_auth_error('Unauthorized - No authentication token provided')
    assert not is_auth_error(Exception('Product not found'))
