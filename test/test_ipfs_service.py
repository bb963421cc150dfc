import asyncio

import pytest
import requests

from conftest import CREATOR, PNG_LOGO
from launchpad.errors import ErrorKind, PublishError
from launchpad.services import IPFSService

ATTRIBUTES = {
    'name': 'Meme Coin',
    'symbol': 'MEME',
    'description': None,
    'website': 'https://meme.example',
    'supply': 1_000_000_000,
    'decimals': 9,
    'tier': 'premium',
    'creator': CREATOR,
}


class FakeResponse:
    def __init__(self, status_code=200, payload=None, text=''):
        self.status_code = status_code
        self._payload = payload or {}
        self.text = text

    def json(self):
        return self._payload


class FakePost:
    def __init__(self, responses):
        self.responses = list(responses)
        self.calls = []

    def __call__(self, url, **kwargs):
        self.calls.append((url, kwargs))
        response = self.responses.pop(0)
        if isinstance(response, Exception):
            raise response
        return response


@pytest.fixture(autouse=True)
def no_env_keys(monkeypatch):
    for name in ('PINATA_API_KEY', 'PINATA_SECRET_KEY', 'WEB3_STORAGE_TOKEN'):
        monkeypatch.delenv(name, raising=False)


def pinata():
    return IPFSService(pinata_api_key='key', pinata_secret_key='secret', gateway='https://gw.example/ipfs')


def test_validate_image():
    service = pinata()
    service.validate_image(PNG_LOGO, 'image/png')
    service.validate_image(b'RIFF\x00\x00\x00\x00WEBPVP8 ', 'image/webp')
    service.validate_image(b'GIF89a' + b'\x00' * 10, 'image/gif')

    for content, content_type in [
        (b'', 'image/png'),
        (PNG_LOGO, 'image/svg+xml'),
        (b'<html>not an image</html>', 'image/png'),
        (PNG_LOGO, 'image/jpeg'),
    ]:
        with pytest.raises(PublishError) as exc:
            service.validate_image(content, content_type)
        assert exc.value.kind is ErrorKind.REJECTED


def test_oversized_logo_rejected():
    service = IPFSService(pinata_api_key='key', pinata_secret_key='secret', max_logo_size=16)

    with pytest.raises(PublishError) as exc:
        service.validate_image(PNG_LOGO, 'image/png')
    assert exc.value.kind is ErrorKind.REJECTED


def test_build_metadata():
    metadata = pinata().build_metadata('https://gw.example/ipfs/QmImage', ATTRIBUTES)

    assert metadata['name'] == 'Meme Coin'
    assert metadata['symbol'] == 'MEME'
    assert metadata['image'] == 'https://gw.example/ipfs/QmImage'
    assert metadata['description'] == 'Meme Coin (MEME) - Created with Token Launchpad'
    assert metadata['external_url'] == 'https://meme.example'
    traits = {a['trait_type']: a['value'] for a in metadata['attributes']}
    assert traits == {'Supply': '1000000000', 'Decimals': 9, 'Launch Type': 'premium', 'Platform': 'Token Launchpad'}
    assert metadata['properties']['creators'][0]['address'] == CREATOR


def test_publish_through_pinata(monkeypatch):
    post = FakePost([
        FakeResponse(payload={'IpfsHash': 'QmImage'}),
        FakeResponse(payload={'IpfsHash': 'QmMeta'}),
    ])
    monkeypatch.setattr(requests, 'post', post)

    result = asyncio.run(pinata().publish(PNG_LOGO, 'image/png', ATTRIBUTES))

    assert result.locator == 'https://gw.example/ipfs/QmMeta'
    assert result.content_hash == 'QmMeta'
    assert post.calls[0][0] == IPFSService.PINATA_FILE_URL
    assert post.calls[1][0] == IPFSService.PINATA_JSON_URL
    body = post.calls[1][1]['json']
    assert body['pinataContent']['image'] == 'https://gw.example/ipfs/QmImage'
    assert post.calls[1][1]['headers']['pinata_api_key'] == 'key'


def test_publish_through_web3_storage(monkeypatch):
    post = FakePost([FakeResponse(payload={'cid': 'bafyimage'}), FakeResponse(payload={'cid': 'bafymeta'})])
    monkeypatch.setattr(requests, 'post', post)
    service = IPFSService(web3_storage_token='token')

    result = asyncio.run(service.publish(PNG_LOGO, 'image/png', ATTRIBUTES))

    assert result.content_hash == 'bafymeta'
    assert result.locator == 'https://ipfs.io/ipfs/bafymeta'
    assert all(url == IPFSService.WEB3_STORAGE_URL for url, _ in post.calls)
    assert post.calls[0][1]['headers']['Authorization'] == 'Bearer token'


@pytest.mark.parametrize("response, kind", [
    (FakeResponse(status_code=503, text='unavailable'), ErrorKind.TRANSIENT),
    (FakeResponse(status_code=429, text='slow down'), ErrorKind.TRANSIENT),
    (FakeResponse(status_code=401, text='bad key'), ErrorKind.REJECTED),
    (requests.ConnectionError('reset'), ErrorKind.TRANSIENT),
    (requests.Timeout('timed out'), ErrorKind.TRANSIENT),
])
def test_upload_failures_are_classified(monkeypatch, response, kind):
    monkeypatch.setattr(requests, 'post', FakePost([response]))

    with pytest.raises(PublishError) as exc:
        asyncio.run(pinata().publish(PNG_LOGO, 'image/png', ATTRIBUTES))
    assert exc.value.kind is kind


def test_publish_without_credentials_is_rejected(monkeypatch):
    post = FakePost([])
    monkeypatch.setattr(requests, 'post', post)
    service = IPFSService()

    assert not service.configured
    with pytest.raises(PublishError) as exc:
        asyncio.run(service.publish(PNG_LOGO, 'image/png', ATTRIBUTES))
    assert exc.value.kind is ErrorKind.REJECTED
    assert post.calls == []


@pytest.mark.parametrize("response", [
    FakeResponse(payload={'unexpected': 'shape'}),
    FakeResponse(payload={'IpfsHash': ''}),
])
def test_upload_response_without_cid_is_transient(monkeypatch, response):
    monkeypatch.setattr(requests, 'post', FakePost([response]))

    with pytest.raises(PublishError) as exc:
        asyncio.run(pinata().publish(PNG_LOGO, 'image/png', ATTRIBUTES))
    assert exc.value.kind is ErrorKind.TRANSIENT
