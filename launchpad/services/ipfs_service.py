"""
IPFS service for uploading token logos and metadata
"""

import asyncio
import logging
import os
from io import BytesIO
from typing import Dict, Optional, Tuple

import aiohttp
import requests

from launchpad.config import ALLOWED_LOGO_TYPES
from launchpad.errors import ErrorKind, PublishError
from launchpad.services.base import PublishResult

IMAGE_SIGNATURES = {
    'image/jpeg': (b'\xff\xd8\xff',),
    'image/png': (b'\x89PNG\r\n\x1a\n',),
    'image/gif': (b'GIF87a', b'GIF89a'),
}

PLATFORM_NAME = "Token Launchpad"


def _matches_signature(content: bytes, content_type: str) -> bool:
    if content_type == 'image/webp':
        return content[:4] == b'RIFF' and content[8:12] == b'WEBP'
    return any(content.startswith(sig) for sig in IMAGE_SIGNATURES.get(content_type, ()))


class IPFSService:
    """Pins logos and metadata JSON through Pinata, or web3.storage as a fallback"""

    PINATA_FILE_URL = "https://api.pinata.cloud/pinning/pinFileToIPFS"
    PINATA_JSON_URL = "https://api.pinata.cloud/pinning/pinJSONToIPFS"
    WEB3_STORAGE_URL = "https://api.web3.storage/upload"

    def __init__(self, pinata_api_key: Optional[str] = None, pinata_secret_key: Optional[str] = None,
                 web3_storage_token: Optional[str] = None, gateway: str = 'https://ipfs.io/ipfs/',
                 max_logo_size: int = 5 * 1024 * 1024, allowed_types=ALLOWED_LOGO_TYPES,
                 timeout: int = 30):
        """Initialize IPFS service with API keys"""
        self.pinata_api_key = pinata_api_key or os.getenv('PINATA_API_KEY')
        self.pinata_secret_key = pinata_secret_key or os.getenv('PINATA_SECRET_KEY')
        self.web3_storage_token = web3_storage_token or os.getenv('WEB3_STORAGE_TOKEN')
        self.gateway = gateway if gateway.endswith('/') else gateway + '/'
        self.max_logo_size = max_logo_size
        self.allowed_types = tuple(allowed_types)
        self.timeout = timeout
        self.logger = logging.getLogger('launchpad')

    @classmethod
    def from_config(cls, config) -> 'IPFSService':
        return cls(
            pinata_api_key=config.pinata_api_key,
            pinata_secret_key=config.pinata_secret_key,
            web3_storage_token=config.web3_storage_token,
            gateway=config.ipfs_gateway,
            max_logo_size=config.max_logo_size,
            allowed_types=config.allowed_logo_types,
        )

    @property
    def use_pinata(self) -> bool:
        return bool(self.pinata_api_key and self.pinata_secret_key)

    @property
    def configured(self) -> bool:
        return self.use_pinata or bool(self.web3_storage_token)

    def gateway_url(self, cid: str) -> str:
        return f"{self.gateway}{cid}"

    def validate_image(self, content: bytes, content_type: str) -> None:
        """Reject logos that can never be published - not worth retrying"""
        if not content:
            raise PublishError("Logo file is empty", ErrorKind.REJECTED)
        if len(content) > self.max_logo_size:
            raise PublishError(
                f"Logo is {len(content)} bytes, limit is {self.max_logo_size}", ErrorKind.REJECTED)
        if content_type not in self.allowed_types:
            raise PublishError(f"Invalid file type: {content_type}", ErrorKind.REJECTED)
        if not _matches_signature(content, content_type):
            raise PublishError(f"Logo content is not a valid {content_type} image", ErrorKind.REJECTED)

    def build_metadata(self, image_url: str, attributes: Dict) -> Dict:
        """Token metadata document referenced by the mint"""
        name = attributes['name']
        symbol = attributes['symbol']
        creator = attributes.get('creator')
        return {
            "name": name,
            "symbol": symbol,
            "description": attributes.get('description') or f"{name} ({symbol}) - Created with {PLATFORM_NAME}",
            "image": image_url,
            "external_url": attributes.get('website') or "",
            "attributes": [
                {"trait_type": "Supply", "value": str(attributes.get('supply', ''))},
                {"trait_type": "Decimals", "value": attributes.get('decimals')},
                {"trait_type": "Launch Type", "value": attributes.get('tier', 'basic')},
                {"trait_type": "Platform", "value": PLATFORM_NAME},
            ],
            "properties": {
                "category": "token",
                "creators": [{"address": creator, "verified": False, "share": 100}] if creator else [],
            },
        }

    async def publish(self, content: bytes, content_type: str, attributes: Dict) -> PublishResult:
        """Upload the logo, then the metadata JSON that points at it"""
        self.validate_image(content, content_type)
        if not self.configured:
            raise PublishError("No IPFS service configured (set PINATA_API_KEY/PINATA_SECRET_KEY "
                               "or WEB3_STORAGE_TOKEN)", ErrorKind.REJECTED)

        loop = asyncio.get_running_loop()
        image_cid = await loop.run_in_executor(
            None, self.upload_image_to_ipfs, content, content_type, attributes.get('symbol', 'token'))

        metadata = self.build_metadata(self.gateway_url(image_cid), attributes)
        metadata_cid = await loop.run_in_executor(None, self.upload_metadata_to_ipfs, metadata)

        return PublishResult(locator=self.gateway_url(metadata_cid), content_hash=metadata_cid)

    def upload_image_to_ipfs(self, image_data: bytes, content_type: str, name: str = 'token') -> str:
        """Upload raw image bytes, returns the CID"""
        if self.use_pinata:
            files = {'file': (f'{name}-logo', BytesIO(image_data), content_type)}
            response = self._post(self.PINATA_FILE_URL, files=files, headers=self._pinata_headers())
            ipfs_hash = self._cid(response, 'IpfsHash')
        else:
            headers = {
                "Authorization": f"Bearer {self.web3_storage_token}",
                "X-NAME": f"{name}-logo",
                "Content-Type": content_type,
            }
            response = self._post(self.WEB3_STORAGE_URL, data=image_data, headers=headers)
            ipfs_hash = self._cid(response, 'cid')

        self.logger.info(f"Image uploaded to IPFS: {ipfs_hash}")
        return ipfs_hash

    def upload_metadata_to_ipfs(self, metadata: Dict) -> str:
        """Upload metadata JSON, returns the CID"""
        if self.use_pinata:
            body = {"pinataContent": metadata,
                    "pinataMetadata": {"name": f"{metadata.get('symbol', 'token')}_metadata.json"}}
            response = self._post(self.PINATA_JSON_URL, json=body, headers=self._pinata_headers())
            ipfs_hash = self._cid(response, 'IpfsHash')
        else:
            headers = {
                "Authorization": f"Bearer {self.web3_storage_token}",
                "Content-Type": "application/json",
            }
            response = self._post(self.WEB3_STORAGE_URL, json=metadata, headers=headers)
            ipfs_hash = self._cid(response, 'cid')

        self.logger.info(f"Metadata uploaded to IPFS: {ipfs_hash}")
        return ipfs_hash

    def _pinata_headers(self) -> Dict[str, str]:
        return {
            "pinata_api_key": self.pinata_api_key,
            "pinata_secret_api_key": self.pinata_secret_key,
        }

    def _post(self, url: str, **kwargs) -> requests.Response:
        """POST and classify failures: network/429/5xx are transient, other 4xx are rejected"""
        try:
            response = requests.post(url, timeout=self.timeout, **kwargs)
        except (requests.ConnectionError, requests.Timeout) as e:
            raise PublishError(f"IPFS upload failed: {e}", ErrorKind.TRANSIENT)
        except requests.RequestException as e:
            raise PublishError(f"IPFS upload failed: {e}", ErrorKind.REJECTED)

        if response.status_code == 200:
            return response

        kind = ErrorKind.TRANSIENT if response.status_code == 429 or response.status_code >= 500 \
            else ErrorKind.REJECTED
        self.logger.error(f"IPFS upload to {url} failed ({response.status_code}): {response.text[:200]}")
        raise PublishError(f"IPFS upload failed with HTTP {response.status_code}", kind)

    def _cid(self, response: requests.Response, key: str) -> str:
        """Pull the CID out of a successful upload response"""
        try:
            cid = response.json()[key]
        except (ValueError, KeyError, TypeError) as e:
            self.logger.error(f"IPFS upload response without {key}: {response.text[:200]}")
            raise PublishError(f"IPFS upload response did not include {key}", ErrorKind.TRANSIENT) from e
        if not cid:
            raise PublishError(f"IPFS upload response had an empty {key}", ErrorKind.TRANSIENT)
        return cid

    async def download_image(self, image_url: str) -> Tuple[bytes, str]:
        """Download a logo from a URL, returns (bytes, content type)"""
        try:
            async with aiohttp.ClientSession(timeout=aiohttp.ClientTimeout(total=self.timeout)) as session:
                async with session.get(image_url) as response:
                    if response.status != 200:
                        raise PublishError(f"Failed to download image: HTTP {response.status}",
                                           ErrorKind.REJECTED)
                    image_data = await response.read()
                    content_type = response.headers.get('Content-Type', 'image/jpeg').split(';')[0].strip()
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            raise PublishError(f"Failed to download image: {e}", ErrorKind.TRANSIENT)

        self.logger.debug(f"Downloaded {len(image_data)} bytes ({content_type}) from {image_url}")
        return image_data, content_type
