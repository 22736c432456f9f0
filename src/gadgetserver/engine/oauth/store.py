# src/gadgetserver/engine/oauth/store.py

import json
import logging
from typing import Dict, Optional, Tuple

from pydantic import BaseModel, ValidationError as PydanticValidationError

from gadgetserver.services.exceptions import ConfigurationError, ValidationError
from .base import SignatureMethod

logger = logging.getLogger(__name__)


class OAuthConsumer(BaseModel):
    consumer_key: str
    consumer_secret: str = ""
    key_type: SignatureMethod = SignatureMethod.HMAC_SHA1


class OAuthConsumerStore:
    """
    Consumer credentials per (gadget URL, service name).

    File format:
    {
        "http://example.com/gadget.xml": {
            "photos": {"consumer_key": "...", "consumer_secret": "...", "key_type": "HMAC-SHA1"}
        }
    }
    """

    def __init__(self, consumers: Optional[Dict[Tuple[str, str], OAuthConsumer]] = None):
        self._consumers: Dict[Tuple[str, str], OAuthConsumer] = dict(consumers or {})

    @classmethod
    def from_dict(cls, data: Dict) -> "OAuthConsumerStore":
        consumers = {}
        try:
            for gadget_url, services in data.items():
                for service_name, raw in services.items():
                    consumers[(gadget_url, service_name)] = OAuthConsumer.model_validate(raw)
        except (AttributeError, PydanticValidationError) as e:
            raise ConfigurationError(f"Invalid OAuth consumer configuration: {e}")
        return cls(consumers)

    @classmethod
    def load(cls, path: Optional[str]) -> "OAuthConsumerStore":
        if not path:
            return cls()
        try:
            with open(path, "r", encoding="utf-8") as f:
                data = json.load(f)
        except (OSError, json.JSONDecodeError) as e:
            raise ConfigurationError(f"Cannot read OAuth consumers from {path}: {e}")
        store = cls.from_dict(data)
        logger.info(f"Loaded {len(store)} OAuth consumers from {path}")
        return store

    def get(self, gadget_url: str, service_name: Optional[str]) -> OAuthConsumer:
        consumer = self._consumers.get((gadget_url, service_name or ""))
        if consumer is None:
            raise ValidationError(
                f"No OAuth consumer registered for service '{service_name}' of gadget {gadget_url}"
            )
        return consumer

    def __len__(self) -> int:
        return len(self._consumers)
