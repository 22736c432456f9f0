from .base import ParamsLocation, SignatureMethod, SignedRequest
from .signer import OAuthSigner
from .store import OAuthConsumer, OAuthConsumerStore
