from .base import AuthzType, FetchOutcome, FetchRequest, FetchResponse
