from .request_id_middleware import *
from .auth_middleware import *

__all__ = [
    "RequestIDMiddleware",
    "AuthMiddleware",
]
