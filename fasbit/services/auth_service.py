import datetime as dt
import uuid

from jose import jwt, JWTError

from fasbit.config import Config
from fasbit.errors import AuthError


class AuthService:
    """Mints and checks the short-lived access tokens handed to media readers."""

    def __init__(self, secret: str, algorithm: str = "HS256", access_ttl_min: int = 15):
        self.secret = secret
        self.algorithm = algorithm
        self.access_ttl = dt.timedelta(minutes=access_ttl_min)

    @classmethod
    def from_config(cls, config: Config) -> "AuthService":
        return cls(config.JWT_SECRET, config.JWT_ALG, config.ACCESS_TTL_MIN)

    def _make_jwt(self, sub: str, scope: str, ttl: dt.timedelta) -> str:
        now = dt.datetime.now(dt.timezone.utc)
        payload = {
            "iss": "fasbit-auth",
            "sub": sub,
            "scope": scope,
            "iat": int(now.timestamp()),
            "exp": int((now + ttl).timestamp()),
            "jti": str(uuid.uuid4()),
        }
        return jwt.encode(payload, self.secret, algorithm=self.algorithm)

    def mint_access(self, user_id: int, ttl: dt.timedelta | None = None) -> str:
        return self._make_jwt(str(user_id), "access", ttl if ttl is not None else self.access_ttl)

    def verify_token(self, token: str) -> int:
        if not token:
            raise AuthError("Missing token.")

        try:
            payload = jwt.decode(token, self.secret, algorithms=[self.algorithm])
        except JWTError:
            raise AuthError("Invalid or expired token.")

        if payload.get("scope") != "access":
            raise AuthError("Invalid token scope.")

        sub = payload.get("sub")
        if not sub or not (str(sub).isascii() and str(sub).isdigit()):
            raise AuthError("Invalid token.")

        return int(sub)