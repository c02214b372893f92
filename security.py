import bcrypt
import hashlib
import jwt
import logging
import secrets
from datetime import datetime, timedelta, timezone
from config import CSRF_TOKEN_BYTES, FINGERPRINT_LENGTH, MODERATOR_TOKEN_EXPIRE_MINUTES

logger = logging.getLogger(__name__)

MODERATOR_SUBJECT = "moderator"


class SecurityManager:
    def __init__(self, secret_key: str, moderator_password: str):
        self.secret_key = secret_key
        self.algorithm = "HS256"
        self.moderator_token_expire_minutes = MODERATOR_TOKEN_EXPIRE_MINUTES
        self.moderator_password_hash = self.hash_password(moderator_password)

    def hash_password(self, password: str) -> str:
        """Generate password hash"""
        return bcrypt.hashpw(password.encode('utf-8'), bcrypt.gensalt()).decode('utf-8')

    def verify_password(self, password: str, hashed: str) -> bool:
        """Verify password against hash"""
        return bcrypt.checkpw(password.encode('utf-8'), hashed.encode('utf-8'))

    def check_moderator_password(self, password: str) -> bool:
        return self.verify_password(password, self.moderator_password_hash)

    def create_moderator_token(self) -> str:
        """Create JWT proving a moderator login"""
        expire = datetime.now(timezone.utc) + timedelta(minutes=self.moderator_token_expire_minutes)
        return jwt.encode({"sub": MODERATOR_SUBJECT, "exp": expire}, self.secret_key, algorithm=self.algorithm)

    def is_moderator_token(self, token: str) -> bool:
        if not token:
            return False
        try:
            payload = jwt.decode(token, self.secret_key, algorithms=[self.algorithm])
        except jwt.ExpiredSignatureError:
            logger.info("Expired moderator token presented")
            return False
        except jwt.InvalidTokenError:
            logger.warning("Invalid moderator token presented")
            return False
        return payload.get("sub") == MODERATOR_SUBJECT

    def generate_csrf_token(self) -> str:
        return secrets.token_hex(CSRF_TOKEN_BYTES)

    def verify_csrf_token(self, presented: str, stored: str) -> bool:
        """Constant-time comparison of the presented token against the session's"""
        if not presented or not stored:
            return False
        return secrets.compare_digest(presented.encode('utf-8'), stored.encode('utf-8'))

    def fingerprint(self, client_ip: str) -> str:
        """Opaque poster id derived from the client address"""
        return hashlib.sha1(client_ip.encode('utf-8')).hexdigest()[:FINGERPRINT_LENGTH]
