import jwt
import bcrypt
import logging
from datetime import datetime, timedelta, timezone
from typing import Iterable, List, Optional
from uuid import uuid4
import os
from dotenv import load_dotenv

from chorechamp.models.user import User, UserResponse, UserRole

# Load environment variables
load_dotenv()

logger = logging.getLogger(__name__)


def user_key(user_id: str) -> str:
    return f"user:{user_id}"


def username_key(username: str) -> str:
    return f"username:{username.lower()}"


def email_key(email: str) -> str:
    return f"user_email:{email.lower()}"


class DuplicateUserError(Exception):
    """Raised when a username or email is already taken"""

    def __init__(self, field: str):
        super().__init__(f"{field} already exists")
        self.field = field


class UserNotFoundError(Exception):
    """The user document disappeared while being updated"""


class AuthService:
    def __init__(self):
        self.secret_key = os.getenv("JWT_SECRET_KEY", "your-secret-key-change-in-production")
        self.algorithm = "HS256"
        self.access_token_expire_minutes = int(os.getenv("ACCESS_TOKEN_EXPIRE_MINUTES", "10080"))  # 7 days

    def hash_password(self, password: str) -> str:
        """Hash a password using bcrypt"""
        salt = bcrypt.gensalt()
        return bcrypt.hashpw(password.encode('utf-8'), salt).decode('utf-8')

    def verify_password(self, password: str, hashed_password: str) -> bool:
        """Verify a password against its hash"""
        return bcrypt.checkpw(password.encode('utf-8'), hashed_password.encode('utf-8'))

    def create_access_token(self, user_id: str) -> str:
        """Create a JWT access token"""
        expire = datetime.now(timezone.utc) + timedelta(minutes=self.access_token_expire_minutes)
        to_encode = {"sub": user_id, "exp": expire}
        return jwt.encode(to_encode, self.secret_key, algorithm=self.algorithm)

    def verify_token(self, token: str) -> Optional[str]:
        """Verify JWT token and return user ID"""
        try:
            payload = jwt.decode(token, self.secret_key, algorithms=[self.algorithm])
            user_id: str = payload.get("sub")
            if user_id is None:
                return None
            return user_id
        except jwt.PyJWTError:
            return None

    def get_redis_client(self):
        """Get Redis client from redis_service"""
        from chorechamp.services.redis_service import redis_service
        return redis_service.redis_client

    def load_user(self, user_data: Optional[str]) -> Optional[User]:
        if user_data:
            return User.model_validate_json(user_data)
        return None

    def get_user_by_id(self, user_id: str) -> Optional[User]:
        """Get user by ID"""
        return self.load_user(self.get_redis_client().get(user_key(user_id)))

    def _get_by_index(self, index_key: str) -> Optional[User]:
        user_id = self.get_redis_client().get(index_key)
        if user_id:
            return self.get_user_by_id(user_id)
        return None

    def get_user_by_username(self, username: str) -> Optional[User]:
        return self._get_by_index(username_key(username))

    def get_user_by_email(self, email: str) -> Optional[User]:
        return self._get_by_index(email_key(email))

    def get_users(self, user_ids: Iterable[str]) -> List[User]:
        users = []
        for user_id in user_ids:
            user = self.get_user_by_id(user_id)
            if user:
                users.append(user)
        return users

    def get_children_of(self, parent_id: str) -> List[User]:
        """All child accounts created by a parent"""
        redis_client = self.get_redis_client()
        children = []
        for key in redis_client.keys("user:*"):
            user = self.load_user(redis_client.get(key))
            if user and user.role == UserRole.CHILD and user.parent_id == parent_id:
                children.append(user)
        children.sort(key=lambda child: (child.chore_rotation_order, child.created_at))
        return children

    def _claim_indexes(self, user: User, previous: Optional[User] = None) -> User:
        """Write the user together with its username/email index keys.

        Index keys are WATCHed so two registrations racing for the same name
        cannot both succeed. For an existing user only the fields that differ
        from ``previous`` are copied onto the stored document, so points
        credited in the meantime survive.
        """
        from chorechamp.services.redis_service import redis_service

        key = user_key(user.id)
        new_keys = [username_key(user.username)]
        if user.email:
            new_keys.append(email_key(user.email))
        edits = {}
        if previous is not None:
            edits = {
                field: getattr(user, field)
                for field in User.model_fields
                if getattr(user, field) != getattr(previous, field)
            }

        def write(pipe):
            owner = pipe.get(new_keys[0])
            if owner and owner != user.id:
                raise DuplicateUserError("Username")
            if user.email:
                owner = pipe.get(new_keys[1])
                if owner and owner != user.id:
                    raise DuplicateUserError("Email")

            stored = user
            stale_keys = []
            if previous is not None:
                current = self.load_user(pipe.get(key))
                if current is None:
                    raise UserNotFoundError(user.id)
                stored = current.model_copy(update=edits)
                if current.username.lower() != stored.username.lower():
                    stale_keys.append(username_key(current.username))
                if current.email and (not stored.email or current.email.lower() != stored.email.lower()):
                    stale_keys.append(email_key(current.email))

            pipe.multi()
            pipe.set(key, stored.model_dump_json())
            for index_key in new_keys:
                pipe.set(index_key, user.id)
            if stale_keys:
                pipe.delete(*stale_keys)
            return stored

        return redis_service.transaction(write, key, *new_keys)

    def create_user(
        self,
        username: str,
        password: str,
        role: UserRole,
        email: Optional[str] = None,
        first_name: Optional[str] = None,
        last_name: Optional[str] = None,
        phone: Optional[str] = None,
        parent_id: Optional[str] = None,
        chore_rotation_order: int = 0,
    ) -> User:
        """Create a new user"""
        user = User(
            id=str(uuid4()),
            username=username,
            first_name=first_name,
            last_name=last_name,
            email=email.lower() if email else None,
            phone=phone,
            hashed_password=self.hash_password(password),
            role=role,
            parent_id=parent_id,
            chore_rotation_order=chore_rotation_order,
            created_at=datetime.now(timezone.utc),
        )
        self._claim_indexes(user)
        logger.info("Registered %s account %s", role.value, user.username)
        return user

    def update_user(self, user: User) -> None:
        """Persist fields that do not affect username/email lookups"""
        self.get_redis_client().set(user_key(user.id), user.model_dump_json())

    def update_identity(self, user: User, previous: User) -> User:
        """Persist the edits made to ``previous``; returns the stored user"""
        if user.email:
            user.email = user.email.lower()
        return self._claim_indexes(user, previous)

    def delete_user(self, user: User) -> None:
        keys = [user_key(user.id), username_key(user.username)]
        if user.email:
            keys.append(email_key(user.email))
        self.get_redis_client().delete(*keys)

    def user_to_response(self, user: User) -> UserResponse:
        """Convert User to UserResponse (excluding sensitive data)"""
        return UserResponse(**user.model_dump(exclude={"hashed_password"}))

# Create the auth_service instance
auth_service = AuthService()
