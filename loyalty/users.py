import logging
from uuid import UUID, uuid4

from .errors import DuplicateEmailError, UserNotFoundError
from .models import User
from .storage import InMemoryStorage

logger = logging.getLogger(__name__)


class UserRegistry:
    def __init__(self, storage: InMemoryStorage):
        self.storage = storage

    def register(self, name: str, email: str) -> User:
        key = email.strip().lower()
        with self.storage.registry_lock:
            if key in self.storage.email_index:
                raise DuplicateEmailError(f"Email {email} is already registered")
            user = User(id=uuid4(), name=name, email=email.strip())
            self.storage.users[user.id] = user
            self.storage.email_index[key] = user.id

        logger.info("Registered user %s", user.id)
        return user.model_copy()

    def get(self, user_id: UUID) -> User:
        user = self.storage.users.get(user_id)
        if user is None:
            raise UserNotFoundError(f"User {user_id} not found")
        return user.model_copy()
