"""
身份服务：当前用户、资料查询、会话变化通知
"""
import threading
from abc import ABC, abstractmethod
from typing import Callable, List, Optional
from sqlmodel import select
from config.settings import Settings
from models.user import User, Profile
from utils.logger import logger


class IdentityInterface(ABC):
    @abstractmethod
    def current_user(self) -> Optional[User]:
        pass

    @abstractmethod
    def get_profile(self, user_id: str) -> Optional[Profile]:
        pass

    @abstractmethod
    def get_auth_email(self, user_id: str) -> Optional[str]:
        pass

    @abstractmethod
    def update_profile_email(self, user_id: str, email: str) -> None:
        pass

    @abstractmethod
    def on_change(self, listener: Callable[[Optional[User]], None]) -> None:
        pass


class DatabaseIdentity(IdentityInterface):
    """基于 users / profiles 表的身份实现"""

    def __init__(self, settings: Settings):
        self.settings = settings
        self._current_user_id: Optional[str] = None
        self._listeners: List[Callable[[Optional[User]], None]] = []
        self._lock = threading.Lock()

    def sign_in(self, user_id: str) -> User:
        user = self._get_user(user_id)
        if user is None:
            raise ValueError(f"用户 {user_id} 不存在")
        with self._lock:
            self._current_user_id = user_id
        self._notify(user)
        return user

    def sign_out(self):
        with self._lock:
            self._current_user_id = None
        self._notify(None)

    def current_user(self) -> Optional[User]:
        with self._lock:
            user_id = self._current_user_id
        if user_id is None:
            return None
        return self._get_user(user_id)

    def on_change(self, listener: Callable[[Optional[User]], None]) -> None:
        self._listeners.append(listener)

    def _notify(self, user: Optional[User]):
        for listener in list(self._listeners):
            try:
                listener(user)
            except Exception as e:
                logger.error(f"❌ 会话监听回调出错: {e}", exc_info=True)

    def _get_user(self, user_id: str) -> Optional[User]:
        with self.settings.get_session() as session:
            return session.get(User, user_id)

    def get_profile(self, user_id: str) -> Optional[Profile]:
        with self.settings.get_session() as session:
            return session.exec(select(Profile).where(Profile.id == user_id)).first()

    def get_auth_email(self, user_id: str) -> Optional[str]:
        user = self._get_user(user_id)
        return user.email if user else None

    def update_profile_email(self, user_id: str, email: str) -> None:
        with self.settings.get_session() as session:
            profile = session.get(Profile, user_id)
            if profile is None:
                return
            profile.email = email
            profile.touch()
            session.add(profile)
        logger.info(f"资料邮箱已回填: {user_id}")
