"""
通知服务
模板化消息的发送（不重试），以及收件人邮箱解析
"""
from abc import ABC, abstractmethod
from typing import Any, Dict, Optional
import requests
from utils.logger import logger


class NotificationInterface(ABC):
    @abstractmethod
    def send(self, template: str, to: str, data: Dict[str, Any]) -> None:
        """发送模板消息，失败时抛出异常"""
        pass


class WebhookNotifier(NotificationInterface):
    """把 {type, to, data} POST 到邮件服务 webhook"""

    def __init__(self, webhook_url: str, timeout: float = 10.0, session: Optional[requests.Session] = None):
        self.webhook_url = webhook_url
        self.timeout = timeout
        self.session = session or requests.Session()

    def send(self, template: str, to: str, data: Dict[str, Any]) -> None:
        if not self.webhook_url:
            raise RuntimeError("NOTIFY_WEBHOOK_URL 未配置")
        response = self.session.post(
            self.webhook_url,
            json={"type": template, "to": to, "data": data},
            timeout=self.timeout,
        )
        response.raise_for_status()
        logger.info(f"📧 通知 {template} 已发送至 {to}")


def notify_safely(notifier: NotificationInterface, template: str, to: str, data: Dict[str, Any]) -> bool:
    """尽力发送，失败只记录警告，不影响已提交的状态变更"""
    try:
        notifier.send(template, to, data)
        return True
    except Exception as e:
        logger.warning(f"⚠️ 通知 {template} 发送失败 ({to}): {e}")
        return False


class ContactResolver:
    """解析用户邮箱：先查资料表，再查身份存储并回填资料"""

    def __init__(self, identity):
        self.identity = identity

    def resolve_email(self, user_id: str) -> Optional[str]:
        profile = self.identity.get_profile(user_id)
        if profile and profile.email:
            return profile.email

        logger.info(f"资料中没有邮箱，回查身份存储: {user_id}")
        try:
            email = self.identity.get_auth_email(user_id)
        except Exception as e:
            logger.warning(f"⚠️ 回查用户 {user_id} 邮箱失败: {e}")
            return None

        if not email:
            logger.warning(f"⚠️ 用户 {user_id} 没有可用邮箱")
            return None

        try:
            self.identity.update_profile_email(user_id, email)
        except Exception as e:
            # 回填失败不影响本次通知
            logger.warning(f"⚠️ 回填用户 {user_id} 资料邮箱失败: {e}")
        return email

    def full_name(self, user_id: str) -> str:
        profile = self.identity.get_profile(user_id)
        return profile.full_name if profile else "Cliente"
