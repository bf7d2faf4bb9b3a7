#文件存储统一接口类
#凭证等二进制文件的上传、删除、签名链接
import os
import time
from abc import ABC, abstractmethod
from typing import Callable, List, Tuple
from urllib.parse import urlparse, parse_qs
from itsdangerous import URLSafeTimedSerializer, TimestampSigner, BadSignature, SignatureExpired
from utils.logger import logger


class StorageInterface(ABC):
    """存储统一接口类"""
    @abstractmethod
    def upload(self, bucket: str, path: str, data: bytes) -> str:
        """上传文件，返回存储路径"""
        pass

    @abstractmethod
    def remove(self, bucket: str, paths: List[str]) -> None:
        """删除文件"""
        pass

    @abstractmethod
    def create_signed_url(self, bucket: str, path: str, ttl: int) -> str:
        """生成带过期时间的签名链接"""
        pass


def _clock_signer(clock: Callable[[], float]):
    """签名时间戳取自注入的时钟"""
    class ClockSigner(TimestampSigner):
        def get_timestamp(self) -> int:
            return int(clock())
    return ClockSigner


class LocalStorage(StorageInterface):
    """本地文件系统存储，签名链接由 itsdangerous 生成和校验"""

    SALT = "receipt-link-v1"

    def __init__(
        self,
        root: str,
        secret: str,
        base_url: str = "file://",
        clock: Callable[[], float] = time.time,
    ):
        self.root = os.path.abspath(root)
        self.base_url = base_url
        self._signer = URLSafeTimedSerializer(secret, salt=self.SALT, signer=_clock_signer(clock))

    def _full_path(self, bucket: str, path: str) -> str:
        full = os.path.abspath(os.path.join(self.root, bucket, path))
        # 防止路径穿越
        if not full.startswith(os.path.join(self.root, bucket) + os.sep):
            raise ValueError(f"非法存储路径: {path}")
        return full

    def upload(self, bucket: str, path: str, data: bytes) -> str:
        full = self._full_path(bucket, path)
        if os.path.exists(full):
            raise FileExistsError(f"文件已存在: {bucket}/{path}")
        os.makedirs(os.path.dirname(full), exist_ok=True)
        with open(full, "wb") as f:
            f.write(data)
        logger.info(f"📤 已上传 {bucket}/{path} ({len(data)} bytes)")
        return path

    def remove(self, bucket: str, paths: List[str]) -> None:
        for path in paths:
            full = self._full_path(bucket, path)
            if os.path.exists(full):
                os.remove(full)
                logger.info(f"🗑️ 已删除 {bucket}/{path}")

    def exists(self, bucket: str, path: str) -> bool:
        return os.path.exists(self._full_path(bucket, path))

    def create_signed_url(self, bucket: str, path: str, ttl: int) -> str:
        full = self._full_path(bucket, path)
        if not os.path.exists(full):
            raise FileNotFoundError(f"文件不存在: {bucket}/{path}")
        token = self._signer.dumps({"bucket": bucket, "path": path, "ttl": ttl})
        return f"{self.base_url}{bucket}/{path}?token={token}"

    def resolve_signed_url(self, url: str) -> Tuple[str, str]:
        """校验签名链接，返回 (bucket, path)

        Raises:
            SignatureExpired: 链接已过期
            BadSignature: 签名无效或链接路径被篡改
        """
        parsed = urlparse(url[len(self.base_url):] if url.startswith(self.base_url) else url)
        token = parse_qs(parsed.query).get("token", [""])[0]
        payload = self._signer.loads(token)
        self._signer.loads(token, max_age=payload["ttl"])

        bucket, _, path = parsed.path.lstrip("/").partition("/")
        if (bucket, path) != (payload["bucket"], payload["path"]):
            raise BadSignature("链接路径与签名不一致")
        return bucket, path

    def verify_signed_url(self, url: str) -> bool:
        """签名正确且未过期"""
        try:
            self.resolve_signed_url(url)
            return True
        except SignatureExpired:
            logger.info(f"签名链接已过期: {url}")
            return False
        except BadSignature as e:
            logger.warning(f"⚠️ 签名链接无效: {e}")
            return False
