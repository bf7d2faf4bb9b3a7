"""
本地存储与签名链接测试
"""
import pytest
from itsdangerous import BadSignature, SignatureExpired
from services.storage import LocalStorage


class FakeTime:
    def __init__(self, now: float = 1000.0):
        self.now = now

    def __call__(self) -> float:
        return self.now


@pytest.fixture
def fake_time():
    return FakeTime()


@pytest.fixture
def local_storage(tmp_path, fake_time):
    return LocalStorage(str(tmp_path), secret="s3cret", base_url="https://files.example/", clock=fake_time)


def test_upload_and_remove(local_storage):
    """测试上传后删除"""
    local_storage.upload("payment-receipts", "u/o/1_pix.pdf", b"data")
    assert local_storage.exists("payment-receipts", "u/o/1_pix.pdf")

    local_storage.remove("payment-receipts", ["u/o/1_pix.pdf", "u/o/missing.pdf"])
    assert not local_storage.exists("payment-receipts", "u/o/1_pix.pdf")


def test_duplicate_upload_rejected(local_storage):
    """测试同一路径不能重复上传"""
    local_storage.upload("b", "a.pdf", b"1")
    with pytest.raises(FileExistsError):
        local_storage.upload("b", "a.pdf", b"2")


def test_path_traversal_rejected(local_storage):
    """测试拒绝路径穿越"""
    with pytest.raises(ValueError):
        local_storage.upload("b", "../../etc/passwd", b"x")


def test_signed_url_valid_until_ttl(local_storage, fake_time):
    """测试签名链接在有效期内可用，过期后失效"""
    local_storage.upload("b", "u/a.pdf", b"1")
    url = local_storage.create_signed_url("b", "u/a.pdf", ttl=3600)

    assert url.startswith("https://files.example/b/u/a.pdf?token=")
    fake_time.now += 1000
    assert local_storage.verify_signed_url(url)
    assert local_storage.resolve_signed_url(url) == ("b", "u/a.pdf")

    fake_time.now += 3000
    assert not local_storage.verify_signed_url(url)
    with pytest.raises(SignatureExpired):
        local_storage.resolve_signed_url(url)


def test_tampered_signed_url(local_storage, tmp_path):
    """测试篡改路径或使用其他密钥签名的链接无效"""
    local_storage.upload("b", "u/a.pdf", b"1")
    url = local_storage.create_signed_url("b", "u/a.pdf", ttl=3600)

    assert not local_storage.verify_signed_url(url.replace("u/a.pdf", "u/b.pdf"))
    assert not local_storage.verify_signed_url("https://files.example/b/u/a.pdf")

    other = LocalStorage(str(tmp_path), secret="outro", base_url="https://files.example/")
    with pytest.raises(BadSignature):
        other.resolve_signed_url(url)


def test_signed_url_for_missing_file(local_storage):
    """测试不存在的文件不能生成链接"""
    with pytest.raises(FileNotFoundError):
        local_storage.create_signed_url("b", "nope.pdf", ttl=60)
